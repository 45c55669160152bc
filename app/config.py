"""Application configuration using Pydantic Settings."""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # MongoDB
    mongodb_url: str
    mongodb_db_name: str = "ernit"

    # JWT
    jwt_secret: str
    jwt_algorithm: str = "HS256"
    jwt_expiration_minutes: int = 10080  # 7 days

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    debug: bool = False

    # CORS
    cors_origins: str = "http://localhost:3000,http://localhost:8000"

    # Stripe
    stripe_api_key: str = ""
    stripe_webhook_secret: str = ""

    # Hint generation (OpenAI-compatible chat completions)
    llm_api_key: str = ""
    llm_base_url: str = "https://openrouter.ai/api/v1"
    llm_model: str = "meta-llama/Meta-Llama-3-8B-Instruct"
    llm_timeout_seconds: float = 30.0

    # Local state files, empty means in-memory only
    hint_cache_path: str = ""
    timer_state_path: str = ""
    timer_tick_seconds: float = 1.0

    # Session rules
    min_session_seconds: int = 2
    min_session_interval_seconds: int = 60
    allow_multiple_sessions_per_day: bool = False

    # Claim codes and gifts
    claim_code_length: int = 12
    claim_code_max_attempts: int = 10
    gift_expiry_days: int = 365

    # Goal limits
    max_target_weeks: int = 5
    max_sessions_per_week: int = 7
    max_session_hours: int = 3
    approval_window_hours: int = 24

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]


settings = Settings()

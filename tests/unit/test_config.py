"""Tests for application settings."""
import pytest
from pydantic import ValidationError

from app.config import Settings


class TestSettings:
    """Tests for required and default settings."""

    def test_jwt_secret_required(self, monkeypatch):
        monkeypatch.delenv("JWT_SECRET", raising=False)
        monkeypatch.setenv("MONGODB_URL", "mongodb://localhost:27017")

        with pytest.raises(ValidationError, match="jwt_secret"):
            Settings(_env_file=None)

    def test_mongodb_url_required(self, monkeypatch):
        monkeypatch.delenv("MONGODB_URL", raising=False)
        monkeypatch.setenv("JWT_SECRET", "s3cret")

        with pytest.raises(ValidationError, match="mongodb_url"):
            Settings(_env_file=None)

    def test_loaded_from_environment(self, monkeypatch):
        monkeypatch.setenv("JWT_SECRET", "s3cret")
        monkeypatch.setenv("MONGODB_URL", "mongodb://db:27017")

        config = Settings(_env_file=None)

        assert config.jwt_secret == "s3cret"
        assert config.mongodb_url == "mongodb://db:27017"
        assert config.min_session_seconds == 2

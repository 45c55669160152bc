"""Hint text generation through an OpenAI-compatible chat completions API."""
import logging
import re
from typing import Optional

import httpx
from pydantic import BaseModel, Field

from app.config import settings
from app.exceptions import HintGenerationError

logger = logging.getLogger(__name__)

HINT_STYLES = ("neutral", "personalized", "motivational")

STYLE_GUIDANCE = {
    "neutral": "Write a calm, factual clue.",
    "personalized": "Speak directly to the person as if you know them well.",
    "motivational": "Be upbeat and energizing, like a coach cheering them on.",
}

DIFFICULTY_GUIDANCE = {
    "vague": "Be very vague. Hint only at a feeling or a general theme.",
    "thematic": "Hint at the theme or setting without naming the activity.",
    "strong": "Give a strong clue that narrows it down to a few possibilities.",
    "finale": "Give a near-reveal clue that makes the answer almost obvious.",
}

MAX_SENTENCES = 3


class HintRequest(BaseModel):
    """Context for generating the hint of one session."""

    experience_title: str = ""
    experience_subtitle: str = ""
    experience_description: str = ""
    experience_category: str = ""
    session_number: int
    total_sessions: int
    style: str = "neutral"
    previous_hints: list[str] = Field(default_factory=list)


def style_for_session(session_number: int) -> str:
    """Round-robin style keyed off the session number."""
    return HINT_STYLES[(max(session_number, 1) - 1) % len(HINT_STYLES)]


def difficulty_band(session_number: int, total_sessions: int) -> str:
    """
    Map progress to how revealing a hint may be.

    Examples:
        >>> difficulty_band(1, 10)
        'vague'
        >>> difficulty_band(10, 10)
        'finale'
    """
    progress = session_number / total_sessions if total_sessions else 1
    if progress <= 0.2:
        return "vague"
    if progress <= 0.6:
        return "thematic"
    if progress <= 0.9:
        return "strong"
    return "finale"


def build_prompt(request: HintRequest) -> str:
    band = difficulty_band(request.session_number, request.total_sessions)
    lines = [
        "You write short mystery clues for a surprise experience gift.",
        "The person earns one clue per completed workout session and must not be told the answer outright.",
        "",
        f"Experience: {request.experience_title}",
    ]
    if request.experience_subtitle:
        lines.append(f"Subtitle: {request.experience_subtitle}")
    if request.experience_category:
        lines.append(f"Category: {request.experience_category}")
    if request.experience_description:
        lines.append(f"Description: {request.experience_description}")

    lines += [
        "",
        f"This is clue {request.session_number} of {request.total_sessions}.",
        DIFFICULTY_GUIDANCE[band],
        STYLE_GUIDANCE.get(request.style, STYLE_GUIDANCE["neutral"]),
        f"Use at most {MAX_SENTENCES} sentences. Do not name the experience.",
    ]

    if request.previous_hints:
        lines.append("")
        lines.append("Earlier clues (do not repeat them, take a different angle):")
        lines += [f"- {hint}" for hint in request.previous_hints]

    return "\n".join(lines)


def clean_hint(text: str) -> str:
    """
    Normalize model output into a short clue.

    Examples:
        >>> clean_hint('"Hint: You will get wet. Bring a towel."')
        'You will get wet. Bring a towel.'
    """
    text = re.sub(r"[\[\]{}\"“”]", "", text or "").strip()
    text = re.sub(r"^(hint|clue)\s*(\d+)?\s*:\s*", "", text, flags=re.IGNORECASE)
    text = re.sub(r"\s+", " ", text).strip()

    sentences = [s.strip() for s in re.findall(r"[^.!?]+[.!?]*", text) if s.strip()]
    return " ".join(sentences[:MAX_SENTENCES])


class HintGenerator:
    """Client for the external text generation service."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = settings.llm_api_key if api_key is None else api_key
        self.base_url = (base_url or settings.llm_base_url).rstrip("/")
        self.model = model or settings.llm_model
        self.timeout = timeout or settings.llm_timeout_seconds
        self.transport = transport

    async def generate(self, request: HintRequest) -> str:
        """
        Generate a hint.

        Args:
            request: Experience and session context

        Returns:
            Cleaned hint text

        Raises:
            HintGenerationError: If the call fails or returns no usable text
        """
        if not self.api_key:
            raise HintGenerationError("LLM_API_KEY is not configured")

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": "You are a playful, concise clue writer."},
                {"role": "user", "content": build_prompt(request)},
            ],
            "temperature": 0.9,
            "max_tokens": 120,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions", json=payload, headers=headers
                )
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise HintGenerationError(f"Hint request failed: {exc}") from exc

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise HintGenerationError("Hint response missing message content") from exc

        hint = clean_hint(content)
        if not hint:
            raise HintGenerationError("Hint response was empty")

        logger.debug("Generated %s hint for session %d", request.style, request.session_number)
        return hint

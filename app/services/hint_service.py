"""Hint service - resolve, cache and generate per-session hints."""
import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

from app.config import settings
from app.exceptions import HintGenerationError
from app.models.goal import EmpoweredGoal, Goal, PairedGoal, PersonalizedHint
from app.models.session import HintView
from app.services.hint_generator import HintGenerator, HintRequest, style_for_session
from app.utils.clock import clock as default_clock
from app.utils.ids import flexible_id_filter, to_object_id

logger = logging.getLogger(__name__)

FALLBACK_HINT = "Keep going! You're doing great 💪"
MAX_HINT_LENGTH = 500
MAX_HINT_HISTORY = 1000
PROMPT_HISTORY_SIZE = 5


def hints_enabled(goal: Goal) -> bool:
    """Generated hints are for gifted goals and secret Valentine goals."""
    if isinstance(goal.kind, EmpoweredGoal):
        return True
    if isinstance(goal.kind, PairedGoal):
        return not goal.is_revealed
    return False


class LocalHintCache:
    """JSON-file hint cache keyed by ``{goal_id}_{session_number}``."""

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path) if path else None
        self.entries: dict[str, str] = {}
        self._write_lock = asyncio.Lock()
        if self.path is not None and self.path.exists():
            try:
                self.entries = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError):
                logger.warning("Ignoring unreadable hint cache at %s", self.path)

    @staticmethod
    def key(goal_id: str, session_number: int) -> str:
        return f"{goal_id}_{session_number}"

    def get(self, goal_id: str, session_number: int) -> Optional[str]:
        return self.entries.get(self.key(goal_id, session_number))

    def _write(self, payload: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(payload, encoding="utf-8")

    async def set(self, goal_id: str, session_number: int, hint: str) -> None:
        """Store a hint in memory, then write the file in a worker thread."""
        self.entries[self.key(goal_id, session_number)] = hint
        if self.path is None:
            return
        async with self._write_lock:
            payload = json.dumps(self.entries)
            try:
                await asyncio.to_thread(self._write, payload)
            except OSError:
                logger.warning("Could not persist hint cache to %s", self.path, exc_info=True)


local_hint_cache = LocalHintCache(settings.hint_cache_path or None)


class HintService:
    """Service for hint lookup, generation and consumption."""

    def __init__(self, db, local_cache=None, generator=None, clock=None):
        """Initialize service with database connection."""
        self.db = db
        self.goals = db["goals"]
        self.goal_sessions = db["goal_sessions"]
        self.experiences = db["experiences"]
        self.local_cache = local_cache if local_cache is not None else local_hint_cache
        self.generator = generator or HintGenerator()
        self.clock = clock or default_clock

    async def get_cached(self, goal_id: str, session_number: int) -> Optional[str]:
        """
        Look a hint up locally, then in the durable session history.

        A durable hit is copied into the local cache.
        """
        hint = self.local_cache.get(goal_id, session_number)
        if hint:
            return hint

        doc = await self.goal_sessions.find_one(
            {"goal_id": goal_id, "session_number": session_number}
        )
        if doc and doc.get("hint"):
            await self.local_cache.set(goal_id, session_number, doc["hint"])
            return doc["hint"]
        return None

    async def _previous_hints(self, goal_id: str, session_number: int) -> list[str]:
        cursor = (
            self.goal_sessions.find(
                {"goal_id": goal_id, "session_number": {"$lt": session_number}}
            )
            .sort("session_number", -1)
            .limit(PROMPT_HISTORY_SIZE)
        )
        docs = await cursor.to_list(length=PROMPT_HISTORY_SIZE)
        return [doc["hint"] for doc in reversed(docs) if doc.get("hint")]

    async def _build_request(self, goal: Goal, session_number: int) -> HintRequest:
        experience = {}
        if goal.experience_id:
            experience = await self.experiences.find_one(flexible_id_filter(goal.experience_id)) or {}

        return HintRequest(
            experience_title=experience.get("title", goal.title),
            experience_subtitle=experience.get("subtitle", ""),
            experience_description=experience.get("description", ""),
            experience_category=experience.get("category", ""),
            session_number=session_number,
            total_sessions=goal.target_count * goal.sessions_per_week,
            style=style_for_session(session_number),
            previous_hints=await self._previous_hints(goal.id, session_number),
        )

    async def _store(self, goal_id: str, session_number: int, hint: str, style: str) -> None:
        await self.local_cache.set(goal_id, session_number, hint)
        try:
            await self.goal_sessions.update_one(
                {"goal_id": goal_id, "session_number": session_number},
                {"$setOnInsert": {"hint": hint, "style": style, "created_at": self.clock.now()}},
                upsert=True,
            )
        except Exception:
            logger.warning("Failed to save hint for goal %s session %d", goal_id, session_number, exc_info=True)

    async def generate(self, goal: Goal, session_number: int) -> Optional[str]:
        """
        Generate and cache a hint.

        Returns:
            Hint text, or None if generation failed
        """
        try:
            request = await self._build_request(goal, session_number)
            hint = (await self.generator.generate(request))[:MAX_HINT_LENGTH]
        except HintGenerationError as e:
            logger.warning("Hint generation failed for goal %s: %s", goal.id, e)
            return None

        await self._store(goal.id, session_number, hint, request.style)
        return hint

    async def get_hint(self, goal: Goal, session_number: int) -> str:
        """
        Get the hint for a session, generating it on a cache miss.

        Args:
            goal: Goal the hint belongs to
            session_number: 1-based session number

        Returns:
            Hint text, or the fallback encouragement if generation failed
        """
        hint = await self.get_cached(goal.id, session_number)
        if hint is None:
            hint = await self.generate(goal, session_number)
        return hint or FALLBACK_HINT

    async def prefetch(self, goal: Goal, session_number: int) -> Optional[str]:
        """Warm the cache for an upcoming session."""
        hint = await self.get_cached(goal.id, session_number)
        if hint is None:
            hint = await self.generate(goal, session_number)
        return hint

    async def consume_personalized(self, goal: Goal, hint: PersonalizedHint) -> Optional[HintView]:
        """
        Move a personalized hint from the pending slot into the history.

        The pending slot is only cleared if it still holds this exact hint,
        so a hint is never shown twice.

        Returns:
            The hint view, or None if it was already consumed
        """
        record = {
            "session": hint.for_session_number,
            "hint": hint.text,
            "type": hint.type.value,
            "giver_name": hint.giver_name,
            "created_at": self.clock.now(),
        }
        consumed = await self.goals.find_one_and_update(
            {
                "_id": to_object_id(goal.id, "goal ID"),
                "personalized_next_hint.for_session_number": hint.for_session_number,
                "personalized_next_hint.created_at": hint.created_at,
            },
            {
                "$set": {"personalized_next_hint": None},
                "$push": {"hints": {"$each": [record], "$slice": -MAX_HINT_HISTORY}},
            },
        )
        if consumed is None:
            return None

        return HintView(
            session_number=hint.for_session_number,
            text=hint.text,
            source="personalized",
            type=hint.type,
            giver_name=hint.giver_name,
            audio_url=hint.audio_url,
            image_url=hint.image_url,
            duration_seconds=hint.duration_seconds,
        )

    async def _append_history(self, goal: Goal, session_number: int, hint: str) -> None:
        record = {
            "session": session_number,
            "hint": hint,
            "type": None,
            "giver_name": None,
            "created_at": self.clock.now(),
        }
        await self.goals.update_one(
            {"_id": to_object_id(goal.id, "goal ID"), "hints.session": {"$ne": session_number}},
            {"$push": {"hints": {"$each": [record], "$slice": -MAX_HINT_HISTORY}}},
        )

    async def resolve_after_session(self, goal: Goal, total_done: int) -> Optional[HintView]:
        """
        Pick the hint to show after a completed session.

        A personalized hint for the next session wins. Otherwise the
        cached or freshly generated hint is shown and recorded once.

        Args:
            goal: Goal after the session was counted
            total_done: Sessions counted so far

        Returns:
            Hint to show, or None if this goal gets no hint
        """
        session_number = total_done + 1
        pending = goal.personalized_next_hint
        if pending is not None and pending.for_session_number == session_number:
            return await self.consume_personalized(goal, pending)

        if not hints_enabled(goal):
            return None

        hint = await self.get_cached(goal.id, session_number)
        if hint is None:
            hint = await self.generate(goal, session_number)
        if hint is None:
            return HintView(session_number=session_number, text=FALLBACK_HINT, source="fallback")

        try:
            await self._append_history(goal, session_number, hint)
        except Exception:
            logger.warning("Failed to record hint history for goal %s", goal.id, exc_info=True)

        return HintView(session_number=session_number, text=hint, source="generated")

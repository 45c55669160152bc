"""Per-goal session timers driven by one shared ticker."""
import asyncio
import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from app.config import settings
from app.utils.clock import Clock, clock as default_clock

logger = logging.getLogger(__name__)


@dataclass
class TimerEntry:
    running: bool = False
    start_timestamp: Optional[str] = None
    elapsed_seconds: int = 0
    pending_hint: Optional[str] = None

    @property
    def started_at(self) -> Optional[datetime]:
        if self.start_timestamp is None:
            return None
        return datetime.fromisoformat(self.start_timestamp)


class SessionTimers:
    """
    Map of goal id to timer state.

    Elapsed time is always recomputed as ``now - start``, so a restart
    or a missed tick never loses time. State is written to a JSON file
    off the event loop when a path is configured.
    """

    def __init__(self, path: Optional[str] = None, clock: Optional[Clock] = None):
        self.path = Path(path) if path else None
        self.clock = clock or default_clock
        self.entries: dict[str, TimerEntry] = {}
        self._write_lock = asyncio.Lock()
        self._load()

    def _load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable timer state at %s", self.path)
            return
        self.entries = {goal_id: TimerEntry(**entry) for goal_id, entry in raw.items()}

    def _write(self, payload: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(payload, encoding="utf-8")

    async def _save(self) -> None:
        if self.path is None:
            return
        async with self._write_lock:
            payload = json.dumps({goal_id: asdict(entry) for goal_id, entry in self.entries.items()})
            try:
                await asyncio.to_thread(self._write, payload)
            except OSError:
                logger.warning("Could not persist timer state to %s", self.path, exc_info=True)

    def get(self, goal_id: str) -> TimerEntry:
        return self.entries.get(goal_id, TimerEntry())

    async def start(self, goal_id: str, started_at: datetime) -> TimerEntry:
        entry = self.entries.get(goal_id, TimerEntry())
        entry.running = True
        entry.start_timestamp = started_at.isoformat()
        entry.elapsed_seconds = max(0, int((self.clock.now() - started_at).total_seconds()))
        self.entries[goal_id] = entry
        await self._save()
        return entry

    async def stop(self, goal_id: str) -> None:
        """Drop the running state but keep a prefetched hint for display."""
        entry = self.entries.get(goal_id)
        if entry is None:
            return
        entry.running = False
        entry.start_timestamp = None
        entry.elapsed_seconds = 0
        if entry.pending_hint is None:
            del self.entries[goal_id]
        await self._save()

    async def set_pending_hint(self, goal_id: str, hint: Optional[str]) -> None:
        entry = self.entries.setdefault(goal_id, TimerEntry())
        entry.pending_hint = hint
        await self._save()

    async def take_pending_hint(self, goal_id: str) -> Optional[str]:
        entry = self.entries.get(goal_id)
        if entry is None or entry.pending_hint is None:
            return None
        hint = entry.pending_hint
        entry.pending_hint = None
        if not entry.running:
            del self.entries[goal_id]
        await self._save()
        return hint

    def tick(self, now: Optional[datetime] = None) -> None:
        """Recompute elapsed seconds for every running timer. Never does I/O."""
        now = now or self.clock.now()
        for entry in self.entries.values():
            started = entry.started_at
            if entry.running and started is not None:
                entry.elapsed_seconds = max(0, int((now - started).total_seconds()))

    async def run(self, interval: float) -> None:
        while True:
            self.tick()
            await asyncio.sleep(interval)


session_timers = SessionTimers(path=settings.timer_state_path or None)

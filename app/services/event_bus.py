"""In-process publish/subscribe channel for goal state changes."""
import asyncio
import logging
from collections import defaultdict
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class GoalEvent(str, Enum):
    GOAL_UPDATED = "goal_updated"
    PARTNER_UPDATED = "partner_updated"
    UNLOCKED = "unlocked"


class GoalEventBus:
    """Fan goal events out to per-goal subscriber queues."""

    def __init__(self, max_queue_size: int = 100):
        self.max_queue_size = max_queue_size
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)

    def subscribe(self, goal_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers[goal_id].add(queue)
        return queue

    def unsubscribe(self, goal_id: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(goal_id)
        if not queues:
            return
        queues.discard(queue)
        if not queues:
            del self._subscribers[goal_id]

    def subscriber_count(self, goal_id: str) -> int:
        return len(self._subscribers.get(goal_id, ()))

    def publish(self, goal_id: str, event: GoalEvent, payload: dict[str, Any]) -> int:
        """
        Deliver an event to everyone watching ``goal_id``.

        Slow subscribers whose queue is full miss the event rather than
        blocking the publisher.

        Returns:
            Number of queues the event was delivered to
        """
        message = {"event": event.value, "goal_id": goal_id, "data": payload}
        delivered = 0
        for queue in list(self._subscribers.get(goal_id, ())):
            try:
                queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("Dropping %s event for goal %s: subscriber queue full", event.value, goal_id)
        return delivered


goal_events = GoalEventBus()

"""
In-process event bus for negotiation progress.

WHAT: Fan-out of orchestrator events to SSE subscribers and tests
WHY: Delivery is best effort; no listener is not an error
HOW: One bounded asyncio.Queue per subscriber, put_nowait, drop on overflow
"""

import asyncio
from typing import Any, Literal, TypedDict

from ..utils.clock import utcnow
from ..utils.logger import get_logger

logger = get_logger(__name__)

EventType = Literal[
    "negotiation_started",
    "negotiation_status",
    "deal_found",
    "deal_completed",
    "negotiation_failed",
]


class NegotiationEvent(TypedDict):
    type: EventType
    session_id: str
    data: dict[str, Any]
    timestamp: str


class EventBus:
    """Publish/subscribe over asyncio queues; publish never blocks."""

    def __init__(self, max_queue_size: int = 100):
        self.max_queue_size = max_queue_size
        self._subscribers: set[asyncio.Queue] = set()
        self._history: list[NegotiationEvent] = []
        self._history_limit = 200

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers.add(queue)
        logger.debug(f"Event subscriber added ({len(self._subscribers)} total)")
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)
        logger.debug(f"Event subscriber removed ({len(self._subscribers)} total)")

    def publish(self, event_type: EventType, session_id: str, **data: Any) -> NegotiationEvent:
        """Deliver to every subscriber; full queues drop the event for that subscriber."""
        event: NegotiationEvent = {
            "type": event_type,
            "session_id": session_id,
            "data": data,
            "timestamp": utcnow().isoformat(),
        }
        self._history.append(event)
        if len(self._history) > self._history_limit:
            del self._history[: len(self._history) - self._history_limit]

        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"Event queue full; dropping {event_type} for one subscriber")

        logger.debug(f"Published {event_type} for session {session_id}")
        return event

    def recent(self, session_id: str | None = None) -> list[NegotiationEvent]:
        """Recently published events, optionally for one session."""
        if session_id is None:
            return list(self._history)
        return [e for e in self._history if e["session_id"] == session_id]

"""
SSE event stream endpoint.

WHAT: Server-Sent Events stream of negotiation progress
WHY: The extension UI shows live status and deal notifications
HOW: EventSourceResponse over an EventBus subscription, with heartbeats
"""

import asyncio
import json
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from ...deps import get_orchestrator
from ....core.config import settings
from ....core.orchestrator import SessionOrchestrator
from ....services.event_bus import EventBus
from ....utils.clock import utcnow
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


async def negotiation_event_generator(
    request: Request,
    bus: EventBus,
    session_id: Optional[str] = None,
    heartbeat_interval: float | None = None,
) -> AsyncIterator[dict]:
    """
    Generate SSE events from the bus.

    WHAT: Forward published events, optionally filtered to one session
    WHY: Idle connections need heartbeats so proxies keep them open
    HOW: Wait on the subscriber queue with a timeout; unsubscribe on exit

    Yields:
        SSE event dicts
    """
    interval = heartbeat_interval or settings.SSE_HEARTBEAT_INTERVAL
    queue = bus.subscribe()
    logger.info(f"SSE stream opened (session filter: {session_id or 'all'})")

    try:
        yield {
            "event": "connected",
            "data": json.dumps({
                "type": "connected",
                "session_id": session_id,
                "timestamp": utcnow().isoformat(),
            }),
        }

        while True:
            if await request.is_disconnected():
                break
            try:
                event = await asyncio.wait_for(queue.get(), timeout=interval)
            except asyncio.TimeoutError:
                yield {
                    "event": "heartbeat",
                    "data": json.dumps({"type": "heartbeat", "timestamp": utcnow().isoformat()}),
                }
                continue

            if session_id is not None and event["session_id"] != session_id:
                continue
            yield {
                "event": event["type"],
                "data": json.dumps(event, default=str),
            }
    finally:
        bus.unsubscribe(queue)
        logger.info(f"SSE stream closed (session filter: {session_id or 'all'})")


@router.get("/events")
async def stream_events(
    request: Request,
    session_id: Optional[str] = None,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    """
    Stream negotiation events.

    Pass `session_id` to receive only one session's events.
    """
    if session_id is not None:
        orchestrator.get_session(session_id)  # 404 for unknown ids
    return EventSourceResponse(negotiation_event_generator(request, orchestrator.events, session_id))

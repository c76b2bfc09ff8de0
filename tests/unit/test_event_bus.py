"""
Unit tests for the in-process event bus and SSE generator.

WHAT: Fan-out, overflow dropping, history and SSE framing
WHY: Publishing must never block or fail the round loop
HOW: Real asyncio queues; a stub request for the SSE generator
"""

import asyncio
import json

import pytest

from dealagent.api.v1.endpoints.events import negotiation_event_generator
from dealagent.services.event_bus import EventBus


class _StubRequest:
    def __init__(self):
        self.disconnected = False

    async def is_disconnected(self) -> bool:
        return self.disconnected


@pytest.mark.unit
class TestEventBus:

    @pytest.mark.asyncio
    async def test_publish_reaches_every_subscriber(self):
        bus = EventBus()
        first, second = bus.subscribe(), bus.subscribe()

        bus.publish("deal_found", "s1", final_price=80.0)

        for queue in (first, second):
            event = queue.get_nowait()
            assert event["type"] == "deal_found"
            assert event["session_id"] == "s1"
            assert event["data"] == {"final_price": 80.0}

    @pytest.mark.asyncio
    async def test_full_queue_drops_instead_of_blocking(self):
        bus = EventBus(max_queue_size=1)
        queue = bus.subscribe()
        bus.publish("negotiation_status", "s1", stage="a")
        bus.publish("negotiation_status", "s1", stage="b")
        assert queue.qsize() == 1
        assert queue.get_nowait()["data"]["stage"] == "a"

    def test_publish_without_subscribers(self):
        bus = EventBus()
        bus.publish("negotiation_started", "s1")
        bus.publish("negotiation_failed", "s2", reason="x")
        assert [e["session_id"] for e in bus.recent()] == ["s1", "s2"]
        assert len(bus.recent("s2")) == 1

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = EventBus()
        queue = bus.subscribe()
        bus.unsubscribe(queue)
        bus.publish("negotiation_started", "s1")
        assert bus.subscriber_count == 0
        assert queue.empty()


@pytest.mark.unit
class TestEventStream:

    @pytest.mark.asyncio
    async def test_stream_filters_by_session_and_unsubscribes(self):
        bus = EventBus()
        request = _StubRequest()
        stream = negotiation_event_generator(request, bus, session_id="s1", heartbeat_interval=1)

        connected = await stream.__anext__()
        assert connected["event"] == "connected"
        assert bus.subscriber_count == 1

        bus.publish("negotiation_status", "other", stage="x")
        bus.publish("deal_found", "s1", final_price=75.0)

        event = await asyncio.wait_for(stream.__anext__(), timeout=2)
        assert event["event"] == "deal_found"
        assert json.loads(event["data"])["data"]["final_price"] == 75.0

        await stream.aclose()
        assert bus.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_heartbeat_when_idle(self):
        bus = EventBus()
        stream = negotiation_event_generator(_StubRequest(), bus, heartbeat_interval=0.01)

        await stream.__anext__()
        heartbeat = await asyncio.wait_for(stream.__anext__(), timeout=2)
        assert heartbeat["event"] == "heartbeat"
        await stream.aclose()

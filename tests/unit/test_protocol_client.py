"""
Unit tests for the seller protocol client.

WHAT: Handshake, tool invocation, result unwrapping and failure mapping
WHY: Remote sellers are untrusted; failures must come back as results
HOW: A scripted MCP server wired to the client over in-memory streams
"""

import json
from contextlib import asynccontextmanager
from typing import Any, Dict

import anyio
import httpx
import pytest
from mcp import types
from mcp.server.lowlevel import Server
from mcp.shared.memory import create_client_server_memory_streams

from dealagent.protocol import (
    SellerProtocolClient,
    ProtocolConnectionError,
    ProtocolNotConnectedError,
)
from dealagent.protocol.client import sse_transport, unwrap_tool_result
from dealagent.protocol.types import MAKE_OFFER, BuyerContext, NegotiationParams, OfferParams
from dealagent.utils.parsing import Invalid, Parsed

ENDPOINT = "https://seller.test/mcp"


class ScriptedSeller:
    """MCP seller over memory streams: lists `tools` and answers scripted tool calls."""

    def __init__(self, tools=("initiateNegotiation", "makeOffer", "acceptDeal")):
        self.tools = list(tools)
        self.replies: Dict[str, Any] = {}
        self.delays: Dict[str, float] = {}
        self.calls: list = []
        self.headers: list = []
        self.server = Server("scripted-seller")

        @self.server.list_tools()
        async def list_tools() -> list[types.Tool]:
            return [types.Tool(name=t, description=t, inputSchema={"type": "object"}) for t in self.tools]

        @self.server.call_tool()
        async def call_tool(name: str, arguments: dict) -> list[types.TextContent]:
            self.calls.append((name, arguments))
            if name not in self.tools:
                raise ValueError(f"Unknown tool: {name}")
            if name in self.delays:
                await anyio.sleep(self.delays[name])
            reply = self.replies.get(name, {"ok": True})
            if isinstance(reply, Exception):
                raise reply
            text = reply if isinstance(reply, str) else json.dumps(reply)
            return [types.TextContent(type="text", text=text)]

    @asynccontextmanager
    async def transport(self, endpoint: str, headers: dict, timeout: float):
        self.headers.append(headers)
        async with create_client_server_memory_streams() as (client_streams, server_streams):
            async with anyio.create_task_group() as tg:
                tg.start_soon(self._serve, *server_streams)
                try:
                    yield client_streams
                finally:
                    tg.cancel_scope.cancel()

    async def _serve(self, read_stream, write_stream):
        await self.server.run(read_stream, write_stream, self.server.create_initialization_options())


@pytest.fixture
def seller():
    return ScriptedSeller()


@asynccontextmanager
async def connected(seller: ScriptedSeller, **kwargs):
    client = SellerProtocolClient(call_timeout=2, connect_timeout=2, transport=seller.transport, **kwargs)
    await client.connect(ENDPOINT, credential="secret")
    try:
        yield client
    finally:
        await client.disconnect()


@pytest.mark.unit
class TestConnection:

    @pytest.mark.asyncio
    async def test_handshake_loads_tools(self, seller):
        async with connected(seller) as client:
            assert client.is_connected
            assert client.list_capabilities() == ["initiateNegotiation", "makeOffer", "acceptDeal"]
            assert client.list_tools()[1].input_schema == {"type": "object"}
            assert client.connection_status().endpoint == ENDPOINT
        assert seller.headers == [{"Authorization": "Bearer secret"}]

    @pytest.mark.asyncio
    async def test_transport_failure_leaves_client_disconnected(self):
        @asynccontextmanager
        async def refusing(endpoint, headers, timeout):
            raise httpx.ConnectError("connection refused")
            yield

        protocol_client = SellerProtocolClient(connect_timeout=1, transport=refusing)
        with pytest.raises(ProtocolConnectionError, match="connection refused"):
            await protocol_client.connect(ENDPOINT)

        assert protocol_client.is_connected is False
        assert protocol_client.connection_status().tools == []

    @pytest.mark.asyncio
    async def test_sse_endpoint_rejecting_stream_is_connection_error(self, respx_mock):
        respx_mock.get(ENDPOINT).mock(return_value=httpx.Response(404))
        protocol_client = SellerProtocolClient(connect_timeout=1, transport=sse_transport)

        with pytest.raises(ProtocolConnectionError):
            await protocol_client.connect(ENDPOINT)
        assert protocol_client.is_connected is False

    @pytest.mark.asyncio
    async def test_calls_require_connection(self):
        protocol_client = SellerProtocolClient()
        with pytest.raises(ProtocolNotConnectedError):
            await protocol_client.invoke(MAKE_OFFER, {})
        with pytest.raises(ProtocolNotConnectedError):
            protocol_client.list_capabilities()
        with pytest.raises(ProtocolNotConnectedError):
            await protocol_client.reconnect()
        assert await protocol_client.ping() is False

    @pytest.mark.asyncio
    async def test_ping_reconnect_and_disconnect(self, seller):
        async with connected(seller) as client:
            assert await client.ping() is True
            await client.reconnect()
            assert client.is_connected
            await client.disconnect()
            await client.disconnect()
            assert client.is_connected is False
        assert len(seller.headers) == 2


@pytest.mark.unit
class TestInvocation:

    @pytest.mark.asyncio
    async def test_make_offer_sends_arguments_and_parses_text(self, seller):
        seller.replies["makeOffer"] = {"counterOffer": {"price": 88.0}}

        async with connected(seller) as client:
            response = await client.make_offer(
                OfferParams(session_id="s1", offer_type="price", price=80.0, message="Deal?")
            )

        assert response.success is True
        assert response.data == {"counterOffer": {"price": 88.0}}
        assert seller.calls[-1] == ("makeOffer", {
            "sessionId": "s1",
            "offerType": "price",
            "offerDetails": {"price": 80.0, "message": "Deal?"},
        })

    @pytest.mark.asyncio
    async def test_initiate_sends_buyer_context(self, seller):
        async with connected(seller) as client:
            await client.initiate_negotiation(NegotiationParams(
                session_id="s1",
                product_id="P1",
                buyer_context=BuyerContext(urgency="high", price_target=75.0),
            ))
        _, arguments = seller.calls[-1]
        assert arguments["buyerContext"]["priceTarget"] == 75.0
        assert arguments["buyerContext"]["urgency"] == "high"

    @pytest.mark.asyncio
    async def test_tool_error_is_failed_response(self, seller):
        seller.replies["acceptDeal"] = RuntimeError("Offer expired")
        async with connected(seller) as client:
            response = await client.accept_deal("s1", {"price": 80})
        assert response.success is False
        assert "Offer expired" in response.error

    @pytest.mark.asyncio
    async def test_plain_text_becomes_message(self, seller):
        seller.replies["makeOffer"] = "  Sorry, best I can do is $92 "
        async with connected(seller) as client:
            response = await client.invoke(MAKE_OFFER, {})
        assert response.data == {"message": "Sorry, best I can do is $92"}

    @pytest.mark.asyncio
    async def test_unknown_tool_is_failed_response(self, seller):
        async with connected(seller) as client:
            response = await client.invoke("haggle", {})
        assert response.success is False

    @pytest.mark.asyncio
    async def test_slow_tool_times_out_as_failed_response(self, seller):
        seller.delays["makeOffer"] = 5
        async with connected(seller) as client:
            client.call_timeout = 0.1
            response = await client.invoke(MAKE_OFFER, {})
            assert client.is_connected
        assert response.success is False
        assert response.error.startswith("makeOffer: ")

    @pytest.mark.asyncio
    async def test_unsupported_tool_is_not_called(self, seller):
        async with connected(seller) as client:
            response = await client.get_product_info("P1")
        assert response.success is False
        assert response.error == "Seller does not support getProductInfo"
        assert seller.calls == []

    @pytest.mark.asyncio
    async def test_batch_invoke_keeps_order(self, seller):
        seller.replies["makeOffer"] = {"tool": "makeOffer"}
        seller.replies["acceptDeal"] = {"tool": "acceptDeal"}
        async with connected(seller) as client:
            results = await client.batch_invoke([("acceptDeal", {}), ("makeOffer", {})])
        assert [r.data["tool"] for r in results] == ["acceptDeal", "makeOffer"]


def tool_result(*texts: str, is_error: bool = False, structured: dict | None = None) -> types.CallToolResult:
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=t) for t in texts],
        isError=is_error,
        structuredContent=structured,
    )


@pytest.mark.unit
class TestUnwrapToolResult:

    def test_json_object_text(self):
        assert unwrap_tool_result(tool_result('{"price": 5}')) == Parsed({"price": 5})

    def test_structured_content_without_text(self):
        assert unwrap_tool_result(tool_result(structured={"price": 5})) == Parsed({"price": 5})

    def test_non_object_json_is_wrapped(self):
        assert unwrap_tool_result(tool_result("[1, 2]")) == Parsed({"result": [1, 2]})

    def test_error_uses_first_text(self):
        assert unwrap_tool_result(tool_result("Sold out", "ignored", is_error=True)) == Invalid("Sold out")

    def test_error_without_text(self):
        assert unwrap_tool_result(tool_result(is_error=True)) == Invalid("Remote tool reported an error")

    def test_empty_result(self):
        assert unwrap_tool_result(tool_result()) == Parsed({})

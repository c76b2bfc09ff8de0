"""
Seller negotiation protocol client.

WHAT: Tool-invocation client for a seller's MCP negotiation server
WHY: Every remote call needs timeouts, result unwrapping and typed results
HOW: mcp.ClientSession over the SDK's SSE or streamable HTTP transport
"""

import asyncio
import json
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import timedelta
from typing import Any, AsyncContextManager, AsyncIterator, Callable

from mcp import ClientSession, McpError, types
from mcp.client.sse import sse_client
from mcp.client.streamable_http import streamablehttp_client

from .types import (
    ACCEPT_DEAL,
    CHECK_DEAL_STATUS,
    GET_PRODUCT_INFO,
    INITIATE_NEGOTIATION,
    MAKE_OFFER,
    ConnectionStatus,
    InfoType,
    NegotiationParams,
    OfferParams,
    ProtocolConnectionError,
    ProtocolNotConnectedError,
    ProtocolResponse,
    ToolInfo,
)
from ..core.config import settings
from ..utils.parsing import Invalid, Parsed, ParseResult
from ..utils.logger import get_logger

logger = get_logger(__name__)

CLIENT_INFO = types.Implementation(name="deal-agent", version=settings.APP_VERSION)

# (endpoint, headers, timeout seconds) -> context yielding (read_stream, write_stream)
Transport = Callable[[str, dict[str, str], float], AsyncContextManager[tuple[Any, Any]]]


@asynccontextmanager
async def sse_transport(endpoint: str, headers: dict[str, str], timeout: float) -> AsyncIterator[tuple[Any, Any]]:
    async with sse_client(endpoint, headers=headers, timeout=timeout) as (read_stream, write_stream):
        yield read_stream, write_stream


@asynccontextmanager
async def streamable_http_transport(
    endpoint: str, headers: dict[str, str], timeout: float
) -> AsyncIterator[tuple[Any, Any]]:
    async with streamablehttp_client(endpoint, headers=headers, timeout=timeout) as (read_stream, write_stream, _):
        yield read_stream, write_stream


TRANSPORTS: dict[str, Transport] = {
    "sse": sse_transport,
    "streamable_http": streamable_http_transport,
}


def unwrap_tool_result(result: types.CallToolResult) -> ParseResult[dict]:
    """
    Unwrap a tool call result.

    - isError -> Invalid(first text block)
    - first text block -> parsed JSON object, or {"message": text} if not JSON
    - structuredContent -> used as-is
    - nothing usable -> empty dict
    """
    text = next((block.text for block in result.content if isinstance(block, types.TextContent)), None)

    if result.isError:
        return Invalid(text or "Remote tool reported an error")

    if text is not None:
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            return Parsed({"message": text.strip()})
        return Parsed(data if isinstance(data, dict) else {"result": data})

    structured = getattr(result, "structuredContent", None)
    if isinstance(structured, dict):
        return Parsed(structured)

    return Parsed({})


def _describe(error: BaseException) -> str:
    """Readable cause, looking inside task-group exception groups."""
    while isinstance(error, BaseExceptionGroup) and error.exceptions:
        error = error.exceptions[0]
    if isinstance(error, McpError):
        return error.error.message
    return str(error) or type(error).__name__


class SellerProtocolClient:
    """
    One MCP session with one seller endpoint at a time.

    Remote problems never raise out of `invoke`; they come back as a failed
    ProtocolResponse. Calling tools while disconnected raises
    ProtocolNotConnectedError. The transport and session are entered and
    exited by the task that calls connect/disconnect.
    """

    def __init__(
        self,
        call_timeout: float | None = None,
        connect_timeout: float | None = None,
        transport: Transport | None = None,
    ):
        self.call_timeout = call_timeout if call_timeout is not None else settings.PROTOCOL_CALL_TIMEOUT
        self.connect_timeout = connect_timeout if connect_timeout is not None else settings.PROTOCOL_CONNECT_TIMEOUT
        self._transport = transport or TRANSPORTS[settings.PROTOCOL_TRANSPORT]
        self._stack: AsyncExitStack | None = None
        self._session: ClientSession | None = None
        self._endpoint: str | None = None
        self._credential: str | None = None
        self._tools: dict[str, ToolInfo] = {}

    @property
    def is_connected(self) -> bool:
        return self._session is not None and self._endpoint is not None

    # ========== Connection lifecycle ==========

    async def connect(self, endpoint: str, credential: str | None = None, timeout: float | None = None) -> None:
        """
        Open an MCP session with `endpoint` and load its tool list.

        Raises:
            ProtocolConnectionError: transport, handshake or tool listing failed
        """
        if self.is_connected and self._endpoint == endpoint:
            logger.debug(f"Already connected to {endpoint}")
            return
        if self.is_connected:
            await self.disconnect()

        timeout = timeout if timeout is not None else self.connect_timeout
        headers = {"Authorization": f"Bearer {credential}"} if credential else {}

        logger.info(f"Connecting to seller endpoint {endpoint}")
        stack = AsyncExitStack()
        try:
            read_stream, write_stream = await stack.enter_async_context(self._transport(endpoint, headers, timeout))
            session = await stack.enter_async_context(ClientSession(
                read_stream,
                write_stream,
                read_timeout_seconds=timedelta(seconds=timeout),
                client_info=CLIENT_INFO,
            ))
            await session.initialize()
            listing = await session.list_tools()
        except Exception as e:
            await self._close_stack(stack)
            logger.warning(f"Connection to {endpoint} failed: {_describe(e)}")
            raise ProtocolConnectionError(f"Failed to connect to {endpoint}: {_describe(e)}") from e

        self._stack = stack
        self._session = session
        self._endpoint = endpoint
        self._credential = credential
        self._tools = {
            tool.name: ToolInfo(
                name=tool.name,
                description=tool.description or "",
                input_schema=tool.inputSchema or {},
            )
            for tool in listing.tools
        }
        logger.info(f"Connected to {endpoint} (tools: {', '.join(self._tools) or 'none'})")

    async def disconnect(self) -> None:
        """Close the session; a no-op when not connected."""
        if not self.is_connected:
            return
        endpoint = self._endpoint
        stack = self._stack
        self._stack = None
        self._session = None
        self._endpoint = None
        self._tools = {}
        if stack is not None:
            await self._close_stack(stack)
        logger.info(f"Disconnected from {endpoint}")

    async def reconnect(self) -> None:
        """Drop and re-open the current connection."""
        if self._endpoint is None:
            raise ProtocolNotConnectedError("No previous endpoint to reconnect to")
        endpoint, credential = self._endpoint, self._credential
        await self.disconnect()
        await self.connect(endpoint, credential)

    async def ping(self) -> bool:
        """Health check via the session ping; False when disconnected or failing."""
        if not self.is_connected:
            return False
        try:
            await self._session.send_ping()
            return True
        except Exception as e:
            logger.warning(f"Seller ping failed: {_describe(e)}")
            return False

    def connection_status(self) -> ConnectionStatus:
        return ConnectionStatus(
            connected=self.is_connected,
            endpoint=self._endpoint,
            tools=list(self._tools),
        )

    # ========== Capabilities ==========

    def list_capabilities(self) -> list[str]:
        """Tool names the remote actually exposes."""
        self._ensure_connected()
        return list(self._tools)

    def list_tools(self) -> list[ToolInfo]:
        self._ensure_connected()
        return list(self._tools.values())

    def supports(self, tool: str) -> bool:
        return tool in self._tools

    # ========== Invocation ==========

    async def invoke(self, name: str, params: dict[str, Any] | None = None) -> ProtocolResponse:
        """
        Call a remote tool and unwrap its result.

        Raises:
            ProtocolNotConnectedError: no open connection
        """
        self._ensure_connected()
        try:
            result = await self._session.call_tool(
                name,
                params or {},
                read_timeout_seconds=timedelta(seconds=self.call_timeout),
            )
        except McpError as e:
            logger.warning(f"Tool {name} failed: {e.error.message}")
            return ProtocolResponse.failed(f"{name}: {e.error.message}")
        except Exception as e:
            logger.warning(f"Tool {name} transport failure: {_describe(e)}")
            return ProtocolResponse.failed(f"{name}: {_describe(e)}")

        unwrapped = unwrap_tool_result(result)
        if isinstance(unwrapped, Invalid):
            logger.warning(f"Tool {name} reported an error: {unwrapped.reason}")
            return ProtocolResponse.failed(unwrapped.reason)
        return ProtocolResponse.ok(unwrapped.value)

    async def batch_invoke(self, calls: list[tuple[str, dict[str, Any]]]) -> list[ProtocolResponse]:
        """Run several tool calls concurrently; results keep call order."""
        self._ensure_connected()
        results = await asyncio.gather(
            *(self.invoke(name, params) for name, params in calls),
            return_exceptions=True,
        )
        return [
            r if isinstance(r, ProtocolResponse) else ProtocolResponse.failed(str(r) or type(r).__name__)
            for r in results
        ]

    async def _call_supported(self, tool: str, params: dict[str, Any]) -> ProtocolResponse:
        self._ensure_connected()
        if not self.supports(tool):
            return ProtocolResponse.failed(f"Seller does not support {tool}")
        return await self.invoke(tool, params)

    async def initiate_negotiation(self, params: NegotiationParams) -> ProtocolResponse:
        logger.info(f"Initiating negotiation for session {params.session_id}")
        return await self._call_supported(INITIATE_NEGOTIATION, {
            "sessionId": params.session_id,
            "productId": params.product_id,
            "buyerContext": params.buyer_context.to_payload(),
        })

    async def make_offer(self, params: OfferParams) -> ProtocolResponse:
        logger.info(f"Making {params.offer_type} offer for session {params.session_id}: {params.details()}")
        return await self._call_supported(MAKE_OFFER, {
            "sessionId": params.session_id,
            "offerType": params.offer_type,
            "offerDetails": params.details(),
        })

    async def get_product_info(self, product_id: str, info_type: InfoType = "basic") -> ProtocolResponse:
        return await self._call_supported(GET_PRODUCT_INFO, {"productId": product_id, "infoType": info_type})

    async def check_deal_status(self, session_id: str) -> ProtocolResponse:
        return await self._call_supported(CHECK_DEAL_STATUS, {"sessionId": session_id})

    async def accept_deal(self, session_id: str, final_terms: dict[str, Any]) -> ProtocolResponse:
        logger.info(f"Accepting deal for session {session_id}")
        return await self._call_supported(ACCEPT_DEAL, {"sessionId": session_id, "finalTerms": final_terms})

    def _ensure_connected(self) -> None:
        if not self.is_connected:
            raise ProtocolNotConnectedError("Seller client is not connected. Call connect() first.")

    @staticmethod
    async def _close_stack(stack: AsyncExitStack) -> None:
        try:
            await stack.aclose()
        except Exception as e:
            logger.warning(f"Error while closing seller session: {_describe(e)}")

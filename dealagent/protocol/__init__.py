"""Seller negotiation protocol layer."""

from .types import (
    ACCEPT_DEAL,
    CHECK_DEAL_STATUS,
    GET_PRODUCT_INFO,
    INITIATE_NEGOTIATION,
    MAKE_OFFER,
    BuyerContext,
    ConnectionStatus,
    NegotiationParams,
    OfferParams,
    ProtocolConnectionError,
    ProtocolError,
    ProtocolNotConnectedError,
    ProtocolResponse,
    ToolInfo,
)
from .client import SellerProtocolClient, unwrap_tool_result

__all__ = [
    "ACCEPT_DEAL",
    "CHECK_DEAL_STATUS",
    "GET_PRODUCT_INFO",
    "INITIATE_NEGOTIATION",
    "MAKE_OFFER",
    "BuyerContext",
    "ConnectionStatus",
    "NegotiationParams",
    "OfferParams",
    "ProtocolConnectionError",
    "ProtocolError",
    "ProtocolNotConnectedError",
    "ProtocolResponse",
    "ToolInfo",
    "SellerProtocolClient",
    "unwrap_tool_result",
]

"""
Seller protocol types, dataclasses, and exceptions.

WHAT: Typed requests/responses for remote negotiation tools
WHY: Keep the orchestrator independent of the MCP SDK types
HOW: Dataclasses for results/params, custom exceptions for logical errors
"""

from dataclasses import dataclass, field
from typing import Any, Literal


# Remote tool names exposed by seller servers
INITIATE_NEGOTIATION = "initiateNegotiation"
MAKE_OFFER = "makeOffer"
GET_PRODUCT_INFO = "getProductInfo"
CHECK_DEAL_STATUS = "checkDealStatus"
ACCEPT_DEAL = "acceptDeal"

NEGOTIATION_TOOLS = (
    INITIATE_NEGOTIATION,
    MAKE_OFFER,
    GET_PRODUCT_INFO,
    CHECK_DEAL_STATUS,
    ACCEPT_DEAL,
)

OfferType = Literal["price", "bundle", "quantity"]
InfoType = Literal["basic", "detailed", "comparisons"]


@dataclass
class ProtocolResponse:
    """Outcome of one remote tool call; `data` is always a dict on success."""
    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @classmethod
    def ok(cls, data: dict[str, Any]) -> "ProtocolResponse":
        return cls(success=True, data=data)

    @classmethod
    def failed(cls, error: str) -> "ProtocolResponse":
        return cls(success=False, error=error)


@dataclass
class ToolInfo:
    """Tool advertised by the remote `tools/list`."""
    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)


@dataclass
class BuyerContext:
    """What the seller is told about the buyer when negotiation opens."""
    urgency: Literal["low", "medium", "high"] = "medium"
    price_target: float | None = None
    quantity: int = 1
    interests: list[str] = field(default_factory=list)
    preferences: dict[str, Any] | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "urgency": self.urgency,
            "quantity": self.quantity,
            "interests": self.interests,
        }
        if self.price_target is not None:
            payload["priceTarget"] = self.price_target
        if self.preferences is not None:
            payload["preferences"] = self.preferences
        return payload


@dataclass
class NegotiationParams:
    session_id: str
    product_id: str
    buyer_context: BuyerContext = field(default_factory=BuyerContext)


@dataclass
class OfferParams:
    session_id: str
    offer_type: OfferType
    price: float | None = None
    quantity: int | None = None
    bundle_items: list[str] | None = None
    message: str | None = None

    def details(self) -> dict[str, Any]:
        details: dict[str, Any] = {}
        if self.price is not None:
            details["price"] = self.price
        if self.quantity is not None:
            details["quantity"] = self.quantity
        if self.bundle_items:
            details["bundleItems"] = self.bundle_items
        if self.message:
            details["message"] = self.message
        return details


@dataclass
class ConnectionStatus:
    connected: bool
    endpoint: str | None = None
    tools: list[str] = field(default_factory=list)


# Protocol exceptions
class ProtocolError(Exception):
    """Base class for seller protocol errors."""
    pass


class ProtocolConnectionError(ProtocolError):
    """Could not establish a session with the seller endpoint."""
    pass


class ProtocolNotConnectedError(ProtocolError):
    """Operation attempted without an open connection."""
    pass

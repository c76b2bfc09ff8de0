"""
Pydantic API schemas for negotiation endpoints.

WHAT: Request and response models for FastAPI
WHY: Type-safe validation and a stable projection of session internals
HOW: Pydantic v2 models with validators and constraints
"""

from typing import Optional, List, Dict, Literal, Any
from pydantic import BaseModel, Field
from datetime import datetime

from .negotiation import (
    DealSource,
    NegotiationSession,
    NegotiationStep,
    SessionStatus,
)


CoarseDealStatus = Literal["negotiating", "waiting_seller", "your_turn", "deal_ready"]
DealAction = Literal["accept", "reject", "counter"]


# ========== Negotiation Requests ==========

class CreateNegotiationResponse(BaseModel):
    """Returned synchronously when a trigger is accepted."""
    session_id: str
    status: SessionStatus


class RejectRequest(BaseModel):
    reason: str = Field(default="Rejected by user", min_length=1, max_length=500)


class DealActionRequest(BaseModel):
    action: DealAction


class DealActionResponse(BaseModel):
    session_id: str
    action: DealAction
    status: SessionStatus
    checkout: Optional["CheckoutInfo"] = None


# ========== Deals ==========

class ActiveDeal(BaseModel):
    """Read-only projection of a visible session for the deals list."""
    session_id: str
    product_id: str
    product_name: str
    product_image: Optional[str] = None
    product_url: str
    original_price: float
    current_offer_price: float
    currency: str = "USD"
    seller: str
    status: CoarseDealStatus
    rounds: int = Field(ge=0)
    last_update: datetime
    deal_source: Optional[DealSource] = None


class CheckoutInfo(BaseModel):
    """What the buyer needs to redeem an accepted deal."""
    session_id: str
    discount_code: str
    final_price: float
    savings: float = Field(ge=0)
    currency: str = "USD"
    valid_until: datetime
    checkout_url: str
    deal_source: DealSource


# ========== Session Detail ==========

class NegotiationLogResponse(BaseModel):
    session_id: str
    status: SessionStatus
    rounds: int
    steps: List[NegotiationStep]


class SessionImportRequest(BaseModel):
    sessions: List[NegotiationSession] = Field(..., min_length=1)


class SessionImportResponse(BaseModel):
    imported: int
    restored_active: int


class SessionExportResponse(BaseModel):
    exported_at: datetime
    count: int
    sessions: List[NegotiationSession]


# ========== Status ==========

class ComponentStatus(BaseModel):
    available: bool
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    status: Literal["healthy", "degraded"]
    app_name: str
    version: str
    timestamp: datetime
    database: ComponentStatus
    llm: ComponentStatus
    discovery: ComponentStatus
    active_sessions: int


class LLMStatusResponse(BaseModel):
    provider: str
    available: bool
    base_url: str
    models: Optional[List[str]] = None
    error: Optional[str] = None


# ========== Error Response ==========

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: Dict[str, Any]

    class Config:
        json_schema_extra = {
            "example": {
                "error": {
                    "code": "SESSION_NOT_FOUND",
                    "message": "Session not found: 0b8e...",
                    "details": {"session_id": "0b8e..."},
                    "timestamp": "2024-01-01T00:00:00Z"
                }
            }
        }


DealActionResponse.model_rebuild()

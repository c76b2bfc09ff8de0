"""
Negotiation domain models.

WHAT: Core data structures for sessions, steps, offers and preferences
WHY: Consistent typing across orchestrator, store, engine and API
HOW: Pydantic v2 models; datetimes are naive UTC
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from .seller import SellerEndpoint
from ..utils.clock import utcnow


class SessionStatus(str, Enum):
    """Session lifecycle: pending -> active -> completed | failed."""
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.FAILED)


class DealSource(str, Enum):
    """Where a completed deal came from."""
    NEGOTIATED = "negotiated"
    SIMULATED = "simulated"


StepAction = Literal["analyze", "offer", "counter", "accept", "reject"]
StepProvenance = Literal["negotiated", "fallback"]
Strategy = Literal["aggressive", "balanced", "conservative", "custom"]


class ProductRef(BaseModel):
    """Product snapshot taken when the session is created."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    price: float = Field(gt=0)
    currency: str = "USD"
    seller: str = ""
    url: str = ""
    image: str | None = None
    category: str | None = None


class BehaviorSignal(BaseModel):
    """Passive interest signal; strategy input only."""
    interest_score: float = Field(default=0.0, ge=0.0, le=1.0)
    dwell_time: float = Field(default=0.0, ge=0.0, description="Seconds spent viewing")
    price_checks: int = Field(default=0, ge=0)
    add_to_cart_attempts: int = Field(default=0, ge=0)


class NegotiationOptions(BaseModel):
    """Extra levers the buyer is open to."""
    open_to_bundle: bool = False
    interested_in_warranty: bool = False
    willing_to_buy_multiple: bool = False
    flexible_payment: bool = False


class NegotiationPreferences(BaseModel):
    """Explicit user instructions; override strategy inference."""
    desired_discount: float = Field(default=15.0, ge=0.0, le=100.0, description="Percent")
    max_price: float | None = Field(default=None, gt=0)
    strategy: Strategy = "balanced"
    custom_requirements: str | None = None
    options: NegotiationOptions = Field(default_factory=NegotiationOptions)


class NegotiationStep(BaseModel):
    """One append-only log entry. Round 0 is pre-negotiation analysis."""
    round: int = Field(ge=0)
    action: StepAction
    details: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
    reasoning: str | None = None
    provenance: StepProvenance = "negotiated"


class CurrentOffer(BaseModel):
    """Latest agreed-or-proposed terms."""
    price: float = Field(ge=0)
    currency: str = "USD"
    rounds: int = Field(default=0, ge=0)
    terms: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


class NegotiationSession(BaseModel):
    """The unit of work: one attempt to negotiate one product."""
    session_id: str = Field(default_factory=lambda: str(uuid4()))
    product_id: str
    product: ProductRef
    behavior: BehaviorSignal = Field(default_factory=BehaviorSignal)
    preferences: NegotiationPreferences | None = None
    manual: bool = False
    status: SessionStatus = SessionStatus.PENDING
    seller_endpoint: SellerEndpoint | None = None
    current_offer: CurrentOffer | None = None
    negotiation_log: list[NegotiationStep] = Field(default_factory=list)
    deal_source: DealSource | None = None
    failure_reason: str | None = None
    attempt: int = Field(default=1, ge=1)
    start_time: datetime = Field(default_factory=utcnow)
    last_update: datetime = Field(default_factory=utcnow)
    expires_at: datetime

    @classmethod
    def create(
        cls,
        product: ProductRef,
        behavior: BehaviorSignal | None = None,
        preferences: NegotiationPreferences | None = None,
        *,
        manual: bool = False,
        ttl_days: int = 7,
    ) -> "NegotiationSession":
        """Build a fresh pending session with expiry fixed from start time."""
        now = utcnow()
        return cls(
            product_id=product.id,
            product=product,
            behavior=behavior or BehaviorSignal(),
            preferences=preferences,
            manual=manual,
            start_time=now,
            last_update=now,
            expires_at=now + timedelta(days=ttl_days),
        )

    @property
    def rounds_completed(self) -> int:
        """Highest round recorded in the log; the displayed round count."""
        return max((step.round for step in self.negotiation_log), default=0)

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at <= (now or utcnow())

    def append_step(self, step: NegotiationStep) -> None:
        """Append a log entry, keeping round numbers non-decreasing."""
        if self.negotiation_log and step.round < self.negotiation_log[-1].round:
            raise ValueError(
                f"Step round {step.round} precedes last logged round {self.negotiation_log[-1].round}"
            )
        self.negotiation_log.append(step)


class SessionStats(BaseModel):
    """Aggregates over non-expired sessions."""
    total_sessions: int = 0
    active_sessions: int = 0
    completed_sessions: int = 0
    failed_sessions: int = 0
    success_rate: float = 0.0
    average_negotiation_seconds: float = 0.0
    total_savings: float = 0.0
    simulated_deals: int = 0


class SessionTrigger(BaseModel):
    """Input that starts a negotiation (explicit action or interest signal)."""
    product: ProductRef
    behavior: BehaviorSignal = Field(default_factory=BehaviorSignal)
    preferences: NegotiationPreferences | None = None
    manual: bool = False

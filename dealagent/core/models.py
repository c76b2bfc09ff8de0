"""
ORM models for negotiation session persistence.

WHAT: SQLAlchemy models for sessions and their step logs
WHY: Sessions must survive restarts and be queryable by status and expiry
HOW: Declarative models with constraints, relationships, and indexes
"""

from sqlalchemy import (
    Column, Integer, String, Float, Boolean, DateTime, Text, JSON,
    ForeignKey, CheckConstraint, UniqueConstraint, Index, Enum as SQLEnum
)
from sqlalchemy.orm import relationship

from .database import Base
from ..models.negotiation import SessionStatus, DealSource


class NegotiationSessionRecord(Base):
    """
    Negotiation session table - one row per session id.

    WHAT: Whole-record snapshot of a NegotiationSession
    WHY: Saves are full overwrites keyed by session_id
    HOW: Nested value objects stored as JSON, lifecycle fields as columns
    """
    __tablename__ = "negotiation_sessions"

    session_id = Column(String(36), primary_key=True)
    product_id = Column(String(200), nullable=False)
    product = Column(JSON, nullable=False)
    original_price = Column(Float, nullable=False)
    behavior = Column(JSON, nullable=False)
    preferences = Column(JSON, nullable=True)
    manual = Column(Boolean, nullable=False, default=False)
    status = Column(SQLEnum(SessionStatus), nullable=False, default=SessionStatus.PENDING)
    seller_endpoint = Column(JSON, nullable=True)
    current_offer = Column(JSON, nullable=True)
    deal_source = Column(SQLEnum(DealSource), nullable=True)
    failure_reason = Column(Text, nullable=True)
    attempt = Column(Integer, nullable=False, default=1)
    start_time = Column(DateTime, nullable=False)
    last_update = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    __table_args__ = (
        CheckConstraint("original_price > 0", name="check_original_price_positive"),
        CheckConstraint("attempt >= 1", name="check_attempt_positive"),
        Index("idx_sessions_product", "product_id"),
        Index("idx_sessions_status", "status"),
        Index("idx_sessions_expires_at", "expires_at"),
        Index("idx_sessions_status_expires", "status", "expires_at"),
    )

    # Relationships
    steps = relationship(
        "NegotiationStepRecord",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="NegotiationStepRecord.position",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<NegotiationSessionRecord(session_id={self.session_id}, status={self.status})>"


class NegotiationStepRecord(Base):
    """
    Negotiation step table - append-only log entries.

    WHAT: One decision/action entry in a session's negotiation log
    WHY: Audit trail and round derivation for the UI
    HOW: Foreign key to session with CASCADE delete, ordered by position
    """
    __tablename__ = "negotiation_steps"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(
        String(36),
        ForeignKey("negotiation_sessions.session_id", ondelete="CASCADE"),
        nullable=False
    )
    position = Column(Integer, nullable=False)
    round = Column(Integer, nullable=False)
    action = Column(String(20), nullable=False)
    details = Column(JSON, nullable=False, default=dict)
    reasoning = Column(Text, nullable=True)
    provenance = Column(String(20), nullable=False, default="negotiated")
    timestamp = Column(DateTime, nullable=False)

    __table_args__ = (
        CheckConstraint("round >= 0", name="check_round_non_negative"),
        CheckConstraint(
            "action IN ('analyze', 'offer', 'counter', 'accept', 'reject')",
            name="check_step_action"
        ),
        CheckConstraint(
            "provenance IN ('negotiated', 'fallback')",
            name="check_step_provenance"
        ),
        UniqueConstraint("session_id", "position", name="uq_step_position"),
        Index("idx_steps_session", "session_id", "position"),
    )

    # Relationships
    session = relationship("NegotiationSessionRecord", back_populates="steps")

    def __repr__(self):
        return f"<NegotiationStepRecord(session={self.session_id}, round={self.round}, action={self.action})>"

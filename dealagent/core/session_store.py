"""
Durable session store.

WHAT: Save/load negotiation sessions with their step logs
WHY: The store is the single source of truth; the orchestrator cache is rebuilt from it
HOW: SQLAlchemy sync ORM, whole-record upserts, SQLAlchemyError -> SessionPersistenceError
"""

from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import select, func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .database import get_engine, init_db, make_session_factory, session_scope
from .models import NegotiationSessionRecord, NegotiationStepRecord
from ..models.negotiation import (
    NegotiationSession,
    NegotiationStep,
    SessionStats,
    SessionStatus,
    DealSource,
)
from ..utils.clock import utcnow
from ..utils.exceptions import SessionPersistenceError
from ..utils.offers import compute_savings
from ..utils.logger import get_logger

logger = get_logger(__name__)

OPEN_STATUSES = (SessionStatus.PENDING, SessionStatus.ACTIVE)


class SessionStore:
    """
    Persistence for NegotiationSession aggregates.

    `get` returns None for unknown ids; every other database problem is
    raised as SessionPersistenceError so the caller decides the session's fate.
    """

    def __init__(self, engine: Engine | None = None):
        self.engine = engine or get_engine()
        self._factory = make_session_factory(self.engine)

    def initialize(self) -> None:
        """Create tables if missing."""
        try:
            init_db(self.engine)
        except SQLAlchemyError as e:
            raise self._failure("initialize", e)

    # ========== Writes ==========

    def save(self, session: NegotiationSession) -> None:
        """
        Idempotent upsert keyed by session_id.

        The row and its complete step log are overwritten in one transaction.
        """
        try:
            with session_scope(self._factory) as db:
                record = db.get(NegotiationSessionRecord, session.session_id)
                if record is None:
                    record = NegotiationSessionRecord(session_id=session.session_id)
                    db.add(record)
                _apply(record, session)

                # Drop old steps before inserting to keep (session_id, position) unique
                record.steps.clear()
                db.flush()
                record.steps.extend(
                    _step_record(session.session_id, position, step)
                    for position, step in enumerate(session.negotiation_log)
                )
        except SQLAlchemyError as e:
            raise self._failure(f"save({session.session_id})", e)

        logger.debug(
            f"Saved session {session.session_id} "
            f"(status={session.status.value}, steps={len(session.negotiation_log)})"
        )

    def delete(self, session_id: str) -> bool:
        """Delete one session; returns False if it did not exist."""
        try:
            with session_scope(self._factory) as db:
                record = db.get(NegotiationSessionRecord, session_id)
                if record is None:
                    return False
                db.delete(record)
        except SQLAlchemyError as e:
            raise self._failure(f"delete({session_id})", e)
        logger.info(f"Deleted session {session_id}")
        return True

    def delete_expired(self, preserve_completed: bool = False, now: datetime | None = None) -> int:
        """
        Remove sessions whose expires_at has passed, oldest expiry first.

        Args:
            preserve_completed: Keep completed sessions (deal history)
            now: Reference time (defaults to current UTC)

        Returns:
            Number of sessions deleted
        """
        cutoff = now or utcnow()
        stmt = (
            select(NegotiationSessionRecord)
            .where(NegotiationSessionRecord.expires_at <= cutoff)
            .order_by(NegotiationSessionRecord.expires_at)
        )
        if preserve_completed:
            stmt = stmt.where(NegotiationSessionRecord.status != SessionStatus.COMPLETED)

        deleted = 0
        try:
            with session_scope(self._factory) as db:
                for record in db.scalars(stmt).all():
                    logger.debug(f"Deleting expired session {record.session_id} (expired {record.expires_at})")
                    db.delete(record)
                    deleted += 1
        except SQLAlchemyError as e:
            raise self._failure("delete_expired", e)

        if deleted:
            logger.info(f"Expired session cleanup removed {deleted} sessions")
        return deleted

    def import_sessions(self, sessions: Iterable[NegotiationSession]) -> int:
        """Upsert each session; returns the count written."""
        count = 0
        for session in sessions:
            self.save(session)
            count += 1
        logger.info(f"Imported {count} sessions")
        return count

    def clear_all(self) -> int:
        """Delete every session. Returns the number removed."""
        try:
            with session_scope(self._factory) as db:
                records = db.scalars(select(NegotiationSessionRecord)).all()
                for record in records:
                    db.delete(record)
                count = len(records)
        except SQLAlchemyError as e:
            raise self._failure("clear_all", e)
        logger.warning(f"Cleared all sessions ({count} removed)")
        return count

    # ========== Reads ==========

    def get(self, session_id: str) -> Optional[NegotiationSession]:
        """Load a session, or None when the id is unknown."""
        try:
            with session_scope(self._factory) as db:
                record = db.get(NegotiationSessionRecord, session_id)
                return _to_domain(record) if record is not None else None
        except SQLAlchemyError as e:
            raise self._failure(f"get({session_id})", e)

    def list_active(self, now: datetime | None = None) -> List[NegotiationSession]:
        """Pending/active sessions whose expiry is still in the future."""
        cutoff = now or utcnow()
        stmt = (
            select(NegotiationSessionRecord)
            .where(NegotiationSessionRecord.status.in_(OPEN_STATUSES))
            .where(NegotiationSessionRecord.expires_at > cutoff)
            .order_by(NegotiationSessionRecord.start_time)
        )
        return self._select(stmt, "list_active")

    def list_by_product(self, product_id: str) -> List[NegotiationSession]:
        """All sessions for a product, newest first."""
        stmt = (
            select(NegotiationSessionRecord)
            .where(NegotiationSessionRecord.product_id == product_id)
            .order_by(NegotiationSessionRecord.start_time.desc())
        )
        return self._select(stmt, f"list_by_product({product_id})")

    def list_visible(self, now: datetime | None = None) -> List[NegotiationSession]:
        """Every non-expired session regardless of status."""
        cutoff = now or utcnow()
        stmt = (
            select(NegotiationSessionRecord)
            .where(NegotiationSessionRecord.expires_at > cutoff)
            .order_by(NegotiationSessionRecord.start_time)
        )
        return self._select(stmt, "list_visible")

    def export_sessions(self) -> List[NegotiationSession]:
        """Every stored session, expired ones included."""
        stmt = select(NegotiationSessionRecord).order_by(NegotiationSessionRecord.start_time)
        return self._select(stmt, "export_sessions")

    def count(self) -> int:
        try:
            with session_scope(self._factory) as db:
                return db.scalar(select(func.count()).select_from(NegotiationSessionRecord)) or 0
        except SQLAlchemyError as e:
            raise self._failure("count", e)

    def recompute_stats(self, now: datetime | None = None) -> SessionStats:
        """
        Aggregate statistics over non-expired sessions.

        - success_rate = completed / total (0 when there are no sessions)
        - average duration over completed sessions, in seconds
        - total savings over completed sessions with an offer, floored at 0 each
        """
        sessions = self.list_visible(now)
        total = len(sessions)
        active = [s for s in sessions if s.status in OPEN_STATUSES]
        completed = [s for s in sessions if s.status == SessionStatus.COMPLETED]
        failed = [s for s in sessions if s.status == SessionStatus.FAILED]

        timed = [s for s in completed if s.start_time and s.last_update]
        average_seconds = (
            sum((s.last_update - s.start_time).total_seconds() for s in timed) / len(timed)
            if timed else 0.0
        )

        total_savings = sum(
            compute_savings(s.product.price, s.current_offer.price)
            for s in completed
            if s.current_offer is not None
        )

        return SessionStats(
            total_sessions=total,
            active_sessions=len(active),
            completed_sessions=len(completed),
            failed_sessions=len(failed),
            success_rate=(len(completed) / total) if total else 0.0,
            average_negotiation_seconds=average_seconds,
            total_savings=round(total_savings, 2),
            simulated_deals=sum(1 for s in completed if s.deal_source == DealSource.SIMULATED),
        )

    # ========== Helpers ==========

    def _select(self, stmt, operation: str) -> List[NegotiationSession]:
        try:
            with session_scope(self._factory) as db:
                return [_to_domain(record) for record in db.scalars(stmt)]
        except SQLAlchemyError as e:
            raise self._failure(operation, e)

    @staticmethod
    def _failure(operation: str, error: SQLAlchemyError) -> SessionPersistenceError:
        logger.error(f"Session store {operation} failed: {error}")
        return SessionPersistenceError(operation, error)


def _apply(record: NegotiationSessionRecord, session: NegotiationSession) -> None:
    """Copy every session field onto the ORM row."""
    record.product_id = session.product_id
    record.product = session.product.model_dump(mode="json")
    record.original_price = session.product.price
    record.behavior = session.behavior.model_dump(mode="json")
    record.preferences = session.preferences.model_dump(mode="json") if session.preferences else None
    record.manual = session.manual
    record.status = session.status
    record.seller_endpoint = (
        session.seller_endpoint.model_dump(mode="json") if session.seller_endpoint else None
    )
    record.current_offer = (
        session.current_offer.model_dump(mode="json") if session.current_offer else None
    )
    record.deal_source = session.deal_source
    record.failure_reason = session.failure_reason
    record.attempt = session.attempt
    record.start_time = session.start_time
    record.last_update = session.last_update
    record.expires_at = session.expires_at


def _step_record(session_id: str, position: int, step: NegotiationStep) -> NegotiationStepRecord:
    dumped = step.model_dump(mode="json")
    return NegotiationStepRecord(
        session_id=session_id,
        position=position,
        round=step.round,
        action=step.action,
        details=dumped["details"],
        reasoning=step.reasoning,
        provenance=step.provenance,
        timestamp=step.timestamp,
    )


def _to_domain(record: NegotiationSessionRecord) -> NegotiationSession:
    """Rebuild the pydantic aggregate; JSON fields re-validate into typed models."""
    return NegotiationSession.model_validate({
        "session_id": record.session_id,
        "product_id": record.product_id,
        "product": record.product,
        "behavior": record.behavior,
        "preferences": record.preferences,
        "manual": record.manual,
        "status": record.status,
        "seller_endpoint": record.seller_endpoint,
        "current_offer": record.current_offer,
        "negotiation_log": [
            {
                "round": step.round,
                "action": step.action,
                "details": step.details or {},
                "timestamp": step.timestamp,
                "reasoning": step.reasoning,
                "provenance": step.provenance,
            }
            for step in record.steps
        ],
        "deal_source": record.deal_source,
        "failure_reason": record.failure_reason,
        "attempt": record.attempt,
        "start_time": record.start_time,
        "last_update": record.last_update,
        "expires_at": record.expires_at,
    })

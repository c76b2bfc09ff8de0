"""
Negotiation session orchestrator.

WHAT: Owns the session state machine and drives one round loop per session
WHY: Only the orchestrator decides a session's fate; lower layers report outcomes
HOW: Detached asyncio tasks, store-first commits with a last-writer status check
"""

import asyncio
import math
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from .config import settings
from .session_store import SessionStore
from ..models.api_schemas import ActiveDeal, CheckoutInfo, CoarseDealStatus, DealAction
from ..models.negotiation import (
    CurrentOffer,
    DealSource,
    NegotiationSession,
    NegotiationStep,
    SessionStats,
    SessionStatus,
    SessionTrigger,
)
from ..models.seller import SellerEndpoint, SellerSearchCriteria
from ..protocol.client import SellerProtocolClient
from ..protocol.types import (
    GET_PRODUCT_INFO,
    INITIATE_NEGOTIATION,
    BuyerContext,
    NegotiationParams,
    OfferParams,
    ProtocolConnectionError,
)
from ..services.decision_engine import DecisionEngine, NegotiationContext, NextAction, OfferDecision
from ..services.event_bus import EventBus
from ..services.seller_discovery import (
    NoSellersFound,
    SellerDiscoveryClient,
    SellersFound,
    simplify_category,
)
from ..services.simulation import fallback_step, simulate_outcome
from ..utils.clock import utcnow
from ..utils.exceptions import (
    DealNotReadyException,
    InvalidSessionTransitionException,
    NegotiationAlreadyActiveException,
    SessionNotFoundException,
    SessionPersistenceError,
    ValidationException,
)
from ..utils.offers import coerce_offer, compute_savings, discount_percent, offer_price
from ..utils.logger import get_logger

logger = get_logger(__name__)

SEARCH_PRICE_HEADROOM = 1.2  # x listed price
DEFAULT_TARGET_RATIO = 0.85  # x listed price


class _AttemptSuperseded(Exception):
    """The persisted session moved on (user reject, retry, sweep); drop this attempt's writes."""


class SessionOrchestrator:
    """
    Explicit owner of all negotiation sessions in this process.

    The store is the source of truth. `_sessions` is a cache written only
    after a successful save; `_tasks` holds at most one round-loop task per
    session id.
    """

    def __init__(
        self,
        store: SessionStore,
        discovery: SellerDiscoveryClient,
        decision_engine: DecisionEngine,
        event_bus: EventBus | None = None,
        client_factory: Callable[[], SellerProtocolClient] | None = None,
        *,
        max_rounds: int | None = None,
        inter_round_delay: float | None = None,
        session_ttl_days: int | None = None,
        fallback_discount: float | None = None,
        checkout_valid_hours: int | None = None,
        sweep_interval_seconds: float | None = None,
    ):
        self.store = store
        self.discovery = discovery
        self.engine = decision_engine
        self.events = event_bus or EventBus()
        self.client_factory = client_factory or SellerProtocolClient

        self.max_rounds = max_rounds or settings.MAX_NEGOTIATION_ROUNDS
        self.inter_round_delay = (
            inter_round_delay if inter_round_delay is not None else settings.INTER_ROUND_DELAY_SECONDS
        )
        self.session_ttl_days = session_ttl_days or settings.SESSION_TTL_DAYS
        self.fallback_discount = (
            fallback_discount if fallback_discount is not None else settings.FALLBACK_DISCOUNT_PERCENT
        )
        self.checkout_valid_hours = checkout_valid_hours or settings.CHECKOUT_VALID_HOURS
        self.sweep_interval = (
            sweep_interval_seconds if sweep_interval_seconds is not None
            else settings.SESSION_CLEANUP_INTERVAL_MINUTES * 60
        )

        self._sessions: Dict[str, NegotiationSession] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._sweep_task: asyncio.Task | None = None

    # ========== Public operations ==========

    async def create_session(self, trigger: SessionTrigger, start: bool = True) -> str:
        """
        Persist a pending session and (by default) launch its round loop.

        Returns immediately with the session id; progress is reported via events.
        """
        session = NegotiationSession.create(
            trigger.product,
            trigger.behavior,
            trigger.preferences,
            manual=trigger.manual,
            ttl_days=self.session_ttl_days,
        )
        self.store.save(session)
        self._cache(session)
        logger.info(
            f"Created session {session.session_id} for product {session.product_id} "
            f"({'manual' if session.manual else 'behavior'} trigger)"
        )
        self.events.publish(
            "negotiation_started",
            session.session_id,
            product_id=session.product_id,
            product_name=session.product.name,
            manual=session.manual,
            attempt=session.attempt,
        )
        if start:
            self._launch(session.session_id)
        return session.session_id

    async def start_negotiation(self, session_id: str) -> None:
        """
        Launch the round loop for a pending session.

        Raises:
            SessionNotFoundException: unknown id
            NegotiationAlreadyActiveException: a loop is already running
            InvalidSessionTransitionException: session is not pending
        """
        session = self._load(session_id)
        if session_id in self._tasks:
            raise NegotiationAlreadyActiveException(session_id)
        if session.status != SessionStatus.PENDING:
            raise InvalidSessionTransitionException(session_id, session.status.value, "start")
        self._launch(session_id)

    async def retry_negotiation(self, session_id: str) -> None:
        """
        Reset a session to pending and run a fresh attempt under the same id.

        Clears the log, offer, seller, deal source and failure reason.
        """
        session = self._load(session_id)
        if session_id in self._tasks:
            raise NegotiationAlreadyActiveException(session_id)

        now = utcnow()
        session.status = SessionStatus.PENDING
        session.negotiation_log = []
        session.current_offer = None
        session.seller_endpoint = None
        session.deal_source = None
        session.failure_reason = None
        session.attempt += 1
        session.start_time = now
        session.last_update = now
        session.expires_at = now + timedelta(days=self.session_ttl_days)

        self.store.save(session)
        self._cache(session)
        logger.info(f"Retrying session {session_id} (attempt {session.attempt})")
        self.events.publish(
            "negotiation_started",
            session_id,
            product_id=session.product_id,
            product_name=session.product.name,
            manual=session.manual,
            attempt=session.attempt,
        )
        self._launch(session_id)

    async def reject_session(self, session_id: str, reason: str = "Rejected by user") -> NegotiationSession:
        """
        User reject: pending/active -> failed.

        An in-flight loop is not cancelled; its next write sees the failed
        status and is discarded.
        """
        session = self._load(session_id)
        if session.status.is_terminal:
            raise InvalidSessionTransitionException(session_id, session.status.value, "reject")

        session.status = SessionStatus.FAILED
        session.failure_reason = reason
        session.last_update = utcnow()
        self.store.save(session)
        self._cache(session)

        logger.info(f"Session {session_id} rejected by user: {reason}")
        self.events.publish(
            "negotiation_failed",
            session_id,
            reason=reason,
            rounds=session.rounds_completed,
        )
        return session

    async def accept_deal(self, session_id: str) -> CheckoutInfo:
        """
        Turn a completed session into checkout details.

        Raises:
            DealNotReadyException: no completed offer
        """
        session = self._load(session_id)
        if session.status != SessionStatus.COMPLETED or session.current_offer is None:
            raise DealNotReadyException(session_id, session.status.value)

        offer = session.current_offer
        checkout = CheckoutInfo(
            session_id=session_id,
            discount_code=f"AI-DEAL-{session_id[:8].upper()}",
            final_price=offer.price,
            savings=compute_savings(session.product.price, offer.price),
            currency=offer.currency,
            valid_until=utcnow() + timedelta(hours=self.checkout_valid_hours),
            checkout_url=session.product.url,
            deal_source=session.deal_source or DealSource.NEGOTIATED,
        )

        logger.info(f"Deal accepted for session {session_id} at {offer.price:.2f} ({checkout.deal_source.value})")
        self.events.publish(
            "deal_completed",
            session_id,
            product_name=session.product.name,
            final_price=checkout.final_price,
            savings=checkout.savings,
            currency=checkout.currency,
            discount_code=checkout.discount_code,
            simulated=checkout.deal_source == DealSource.SIMULATED,
        )
        return checkout

    async def handle_deal_action(self, session_id: str, action: DealAction) -> Optional[CheckoutInfo]:
        """accept -> checkout, reject -> user reject, counter -> fresh attempt."""
        if action == "accept":
            return await self.accept_deal(session_id)
        if action == "reject":
            await self.reject_session(session_id, "Deal rejected by user")
            return None
        await self.retry_negotiation(session_id)
        return None

    def get_session(self, session_id: str) -> NegotiationSession:
        cached = self._sessions.get(session_id)
        if cached is not None:
            return cached.model_copy(deep=True)
        return self._load(session_id)

    def get_active_deals(self) -> List[ActiveDeal]:
        """Visible sessions projected for the deals list; failed and expired are excluded."""
        return [
            _project_deal(session)
            for session in self.store.list_visible()
            if session.status != SessionStatus.FAILED
        ]

    def get_stats(self) -> SessionStats:
        return self.store.recompute_stats()

    def export_sessions(self) -> List[NegotiationSession]:
        return self.store.export_sessions()

    def import_sessions(self, sessions: List[NegotiationSession]) -> tuple[int, int]:
        """
        Upsert sessions from a backup and refresh the cache.

        Returns (imported, restored_active): the second counts imported
        sessions that are still open after the restore. Refused while any
        of them has a running loop or an id appears twice.
        """
        seen = set()
        duplicates = []
        for session in sessions:
            if session.session_id in seen:
                duplicates.append({"session_id": session.session_id, "error": "duplicate session id"})
            seen.add(session.session_id)
        if duplicates:
            raise ValidationException("Backup contains duplicate session ids", duplicates)

        for session in sessions:
            if session.session_id in self._tasks:
                raise NegotiationAlreadyActiveException(session.session_id)
        imported = self.store.import_sessions(sessions)
        for session in sessions:
            self._sessions.pop(session.session_id, None)
        self.restore_sessions()
        restored = sum(1 for s in sessions if s.session_id in self._sessions)
        return imported, restored

    def is_running(self, session_id: str) -> bool:
        return session_id in self._tasks

    async def wait_for(self, session_id: str) -> None:
        """Wait until the session's current round loop (if any) finishes."""
        task = self._tasks.get(session_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    # ========== Lifecycle ==========

    def restore_sessions(self) -> int:
        """
        Rebuild the cache from the store after a restart.

        Sessions left active by a crash are not resumed; they stay
        eligible for an explicit retry.
        """
        sessions = self.store.list_active()
        for session in sessions:
            self._sessions[session.session_id] = session
        interrupted = sum(1 for s in sessions if s.status == SessionStatus.ACTIVE)
        logger.info(f"Restored {len(sessions)} open sessions ({interrupted} interrupted mid-negotiation)")
        return len(sessions)

    def sweep_expired(self) -> int:
        """Delete expired sessions (completed deals are kept) and evict them from the cache."""
        removed = self.store.delete_expired(preserve_completed=True)
        now = utcnow()
        for session_id, session in list(self._sessions.items()):
            if session.is_expired(now) and session_id not in self._tasks:
                del self._sessions[session_id]
        return removed

    async def run_periodic_sweep(self) -> None:
        """Sweep forever at the configured interval; cancelled on shutdown."""
        logger.info(f"Started expired-session sweep (interval: {self.sweep_interval:.0f}s)")
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                self.sweep_expired()
            except SessionPersistenceError as e:
                logger.error(f"Expired-session sweep failed: {e}")

    def start_periodic_sweep(self) -> None:
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self.run_periodic_sweep(), name="session-sweep")

    async def shutdown(self) -> None:
        """Stop the sweep and cancel in-flight loops; their sessions stay retryable."""
        tasks = list(self._tasks.values())
        if self._sweep_task is not None:
            tasks.append(self._sweep_task)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._sweep_task = None
        self._tasks.clear()
        logger.info(f"Orchestrator shut down ({len(tasks)} tasks cancelled)")

    # ========== Task management ==========

    def _launch(self, session_id: str) -> None:
        # Check-and-register with no await in between
        if session_id in self._tasks:
            raise NegotiationAlreadyActiveException(session_id)
        task = asyncio.create_task(self._run_attempt(session_id), name=f"negotiation-{session_id[:8]}")
        self._tasks[session_id] = task
        task.add_done_callback(lambda t, sid=session_id: self._on_task_done(sid, t))

    def _on_task_done(self, session_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(session_id) is task:
            del self._tasks[session_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Negotiation task for {session_id} crashed: {task.exception()}")

    async def _run_attempt(self, session_id: str) -> None:
        session = self.store.get(session_id)
        if session is None:
            logger.warning(f"Session {session_id} disappeared before its negotiation started")
            return

        try:
            session.status = SessionStatus.ACTIVE
            self._commit(session, expected=(SessionStatus.PENDING,))
            self._status(session, "discovering", "Searching for available sellers...")
            await self._negotiate(session)
        except _AttemptSuperseded:
            logger.info(f"Session {session_id} changed underneath attempt {session.attempt}; discarding its result")
        except SessionPersistenceError as e:
            self._fail_best_effort(session, str(e))
        except Exception as e:
            logger.exception(f"Unexpected error negotiating session {session_id}")
            self._fail_best_effort(session, str(e) or type(e).__name__)

    # ========== Round loop ==========

    async def _negotiate(self, session: NegotiationSession) -> None:
        product = session.product
        criteria = SellerSearchCriteria(
            product_id=product.id,
            category=simplify_category(product.category),
            max_price=round(product.price * SEARCH_PRICE_HEADROOM, 2),
            min_rating=settings.DISCOVERY_MIN_RATING,
        )
        result = await self.discovery.find_sellers(criteria)
        if not isinstance(result, SellersFound):
            cause = result.reason if isinstance(result, NoSellersFound) else f"Discovery unavailable: {result.cause}"
            self._complete_with_fallback(session, cause)
            return

        seller = result.sellers[0]
        logger.info(f"Negotiating session {session.session_id} with {seller.seller_name} ({result.source})")

        client = self.client_factory()
        try:
            try:
                await client.connect(seller.endpoint, seller.credential)
            except ProtocolConnectionError as e:
                self._complete_with_fallback(session, str(e))
                return
            await self._negotiate_with(session, seller, client)
        finally:
            await client.disconnect()

    async def _negotiate_with(
        self,
        session: NegotiationSession,
        seller: SellerEndpoint,
        client: SellerProtocolClient,
    ) -> None:
        product = session.product
        session.seller_endpoint = seller
        capabilities = client.list_capabilities()
        context = NegotiationContext(
            product=product,
            behavior=session.behavior,
            preferences=session.preferences,
            seller_capabilities=capabilities,
        )

        assessment = await self.engine.assess_opportunity(context)
        analysis: Dict[str, Any] = {
            "sellerId": seller.seller_id,
            "sellerName": seller.seller_name,
            "capabilities": capabilities,
            "shouldNegotiate": assessment.should_negotiate,
            "targetPrice": assessment.target_price,
            "strategy": assessment.strategy,
        }
        if assessment.should_negotiate and client.supports(GET_PRODUCT_INFO):
            info = await client.get_product_info(product.id, "basic")
            if info.success:
                analysis["productInfo"] = info.data
            else:
                analysis["productInfoError"] = info.error

        session.append_step(NegotiationStep(
            round=0,
            action="analyze",
            details=analysis,
            reasoning=assessment.reasoning,
        ))
        if not assessment.should_negotiate:
            self._fail(session, assessment.reasoning)
            return
        self._commit(session)
        self._status(session, "analyzing", f"Connected to {seller.seller_name}")

        if not client.supports(INITIATE_NEGOTIATION):
            self._fail(session, f"Seller {seller.seller_name} does not support {INITIATE_NEGOTIATION}")
            return

        opened = await client.initiate_negotiation(NegotiationParams(
            session_id=session.session_id,
            product_id=product.id,
            buyer_context=self._buyer_context(session, assessment.target_price),
        ))
        if not opened.success:
            self._fail(session, f"Failed to initiate negotiation: {opened.error}")
            return

        offer = coerce_offer(opened.data) or _raw_offer(opened.data, "initialOffer")
        self._record_offer(session, 0, offer)
        self._commit(session)
        self._status(session, "negotiating", _offer_message(session, offer, "Seller opened"))

        for round_number in range(1, self.max_rounds + 1):
            decision = await self.engine.evaluate_offer(context, offer, round_number, list(session.negotiation_log))
            session.append_step(_decision_step(round_number, decision, offer))

            if decision.decision == "accept":
                await self._accept(session, client, offer)
                return

            if decision.decision == "reject":
                self._fail(session, decision.reasoning or "Offer rejected")
                return

            action = decision.next_action
            if action is None:
                self._fail(session, f"Counter decision in round {round_number} had no next action")
                return
            if action.type == "walk_away":
                self._fail(session, decision.reasoning or "Walked away from negotiation")
                return

            self._commit(session)
            response = await client.make_offer(_offer_params(session.session_id, action))
            if not response.success:
                self._fail(session, f"Offer failed in round {round_number}: {response.error}")
                return

            offer = coerce_offer(response.data) or _raw_offer(response.data, "counterOffer")
            self._record_offer(session, round_number, offer)
            self._commit(session)
            self._status(session, "countering", _offer_message(session, offer, f"Round {round_number}: seller replied"))

            if round_number < self.max_rounds and self.inter_round_delay > 0:
                await asyncio.sleep(self.inter_round_delay)

        self._fail(session, f"Round limit reached ({self.max_rounds} rounds)")

    async def _accept(self, session: NegotiationSession, client: SellerProtocolClient, offer: Dict[str, Any]) -> None:
        max_price = session.preferences.max_price if session.preferences is not None else None
        price = offer_price(offer)

        if max_price is not None and (price is None or price > max_price):
            shown = f"{price:.2f}" if price is not None else "unknown"
            self._fail(session, f"Offer price {shown} exceeds maximum price {max_price:.2f}")
            return

        self._commit(session)
        response = await client.accept_deal(session.session_id, offer)
        if not response.success:
            self._fail(session, f"Failed to accept deal: {response.error}")
            return

        final = coerce_offer(response.data)
        final_price = final["price"] if final is not None else price
        if final_price is None:
            self._fail(session, "Seller accepted without a final price")
            return
        if price is not None and final_price > price:
            self._fail(session, f"Final price {final_price:.2f} exceeds accepted offer {price:.2f}")
            return

        session.current_offer = CurrentOffer(
            price=final_price,
            currency=session.product.currency,
            rounds=session.rounds_completed,
            terms=response.data or offer,
        )
        session.status = SessionStatus.COMPLETED
        session.deal_source = DealSource.NEGOTIATED
        self._commit(session)
        self._deal_found(session)

    def _complete_with_fallback(self, session: NegotiationSession, cause: str) -> None:
        logger.warning(f"Session {session.session_id} falling back to simulated deal: {cause}")
        deal = simulate_outcome(session.product, session.preferences, self.fallback_discount)
        session.append_step(fallback_step(deal, session.rounds_completed, cause, session.product.currency))
        session.current_offer = CurrentOffer(
            price=deal.final_price,
            currency=session.product.currency,
            rounds=session.rounds_completed,
            terms={"simulated": True, "cause": cause},
        )
        session.status = SessionStatus.COMPLETED
        session.deal_source = DealSource.SIMULATED
        self._commit(session)
        self._deal_found(session)

    # ========== Commits and events ==========

    def _commit(self, session: NegotiationSession, expected: tuple = (SessionStatus.ACTIVE,)) -> None:
        """
        Persist the attempt's working copy, then refresh the cache.

        The persisted row must still belong to this attempt and be in an
        expected status. Store reads and writes are synchronous, so nothing
        can interleave between the check and the save.
        """
        persisted = self.store.get(session.session_id)
        if (
            persisted is None
            or persisted.attempt != session.attempt
            or persisted.status not in expected
        ):
            raise _AttemptSuperseded()
        session.last_update = utcnow()
        self.store.save(session)
        self._cache(session)

    def _fail(self, session: NegotiationSession, reason: str) -> None:
        session.status = SessionStatus.FAILED
        session.failure_reason = reason
        self._commit(session, expected=(SessionStatus.PENDING, SessionStatus.ACTIVE))
        logger.info(f"Session {session.session_id} failed: {reason}")
        self.events.publish(
            "negotiation_failed",
            session.session_id,
            reason=reason,
            rounds=session.rounds_completed,
        )

    def _fail_best_effort(self, session: NegotiationSession, reason: str) -> None:
        try:
            self._fail(session, reason)
        except _AttemptSuperseded:
            logger.info(f"Session {session.session_id} already moved on; not recording failure")
        except SessionPersistenceError as e:
            logger.error(f"Could not record failure for session {session.session_id}: {e}")

    def _deal_found(self, session: NegotiationSession) -> None:
        offer = session.current_offer
        simulated = session.deal_source == DealSource.SIMULATED
        logger.info(
            f"Session {session.session_id} completed at {offer.price:.2f} "
            f"({'simulated' if simulated else 'negotiated'})"
        )
        self.events.publish(
            "deal_found",
            session.session_id,
            product_name=session.product.name,
            original_price=session.product.price,
            final_price=offer.price,
            savings=compute_savings(session.product.price, offer.price),
            discount_percent=discount_percent(session.product.price, offer.price),
            currency=offer.currency,
            simulated=simulated,
        )

    def _status(self, session: NegotiationSession, stage: str, message: str) -> None:
        self.events.publish(
            "negotiation_status",
            session.session_id,
            round=session.rounds_completed,
            stage=stage,
            message=message,
        )

    def _cache(self, session: NegotiationSession) -> None:
        self._sessions[session.session_id] = session.model_copy(deep=True)

    def _load(self, session_id: str) -> NegotiationSession:
        session = self.store.get(session_id)
        if session is None:
            self._sessions.pop(session_id, None)
            raise SessionNotFoundException(session_id)
        self._sessions[session_id] = session.model_copy(deep=True)
        return session

    # ========== Helpers ==========

    def _buyer_context(self, session: NegotiationSession, target_price: float | None) -> BuyerContext:
        product = session.product
        preferences = session.preferences
        interest = session.behavior.interest_score
        context = BuyerContext(
            urgency="high" if interest > 0.8 else "medium" if interest > 0.5 else "low",
            price_target=target_price
            or (preferences.max_price if preferences else None)
            or round(product.price * DEFAULT_TARGET_RATIO, 2),
            quantity=2 if preferences and preferences.options.willing_to_buy_multiple else 1,
            interests=[product.category] if product.category else [],
        )
        if preferences is not None:
            context.preferences = {
                "desiredDiscount": preferences.desired_discount,
                "maxPrice": preferences.max_price,
                "strategy": preferences.strategy,
                "customRequirements": preferences.custom_requirements,
                "negotiationOptions": preferences.options.model_dump(),
            }
        return context

    def _record_offer(self, session: NegotiationSession, round_number: int, offer: Dict[str, Any]) -> None:
        """Log the seller's offer and adopt it as current when it carries a price."""
        session.append_step(NegotiationStep(
            round=round_number,
            action="offer",
            details={"offer": offer},
            reasoning=offer.get("message") if isinstance(offer.get("message"), str) else None,
        ))
        price = offer_price(offer)
        if price is not None:
            session.current_offer = CurrentOffer(
                price=price,
                currency=session.product.currency,
                rounds=session.rounds_completed,
                terms=offer,
            )


def _decision_step(round_number: int, decision: OfferDecision, offer: Dict[str, Any]) -> NegotiationStep:
    details: Dict[str, Any] = {
        "decision": decision.decision,
        "confidence": decision.confidence,
        "offerPrice": offer.get("price"),
    }
    if decision.next_action is not None:
        details["nextAction"] = decision.next_action.model_dump(by_alias=True)
    return NegotiationStep(
        round=round_number,
        action=decision.decision,
        details=details,
        reasoning=decision.reasoning,
    )


def _raw_offer(data: Dict[str, Any], wrapper: str) -> Dict[str, Any]:
    """Seller payload with no usable price: keep the wrapped offer (or the payload) for the log."""
    nested = data.get(wrapper)
    offer = dict(nested) if isinstance(nested, dict) else dict(data)
    price = offer.get("price")
    if isinstance(price, float) and not math.isfinite(price):
        offer["price"] = str(price)  # nan/inf are not valid JSON
    return offer


def _offer_params(session_id: str, action: NextAction) -> OfferParams:
    if action.type == "bundle_request":
        return OfferParams(
            session_id=session_id,
            offer_type="bundle",
            price=action.price,
            bundle_items=action.bundle_items,
            message=action.message,
        )
    if action.type == "quantity_offer":
        return OfferParams(
            session_id=session_id,
            offer_type="quantity",
            price=action.price,
            quantity=action.quantity or 2,
            message=action.message,
        )
    return OfferParams(
        session_id=session_id,
        offer_type="price",
        price=action.price,
        quantity=action.quantity,
        message=action.message,
    )


def _offer_message(session: NegotiationSession, offer: Dict[str, Any], prefix: str) -> str:
    price = offer_price(offer)
    if price is not None:
        return f"{prefix} at {session.product.currency} {price:.2f}"
    return f"{prefix} without a price"


def _coarse_status(session: NegotiationSession) -> CoarseDealStatus:
    if session.status == SessionStatus.COMPLETED:
        return "deal_ready"
    if session.status == SessionStatus.ACTIVE and session.current_offer is not None and session.negotiation_log:
        last = session.negotiation_log[-1].action
        if last == "counter":
            return "waiting_seller"
        if last == "offer":
            return "your_turn"
    return "negotiating"


def _project_deal(session: NegotiationSession) -> ActiveDeal:
    product = session.product
    offer = session.current_offer
    return ActiveDeal(
        session_id=session.session_id,
        product_id=session.product_id,
        product_name=product.name,
        product_image=product.image,
        product_url=product.url,
        original_price=product.price,
        current_offer_price=offer.price if offer else product.price,
        currency=product.currency,
        seller=session.seller_endpoint.seller_name if session.seller_endpoint else product.seller,
        status=_coarse_status(session),
        rounds=session.rounds_completed,
        last_update=session.last_update,
        deal_source=session.deal_source,
    )

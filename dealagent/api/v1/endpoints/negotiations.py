"""
Negotiation endpoints.

WHAT: Trigger, inspect, retry, reject and accept negotiation sessions
WHY: The extension UI drives sessions and reads deal status over HTTP
HOW: Thin FastAPI handlers delegating to the SessionOrchestrator
"""

from typing import List

from fastapi import APIRouter, Depends, status

from ...deps import get_orchestrator
from ....core.orchestrator import SessionOrchestrator
from ....models.api_schemas import (
    ActiveDeal,
    CheckoutInfo,
    CreateNegotiationResponse,
    DealActionRequest,
    DealActionResponse,
    NegotiationLogResponse,
    RejectRequest,
    SessionExportResponse,
    SessionImportRequest,
    SessionImportResponse,
)
from ....models.negotiation import NegotiationSession, SessionStats, SessionStatus, SessionTrigger
from ....utils.clock import utcnow
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.post(
    "/negotiations",
    response_model=CreateNegotiationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_negotiation(
    trigger: SessionTrigger,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    """
    Start a negotiation for a product.

    WHAT: Persist a session and launch its round loop
    WHY: The caller gets an id at once; progress arrives via /events
    HOW: orchestrator.create_session
    """
    session_id = await orchestrator.create_session(trigger)
    return CreateNegotiationResponse(session_id=session_id, status=SessionStatus.PENDING)


@router.get("/negotiations/{session_id}", response_model=NegotiationSession)
async def get_negotiation(
    session_id: str,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.get_session(session_id)


@router.get("/negotiations/{session_id}/log", response_model=NegotiationLogResponse)
async def get_negotiation_log(
    session_id: str,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    session = orchestrator.get_session(session_id)
    return NegotiationLogResponse(
        session_id=session.session_id,
        status=session.status,
        rounds=session.rounds_completed,
        steps=session.negotiation_log,
    )


@router.post("/negotiations/{session_id}/retry", response_model=CreateNegotiationResponse)
async def retry_negotiation(
    session_id: str,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    """Fresh attempt under the same id; 409 while a loop is still running."""
    await orchestrator.retry_negotiation(session_id)
    return CreateNegotiationResponse(session_id=session_id, status=SessionStatus.PENDING)


@router.post("/negotiations/{session_id}/reject", response_model=NegotiationSession)
async def reject_negotiation(
    session_id: str,
    request: RejectRequest | None = None,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    reason = request.reason if request is not None else "Rejected by user"
    return await orchestrator.reject_session(session_id, reason)


@router.post("/negotiations/{session_id}/accept", response_model=CheckoutInfo)
async def accept_negotiation(
    session_id: str,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.accept_deal(session_id)


@router.post("/negotiations/{session_id}/actions", response_model=DealActionResponse)
async def deal_action(
    session_id: str,
    request: DealActionRequest,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    """
    Apply a deal-card action.

    WHAT: accept -> checkout, reject -> failed, counter -> new attempt
    WHY: One endpoint backs the accept/decline/counter buttons
    HOW: orchestrator.handle_deal_action, then report the resulting status
    """
    checkout = await orchestrator.handle_deal_action(session_id, request.action)
    session = orchestrator.get_session(session_id)
    return DealActionResponse(
        session_id=session_id,
        action=request.action,
        status=session.status,
        checkout=checkout,
    )


@router.get("/deals/active", response_model=List[ActiveDeal])
async def active_deals(orchestrator: SessionOrchestrator = Depends(get_orchestrator)):
    return orchestrator.get_active_deals()


@router.get("/stats", response_model=SessionStats)
async def stats(orchestrator: SessionOrchestrator = Depends(get_orchestrator)):
    return orchestrator.get_stats()


@router.get("/sessions/export", response_model=SessionExportResponse)
async def export_sessions(orchestrator: SessionOrchestrator = Depends(get_orchestrator)):
    sessions = orchestrator.export_sessions()
    logger.info(f"Exported {len(sessions)} sessions")
    return SessionExportResponse(exported_at=utcnow(), count=len(sessions), sessions=sessions)


@router.post("/sessions/import", response_model=SessionImportResponse)
async def import_sessions(
    request: SessionImportRequest,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    """Restore a backup; imported in-flight sessions become retryable, not resumed."""
    imported, restored = orchestrator.import_sessions(request.sessions)
    return SessionImportResponse(imported=imported, restored_active=restored)

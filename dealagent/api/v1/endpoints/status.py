"""
Status and health check endpoints.

WHAT: Health monitoring for the database, LLM provider and seller registry
WHY: Quick diagnostics for the extension UI and ops
HOW: FastAPI endpoints calling provider ping, DB ping and registry health
"""

from fastapi import APIRouter, Depends

from ...deps import get_orchestrator
from ....core.config import settings
from ....core.database import ping_database
from ....core.orchestrator import SessionOrchestrator
from ....llm.types import (
    ProviderDisabledError,
    ProviderResponseError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from ....models.api_schemas import ComponentStatus, HealthResponse, LLMStatusResponse
from ....utils.clock import utcnow
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.get("/llm/status", response_model=LLMStatusResponse)
async def llm_status(orchestrator: SessionOrchestrator = Depends(get_orchestrator)):
    """
    Check LLM provider status.

    WHAT: Health of the provider behind the decision engine
    WHY: UI can warn before negotiations silently degrade to "no deal"
    HOW: provider.ping(); a disabled provider surfaces as a 400
    """
    status = await orchestrator.engine.provider.ping()
    return LLMStatusResponse(
        provider=settings.LLM_PROVIDER,
        available=status.available,
        base_url=status.base_url,
        models=status.models,
        error=status.error,
    )


@router.get("/health", response_model=HealthResponse)
async def health_check(orchestrator: SessionOrchestrator = Depends(get_orchestrator)):
    """
    Overall application health check.

    WHAT: Database, LLM and discovery availability with app metadata
    WHY: Ops and monitoring tools need one simple endpoint
    HOW: Healthy only when every component answers
    """
    db_status = ping_database(orchestrator.store.engine)

    try:
        llm_available = await orchestrator.engine.health_check()
        llm_detail = settings.LLM_PROVIDER
    except (ProviderDisabledError, ProviderTimeoutError, ProviderUnavailableError, ProviderResponseError) as e:
        logger.error(f"Health check LLM failed: {e}")
        llm_available, llm_detail = False, str(e)

    discovery_available = await orchestrator.discovery.health_check()

    healthy = db_status["available"] and llm_available and discovery_available
    return HealthResponse(
        status="healthy" if healthy else "degraded",
        app_name=settings.APP_NAME,
        version=settings.APP_VERSION,
        timestamp=utcnow(),
        database=ComponentStatus(available=db_status["available"], detail=db_status["error"]),
        llm=ComponentStatus(available=llm_available, detail=llm_detail),
        discovery=ComponentStatus(available=discovery_available, detail=orchestrator.discovery.base_url),
        active_sessions=len(orchestrator.store.list_active()),
    )

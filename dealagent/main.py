"""
FastAPI application entry point.

WHAT: Main application setup and wiring
WHY: Initialize all components and routes
HOW: Create FastAPI app, build the orchestrator in the lifespan, register routers and handlers
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from .core.config import settings
from .core.database import close_db, get_engine
from .core.orchestrator import SessionOrchestrator
from .core.session_store import SessionStore
from .llm.provider_factory import close_provider
from .services.decision_engine import DecisionEngine
from .services.event_bus import EventBus
from .services.seller_discovery import SellerDiscoveryClient
from .utils.logger import setup_logging, get_logger
from .middleware.error_handler import register_exception_handlers
from .api.v1.router import api_router

# Setup logging
setup_logging()
logger = get_logger(__name__)


def build_orchestrator() -> SessionOrchestrator:
    """Wire store, discovery, decision engine and event bus from settings."""
    store = SessionStore(get_engine())
    store.initialize()
    return SessionOrchestrator(
        store=store,
        discovery=SellerDiscoveryClient(),
        decision_engine=DecisionEngine(),
        event_bus=EventBus(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    WHAT: Startup and shutdown logic
    WHY: Restore persisted sessions, stop background tasks cleanly
    HOW: Async context manager for FastAPI lifespan

    Tests may preset app.state.orchestrator; it is used as-is.
    """
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    orchestrator = getattr(app.state, "orchestrator", None)
    owns_orchestrator = orchestrator is None
    if owns_orchestrator:
        orchestrator = build_orchestrator()
        app.state.orchestrator = orchestrator

    orchestrator.restore_sessions()
    orchestrator.start_periodic_sweep()
    logger.info("Application startup complete")

    yield

    # Shutdown
    logger.info("Shutting down application")
    await orchestrator.shutdown()
    if owns_orchestrator:
        await orchestrator.discovery.close()
        await close_provider()
        close_db()
        del app.state.orchestrator
    logger.info("Application shutdown complete")


def create_app() -> FastAPI:
    """Build the FastAPI application."""
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        lifespan=lifespan
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register exception handlers
    register_exception_handlers(app)

    # Include API router
    app.include_router(api_router)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "app": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "status": "running"
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "dealagent.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )

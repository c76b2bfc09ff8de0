"""
Shared FastAPI dependencies.

WHAT: Access to the process-wide orchestrator
WHY: Handlers receive the instance built in the lifespan, never a module global
HOW: Read it from app.state
"""

from fastapi import Request

from ..core.orchestrator import SessionOrchestrator


def get_orchestrator(request: Request) -> SessionOrchestrator:
    return request.app.state.orchestrator

"""
Custom business exceptions for the negotiation service.

WHAT: Domain-specific exceptions that map to HTTP status codes
WHY: Logical/state errors must be rejected synchronously with a clear reason
HOW: Custom exception classes with error codes and messages
"""

from typing import Optional, List, Dict, Any


class BusinessException(Exception):
    """Base class for business logic exceptions."""

    def __init__(self, message: str, code: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details


class SessionNotFoundException(BusinessException):
    """Raised when a session is not found."""

    def __init__(self, session_id: str):
        super().__init__(
            message=f"Session not found: {session_id}",
            code="SESSION_NOT_FOUND",
            details={"session_id": session_id}
        )


class NegotiationAlreadyActiveException(BusinessException):
    """Raised when a round loop is already running for the session."""

    def __init__(self, session_id: str):
        super().__init__(
            message=f"Negotiation already in progress for session: {session_id}",
            code="NEGOTIATION_ALREADY_ACTIVE",
            details={"session_id": session_id}
        )


class InvalidSessionTransitionException(BusinessException):
    """Raised when a requested transition is not allowed from the current status."""

    def __init__(self, session_id: str, current_status: str, requested: str):
        super().__init__(
            message=f"Cannot {requested} session {session_id} in status '{current_status}'",
            code="INVALID_SESSION_TRANSITION",
            details={
                "session_id": session_id,
                "current_status": current_status,
                "requested": requested
            }
        )


class DealNotReadyException(BusinessException):
    """Raised when accepting a deal that has no completed offer."""

    def __init__(self, session_id: str, current_status: str):
        super().__init__(
            message=f"No completed offer available for session {session_id} (status: {current_status})",
            code="DEAL_NOT_READY",
            details={"session_id": session_id, "current_status": current_status}
        )


class ValidationException(BusinessException):
    """Raised for validation errors."""

    def __init__(self, message: str, field_errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            details={"field_errors": field_errors} if field_errors else None
        )


class SessionPersistenceError(Exception):
    """Raised when the session store cannot read or write durable state."""

    def __init__(self, operation: str, cause: Exception):
        super().__init__(f"Session store {operation} failed: {cause}")
        self.operation = operation
        self.cause = cause

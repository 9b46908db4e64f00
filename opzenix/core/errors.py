"""
Error handling for Opzenix.

This module provides error categorization, the exception hierarchy raised by
services, and the JSON error body returned by every HTTP handler.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class ErrorType(str, Enum):
    """Types of errors that can occur in the system."""

    VALIDATION_ERROR = "validation_error"  # Invalid input/data format
    NOT_FOUND = "not_found"  # Referenced row does not exist
    CONFLICT = "conflict"  # Row exists in an incompatible state
    INVALID_TRANSITION = "invalid_transition"  # State machine rejected the move
    AUTHENTICATION_ERROR = "authentication_error"  # Webhook secret/signature
    PROCESSING_ERROR = "processing_error"  # Processing/execution failure
    UNKNOWN_ERROR = "unknown_error"  # Unexpected errors


class OpzenixError(Exception):
    """Base class for errors raised by Opzenix services."""

    error_type = ErrorType.UNKNOWN_ERROR
    status_code = 500

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_response(self, path: Optional[str] = None) -> Dict[str, Any]:
        """Render this error as a JSON response body."""
        return create_error_response(
            self.error_type, self.message, self.context, path=path
        )


class ValidationFailedError(OpzenixError):
    """Request payload is missing or has malformed fields."""

    error_type = ErrorType.VALIDATION_ERROR
    status_code = 400


class NotFoundError(OpzenixError):
    """Referenced resource does not exist."""

    error_type = ErrorType.NOT_FOUND
    status_code = 404

    def __init__(self, resource: str, resource_id: Any):
        super().__init__(
            f"{resource} not found",
            {"resource": resource, "resource_id": str(resource_id)},
        )


class ConflictError(OpzenixError):
    """Resource is in a state that does not allow the operation."""

    error_type = ErrorType.CONFLICT
    status_code = 409


class InvalidTransitionError(OpzenixError):
    """Requested status change is not allowed by the state machine."""

    error_type = ErrorType.INVALID_TRANSITION
    status_code = 409

    def __init__(self, kind: str, from_state: str, to_state: str):
        super().__init__(
            f"Cannot move {kind} from {from_state} to {to_state}",
            {"kind": kind, "from_state": from_state, "to_state": to_state},
        )
        self.from_state = from_state
        self.to_state = to_state


class WebhookAuthenticationError(OpzenixError):
    """Webhook secret or signature did not match."""

    error_type = ErrorType.AUTHENTICATION_ERROR
    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


def create_error_response(
    error_type: ErrorType,
    error_message: str,
    error_context: Optional[Dict[str, Any]] = None,
    path: Optional[str] = None,
) -> Dict[str, Any]:
    """Create error response data structure."""
    return {
        "success": False,
        "error": error_message,
        "error_type": error_type.value,
        "error_context": error_context or {},
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "path": path,
    }

"""
Core module for Opzenix.

This module contains configuration, logging, error handling, persistence and
the execution state machine.
"""

from .config import OpzenixConfig
from .errors import (
    ConflictError,
    ErrorType,
    InvalidTransitionError,
    NotFoundError,
    OpzenixError,
    ValidationFailedError,
    WebhookAuthenticationError,
    create_error_response,
)

__all__ = [
    "OpzenixConfig",
    "ErrorType",
    "OpzenixError",
    "ValidationFailedError",
    "NotFoundError",
    "ConflictError",
    "InvalidTransitionError",
    "WebhookAuthenticationError",
    "create_error_response",
]

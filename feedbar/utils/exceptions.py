"""
FeedBar Custom Exceptions
=========================

Exception hierarchy for the ingestion worker with categorized error codes,
context information, and operator-facing messages.
"""

from typing import Optional, Dict, Any
from enum import Enum


class ErrorCode(str, Enum):
    """Error codes for categorizing exceptions."""

    # Configuration errors (C001-C099)
    CONFIG_INVALID = "C001"

    # Database errors (D001-D099)
    DATABASE_CONNECTION = "D001"
    DATABASE_TRANSACTION = "D004"
    DATABASE_ERROR = "D006"

    # Run coordination errors (L001-L099)
    LEASE_UNAVAILABLE = "L001"


class FeedBarError(Exception):
    """Base exception for all FeedBar errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[ErrorCode] = None,
        context: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
        recoverable: bool = False,
    ):
        """Initialize FeedBar error.

        Args:
            message: Technical error message for logging
            error_code: Categorized error code
            context: Additional context information
            user_message: Operator-friendly error message
            recoverable: Whether the error is recoverable
        """
        super().__init__(message)
        self.error_code = error_code
        self.context = context or {}
        self.user_message = user_message or message
        self.recoverable = recoverable

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code.value if self.error_code else None,
            "error_message": str(self),
            "user_message": self.user_message,
            "context": self.context,
            "recoverable": self.recoverable,
        }

    def __str__(self) -> str:
        """String representation with error code."""
        if self.error_code:
            return f"[{self.error_code.value}] {super().__str__()}"
        return super().__str__()


class ConfigurationError(FeedBarError):
    """Configuration-related errors."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if config_key:
            context["config_key"] = config_key

        super().__init__(
            message=message,
            error_code=kwargs.pop("error_code", ErrorCode.CONFIG_INVALID),
            context=context,
            user_message=kwargs.pop("user_message", f"Configuration error: {message}"),
            **kwargs,
        )


class DatabaseError(FeedBarError):
    """Database-related errors.

    Raised by the repositories on failed writes. The batch orchestrator
    reports these as store errors and never disables a feed because of them.
    """

    def __init__(self, message: str, query: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if query:
            context["query"] = query

        super().__init__(
            message=message,
            error_code=kwargs.pop("error_code", ErrorCode.DATABASE_CONNECTION),
            context=context,
            user_message=kwargs.pop("user_message", "Database operation failed"),
            recoverable=kwargs.pop("recoverable", True),
            **kwargs,
        )


class LeaseError(FeedBarError):
    """Another process currently holds the ingestion run lease."""

    def __init__(self, message: str, lock_file: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if lock_file:
            context["lock_file"] = lock_file

        super().__init__(
            message=message,
            error_code=kwargs.pop("error_code", ErrorCode.LEASE_UNAVAILABLE),
            context=context,
            user_message=kwargs.pop("user_message", "Another run is in progress"),
            recoverable=kwargs.pop("recoverable", True),
            **kwargs,
        )


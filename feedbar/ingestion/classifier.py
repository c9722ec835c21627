"""
Fetch Failure Classification
============================

Coarse error codes produced by the fetcher and their split into failures
that quarantine a feed and failures that are simply retried on a later run.
"""

import asyncio
import re
from enum import Enum
from typing import Optional

STATUS_PATTERN = re.compile(r"\b(?:status(?:\s+code)?|http(?:/\d(?:\.\d)?)?)\s*:?\s*([1-5]\d{2})\b")


class FetchErrorCode(str, Enum):
    """Coarse reason a feed document could not be used."""

    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    GONE = "gone"
    MALFORMED_XML = "malformed_xml"
    TIMEOUT = "timeout"
    SERVER_ERROR = "server_error"
    UNKNOWN = "unknown"

    @classmethod
    def from_status(cls, status: int) -> "FetchErrorCode":
        """Map a non-success HTTP status to an error code."""
        if status == 404:
            return cls.NOT_FOUND
        if status in (401, 403):
            return cls.FORBIDDEN
        if status == 410:
            return cls.GONE
        if 500 <= status <= 599:
            return cls.SERVER_ERROR
        return cls.UNKNOWN

    @classmethod
    def from_message(cls, message: Optional[str]) -> "FetchErrorCode":
        """Derive a code from error text when no structured status exists.

        Recognizes messages like ``"Status code 404"``, timeout wording and
        XML parser complaints.
        """
        if not message:
            return cls.UNKNOWN

        text = message.lower()

        # Bare digits also occur in host names and ports
        match = STATUS_PATTERN.search(text)
        if match:
            return cls.from_status(int(match.group(1)))

        if "not found" in text:
            return cls.NOT_FOUND
        if re.search(r"\bgone\b", text):
            return cls.GONE
        if "forbidden" in text or "unauthorized" in text:
            return cls.FORBIDDEN
        if "timeout" in text or "timed out" in text:
            return cls.TIMEOUT
        if any(marker in text for marker in ("not well-formed", "malformed", "invalid xml", "unclosed", "mismatched tag")):
            return cls.MALFORMED_XML
        return cls.UNKNOWN

    @classmethod
    def from_exception(cls, error: BaseException) -> "FetchErrorCode":
        """Map a transport exception to an error code."""
        if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
            return cls.TIMEOUT

        status = getattr(error, "status", None)
        if isinstance(status, int) and status >= 400:
            return cls.from_status(status)

        return cls.from_message(str(error))


class FailureClass(str, Enum):
    """What a failure means for the feed's health."""

    FATAL = "fatal"
    TRANSIENT = "transient"


FATAL_CODES = frozenset(
    {
        FetchErrorCode.NOT_FOUND,
        FetchErrorCode.FORBIDDEN,
        FetchErrorCode.GONE,
        FetchErrorCode.MALFORMED_XML,
    }
)


def classify(code: FetchErrorCode) -> FailureClass:
    """Fatal for permanent protocol errors, transient for everything else."""
    if code in FATAL_CODES:
        return FailureClass.FATAL
    return FailureClass.TRANSIENT

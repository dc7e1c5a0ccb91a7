"""
Error Classifier
Maps raw stage failures onto a closed taxonomy with retry hints and
user-facing text.
"""

import asyncio
import re
import socket
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union


class ErrorKind(str, Enum):
    RATE_LIMIT = "RATE_LIMIT"
    INVALID_DATA = "INVALID_DATA"
    TIMEOUT = "TIMEOUT"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class ClassifiedError:
    kind: ErrorKind
    retryable: bool
    backoff: bool
    retry_after: Optional[int]
    user_message: str
    suggestion: str
    original_message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "retryable": self.retryable,
            "backoff": self.backoff,
            "retry_after": self.retry_after,
            "user_message": self.user_message,
            "suggestion": self.suggestion,
            "original_message": self.original_message,
        }


# kind -> (retryable, backoff, retry_after, user message, suggestion)
_CATALOG = {
    ErrorKind.RATE_LIMIT: (
        True, True, 300,
        "Too many requests to the marketplace. Please wait a moment and try again.",
        "Wait 5 minutes before retrying. Marketplaces limit the number of requests per hour.",
    ),
    ErrorKind.TIMEOUT: (
        True, False, 60,
        "Connection to the marketplace timed out.",
        "Check your connection and try again. If the problem persists, the marketplace may be experiencing issues.",
    ),
    ErrorKind.PERMISSION_DENIED: (
        False, False, None,
        "You don't have permission to sync to this marketplace.",
        "Reconnect the marketplace account or ask an administrator to check its API permissions.",
    ),
    ErrorKind.ALREADY_EXISTS: (
        False, False, None,
        "This product already exists on the marketplace.",
        "Update the existing listing instead of creating a new one, or change the product SKU.",
    ),
    ErrorKind.INVALID_DATA: (
        False, False, None,
        "Product information is incomplete or invalid.",
        "Check that your product has a title, price, and at least one image before syncing.",
    ),
    ErrorKind.UNKNOWN: (
        False, False, None,
        "An unexpected error occurred during sync.",
        "Please try again. If the problem persists, contact support.",
    ),
}

_STATUS_KINDS = {
    429: ErrorKind.RATE_LIMIT,
    408: ErrorKind.TIMEOUT,
    500: ErrorKind.TIMEOUT,
    502: ErrorKind.TIMEOUT,
    503: ErrorKind.TIMEOUT,
    504: ErrorKind.TIMEOUT,
    401: ErrorKind.PERMISSION_DENIED,
    403: ErrorKind.PERMISSION_DENIED,
    409: ErrorKind.ALREADY_EXISTS,
    400: ErrorKind.INVALID_DATA,
    422: ErrorKind.INVALID_DATA,
}

# Checked in order; the first match wins
_MESSAGE_PATTERNS = [
    (ErrorKind.RATE_LIMIT, re.compile(r"\b429\b|rate.?limit|too many requests|throttl|quota")),
    (ErrorKind.TIMEOUT, re.compile(
        r"timeout|timed out|etimedout|connection (reset|refused|aborted)|econnreset|network|socket"
        r"|enotfound|name or service not known|\b50[0234]\b|internal server error|bad gateway"
        r"|service unavailable"
    )),
    (ErrorKind.PERMISSION_DENIED, re.compile(r"\b40[13]\b|permission|unauthori[sz]ed|forbidden|scope")),
    (ErrorKind.ALREADY_EXISTS, re.compile(r"\b409\b|already exists|duplicate")),
    (ErrorKind.INVALID_DATA, re.compile(r"\b4(00|22)\b|invalid|missing|validation")),
]


def _build(kind: ErrorKind, original_message: str) -> ClassifiedError:
    retryable, backoff, retry_after, user_message, suggestion = _CATALOG[kind]
    return ClassifiedError(
        kind=kind,
        retryable=retryable,
        backoff=backoff,
        retry_after=retry_after,
        user_message=user_message,
        suggestion=suggestion,
        original_message=original_message,
    )


def _message_of(error: Union[BaseException, str, None]) -> str:
    if error is None:
        return "Unknown error"
    if isinstance(error, str):
        return error
    text = str(error)
    return text or error.__class__.__name__


def classify_error(error: Union[BaseException, str, None]) -> ClassifiedError:
    """
    Classify a failure. Never raises.

    Args:
        error: Exception raised by a stage, or a plain error message

    Returns:
        ClassifiedError, UNKNOWN when nothing matches
    """
    try:
        message = _message_of(error)

        if isinstance(error, ClassifiedError):
            return error
        if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError, socket.gaierror)):
            return _build(ErrorKind.TIMEOUT, message)

        status_code = getattr(error, "status_code", None)
        if isinstance(status_code, int) and status_code in _STATUS_KINDS:
            return _build(_STATUS_KINDS[status_code], message)

        code = getattr(error, "code", None)
        haystack = f"{message} {code}" if isinstance(code, str) else message
        haystack = haystack.lower()
        for kind, pattern in _MESSAGE_PATTERNS:
            if pattern.search(haystack):
                return _build(kind, message)

        return _build(ErrorKind.UNKNOWN, message)
    except Exception:
        return _build(ErrorKind.UNKNOWN, repr(error))


def format_retry_time(seconds: Optional[float]) -> str:
    """Human readable wait time, e.g. "5 minutes"."""
    if seconds is None:
        return "now"
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds} second{'s' if seconds != 1 else ''}"

    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes > 1 else ''}"

    hours = minutes // 60
    return f"{hours} hour{'s' if hours > 1 else ''}"

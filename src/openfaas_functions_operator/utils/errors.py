"""Error taxonomy and sanitization utilities."""

from __future__ import annotations

import re
from typing import Any

from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import HTTPError as Urllib3HTTPError

# Statuses that a later attempt may not see again
TRANSIENT_STATUSES = {408, 409, 425, 429, 500, 502, 503, 504}

# Patterns that might expose sensitive information
SENSITIVE_PATTERNS = [
    r"(bearer)\s+[A-Za-z0-9\-\._~\+/]+=*",
    r"(authorization)[:\s]+\S+",
    r"(token)[=:\s]+[A-Za-z0-9\-\._~\+/]+=*",
    r"(password)[=:\s]+\S+",
]


class OperatorError(Exception):
    """Base class for errors raised by the reconciliation core."""


class ValidationFailed(OperatorError):
    """The Function cannot be applied as declared.

    Terminal for the current generation: surfaced as a status condition and
    only retried when the spec or a referenced cluster fact changes.
    """

    def __init__(self, reason: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.reason = reason
        self.message = message
        self.details = details or {}


class QuantityError(ValueError):
    """A CPU or memory quantity string is not valid."""

    def __init__(self, reason: str, field: str, value: str, cause: str):
        super().__init__(f"Invalid {field} quantity '{value}': {cause}")
        self.reason = reason
        self.field = field
        self.value = value


class TransientError(OperatorError):
    """A retryable infrastructure failure (unavailable API, timeout, conflict)."""


class InvariantViolation(OperatorError):
    """The controller produced or observed an object breaking its own invariants."""


def is_not_found(error: BaseException) -> bool:
    """Return True if the error is an API 404."""
    return isinstance(error, ApiException) and error.status == 404


def is_transient(error: BaseException) -> bool:
    """Classify an exception raised by the Kubernetes client.

    Args:
        error: Exception raised by an API call

    Returns:
        True if a later attempt may succeed without any change to the Function
    """
    if isinstance(error, (TransientError, InvariantViolation)):
        return True
    if isinstance(error, ApiException):
        # status 0 is how the client reports a connection-level failure
        return error.status in TRANSIENT_STATUSES or not error.status
    return isinstance(error, (Urllib3HTTPError, ConnectionError, TimeoutError))


def sanitize_error_message(message: str) -> str:
    """Sanitize error message to remove credentials.

    Args:
        message: Original error message

    Returns:
        Sanitized error message with sensitive data redacted
    """
    sanitized = message
    for pattern in SENSITIVE_PATTERNS:
        sanitized = re.sub(pattern, r"\1 [REDACTED]", sanitized, flags=re.IGNORECASE)
    return sanitized


def sanitize_exception(error: BaseException) -> str:
    """Sanitize exception message.

    ApiException carries the whole response (headers included) in its string
    form, so only status and reason are kept for those.
    """
    if isinstance(error, ApiException):
        return sanitize_error_message(f"({error.status}) {error.reason}")
    return sanitize_error_message(str(error))

"""
Control-plane error taxonomy and failure classification.

Every failure raised by this package derives from FlowClientError and carries
enough structure (status, message, nested data) for a caller to render it.

Classification:
- CONFLICT: HTTP 409, or HTTP 500 whose nested ``details`` mentions 409.
  Optimistic-concurrency races; re-raised unchanged and never logged.
- TRANSIENT: no response status at all (network or request-setup failure).
- FATAL: everything else.

401 handling is not done here: the root-id resolver and the session gate deal
with it inline.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Mapping
from typing import Any, Optional

logger = logging.getLogger(__name__)


class ErrorKind(str, enum.Enum):
    CONFLICT = "conflict"
    TRANSIENT = "transient"
    FATAL = "fatal"


class FlowClientError(Exception):
    """Base class for every failure surfaced by the control-plane client."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        data: Any = None,
        request_info: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.data = data
        self.request_info = request_info

    def to_dict(self) -> dict:
        return {"error": self.message, "status": self.status, "details": self.data}


class AuthenticationFailure(FlowClientError):
    """Session (re)establishment was rejected. Aborts all dependent work."""


class ResolutionFailure(FlowClientError):
    """No process group id could be resolved after the full fallback chain."""


class ValidationFailure(FlowClientError, ValueError):
    """Required structured input is missing. Raised before any network call."""


class VerificationTimeout(FlowClientError):
    """A configuration verification request never reported completion."""


class TransportError(FlowClientError):
    """A request to the flow API failed."""


class ConflictFailure(TransportError):
    """Optimistic-concurrency violation; the caller decides whether to retry."""


class TransientTransportFailure(TransportError):
    """No response was received (connection, timeout, request setup)."""


def _field(error: Any, name: str) -> Any:
    if isinstance(error, Mapping):
        return error.get(name)
    return getattr(error, name, None)


def _details_text(data: Any) -> str:
    if isinstance(data, Mapping):
        details = data.get("details")
    else:
        details = getattr(data, "details", None)
    if details is None:
        return ""
    return str(details)


def classify(error: Any) -> ErrorKind:
    """Label a failed call.

    Accepts TransportError instances, any object exposing ``status``/``data``
    attributes, or a plain mapping with the same keys.
    """
    status = _field(error, "status")
    if status == 409:
        return ErrorKind.CONFLICT
    if status == 500 and "409" in _details_text(_field(error, "data")):
        return ErrorKind.CONFLICT
    if status is None:
        return ErrorKind.TRANSIENT
    return ErrorKind.FATAL


def is_conflict(error: Any) -> bool:
    return classify(error) is ErrorKind.CONFLICT


def error_for_status(
    message: str,
    status: Optional[int],
    data: Any = None,
    request_info: Optional[dict] = None,
) -> TransportError:
    """Build the TransportError subclass matching the classification rules."""
    kind = classify({"status": status, "data": data})
    if kind is ErrorKind.CONFLICT:
        cls = ConflictFailure
    elif kind is ErrorKind.TRANSIENT:
        cls = TransientTransportFailure
    else:
        cls = TransportError
    return cls(message, status=status, data=data, request_info=request_info)


def log_detailed_error(message: str, error: BaseException) -> None:
    """Log a failure with every piece of context that is available."""
    status = getattr(error, "status", None)
    request_info = getattr(error, "request_info", None)
    if status is not None:
        logger.error(
            f"{message}: HTTP {status} - {getattr(error, 'data', None)!r}"
        )
    elif request_info:
        logger.error(f"{message}: no response received (request={request_info}): {error}")
    else:
        logger.error(f"{message}: error during request setup: {error}")


class ErrorClassifier:
    """Classify failures and log the ones that are not expected races."""

    def classify(self, error: Any) -> ErrorKind:
        return classify(error)

    def report(self, message: str, error: BaseException) -> ErrorKind:
        """Log ``error`` unless it is a conflict. The caller re-raises it."""
        kind = classify(error)
        if kind is not ErrorKind.CONFLICT:
            log_detailed_error(message, error)
        return kind

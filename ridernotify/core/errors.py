# ridernotify/core/errors.py
"""
Typed errors for the notification engine.

Each error carries the HTTP status the admin routes answer with when it
escapes an operation.  Per-target errors inside a batch are collected into
the ``BatchResult`` instead of being raised, and the webhook routes never
surface any of them to the provider.
"""
from __future__ import annotations

from typing import Optional

from ridernotify.core.domain import ErrorKind


class NotificationError(Exception):
    """Base class for all notification engine errors."""

    status_code: int = 500

    def __init__(self, detail: str = "Internal error"):
        self.detail = detail
        super().__init__(detail)


class ValidationError(NotificationError):
    """Malformed address or input; rejected before any network call (400)."""

    status_code = 400
    kind = ErrorKind.VALIDATION


class DeliveryError(NotificationError):
    """Provider-side failure of a single send."""

    status_code = 502
    kind = ErrorKind.TRANSIENT
    retryable = True

    def __init__(self, detail: str, provider_status: Optional[int] = None):
        self.provider_status = provider_status
        super().__init__(detail)


class TransientDeliveryError(DeliveryError):
    """5xx, 429, timeout or transport fault. Retried with backoff."""


class PermanentDeliveryError(DeliveryError):
    """Any other 4xx. Fails immediately."""

    kind = ErrorKind.PERMANENT
    retryable = False


class NotFoundError(NotificationError):
    """Assignment or rider missing (404)."""

    status_code = 404


class UnknownSenderError(NotificationError):
    """Inbound SMS from a number not in the rider directory."""

    status_code = 404


class InternalError(NotificationError):
    """Unexpected fault converted into a safe default result."""

    status_code = 500

    @classmethod
    def wrap(cls, exc: BaseException) -> "InternalError":
        return cls(f"Internal error: {type(exc).__name__}")

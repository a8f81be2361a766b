"""
Error taxonomy shared by the API, the gateway and the dashboard client.

HTTP-facing kinds carry the status code they are rendered with by the
exception handlers in app.main.
"""

from __future__ import annotations


class PaymentPulseError(Exception):
    """Base class for all application errors."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(PaymentPulseError):
    """Malformed input or missing required field."""

    status_code = 400


class AuthError(PaymentPulseError):
    """Missing or invalid tenant identifier."""

    status_code = 401


class DependencyError(PaymentPulseError):
    """Store unavailable, aggregation failure or upstream HTTP failure."""

    status_code = 503


class StreamError(PaymentPulseError):
    """Delivery to a single live session failed."""


class ClientSyncError(PaymentPulseError):
    """A delta was applied before any authoritative baseline arrived."""

"""Domain errors raised by the session and billing services.

Every failure is a synchronous, single-operation error. Routes never catch
these individually; the application registers one handler for
``BillingError`` that maps ``kind`` to an HTTP status.
"""

from typing import Any, Dict, Optional


class BillingError(Exception):
    """Base class for all session/billing failures."""

    kind = "billing_error"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "kind": self.kind, **self.details}


class NotFoundError(BillingError):
    """Session, table, product, promotion, bill or item does not exist."""

    kind = "not_found"
    status_code = 404


class ConflictError(BillingError):
    """Table already occupied, destination not free, rate mismatch, already paid."""

    kind = "conflict"
    status_code = 409


class InvalidStateError(BillingError):
    """Operation requires an open session, or targets immutable bill figures."""

    kind = "invalid_state"
    status_code = 409


class ValidationFailure(BillingError):
    """Malformed input: quantity <= 0, bad HH:MM window, inconsistent rule payload."""

    kind = "validation_failure"
    status_code = 422

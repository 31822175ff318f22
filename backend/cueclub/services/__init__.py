# Services module

from cueclub.services.errors import (
    BillingError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationFailure,
)

__all__ = [
    "BillingError",
    "ConflictError",
    "InvalidStateError",
    "NotFoundError",
    "ValidationFailure",
]

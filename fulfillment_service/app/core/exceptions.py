"""
Domain exceptions for the fulfillment and settlement core.

Business rule violations are raised inside services as subclasses of
``FulfillmentError`` and recovered into an ``OperationResult`` at the
service boundary (see ``services/results.py``). Each exception carries a
``FailureKind``, a stable machine ``reason`` and structured ``details`` so
callers can render a specific message.
"""

from enum import Enum
from typing import Any, Dict, Optional


class FailureKind(str, Enum):
    VALIDATION = "validation"
    PRECONDITION_FAILED = "precondition_failed"
    CONFLICT = "conflict"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    DATA_INTEGRITY = "data_integrity"
    PERSISTENCE = "persistence"


class FulfillmentError(Exception):
    """Base class for typed business failures."""

    kind: FailureKind = FailureKind.VALIDATION
    default_reason: str = "invalid_request"

    def __init__(
        self,
        message: str,
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.reason = reason or self.default_reason
        self.details = details or {}

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(kind={self.kind.value!r}, "
            f"reason={self.reason!r}, message={self.message!r})"
        )


class ValidationError(FulfillmentError):
    """Malformed input, e.g. refund amount exceeds the line total."""

    kind = FailureKind.VALIDATION
    default_reason = "invalid_request"


class PreconditionFailed(FulfillmentError):
    """Entity is in the wrong state for the requested transition."""

    kind = FailureKind.PRECONDITION_FAILED
    default_reason = "invalid_transition"


class ConflictError(FulfillmentError):
    """A concurrent mutation changed the entity after it was read."""

    kind = FailureKind.CONFLICT
    default_reason = "stale_state"


class InsufficientBalance(FulfillmentError):
    kind = FailureKind.INSUFFICIENT_BALANCE
    default_reason = "insufficient_balance"


class NotFoundError(FulfillmentError):
    kind = FailureKind.NOT_FOUND
    default_reason = "not_found"


class PermissionDenied(FulfillmentError):
    kind = FailureKind.PERMISSION_DENIED
    default_reason = "not_permitted"


class LedgerIntegrityError(FulfillmentError):
    """Ledger data that must exist is missing (e.g. commission snapshot)."""

    kind = FailureKind.DATA_INTEGRITY
    default_reason = "missing_commission_snapshot"


class OperationFailedError(Exception):
    """
    Raised by the API layer for a failed ``OperationResult`` so the
    centralized error handler can render it.
    """

    def __init__(self, failure: Any):
        super().__init__(failure.message)
        self.failure = failure

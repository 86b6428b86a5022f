"""Typed errors raised by the charging engine.

Every error carries a stable ``code`` that callers show verbatim, since each
kind implies a different corrective action (pick another point, wait, retry
with a fresh reading, ...).
"""

from enum import Enum
from typing import Any


class RejectionReason(str, Enum):
    """Why a meter reading was refused."""

    NON_MONOTONIC = "NonMonotonic"
    OUT_OF_RANGE = "OutOfRange"


class ChargingError(Exception):
    """Base class for all expected, caller-recoverable engine errors."""

    code = "ChargingError"

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = {k: v for k, v in details.items() if v is not None}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, **self.details}


class PointUnavailable(ChargingError):
    """The charging point can not take a new session right now."""

    code = "PointUnavailable"

    def __init__(self, point_id: str, status: str | None = None):
        self.point_id = point_id
        super().__init__(
            f"Charging point {point_id} is currently unavailable",
            point_id=point_id,
            point_status=status,
        )


class DuplicateActiveSession(ChargingError):
    """The user (or the point) already has an Active session."""

    code = "DuplicateActiveSession"

    def __init__(self, user_id: str, session_id: str | None = None):
        self.user_id = user_id
        super().__init__(
            f"User {user_id} already has an active charging session",
            user_id=user_id,
            session_id=session_id,
        )


class InvalidReading(ChargingError):
    """A meter reading was rejected; the session is left untouched."""

    code = "InvalidReading"

    def __init__(self, reason: RejectionReason, previous, candidate, detail: str = ""):
        self.reason = RejectionReason(reason)
        self.previous = previous
        self.candidate = candidate
        message = f"Meter reading {candidate} rejected ({self.reason.value})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(
            message,
            reason=self.reason.value,
            previous=str(previous) if previous is not None else None,
            candidate=str(candidate) if candidate is not None else None,
        )


class SessionNotActive(ChargingError):
    """Operation requires an Active session."""

    code = "SessionNotActive"

    def __init__(self, session_id: str, status: str):
        self.session_id = session_id
        self.status = status
        super().__init__(
            f"Charging session {session_id} is {status}, not Active",
            session_id=session_id,
            status=status,
        )


class SessionNotCompleted(ChargingError):
    """Only Completed sessions have a final cost that can be invoiced."""

    code = "SessionNotCompleted"

    def __init__(self, session_id: str, status: str):
        self.session_id = session_id
        self.status = status
        super().__init__(
            f"Charging session {session_id} is {status}; only Completed sessions can be invoiced",
            session_id=session_id,
            status=status,
        )


class InternalFault(ChargingError):
    """Unexpected failure. When raised by finalisation the session is already in Error."""

    code = "InternalFault"

    def __init__(self, message: str, session_id: str | None = None):
        self.session_id = session_id
        super().__init__(message, session_id=session_id)


class BillingOverflow(ArithmeticError):
    """A computed amount exceeded the configured billing ceiling."""


class SessionNotFound(ChargingError):
    code = "SessionNotFound"

    def __init__(self, session_id: str):
        super().__init__(f"Charging session {session_id} not found", session_id=session_id)


class PointNotFound(ChargingError):
    code = "PointNotFound"

    def __init__(self, point_id: str):
        super().__init__(f"Charging point {point_id} not found", point_id=point_id)


class StationNotFound(ChargingError):
    code = "StationNotFound"

    def __init__(self, station_id: str):
        super().__init__(f"Station {station_id} not found", station_id=station_id)


class InvoiceNotFound(ChargingError):
    code = "InvoiceNotFound"

    def __init__(self, invoice_id: str):
        super().__init__(f"Invoice {invoice_id} not found", invoice_id=invoice_id)


class InvoiceStateError(ChargingError):
    """Illegal invoice status change (Paid and Cancelled are final)."""

    code = "InvoiceStateError"

    def __init__(self, invoice_id: str, status: str, requested: str):
        super().__init__(
            f"Invoice {invoice_id} is {status} and can not become {requested}",
            invoice_id=invoice_id,
            status=status,
            requested=requested,
        )

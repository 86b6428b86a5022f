from .availability import (
    CLASS_TABLE,
    Availability,
    AvailabilityClass,
    AvailabilityClassifier,
    AvailabilityService,
    AvailabilitySnapshot,
    is_compatible,
)
from .battery import BatteryEstimate, estimate_battery
from .core import ChargingEngine
from .cost import CostBreakdown, CostCalculator, compute_cost
from .errors import (
    BillingOverflow,
    ChargingError,
    DuplicateActiveSession,
    InternalFault,
    InvalidReading,
    InvoiceNotFound,
    InvoiceStateError,
    PointNotFound,
    PointUnavailable,
    RejectionReason,
    SessionNotActive,
    SessionNotCompleted,
    SessionNotFound,
    StationNotFound,
)
from .idle import IdleDetector, IdleEvaluation
from .invoices import InvoiceIssuer
from .locks import KeyedLocks
from .sessions import MeterUpdate, SessionSnapshot, SessionStateMachine
from .validator import MeterReadingValidator, ReadingCheck

__all__ = [
    "CLASS_TABLE",
    "Availability",
    "AvailabilityClass",
    "AvailabilityClassifier",
    "AvailabilityService",
    "AvailabilitySnapshot",
    "BatteryEstimate",
    "BillingOverflow",
    "ChargingEngine",
    "ChargingError",
    "CostBreakdown",
    "CostCalculator",
    "DuplicateActiveSession",
    "IdleDetector",
    "IdleEvaluation",
    "InternalFault",
    "InvalidReading",
    "InvoiceIssuer",
    "InvoiceNotFound",
    "InvoiceStateError",
    "KeyedLocks",
    "MeterReadingValidator",
    "MeterUpdate",
    "PointNotFound",
    "PointUnavailable",
    "ReadingCheck",
    "RejectionReason",
    "SessionNotActive",
    "SessionNotCompleted",
    "SessionNotFound",
    "SessionSnapshot",
    "SessionStateMachine",
    "StationNotFound",
    "compute_cost",
    "estimate_battery",
    "is_compatible",
]

from .domain import (
    ChargingPoint,
    ChargingSession,
    Invoice,
    InvoiceStatus,
    MeterReading,
    PointStatus,
    SessionStatus,
    Station,
)

__all__ = [
    "ChargingPoint",
    "ChargingSession",
    "Invoice",
    "InvoiceStatus",
    "MeterReading",
    "PointStatus",
    "SessionStatus",
    "Station",
]

from .charging_point import ChargingPointRepository
from .invoice import InvoiceRepository
from .meter_reading import MeterReadingRepository
from .session import SessionRepository
from .station import StationRepository

__all__ = [
    "ChargingPointRepository",
    "InvoiceRepository",
    "MeterReadingRepository",
    "SessionRepository",
    "StationRepository",
]

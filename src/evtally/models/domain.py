"""Domain models for the charging-session billing engine."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional


class SessionStatus(str, Enum):
    """Lifecycle states of a charging session. Completed and Error are terminal."""

    ACTIVE = "Active"
    COMPLETED = "Completed"
    ERROR = "Error"


class InvoiceStatus(str, Enum):
    """Billing states of an invoice."""

    ISSUED = "Issued"
    PAID = "Paid"
    CANCELLED = "Cancelled"


class PointStatus(str, Enum):
    """Operational status of a charging point or station."""

    AVAILABLE = "Available"
    IN_USE = "InUse"
    RESERVED = "Reserved"
    MAINTENANCE = "Maintenance"
    OFFLINE = "Offline"


@dataclass
class Station:
    """A charging site grouping one or more charging points."""

    id: str
    name: str = ""
    status: PointStatus = PointStatus.AVAILABLE
    price_per_kwh: Decimal = Decimal("0")
    vehicle_compatibility: list[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class ChargingPoint:
    """A physical delivery point on a station."""

    id: str
    station_id: str
    name: str = ""
    power_kw: Decimal = Decimal("0")
    connector_type: str = ""
    status: PointStatus = PointStatus.AVAILABLE
    idle_fee_per_minute: Decimal = Decimal("0")
    reserved_booking_id: Optional[str] = None
    last_seen_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class ChargingSession:
    """
    One charge-delivery episode on a charging point.

    Price inputs (price_per_kwh, idle_fee_per_minute, power_kw) are copied from
    the station and point at start so that the live estimate and the final
    bill are computed from the same numbers.
    """

    id: str
    user_id: str
    point_id: str
    start_time: datetime
    meter_start: Decimal
    meter_current: Decimal
    price_per_kwh: Decimal = Decimal("0")
    idle_fee_per_minute: Decimal = Decimal("0")
    power_kw: Optional[Decimal] = None
    vehicle_id: Optional[str] = None
    booking_id: Optional[str] = None
    status: SessionStatus = SessionStatus.ACTIVE
    end_time: Optional[datetime] = None
    meter_end: Optional[Decimal] = None
    last_reading_at: Optional[datetime] = None
    last_advance_at: Optional[datetime] = None
    idle_started_at: Optional[datetime] = None
    idle_accrued_at: Optional[datetime] = None
    idle_minutes: float = 0.0
    energy_cost: Optional[Decimal] = None
    idle_fee: Optional[Decimal] = None
    total_cost: Optional[Decimal] = None
    battery_capacity_kwh: Optional[Decimal] = None
    initial_battery_percent: Optional[float] = None
    target_battery_percent: Optional[float] = None
    error_reason: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    @property
    def energy_consumed_kwh(self) -> Decimal:
        """Energy delivered so far (or in total once the session has ended)."""
        reading = self.meter_end if self.meter_end is not None else self.meter_current
        return max(reading - self.meter_start, Decimal("0"))

    @property
    def has_battery_target(self) -> bool:
        return (
            self.battery_capacity_kwh is not None
            and self.battery_capacity_kwh > 0
            and self.initial_battery_percent is not None
            and self.target_battery_percent is not None
        )


@dataclass
class Invoice:
    """Billing artifact for exactly one completed session."""

    id: str
    session_id: str
    user_id: str
    amount: Decimal
    issued_at: datetime
    status: InvoiceStatus = InvoiceStatus.ISSUED
    payment_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class MeterReading:
    """An accepted meter reading, kept as an append-only audit trail."""

    session_id: str
    value: Decimal
    timestamp: datetime
    context: str = "Sample.Periodic"
    id: Optional[int] = None
    created_at: Optional[datetime] = None

"""JSON shapes for engine objects. Decimals are rendered as strings, timestamps as ISO-8601."""

from datetime import datetime
from decimal import Decimal
from typing import Any

from ..engine import BatteryEstimate, CostBreakdown, MeterUpdate, SessionSnapshot
from ..models import ChargingSession, Invoice, MeterReading


def _dec(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


def _ts(value: datetime | None) -> str | None:
    return None if value is None else value.isoformat()


def cost_to_dict(cost: CostBreakdown | None) -> dict[str, Any] | None:
    return None if cost is None else cost.to_dict()


def battery_to_dict(battery: BatteryEstimate | None) -> dict[str, Any] | None:
    if battery is None:
        return None
    return {
        "current_percent": round(battery.current_percent, 1),
        "target_percent": battery.target_percent,
        "minutes_remaining": battery.minutes_remaining,
        "estimated_completion_at": _ts(battery.estimated_completion_at),
        "target_reached": battery.target_reached,
    }


def session_to_dict(session: ChargingSession) -> dict[str, Any]:
    return {
        "id": session.id,
        "user_id": session.user_id,
        "point_id": session.point_id,
        "vehicle_id": session.vehicle_id,
        "booking_id": session.booking_id,
        "status": session.status.value,
        "start_time": _ts(session.start_time),
        "end_time": _ts(session.end_time),
        "meter_start": _dec(session.meter_start),
        "meter_current": _dec(session.meter_current),
        "meter_end": _dec(session.meter_end),
        "energy_consumed_kwh": _dec(session.energy_consumed_kwh),
        "price_per_kwh": _dec(session.price_per_kwh),
        "idle_fee_per_minute": _dec(session.idle_fee_per_minute),
        "idle_started_at": _ts(session.idle_started_at),
        "idle_minutes": session.idle_minutes,
        "energy_cost": _dec(session.energy_cost),
        "idle_fee": _dec(session.idle_fee),
        "total_cost": _dec(session.total_cost),
        "error_reason": session.error_reason or None,
    }


def snapshot_to_dict(snapshot: SessionSnapshot) -> dict[str, Any]:
    data = session_to_dict(snapshot.session)
    data.update(
        {
            "as_of": _ts(snapshot.as_of),
            "energy_consumed_kwh": _dec(snapshot.energy_consumed_kwh),
            "idle_minutes": snapshot.idle_minutes,
            "is_idle": snapshot.is_idle,
            "cost": cost_to_dict(snapshot.cost),
            "battery": battery_to_dict(snapshot.battery),
        }
    )
    return data


def update_to_dict(update: MeterUpdate) -> dict[str, Any]:
    return {
        "session_id": update.session.id,
        "accepted_reading": _dec(update.accepted_reading),
        "energy_so_far": _dec(update.energy_so_far),
        "estimated_cost": cost_to_dict(update.estimated_cost),
        "is_idle": update.is_idle,
        "idle_minutes": update.session.idle_minutes,
        "battery": battery_to_dict(update.battery),
    }


def invoice_to_dict(invoice: Invoice) -> dict[str, Any]:
    return {
        "id": invoice.id,
        "session_id": invoice.session_id,
        "user_id": invoice.user_id,
        "amount": _dec(invoice.amount),
        "status": invoice.status.value,
        "payment_id": invoice.payment_id,
        "issued_at": _ts(invoice.issued_at),
    }


def reading_to_dict(reading: MeterReading) -> dict[str, Any]:
    return {
        "id": reading.id,
        "value": _dec(reading.value),
        "timestamp": _ts(reading.timestamp),
        "context": reading.context,
    }

"""Battery progress estimation for sessions started with a charge target."""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from ..models import ChargingSession


@dataclass(frozen=True)
class BatteryEstimate:
    current_percent: float
    target_percent: float
    minutes_remaining: int | None
    estimated_completion_at: datetime | None

    @property
    def target_reached(self) -> bool:
        return self.current_percent >= self.target_percent


def estimate_battery(session: ChargingSession, now: datetime) -> BatteryEstimate | None:
    """
    Estimate state of charge from delivered energy.

    current = initial + energy / capacity * 100, capped at 100.
    Minutes remaining assume the point's rated power for the rest of the
    session. Returns None when the session has no battery target.
    """
    if not session.has_battery_target:
        return None

    capacity = float(session.battery_capacity_kwh)
    energy = float(session.energy_consumed_kwh)
    current = min(100.0, session.initial_battery_percent + energy / capacity * 100)
    target = session.target_battery_percent

    minutes_remaining = None
    completion_at = None
    power = float(session.power_kw) if session.power_kw else 0.0
    if power > 0:
        remaining_kwh = max(0.0, (target - current) / 100 * capacity)
        minutes_remaining = math.ceil(remaining_kwh / power * 60)
        completion_at = now + timedelta(minutes=minutes_remaining)

    return BatteryEstimate(
        current_percent=current,
        target_percent=target,
        minutes_remaining=minutes_remaining,
        estimated_completion_at=completion_at,
    )

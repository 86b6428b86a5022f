"""Idle detection: vehicle still connected but no longer drawing power."""

from dataclasses import dataclass
from datetime import datetime, timedelta

from ..models import ChargingSession
from .battery import estimate_battery


@dataclass(frozen=True)
class IdleEvaluation:
    """
    Result of one idle evaluation.

    ``idle_minutes`` is the total accrued over every idle window of the
    session up to the evaluation instant; ``idle_minutes_delta`` is what this
    evaluation added to it.
    """

    is_idle: bool
    idle_minutes: float
    idle_minutes_delta: float
    idle_started_at: datetime | None
    idle_accrued_at: datetime | None
    trigger: str | None = None

    def apply_to(self, session: ChargingSession) -> None:
        session.idle_minutes = self.idle_minutes
        session.idle_started_at = self.idle_started_at
        session.idle_accrued_at = self.idle_accrued_at


def _minutes(delta: timedelta) -> float:
    return max(delta.total_seconds(), 0.0) / 60


class IdleDetector:
    """
    Decides whether an Active session is idle and accrues idle minutes.

    A session is idle once its battery target is reached (when a target is
    tracked) or once the meter has not advanced for longer than
    ``stale_window``. Idle windows are summed: when charging resumes the
    open window is closed and its minutes kept, and a later idle period opens
    a fresh window.
    """

    TARGET_REACHED = "target_reached"
    METER_STALE = "meter_stale"

    def __init__(self, stale_window: timedelta = timedelta(minutes=10)):
        self.stale_window = stale_window

    def _condition(self, session: ChargingSession, now: datetime) -> tuple[datetime | None, str | None]:
        """Return (onset, trigger) when the session is idle at ``now``."""
        battery = estimate_battery(session, now)
        if battery is not None and battery.target_reached:
            return now, self.TARGET_REACHED

        last_advance = session.last_advance_at or session.start_time
        stale_since = last_advance + self.stale_window
        if now > stale_since:
            return stale_since, self.METER_STALE

        return None, None

    def evaluate(self, session: ChargingSession, now: datetime) -> IdleEvaluation:
        if not session.is_active:
            return IdleEvaluation(
                is_idle=False,
                idle_minutes=session.idle_minutes,
                idle_minutes_delta=0.0,
                idle_started_at=session.idle_started_at,
                idle_accrued_at=session.idle_accrued_at,
            )

        onset, trigger = self._condition(session, now)
        is_idle = onset is not None
        started = session.idle_started_at
        accrued_at = session.idle_accrued_at
        delta = 0.0

        if started is not None:
            since = max(started, accrued_at) if accrued_at else started
            delta = _minutes(now - since)
            accrued_at = max(since, now)
            if not is_idle:
                # Charging resumed: keep the minutes, close the window
                started = None
        elif is_idle:
            started = min(onset, now)
            delta = _minutes(now - started)
            accrued_at = now

        return IdleEvaluation(
            is_idle=is_idle,
            idle_minutes=session.idle_minutes + delta,
            idle_minutes_delta=delta,
            idle_started_at=started,
            idle_accrued_at=accrued_at,
            trigger=trigger,
        )

"""Tests for idle detection and battery estimation."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from evtally.engine import IdleDetector, estimate_battery
from evtally.models import ChargingSession, SessionStatus

T0 = datetime(2026, 3, 1, 8, 0, tzinfo=UTC)


def make_session(**overrides) -> ChargingSession:
    fields = {
        "id": "S1",
        "user_id": "U1",
        "point_id": "P1",
        "start_time": T0,
        "meter_start": Decimal("100"),
        "meter_current": Decimal("100"),
        "last_reading_at": T0,
        "last_advance_at": T0,
        "power_kw": Decimal("60"),
    }
    fields.update(overrides)
    return ChargingSession(**fields)


def minutes(n: float) -> timedelta:
    return timedelta(minutes=n)


@pytest.mark.unit
class TestIdleDetector:
    def test_not_idle_while_meter_advances(self):
        detector = IdleDetector(stale_window=minutes(10))
        session = make_session(last_advance_at=T0 + minutes(5))

        result = detector.evaluate(session, T0 + minutes(12))

        assert result.is_idle is False
        assert result.idle_minutes == 0
        assert result.idle_started_at is None

    def test_stale_meter_starts_idle_at_window_end(self):
        detector = IdleDetector(stale_window=minutes(10))
        session = make_session()

        result = detector.evaluate(session, T0 + minutes(25))

        assert result.is_idle is True
        assert result.trigger == IdleDetector.METER_STALE
        assert result.idle_started_at == T0 + minutes(10)
        assert result.idle_minutes == pytest.approx(15)
        assert result.idle_minutes_delta == pytest.approx(15)

    def test_idle_start_recorded_once_and_minutes_never_regress(self):
        detector = IdleDetector(stale_window=minutes(10))
        session = make_session()

        detector.evaluate(session, T0 + minutes(15)).apply_to(session)
        first_start = session.idle_started_at
        detector.evaluate(session, T0 + minutes(20)).apply_to(session)

        assert session.idle_started_at == first_start
        assert session.idle_minutes == pytest.approx(10)

        # An evaluation with an earlier clock adds nothing
        late = detector.evaluate(session, T0 + minutes(18))
        assert late.idle_minutes_delta == 0
        assert late.idle_minutes == pytest.approx(10)

    def test_idle_windows_are_summed(self):
        detector = IdleDetector(stale_window=minutes(10))
        session = make_session()

        # First idle window: 10 -> 20
        detector.evaluate(session, T0 + minutes(20)).apply_to(session)
        assert session.idle_minutes == pytest.approx(10)

        # Charging resumes at 20: window closes, minutes kept
        session.meter_current = Decimal("105")
        session.last_advance_at = T0 + minutes(20)
        resumed = detector.evaluate(session, T0 + minutes(20))
        resumed.apply_to(session)
        assert resumed.is_idle is False
        assert session.idle_started_at is None
        assert session.idle_minutes == pytest.approx(10)

        # Second idle window opens at 30, evaluated at 37
        detector.evaluate(session, T0 + minutes(37)).apply_to(session)
        assert session.idle_started_at == T0 + minutes(30)
        assert session.idle_minutes == pytest.approx(17)

    def test_target_reached_counts_as_idle(self):
        detector = IdleDetector(stale_window=minutes(60))
        session = make_session(
            meter_current=Decimal("130"),
            last_advance_at=T0 + minutes(30),
            battery_capacity_kwh=Decimal("60"),
            initial_battery_percent=30.0,
            target_battery_percent=80.0,
        )

        result = detector.evaluate(session, T0 + minutes(31))

        assert result.is_idle is True
        assert result.trigger == IdleDetector.TARGET_REACHED

    def test_terminal_session_is_left_alone(self):
        detector = IdleDetector(stale_window=minutes(10))
        session = make_session(status=SessionStatus.COMPLETED, idle_minutes=3.0)

        result = detector.evaluate(session, T0 + minutes(120))

        assert result.is_idle is False
        assert result.idle_minutes == 3.0
        assert result.idle_minutes_delta == 0


@pytest.mark.unit
class TestBatteryEstimate:
    def test_no_target_means_no_estimate(self):
        assert estimate_battery(make_session(), T0) is None

    def test_progress_and_minutes_remaining(self):
        session = make_session(
            meter_current=Decimal("112"),
            battery_capacity_kwh=Decimal("60"),
            initial_battery_percent=20.0,
            target_battery_percent=80.0,
        )

        battery = estimate_battery(session, T0)

        # 12 kWh of 60 kWh is 20 points
        assert battery.current_percent == pytest.approx(40.0)
        # 40 points of 60 kWh = 24 kWh at 60 kW = 24 minutes
        assert battery.minutes_remaining == 24
        assert battery.estimated_completion_at == T0 + minutes(24)
        assert battery.target_reached is False

    def test_capped_at_full(self):
        session = make_session(
            meter_current=Decimal("200"),
            battery_capacity_kwh=Decimal("40"),
            initial_battery_percent=50.0,
            target_battery_percent=90.0,
        )

        battery = estimate_battery(session, T0)

        assert battery.current_percent == 100.0
        assert battery.minutes_remaining == 0
        assert battery.target_reached is True

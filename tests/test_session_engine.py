"""Tests for the session lifecycle: start, meter updates, stop and failure."""

import asyncio
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from evtally.engine import (
    ChargingEngine,
    CostCalculator,
    DuplicateActiveSession,
    InternalFault,
    InvalidReading,
    PointNotFound,
    PointUnavailable,
    RejectionReason,
    SessionNotActive,
    SessionNotCompleted,
    SessionNotFound,
)
from evtally.engine.sessions import CONTEXT_BEGIN, CONTEXT_END, CONTEXT_PERIODIC
from evtally.models import PointStatus, SessionStatus

T0 = datetime(2026, 3, 1, 8, 0, tzinfo=UTC)


def at(minutes: float) -> datetime:
    return T0 + timedelta(minutes=minutes)


@pytest.mark.integration
class TestStartSession:
    """Opening a session on a point."""

    async def test_start_opens_active_session_and_takes_point(self, engine, station):
        session = await engine.sessions.start("U1", "ST1-P1", "100", now=T0)

        assert session.status == SessionStatus.ACTIVE
        assert session.meter_start == Decimal("100")
        assert session.meter_current == Decimal("100")
        assert session.start_time == T0
        # Prices are copied from the station and point
        assert session.price_per_kwh == Decimal("5000")
        assert session.idle_fee_per_minute == Decimal("1000")
        assert session.power_kw == Decimal("50")

        point = await engine.point_repo.get_by_id("ST1-P1")
        assert point.status == PointStatus.IN_USE

        readings = await engine.sessions.get_readings(session.id)
        assert [(r.value, r.context) for r in readings] == [(Decimal("100"), CONTEXT_BEGIN)]

    async def test_unknown_point(self, engine, station):
        with pytest.raises(PointNotFound):
            await engine.sessions.start("U1", "NOPE", 0, now=T0)

    async def test_second_session_for_same_user_is_refused(self, engine, station):
        first = await engine.sessions.start("U1", "ST1-P1", 0, now=T0)

        with pytest.raises(DuplicateActiveSession) as exc_info:
            await engine.sessions.start("U1", "ST1-P2", 0, now=at(1))

        assert exc_info.value.to_dict()["session_id"] == first.id
        point = await engine.point_repo.get_by_id("ST1-P2")
        assert point.status == PointStatus.AVAILABLE

    async def test_occupied_point_is_unavailable(self, engine, station):
        await engine.sessions.start("U1", "ST1-P1", 0, now=T0)

        with pytest.raises(PointUnavailable):
            await engine.sessions.start("U2", "ST1-P1", 0, now=at(1))

    async def test_concurrent_starts_for_one_user_yield_one_session(self, engine, station):
        results = await asyncio.gather(
            engine.sessions.start("U1", "ST1-P1", 0, now=T0),
            engine.sessions.start("U1", "ST1-P2", 0, now=T0),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], DuplicateActiveSession)
        sessions, total = await engine.sessions.list_sessions(user_id="U1")
        assert total == 1

    async def test_concurrent_starts_on_one_point_yield_one_session(self, engine, station):
        results = await asyncio.gather(
            engine.sessions.start("U1", "ST1-P1", 0, now=T0),
            engine.sessions.start("U2", "ST1-P1", 0, now=T0),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], PointUnavailable)

    async def test_point_race_between_engines_reports_point_unavailable(self, db_connection, station):
        # Separate engines share no in-process locks; only the unique indexes arbitrate
        first, second = ChargingEngine(db_connection), ChargingEngine(db_connection)

        results = await asyncio.gather(
            first.sessions.start("U1", "ST1-P1", 0, now=T0),
            second.sessions.start("U2", "ST1-P1", 0, now=T0),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], PointUnavailable)
        assert await first.sessions.get_active_for_user("U2") is None

    async def test_point_index_violation_maps_to_point_unavailable(self, engine, station):
        await engine.sessions.start("U1", "ST1-P1", 0, now=T0)
        await engine.point_repo.set_status("ST1-P1", PointStatus.AVAILABLE)

        with patch.object(
            engine.sessions.sessions, "get_active_for_point", AsyncMock(return_value=None)
        ):
            with pytest.raises(PointUnavailable) as exc_info:
                await engine.sessions.start("U2", "ST1-P1", 0, now=at(1))

        assert exc_info.value.to_dict()["point_status"] == PointStatus.IN_USE.value

    async def test_user_index_violation_maps_to_duplicate_session(self, engine, station):
        winner = await engine.sessions.start("U1", "ST1-P1", 0, now=T0)
        lookups = AsyncMock(side_effect=[None, winner])

        with patch.object(engine.sessions.sessions, "get_active_for_user", lookups):
            with pytest.raises(DuplicateActiveSession) as exc_info:
                await engine.sessions.start("U1", "ST1-P2", 0, now=at(1))

        assert exc_info.value.to_dict()["session_id"] == winner.id

    @pytest.mark.parametrize("status", [PointStatus.MAINTENANCE, PointStatus.OFFLINE])
    async def test_point_out_of_service(self, engine, station, status):
        await engine.point_repo.set_status("ST1-P1", status)

        with pytest.raises(PointUnavailable) as exc_info:
            await engine.sessions.start("U1", "ST1-P1", 0, now=T0)
        assert exc_info.value.to_dict()["point_status"] == status.value

    async def test_closed_station_blocks_its_points(self, engine, station):
        await engine.station_repo.update_status("ST1", PointStatus.MAINTENANCE)

        with pytest.raises(PointUnavailable):
            await engine.sessions.start("U1", "ST1-P1", 0, now=T0)

    async def test_reserved_point_only_opens_for_its_booking(self, engine, station):
        await engine.point_repo.set_status("ST1-P1", PointStatus.RESERVED, reserved_booking_id="B1")

        with pytest.raises(PointUnavailable):
            await engine.sessions.start("U1", "ST1-P1", 0, now=T0)
        with pytest.raises(PointUnavailable):
            await engine.sessions.start("U1", "ST1-P1", 0, booking_id="B2", now=T0)

        session = await engine.sessions.start("U1", "ST1-P1", 0, booking_id="B1", now=T0)
        assert session.booking_id == "B1"
        point = await engine.point_repo.get_by_id("ST1-P1")
        assert point.status == PointStatus.IN_USE
        assert point.reserved_booking_id is None

    async def test_invalid_opening_reading(self, engine, station):
        with pytest.raises(InvalidReading) as exc_info:
            await engine.sessions.start("U1", "ST1-P1", "abc", now=T0)
        assert exc_info.value.reason == RejectionReason.OUT_OF_RANGE

    async def test_partial_battery_arguments_are_refused(self, engine, station):
        with pytest.raises(ValueError):
            await engine.sessions.start("U1", "ST1-P1", 0, battery_capacity_kwh=60, now=T0)
        with pytest.raises(ValueError):
            await engine.sessions.start(
                "U1",
                "ST1-P1",
                0,
                battery_capacity_kwh=60,
                initial_battery_percent=80,
                target_battery_percent=40,
                now=T0,
            )


@pytest.mark.integration
class TestMeterUpdates:
    """Periodic readings and the live estimate."""

    async def test_accepted_reading_updates_estimate(self, engine, station):
        session = await engine.sessions.start("U1", "ST1-P1", "100", now=T0)

        update = await engine.sessions.update_meter(session.id, "112.5", now=at(15))

        assert update.accepted_reading == Decimal("112.5")
        assert update.energy_so_far == Decimal("12.5")
        assert update.estimated_cost.total_cost == Decimal("62500")
        assert update.is_idle is False

        stored = await engine.sessions.get(session.id)
        assert stored.meter_current == Decimal("112.5")
        assert stored.last_reading_at == at(15)

    async def test_decreasing_reading_is_rejected_and_changes_nothing(self, engine, station):
        session = await engine.sessions.start("U1", "ST1-P1", "100", now=T0)
        await engine.sessions.update_meter(session.id, "112.5", now=at(15))

        with pytest.raises(InvalidReading) as exc_info:
            await engine.sessions.update_meter(session.id, "112.4", now=at(16))

        assert exc_info.value.reason == RejectionReason.NON_MONOTONIC
        stored = await engine.sessions.get(session.id)
        assert stored.meter_current == Decimal("112.5")
        assert stored.last_reading_at == at(15)
        assert len(await engine.sessions.get_readings(session.id)) == 2

    async def test_implausible_jump_is_rejected(self, engine, station):
        session = await engine.sessions.start("U1", "ST1-P1", "100", now=T0)

        # 50 kW for one minute can not deliver 40 kWh
        with pytest.raises(InvalidReading) as exc_info:
            await engine.sessions.update_meter(session.id, "140", now=at(1))
        assert exc_info.value.reason == RejectionReason.OUT_OF_RANGE

    async def test_stale_meter_accrues_idle_minutes(self, engine, station):
        session = await engine.sessions.start("U1", "ST1-P1", "100", now=T0)
        await engine.sessions.update_meter(session.id, "110", now=at(12))

        update = await engine.sessions.update_meter(session.id, "110", now=at(30))

        # Meter last advanced at 12, idle from 22
        assert update.is_idle is True
        assert update.session.idle_minutes == pytest.approx(8)
        assert update.estimated_cost.idle_fee == Decimal("8000")
        assert update.estimated_cost.total_cost == Decimal("58000")

        stored = await engine.sessions.get(session.id)
        assert stored.idle_started_at == at(22)
        assert stored.idle_minutes == pytest.approx(8)

    async def test_update_on_unknown_or_finished_session(self, engine, station):
        with pytest.raises(SessionNotFound):
            await engine.sessions.update_meter("missing", 1, now=T0)

        session = await engine.sessions.start("U1", "ST1-P1", 0, now=T0)
        await engine.sessions.stop(session.id, now=at(1))
        with pytest.raises(SessionNotActive):
            await engine.sessions.update_meter(session.id, 1, now=at(2))


@pytest.mark.integration
class TestStopSession:
    """Finalising sessions."""

    async def test_energy_only_bill(self, engine, station):
        session = await engine.sessions.start("U1", "ST1-P1", "100", now=T0)
        await engine.sessions.update_meter(session.id, "112.5", now=at(15))

        stopped = await engine.sessions.stop(
            session.id, meter_end="112.5", idle_minutes_override=0, now=at(16)
        )

        assert stopped.status == SessionStatus.COMPLETED
        assert stopped.energy_consumed_kwh == Decimal("12.5")
        assert stopped.energy_cost == Decimal("62500")
        assert stopped.idle_fee == Decimal("0")
        assert stopped.total_cost == Decimal("62500")
        assert stopped.end_time == at(16)

        stored = await engine.sessions.get(session.id)
        assert stored.total_cost == Decimal("62500")
        point = await engine.point_repo.get_by_id("ST1-P1")
        assert point.status == PointStatus.AVAILABLE

    async def test_idle_only_bill(self, engine, station):
        session = await engine.sessions.start("U1", "ST1-P1", "50", now=T0)

        stopped = await engine.sessions.stop(
            session.id, meter_end="50", idle_minutes_override=20, now=at(30)
        )

        assert stopped.energy_cost == Decimal("0")
        assert stopped.idle_fee == Decimal("20000")
        assert stopped.total_cost == Decimal("20000")

    async def test_final_bill_matches_last_estimate(self, engine, station):
        session = await engine.sessions.start("U1", "ST1-P1", "100", now=T0)
        await engine.sessions.update_meter(session.id, "110", now=at(12))
        update = await engine.sessions.update_meter(session.id, "110", now=at(30))

        stopped = await engine.sessions.stop(session.id, now=at(30))

        assert stopped.meter_end == Decimal("110")
        assert stopped.total_cost == update.estimated_cost.total_cost

    async def test_second_stop_is_refused_and_bill_unchanged(self, engine, station):
        session = await engine.sessions.start("U1", "ST1-P1", "100", now=T0)
        first = await engine.sessions.stop(session.id, meter_end="105", now=at(10))

        with pytest.raises(SessionNotActive):
            await engine.sessions.stop(session.id, meter_end="120", idle_minutes_override=30, now=at(40))

        stored = await engine.sessions.get(session.id)
        assert stored.total_cost == first.total_cost
        assert stored.meter_end == Decimal("105")

    async def test_concurrent_stops_finalize_once(self, engine, station):
        session = await engine.sessions.start("U1", "ST1-P1", "100", now=T0)

        results = await asyncio.gather(
            engine.sessions.stop(session.id, meter_end="105", now=at(10)),
            engine.sessions.stop(session.id, meter_end="106", now=at(10)),
            return_exceptions=True,
        )

        completed = [r for r in results if not isinstance(r, Exception)]
        errors = [r for r in results if isinstance(r, Exception)]
        assert len(completed) == 1
        assert len(errors) == 1
        assert isinstance(errors[0], SessionNotActive)
        stored = await engine.sessions.get(session.id)
        assert stored.total_cost == completed[0].total_cost

    async def test_rejected_closing_reading_leaves_session_active(self, engine, station):
        session = await engine.sessions.start("U1", "ST1-P1", "100", now=T0)

        with pytest.raises(InvalidReading):
            await engine.sessions.stop(session.id, meter_end="99", now=at(5))

        stored = await engine.sessions.get(session.id)
        assert stored.status == SessionStatus.ACTIVE

    async def test_negative_idle_override(self, engine, station):
        session = await engine.sessions.start("U1", "ST1-P1", "100", now=T0)
        with pytest.raises(ValueError):
            await engine.sessions.stop(session.id, idle_minutes_override=-1, now=at(5))

    @pytest.mark.parametrize("override", [float("nan"), float("inf"), float("-inf")])
    async def test_non_finite_idle_override_keeps_session_billable(self, engine, station, override):
        session = await engine.sessions.start("U1", "ST1-P1", "100", now=T0)

        with pytest.raises(ValueError):
            await engine.sessions.stop(
                session.id, meter_end="104", idle_minutes_override=override, now=at(5)
            )

        assert (await engine.sessions.get(session.id)).status == SessionStatus.ACTIVE
        stopped = await engine.sessions.stop(session.id, meter_end="104", now=at(6))
        assert stopped.status == SessionStatus.COMPLETED
        assert stopped.total_cost == Decimal("20000")

    async def test_readings_form_an_audit_trail(self, engine, station):
        session = await engine.sessions.start("U1", "ST1-P1", "100", now=T0)
        await engine.sessions.update_meter(session.id, "104", now=at(5))
        await engine.sessions.stop(session.id, meter_end="106", now=at(8))

        readings = await engine.sessions.get_readings(session.id)

        assert [r.context for r in readings] == [CONTEXT_BEGIN, CONTEXT_PERIODIC, CONTEXT_END]
        assert [r.value for r in readings] == [Decimal("100"), Decimal("104"), Decimal("106")]

    async def test_point_can_be_reused_after_stop(self, engine, station):
        session = await engine.sessions.start("U1", "ST1-P1", 0, now=T0)
        await engine.sessions.stop(session.id, now=at(5))

        again = await engine.sessions.start("U2", "ST1-P1", 0, now=at(6))
        assert again.status == SessionStatus.ACTIVE


@pytest.mark.integration
class TestSessionFailures:
    """Error transitions."""

    async def test_failed_finalisation_moves_session_to_error(self, db_connection, seed):
        engine = ChargingEngine(
            db_connection, calculator=CostCalculator(max_total_cost=Decimal("100000"))
        )
        await seed()
        session = await engine.sessions.start("U1", "ST1-P1", "0", now=T0)

        # 30 kWh * 5000 is over the ceiling
        with pytest.raises(InternalFault):
            await engine.sessions.stop(session.id, meter_end="30", now=at(60))

        stored = await engine.sessions.get(session.id)
        assert stored.status == SessionStatus.ERROR
        assert stored.total_cost is None
        assert stored.error_reason.startswith("finalize_failed")
        point = await engine.point_repo.get_by_id("ST1-P1")
        assert point.status == PointStatus.AVAILABLE

        with pytest.raises(SessionNotCompleted):
            await engine.invoices.issue_or_get(session.id)

    async def test_fail_releases_point_without_billing(self, engine, station):
        session = await engine.sessions.start("U1", "ST1-P1", "10", now=T0)
        await engine.sessions.update_meter(session.id, "15", now=at(10))

        failed = await engine.sessions.fail(session.id, "charger_fault", now=at(11))

        assert failed.status == SessionStatus.ERROR
        assert failed.error_reason == "charger_fault"
        assert failed.meter_end == Decimal("15")
        assert failed.total_cost is None
        point = await engine.point_repo.get_by_id("ST1-P1")
        assert point.status == PointStatus.AVAILABLE
        assert await engine.sessions.get_active_for_user("U1") is None

        with pytest.raises(SessionNotActive):
            await engine.sessions.fail(session.id, "again", now=at(12))


@pytest.mark.integration
class TestSessionQueries:
    """Read side: snapshots and listings."""

    async def test_snapshot_projects_idle_without_writing(self, engine, station):
        session = await engine.sessions.start("U1", "ST1-P1", "100", now=T0)
        await engine.sessions.update_meter(session.id, "110", now=at(12))

        snapshot = await engine.sessions.snapshot(session.id, now=at(30))

        assert snapshot.is_idle is True
        assert snapshot.idle_minutes == pytest.approx(8)
        assert snapshot.energy_consumed_kwh == Decimal("10")
        assert snapshot.cost.total_cost == Decimal("58000")

        stored = await engine.sessions.get(session.id)
        assert stored.idle_minutes == 0
        assert stored.idle_started_at is None

    async def test_snapshot_of_completed_session_is_frozen(self, engine, station):
        session = await engine.sessions.start("U1", "ST1-P1", "100", now=T0)
        await engine.sessions.stop(session.id, meter_end="101", now=at(5))

        later = await engine.sessions.snapshot(session.id, now=at(500))

        assert later.is_idle is False
        assert later.cost.total_cost == Decimal("5000")

    async def test_snapshot_includes_battery_progress(self, engine, station):
        session = await engine.sessions.start(
            "U1",
            "ST1-P1",
            "0",
            battery_capacity_kwh="60",
            initial_battery_percent=20,
            target_battery_percent=80,
            now=T0,
        )
        await engine.sessions.update_meter(session.id, "12", now=at(15))

        snapshot = await engine.sessions.snapshot(session.id, now=at(15))

        assert snapshot.battery.current_percent == pytest.approx(40.0)
        # 24 kWh left at 50 kW
        assert snapshot.battery.minutes_remaining == 29

    async def test_list_sessions_filters_and_counts(self, engine, station):
        first = await engine.sessions.start("U1", "ST1-P1", 0, now=T0)
        await engine.sessions.stop(first.id, now=at(5))
        await engine.sessions.start("U1", "ST1-P2", 0, now=at(10))
        await engine.sessions.start("U2", "ST1-P1", 0, now=at(11))

        sessions, total = await engine.sessions.list_sessions(user_id="U1")
        assert total == 2
        assert [s.start_time for s in sessions] == [at(10), T0]

        active, total = await engine.sessions.list_sessions(status=SessionStatus.ACTIVE)
        assert total == 2
        assert {s.user_id for s in active} == {"U1", "U2"}

        page, total = await engine.sessions.list_sessions(limit=1, offset=1)
        assert total == 3
        assert len(page) == 1

    async def test_unknown_session(self, engine):
        with pytest.raises(SessionNotFound):
            await engine.sessions.snapshot("missing")

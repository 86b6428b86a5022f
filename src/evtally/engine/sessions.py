"""Charging session lifecycle: Active -> Completed | Error."""

import logging
import math
import time
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from decimal import Decimal
from uuid import uuid4

import aiosqlite

from ..logging_utils import log_error, log_session_event
from ..models import ChargingSession, MeterReading, PointStatus, SessionStatus
from ..plugins.base import HookRunner, PluginHook, no_hooks
from ..repositories import (
    ChargingPointRepository,
    MeterReadingRepository,
    SessionRepository,
    StationRepository,
)
from .battery import BatteryEstimate, estimate_battery
from .cost import CostBreakdown, CostCalculator
from .errors import (
    ChargingError,
    DuplicateActiveSession,
    InternalFault,
    PointNotFound,
    PointUnavailable,
    SessionNotActive,
    SessionNotFound,
)
from .idle import IdleDetector
from .locks import KeyedLocks
from .validator import MeterReadingValidator, to_decimal

logger = logging.getLogger(__name__)

CONTEXT_BEGIN = "Transaction.Begin"
CONTEXT_PERIODIC = "Sample.Periodic"
CONTEXT_END = "Transaction.End"

_STARTABLE = {PointStatus.AVAILABLE, PointStatus.RESERVED}
_STATION_CLOSED = {PointStatus.MAINTENANCE, PointStatus.OFFLINE}


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class MeterUpdate:
    """Outcome of an accepted meter reading: the reading plus the live estimate."""

    session: ChargingSession
    accepted_reading: Decimal
    energy_so_far: Decimal
    estimated_cost: CostBreakdown
    is_idle: bool
    idle_minutes_delta: float
    battery: BatteryEstimate | None = None


@dataclass(frozen=True)
class SessionSnapshot:
    """
    Read-side view of a session as of ``as_of``.

    For an Active session the cost is the estimate the same calculator would
    produce if the session stopped now; for a Completed session it is the
    frozen final cost; Error sessions have no cost.
    """

    session: ChargingSession
    as_of: datetime
    energy_consumed_kwh: Decimal
    cost: CostBreakdown | None
    is_idle: bool
    idle_minutes: float
    battery: BatteryEstimate | None = None


def _validate_battery(capacity, initial, target) -> tuple[Decimal | None, float | None, float | None]:
    if capacity is None and initial is None and target is None:
        return None, None, None
    if capacity is None or initial is None or target is None:
        raise ValueError(
            "battery_capacity_kwh, initial_battery_percent and target_battery_percent go together"
        )
    capacity = to_decimal(capacity)
    initial = float(initial)
    target = float(target)
    if capacity <= 0:
        raise ValueError("battery_capacity_kwh must be positive")
    if not 0 <= initial <= 100 or not 0 <= target <= 100:
        raise ValueError("battery percentages must be between 0 and 100")
    if target <= initial:
        raise ValueError("target_battery_percent must exceed initial_battery_percent")
    return capacity, initial, target


class SessionStateMachine:
    """
    Owns the session lifecycle and orchestrates validation, idle detection
    and costing.

    Start runs under locks keyed by user and point, and every later
    operation under a lock keyed by session. The partial unique indexes on
    the session table back the locks up across processes, and all terminal
    writes are conditional on the row still being Active.
    """

    def __init__(
        self,
        sessions: SessionRepository,
        points: ChargingPointRepository,
        stations: StationRepository,
        readings: MeterReadingRepository,
        validator: MeterReadingValidator | None = None,
        idle_detector: IdleDetector | None = None,
        calculator: CostCalculator | None = None,
        locks: KeyedLocks | None = None,
        run_hooks: HookRunner | None = None,
    ):
        self.sessions = sessions
        self.points = points
        self.stations = stations
        self.readings = readings
        self.validator = validator or MeterReadingValidator()
        self.idle_detector = idle_detector or IdleDetector()
        self.calculator = calculator or CostCalculator()
        self.locks = locks or KeyedLocks()
        self._run_hooks = run_hooks or no_hooks

    # Queries

    async def get(self, session_id: str) -> ChargingSession:
        session = await self.sessions.get_by_id(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    async def get_active_for_user(self, user_id: str) -> ChargingSession | None:
        return await self.sessions.get_active_for_user(user_id)

    async def list_sessions(
        self,
        user_id: str | None = None,
        status: SessionStatus | None = None,
        point_id: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[ChargingSession], int]:
        return await self.sessions.find(
            user_id=user_id, status=status, point_id=point_id, limit=limit, offset=offset
        )

    async def get_readings(self, session_id: str) -> list[MeterReading]:
        await self.get(session_id)
        return await self.readings.get_for_session(session_id)

    async def snapshot(self, session_id: str, now: datetime | None = None) -> SessionSnapshot:
        """Current view of a session for polling clients. Never writes."""
        now = now or _utcnow()
        return self.project(await self.get(session_id), now)

    def project(self, session: ChargingSession, now: datetime) -> SessionSnapshot:
        """Build the read-side view of an already loaded session."""
        if session.status == SessionStatus.ACTIVE:
            view = replace(session)
            evaluation = self.idle_detector.evaluate(view, now)
            evaluation.apply_to(view)
            cost = self._estimate(view)
            return SessionSnapshot(
                session=session,
                as_of=now,
                energy_consumed_kwh=view.energy_consumed_kwh,
                cost=cost,
                is_idle=evaluation.is_idle,
                idle_minutes=view.idle_minutes,
                battery=estimate_battery(view, now),
            )

        cost = None
        if session.status == SessionStatus.COMPLETED and session.total_cost is not None:
            cost = CostBreakdown(
                energy_cost=session.energy_cost,
                idle_fee=session.idle_fee,
                total_cost=session.total_cost,
                billable_idle_minutes=int(session.idle_minutes),
            )
        return SessionSnapshot(
            session=session,
            as_of=now,
            energy_consumed_kwh=session.energy_consumed_kwh,
            cost=cost,
            is_idle=False,
            idle_minutes=session.idle_minutes,
            battery=estimate_battery(session, session.end_time or now),
        )

    # Commands

    async def start(
        self,
        user_id: str,
        point_id: str,
        meter_start,
        booking_id: str | None = None,
        vehicle_id: str | None = None,
        battery_capacity_kwh=None,
        initial_battery_percent: float | None = None,
        target_battery_percent: float | None = None,
        now: datetime | None = None,
    ) -> ChargingSession:
        """
        Open a new Active session on a point and mark the point InUse.

        Raises:
            PointNotFound: unknown point
            DuplicateActiveSession: the user already has an Active session
            PointUnavailable: the point is not Available (nor Reserved for
                this booking), is occupied, or its station is closed
            InvalidReading: the opening meter reading is not a valid number
            ValueError: inconsistent battery arguments
        """
        now = now or _utcnow()
        meter = self.validator.validate_start(meter_start).unwrap()
        capacity, initial, target = _validate_battery(
            battery_capacity_kwh, initial_battery_percent, target_battery_percent
        )

        message_data = {
            "user_id": user_id,
            "point_id": point_id,
            "meter_start": meter,
            "booking_id": booking_id,
            "vehicle_id": vehicle_id,
            "timestamp": now,
        }
        await self._run_hooks(PluginHook.BEFORE_START_SESSION, message_data, None)

        async with self.locks.hold(f"user:{user_id}", f"point:{point_id}"):
            point = await self.points.get_by_id(point_id)
            if point is None:
                raise PointNotFound(point_id)

            existing = await self.sessions.get_active_for_user(user_id)
            if existing is not None:
                raise DuplicateActiveSession(user_id, existing.id)

            reserved_for_us = (
                point.status == PointStatus.RESERVED
                and booking_id is not None
                and point.reserved_booking_id == booking_id
            )
            if point.status not in _STARTABLE or (
                point.status == PointStatus.RESERVED and not reserved_for_us
            ):
                raise PointUnavailable(point_id, point.status.value)

            occupant = await self.sessions.get_active_for_point(point_id)
            if occupant is not None:
                raise PointUnavailable(point_id, PointStatus.IN_USE.value)

            station = await self.stations.get_by_id(point.station_id)
            if station is not None and station.status in _STATION_CLOSED:
                raise PointUnavailable(point_id, station.status.value)

            session = ChargingSession(
                id=str(uuid4()),
                user_id=user_id,
                point_id=point_id,
                vehicle_id=vehicle_id,
                booking_id=booking_id,
                start_time=now,
                meter_start=meter,
                meter_current=meter,
                last_reading_at=now,
                last_advance_at=now,
                price_per_kwh=station.price_per_kwh if station else Decimal("0"),
                idle_fee_per_minute=point.idle_fee_per_minute,
                power_kw=point.power_kw,
                battery_capacity_kwh=capacity,
                initial_battery_percent=initial,
                target_battery_percent=target,
            )
            try:
                session = await self.sessions.create(session)
            except aiosqlite.IntegrityError as e:
                # Another engine won the race for this user or this point
                winner = await self.sessions.get_active_for_user(user_id)
                if winner is not None:
                    raise DuplicateActiveSession(user_id, winner.id) from e
                raise PointUnavailable(point_id, PointStatus.IN_USE.value) from e

            await self.points.set_status(point_id, PointStatus.IN_USE)
            await self.readings.create(
                MeterReading(session_id=session.id, value=meter, timestamp=now, context=CONTEXT_BEGIN)
            )

        log_session_event(
            logger,
            "start",
            session.id,
            user_id=user_id,
            point_id=point_id,
            meter_start=str(meter),
            price_per_kwh=str(session.price_per_kwh),
            booking_id=booking_id,
        )
        await self._run_hooks(PluginHook.AFTER_START_SESSION, message_data, session)
        return session

    async def update_meter(self, session_id: str, reading, now: datetime | None = None) -> MeterUpdate:
        """
        Accept a periodic meter reading and return the live estimate.

        Raises:
            SessionNotFound, SessionNotActive, InvalidReading
        """
        now = now or _utcnow()
        message_data = {"session_id": session_id, "reading": reading, "timestamp": now}

        async with self.locks.hold(f"session:{session_id}"):
            session = await self._get_active(session_id)
            value = await self._accept(session, reading, now)

            previous_reading = session.meter_current
            self._apply_reading(session, value, now)
            evaluation = self.idle_detector.evaluate(session, now)
            evaluation.apply_to(session)
            estimate = self._estimate(session)

            if not await self.sessions.save_progress(session):
                raise await self._not_active(session_id)
            await self.readings.create(
                MeterReading(session_id=session_id, value=value, timestamp=now, context=CONTEXT_PERIODIC)
            )
            await self.points.update_last_seen(session.point_id, now)

        update = MeterUpdate(
            session=session,
            accepted_reading=value,
            energy_so_far=session.energy_consumed_kwh,
            estimated_cost=estimate,
            is_idle=evaluation.is_idle,
            idle_minutes_delta=evaluation.idle_minutes_delta,
            battery=estimate_battery(session, now),
        )
        log_session_event(
            logger,
            "meter_update",
            session_id,
            previous=str(previous_reading),
            reading=str(value),
            energy_kwh=str(update.energy_so_far),
            estimated_cost=str(estimate.total_cost),
            idle=evaluation.is_idle,
            idle_trigger=evaluation.trigger,
        )
        message_data["point_id"] = session.point_id
        await self._run_hooks(PluginHook.AFTER_METER_UPDATE, message_data, update)
        return update

    async def stop(
        self,
        session_id: str,
        meter_end=None,
        idle_minutes_override: float | None = None,
        now: datetime | None = None,
    ) -> ChargingSession:
        """
        Finalize an Active session: freeze its cost, mark it Completed and
        release the point.

        ``meter_end`` defaults to the last accepted reading. A second stop on
        the same session raises SessionNotActive; nothing is recomputed.

        Raises:
            SessionNotFound, SessionNotActive, InvalidReading
            ValueError: negative or non-finite idle override; the session is untouched
            InternalFault: finalisation failed and the session is now Error
        """
        now = now or _utcnow()
        if idle_minutes_override is not None and not (
            math.isfinite(idle_minutes_override) and idle_minutes_override >= 0
        ):
            raise ValueError("idle_minutes_override must be a finite number >= 0")

        message_data = {
            "session_id": session_id,
            "meter_end": meter_end,
            "idle_minutes_override": idle_minutes_override,
            "timestamp": now,
        }
        await self._run_hooks(PluginHook.BEFORE_STOP_SESSION, message_data, None)
        started = time.perf_counter()

        fault = None
        failed = None
        async with self.locks.hold(f"session:{session_id}"):
            session = await self._get_active(session_id)
            message_data["point_id"] = session.point_id
            candidate = meter_end if meter_end is not None else session.meter_current
            value = await self._accept(session, candidate, now)

            try:
                session = await self._finalize(session, value, idle_minutes_override, now)
            except ChargingError:
                raise
            except Exception as e:
                log_error(
                    logger,
                    "finalize_error",
                    f"Finalizing session {session_id} failed: {e}",
                    session_id=session_id,
                    exc_info=e,
                )
                fault = e
                failed = await self._mark_error_quietly(session_id, f"finalize_failed: {e}", now)
            else:
                await self._after_finalize(session, now)

        message_data["duration_seconds"] = time.perf_counter() - started
        if fault is not None:
            if failed is not None:
                await self._run_hooks(PluginHook.AFTER_SESSION_ERROR, message_data, failed)
            raise InternalFault(
                f"Finalizing charging session {session_id} failed; session moved to Error",
                session_id,
            ) from fault

        log_session_event(
            logger,
            "stop",
            session_id,
            point_id=session.point_id,
            meter_end=str(session.meter_end),
            energy_kwh=str(session.energy_consumed_kwh),
            idle_minutes=session.idle_minutes,
            energy_cost=str(session.energy_cost),
            idle_fee=str(session.idle_fee),
            total_cost=str(session.total_cost),
        )
        await self._run_hooks(PluginHook.AFTER_STOP_SESSION, message_data, session)
        return session

    async def fail(self, session_id: str, reason: str, now: datetime | None = None) -> ChargingSession:
        """Move an Active session to Error and release its point. Error sessions are never billed."""
        now = now or _utcnow()
        async with self.locks.hold(f"session:{session_id}"):
            await self._get_active(session_id)
            session = await self._mark_error(session_id, reason, now)

        await self._run_hooks(
            PluginHook.AFTER_SESSION_ERROR,
            {"session_id": session_id, "point_id": session.point_id, "reason": reason},
            session,
        )
        return session

    # Internals

    async def _get_active(self, session_id: str) -> ChargingSession:
        session = await self.get(session_id)
        if not session.is_active:
            raise SessionNotActive(session_id, session.status.value)
        return session

    async def _not_active(self, session_id: str) -> SessionNotActive:
        current = await self.get(session_id)
        return SessionNotActive(session_id, current.status.value)

    async def _accept(self, session: ChargingSession, candidate, now: datetime) -> Decimal:
        """Validate a reading against the last accepted one, raising InvalidReading on rejection."""
        since = session.last_reading_at or session.start_time
        elapsed = (now - since).total_seconds()
        check = self.validator.validate(session.meter_current, candidate, elapsed, session.power_kw)
        if not check.accepted:
            log_session_event(
                logger,
                "reading_rejected",
                session.id,
                reason=check.reason.value,
                previous=str(check.previous),
                candidate=str(candidate),
                detail=check.detail,
            )
            await self._run_hooks(
                PluginHook.ON_READING_REJECTED,
                {"session_id": session.id, "point_id": session.point_id, "reading": candidate},
                check,
            )
        return check.unwrap()

    def _estimate(self, session: ChargingSession) -> CostBreakdown:
        """Live cost of an Active session, from the same calculator that produces the final bill."""
        try:
            return self.calculator.compute(
                session.energy_consumed_kwh,
                session.price_per_kwh,
                session.idle_minutes,
                session.idle_fee_per_minute,
            )
        except ArithmeticError as e:
            log_error(
                logger,
                "estimate_error",
                f"Cost estimate failed for session {session.id}: {e}",
                session_id=session.id,
                exc_info=e,
            )
            raise InternalFault(f"Cost estimate failed for session {session.id}", session.id) from e

    @staticmethod
    def _apply_reading(session: ChargingSession, value: Decimal, now: datetime) -> None:
        if value > session.meter_current:
            session.last_advance_at = now
        session.meter_current = value
        session.last_reading_at = now

    async def _finalize(
        self,
        session: ChargingSession,
        value: Decimal,
        idle_minutes_override: float | None,
        now: datetime,
    ) -> ChargingSession:
        self._apply_reading(session, value, now)
        evaluation = self.idle_detector.evaluate(session, now)
        evaluation.apply_to(session)
        if idle_minutes_override is not None:
            session.idle_minutes = float(idle_minutes_override)

        cost = self.calculator.compute(
            session.energy_consumed_kwh,
            session.price_per_kwh,
            session.idle_minutes,
            session.idle_fee_per_minute,
        )

        session.meter_end = value
        session.end_time = now
        session.energy_cost = cost.energy_cost
        session.idle_fee = cost.idle_fee
        session.total_cost = cost.total_cost
        session.status = SessionStatus.COMPLETED

        if not await self.sessions.finalize(session):
            raise await self._not_active(session.id)
        return session

    async def _after_finalize(self, session: ChargingSession, now: datetime) -> None:
        """Side effects after the terminal write; the bill is already final."""
        try:
            await self.readings.create(
                MeterReading(
                    session_id=session.id,
                    value=session.meter_end,
                    timestamp=now,
                    context=CONTEXT_END,
                )
            )
            await self._release_point(session.point_id)
        except Exception as e:
            log_error(
                logger,
                "post_stop_error",
                f"Post-stop bookkeeping failed for session {session.id}: {e}",
                session_id=session.id,
                point_id=session.point_id,
                exc_info=e,
            )

    async def _release_point(self, point_id: str) -> None:
        point = await self.points.get_by_id(point_id)
        if point is not None and point.status == PointStatus.IN_USE:
            await self.points.set_status(point_id, PointStatus.AVAILABLE)

    async def _mark_error(self, session_id: str, reason: str, now: datetime) -> ChargingSession:
        session = await self.get(session_id)
        if not session.is_active:
            return session

        session.status = SessionStatus.ERROR
        session.end_time = now
        session.meter_end = session.meter_current
        session.energy_cost = None
        session.idle_fee = None
        session.total_cost = None
        session.error_reason = reason

        if not await self.sessions.finalize(session):
            return await self.get(session_id)
        await self._release_point(session.point_id)

        log_session_event(
            logger,
            "error",
            session_id,
            point_id=session.point_id,
            reason=reason,
            meter_end=str(session.meter_end),
        )
        return session

    async def _mark_error_quietly(self, session_id: str, reason: str, now: datetime) -> ChargingSession | None:
        try:
            return await self._mark_error(session_id, reason, now)
        except Exception as e:
            log_error(
                logger,
                "mark_error_failed",
                f"Could not move session {session_id} to Error: {e}",
                session_id=session_id,
                exc_info=e,
            )
            return None

"""Repository for charging session operations."""

from ..models import ChargingSession, SessionStatus
from .base import BaseRepository

_COLUMNS = (
    "id",
    "user_id",
    "point_id",
    "vehicle_id",
    "booking_id",
    "status",
    "start_time",
    "meter_start",
    "meter_current",
    "last_reading_at",
    "last_advance_at",
    "price_per_kwh",
    "idle_fee_per_minute",
    "power_kw",
    "battery_capacity_kwh",
    "initial_battery_percent",
    "target_battery_percent",
)


class SessionRepository(BaseRepository):
    """
    Handles database operations for charging sessions.

    Sessions are never deleted. Every write that changes a session is
    conditional on the row still being Active, so a terminal session can not
    be modified by a late or repeated request.
    """

    async def create(self, session: ChargingSession) -> ChargingSession:
        """Insert a new Active session (raises IntegrityError on a duplicate Active session)."""
        placeholders = ", ".join("?" for _ in _COLUMNS)
        query = f"INSERT INTO charging_session ({', '.join(_COLUMNS)}) VALUES ({placeholders})"

        await self._write(
            query,
            (
                session.id,
                session.user_id,
                session.point_id,
                session.vehicle_id,
                session.booking_id,
                SessionStatus(session.status).value,
                session.start_time,
                session.meter_start,
                session.meter_current,
                session.last_reading_at,
                session.last_advance_at,
                session.price_per_kwh,
                session.idle_fee_per_minute,
                session.power_kw,
                session.battery_capacity_kwh,
                session.initial_battery_percent,
                session.target_battery_percent,
            ),
        )
        return await self.get_by_id(session.id)

    async def get_by_id(self, session_id: str) -> ChargingSession | None:
        """Get session by ID."""
        row = await self._fetchone("SELECT * FROM charging_session WHERE id = ?", (session_id,))
        if row:
            return self._row_to_model(row)
        return None

    async def get_active_for_user(self, user_id: str) -> ChargingSession | None:
        """Get the Active session of a user, if any."""
        row = await self._fetchone(
            "SELECT * FROM charging_session WHERE user_id = ? AND status = 'Active'",
            (user_id,),
        )
        if row:
            return self._row_to_model(row)
        return None

    async def get_active_for_point(self, point_id: str) -> ChargingSession | None:
        """Get the Active session on a point, if any."""
        row = await self._fetchone(
            "SELECT * FROM charging_session WHERE point_id = ? AND status = 'Active'",
            (point_id,),
        )
        if row:
            return self._row_to_model(row)
        return None

    async def get_all_active(self) -> list[ChargingSession]:
        """Get every Active session."""
        rows = await self._fetchall(
            "SELECT * FROM charging_session WHERE status = 'Active' ORDER BY start_time"
        )
        return [self._row_to_model(row) for row in rows]

    async def find(
        self,
        user_id: str | None = None,
        status: SessionStatus | None = None,
        point_id: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[ChargingSession], int]:
        """List sessions newest first with optional filters; returns (page, total)."""
        clauses = []
        params: list = []
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(SessionStatus(status).value)
        if point_id is not None:
            clauses.append("point_id = ?")
            params.append(point_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        count_row = await self._fetchone(
            f"SELECT COUNT(*) AS total FROM charging_session {where}", tuple(params)
        )
        rows = await self._fetchall(
            f"""
            SELECT * FROM charging_session {where}
            ORDER BY start_time DESC
            LIMIT ? OFFSET ?
            """,
            (*params, limit, offset),
        )
        return [self._row_to_model(row) for row in rows], count_row["total"]

    async def save_progress(self, session: ChargingSession) -> bool:
        """Persist meter and idle progress of an Active session."""
        query = """
            UPDATE charging_session
            SET meter_current = ?,
                last_reading_at = ?,
                last_advance_at = ?,
                idle_started_at = ?,
                idle_accrued_at = ?,
                idle_minutes = ?,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND status = 'Active'
        """
        return await self._update_if(
            query,
            (
                session.meter_current,
                session.last_reading_at,
                session.last_advance_at,
                session.idle_started_at,
                session.idle_accrued_at,
                session.idle_minutes,
                session.id,
            ),
        )

    async def finalize(self, session: ChargingSession) -> bool:
        """
        Move an Active session to its terminal state.

        Returns False when the row was no longer Active, in which case nothing
        was written.
        """
        query = """
            UPDATE charging_session
            SET status = ?,
                end_time = ?,
                meter_current = ?,
                meter_end = ?,
                last_reading_at = ?,
                last_advance_at = ?,
                idle_started_at = ?,
                idle_accrued_at = ?,
                idle_minutes = ?,
                energy_cost = ?,
                idle_fee = ?,
                total_cost = ?,
                error_reason = ?,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND status = 'Active'
        """
        return await self._update_if(
            query,
            (
                SessionStatus(session.status).value,
                session.end_time,
                session.meter_current,
                session.meter_end,
                session.last_reading_at,
                session.last_advance_at,
                session.idle_started_at,
                session.idle_accrued_at,
                session.idle_minutes,
                session.energy_cost,
                session.idle_fee,
                session.total_cost,
                session.error_reason,
                session.id,
            ),
        )

    def _row_to_model(self, row) -> ChargingSession:
        """Convert database row to ChargingSession model."""
        return ChargingSession(
            id=row["id"],
            user_id=row["user_id"],
            point_id=row["point_id"],
            vehicle_id=row["vehicle_id"],
            booking_id=row["booking_id"],
            status=SessionStatus(row["status"]),
            start_time=row["start_time"],
            end_time=row["end_time"],
            meter_start=row["meter_start"],
            meter_current=row["meter_current"],
            meter_end=row["meter_end"],
            last_reading_at=row["last_reading_at"],
            last_advance_at=row["last_advance_at"],
            idle_started_at=row["idle_started_at"],
            idle_accrued_at=row["idle_accrued_at"],
            idle_minutes=row["idle_minutes"],
            price_per_kwh=row["price_per_kwh"],
            idle_fee_per_minute=row["idle_fee_per_minute"],
            power_kw=row["power_kw"],
            energy_cost=row["energy_cost"],
            idle_fee=row["idle_fee"],
            total_cost=row["total_cost"],
            battery_capacity_kwh=row["battery_capacity_kwh"],
            initial_battery_percent=row["initial_battery_percent"],
            target_battery_percent=row["target_battery_percent"],
            error_reason=row["error_reason"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

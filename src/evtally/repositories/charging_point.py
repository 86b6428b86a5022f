"""Repository for charging point operations."""

from datetime import datetime

from ..models import ChargingPoint, PointStatus
from .base import BaseRepository


class ChargingPointRepository(BaseRepository):
    """Handles database operations for charging points."""

    async def upsert(self, point: ChargingPoint) -> ChargingPoint:
        """Insert or update a charging point."""
        query = """
            INSERT INTO charging_point (
                id, station_id, name, power_kw, connector_type, status,
                idle_fee_per_minute, reserved_booking_id, last_seen_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(id) DO UPDATE SET
                station_id = excluded.station_id,
                name = excluded.name,
                power_kw = excluded.power_kw,
                connector_type = excluded.connector_type,
                status = excluded.status,
                idle_fee_per_minute = excluded.idle_fee_per_minute,
                reserved_booking_id = excluded.reserved_booking_id,
                last_seen_at = COALESCE(excluded.last_seen_at, last_seen_at),
                updated_at = CURRENT_TIMESTAMP
        """
        await self._write(
            query,
            (
                point.id,
                point.station_id,
                point.name,
                point.power_kw,
                point.connector_type,
                PointStatus(point.status).value,
                point.idle_fee_per_minute,
                point.reserved_booking_id,
                point.last_seen_at,
            ),
        )
        return await self.get_by_id(point.id)

    async def get_by_id(self, point_id: str) -> ChargingPoint | None:
        """Get charging point by ID."""
        row = await self._fetchone("SELECT * FROM charging_point WHERE id = ?", (point_id,))
        if row:
            return self._row_to_model(row)
        return None

    async def get_all_for_station(self, station_id: str) -> list[ChargingPoint]:
        """Get all charging points of a station."""
        rows = await self._fetchall(
            "SELECT * FROM charging_point WHERE station_id = ? ORDER BY id", (station_id,)
        )
        return [self._row_to_model(row) for row in rows]

    async def set_status(
        self,
        point_id: str,
        status: PointStatus,
        reserved_booking_id: str | None = None,
    ):
        """
        Set the operational status of a point.

        The reservation is cleared unless the new status is Reserved.
        """
        status = PointStatus(status)
        query = """
            UPDATE charging_point
            SET status = ?,
                reserved_booking_id = ?,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = ?
        """
        booking = reserved_booking_id if status == PointStatus.RESERVED else None
        await self._write(query, (status.value, booking, point_id))

    async def update_last_seen(self, point_id: str, seen_at: datetime):
        """Update the last-seen timestamp."""
        query = """
            UPDATE charging_point
            SET last_seen_at = ?,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = ?
        """
        await self._write(query, (seen_at, point_id))

    def _row_to_model(self, row) -> ChargingPoint:
        """Convert database row to ChargingPoint model."""
        return ChargingPoint(
            id=row["id"],
            station_id=row["station_id"],
            name=row["name"],
            power_kw=row["power_kw"],
            connector_type=row["connector_type"],
            status=PointStatus(row["status"]),
            idle_fee_per_minute=row["idle_fee_per_minute"],
            reserved_booking_id=row["reserved_booking_id"],
            last_seen_at=row["last_seen_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

"""Repository for station operations."""

import json

from ..models import PointStatus, Station
from .base import BaseRepository


class StationRepository(BaseRepository):
    """Handles database operations for stations."""

    async def upsert(self, station: Station) -> Station:
        """Insert or update a station."""
        query = """
            INSERT INTO station (
                id, name, status, price_per_kwh, vehicle_compatibility, updated_at
            ) VALUES (?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                status = excluded.status,
                price_per_kwh = excluded.price_per_kwh,
                vehicle_compatibility = excluded.vehicle_compatibility,
                updated_at = CURRENT_TIMESTAMP
        """
        await self._write(
            query,
            (
                station.id,
                station.name,
                PointStatus(station.status).value,
                station.price_per_kwh,
                json.dumps(station.vehicle_compatibility),
            ),
        )
        return await self.get_by_id(station.id)

    async def get_by_id(self, station_id: str) -> Station | None:
        """Get station by ID."""
        row = await self._fetchone("SELECT * FROM station WHERE id = ?", (station_id,))
        if row:
            return self._row_to_model(row)
        return None

    async def get_all(self) -> list[Station]:
        """Get all stations."""
        rows = await self._fetchall("SELECT * FROM station ORDER BY id")
        return [self._row_to_model(row) for row in rows]

    async def update_status(self, station_id: str, status: PointStatus):
        """Set the station-level status (staff/admin action)."""
        query = """
            UPDATE station
            SET status = ?,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = ?
        """
        await self._write(query, (PointStatus(status).value, station_id))

    def _row_to_model(self, row) -> Station:
        """Convert database row to Station model."""
        return Station(
            id=row["id"],
            name=row["name"],
            status=PointStatus(row["status"]),
            price_per_kwh=row["price_per_kwh"],
            vehicle_compatibility=json.loads(row["vehicle_compatibility"] or "[]"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

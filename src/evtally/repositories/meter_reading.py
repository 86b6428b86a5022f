"""Repository for the append-only meter reading audit trail."""

from ..models import MeterReading
from .base import BaseRepository


class MeterReadingRepository(BaseRepository):
    """Handles database operations for accepted meter readings."""

    async def create(self, reading: MeterReading) -> MeterReading:
        """Append an accepted reading."""
        query = """
            INSERT INTO meter_reading (session_id, value, timestamp, context)
            VALUES (?, ?, ?, ?)
            RETURNING id
        """

        reading.id = await self._insert_returning_id(
            query,
            (reading.session_id, reading.value, reading.timestamp, reading.context),
        )
        return reading

    async def get_for_session(self, session_id: str, limit: int = 1000) -> list[MeterReading]:
        """Get accepted readings for a session, oldest first."""
        rows = await self._fetchall(
            """
            SELECT * FROM meter_reading
            WHERE session_id = ?
            ORDER BY id ASC
            LIMIT ?
            """,
            (session_id, limit),
        )
        return [self._row_to_model(row) for row in rows]

    async def get_last_for_session(self, session_id: str) -> MeterReading | None:
        """Get the most recently accepted reading for a session."""
        row = await self._fetchone(
            """
            SELECT * FROM meter_reading
            WHERE session_id = ?
            ORDER BY id DESC
            LIMIT 1
            """,
            (session_id,),
        )
        if row:
            return self._row_to_model(row)
        return None

    def _row_to_model(self, row) -> MeterReading:
        """Convert database row to MeterReading model."""
        return MeterReading(
            id=row["id"],
            session_id=row["session_id"],
            value=row["value"],
            timestamp=row["timestamp"],
            context=row["context"],
            created_at=row["created_at"],
        )

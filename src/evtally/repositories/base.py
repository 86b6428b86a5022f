"""Shared query helpers for the SQLite repositories."""

import aiosqlite


class BaseRepository:
    """
    Base class for all repositories.

    Every write commits immediately. Updates that guard a state transition
    go through ``_update_if`` so callers learn whether the guard matched.
    """

    def __init__(self, connection: aiosqlite.Connection):
        self.conn = connection

    async def _fetchone(self, query: str, params: tuple = ()) -> aiosqlite.Row | None:
        cursor = await self.conn.execute(query, params)
        return await cursor.fetchone()

    async def _fetchall(self, query: str, params: tuple = ()) -> list[aiosqlite.Row]:
        cursor = await self.conn.execute(query, params)
        return await cursor.fetchall()

    async def _write(self, query: str, params: tuple = ()) -> None:
        """Run an INSERT/UPDATE and commit. Constraint violations propagate as IntegrityError."""
        await self.conn.execute(query, params)
        await self.conn.commit()

    async def _update_if(self, query: str, params: tuple = ()) -> bool:
        """
        Run a conditional UPDATE and commit.

        Returns True when exactly one row matched its WHERE guard, False when
        the row had already left the expected state and nothing was written.
        """
        cursor = await self.conn.execute(query, params)
        await self.conn.commit()
        return cursor.rowcount == 1

    async def _insert_returning_id(self, query: str, params: tuple = ()) -> int | None:
        """Run an ``INSERT ... RETURNING id``; the row is fetched before committing."""
        cursor = await self.conn.execute(query, params)
        row = await cursor.fetchone()
        await self.conn.commit()
        return row["id"] if row else None

"""Database connection management."""

import logging
import sqlite3
from datetime import datetime
from decimal import Decimal
from pathlib import Path

import aiosqlite

SCHEMA_PATH = Path(__file__).resolve().parent / "schema.sql"


def _adapt_datetime(val: datetime) -> str:
    """Convert datetime to ISO format string for SQLite storage."""
    return val.isoformat()


def _convert_datetime(val: bytes) -> datetime:
    """Convert ISO format string from SQLite to datetime."""
    return datetime.fromisoformat(val.decode())


def _adapt_decimal(val: Decimal) -> str:
    """Store decimals as text so no binary floating point is involved."""
    return str(val)


def _convert_decimal(val: bytes) -> Decimal:
    return Decimal(val.decode())


sqlite3.register_adapter(datetime, _adapt_datetime)
sqlite3.register_adapter(Decimal, _adapt_decimal)
sqlite3.register_converter("datetime", _convert_datetime)
sqlite3.register_converter("DATETIME", _convert_datetime)
sqlite3.register_converter("DECIMAL_TEXT", _convert_decimal)

logger = logging.getLogger(__name__)


class Database:
    """Manages the SQLite connection and schema initialization."""

    def __init__(self, db_path: str = "evtally.db"):
        self.db_path = db_path
        self.connection: aiosqlite.Connection | None = None

    async def connect(self) -> aiosqlite.Connection:
        """Establish database connection with optimized pragmas."""
        if self.connection is None:
            # PARSE_DECLTYPES enables the datetime and decimal converters
            self.connection = await aiosqlite.connect(
                self.db_path, detect_types=sqlite3.PARSE_DECLTYPES
            )
            self.connection.row_factory = aiosqlite.Row

            await self.connection.execute("PRAGMA journal_mode=WAL")
            await self.connection.execute("PRAGMA synchronous=NORMAL")
            await self.connection.execute("PRAGMA temp_store=MEMORY")
            await self.connection.execute("PRAGMA foreign_keys=ON")
        return self.connection

    async def disconnect(self):
        """Close database connection."""
        if self.connection:
            await self.connection.close()
            self.connection = None

    async def initialize_schema(self, schema_path: str | Path = SCHEMA_PATH):
        """Apply the schema; every statement is IF NOT EXISTS so reruns are safe."""
        conn = await self.connect()

        schema_file = Path(schema_path)
        if not schema_file.exists():
            raise FileNotFoundError(f"Schema file not found: {schema_path}")

        await conn.executescript(schema_file.read_text())
        await conn.commit()
        logger.debug("Database schema initialized at %s", self.db_path)

    async def __aenter__(self):
        """Async context manager entry."""
        return await self.connect()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.disconnect()

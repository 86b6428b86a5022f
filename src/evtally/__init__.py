"""
EVTally - charging session lifecycle and billing engine

Starts, meters, idles and finalizes EV charging sessions, bills them
through idempotent invoices and classifies point/station availability,
with aiosqlite for persistence.
"""

__version__ = "0.1.0"

from .database import Database
from .engine import ChargingEngine

__all__ = ["ChargingEngine", "Database"]

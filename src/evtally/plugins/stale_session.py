"""Plugin to fail abandoned sessions before a point is reused."""

from datetime import UTC, datetime, timedelta

from ..engine.errors import SessionNotActive
from .base import PluginContext, PluginHook, SessionPlugin


class StaleSessionPlugin(SessionPlugin):
    """
    Moves abandoned Active sessions to Error when a new session starts on the same point.

    When a start request arrives for a point, any Active session on that
    point whose last accepted reading is older than ``max_silence`` is
    failed with reason "stale". The point is released and the abandoned
    session is left for manual reconciliation instead of being billed.

    Use case: a client that stopped polling and never sent a stop (app
    closed, phone offline) would otherwise hold the point forever.
    """

    REASON = "stale"

    def __init__(self, max_silence: timedelta = timedelta(hours=2)):
        super().__init__()
        self.max_silence = max_silence

    def hooks(self) -> dict[PluginHook, str]:
        """Register hook to run before session starts."""
        return {
            PluginHook.BEFORE_START_SESSION: "on_before_start_session",
        }

    async def on_before_start_session(self, context: PluginContext):
        """
        Fail a stale occupant of the requested point.

        This runs BEFORE the start request takes its locks, so the point
        is already released when availability is checked.
        """
        point_id = context.data["point_id"]
        now = context.data.get("timestamp") or datetime.now(UTC)
        engine = context.engine

        occupant = await engine.session_repo.get_active_for_point(point_id)
        if occupant is None:
            return

        last_seen = occupant.last_reading_at or occupant.start_time
        if now - last_seen <= self.max_silence:
            return

        self.logger.warning(
            f"Session {occupant.id} on {point_id} silent since {last_seen.isoformat()}; failing it"
        )
        try:
            await engine.sessions.fail(occupant.id, self.REASON, now=now)
        except SessionNotActive:
            # Stopped concurrently
            return

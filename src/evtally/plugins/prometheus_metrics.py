"""Plugin for Prometheus metrics instrumentation."""

from prometheus_client import Counter, Gauge, Histogram

from .base import PluginContext, PluginHook, SessionPlugin


class PrometheusMetricsPlugin(SessionPlugin):
    """
    Exposes Prometheus metrics for the charging engine.

    This plugin tracks:
    - Session lifecycle (started, completed, failed, active per point)
    - Energy delivered and revenue billed
    - Rejected meter readings by reason
    - Stop (finalisation) latency
    - Invoices issued

    Metrics are exposed via the standard prometheus_client registry.
    Use prometheus_client.start_http_server() or generate_latest() to expose /metrics.
    """

    # Class-level metrics (shared across all plugin instances)

    evtally_engine_up = Gauge(
        "evtally_engine_up",
        "1 if the charging engine is running, 0 otherwise",
    )

    evtally_sessions_started_total = Counter(
        "evtally_sessions_started_total",
        "Total charging sessions started",
        labelnames=["point_id"],
    )

    evtally_sessions_completed_total = Counter(
        "evtally_sessions_completed_total",
        "Total charging sessions completed",
        labelnames=["point_id"],
    )

    evtally_sessions_failed_total = Counter(
        "evtally_sessions_failed_total",
        "Total charging sessions moved to Error",
        labelnames=["point_id"],
    )

    evtally_session_active = Gauge(
        "evtally_session_active",
        "1 if a session is active on the point, 0 otherwise",
        labelnames=["point_id"],
    )

    evtally_session_energy_kwh = Gauge(
        "evtally_session_energy_kwh",
        "Energy delivered in the current session (kWh)",
        labelnames=["point_id"],
    )

    evtally_energy_delivered_kwh_total = Counter(
        "evtally_energy_delivered_kwh_total",
        "Cumulative energy billed (kWh)",
        labelnames=["point_id"],
    )

    evtally_revenue_total = Counter(
        "evtally_revenue_total",
        "Cumulative billed amount in currency units",
        labelnames=["point_id"],
    )

    evtally_idle_minutes_total = Counter(
        "evtally_idle_minutes_total",
        "Cumulative billed idle minutes",
        labelnames=["point_id"],
    )

    evtally_readings_rejected_total = Counter(
        "evtally_readings_rejected_total",
        "Total meter readings rejected",
        labelnames=["point_id", "reason"],
    )

    evtally_stop_seconds = Histogram(
        "evtally_stop_seconds",
        "Session finalisation duration in seconds",
    )

    evtally_invoices_issued_total = Counter(
        "evtally_invoices_issued_total",
        "Total invoices issued",
    )

    def __init__(self):
        """Initialize the Prometheus metrics plugin."""
        super().__init__()
        self.evtally_engine_up.set(1)

    def hooks(self) -> dict[PluginHook, str]:
        """Register hooks for the session lifecycle."""
        return {
            PluginHook.AFTER_START_SESSION: "after_start_session",
            PluginHook.AFTER_METER_UPDATE: "after_meter_update",
            PluginHook.ON_READING_REJECTED: "on_reading_rejected",
            PluginHook.AFTER_STOP_SESSION: "after_stop_session",
            PluginHook.AFTER_SESSION_ERROR: "after_session_error",
            PluginHook.AFTER_INVOICE_ISSUED: "after_invoice_issued",
        }

    async def cleanup(self, engine):
        """Mark the engine as down."""
        self.evtally_engine_up.set(0)

    # Helper methods

    def _observe_stop(self, context: PluginContext):
        # Only stop requests carry a duration; fail() does not
        duration = context.data.get("duration_seconds")
        if duration is not None:
            self.evtally_stop_seconds.observe(duration)

    def _mark_inactive(self, point_id: str):
        self.evtally_session_active.labels(point_id=point_id).set(0)
        self.evtally_session_energy_kwh.labels(point_id=point_id).set(0)

    # Hook handlers

    async def after_start_session(self, context: PluginContext):
        """Track session start."""
        point_id = context.result.point_id
        self.evtally_sessions_started_total.labels(point_id=point_id).inc()
        self.evtally_session_active.labels(point_id=point_id).set(1)
        self.evtally_session_energy_kwh.labels(point_id=point_id).set(0)

    async def after_meter_update(self, context: PluginContext):
        """Track energy delivered so far."""
        update = context.result
        self.evtally_session_energy_kwh.labels(point_id=update.session.point_id).set(
            float(update.energy_so_far)
        )

    async def on_reading_rejected(self, context: PluginContext):
        """Count rejected readings by reason."""
        check = context.result
        self.evtally_readings_rejected_total.labels(
            point_id=context.data.get("point_id", ""),
            reason=check.reason.value,
        ).inc()

    async def after_stop_session(self, context: PluginContext):
        """Track completion, energy and revenue."""
        session = context.result
        self._observe_stop(context)
        self._mark_inactive(session.point_id)
        self.evtally_sessions_completed_total.labels(point_id=session.point_id).inc()
        self.evtally_energy_delivered_kwh_total.labels(point_id=session.point_id).inc(
            float(session.energy_consumed_kwh)
        )
        self.evtally_revenue_total.labels(point_id=session.point_id).inc(float(session.total_cost))
        self.evtally_idle_minutes_total.labels(point_id=session.point_id).inc(
            int(session.idle_minutes)
        )

    async def after_session_error(self, context: PluginContext):
        """Track failed sessions."""
        session = context.result
        self._observe_stop(context)
        self._mark_inactive(session.point_id)
        self.evtally_sessions_failed_total.labels(point_id=session.point_id).inc()

    async def after_invoice_issued(self, context: PluginContext):
        """Track invoices."""
        self.evtally_invoices_issued_total.inc()

"""Plugin for structured billing audit logging to Fluentd."""

import asyncio
from typing import Any

from fluent import sender

from .base import PluginContext, PluginHook, SessionPlugin


def _text(value: Any) -> Any:
    """Render Decimals and datetimes as strings for msgpack."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


class FluentdAuditPlugin(SessionPlugin):
    """
    Sends a structured audit trail of billing events to Fluentd.

    Every event that moves money or session state is emitted, so the
    Fluentd side can rebuild a session's bill independently of the database.

    Example log entry (tag ``evtally.session.stop``):
    {
        "type": "session",
        "session": "3f6c...",
        "point": "CP-01",
        "user": "u-42",
        "meter_end": "112.5",
        "total_cost": "62500"
    }
    """

    def __init__(
        self,
        tag_prefix: str = "evtally",
        host: str = "localhost",
        port: int = 24224,
        timeout: float = 3.0,
        buffer_overflow_handler: Any = None,
        nanosecond_precision: bool = False,
    ):
        """
        Initialize the Fluentd audit plugin.

        Args:
            tag_prefix: Prefix for Fluentd tags (default: "evtally")
                       Tags will be: evtally.session.start, evtally.invoice.issued, etc.
            host: Fluentd server hostname (default: "localhost")
            port: Fluentd server port (default: 24224)
            timeout: Connection timeout in seconds (default: 3.0)
            buffer_overflow_handler: Handler for buffer overflow (default: None)
            nanosecond_precision: Use nanosecond precision timestamps (default: False)
        """
        super().__init__()
        self.tag_prefix = tag_prefix
        self.host = host
        self.port = port
        self.timeout = timeout
        self.buffer_overflow_handler = buffer_overflow_handler
        self.nanosecond_precision = nanosecond_precision
        self.sender = None

    def hooks(self) -> dict[PluginHook, str]:
        """Register hooks for billing-relevant events."""
        return {
            PluginHook.AFTER_START_SESSION: "log_session_start",
            PluginHook.AFTER_METER_UPDATE: "log_meter_update",
            PluginHook.AFTER_STOP_SESSION: "log_session_stop",
            PluginHook.AFTER_SESSION_ERROR: "log_session_error",
            PluginHook.AFTER_INVOICE_ISSUED: "log_invoice_issued",
        }

    async def initialize(self, engine):
        """Initialize Fluentd sender when the engine starts."""
        try:
            self.sender = sender.FluentSender(
                self.tag_prefix,
                host=self.host,
                port=self.port,
                timeout=self.timeout,
                buffer_overflow_handler=self.buffer_overflow_handler,
                nanosecond_precision=self.nanosecond_precision,
            )
        except Exception as e:
            self.logger.error(f"Failed to initialize Fluentd sender: {e}", exc_info=True)
            self.sender = None

    async def cleanup(self, engine):
        """Close Fluentd sender when the engine shuts down."""
        if self.sender:
            try:
                await asyncio.to_thread(self.sender.close)
            except Exception as e:
                self.logger.error(f"Error closing Fluentd sender: {e}", exc_info=True)

    async def _send_event(self, tag: str, data: dict):
        """
        Send an event to Fluentd without blocking the event loop.

        Args:
            tag: Event tag (e.g., "session.start", "invoice.issued")
            data: Event data dictionary
        """
        if not self.sender:
            return

        try:
            await asyncio.to_thread(self.sender.emit, tag, data)
        except Exception as e:
            self.logger.error(f"Failed to send event to Fluentd (tag={tag}): {e}")

    @staticmethod
    def _session_data(session, **extra) -> dict:
        data = {
            "type": "session",
            "session": session.id,
            "point": session.point_id,
            "user": session.user_id,
            "status": session.status.value,
        }
        data.update({k: _text(v) for k, v in extra.items() if v is not None})
        return data

    async def log_session_start(self, context: PluginContext):
        """Log session start with the price snapshot it will be billed at."""
        session = context.result
        await self._send_event(
            "session.start",
            self._session_data(
                session,
                booking=session.booking_id,
                meter_start=session.meter_start,
                price_per_kwh=session.price_per_kwh,
                idle_fee_per_minute=session.idle_fee_per_minute,
                start_time=session.start_time,
            ),
        )

    async def log_meter_update(self, context: PluginContext):
        """Log an accepted meter reading and the estimate shown for it."""
        update = context.result
        await self._send_event(
            "session.meter",
            self._session_data(
                update.session,
                reading=update.accepted_reading,
                energy_kwh=update.energy_so_far,
                estimated_cost=update.estimated_cost.total_cost,
                idle=update.is_idle,
                timestamp=context.data.get("timestamp"),
            ),
        )

    async def log_session_stop(self, context: PluginContext):
        """Log the frozen final bill."""
        session = context.result
        await self._send_event(
            "session.stop",
            self._session_data(
                session,
                meter_start=session.meter_start,
                meter_end=session.meter_end,
                energy_kwh=session.energy_consumed_kwh,
                idle_minutes=session.idle_minutes,
                energy_cost=session.energy_cost,
                idle_fee=session.idle_fee,
                total_cost=session.total_cost,
                end_time=session.end_time,
            ),
        )

    async def log_session_error(self, context: PluginContext):
        """Log a session moved to Error, for manual reconciliation."""
        session = context.result
        await self._send_event(
            "session.error",
            self._session_data(
                session,
                reason=session.error_reason,
                meter_end=session.meter_end,
                end_time=session.end_time,
            ),
        )

    async def log_invoice_issued(self, context: PluginContext):
        """Log invoice issuance."""
        invoice = context.result
        await self._send_event(
            "invoice.issued",
            {
                "type": "invoice",
                "invoice": invoice.id,
                "session": invoice.session_id,
                "user": invoice.user_id,
                "amount": _text(invoice.amount),
                "issued_at": _text(invoice.issued_at),
            },
        )

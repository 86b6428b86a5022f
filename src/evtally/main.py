"""Main entry point for the EVTally charging engine service."""

import argparse
import asyncio
import logging
import sys
from asyncio import Event
from dataclasses import replace
from datetime import timedelta
from decimal import Decimal, InvalidOperation

from prometheus_client import start_http_server
from uvicorn import Config, Server

from .api import create_app
from .config import Settings, load_settings, parse_endpoint
from .database import Database
from .engine import ChargingEngine
from .logging_utils import JSONFormatter, log_error
from .plugins import (
    FluentdAuditPlugin,
    PrometheusMetricsPlugin,
    SessionPlugin,
    StaleSessionPlugin,
)

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO"):
    """Configure JSON logging for the application."""
    json_formatter = JSONFormatter()

    # Create handlers
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(json_formatter)

    file_handler = logging.FileHandler("evtally.log")
    file_handler.setFormatter(json_formatter)

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers = [console_handler, file_handler]

    # Suppress verbose logging from dependencies
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


class GracefulShutdownServer(Server):
    def __init__(self, config: Config, shutdown_event: Event) -> None:
        super().__init__(config)
        self._shutdown_event = shutdown_event

    def handle_exit(self, sig, frame):
        super().handle_exit(sig, frame)
        logger.info(
            "System shutting down",
            extra={"event_type": "system_shutdown", "event_data": {"signal": sig}},
        )
        self._shutdown_event.set()


def _decimal_arg(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}") from None


def build_parser(defaults: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="EVTally - charging session lifecycle and billing engine"
    )
    parser.add_argument("--host", default=defaults.host, help="Host to bind the HTTP server")
    parser.add_argument("--port", type=int, default=defaults.port, help="Port to bind the HTTP server")
    parser.add_argument("--db", default=defaults.db_path, help="Path to SQLite database file")
    parser.add_argument(
        "--log-level",
        default=defaults.log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=defaults.metrics_port,
        help="Port for Prometheus metrics HTTP server (default: disabled)",
    )
    parser.add_argument(
        "--currency-digits",
        type=int,
        default=defaults.currency_digits,
        help="Minor-unit digits kept when rounding costs (0 for VND, 2 for EUR)",
    )
    parser.add_argument(
        "--max-power-kw",
        type=_decimal_arg,
        default=defaults.max_power_kw,
        help="Rated power assumed for points without one, for the meter plausibility bound",
    )
    parser.add_argument(
        "--idle-stale-minutes",
        type=int,
        default=defaults.idle_stale_minutes,
        help="Minutes without meter progress before a session counts as idle",
    )
    parser.add_argument(
        "--soon-available-minutes",
        type=int,
        default=defaults.soon_available_minutes,
        help="Predicted-free threshold for the soon_available class",
    )
    parser.add_argument(
        "--stale-session-minutes",
        type=int,
        default=defaults.stale_session_minutes,
        help="Fail a silent Active session when a new one starts on its point (default: disabled)",
    )
    parser.add_argument(
        "--fluentd-endpoint",
        default=None,
        help="Fluentd endpoint in host:port format (e.g., localhost:24224). If provided, enables Fluentd audit logging.",
    )
    parser.add_argument(
        "--fluentd-tag",
        default=defaults.fluentd_tag,
        help="Tag prefix for Fluentd events",
    )
    return parser


def settings_from_args(defaults: Settings, args: argparse.Namespace) -> Settings:
    """Command-line flags override values from the environment."""
    fluentd_host, fluentd_port = defaults.fluentd_host, defaults.fluentd_port
    if args.fluentd_endpoint:
        fluentd_host, fluentd_port = parse_endpoint(args.fluentd_endpoint)

    return replace(
        defaults,
        host=args.host,
        port=args.port,
        db_path=args.db,
        log_level=args.log_level,
        metrics_port=args.metrics_port,
        currency_digits=args.currency_digits,
        max_power_kw=args.max_power_kw,
        idle_stale_minutes=args.idle_stale_minutes,
        soon_available_minutes=args.soon_available_minutes,
        stale_session_minutes=args.stale_session_minutes,
        fluentd_host=fluentd_host,
        fluentd_port=fluentd_port,
        fluentd_tag=args.fluentd_tag,
    )


def create_plugins(settings: Settings) -> list[SessionPlugin]:
    plugins: list[SessionPlugin] = []

    # Always include PrometheusMetricsPlugin if metrics port is configured
    if settings.metrics_port:
        plugins.append(PrometheusMetricsPlugin())

    if settings.stale_session_minutes:
        plugins.append(StaleSessionPlugin(timedelta(minutes=settings.stale_session_minutes)))

    if settings.fluentd_enabled:
        plugins.append(
            FluentdAuditPlugin(
                tag_prefix=settings.fluentd_tag,
                host=settings.fluentd_host,
                port=settings.fluentd_port,
                timeout=3.0,
            )
        )

    return plugins


async def serve(settings: Settings):
    db = Database(settings.db_path)
    await db.initialize_schema()
    engine = ChargingEngine.from_settings(await db.connect(), settings, create_plugins(settings))
    await engine.initialize()

    if settings.metrics_port:
        start_http_server(settings.metrics_port)

    shutdown_event = Event()
    config = Config(
        create_app(engine),
        host=settings.host,
        port=settings.port,
        loop="asyncio",
        log_config=None,
    )
    server = GracefulShutdownServer(config, shutdown_event)
    try:
        await server.serve()
    except Exception as e:
        log_error(logger, "server_error", f"Server error: {e}", exc_info=e)
        raise
    finally:
        await engine.shutdown()
        await db.disconnect()
        logger.info("EXIT: SERVER")


def main(argv: list[str] | None = None):
    """Parse configuration and run the service."""
    try:
        defaults = load_settings()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    parser = build_parser(defaults)
    args = parser.parse_args(argv)
    try:
        settings = settings_from_args(defaults, args)
    except ValueError as e:
        parser.error(str(e))

    setup_logging(settings.log_level)

    # Log startup as structured event
    logger.info(
        "System starting",
        extra={
            "event_type": "system_startup",
            "event_data": {
                "database": settings.db_path,
                "http_endpoint": f"http://{settings.host}:{settings.port}",
                "metrics_endpoint": f"http://{settings.host}:{settings.metrics_port}/metrics"
                if settings.metrics_port
                else None,
                "currency_digits": settings.currency_digits,
                "fluentd_enabled": settings.fluentd_enabled,
                "stale_session_minutes": settings.stale_session_minutes,
            },
        },
    )

    asyncio.run(serve(settings))


def run():
    """Entry point for console script."""
    try:
        main()
    except KeyboardInterrupt:
        print("\nShutdown complete")
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    run()

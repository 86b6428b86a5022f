"""Engine facade wiring repositories, components and plugins together."""

import logging
from datetime import timedelta

import aiosqlite

from ..config import Settings
from ..logging_utils import log_error
from ..plugins.base import PluginContext, PluginHook, SessionPlugin
from ..repositories import (
    ChargingPointRepository,
    InvoiceRepository,
    MeterReadingRepository,
    SessionRepository,
    StationRepository,
)
from .availability import AvailabilityClassifier, AvailabilityService
from .cost import CostCalculator
from .idle import IdleDetector
from .invoices import InvoiceIssuer
from .locks import KeyedLocks
from .sessions import SessionStateMachine
from .validator import MeterReadingValidator

logger = logging.getLogger(__name__)


class ChargingEngine:
    """
    The charging-session lifecycle and billing engine.

    Holds one database connection and exposes the components:
    ``sessions`` (SessionStateMachine), ``invoices`` (InvoiceIssuer) and
    ``availability`` (AvailabilityService).

    Supports a plugin system for extending behavior at various lifecycle hooks.
    """

    def __init__(
        self,
        db_connection: aiosqlite.Connection,
        plugins: list[SessionPlugin] | None = None,
        validator: MeterReadingValidator | None = None,
        idle_detector: IdleDetector | None = None,
        calculator: CostCalculator | None = None,
        classifier: AvailabilityClassifier | None = None,
    ):
        self.db = db_connection

        # Initialize repositories
        self.station_repo = StationRepository(db_connection)
        self.point_repo = ChargingPointRepository(db_connection)
        self.session_repo = SessionRepository(db_connection)
        self.invoice_repo = InvoiceRepository(db_connection)
        self.reading_repo = MeterReadingRepository(db_connection)

        # Initialize plugin system
        self.plugins: list[SessionPlugin] = plugins or []
        self._plugin_hooks: dict[PluginHook, list[tuple[SessionPlugin, str]]] = {}
        self._register_plugins()

        self.locks = KeyedLocks()
        self.sessions = SessionStateMachine(
            self.session_repo,
            self.point_repo,
            self.station_repo,
            self.reading_repo,
            validator=validator,
            idle_detector=idle_detector,
            calculator=calculator,
            locks=self.locks,
            run_hooks=self._execute_plugin_hooks,
        )
        self.invoices = InvoiceIssuer(
            self.invoice_repo,
            self.session_repo,
            locks=self.locks,
            run_hooks=self._execute_plugin_hooks,
        )
        self.availability = AvailabilityService(
            self.station_repo,
            self.point_repo,
            self.session_repo,
            classifier=classifier,
        )

    @classmethod
    def from_settings(
        cls,
        db_connection: aiosqlite.Connection,
        settings: Settings,
        plugins: list[SessionPlugin] | None = None,
    ) -> "ChargingEngine":
        return cls(
            db_connection,
            plugins=plugins,
            validator=MeterReadingValidator(
                max_power_kw=settings.max_power_kw,
                tolerance=settings.reading_tolerance,
                slack_kwh=settings.reading_slack_kwh,
            ),
            idle_detector=IdleDetector(stale_window=timedelta(minutes=settings.idle_stale_minutes)),
            calculator=CostCalculator(
                currency_digits=settings.currency_digits,
                max_total_cost=settings.max_total_cost,
            ),
            classifier=AvailabilityClassifier(settings.soon_available_minutes),
        )

    async def initialize(self):
        """Initialize every plugin; a failing plugin is logged and left in place."""
        for plugin in self.plugins:
            try:
                await plugin.initialize(self)
            except Exception as e:
                log_error(
                    logger,
                    "plugin_initialize_error",
                    f"Error initializing plugin {plugin.__class__.__name__}: {e}",
                    plugin=plugin.__class__.__name__,
                    exc_info=e,
                )

    async def shutdown(self):
        """Cleanup plugins."""
        for plugin in self.plugins:
            try:
                await plugin.cleanup(self)
            except Exception as e:
                log_error(
                    logger,
                    "plugin_cleanup_error",
                    f"Error cleaning up plugin {plugin.__class__.__name__}: {e}",
                    plugin=plugin.__class__.__name__,
                    exc_info=e,
                )

    def _register_plugins(self):
        """Register all plugins and build hook mapping."""
        for plugin in self.plugins:
            try:
                hooks = plugin.hooks()
                for hook, method_name in hooks.items():
                    if hook not in self._plugin_hooks:
                        self._plugin_hooks[hook] = []
                    self._plugin_hooks[hook].append((plugin, method_name))
            except Exception as e:
                log_error(
                    logger,
                    "plugin_registration_error",
                    f"Failed to register plugin {plugin.__class__.__name__}: {e}",
                    plugin=plugin.__class__.__name__,
                    exc_info=e,
                )

    async def _execute_plugin_hooks(
        self,
        hook: PluginHook,
        message_data: dict,
        result=None,
    ):
        """
        Execute all registered plugin hooks for a given lifecycle point.

        Args:
            hook: The hook point to execute
            message_data: The request arguments
            result: The outcome of the request (for AFTER and ON hooks)
        """
        if hook not in self._plugin_hooks:
            return

        context = PluginContext(
            engine=self,
            data=message_data,
            result=result,
        )

        for plugin, method_name in self._plugin_hooks[hook]:
            try:
                method = getattr(plugin, method_name)
                await method(context)
            except Exception as e:
                log_error(
                    logger,
                    "plugin_execution_error",
                    f"Error executing {plugin.__class__.__name__}.{method_name} for hook {hook.value}: {e}",
                    session_id=message_data.get("session_id"),
                    plugin=plugin.__class__.__name__,
                    hook=hook.value,
                    method=method_name,
                    exc_info=e,
                )

"""Base plugin infrastructure for the charging engine."""

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..engine.core import ChargingEngine

logger = logging.getLogger(__name__)


class PluginHook(str, Enum):
    """
    Available plugin hooks in the session lifecycle.

    Hooks are called at specific points during request processing:
    - BEFORE_*: Called before the engine processes the request
    - AFTER_*: Called after the engine completes successfully
    - ON_*: Called when the engine refuses or fails a request
    """

    # Session start hooks
    BEFORE_START_SESSION = "before_start_session"
    AFTER_START_SESSION = "after_start_session"

    # Meter update hooks
    AFTER_METER_UPDATE = "after_meter_update"
    ON_READING_REJECTED = "on_reading_rejected"

    # Session stop hooks
    BEFORE_STOP_SESSION = "before_stop_session"
    AFTER_STOP_SESSION = "after_stop_session"

    # Failure hooks
    AFTER_SESSION_ERROR = "after_session_error"

    # Invoice hooks
    AFTER_INVOICE_ISSUED = "after_invoice_issued"


HookRunner = Callable[[PluginHook, dict, Any], Awaitable[None]]


async def no_hooks(hook: PluginHook, data: dict, result: Any = None) -> None:
    """Hook runner used when a component runs without an engine."""


@dataclass
class PluginContext:
    """
    Context provided to plugin hooks.

    Contains:
    - engine: Reference to the ChargingEngine instance
    - data: The request arguments (user_id, point_id, reading, ...)
    - result: The outcome of the request (session, invoice or error)
    """

    engine: "ChargingEngine"
    data: dict[str, Any]
    result: Any = None


class SessionPlugin(ABC):
    """
    Base class for charging engine plugins.

    Plugins can register hooks to execute custom logic at various points
    in the session lifecycle.

    To create a plugin:
    1. Subclass SessionPlugin
    2. Implement the `hooks()` method to register your hook handlers
    3. Implement async methods for each hook you want to handle

    Example:
        class MyPlugin(SessionPlugin):
            def hooks(self) -> dict[PluginHook, str]:
                return {
                    PluginHook.AFTER_STOP_SESSION: "on_stopped"
                }

            async def on_stopped(self, context: PluginContext):
                logger.info(f"Session {context.result.id} billed {context.result.total_cost}")
    """

    def __init__(self):
        """Initialize the plugin."""
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @abstractmethod
    def hooks(self) -> dict[PluginHook, str]:
        """
        Return a mapping of hooks to handler method names.

        Returns:
            Dictionary mapping PluginHook enum values to method names on this class.
        """

    async def initialize(self, engine: "ChargingEngine"):
        """
        Called once when the engine starts.

        Args:
            engine: The engine this plugin is attached to
        """
        _ = engine

    async def cleanup(self, engine: "ChargingEngine"):
        """
        Called when the engine shuts down.

        Args:
            engine: The engine this plugin is attached to
        """
        _ = engine

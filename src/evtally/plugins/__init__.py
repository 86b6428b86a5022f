"""Plugin framework for extending ChargingEngine behavior."""

from .base import PluginContext, PluginHook, SessionPlugin
from .fluentd_audit import FluentdAuditPlugin
from .prometheus_metrics import PrometheusMetricsPlugin
from .stale_session import StaleSessionPlugin

__all__ = [
    "FluentdAuditPlugin",
    "PluginContext",
    "PluginHook",
    "PrometheusMetricsPlugin",
    "SessionPlugin",
    "StaleSessionPlugin",
]

"""Process configuration read from the environment (and a local .env file)."""

import os
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from dotenv import load_dotenv

ENV_PREFIX = "EVTALLY_"


@dataclass(frozen=True)
class Settings:
    db_path: str = "evtally.db"
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    metrics_port: int | None = None

    # Billing
    currency_digits: int = 0
    max_total_cost: Decimal | None = Decimal("1000000000")

    # Meter plausibility bound
    max_power_kw: Decimal = Decimal("350")
    reading_tolerance: Decimal = Decimal("1.25")
    reading_slack_kwh: Decimal = Decimal("0.5")

    # Idle and availability
    idle_stale_minutes: int = 10
    soon_available_minutes: int = 10
    stale_session_minutes: int | None = None

    # Fluentd audit trail
    fluentd_host: str | None = None
    fluentd_port: int | None = None
    fluentd_tag: str = "evtally"

    @property
    def fluentd_enabled(self) -> bool:
        return self.fluentd_host is not None


def _get(env: Mapping[str, str], name: str) -> str | None:
    value = env.get(ENV_PREFIX + name)
    if value is None or value.strip() == "":
        return None
    return value.strip()


def _int(env, name, default):
    raw = _get(env, name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from None


def _decimal(env, name, default):
    raw = _get(env, name)
    if raw is None:
        return default
    try:
        value = Decimal(raw)
    except InvalidOperation:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from None
    if not value.is_finite() or value < 0:
        raise ValueError(f"{ENV_PREFIX}{name} must be a non-negative number, got {raw!r}")
    return value


def parse_endpoint(endpoint: str) -> tuple[str, int]:
    """Split a ``host:port`` endpoint."""
    if ":" not in endpoint:
        raise ValueError(f"endpoint must be in host:port format, got {endpoint!r}")
    host, port_str = endpoint.rsplit(":", 1)
    if not host:
        raise ValueError(f"endpoint host can not be empty: {endpoint!r}")
    try:
        port = int(port_str)
    except ValueError:
        raise ValueError(f"invalid port in endpoint {endpoint!r}") from None
    return host, port


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """
    Build Settings from ``EVTALLY_*`` variables.

    When ``env`` is omitted, a ``.env`` file in the working directory is
    loaded first and ``os.environ`` is used. Malformed values raise
    ValueError naming the variable.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    fluentd_host = fluentd_port = None
    endpoint = _get(env, "FLUENTD")
    if endpoint is not None:
        try:
            fluentd_host, fluentd_port = parse_endpoint(endpoint)
        except ValueError as e:
            raise ValueError(f"{ENV_PREFIX}FLUENTD: {e}") from None

    currency_digits = _int(env, "CURRENCY_DIGITS", 0)
    if currency_digits < 0:
        raise ValueError(f"{ENV_PREFIX}CURRENCY_DIGITS must be >= 0")

    return Settings(
        db_path=_get(env, "DB") or "evtally.db",
        host=_get(env, "HOST") or "0.0.0.0",
        port=_int(env, "PORT", 8000),
        log_level=(_get(env, "LOG_LEVEL") or "INFO").upper(),
        metrics_port=_int(env, "METRICS_PORT", None),
        currency_digits=currency_digits,
        max_total_cost=_decimal(env, "MAX_TOTAL_COST", Decimal("1000000000")),
        max_power_kw=_decimal(env, "MAX_POWER_KW", Decimal("350")),
        reading_tolerance=_decimal(env, "READING_TOLERANCE", Decimal("1.25")),
        reading_slack_kwh=_decimal(env, "READING_SLACK_KWH", Decimal("0.5")),
        idle_stale_minutes=_int(env, "IDLE_STALE_MINUTES", 10),
        soon_available_minutes=_int(env, "SOON_AVAILABLE_MINUTES", 10),
        stale_session_minutes=_int(env, "STALE_SESSION_MINUTES", None),
        fluentd_host=fluentd_host,
        fluentd_port=fluentd_port,
        fluentd_tag=_get(env, "FLUENTD_TAG") or "evtally",
    )

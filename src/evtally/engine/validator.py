"""Meter reading validation."""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from .errors import InvalidReading, RejectionReason

SECONDS_PER_HOUR = Decimal("3600")


def to_decimal(value) -> Decimal:
    """Coerce an incoming numeric value to Decimal without going through binary float noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise InvalidOperation(f"not a number: {value!r}")
    return Decimal(str(value))


@dataclass(frozen=True)
class ReadingCheck:
    """Outcome of validating one candidate reading."""

    previous: Decimal
    candidate: Decimal | None
    reason: RejectionReason | None = None
    detail: str = ""

    @property
    def accepted(self) -> bool:
        return self.reason is None

    def unwrap(self) -> Decimal:
        """Return the accepted reading or raise InvalidReading."""
        if self.reason is not None:
            raise InvalidReading(self.reason, self.previous, self.candidate, self.detail)
        return self.candidate


class MeterReadingValidator:
    """
    Checks that meter readings only move forward and by a plausible amount.

    The plausibility bound is the energy the point could have delivered at
    its rated power over the elapsed wall-clock time, scaled by ``tolerance``,
    plus a fixed ``slack_kwh`` that absorbs meter granularity on short
    intervals. Points without a rated power use ``max_power_kw``.
    """

    def __init__(
        self,
        max_power_kw: Decimal | float = Decimal("350"),
        tolerance: Decimal | float = Decimal("1.25"),
        slack_kwh: Decimal | float = Decimal("0.5"),
    ):
        self.max_power_kw = to_decimal(max_power_kw)
        self.tolerance = to_decimal(tolerance)
        self.slack_kwh = to_decimal(slack_kwh)

    def max_delta(self, elapsed_seconds: float, power_kw: Decimal | None = None) -> Decimal:
        """Largest plausible increase for the elapsed time."""
        power = power_kw if power_kw is not None and power_kw > 0 else self.max_power_kw
        elapsed = max(to_decimal(elapsed_seconds), Decimal("0"))
        return power * (elapsed / SECONDS_PER_HOUR) * self.tolerance + self.slack_kwh

    def validate(
        self,
        previous,
        candidate,
        elapsed_seconds: float,
        power_kw: Decimal | None = None,
    ) -> ReadingCheck:
        """Validate ``candidate`` against the last accepted reading. Pure, no side effects."""
        previous = to_decimal(previous)
        check = self._check_number(previous, candidate)
        if not check.accepted:
            return check
        value = check.candidate

        if value < previous:
            return ReadingCheck(
                previous,
                value,
                RejectionReason.NON_MONOTONIC,
                f"below last accepted reading {previous}",
            )

        bound = self.max_delta(elapsed_seconds, power_kw)
        if value - previous > bound:
            return ReadingCheck(
                previous,
                value,
                RejectionReason.OUT_OF_RANGE,
                f"increase {value - previous} exceeds plausible {bound.normalize()} kWh",
            )

        return ReadingCheck(previous, value)

    def validate_start(self, candidate) -> ReadingCheck:
        """Validate the opening reading of a session; any finite non-negative value is accepted."""
        return self._check_number(Decimal("0"), candidate)

    @staticmethod
    def _check_number(previous: Decimal, candidate) -> ReadingCheck:
        try:
            value = to_decimal(candidate)
        except (InvalidOperation, TypeError, ValueError):
            return ReadingCheck(
                previous, None, RejectionReason.OUT_OF_RANGE, f"not a number: {candidate!r}"
            )

        if not value.is_finite() or value < 0:
            return ReadingCheck(previous, value, RejectionReason.OUT_OF_RANGE, "not a finite reading")

        return ReadingCheck(previous, value)

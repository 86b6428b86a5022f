"""Session cost calculation.

The same function produces the live estimate shown while a session is Active
and the final amount frozen at stop, so the two can never disagree for the
same inputs.
"""

import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from .errors import BillingOverflow
from .validator import to_decimal


@dataclass(frozen=True)
class CostBreakdown:
    """Energy cost, idle fee and their sum, in currency units."""

    energy_cost: Decimal
    idle_fee: Decimal
    total_cost: Decimal
    billable_idle_minutes: int

    def to_dict(self) -> dict[str, str | int]:
        return {
            "energy_cost": str(self.energy_cost),
            "idle_fee": str(self.idle_fee),
            "total_cost": str(self.total_cost),
            "billable_idle_minutes": self.billable_idle_minutes,
        }


class CostCalculator:
    """
    Pure cost function parameterised by currency precision.

    ``currency_digits`` is the number of minor-unit digits kept after
    rounding (0 for VND, 2 for EUR). ``max_total_cost`` guards against a
    corrupted input producing an absurd bill.
    """

    def __init__(self, currency_digits: int = 0, max_total_cost: Decimal | float | None = None):
        if currency_digits < 0:
            raise ValueError("currency_digits must be >= 0")
        self.currency_digits = currency_digits
        self._quantum = Decimal(1).scaleb(-currency_digits)
        self.max_total_cost = to_decimal(max_total_cost) if max_total_cost is not None else None

    def round_currency(self, amount: Decimal) -> Decimal:
        """Round half-up to the currency's minor unit."""
        return amount.quantize(self._quantum, rounding=ROUND_HALF_UP)

    def compute(
        self,
        energy_consumed_kwh,
        price_per_kwh,
        idle_minutes: float,
        idle_fee_per_minute,
    ) -> CostBreakdown:
        energy = to_decimal(energy_consumed_kwh)
        price = to_decimal(price_per_kwh)
        idle_rate = to_decimal(idle_fee_per_minute)
        if not math.isfinite(idle_minutes):
            raise ValueError(f"idle_minutes must be finite, got {idle_minutes}")
        if energy < 0 or price < 0 or idle_rate < 0 or idle_minutes < 0:
            raise ValueError("cost inputs must be non-negative")

        # Partial idle minutes are not billed
        whole_minutes = math.floor(idle_minutes)

        energy_cost = self.round_currency(energy * price)
        idle_fee = self.round_currency(Decimal(whole_minutes) * idle_rate)
        total_cost = energy_cost + idle_fee

        if self.max_total_cost is not None and total_cost > self.max_total_cost:
            raise BillingOverflow(
                f"total cost {total_cost} exceeds the billing ceiling {self.max_total_cost}"
            )

        return CostBreakdown(
            energy_cost=energy_cost,
            idle_fee=idle_fee,
            total_cost=total_cost,
            billable_idle_minutes=whole_minutes,
        )


def compute_cost(
    energy_consumed_kwh,
    price_per_kwh,
    idle_minutes: float,
    idle_fee_per_minute,
    currency_digits: int = 0,
) -> CostBreakdown:
    """Module-level shortcut for a one-off computation."""
    return CostCalculator(currency_digits).compute(
        energy_consumed_kwh, price_per_kwh, idle_minutes, idle_fee_per_minute
    )

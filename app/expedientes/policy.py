"""Release decision for a scraped case cost.

Costs are compared as whole cents so that ``500.00`` scraped from the portal
and ``500`` typed into the workbook are equal, and the ±10% margin is
evaluated without float rounding at its boundaries.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

from .models import ReleaseLogicConfig

Number = Union[Decimal, int, float, str]

RULE_EXACT = 1
RULE_MARGIN = 2
RULE_SUPERIOR = 3

_CENT = Decimal("0.01")


@dataclass(frozen=True)
class ReleaseDecision:
    release: bool
    rule: Optional[int] = None


NO_RELEASE = ReleaseDecision(release=False, rule=None)


def to_cents(value: Number) -> int:
    """Return ``value`` as an integer number of cents (half-up)."""

    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
        return int((amount.quantize(_CENT, rounding=ROUND_HALF_UP) * 100).to_integral_value())
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Not a currency amount: {value!r}") from exc


def decide(
    system_cost: Number,
    saved_cost: Number,
    config: Optional[ReleaseLogicConfig] = None,
) -> ReleaseDecision:
    """Decide whether a case should be released and which rule fired."""

    config = config or ReleaseLogicConfig()
    system = to_cents(system_cost)
    saved = to_cents(saved_cost)

    if system == saved:
        return ReleaseDecision(release=True, rule=RULE_EXACT)

    # saved*0.9 <= system <= saved*1.1, scaled by 10
    if config.margin_logic and saved * 9 <= system * 10 <= saved * 11:
        return ReleaseDecision(release=True, rule=RULE_MARGIN)

    if config.superior_logic and system > saved:
        return ReleaseDecision(release=True, rule=RULE_SUPERIOR)

    return NO_RELEASE


__all__ = [
    "ReleaseDecision",
    "NO_RELEASE",
    "RULE_EXACT",
    "RULE_MARGIN",
    "RULE_SUPERIOR",
    "decide",
    "to_cents",
]

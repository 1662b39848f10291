"""Money helpers.

All amounts are ``Decimal`` with two places, stored as ``NUMERIC(12, 2)``.
Every computed amount goes through ``quantize`` so rounding happens once, the
same way, everywhere (ROUND_HALF_UP).
"""

from __future__ import annotations

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Union

# ─── constants ───────────────────────────────────────────────────────────────

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")

Number = Union[Decimal, int, str]


# ─── helpers ─────────────────────────────────────────────────────────────────


def to_decimal(value: Number) -> Decimal:
    """Coerce an int/str/Decimal to Decimal. Floats are rejected."""
    if isinstance(value, float):
        raise TypeError("Use Decimal or str for money, not float")
    return value if isinstance(value, Decimal) else Decimal(value)


def quantize(value: Number) -> Decimal:
    """Round to cents (half-up)."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def percentage_of(amount: Number, percent: Number) -> Decimal:
    """Return ``percent``% of ``amount``, rounded to cents."""
    return quantize(to_decimal(amount) * to_decimal(percent) / HUNDRED)


def apply_rate(amount: Number, rate: Number) -> Decimal:
    """Return ``amount * rate`` rounded to cents (rate is a fraction, e.g. 0.10)."""
    return quantize(to_decimal(amount) * to_decimal(rate))


def allocate(total: Number, weights: list[Decimal]) -> list[Decimal]:
    """Split ``total`` proportionally to ``weights``.

    Leading shares are truncated to cents and the last share takes the
    remainder, so the result always sums to ``quantize(total)`` and no share
    goes negative.
    """
    total = quantize(total)
    if not weights:
        return []
    weight_sum = sum(weights, ZERO)
    if weight_sum <= 0:
        return [ZERO] * (len(weights) - 1) + [total]

    shares = [
        (total * w / weight_sum).quantize(CENT, rounding=ROUND_DOWN)
        for w in weights[:-1]
    ]
    shares.append(total - sum(shares, ZERO))
    return shares

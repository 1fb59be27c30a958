# storefront/services/pricing.py
"""
Order money math shared by checkout, the webhook and the fallback creation path.

Every component is rounded to cents on its own before the total is summed,
which is how Stripe prices the individual line items of a checkout session.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, Optional

from ..settings import settings
from .order_types import CartLine

_CENT = Decimal("0.01")


def round2(value: float) -> float:
    return float(Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP))


def to_cents(usd: float) -> int:
    return int(Decimal(str(usd)).scaleb(2).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def clamp_tip_percent(tip_percent) -> float:
    try:
        pct = float(tip_percent)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(pct):
        return 0.0
    return min(max(pct, 0.0), 100.0)


def line_unit_price(line: CartLine) -> float:
    return line.price + sum(a.price for a in line.selected_addons)


def subtotal(cart: Iterable[CartLine]) -> float:
    return sum(line_unit_price(line) * line.quantity for line in cart)


def tax(sub: float, rate: Optional[float] = None) -> float:
    rate = settings.tax_rate if rate is None else rate
    return round2(sub * rate)


def tip_amount(sub: float, tip_percent=0.0, explicit_amount: Optional[float] = None) -> float:
    if explicit_amount is not None and math.isfinite(explicit_amount) and explicit_amount > 0:
        return round2(explicit_amount)
    return round2(sub * (clamp_tip_percent(tip_percent) / 100))


def total(sub: float, tax_value: float, tip_value: float) -> float:
    return round2(round2(sub) + round2(tax_value) + round2(tip_value))


@dataclass(frozen=True)
class OrderTotals:
    subtotal: float
    tax: float
    tip_percent: float
    tip: float
    total: float

    def as_metadata(self) -> Dict[str, str]:
        return {
            "subtotal": f"{self.subtotal:.2f}",
            "tax": f"{self.tax:.2f}",
            "tip_percent": f"{self.tip_percent:.2f}",
            "tip_amount": f"{self.tip:.2f}",
            "total": f"{self.total:.2f}",
        }


def compute_totals(
    cart: Iterable[CartLine],
    tip_percent=0.0,
    explicit_tip: Optional[float] = None,
) -> OrderTotals:
    sub = round2(subtotal(cart))
    tax_value = tax(sub)
    pct = clamp_tip_percent(tip_percent)
    tip_value = tip_amount(sub, pct, explicit_tip)
    return OrderTotals(
        subtotal=sub,
        tax=tax_value,
        tip_percent=pct,
        tip=tip_value,
        total=total(sub, tax_value, tip_value),
    )

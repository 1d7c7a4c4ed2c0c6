from typing import Iterable

from schemas import PricingSummary

TAX_RATE = 0.10
SHIPPING_FEE = 50.0
FREE_SHIPPING_OVER = 1000.0
DISCOUNT_RATE = 0.05
DISCOUNT_OVER = 2000.0


def _money(value: float) -> float:
    return round(float(value), 2)


def calculate_pricing(lines: Iterable) -> PricingSummary:
    """
    Price a cart snapshot. ``lines`` are objects exposing ``price`` and ``quantity``.

    An empty snapshot prices to all zeros: nothing to tax and nothing to ship.
    """
    lines = list(lines)
    if not lines:
        return PricingSummary()

    subtotal = _money(sum(line.price * line.quantity for line in lines))
    tax = _money(subtotal * TAX_RATE)
    shipping = 0.0 if subtotal > FREE_SHIPPING_OVER else SHIPPING_FEE
    discount = _money(subtotal * DISCOUNT_RATE) if subtotal > DISCOUNT_OVER else 0.0
    total = _money(subtotal + tax + shipping - discount)
    return PricingSummary(subtotal=subtotal, tax=tax, shipping=shipping, discount=discount, total=total)

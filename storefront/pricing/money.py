"""
Monetary arithmetic.

Amounts are float dollars rounded to cents; Stripe takes integer cents.
Price fields may arrive as strings (form posts, JSON from older clients) or
numbers, so everything funnels through parse_price.
"""

from typing import Any, Iterable, Tuple, Union

from storefront.core.errors import ValidationFailed

Number = Union[int, float]


def parse_price(value: Any) -> float:
    """Coerce a price field (str, int, float or None) to float dollars."""
    if value is None or value == "":
        return 0.0
    if isinstance(value, bool):
        raise ValidationFailed(f"Invalid price: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip().lstrip("$").replace(",", ""))
    except ValueError:
        raise ValidationFailed(f"Invalid price: {value!r}")


def round_money(amount: Number) -> float:
    return round(float(amount), 2)


def line_total(price: Any, quantity: int) -> float:
    return round_money(parse_price(price) * quantity)


def subtotal(lines: Iterable[Tuple[Any, int]]) -> float:
    """Sum of line totals over (price, quantity) pairs."""
    return round_money(sum(parse_price(price) * qty for price, qty in lines))


def order_total(subtotal_amount: Number, discount: Number, shipping: Number) -> float:
    """
    subtotal - discount + shipping.

    The discount is capped at the subtotal so the total never drops below the
    shipping charge.
    """
    discount = min(max(float(discount), 0.0), float(subtotal_amount))
    return round_money(float(subtotal_amount) - discount + float(shipping))


def to_cents(amount: Number) -> int:
    return int(round(float(amount) * 100))


def from_cents(cents: int) -> float:
    return cents / 100

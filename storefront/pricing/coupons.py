"""
Coupon / discount code validation.

Pure functions over coupon terms; no database access and no side effects.
The DB-facing lookup and redemption live in storefront.services.coupons.

Checks run in a fixed order and the first failure wins:
  NOT_YET_VALID -> EXPIRED -> USAGE_LIMIT_REACHED -> BELOW_MINIMUM -> NOT_APPLICABLE
(NOT_FOUND is decided by the caller that looks the code up.)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional, Tuple, Union

from storefront.pricing.money import parse_price, round_money

PERCENTAGE = "percentage"
FIXED_AMOUNT = "fixed_amount"
DISCOUNT_TYPES = (PERCENTAGE, FIXED_AMOUNT)


class CouponFailure(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    NOT_YET_VALID = "NOT_YET_VALID"
    EXPIRED = "EXPIRED"
    USAGE_LIMIT_REACHED = "USAGE_LIMIT_REACHED"
    BELOW_MINIMUM = "BELOW_MINIMUM"
    NOT_APPLICABLE = "NOT_APPLICABLE"


@dataclass(frozen=True)
class CouponTerms:
    code: str
    discount_type: str
    discount_value: float
    minimum_order_amount: float = 0.0
    maximum_discount_amount: Optional[float] = None
    usage_limit: Optional[int] = None
    usage_count: int = 0
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    applies_to_categories: Tuple[str, ...] = ()
    applies_to_products: Tuple[str, ...] = ()
    id: Optional[int] = None
    description: Optional[str] = None

    @classmethod
    def from_model(cls, coupon: Any) -> "CouponTerms":
        """Snapshot an ORM Coupon (or anything shaped like one)."""
        maximum = coupon.maximum_discount_amount
        return cls(
            id=coupon.id,
            code=coupon.code,
            description=coupon.description,
            discount_type=coupon.discount_type,
            discount_value=parse_price(coupon.discount_value),
            minimum_order_amount=parse_price(coupon.minimum_order_amount),
            maximum_discount_amount=parse_price(maximum) if maximum is not None else None,
            usage_limit=coupon.usage_limit,
            usage_count=coupon.usage_count or 0,
            valid_from=coupon.valid_from,
            valid_until=coupon.valid_until,
            applies_to_categories=tuple(str(c) for c in (coupon.applies_to_categories or ())),
            applies_to_products=tuple(str(p) for p in (coupon.applies_to_products or ())),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "description": self.description,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "minimum_order_amount": self.minimum_order_amount,
            "maximum_discount_amount": self.maximum_discount_amount,
        }


@dataclass(frozen=True)
class CouponValid:
    discount: float
    coupon: CouponTerms
    valid: bool = field(default=True, init=False)


@dataclass(frozen=True)
class CouponInvalid:
    reason: CouponFailure
    error: str
    discount: float = field(default=0.0, init=False)
    valid: bool = field(default=False, init=False)


CouponResult = Union[CouponValid, CouponInvalid]


def compute_discount(
    discount_type: str,
    discount_value: float,
    subtotal: float,
    maximum_discount_amount: Optional[float] = None,
) -> float:
    """
    Discount for a subtotal.

    Percentage: subtotal * value / 100, clamped to maximum_discount_amount.
    Fixed: min(value, subtotal).
    The result always lies in [0, subtotal].
    """
    subtotal = max(float(subtotal), 0.0)
    if discount_type == PERCENTAGE:
        discount = subtotal * float(discount_value) / 100
        if maximum_discount_amount is not None:
            discount = min(discount, float(maximum_discount_amount))
    elif discount_type == FIXED_AMOUNT:
        discount = float(discount_value)
    else:
        discount = 0.0
    return round_money(min(max(discount, 0.0), subtotal))


def _item_keys(item: Any) -> Tuple[Optional[str], Optional[str]]:
    """(product_id, category_id) as strings for an item dict or object."""
    if isinstance(item, dict):
        product_id = item.get("product_id", item.get("id"))
        category_id = item.get("category_id")
    else:
        product_id = getattr(item, "product_id", None) or getattr(item, "id", None)
        category_id = getattr(item, "category_id", None)
    return (
        str(product_id) if product_id is not None else None,
        str(category_id) if category_id is not None else None,
    )


def is_applicable(terms: CouponTerms, items: Iterable[Any]) -> bool:
    """True when the coupon is unrestricted or at least one item matches an allow-list."""
    if not terms.applies_to_categories and not terms.applies_to_products:
        return True
    products = set(terms.applies_to_products)
    categories = set(terms.applies_to_categories)
    for item in items:
        product_id, category_id = _item_keys(item)
        if product_id is not None and product_id in products:
            return True
        if category_id is not None and category_id in categories:
            return True
    return False


def not_found() -> CouponInvalid:
    return CouponInvalid(reason=CouponFailure.NOT_FOUND, error="Coupon code not found")


def validate_coupon(
    terms: CouponTerms,
    items: Iterable[Any],
    subtotal: float,
    now: datetime,
) -> CouponResult:
    """
    Validate a coupon against a cart and compute the discount.

    Args:
        terms: Coupon snapshot (already matched by code and active).
        items: Cart items; each exposes product_id (or id) and category_id.
        subtotal: Cart subtotal in dollars, before shipping.
        now: Current time (naive UTC), compared with the validity window.

    Returns:
        CouponValid with the discount, or CouponInvalid with a reason code
        and a user-facing message (discount 0).
    """
    items = list(items)

    if terms.valid_from is not None and terms.valid_from > now:
        return CouponInvalid(CouponFailure.NOT_YET_VALID, "Coupon is not yet valid")

    # A null valid_until never expires
    if terms.valid_until is not None and terms.valid_until < now:
        return CouponInvalid(CouponFailure.EXPIRED, "Coupon has expired")

    if terms.usage_limit is not None and terms.usage_count >= terms.usage_limit:
        return CouponInvalid(CouponFailure.USAGE_LIMIT_REACHED, "Coupon usage limit has been reached")

    if subtotal < terms.minimum_order_amount:
        return CouponInvalid(
            CouponFailure.BELOW_MINIMUM,
            f"Minimum order amount is ${terms.minimum_order_amount:.2f}",
        )

    if not is_applicable(terms, items):
        return CouponInvalid(CouponFailure.NOT_APPLICABLE, "Coupon does not apply to the items in your cart")

    discount = compute_discount(
        terms.discount_type,
        terms.discount_value,
        subtotal,
        terms.maximum_discount_amount,
    )
    return CouponValid(discount=discount, coupon=terms)

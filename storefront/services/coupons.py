"""
Coupon lookup, redemption and admin management.

Validation itself is pure (storefront.pricing.coupons). Redemption is a
conditional UPDATE so concurrent checkouts cannot push usage_count past
usage_limit; checkout runs it inside the order transaction.
"""

from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from storefront.core.errors import Conflict, NotFound, ValidationFailed
from storefront.db.models import Coupon, Product
from storefront.pricing.coupons import (
    DISCOUNT_TYPES, PERCENTAGE, CouponResult, CouponTerms, not_found, validate_coupon,
)
from storefront.pricing.money import parse_price
from storefront.utils.clock import to_naive_utc, utcnow
from storefront.utils.logger import get_logger

logger = get_logger("coupons")

COUPON_FIELDS = (
    "code", "description", "discount_type", "discount_value", "minimum_order_amount",
    "maximum_discount_amount", "usage_limit", "valid_from", "valid_until",
    "applies_to_categories", "applies_to_products", "is_active",
)


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def serialize_coupon(coupon: Coupon) -> Dict[str, Any]:
    return {
        "id": coupon.id,
        "code": coupon.code,
        "description": coupon.description,
        "discount_type": coupon.discount_type,
        "discount_value": coupon.discount_value,
        "minimum_order_amount": coupon.minimum_order_amount,
        "maximum_discount_amount": coupon.maximum_discount_amount,
        "usage_limit": coupon.usage_limit,
        "usage_count": coupon.usage_count,
        "valid_from": coupon.valid_from.isoformat() if coupon.valid_from else None,
        "valid_until": coupon.valid_until.isoformat() if coupon.valid_until else None,
        "applies_to_categories": coupon.applies_to_categories or [],
        "applies_to_products": coupon.applies_to_products or [],
        "is_active": coupon.is_active,
    }


class CouponService:
    def __init__(self, db: Session):
        self.db = db

    def find_active(self, code: str) -> Optional[Coupon]:
        return self.db.execute(
            select(Coupon).where(Coupon.code == normalize_code(code), Coupon.is_active.is_(True))
        ).scalar_one_or_none()

    def _with_categories(self, items: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Fill in category_id from the product rows where the caller left it out."""
        items = [dict(item) for item in items]
        missing = [
            item.get("product_id", item.get("id")) for item in items
            if item.get("category_id") is None and item.get("product_id", item.get("id")) is not None
        ]
        if missing:
            rows = self.db.execute(
                select(Product.id, Product.category_id).where(Product.id.in_([int(m) for m in missing]))
            ).all()
            categories = {row.id: row.category_id for row in rows}
            for item in items:
                pid = item.get("product_id", item.get("id"))
                if item.get("category_id") is None and pid is not None:
                    item["category_id"] = categories.get(int(pid))
        return items

    def validate(self, code: str, items: Iterable[Dict[str, Any]], subtotal: float) -> CouponResult:
        """Look up an active coupon by code and validate it against the cart. No side effects."""
        coupon = self.find_active(code)
        if coupon is None:
            return not_found()
        result = validate_coupon(
            CouponTerms.from_model(coupon),
            self._with_categories(items),
            parse_price(subtotal),
            utcnow(),
        )
        logger.info("coupon_validate: code=%s valid=%s reason=%s discount=%s",
                    coupon.code, result.valid, getattr(result, "reason", None), result.discount)
        return result

    def redeem(self, coupon_id: int) -> bool:
        """
        Increment usage_count unless the limit is already reached.
        Runs in the caller's transaction; returns False when the limit won.
        """
        result = self.db.execute(
            update(Coupon)
            .where(
                Coupon.id == coupon_id,
                or_(Coupon.usage_limit.is_(None), Coupon.usage_count < Coupon.usage_limit),
            )
            .values(usage_count=Coupon.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def redeem_code(self, code: str) -> bool:
        """redeem() by code, for orders that only kept the code."""
        result = self.db.execute(
            update(Coupon)
            .where(
                Coupon.code == normalize_code(code),
                or_(Coupon.usage_limit.is_(None), Coupon.usage_count < Coupon.usage_limit),
            )
            .values(usage_count=Coupon.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def release(self, code: str) -> None:
        """Undo one redemption (payment failed). Runs in the caller's transaction."""
        self.db.execute(
            update(Coupon)
            .where(Coupon.code == normalize_code(code), Coupon.usage_count > 0)
            .values(usage_count=Coupon.usage_count - 1)
            .execution_options(synchronize_session=False)
        )

    # Admin

    def list_all(self) -> List[Dict[str, Any]]:
        coupons = self.db.execute(select(Coupon).order_by(Coupon.created_at.desc(), Coupon.id.desc())).scalars().all()
        return [serialize_coupon(c) for c in coupons]

    def _clean(self, values: Dict[str, Any], partial: bool) -> Dict[str, Any]:
        values = {k: v for k, v in values.items() if k in COUPON_FIELDS}
        if "code" in values:
            values["code"] = normalize_code(values["code"])
            if not values["code"]:
                raise ValidationFailed("Coupon code is required")
        if not partial:
            missing = [f for f in ("code", "discount_type", "discount_value") if values.get(f) in (None, "")]
            if missing:
                raise ValidationFailed(f"Missing required fields: {', '.join(missing)}", details={"fields": missing})
        if "discount_type" in values and values["discount_type"] not in DISCOUNT_TYPES:
            raise ValidationFailed("Discount type must be percentage or fixed_amount")
        if "discount_value" in values:
            values["discount_value"] = parse_price(values["discount_value"])
            if values["discount_value"] <= 0:
                raise ValidationFailed("Discount value must be greater than 0")
        for name in ("minimum_order_amount", "maximum_discount_amount"):
            if values.get(name) is not None:
                values[name] = parse_price(values[name])
                if values[name] < 0:
                    raise ValidationFailed(f"{name} must not be negative")
        for name in ("valid_from", "valid_until"):
            if values.get(name) is not None:
                values[name] = to_naive_utc(values[name])
        if values.get("usage_limit") is not None and int(values["usage_limit"]) < 0:
            raise ValidationFailed("usage_limit must not be negative")
        if values.get("minimum_order_amount") is None and not partial:
            values["minimum_order_amount"] = 0.0
        return values

    def _check_window(self, coupon: Coupon) -> None:
        if coupon.discount_type == PERCENTAGE and coupon.discount_value > 100:
            raise ValidationFailed("Percentage discount cannot exceed 100")
        if coupon.valid_from and coupon.valid_until and coupon.valid_until < coupon.valid_from:
            raise ValidationFailed("valid_until must be after valid_from")

    def create(self, data: Dict[str, Any]) -> Coupon:
        values = self._clean(data, partial=False)
        exists = self.db.execute(select(Coupon.id).where(Coupon.code == values["code"])).scalar_one_or_none()
        if exists is not None:
            raise Conflict("Coupon code already exists")
        coupon = Coupon(**values)
        self._check_window(coupon)
        self.db.add(coupon)
        self.db.commit()
        self.db.refresh(coupon)
        logger.info("coupon_created: code=%s type=%s value=%s", coupon.code, coupon.discount_type, coupon.discount_value)
        return coupon

    def update(self, coupon_id: int, data: Dict[str, Any]) -> Coupon:
        coupon = self.db.get(Coupon, coupon_id)
        if coupon is None:
            raise NotFound("Coupon not found")
        values = self._clean(data, partial=True)
        if "code" in values and values["code"] != coupon.code:
            taken = self.db.execute(
                select(func.count(Coupon.id)).where(Coupon.code == values["code"], Coupon.id != coupon_id)
            ).scalar_one()
            if taken:
                raise Conflict("Coupon code already exists")
        for name, value in values.items():
            setattr(coupon, name, value)
        self._check_window(coupon)
        self.db.commit()
        self.db.refresh(coupon)
        return coupon

    def delete(self, coupon_id: int) -> None:
        coupon = self.db.get(Coupon, coupon_id)
        if coupon is None:
            raise NotFound("Coupon not found")
        self.db.delete(coupon)
        self.db.commit()


def describe_result(result: CouponResult) -> Dict[str, Any]:
    """Wire form of a validation verdict."""
    if result.valid:
        return {"valid": True, "discount": result.discount, "coupon": result.coupon.to_dict()}
    return {"valid": False, "error": result.error, "reason": result.reason.value}

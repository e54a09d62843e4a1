"""
Tests for coupon validation and discount computation.

Covers:
- Percentage / fixed discounts and their bounds
- Rejection reasons and the order they are checked in
- Category / product allow-lists
- POST /api/coupons/validate
"""

from datetime import datetime, timedelta

import pytest

from storefront.pricing.coupons import (
    FIXED_AMOUNT, PERCENTAGE, CouponFailure, CouponTerms, compute_discount, is_applicable, validate_coupon,
)

from conftest import add_coupon

NOW = datetime(2025, 6, 1, 12, 0, 0)


def terms(**overrides):
    values = dict(code="SAVE", discount_type=PERCENTAGE, discount_value=10.0)
    values.update(overrides)
    return CouponTerms(**values)


class TestComputeDiscount:
    """Discount arithmetic."""

    @pytest.mark.parametrize("subtotal,value,cap", [
        (100.0, 20, None),
        (100.0, 20, 15.0),
        (33.33, 15, None),
        (10.0, 100, None),
        (0.0, 50, None),
    ])
    def test_percentage_is_capped_and_bounded(self, subtotal, value, cap):
        discount = compute_discount(PERCENTAGE, value, subtotal, cap)
        expected = subtotal * value / 100
        if cap is not None:
            expected = min(expected, cap)
        assert discount == round(expected, 2)
        assert 0 <= discount <= subtotal

    @pytest.mark.parametrize("subtotal,value", [(100.0, 15.0), (12.0, 15.0), (0.0, 5.0)])
    def test_fixed_never_exceeds_subtotal(self, subtotal, value):
        assert compute_discount(FIXED_AMOUNT, value, subtotal) == min(value, subtotal)

    def test_twenty_percent_with_fifteen_dollar_cap(self):
        assert compute_discount(PERCENTAGE, 20, 100.0, 15.0) == 15.0

    def test_unknown_type_gives_no_discount(self):
        assert compute_discount("bogo", 10, 50.0) == 0.0


class TestValidateCoupon:
    """Rejection reasons."""

    def test_valid_coupon_returns_discount(self):
        result = validate_coupon(terms(discount_value=20, maximum_discount_amount=15.0), [], 100.0, NOW)
        assert result.valid is True
        assert result.discount == 15.0
        assert result.coupon.code == "SAVE"

    def test_below_minimum(self):
        result = validate_coupon(terms(minimum_order_amount=50.0), [], 40.0, NOW)
        assert result.valid is False
        assert result.reason == CouponFailure.BELOW_MINIMUM
        assert result.error == "Minimum order amount is $50.00"
        assert result.discount == 0.0

    def test_expired(self):
        result = validate_coupon(terms(valid_until=NOW - timedelta(seconds=1)), [], 100.0, NOW)
        assert result.reason == CouponFailure.EXPIRED

    def test_null_valid_until_never_expires(self):
        result = validate_coupon(terms(valid_from=NOW - timedelta(days=3650)), [], 100.0, NOW)
        assert result.valid is True

    def test_not_yet_valid(self):
        result = validate_coupon(terms(valid_from=NOW + timedelta(days=1)), [], 100.0, NOW)
        assert result.reason == CouponFailure.NOT_YET_VALID

    @pytest.mark.parametrize("limit,count", [(1, 1), (5, 5), (5, 9), (0, 0)])
    def test_usage_limit_reached_always_rejected(self, limit, count):
        result = validate_coupon(terms(usage_limit=limit, usage_count=count), [], 500.0, NOW)
        assert result.valid is False
        assert result.reason == CouponFailure.USAGE_LIMIT_REACHED

    def test_usage_limit_checked_before_minimum(self):
        result = validate_coupon(
            terms(usage_limit=1, usage_count=1, minimum_order_amount=50.0), [], 10.0, NOW,
        )
        assert result.reason == CouponFailure.USAGE_LIMIT_REACHED

    def test_expiry_checked_before_usage_limit(self):
        result = validate_coupon(
            terms(usage_limit=1, usage_count=1, valid_until=NOW - timedelta(days=1)), [], 10.0, NOW,
        )
        assert result.reason == CouponFailure.EXPIRED

    def test_not_applicable_to_cart(self):
        coupon = terms(applies_to_categories=("7",))
        result = validate_coupon(coupon, [{"product_id": 1, "category_id": 3}], 100.0, NOW)
        assert result.reason == CouponFailure.NOT_APPLICABLE


class TestApplicability:
    def test_unrestricted_coupon_applies_to_anything(self):
        assert is_applicable(terms(), []) is True

    def test_category_match(self):
        assert is_applicable(terms(applies_to_categories=("3",)), [{"product_id": 1, "category_id": 3}])

    def test_product_match_by_id_key(self):
        assert is_applicable(terms(applies_to_products=("42",)), [{"id": 42}])

    def test_no_match(self):
        assert not is_applicable(terms(applies_to_products=("42",)), [{"product_id": 41, "category_id": 1}])


class TestValidateEndpoint:
    """POST /api/coupons/validate"""

    def test_valid_code_is_case_insensitive(self, app, client, catalog):
        add_coupon(app, code="SAVE20", discount_value=20, maximum_discount_amount=15)
        response = client.post("/api/coupons/validate", json={
            "code": "save20", "items": [{"product_id": catalog["mug"], "quantity": 5}], "subtotal": 100,
        })
        assert response.status_code == 200
        body = response.json()
        assert body["valid"] is True
        assert body["discount"] == 15.0
        assert body["coupon"]["code"] == "SAVE20"

    def test_unknown_code(self, client):
        response = client.post("/api/coupons/validate", json={"code": "NOPE", "subtotal": 10})
        assert response.status_code == 200
        assert response.json() == {"valid": False, "error": "Coupon code not found", "reason": "NOT_FOUND"}

    def test_inactive_coupon_is_not_found(self, app, client):
        add_coupon(app, code="OLD", is_active=False)
        response = client.post("/api/coupons/validate", json={"code": "OLD", "subtotal": 10})
        assert response.json()["reason"] == "NOT_FOUND"

    def test_below_minimum_reports_reason(self, app, client):
        add_coupon(app, code="BIG", minimum_order_amount=50)
        response = client.post("/api/coupons/validate", json={"code": "BIG", "subtotal": "40.00"})
        body = response.json()
        assert body["valid"] is False
        assert body["reason"] == "BELOW_MINIMUM"

    def test_category_restriction_uses_product_rows(self, app, client, catalog):
        add_coupon(app, code="BOOKS", applies_to_categories=[catalog["books"]])
        gear_only = client.post("/api/coupons/validate", json={
            "code": "BOOKS", "items": [{"product_id": catalog["mug"], "quantity": 1}], "subtotal": 20,
        })
        assert gear_only.json()["reason"] == "NOT_APPLICABLE"
        with_book = client.post("/api/coupons/validate", json={
            "code": "BOOKS", "items": [{"product_id": catalog["novel"], "quantity": 1}], "subtotal": 12,
        })
        assert with_book.json()["valid"] is True

    def test_missing_code_is_400(self, client):
        response = client.post("/api/coupons/validate", json={"code": "  ", "subtotal": 10})
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_validation_has_no_side_effects(self, app, client, session):
        from storefront.db.models import Coupon

        coupon_id = add_coupon(app, code="ONCE", usage_limit=1)
        for _ in range(3):
            client.post("/api/coupons/validate", json={"code": "ONCE", "subtotal": 10})
        assert session.get(Coupon, coupon_id).usage_count == 0

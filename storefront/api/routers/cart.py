"""
Cart pricing, coupon validation and shipping endpoints.

None of these write anything: they price a cart against current product
rows, coupon terms and shipping rules so the storefront can show totals
before checkout.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storefront.api.deps import get_config, get_settings_store
from storefront.api.schemas import CartQuoteRequest, CouponValidateRequest, ShippingEstimateRequest, ok
from storefront.core.errors import ValidationFailed
from storefront.db.database import get_db
from storefront.pricing.shipping import estimate_delivery
from storefront.services.carriers import CarrierService
from storefront.services.checkout import CheckoutService
from storefront.services.coupons import CouponService, describe_result
from storefront.services.settings_store import SettingsStore
from storefront.utils.clock import today

router = APIRouter(prefix="/api", tags=["cart"])


def get_carriers(db: Session = Depends(get_db), store: SettingsStore = Depends(get_settings_store)) -> CarrierService:
    return CarrierService(db, store)


@router.post("/cart/quote")
def quote_cart(
    request: CartQuoteRequest,
    db: Session = Depends(get_db),
    config=Depends(get_config),
    store: SettingsStore = Depends(get_settings_store),
):
    """Replay the cart through the reducer against authoritative prices and stock."""
    service = CheckoutService(db, config, store)
    quote = service.quote(
        [line.model_dump() for line in request.items],
        coupon_code=request.coupon_code,
        state=request.state,
    )
    body = quote.to_dict()
    if request.carrier_id is not None:
        carrier = service.carriers.resolve(request.carrier_id)
        body["carrier"] = carrier
        body["estimatedDelivery"] = estimate_delivery(carrier["base_delivery_days"], today()).isoformat()
    return ok(**body)


@router.post("/coupons/validate")
def validate_coupon(request: CouponValidateRequest, db: Session = Depends(get_db)):
    """200 for valid and invalid coupons alike; the verdict is in the body."""
    if not request.code.strip():
        raise ValidationFailed("Coupon code is required")
    result = CouponService(db).validate(
        request.code,
        [line.model_dump() for line in request.items],
        request.subtotal,
    )
    return describe_result(result)


@router.post("/shipping/estimate")
def estimate_shipping(request: ShippingEstimateRequest, carriers: CarrierService = Depends(get_carriers)):
    return ok(**carriers.estimate(request.zip_code, request.carrier_id, request.country))


@router.get("/shipping/estimate")
def estimate_shipping_query(
    zip_code: Optional[str] = Query(None, alias="zipCode"),
    carrier_id: Optional[int] = Query(None, alias="carrierId"),
    country: str = "US",
    carriers: CarrierService = Depends(get_carriers),
):
    return ok(**carriers.estimate(zip_code, carrier_id, country))


@router.get("/shipping/carriers")
def list_carriers(carriers: CarrierService = Depends(get_carriers)):
    return ok(carriers=carriers.list_public())

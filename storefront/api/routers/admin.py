"""
Admin endpoints: catalog, inventory alerts, coupons, carriers, orders, users,
reviews, contact messages, store settings and subscription plans.

Every route here requires an active admin account.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storefront.api.deps import get_cache, get_settings_store, require_admin
from storefront.api.schemas import (
    AdminUserUpdate, CarrierWrite, CategoryWrite, CouponWrite, PlanWrite, ProductWrite, SettingsPatch, StatusUpdate,
    ok, set_fields,
)
from storefront.db.database import get_db
from storefront.db.models import User
from storefront.services.accounts import AccountService, serialize_user
from storefront.services.carriers import CarrierService, serialize_carrier
from storefront.services.catalog import CatalogService, serialize_category, serialize_product
from storefront.services.contact import ContactService, serialize_message
from storefront.services.coupons import CouponService, serialize_coupon
from storefront.services.orders import OrderService
from storefront.services.reviews import ReviewService, serialize_review
from storefront.services.settings_store import DEFAULTS, SettingsStore
from storefront.services.subscriptions import SubscriptionService, serialize_plan

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])

DEFAULT_LOW_STOCK_THRESHOLD = DEFAULTS["inventory"]["low_stock_threshold"]


def get_catalog(db: Session = Depends(get_db), cache=Depends(get_cache)) -> CatalogService:
    return CatalogService(db, cache)


@router.get("/stats")
def dashboard_stats(db: Session = Depends(get_db)):
    return ok(orders=OrderService(db).stats(), users=AccountService(db).stats())


# Products

@router.get("/products")
def list_products(
    category_id: Optional[int] = Query(None, alias="categoryId"),
    limit: int = 50,
    offset: int = 0,
    catalog: CatalogService = Depends(get_catalog),
):
    return ok(**catalog.list_products(category_id=category_id, limit=limit, offset=offset, include_inactive=True))


@router.post("/products", status_code=201)
def create_product(request: ProductWrite, catalog: CatalogService = Depends(get_catalog)):
    return ok(product=serialize_product(catalog.create_product(set_fields(request))))


@router.put("/products/{product_id}")
def update_product(product_id: int, request: ProductWrite, catalog: CatalogService = Depends(get_catalog)):
    return ok(product=serialize_product(catalog.update_product(product_id, set_fields(request))))


@router.delete("/products/{product_id}")
def delete_product(product_id: int, catalog: CatalogService = Depends(get_catalog)):
    catalog.delete_product(product_id)
    return ok(message="Product deactivated")


# Inventory

@router.get("/inventory/alerts")
def inventory_alerts(
    catalog: CatalogService = Depends(get_catalog),
    store: SettingsStore = Depends(get_settings_store),
):
    """Low and out-of-stock products against the inventory.low_stock_threshold setting."""
    values = store.get("inventory").values
    try:
        threshold = int(values.get("low_stock_threshold"))
    except (TypeError, ValueError):
        threshold = DEFAULT_LOW_STOCK_THRESHOLD
    alerts = catalog.inventory_alerts(threshold, include_out_of_stock=bool(values.get("out_of_stock_alert", True)))
    return ok(alerts=alerts, threshold=threshold)


# Categories

@router.get("/categories")
def list_categories(catalog: CatalogService = Depends(get_catalog)):
    return ok(categories=catalog.list_categories())


@router.post("/categories", status_code=201)
def create_category(request: CategoryWrite, catalog: CatalogService = Depends(get_catalog)):
    return ok(category=serialize_category(catalog.create_category(set_fields(request))))


@router.put("/categories/{category_id}")
def update_category(category_id: int, request: CategoryWrite, catalog: CatalogService = Depends(get_catalog)):
    return ok(category=serialize_category(catalog.update_category(category_id, set_fields(request))))


@router.delete("/categories/{category_id}")
def delete_category(category_id: int, catalog: CatalogService = Depends(get_catalog)):
    catalog.delete_category(category_id)
    return ok(message="Category deleted")


# Coupons

@router.get("/coupons")
def list_coupons(db: Session = Depends(get_db)):
    return ok(coupons=CouponService(db).list_all())


@router.post("/coupons", status_code=201)
def create_coupon(request: CouponWrite, db: Session = Depends(get_db)):
    return ok(coupon=serialize_coupon(CouponService(db).create(set_fields(request))))


@router.put("/coupons/{coupon_id}")
def update_coupon(coupon_id: int, request: CouponWrite, db: Session = Depends(get_db)):
    return ok(coupon=serialize_coupon(CouponService(db).update(coupon_id, set_fields(request))))


@router.delete("/coupons/{coupon_id}")
def delete_coupon(coupon_id: int, db: Session = Depends(get_db)):
    CouponService(db).delete(coupon_id)
    return ok(message="Coupon deleted")


# Carriers

@router.get("/carriers")
def list_carriers(db: Session = Depends(get_db)):
    return ok(carriers=CarrierService(db).list_all())


@router.post("/carriers", status_code=201)
def create_carrier(request: CarrierWrite, db: Session = Depends(get_db)):
    return ok(carrier=serialize_carrier(CarrierService(db).create(set_fields(request))))


@router.put("/carriers/{carrier_id}")
def update_carrier(carrier_id: int, request: CarrierWrite, db: Session = Depends(get_db)):
    return ok(carrier=serialize_carrier(CarrierService(db).update(carrier_id, set_fields(request))))


@router.delete("/carriers/{carrier_id}")
def delete_carrier(carrier_id: int, db: Session = Depends(get_db)):
    deleted = CarrierService(db).delete(carrier_id)
    message = "Carrier deleted" if deleted else "Carrier is used by existing orders and was deactivated"
    return ok(deleted=deleted, message=message)


# Orders

@router.get("/orders")
def list_orders(
    status: Optional[str] = None,
    search: Optional[str] = None,
    needs_attention: Optional[bool] = Query(None, alias="needsAttention"),
    limit: int = 20,
    offset: int = 0,
    db: Session = Depends(get_db),
):
    return ok(**OrderService(db).list_admin(
        status=status, search=search, needs_attention=needs_attention, limit=limit, offset=offset,
    ))


# Users

@router.get("/users")
def list_users(
    search: Optional[str] = None,
    account_type: Optional[str] = Query(None, alias="accountType"),
    limit: int = 20,
    offset: int = 0,
    db: Session = Depends(get_db),
):
    limit = max(1, min(limit, 100))
    offset = max(0, offset)
    return ok(**AccountService(db).list_users(search=search, limit=limit, offset=offset, account_type=account_type))


@router.get("/users/stats")
def user_stats(db: Session = Depends(get_db)):
    return ok(stats=AccountService(db).stats())


@router.get("/users/{user_id}")
def get_user(user_id: int, db: Session = Depends(get_db)):
    return ok(user=AccountService(db).user_detail(user_id))


@router.put("/users/{user_id}")
def update_user(
    user_id: int,
    request: AdminUserUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    user = AccountService(db).admin_update_user(admin, user_id, set_fields(request))
    return ok(user=serialize_user(user, admin_view=True))


# Reviews

@router.get("/reviews")
def list_reviews(status: Optional[str] = None, db: Session = Depends(get_db)):
    return ok(reviews=ReviewService(db).list_admin(status))


@router.put("/reviews/{review_id}")
def moderate_review(
    review_id: int,
    request: StatusUpdate,
    db: Session = Depends(get_db),
    cache=Depends(get_cache),
):
    return ok(review=serialize_review(ReviewService(db, cache).moderate(review_id, request.status)))


@router.delete("/reviews/{review_id}")
def delete_review(review_id: int, db: Session = Depends(get_db), cache=Depends(get_cache)):
    ReviewService(db, cache).delete(review_id)
    return ok(message="Review deleted")


# Contact messages

@router.get("/contacts")
def list_contacts(status: Optional[str] = None, db: Session = Depends(get_db)):
    return ok(messages=ContactService(db).list_messages(status))


@router.put("/contacts/{message_id}")
def update_contact(message_id: int, request: StatusUpdate, db: Session = Depends(get_db)):
    return ok(message=serialize_message(ContactService(db).set_status(message_id, request.status)))


# Settings

@router.get("/settings/{key}")
def get_settings(key: str, store: SettingsStore = Depends(get_settings_store)):
    return ok(**store.get(key).redacted())


@router.patch("/settings/{key}")
def patch_settings(key: str, request: SettingsPatch, store: SettingsStore = Depends(get_settings_store)):
    """Field-level update guarded by the version the form was loaded with."""
    return ok(**store.patch(key, request.values, request.version).redacted())


# Subscription plans

@router.get("/plans")
def list_plans(db: Session = Depends(get_db)):
    return ok(plans=SubscriptionService(db).list_plans(include_inactive=True))


@router.post("/plans", status_code=201)
def create_plan(request: PlanWrite, db: Session = Depends(get_db)):
    return ok(plan=serialize_plan(SubscriptionService(db).create_plan(set_fields(request))))


@router.put("/plans/{plan_id}")
def update_plan(plan_id: int, request: PlanWrite, db: Session = Depends(get_db)):
    return ok(plan=serialize_plan(SubscriptionService(db).update_plan(plan_id, set_fields(request))))


@router.delete("/plans/{plan_id}")
def deactivate_plan(plan_id: int, db: Session = Depends(get_db)):
    SubscriptionService(db).deactivate_plan(plan_id)
    return ok(message="Plan deactivated")

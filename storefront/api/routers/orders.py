"""
Order endpoints: checkout, tracking, customer history, invoices and admin
status updates.

Notification emails are queued as background tasks with a dict snapshot of
the order, so they run after the response and never touch the session.
"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from storefront.api.deps import (
    get_config, get_current_user, get_mailer, get_optional_user, get_settings_store, require_admin,
)
from storefront.api.schemas import CheckoutRequest, OrderStatusUpdate, ok
from storefront.db.database import get_db
from storefront.db.models import User
from storefront.services.checkout import CheckoutService
from storefront.services.email import Mailer
from storefront.services.orders import OrderService, build_invoice, serialize_order
from storefront.services.settings_store import SettingsStore

router = APIRouter(prefix="/api", tags=["orders"])


@router.post("/orders", status_code=201)
def create_order(
    request: CheckoutRequest,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    config=Depends(get_config),
    store: SettingsStore = Depends(get_settings_store),
    mailer: Mailer = Depends(get_mailer),
    user: Optional[User] = Depends(get_optional_user),
):
    """
    Place an order. Totals are computed on the server; stock and the coupon
    are reserved in the same transaction as the order row.
    """
    data = request.model_dump()
    order = CheckoutService(db, config, store).place_order(data, user)
    snapshot = serialize_order(order)

    background.add_task(mailer.send_order_status_update, snapshot)
    background.add_task(mailer.send_admin_new_order, snapshot)

    return ok(
        orderId=order.id,
        orderNumber=order.order_number,
        totals={
            "subtotal": order.subtotal,
            "discountAmount": order.discount_amount,
            "shippingAmount": order.shipping_amount,
            "taxAmount": order.tax_amount,
            "totalAmount": order.total_amount,
        },
        estimatedDelivery=snapshot["estimated_delivery"],
    )


@router.get("/orders/track")
def track_order(
    order_number: str = Query("", alias="orderNumber"),
    email: str = "",
    db: Session = Depends(get_db),
):
    """Guest order lookup; both the order number and the email must match."""
    order = OrderService(db).track(order_number, email)
    return ok(order=serialize_order(order))


@router.get("/user/orders")
def my_orders(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return ok(orders=OrderService(db).list_for_user(user))


@router.get("/orders/{order_id}")
def get_order(order_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    order = OrderService(db).get_for_viewer(order_id, user)
    return ok(order=serialize_order(order))


@router.get("/orders/{order_id}/invoice")
def get_invoice(
    order_id: int,
    db: Session = Depends(get_db),
    config=Depends(get_config),
    store: SettingsStore = Depends(get_settings_store),
    user: User = Depends(get_current_user),
):
    """Invoice for an order the caller owns; admins can fetch any."""
    order = OrderService(db).get_for_viewer(order_id, user)
    general = store.get("general").values
    seller = {
        "name": general.get("store_name") or config.store_name,
        "email": general.get("store_email") or config.email_from or None,
        "phone": general.get("store_phone") or None,
        "address": general.get("store_address") or None,
    }
    return ok(invoice=build_invoice(order, seller))


@router.put("/orders/{order_id}/status", dependencies=[Depends(require_admin)])
def update_order_status(
    order_id: int,
    request: OrderStatusUpdate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    order, previous = OrderService(db).update_status(
        order_id, request.status, notes=request.notes, tracking_number=request.tracking_number,
    )
    snapshot = serialize_order(order)
    if order.status != previous:
        if order.status == "shipped" and order.tracking_number:
            background.add_task(mailer.send_shipping_notification, snapshot)
        else:
            background.add_task(mailer.send_order_status_update, snapshot)
    return ok(order=snapshot)

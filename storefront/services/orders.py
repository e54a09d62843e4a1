"""
Order reads, admin status updates and payment-state transitions.

Order status after checkout (pending, processing, shipped, delivered,
cancelled) is a plain admin field update. payment_status is driven by the
payment webhook: pending -> paid, pending -> failed, and failed -> paid when a
declined customer retries the same intent. Each transition is a conditional
UPDATE on the current status, so replayed deliveries are no-ops.
"""

from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session, selectinload

from storefront.core.errors import Forbidden, NotFound, ValidationFailed
from storefront.db.models import Order, Product, User
from storefront.services.coupons import CouponService
from storefront.utils.clock import utcnow
from storefront.utils.logger import get_logger

logger = get_logger("orders")

ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")
PAYMENT_STATUSES = ("pending", "paid", "failed", "refunded")


def serialize_order(order: Order, include_items: bool = True) -> Dict[str, Any]:
    data = {
        "id": order.id,
        "order_number": order.order_number,
        "user_id": order.user_id,
        "customer_email": order.customer_email,
        "customer_name": order.customer_name,
        "customer_phone": order.customer_phone,
        "status": order.status,
        "payment_status": order.payment_status,
        "payment_method": order.payment_method,
        "subtotal": order.subtotal,
        "tax_amount": order.tax_amount,
        "shipping_amount": order.shipping_amount,
        "discount_amount": order.discount_amount,
        "total_amount": order.total_amount,
        "coupon_code": order.coupon_code,
        "shipping_address": order.shipping_address,
        "billing_address": order.billing_address,
        "shipping_carrier_id": order.shipping_carrier_id,
        "estimated_delivery": order.estimated_delivery.isoformat() if order.estimated_delivery else None,
        "tracking_number": order.tracking_number,
        "notes": order.notes,
        "needs_attention": bool(order.needs_attention),
        "shipped_at": order.shipped_at.isoformat() if order.shipped_at else None,
        "delivered_at": order.delivered_at.isoformat() if order.delivered_at else None,
        "created_at": order.created_at.isoformat() if order.created_at else None,
    }
    if include_items:
        data["items"] = [
            {
                "id": item.id,
                "product_id": item.product_id,
                "product_name": item.product_name,
                "quantity": item.quantity,
                "price": item.price,
                "total": item.total,
            }
            for item in order.items
        ]
    return data


def build_invoice(order: Order, seller: Dict[str, Any]) -> Dict[str, Any]:
    """
    Invoice document for an order. seller holds the store name, email, phone
    and address as they are when the invoice is rendered; everything else is
    the order snapshot taken at checkout.
    """
    data = serialize_order(order)
    return {
        "invoice_number": f"INV-{order.order_number}",
        "issued_at": data["created_at"],
        "seller": seller,
        "bill_to": {
            "name": order.customer_name,
            "email": order.customer_email,
            "phone": order.customer_phone,
            "address": order.billing_address or order.shipping_address,
        },
        "ship_to": order.shipping_address,
        "items": data["items"],
        "totals": {
            "subtotal": order.subtotal,
            "discount_amount": order.discount_amount,
            "coupon_code": order.coupon_code,
            "shipping_amount": order.shipping_amount,
            "tax_amount": order.tax_amount,
            "total_amount": order.total_amount,
        },
        "payment_status": order.payment_status,
        "payment_method": order.payment_method,
        "order_status": order.status,
    }


class OrderService:
    def __init__(self, db: Session):
        self.db = db

    def get(self, order_id: int) -> Order:
        order = self.db.get(Order, order_id)
        if order is None:
            raise NotFound("Order not found")
        return order

    def get_for_viewer(self, order_id: int, user: User) -> Order:
        """An order the user owns, or any order for admins."""
        order = self.get(order_id)
        if not user.is_admin and order.user_id != user.id:
            # Same response as a missing order
            raise NotFound("Order not found")
        return order

    def track(self, order_number: str, email: str) -> Order:
        if not order_number or not email:
            raise ValidationFailed("Order number and email are required")
        order = self.db.execute(
            select(Order).where(
                Order.order_number == order_number.strip(),
                func.lower(Order.customer_email) == email.strip().lower(),
            )
        ).scalar_one_or_none()
        if order is None:
            raise NotFound("Order not found")
        return order

    def list_for_user(self, user: User) -> List[Dict[str, Any]]:
        orders = self.db.execute(
            select(Order)
            .options(selectinload(Order.items))
            .where(Order.user_id == user.id)
            .order_by(Order.created_at.desc(), Order.id.desc())
        ).scalars().all()
        return [serialize_order(o) for o in orders]

    def list_admin(self, status: Optional[str] = None, search: Optional[str] = None,
                   needs_attention: Optional[bool] = None, limit: int = 20, offset: int = 0) -> Dict[str, Any]:
        limit = max(1, min(limit, 100))
        offset = max(0, offset)
        query = select(Order)
        if status:
            if status not in ORDER_STATUSES:
                raise ValidationFailed(f"status must be one of {', '.join(ORDER_STATUSES)}")
            query = query.where(Order.status == status)
        if needs_attention is not None:
            query = query.where(Order.needs_attention == needs_attention)
        if search:
            pattern = f"%{search.strip().lower()}%"
            query = query.where(or_(
                func.lower(Order.order_number).like(pattern),
                func.lower(Order.customer_email).like(pattern),
                func.lower(Order.customer_name).like(pattern),
            ))
        total = self.db.execute(select(func.count()).select_from(query.subquery())).scalar_one()
        orders = self.db.execute(
            query.options(selectinload(Order.items))
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(limit).offset(offset)
        ).scalars().all()
        return {
            "orders": [serialize_order(o) for o in orders],
            "pagination": {"total": total, "limit": limit, "offset": offset, "hasMore": offset + len(orders) < total},
        }

    def update_status(
        self,
        order_id: int,
        status: str,
        notes: Optional[str] = None,
        tracking_number: Optional[str] = None,
    ) -> Tuple[Order, str]:
        """
        Set the order status (any allowed value, no transition guards).

        shipped_at / delivered_at are stamped the first time the order enters
        those states; notes and tracking_number are only overwritten when given.
        Returns (order, previous_status).
        """
        if status not in ORDER_STATUSES:
            raise ValidationFailed(f"Invalid status. Must be one of: {', '.join(ORDER_STATUSES)}")
        order = self.get(order_id)
        previous = order.status
        now = utcnow()
        order.status = status
        if status == "shipped" and order.shipped_at is None:
            order.shipped_at = now
        if status == "delivered" and order.delivered_at is None:
            order.delivered_at = now
        if notes is not None:
            order.notes = notes
        if tracking_number is not None:
            order.tracking_number = tracking_number
        self.db.commit()
        self.db.refresh(order)
        logger.info("order_status: order_id=%s from=%s to=%s", order.id, previous, status)
        return order, previous

    # Payment transitions

    def _payment_status(self, order_id: int) -> Optional[str]:
        return self.db.execute(select(Order.payment_status).where(Order.id == order_id)).scalar_one_or_none()

    def _transition_payment(self, order_id: int, from_status: str, to_status: str, payment_id: Optional[str]) -> bool:
        values: Dict[str, Any] = {"payment_status": to_status, "updated_at": utcnow()}
        if payment_id:
            values["stripe_payment_id"] = payment_id
        result = self.db.execute(
            update(Order)
            .where(Order.id == order_id, Order.payment_status == from_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _reserve_again(self, order: Order) -> List[str]:
        """
        Take back the stock and coupon released when the payment failed.
        Returns a description of whatever could not be reserved.
        """
        shortfalls = []
        for item in order.items:
            if item.product_id is None:
                continue
            result = self.db.execute(
                update(Product)
                .where(Product.id == item.product_id, Product.stock_quantity >= item.quantity)
                .values(stock_quantity=Product.stock_quantity - item.quantity)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                shortfalls.append(f"insufficient stock for {item.product_name} x{item.quantity}")
        if order.coupon_code and not CouponService(self.db).redeem_code(order.coupon_code):
            shortfalls.append(f"coupon {order.coupon_code} is at its usage limit")
        return shortfalls

    def mark_paid(self, order_id: int, payment_id: Optional[str] = None) -> Optional[Order]:
        """
        pending -> paid, or failed -> paid when the customer retried the same
        intent after a decline. Returns the order, or None when it was already
        paid (replayed delivery) or does not exist.

        On failed -> paid the stock and coupon released by the failure are
        reserved again. The payment is kept even when that falls short; the
        order is flagged with needs_attention for an admin instead.
        """
        previous = self._payment_status(order_id)
        if previous not in ("pending", "failed") or not self._transition_payment(
            order_id, previous, "paid", payment_id
        ):
            self.db.rollback()
            logger.info("payment: order_id=%s status=%s, skipping paid", order_id, previous)
            return None
        order = self.get(order_id)
        self.db.refresh(order)
        if previous == "failed":
            shortfalls = self._reserve_again(order)
            if shortfalls:
                order.needs_attention = True
                note = "Paid after a failed attempt: " + "; ".join(shortfalls)
                order.notes = f"{order.notes}\n{note}" if order.notes else note
                logger.warning("payment: order_id=%s order_number=%s paid_after_failure shortfalls=%s",
                               order.id, order.order_number, shortfalls)
        if order.user_id is not None:
            self.db.execute(
                update(User)
                .where(User.id == order.user_id)
                .values(
                    total_spent=User.total_spent + order.total_amount,
                    order_count=User.order_count + 1,
                )
                .execution_options(synchronize_session=False)
            )
        self.db.commit()
        self.db.refresh(order)
        logger.info("payment: order_id=%s order_number=%s result=paid from=%s", order.id, order.order_number, previous)
        return order

    def mark_payment_failed(self, order_id: int, payment_id: Optional[str] = None) -> Optional[Order]:
        """
        pending -> failed, returning reserved stock and the coupon redemption
        in the same transaction. None when the order was not pending.
        """
        if not self._transition_payment(order_id, "pending", "failed", payment_id):
            self.db.rollback()
            logger.info("payment: order_id=%s already processed, skipping failed", order_id)
            return None
        order = self.get(order_id)
        self.db.refresh(order)
        for item in order.items:
            if item.product_id is None:
                continue
            self.db.execute(
                update(Product)
                .where(Product.id == item.product_id)
                .values(stock_quantity=Product.stock_quantity + item.quantity)
                .execution_options(synchronize_session=False)
            )
        if order.coupon_code:
            CouponService(self.db).release(order.coupon_code)
        self.db.commit()
        logger.info("payment: order_id=%s order_number=%s result=failed stock_released=%s",
                    order.id, order.order_number, len(order.items))
        return order

    def stats(self) -> Dict[str, Any]:
        by_status = dict(self.db.execute(select(Order.status, func.count(Order.id)).group_by(Order.status)).all())
        revenue = self.db.execute(
            select(func.coalesce(func.sum(Order.total_amount), 0)).where(Order.payment_status == "paid")
        ).scalar_one()
        return {
            "total_orders": sum(by_status.values()),
            "by_status": {s: by_status.get(s, 0) for s in ORDER_STATUSES},
            "paid_revenue": round(float(revenue or 0), 2),
        }


def ensure_owner(order: Order, user: Optional[User]) -> None:
    """Payment may be started by the order's owner, an admin, or anyone for guest orders."""
    if order.user_id is None:
        return
    if user is None or (order.user_id != user.id and not user.is_admin):
        raise Forbidden("You do not have access to this order")


def handle_payment_event(orders: OrderService, event: Dict[str, Any]) -> Tuple[str, Optional[Dict[str, Any]]]:
    """
    Apply a verified payment webhook event.

    Returns (outcome, order snapshot or None). Outcomes: "paid", "failed",
    "duplicate", "ignored".
    """
    event_type = event.get("type")
    intent = (event.get("data") or {}).get("object") or {}
    if event_type not in ("payment_intent.succeeded", "payment_intent.payment_failed"):
        logger.info("webhook: unhandled event type=%s", event_type)
        return "ignored", None

    raw_order_id = (intent.get("metadata") or {}).get("orderId")
    try:
        order_id = int(raw_order_id)
    except (TypeError, ValueError):
        logger.warning("webhook: event type=%s has no usable orderId metadata=%r", event_type, raw_order_id)
        return "ignored", None

    if event_type == "payment_intent.succeeded":
        order = orders.mark_paid(order_id, intent.get("id"))
        outcome = "paid"
    else:
        order = orders.mark_payment_failed(order_id, intent.get("id"))
        outcome = "failed"
    if order is None:
        return "duplicate", None
    return outcome, serialize_order(order)

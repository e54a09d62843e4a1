"""
Checkout orchestration.

Totals are always re-derived on the server from product rows, the coupon
table and the shipping rules; amounts the client sends are only compared
against them (and logged on mismatch), never persisted.

Order creation is one transaction: the order row, its items, a conditional
stock decrement per line (stock_quantity >= quantity) and a conditional
coupon redemption (usage_count < usage_limit). Any failure rolls all of it
back, so concurrent checkouts cannot oversell stock or over-redeem a coupon.
"""

import secrets
import string
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from storefront.core.errors import (
    Conflict, CouponRejected, InsufficientStock, NotFound, PricingMismatch, ValidationFailed,
)
from storefront.db.models import Order, OrderItem, Product, User
from storefront.pricing.cart import (
    AddItem, AppliedCoupon, ApplyCoupon, CartItem, CartState, EMPTY_CART, UpdateQuantity, cart_reducer,
)
from storefront.pricing.coupons import CouponResult
from storefront.pricing.money import order_total, parse_price
from storefront.pricing.shipping import ShippingRules, estimate_delivery, shipping_cost
from storefront.services.carriers import SIMPLE_SHIPPING_ID, CarrierService
from storefront.services.coupons import CouponService, describe_result
from storefront.services.payments import REUSABLE_INTENT_STATUSES
from storefront.utils.clock import today as utc_today
from storefront.utils.logger import get_logger

logger = get_logger("checkout")

ORDER_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def generate_order_number(prefix: str = "ORD") -> str:
    """<prefix>-<epoch millis>-<9 random upper-case alphanumerics>."""
    suffix = "".join(secrets.choice(ORDER_SUFFIX_ALPHABET) for _ in range(9))
    return f"{prefix}-{int(time.time() * 1000)}-{suffix}"


@dataclass
class Quote:
    cart: CartState
    shipping_amount: float
    total: float
    coupon_result: Optional[CouponResult] = None
    adjustments: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def subtotal(self) -> float:
        return self.cart.total

    @property
    def discount_amount(self) -> float:
        return self.cart.discount_amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.cart.to_dict(),
            "subtotal": self.subtotal,
            "shippingAmount": self.shipping_amount,
            "orderTotal": self.total,
            "couponResult": describe_result(self.coupon_result) if self.coupon_result is not None else None,
            "adjustments": self.adjustments,
        }


class CheckoutService:
    def __init__(self, db: Session, config, settings):
        self.db = db
        self.config = config
        self.settings = settings
        self.coupons = CouponService(db)
        self.carriers = CarrierService(db, settings)

    def _load_products(self, product_ids: List[int]) -> Dict[int, Product]:
        rows = self.db.execute(
            select(Product).where(Product.id.in_(product_ids), Product.is_active.is_(True))
        ).scalars().all()
        products = {p.id: p for p in rows}
        missing = [pid for pid in product_ids if pid not in products]
        if missing:
            raise NotFound(f"Products not found: {', '.join(str(m) for m in missing)}",
                           details={"product_ids": missing})
        return products

    def _shipping_amount(self, subtotal: float, state: Optional[str]) -> float:
        if self.carriers.simple_shipping() is not None:
            return 0.0
        return shipping_cost(subtotal, state, ShippingRules.from_config(self.config))

    def quote(
        self,
        items: List[Dict[str, Any]],
        coupon_code: Optional[str] = None,
        state: Optional[str] = None,
        strict: bool = False,
    ) -> Quote:
        """
        Price a cart against authoritative data by replaying it through the
        cart reducer.

        strict=True (checkout) rejects lines whose quantity exceeds stock
        instead of clamping them.
        """
        if not items:
            raise ValidationFailed("Cart is empty")
        for line in items:
            if int(line.get("quantity", 0)) < 1:
                raise ValidationFailed("Item quantities must be at least 1")

        product_ids = list(dict.fromkeys(int(line["product_id"]) for line in items))
        products = self._load_products(product_ids)

        requested: Dict[int, int] = {}
        for line in items:
            pid = int(line["product_id"])
            requested[pid] = requested.get(pid, 0) + int(line["quantity"])

        cart = EMPTY_CART
        adjustments = []
        for pid, quantity in requested.items():
            product = products[pid]
            stock = product.stock_quantity or 0
            if quantity > stock:
                if strict:
                    raise InsufficientStock(
                        f"Insufficient stock for {product.name}",
                        details={"product_id": pid, "requested": quantity, "available": stock},
                    )
                adjustments.append({"product_id": pid, "requested": quantity, "quantity": min(quantity, stock)})
            if stock <= 0:
                continue
            item = CartItem(
                id=pid,
                name=product.name,
                price=parse_price(product.price),
                quantity=1,
                stock_quantity=stock,
                image_url=product.image_url,
                category_id=product.category_id,
            )
            cart = cart_reducer(cart, AddItem(item))
            cart = cart_reducer(cart, UpdateQuantity(pid, quantity))

        coupon_result = None
        if coupon_code:
            coupon_items = [{"product_id": i.id, "category_id": i.category_id} for i in cart.items]
            coupon_result = self.coupons.validate(coupon_code, coupon_items, cart.total)
            if coupon_result.valid:
                terms = coupon_result.coupon
                cart = cart_reducer(cart, ApplyCoupon(AppliedCoupon(
                    code=terms.code,
                    value=terms.discount_value,
                    discount_type=terms.discount_type,
                    maximum_discount_amount=terms.maximum_discount_amount,
                )))

        shipping = self._shipping_amount(cart.total, state)
        total = order_total(cart.total, cart.discount_amount, shipping)
        return Quote(cart=cart, shipping_amount=shipping, total=total,
                     coupon_result=coupon_result, adjustments=adjustments)

    def _check_client_totals(self, data: Dict[str, Any], quote: Quote, order_ref: str) -> None:
        client = {
            "subtotal": data.get("subtotal"),
            "discount_amount": data.get("discount_amount"),
            "shipping_amount": data.get("shipping_amount"),
            "total_amount": data.get("total_amount"),
        }
        server = {
            "subtotal": quote.subtotal,
            "discount_amount": quote.discount_amount,
            "shipping_amount": quote.shipping_amount,
            "total_amount": quote.total,
        }
        mismatched = {
            name: {"client": parse_price(value), "server": server[name]}
            for name, value in client.items()
            if value is not None and abs(parse_price(value) - server[name]) > self.config.price_tolerance
        }
        if not mismatched:
            return
        logger.warning("checkout: client totals differ from server order_ref=%s mismatch=%s", order_ref, mismatched)
        if self.config.reject_price_mismatch:
            raise PricingMismatch("Prices have changed; please review your cart", details=mismatched)

    def place_order(self, data: Dict[str, Any], user: Optional[User] = None) -> Order:
        """
        Validate, price and persist an order.

        Raises:
            ValidationFailed: required fields missing or malformed.
            NotFound: product or carrier missing/inactive.
            InsufficientStock: a line exceeds stock (checked again atomically).
            CouponRejected: the coupon is invalid or its limit was reached.
            PricingMismatch: client totals differ and rejection is enabled.
        """
        shipping_address = data.get("shipping_address") or {}
        email = (data.get("customer_email") or shipping_address.get("email") or (user.email if user else "")).strip()
        name = (data.get("customer_name") or " ".join(
            p for p in (shipping_address.get("first_name"), shipping_address.get("last_name")) if p
        )).strip()
        carrier_id = data.get("shipping_carrier_id")

        missing = []
        if not email:
            missing.append("email")
        if not name:
            missing.append("name")
        for key in ("address", "city", "zip"):
            if not str(shipping_address.get(key) or "").strip():
                missing.append(key)
        if carrier_id is None:
            missing.append("carrier")
        if not data.get("items"):
            missing.append("items")
        if missing:
            raise ValidationFailed(f"Missing required fields: {', '.join(missing)}", details={"fields": missing})

        carrier = self.carriers.resolve(int(carrier_id))
        quote = self.quote(data["items"], data.get("coupon_code"), shipping_address.get("state"), strict=True)

        if data.get("coupon_code") and not quote.coupon_result.valid:
            raise CouponRejected(quote.coupon_result.error,
                                 details={"reason": quote.coupon_result.reason.value})

        order_number = generate_order_number(self.config.order_number_prefix)
        self._check_client_totals(data, quote, order_number)

        order = Order(
            order_number=order_number,
            user_id=user.id if user else None,
            customer_email=email.lower(),
            customer_name=name,
            customer_phone=data.get("customer_phone") or shipping_address.get("phone"),
            status="pending",
            payment_status="pending",
            payment_method=data.get("payment_method") or "stripe",
            subtotal=quote.subtotal,
            tax_amount=0.0,
            shipping_amount=quote.shipping_amount,
            discount_amount=quote.discount_amount,
            total_amount=quote.total,
            coupon_code=quote.coupon_result.coupon.code if quote.coupon_result and quote.coupon_result.valid else None,
            shipping_address=shipping_address,
            billing_address=data.get("billing_address") or shipping_address,
            shipping_carrier_id=None if carrier["id"] == SIMPLE_SHIPPING_ID else carrier["id"],
            estimated_delivery=estimate_delivery(carrier["base_delivery_days"], utc_today()),
            notes=data.get("notes"),
        )
        for item in quote.cart.items:
            order.items.append(OrderItem(
                product_id=item.id,
                product_name=item.name,
                quantity=item.quantity,
                price=item.price,
                total=item.line_total,
            ))

        try:
            self.db.add(order)
            self.db.flush()
            for item in quote.cart.items:
                result = self.db.execute(
                    update(Product)
                    .where(Product.id == item.id, Product.stock_quantity >= item.quantity)
                    .values(stock_quantity=Product.stock_quantity - item.quantity)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise InsufficientStock(f"Insufficient stock for {item.name}",
                                            details={"product_id": item.id, "requested": item.quantity})
            if order.coupon_code:
                if not self.coupons.redeem(quote.coupon_result.coupon.id):
                    raise CouponRejected("Coupon usage limit has been reached",
                                         details={"reason": "USAGE_LIMIT_REACHED"})
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(order)
        logger.info(
            "checkout: order_id=%s order_number=%s items=%s subtotal=%.2f discount=%.2f shipping=%.2f total=%.2f coupon=%s",
            order.id, order.order_number, len(order.items), order.subtotal, order.discount_amount,
            order.shipping_amount, order.total_amount, order.coupon_code,
        )
        return order


def start_payment(db: Session, order: Order, client, currency: str = "usd") -> Dict[str, Any]:
    """
    Client secret for the order's payment intent, charging the stored total.

    An order keeps one live intent: when stripe_payment_id points at an intent
    the customer can still confirm (including after a declined card), that
    intent is returned instead of creating a second one. A new intent is only
    created for a first attempt or after the previous one was canceled, with
    an idempotency key derived from the order so concurrent calls collapse.

    Raises:
        Conflict: the order is already paid or refunded, or its intent has
            succeeded and the webhook has not been applied yet.
    """
    if order.payment_status not in ("pending", "failed"):
        raise Conflict(f"Order payment is already {order.payment_status}")

    if order.stripe_payment_id:
        existing = client.retrieve_payment_intent(order.stripe_payment_id)
        if existing.get("status") == "succeeded":
            raise Conflict("Payment for this order has already been received")
        if existing.get("status") in REUSABLE_INTENT_STATUSES:
            logger.info("payment_intent: order_id=%s reusing intent_id=%s", order.id, existing.get("id"))
            return {"clientSecret": existing.get("client_secret"), "paymentIntentId": existing.get("id")}

    intent = client.create_payment_intent(
        amount=order.total_amount,
        currency=currency,
        metadata={"orderId": str(order.id), "orderNumber": order.order_number},
        idempotency_key=f"order-{order.id}-after-{order.stripe_payment_id or 'none'}",
    )
    order.stripe_payment_id = intent.get("id")
    order.payment_method = "stripe"
    db.commit()
    logger.info("payment_intent: order_id=%s intent_id=%s amount=%.2f", order.id, intent.get("id"), order.total_amount)
    return {"clientSecret": intent.get("client_secret"), "paymentIntentId": intent.get("id")}

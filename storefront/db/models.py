"""
SQLAlchemy database models.
These are the authoritative source of truth for all store data.

The relational store is authoritative for:
- Products (prices, stock levels)
- Coupons (terms and redemption counts)
- Orders and order items
- Carriers and store settings
- Users, reviews, wishlists, subscriptions

Money columns are Numeric(10, 2) read back as float dollars.
"""

from sqlalchemy import (
    Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, JSON, Numeric,
    String, Text, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from storefront.db.database import Base
from storefront.utils.clock import utcnow


def Money(**kwargs):
    return Column(Numeric(10, 2, asdecimal=False), **kwargs)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    phone = Column(String(50), nullable=True)

    # "customer" | "admin"
    account_type = Column(String(20), nullable=False, default="customer", index=True)
    tier = Column(String(20), nullable=False, default="standard")

    # Status flags
    is_active = Column(Boolean, nullable=False, default=True)
    email_verified = Column(Boolean, nullable=False, default=False)
    account_locked = Column(Boolean, nullable=False, default=False)
    locked_until = Column(DateTime, nullable=True)
    failed_login_attempts = Column(Integer, nullable=False, default=0)
    last_login = Column(DateTime, nullable=True)

    verification_token = Column(String(128), nullable=True, index=True)
    verification_expires = Column(DateTime, nullable=True)
    reset_token = Column(String(128), nullable=True, index=True)
    reset_expires = Column(DateTime, nullable=True)

    # Denormalized counters, updated when an order is paid
    total_spent = Money(nullable=False, default=0)
    order_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def is_admin(self) -> bool:
        return self.account_type == "admin"

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)
    image_url = Column(Text, nullable=True)
    parent_id = Column(Integer, ForeignKey("categories.id"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow)

    products = relationship("Product", back_populates="category")


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, index=True)
    slug = Column(String(255), nullable=True, index=True)
    description = Column(Text, nullable=True)
    price = Money(nullable=False)
    original_price = Money(nullable=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True, index=True)
    image_url = Column(Text, nullable=True)
    images = Column(JSON, nullable=True)
    stock_quantity = Column(Integer, nullable=False, default=0)
    sku = Column(String(100), nullable=True)
    tags = Column(JSON, nullable=True)
    rating = Column(Numeric(3, 2, asdecimal=False), nullable=False, default=0)
    reviews_count = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    featured = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    category = relationship("Category", back_populates="products")

    @property
    def in_stock(self) -> bool:
        return (self.stock_quantity or 0) > 0


class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(50), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)
    # "percentage" | "fixed_amount"
    discount_type = Column(String(20), nullable=False)
    discount_value = Money(nullable=False)
    minimum_order_amount = Money(nullable=False, default=0)
    maximum_discount_amount = Money(nullable=True)
    usage_limit = Column(Integer, nullable=True)
    usage_count = Column(Integer, nullable=False, default=0)
    valid_from = Column(DateTime, nullable=True)
    valid_until = Column(DateTime, nullable=True)
    # Empty list = unrestricted
    applies_to_categories = Column(JSON, nullable=True)
    applies_to_products = Column(JSON, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)


class Carrier(Base):
    __tablename__ = "carriers"
    __table_args__ = (UniqueConstraint("name", "service_name", name="uq_carrier_service"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    code = Column(String(50), nullable=True)
    service_name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    base_delivery_days = Column(Integer, nullable=False)
    api_key = Column(Text, nullable=True)
    api_secret = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    test_mode = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_number = Column(String(50), unique=True, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    # Identity snapshot at checkout time
    customer_email = Column(String(255), nullable=False, index=True)
    customer_name = Column(String(255), nullable=True)
    customer_phone = Column(String(50), nullable=True)

    # pending | processing | shipped | delivered | cancelled
    status = Column(String(20), nullable=False, default="pending", index=True)
    # pending | paid | failed | refunded
    payment_status = Column(String(20), nullable=False, default="pending")
    payment_method = Column(String(50), nullable=True)
    stripe_payment_id = Column(String(255), nullable=True, index=True)

    subtotal = Money(nullable=False)
    tax_amount = Money(nullable=False, default=0)
    shipping_amount = Money(nullable=False, default=0)
    discount_amount = Money(nullable=False, default=0)
    total_amount = Money(nullable=False)
    coupon_code = Column(String(50), nullable=True)

    shipping_address = Column(JSON, nullable=True)
    billing_address = Column(JSON, nullable=True)

    shipping_carrier_id = Column(Integer, ForeignKey("carriers.id"), nullable=True)
    estimated_delivery = Column(Date, nullable=True)
    tracking_number = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    # Set when a late payment could not re-reserve stock or the coupon
    needs_attention = Column(Boolean, nullable=False, default=False)

    shipped_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    carrier = relationship("Carrier")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=True)
    product_name = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Money(nullable=False)
    total = Money(nullable=False)

    order = relationship("Order", back_populates="items")


class Review(Base):
    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True)
    rating = Column(Integer, nullable=False)
    title = Column(String(255), nullable=True)
    comment = Column(Text, nullable=True)
    verified_purchase = Column(Boolean, nullable=False, default=False)
    # pending | approved | rejected
    status = Column(String(20), nullable=False, default="pending", index=True)
    created_at = Column(DateTime, default=utcnow)

    user = relationship("User")


class WishlistItem(Base):
    __tablename__ = "wishlist"
    __table_args__ = (UniqueConstraint("user_id", "product_id", name="uq_wishlist_user_product"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    created_at = Column(DateTime, default=utcnow)

    product = relationship("Product")


class SubscriptionPlan(Base):
    __tablename__ = "subscription_plans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Money(nullable=False)
    # day | week | month | year
    interval_type = Column(String(10), nullable=False, default="month")
    interval_count = Column(Integer, nullable=False, default=1)
    trial_days = Column(Integer, nullable=False, default=0)
    features = Column(JSON, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("subscription_plans.id"), nullable=False)
    # trialing | active | cancelled | expired
    status = Column(String(20), nullable=False, default="active")
    current_period_start = Column(DateTime, nullable=False)
    current_period_end = Column(DateTime, nullable=False)
    trial_end = Column(DateTime, nullable=True)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    cancelled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    plan = relationship("SubscriptionPlan")


class ContactMessage(Base):
    __tablename__ = "contact_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)
    subject = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    # new | read | replied | archived
    status = Column(String(20), nullable=False, default="new")
    created_at = Column(DateTime, default=utcnow)


class NewsletterSubscriber(Base):
    __tablename__ = "newsletter_subscribers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)


class Setting(Base):
    """Key/JSON settings row with an optimistic-concurrency version."""
    __tablename__ = "settings"

    key = Column(String(50), primary_key=True)
    value = Column(JSON, nullable=False)
    version = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class SecurityLog(Base):
    __tablename__ = "security_logs"
    __table_args__ = (Index("ix_security_logs_event_created", "event_type", "created_at"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    event_type = Column(String(50), nullable=False)
    ip_address = Column(String(64), nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)

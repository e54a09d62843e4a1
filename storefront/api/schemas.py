"""
Pydantic v2 request schemas.

Request bodies use extra="forbid" so unknown fields are rejected.
A few fields keep the camelCase names the storefront pages already send
(orderId, planId, trackingNumber); snake_case is accepted for those too.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


# Cart / coupons / shipping

class CartLine(StrictModel):
    product_id: int = Field(..., description="Product ID")
    quantity: int = Field(1, description="Requested quantity")
    price: Optional[Any] = Field(None, description="Client price snapshot (ignored for pricing)")
    category_id: Optional[int] = None


class CouponValidateRequest(StrictModel):
    code: str = ""
    items: List[CartLine] = Field(default_factory=list)
    subtotal: Any = 0


class CartQuoteRequest(StrictModel):
    items: List[CartLine]
    coupon_code: Optional[str] = None
    state: Optional[str] = None
    carrier_id: Optional[int] = None


class ShippingEstimateRequest(StrictModel):
    zip_code: Optional[str] = Field(None, alias="zipCode")
    carrier_id: Optional[int] = Field(None, alias="carrierId")
    country: str = "US"


# Checkout / orders / payments

class Address(BaseModel):
    model_config = ConfigDict(extra="allow")

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    address2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    country: Optional[str] = "US"


class CheckoutRequest(StrictModel):
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    items: List[CartLine] = Field(default_factory=list)
    shipping_address: Optional[Address] = None
    billing_address: Optional[Address] = None
    shipping_carrier_id: Optional[int] = None
    coupon_code: Optional[str] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    # Client-computed totals; compared with the server's, never stored
    subtotal: Optional[Any] = None
    discount_amount: Optional[Any] = None
    shipping_amount: Optional[Any] = None
    total_amount: Optional[Any] = None


class PaymentIntentRequest(StrictModel):
    order_id: int = Field(..., alias="orderId")


class OrderStatusUpdate(StrictModel):
    status: str
    notes: Optional[str] = None
    tracking_number: Optional[str] = Field(None, alias="trackingNumber")


# Accounts

class RegisterRequest(StrictModel):
    email: str
    password: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None


class LoginRequest(StrictModel):
    email: str
    password: str


class EmailRequest(StrictModel):
    email: str


class TokenRequest(StrictModel):
    token: str


class ResetPasswordRequest(StrictModel):
    token: str
    password: str


class ChangePasswordRequest(StrictModel):
    current_password: str
    new_password: str


class ProfileUpdate(StrictModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None


class WishlistRequest(StrictModel):
    product_id: int = Field(..., alias="productId")


class AdminUserUpdate(StrictModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    is_active: Optional[bool] = None
    email_verified: Optional[bool] = None
    account_locked: Optional[bool] = None
    account_type: Optional[str] = None
    tier: Optional[str] = None


class SetupRequest(StrictModel):
    email: str
    password: str
    confirm_password: str = Field(..., alias="confirmPassword")
    first_name: Optional[str] = Field(None, alias="firstName")
    last_name: Optional[str] = Field(None, alias="lastName")
    setup_secret: Optional[str] = Field(None, alias="setupSecret")


# Catalog admin

class ProductWrite(StrictModel):
    name: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Any] = None
    original_price: Optional[Any] = None
    category_id: Optional[int] = None
    image_url: Optional[str] = None
    images: Optional[List[str]] = None
    stock_quantity: Optional[int] = None
    sku: Optional[str] = None
    tags: Optional[List[str]] = None
    is_active: Optional[bool] = None
    featured: Optional[bool] = None


class StockUpdate(StrictModel):
    product_id: Optional[int] = Field(None, alias="productId")
    stock_quantity: Optional[int] = None


class CategoryWrite(StrictModel):
    name: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    parent_id: Optional[int] = None
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None


class CouponWrite(StrictModel):
    code: Optional[str] = None
    description: Optional[str] = None
    discount_type: Optional[str] = None
    discount_value: Optional[Any] = None
    minimum_order_amount: Optional[Any] = None
    maximum_discount_amount: Optional[Any] = None
    usage_limit: Optional[int] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    applies_to_categories: Optional[List[int]] = None
    applies_to_products: Optional[List[int]] = None
    is_active: Optional[bool] = None


class CarrierWrite(StrictModel):
    name: Optional[str] = None
    code: Optional[str] = None
    service_name: Optional[str] = None
    description: Optional[str] = None
    base_delivery_days: Optional[int] = None
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    is_active: Optional[bool] = None
    test_mode: Optional[bool] = None


class SettingsPatch(StrictModel):
    version: int
    values: Dict[str, Any]


class ReviewCreate(StrictModel):
    product_id: int = Field(..., alias="productId")
    rating: int
    title: Optional[str] = None
    comment: Optional[str] = None
    order_id: Optional[int] = Field(None, alias="orderId")


class StatusUpdate(StrictModel):
    status: str


class PlanWrite(StrictModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Any] = None
    interval_type: Optional[str] = None
    interval_count: Optional[int] = None
    trial_days: Optional[int] = None
    features: Optional[List[str]] = None
    is_active: Optional[bool] = None


class SubscribeRequest(StrictModel):
    plan_id: int = Field(..., alias="planId")


class ContactRequest(StrictModel):
    name: str = ""
    email: str = ""
    subject: str = ""
    message: str = ""


def set_fields(model: BaseModel) -> Dict[str, Any]:
    """Only the fields the client actually sent (partial updates)."""
    return model.model_dump(exclude_unset=True)


def ok(**payload: Any) -> Dict[str, Any]:
    """Success envelope."""
    return {"success": True, **payload}

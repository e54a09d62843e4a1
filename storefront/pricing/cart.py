"""
Cart state reducer.

cart_reducer(state, action) -> new state. Pure: no I/O, inputs are never
mutated, and every transition recomputes the derived totals.

Quantity rules:
  - AddItem merges by id and adds one, clamped to stock; an item with no
    stock is never added.
  - UpdateQuantity with quantity 0 removes the line; otherwise the quantity
    is clamped to [1, stock_quantity] (negative requests become 1).

The coupon discount is re-derived from the stored coupon on every
transition, so a percentage coupon follows the subtotal and a fixed coupon
never exceeds it. discounted_total = max(0, total - discount_amount).
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional, Tuple, Union

from storefront.pricing.coupons import compute_discount
from storefront.pricing.money import round_money


@dataclass(frozen=True)
class CartItem:
    id: int
    name: str
    price: float
    quantity: int
    stock_quantity: int
    image_url: Optional[str] = None
    category_id: Optional[int] = None

    @property
    def line_total(self) -> float:
        return round_money(self.price * self.quantity)


@dataclass(frozen=True)
class AppliedCoupon:
    code: str
    value: float
    discount_type: str
    maximum_discount_amount: Optional[float] = None


@dataclass(frozen=True)
class CartState:
    items: Tuple[CartItem, ...] = ()
    coupon: Optional[AppliedCoupon] = None
    total: float = 0.0
    item_count: int = 0
    discount_amount: float = 0.0
    discounted_total: float = 0.0

    def to_dict(self) -> dict:
        return {
            "items": [
                {
                    "id": item.id,
                    "name": item.name,
                    "price": item.price,
                    "quantity": item.quantity,
                    "stock_quantity": item.stock_quantity,
                    "image_url": item.image_url,
                    "line_total": item.line_total,
                }
                for item in self.items
            ],
            "coupon": (
                {"code": self.coupon.code, "value": self.coupon.value, "type": self.coupon.discount_type}
                if self.coupon else None
            ),
            "total": self.total,
            "itemCount": self.item_count,
            "discountAmount": self.discount_amount,
            "discountedTotal": self.discounted_total,
        }


# Actions

@dataclass(frozen=True)
class AddItem:
    item: CartItem


@dataclass(frozen=True)
class UpdateQuantity:
    id: int
    quantity: int


@dataclass(frozen=True)
class RemoveItem:
    id: int


@dataclass(frozen=True)
class ApplyCoupon:
    coupon: AppliedCoupon


@dataclass(frozen=True)
class RemoveCoupon:
    pass


@dataclass(frozen=True)
class ClearCart:
    pass


CartAction = Union[AddItem, UpdateQuantity, RemoveItem, ApplyCoupon, RemoveCoupon, ClearCart]

EMPTY_CART = CartState()


def clamp_quantity(quantity: int, stock_quantity: int) -> int:
    """Clamp to [1, stock_quantity]; callers drop lines with no stock first."""
    return max(1, min(quantity, stock_quantity))


def _with_totals(items: Tuple[CartItem, ...], coupon: Optional[AppliedCoupon]) -> CartState:
    total = round_money(sum(item.price * item.quantity for item in items))
    item_count = sum(item.quantity for item in items)
    discount = 0.0
    if coupon is not None:
        discount = compute_discount(
            coupon.discount_type, coupon.value, total, coupon.maximum_discount_amount,
        )
    return CartState(
        items=items,
        coupon=coupon,
        total=total,
        item_count=item_count,
        discount_amount=discount,
        discounted_total=round_money(max(0.0, total - discount)),
    )


def _add_item(state: CartState, new_item: CartItem) -> Tuple[CartItem, ...]:
    for index, item in enumerate(state.items):
        if item.id == new_item.id:
            # Fresher stock from the incoming snapshot wins
            stock = new_item.stock_quantity
            quantity = min(item.quantity + 1, stock)
            if quantity < 1:
                return state.items[:index] + state.items[index + 1:]
            updated = replace(item, quantity=quantity, stock_quantity=stock, price=new_item.price)
            return state.items[:index] + (updated,) + state.items[index + 1:]
    if new_item.stock_quantity <= 0:
        return state.items
    return state.items + (replace(new_item, quantity=1),)


def _update_quantity(state: CartState, item_id: int, quantity: int) -> Tuple[CartItem, ...]:
    if quantity == 0:
        return tuple(item for item in state.items if item.id != item_id)
    # Out-of-stock lines are dropped
    return tuple(
        item if item.id != item_id else replace(item, quantity=clamp_quantity(quantity, item.stock_quantity))
        for item in state.items
        if item.id != item_id or item.stock_quantity > 0
    )


def cart_reducer(state: CartState, action: CartAction) -> CartState:
    if isinstance(action, AddItem):
        return _with_totals(_add_item(state, action.item), state.coupon)
    if isinstance(action, UpdateQuantity):
        return _with_totals(_update_quantity(state, action.id, action.quantity), state.coupon)
    if isinstance(action, RemoveItem):
        items = tuple(item for item in state.items if item.id != action.id)
        return _with_totals(items, state.coupon)
    if isinstance(action, ApplyCoupon):
        return _with_totals(state.items, action.coupon)
    if isinstance(action, RemoveCoupon):
        return _with_totals(state.items, None)
    if isinstance(action, ClearCart):
        return EMPTY_CART
    raise TypeError(f"Unknown cart action: {type(action).__name__}")

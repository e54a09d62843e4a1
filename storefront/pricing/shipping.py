"""
Shipping cost and delivery-date estimation.

Delivery estimate is a flat calendar offset from today using the carrier's
base_delivery_days; no business-day skipping and no zone lookup.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional


@dataclass(frozen=True)
class ShippingRules:
    free_shipping_threshold: float = 50.0
    local_state: str = "NY"
    local_rate: float = 5.99
    standard_rate: float = 9.99

    @classmethod
    def from_config(cls, config) -> "ShippingRules":
        return cls(
            free_shipping_threshold=config.free_shipping_threshold,
            local_state=config.local_state,
            local_rate=config.local_shipping_rate,
            standard_rate=config.standard_shipping_rate,
        )


def estimate_delivery(base_delivery_days: int, today: date) -> date:
    """Estimated delivery = today + base_delivery_days."""
    if base_delivery_days < 0:
        raise ValueError(f"base_delivery_days must be >= 0, got {base_delivery_days}")
    return today + timedelta(days=base_delivery_days)


def shipping_cost(subtotal: float, state: Optional[str], rules: ShippingRules) -> float:
    """
    Flat shipping charge for an order.

    Free at or above the threshold; otherwise the local rate when shipping
    inside the store's home state, else the standard rate.
    """
    if subtotal >= rules.free_shipping_threshold:
        return 0.0
    if state and state.strip().upper() == rules.local_state.upper():
        return rules.local_rate
    return rules.standard_rate

"""
Shipping carriers: public listing, delivery estimates and admin CRUD.

Carriers are configuration records; there is no live carrier-API
integration. When "simple shipping" is enabled in the shipping settings,
the public listing is a single synthetic free-shipping carrier.
"""

from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront.core.errors import Conflict, NotFound, ValidationFailed
from storefront.db.models import Carrier, Order
from storefront.pricing.shipping import estimate_delivery
from storefront.utils.clock import today as utc_today
from storefront.utils.logger import get_logger

logger = get_logger("carriers")

SIMPLE_SHIPPING_ID = 0
CARRIER_FIELDS = (
    "name", "code", "service_name", "description", "base_delivery_days",
    "api_key", "api_secret", "is_active", "test_mode",
)


def serialize_carrier(carrier: Carrier) -> Dict[str, Any]:
    """Public/admin view. API credentials are never returned."""
    return {
        "id": carrier.id,
        "name": carrier.name,
        "code": carrier.code,
        "service_name": carrier.service_name,
        "description": carrier.description,
        "base_delivery_days": carrier.base_delivery_days,
        "is_active": carrier.is_active,
        "test_mode": carrier.test_mode,
        "has_api_credentials": bool(carrier.api_key or carrier.api_secret),
    }


class CarrierService:
    def __init__(self, db: Session, settings=None):
        self.db = db
        self.settings = settings

    def simple_shipping(self) -> Optional[Dict[str, Any]]:
        """The synthetic carrier when simple shipping is enabled, else None."""
        if self.settings is None:
            return None
        values = self.settings.get("shipping").values
        if not values.get("simple_shipping_enabled"):
            return None
        return {
            "id": SIMPLE_SHIPPING_ID,
            "name": "Free Shipping",
            "code": "simple",
            "service_name": "Standard",
            "description": values.get("simple_shipping_text"),
            "base_delivery_days": int(values.get("simple_shipping_days") or 5),
            "is_active": True,
            "test_mode": False,
            "has_api_credentials": False,
        }

    def list_public(self) -> List[Dict[str, Any]]:
        simple = self.simple_shipping()
        if simple is not None:
            return [simple]
        carriers = self.db.execute(
            select(Carrier).where(Carrier.is_active.is_(True)).order_by(Carrier.base_delivery_days, Carrier.name)
        ).scalars().all()
        return [serialize_carrier(c) for c in carriers]

    def resolve(self, carrier_id: Optional[int]) -> Dict[str, Any]:
        """
        Look up an active carrier (or the simple-shipping carrier).

        Raises:
            ValidationFailed: carrier_id missing.
            NotFound: no such carrier, or it is inactive.
        """
        if carrier_id is None:
            raise ValidationFailed("Carrier is required")
        simple = self.simple_shipping()
        if simple is not None and carrier_id == SIMPLE_SHIPPING_ID:
            return simple
        carrier = self.db.get(Carrier, carrier_id)
        if carrier is None or not carrier.is_active:
            raise NotFound("Carrier not found or inactive")
        return serialize_carrier(carrier)

    def estimate(self, zip_code: Optional[str], carrier_id: Optional[int], country: str = "US",
                 today: Optional[date] = None) -> Dict[str, Any]:
        """Estimated delivery date: today + the carrier's base_delivery_days."""
        if not zip_code or not str(zip_code).strip():
            raise ValidationFailed("Zip code is required")
        carrier = self.resolve(carrier_id)
        start = today or utc_today()
        delivery = estimate_delivery(carrier["base_delivery_days"], start)
        logger.info("shipping_estimate: carrier_id=%s zip=%s country=%s days=%s",
                    carrier_id, zip_code, country, carrier["base_delivery_days"])
        return {
            "estimatedDelivery": delivery.isoformat(),
            "totalDays": carrier["base_delivery_days"],
            "carrier": carrier,
        }

    # Admin

    def list_all(self) -> List[Dict[str, Any]]:
        carriers = self.db.execute(select(Carrier).order_by(Carrier.name, Carrier.service_name)).scalars().all()
        return [serialize_carrier(c) for c in carriers]

    def _check_unique(self, name: str, service_name: str, exclude_id: Optional[int] = None) -> None:
        query = select(Carrier.id).where(Carrier.name == name, Carrier.service_name == service_name)
        if exclude_id is not None:
            query = query.where(Carrier.id != exclude_id)
        if self.db.execute(query).first() is not None:
            raise Conflict("A carrier with this name and service already exists")

    def create(self, data: Dict[str, Any]) -> Carrier:
        values = {k: v for k, v in data.items() if k in CARRIER_FIELDS}
        missing = [f for f in ("name", "service_name", "base_delivery_days") if values.get(f) in (None, "")]
        if missing:
            raise ValidationFailed(f"Missing required fields: {', '.join(missing)}", details={"fields": missing})
        if int(values["base_delivery_days"]) < 0:
            raise ValidationFailed("base_delivery_days must not be negative")
        self._check_unique(values["name"], values["service_name"])
        carrier = Carrier(**values)
        self.db.add(carrier)
        self.db.commit()
        self.db.refresh(carrier)
        logger.info("carrier_created: id=%s name=%s service=%s", carrier.id, carrier.name, carrier.service_name)
        return carrier

    def update(self, carrier_id: int, data: Dict[str, Any]) -> Carrier:
        carrier = self.db.get(Carrier, carrier_id)
        if carrier is None:
            raise NotFound("Carrier not found")
        if data.get("base_delivery_days") is not None and int(data["base_delivery_days"]) < 0:
            raise ValidationFailed("base_delivery_days must not be negative")
        name = data.get("name") or carrier.name
        service_name = data.get("service_name") or carrier.service_name
        if (name, service_name) != (carrier.name, carrier.service_name):
            self._check_unique(name, service_name, exclude_id=carrier_id)
        for field_name, value in data.items():
            if field_name not in CARRIER_FIELDS:
                continue
            # Blank credentials in an edit form keep the stored ones
            if field_name in ("api_key", "api_secret") and not value:
                continue
            setattr(carrier, field_name, value)
        self.db.commit()
        self.db.refresh(carrier)
        return carrier

    def delete(self, carrier_id: int) -> bool:
        """Delete a carrier; one referenced by orders is deactivated instead. Returns True if deleted."""
        carrier = self.db.get(Carrier, carrier_id)
        if carrier is None:
            raise NotFound("Carrier not found")
        referenced = self.db.execute(
            select(Order.id).where(Order.shipping_carrier_id == carrier_id).limit(1)
        ).first()
        if referenced is not None:
            carrier.is_active = False
            self.db.commit()
            return False
        self.db.delete(carrier)
        self.db.commit()
        return True

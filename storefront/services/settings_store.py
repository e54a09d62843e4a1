"""
Runtime store settings.

One row per settings key ("general", "email", "payments", "shipping",
"inventory") holding a JSON object and an integer version. Reads are merged
over DEFAULTS. Writes are field-level patches guarded by the version the admin
last read: a stale version is rejected with 409 instead of silently
overwriting another admin's edit.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.core.errors import Conflict, NotFound, ValidationFailed
from storefront.db.models import Setting
from storefront.utils.logger import get_logger

logger = get_logger("settings")

EMAIL_TEMPLATES = (
    "order_confirmation",
    "order_status",
    "admin_new_order",
    "shipping_notification",
    "contact_notification",
    "password_reset",
    "email_verification",
)

DEFAULTS: Dict[str, Dict[str, Any]] = {
    "general": {
        "store_name": "",
        "store_email": "",
        "store_phone": "",
        "store_address": "",
        "currency": "usd",
        "timezone": "UTC",
        "maintenance_mode": False,
    },
    "email": {
        "smtp_host": "",
        "smtp_port": 587,
        "smtp_secure": False,
        "smtp_user": "",
        "smtp_pass": "",
        "sender_email": "",
        "email_from_name": "",
        "admin_notification_email": "",
        **{f"{name}_subject": "" for name in EMAIL_TEMPLATES},
        **{f"{name}_template": "" for name in EMAIL_TEMPLATES},
    },
    "payments": {
        "stripe_publishable_key": "",
        "stripe_secret_key": "",
        "stripe_webhook_secret": "",
        "test_mode": True,
    },
    "shipping": {
        "simple_shipping_enabled": False,
        "simple_shipping_text": "Free shipping, normally shipped within 3-5 days",
        "simple_shipping_days": 5,
    },
    "inventory": {
        "low_stock_threshold": 10,
        "out_of_stock_alert": True,
    },
}

SECRET_FIELDS = {"stripe_secret_key", "stripe_webhook_secret", "smtp_pass"}

PUBLIC_FIELDS = {
    "general": ("store_name", "store_email", "store_phone", "currency", "maintenance_mode"),
    "payments": ("stripe_publishable_key",),
    "shipping": ("simple_shipping_enabled", "simple_shipping_text"),
}


@dataclass
class SettingsSnapshot:
    key: str
    values: Dict[str, Any]
    version: int

    def redacted(self) -> Dict[str, Any]:
        """Values with secrets removed and is_<field>_set flags in their place."""
        out = {}
        for name, value in self.values.items():
            if name in SECRET_FIELDS:
                out[f"is_{name}_set"] = bool(value)
            else:
                out[name] = value
        return {"key": self.key, "values": out, "version": self.version}


class SettingsStore:
    def __init__(self, db: Session):
        self.db = db

    def _defaults(self, key: str) -> Dict[str, Any]:
        if key not in DEFAULTS:
            raise NotFound(f"Unknown settings key: {key}")
        return DEFAULTS[key]

    def get(self, key: str) -> SettingsSnapshot:
        defaults = self._defaults(key)
        row = self.db.get(Setting, key)
        if row is None:
            return SettingsSnapshot(key=key, values=dict(defaults), version=0)
        return SettingsSnapshot(key=key, values={**defaults, **(row.value or {})}, version=row.version)

    def get_value(self, key: str, name: str, fallback: Any = None) -> Any:
        """A single field; empty values fall through to the fallback."""
        value = self.get(key).values.get(name)
        if value in (None, ""):
            return fallback
        return value

    def public(self) -> Dict[str, Dict[str, Any]]:
        out = {}
        for key, names in PUBLIC_FIELDS.items():
            values = self.get(key).values
            out[key] = {name: values.get(name) for name in names}
        return out

    def patch(self, key: str, values: Dict[str, Any], expected_version: int) -> SettingsSnapshot:
        """
        Apply a field-level update.

        Only the given fields change. Secret fields sent empty are ignored so a
        redacted form can be saved back without wiping them.

        Raises:
            NotFound: unknown settings key.
            ValidationFailed: unknown field names.
            Conflict: expected_version is not the stored version.
        """
        defaults = self._defaults(key)
        unknown = sorted(set(values) - set(defaults))
        if unknown:
            raise ValidationFailed(f"Unknown settings fields: {', '.join(unknown)}", details={"fields": unknown})

        changes = {
            name: value for name, value in values.items()
            if not (name in SECRET_FIELDS and value in (None, ""))
        }

        row = self.db.get(Setting, key)
        if row is None:
            if expected_version != 0:
                raise Conflict("Settings were changed by someone else; reload and try again",
                               details={"current_version": 0})
            self.db.add(Setting(key=key, value=changes, version=1))
            try:
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                raise Conflict("Settings were changed by someone else; reload and try again")
            logger.info("settings: created key=%s fields=%s", key, sorted(changes))
            return self.get(key)

        current_version = row.version
        if current_version != expected_version:
            raise Conflict("Settings were changed by someone else; reload and try again",
                           details={"current_version": current_version})

        merged = {**(row.value or {}), **changes}
        result = self.db.execute(
            update(Setting)
            .where(Setting.key == key, Setting.version == expected_version)
            .values(value=merged, version=expected_version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise Conflict("Settings were changed by someone else; reload and try again")
        self.db.commit()
        self.db.expire_all()
        logger.info("settings: updated key=%s version=%s fields=%s", key, expected_version + 1, sorted(changes))
        return self.get(key)


def resolve_secret(store: SettingsStore, key: str, name: str, env_value: Optional[str]) -> Optional[str]:
    """DB setting first, then the environment/config value."""
    return store.get_value(key, name) or env_value or None

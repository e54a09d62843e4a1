"""
Configuration management for the storefront.

Loads defaults from the YAML config file, then applies environment overrides
(.env is loaded on import) and provides typed access.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
import yaml

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()


def _project_root() -> Path:
    """Return project root (parent of storefront package)."""
    return Path(__file__).resolve().parent.parent.parent


DEFAULT_CONFIG_PATH = _project_root() / "config" / "default.yaml"


# Environment variable -> config attribute
_ENV_OVERRIDES = {
    "ENV": "env",
    "DATABASE_URL": "database_url",
    "REDIS_URL": "redis_url",
    "JWT_SECRET": "jwt_secret",
    "SETUP_SECRET": "setup_secret",
    "STRIPE_SECRET_KEY": "stripe_secret_key",
    "STRIPE_WEBHOOK_SECRET": "stripe_webhook_secret",
    "SMTP_HOST": "smtp_host",
    "SMTP_PORT": "smtp_port",
    "SMTP_USER": "smtp_user",
    "SMTP_PASS": "smtp_pass",
    "SMTP_SECURE": "smtp_secure",
    "EMAIL_FROM": "email_from",
    "STORE_NAME": "store_name",
    "STORE_EMAIL": "store_email",
    "ADMIN_EMAIL": "admin_email",
    "PUBLIC_URL": "public_url",
    "LOG_LEVEL": "log_level",
}


@dataclass
class StoreConfig:
    """Configuration for the storefront service."""

    # Server
    env: str = "development"
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    # Persistence / cache
    database_url: str = "sqlite:///./storefront.db"
    redis_url: str = ""
    cache_ttl_product: int = 300
    cache_ttl_categories: int = 600

    # Store identity
    store_name: str = "Storefront"
    store_email: str = ""
    admin_email: str = ""
    public_url: str = "http://localhost:3000"
    currency: str = "usd"

    # Shipping rules
    free_shipping_threshold: float = 50.0
    local_state: str = "NY"
    local_shipping_rate: float = 5.99
    standard_shipping_rate: float = 9.99
    default_delivery_days: int = 5

    # Auth
    jwt_secret: str = "change-me-in-production"
    setup_secret: str = ""
    token_ttl_minutes: int = 60 * 24 * 7
    bcrypt_rounds: int = 12
    max_failed_logins: int = 5
    lockout_minutes: int = 30
    verification_token_hours: int = 24
    reset_token_hours: int = 1

    # Checkout
    order_number_prefix: str = "ORD"
    price_tolerance: float = 0.01
    reject_price_mismatch: bool = False

    # Integrations (DB settings take precedence at runtime)
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_pass: str = ""
    smtp_secure: bool = False
    email_from: str = ""

    @property
    def is_development(self) -> bool:
        return self.env.lower() in ("development", "dev", "")

    @classmethod
    def from_yaml(cls, config_path: Optional[Path] = None, apply_env: bool = True) -> "StoreConfig":
        """Load configuration from YAML file, then apply environment overrides."""
        path = config_path or DEFAULT_CONFIG_PATH
        data: Dict[str, Any] = {}
        if path.exists():
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}

        server = data.get('server', {})
        database = data.get('database', {})
        cache = data.get('cache', {})
        store = data.get('store', {})
        shipping = data.get('shipping', {})
        auth = data.get('auth', {})
        checkout = data.get('checkout', {})
        email = data.get('email', {})

        defaults = cls()
        config = cls(
            env=server.get('env', defaults.env),
            host=server.get('host', defaults.host),
            port=server.get('port', defaults.port),
            cors_origins=server.get('cors_origins', defaults.cors_origins),
            database_url=database.get('url', defaults.database_url),
            redis_url=cache.get('redis_url', defaults.redis_url),
            cache_ttl_product=cache.get('ttl_product', defaults.cache_ttl_product),
            cache_ttl_categories=cache.get('ttl_categories', defaults.cache_ttl_categories),
            store_name=store.get('name', defaults.store_name),
            store_email=store.get('email', defaults.store_email),
            admin_email=store.get('admin_email', defaults.admin_email),
            public_url=store.get('public_url', defaults.public_url),
            currency=store.get('currency', defaults.currency),
            free_shipping_threshold=shipping.get('free_shipping_threshold', defaults.free_shipping_threshold),
            local_state=shipping.get('local_state', defaults.local_state),
            local_shipping_rate=shipping.get('local_rate', defaults.local_shipping_rate),
            standard_shipping_rate=shipping.get('standard_rate', defaults.standard_shipping_rate),
            default_delivery_days=shipping.get('default_delivery_days', defaults.default_delivery_days),
            token_ttl_minutes=auth.get('token_ttl_minutes', defaults.token_ttl_minutes),
            bcrypt_rounds=auth.get('bcrypt_rounds', defaults.bcrypt_rounds),
            max_failed_logins=auth.get('max_failed_logins', defaults.max_failed_logins),
            lockout_minutes=auth.get('lockout_minutes', defaults.lockout_minutes),
            verification_token_hours=auth.get('verification_token_hours', defaults.verification_token_hours),
            reset_token_hours=auth.get('reset_token_hours', defaults.reset_token_hours),
            order_number_prefix=checkout.get('order_number_prefix', defaults.order_number_prefix),
            price_tolerance=checkout.get('price_tolerance', defaults.price_tolerance),
            reject_price_mismatch=checkout.get('reject_price_mismatch', defaults.reject_price_mismatch),
            smtp_port=email.get('smtp_port', defaults.smtp_port),
            smtp_secure=email.get('smtp_secure', defaults.smtp_secure),
        )
        if apply_env:
            config.apply_env(os.environ)
        return config

    def apply_env(self, environ) -> None:
        """Override fields from environment variables, coercing to the field's type."""
        for env_name, attr in _ENV_OVERRIDES.items():
            raw = environ.get(env_name)
            if raw is None or raw == "":
                continue
            current = getattr(self, attr)
            if isinstance(current, bool):
                value: Any = raw.strip().lower() in ("1", "true", "yes", "on")
            elif isinstance(current, int):
                value = int(raw)
            else:
                value = raw
            setattr(self, attr, value)


# Global config instance
_config: Optional[StoreConfig] = None


def get_config() -> StoreConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = StoreConfig.from_yaml()
    return _config

"""
FastAPI dependencies: sessions, current user, and per-request service
construction from the objects created at startup (app.state).
"""

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from storefront.core.errors import Forbidden, ServiceUnavailable, Unauthorized
from storefront.db.database import get_db
from storefront.db.models import User
from storefront.services.email import Mailer
from storefront.services.settings_store import SettingsStore, resolve_secret

security = HTTPBearer(auto_error=False)


def get_config(request: Request):
    return request.app.state.config


def get_cache(request: Request):
    return request.app.state.cache


def get_settings_store(db: Session = Depends(get_db)) -> SettingsStore:
    return SettingsStore(db)


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def get_optional_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> Optional[User]:
    """The signed-in user, or None for anonymous requests. Bad tokens are still rejected."""
    if credentials is None:
        return None
    payload = request.app.state.tokens.decode(credentials.credentials)
    user_id = payload.get("id")
    user = db.get(User, user_id) if user_id is not None else None
    if user is None:
        raise Unauthorized("User not found")
    if not user.is_active:
        raise Forbidden("Account is disabled")
    return user


def get_current_user(user: Optional[User] = Depends(get_optional_user)) -> User:
    if user is None:
        raise Unauthorized("Authentication required")
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise Forbidden("Admin access required")
    return user


def get_mailer(request: Request, store: SettingsStore = Depends(get_settings_store)) -> Mailer:
    """Mailer with settings resolved now, safe to hand to a background task."""
    return Mailer.from_settings(store, request.app.state.config, request.app.state.mail_transport)


def get_payment_client(request: Request, store: SettingsStore = Depends(get_settings_store)):
    """Stripe client for the configured secret key (DB setting first, then env)."""
    secret_key = resolve_secret(store, "payments", "stripe_secret_key", request.app.state.config.stripe_secret_key)
    if not secret_key:
        raise ServiceUnavailable("Payments are not configured")
    client = request.app.state.payment_client_factory(secret_key)
    try:
        yield client
    finally:
        close = getattr(client, "close", None)
        if close is not None:
            close()


def get_webhook_secret(request: Request, store: SettingsStore = Depends(get_settings_store)) -> str:
    secret = resolve_secret(store, "payments", "stripe_webhook_secret", request.app.state.config.stripe_webhook_secret)
    if not secret:
        raise ServiceUnavailable("Webhook secret is not configured")
    return secret

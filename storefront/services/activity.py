"""
Security event log.

Append-only rows in security_logs for login failures, lockouts, password
resets, first-admin setup and admin role changes. Details are redacted
before they are written.
"""

from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from storefront.db.models import SecurityLog
from storefront.utils.logger import get_logger

logger = get_logger("security")

SENSITIVE_KEYS = (
    "password", "token", "secret", "api_key", "credit_card", "card", "cvv", "ssn",
)


def redact_sensitive_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Redact sensitive data from a payload before logging.
    Removes: passwords, tokens, secrets, API keys, card data.
    """
    redacted = {}
    for key, value in data.items():
        key_lower = key.lower()
        if any(sensitive in key_lower for sensitive in SENSITIVE_KEYS):
            redacted[key] = "[REDACTED]"
        elif isinstance(value, dict):
            redacted[key] = redact_sensitive_data(value)
        elif isinstance(value, list):
            redacted[key] = [
                redact_sensitive_data(item) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            redacted[key] = value
    return redacted


def record_security_event(
    db: Session,
    event_type: str,
    user_id: Optional[int] = None,
    ip_address: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> SecurityLog:
    """Stage a security_logs row on the session; the caller commits."""
    safe_details = redact_sensitive_data(details or {})
    entry = SecurityLog(
        user_id=user_id,
        event_type=event_type,
        ip_address=ip_address,
        details=safe_details,
    )
    db.add(entry)
    logger.info("security_event: type=%s user_id=%s ip=%s", event_type, user_id, ip_address)
    return entry

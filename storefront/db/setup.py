"""
First-run setup: schema status and creation of the first admin account.

The admin row is created with a single conditional statement,

    INSERT INTO users (...) SELECT ... WHERE NOT EXISTS
        (SELECT 1 FROM users WHERE account_type = 'admin')

so two concurrent setup requests can never both create an admin.
"""

import hmac
from typing import Any, Dict, Optional

from sqlalchemy import exists, insert, inspect, literal, select
from sqlalchemy.orm import Session

from storefront.core.errors import Conflict, Forbidden, ValidationFailed
from storefront.db.database import Base, Database
from storefront.db.models import User
from storefront.services.activity import record_security_event
from storefront.services.auth import PasswordHasher, validate_email, validate_password
from storefront.utils.clock import utcnow
from storefront.utils.logger import get_logger

logger = get_logger("setup")


def admin_exists(db: Session) -> bool:
    return db.execute(select(exists().where(User.account_type == "admin"))).scalar()


def setup_status(database: Database, db: Session) -> Dict[str, Any]:
    expected = set(Base.metadata.tables)
    present = set(inspect(database.engine).get_table_names()) & expected
    tables_exist = present == expected
    return {
        "tablesExist": tables_exist,
        "tableCount": len(present),
        "adminExists": admin_exists(db) if tables_exist else False,
    }


def create_first_admin(
    db: Session,
    hasher: PasswordHasher,
    email: str,
    password: str,
    confirm_password: str,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    setup_secret: Optional[str] = None,
    expected_secret: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> int:
    """
    Create the first admin. Returns the new user id.

    Raises:
        Forbidden: a setup secret is configured and the given one differs.
        ValidationFailed: bad email, weak password, or confirmation mismatch.
        Conflict: an admin already exists (including one created concurrently).
    """
    if expected_secret:
        if not setup_secret or not hmac.compare_digest(setup_secret.encode(), expected_secret.encode()):
            record_security_event(db, "setup_denied", ip_address=ip_address)
            db.commit()
            raise Forbidden("Invalid setup secret")

    email = validate_email(email)
    if password != confirm_password:
        raise ValidationFailed("Passwords do not match")
    validate_password(password, strong=True)

    if admin_exists(db):
        raise Conflict("An admin account already exists")
    if db.execute(select(User.id).where(User.email == email)).first() is not None:
        raise Conflict("An account with this email already exists")

    now = utcnow()
    row = {
        "email": email,
        "password_hash": hasher.hash(password),
        "first_name": first_name,
        "last_name": last_name,
        "account_type": "admin",
        "tier": "standard",
        "is_active": True,
        "email_verified": True,
        "account_locked": False,
        "failed_login_attempts": 0,
        "total_spent": 0,
        "order_count": 0,
        "created_at": now,
        "updated_at": now,
    }
    columns = User.__table__.c
    existing = User.__table__.alias("existing_admins")
    guarded = select(*[literal(value, columns[name].type) for name, value in row.items()]).where(
        ~exists(select(literal(1)).select_from(existing).where(existing.c.account_type == "admin"))
    )
    result = db.execute(insert(User).from_select(list(row), guarded))
    if result.rowcount != 1:
        db.rollback()
        raise Conflict("An admin account already exists")
    db.flush()

    admin_id = db.execute(select(User.id).where(User.email == email)).scalar_one()
    record_security_event(db, "admin_created", user_id=admin_id, ip_address=ip_address, details={"email": email})
    db.commit()
    logger.info("setup: first admin created user_id=%s", admin_id)
    return admin_id

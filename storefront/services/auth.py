"""
Authentication: password hashing, bearer tokens, registration, login with
lockout, email verification and password reset.

Passwords are hashed with passlib's bcrypt scheme. Sessions are stateless
HS256 JWTs (PyJWT) carrying the user id and admin flag; the user row is
still loaded per request so deactivation takes effect immediately.
"""

import hashlib
import re
import secrets
from datetime import timedelta
from typing import Any, Dict, Optional, Tuple

import jwt
from passlib.context import CryptContext
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from storefront.core.errors import AccountLocked, Conflict, Forbidden, Unauthorized, ValidationFailed
from storefront.db.models import User
from storefront.services.activity import record_security_event
from storefront.utils.clock import utcnow
from storefront.utils.logger import get_logger

logger = get_logger("auth")

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
JWT_ALGO = "HS256"
MIN_PASSWORD_LENGTH = 8
ADMIN_MIN_PASSWORD_LENGTH = 12


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def validate_email(email: str) -> str:
    email = normalize_email(email)
    if not EMAIL_RE.match(email):
        raise ValidationFailed("Invalid email format")
    return email


def validate_password(password: str, strong: bool = False) -> None:
    """
    Regular accounts need MIN_PASSWORD_LENGTH characters. Admin passwords
    (strong=True) need ADMIN_MIN_PASSWORD_LENGTH plus upper, lower, digit and
    special characters.
    """
    password = password or ""
    if not strong:
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationFailed(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        return
    problems = []
    if len(password) < ADMIN_MIN_PASSWORD_LENGTH:
        problems.append(f"at least {ADMIN_MIN_PASSWORD_LENGTH} characters")
    if not re.search(r"[A-Z]", password):
        problems.append("an uppercase letter")
    if not re.search(r"[a-z]", password):
        problems.append("a lowercase letter")
    if not re.search(r"\d", password):
        problems.append("a number")
    if not re.search(r"[^A-Za-z0-9]", password):
        problems.append("a special character")
    if problems:
        raise ValidationFailed("Password must contain " + ", ".join(problems), details={"requirements": problems})


def hash_token(token: str) -> str:
    """One-way digest used to store verification and reset tokens."""
    return hashlib.sha256(token.encode()).hexdigest()


class PasswordHasher:
    def __init__(self, rounds: int = 12):
        self._context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)

    def hash(self, password: str) -> str:
        return self._context.hash(password)

    def verify(self, password: str, password_hash: str) -> bool:
        if not password or not password_hash:
            return False
        try:
            return self._context.verify(password, password_hash)
        except ValueError:
            # Malformed stored hash
            logger.warning("auth: unverifiable password hash")
            return False


class TokenService:
    def __init__(self, secret: str, ttl_minutes: int):
        self.secret = secret
        self.ttl_minutes = ttl_minutes

    def issue(self, user: User) -> str:
        now = utcnow()
        payload = {
            "sub": str(user.id),
            "id": user.id,
            "email": user.email,
            "admin": user.is_admin,
            "iat": now,
            "exp": now + timedelta(minutes=self.ttl_minutes),
        }
        return jwt.encode(payload, self.secret, algorithm=JWT_ALGO)

    def decode(self, token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(token, self.secret, algorithms=[JWT_ALGO])
        except jwt.ExpiredSignatureError:
            raise Unauthorized("Token expired")
        except jwt.InvalidTokenError:
            raise Unauthorized("Invalid token")


class AuthService:
    def __init__(self, db: Session, config, hasher: PasswordHasher, tokens: TokenService):
        self.db = db
        self.config = config
        self.hasher = hasher
        self.tokens = tokens

    def find_by_email(self, email: str) -> Optional[User]:
        return self.db.execute(
            select(User).where(func.lower(User.email) == normalize_email(email))
        ).scalar_one_or_none()

    def register(
        self,
        email: str,
        password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Tuple[User, str]:
        """Create a customer account. Returns (user, raw verification token)."""
        email = validate_email(email)
        validate_password(password)
        if self.find_by_email(email) is not None:
            raise Conflict("An account with this email already exists")

        token = secrets.token_urlsafe(32)
        user = User(
            email=email,
            password_hash=self.hasher.hash(password),
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            account_type="customer",
            verification_token=hash_token(token),
            verification_expires=utcnow() + timedelta(hours=self.config.verification_token_hours),
        )
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        logger.info("register: user_id=%s", user.id)
        return user, token

    def authenticate(self, email: str, password: str, ip_address: Optional[str] = None) -> Tuple[User, str]:
        """
        Check credentials and issue a token.

        Failed attempts are counted per account; reaching max_failed_logins
        locks the account for lockout_minutes.
        """
        now = utcnow()
        user = self.find_by_email(email)
        if user is None:
            record_security_event(self.db, "login_failed", ip_address=ip_address,
                                  details={"email": normalize_email(email), "reason": "unknown_email"})
            self.db.commit()
            raise Unauthorized("Invalid email or password")

        if user.account_locked:
            if user.locked_until is not None and user.locked_until <= now:
                user.account_locked = False
                user.locked_until = None
                user.failed_login_attempts = 0
            else:
                raise AccountLocked("Account is locked. Try again later or contact support.",
                                    details={"locked_until": user.locked_until.isoformat() if user.locked_until else None})

        if not user.is_active:
            raise Forbidden("Account is disabled")

        if not self.hasher.verify(password, user.password_hash):
            user.failed_login_attempts = (user.failed_login_attempts or 0) + 1
            record_security_event(self.db, "login_failed", user_id=user.id, ip_address=ip_address,
                                  details={"attempts": user.failed_login_attempts})
            if user.failed_login_attempts >= self.config.max_failed_logins:
                user.account_locked = True
                user.locked_until = now + timedelta(minutes=self.config.lockout_minutes)
                record_security_event(self.db, "account_locked", user_id=user.id, ip_address=ip_address,
                                      details={"locked_until": user.locked_until.isoformat()})
                self.db.commit()
                logger.warning("login: account locked user_id=%s", user.id)
                raise AccountLocked("Too many failed attempts. Account locked temporarily.")
            self.db.commit()
            raise Unauthorized("Invalid email or password")

        user.failed_login_attempts = 0
        user.last_login = now
        self.db.commit()
        logger.info("login: user_id=%s admin=%s", user.id, user.is_admin)
        return user, self.tokens.issue(user)

    def verify_email(self, token: str) -> User:
        user = self.db.execute(
            select(User).where(User.verification_token == hash_token(token or ""))
        ).scalar_one_or_none()
        if user is None or user.verification_expires is None or user.verification_expires < utcnow():
            raise ValidationFailed("Invalid or expired verification token")
        user.email_verified = True
        user.verification_token = None
        user.verification_expires = None
        self.db.commit()
        return user

    def new_verification_token(self, email: str) -> Optional[Tuple[User, str]]:
        """Fresh verification token, or None when there is nothing to verify."""
        user = self.find_by_email(email)
        if user is None or user.email_verified:
            return None
        token = secrets.token_urlsafe(32)
        user.verification_token = hash_token(token)
        user.verification_expires = utcnow() + timedelta(hours=self.config.verification_token_hours)
        self.db.commit()
        return user, token

    def request_password_reset(self, email: str, ip_address: Optional[str] = None) -> Optional[Tuple[User, str]]:
        """Issue a reset token. Returns None for unknown emails; callers must not reveal which."""
        user = self.find_by_email(email)
        if user is None or not user.is_active:
            return None
        token = secrets.token_urlsafe(32)
        user.reset_token = hash_token(token)
        user.reset_expires = utcnow() + timedelta(hours=self.config.reset_token_hours)
        record_security_event(self.db, "password_reset_requested", user_id=user.id, ip_address=ip_address)
        self.db.commit()
        return user, token

    def reset_password(self, token: str, new_password: str, ip_address: Optional[str] = None) -> User:
        validate_password(new_password)
        user = self.db.execute(
            select(User).where(User.reset_token == hash_token(token or ""))
        ).scalar_one_or_none()
        if user is None or user.reset_expires is None or user.reset_expires < utcnow():
            raise ValidationFailed("Invalid or expired reset token")
        user.password_hash = self.hasher.hash(new_password)
        user.reset_token = None
        user.reset_expires = None
        user.failed_login_attempts = 0
        user.account_locked = False
        user.locked_until = None
        record_security_event(self.db, "password_reset", user_id=user.id, ip_address=ip_address)
        self.db.commit()
        return user

    def change_password(self, user: User, current_password: str, new_password: str) -> None:
        if not self.hasher.verify(current_password, user.password_hash):
            raise Unauthorized("Current password is incorrect")
        validate_password(new_password, strong=user.is_admin)
        user.password_hash = self.hasher.hash(new_password)
        record_security_event(self.db, "password_changed", user_id=user.id)
        self.db.commit()

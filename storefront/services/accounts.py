"""
Customer profiles, wishlists and admin user management.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.core.errors import NotFound, ValidationFailed
from storefront.db.models import Order, Product, User, WishlistItem
from storefront.services.activity import record_security_event
from storefront.services.catalog import serialize_product
from storefront.utils.logger import get_logger

logger = get_logger("accounts")

PROFILE_FIELDS = ("first_name", "last_name", "phone")
ADMIN_EDITABLE_FIELDS = (
    "first_name", "last_name", "phone", "is_active", "email_verified",
    "account_locked", "account_type", "tier",
)
ACCOUNT_TYPES = ("customer", "admin")
TIERS = ("standard", "silver", "gold", "platinum")


def serialize_user(user: User, admin_view: bool = False) -> Dict[str, Any]:
    data = {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "phone": user.phone,
        "account_type": user.account_type,
        "email_verified": user.email_verified,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }
    if admin_view:
        data.update({
            "tier": user.tier,
            "is_active": user.is_active,
            "account_locked": user.account_locked,
            "locked_until": user.locked_until.isoformat() if user.locked_until else None,
            "failed_login_attempts": user.failed_login_attempts,
            "last_login": user.last_login.isoformat() if user.last_login else None,
            "total_spent": user.total_spent or 0.0,
            "order_count": user.order_count or 0,
        })
    return data


class AccountService:
    def __init__(self, db: Session):
        self.db = db

    # Profile

    def update_profile(self, user: User, changes: Dict[str, Any]) -> User:
        for name in PROFILE_FIELDS:
            if name in changes and changes[name] is not None:
                setattr(user, name, changes[name])
        self.db.commit()
        self.db.refresh(user)
        return user

    # Wishlist

    def wishlist(self, user: User) -> List[Dict[str, Any]]:
        rows = self.db.execute(
            select(WishlistItem)
            .where(WishlistItem.user_id == user.id)
            .order_by(WishlistItem.created_at.desc(), WishlistItem.id.desc())
        ).scalars().all()
        return [
            {
                "id": row.id,
                "product_id": row.product_id,
                "added_at": row.created_at.isoformat() if row.created_at else None,
                "product": serialize_product(row.product) if row.product else None,
            }
            for row in rows
        ]

    def add_to_wishlist(self, user: User, product_id: int) -> bool:
        """Idempotent add. Returns True when a new row was created."""
        if self.db.get(Product, product_id) is None:
            raise NotFound("Product not found")
        existing = self.db.execute(
            select(WishlistItem.id).where(WishlistItem.user_id == user.id, WishlistItem.product_id == product_id)
        ).scalar_one_or_none()
        if existing is not None:
            return False
        self.db.add(WishlistItem(user_id=user.id, product_id=product_id))
        try:
            self.db.commit()
        except IntegrityError:
            # Concurrent add of the same product
            self.db.rollback()
            return False
        return True

    def remove_from_wishlist(self, user: User, product_id: int) -> bool:
        row = self.db.execute(
            select(WishlistItem).where(WishlistItem.user_id == user.id, WishlistItem.product_id == product_id)
        ).scalar_one_or_none()
        if row is None:
            return False
        self.db.delete(row)
        self.db.commit()
        return True

    # Admin

    def list_users(self, search: Optional[str] = None, limit: int = 20, offset: int = 0,
                   account_type: Optional[str] = None) -> Dict[str, Any]:
        query = select(User)
        if search:
            pattern = f"%{search.strip().lower()}%"
            query = query.where(or_(
                func.lower(User.email).like(pattern),
                func.lower(User.first_name).like(pattern),
                func.lower(User.last_name).like(pattern),
            ))
        if account_type:
            query = query.where(User.account_type == account_type)
        total = self.db.execute(select(func.count()).select_from(query.subquery())).scalar_one()
        users = self.db.execute(
            query.order_by(User.created_at.desc(), User.id.desc()).limit(limit).offset(offset)
        ).scalars().all()
        return {
            "users": [serialize_user(u, admin_view=True) for u in users],
            "pagination": {"total": total, "limit": limit, "offset": offset, "hasMore": offset + len(users) < total},
        }

    def get_user(self, user_id: int) -> User:
        user = self.db.get(User, user_id)
        if user is None:
            raise NotFound("User not found")
        return user

    def user_detail(self, user_id: int) -> Dict[str, Any]:
        user = self.get_user(user_id)
        paid = self.db.execute(
            select(func.count(Order.id), func.coalesce(func.sum(Order.total_amount), 0))
            .where(Order.user_id == user.id, Order.payment_status == "paid")
        ).one()
        recent = self.db.execute(
            select(Order).where(Order.user_id == user.id).order_by(Order.created_at.desc()).limit(5)
        ).scalars().all()
        data = serialize_user(user, admin_view=True)
        data["order_stats"] = {"paid_orders": paid[0], "paid_total": round(float(paid[1] or 0), 2)}
        data["recent_orders"] = [
            {"id": o.id, "order_number": o.order_number, "status": o.status,
             "payment_status": o.payment_status, "total_amount": o.total_amount}
            for o in recent
        ]
        return data

    def admin_update_user(self, acting_admin: User, user_id: int, changes: Dict[str, Any]) -> User:
        user = self.get_user(user_id)
        unknown = sorted(set(changes) - set(ADMIN_EDITABLE_FIELDS))
        if unknown:
            raise ValidationFailed(f"Fields not editable: {', '.join(unknown)}")
        if "account_type" in changes and changes["account_type"] not in ACCOUNT_TYPES:
            raise ValidationFailed(f"account_type must be one of {', '.join(ACCOUNT_TYPES)}")
        if "tier" in changes and changes["tier"] not in TIERS:
            raise ValidationFailed(f"tier must be one of {', '.join(TIERS)}")
        if user.id == acting_admin.id and (
            changes.get("is_active") is False or changes.get("account_type") == "customer"
        ):
            raise ValidationFailed("You cannot deactivate or demote your own account")

        previous_type = user.account_type
        for name, value in changes.items():
            setattr(user, name, value)
        if changes.get("account_locked") is False:
            user.locked_until = None
            user.failed_login_attempts = 0
        if "account_type" in changes and changes["account_type"] != previous_type:
            record_security_event(self.db, "role_changed", user_id=user.id,
                                  details={"from": previous_type, "to": user.account_type, "by": acting_admin.id})
        self.db.commit()
        self.db.refresh(user)
        logger.info("admin_user_update: user_id=%s fields=%s by=%s", user.id, sorted(changes), acting_admin.id)
        return user

    def stats(self) -> Dict[str, Any]:
        total = self.db.execute(select(func.count(User.id))).scalar_one()
        active = self.db.execute(select(func.count(User.id)).where(User.is_active.is_(True))).scalar_one()
        verified = self.db.execute(select(func.count(User.id)).where(User.email_verified.is_(True))).scalar_one()
        locked = self.db.execute(select(func.count(User.id)).where(User.account_locked.is_(True))).scalar_one()
        admins = self.db.execute(select(func.count(User.id)).where(User.account_type == "admin")).scalar_one()
        by_tier = dict(self.db.execute(select(User.tier, func.count(User.id)).group_by(User.tier)).all())
        return {
            "total_users": total,
            "active_users": active,
            "verified_users": verified,
            "locked_users": locked,
            "admin_users": admins,
            "by_tier": by_tier,
        }

"""
Subscription plans and customer subscriptions.

Plans are soft-deleted (is_active = False) so existing subscriptions keep
their plan. A user holds at most one live subscription (trialing or active).
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront.core.errors import Conflict, NotFound, ValidationFailed
from storefront.db.models import Subscription, SubscriptionPlan, User
from storefront.pricing.money import parse_price
from storefront.utils.clock import utcnow
from storefront.utils.logger import get_logger

logger = get_logger("subscriptions")

INTERVAL_TYPES = ("day", "week", "month", "year")
LIVE_STATUSES = ("trialing", "active")
PLAN_FIELDS = ("name", "description", "price", "interval_type", "interval_count", "trial_days", "features", "is_active")


def add_interval(start: datetime, interval_type: str, count: int) -> datetime:
    """Advance by count intervals; month/year keep the day-of-month where possible."""
    if interval_type == "day":
        return start + timedelta(days=count)
    if interval_type == "week":
        return start + timedelta(weeks=count)
    months = count if interval_type == "month" else count * 12
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    # Clamp e.g. Jan 31 + 1 month to the last day of February
    for day in (start.day, 30, 29, 28):
        try:
            return start.replace(year=year, month=month, day=min(start.day, day))
        except ValueError:
            continue
    raise ValueError(f"Cannot add {count} {interval_type} to {start}")


def serialize_plan(plan: SubscriptionPlan) -> Dict[str, Any]:
    return {
        "id": plan.id,
        "name": plan.name,
        "description": plan.description,
        "price": plan.price,
        "interval_type": plan.interval_type,
        "interval_count": plan.interval_count,
        "trial_days": plan.trial_days,
        "features": plan.features or [],
        "is_active": plan.is_active,
    }


def serialize_subscription(sub: Subscription) -> Dict[str, Any]:
    return {
        "id": sub.id,
        "plan": serialize_plan(sub.plan) if sub.plan else None,
        "status": sub.status,
        "current_period_start": sub.current_period_start.isoformat(),
        "current_period_end": sub.current_period_end.isoformat(),
        "trial_end": sub.trial_end.isoformat() if sub.trial_end else None,
        "cancel_at_period_end": sub.cancel_at_period_end,
        "cancelled_at": sub.cancelled_at.isoformat() if sub.cancelled_at else None,
    }


class SubscriptionService:
    def __init__(self, db: Session):
        self.db = db

    # Plans

    def list_plans(self, include_inactive: bool = False) -> List[Dict[str, Any]]:
        query = select(SubscriptionPlan)
        if not include_inactive:
            query = query.where(SubscriptionPlan.is_active.is_(True))
        plans = self.db.execute(query.order_by(SubscriptionPlan.price, SubscriptionPlan.id)).scalars().all()
        return [serialize_plan(p) for p in plans]

    def _clean_plan(self, data: Dict[str, Any], partial: bool) -> Dict[str, Any]:
        values = {k: v for k, v in data.items() if k in PLAN_FIELDS}
        if not partial:
            missing = [f for f in ("name", "price") if values.get(f) in (None, "")]
            if missing:
                raise ValidationFailed(f"Missing required fields: {', '.join(missing)}", details={"fields": missing})
        if "price" in values:
            values["price"] = parse_price(values["price"])
            if values["price"] < 0:
                raise ValidationFailed("Price must not be negative")
        if "interval_type" in values and values["interval_type"] not in INTERVAL_TYPES:
            raise ValidationFailed(f"interval_type must be one of {', '.join(INTERVAL_TYPES)}")
        if "interval_count" in values and int(values["interval_count"]) < 1:
            raise ValidationFailed("interval_count must be at least 1")
        if "trial_days" in values and int(values["trial_days"]) < 0:
            raise ValidationFailed("trial_days must not be negative")
        return values

    def create_plan(self, data: Dict[str, Any]) -> SubscriptionPlan:
        plan = SubscriptionPlan(**self._clean_plan(data, partial=False))
        self.db.add(plan)
        self.db.commit()
        self.db.refresh(plan)
        logger.info("plan_created: id=%s name=%r price=%s", plan.id, plan.name, plan.price)
        return plan

    def update_plan(self, plan_id: int, data: Dict[str, Any]) -> SubscriptionPlan:
        plan = self.db.get(SubscriptionPlan, plan_id)
        if plan is None:
            raise NotFound("Plan not found")
        for name, value in self._clean_plan(data, partial=True).items():
            setattr(plan, name, value)
        self.db.commit()
        self.db.refresh(plan)
        return plan

    def deactivate_plan(self, plan_id: int) -> None:
        plan = self.db.get(SubscriptionPlan, plan_id)
        if plan is None:
            raise NotFound("Plan not found")
        plan.is_active = False
        self.db.commit()

    # Customer subscriptions

    def list_for_user(self, user: User) -> List[Dict[str, Any]]:
        subs = self.db.execute(
            select(Subscription).where(Subscription.user_id == user.id)
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        ).scalars().all()
        return [serialize_subscription(s) for s in subs]

    def subscribe(self, user: User, plan_id: int, now: Optional[datetime] = None) -> Subscription:
        plan = self.db.get(SubscriptionPlan, plan_id)
        if plan is None or not plan.is_active:
            raise NotFound("Plan not found")
        live = self.db.execute(
            select(Subscription.id).where(Subscription.user_id == user.id, Subscription.status.in_(LIVE_STATUSES))
        ).first()
        if live is not None:
            raise Conflict("You already have an active subscription")

        start = now or utcnow()
        trial_end = start + timedelta(days=plan.trial_days) if plan.trial_days else None
        period_start = trial_end or start
        sub = Subscription(
            user_id=user.id,
            plan_id=plan.id,
            status="trialing" if trial_end else "active",
            current_period_start=start,
            current_period_end=trial_end or add_interval(period_start, plan.interval_type, plan.interval_count),
            trial_end=trial_end,
        )
        self.db.add(sub)
        self.db.commit()
        self.db.refresh(sub)
        logger.info("subscribe: user_id=%s plan_id=%s status=%s", user.id, plan.id, sub.status)
        return sub

    def cancel(self, user: User, subscription_id: int) -> Subscription:
        sub = self.db.get(Subscription, subscription_id)
        if sub is None or sub.user_id != user.id:
            raise NotFound("Subscription not found")
        if sub.status not in LIVE_STATUSES:
            raise Conflict("Subscription is not active")
        sub.cancel_at_period_end = True
        sub.cancelled_at = utcnow()
        self.db.commit()
        self.db.refresh(sub)
        return sub

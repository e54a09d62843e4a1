"""
Subscription plans and the signed-in user's subscriptions.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.api.deps import get_current_user
from storefront.api.schemas import SubscribeRequest, ok
from storefront.db.database import get_db
from storefront.db.models import User
from storefront.services.subscriptions import SubscriptionService, serialize_subscription

router = APIRouter(prefix="/api", tags=["subscriptions"])


@router.get("/subscription-plans")
def list_plans(db: Session = Depends(get_db)):
    return ok(plans=SubscriptionService(db).list_plans())


@router.get("/subscriptions")
def my_subscriptions(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return ok(subscriptions=SubscriptionService(db).list_for_user(user))


@router.post("/subscriptions", status_code=201)
def subscribe(request: SubscribeRequest, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    sub = SubscriptionService(db).subscribe(user, request.plan_id)
    return ok(subscription=serialize_subscription(sub))


@router.post("/subscriptions/{subscription_id}/cancel")
def cancel_subscription(subscription_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    sub = SubscriptionService(db).cancel(user, subscription_id)
    return ok(subscription=serialize_subscription(sub))

"""
Stripe payment hand-off and webhook receiver.
"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Request
from sqlalchemy.orm import Session

from storefront.api.deps import get_config, get_mailer, get_optional_user, get_payment_client, get_webhook_secret
from storefront.api.schemas import PaymentIntentRequest, ok
from storefront.db.database import get_db
from storefront.db.models import User
from storefront.services.checkout import start_payment
from storefront.services.email import Mailer
from storefront.services.orders import OrderService, ensure_owner, handle_payment_event
from storefront.services.payments import construct_event
from storefront.utils.logger import get_logger

logger = get_logger("payments")

router = APIRouter(prefix="/api", tags=["payments"])


async def raw_body(request: Request) -> bytes:
    # Signatures are computed over the exact bytes Stripe sent
    return await request.body()


@router.post("/create-payment-intent")
def create_payment_intent(
    request: PaymentIntentRequest,
    db: Session = Depends(get_db),
    config=Depends(get_config),
    client=Depends(get_payment_client),
    user: Optional[User] = Depends(get_optional_user),
):
    """Payment intent for the stored order total; the client never supplies an amount."""
    order = OrderService(db).get(request.order_id)
    ensure_owner(order, user)
    return ok(**start_payment(db, order, client, config.currency))


@router.post("/stripe/webhook")
def stripe_webhook(
    background: BackgroundTasks,
    payload: bytes = Depends(raw_body),
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    secret: str = Depends(get_webhook_secret),
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    event = construct_event(payload, stripe_signature, secret)
    logger.info("webhook: received id=%s type=%s", event.get("id"), event.get("type"))

    outcome, snapshot = handle_payment_event(OrderService(db), event)
    if outcome == "paid":
        background.add_task(mailer.send_order_confirmation, snapshot)
    elif outcome == "failed":
        background.add_task(mailer.send_payment_failed, snapshot)
    return {"received": True, "outcome": outcome}

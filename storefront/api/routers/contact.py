"""
Contact form and newsletter sign-up.
"""

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from storefront.api.deps import get_mailer
from storefront.api.schemas import ContactRequest, EmailRequest, ok
from storefront.db.database import get_db
from storefront.services.contact import ContactService, serialize_message
from storefront.services.email import Mailer

router = APIRouter(prefix="/api", tags=["contact"])


@router.post("/contact", status_code=201)
def submit_contact(
    request: ContactRequest,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    message = ContactService(db).submit(request.name, request.email, request.subject, request.message)
    background.add_task(mailer.send_contact_notification, serialize_message(message))
    return ok(message="Thank you for your message. We will get back to you soon.", id=message.id)


@router.post("/newsletter")
def subscribe_newsletter(request: EmailRequest, db: Session = Depends(get_db)):
    created = ContactService(db).subscribe_newsletter(request.email)
    return ok(subscribed=True, created=created)

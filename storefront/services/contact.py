"""
Contact form messages and newsletter sign-ups.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.core.errors import NotFound, ValidationFailed
from storefront.db.models import ContactMessage, NewsletterSubscriber
from storefront.services.auth import validate_email

MAX_MESSAGE_LENGTH = 5000
CONTACT_STATUSES = ("new", "read", "replied", "archived")


def serialize_message(message: ContactMessage) -> Dict[str, Any]:
    return {
        "id": message.id,
        "name": message.name,
        "email": message.email,
        "subject": message.subject,
        "message": message.message,
        "status": message.status,
        "created_at": message.created_at.isoformat() if message.created_at else None,
    }


class ContactService:
    def __init__(self, db: Session):
        self.db = db

    def submit(self, name: str, email: str, subject: str, message: str) -> ContactMessage:
        missing = [f for f, v in (("name", name), ("email", email), ("subject", subject), ("message", message))
                   if not (v or "").strip()]
        if missing:
            raise ValidationFailed("All fields are required", details={"fields": missing})
        email = validate_email(email)
        if len(message) > MAX_MESSAGE_LENGTH:
            raise ValidationFailed(f"Message must be {MAX_MESSAGE_LENGTH} characters or fewer")
        row = ContactMessage(name=name.strip(), email=email, subject=subject.strip(), message=message.strip())
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return row

    def list_messages(self, status: Optional[str] = None) -> List[Dict[str, Any]]:
        query = select(ContactMessage)
        if status:
            query = query.where(ContactMessage.status == status)
        rows = self.db.execute(query.order_by(ContactMessage.created_at.desc(), ContactMessage.id.desc())).scalars().all()
        return [serialize_message(m) for m in rows]

    def set_status(self, message_id: int, status: str) -> ContactMessage:
        if status not in CONTACT_STATUSES:
            raise ValidationFailed(f"status must be one of {', '.join(CONTACT_STATUSES)}")
        row = self.db.get(ContactMessage, message_id)
        if row is None:
            raise NotFound("Message not found")
        row.status = status
        self.db.commit()
        self.db.refresh(row)
        return row

    def subscribe_newsletter(self, email: str) -> bool:
        """Idempotent. Returns True when a new (or re-activated) subscription was recorded."""
        email = validate_email(email)
        existing = self.db.execute(
            select(NewsletterSubscriber).where(NewsletterSubscriber.email == email)
        ).scalar_one_or_none()
        if existing is not None:
            if existing.is_active:
                return False
            existing.is_active = True
            self.db.commit()
            return True
        self.db.add(NewsletterSubscriber(email=email))
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return False
        return True

"""
Outbound email over SMTP.

Connection details and templates come from the "email" settings row, with
config/env values as the fallback. Custom templates may use placeholders
such as {customer_name}, {order_number}, {status}, {total}, {items};
missing templates fall back to the built-in HTML below.

Sending is best-effort: every send_* method returns True/False, logs
failures and never raises, so order flows never roll back or block on
notification problems. Callers queue these through FastAPI background
tasks with plain dict snapshots (no ORM objects, no open sessions).
"""

import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr
from html import escape
from typing import Any, Dict, List, Optional

from storefront.utils.logger import get_logger

logger = get_logger("email")

STATUS_MESSAGES = {
    "pending": "We have received your order and it is awaiting processing.",
    "processing": "Your order is being prepared.",
    "shipped": "Your order is on its way.",
    "delivered": "Your order has been delivered.",
    "cancelled": "Your order has been cancelled.",
}


@dataclass
class SmtpSettings:
    host: str = ""
    port: int = 587
    secure: bool = False
    user: str = ""
    password: str = ""
    sender: str = ""
    from_name: str = ""

    @property
    def configured(self) -> bool:
        return bool(self.host and self.sender)


class SmtpTransport:
    """Delivers one message per connection with smtplib."""

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout

    def send(self, message: EmailMessage, smtp: SmtpSettings) -> None:
        if smtp.secure:
            server = smtplib.SMTP_SSL(smtp.host, smtp.port, timeout=self.timeout)
        else:
            server = smtplib.SMTP(smtp.host, smtp.port, timeout=self.timeout)
        with server:
            if not smtp.secure:
                server.ehlo()
                if server.has_extn("starttls"):
                    server.starttls()
                    server.ehlo()
            if smtp.user:
                server.login(smtp.user, smtp.password)
            server.send_message(message)


def render_placeholders(template: str, context: Dict[str, Any]) -> str:
    """Replace {name} placeholders; unknown placeholders are left as-is."""
    out = template
    for key, value in context.items():
        out = out.replace("{" + key + "}", "" if value is None else str(value))
    return out


def _money(value: Any) -> str:
    return f"${float(value or 0):.2f}"


def _items_html(items: List[Dict[str, Any]]) -> str:
    rows = "".join(
        "<tr><td>{name}</td><td>{qty}</td><td>{price}</td><td>{total}</td></tr>".format(
            name=escape(str(item.get("product_name", ""))),
            qty=item.get("quantity", 0),
            price=_money(item.get("price")),
            total=_money(item.get("total")),
        )
        for item in items
    )
    return (
        '<table cellpadding="6" style="border-collapse:collapse">'
        "<tr><th>Item</th><th>Qty</th><th>Price</th><th>Total</th></tr>"
        f"{rows}</table>"
    )


def _address_html(address: Optional[Dict[str, Any]]) -> str:
    if not address:
        return ""
    parts = [
        address.get("name") or " ".join(p for p in (address.get("first_name"), address.get("last_name")) if p),
        address.get("address"),
        address.get("address2"),
        " ".join(p for p in (address.get("city"), address.get("state"), address.get("zip")) if p),
        address.get("country"),
    ]
    return "<br>".join(escape(str(p)) for p in parts if p)


class Mailer:
    """Renders and sends store notifications."""

    def __init__(
        self,
        smtp: SmtpSettings,
        transport,
        templates: Optional[Dict[str, str]] = None,
        store_name: str = "Storefront",
        admin_email: str = "",
        public_url: str = "",
    ):
        self.smtp = smtp
        self.transport = transport
        self.templates = templates or {}
        self.store_name = store_name
        self.admin_email = admin_email
        self.public_url = public_url.rstrip("/")

    @classmethod
    def from_settings(cls, store, config, transport) -> "Mailer":
        """Build from the settings store (DB first) with config/env fallback."""
        email = store.get("email").values
        general = store.get("general").values
        smtp = SmtpSettings(
            host=email.get("smtp_host") or config.smtp_host,
            port=int(email.get("smtp_port") or config.smtp_port),
            secure=bool(email.get("smtp_secure") or config.smtp_secure),
            user=email.get("smtp_user") or config.smtp_user,
            password=email.get("smtp_pass") or config.smtp_pass,
            sender=email.get("sender_email") or config.email_from or config.store_email,
            from_name=email.get("email_from_name") or general.get("store_name") or config.store_name,
        )
        templates = {k: v for k, v in email.items() if k.endswith(("_subject", "_template")) and v}
        return cls(
            smtp=smtp,
            transport=transport,
            templates=templates,
            store_name=general.get("store_name") or config.store_name,
            admin_email=(
                email.get("admin_notification_email")
                or config.admin_email
                or general.get("store_email")
                or config.store_email
            ),
            public_url=config.public_url,
        )

    # Low-level

    def send(self, to: str, subject: str, html: str) -> bool:
        if not to:
            logger.warning("email: skipped, no recipient subject=%r", subject)
            return False
        if not self.smtp.configured:
            logger.warning("email: skipped, SMTP not configured to=%s subject=%r", to, subject)
            return False
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = formataddr((self.smtp.from_name, self.smtp.sender))
        message["To"] = to
        message.set_content("This message requires an HTML-capable mail client.")
        message.add_alternative(html, subtype="html")
        try:
            self.transport.send(message, self.smtp)
        except Exception as e:
            # Best-effort: notification failures never propagate
            logger.error("email: send failed to=%s subject=%r error=%s", to, subject, e)
            return False
        logger.info("email: sent to=%s subject=%r", to, subject)
        return True

    def render(self, name: str, context: Dict[str, Any], default_subject: str, default_html: str):
        subject = self.templates.get(f"{name}_subject") or default_subject
        body = self.templates.get(f"{name}_template") or default_html
        return render_placeholders(subject, context), render_placeholders(body, context)

    def _wrap(self, inner: str) -> str:
        return (
            '<div style="font-family:Arial,sans-serif;max-width:600px;margin:0 auto">'
            f"<h2>{escape(self.store_name)}</h2>{inner}"
            f'<p style="color:#888;font-size:12px">{escape(self.store_name)}</p></div>'
        )

    def _order_context(self, order: Dict[str, Any]) -> Dict[str, Any]:
        status = order.get("status", "pending")
        return {
            "customer_name": order.get("customer_name") or "Customer",
            "customer_email": order.get("customer_email", ""),
            "order_number": order.get("order_number", ""),
            "status": status,
            "status_message": STATUS_MESSAGES.get(status, ""),
            "subtotal": _money(order.get("subtotal")),
            "shipping_amount": _money(order.get("shipping_amount")),
            "discount_amount": _money(order.get("discount_amount")),
            "coupon_code": order.get("coupon_code") or "",
            "total": _money(order.get("total_amount")),
            "items": _items_html(order.get("items") or []),
            "shipping_address": _address_html(order.get("shipping_address")),
            "tracking_number": order.get("tracking_number") or "",
            "estimated_delivery": order.get("estimated_delivery") or "",
            "store_name": self.store_name,
        }

    # Order notifications

    def send_order_confirmation(self, order: Dict[str, Any]) -> bool:
        ctx = self._order_context(order)
        discount_row = (
            "<p>Discount ({coupon_code}): -{discount_amount}</p>" if order.get("discount_amount") else ""
        )
        default_html = self._wrap(
            "<p>Hi {customer_name},</p>"
            "<p>Thank you for your order <strong>{order_number}</strong>.</p>"
            "{items}"
            "<p>Subtotal: {subtotal}</p>"
            f"{discount_row}"
            "<p>Shipping: {shipping_amount}</p>"
            "<p><strong>Total: {total}</strong></p>"
            "<p>Shipping to:<br>{shipping_address}</p>"
        )
        subject, html = self.render(
            "order_confirmation", ctx, f"Order Confirmation - {ctx['order_number']}", default_html,
        )
        return self.send(ctx["customer_email"], subject, html)

    def send_order_status_update(self, order: Dict[str, Any]) -> bool:
        ctx = self._order_context(order)
        default_html = self._wrap(
            "<p>Hi {customer_name},</p>"
            "<p>Your order <strong>{order_number}</strong> is now <strong>{status}</strong>.</p>"
            "<p>{status_message}</p>"
        )
        subject, html = self.render(
            "order_status", ctx, f"Order {ctx['order_number']} - {ctx['status'].title()}", default_html,
        )
        return self.send(ctx["customer_email"], subject, html)

    def send_shipping_notification(self, order: Dict[str, Any]) -> bool:
        ctx = self._order_context(order)
        default_html = self._wrap(
            "<p>Hi {customer_name},</p>"
            "<p>Your order <strong>{order_number}</strong> has shipped.</p>"
            "<p>Tracking number: <strong>{tracking_number}</strong></p>"
            "<p>Estimated delivery: {estimated_delivery}</p>"
        )
        subject, html = self.render(
            "shipping_notification", ctx, f"Your order {ctx['order_number']} has shipped", default_html,
        )
        return self.send(ctx["customer_email"], subject, html)

    def send_payment_failed(self, order: Dict[str, Any]) -> bool:
        ctx = self._order_context(order)
        html = self._wrap(render_placeholders(
            "<p>Hi {customer_name},</p>"
            "<p>We could not process the payment for order <strong>{order_number}</strong>.</p>"
            "<p>Please try again or contact us if the problem persists.</p>",
            ctx,
        ))
        return self.send(ctx["customer_email"], f"Payment issue with order {ctx['order_number']}", html)

    def send_admin_new_order(self, order: Dict[str, Any]) -> bool:
        ctx = self._order_context(order)
        default_html = self._wrap(
            "<p>New order <strong>{order_number}</strong> from {customer_name} ({customer_email}).</p>"
            "{items}"
            "<p><strong>Total: {total}</strong></p>"
        )
        subject, html = self.render(
            "admin_new_order", ctx, f"New Order: {ctx['order_number']}", default_html,
        )
        return self.send(self.admin_email, subject, html)

    # Account / contact notifications

    def send_contact_notification(self, message: Dict[str, Any]) -> bool:
        ctx = {
            "name": escape(message.get("name", "")),
            "email": escape(message.get("email", "")),
            "subject": escape(message.get("subject", "")),
            "message": escape(message.get("message", "")).replace("\n", "<br>"),
        }
        default_html = self._wrap(
            "<p>New contact message from {name} ({email})</p>"
            "<p><strong>{subject}</strong></p><p>{message}</p>"
        )
        subject, html = self.render(
            "contact_notification", ctx, f"Contact form: {message.get('subject', '')}", default_html,
        )
        return self.send(self.admin_email, subject, html)

    def send_password_reset(self, email: str, name: str, token: str) -> bool:
        ctx = {
            "customer_name": name or "there",
            "reset_url": f"{self.public_url}/auth/reset-password?token={token}",
        }
        default_html = self._wrap(
            "<p>Hi {customer_name},</p>"
            '<p>Reset your password here: <a href="{reset_url}">{reset_url}</a></p>'
            "<p>If you did not request this, you can ignore this email.</p>"
        )
        subject, html = self.render("password_reset", ctx, "Reset your password", default_html)
        return self.send(email, subject, html)

    def send_email_verification(self, email: str, name: str, token: str) -> bool:
        ctx = {
            "customer_name": name or "there",
            "verify_url": f"{self.public_url}/auth/verify-email?token={token}",
        }
        default_html = self._wrap(
            "<p>Hi {customer_name},</p>"
            '<p>Please verify your email address: <a href="{verify_url}">{verify_url}</a></p>'
        )
        subject, html = self.render("email_verification", ctx, "Verify your email address", default_html)
        return self.send(email, subject, html)

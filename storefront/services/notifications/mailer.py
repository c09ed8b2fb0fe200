"""
Order emails and the email backend port.

``OrderMailer`` builds a ``MailMessage`` for an order; nothing is sent until
``MailMessage.deliver()`` hands it to an ``EmailBackend``. The default
backend is an in-memory outbox.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Optional

from sqlalchemy.orm import Session

from storefront.core.config import get_settings
from storefront.core.logging import get_logger
from storefront.database.models.order import Order
from storefront.services.notifications.errors import MailDeliveryError, MailerError
from storefront.services.notifications.templates import TemplateEngine

logger = get_logger(__name__)


class EmailBackend(ABC):
    """Abstract interface for email dispatch backends."""

    @abstractmethod
    def send(
        self,
        to: str,
        subject: str,
        body: str,
        html_body: Optional[str] = None,
        sender: Optional[str] = None,
    ) -> dict:
        """Send an email message.

        Returns:
            dict with keys: message_id, status ("sent" or "failed"), error (optional)
        """
        ...


class OutboxBackend(EmailBackend):
    """Email backend that keeps sent messages in memory."""

    def __init__(self) -> None:
        self.sent_emails: list[dict] = []
        self.should_succeed = True
        self.failure_reason = "Email delivery failed"

    def configure(self, should_succeed: bool = True, failure_reason: str = "Email delivery failed"):
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def send(
        self,
        to: str,
        subject: str,
        body: str,
        html_body: Optional[str] = None,
        sender: Optional[str] = None,
    ) -> dict:
        if not self.should_succeed:
            return {"message_id": None, "status": "failed", "error": self.failure_reason}

        message_id = f"email-{uuid.uuid4().hex[:12]}"
        self.sent_emails.append(
            {
                "message_id": message_id,
                "to": to,
                "sender": sender,
                "subject": subject,
                "body": body,
                "html_body": html_body,
            }
        )
        return {"message_id": message_id, "status": "sent"}

    def reset(self) -> None:
        self.sent_emails.clear()
        self.should_succeed = True
        self.failure_reason = "Email delivery failed"


@lru_cache
def get_email_backend() -> EmailBackend:
    return OutboxBackend()


@dataclass
class MailMessage:
    """Rendered email waiting to be delivered."""

    to: str
    subject: str
    body: str
    backend: EmailBackend
    html_body: Optional[str] = None
    sender: Optional[str] = None
    headers: dict[str, Any] = field(default_factory=dict)

    def deliver(self) -> dict:
        """
        Send the message through its backend.

        Raises:
            MailDeliveryError: If the backend reports a failure
        """
        result = self.backend.send(
            to=self.to,
            subject=self.subject,
            body=self.body,
            html_body=self.html_body,
            sender=self.sender,
        )
        if result.get("status") != "sent":
            logger.error(
                "Email delivery failed",
                to=self.to,
                subject=self.subject,
                error=result.get("error"),
            )
            raise MailDeliveryError(
                "Email delivery failed",
                to=self.to,
                subject=self.subject,
                error=result.get("error"),
            )

        logger.info(
            "Email delivered",
            to=self.to,
            subject=self.subject,
            message_id=result.get("message_id"),
        )
        return result


class OrderMailer:
    """
    Builds order confirmation and cancellation emails.

    Args:
        db_session: Session used to load the order
        backend: Email backend; defaults to the process outbox
        template_engine: Template engine; defaults to the package templates
    """

    def __init__(
        self,
        db_session: Session,
        backend: Optional[EmailBackend] = None,
        template_engine: Optional[TemplateEngine] = None,
    ):
        self.db = db_session
        self.backend = backend or get_email_backend()
        self.templates = template_engine or TemplateEngine()

    def confirm_email(self, order_id: uuid.UUID, resend: bool = False) -> MailMessage:
        order = self._load_order(order_id)
        subject_prefix = "[RESEND] " if resend else ""
        return self._build(order, "confirm_email", subject_prefix=subject_prefix)

    def cancel_email(self, order_id: uuid.UUID, resend: bool = False) -> MailMessage:
        order = self._load_order(order_id)
        subject_prefix = "[RESEND] " if resend else ""
        return self._build(order, "cancel_email", subject_prefix=subject_prefix)

    def _load_order(self, order_id: uuid.UUID) -> Order:
        order = self.db.get(Order, order_id)
        if order is None:
            raise MailerError("Order not found for email", order_id=str(order_id))
        if not order.email:
            raise MailerError("Order has no email address", order_number=order.number)
        return order

    def _build(self, order: Order, template_name: str, subject_prefix: str = "") -> MailMessage:
        settings = get_settings()
        rendered = self.templates.render_email(
            template_name,
            {
                "order": order,
                "line_items": list(order.line_items),
                "store_name": settings.store_name,
                "subject_prefix": subject_prefix,
            },
        )

        logger.debug(
            "Order email built",
            template_name=template_name,
            order_number=order.number,
            to=order.email,
        )

        return MailMessage(
            to=order.email,
            subject=rendered["subject"],
            body=rendered.get("text_body") or rendered["html_body"],
            html_body=rendered["html_body"],
            sender=settings.mail_from,
            backend=self.backend,
        )

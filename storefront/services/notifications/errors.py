"""
Notification errors.
"""

from typing import Any, Optional


class MailerError(Exception):
    """Base exception for order email errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class MailDeliveryError(MailerError):
    """Raised when the email backend rejects a message."""

    pass


class TemplateRenderError(MailerError):
    """Raised when an email template cannot be rendered."""

    def __init__(self, message: str, template_name: Optional[str] = None, **context: Any):
        super().__init__(message, template_name=template_name, **context)
        self.template_name = template_name


class TemplateNotFoundError(TemplateRenderError):
    """Raised when an email template does not exist."""

    pass

"""
Jinja2 rendering of order emails.

An email named ``confirm_email`` is made of three files in the template
directory: ``confirm_email_subject.txt``, ``confirm_email.html`` and the
optional plain-text ``confirm_email.txt``. HTML parts are autoescaped.
"""

from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

from jinja2 import Environment, FileSystemLoader, TemplateError, TemplateNotFound, select_autoescape

from storefront.core.logging import get_logger
from storefront.core.money import Money
from storefront.services.notifications.errors import (
    TemplateNotFoundError,
    TemplateRenderError,
)

logger = get_logger(__name__)

DEFAULT_TEMPLATE_DIR = Path(__file__).resolve().parents[2] / "templates" / "notifications"

# (result key, file name pattern, required)
EMAIL_PARTS = (
    ("subject", "{name}_subject.txt", True),
    ("html_body", "{name}.html", True),
    ("text_body", "{name}.txt", False),
)


def money_filter(value: Any, currency: str = "") -> str:
    """Render an amount (or a Money) with its currency symbol."""
    if isinstance(value, Money):
        return value.format()
    return Money(value or 0, currency).format()


def date_filter(value: Optional[Union[date, datetime]]) -> str:
    return value.strftime("%B %d, %Y") if value else ""


class TemplateEngine:
    """Loads email parts from a template directory and renders them."""

    def __init__(self, template_dir: Optional[str] = None):
        self.template_dir = Path(template_dir) if template_dir else DEFAULT_TEMPLATE_DIR
        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=select_autoescape(enabled_extensions=("html",), default_for_string=False),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["money"] = money_filter
        self.env.filters["date"] = date_filter

    def render_email(self, template_name: str, context: Dict[str, Any]) -> Dict[str, str]:
        """
        Render every part of an email.

        Returns:
            ``subject`` and ``html_body``, plus ``text_body`` when the email
            has a plain-text part

        Raises:
            TemplateNotFoundError: If the subject or HTML part is missing
            TemplateRenderError: If a part fails to compile or render
        """
        rendered: Dict[str, str] = {}
        for key, pattern, required in EMAIL_PARTS:
            filename = pattern.format(name=template_name)
            try:
                rendered[key] = self.env.get_template(filename).render(**context)
            except TemplateNotFound as e:
                if not required:
                    continue
                logger.error("Email template missing", template_name=template_name, part=filename)
                raise TemplateNotFoundError(
                    f"Email template not found: {template_name}",
                    template_name=template_name,
                    part=filename,
                ) from e
            except TemplateError as e:
                logger.error(
                    "Email template failed to render",
                    template_name=template_name,
                    part=filename,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise TemplateRenderError(
                    f"Failed to render {filename}: {e}",
                    template_name=template_name,
                    part=filename,
                ) from e

        rendered["subject"] = rendered["subject"].strip()
        return rendered

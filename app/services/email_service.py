"""Transactional email over SMTP with Jinja2-rendered templates."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from email.message import EmailMessage
from pathlib import Path
from typing import Any

import aiosmtplib
from jinja2 import Environment, FileSystemLoader, TemplateNotFound, select_autoescape

from app.core.settings import settings

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates" / "email"


@dataclass(frozen=True)
class EmailTemplate:
    name: str
    display_name: str
    description: str
    subject: str


TEMPLATES: dict[str, EmailTemplate] = {
    template.name: template
    for template in (
        EmailTemplate(
            "welcome",
            "Welcome Email",
            "Sent to new users after registration",
            "Welcome to {{ site_name }}",
        ),
        EmailTemplate(
            "dsa_verified",
            "DSA Verification",
            "Sent to DSAs when an administrator verifies their account",
            "Your DSA account has been verified",
        ),
        EmailTemplate(
            "application_submitted",
            "Application Submitted",
            "Confirms receipt of a loan application",
            "Application {{ application_number }} received",
        ),
        EmailTemplate(
            "application_status_changed",
            "Application Status Update",
            "Sent when a loan application changes status",
            "Application {{ application_number }} is now {{ status_label }}",
        ),
        EmailTemplate(
            "payment_receipt",
            "Payment Receipt",
            "Receipt for a completed service charge payment",
            "Payment receipt {{ payment_id }}",
        ),
        EmailTemplate(
            "ticket_update",
            "Support Ticket Update",
            "Sent when a support ticket receives a response or changes status",
            "Update on ticket {{ ticket_number }}",
        ),
    )
}


class EmailServiceConfig:
    def __init__(
        self,
        *,
        smtp_host: str | None = None,
        smtp_port: int | None = None,
        smtp_username: str | None = None,
        smtp_password: str | None = None,
        smtp_use_tls: bool | None = None,
        from_email: str | None = None,
        from_name: str | None = None,
        template_dir: str | None = None,
    ):
        self.smtp_host = smtp_host if smtp_host is not None else settings.smtp_host
        self.smtp_port = smtp_port or settings.smtp_port
        self.smtp_username = smtp_username if smtp_username is not None else settings.smtp_username
        self.smtp_password = smtp_password if smtp_password is not None else settings.smtp_password
        self.smtp_use_tls = settings.smtp_use_tls if smtp_use_tls is None else smtp_use_tls
        self.from_email = from_email or settings.from_email
        self.from_name = from_name or settings.from_name
        self.template_dir = template_dir or settings.email_template_dir or str(DEFAULT_TEMPLATE_DIR)

    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_port and self.from_email)


class EmailService:
    def __init__(self, config: EmailServiceConfig | None = None):
        self.config = config or EmailServiceConfig()
        self.template_env = Environment(
            loader=FileSystemLoader(self.config.template_dir),
            autoescape=select_autoescape(["html"], default_for_string=False),
        )

    def render_template(self, template_name: str, context: dict[str, Any]) -> tuple[str, str, str]:
        """Render (subject, html, text) for a catalogue template.

        A missing ``.txt`` variant falls back to the HTML with tags stripped.
        """
        template = TEMPLATES.get(template_name)
        if template is None:
            raise ValueError(f"Unknown email template: {template_name}")
        context = {"site_name": settings.from_name, "frontend_url": settings.frontend_base_url, **context}
        subject = self.template_env.from_string(template.subject).render(**context)
        html = self.template_env.get_template(f"{template_name}.html").render(**context)
        try:
            text = self.template_env.get_template(f"{template_name}.txt").render(**context)
        except TemplateNotFound:
            text = _html_to_text(html)
        return subject, html, text

    async def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: str | None = None,
    ) -> dict[str, Any]:
        if not self.config.is_configured():
            logger.warning("Email not sent; SMTP is not configured", extra={"recipient": to_email})
            return {"email": to_email, "success": False, "error": "Email service not configured"}

        message = EmailMessage()
        message["From"] = f"{self.config.from_name} <{self.config.from_email}>"
        message["To"] = to_email
        message["Subject"] = subject
        message.set_content(text_content or _html_to_text(html_content))
        message.add_alternative(html_content, subtype="html")

        try:
            await aiosmtplib.send(
                message,
                hostname=self.config.smtp_host,
                port=self.config.smtp_port,
                username=self.config.smtp_username or None,
                password=self.config.smtp_password or None,
                start_tls=self.config.smtp_use_tls,
            )
        except (aiosmtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send email to %s: %s", to_email, exc)
            return {"email": to_email, "success": False, "error": str(exc)}

        logger.info("Email sent", extra={"recipient": to_email, "subject": subject})
        return {"email": to_email, "success": True}

    async def send_template(
        self,
        template_name: str,
        data: dict[str, Any],
        recipients: list[str],
    ) -> dict[str, Any]:
        subject, html, text = self.render_template(template_name, data)
        results = [await self.send_email(recipient, subject, html, text) for recipient in recipients]
        successful = sum(1 for result in results if result["success"])
        return {
            "results": results,
            "summary": {
                "total": len(results),
                "successful": successful,
                "failed": len(results) - successful,
            },
        }


def _html_to_text(html_content: str) -> str:
    text = re.sub(r"<[^>]+>", "", html_content)
    text = text.replace("&amp;", "&").replace("&lt;", "<").replace("&gt;", ">")
    text = text.replace("&quot;", '"').replace("&#39;", "'")
    return re.sub(r"\s+", " ", text).strip()


def template_catalogue() -> list[dict[str, str]]:
    return [
        {"name": t.name, "display_name": t.display_name, "description": t.description}
        for t in TEMPLATES.values()
    ]


_email_service: EmailService | None = None


def get_email_service() -> EmailService:
    global _email_service
    if _email_service is None:
        _email_service = EmailService()
    return _email_service


async def send_best_effort(template_name: str, data: dict[str, Any], recipient: str | None) -> None:
    """Fire-and-forget helper for workflow emails; failures are logged, never raised."""
    if not recipient:
        return
    try:
        await get_email_service().send_template(template_name, data, [recipient])
    except Exception:
        logger.exception("Workflow email %s to %s failed", template_name, recipient)

"""
Email channel - SMTP delivery of Jinja2-rendered HTML templates.
"""

import logging
import smtplib
from email.message import EmailMessage
from pathlib import Path
from typing import Any, Dict, List, Optional

from jinja2 import Environment, FileSystemLoader, TemplateNotFound, select_autoescape

from agapay.core.errors import ChannelDispatchFailure
from agapay.core.settings import settings
from .base import BlockingChannel, ChannelMessage, ChannelOutcome

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parents[2] / "templates" / "email"

_environment: Optional[Environment] = None


def get_template_environment() -> Environment:
    global _environment
    if _environment is None:
        _environment = Environment(
            loader=FileSystemLoader(str(TEMPLATE_DIR)),
            autoescape=select_autoescape(["html"]),
        )
    return _environment


def render_email(template: str, context: Dict[str, Any]) -> str:
    env = get_template_environment()
    try:
        tmpl = env.get_template(f"{template}.html")
    except TemplateNotFound:
        logger.warning(f"Email template '{template}' not found, using generic")
        tmpl = env.get_template("generic.html")
    return tmpl.render(app_name=settings.APP_NAME, **context)


def collect_addresses(recipients: List[Dict]) -> List[str]:
    addresses = []
    for user in recipients:
        if user.get("email_notifications") is False:
            continue
        email = user.get("email")
        if email and email not in addresses:
            addresses.append(email)
    return addresses


class EmailChannel(BlockingChannel):
    name = "email"

    def __init__(self, host: Optional[str] = None, port: Optional[int] = None,
                 username: Optional[str] = None, password: Optional[str] = None,
                 use_tls: Optional[bool] = None, from_email: Optional[str] = None,
                 timeout: Optional[float] = None):
        self.host = host or settings.SMTP_HOST
        self.port = port or settings.SMTP_PORT
        self.username = username or settings.SMTP_USERNAME
        self.password = password or settings.SMTP_PASSWORD
        self.use_tls = settings.SMTP_USE_TLS if use_tls is None else use_tls
        self.from_email = from_email or settings.SMTP_FROM_EMAIL
        self.timeout = timeout or settings.CHANNEL_TIMEOUT_SECONDS

    def deliver(self, message: ChannelMessage, recipients: List[Dict]) -> ChannelOutcome:
        addresses = collect_addresses(recipients)
        if not addresses:
            raise ChannelDispatchFailure("no email recipients", {"channel": self.name})
        if not self.host:
            raise ChannelDispatchFailure("SMTP is not configured", {"channel": self.name})

        html = render_email(message.template, {"title": message.title, "body": message.body, **message.context})

        email = EmailMessage()
        email["Subject"] = message.title
        email["From"] = self.from_email
        email["To"] = self.from_email
        # Recipients go in Bcc so broadcast audiences never see each other
        email["Bcc"] = ", ".join(addresses)
        email.set_content(message.body)
        email.add_alternative(html, subtype="html")

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                refused = server.send_message(email)
        except (smtplib.SMTPException, OSError) as e:
            raise ChannelDispatchFailure(f"SMTP error: {e}", {"channel": self.name})

        delivered = len(addresses) - len(refused or {})
        logger.info(f"Email '{message.template}' sent to {delivered}/{len(addresses)} recipients")
        return ChannelOutcome.success(self.name, delivered)

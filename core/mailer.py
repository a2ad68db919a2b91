"""
core/mailer.py -- Templated email delivery over SMTP.

Templates live in core/templates/ and define three Jinja2 blocks:
``subject``, ``plain_body`` and ``html_body``. Each block is rendered on its
own so one file holds every part of a message.

send() raises on final failure. Request handlers never call it directly --
they hand it to BackgroundRunner, which logs and swallows the error.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape
from tenacity import before_sleep_log, retry, retry_if_exception_type, stop_after_attempt, wait_fixed

logger = logging.getLogger("marquee.mailer")

_TEMPLATE_DIR = Path(__file__).parent / "templates"

_env = Environment(
    loader=FileSystemLoader(str(_TEMPLATE_DIR)),
    autoescape=select_autoescape(enabled_extensions=("tmpl",), default_for_string=False),
    undefined=StrictUndefined,
)

_MAX_ATTEMPTS = 3
_RETRY_DELAY_SECONDS = 0.5


def render(template_name: str, data: dict) -> tuple[str, str, str]:
    """Return (subject, plain_body, html_body) for the named template."""
    template = _env.get_template(template_name)
    context = template.new_context(data)
    parts = []
    for block in ("subject", "plain_body", "html_body"):
        parts.append("".join(template.blocks[block](context)).strip())
    return parts[0], parts[1], parts[2]


class Mailer:
    def __init__(self, host: str, port: int, username: str, password: str, sender: str, timeout: float = 5.0) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.timeout = timeout

    def build_message(self, recipient: str, template_name: str, data: dict) -> EmailMessage:
        subject, plain_body, html_body = render(template_name, data)
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = recipient
        msg.set_content(plain_body)
        msg.add_alternative(html_body, subtype="html")
        return msg

    def send(self, recipient: str, template_name: str, data: dict) -> None:
        """Render and deliver a message, retrying transient SMTP failures."""
        msg = self.build_message(recipient, template_name, data)
        self._deliver(msg)
        logger.info("Sent %s to %s", template_name, recipient)

    @retry(
        stop=stop_after_attempt(_MAX_ATTEMPTS),
        wait=wait_fixed(_RETRY_DELAY_SECONDS),
        retry=retry_if_exception_type((smtplib.SMTPException, OSError)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    def _deliver(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            smtp.ehlo()
            if smtp.has_extn("starttls"):
                smtp.starttls()
                smtp.ehlo()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(msg)

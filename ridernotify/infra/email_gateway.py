# ridernotify/infra/email_gateway.py
from __future__ import annotations

import asyncio
import smtplib
import uuid
from email.mime.text import MIMEText
from email.utils import make_msgid, parseaddr
from typing import Optional

from ridernotify.core.errors import TransientDeliveryError
from ridernotify.infra.logging_config import get_logger, mask_email
from ridernotify.infra.metrics import inc_counter

logger = get_logger(__name__)


class SmtpEmailGateway:
    """
    Email via SMTP with STARTTLS.

    smtplib is blocking, so each send runs in the default executor.  Any
    exception from the SMTP conversation counts as transient; the adapter
    decides whether to retry.
    """

    def __init__(
            self,
            host: str,
            port: int,
            user: str,
            password: str,
            *,
            from_address: Optional[str] = None,
            timeout_seconds: float = 15.0,
    ):
        self._host = host
        self._port = port
        self._user = user
        self._password = password
        self._from = from_address or user
        self._timeout = timeout_seconds

    async def send_email(self, to: str, subject: str, body: str) -> Optional[str]:
        msg = MIMEText(body, "plain", "utf-8")
        msg["From"] = self._from
        msg["To"] = to
        msg["Subject"] = subject
        msg["Message-ID"] = make_msgid(domain=parseaddr(self._from)[1].partition("@")[2] or None)

        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._send_smtp, msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning(f"SMTP send failed to {mask_email(to)}: {type(exc).__name__}: {exc}")
            inc_counter("smtp_outbound_failed")
            raise TransientDeliveryError(f"{type(exc).__name__}: {exc}")

        inc_counter("smtp_outbound_sent")
        logger.info(f"Email sent: to={mask_email(to)}, subject={subject!r}")
        return msg["Message-ID"]

    def _send_smtp(self, msg: MIMEText) -> None:
        """Send email via SMTP (blocking)"""
        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
            server.starttls()
            server.login(self._user, self._password)
            server.send_message(msg)


class DevEmailGateway:
    """Log-only gateway for environments without SMTP settings."""

    def __init__(self):
        self.sent: list[tuple[str, str, str]] = []

    async def send_email(self, to: str, subject: str, body: str) -> Optional[str]:
        message_id = f"<dev-{uuid.uuid4().hex[:16]}@localhost>"
        self.sent.append((to, subject, body))
        logger.info(f"[dev] Email to {mask_email(to)}: {subject!r} ({len(body)} chars)")
        return message_id

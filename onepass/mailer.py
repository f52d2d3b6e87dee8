"""
mailer.py - Outbound email over SMTP.

send_template() never raises: delivery failures are logged and dropped.
smtplib is blocking, so the actual send runs in a worker thread.
When settings.smtp_host is empty, messages are logged and skipped.
"""
from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr

from onepass.config import Settings, settings

logger = logging.getLogger(__name__)


class Mailer:
    def __init__(self, config: Settings = settings) -> None:
        self._config = config

    def _build_message(self, recipient: str, subject: str, html: str) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = formataddr((self._config.smtp_from_name, self._config.smtp_from))
        msg["To"] = recipient
        msg["Subject"] = subject
        msg.set_content("Vui lòng xem email này bằng trình đọc hỗ trợ HTML.")
        msg.add_alternative(html, subtype="html")
        return msg

    def _send_blocking(self, msg: EmailMessage) -> None:
        cfg = self._config
        if cfg.smtp_port == 465:
            with smtplib.SMTP_SSL(cfg.smtp_host, cfg.smtp_port, timeout=cfg.smtp_timeout_seconds) as server:
                if cfg.smtp_username:
                    server.login(cfg.smtp_username, cfg.smtp_password)
                server.send_message(msg)
            return
        with smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=cfg.smtp_timeout_seconds) as server:
            if cfg.smtp_use_tls:
                server.starttls()
            if cfg.smtp_username:
                server.login(cfg.smtp_username, cfg.smtp_password)
            server.send_message(msg)

    async def send_template(self, recipient: str, subject: str, html: str) -> None:
        if not recipient:
            logger.warning("Email skipped: no recipient subject=%r", subject)
            return
        if not self._config.email_enabled:
            logger.info("Email disabled, skipping recipient=%s subject=%r", recipient, subject)
            return

        msg = self._build_message(recipient, subject, html)
        try:
            await asyncio.to_thread(self._send_blocking, msg)
        except smtplib.SMTPAuthenticationError:
            logger.exception("SMTP auth failed for %s", self._config.smtp_username)
        except smtplib.SMTPException:
            logger.exception("SMTP error while sending email to %s", recipient)
        except OSError:
            logger.exception("SMTP network error while sending email to %s", recipient)
        else:
            logger.info("Email sent recipient=%s subject=%r", recipient, subject)

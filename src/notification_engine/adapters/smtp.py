"""SMTP email adapter (aiosmtplib)."""

from __future__ import annotations

import email.message
import email.policy
import email.utils
import logging

import aiosmtplib

from ..delivery import Channel, DeliveryRecord, OutboundMessage
from ..ports.adapter import AdapterHealth
from .batching import DEFAULT_SUB_BATCH_SIZE, BatchingChannelAdapter

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT = "Notification"


def build_email(message: OutboundMessage, from_email: str) -> email.message.EmailMessage:
    """Build the MIME message for a work item payload.

    Reads ``subject``, ``body`` and optional ``html`` from the payload; a
    payload without a body is rendered as ``key: value`` lines.
    """
    payload = message.payload
    mail = email.message.EmailMessage(policy=email.policy.default)
    mail["To"] = message.recipient
    mail["From"] = from_email
    mail["Message-ID"] = email.utils.make_msgid()
    subject = payload.get("subject")
    if not subject:
        subject = str(payload.get("type") or DEFAULT_SUBJECT).replace("_", " ").capitalize()
    mail["Subject"] = str(subject)

    body = payload.get("body")
    if body is None:
        body = "\n".join(
            f"{key}: {value}"
            for key, value in payload.items()
            if key not in ("subject", "html")
        )
    mail.set_content(str(body), charset="utf-8")
    if payload.get("html"):
        mail.add_alternative(str(payload["html"]), subtype="html", charset="utf-8")
    return mail


class SmtpEmailAdapter(BatchingChannelAdapter):
    """
    Async SMTP email adapter.

    One SMTP session per message; sub-batches default to a one-second gap
    between them.
    """

    channel = Channel.EMAIL

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        timeout: float = 10.0,
        from_email: str = "noreply@localhost",
        *,
        sub_batch_size: int = DEFAULT_SUB_BATCH_SIZE,
        sub_batch_delay: float = 1.0,
    ) -> None:
        super().__init__(sub_batch_size=sub_batch_size, sub_batch_delay=sub_batch_delay)
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout
        self.from_email = from_email

    def _client(self) -> aiosmtplib.SMTP:
        return aiosmtplib.SMTP(
            hostname=self.host,
            port=self.port,
            timeout=self.timeout,
            start_tls=self.use_tls,
        )

    async def send(self, message: OutboundMessage) -> DeliveryRecord:
        if not message.recipient:
            return DeliveryRecord.failed(
                message.recipient, self.channel, error="missing email address"
            )
        mail = build_email(message, self.from_email)
        try:
            async with self._client() as smtp:
                if self.username and self.password:
                    await smtp.login(self.username, self.password)
                await smtp.send_message(mail)
        except aiosmtplib.SMTPException as e:
            logger.error("Failed to send email to %s: %s", message.recipient, e)
            return DeliveryRecord.failed(message.recipient, self.channel, error=str(e))

        logger.debug("Email sent to %s via SMTP", message.recipient)
        return DeliveryRecord.sent(
            message.recipient, self.channel, provider_id=mail.get("Message-ID")
        )

    async def health_check(self) -> AdapterHealth:
        try:
            async with self._client() as smtp:
                await smtp.noop()
        except (aiosmtplib.SMTPException, OSError) as e:
            return AdapterHealth(
                status="unhealthy", detail={"host": self.host, "error": str(e)}
            )
        return AdapterHealth(status="healthy", detail={"host": self.host})

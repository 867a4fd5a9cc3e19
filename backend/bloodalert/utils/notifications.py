from __future__ import annotations

import asyncio
import re
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Any, Dict, Optional

from loguru import logger
from twilio.rest import Client

from ..database import Settings
from ..hub import LiveUpdateHub, donor_topic


class DeliveryError(Exception):
    """A message could not be delivered on a channel (includes timeouts)."""


@dataclass
class OutboundMessage:
    subject: str
    body: str
    html: str | None = None
    data: Dict[str, Any] = field(default_factory=dict)


def normalize_phone_number(phone: str) -> str:
    """
    Normalize phone number to E.164 format for Twilio.

    Examples:
        "+1-555-0199" -> "+15550199"
        "+91 (98) 765-43210" -> "+919876543210"
    """
    if not phone:
        return phone
    if phone.startswith("+"):
        normalized = "+" + re.sub(r"\D", "", phone[1:])
    else:
        normalized = "+" + re.sub(r"\D", "", phone)
    logger.debug("Normalized phone number: {} -> {}", phone, normalized)
    return normalized


class SmsChannel:
    def __init__(self, settings: Settings) -> None:
        self.mock = settings.notification_mock_mode
        if not settings.twilio_sid or not settings.twilio_token or not settings.twilio_sid.startswith("AC"):
            logger.warning("Twilio credentials missing; SMS notifications are not configured.")
            self.client: Optional[Client] = None
        else:
            self.client = Client(settings.twilio_sid, settings.twilio_token)
        self.sender_phone = settings.twilio_phone or "+1234567890"

    async def send(self, to: str, message: OutboundMessage) -> None:
        normalized_phone = normalize_phone_number(to)
        if self.client is None:
            if self.mock:
                logger.info("Mock SMS: {} -> {}", normalized_phone, message.body)
                return
            raise DeliveryError("SMS service not configured")
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None,
                lambda: self.client.messages.create(
                    to=normalized_phone,
                    from_=self.sender_phone,
                    body=message.body,
                ),
            )
        except Exception as exc:
            raise DeliveryError(f"SMS delivery failed for {normalized_phone}: {exc}") from exc
        logger.info("SMS sent to {} (normalized from {})", normalized_phone, to)


class EmailChannel:
    def __init__(self, settings: Settings) -> None:
        self.mock = settings.notification_mock_mode
        self.settings = settings
        self.configured = bool(settings.smtp_host)
        if not self.configured:
            logger.warning("SMTP host missing; email notifications are not configured.")

    def _deliver(self, to: str, message: OutboundMessage) -> None:
        email = EmailMessage()
        email["Subject"] = message.subject
        email["From"] = self.settings.email_from
        email["To"] = to
        email.set_content(message.body)
        if message.html:
            email.add_alternative(message.html, subtype="html")
        with smtplib.SMTP(
            self.settings.smtp_host,
            self.settings.smtp_port,
            timeout=self.settings.notification_send_timeout_s,
        ) as server:
            if self.settings.smtp_use_tls:
                server.starttls()
            if self.settings.smtp_username and self.settings.smtp_password:
                server.login(self.settings.smtp_username, self.settings.smtp_password)
            server.send_message(email)

    async def send(self, to: str, message: OutboundMessage) -> None:
        if not to:
            raise DeliveryError("No email address on file")
        if not self.configured:
            if self.mock:
                logger.info("Mock email: {} -> {}", to, message.subject)
                return
            raise DeliveryError("Email service not configured")
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._deliver, to, message)
        except (smtplib.SMTPException, OSError) as exc:
            raise DeliveryError(f"Email delivery failed for {to}: {exc}") from exc
        logger.info("Email sent to {}", to)


class PushChannel:
    """Pushes to the donor's real-time room; the address is the donor id."""

    def __init__(self, hub: LiveUpdateHub) -> None:
        self.hub = hub

    async def send(self, to: str, message: OutboundMessage) -> None:
        payload = {"title": message.subject, "body": message.body, "data": message.data}
        await self.hub.publish(donor_topic(to), "blood-alert", payload)


class MessageSender:
    """Routes a message to the channel-specific transport, bounded by a timeout."""

    def __init__(self, settings: Settings, hub: LiveUpdateHub) -> None:
        self.timeout = settings.notification_send_timeout_s
        self.channels = {
            "email": EmailChannel(settings),
            "sms": SmsChannel(settings),
            "push": PushChannel(hub),
        }

    async def send(self, channel: str, address: str, message: OutboundMessage) -> None:
        transport = self.channels.get(channel)
        if transport is None:
            raise DeliveryError(f"Unknown channel {channel}")
        try:
            await asyncio.wait_for(transport.send(address, message), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise DeliveryError(f"{channel} delivery to {address} timed out") from exc

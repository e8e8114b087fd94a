"""
Outbound notifications (OTP codes, payment confirmations).

``send(identifier, channel, payload)`` returns a ``NotificationResult`` or
raises ``DeliveryFailed``. Callers decide whether a failure aborts their
operation (OTP requests) or is only logged (payment confirmations).
"""
import asyncio
import smtplib
import uuid
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional, Protocol, Tuple

import httpx

from medverify.core.config import settings
from medverify.core.errors import DeliveryFailed
from medverify.core.logger import logger


@dataclass(frozen=True)
class NotificationResult:
    success: bool
    message_id: Optional[str] = None


class Notifier(Protocol):
    async def send(self, identifier: str, channel: str, payload: dict) -> NotificationResult:
        ...


def format_amount(amount_minor: int) -> str:
    return f"₹{amount_minor / 100:,.0f}"


def render_message(payload: dict) -> Tuple[str, str]:
    template = payload.get("template")
    if template == "otp":
        minutes = payload.get("expires_in", settings.OTP_EXPIRE_SECONDS) // 60
        return (
            f"{settings.PROJECT_NAME} verification code",
            f"Your {settings.PROJECT_NAME} verification code is: {payload['otp']}. "
            f"This code will expire in {minutes} minutes. Do not share this code with anyone.",
        )
    if template == "payment_confirmation":
        return (
            "Payment received - appointment confirmed",
            f"Hello {payload.get('name') or 'there'}, we received your payment of "
            f"{format_amount(payload.get('amount', 0))} (payment {payload.get('payment_id')}). "
            f"Your {(payload.get('appointment_type') or 'medical').replace('_', ' ')} appointment "
            f"at {payload.get('medical_center') or 'the medical center'} is confirmed.",
        )
    raise ValueError(f"Unknown notification template: {template}")


class ConsoleNotifier:
    """Development notifier: logs the message instead of delivering it."""

    async def send(self, identifier: str, channel: str, payload: dict) -> NotificationResult:
        subject, body = render_message(payload)
        logger.info(f"[{channel}] to {identifier}: {subject} | {body}")
        return NotificationResult(success=True, message_id=f"console-{uuid.uuid4().hex[:12]}")


class TwoFactorSmsNotifier:
    def __init__(
        self,
        api_key: str | None = None,
        template: str | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key or settings.TWOFACTOR_API_KEY
        self.template = template or settings.TWOFACTOR_TEMPLATE
        self.base_url = (base_url or settings.TWOFACTOR_API_URL).rstrip("/")
        self.transport = transport

    async def send(self, identifier: str, channel: str, payload: dict) -> NotificationResult:
        if not self.api_key:
            raise DeliveryFailed("SMS provider is not configured")
        if payload.get("template") != "otp":
            raise DeliveryFailed("Only OTP messages can be sent by SMS")

        phone = identifier.lstrip("+")
        url = f"{self.base_url}/{self.api_key}/SMS/{phone}/{payload['otp']}/{self.template}"
        try:
            async with httpx.AsyncClient(timeout=settings.PROVIDER_TIMEOUT_SECONDS, transport=self.transport) as client:
                response = await client.get(url)
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"2factor request failed for {identifier}: {e}")
            raise DeliveryFailed()

        if response.status_code != 200 or body.get("Status") != "Success":
            logger.error(f"2factor rejected OTP for {identifier}: {body.get('Details')}")
            raise DeliveryFailed()
        return NotificationResult(success=True, message_id=body.get("Details"))


class SmtpEmailNotifier:
    def __init__(self, host: str | None = None, port: int | None = None):
        self.host = host or settings.SMTP_HOST
        self.port = port or settings.SMTP_PORT

    def _deliver(self, message: EmailMessage):
        with smtplib.SMTP(self.host, self.port, timeout=30) as server:
            if settings.SMTP_STARTTLS:
                server.starttls()
            if settings.SMTP_USER:
                server.login(settings.SMTP_USER, settings.SMTP_PASSWORD or "")
            server.send_message(message)

    async def send(self, identifier: str, channel: str, payload: dict) -> NotificationResult:
        if not self.host:
            raise DeliveryFailed("Email delivery is not configured")

        subject, body = render_message(payload)
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = f"{settings.FROM_NAME} <{settings.FROM_EMAIL}>"
        message["To"] = identifier
        message_id = f"<{uuid.uuid4().hex}@{settings.FROM_EMAIL.split('@')[-1]}>"
        message["Message-ID"] = message_id
        message.set_content(body)

        try:
            await asyncio.to_thread(self._deliver, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP delivery to {identifier} failed: {e}")
            raise DeliveryFailed()
        return NotificationResult(success=True, message_id=message_id)


class ChannelRouter:
    def __init__(self, sms: Notifier, email: Notifier):
        self.routes = {"phone": sms, "email": email}

    async def send(self, identifier: str, channel: str, payload: dict) -> NotificationResult:
        notifier = self.routes.get(channel)
        if notifier is None:
            raise DeliveryFailed(f"Unsupported channel: {channel}")
        return await notifier.send(identifier, channel, payload)


def get_notifier() -> Notifier:
    if settings.NOTIFIER_BACKEND == "console":
        return ConsoleNotifier()
    return ChannelRouter(sms=TwoFactorSmsNotifier(), email=SmtpEmailNotifier())

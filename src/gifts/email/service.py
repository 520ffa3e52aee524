"""
Outgoing mail: verification codes and binding confirmations.

``EmailService`` renders a registered template and hands the result to the
configured provider (SMTP or the Resend API). When Redis is available each
recipient gets at most ``email_rate_limit_per_hour`` messages per hour.
"""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod
from email.message import EmailMessage
from email.utils import formataddr
from typing import TYPE_CHECKING, Any

import aiosmtplib
import httpx
import structlog

from gifts.config import Settings, get_settings
from gifts.email.templates import binding_confirm, reset_code, signup_code

if TYPE_CHECKING:
    from collections.abc import Callable

    from redis.asyncio import Redis

logger = structlog.get_logger()

RESEND_ENDPOINT = "https://api.resend.com/emails"
SMTP_TIMEOUT_SECONDS = 15
RESEND_TIMEOUT_SECONDS = 10.0

_TEMPLATE_REGISTRY: dict[str, Callable[..., tuple[str, str, str]]] = {
    "signup_code": signup_code,
    "reset_code": reset_code,
    "binding_confirm": binding_confirm,
}


class BaseEmailProvider(ABC):
    """Delivers one rendered message. ``send`` reports failure as ``False``."""

    name = "base"

    def __init__(self, from_address: str, from_name: str) -> None:
        self.from_header = formataddr((from_name, from_address))

    @abstractmethod
    async def send(self, to_email: str, subject: str, html_body: str, text_body: str) -> bool: ...


class SMTPProvider(BaseEmailProvider):
    name = "smtp"

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        from_address: str,
        from_name: str,
        use_tls: bool = True,
    ) -> None:
        super().__init__(from_address, from_name)
        self.host = host
        self.port = port
        self.username = username or None
        self.password = password or None
        self.use_tls = use_tls

    def build_message(self, to_email: str, subject: str, html_body: str, text_body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.from_header
        message["To"] = to_email
        message["Subject"] = subject
        message.set_content(text_body)
        message.add_alternative(html_body, subtype="html")
        return message

    async def send(self, to_email: str, subject: str, html_body: str, text_body: str) -> bool:
        message = self.build_message(to_email, subject, html_body, text_body)
        try:
            await aiosmtplib.send(
                message,
                hostname=self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                start_tls=self.use_tls,
                timeout=SMTP_TIMEOUT_SECONDS,
            )
        except (aiosmtplib.SMTPException, OSError):
            logger.exception("email_delivery_failed", to=to_email, provider=self.name)
            return False
        logger.info("email_delivered", to=to_email, subject=subject, provider=self.name)
        return True


class ResendProvider(BaseEmailProvider):
    name = "resend"

    def __init__(
        self,
        api_key: str,
        from_address: str,
        from_name: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(from_address, from_name)
        self.api_key = api_key
        self.transport = transport

    async def send(self, to_email: str, subject: str, html_body: str, text_body: str) -> bool:
        payload = {"from": self.from_header, "to": [to_email], "subject": subject, "html": html_body, "text": text_body}
        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=RESEND_TIMEOUT_SECONDS) as client:
                response = await client.post(
                    RESEND_ENDPOINT, headers={"Authorization": f"Bearer {self.api_key}"}, json=payload
                )
                response.raise_for_status()
        except httpx.HTTPError:
            logger.exception("email_delivery_failed", to=to_email, provider=self.name)
            return False
        logger.info("email_delivered", to=to_email, subject=subject, provider=self.name)
        return True


def provider_from_settings(settings: Settings) -> BaseEmailProvider:
    """Raises ``ValueError`` for a provider name other than ``smtp`` or ``resend``."""
    choice = settings.email_provider.strip().lower()
    if choice == SMTPProvider.name:
        return SMTPProvider(
            settings.smtp_host,
            settings.smtp_port,
            settings.smtp_username,
            settings.smtp_password,
            settings.email_from_address,
            settings.email_from_name,
            use_tls=settings.smtp_use_tls,
        )
    if choice == ResendProvider.name:
        return ResendProvider(settings.resend_api_key, settings.email_from_address, settings.email_from_name)
    msg = f"Unsupported email provider: {settings.email_provider}"
    raise ValueError(msg)


class EmailService:
    """Template rendering plus a per-recipient hourly cap in front of a provider."""

    WINDOW_SECONDS = 3600

    def __init__(
        self,
        provider: BaseEmailProvider | None = None,
        redis: Redis | None = None,
        rate_limit_per_hour: int | None = None,
    ) -> None:
        self.provider = provider or provider_from_settings(get_settings())
        self._redis = redis
        self.rate_limit_max = rate_limit_per_hour or get_settings().email_rate_limit_per_hour

    async def _within_quota(self, email: str) -> bool:
        if self._redis is None:
            return True
        key = "email_quota:" + hashlib.sha256(email.strip().lower().encode()).hexdigest()
        sent = await self._redis.incr(key)
        if sent == 1:
            await self._redis.expire(key, self.WINDOW_SECONDS)
        return sent <= self.rate_limit_max

    async def send_email(self, to: str, subject: str, html_body: str, text_body: str) -> bool:
        """False when the recipient is over quota or the provider failed."""
        if not await self._within_quota(to):
            logger.warning("email_quota_exceeded", to=to, subject=subject)
            return False
        return await self.provider.send(to, subject, html_body, text_body)

    async def send_template(self, to: str, template_name: str, context: dict[str, Any]) -> bool:
        """Render ``template_name`` with ``context`` and send it.

        Raises:
            ValueError: If no template is registered under ``template_name``.
        """
        render = _TEMPLATE_REGISTRY.get(template_name)
        if render is None:
            msg = f"Unknown template: {template_name}"
            raise ValueError(msg)
        subject, html_body, text_body = render(**context)
        return await self.send_email(to, subject, html_body, text_body)


_email_service: EmailService | None = None


def get_email_service(redis: Redis | None = None) -> EmailService:
    global _email_service  # noqa: PLW0603
    if _email_service is None:
        _email_service = EmailService(redis=redis)
    return _email_service


def reset_email_service() -> None:
    """Forget the process-wide service (for testing)."""
    global _email_service  # noqa: PLW0603
    _email_service = None

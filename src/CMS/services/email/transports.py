# src/CMS/services/email/transports.py
from __future__ import annotations

import asyncio
import smtplib
import ssl
import uuid
from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import parseaddr
from enum import Enum
from typing import Optional, Protocol, Sequence

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from CMS.app_logger import get_logger
from CMS.core.errors import UpstreamError

log = get_logger("email.transports")


class TransportKind(str, Enum):
    NONE = "none"          # log to console only
    SMTP = "smtp"
    HTTP_API = "http_api"


@dataclass(frozen=True)
class EmailConfig:
    transport: TransportKind = TransportKind.NONE
    sender: str = "CMS <no-reply@cms.local>"
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = field(default=None, repr=False)
    smtp_starttls: bool = True
    api_url: Optional[str] = None
    api_key: Optional[str] = field(default=None, repr=False)
    timeout_seconds: float = 20.0


@dataclass(frozen=True)
class OutgoingMessage:
    recipient: str
    subject: str
    html: str
    text: str
    cc: Sequence[str] = ()


class Transport(Protocol):
    kind: TransportKind

    async def deliver(self, message: OutgoingMessage) -> str:
        """Hand the message off and return the provider's delivery id."""
        ...


class ConsoleTransport:
    """Development transport: writes the rendered message to the log."""

    kind = TransportKind.NONE

    def __init__(self, config: EmailConfig):
        self.config = config

    async def deliver(self, message: OutgoingMessage) -> str:
        delivery_id = f"console-{uuid.uuid4().hex[:16]}"
        log.info(
            "email (console) id=%s from=%s to=%s cc=%s subject=%r\n%s",
            delivery_id,
            self.config.sender,
            message.recipient,
            ", ".join(message.cc) or "-",
            message.subject,
            message.text,
        )
        return delivery_id


class SmtpTransport:
    kind = TransportKind.SMTP

    def __init__(self, config: EmailConfig):
        if not config.smtp_host:
            raise ValueError("SmtpTransport requires smtp_host")
        self.config = config

    def _build(self, message: OutgoingMessage, message_id: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = message.subject
        msg["From"] = self.config.sender
        msg["To"] = message.recipient
        if message.cc:
            msg["Cc"] = ", ".join(message.cc)
        msg["Message-ID"] = message_id
        msg.set_content(message.text)
        msg.add_alternative(message.html, subtype="html")
        return msg

    def _send_blocking(self, msg: EmailMessage) -> None:
        cfg = self.config
        if cfg.smtp_port == 465:
            context = ssl.create_default_context()
            with smtplib.SMTP_SSL(cfg.smtp_host, cfg.smtp_port, context=context, timeout=cfg.timeout_seconds) as s:
                if cfg.smtp_user and cfg.smtp_password:
                    s.login(cfg.smtp_user, cfg.smtp_password)
                s.send_message(msg)
            return
        with smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=cfg.timeout_seconds) as s:
            s.ehlo()
            if cfg.smtp_starttls:
                s.starttls(context=ssl.create_default_context())
                s.ehlo()
            if cfg.smtp_user and cfg.smtp_password:
                s.login(cfg.smtp_user, cfg.smtp_password)
            s.send_message(msg)

    async def deliver(self, message: OutgoingMessage) -> str:
        domain = parseaddr(self.config.sender)[1].partition("@")[2] or "cms.local"
        message_id = f"<{uuid.uuid4().hex}@{domain}>"
        msg = self._build(message, message_id)
        try:
            await asyncio.to_thread(self._send_blocking, msg)
        except (smtplib.SMTPException, OSError) as e:
            raise UpstreamError("smtp", detail=e, message="Email delivery failed", cause=e) from e
        return message_id


class HttpApiTransport:
    """
    Generic transactional-email HTTP API.

    POSTs ``{from, to, cc, subject, html, text}`` as JSON with a bearer key and
    reads the delivery id from ``id`` or ``message_id`` in the response.
    """

    kind = TransportKind.HTTP_API

    def __init__(self, config: EmailConfig, client: Optional[httpx.AsyncClient] = None):
        if not (config.api_url and config.api_key):
            raise ValueError("HttpApiTransport requires api_url and api_key")
        self.config = config
        self._client = client

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=0.5, max=3),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _post(self, payload: dict) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self.config.api_key}"}
        if self._client is not None:
            return await self._client.post(self.config.api_url, json=payload, headers=headers)
        async with httpx.AsyncClient(timeout=self.config.timeout_seconds) as client:
            return await client.post(self.config.api_url, json=payload, headers=headers)

    async def deliver(self, message: OutgoingMessage) -> str:
        payload = {
            "from": self.config.sender,
            "to": [message.recipient],
            "cc": list(message.cc),
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
        }
        try:
            r = await self._post(payload)
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise UpstreamError(
                "email_api",
                detail=f"{e.response.status_code}: {e.response.text[:500]}",
                message="Email delivery failed",
                cause=e,
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamError("email_api", detail=e, message="Email delivery failed", cause=e) from e

        try:
            body = r.json()
        except ValueError:
            body = {}
        delivery_id = body.get("id") or body.get("message_id") if isinstance(body, dict) else None
        return str(delivery_id or f"api-{uuid.uuid4().hex[:16]}")


def build_transport(config: EmailConfig) -> Transport:
    if config.transport is TransportKind.SMTP:
        return SmtpTransport(config)
    if config.transport is TransportKind.HTTP_API:
        return HttpApiTransport(config)
    return ConsoleTransport(config)


__all__ = [
    "TransportKind",
    "EmailConfig",
    "OutgoingMessage",
    "Transport",
    "ConsoleTransport",
    "SmtpTransport",
    "HttpApiTransport",
    "build_transport",
]

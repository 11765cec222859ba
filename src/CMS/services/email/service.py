# src/CMS/services/email/service.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional

from CMS.app_logger import get_logger
from CMS.core.errors import ValidationError
from CMS.services.email.templates import render
from CMS.services.email.transports import (
    EmailConfig,
    OutgoingMessage,
    Transport,
    TransportKind,
    build_transport,
)

log = get_logger("email.service")


@dataclass(frozen=True)
class SendResult:
    delivery_id: str
    transport: TransportKind


def normalize_address(address: Optional[str]) -> str:
    return (address or "").strip().lower()


def normalize_cc(addresses: Optional[Iterable[str]], exclude: Optional[str] = None) -> List[str]:
    """Trim, lower-case and de-duplicate CC addresses; drop blanks and ``exclude``."""
    skip = normalize_address(exclude)
    out: List[str] = []
    for raw in addresses or ():
        addr = normalize_address(raw)
        if not addr or addr == skip or addr in out:
            continue
        out.append(addr)
    return out


class EmailService:
    """
    Renders a named template and hands it to the configured transport.

    The transport is chosen once from ``EmailConfig`` at construction.
    """

    def __init__(self, config: EmailConfig, transport: Optional[Transport] = None):
        self.config = config
        self.transport = transport or build_transport(config)

    @property
    def kind(self) -> TransportKind:
        return self.transport.kind

    async def send(
        self,
        recipient: str,
        template: str,
        data: Mapping[str, Any],
        cc: Optional[Iterable[str]] = None,
    ) -> SendResult:
        to = normalize_address(recipient)
        if not to or "@" not in to:
            raise ValidationError("A valid recipient address is required", field="recipient")

        rendered = render(template, data)
        message = OutgoingMessage(
            recipient=to,
            subject=rendered.subject,
            html=rendered.html,
            text=rendered.text,
            cc=tuple(normalize_cc(cc, exclude=to)),
        )
        delivery_id = await self.transport.deliver(message)
        log.info("email sent template=%s to=%s cc=%d via=%s id=%s",
                 template, to, len(message.cc), self.kind.value, delivery_id)
        return SendResult(delivery_id=delivery_id, transport=self.kind)

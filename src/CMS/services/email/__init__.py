from .service import EmailService, SendResult, normalize_cc
from .templates import RenderedEmail, render
from .transports import EmailConfig, TransportKind

__all__ = [
    "EmailService",
    "SendResult",
    "normalize_cc",
    "RenderedEmail",
    "render",
    "EmailConfig",
    "TransportKind",
]

"""
CMS exception hierarchy.

Every domain failure raised by services and routers derives from ``CMSError``
so the API layer can render a consistent error body:

    {"detail": {"error": <error_code>, "message": <message>}}

Upstream failures (OAuth providers, email transports, object storage) keep the
provider detail in ``context`` for logging only; callers receive the generic
message.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional


class CMSError(Exception):
    """
    Base exception class for all CMS errors.

    Attributes
    ----------
    message : str
        Human-readable error message (safe to show to API clients)
    error_code : str
        Machine-readable error code for categorization
    status_code : int
        HTTP status the API layer responds with
    context : Dict[str, Any]
        Additional error context, logged but never returned to clients
    """

    status_code: int = 400
    default_code: str = "cms_error"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        if status_code is not None:
            self.status_code = status_code
        self.context = dict(context or {})
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Structured error data for logging."""
        return {
            "message": self.message,
            "error_code": self.error_code,
            "status_code": self.status_code,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
            "exception_type": self.__class__.__name__,
        }

    def to_response(self) -> Dict[str, Any]:
        return {"detail": {"error": self.error_code, "message": self.message}}

    def __str__(self) -> str:
        return f"{self.__class__.__name__}: {self.message}"


class ValidationError(CMSError):
    """Malformed or missing input, or an illegal state transition."""

    status_code = 400
    default_code = "validation_error"

    def __init__(self, message: str, field: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.field = field
        if field:
            self.context["field"] = field

    def to_response(self) -> Dict[str, Any]:
        body = super().to_response()
        if self.field:
            body["detail"]["field"] = self.field
        return body


class NotFoundError(CMSError):
    status_code = 404
    default_code = "not_found"

    def __init__(self, entity: str, entity_id: Any = None, **kwargs: Any) -> None:
        message = f"{entity} not found"
        super().__init__(message, **kwargs)
        self.context.update({"entity": entity, "entity_id": str(entity_id) if entity_id else None})


class AuthenticationError(CMSError):
    status_code = 401
    default_code = "not_authenticated"


class AuthorizationError(CMSError):
    """Role or ownership mismatch."""

    status_code = 403
    default_code = "forbidden"


class ConflictError(CMSError):
    status_code = 409
    default_code = "conflict"


class UpstreamError(CMSError):
    """
    Third-party provider failure (OAuth, email transport, storage).

    The provider name and raw detail go into ``context``; the client-facing
    message stays generic.
    """

    status_code = 502
    default_code = "upstream_error"

    def __init__(self, provider: str, detail: Any = None, message: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message or f"{provider} request failed", **kwargs)
        self.provider = provider
        self.context.update({"provider": provider, "detail": str(detail) if detail is not None else None})


__all__ = [
    "CMSError",
    "ValidationError",
    "NotFoundError",
    "AuthenticationError",
    "AuthorizationError",
    "ConflictError",
    "UpstreamError",
]

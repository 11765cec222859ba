# src/CMS/auth/tokens.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from CMS.core.config import settings
from CMS.core.errors import AuthenticationError


def _now() -> datetime:
    return datetime.now(timezone.utc)


def create_access_token(user_id: Any, email: str, role: str, expires_minutes: Optional[int] = None) -> str:
    now = _now()
    claims = {
        "sub": str(user_id),
        "email": email,
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=expires_minutes or settings.JWT_EXPIRES_MINUTES)).timestamp()),
    }
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError as e:
        raise AuthenticationError("Token expired", error_code="token_expired", cause=e) from e
    except JWTError as e:
        raise AuthenticationError("Invalid token", error_code="invalid_token", cause=e) from e

# src/CMS/auth/deps.py
from __future__ import annotations

import uuid
from typing import Callable, Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from CMS.app_logger import get_logger
from CMS.auth.tokens import decode_access_token
from CMS.core.errors import AuthenticationError, AuthorizationError
from CMS.db.models.enums import Role
from CMS.db.models.users import User
from CMS.db.session import get_db

log = get_logger("auth.deps")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


async def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    session: AsyncSession = Depends(get_db),
) -> Optional[User]:
    """Resolve the bearer token to a user, or ``None`` when no token is sent."""
    if not token:
        return None
    claims = decode_access_token(token)
    try:
        user_id = uuid.UUID(str(claims.get("sub")))
    except ValueError as e:
        raise AuthenticationError("Invalid token", error_code="invalid_token", cause=e) from e
    user = await session.get(User, user_id)
    if user is None:
        raise AuthenticationError("User not found", error_code="invalid_token")
    return user


async def require_auth(user: Optional[User] = Depends(get_current_user)) -> User:
    if user is None:
        raise AuthenticationError("No token, authorization denied")
    return user


def require_roles(*roles: Role | str) -> Callable:
    allowed = {r.value if isinstance(r, Role) else r for r in roles}

    async def _dep(user: User = Depends(require_auth)) -> User:
        if user.role not in allowed:
            log.info("user %s with role %s denied (needs %s)", user.id, user.role, sorted(allowed))
            raise AuthorizationError(f"Access denied. Required role: {' or '.join(sorted(allowed))}")
        return user

    return _dep


require_organizer = require_roles(Role.ORGANIZER)
require_author = require_roles(Role.AUTHOR)
require_reviewer = require_roles(Role.REVIEWER)

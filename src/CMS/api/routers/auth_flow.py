# src/CMS/api/routers/auth_flow.py
from __future__ import annotations

from typing import Callable, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from CMS.api.deps import get_oauth_factory, get_outbox
from CMS.app_logger import get_logger
from CMS.auth.deps import require_auth
from CMS.auth.passwords import hash_password, verify_password
from CMS.auth.tokens import create_access_token
from CMS.core.config import settings
from CMS.core.errors import AuthenticationError, AuthorizationError, ValidationError
from CMS.db.models.enums import IdentityProvider, Role
from CMS.db.models.users import IdentityLink, User
from CMS.db.session import get_db
from CMS.schemas.users import (
    AuthResponse,
    LoginRequest,
    OAuthCallbackRequest,
    ProfileUpdate,
    RegisterRequest,
    UserRead,
)
from CMS.services.account_linking import LinkAction, decide_link, decide_registration
from CMS.services.oauth_providers import OAuthProfile
from CMS.services.outbox import OutboundQueue

log = get_logger("auth_flow")
router = APIRouter(prefix="/api/auth", tags=["auth"])


def _mask_email(email: Optional[str]) -> str:
    if not email:
        return ""
    try:
        user, domain = email.split("@", 1)
        head = user[:2]
        tail = user[-1:] if len(user) > 2 else ""
        return f"{head}***{tail}@{domain}"
    except ValueError:
        return "***"


def _auth_response(user: User, is_new_user: bool = False) -> AuthResponse:
    token = create_access_token(user.id, user.email, user.role)
    return AuthResponse(user=UserRead.from_user(user), token=token, is_new_user=is_new_user)


def _welcome(queue: OutboundQueue, user: User) -> None:
    queue.enqueue(user.email, "welcome", {
        "name": user.name,
        "role": user.role,
        "dashboard_url": f"{settings.PUBLIC_URL.rstrip('/')}/{user.role}",
    })


async def _user_by_email(session: AsyncSession, email: str) -> Optional[User]:
    return await session.scalar(select(User).where(User.email == email.strip().lower()))


# ---- password auth -----------------------------------------------------------

@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(
    body: RegisterRequest,
    session: AsyncSession = Depends(get_db),
    queue: OutboundQueue = Depends(get_outbox),
) -> AuthResponse:
    if len(body.password) < settings.PASSWORD_MIN_LENGTH:
        raise ValidationError(
            f"Password must be at least {settings.PASSWORD_MIN_LENGTH} characters", field="password"
        )

    email = body.email.strip().lower()
    existing = await _user_by_email(session, email)
    rejection = decide_registration(existing.role if existing else None, body.role)
    if rejection:
        log.info("registration refused for %s: existing account", _mask_email(email))
        raise ValidationError(rejection, error_code="email_in_use", field="email")

    user = User(
        name=body.name,
        email=email,
        password_hash=hash_password(body.password),
        role=body.role.value,
        affiliation=body.affiliation,
        expertise_domains=list(body.expertise_domains),
        identities=[],
    )
    session.add(user)
    await session.flush()
    _welcome(queue, user)
    await session.commit()
    log.info("registered %s as %s", _mask_email(email), user.role)
    return _auth_response(user, is_new_user=True)


@router.post("/login", response_model=AuthResponse)
async def login(body: LoginRequest, session: AsyncSession = Depends(get_db)) -> AuthResponse:
    user = await _user_by_email(session, body.email)
    if user is None or not verify_password(body.password, user.password_hash):
        raise AuthenticationError("Invalid credentials", error_code="invalid_credentials")
    return _auth_response(user)


@router.get("/me", response_model=UserRead)
async def me(user: User = Depends(require_auth)) -> UserRead:
    return UserRead.from_user(user)


@router.put("/profile", response_model=UserRead)
async def update_profile(
    body: ProfileUpdate,
    user: User = Depends(require_auth),
    session: AsyncSession = Depends(get_db),
) -> UserRead:
    if body.name is not None:
        user.name = body.name.strip()
    if body.affiliation is not None:
        user.affiliation = body.affiliation.strip() or None
    if body.expertise_domains is not None:
        user.expertise_domains = [d.strip() for d in body.expertise_domains if d and d.strip()]
    await session.commit()
    return UserRead.from_user(user)


# ---- OAuth callbacks ---------------------------------------------------------

def _subject_label(provider: IdentityProvider) -> str:
    return "ORCID" if provider is IdentityProvider.ORCID else "email"


def _store_tokens(link: IdentityLink, profile: OAuthProfile) -> None:
    link.access_token = profile.access_token
    # Google only returns a refresh token on first consent; keep the old one otherwise
    if profile.refresh_token:
        link.refresh_token = profile.refresh_token


def _fill_profile(user: User, profile: OAuthProfile) -> None:
    if profile.picture and not user.profile_picture:
        user.profile_picture = profile.picture
    if profile.affiliation:
        user.affiliation = profile.affiliation


async def link_oauth_login(
    session: AsyncSession,
    queue: OutboundQueue,
    profile: OAuthProfile,
    requested_role: Optional[Role],
) -> tuple[User, bool]:
    """Map a verified provider profile to an account. Returns ``(user, created)``."""
    provider = profile.provider
    label = _subject_label(provider)

    link = await session.scalar(
        select(IdentityLink).where(
            IdentityLink.provider == provider.value,
            IdentityLink.subject == profile.subject,
        )
    )
    if link is not None:
        user = await session.get(User, link.user_id)
        if requested_role is not None:
            decision = decide_link(user.role, requested_role)
            if decision.rejected:
                raise AuthorizationError(decision.message(label), error_code=decision.reason.value)
            if decision.action is LinkAction.SWITCH_ROLE:
                log.info("user %s switching role %s -> %s", user.id, user.role, decision.role)
                user.role = decision.role
        _store_tokens(link, profile)
        return user, False

    existing = await _user_by_email(session, profile.email)
    if existing is None:
        role = requested_role or Role.AUTHOR
    else:
        # no role asked for: keep the account's current one
        role = requested_role or existing.role
    decision = decide_link(existing.role if existing else None, role)
    if decision.rejected:
        log.info("%s login refused for %s: %s", provider.value, _mask_email(profile.email), decision.reason.value)
        raise AuthorizationError(decision.message(label), error_code=decision.reason.value)

    if existing is not None:
        if decision.action is LinkAction.SWITCH_ROLE:
            existing.role = decision.role
        _fill_profile(existing, profile)
        # one identity per provider: a new subject for the same email replaces the old one
        link = existing.identity(provider)
        if link is None:
            link = IdentityLink(provider=provider.value, subject=profile.subject)
            existing.identities.append(link)
        link.subject = profile.subject
        _store_tokens(link, profile)
        return existing, False

    link = IdentityLink(provider=provider.value, subject=profile.subject)
    _store_tokens(link, profile)

    user = User(
        name=profile.name,
        email=profile.email,
        role=decision.role,
        expertise_domains=[],
        identities=[link],
    )
    _fill_profile(user, profile)
    session.add(user)
    await session.flush()
    _welcome(queue, user)
    return user, True


@router.post("/{provider}/callback", response_model=AuthResponse)
async def oauth_callback(
    provider: IdentityProvider,
    body: OAuthCallbackRequest,
    session: AsyncSession = Depends(get_db),
    queue: OutboundQueue = Depends(get_outbox),
    oauth_factory: Callable = Depends(get_oauth_factory),
) -> AuthResponse:
    client = oauth_factory(provider)
    profile = await client.authenticate(body.code)
    user, created = await link_oauth_login(session, queue, profile, body.role)
    await session.commit()
    log.info("%s login ok for %s (new=%s)", provider.value, _mask_email(user.email), created)
    return _auth_response(user, is_new_user=created)

# src/CMS/tests/conftest.py
from __future__ import annotations

import os
import sys
import logging
import tempfile
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, List, Mapping, Optional

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# ==============================================================
# Env bootstrap (must run before CMS.core.config is imported)
# ==============================================================
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("CMS_SCHEDULER_ENABLED", "0")
os.environ.setdefault("CMS_OUTBOX_ENABLED", "0")
os.environ.setdefault("CMS_UPLOAD_DIR", tempfile.mkdtemp(prefix="cms-uploads-"))
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("EMAIL_TRANSPORT", "none")

from CMS.api.deps import get_oauth_factory  # noqa: E402
from CMS.auth.passwords import hash_password  # noqa: E402
from CMS.auth.tokens import create_access_token  # noqa: E402
from CMS.db.models import Base, Conference, Track, User  # noqa: E402
from CMS.db.session import get_db  # noqa: E402
from CMS.main import create_app  # noqa: E402


# =========================
# Logging -> stdout
# =========================
@pytest.fixture(scope="session", autouse=True)
def _tests_log_to_stdout():
    root = logging.getLogger()
    if not any(isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stdout
               for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        root.addHandler(handler)
    root.setLevel(os.getenv("TEST_LOG_LEVEL", "INFO").upper())


# Make anyio run on asyncio (so our async fixtures work everywhere)
@pytest.fixture(scope="session", autouse=True)
def anyio_backend():
    return "asyncio"


# ==============================================================
# Database: one in-memory SQLite per test
# ==============================================================

@pytest.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield eng
    finally:
        await eng.dispose()


@pytest.fixture
def sessionmaker(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def session(sessionmaker):
    async with sessionmaker() as s:
        yield s


# ==============================================================
# Fakes
# ==============================================================

class RecordingQueue:
    """OutboundQueue that keeps messages in memory."""

    def __init__(self):
        self.messages: List[dict] = []

    def enqueue(self, recipient: str, template: str, data: Mapping[str, Any],
                cc: Optional[Iterable[str]] = None):
        msg = {"recipient": recipient, "template": template, "data": dict(data), "cc": list(cc or [])}
        self.messages.append(msg)
        return msg

    def to(self, recipient: str) -> List[dict]:
        return [m for m in self.messages if m["recipient"] == recipient]


@pytest.fixture
def queue() -> RecordingQueue:
    return RecordingQueue()


class FakeOAuthClient:
    def __init__(self, profiles: dict, error: Optional[Exception] = None):
        self.profiles = profiles
        self.error = error

    async def authenticate(self, code: str):
        if self.error is not None:
            raise self.error
        return self.profiles[code]


@pytest.fixture
def oauth_profiles() -> dict:
    """``code -> OAuthProfile`` handed out by the fake providers; tests fill it in."""
    return {}


@pytest.fixture
def oauth_errors() -> dict:
    """``provider value -> exception`` raised instead of returning a profile."""
    return {}


# ==============================================================
# Client fixture (in-process app on the per-test database)
# ==============================================================

@pytest.fixture
async def app(sessionmaker, oauth_profiles, oauth_errors):
    application = create_app(start_background=False, configure_logging=False)

    async def _get_db():
        async with sessionmaker() as s:
            try:
                yield s
            except Exception:
                await s.rollback()
                raise

    def _oauth_factory():
        return lambda provider: FakeOAuthClient(oauth_profiles, oauth_errors.get(provider.value))

    application.dependency_overrides[get_db] = _get_db
    application.dependency_overrides[get_oauth_factory] = _oauth_factory
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac


# ==============================================================
# Data factories
# ==============================================================

def _auth_headers(user: User) -> dict:
    token = create_access_token(user.id, user.email, user.role)
    return {"Authorization": f"Bearer {token}", "Accept": "application/json"}


@pytest.fixture
def make_user(sessionmaker):
    async def _make(role: str = "author", email: Optional[str] = None, name: Optional[str] = None,
                    password: Optional[str] = None, expertise: Optional[list] = None) -> User:
        async with sessionmaker() as s:
            user = User(
                name=name or f"{role.title()} User",
                email=(email or f"{role}-{os.urandom(3).hex()}@example.com").lower(),
                role=role,
                password_hash=hash_password(password, rounds=1000) if password else None,
                expertise_domains=list(expertise or []),
                identities=[],
            )
            s.add(user)
            await s.commit()
            return user
    return _make


@pytest.fixture
def make_conference(sessionmaker):
    async def _make(organizer: User, name: str = "PyConf", start: Optional[datetime] = None,
                    end: Optional[datetime] = None, tracks: Iterable[str] = ("Main",)) -> Conference:
        start = start or datetime.now(timezone.utc) + timedelta(days=30)
        async with sessionmaker() as s:
            conference = Conference(
                name=name,
                organizer_id=organizer.id,
                start_date=start,
                end_date=end,
                tracks=[Track(name=t) for t in tracks],
            )
            s.add(conference)
            await s.commit()
            return conference
    return _make


@pytest.fixture
def auth_headers():
    """``auth_headers(user)`` -> bearer headers for ``user``."""
    return _auth_headers

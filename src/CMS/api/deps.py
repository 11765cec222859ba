# src/CMS/api/deps.py
from __future__ import annotations

from typing import Callable

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from CMS.core.config import settings
from CMS.db.models.enums import IdentityProvider
from CMS.db.session import get_db
from CMS.services.oauth_providers import build_oauth_client
from CMS.services.outbox import Outbox, OutboundQueue
from CMS.services.storage import StorageBackend, build_storage


def get_outbox(session: AsyncSession = Depends(get_db)) -> OutboundQueue:
    return Outbox(session)


def get_storage(request: Request) -> StorageBackend:
    storage = getattr(request.app.state, "storage", None)
    if storage is None:
        storage = build_storage(settings)
        request.app.state.storage = storage
    return storage


def get_oauth_factory() -> Callable[[IdentityProvider], object]:
    """Returns ``provider -> client``; overridden in tests."""
    return lambda provider: build_oauth_client(provider, settings)

# src/CMS/api/routers/public.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from CMS.db.models import Conference, Review, Submission, User
from CMS.db.session import get_db
from CMS.schemas.public import PublicStats

router = APIRouter(prefix="/api/public", tags=["public"])


@router.get("/stats", response_model=PublicStats)
async def public_stats(session: AsyncSession = Depends(get_db)) -> PublicStats:
    """Platform-wide counts for the landing page. No authentication."""
    counts = {}
    for key, model in (("conferences", Conference), ("users", User),
                       ("submissions", Submission), ("reviews", Review)):
        counts[key] = await session.scalar(select(func.count(model.id))) or 0
    return PublicStats(**counts)

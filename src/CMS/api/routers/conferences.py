# src/CMS/api/routers/conferences.py
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from CMS.auth.deps import require_organizer
from CMS.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from CMS.db.base import as_utc
from CMS.db.models.conferences import Conference, Track
from CMS.db.models.users import User
from CMS.db.session import get_db
from CMS.schemas.conferences import (
    ConferenceCreate,
    ConferenceRead,
    ConferenceUpdate,
    TrackCreate,
    TrackRead,
)

router = APIRouter(prefix="/api/conferences", tags=["conferences"])


async def get_conference(session: AsyncSession, conference_id: uuid.UUID) -> Conference:
    conference = await session.get(Conference, conference_id)
    if conference is None:
        raise NotFoundError("Conference", conference_id)
    return conference


async def get_owned_conference(session: AsyncSession, conference_id: uuid.UUID, user: User) -> Conference:
    conference = await get_conference(session, conference_id)
    if conference.organizer_id != user.id:
        raise AuthorizationError("Not authorized to manage this conference")
    return conference


@router.post("", response_model=ConferenceRead, status_code=status.HTTP_201_CREATED)
async def create_conference(
    body: ConferenceCreate,
    user: User = Depends(require_organizer),
    session: AsyncSession = Depends(get_db),
) -> ConferenceRead:
    names = [t.name.strip() for t in body.tracks]
    if len(set(n.lower() for n in names)) != len(names):
        raise ConflictError("Track names must be unique within a conference", error_code="duplicate_track")

    conference = Conference(
        name=body.name.strip(),
        description=body.description,
        venue=body.venue,
        start_date=body.start_date,
        end_date=body.end_date,
        organizer_id=user.id,
        organizer=user,
        tracks=[Track(name=t.name.strip(), description=t.description) for t in body.tracks],
    )
    session.add(conference)
    await session.commit()
    return ConferenceRead.model_validate(conference)


@router.get("", response_model=list[ConferenceRead])
async def list_conferences(session: AsyncSession = Depends(get_db)) -> list[ConferenceRead]:
    rows = await session.scalars(select(Conference).order_by(Conference.start_date.desc()))
    return [ConferenceRead.model_validate(c) for c in rows.unique().all()]


@router.get("/{conference_id}", response_model=ConferenceRead)
async def read_conference(conference_id: uuid.UUID, session: AsyncSession = Depends(get_db)) -> ConferenceRead:
    return ConferenceRead.model_validate(await get_conference(session, conference_id))


@router.put("/{conference_id}", response_model=ConferenceRead)
async def update_conference(
    conference_id: uuid.UUID,
    body: ConferenceUpdate,
    user: User = Depends(require_organizer),
    session: AsyncSession = Depends(get_db),
) -> ConferenceRead:
    conference = await get_owned_conference(session, conference_id, user)
    for field, value in body.model_dump(exclude_unset=True).items():
        setattr(conference, field, value)
    if conference.end_date is not None and as_utc(conference.end_date) < as_utc(conference.start_date):
        raise ValidationError("end_date must not be before start_date", field="end_date")
    await session.commit()
    return ConferenceRead.model_validate(conference)


@router.get("/{conference_id}/tracks", response_model=list[TrackRead])
async def list_tracks(conference_id: uuid.UUID, session: AsyncSession = Depends(get_db)) -> list[TrackRead]:
    conference = await get_conference(session, conference_id)
    return [TrackRead.model_validate(t) for t in conference.tracks]


@router.post("/{conference_id}/tracks", response_model=TrackRead, status_code=status.HTTP_201_CREATED)
async def add_track(
    conference_id: uuid.UUID,
    body: TrackCreate,
    user: User = Depends(require_organizer),
    session: AsyncSession = Depends(get_db),
) -> TrackRead:
    conference = await get_owned_conference(session, conference_id, user)
    name = body.name.strip()
    if any(t.name.lower() == name.lower() for t in conference.tracks):
        raise ConflictError(f"Track '{name}' already exists", error_code="duplicate_track")
    track = Track(name=name, description=body.description)
    conference.tracks.append(track)
    await session.commit()
    return TrackRead.model_validate(track)

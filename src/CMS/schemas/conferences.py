from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import Field, model_validator

from CMS.schemas.base import APIModel


class TrackBase(APIModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None


class TrackCreate(TrackBase): ...


class TrackRead(TrackBase):
    id: uuid.UUID
    conference_id: uuid.UUID


class ConferenceBase(APIModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    venue: Optional[str] = None
    start_date: datetime
    end_date: Optional[datetime] = None

    @model_validator(mode="after")
    def _check_dates(self):
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class ConferenceCreate(ConferenceBase):
    tracks: List[TrackCreate] = Field(default_factory=list)


class ConferenceUpdate(APIModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    venue: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class ConferenceRead(ConferenceBase):
    id: uuid.UUID
    organizer_id: uuid.UUID
    tracks: List[TrackRead] = Field(default_factory=list)
    created_at: Optional[datetime] = None

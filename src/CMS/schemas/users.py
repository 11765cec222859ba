from __future__ import annotations

import uuid
from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import EmailStr, Field, field_validator

from CMS.db.models.enums import Role
from CMS.schemas.base import APIModel


class GoogleIdentity(APIModel):
    provider: Literal["google"] = "google"
    subject: str
    has_refresh_token: bool = False


class OrcidIdentity(APIModel):
    provider: Literal["orcid"] = "orcid"
    subject: str

    @property
    def orcid(self) -> str:
        return self.subject


Identity = Annotated[Union[GoogleIdentity, OrcidIdentity], Field(discriminator="provider")]


def identity_out(link) -> Union[GoogleIdentity, OrcidIdentity]:
    if link.provider == "google":
        return GoogleIdentity(subject=link.subject, has_refresh_token=bool(link.refresh_token))
    return OrcidIdentity(subject=link.subject)


class UserRead(APIModel):
    id: uuid.UUID
    name: str
    email: str
    role: Role
    affiliation: Optional[str] = None
    profile_picture: Optional[str] = None
    expertise_domains: List[str] = Field(default_factory=list)
    identities: List[Identity] = Field(default_factory=list)
    created_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user) -> "UserRead":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            role=user.role,
            affiliation=user.affiliation,
            profile_picture=user.profile_picture,
            expertise_domains=list(user.expertise_domains or []),
            identities=[identity_out(i) for i in user.identities],
            created_at=user.created_at,
        )


class UserBrief(APIModel):
    id: uuid.UUID
    name: str
    email: str
    affiliation: Optional[str] = None


class RegisterRequest(APIModel):
    name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    password: str
    role: Role = Role.AUTHOR
    affiliation: Optional[str] = None
    expertise_domains: List[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name is required")
        return v


class LoginRequest(APIModel):
    email: EmailStr
    password: str = Field(min_length=1)


class ProfileUpdate(APIModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    affiliation: Optional[str] = None
    expertise_domains: Optional[List[str]] = None


class OAuthCallbackRequest(APIModel):
    code: str = Field(min_length=1)
    role: Optional[Role] = None


class AuthResponse(APIModel):
    user: UserRead
    token: str
    is_new_user: bool = False

# src/CMS/tests/test_api_auth.py
from __future__ import annotations

import pytest
from sqlalchemy import select

from CMS.core.errors import ValidationError
from CMS.db.models import OutboundEmail, User
from CMS.db.models.enums import IdentityProvider
from CMS.services.oauth_providers import CODE_REJECTED_MESSAGE, OAuthProfile, orcid_email

pytestmark = pytest.mark.anyio


def _google(email: str, subject: str = "g-1", name: str = "Gina") -> OAuthProfile:
    return OAuthProfile(provider=IdentityProvider.GOOGLE, subject=subject, email=email, name=name,
                        access_token="at", refresh_token="rt")


async def _outbox(sessionmaker):
    async with sessionmaker() as s:
        return (await s.scalars(select(OutboundEmail).order_by(OutboundEmail.created_at))).all()


# ---- password auth -----------------------------------------------------------

async def test_register_login_me(client, sessionmaker):
    r = await client.post("/api/auth/register", json={
        "name": "Ann Author", "email": "Ann@Example.com", "password": "secret1", "role": "author",
    })
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["is_new_user"] is True
    assert body["user"]["email"] == "ann@example.com"
    assert body["user"]["role"] == "author"

    (welcome,) = await _outbox(sessionmaker)
    assert welcome.template == "welcome"
    assert welcome.recipient == "ann@example.com"

    r = await client.post("/api/auth/login", json={"email": "ann@example.com", "password": "secret1"})
    assert r.status_code == 200
    token = r.json()["token"]

    r = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200
    assert r.json()["name"] == "Ann Author"


async def test_login_with_wrong_password(client, make_user):
    await make_user("author", email="bob@example.com", password="right-one")
    r = await client.post("/api/auth/login", json={"email": "bob@example.com", "password": "wrong-one"})
    assert r.status_code == 401
    assert r.json()["detail"]["message"] == "Invalid credentials"


async def test_register_short_password(client):
    r = await client.post("/api/auth/register", json={
        "name": "Short", "email": "short@example.com", "password": "123",
    })
    assert r.status_code == 400
    assert r.json()["detail"]["field"] == "password"


@pytest.mark.parametrize(
    "existing, requested, fragment",
    [
        ("organizer", "author", "already registered as an organizer"),
        ("author", "organizer", "Organizers must use a unique email"),
        ("author", "author", "Please login instead"),
        ("author", "reviewer", "Please login to access different roles"),
    ],
)
async def test_register_conflicts(client, make_user, existing, requested, fragment):
    await make_user(existing, email="taken@example.com")
    r = await client.post("/api/auth/register", json={
        "name": "Dup", "email": "taken@example.com", "password": "secret1", "role": requested,
    })
    assert r.status_code == 400
    assert fragment in r.json()["detail"]["message"]


async def test_me_requires_token(client):
    r = await client.get("/api/auth/me")
    assert r.status_code == 401

    r = await client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401
    assert r.json()["detail"]["error"] == "invalid_token"


async def test_update_profile(client, make_user, auth_headers):
    user = await make_user("reviewer")
    r = await client.put("/api/auth/profile", headers=auth_headers(user), json={
        "affiliation": "  Uni  ", "expertise_domains": ["NLP", " ", "Graphs"],
    })
    assert r.status_code == 200
    assert r.json()["affiliation"] == "Uni"
    assert r.json()["expertise_domains"] == ["NLP", "Graphs"]


# ---- OAuth -------------------------------------------------------------------

async def test_google_login_creates_account(client, oauth_profiles, sessionmaker):
    oauth_profiles["c1"] = _google("gina@example.com")
    r = await client.post("/api/auth/google/callback", json={"code": "c1", "role": "reviewer"})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["is_new_user"] is True
    assert body["user"]["role"] == "reviewer"
    assert body["user"]["identities"] == [
        {"provider": "google", "subject": "g-1", "has_refresh_token": True}
    ]
    assert [e.template for e in await _outbox(sessionmaker)] == ["welcome"]

    # same identity again: reused, no second welcome
    r = await client.post("/api/auth/google/callback", json={"code": "c1"})
    assert r.json()["is_new_user"] is False
    assert len(await _outbox(sessionmaker)) == 1


async def test_google_login_switches_shared_role(client, make_user, oauth_profiles, sessionmaker):
    await make_user("author", email="gina@example.com")
    oauth_profiles["c1"] = _google("gina@example.com")
    r = await client.post("/api/auth/google/callback", json={"code": "c1", "role": "reviewer"})
    assert r.status_code == 200
    assert r.json()["user"]["role"] == "reviewer"
    assert r.json()["is_new_user"] is False

    async with sessionmaker() as s:
        users = (await s.scalars(select(User))).all()
    assert len(users) == 1
    assert users[0].role == "reviewer"


async def test_google_login_rejects_organizer_email_for_author(client, make_user, oauth_profiles):
    await make_user("organizer", email="olga@example.com")
    oauth_profiles["c1"] = _google("olga@example.com")
    r = await client.post("/api/auth/google/callback", json={"code": "c1", "role": "author"})
    assert r.status_code == 403
    assert r.json()["detail"]["message"] == (
        "This email is already registered as an organizer. Please use a different email."
    )


async def test_google_login_rejects_shared_email_for_organizer(client, make_user, oauth_profiles):
    await make_user("reviewer", email="rita@example.com")
    oauth_profiles["c1"] = _google("rita@example.com")
    r = await client.post("/api/auth/google/callback", json={"code": "c1", "role": "organizer"})
    assert r.status_code == 403
    assert r.json()["detail"]["error"] == "used_by_other_role"


async def test_orcid_login_uses_placeholder_email(client, oauth_profiles):
    orcid_id = "0000-0002-1825-0097"
    oauth_profiles["o1"] = OAuthProfile(provider=IdentityProvider.ORCID, subject=orcid_id,
                                        email=orcid_email(orcid_id), name="Ada Lovelace",
                                        affiliation="Engines Ltd")
    r = await client.post("/api/auth/orcid/callback", json={"code": "o1", "role": "author"})
    assert r.status_code == 200
    user = r.json()["user"]
    assert user["email"] == "0000000218250097@orcid.user"
    assert user["affiliation"] == "Engines Ltd"
    assert user["identities"] == [{"provider": "orcid", "subject": orcid_id}]


async def test_expired_code(client, oauth_errors):
    oauth_errors["google"] = ValidationError(CODE_REJECTED_MESSAGE, error_code="invalid_grant")
    r = await client.post("/api/auth/google/callback", json={"code": "used"})
    assert r.status_code == 400
    assert r.json()["detail"] == {"error": "invalid_grant", "message": CODE_REJECTED_MESSAGE}


async def test_unknown_provider(client):
    r = await client.post("/api/auth/github/callback", json={"code": "x"})
    assert r.status_code == 422


async def test_google_login_without_role_keeps_existing_role(client, make_user, oauth_profiles):
    await make_user("reviewer", email="rita@example.com")
    oauth_profiles["c1"] = _google("rita@example.com")
    r = await client.post("/api/auth/google/callback", json={"code": "c1"})
    assert r.status_code == 200
    assert r.json()["is_new_user"] is False
    assert r.json()["user"]["role"] == "reviewer"

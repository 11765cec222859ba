# src/CMS/tests/test_api_conferences.py
from __future__ import annotations

import pytest

pytestmark = pytest.mark.anyio

BODY = {
    "name": "PyConf 2026",
    "venue": "Lisbon",
    "start_date": "2026-09-01T09:00:00Z",
    "end_date": "2026-09-03T18:00:00Z",
    "tracks": [{"name": "ML"}, {"name": "Systems"}],
}


async def test_create_and_list(client, make_user, auth_headers):
    organizer = await make_user("organizer")
    r = await client.post("/api/conferences", json=BODY, headers=auth_headers(organizer))
    assert r.status_code == 201, r.text
    conf = r.json()
    assert conf["organizer_id"] == str(organizer.id)
    assert sorted(t["name"] for t in conf["tracks"]) == ["ML", "Systems"]

    r = await client.get("/api/conferences")
    assert [c["name"] for c in r.json()] == ["PyConf 2026"]

    r = await client.get("/api/organizer/conferences", headers=auth_headers(organizer))
    assert [c["id"] for c in r.json()] == [conf["id"]]


async def test_only_organizers_create(client, make_user, auth_headers):
    author = await make_user("author")
    r = await client.post("/api/conferences", json=BODY, headers=auth_headers(author))
    assert r.status_code == 403


async def test_duplicate_track_names(client, make_user, auth_headers):
    organizer = await make_user("organizer")
    body = dict(BODY, tracks=[{"name": "ML"}, {"name": "ml "}])
    r = await client.post("/api/conferences", json=body, headers=auth_headers(organizer))
    assert r.status_code == 409


async def test_end_before_start(client, make_user, auth_headers):
    organizer = await make_user("organizer")
    body = dict(BODY, end_date="2026-08-01T00:00:00Z")
    r = await client.post("/api/conferences", json=body, headers=auth_headers(organizer))
    assert r.status_code == 422


async def test_update_and_add_track(client, make_user, make_conference, auth_headers):
    organizer = await make_user("organizer")
    conference = await make_conference(organizer, tracks=("ML",))
    headers = auth_headers(organizer)

    r = await client.put(f"/api/conferences/{conference.id}", json={"venue": "Porto"}, headers=headers)
    assert r.status_code == 200
    assert r.json()["venue"] == "Porto"

    r = await client.post(f"/api/conferences/{conference.id}/tracks", json={"name": "Systems"}, headers=headers)
    assert r.status_code == 201
    r = await client.post(f"/api/conferences/{conference.id}/tracks", json={"name": "ml"}, headers=headers)
    assert r.status_code == 409

    r = await client.get(f"/api/conferences/{conference.id}/tracks")
    assert [t["name"] for t in r.json()] == ["ML", "Systems"]


async def test_other_organizer_cannot_update(client, make_user, make_conference, auth_headers):
    owner = await make_user("organizer")
    other = await make_user("organizer")
    conference = await make_conference(owner)
    r = await client.put(f"/api/conferences/{conference.id}", json={"venue": "X"}, headers=auth_headers(other))
    assert r.status_code == 403


async def test_missing_conference(client):
    r = await client.get("/api/conferences/00000000-0000-0000-0000-000000000000")
    assert r.status_code == 404
    assert r.json()["detail"] == {"error": "not_found", "message": "Conference not found"}

# src/CMS/tests/test_api_review_flow.py
from __future__ import annotations

import pytest
from sqlalchemy import select

from CMS.db.models import OutboundEmail
from CMS.services.scheduled_tasks import compute_digest_stats
from CMS.services.storage import LocalStorage

pytestmark = pytest.mark.anyio

PDF = b"%PDF-1.4\n%paper\n"


async def _emails(sessionmaker, template=None):
    async with sessionmaker() as s:
        stmt = select(OutboundEmail).order_by(OutboundEmail.created_at)
        if template:
            stmt = stmt.where(OutboundEmail.template == template)
        return (await s.scalars(stmt)).all()


@pytest.fixture
async def cast(make_user, make_conference):
    organizer = await make_user("organizer", email="olga@example.com", name="Olga")
    author = await make_user("author", email="ann@example.com", name="Ann")
    reviewers = [await make_user("reviewer", email=f"rev{i}@example.com", name=f"Rev {i}",
                                 expertise=["Machine Learning"] if i else ["Databases"])
                 for i in range(3)]
    conference = await make_conference(organizer, name="PyConf", tracks=("ML", "Systems"))
    return {"organizer": organizer, "author": author, "reviewers": reviewers, "conference": conference}


async def _submit(client, auth_headers, cast, **overrides):
    payload = {
        "title": "Attention Is Most of What You Need",
        "abstract": "We study attention.",
        "keywords": ["attention", " ", "transformers"],
        "conference_id": str(cast["conference"].id),
        "track_id": str(cast["conference"].tracks[0].id),
        "co_authors": [{"email": "Co@Example.com", "name": "Co"}, {"email": "ann@example.com"}],
    }
    payload.update(overrides)
    r = await client.post("/api/author/submissions", json=payload, headers=auth_headers(cast["author"]))
    assert r.status_code == 201, r.text
    return r.json()


async def _assign(client, auth_headers, cast, sid, reviewers):
    return await client.post(
        f"/api/organizer/submissions/{sid}/reviewers",
        json={"reviewer_ids": [str(u.id) for u in reviewers]},
        headers=auth_headers(cast["organizer"]),
    )


async def _review(client, auth_headers, reviewer, sid, recommendation, score):
    return await client.post(
        f"/api/reviewer/submissions/{sid}/review/submit",
        json={"score": score, "recommendation": recommendation, "comments": "ok",
              "confidential_comments": "for organizers only"},
        headers=auth_headers(reviewer),
    )


async def test_create_submission_sends_receipt_with_cc(client, auth_headers, cast, sessionmaker):
    sub = await _submit(client, auth_headers, cast)
    assert sub["status"] == "submitted"
    assert sub["keywords"] == ["attention", "transformers"]
    assert [c["email"] for c in sub["co_authors"]] == ["co@example.com"]

    (receipt,) = await _emails(sessionmaker, "submission_received")
    assert receipt.recipient == "ann@example.com"
    assert receipt.cc == ["co@example.com"]
    assert receipt.context["submission_title"] == "Attention Is Most of What You Need"
    assert receipt.context["track_name"] == "ML"


async def test_track_must_belong_to_conference(client, auth_headers, cast, make_conference):
    other = await make_conference(cast["organizer"], name="Other", tracks=("Elsewhere",))
    r = await client.post("/api/author/submissions", headers=auth_headers(cast["author"]), json={
        "title": "T", "abstract": "A", "conference_id": str(cast["conference"].id),
        "track_id": str(other.tracks[0].id),
    })
    assert r.status_code == 400
    assert r.json()["detail"]["field"] == "track_id"


async def test_role_guards(client, auth_headers, cast):
    r = await client.get("/api/author/submissions", headers=auth_headers(cast["reviewers"][0]))
    assert r.status_code == 403
    r = await client.get("/api/organizer/conferences", headers=auth_headers(cast["author"]))
    assert r.status_code == 403
    r = await client.get("/api/reviewer/assignments")
    assert r.status_code == 401


async def test_full_review_cycle(client, auth_headers, cast, sessionmaker):
    sub = await _submit(client, auth_headers, cast)
    sid = sub["id"]
    r1, r2, r3 = cast["reviewers"]

    # assignment moves the paper under review and notifies each reviewer once
    r = await _assign(client, auth_headers, cast, sid, [r1, r2, r3, r1])
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "under_review"
    assert sorted(e.recipient for e in await _emails(sessionmaker, "reviewer_assigned")) == [
        "rev0@example.com", "rev1@example.com", "rev2@example.com",
    ]

    # a draft does not count
    r = await client.put(f"/api/reviewer/submissions/{sid}/review",
                         json={"score": 5, "recommendation": "REJECT"}, headers=auth_headers(r3))
    assert r.status_code == 200
    assert r.json()["status"] == "in_progress"

    assert (await _review(client, auth_headers, r1, sid, "ACCEPT", 8)).status_code == 200
    assert (await _review(client, auth_headers, r2, sid, "ACCEPT", 7)).status_code == 200

    r = await client.get(f"/api/author/submissions/{sid}", headers=auth_headers(cast["author"]))
    detail = r.json()
    assert detail["review_progress"] == {"completed": 2, "required": 3, "percentage": 66}
    assert detail["majority_decision"] is None
    assert len(detail["reviews"]) == 2
    assert all("confidential_comments" not in rv for rv in detail["reviews"])

    r = await _review(client, auth_headers, r3, sid, "MINOR_REVISION", 6)
    assert r.status_code == 200

    # resubmitting a completed review is refused
    r = await _review(client, auth_headers, r3, sid, "REJECT", 1)
    assert r.status_code == 409

    r = await client.get(f"/api/author/submissions/{sid}", headers=auth_headers(cast["author"]))
    detail = r.json()
    assert detail["submission"]["status"] == "review_completed"
    assert detail["review_progress"] == {"completed": 3, "required": 3, "percentage": 100}
    assert detail["vote_breakdown"] == {"accept": 2, "reject": 0, "minorRevision": 1, "majorRevision": 0}
    assert detail["average_score"] == 7.0
    assert detail["majority_decision"] == "ACCEPTED"

    # organizer sees confidential comments
    r = await client.get(f"/api/organizer/submissions/{sid}", headers=auth_headers(cast["organizer"]))
    assert r.status_code == 200
    assert {rv["confidential_comments"] for rv in r.json()["reviews"]} == {"for organizers only"}
    assert len(await _emails(sessionmaker, "review_submitted")) == 3

    # decision: accepted papers wait for the camera-ready upload
    r = await client.post(f"/api/organizer/submissions/{sid}/decision",
                          json={"decision": "accepted", "comments": "Well done"},
                          headers=auth_headers(cast["organizer"]))
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "camera_ready_pending"
    (decision,) = await _emails(sessionmaker, "decision")
    assert decision.recipient == "ann@example.com"
    assert decision.cc == ["co@example.com"]
    assert decision.context["decision"] == "accepted"

    # a second decision is refused
    r = await client.post(f"/api/organizer/submissions/{sid}/decision", json={"decision": "rejected"},
                          headers=auth_headers(cast["organizer"]))
    assert r.status_code == 409

    r = await client.post(f"/api/author/submissions/{sid}/camera-ready",
                          files={"file": ("final.pdf", PDF, "application/pdf")},
                          headers=auth_headers(cast["author"]))
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "final_submitted"
    assert r.json()["camera_ready_url"].endswith("-final.pdf")


async def test_author_edits_only_while_submitted(client, auth_headers, cast):
    sid = (await _submit(client, auth_headers, cast))["id"]
    headers = auth_headers(cast["author"])

    r = await client.put(f"/api/author/submissions/{sid}", json={"title": "  Better title "}, headers=headers)
    assert r.status_code == 200
    assert r.json()["title"] == "Better title"

    r = await client.post(f"/api/author/submissions/{sid}/file",
                          files={"file": ("paper.pdf", PDF, "application/pdf")}, headers=headers)
    assert r.status_code == 200
    assert r.json()["file_url"].startswith("/uploads/")

    r = await client.post(f"/api/author/submissions/{sid}/file",
                          files={"file": ("paper.txt", b"plain", "text/plain")}, headers=headers)
    assert r.status_code == 400

    await _assign(client, auth_headers, cast, sid, cast["reviewers"][:1])
    r = await client.put(f"/api/author/submissions/{sid}", json={"title": "Too late"}, headers=headers)
    assert r.status_code == 409
    r = await client.delete(f"/api/author/submissions/{sid}", headers=headers)
    assert r.status_code == 409

    # camera-ready before acceptance is refused
    r = await client.post(f"/api/author/submissions/{sid}/camera-ready",
                          files={"file": ("final.pdf", PDF, "application/pdf")}, headers=headers)
    assert r.status_code == 409


async def test_delete_submission(client, auth_headers, cast):
    sid = (await _submit(client, auth_headers, cast))["id"]
    headers = auth_headers(cast["author"])
    r = await client.delete(f"/api/author/submissions/{sid}", headers=headers)
    assert r.status_code == 204
    r = await client.get(f"/api/author/submissions/{sid}", headers=headers)
    assert r.status_code == 404


async def test_other_author_cannot_read(client, auth_headers, cast, make_user):
    sid = (await _submit(client, auth_headers, cast))["id"]
    stranger = await make_user("author")
    r = await client.get(f"/api/author/submissions/{sid}", headers=auth_headers(stranger))
    assert r.status_code == 403


async def test_assignment_validation(client, auth_headers, cast, make_user):
    sid = (await _submit(client, auth_headers, cast))["id"]

    r = await _assign(client, auth_headers, cast, sid, [cast["author"]])
    assert r.status_code == 400

    other_organizer = await make_user("organizer")
    r = await client.post(f"/api/organizer/submissions/{sid}/reviewers",
                          json={"reviewer_ids": [str(cast["reviewers"][0].id)]},
                          headers=auth_headers(other_organizer))
    assert r.status_code == 403


async def test_unassigned_reviewer_cannot_review(client, auth_headers, cast):
    sid = (await _submit(client, auth_headers, cast))["id"]
    r = await _review(client, auth_headers, cast["reviewers"][0], sid, "ACCEPT", 9)
    assert r.status_code == 403


async def test_reviewer_dashboard(client, auth_headers, cast):
    sid = (await _submit(client, auth_headers, cast))["id"]
    r1 = cast["reviewers"][1]
    await _assign(client, auth_headers, cast, sid, [r1])

    r = await client.get("/api/reviewer/assignments", headers=auth_headers(r1))
    (row,) = r.json()
    assert row["submission_id"] == sid
    assert row["conference_name"] == "PyConf"
    assert row["review_status"] is None

    await _review(client, auth_headers, r1, sid, "REJECT", 2)
    r = await client.get("/api/reviewer/reviews", headers=auth_headers(r1))
    (review,) = r.json()
    assert review["submission_title"] == "Attention Is Most of What You Need"
    assert review["status"] == "submitted"


async def test_organizer_views(client, auth_headers, cast):
    sid = (await _submit(client, auth_headers, cast))["id"]
    headers = auth_headers(cast["organizer"])
    cid = cast["conference"].id

    r = await client.get(f"/api/organizer/conferences/{cid}/submissions", headers=headers)
    (row,) = r.json()
    assert row["id"] == sid
    assert row["track_name"] == "ML"
    assert row["review_progress"]["required"] == 0

    r = await client.get(f"/api/organizer/conferences/{cid}/submissions?status=accepted", headers=headers)
    assert r.json() == []

    r = await client.get("/api/organizer/reviewers?expertise=machine", headers=headers)
    assert sorted(u["email"] for u in r.json()) == ["rev1@example.com", "rev2@example.com"]


async def test_digest_counts_papers_moved_on_by_the_api(client, auth_headers, cast, sessionmaker):
    r1, r2 = cast["reviewers"][1:]
    first = (await _submit(client, auth_headers, cast, title="First"))["id"]
    second = (await _submit(client, auth_headers, cast, title="Second"))["id"]
    for sid in (first, second):
        assert (await _assign(client, auth_headers, cast, sid, [r1, r2])).status_code == 200
        for reviewer in (r1, r2):
            assert (await _review(client, auth_headers, reviewer, sid, "ACCEPT", 8)).status_code == 200

    r = await client.post(f"/api/organizer/submissions/{first}/decision", json={"decision": "accepted"},
                          headers=auth_headers(cast["organizer"]))
    assert r.json()["status"] == "camera_ready_pending"

    async with sessionmaker() as s:
        stats = await compute_digest_stats(s, cast["conference"].id)
    assert stats.total_submissions == 2
    assert stats.completed_reviews == 4
    assert stats.awaiting_decision == 1
    assert stats.accepted_papers == 1
    assert stats.rejected_papers == 0


async def test_upload_over_the_limit_is_refused(app, client, auth_headers, cast, tmp_path):
    app.state.storage = LocalStorage(tmp_path, max_bytes=64)
    sid = (await _submit(client, auth_headers, cast))["id"]
    r = await client.post(f"/api/author/submissions/{sid}/file",
                          files={"file": ("big.pdf", PDF * 10, "application/pdf")},
                          headers=auth_headers(cast["author"]))
    assert r.status_code == 400
    assert r.json()["detail"]["field"] == "file"
    assert list(tmp_path.iterdir()) == []

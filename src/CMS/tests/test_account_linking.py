# src/CMS/tests/test_account_linking.py
from __future__ import annotations

import pytest

from CMS.db.models.enums import Role
from CMS.services.account_linking import (
    LinkAction,
    RejectReason,
    decide_link,
    decide_registration,
)


@pytest.mark.parametrize(
    "existing, requested, action, role",
    [
        (None, "organizer", LinkAction.CREATE, "organizer"),
        (None, "author", LinkAction.CREATE, "author"),
        ("organizer", "organizer", LinkAction.REUSE, "organizer"),
        ("author", "author", LinkAction.REUSE, "author"),
        ("author", "reviewer", LinkAction.SWITCH_ROLE, "reviewer"),
        ("reviewer", "participant", LinkAction.SWITCH_ROLE, "participant"),
    ],
)
def test_allowed_links(existing, requested, action, role):
    decision = decide_link(existing, requested)
    assert decision.action is action
    assert decision.role == role
    assert not decision.rejected


def test_organizer_email_is_reserved():
    decision = decide_link(Role.ORGANIZER, Role.AUTHOR)
    assert decision.rejected
    assert decision.reason is RejectReason.RESERVED_FOR_ORGANIZER
    assert decision.message() == (
        "This email is already registered as an organizer. Please use a different email."
    )


def test_shared_email_cannot_become_organizer():
    decision = decide_link("reviewer", "organizer")
    assert decision.reason is RejectReason.USED_BY_OTHER_ROLE
    assert "ORCID" in decision.message("ORCID")


def test_unknown_role_is_rejected():
    with pytest.raises(ValueError):
        decide_link(None, "admin")
    with pytest.raises(ValueError):
        decide_link("janitor", Role.AUTHOR)


def test_registration_messages():
    assert decide_registration(None, "author") is None
    assert "as an organizer" in decide_registration("organizer", "organizer")
    assert "Organizers must use a unique email" in decide_registration("author", "organizer")
    assert decide_registration("author", "author") == (
        "You already have an account with this email as author. Please login instead."
    )
    assert "Please login to access different roles" in decide_registration("author", "reviewer")

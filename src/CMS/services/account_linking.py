# src/CMS/services/account_linking.py
"""
Role-separation rules for mapping a login to an account.

Organizer accounts are exclusive: an email that belongs to an organizer can
never be used for another role, and an email already used by an author,
reviewer or participant can never become an organizer. The three other
roles share an email and switch between each other on login.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from CMS.db.models.enums import Role, SHAREABLE_ROLES


class LinkAction(str, Enum):
    CREATE = "create"
    REUSE = "reuse"
    SWITCH_ROLE = "switch_role"
    REJECT = "reject"


class RejectReason(str, Enum):
    RESERVED_FOR_ORGANIZER = "reserved_for_organizer"
    USED_BY_OTHER_ROLE = "used_by_other_role"


REJECT_MESSAGES = {
    RejectReason.RESERVED_FOR_ORGANIZER: (
        "This {subject} is already registered as an organizer. Please use a different {subject}."
    ),
    RejectReason.USED_BY_OTHER_ROLE: (
        "This {subject} is already registered with other roles. Organizers must use a unique {subject}."
    ),
}


@dataclass(frozen=True)
class LinkDecision:
    action: LinkAction
    role: Optional[str] = None
    reason: Optional[RejectReason] = None

    @property
    def rejected(self) -> bool:
        return self.action is LinkAction.REJECT

    def message(self, subject: str = "email") -> str:
        if self.reason is None:
            return ""
        return REJECT_MESSAGES[self.reason].format(subject=subject)


def _role(value: Any) -> str:
    return value.value if isinstance(value, Role) else str(value)


def decide_link(existing_role: Optional[Any], requested_role: Any) -> LinkDecision:
    """
    Decide what happens when ``requested_role`` logs in with an email whose
    current account has ``existing_role`` (``None`` when no account exists).

    ======================  ===========================  ==========================
    existing                requested                    outcome
    ======================  ===========================  ==========================
    none                    any                          create with requested role
    organizer               organizer                    reuse
    organizer               non-organizer                reject (reserved)
    non-organizer           organizer                    reject (used by other role)
    non-organizer           same non-organizer           reuse
    non-organizer           different non-organizer      switch role, reuse
    ======================  ===========================  ==========================
    """
    requested = _role(requested_role)
    if requested not in {r.value for r in Role}:
        raise ValueError(f"unknown role: {requested!r}")

    if existing_role is None:
        return LinkDecision(LinkAction.CREATE, role=requested)

    existing = _role(existing_role)
    organizer = Role.ORGANIZER.value

    if existing == organizer:
        if requested == organizer:
            return LinkDecision(LinkAction.REUSE, role=organizer)
        return LinkDecision(LinkAction.REJECT, reason=RejectReason.RESERVED_FOR_ORGANIZER)

    if requested == organizer:
        return LinkDecision(LinkAction.REJECT, reason=RejectReason.USED_BY_OTHER_ROLE)

    if existing == requested:
        return LinkDecision(LinkAction.REUSE, role=existing)

    if existing not in SHAREABLE_ROLES:
        raise ValueError(f"unknown role: {existing!r}")
    return LinkDecision(LinkAction.SWITCH_ROLE, role=requested)


def decide_registration(existing_role: Optional[Any], requested_role: Any) -> Optional[str]:
    """
    Password sign-up is stricter than OAuth linking: any existing account for
    the email blocks registration. Returns the rejection message, or ``None``
    when the email is free.
    """
    if existing_role is None:
        return None
    existing = _role(existing_role)
    requested = _role(requested_role)
    if existing == Role.ORGANIZER.value:
        return "This email is already registered as an organizer. Please use a different email."
    if requested == Role.ORGANIZER.value:
        return "This email is already registered with other roles. Organizers must use a unique email."
    if existing == requested:
        return f"You already have an account with this email as {requested}. Please login instead."
    return "This email is already registered. Please login to access different roles."

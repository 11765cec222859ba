# src/CMS/services/email/templates.py
"""
Named email templates.

Each template takes a plain JSON-able ``data`` dict (the same dict stored on
an outbox row) and returns subject, HTML and plain-text bodies. Every value
interpolated into HTML goes through ``html.escape``.
"""
from __future__ import annotations

from dataclasses import dataclass
from html import escape
from typing import Any, Callable, Dict, Mapping

from CMS.core.errors import ValidationError


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str
    text: str


TemplateFn = Callable[[Mapping[str, Any]], RenderedEmail]
TEMPLATES: Dict[str, TemplateFn] = {}


def template(name: str):
    def register(fn: TemplateFn) -> TemplateFn:
        TEMPLATES[name] = fn
        return fn
    return register


def _get(data: Mapping[str, Any], key: str, default: str = "") -> str:
    value = data.get(key)
    return default if value is None else str(value)


def _layout(title: str, body_html: str) -> str:
    return (
        "<!DOCTYPE html><html><body style=\"font-family: Arial, sans-serif; color: #1f2937;\">"
        f"<div style=\"max-width: 600px; margin: 0 auto; padding: 24px;\">"
        f"<h2 style=\"color: #1e3a8a;\">{escape(title)}</h2>"
        f"{body_html}"
        "<p style=\"color: #6b7280; font-size: 12px;\">Conference Management System</p>"
        "</div></body></html>"
    )


def _p(text: str) -> str:
    return f"<p>{escape(text)}</p>"


def _link(url: str, label: str) -> str:
    if not url:
        return ""
    return f"<p><a href=\"{escape(url, quote=True)}\">{escape(label)}</a></p>"


@template("welcome")
def welcome(data: Mapping[str, Any]) -> RenderedEmail:
    name = _get(data, "name", "there")
    role = _get(data, "role", "author")
    url = _get(data, "dashboard_url")
    lines = [
        f"Hello {name},",
        f"Your account has been created with the {role} role.",
    ]
    body = "".join(_p(l) for l in lines) + _link(url, "Open your dashboard")
    text = "\n\n".join(lines + ([url] if url else []))
    return RenderedEmail("Welcome to the Conference Management System", _layout("Welcome", body), text)


@template("submission_received")
def submission_received(data: Mapping[str, Any]) -> RenderedEmail:
    title = _get(data, "submission_title")
    conference = _get(data, "conference_name")
    lines = [
        f"Hello {_get(data, 'author_name', 'author')},",
        f"We received your paper \"{title}\" for {conference}.",
        f"Submission id: {_get(data, 'submission_id')}",
        "You will be notified when reviews are complete.",
    ]
    body = "".join(_p(l) for l in lines)
    return RenderedEmail(
        f"Submission received: {title}",
        _layout("Submission received", body),
        "\n\n".join(lines),
    )


@template("reviewer_assigned")
def reviewer_assigned(data: Mapping[str, Any]) -> RenderedEmail:
    title = _get(data, "submission_title")
    lines = [
        f"Hello {_get(data, 'reviewer_name', 'reviewer')},",
        f"You have been assigned to review \"{title}\" for {_get(data, 'conference_name')}.",
    ]
    if data.get("abstract"):
        lines.append(f"Abstract: {_get(data, 'abstract')}")
    url = _get(data, "review_url")
    body = "".join(_p(l) for l in lines) + _link(url, "Start your review")
    return RenderedEmail(
        f"Review assignment: {title}",
        _layout("New review assignment", body),
        "\n\n".join(lines + ([url] if url else [])),
    )


@template("review_submitted")
def review_submitted(data: Mapping[str, Any]) -> RenderedEmail:
    title = _get(data, "submission_title")
    lines = [
        f"Hello {_get(data, 'organizer_name', 'organizer')},",
        f"{_get(data, 'reviewer_name', 'A reviewer')} submitted a review for \"{title}\".",
        f"Score: {_get(data, 'score', '-')}  Recommendation: {_get(data, 'recommendation', '-')}",
        f"Progress: {_get(data, 'completed', '0')}/{_get(data, 'required', '0')} reviews complete.",
    ]
    body = "".join(_p(l) for l in lines)
    return RenderedEmail(
        f"Review submitted: {title}",
        _layout("Review submitted", body),
        "\n\n".join(lines),
    )


@template("decision")
def decision(data: Mapping[str, Any]) -> RenderedEmail:
    title = _get(data, "submission_title")
    outcome = _get(data, "decision").lower()
    verdict = "accepted" if outcome == "accepted" else "not accepted"
    lines = [
        f"Hello {_get(data, 'author_name', 'author')},",
        f"Your paper \"{title}\" submitted to {_get(data, 'conference_name')} has been {verdict}.",
    ]
    if outcome == "accepted":
        lines.append("Please upload your camera-ready version from your dashboard.")
    if data.get("comments"):
        lines.append(f"Comments from the organizers: {_get(data, 'comments')}")
    body = "".join(_p(l) for l in lines)
    return RenderedEmail(
        f"Decision on your submission: {title}",
        _layout("Submission decision", body),
        "\n\n".join(lines),
    )


@template("review_reminder")
def review_reminder(data: Mapping[str, Any]) -> RenderedEmail:
    title = _get(data, "submission_title")
    days = _get(data, "days_until", "7")
    lines = [
        f"Hello {_get(data, 'reviewer_name', 'reviewer')},",
        f"{_get(data, 'conference_name')} starts in {days} days and your review of \"{title}\" is still pending.",
        "Please complete and submit your review as soon as possible.",
    ]
    if data.get("track_name"):
        lines.insert(2, f"Track: {_get(data, 'track_name')}")
    body = "".join(_p(l) for l in lines)
    return RenderedEmail(
        f"Reminder: review pending for {title}",
        _layout("Review reminder", body),
        "\n\n".join(lines),
    )


DIGEST_ROWS = (
    ("total_submissions", "Total submissions"),
    ("pending_reviews", "Reviews in progress"),
    ("completed_reviews", "Completed reviews"),
    ("awaiting_decision", "Awaiting decision"),
    ("accepted_papers", "Accepted papers"),
    ("rejected_papers", "Rejected papers"),
)


@template("weekly_digest")
def weekly_digest(data: Mapping[str, Any]) -> RenderedEmail:
    conference = _get(data, "conference_name")
    stats = data.get("stats") or {}
    rows = [(label, str(stats.get(key, 0))) for key, label in DIGEST_ROWS]

    table = "".join(
        f"<tr><td style=\"padding: 4px 12px;\">{escape(label)}</td>"
        f"<td style=\"padding: 4px 12px; text-align: right;\"><strong>{escape(value)}</strong></td></tr>"
        for label, value in rows
    )
    body = (
        _p(f"Hello {_get(data, 'organizer_name', 'organizer')},")
        + _p(f"Here is this week's summary for {conference}.")
        + f"<table>{table}</table>"
    )
    text = "\n".join(
        [f"Hello {_get(data, 'organizer_name', 'organizer')},", "", f"Weekly summary for {conference}:", ""]
        + [f"  {label}: {value}" for label, value in rows]
    )
    return RenderedEmail(f"Weekly digest: {conference}", _layout("Weekly digest", body), text)


def render(name: str, data: Mapping[str, Any]) -> RenderedEmail:
    fn = TEMPLATES.get(name)
    if fn is None:
        raise ValidationError(f"Unknown email template: {name}", field="template")
    return fn(data or {})


__all__ = ["RenderedEmail", "TEMPLATES", "render"]

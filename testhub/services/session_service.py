"""
Session Container.

A UatSession owns checklist items, guests and collaborators.  This module
covers the session lifecycle, guest / collaborator membership and the
aggregate read models the portals and the internal API render.

Lifecycle (SESSION_TRANSITIONS):
    draft → active → completed      completed_at set on completion
    completed → active              reopen, completed_at cleared
    active → draft                  stop sharing
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from email_validator import EmailNotValidError, validate_email

from testhub.core.exceptions import ConflictError, InvalidStateError, NotFoundError, ValidationError
from testhub.models import db
from testhub.models.uat import (
    COLLABORATOR_ROLES,
    SESSION_PRIORITIES,
    SESSION_STATUSES,
    SESSION_TRANSITIONS,
    Guest,
    SessionCollaborator,
    UatSession,
)
from testhub.services import checklist_service, response_service, test_run_service
from testhub.services.access_service import AccessContext, PortalLinks, assert_session_writable, issue_token
from testhub.utils.helpers import parse_date, parse_datetime

logger = logging.getLogger(__name__)

SESSION_TEXT_FIELDS = ("description", "owner_id")
SESSION_REF_FIELDS = ("project_id", "account_id")


# ── Private helpers ────────────────────────────────────────────────────────────


def _require_name(value, field: str = "name") -> str:
    name = value.strip() if isinstance(value, str) else ""
    if not name:
        raise ValidationError(f"{field} is required", details={field: "required"})
    return name


def _normalise_email(raw) -> str:
    if not isinstance(raw, str) or not raw.strip():
        raise ValidationError("email is required", details={"email": "required"})
    try:
        result = validate_email(raw.strip(), check_deliverability=False)
    except EmailNotValidError as exc:
        raise ValidationError(f"Invalid email: {exc}", details={"email": "invalid"}) from exc
    return result.normalized.lower()


def _apply_session_fields(uat_session: UatSession, data: dict) -> None:
    for field in SESSION_TEXT_FIELDS:
        if field in data:
            value = data[field]
            setattr(uat_session, field, str(value) if value is not None else None)

    for field in SESSION_REF_FIELDS:
        if field in data:
            value = data[field]
            if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
                raise ValidationError(f"{field} must be an integer", details={field: "integer expected"})
            setattr(uat_session, field, value)

    if "priority" in data:
        priority = data["priority"] or "medium"
        if not isinstance(priority, str) or priority not in SESSION_PRIORITIES:
            raise ValidationError(
                f"Invalid priority '{priority}'",
                details={"priority": f"one of {sorted(SESSION_PRIORITIES)}"},
            )
        uat_session.priority = priority

    if "due_date" in data:
        raw = data["due_date"]
        parsed = parse_date(raw)
        if raw and parsed is None:
            raise ValidationError("Invalid due_date", details={"due_date": "YYYY-MM-DD expected"})
        uat_session.due_date = parsed

    if "expires_at" in data:
        try:
            uat_session.expires_at = parse_datetime(data["expires_at"])
        except (TypeError, ValueError) as exc:
            raise ValidationError("Invalid expires_at",
                                  details={"expires_at": "ISO-8601 datetime expected"}) from exc


# ═════════════════════════════════════════════════════════════════════════════
# Sessions
# ═════════════════════════════════════════════════════════════════════════════


def get_session(session_id: int) -> UatSession:
    uat_session = db.session.get(UatSession, session_id)
    if uat_session is None:
        raise NotFoundError(resource="UatSession", resource_id=session_id)
    return uat_session


def list_sessions(status: str | None = None) -> list[UatSession]:
    """Sessions newest first, optionally filtered by status."""
    query = UatSession.query
    if status:
        if not isinstance(status, str) or status not in SESSION_STATUSES:
            raise ValidationError(f"Invalid status '{status}'",
                                  details={"status": f"one of {sorted(SESSION_STATUSES)}"})
        query = query.filter_by(status=status)
    return query.order_by(UatSession.created_at.desc(), UatSession.id.desc()).all()


def create_session(data: dict, created_by_id: str | None = None) -> UatSession:
    """Create a draft session with a fresh invite token."""
    uat_session = UatSession(
        name=_require_name(data.get("name")),
        status="draft",
        priority="medium",
        created_by_id=created_by_id,
        owner_id=created_by_id,
        invite_token=issue_token(),
    )
    _apply_session_fields(uat_session, data)
    db.session.add(uat_session)
    db.session.flush()
    logger.info("UAT session created: id=%s name=%r", uat_session.id, uat_session.name,
                extra={"session_id": uat_session.id, "event_type": "session_created"})
    return uat_session


def change_status(uat_session: UatSession, new_status: str) -> UatSession:
    """Apply a lifecycle transition; re-applying the current status is a no-op."""
    if not isinstance(new_status, str) or new_status not in SESSION_STATUSES:
        raise ValidationError(f"Invalid status '{new_status}'",
                              details={"status": f"one of {sorted(SESSION_STATUSES)}"})
    current = uat_session.status
    if new_status == current:
        return uat_session
    if new_status not in SESSION_TRANSITIONS.get(current, set()):
        raise InvalidStateError(
            f"Cannot move session from '{current}' to '{new_status}'",
            current_state=current,
        )

    uat_session.status = new_status
    if new_status == "completed":
        uat_session.completed_at = datetime.now(timezone.utc)
    elif current == "completed":
        uat_session.completed_at = None
    db.session.flush()
    logger.info("UAT session %s: %s → %s", uat_session.id, current, new_status,
                extra={"session_id": uat_session.id, "event_type": "session_status"})
    return uat_session


def update_session(uat_session: UatSession, data: dict) -> UatSession:
    if "name" in data:
        uat_session.name = _require_name(data["name"])
    _apply_session_fields(uat_session, data)
    if "status" in data:
        change_status(uat_session, data["status"])
    db.session.flush()
    return uat_session


def delete_session(uat_session: UatSession) -> None:
    """Delete a session with its items, guests and collaborators."""
    session_id = uat_session.id
    db.session.delete(uat_session)
    db.session.flush()
    logger.info("UAT session deleted: id=%s", session_id, extra={"session_id": session_id})


# ═════════════════════════════════════════════════════════════════════════════
# Guests & collaborators
# ═════════════════════════════════════════════════════════════════════════════


def get_guest(guest_id: int, session_id: int | None = None) -> Guest:
    guest = db.session.get(Guest, guest_id)
    if guest is None or (session_id is not None and guest.session_id != session_id):
        raise NotFoundError(resource="Guest", resource_id=guest_id, session_id=session_id)
    return guest


def get_collaborator(collaborator_id: int, session_id: int | None = None) -> SessionCollaborator:
    collaborator = db.session.get(SessionCollaborator, collaborator_id)
    if collaborator is None or (session_id is not None and collaborator.session_id != session_id):
        raise NotFoundError(resource="SessionCollaborator", resource_id=collaborator_id,
                            session_id=session_id)
    return collaborator


def add_guest(uat_session: UatSession, name, email) -> Guest:
    """Invite an external reviewer.  Duplicate e-mail in the session → ConflictError."""
    assert_session_writable(uat_session)
    name = _require_name(name)
    email = _normalise_email(email)
    if Guest.query.filter_by(session_id=uat_session.id, email=email).first() is not None:
        raise ConflictError(resource="Guest", field="email", value=email)

    guest = Guest(session=uat_session, name=name, email=email, access_token=issue_token())
    db.session.add(guest)
    db.session.flush()
    logger.info("Guest invited: session=%s guest=%s", uat_session.id, guest.id,
                extra={"session_id": uat_session.id, "event_type": "guest_created"})
    return guest


def add_collaborator(
    uat_session: UatSession,
    name,
    email,
    role,
    invited_by_id: str | None = None,
) -> SessionCollaborator:
    assert_session_writable(uat_session)
    name = _require_name(name)
    email = _normalise_email(email)
    role = role or "viewer"
    if not isinstance(role, str) or role not in COLLABORATOR_ROLES:
        raise ValidationError(f"Invalid role '{role}'",
                              details={"role": f"one of {sorted(COLLABORATOR_ROLES)}"})
    if SessionCollaborator.query.filter_by(session_id=uat_session.id, email=email).first() is not None:
        raise ConflictError(resource="SessionCollaborator", field="email", value=email)

    collaborator = SessionCollaborator(
        session=uat_session,
        name=name,
        email=email,
        role=role,
        invited_by_id=invited_by_id,
        access_token=issue_token(),
    )
    db.session.add(collaborator)
    db.session.flush()
    logger.info("Collaborator added: session=%s collaborator=%s role=%s",
                uat_session.id, collaborator.id, role,
                extra={"session_id": uat_session.id})
    return collaborator


def remove_guest(guest: Guest) -> None:
    """Remove a reviewer; their responses and step results go with them."""
    db.session.delete(guest)
    db.session.flush()


def remove_collaborator(collaborator: SessionCollaborator) -> None:
    db.session.delete(collaborator)
    db.session.flush()


# ═════════════════════════════════════════════════════════════════════════════
# Read models
# ═════════════════════════════════════════════════════════════════════════════


def item_view(item, include_internal: bool = True) -> dict:
    d = item.to_dict(include_internal=include_internal, include_steps=True, include_responses=True)
    d["review_status"] = response_service.status_of(item.responses)
    d["testing_state"] = test_run_service.testing_state(item)
    return d


def session_summary(uat_session: UatSession) -> dict:
    items = checklist_service.list_items(uat_session)
    d = uat_session.to_dict()
    d["item_count"] = len(items)
    d["guest_count"] = len(uat_session.guests)
    d["collaborator_count"] = len(uat_session.collaborators)
    d["progress"] = response_service.session_progress(items)
    return d


def session_detail(uat_session: UatSession, links: PortalLinks) -> dict:
    """Full staff view: fields, items (responses, steps, status), members, links."""
    items = checklist_service.list_items(uat_session)
    d = uat_session.to_dict()
    d["owner_link"] = links.owner(uat_session)
    d["items"] = [item_view(item) for item in items]
    d["guests"] = [
        {**g.to_dict(), "reviewer_link": links.reviewer(g)} for g in uat_session.guests
    ]
    d["collaborators"] = [
        {**c.to_dict(), "portal_link": links.collaborator(c)} for c in uat_session.collaborators
    ]
    d["progress"] = response_service.session_progress(items)
    return d


def pm_portal_view(ctx: AccessContext, links: PortalLinks) -> dict:
    """PM portal payload.  Tokens are shown only to roles that could issue them."""
    uat_session = ctx.session
    items = checklist_service.list_items(uat_session)

    session_dict = uat_session.to_dict()
    if ctx.token_kind != "owner":
        session_dict.pop("invite_token", None)
    session_dict["items"] = [item_view(item) for item in items]
    session_dict["guests"] = []
    for guest in uat_session.guests:
        g = guest.to_dict(include_token=ctx.can_invite_guests)
        if ctx.can_invite_guests:
            g["reviewer_link"] = links.reviewer(guest)
        session_dict["guests"].append(g)
    session_dict["collaborators"] = [
        c.to_dict(include_token=ctx.token_kind == "owner") for c in uat_session.collaborators
    ]
    session_dict["progress"] = response_service.session_progress(items)

    return {
        "collaborator": ctx.collaborator.to_dict(include_token=False) if ctx.collaborator else None,
        "role": ctx.role,
        "permissions": ctx.permissions(),
        "session": session_dict,
    }


def reviewer_portal_view(guest: Guest) -> dict:
    """Reviewer portal payload: internal notes stripped, only this guest's response."""
    uat_session = guest.session
    items = checklist_service.list_items(uat_session)
    mine = {r.checklist_item_id: r for r in guest.responses}

    item_dicts = []
    for item in items:
        d = item.to_dict(include_internal=False, include_steps=True)
        response = mine.get(item.id)
        d["my_response"] = response.to_dict() if response else None
        d["testing_state"] = test_run_service.testing_state(item)
        item_dicts.append(d)

    return {
        "session": {
            "id": uat_session.id,
            "name": uat_session.name,
            "description": uat_session.description,
            "status": uat_session.status,
            "due_date": uat_session.due_date.isoformat() if uat_session.due_date else None,
        },
        "guest": guest.to_dict(include_token=False),
        "items": item_dicts,
        "progress": response_service.guest_progress(guest, items),
    }


def status_report(uat_session: UatSession) -> dict:
    """Per-item review / testing status with step progress and run history."""
    items = checklist_service.list_items(uat_session)
    rows = []
    for item in items:
        d = item.to_dict(include_internal=False)
        rows.append({
            "item_id": item.id,
            "title": item.title,
            "order": item.order,
            "review_status": response_service.status_of(item.responses),
            "testing_state": test_run_service.testing_state(item),
            "step_progress": test_run_service.step_progress(item),
            "runs": test_run_service.run_history(item),
            "last_reviewed_at": d["last_reviewed_at"],
            "last_resolved_at": d["last_resolved_at"],
        })
    return {
        "session_id": uat_session.id,
        "status": uat_session.status,
        "items": rows,
        "summary": response_service.review_breakdown(items),
        "progress": response_service.session_progress(items),
    }

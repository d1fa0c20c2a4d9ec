"""
Response Aggregator.

Combines the guests' item-level verdicts into the item's review status and
rolls items up into session and reviewer progress.  Status is computed on
read, never stored.

Precedence (canonical business rule):
    no responses                 → pending
    any changes_requested        → needs_remediation   (one rejection beats all approvals)
    otherwise any approved       → approved
    otherwise                    → in_progress
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from testhub.core.exceptions import NotFoundError, ValidationError
from testhub.models import db
from testhub.models.uat import RESPONSE_STATUSES, ChecklistItem, Guest, ItemResponse
from testhub.services import test_run_service
from testhub.services.access_service import GuestActor, assert_session_writable

logger = logging.getLogger(__name__)

REVIEW_STATUSES = ("pending", "in_progress", "approved", "needs_remediation")


def _status(response) -> str | None:
    if isinstance(response, dict):
        return response.get("status")
    return response.status


def status_of(responses) -> str:
    """Review status of an item from its responses (ORM rows or dicts).

    Pure and order-independent.
    """
    statuses = [_status(r) for r in responses]
    if not statuses:
        return "pending"
    if "changes_requested" in statuses:
        return "needs_remediation"
    if "approved" in statuses:
        return "approved"
    return "in_progress"


def _percent(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole else 0


def session_progress(items) -> dict:
    """Aggregate progress over a session's items.

    completed counts distinct items with at least one response;
    approved / changes_requested count responses across all items.
    """
    total = len(items)
    completed = approved = changes_requested = 0
    for item in items:
        responses = item.responses
        if responses:
            completed += 1
        for response in responses:
            status = _status(response)
            if status == "approved":
                approved += 1
            elif status == "changes_requested":
                changes_requested += 1

    return {
        "total": total,
        "completed": completed,
        "approved": approved,
        "changes_requested": changes_requested,
        "progress_percent": _percent(completed, total),
    }


def guest_progress(guest: Guest, items) -> dict:
    """One reviewer's own progress over the session's items."""
    mine = {r.checklist_item_id: r for r in guest.responses}
    total = len(items)
    responded = sum(1 for item in items if item.id in mine)
    approved = sum(1 for item in items if item.id in mine and mine[item.id].status == "approved")
    return {
        "total": total,
        "responded": responded,
        "approved": approved,
        "changes_requested": responded - approved,
        "progress_percent": _percent(responded, total),
    }


def review_breakdown(items) -> dict:
    """Item count per review status."""
    counts = {status: 0 for status in REVIEW_STATUSES}
    for item in items:
        counts[status_of(item.responses)] += 1
    return counts


def get_response(item: ChecklistItem, guest: Guest) -> ItemResponse | None:
    return ItemResponse.query.filter_by(checklist_item_id=item.id, guest_id=guest.id).first()


def submit_response(
    item: ChecklistItem,
    guest: Guest,
    status: str,
    feedback: str | None = None,
) -> ItemResponse:
    """Create or replace ``guest``'s verdict on ``item`` (one per pair).

    After the write the item's active run is closed for remediation when
    the verdicts now require it.

    Raises:
        NotFoundError: item is not in the guest's session.
        InvalidStateError: session is not active.
        ValidationError: unknown status, or changes_requested without feedback.
    """
    if item.session_id != guest.session_id:
        raise NotFoundError(resource="ChecklistItem", resource_id=item.id, session_id=guest.session_id)
    assert_session_writable(item.session, GuestActor(guest.id, guest.name))

    if not isinstance(status, str) or status not in RESPONSE_STATUSES:
        raise ValidationError(
            f"Invalid status '{status}'",
            details={"status": f"one of {sorted(RESPONSE_STATUSES)}"},
        )
    if feedback is not None and not isinstance(feedback, str):
        raise ValidationError("feedback must be a string", details={"feedback": "string expected"})
    feedback = (feedback or "").strip() or None
    if status == "changes_requested" and not feedback:
        raise ValidationError("Feedback is required when requesting changes",
                              details={"feedback": "required for changes_requested"})

    now = datetime.now(timezone.utc)
    response = get_response(item, guest)
    if response is None:
        response = ItemResponse(item=item, guest=guest, created_at=now)
        db.session.add(response)
    response.status = status
    response.feedback = feedback
    # Always bumped, even for an identical resubmission; run closing keys off it
    response.updated_at = now
    db.session.flush()

    logger.info(
        "Response recorded: item=%s guest=%s status=%s",
        item.id, guest.id, status,
        extra={"session_id": item.session_id, "item_id": item.id, "event_type": "response_recorded"},
    )
    test_run_service.close_run_for_remediation(item)
    return response

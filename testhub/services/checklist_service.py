"""
Checklist Item & Step Registry.

CRUD and ordering for the items of a UAT session and the steps of an item.

Ordering contract:
    Items sort by (order, id) within their session, steps by (order, id)
    within their item.  New rows are appended at max(order) + 1 (0 for the
    first).  No gap filling is done on delete; ties fall back to creation
    order.

Writes are refused once the owning session is ``completed``; reopen the
session first.  All functions flush only; callers commit.
"""

from __future__ import annotations

import copy
import logging

from sqlalchemy import func

from testhub.core.exceptions import NotFoundError, ValidationError
from testhub.models import db
from testhub.models.uat import (
    ITEM_TYPES,
    ITEM_WORKFLOW_STATUSES,
    STEP_TYPES,
    ChecklistItem,
    ChecklistItemStep,
    UatSession,
)
from testhub.services.access_service import assert_session_writable
from testhub.utils.helpers import parse_date

logger = logging.getLogger(__name__)

IMPORT_SCHEMA_VERSION = "1.0"

ITEM_TEXT_FIELDS = (
    "instructions", "reference_url", "image_url", "category",
    "internal_note", "next_action", "owner_id",
)
STEP_TEXT_FIELDS = (
    "instructions", "expected_result", "notes_prompt", "link_url",
)


# ── Private helpers ────────────────────────────────────────────────────────────


def _require_title(value, field: str = "title") -> str:
    title = value.strip() if isinstance(value, str) else ""
    if not title:
        raise ValidationError(f"{field} is required", details={field: "required"})
    return title


def _next_order(column, parent_column, parent_id: int) -> int:
    current = db.session.query(func.max(column)).filter(parent_column == parent_id).scalar()
    return 0 if current is None else current + 1


def _coerce_int(value, field: str, allow_none: bool = True):
    if value is None and allow_none:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", details={field: "integer expected"})
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be an integer", details={field: "integer expected"}) from exc


def _coerce_bool(value, field: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ValidationError(f"{field} must be a boolean", details={field: "boolean expected"})


def _apply_item_fields(item: ChecklistItem, data: dict) -> None:
    for field in ITEM_TEXT_FIELDS:
        if field in data:
            value = data[field]
            setattr(item, field, str(value) if value is not None else None)

    if "item_type" in data:
        item_type = data["item_type"] or "approval"
        if not isinstance(item_type, str) or item_type not in ITEM_TYPES:
            raise ValidationError(
                f"Invalid item_type '{item_type}'",
                details={"item_type": f"one of {sorted(ITEM_TYPES)}"},
            )
        item.item_type = item_type

    if "status" in data:
        status = data["status"]
        if not isinstance(status, str) or status not in ITEM_WORKFLOW_STATUSES:
            raise ValidationError(
                f"Invalid status '{status}'",
                details={"status": f"one of {sorted(ITEM_WORKFLOW_STATUSES)}"},
            )
        item.status = status

    if "due_date" in data:
        raw = data["due_date"]
        parsed = parse_date(raw)
        if raw and parsed is None:
            raise ValidationError("Invalid due_date", details={"due_date": "YYYY-MM-DD expected"})
        item.due_date = parsed

    if "custom_fields" in data:
        custom = data["custom_fields"]
        if custom is not None and not isinstance(custom, dict):
            raise ValidationError("custom_fields must be an object",
                                  details={"custom_fields": "object expected"})
        item.custom_fields = custom

    if "order" in data and data["order"] is not None:
        item.order = _coerce_int(data["order"], "order")


def _apply_step_fields(step: ChecklistItemStep, data: dict) -> None:
    for field in STEP_TEXT_FIELDS:
        if field in data:
            value = data[field]
            setattr(step, field, str(value) if value is not None else None)

    if "step_type" in data:
        step_type = data["step_type"] or "test"
        if not isinstance(step_type, str) or step_type not in STEP_TYPES:
            raise ValidationError(
                f"Invalid step_type '{step_type}'",
                details={"step_type": f"one of {sorted(STEP_TYPES)}"},
            )
        step.step_type = step_type

    for flag in ("is_required", "notes_required"):
        if flag in data and data[flag] is not None:
            setattr(step, flag, _coerce_bool(data[flag], flag))

    if "estimated_duration_minutes" in data:
        minutes = _coerce_int(data["estimated_duration_minutes"], "estimated_duration_minutes")
        if minutes is not None and minutes < 0:
            raise ValidationError("estimated_duration_minutes must not be negative",
                                  details={"estimated_duration_minutes": "must be >= 0"})
        step.estimated_duration_minutes = minutes

    if "order" in data and data["order"] is not None:
        step.order = _coerce_int(data["order"], "order")


# ═════════════════════════════════════════════════════════════════════════════
# Lookups
# ═════════════════════════════════════════════════════════════════════════════


def get_item(item_id: int, session_id: int | None = None) -> ChecklistItem:
    """Fetch an item, optionally scoped to a session (cross-session → NotFound)."""
    item = db.session.get(ChecklistItem, item_id)
    if item is None or (session_id is not None and item.session_id != session_id):
        raise NotFoundError(resource="ChecklistItem", resource_id=item_id, session_id=session_id)
    return item


def get_step(step_id: int, item_id: int | None = None, session_id: int | None = None) -> ChecklistItemStep:
    step = db.session.get(ChecklistItemStep, step_id)
    if step is None:
        raise NotFoundError(resource="ChecklistItemStep", resource_id=step_id, session_id=session_id)
    if item_id is not None and step.item_id != item_id:
        raise NotFoundError(resource="ChecklistItemStep", resource_id=step_id, session_id=session_id)
    if session_id is not None and step.item.session_id != session_id:
        raise NotFoundError(resource="ChecklistItemStep", resource_id=step_id, session_id=session_id)
    return step


def list_items(uat_session: UatSession) -> list[ChecklistItem]:
    return (
        ChecklistItem.query
        .filter_by(session_id=uat_session.id)
        .order_by(ChecklistItem.order, ChecklistItem.id)
        .all()
    )


def list_steps(item: ChecklistItem) -> list[ChecklistItemStep]:
    return (
        ChecklistItemStep.query
        .filter_by(item_id=item.id)
        .order_by(ChecklistItemStep.order, ChecklistItemStep.id)
        .all()
    )


# ═════════════════════════════════════════════════════════════════════════════
# Items
# ═════════════════════════════════════════════════════════════════════════════


def create_item(uat_session: UatSession, data: dict) -> ChecklistItem:
    """Create an item at the end of the session's checklist.

    Required: title.  Everything else optional; ``order`` defaults to
    max(order) + 1 within the session.
    """
    assert_session_writable(uat_session)
    title = _require_title(data.get("title"))

    item = ChecklistItem(
        session=uat_session,
        title=title,
        order=_next_order(ChecklistItem.order, ChecklistItem.session_id, uat_session.id),
    )
    _apply_item_fields(item, data)
    db.session.add(item)
    db.session.flush()
    logger.info("Checklist item created: id=%s session=%s", item.id, uat_session.id,
                extra={"session_id": uat_session.id, "item_id": item.id})
    return item


def update_item(item: ChecklistItem, data: dict) -> ChecklistItem:
    assert_session_writable(item.session)
    if "title" in data:
        item.title = _require_title(data["title"])
    _apply_item_fields(item, data)
    db.session.flush()
    return item


def delete_item(item: ChecklistItem) -> None:
    """Delete an item; steps, runs, results, responses and comments cascade."""
    assert_session_writable(item.session)
    item_id, session_id = item.id, item.session_id
    db.session.delete(item)
    db.session.flush()
    logger.info("Checklist item deleted: id=%s session=%s", item_id, session_id,
                extra={"session_id": session_id, "item_id": item_id})


def duplicate_item(item: ChecklistItem) -> ChecklistItem:
    """Clone an item and its steps to the end of the same session.

    The clone gets "<title> (Copy)", every descriptive field and a copy of
    every step (same order, type and flags).  Responses, runs, comments
    and the last-reviewed/resolved audit fields are not carried over.
    """
    uat_session = item.session
    assert_session_writable(uat_session)

    clone = ChecklistItem(
        session=uat_session,
        title=f"{item.title} (Copy)",
        order=_next_order(ChecklistItem.order, ChecklistItem.session_id, uat_session.id),
    )
    for field in ChecklistItem.COPY_FIELDS:
        setattr(clone, field, copy.deepcopy(getattr(item, field)))
    db.session.add(clone)

    for step in list_steps(item):
        clone.steps.append(ChecklistItemStep(
            **{field: getattr(step, field) for field in ChecklistItemStep.COPY_FIELDS},
        ))

    db.session.flush()
    logger.info("Checklist item duplicated: %s → %s (%d steps)",
                item.id, clone.id, len(clone.steps),
                extra={"session_id": uat_session.id, "item_id": clone.id})
    return clone


def reorder_items(uat_session: UatSession, item_ids: list) -> list[ChecklistItem]:
    """Assign order = position for the given ids; unlisted items follow in their current order."""
    assert_session_writable(uat_session)
    ordered = _reorder(list_items(uat_session), item_ids, "item_ids")
    db.session.flush()
    return ordered


# ═════════════════════════════════════════════════════════════════════════════
# Steps
# ═════════════════════════════════════════════════════════════════════════════


def create_step(item: ChecklistItem, data: dict) -> ChecklistItemStep:
    """Append a step to an item.  step_type defaults to ``test``."""
    assert_session_writable(item.session)
    title = _require_title(data.get("title"))

    step = ChecklistItemStep(
        item=item,
        title=title,
        step_type="test",
        is_required=True,
        notes_required=False,
        order=_next_order(ChecklistItemStep.order, ChecklistItemStep.item_id, item.id),
    )
    _apply_step_fields(step, data)
    db.session.add(step)
    db.session.flush()
    return step


def update_step(step: ChecklistItemStep, data: dict) -> ChecklistItemStep:
    assert_session_writable(step.item.session)
    if "title" in data:
        step.title = _require_title(data["title"])
    _apply_step_fields(step, data)
    db.session.flush()
    return step


def delete_step(step: ChecklistItemStep) -> None:
    """Delete a step; its results in every run cascade."""
    assert_session_writable(step.item.session)
    db.session.delete(step)
    db.session.flush()


def reorder_steps(item: ChecklistItem, step_ids: list) -> list[ChecklistItemStep]:
    assert_session_writable(item.session)
    ordered = _reorder(list_steps(item), step_ids, "step_ids")
    db.session.flush()
    return ordered


def _reorder(rows: list, ids: list, field: str) -> list:
    by_id = {row.id: row for row in rows}
    wanted = [_coerce_int(i, field, allow_none=False) for i in ids]

    if len(set(wanted)) != len(wanted):
        raise ValidationError(f"{field} contains duplicates", details={field: "duplicate ids"})
    foreign = [i for i in wanted if i not in by_id]
    if foreign:
        raise ValidationError(
            f"{field} contains ids outside this parent",
            details={field: f"unknown ids: {foreign}"},
        )

    listed = set(wanted)
    ordered = [by_id[i] for i in wanted] + [row for row in rows if row.id not in listed]
    for position, row in enumerate(ordered):
        row.order = position
    return ordered


# ═════════════════════════════════════════════════════════════════════════════
# Bulk import
# ═════════════════════════════════════════════════════════════════════════════


def validate_import_payload(payload) -> dict:
    """Validate an import document entry by entry.

    Returns {"valid": [(index, entry), ...], "errors": [{index, title, errors}, ...]}.
    Raises ValidationError only for a malformed document as a whole.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Import payload must be an object")
    version = payload.get("version", IMPORT_SCHEMA_VERSION)
    if version != IMPORT_SCHEMA_VERSION:
        raise ValidationError(
            f"Unsupported import version '{version}'",
            details={"version": f"expected {IMPORT_SCHEMA_VERSION}"},
        )
    entries = payload.get("items")
    if not isinstance(entries, list) or not entries:
        raise ValidationError("items must be a non-empty list", details={"items": "required"})

    valid, errors = [], []
    for index, entry in enumerate(entries):
        entry_errors = []
        if not isinstance(entry, dict):
            errors.append({"index": index, "title": None, "errors": ["Item must be an object"]})
            continue

        title = entry.get("title")
        if not isinstance(title, str) or not title.strip():
            entry_errors.append("title is required")
        item_type = entry.get("item_type")
        if item_type is not None and (not isinstance(item_type, str) or item_type not in ITEM_TYPES):
            entry_errors.append(f"Invalid item_type '{item_type}'")

        steps = entry.get("steps", [])
        if not isinstance(steps, list):
            entry_errors.append("steps must be a list")
            steps = []
        for step_index, step in enumerate(steps):
            if not isinstance(step, dict):
                entry_errors.append(f"Step {step_index + 1}: must be an object")
                continue
            step_title = step.get("title")
            if not isinstance(step_title, str) or not step_title.strip():
                entry_errors.append(f"Step {step_index + 1}: title is required")
            step_type = step.get("step_type")
            if step_type is not None and (not isinstance(step_type, str) or step_type not in STEP_TYPES):
                entry_errors.append(f"Step {step_index + 1}: invalid step_type '{step_type}'")

        if entry_errors:
            errors.append({"index": index, "title": title, "errors": entry_errors})
        else:
            valid.append((index, entry))

    return {"valid": valid, "errors": errors}


def import_items(uat_session: UatSession, payload) -> dict:
    """Bulk-create items (with steps) from an import document.

    Valid entries are created in document order; invalid ones are reported
    and skipped.
    """
    assert_session_writable(uat_session)
    validation = validate_import_payload(payload)

    created = []
    for _index, entry in validation["valid"]:
        item = create_item(uat_session, {k: v for k, v in entry.items() if k != "steps"})
        for step_data in entry.get("steps", []):
            create_step(item, step_data)
        created.append(item)

    logger.info("Checklist import: session=%s created=%d errors=%d",
                uat_session.id, len(created), len(validation["errors"]),
                extra={"session_id": uat_session.id})
    return {
        "created": len(created),
        "errors": len(validation["errors"]),
        "items": [item.to_dict(include_steps=True) for item in created],
        "error_details": validation["errors"],
    }

"""
Test Run & Step Result Engine.

Per-item state machine (derived, never stored):

    no_run
      └─ open_run ──────────────→ run_active
                                     └─ all required steps have a result
                                        → run_completed_pending_response
    guest requests changes after the run started
      → run closed (completed) ──→ needs_remediation
                                     └─ open_run → remediation_run_active
                                                     └─ … cycle repeats …
    review status approved and the latest run finished → resolved

Business rules:
    - At most one ``active`` run per item.  run_number = max + 1, no gaps.
    - A run is complete when every ``is_required`` step has a non-null
      result in it.  delay / info steps complete with ``acknowledged``.
    - A step result is an upsert keyed by (run, step); last write wins.
    - Completed / archived runs are read-only.  A remediation retest starts
      from zero results; earlier results are history, never copied forward.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func

from testhub.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from testhub.models import db
from testhub.models.uat import (
    ACKNOWLEDGE_STEP_TYPES,
    STEP_RESULT_STATUSES,
    ChecklistItem,
    ChecklistItemStep,
    TestRun,
    TestStepResult,
)
from testhub.services.access_service import Actor, GuestActor, assert_session_writable
from testhub.utils.helpers import as_utc

logger = logging.getLogger(__name__)

TESTING_STATES = (
    "no_run",
    "run_active",
    "run_completed_pending_response",
    "needs_remediation",
    "remediation_run_active",
    "resolved",
)

# Results that count as "this step is fine"
GREEN_STATUSES = {"passed", "acknowledged"}


# ═════════════════════════════════════════════════════════════════════════════
# Lookups
# ═════════════════════════════════════════════════════════════════════════════


def get_run(run_id: int, session_id: int | None = None) -> TestRun:
    run = db.session.get(TestRun, run_id)
    if run is None or (session_id is not None and run.item.session_id != session_id):
        raise NotFoundError(resource="TestRun", resource_id=run_id, session_id=session_id)
    return run


def get_active_run(item: ChecklistItem) -> TestRun | None:
    return TestRun.query.filter_by(item_id=item.id, status="active").first()


def list_runs(item: ChecklistItem) -> list[TestRun]:
    """All runs of an item, newest first."""
    return (
        TestRun.query
        .filter_by(item_id=item.id)
        .order_by(TestRun.run_number.desc())
        .all()
    )


def _results_by_step(run: TestRun) -> dict[int, TestStepResult]:
    rows = TestStepResult.query.filter_by(run_id=run.id).all()
    return {r.step_id: r for r in rows}


# ═════════════════════════════════════════════════════════════════════════════
# Run lifecycle
# ═════════════════════════════════════════════════════════════════════════════


def _create_run(item: ChecklistItem, actor: Actor | None) -> TestRun:
    current_max = (
        db.session.query(func.max(TestRun.run_number))
        .filter(TestRun.item_id == item.id)
        .scalar()
    )
    run = TestRun(
        item=item,
        run_number=1 if current_max is None else current_max + 1,
        status="active",
        trigger_reason="initial" if current_max is None else "remediation_retest",
        started_at=datetime.now(timezone.utc),
    )
    if actor is not None:
        run.triggered_by_type = actor.actor_type
        run.triggered_by_id = actor.actor_id
        run.triggered_by_name = actor.name
    db.session.add(run)
    db.session.flush()
    logger.info(
        "Test run opened: item=%s run_number=%s reason=%s",
        item.id, run.run_number, run.trigger_reason,
        extra={"session_id": item.session_id, "item_id": item.id, "event_type": "run_opened"},
    )
    return run


def open_run(item: ChecklistItem, actor: Actor | None = None) -> TestRun:
    """Return the item's active run, creating the next one if there is none.

    This is the implicit "testing interaction": the first call creates run 1
    (``initial``); after a run was closed for remediation the next call
    creates max + 1 (``remediation_retest``).
    """
    run = get_active_run(item)
    if run is not None:
        return run
    assert_session_writable(item.session, actor)
    return _create_run(item, actor)


def start_retest(item: ChecklistItem, actor: Actor | None = None) -> TestRun:
    """Archive any active run and open the next one (explicit staff retest)."""
    assert_session_writable(item.session, actor)
    active = get_active_run(item)
    if active is not None:
        active.status = "archived"
        active.completed_at = datetime.now(timezone.utc)
        db.session.flush()
        logger.info("Test run archived: item=%s run_number=%s", item.id, active.run_number,
                    extra={"session_id": item.session_id, "item_id": item.id})
    return _create_run(item, actor)


def is_run_complete(run: TestRun) -> bool:
    """True when every required step of the item has a non-null result in ``run``."""
    results = _results_by_step(run)
    for step in run.item.steps:
        if not step.is_required:
            continue
        result = results.get(step.id)
        if result is None or result.status is None:
            return False
    return True


def close_run_for_remediation(item: ChecklistItem) -> TestRun | None:
    """Complete the active run when a guest rejected the item during or after it.

    Called after every Response write and every step result.  Conditions,
    all required:
      - the item's review status is ``needs_remediation``;
      - the active run is complete;
      - some ``changes_requested`` response was written at or after the
        run started (an older rejection belongs to an earlier cycle).
    Returns the closed run, or None when nothing changed.
    """
    from testhub.services.response_service import status_of

    if status_of(item.responses) != "needs_remediation":
        return None
    run = get_active_run(item)
    if run is None or not is_run_complete(run):
        return None

    started = as_utc(run.started_at)
    rejected_in_run = any(
        r.status == "changes_requested" and as_utc(r.updated_at or r.created_at) >= started
        for r in item.responses
    )
    if not rejected_in_run:
        return None

    run.status = "completed"
    run.completed_at = datetime.now(timezone.utc)
    db.session.flush()
    logger.info(
        "Test run closed for remediation: item=%s run_number=%s",
        item.id, run.run_number,
        extra={"session_id": item.session_id, "item_id": item.id, "event_type": "run_closed"},
    )
    return run


# ═════════════════════════════════════════════════════════════════════════════
# Step results
# ═════════════════════════════════════════════════════════════════════════════


def _validate_result(step: ChecklistItemStep, status, notes):
    if status is not None and (not isinstance(status, str) or status not in STEP_RESULT_STATUSES):
        raise ValidationError(
            f"Invalid status '{status}'",
            details={"status": f"one of {sorted(STEP_RESULT_STATUSES)} or null"},
        )
    if step.step_type in ACKNOWLEDGE_STEP_TYPES and status in ("passed", "failed"):
        raise ValidationError(
            f"{step.step_type} steps are acknowledged, not passed or failed",
            details={"status": "acknowledged expected"},
        )
    if step.step_type == "test" and status == "acknowledged":
        raise ValidationError(
            "test steps must be passed or failed",
            details={"status": "passed or failed expected"},
        )

    if notes is not None and not isinstance(notes, str):
        raise ValidationError("notes must be a string", details={"notes": "string expected"})
    notes = (notes or "").strip() or None

    if status == "failed" and not notes:
        raise ValidationError("Notes are required when a step fails",
                              details={"notes": "required for failed steps"})
    if status is not None and step.notes_required and not notes:
        raise ValidationError(step.notes_prompt or "Notes are required for this step",
                              details={"notes": "required for this step"})
    return notes


def record_step_result(
    run: TestRun,
    step: ChecklistItemStep,
    actor: Actor,
    status: str | None,
    notes: str | None = None,
) -> TestStepResult:
    """Upsert the result of ``step`` in ``run`` (last write wins).

    Raises:
        InvalidStateError: run is not active, or the session refuses writes.
        ValidationError: step outside the run's item, bad status for the
                         step type, or missing notes.
    """
    if run.status != "active":
        raise InvalidStateError(
            f"Run {run.run_number} is {run.status} and read-only",
            current_state=run.status,
        )
    if step.item_id != run.item_id:
        raise ValidationError("Step does not belong to this run's item",
                              details={"step_id": "not part of this item"})
    item = run.item
    assert_session_writable(item.session, actor)
    notes = _validate_result(step, status, notes)

    now = datetime.now(timezone.utc)
    result = TestStepResult.query.filter_by(run_id=run.id, step_id=step.id).first()
    if result is None:
        result = TestStepResult(run=run, step=step)
        db.session.add(result)

    result.status = status
    result.notes = notes
    result.tester_type = actor.actor_type
    result.tester_id = actor.actor_id
    result.tester_name = actor.name
    result.guest_id = actor.guest_id if isinstance(actor, GuestActor) else None
    result.tested_at = now
    result.updated_at = now
    db.session.flush()

    _update_item_audit(item, run, actor, now)
    # A rejection written mid-run takes effect once the last step is in
    close_run_for_remediation(item)
    return result


def _update_item_audit(item: ChecklistItem, run: TestRun, actor: Actor, now: datetime) -> None:
    item.last_reviewed_at = now
    item.last_reviewed_by_name = actor.name
    item.last_reviewed_by_type = actor.actor_type

    results = _results_by_step(run)
    steps = item.steps
    if steps and all(
        results.get(s.id) is not None and results[s.id].status in GREEN_STATUSES
        for s in steps
    ):
        item.last_resolved_at = now
        item.last_resolved_by_name = actor.name
    db.session.flush()


def run_step_view(run: TestRun) -> list[dict]:
    """Every step of the run's item merged with its result in this run (or None)."""
    results = _results_by_step(run)
    rows = []
    for step in run.item.steps:
        result = results.get(step.id)
        rows.append({
            "step": step.to_dict(),
            "result": result.to_dict() if result else None,
        })
    return rows


# ═════════════════════════════════════════════════════════════════════════════
# Derived state & progress
# ═════════════════════════════════════════════════════════════════════════════


def testing_state(item: ChecklistItem) -> str:
    from testhub.services.response_service import status_of

    runs = item.runs
    if not runs:
        return "no_run"
    review = status_of(item.responses)
    active = next((r for r in runs if r.status == "active"), None)

    if active is not None:
        if is_run_complete(active):
            return "resolved" if review == "approved" else "run_completed_pending_response"
        if active.trigger_reason == "remediation_retest":
            return "remediation_run_active"
        return "run_active"
    return "resolved" if review == "approved" else "needs_remediation"


def step_progress(item: ChecklistItem) -> dict:
    """Step totals on the active run, else on the latest run."""
    runs = item.runs
    run = next((r for r in runs if r.status == "active"), None)
    if run is None and runs:
        run = max(runs, key=lambda r: r.run_number)

    steps = item.steps
    total = len(steps)
    passed = failed = 0
    if run is not None:
        results = _results_by_step(run)
        for step in steps:
            result = results.get(step.id)
            if result is None:
                continue
            if result.status in GREEN_STATUSES:
                passed += 1
            elif result.status == "failed":
                failed += 1

    return {
        "run_id": run.id if run else None,
        "run_number": run.run_number if run else None,
        "total": total,
        "passed": passed,
        "failed": failed,
        "pending": total - passed - failed,
    }


def run_history(item: ChecklistItem) -> list[dict]:
    """Runs newest first, each with its result counts."""
    history = []
    for run in list_runs(item):
        results = _results_by_step(run).values()
        d = run.to_dict()
        d["passed"] = sum(1 for r in results if r.status in GREEN_STATUSES)
        d["failed"] = sum(1 for r in results if r.status == "failed")
        d["result_count"] = sum(1 for r in results if r.status is not None)
        history.append(d)
    return history

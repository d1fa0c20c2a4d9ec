"""Tests for test_run_service: runs, step results and the testing state machine.

Coverage:
  1. open_run creates run 1 once, then returns the same active run
  2. Step result upsert, per-type status rules, notes rules
  3. Completed / archived runs are read-only
  4. Remediation: rejection closes a complete run, next run starts from zero
  5. testing_state walks the documented cycle
  6. step_progress / run_history
  7. Item audit fields (last reviewed / resolved)
"""

import pytest

from testhub.core.exceptions import InvalidStateError, ValidationError
from testhub.models import db
from testhub.models.uat import TestRun, TestStepResult
from testhub.services import checklist_service, response_service, session_service, test_run_service
from testhub.services.access_service import GuestActor, InternalActor

STAFF = InternalActor("staff-1", "Sam Staff")


def _steps(item):
    return checklist_service.list_steps(item)


def _complete(run, actor=STAFF):
    """Record a green result for every step of the run's item."""
    for step in _steps(run.item):
        status = "acknowledged" if step.step_type in ("delay", "info") else "passed"
        test_run_service.record_step_result(run, step, actor, status)


class TestOpenRun:

    def test_first_run_is_initial(self, item_with_steps):
        run = test_run_service.open_run(item_with_steps, STAFF)
        assert run.run_number == 1
        assert run.status == "active"
        assert run.trigger_reason == "initial"
        assert run.triggered_by_type == "internal"
        assert run.triggered_by_id == "staff-1"

    def test_open_run_is_idempotent(self, item_with_steps):
        first = test_run_service.open_run(item_with_steps, STAFF)
        second = test_run_service.open_run(item_with_steps, STAFF)
        assert first.id == second.id
        assert TestRun.query.filter_by(item_id=item_with_steps.id).count() == 1

    def test_start_retest_archives_active_run(self, item_with_steps):
        first = test_run_service.open_run(item_with_steps, STAFF)
        second = test_run_service.start_retest(item_with_steps, STAFF)
        assert first.status == "archived"
        assert first.completed_at is not None
        assert second.run_number == 2
        assert second.trigger_reason == "remediation_retest"
        assert TestRun.query.filter_by(item_id=item_with_steps.id, status="active").count() == 1

    def test_guest_cannot_open_run_in_draft_session(self, guest, item_with_steps, uat_session):
        session_service.change_status(uat_session, "draft")
        with pytest.raises(InvalidStateError):
            test_run_service.open_run(item_with_steps, GuestActor(guest.id, guest.name))


class TestRecordStepResult:

    def test_upsert_last_write_wins(self, item_with_steps):
        run = test_run_service.open_run(item_with_steps, STAFF)
        step = _steps(item_with_steps)[0]
        test_run_service.record_step_result(run, step, STAFF, "failed", "Button missing")
        result = test_run_service.record_step_result(run, step, STAFF, "passed")
        assert result.status == "passed"
        assert result.notes is None
        assert TestStepResult.query.filter_by(run_id=run.id, step_id=step.id).count() == 1

    def test_failed_requires_notes(self, item_with_steps):
        run = test_run_service.open_run(item_with_steps, STAFF)
        with pytest.raises(ValidationError):
            test_run_service.record_step_result(run, _steps(item_with_steps)[0], STAFF, "failed", "   ")

    def test_notes_required_step(self, item_with_steps):
        step = _steps(item_with_steps)[0]
        checklist_service.update_step(step, {"notes_required": True, "notes_prompt": "Which browser?"})
        run = test_run_service.open_run(item_with_steps, STAFF)
        with pytest.raises(ValidationError) as exc:
            test_run_service.record_step_result(run, step, STAFF, "passed")
        assert str(exc.value) == "Which browser?"
        result = test_run_service.record_step_result(run, step, STAFF, "passed", "Firefox")
        assert result.notes == "Firefox"

    def test_info_step_must_be_acknowledged(self, item_with_steps):
        run = test_run_service.open_run(item_with_steps, STAFF)
        info = _steps(item_with_steps)[2]
        with pytest.raises(ValidationError):
            test_run_service.record_step_result(run, info, STAFF, "passed")
        assert test_run_service.record_step_result(run, info, STAFF, "acknowledged").status == "acknowledged"

    def test_test_step_cannot_be_acknowledged(self, item_with_steps):
        run = test_run_service.open_run(item_with_steps, STAFF)
        with pytest.raises(ValidationError):
            test_run_service.record_step_result(run, _steps(item_with_steps)[0], STAFF, "acknowledged")

    def test_unknown_status(self, item_with_steps):
        run = test_run_service.open_run(item_with_steps, STAFF)
        with pytest.raises(ValidationError):
            test_run_service.record_step_result(run, _steps(item_with_steps)[0], STAFF, "skipped")

    def test_null_status_clears_result(self, item_with_steps):
        run = test_run_service.open_run(item_with_steps, STAFF)
        step = _steps(item_with_steps)[0]
        test_run_service.record_step_result(run, step, STAFF, "passed")
        result = test_run_service.record_step_result(run, step, STAFF, None)
        assert result.status is None

    def test_step_from_other_item_rejected(self, uat_session, item_with_steps):
        other = checklist_service.create_item(uat_session, {"title": "Other"})
        foreign = checklist_service.create_step(other, {"title": "Elsewhere"})
        run = test_run_service.open_run(item_with_steps, STAFF)
        with pytest.raises(ValidationError):
            test_run_service.record_step_result(run, foreign, STAFF, "passed")

    def test_archived_run_is_read_only(self, item_with_steps):
        first = test_run_service.open_run(item_with_steps, STAFF)
        test_run_service.start_retest(item_with_steps, STAFF)
        with pytest.raises(InvalidStateError):
            test_run_service.record_step_result(first, _steps(item_with_steps)[0], STAFF, "passed")

    def test_guest_result_records_guest(self, guest, item_with_steps):
        actor = GuestActor(guest.id, guest.name)
        run = test_run_service.open_run(item_with_steps, actor)
        result = test_run_service.record_step_result(run, _steps(item_with_steps)[0], actor, "passed")
        assert result.tester_type == "guest"
        assert result.tester_id == str(guest.id)
        assert result.guest_id == guest.id
        assert result.tested_at is not None


class TestRunCompletion:

    def test_optional_steps_do_not_block_completion(self, item_with_steps):
        steps = _steps(item_with_steps)
        checklist_service.update_step(steps[2], {"is_required": False})
        run = test_run_service.open_run(item_with_steps, STAFF)
        test_run_service.record_step_result(run, steps[0], STAFF, "passed")
        assert not test_run_service.is_run_complete(run)
        test_run_service.record_step_result(run, steps[1], STAFF, "failed", "404 on submit")
        assert test_run_service.is_run_complete(run)

    def test_cleared_result_is_incomplete(self, item_with_steps):
        run = test_run_service.open_run(item_with_steps, STAFF)
        _complete(run)
        test_run_service.record_step_result(run, _steps(item_with_steps)[0], STAFF, None)
        assert not test_run_service.is_run_complete(run)


class TestRemediationCycle:
    """no_run → run_active → pending response → needs_remediation → retest → resolved."""

    def test_full_cycle(self, item_with_steps, guest):
        item = item_with_steps
        assert test_run_service.testing_state(item) == "no_run"

        run1 = test_run_service.open_run(item, STAFF)
        assert test_run_service.testing_state(item) == "run_active"

        _complete(run1)
        assert test_run_service.testing_state(item) == "run_completed_pending_response"

        response_service.submit_response(item, guest, "changes_requested", "Wrong button colour")
        assert run1.status == "completed"
        assert run1.completed_at is not None
        assert test_run_service.testing_state(item) == "needs_remediation"

        run2 = test_run_service.open_run(item, STAFF)
        assert run2.run_number == 2
        assert run2.trigger_reason == "remediation_retest"
        assert test_run_service.run_step_view(run2)[0]["result"] is None
        assert test_run_service.testing_state(item) == "remediation_run_active"

        _complete(run2)
        assert test_run_service.testing_state(item) == "run_completed_pending_response"

        response_service.submit_response(item, guest, "approved")
        assert run2.status == "active"
        assert test_run_service.testing_state(item) == "resolved"

    def test_rejection_mid_run_keeps_run_open(self, item_with_steps, guest):
        run = test_run_service.open_run(item_with_steps, STAFF)
        test_run_service.record_step_result(run, _steps(item_with_steps)[0], STAFF, "passed")
        response_service.submit_response(item_with_steps, guest, "changes_requested", "Broken")
        assert run.status == "active"
        assert test_run_service.testing_state(item_with_steps) == "run_active"

    def test_rejection_mid_run_closes_run_when_last_step_recorded(self, item_with_steps, guest):
        steps = _steps(item_with_steps)
        run = test_run_service.open_run(item_with_steps, STAFF)
        test_run_service.record_step_result(run, steps[0], STAFF, "failed", "Spinner never stops")
        response_service.submit_response(item_with_steps, guest, "changes_requested", "Form hangs")
        assert run.status == "active"

        test_run_service.record_step_result(run, steps[1], STAFF, "passed")
        assert run.status == "active"
        test_run_service.record_step_result(run, steps[2], STAFF, "acknowledged")

        assert run.status == "completed"
        assert test_run_service.testing_state(item_with_steps) == "needs_remediation"
        retest = test_run_service.open_run(item_with_steps, STAFF)
        assert retest.run_number == 2
        assert retest.trigger_reason == "remediation_retest"

    def test_approval_does_not_close_run(self, item_with_steps, guest):
        run = test_run_service.open_run(item_with_steps, STAFF)
        _complete(run)
        response_service.submit_response(item_with_steps, guest, "approved")
        assert run.status == "active"

    def test_rejection_before_run_started_does_not_close_it(self, item_with_steps, guest):
        response_service.submit_response(item_with_steps, guest, "changes_requested", "Old complaint")
        run = test_run_service.open_run(item_with_steps, STAFF)
        _complete(run)
        assert test_run_service.close_run_for_remediation(item_with_steps) is None
        assert run.status == "active"

    def test_no_run_means_nothing_to_close(self, item_with_steps, guest):
        response_service.submit_response(item_with_steps, guest, "changes_requested", "Nope")
        assert test_run_service.close_run_for_remediation(item_with_steps) is None
        assert test_run_service.testing_state(item_with_steps) == "no_run"


class TestProgressAndHistory:

    def test_step_progress_on_active_run(self, item_with_steps):
        run = test_run_service.open_run(item_with_steps, STAFF)
        steps = _steps(item_with_steps)
        test_run_service.record_step_result(run, steps[0], STAFF, "passed")
        test_run_service.record_step_result(run, steps[1], STAFF, "failed", "Timeout")
        progress = test_run_service.step_progress(item_with_steps)
        assert progress == {
            "run_id": run.id,
            "run_number": 1,
            "total": 3,
            "passed": 1,
            "failed": 1,
            "pending": 1,
        }

    def test_step_progress_without_runs(self, item_with_steps):
        progress = test_run_service.step_progress(item_with_steps)
        assert progress["run_id"] is None
        assert progress["pending"] == 3

    def test_run_history_newest_first(self, item_with_steps):
        run1 = test_run_service.open_run(item_with_steps, STAFF)
        _complete(run1)
        test_run_service.start_retest(item_with_steps, STAFF)
        history = test_run_service.run_history(item_with_steps)
        assert [h["run_number"] for h in history] == [2, 1]
        assert history[1]["passed"] == 3
        assert history[0]["result_count"] == 0


class TestItemAudit:

    def test_last_reviewed_and_resolved(self, item_with_steps, guest):
        actor = GuestActor(guest.id, guest.name)
        run = test_run_service.open_run(item_with_steps, actor)
        steps = _steps(item_with_steps)
        test_run_service.record_step_result(run, steps[0], actor, "passed")
        assert item_with_steps.last_reviewed_by_name == "Dana Reviewer"
        assert item_with_steps.last_reviewed_by_type == "guest"
        assert item_with_steps.last_resolved_at is None

        _complete(run, actor)
        db.session.commit()
        assert item_with_steps.last_resolved_at is not None
        assert item_with_steps.last_resolved_by_name == "Dana Reviewer"

"""API tests for the reviewer portal (/api/uat/token/<token>).

Coverage:
  1. Only guest tokens resolve; payload strips internal fields
  2. /respond upsert, feedback rule, cross-session items, session state
  3. Guest-driven testing incl. the remediation retest after a rejection
  4. Guest comments
"""

from testhub.models import db
from testhub.services import checklist_service, session_service


def _url(token, path=""):
    return f"/api/uat/token/{token}{path}"


def _complete_run(client, token, run):
    for row in run["steps"]:
        step = row["step"]
        status = "acknowledged" if step["step_type"] in ("delay", "info") else "passed"
        res = client.put(_url(token, f"/runs/{run['id']}/steps/{step['id']}"), json={"status": status})
        assert res.status_code == 200, res.get_json()


class TestReviewerAccess:

    def test_portal_payload(self, client, uat_session, item_with_steps, guest):
        res = client.get(_url(guest.access_token))
        assert res.status_code == 200
        body = res.get_json()
        assert body["guest"]["name"] == "Dana Reviewer"
        assert "access_token" not in body["guest"]
        assert "invite_token" not in body["session"]
        item = body["items"][0]
        assert "internal_note" not in item
        assert "next_action" not in item
        assert item["my_response"] is None
        assert body["progress"]["total"] == 1

    def test_owner_token_refused(self, client, uat_session):
        res = client.get(_url(uat_session.invite_token))
        assert res.status_code == 404
        assert res.get_json()["error"] == "Access denied"

    def test_collaborator_token_refused(self, client, make_collaborator):
        assert client.get(_url(make_collaborator("pm").access_token)).status_code == 404

    def test_removed_guest_loses_access(self, client, guest):
        token = guest.access_token
        session_service.remove_guest(guest)
        db.session.commit()
        assert client.get(_url(token)).status_code == 404


class TestRespond:

    def test_approve_then_reject(self, client, item_with_steps, guest):
        token = guest.access_token
        res = client.post(_url(token, "/respond"),
                          json={"checklist_item_id": item_with_steps.id, "status": "approved"})
        assert res.status_code == 200
        assert res.get_json()["review_status"] == "approved"

        res = client.post(_url(token, "/respond"),
                          json={"checklist_item_id": item_with_steps.id,
                                "status": "changes_requested", "feedback": "Logo blurry"})
        body = res.get_json()
        assert body["review_status"] == "needs_remediation"
        assert body["response"]["feedback"] == "Logo blurry"

        mine = client.get(_url(token)).get_json()["items"][0]["my_response"]
        assert mine["status"] == "changes_requested"

    def test_feedback_required_for_changes(self, client, item_with_steps, guest):
        res = client.post(_url(guest.access_token, "/respond"),
                          json={"checklist_item_id": item_with_steps.id, "status": "changes_requested"})
        assert res.status_code == 422

    def test_missing_item_id(self, client, guest):
        res = client.post(_url(guest.access_token, "/respond"), json={"status": "approved"})
        assert res.status_code == 400

    def test_other_session_item_is_404(self, client, guest):
        other = session_service.create_session({"name": "Other"}, created_by_id="staff-2")
        foreign = checklist_service.create_item(other, {"title": "Foreign"})
        db.session.commit()
        res = client.post(_url(guest.access_token, "/respond"),
                          json={"checklist_item_id": foreign.id, "status": "approved"})
        assert res.status_code == 404

    def test_draft_session_refuses_responses(self, client, uat_session, item_with_steps, guest):
        session_service.change_status(uat_session, "draft")
        db.session.commit()
        res = client.post(_url(guest.access_token, "/respond"),
                          json={"checklist_item_id": item_with_steps.id, "status": "approved"})
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"

    def test_two_guests_one_rejection(self, client, item_with_steps, guest, second_guest):
        client.post(_url(guest.access_token, "/respond"),
                    json={"checklist_item_id": item_with_steps.id, "status": "approved"})
        res = client.post(_url(second_guest.access_token, "/respond"),
                          json={"checklist_item_id": item_with_steps.id,
                                "status": "changes_requested", "feedback": "Typo"})
        assert res.get_json()["review_status"] == "needs_remediation"


class TestGuestTesting:

    def test_steps_listing(self, client, item_with_steps, guest):
        steps = client.get(_url(guest.access_token, f"/items/{item_with_steps.id}/steps")).get_json()["items"]
        assert [s["title"] for s in steps] == ["Open homepage", "Submit form", "Read notes"]

    def test_remediation_cycle(self, client, item_with_steps, guest):
        token = guest.access_token
        item_id = item_with_steps.id

        assert client.get(_url(token, f"/items/{item_id}/active-run")).get_json()["run"] is None
        run1 = client.post(_url(token, f"/items/{item_id}/active-run")).get_json()["run"]
        assert run1["run_number"] == 1
        _complete_run(client, token, run1)

        res = client.post(_url(token, "/respond"),
                          json={"checklist_item_id": item_id, "status": "changes_requested",
                                "feedback": "Form posts twice"})
        assert res.get_json()["testing_state"] == "needs_remediation"

        # Closed run is read-only
        step_id = run1["steps"][0]["step"]["id"]
        res = client.put(_url(token, f"/runs/{run1['id']}/steps/{step_id}"), json={"status": "passed"})
        assert res.status_code == 409

        run2 = client.post(_url(token, f"/items/{item_id}/active-run")).get_json()["run"]
        assert run2["run_number"] == 2
        assert run2["trigger_reason"] == "remediation_retest"
        assert all(row["result"] is None for row in run2["steps"])

        _complete_run(client, token, run2)
        res = client.post(_url(token, "/respond"), json={"checklist_item_id": item_id, "status": "approved"})
        assert res.get_json()["testing_state"] == "resolved"

    def test_guest_result_attribution(self, client, item_with_steps, guest):
        token = guest.access_token
        run = client.post(_url(token, f"/items/{item_with_steps.id}/active-run")).get_json()["run"]
        step_id = run["steps"][0]["step"]["id"]
        body = client.put(_url(token, f"/runs/{run['id']}/steps/{step_id}"), json={"status": "passed"}).get_json()
        assert body["tester_type"] == "guest"
        assert body["guest_id"] == guest.id
        assert body["tester_name"] == "Dana Reviewer"


class TestGuestComments:

    def test_comment_thread(self, client, item_with_steps, guest, second_guest):
        url = f"/items/{item_with_steps.id}/comments"
        root = client.post(_url(guest.access_token, url), json={"body": "Button is green?"}).get_json()
        assert root["author_type"] == "guest"
        res = client.post(_url(second_guest.access_token, url),
                          json={"body": "Looks blue to me", "parent_id": root["id"]})
        assert res.status_code == 201

        thread = client.get(_url(guest.access_token, url)).get_json()["items"]
        assert thread[0]["replies"][0]["author_name"] == "Lee Reviewer"

    def test_cannot_edit_other_guests_comment(self, client, item_with_steps, guest, second_guest):
        url = f"/items/{item_with_steps.id}/comments"
        root = client.post(_url(guest.access_token, url), json={"body": "Mine"}).get_json()
        res = client.patch(_url(second_guest.access_token, f"/comments/{root['id']}"), json={"body": "Nope"})
        assert res.status_code == 403

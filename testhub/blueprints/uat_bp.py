"""
Internal staff API for UAT sessions.

Endpoint groups:
  Sessions         GET/POST        /api/v1/uat/sessions
                   GET/PATCH/DELETE /api/v1/uat/sessions/<id>
                   GET             /api/v1/uat/sessions/<id>/status
  Items            GET/POST        /api/v1/uat/sessions/<id>/items
                   POST            /api/v1/uat/sessions/<id>/items/import
                   POST            /api/v1/uat/sessions/<id>/items/reorder
                   GET/PATCH/DELETE /api/v1/uat/items/<id>
                   POST            /api/v1/uat/items/<id>/duplicate
  Steps            GET/POST        /api/v1/uat/items/<id>/steps
                   POST            /api/v1/uat/items/<id>/steps/reorder
                   PATCH/DELETE    /api/v1/uat/steps/<id>
  Members          GET/POST        /api/v1/uat/sessions/<id>/guests
                   DELETE          /api/v1/uat/guests/<id>
                   GET/POST        /api/v1/uat/sessions/<id>/collaborators
                   DELETE          /api/v1/uat/collaborators/<id>
  Test runs        GET/POST        /api/v1/uat/items/<id>/runs
                   GET             /api/v1/uat/items/<id>/active-run
                   GET             /api/v1/uat/runs/<id>/results
                   PUT             /api/v1/uat/runs/<run_id>/steps/<step_id>
  Comments         GET/POST        /api/v1/uat/items/<id>/comments
                   PATCH/DELETE    /api/v1/uat/comments/<id>

Staff identity comes from the X-User-Id / X-User-Name headers set by the
fronting gateway.  Services flush; this module commits.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from testhub.blueprints import json_body, register_error_handlers
from testhub.models.uat import UatSession
from testhub.services import (
    checklist_service,
    comment_service,
    session_service,
    test_run_service,
)
from testhub.services.access_service import InternalActor, PortalLinks
from testhub.utils.errors import E, api_error
from testhub.utils.helpers import db_commit_or_error, get_or_404

logger = logging.getLogger(__name__)

uat_bp = Blueprint("uat", __name__, url_prefix="/api/v1/uat")
register_error_handlers(uat_bp)


# ── Request helpers ──────────────────────────────────────────────────────────


def _actor_or_400():
    """(InternalActor, None) from the identity headers, or (None, error)."""
    user_id = (request.headers.get("X-User-Id") or "").strip()
    if not user_id:
        return None, api_error(E.VALIDATION_REQUIRED, "X-User-Id header is required")
    name = (request.headers.get("X-User-Name") or "").strip() or user_id
    return InternalActor(user_id=user_id, name=name), None


def _links() -> PortalLinks:
    return PortalLinks(current_app.config["UAT_BASE_URL"])


def _run_payload(run):
    if run is None:
        return None
    d = run.to_dict()
    d["steps"] = test_run_service.run_step_view(run)
    return d


# ═════════════════════════════════════════════════════════════════════════════
# Sessions
# ═════════════════════════════════════════════════════════════════════════════


@uat_bp.route("/sessions", methods=["GET"])
def list_sessions():
    """Sessions newest first with progress.  Query: status (optional)."""
    sessions = session_service.list_sessions(request.args.get("status"))
    return jsonify({
        "items": [session_service.session_summary(s) for s in sessions],
        "total": len(sessions),
    })


@uat_bp.route("/sessions", methods=["POST"])
def create_session():
    """Body: {name, description?, priority?, due_date?, expires_at?, project_id?, account_id?}"""
    data = json_body()
    name = data.get("name")
    if name is None or (isinstance(name, str) and not name.strip()):
        return api_error(E.VALIDATION_REQUIRED, "name is required")

    uat_session = session_service.create_session(data, request.headers.get("X-User-Id"))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(session_service.session_detail(uat_session, _links())), 201


@uat_bp.route("/sessions/<int:session_id>", methods=["GET"])
def get_session(session_id):
    uat_session, err = get_or_404(UatSession, session_id, "UAT session")
    if err:
        return err
    return jsonify(session_service.session_detail(uat_session, _links()))


@uat_bp.route("/sessions/<int:session_id>", methods=["PATCH"])
def update_session(session_id):
    uat_session, err = get_or_404(UatSession, session_id, "UAT session")
    if err:
        return err
    session_service.update_session(uat_session, json_body())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(uat_session.to_dict())


@uat_bp.route("/sessions/<int:session_id>", methods=["DELETE"])
def delete_session(session_id):
    uat_session, err = get_or_404(UatSession, session_id, "UAT session")
    if err:
        return err
    session_service.delete_session(uat_session)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "UAT session deleted"}), 200


@uat_bp.route("/sessions/<int:session_id>/status", methods=["GET"])
def session_status(session_id):
    """Per-item review / testing status, step progress and run history."""
    uat_session, err = get_or_404(UatSession, session_id, "UAT session")
    if err:
        return err
    return jsonify(session_service.status_report(uat_session))


# ═════════════════════════════════════════════════════════════════════════════
# Checklist items
# ═════════════════════════════════════════════════════════════════════════════


@uat_bp.route("/sessions/<int:session_id>/items", methods=["GET"])
def list_items(session_id):
    uat_session, err = get_or_404(UatSession, session_id, "UAT session")
    if err:
        return err
    items = checklist_service.list_items(uat_session)
    return jsonify({"items": [session_service.item_view(i) for i in items], "total": len(items)})


@uat_bp.route("/sessions/<int:session_id>/items", methods=["POST"])
def create_item(session_id):
    uat_session, err = get_or_404(UatSession, session_id, "UAT session")
    if err:
        return err
    data = json_body()
    title = data.get("title")
    if title is None or (isinstance(title, str) and not title.strip()):
        return api_error(E.VALIDATION_REQUIRED, "title is required")

    item = checklist_service.create_item(uat_session, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(item.to_dict(include_steps=True)), 201


@uat_bp.route("/sessions/<int:session_id>/items/import", methods=["POST"])
def import_items(session_id):
    """Body: {version: "1.0", items: [{title, ..., steps: [...]}, ...]}

    Valid entries are created; invalid ones come back in error_details.
    """
    uat_session, err = get_or_404(UatSession, session_id, "UAT session")
    if err:
        return err
    result = checklist_service.import_items(uat_session, request.get_json(silent=True))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(result), 201 if result["created"] else 422


@uat_bp.route("/sessions/<int:session_id>/items/reorder", methods=["POST"])
def reorder_items(session_id):
    """Body: {item_ids: [..]} in the desired order."""
    uat_session, err = get_or_404(UatSession, session_id, "UAT session")
    if err:
        return err
    item_ids = json_body().get("item_ids")
    if not isinstance(item_ids, list):
        return api_error(E.VALIDATION_REQUIRED, "item_ids must be a list")

    items = checklist_service.reorder_items(uat_session, item_ids)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"items": [i.to_dict() for i in items]})


@uat_bp.route("/items/<int:item_id>", methods=["GET"])
def get_item(item_id):
    item = checklist_service.get_item(item_id)
    d = session_service.item_view(item)
    d["comments"] = comment_service.build_thread(comment_service.list_comments(item))
    return jsonify(d)


@uat_bp.route("/items/<int:item_id>", methods=["PATCH"])
def update_item(item_id):
    item = checklist_service.get_item(item_id)
    checklist_service.update_item(item, json_body())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(item.to_dict(include_steps=True))


@uat_bp.route("/items/<int:item_id>", methods=["DELETE"])
def delete_item(item_id):
    item = checklist_service.get_item(item_id)
    checklist_service.delete_item(item)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Checklist item deleted"}), 200


@uat_bp.route("/items/<int:item_id>/duplicate", methods=["POST"])
def duplicate_item(item_id):
    item = checklist_service.get_item(item_id)
    copy = checklist_service.duplicate_item(item)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(copy.to_dict(include_steps=True)), 201


# ═════════════════════════════════════════════════════════════════════════════
# Steps
# ═════════════════════════════════════════════════════════════════════════════


@uat_bp.route("/items/<int:item_id>/steps", methods=["GET"])
def list_steps(item_id):
    item = checklist_service.get_item(item_id)
    return jsonify({"items": [s.to_dict() for s in checklist_service.list_steps(item)]})


@uat_bp.route("/items/<int:item_id>/steps", methods=["POST"])
def create_step(item_id):
    item = checklist_service.get_item(item_id)
    step = checklist_service.create_step(item, json_body())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(step.to_dict()), 201


@uat_bp.route("/items/<int:item_id>/steps/reorder", methods=["POST"])
def reorder_steps(item_id):
    """Body: {step_ids: [..]} in the desired order."""
    item = checklist_service.get_item(item_id)
    step_ids = json_body().get("step_ids")
    if not isinstance(step_ids, list):
        return api_error(E.VALIDATION_REQUIRED, "step_ids must be a list")

    steps = checklist_service.reorder_steps(item, step_ids)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"items": [s.to_dict() for s in steps]})


@uat_bp.route("/steps/<int:step_id>", methods=["PATCH"])
def update_step(step_id):
    step = checklist_service.get_step(step_id)
    checklist_service.update_step(step, json_body())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(step.to_dict())


@uat_bp.route("/steps/<int:step_id>", methods=["DELETE"])
def delete_step(step_id):
    step = checklist_service.get_step(step_id)
    checklist_service.delete_step(step)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Step deleted"}), 200


# ═════════════════════════════════════════════════════════════════════════════
# Guests & collaborators
# ═════════════════════════════════════════════════════════════════════════════


@uat_bp.route("/sessions/<int:session_id>/guests", methods=["GET"])
def list_guests(session_id):
    uat_session, err = get_or_404(UatSession, session_id, "UAT session")
    if err:
        return err
    links = _links()
    return jsonify({
        "items": [{**g.to_dict(), "reviewer_link": links.reviewer(g)} for g in uat_session.guests],
    })


@uat_bp.route("/sessions/<int:session_id>/guests", methods=["POST"])
def add_guest(session_id):
    """Body: {name, email}"""
    uat_session, err = get_or_404(UatSession, session_id, "UAT session")
    if err:
        return err
    data = json_body()
    guest = session_service.add_guest(uat_session, data.get("name"), data.get("email"))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({**guest.to_dict(), "reviewer_link": _links().reviewer(guest)}), 201


@uat_bp.route("/guests/<int:guest_id>", methods=["DELETE"])
def remove_guest(guest_id):
    guest = session_service.get_guest(guest_id)
    session_service.remove_guest(guest)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Guest removed"}), 200


@uat_bp.route("/sessions/<int:session_id>/collaborators", methods=["GET"])
def list_collaborators(session_id):
    uat_session, err = get_or_404(UatSession, session_id, "UAT session")
    if err:
        return err
    links = _links()
    return jsonify({
        "items": [
            {**c.to_dict(), "portal_link": links.collaborator(c)} for c in uat_session.collaborators
        ],
    })


@uat_bp.route("/sessions/<int:session_id>/collaborators", methods=["POST"])
def add_collaborator(session_id):
    """Body: {name, email, role}  role ∈ pm | editor | viewer"""
    uat_session, err = get_or_404(UatSession, session_id, "UAT session")
    if err:
        return err
    data = json_body()
    collaborator = session_service.add_collaborator(
        uat_session,
        data.get("name"),
        data.get("email"),
        data.get("role"),
        invited_by_id=request.headers.get("X-User-Id"),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({**collaborator.to_dict(), "portal_link": _links().collaborator(collaborator)}), 201


@uat_bp.route("/collaborators/<int:collaborator_id>", methods=["DELETE"])
def remove_collaborator(collaborator_id):
    collaborator = session_service.get_collaborator(collaborator_id)
    session_service.remove_collaborator(collaborator)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Collaborator removed"}), 200


# ═════════════════════════════════════════════════════════════════════════════
# Test runs
# ═════════════════════════════════════════════════════════════════════════════


@uat_bp.route("/items/<int:item_id>/runs", methods=["GET"])
def list_runs(item_id):
    item = checklist_service.get_item(item_id)
    return jsonify({
        "testing_state": test_run_service.testing_state(item),
        "items": test_run_service.run_history(item),
    })


@uat_bp.route("/items/<int:item_id>/runs", methods=["POST"])
def start_run(item_id):
    """Archive the active run (if any) and open the next one."""
    actor, err = _actor_or_400()
    if err:
        return err
    item = checklist_service.get_item(item_id)
    run = test_run_service.start_retest(item, actor)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(_run_payload(run)), 201


@uat_bp.route("/items/<int:item_id>/active-run", methods=["GET"])
def get_active_run(item_id):
    item = checklist_service.get_item(item_id)
    return jsonify({"run": _run_payload(test_run_service.get_active_run(item))})


@uat_bp.route("/runs/<int:run_id>/results", methods=["GET"])
def run_results(run_id):
    run = test_run_service.get_run(run_id)
    return jsonify(_run_payload(run))


@uat_bp.route("/runs/<int:run_id>/steps/<int:step_id>", methods=["PUT"])
def record_step_result(run_id, step_id):
    """Body: {status: passed|failed|acknowledged|null, notes?}"""
    actor, err = _actor_or_400()
    if err:
        return err
    run = test_run_service.get_run(run_id)
    step = checklist_service.get_step(step_id)
    data = json_body()
    result = test_run_service.record_step_result(run, step, actor, data.get("status"), data.get("notes"))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(result.to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# Comments
# ═════════════════════════════════════════════════════════════════════════════


@uat_bp.route("/items/<int:item_id>/comments", methods=["GET"])
def list_comments(item_id):
    item = checklist_service.get_item(item_id)
    return jsonify({"items": comment_service.build_thread(comment_service.list_comments(item))})


@uat_bp.route("/items/<int:item_id>/comments", methods=["POST"])
def create_comment(item_id):
    """Body: {body, parent_id?}"""
    actor, err = _actor_or_400()
    if err:
        return err
    item = checklist_service.get_item(item_id)
    data = json_body()
    comment = comment_service.create_comment(item, actor, data.get("body"), data.get("parent_id"))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(comment.to_dict()), 201


@uat_bp.route("/comments/<int:comment_id>", methods=["PATCH"])
def update_comment(comment_id):
    actor, err = _actor_or_400()
    if err:
        return err
    comment = comment_service.get_comment(comment_id)
    comment_service.update_comment(comment, actor, json_body().get("body"))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(comment.to_dict())


@uat_bp.route("/comments/<int:comment_id>", methods=["DELETE"])
def delete_comment(comment_id):
    comment = comment_service.get_comment(comment_id)
    comment_service.delete_comment(comment)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Comment deleted"}), 200

"""
Reviewer portal: what an external guest sees behind their personal link.

    GET   /api/uat/token/<token>                                 portal payload
    POST  /api/uat/token/<token>/respond                         approve / request changes
    GET   /api/uat/token/<token>/items/<id>/steps                step list
    GET   /api/uat/token/<token>/items/<id>/active-run           current run or null
    POST  /api/uat/token/<token>/items/<id>/active-run           open run
    PUT   /api/uat/token/<token>/runs/<run_id>/steps/<step_id>   record result
    GET   /api/uat/token/<token>/items/<id>/comments             thread
    POST  /api/uat/token/<token>/items/<id>/comments             post comment
    PATCH /api/uat/token/<token>/comments/<id>                   edit own comment

Only guest tokens resolve here.  Internal notes never leave this portal.
"""

import logging

from flask import Blueprint, g, jsonify, request

from testhub.blueprints import json_body, register_error_handlers
from testhub.services import (
    checklist_service,
    comment_service,
    response_service,
    session_service,
    test_run_service,
)
from testhub.services.access_service import REVIEW_PORTAL_KINDS, resolve
from testhub.utils.errors import E, api_error
from testhub.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

uat_review_bp = Blueprint("uat_review", __name__, url_prefix="/api/uat/token/<token>")
register_error_handlers(uat_review_bp)


@uat_review_bp.before_request
def _resolve_token():
    ctx = resolve(request.view_args.get("token"), REVIEW_PORTAL_KINDS)
    g.uat_ctx = ctx
    g.uat_session_id = ctx.session.id
    g.uat_token_kind = ctx.token_kind
    return db_commit_or_error()


def _item(item_id):
    return checklist_service.get_item(item_id, session_id=g.uat_ctx.session.id)


def _run_payload(run):
    if run is None:
        return None
    d = run.to_dict()
    d["steps"] = test_run_service.run_step_view(run)
    return d


@uat_review_bp.route("", methods=["GET"])
def portal(token):
    return jsonify(session_service.reviewer_portal_view(g.uat_ctx.guest))


@uat_review_bp.route("/respond", methods=["POST"])
def respond(token):
    """Body: {checklist_item_id, status: approved|changes_requested, feedback?}"""
    ctx = g.uat_ctx
    ctx.require("can_respond")
    data = json_body()
    item_id = data.get("checklist_item_id")
    if isinstance(item_id, bool) or not isinstance(item_id, int):
        return api_error(E.VALIDATION_REQUIRED, "checklist_item_id is required")

    item = _item(item_id)
    response = response_service.submit_response(item, ctx.guest, data.get("status"), data.get("feedback"))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({
        "response": response.to_dict(),
        "review_status": response_service.status_of(item.responses),
        "testing_state": test_run_service.testing_state(item),
    })


@uat_review_bp.route("/items/<int:item_id>/steps", methods=["GET"])
def list_steps(token, item_id):
    item = _item(item_id)
    return jsonify({"items": [s.to_dict() for s in checklist_service.list_steps(item)]})


@uat_review_bp.route("/items/<int:item_id>/active-run", methods=["GET"])
def get_active_run(token, item_id):
    item = _item(item_id)
    return jsonify({"run": _run_payload(test_run_service.get_active_run(item))})


@uat_review_bp.route("/items/<int:item_id>/active-run", methods=["POST"])
def open_run(token, item_id):
    ctx = g.uat_ctx
    ctx.require("can_test")
    run = test_run_service.open_run(_item(item_id), ctx.actor)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"run": _run_payload(run)})


@uat_review_bp.route("/runs/<int:run_id>/steps/<int:step_id>", methods=["PUT"])
def record_step_result(token, run_id, step_id):
    """Body: {status: passed|failed|acknowledged|null, notes?}"""
    ctx = g.uat_ctx
    ctx.require("can_test")
    run = test_run_service.get_run(run_id, session_id=ctx.session.id)
    step = checklist_service.get_step(step_id, session_id=ctx.session.id)
    data = json_body()
    result = test_run_service.record_step_result(run, step, ctx.actor, data.get("status"), data.get("notes"))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(result.to_dict())


@uat_review_bp.route("/items/<int:item_id>/comments", methods=["GET"])
def list_comments(token, item_id):
    item = _item(item_id)
    return jsonify({"items": comment_service.build_thread(comment_service.list_comments(item))})


@uat_review_bp.route("/items/<int:item_id>/comments", methods=["POST"])
def create_comment(token, item_id):
    ctx = g.uat_ctx
    ctx.require("can_comment")
    data = json_body()
    comment = comment_service.create_comment(_item(item_id), ctx.actor, data.get("body"), data.get("parent_id"))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(comment.to_dict()), 201


@uat_review_bp.route("/comments/<int:comment_id>", methods=["PATCH"])
def update_comment(token, comment_id):
    ctx = g.uat_ctx
    comment = comment_service.get_comment(comment_id, session_id=ctx.session.id)
    comment_service.update_comment(comment, ctx.actor, json_body().get("body"))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(comment.to_dict())

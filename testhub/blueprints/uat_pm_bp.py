"""
PM portal: token-addressed session management for owners and collaborators.

    GET    /api/uat/pm/<token>                                   session payload
    POST   /api/uat/pm/<token>/guests                            invite reviewer
    POST   /api/uat/pm/<token>/collaborators                     invite collaborator
    POST   /api/uat/pm/<token>/items                             create item
    PATCH  /api/uat/pm/<token>/items/<id>                        update item
    DELETE /api/uat/pm/<token>/items/<id>                        delete item
    POST   /api/uat/pm/<token>/items/<id>/duplicate              duplicate item
    POST   /api/uat/pm/<token>/items/<id>/steps                  add step
    PATCH  /api/uat/pm/<token>/items/<id>/steps/<step_id>        update step
    DELETE /api/uat/pm/<token>/items/<id>/steps/<step_id>        delete step
    GET    /api/uat/pm/<token>/items/<id>/comments               thread
    POST   /api/uat/pm/<token>/items/<id>/comments               post comment
    PATCH  /api/uat/pm/<token>/comments/<id>                     edit own comment
    GET    /api/uat/pm/<token>/items/<id>/active-run             current run or null
    POST   /api/uat/pm/<token>/items/<id>/active-run             open run
    PUT    /api/uat/pm/<token>/runs/<run_id>/steps/<step_id>     record result

Accepts the session invite token (role "owner") and collaborator tokens
(role pm / editor / viewer).  Guest tokens are refused like unknown ones.
Every id in the path is scoped to the token's session; ids from another
session are 404.
"""

import logging

from flask import Blueprint, current_app, g, jsonify, request

from testhub.blueprints import json_body, register_error_handlers
from testhub.services import (
    checklist_service,
    comment_service,
    session_service,
    test_run_service,
)
from testhub.services.access_service import PM_PORTAL_KINDS, PortalLinks, resolve
from testhub.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

uat_pm_bp = Blueprint("uat_pm", __name__, url_prefix="/api/uat/pm/<token>")
register_error_handlers(uat_pm_bp)


@uat_pm_bp.before_request
def _resolve_token():
    ctx = resolve(request.view_args.get("token"), PM_PORTAL_KINDS)
    g.uat_ctx = ctx
    g.uat_session_id = ctx.session.id
    g.uat_token_kind = ctx.token_kind
    # Persist last_accessed_at even when the view itself only reads
    return db_commit_or_error()


def _links() -> PortalLinks:
    return PortalLinks(current_app.config["UAT_BASE_URL"])


def _item(item_id):
    return checklist_service.get_item(item_id, session_id=g.uat_ctx.session.id)


def _run_payload(run):
    if run is None:
        return None
    d = run.to_dict()
    d["steps"] = test_run_service.run_step_view(run)
    return d


# ── Session ──────────────────────────────────────────────────────────────────


@uat_pm_bp.route("", methods=["GET"])
def portal(token):
    return jsonify(session_service.pm_portal_view(g.uat_ctx, _links()))


@uat_pm_bp.route("/guests", methods=["POST"])
def add_guest(token):
    """Body: {name, email} → guest with its access token and reviewer link."""
    ctx = g.uat_ctx
    ctx.require("can_invite_guests")
    data = json_body()
    guest = session_service.add_guest(ctx.session, data.get("name"), data.get("email"))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({**guest.to_dict(), "reviewer_link": _links().reviewer(guest)}), 201


@uat_pm_bp.route("/collaborators", methods=["POST"])
def add_collaborator(token):
    """Body: {name, email, role}"""
    ctx = g.uat_ctx
    ctx.require("can_invite_collaborators")
    data = json_body()
    collaborator = session_service.add_collaborator(
        ctx.session,
        data.get("name"),
        data.get("email"),
        data.get("role"),
        invited_by_id=ctx.actor.actor_id,
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({**collaborator.to_dict(), "portal_link": _links().collaborator(collaborator)}), 201


# ── Items & steps ────────────────────────────────────────────────────────────


@uat_pm_bp.route("/items", methods=["POST"])
def create_item(token):
    ctx = g.uat_ctx
    ctx.require("can_edit")
    item = checklist_service.create_item(ctx.session, json_body())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(item.to_dict(include_steps=True)), 201


@uat_pm_bp.route("/items/<int:item_id>", methods=["PATCH"])
def update_item(token, item_id):
    g.uat_ctx.require("can_edit")
    item = _item(item_id)
    checklist_service.update_item(item, json_body())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(item.to_dict(include_steps=True))


@uat_pm_bp.route("/items/<int:item_id>", methods=["DELETE"])
def delete_item(token, item_id):
    g.uat_ctx.require("can_edit")
    checklist_service.delete_item(_item(item_id))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Checklist item deleted"}), 200


@uat_pm_bp.route("/items/<int:item_id>/duplicate", methods=["POST"])
def duplicate_item(token, item_id):
    g.uat_ctx.require("can_edit")
    copy = checklist_service.duplicate_item(_item(item_id))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(copy.to_dict(include_steps=True)), 201


@uat_pm_bp.route("/items/<int:item_id>/steps", methods=["POST"])
def create_step(token, item_id):
    g.uat_ctx.require("can_edit")
    step = checklist_service.create_step(_item(item_id), json_body())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(step.to_dict()), 201


@uat_pm_bp.route("/items/<int:item_id>/steps/<int:step_id>", methods=["PATCH"])
def update_step(token, item_id, step_id):
    ctx = g.uat_ctx
    ctx.require("can_edit")
    step = checklist_service.get_step(step_id, item_id=item_id, session_id=ctx.session.id)
    checklist_service.update_step(step, json_body())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(step.to_dict())


@uat_pm_bp.route("/items/<int:item_id>/steps/<int:step_id>", methods=["DELETE"])
def delete_step(token, item_id, step_id):
    ctx = g.uat_ctx
    ctx.require("can_edit")
    step = checklist_service.get_step(step_id, item_id=item_id, session_id=ctx.session.id)
    checklist_service.delete_step(step)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Step deleted"}), 200


# ── Comments ─────────────────────────────────────────────────────────────────


@uat_pm_bp.route("/items/<int:item_id>/comments", methods=["GET"])
def list_comments(token, item_id):
    item = _item(item_id)
    return jsonify({"items": comment_service.build_thread(comment_service.list_comments(item))})


@uat_pm_bp.route("/items/<int:item_id>/comments", methods=["POST"])
def create_comment(token, item_id):
    """Body: {body, parent_id?}"""
    ctx = g.uat_ctx
    ctx.require("can_comment")
    data = json_body()
    comment = comment_service.create_comment(_item(item_id), ctx.actor, data.get("body"), data.get("parent_id"))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(comment.to_dict()), 201


@uat_pm_bp.route("/comments/<int:comment_id>", methods=["PATCH"])
def update_comment(token, comment_id):
    ctx = g.uat_ctx
    ctx.require("can_comment")
    comment = comment_service.get_comment(comment_id, session_id=ctx.session.id)
    comment_service.update_comment(comment, ctx.actor, json_body().get("body"))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(comment.to_dict())


# ── Testing ──────────────────────────────────────────────────────────────────


@uat_pm_bp.route("/items/<int:item_id>/active-run", methods=["GET"])
def get_active_run(token, item_id):
    item = _item(item_id)
    return jsonify({"run": _run_payload(test_run_service.get_active_run(item))})


@uat_pm_bp.route("/items/<int:item_id>/active-run", methods=["POST"])
def open_run(token, item_id):
    """Return the active run, creating the next one when there is none."""
    ctx = g.uat_ctx
    ctx.require("can_test")
    run = test_run_service.open_run(_item(item_id), ctx.actor)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"run": _run_payload(run)})


@uat_pm_bp.route("/runs/<int:run_id>/steps/<int:step_id>", methods=["PUT"])
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

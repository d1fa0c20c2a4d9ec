"""
Comment threads on checklist items.

Comments are stored flat (adjacency list via parent_id) and rendered as a
tree on read.  A parent must be a comment on the same item, and the parent
chain is walked on write so a corrupt chain can never be extended into a
loop.  Comments never influence review or testing status.
"""

from __future__ import annotations

import logging

from testhub.core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from testhub.models import db
from testhub.models.uat import ChecklistItem, ItemComment
from testhub.services.access_service import Actor, assert_session_writable

logger = logging.getLogger(__name__)

MAX_BODY_LENGTH = 10_000


def _require_body(body) -> str:
    text = body.strip() if isinstance(body, str) else ""
    if not text:
        raise ValidationError("body is required", details={"body": "required"})
    if len(text) > MAX_BODY_LENGTH:
        raise ValidationError(f"body must be at most {MAX_BODY_LENGTH} characters",
                              details={"body": "too long"})
    return text


def get_comment(comment_id: int, session_id: int | None = None) -> ItemComment:
    comment = db.session.get(ItemComment, comment_id)
    if comment is None or (session_id is not None and comment.item.session_id != session_id):
        raise NotFoundError(resource="ItemComment", resource_id=comment_id, session_id=session_id)
    return comment


def list_comments(item: ChecklistItem) -> list[ItemComment]:
    """All comments on an item, oldest first."""
    return (
        ItemComment.query
        .filter_by(item_id=item.id)
        .order_by(ItemComment.created_at, ItemComment.id)
        .all()
    )


def _resolve_parent(item: ChecklistItem, parent_id) -> ItemComment:
    try:
        parent_pk = int(parent_id)
    except (TypeError, ValueError) as exc:
        raise ValidationError("parent_id must be an integer",
                              details={"parent_id": "integer expected"}) from exc

    parent = db.session.get(ItemComment, parent_pk)
    if parent is None or parent.item_id != item.id:
        raise ValidationError("parent_id must reference a comment on the same item",
                              details={"parent_id": "not a comment on this item"})

    seen = set()
    node = parent
    while node is not None:
        if node.id in seen or node.item_id != item.id:
            raise ValidationError("parent_id introduces a cycle in the thread",
                                  details={"parent_id": "cyclic thread"})
        seen.add(node.id)
        node = node.parent
    return parent


def create_comment(
    item: ChecklistItem,
    actor: Actor,
    body: str,
    parent_id: int | None = None,
) -> ItemComment:
    """Post a comment (or a reply when ``parent_id`` is given) as ``actor``."""
    assert_session_writable(item.session, actor)
    text = _require_body(body)
    parent = _resolve_parent(item, parent_id) if parent_id is not None else None

    comment = ItemComment(
        item=item,
        parent=parent,
        author_type=actor.actor_type,
        author_id=actor.actor_id,
        author_name=actor.name,
        body=text,
    )
    db.session.add(comment)
    db.session.flush()
    logger.info("Comment posted: item=%s comment=%s author=%s:%s",
                item.id, comment.id, actor.actor_type, actor.actor_id,
                extra={"session_id": item.session_id, "item_id": item.id})
    return comment


def _is_author(comment: ItemComment, actor: Actor) -> bool:
    return comment.author_type == actor.actor_type and comment.author_id == actor.actor_id


def update_comment(comment: ItemComment, actor: Actor, body: str) -> ItemComment:
    """Edit a comment's body.  Only its author may do so."""
    if not _is_author(comment, actor):
        raise PermissionDeniedError("edit_comment")
    assert_session_writable(comment.item.session, actor)
    comment.body = _require_body(body)
    db.session.flush()
    return comment


def delete_comment(comment: ItemComment) -> None:
    """Delete a comment and, by cascade, its replies."""
    db.session.delete(comment)
    db.session.flush()


def build_thread(comments) -> list[dict]:
    """Render flat comments as root dicts with nested ``replies``.

    Arena + index: every comment is serialised once into ``arena`` keyed by
    id, and ``children`` maps parent id → child ids in creation order.
    Comments whose parent is absent from the input are treated as roots.
    """
    arena: dict[int, dict] = {}
    order: list[int] = []
    for comment in comments:
        arena[comment.id] = comment.to_dict()
        order.append(comment.id)

    children: dict[int, list[int]] = {}
    roots: list[int] = []
    for cid in order:
        parent_id = arena[cid]["parent_id"]
        if parent_id is not None and parent_id in arena and parent_id != cid:
            children.setdefault(parent_id, []).append(cid)
        else:
            roots.append(cid)

    def render(cid: int, path: frozenset) -> dict:
        node = dict(arena[cid])
        node["replies"] = [
            render(child, path | {child})
            for child in children.get(cid, [])
            if child not in path
        ]
        return node

    return [render(cid, frozenset({cid})) for cid in roots]

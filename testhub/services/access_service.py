"""
Access & identity resolution for UAT portals.

Guests and collaborators never log in.  A portal URL carries an opaque
capability token which this module maps to an AccessContext: the session it
grants, the caller's role and a typed Actor used to stamp authorship on
step results and comments.

Token spaces (disjoint; issue_token() guarantees it):
    SessionCollaborator.access_token  → role pm | editor | viewer
    Guest.access_token                → role guest
    UatSession.invite_token           → role owner (the session's PM)

Permission matrix:
    can_edit                  owner, pm, editor
    read_only                 viewer
    can_comment               everyone except viewer
    can_respond               guest
    can_test                  can_edit or guest
    can_invite_guests         can_edit
    can_invite_collaborators  owner, pm

Resolution failures of any kind raise AccessDeniedError with one generic
message.  Only the log line says which case applied, and it only ever
carries a short token prefix.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone

from flask import current_app

from testhub.core.exceptions import AccessDeniedError, InvalidStateError, PermissionDeniedError
from testhub.models import db
from testhub.models.uat import Guest, SessionCollaborator, UatSession
from testhub.utils.helpers import as_utc

logger = logging.getLogger(__name__)

# ── Token kinds & roles ──────────────────────────────────────────────────────

KIND_OWNER = "owner"
KIND_COLLABORATOR = "collaborator"
KIND_GUEST = "guest"

PM_PORTAL_KINDS = frozenset({KIND_OWNER, KIND_COLLABORATOR})
REVIEW_PORTAL_KINDS = frozenset({KIND_GUEST})

EDIT_ROLES = frozenset({"owner", "pm", "editor"})
COLLABORATOR_INVITE_ROLES = frozenset({"owner", "pm"})

DEFAULT_TOKEN_BYTES = 9


def _token_hint(token) -> str:
    return f"{str(token)[:4]}..." if token else "<empty>"


# ═════════════════════════════════════════════════════════════════════════════
# Actors
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class InternalActor:
    """Staff user of the host application (identity established upstream)."""

    user_id: str
    name: str | None = None

    actor_type = "internal"

    @property
    def actor_id(self) -> str:
        return str(self.user_id)


@dataclass(frozen=True)
class CollaboratorActor:
    collaborator_id: int
    name: str | None = None

    actor_type = "collaborator"

    @property
    def actor_id(self) -> str:
        return str(self.collaborator_id)


@dataclass(frozen=True)
class GuestActor:
    guest_id: int
    name: str | None = None

    actor_type = "guest"

    @property
    def actor_id(self) -> str:
        return str(self.guest_id)


Actor = InternalActor | CollaboratorActor | GuestActor


def owner_actor(uat_session: UatSession) -> InternalActor:
    """Actor for a caller holding the session invite token."""
    user_id = uat_session.owner_id or uat_session.created_by_id or f"session-{uat_session.id}-owner"
    return InternalActor(user_id=user_id, name="Session owner")


# ═════════════════════════════════════════════════════════════════════════════
# Access context
# ═════════════════════════════════════════════════════════════════════════════

@dataclass
class AccessContext:
    """Result of a successful token resolution."""

    session: UatSession
    role: str
    token_kind: str
    actor: Actor
    guest: Guest | None = None
    collaborator: SessionCollaborator | None = None

    @property
    def can_edit(self) -> bool:
        return self.role in EDIT_ROLES

    @property
    def read_only(self) -> bool:
        return self.role == "viewer"

    @property
    def can_comment(self) -> bool:
        return not self.read_only

    @property
    def can_respond(self) -> bool:
        return self.role == "guest"

    @property
    def can_test(self) -> bool:
        return self.can_edit or self.role == "guest"

    @property
    def can_invite_guests(self) -> bool:
        return self.can_edit

    @property
    def can_invite_collaborators(self) -> bool:
        return self.role in COLLABORATOR_INVITE_ROLES

    def require(self, capability: str) -> None:
        """Raise PermissionDeniedError unless the named capability is granted."""
        if not getattr(self, capability):
            logger.info(
                "Permission denied: role=%s capability=%s session=%s",
                self.role, capability, self.session.id,
            )
            raise PermissionDeniedError(capability, self.role)

    def permissions(self) -> dict:
        return {
            "can_edit": self.can_edit,
            "read_only": self.read_only,
            "can_comment": self.can_comment,
            "can_respond": self.can_respond,
            "can_test": self.can_test,
            "can_invite_guests": self.can_invite_guests,
            "can_invite_collaborators": self.can_invite_collaborators,
        }


# ═════════════════════════════════════════════════════════════════════════════
# Resolution
# ═════════════════════════════════════════════════════════════════════════════

def _deny(token, reason: str):
    logger.warning("Token resolution denied: %s (token=%s)", reason, _token_hint(token),
                   extra={"event_type": "access_denied"})
    raise AccessDeniedError(reason)


def _is_expired(uat_session: UatSession, now: datetime) -> bool:
    expires_at = as_utc(uat_session.expires_at)
    return expires_at is not None and expires_at <= now


def resolve(token: str, allowed: frozenset | set | None = None) -> AccessContext:
    """Map a capability token to an AccessContext.

    Args:
        token: Opaque bearer string from the portal URL.
        allowed: Token kinds the calling portal accepts.  A token of any
                 other kind is treated exactly like an unknown token.

    Raises:
        AccessDeniedError: unknown token, wrong kind, or expired session.
    """
    if not token or not isinstance(token, str):
        _deny(token, "empty token")

    now = datetime.now(timezone.utc)
    ctx = None

    collaborator = SessionCollaborator.query.filter_by(access_token=token).first()
    if collaborator is not None:
        ctx = AccessContext(
            session=collaborator.session,
            role=collaborator.role,
            token_kind=KIND_COLLABORATOR,
            actor=CollaboratorActor(collaborator.id, collaborator.name),
            collaborator=collaborator,
        )
    else:
        guest = Guest.query.filter_by(access_token=token).first()
        if guest is not None:
            ctx = AccessContext(
                session=guest.session,
                role="guest",
                token_kind=KIND_GUEST,
                actor=GuestActor(guest.id, guest.name),
                guest=guest,
            )
        else:
            uat_session = UatSession.query.filter_by(invite_token=token).first()
            if uat_session is not None:
                ctx = AccessContext(
                    session=uat_session,
                    role="owner",
                    token_kind=KIND_OWNER,
                    actor=owner_actor(uat_session),
                )

    if ctx is None:
        _deny(token, "unknown token")
    if allowed is not None and ctx.token_kind not in allowed:
        _deny(token, f"{ctx.token_kind} token not accepted here")
    if _is_expired(ctx.session, now):
        _deny(token, f"session {ctx.session.id} expired")

    # Idempotent; concurrent resolutions simply store the later timestamp
    if ctx.guest is not None:
        ctx.guest.last_accessed_at = now
    elif ctx.collaborator is not None:
        ctx.collaborator.last_accessed_at = now
    db.session.flush()

    return ctx


def assert_session_writable(uat_session: UatSession, actor: Actor | None = None) -> None:
    """Refuse writes into a completed session, and guest writes unless it is active."""
    if uat_session.status == "completed":
        raise InvalidStateError(
            "Session is completed; reopen it before making changes",
            current_state=uat_session.status,
        )
    if isinstance(actor, GuestActor) and uat_session.status != "active":
        raise InvalidStateError(
            "Session is not open for review",
            current_state=uat_session.status,
        )


# ═════════════════════════════════════════════════════════════════════════════
# Token issuance & links
# ═════════════════════════════════════════════════════════════════════════════

def token_in_use(token: str) -> bool:
    """True if ``token`` already exists in any of the three token spaces."""
    return (
        db.session.query(SessionCollaborator.id).filter_by(access_token=token).first() is not None
        or db.session.query(Guest.id).filter_by(access_token=token).first() is not None
        or db.session.query(UatSession.id).filter_by(invite_token=token).first() is not None
    )


def issue_token(nbytes: int | None = None) -> str:
    """Return a fresh URL-safe capability token unused in every token space."""
    if nbytes is None:
        nbytes = current_app.config.get("UAT_TOKEN_BYTES", DEFAULT_TOKEN_BYTES)
    while True:
        token = secrets.token_urlsafe(nbytes)
        if not token_in_use(token):
            return token


class PortalLinks:
    """Builds shareable portal URLs from a deployment-level base URL.

    Usage:
        links = PortalLinks(app.config["UAT_BASE_URL"])
        links.reviewer(guest)  # https://testhub.us/r/<guest token>
    """

    def __init__(self, base_url: str) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        self.base_url = base_url.rstrip("/")

    def reviewer(self, guest: Guest) -> str:
        return f"{self.base_url}/r/{guest.access_token}"

    def collaborator(self, collaborator: SessionCollaborator) -> str:
        return f"{self.base_url}/p/{collaborator.access_token}"

    def owner(self, uat_session: UatSession) -> str:
        return f"{self.base_url}/p/{uat_session.invite_token}"

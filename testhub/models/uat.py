"""
UAT Review Engine models.

A UatSession owns checklist items, external guests (reviewers) and internal
collaborators.  Each ChecklistItem carries an ordered list of steps, a
history of versioned TestRuns with per-step results, item-level guest
Responses and a threaded comment discussion.

Identity is capability based: the session invite token, every guest
access token and every collaborator access token are opaque bearer
strings drawn from disjoint spaces (see access_service).

Polymorphic identity columns:
    TestStepResult.tester_type + tester_id
    ItemComment.author_type + author_id
    The discriminator is one of AUTHOR_TYPES; the id is stored as a string
    so external user ids, collaborator ids and guest ids share one column.
"""

from datetime import datetime, timezone

from testhub.models import db

# ── Constants ─────────────────────────────────────────────────────────────────

SESSION_STATUSES = {"draft", "active", "completed"}
SESSION_PRIORITIES = {"low", "medium", "high"}

# Allowed session status transitions.  completed → active reopens a session.
SESSION_TRANSITIONS = {
    "draft": {"active"},
    "active": {"completed", "draft"},
    "completed": {"active"},
}

COLLABORATOR_ROLES = {"pm", "editor", "viewer"}

ITEM_WORKFLOW_STATUSES = {"pending", "in_progress", "review", "completed", "blocked"}
ITEM_TYPES = {"approval", "screenshot", "url", "text_feedback"}

STEP_TYPES = {"test", "delay", "info"}
# Step types that are read/waited on rather than pass/fail checked
ACKNOWLEDGE_STEP_TYPES = {"delay", "info"}

RUN_STATUSES = {"active", "completed", "archived"}
RUN_TRIGGER_REASONS = {"initial", "remediation_retest"}

# None is also a valid stored value (result cleared)
STEP_RESULT_STATUSES = {"passed", "failed", "acknowledged"}

RESPONSE_STATUSES = {"approved", "changes_requested"}

AUTHOR_TYPES = {"internal", "collaborator", "guest"}


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ═════════════════════════════════════════════════════════════════════════════
# SESSION
# ═════════════════════════════════════════════════════════════════════════════

class UatSession(db.Model):
    """A bounded UAT review cycle.

    Lifecycle: draft → active → completed (completed_at set).  A completed
    session may be reopened (completed → active clears completed_at) and an
    active session may be moved back to draft to stop sharing it.
    """

    __tablename__ = "uat_sessions"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(
        db.String(20), nullable=False, default="draft",
        comment="draft | active | completed",
    )
    priority = db.Column(
        db.String(10), nullable=False, default="medium",
        comment="low | medium | high",
    )
    invite_token = db.Column(
        db.String(64), nullable=False, unique=True, index=True,
        comment="Owner / PM capability token",
    )
    due_date = db.Column(db.Date, nullable=True)
    expires_at = db.Column(
        db.DateTime(timezone=True), nullable=True,
        comment="When set and in the past, every token of this session is denied",
    )
    owner_id = db.Column(db.String(64), nullable=True)
    created_by_id = db.Column(db.String(64), nullable=True)
    project_id = db.Column(db.Integer, nullable=True, index=True,
                           comment="Opaque reference to the external project record")
    account_id = db.Column(db.Integer, nullable=True, index=True,
                           comment="Opaque reference to the external account record")
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow,
    )

    # ── Relationships
    items = db.relationship(
        "ChecklistItem", backref="session", lazy="select",
        cascade="all, delete-orphan",
        order_by="[ChecklistItem.order, ChecklistItem.id]",
    )
    guests = db.relationship(
        "Guest", backref="session", lazy="select",
        cascade="all, delete-orphan", order_by="Guest.id",
    )
    collaborators = db.relationship(
        "SessionCollaborator", backref="session", lazy="select",
        cascade="all, delete-orphan", order_by="SessionCollaborator.id",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "invite_token": self.invite_token,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "expires_at": _iso(self.expires_at),
            "owner_id": self.owner_id,
            "created_by_id": self.created_by_id,
            "project_id": self.project_id,
            "account_id": self.account_id,
            "completed_at": _iso(self.completed_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<UatSession {self.id}: {self.name} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# GUEST & COLLABORATOR
# ═════════════════════════════════════════════════════════════════════════════

class Guest(db.Model):
    """External reviewer identified only by an access token."""

    __tablename__ = "uat_guests"
    __table_args__ = (
        db.UniqueConstraint("session_id", "email", name="uq_uat_guest_session_email"),
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(
        db.Integer, db.ForeignKey("uat_sessions.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    access_token = db.Column(db.String(64), nullable=False, unique=True, index=True)
    last_accessed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    responses = db.relationship(
        "ItemResponse", backref="guest", lazy="select",
        cascade="all, delete", passive_deletes=True,
    )
    step_results = db.relationship(
        "TestStepResult", backref="guest", lazy="select",
        cascade="all, delete", passive_deletes=True,
    )

    def to_dict(self, include_token=True):
        d = {
            "id": self.id,
            "session_id": self.session_id,
            "name": self.name,
            "email": self.email,
            "last_accessed_at": _iso(self.last_accessed_at),
            "created_at": _iso(self.created_at),
        }
        if include_token:
            d["access_token"] = self.access_token
        return d

    def __repr__(self):
        return f"<Guest {self.id}: {self.email}>"


class SessionCollaborator(db.Model):
    """Internal-facing collaborator with a pm / editor / viewer role."""

    __tablename__ = "uat_session_collaborators"
    __table_args__ = (
        db.UniqueConstraint("session_id", "email", name="uq_uat_collaborator_session_email"),
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(
        db.Integer, db.ForeignKey("uat_sessions.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False, default="viewer",
                     comment="pm | editor | viewer")
    access_token = db.Column(db.String(64), nullable=False, unique=True, index=True)
    invited_by_id = db.Column(db.String(64), nullable=True)
    last_accessed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self, include_token=True):
        d = {
            "id": self.id,
            "session_id": self.session_id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "invited_by_id": self.invited_by_id,
            "last_accessed_at": _iso(self.last_accessed_at),
            "created_at": _iso(self.created_at),
        }
        if include_token:
            d["access_token"] = self.access_token
        return d

    def __repr__(self):
        return f"<SessionCollaborator {self.id}: {self.email} ({self.role})>"


# ═════════════════════════════════════════════════════════════════════════════
# CHECKLIST ITEM & STEP
# ═════════════════════════════════════════════════════════════════════════════

class ChecklistItem(db.Model):
    """One feature or page under review.

    Items are ordered within their session by (order, id); equal orders
    fall back to creation order.  The last_reviewed_* / last_resolved_*
    columns are audit fields maintained by step result submission.
    """

    __tablename__ = "uat_checklist_items"

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(
        db.Integer, db.ForeignKey("uat_sessions.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    title = db.Column(db.String(500), nullable=False)
    instructions = db.Column(db.Text, nullable=True)
    reference_url = db.Column(db.String(1000), nullable=True)
    image_url = db.Column(db.String(1000), nullable=True)
    item_type = db.Column(db.String(30), nullable=False, default="approval",
                          comment="approval | screenshot | url | text_feedback")
    order = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(20), nullable=False, default="pending",
                       comment="Workflow status: pending | in_progress | review | completed | blocked")
    category = db.Column(db.String(100), nullable=True)
    owner_id = db.Column(db.String(64), nullable=True)
    due_date = db.Column(db.Date, nullable=True)
    internal_note = db.Column(db.Text, nullable=True, comment="Staff only, never sent to guests")
    next_action = db.Column(db.Text, nullable=True)
    custom_fields = db.Column(db.JSON, nullable=True)

    last_reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_reviewed_by_name = db.Column(db.String(255), nullable=True)
    last_reviewed_by_type = db.Column(db.String(20), nullable=True)
    last_resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_resolved_by_name = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow,
    )

    # ── Relationships
    steps = db.relationship(
        "ChecklistItemStep", backref="item", lazy="select",
        cascade="all, delete-orphan",
        order_by="[ChecklistItemStep.order, ChecklistItemStep.id]",
    )
    runs = db.relationship(
        "TestRun", backref="item", lazy="select",
        cascade="all, delete-orphan", order_by="TestRun.run_number",
    )
    responses = db.relationship(
        "ItemResponse", backref="item", lazy="select",
        cascade="all, delete-orphan", order_by="ItemResponse.id",
    )
    comments = db.relationship(
        "ItemComment", backref="item", lazy="select",
        cascade="all, delete-orphan", order_by="ItemComment.id",
    )

    # Fields copied verbatim by duplicate_item()
    COPY_FIELDS = (
        "instructions", "reference_url", "image_url", "item_type",
        "category", "owner_id", "due_date", "internal_note", "next_action",
        "custom_fields",
    )

    def to_dict(self, include_internal=True, include_steps=False, include_responses=False):
        d = {
            "id": self.id,
            "session_id": self.session_id,
            "title": self.title,
            "instructions": self.instructions,
            "reference_url": self.reference_url,
            "image_url": self.image_url,
            "item_type": self.item_type,
            "order": self.order,
            "status": self.status,
            "category": self.category,
            "owner_id": self.owner_id,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "custom_fields": self.custom_fields or {},
            "last_reviewed_at": _iso(self.last_reviewed_at),
            "last_reviewed_by_name": self.last_reviewed_by_name,
            "last_reviewed_by_type": self.last_reviewed_by_type,
            "last_resolved_at": _iso(self.last_resolved_at),
            "last_resolved_by_name": self.last_resolved_by_name,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_internal:
            d["internal_note"] = self.internal_note
            d["next_action"] = self.next_action
        if include_steps:
            d["steps"] = [s.to_dict() for s in self.steps]
        if include_responses:
            d["responses"] = [r.to_dict() for r in self.responses]
        return d

    def __repr__(self):
        return f"<ChecklistItem {self.id}: {self.title[:40]}>"


class ChecklistItemStep(db.Model):
    """One atomic instruction within an item's test procedure."""

    __tablename__ = "uat_checklist_item_steps"

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(
        db.Integer, db.ForeignKey("uat_checklist_items.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    title = db.Column(db.String(500), nullable=False)
    instructions = db.Column(db.Text, nullable=True)
    expected_result = db.Column(db.Text, nullable=True)
    step_type = db.Column(db.String(10), nullable=False, default="test",
                          comment="test | delay | info")
    order = db.Column(db.Integer, nullable=False, default=0)
    is_required = db.Column(db.Boolean, nullable=False, default=True)
    notes_required = db.Column(db.Boolean, nullable=False, default=False)
    notes_prompt = db.Column(db.String(500), nullable=True)
    link_url = db.Column(db.String(1000), nullable=True)
    estimated_duration_minutes = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow,
    )

    results = db.relationship(
        "TestStepResult", backref="step", lazy="select",
        cascade="all, delete", passive_deletes=True,
    )

    COPY_FIELDS = (
        "title", "instructions", "expected_result", "step_type", "order",
        "is_required", "notes_required", "notes_prompt", "link_url",
        "estimated_duration_minutes",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "item_id": self.item_id,
            "title": self.title,
            "instructions": self.instructions,
            "expected_result": self.expected_result,
            "step_type": self.step_type,
            "order": self.order,
            "is_required": self.is_required,
            "notes_required": self.notes_required,
            "notes_prompt": self.notes_prompt,
            "link_url": self.link_url,
            "estimated_duration_minutes": self.estimated_duration_minutes,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<ChecklistItemStep {self.id}: item#{self.item_id} #{self.order} {self.step_type}>"


# ═════════════════════════════════════════════════════════════════════════════
# TEST RUN & STEP RESULT
# ═════════════════════════════════════════════════════════════════════════════

class TestRun(db.Model):
    """One versioned execution attempt over an item's steps.

    Business rules:
    - run_number is unique per item and strictly increasing without gaps.
    - At most one run per item is ``active``; completed / archived runs
      are read-only history.
    - Runs are never deleted except through deletion of their item.
    """

    __tablename__ = "uat_test_runs"
    __table_args__ = (
        db.UniqueConstraint("item_id", "run_number", name="uq_uat_run_item_number"),
    )
    __test__ = False  # not a pytest test class

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(
        db.Integer, db.ForeignKey("uat_checklist_items.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    run_number = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(20), nullable=False, default="active",
                       comment="active | completed | archived")
    trigger_reason = db.Column(db.String(30), nullable=False, default="initial",
                               comment="initial | remediation_retest")
    triggered_by_type = db.Column(db.String(20), nullable=True)
    triggered_by_id = db.Column(db.String(64), nullable=True)
    triggered_by_name = db.Column(db.String(255), nullable=True)
    started_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    results = db.relationship(
        "TestStepResult", backref="run", lazy="select",
        cascade="all, delete-orphan", order_by="TestStepResult.id",
    )

    @property
    def is_read_only(self):
        return self.status != "active"

    def to_dict(self, include_results=False):
        d = {
            "id": self.id,
            "item_id": self.item_id,
            "run_number": self.run_number,
            "status": self.status,
            "trigger_reason": self.trigger_reason,
            "triggered_by_type": self.triggered_by_type,
            "triggered_by_id": self.triggered_by_id,
            "triggered_by_name": self.triggered_by_name,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "created_at": _iso(self.created_at),
        }
        if include_results:
            d["results"] = [r.to_dict() for r in self.results]
        return d

    def __repr__(self):
        return f"<TestRun {self.id}: item#{self.item_id} run {self.run_number} [{self.status}]>"


class TestStepResult(db.Model):
    """Current outcome of one step within one run (unique per run + step)."""

    __tablename__ = "uat_test_step_results"
    __table_args__ = (
        db.UniqueConstraint("run_id", "step_id", name="uq_uat_result_run_step"),
    )
    __test__ = False

    id = db.Column(db.Integer, primary_key=True)
    run_id = db.Column(
        db.Integer, db.ForeignKey("uat_test_runs.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    step_id = db.Column(
        db.Integer, db.ForeignKey("uat_checklist_item_steps.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    guest_id = db.Column(
        db.Integer, db.ForeignKey("uat_guests.id", ondelete="CASCADE"),
        nullable=True, index=True,
    )
    tester_type = db.Column(db.String(20), nullable=False,
                            comment="internal | collaborator | guest")
    tester_id = db.Column(db.String(64), nullable=True)
    tester_name = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(20), nullable=True,
                       comment="NULL | passed | failed | acknowledged")
    notes = db.Column(db.Text, nullable=True)
    tested_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow,
    )

    def to_dict(self):
        return {
            "id": self.id,
            "run_id": self.run_id,
            "step_id": self.step_id,
            "guest_id": self.guest_id,
            "tester_type": self.tester_type,
            "tester_id": self.tester_id,
            "tester_name": self.tester_name,
            "status": self.status,
            "notes": self.notes,
            "tested_at": _iso(self.tested_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<TestStepResult {self.id}: run#{self.run_id} step#{self.step_id} → {self.status}>"


# ═════════════════════════════════════════════════════════════════════════════
# RESPONSE & COMMENT
# ═════════════════════════════════════════════════════════════════════════════

class ItemResponse(db.Model):
    """A guest's item-level verdict; one per (item, guest)."""

    __tablename__ = "uat_responses"
    __table_args__ = (
        db.UniqueConstraint("checklist_item_id", "guest_id", name="uq_uat_response_item_guest"),
    )

    id = db.Column(db.Integer, primary_key=True)
    checklist_item_id = db.Column(
        db.Integer, db.ForeignKey("uat_checklist_items.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    guest_id = db.Column(
        db.Integer, db.ForeignKey("uat_guests.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    status = db.Column(db.String(30), nullable=False,
                       comment="approved | changes_requested")
    feedback = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow,
    )

    def to_dict(self):
        return {
            "id": self.id,
            "checklist_item_id": self.checklist_item_id,
            "guest_id": self.guest_id,
            "guest_name": self.guest.name if self.guest else None,
            "status": self.status,
            "feedback": self.feedback,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<ItemResponse {self.id}: item#{self.checklist_item_id} guest#{self.guest_id} → {self.status}>"


class ItemComment(db.Model):
    """Discussion entry on an item; parent_id threads replies on the same item."""

    __tablename__ = "uat_comments"

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(
        db.Integer, db.ForeignKey("uat_checklist_items.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    parent_id = db.Column(
        db.Integer, db.ForeignKey("uat_comments.id", ondelete="CASCADE"),
        nullable=True, index=True,
    )
    author_type = db.Column(db.String(20), nullable=False,
                            comment="internal | collaborator | guest")
    author_id = db.Column(db.String(64), nullable=False)
    author_name = db.Column(db.String(255), nullable=True,
                            comment="Cached display name, avoids a join per render")
    body = db.Column(db.Text, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow,
    )

    replies = db.relationship(
        "ItemComment",
        backref=db.backref("parent", remote_side=[id]),
        cascade="all, delete-orphan", order_by="ItemComment.id",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "item_id": self.item_id,
            "parent_id": self.parent_id,
            "author_type": self.author_type,
            "author_id": self.author_id,
            "author_name": self.author_name,
            "body": self.body,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<ItemComment {self.id}: item#{self.item_id} by {self.author_type}:{self.author_id}>"

"""uat_review_engine

Creates the UAT review tables:
  - uat_sessions:               review container, owner invite token
  - uat_guests:                 external reviewers (one token each)
  - uat_session_collaborators:  internal collaborators (role + token)
  - uat_checklist_items:        deliverables under review
  - uat_checklist_item_steps:   ordered test procedure per item
  - uat_test_runs:              numbered verification passes per item
  - uat_test_step_results:      one result per (run, step)
  - uat_responses:              one verdict per (item, guest)
  - uat_comments:               threaded discussion per item

Tables created conditionally (IF NOT EXISTS semantics) so the revision can
be stamped onto a development database that received them via create_all().

Revision ID: 5e1a9c07d2b4
Revises:
Create Date: 2026-10-19 09:12:44.318207
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '5e1a9c07d2b4'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    bind = op.get_bind()
    existing = set(sa_inspect(bind).get_table_names())

    # ── Sessions & membership ─────────────────────────────────────────────
    if "uat_sessions" not in existing:
        op.create_table(
            "uat_sessions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="draft",
                      comment="draft | active | completed"),
            sa.Column("priority", sa.String(length=10), nullable=False, server_default="medium",
                      comment="low | medium | high"),
            sa.Column("invite_token", sa.String(length=64), nullable=False,
                      comment="Owner / PM capability token"),
            sa.Column("due_date", sa.Date(), nullable=True),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("owner_id", sa.String(length=64), nullable=True),
            sa.Column("created_by_id", sa.String(length=64), nullable=True),
            sa.Column("project_id", sa.Integer(), nullable=True),
            sa.Column("account_id", sa.Integer(), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_uat_sessions_invite_token", "uat_sessions", ["invite_token"], unique=True)
        op.create_index("ix_uat_sessions_project_id", "uat_sessions", ["project_id"])
        op.create_index("ix_uat_sessions_account_id", "uat_sessions", ["account_id"])

    if "uat_guests" not in existing:
        op.create_table(
            "uat_guests",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("session_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("access_token", sa.String(length=64), nullable=False),
            sa.Column("last_accessed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["session_id"], ["uat_sessions.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("session_id", "email", name="uq_uat_guest_session_email"),
        )
        op.create_index("ix_uat_guests_session_id", "uat_guests", ["session_id"])
        op.create_index("ix_uat_guests_access_token", "uat_guests", ["access_token"], unique=True)

    if "uat_session_collaborators" not in existing:
        op.create_table(
            "uat_session_collaborators",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("session_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="viewer",
                      comment="pm | editor | viewer"),
            sa.Column("access_token", sa.String(length=64), nullable=False),
            sa.Column("invited_by_id", sa.String(length=64), nullable=True),
            sa.Column("last_accessed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["session_id"], ["uat_sessions.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("session_id", "email", name="uq_uat_collaborator_session_email"),
        )
        op.create_index("ix_uat_session_collaborators_session_id",
                        "uat_session_collaborators", ["session_id"])
        op.create_index("ix_uat_session_collaborators_access_token",
                        "uat_session_collaborators", ["access_token"], unique=True)

    # ── Checklist ─────────────────────────────────────────────────────────
    if "uat_checklist_items" not in existing:
        op.create_table(
            "uat_checklist_items",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("session_id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=500), nullable=False),
            sa.Column("instructions", sa.Text(), nullable=True),
            sa.Column("reference_url", sa.String(length=1000), nullable=True),
            sa.Column("image_url", sa.String(length=1000), nullable=True),
            sa.Column("item_type", sa.String(length=30), nullable=False, server_default="approval"),
            sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("category", sa.String(length=100), nullable=True),
            sa.Column("owner_id", sa.String(length=64), nullable=True),
            sa.Column("due_date", sa.Date(), nullable=True),
            sa.Column("internal_note", sa.Text(), nullable=True,
                      comment="Staff only, never sent to guests"),
            sa.Column("next_action", sa.Text(), nullable=True),
            sa.Column("custom_fields", sa.JSON(), nullable=True),
            sa.Column("last_reviewed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_reviewed_by_name", sa.String(length=255), nullable=True),
            sa.Column("last_reviewed_by_type", sa.String(length=20), nullable=True),
            sa.Column("last_resolved_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_resolved_by_name", sa.String(length=255), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["session_id"], ["uat_sessions.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_uat_checklist_items_session_id", "uat_checklist_items", ["session_id"])

    if "uat_checklist_item_steps" not in existing:
        op.create_table(
            "uat_checklist_item_steps",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("item_id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=500), nullable=False),
            sa.Column("instructions", sa.Text(), nullable=True),
            sa.Column("expected_result", sa.Text(), nullable=True),
            sa.Column("step_type", sa.String(length=10), nullable=False, server_default="test",
                      comment="test | delay | info"),
            sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("notes_required", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("notes_prompt", sa.String(length=500), nullable=True),
            sa.Column("link_url", sa.String(length=1000), nullable=True),
            sa.Column("estimated_duration_minutes", sa.Integer(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["item_id"], ["uat_checklist_items.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_uat_checklist_item_steps_item_id", "uat_checklist_item_steps", ["item_id"])

    # ── Testing ───────────────────────────────────────────────────────────
    if "uat_test_runs" not in existing:
        op.create_table(
            "uat_test_runs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("item_id", sa.Integer(), nullable=False),
            sa.Column("run_number", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="active",
                      comment="active | completed | archived"),
            sa.Column("trigger_reason", sa.String(length=30), nullable=False,
                      server_default="initial", comment="initial | remediation_retest"),
            sa.Column("triggered_by_type", sa.String(length=20), nullable=True),
            sa.Column("triggered_by_id", sa.String(length=64), nullable=True),
            sa.Column("triggered_by_name", sa.String(length=255), nullable=True),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["item_id"], ["uat_checklist_items.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("item_id", "run_number", name="uq_uat_run_item_number"),
        )
        op.create_index("ix_uat_test_runs_item_id", "uat_test_runs", ["item_id"])

    if "uat_test_step_results" not in existing:
        op.create_table(
            "uat_test_step_results",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("run_id", sa.Integer(), nullable=False),
            sa.Column("step_id", sa.Integer(), nullable=False),
            sa.Column("guest_id", sa.Integer(), nullable=True),
            sa.Column("tester_type", sa.String(length=20), nullable=False,
                      comment="internal | collaborator | guest"),
            sa.Column("tester_id", sa.String(length=64), nullable=True),
            sa.Column("tester_name", sa.String(length=255), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True,
                      comment="passed | failed | acknowledged | NULL"),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("tested_at", sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["run_id"], ["uat_test_runs.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["step_id"], ["uat_checklist_item_steps.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["guest_id"], ["uat_guests.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("run_id", "step_id", name="uq_uat_result_run_step"),
        )
        op.create_index("ix_uat_test_step_results_run_id", "uat_test_step_results", ["run_id"])
        op.create_index("ix_uat_test_step_results_step_id", "uat_test_step_results", ["step_id"])
        op.create_index("ix_uat_test_step_results_guest_id", "uat_test_step_results", ["guest_id"])

    # ── Review ────────────────────────────────────────────────────────────
    if "uat_responses" not in existing:
        op.create_table(
            "uat_responses",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("checklist_item_id", sa.Integer(), nullable=False),
            sa.Column("guest_id", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=30), nullable=False,
                      comment="approved | changes_requested"),
            sa.Column("feedback", sa.Text(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["checklist_item_id"], ["uat_checklist_items.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["guest_id"], ["uat_guests.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("checklist_item_id", "guest_id", name="uq_uat_response_item_guest"),
        )
        op.create_index("ix_uat_responses_checklist_item_id", "uat_responses", ["checklist_item_id"])
        op.create_index("ix_uat_responses_guest_id", "uat_responses", ["guest_id"])

    if "uat_comments" not in existing:
        op.create_table(
            "uat_comments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("item_id", sa.Integer(), nullable=False),
            sa.Column("parent_id", sa.Integer(), nullable=True),
            sa.Column("author_type", sa.String(length=20), nullable=False,
                      comment="internal | collaborator | guest"),
            sa.Column("author_id", sa.String(length=64), nullable=False),
            sa.Column("author_name", sa.String(length=255), nullable=True),
            sa.Column("body", sa.Text(), nullable=False),
            *_timestamps(),
            sa.ForeignKeyConstraint(["item_id"], ["uat_checklist_items.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["parent_id"], ["uat_comments.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_uat_comments_item_id", "uat_comments", ["item_id"])
        op.create_index("ix_uat_comments_parent_id", "uat_comments", ["parent_id"])


def downgrade():
    for table in (
        "uat_comments",
        "uat_responses",
        "uat_test_step_results",
        "uat_test_runs",
        "uat_checklist_item_steps",
        "uat_checklist_items",
        "uat_session_collaborators",
        "uat_guests",
        "uat_sessions",
    ):
        op.drop_table(table)

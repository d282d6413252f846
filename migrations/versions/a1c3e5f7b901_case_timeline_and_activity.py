"""case_timeline_and_activity

Creates the case timeline tables:
  - case_timelines        one versioned progress record per case
  - case_timeline_phases  per-case state of each template phase
  - case_activities       append-only activity log

Tables created conditionally (IF NOT EXISTS semantics) so the revision can
run against a database that already received them via db.create_all().

Revision ID: a1c3e5f7b901
Revises:
Create Date: 2026-10-18 09:12:44.518203
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = 'a1c3e5f7b901'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── CaseTimeline ──────────────────────────────────────────────────────
    if "case_timelines" not in existing:
        op.create_table(
            "case_timelines",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("case_id", sa.Integer(), nullable=False,
                      comment="Owning case (immutable)"),
            sa.Column(
                "case_type", sa.String(length=100), nullable=False,
                comment="Canonical template key resolved at initialization (immutable)",
            ),
            sa.Column("current_phase_order", sa.Integer(), nullable=False,
                      server_default="0"),
            sa.Column("version", sa.Integer(), nullable=False),
            sa.Column("initialized_by", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("case_id", name="uq_case_timeline_case"),
        )
        op.create_index("idx_case_timeline_type", "case_timelines", ["case_type"])

    # ── CaseTimelinePhase ─────────────────────────────────────────────────
    if "case_timeline_phases" not in existing:
        op.create_table(
            "case_timeline_phases",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("timeline_id", sa.Integer(), nullable=False),
            sa.Column("phase_order", sa.Integer(), nullable=False),
            sa.Column(
                "phase_name", sa.String(length=150), nullable=False,
                comment="Snapshot of the template name at initialization",
            ),
            sa.Column(
                "status",
                sa.Enum("PENDING", "ACTIVE", "COMPLETED", "SKIPPED",
                        name="timeline_phase_status", native_enum=False, length=20),
                nullable=False,
            ),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("updated_by", sa.Integer(), nullable=True),
            sa.ForeignKeyConstraint(["timeline_id"], ["case_timelines.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("timeline_id", "phase_order", name="uq_timeline_phase_order"),
        )
        op.create_index(
            "ix_case_timeline_phases_timeline_id", "case_timeline_phases", ["timeline_id"],
        )

    # ── CaseActivity ──────────────────────────────────────────────────────
    if "case_activities" not in existing:
        op.create_table(
            "case_activities",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("case_id", sa.Integer(), nullable=False),
            sa.Column("activity_type", sa.String(length=50), nullable=False),
            sa.Column("reference_id", sa.Integer(), nullable=True),
            sa.Column("reference_type", sa.String(length=50), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("user_id", sa.Integer(), nullable=True,
                      comment="Null for system-generated entries"),
            sa.Column("metadata_json", sa.Text(), nullable=False, server_default="{}"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_case_activities_case_id", "case_activities", ["case_id"])
        op.create_index(
            "idx_case_activity_case_created", "case_activities", ["case_id", "created_at"],
        )
        op.create_index("idx_case_activity_type", "case_activities", ["activity_type"])


def downgrade():
    op.drop_table("case_activities")
    op.drop_table("case_timeline_phases")
    op.drop_table("case_timelines")

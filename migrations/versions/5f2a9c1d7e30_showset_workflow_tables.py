"""showset_workflow_tables

Creates the ShowSet workflow tables:
  - showsets          - one row per ShowSet, stage records as JSON,
                        row_version for optimistic concurrency
  - version_history   - append-only version bumps
  - activity_logs     - append-only workflow/effect trail

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: 5f2a9c1d7e30
Revises:
Create Date: 2026-10-19 09:12:41.118204
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '5f2a9c1d7e30'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── ShowSets ──────────────────────────────────────────────────────────
    if "showsets" not in existing:
        op.create_table(
            "showsets",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("showset_id", sa.String(length=20), nullable=False,
                      comment="Human id, e.g. SS-07-01 or SS-07A-01"),
            sa.Column("area", sa.String(length=10), nullable=False, comment="311 | 312"),
            sa.Column("scene", sa.String(length=10), nullable=False, comment="SC07"),
            sa.Column("description", sa.JSON(), nullable=False),
            sa.Column("stages", sa.JSON(), nullable=False,
                      comment="stage name -> StageRecord dict"),
            sa.Column("screen_version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("revit_version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("drawing_version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("locked_by", sa.String(length=100), nullable=True),
            sa.Column("lock_reason", sa.Text(), nullable=True),
            sa.Column("row_version", sa.Integer(), nullable=False),
            sa.Column("created_by", sa.String(length=100), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("showset_id"),
        )
        op.create_index("idx_showset_area_scene", "showsets", ["area", "scene"])

    # ── Version history ───────────────────────────────────────────────────
    if "version_history" not in existing:
        op.create_table(
            "version_history",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("entry_id", sa.String(length=36), nullable=False),
            sa.Column("showset_pk", sa.Integer(), nullable=False),
            sa.Column("version_type", sa.String(length=20), nullable=False,
                      comment="screenVersion | revitVersion | drawingVersion"),
            sa.Column("version", sa.Integer(), nullable=False),
            sa.Column("reason", sa.JSON(), nullable=False),
            sa.Column("trigger", sa.String(length=20), nullable=False,
                      comment="revision_cycle | manual"),
            sa.Column("created_by", sa.String(length=100), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["showset_pk"], ["showsets.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("entry_id"),
        )
        op.create_index("ix_version_history_showset_pk", "version_history", ["showset_pk"])

    # ── Activity log ──────────────────────────────────────────────────────
    if "activity_logs" not in existing:
        op.create_table(
            "activity_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("showset_pk", sa.Integer(), nullable=True),
            sa.Column("showset_code", sa.String(length=20), nullable=False),
            sa.Column("action", sa.String(length=40), nullable=False),
            sa.Column("stage", sa.String(length=20), nullable=True),
            sa.Column("user_id", sa.String(length=100), nullable=False),
            sa.Column("user_name", sa.String(length=150), nullable=True),
            sa.Column("role", sa.String(length=30), nullable=True),
            sa.Column("details_json", sa.Text(), nullable=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["showset_pk"], ["showsets.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_activity_showset", "activity_logs", ["showset_pk"])
        op.create_index("idx_activity_action", "activity_logs", ["action"])
        op.create_index("idx_activity_ts", "activity_logs", ["timestamp"])


def downgrade():
    op.drop_index("idx_activity_ts", table_name="activity_logs")
    op.drop_index("idx_activity_action", table_name="activity_logs")
    op.drop_index("idx_activity_showset", table_name="activity_logs")
    op.drop_table("activity_logs")
    op.drop_index("ix_version_history_showset_pk", table_name="version_history")
    op.drop_table("version_history")
    op.drop_index("idx_showset_area_scene", table_name="showsets")
    op.drop_table("showsets")

"""showset_links

Adds the external deliverable links to showsets:
  - model_url     - BIM 360 / ACC model location
  - drawings_url  - issued drawing set location

Both nullable; existing rows simply carry no links.

Revision ID: 8c41e07b2d95
Revises: 5f2a9c1d7e30
Create Date: 2026-10-19 14:03:27.530118
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '8c41e07b2d95'
down_revision = '5f2a9c1d7e30'
branch_labels = None
depends_on = None

LINK_COLUMNS = ("model_url", "drawings_url")


def _columns(bind, table_name: str) -> set[str]:
    insp = sa.inspect(bind)
    return {c["name"] for c in insp.get_columns(table_name)}


def upgrade():
    existing = _columns(op.get_bind(), "showsets")
    with op.batch_alter_table("showsets") as batch_op:
        for name in LINK_COLUMNS:
            if name not in existing:
                batch_op.add_column(sa.Column(name, sa.String(length=500), nullable=True))


def downgrade():
    existing = _columns(op.get_bind(), "showsets")
    with op.batch_alter_table("showsets") as batch_op:
        for name in reversed(LINK_COLUMNS):
            if name in existing:
                batch_op.drop_column(name)

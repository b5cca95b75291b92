"""per-carton volume on packing list lines

Revision ID: 0003
Revises: 0002
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0003"
down_revision = "0002"
branch_labels = None
depends_on = None


def upgrade():
    op.add_column("packing_list_lines", sa.Column("cbm_per_ctn", sa.Numeric(14, 4), nullable=True))


def downgrade():
    op.drop_column("packing_list_lines", "cbm_per_ctn")

"""document number counters, seeded from existing numbers

Revision ID: 0002
Revises: 0001
Create Date: 2026-09-28
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "document_counters",
        sa.Column("prefix", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("seq", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    # Seed from numbers already issued: prefix is everything before the trailing digits
    for table, column in (
        ("shipments", "shipment_no"),
        ("invoice_headers", "invoice_no"),
        ("packing_list_headers", "packing_list_no"),
    ):
        op.execute(
            f"""
            INSERT INTO document_counters (prefix, seq)
            SELECT substring({column} from '^(.*?)[0-9]+$') AS prefix,
                   max(substring({column} from '([0-9]+)$')::bigint) AS seq
            FROM {table}
            WHERE {column} ~ '[0-9]+$'
            GROUP BY 1
            ON CONFLICT (prefix) DO UPDATE SET seq = GREATEST(document_counters.seq, EXCLUDED.seq)
            """
        )


def downgrade():
    op.drop_table("document_counters")

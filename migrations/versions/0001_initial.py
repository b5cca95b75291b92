"""initial schema: companies, purchase orders, shipments, invoices, packing lists

Revision ID: 0001
Revises:
Create Date: 2026-09-14
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

UUID = postgresql.UUID(as_uuid=True)


def _id():
    return sa.Column("id", UUID, primary_key=True, nullable=False)


def _audit_columns():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    ]


def _index(table, *columns, unique=False):
    for column in columns:
        op.create_index(f"ix_{table}_{column}", table, [column], unique=unique)


def upgrade():
    op.create_table(
        "companies",
        _id(),
        sa.Column("company_type", sa.String(length=32), nullable=False),
        sa.Column("company_name", sa.String(length=255), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=True),
        sa.Column("country", sa.String(length=100), nullable=True),
        sa.Column("currency", sa.String(length=8), nullable=True),
        sa.Column("buyer_payment_term", sa.String(length=100), nullable=True),
        sa.Column("buyer_default_incoterm", sa.String(length=32), nullable=True),
        sa.Column("buyer_default_ship_mode", sa.String(length=16), nullable=True),
        sa.Column("buyer_consignee", sa.Text(), nullable=True),
        sa.Column("buyer_notify_party", sa.Text(), nullable=True),
        sa.Column("buyer_final_destination", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_audit_columns(),
    )
    _index("companies", "id", "company_type", "company_name", "code", "is_deleted")

    op.create_table(
        "company_sites",
        _id(),
        sa.Column("company_id", UUID, sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False),
        sa.Column("site_name", sa.String(length=255), nullable=False),
        sa.Column("origin_code", sa.String(length=50), nullable=True),
        sa.Column("country", sa.String(length=100), nullable=True),
        sa.Column("origin_country", sa.String(length=100), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("address1", sa.String(length=255), nullable=True),
        sa.Column("address2", sa.String(length=255), nullable=True),
        sa.Column("city", sa.String(length=100), nullable=True),
        sa.Column("state", sa.String(length=100), nullable=True),
        sa.Column("zip", sa.String(length=20), nullable=True),
        sa.Column("air_port_loading", sa.String(length=100), nullable=True),
        sa.Column("sea_port_loading", sa.String(length=100), nullable=True),
        sa.Column("exporter_of_record", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_audit_columns(),
    )
    _index("company_sites", "id", "company_id", "origin_code", "is_deleted")

    op.create_table(
        "po_headers",
        _id(),
        sa.Column("po_no", sa.String(length=100), nullable=False),
        sa.Column("buyer_id", UUID, sa.ForeignKey("companies.id", ondelete="RESTRICT"), nullable=True),
        sa.Column("buyer_name", sa.String(length=255), nullable=True),
        sa.Column("currency", sa.String(length=8), nullable=True),
        sa.Column("incoterm", sa.String(length=32), nullable=True),
        sa.Column("payment_term", sa.String(length=100), nullable=True),
        sa.Column("shipping_origin_code", sa.String(length=50), nullable=True),
        sa.Column("destination", sa.String(length=255), nullable=True),
        sa.Column("requested_ship_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="OPEN"),
        *_audit_columns(),
        sa.UniqueConstraint("po_no", name="uq_po_headers_po_no"),
    )
    _index("po_headers", "id", "po_no", "buyer_id", "is_deleted")

    op.create_table(
        "po_lines",
        _id(),
        sa.Column("po_header_id", UUID, sa.ForeignKey("po_headers.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("line_no", sa.Integer(), nullable=True),
        sa.Column("style_no", sa.String(length=100), nullable=True),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("color", sa.String(length=100), nullable=True),
        sa.Column("size", sa.String(length=50), nullable=True),
        sa.Column("qty", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("qty_cancelled", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unit_price", sa.Numeric(14, 4), nullable=True),
        sa.Column("amount", sa.Numeric(16, 4), nullable=True),
        *_audit_columns(),
    )
    _index("po_lines", "id", "po_header_id", "is_deleted")

    op.create_table(
        "shipments",
        _id(),
        sa.Column("shipment_no", sa.String(length=50), nullable=False),
        sa.Column("po_header_id", UUID, sa.ForeignKey("po_headers.id", ondelete="RESTRICT"), nullable=True),
        sa.Column("po_no", sa.String(length=100), nullable=True),
        sa.Column("buyer_id", UUID, sa.ForeignKey("companies.id", ondelete="RESTRICT"), nullable=True),
        sa.Column("buyer_name", sa.String(length=255), nullable=True),
        sa.Column("currency", sa.String(length=8), nullable=True),
        sa.Column("incoterm", sa.String(length=32), nullable=True),
        sa.Column("payment_term", sa.String(length=100), nullable=True),
        sa.Column("shipping_origin_code", sa.String(length=50), nullable=True),
        sa.Column("origin", sa.String(length=50), nullable=True),
        sa.Column("destination", sa.String(length=255), nullable=True),
        sa.Column("consignee_text", sa.Text(), nullable=True),
        sa.Column("notify_party_text", sa.Text(), nullable=True),
        sa.Column("etd", sa.Date(), nullable=True),
        sa.Column("eta", sa.Date(), nullable=True),
        sa.Column("ship_mode", sa.String(length=10), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="DRAFT"),
        sa.Column("total_cartons", sa.Integer(), nullable=True),
        sa.Column("total_gw", sa.Numeric(14, 3), nullable=True),
        sa.Column("total_nw", sa.Numeric(14, 3), nullable=True),
        sa.Column("memo", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=255), nullable=True),
        *_audit_columns(),
        sa.UniqueConstraint("shipment_no", name="uq_shipments_shipment_no"),
    )
    _index("shipments", "id", "shipment_no", "po_header_id", "po_no", "buyer_id", "is_deleted")

    op.create_table(
        "shipment_lines",
        _id(),
        sa.Column("shipment_id", UUID, sa.ForeignKey("shipments.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("po_header_id", UUID, sa.ForeignKey("po_headers.id", ondelete="RESTRICT"), nullable=True),
        sa.Column("po_line_id", UUID, sa.ForeignKey("po_lines.id", ondelete="RESTRICT"), nullable=True),
        sa.Column("po_no", sa.String(length=100), nullable=True),
        sa.Column("line_no", sa.Integer(), nullable=True),
        sa.Column("style_no", sa.String(length=100), nullable=True),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("color", sa.String(length=100), nullable=True),
        sa.Column("size", sa.String(length=50), nullable=True),
        sa.Column("order_qty", sa.Integer(), nullable=True),
        sa.Column("shipped_qty", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unit_price", sa.Numeric(14, 4), nullable=True),
        sa.Column("amount", sa.Numeric(16, 4), nullable=True),
        sa.Column("ship_mode", sa.String(length=10), nullable=True),
        sa.Column("cartons", sa.Integer(), nullable=True),
        sa.Column("gw", sa.Numeric(14, 3), nullable=True),
        sa.Column("nw", sa.Numeric(14, 3), nullable=True),
        sa.Column("gw_per_ctn", sa.Numeric(14, 3), nullable=True),
        sa.Column("nw_per_ctn", sa.Numeric(14, 3), nullable=True),
        sa.Column("cbm_per_ctn", sa.Numeric(14, 4), nullable=True),
        *_audit_columns(),
    )
    _index("shipment_lines", "id", "shipment_id", "po_header_id", "po_line_id", "is_deleted")

    op.create_table(
        "shipment_pos",
        _id(),
        sa.Column("shipment_id", UUID, sa.ForeignKey("shipments.id", ondelete="CASCADE"), nullable=False),
        sa.Column("po_header_id", UUID, sa.ForeignKey("po_headers.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("po_no", sa.String(length=100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("shipment_id", "po_header_id", name="uq_shipment_pos_shipment_id_po_header_id"),
    )
    _index("shipment_pos", "id", "shipment_id", "po_header_id")

    op.create_table(
        "invoice_headers",
        _id(),
        sa.Column("invoice_no", sa.String(length=50), nullable=False),
        sa.Column("shipment_id", UUID, sa.ForeignKey("shipments.id", ondelete="RESTRICT"), nullable=True),
        sa.Column("buyer_id", UUID, sa.ForeignKey("companies.id", ondelete="RESTRICT"), nullable=True),
        sa.Column("buyer_name", sa.String(length=255), nullable=True),
        sa.Column("buyer_code", sa.String(length=32), nullable=True),
        sa.Column("currency", sa.String(length=8), nullable=True),
        sa.Column("incoterm", sa.String(length=32), nullable=True),
        sa.Column("payment_term", sa.String(length=100), nullable=True),
        sa.Column("shipping_origin_code", sa.String(length=50), nullable=True),
        sa.Column("destination", sa.String(length=255), nullable=True),
        sa.Column("final_destination", sa.String(length=255), nullable=True),
        sa.Column("ship_mode", sa.String(length=10), nullable=True),
        sa.Column("etd", sa.Date(), nullable=True),
        sa.Column("eta", sa.Date(), nullable=True),
        sa.Column("invoice_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="DRAFT"),
        sa.Column("total_amount", sa.Numeric(16, 4), nullable=True),
        sa.Column("total_cartons", sa.Integer(), nullable=True),
        sa.Column("total_gw", sa.Numeric(14, 3), nullable=True),
        sa.Column("total_nw", sa.Numeric(14, 3), nullable=True),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("consignee_text", sa.Text(), nullable=True),
        sa.Column("notify_party_text", sa.Text(), nullable=True),
        sa.Column("shipper_company_id", UUID, sa.ForeignKey("companies.id", ondelete="SET NULL"), nullable=True),
        sa.Column("shipper_name", sa.String(length=255), nullable=True),
        sa.Column("shipper_address", sa.Text(), nullable=True),
        sa.Column("port_of_loading", sa.String(length=100), nullable=True),
        sa.Column("coo_text", sa.String(length=255), nullable=True),
        sa.Column("revision_of_invoice_id", UUID, sa.ForeignKey("invoice_headers.id", ondelete="SET NULL"), nullable=True),
        sa.Column("revision_no", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_latest", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("confirmed_by", sa.String(length=255), nullable=True),
        *_audit_columns(),
        sa.UniqueConstraint("invoice_no", name="uq_invoice_headers_invoice_no"),
    )
    _index("invoice_headers", "id", "invoice_no", "shipment_id", "buyer_id", "revision_of_invoice_id", "is_deleted")
    # At most one active latest invoice per shipment
    op.create_index(
        "uq_invoice_headers_shipment_latest",
        "invoice_headers",
        ["shipment_id"],
        unique=True,
        postgresql_where=sa.text("is_latest AND NOT is_deleted"),
    )

    op.create_table(
        "invoice_lines",
        _id(),
        sa.Column("invoice_id", UUID, sa.ForeignKey("invoice_headers.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("shipment_id", UUID, sa.ForeignKey("shipments.id", ondelete="RESTRICT"), nullable=True),
        sa.Column("shipment_line_id", UUID, sa.ForeignKey("shipment_lines.id", ondelete="SET NULL"), nullable=True),
        sa.Column("po_header_id", UUID, nullable=True),
        sa.Column("po_line_id", UUID, nullable=True),
        sa.Column("po_no", sa.String(length=100), nullable=True),
        sa.Column("line_no", sa.Integer(), nullable=True),
        sa.Column("style_no", sa.String(length=100), nullable=True),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("color", sa.String(length=100), nullable=True),
        sa.Column("size", sa.String(length=50), nullable=True),
        sa.Column("qty", sa.Integer(), nullable=True),
        sa.Column("unit_price", sa.Numeric(14, 4), nullable=True),
        sa.Column("amount", sa.Numeric(16, 4), nullable=True),
        *_audit_columns(),
    )
    _index("invoice_lines", "id", "invoice_id", "shipment_id", "is_deleted")

    op.create_table(
        "packing_list_headers",
        _id(),
        sa.Column("packing_list_no", sa.String(length=50), nullable=True),
        sa.Column("shipment_id", UUID, sa.ForeignKey("shipments.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("shipment_no", sa.String(length=50), nullable=True),
        sa.Column("invoice_id", UUID, sa.ForeignKey("invoice_headers.id", ondelete="SET NULL"), nullable=True),
        sa.Column("invoice_no", sa.String(length=50), nullable=True),
        sa.Column("po_header_id", UUID, nullable=True),
        sa.Column("po_no", sa.String(length=100), nullable=True),
        sa.Column("buyer_id", UUID, nullable=True),
        sa.Column("buyer_name", sa.String(length=255), nullable=True),
        sa.Column("buyer_code", sa.String(length=32), nullable=True),
        sa.Column("currency", sa.String(length=8), nullable=True),
        sa.Column("incoterm", sa.String(length=32), nullable=True),
        sa.Column("payment_term", sa.String(length=100), nullable=True),
        sa.Column("shipping_origin_code", sa.String(length=50), nullable=True),
        sa.Column("destination", sa.String(length=255), nullable=True),
        sa.Column("final_destination", sa.String(length=255), nullable=True),
        sa.Column("ship_mode", sa.String(length=10), nullable=True),
        sa.Column("etd", sa.Date(), nullable=True),
        sa.Column("eta", sa.Date(), nullable=True),
        sa.Column("packing_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="DRAFT"),
        sa.Column("total_cartons", sa.Integer(), nullable=True),
        sa.Column("total_gw", sa.Numeric(14, 3), nullable=True),
        sa.Column("total_nw", sa.Numeric(14, 3), nullable=True),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("consignee_text", sa.Text(), nullable=True),
        sa.Column("notify_party_text", sa.Text(), nullable=True),
        sa.Column("shipper_name", sa.String(length=255), nullable=True),
        sa.Column("shipper_address", sa.Text(), nullable=True),
        sa.Column("port_of_loading", sa.String(length=100), nullable=True),
        sa.Column("coo_text", sa.String(length=255), nullable=True),
        *_audit_columns(),
        sa.UniqueConstraint("packing_list_no", name="uq_packing_list_headers_packing_list_no"),
    )
    _index("packing_list_headers", "id", "packing_list_no", "shipment_id", "invoice_id", "invoice_no", "is_deleted")
    # At most one active packing list per shipment
    op.create_index(
        "uq_packing_list_headers_shipment_active",
        "packing_list_headers",
        ["shipment_id"],
        unique=True,
        postgresql_where=sa.text("NOT is_deleted"),
    )

    op.create_table(
        "packing_list_lines",
        _id(),
        sa.Column("packing_list_id", UUID, sa.ForeignKey("packing_list_headers.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("shipment_id", UUID, nullable=True),
        sa.Column("shipment_line_id", UUID, sa.ForeignKey("shipment_lines.id", ondelete="SET NULL"), nullable=True),
        sa.Column("po_header_id", UUID, nullable=True),
        sa.Column("po_no", sa.String(length=100), nullable=True),
        sa.Column("line_no", sa.Integer(), nullable=True),
        sa.Column("style_no", sa.String(length=100), nullable=True),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("color", sa.String(length=100), nullable=True),
        sa.Column("size", sa.String(length=50), nullable=True),
        sa.Column("qty", sa.Integer(), nullable=True),
        sa.Column("cartons", sa.Integer(), nullable=True),
        sa.Column("gw", sa.Numeric(14, 3), nullable=True),
        sa.Column("nw", sa.Numeric(14, 3), nullable=True),
        sa.Column("gw_per_ctn", sa.Numeric(14, 3), nullable=True),
        sa.Column("nw_per_ctn", sa.Numeric(14, 3), nullable=True),
        sa.Column("carton_no_from", sa.Integer(), nullable=True),
        sa.Column("carton_no_to", sa.Integer(), nullable=True),
        *_audit_columns(),
    )
    _index("packing_list_lines", "id", "packing_list_id", "is_deleted")


def downgrade():
    for table in (
        "packing_list_lines",
        "packing_list_headers",
        "invoice_lines",
        "invoice_headers",
        "shipment_pos",
        "shipment_lines",
        "shipments",
        "po_lines",
        "po_headers",
        "company_sites",
        "companies",
    ):
        op.drop_table(table)

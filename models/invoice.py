from sqlalchemy import (
    Column,
    String,
    Text,
    Integer,
    Numeric,
    Date,
    DateTime,
    Boolean,
    ForeignKey,
    Index,
    UniqueConstraint,
    Uuid,
    text,
)

from models.base import Base, SoftDeleteMixin, TimestampMixin, UUIDPrimaryKeyMixin
from constants.statuses import DRAFT

ACTIVE_LATEST = text("is_latest AND NOT is_deleted")


class InvoiceHeader(UUIDPrimaryKeyMixin, TimestampMixin, SoftDeleteMixin, Base):
    """
    Commercial invoice derived from a shipment.
    Revisions share a root (revision_of_invoice_id); only one active row per
    shipment carries is_latest, enforced by a partial unique index.
    """
    __tablename__ = "invoice_headers"
    __table_args__ = (
        UniqueConstraint("invoice_no", name="uq_invoice_headers_invoice_no"),
        Index(
            "uq_invoice_headers_shipment_latest",
            "shipment_id",
            unique=True,
            postgresql_where=ACTIVE_LATEST,
            sqlite_where=ACTIVE_LATEST,
        ),
    )
    __optional_columns__ = ("buyer_code", "coo_text", "final_destination", "ship_mode", "confirmed_by")

    invoice_no = Column(String(50), nullable=False, index=True)
    shipment_id = Column(Uuid(as_uuid=True), ForeignKey("shipments.id", ondelete="RESTRICT"), nullable=True, index=True)

    buyer_id = Column(Uuid(as_uuid=True), ForeignKey("companies.id", ondelete="RESTRICT"), nullable=True, index=True)
    buyer_name = Column(String(255), nullable=True)
    buyer_code = Column(String(32), nullable=True)
    currency = Column(String(8), nullable=True)
    incoterm = Column(String(32), nullable=True)
    payment_term = Column(String(100), nullable=True)
    shipping_origin_code = Column(String(50), nullable=True)
    destination = Column(String(255), nullable=True)
    final_destination = Column(String(255), nullable=True)
    ship_mode = Column(String(10), nullable=True)

    etd = Column(Date, nullable=True)
    eta = Column(Date, nullable=True)
    invoice_date = Column(Date, nullable=True)

    status = Column(String(20), nullable=False, default=DRAFT, server_default=DRAFT)
    total_amount = Column(Numeric(16, 4), nullable=True)
    total_cartons = Column(Integer, nullable=True)
    total_gw = Column(Numeric(14, 3), nullable=True)
    total_nw = Column(Numeric(14, 3), nullable=True)

    remarks = Column(Text, nullable=True)
    consignee_text = Column(Text, nullable=True)
    notify_party_text = Column(Text, nullable=True)
    shipper_company_id = Column(Uuid(as_uuid=True), ForeignKey("companies.id", ondelete="SET NULL"), nullable=True)
    shipper_name = Column(String(255), nullable=True)
    shipper_address = Column(Text, nullable=True)
    port_of_loading = Column(String(100), nullable=True)
    coo_text = Column(String(255), nullable=True)

    revision_of_invoice_id = Column(Uuid(as_uuid=True), ForeignKey("invoice_headers.id", ondelete="SET NULL"), nullable=True, index=True)
    revision_no = Column(Integer, nullable=False, default=0, server_default="0")
    is_latest = Column(Boolean, nullable=False, default=True, server_default="true")

    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    confirmed_by = Column(String(255), nullable=True)


class InvoiceLine(UUIDPrimaryKeyMixin, TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "invoice_lines"

    invoice_id = Column(Uuid(as_uuid=True), ForeignKey("invoice_headers.id", ondelete="RESTRICT"), nullable=False, index=True)
    shipment_id = Column(Uuid(as_uuid=True), ForeignKey("shipments.id", ondelete="RESTRICT"), nullable=True, index=True)
    shipment_line_id = Column(Uuid(as_uuid=True), ForeignKey("shipment_lines.id", ondelete="SET NULL"), nullable=True)
    po_header_id = Column(Uuid(as_uuid=True), nullable=True)
    po_line_id = Column(Uuid(as_uuid=True), nullable=True)
    po_no = Column(String(100), nullable=True)

    line_no = Column(Integer, nullable=True)
    style_no = Column(String(100), nullable=True)
    description = Column(String(500), nullable=True)
    color = Column(String(100), nullable=True)
    size = Column(String(50), nullable=True)

    qty = Column(Integer, nullable=True)
    unit_price = Column(Numeric(14, 4), nullable=True)
    amount = Column(Numeric(16, 4), nullable=True)

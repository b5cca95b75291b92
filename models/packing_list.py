from sqlalchemy import (
    Column,
    String,
    Text,
    Integer,
    Numeric,
    Date,
    ForeignKey,
    Index,
    UniqueConstraint,
    Uuid,
    text,
)

from models.base import Base, SoftDeleteMixin, TimestampMixin, UUIDPrimaryKeyMixin
from constants.statuses import DRAFT


class PackingListHeader(UUIDPrimaryKeyMixin, TimestampMixin, SoftDeleteMixin, Base):
    """
    Packing list derived from a shipment. Its canonical identity is the
    shipment; invoice_id/invoice_no are cross references used for hydration
    and lookup only.
    """
    __tablename__ = "packing_list_headers"
    __table_args__ = (
        UniqueConstraint("packing_list_no", name="uq_packing_list_headers_packing_list_no"),
        Index(
            "uq_packing_list_headers_shipment_active",
            "shipment_id",
            unique=True,
            postgresql_where=text("NOT is_deleted"),
            sqlite_where=text("NOT is_deleted"),
        ),
    )
    __optional_columns__ = ("buyer_code", "coo_text", "final_destination", "ship_mode", "invoice_no")

    # Nullable only because legacy rows were written without one
    packing_list_no = Column(String(50), nullable=True, index=True)
    shipment_id = Column(Uuid(as_uuid=True), ForeignKey("shipments.id", ondelete="RESTRICT"), nullable=False, index=True)
    shipment_no = Column(String(50), nullable=True)
    invoice_id = Column(Uuid(as_uuid=True), ForeignKey("invoice_headers.id", ondelete="SET NULL"), nullable=True, index=True)
    invoice_no = Column(String(50), nullable=True, index=True)
    po_header_id = Column(Uuid(as_uuid=True), nullable=True)
    po_no = Column(String(100), nullable=True)

    buyer_id = Column(Uuid(as_uuid=True), nullable=True)
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
    packing_date = Column(Date, nullable=True)
    status = Column(String(20), nullable=False, default=DRAFT, server_default=DRAFT)

    total_cartons = Column(Integer, nullable=True)
    total_gw = Column(Numeric(14, 3), nullable=True)
    total_nw = Column(Numeric(14, 3), nullable=True)

    # Text fields hydrated from the shipment's invoice while empty
    remarks = Column(Text, nullable=True)
    consignee_text = Column(Text, nullable=True)
    notify_party_text = Column(Text, nullable=True)
    shipper_name = Column(String(255), nullable=True)
    shipper_address = Column(Text, nullable=True)
    port_of_loading = Column(String(100), nullable=True)
    coo_text = Column(String(255), nullable=True)


class PackingListLine(UUIDPrimaryKeyMixin, TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "packing_list_lines"
    __optional_columns__ = ("cbm_per_ctn",)

    packing_list_id = Column(Uuid(as_uuid=True), ForeignKey("packing_list_headers.id", ondelete="RESTRICT"), nullable=False, index=True)
    shipment_id = Column(Uuid(as_uuid=True), nullable=True)
    shipment_line_id = Column(Uuid(as_uuid=True), ForeignKey("shipment_lines.id", ondelete="SET NULL"), nullable=True)
    po_header_id = Column(Uuid(as_uuid=True), nullable=True)
    po_no = Column(String(100), nullable=True)

    line_no = Column(Integer, nullable=True)
    style_no = Column(String(100), nullable=True)
    description = Column(String(500), nullable=True)
    color = Column(String(100), nullable=True)
    size = Column(String(50), nullable=True)

    qty = Column(Integer, nullable=True)
    cartons = Column(Integer, nullable=True)
    gw = Column(Numeric(14, 3), nullable=True)
    nw = Column(Numeric(14, 3), nullable=True)
    gw_per_ctn = Column(Numeric(14, 3), nullable=True)
    nw_per_ctn = Column(Numeric(14, 3), nullable=True)
    cbm_per_ctn = Column(Numeric(14, 4), nullable=True)
    carton_no_from = Column(Integer, nullable=True)
    carton_no_to = Column(Integer, nullable=True)

from sqlalchemy import (
    Column,
    String,
    Text,
    Integer,
    Numeric,
    Date,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    Uuid,
    func,
)

from models.base import Base, SoftDeleteMixin, TimestampMixin, UUIDPrimaryKeyMixin
from constants.statuses import DRAFT


class Shipment(UUIDPrimaryKeyMixin, TimestampMixin, SoftDeleteMixin, Base):
    """
    A physical consignment cut from one or more PO lines, one per ship mode.
    po_header_id/po_no hold the representative (first) PO; shipment_pos is
    the full list.
    """
    __tablename__ = "shipments"
    __table_args__ = (
        UniqueConstraint("shipment_no", name="uq_shipments_shipment_no"),
    )
    # Columns older deployments may lack; see common.schema_registry
    __optional_columns__ = ("origin", "consignee_text", "notify_party_text", "memo", "created_by")

    shipment_no = Column(String(50), nullable=False, index=True)
    po_header_id = Column(Uuid(as_uuid=True), ForeignKey("po_headers.id", ondelete="RESTRICT"), nullable=True, index=True)
    po_no = Column(String(100), nullable=True, index=True)

    buyer_id = Column(Uuid(as_uuid=True), ForeignKey("companies.id", ondelete="RESTRICT"), nullable=True, index=True)
    buyer_name = Column(String(255), nullable=True)
    currency = Column(String(8), nullable=True)
    incoterm = Column(String(32), nullable=True)
    payment_term = Column(String(100), nullable=True)
    shipping_origin_code = Column(String(50), nullable=True)
    origin = Column(String(50), nullable=True)
    destination = Column(String(255), nullable=True)
    consignee_text = Column(Text, nullable=True)
    notify_party_text = Column(Text, nullable=True)

    etd = Column(Date, nullable=True)
    eta = Column(Date, nullable=True)
    ship_mode = Column(String(10), nullable=False)
    status = Column(String(20), nullable=False, default=DRAFT, server_default=DRAFT)

    total_cartons = Column(Integer, nullable=True)
    total_gw = Column(Numeric(14, 3), nullable=True)
    total_nw = Column(Numeric(14, 3), nullable=True)

    memo = Column(Text, nullable=True)
    created_by = Column(String(255), nullable=True)


class ShipmentLine(UUIDPrimaryKeyMixin, TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "shipment_lines"
    __optional_columns__ = ("ship_mode", "cbm_per_ctn")

    shipment_id = Column(Uuid(as_uuid=True), ForeignKey("shipments.id", ondelete="RESTRICT"), nullable=False, index=True)
    po_header_id = Column(Uuid(as_uuid=True), ForeignKey("po_headers.id", ondelete="RESTRICT"), nullable=True, index=True)
    po_line_id = Column(Uuid(as_uuid=True), ForeignKey("po_lines.id", ondelete="RESTRICT"), nullable=True, index=True)
    po_no = Column(String(100), nullable=True)
    line_no = Column(Integer, nullable=True)

    # Copied from po_lines at creation time, never from the request
    style_no = Column(String(100), nullable=True)
    description = Column(String(500), nullable=True)
    color = Column(String(100), nullable=True)
    size = Column(String(50), nullable=True)

    order_qty = Column(Integer, nullable=True)
    shipped_qty = Column(Integer, nullable=False, default=0, server_default="0")
    unit_price = Column(Numeric(14, 4), nullable=True)
    amount = Column(Numeric(16, 4), nullable=True)
    ship_mode = Column(String(10), nullable=True)

    cartons = Column(Integer, nullable=True)
    gw = Column(Numeric(14, 3), nullable=True)
    nw = Column(Numeric(14, 3), nullable=True)
    gw_per_ctn = Column(Numeric(14, 3), nullable=True)
    nw_per_ctn = Column(Numeric(14, 3), nullable=True)
    cbm_per_ctn = Column(Numeric(14, 4), nullable=True)


class ShipmentPO(UUIDPrimaryKeyMixin, Base):
    """
    Link rows for shipments combining several POs of the same buyer.
    """
    __tablename__ = "shipment_pos"
    __table_args__ = (
        UniqueConstraint("shipment_id", "po_header_id", name="uq_shipment_pos_shipment_id_po_header_id"),
    )

    shipment_id = Column(Uuid(as_uuid=True), ForeignKey("shipments.id", ondelete="CASCADE"), nullable=False, index=True)
    po_header_id = Column(Uuid(as_uuid=True), ForeignKey("po_headers.id", ondelete="RESTRICT"), nullable=False, index=True)
    po_no = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

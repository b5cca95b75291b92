from sqlalchemy import Column, String, Integer, Numeric, Date, ForeignKey, UniqueConstraint, Uuid

from models.base import Base, SoftDeleteMixin, TimestampMixin, UUIDPrimaryKeyMixin
from constants.statuses import OPEN


class POHeader(UUIDPrimaryKeyMixin, TimestampMixin, SoftDeleteMixin, Base):
    """
    Purchase Order header. Source of truth for ordered quantities.
    po_no is unique and immutable after creation.
    """
    __tablename__ = "po_headers"
    __table_args__ = (
        UniqueConstraint("po_no", name="uq_po_headers_po_no"),
    )

    po_no = Column(String(100), nullable=False, index=True)
    buyer_id = Column(Uuid(as_uuid=True), ForeignKey("companies.id", ondelete="RESTRICT"), nullable=True, index=True)
    buyer_name = Column(String(255), nullable=True)

    currency = Column(String(8), nullable=True)
    incoterm = Column(String(32), nullable=True)
    payment_term = Column(String(100), nullable=True)
    shipping_origin_code = Column(String(50), nullable=True)
    destination = Column(String(255), nullable=True)
    requested_ship_date = Column(Date, nullable=True)

    status = Column(String(20), nullable=False, default=OPEN, server_default=OPEN)


class POLine(UUIDPrimaryKeyMixin, TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "po_lines"

    po_header_id = Column(Uuid(as_uuid=True), ForeignKey("po_headers.id", ondelete="RESTRICT"), nullable=False, index=True)
    line_no = Column(Integer, nullable=True)

    style_no = Column(String(100), nullable=True)
    description = Column(String(500), nullable=True)
    color = Column(String(100), nullable=True)
    size = Column(String(50), nullable=True)

    qty = Column(Integer, nullable=False, default=0, server_default="0")  # ordered
    qty_cancelled = Column(Integer, nullable=False, default=0, server_default="0")
    unit_price = Column(Numeric(14, 4), nullable=True)
    amount = Column(Numeric(16, 4), nullable=True)

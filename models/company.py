from sqlalchemy import Column, String, Text, Boolean, ForeignKey, Uuid

from models.base import Base, SoftDeleteMixin, TimestampMixin, UUIDPrimaryKeyMixin


class Company(UUIDPrimaryKeyMixin, TimestampMixin, SoftDeleteMixin, Base):
    """
    Company master (our companies, buyers, factories).
    Buyer rows carry the commercial defaults copied onto shipments and invoices.
    Read-only from the document pipeline's point of view.
    """
    __tablename__ = "companies"

    company_type = Column(String(32), nullable=False, index=True)  # our_company | buyer | factory | supplier
    company_name = Column(String(255), nullable=False, index=True)
    code = Column(String(32), nullable=True, index=True)
    country = Column(String(100), nullable=True)
    currency = Column(String(8), nullable=True)

    # Buyer defaults
    buyer_payment_term = Column(String(100), nullable=True)
    buyer_default_incoterm = Column(String(32), nullable=True)
    buyer_default_ship_mode = Column(String(16), nullable=True)
    buyer_consignee = Column(Text, nullable=True)
    buyer_notify_party = Column(Text, nullable=True)
    buyer_final_destination = Column(String(255), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True, server_default="true")


class CompanySite(UUIDPrimaryKeyMixin, TimestampMixin, SoftDeleteMixin, Base):
    """
    Shipping/exporting site of one of our companies.
    origin_code (e.g. 'VN_BACNINH') selects the shipper and port of loading.
    """
    __tablename__ = "company_sites"

    company_id = Column(Uuid(as_uuid=True), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    site_name = Column(String(255), nullable=False)
    origin_code = Column(String(50), nullable=True, index=True)
    country = Column(String(100), nullable=True)
    origin_country = Column(String(100), nullable=True)

    address = Column(Text, nullable=True)
    address1 = Column(String(255), nullable=True)
    address2 = Column(String(255), nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(100), nullable=True)
    zip = Column(String(20), nullable=True)

    air_port_loading = Column(String(100), nullable=True)
    sea_port_loading = Column(String(100), nullable=True)

    exporter_of_record = Column(Boolean, nullable=False, default=False, server_default="false")
    is_default = Column(Boolean, nullable=False, default=False, server_default="false")

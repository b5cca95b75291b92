from sqlalchemy import Column, String, BigInteger, DateTime, func

from models.base import Base


class DocumentCounter(Base):
    """
    One row per document number prefix (e.g. 'SHP-VN-2501-').
    The row is incremented with UPDATE ... RETURNING so concurrent
    allocations for the same prefix serialize on its row lock.
    """
    __tablename__ = "document_counters"

    prefix = Column(String(64), primary_key=True)
    seq = Column(BigInteger, nullable=False, default=0, server_default="0")
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

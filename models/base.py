import logging
import uuid
from typing import AsyncGenerator

from sqlalchemy import Boolean, Column, DateTime, MetaData, Uuid, func
from sqlalchemy.orm import declarative_base
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from settings.config import get_settings

# Alembic-friendly naming convention to ensure stable constraint names
naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=naming_convention)
Base = declarative_base(metadata=metadata)

logger = logging.getLogger(__name__)


class UUIDPrimaryKeyMixin:
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)


class TimestampMixin:
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class SoftDeleteMixin:
    """
    Soft delete fields. Rows are flagged, never removed; active reads go
    through common.repository which applies the predicate.
    """
    is_deleted = Column(Boolean, nullable=False, default=False, server_default="false", index=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)


def _make_engine():
    """
    Create SQLAlchemy ASYNC engine using DATABASE_URL from settings (psycopg3).
    """
    settings = get_settings()
    connect_args = {}
    if settings.is_postgres and settings.DB_STATEMENT_TIMEOUT_MS:
        connect_args["options"] = f"-c statement_timeout={settings.DB_STATEMENT_TIMEOUT_MS}"
    engine = create_async_engine(
        settings.build_database_url(),
        pool_pre_ping=True,  # Validate connections before use
        connect_args=connect_args,
    )
    logger.info("SQLAlchemy async engine created")
    return engine


# Session factory and engine are module-level singletons
engine = _make_engine()
SessionLocal = async_sessionmaker(bind=engine, autocommit=False, autoflush=False, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that yields an Async SQLAlchemy session and ensures it's closed.
    """
    async with SessionLocal() as db:
        yield db

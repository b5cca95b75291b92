"""Shared fixtures: a throw-away SQLite database per test and document factories"""

import os
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path

# Settings are read (and cached) on first import, so the environment goes first
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENABLE_RATE_LIMITER"] = "false"
os.environ["AUTO_CREATE_TABLES"] = "false"
os.environ["JWT_SECRET_KEY"] = "test-secret"

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from common.schema_registry import schema_registry
from models.base import Base
from models.company import Company, CompanySite
from models.document_counter import DocumentCounter  # noqa: F401
from models.invoice import InvoiceHeader  # noqa: F401
from models.packing_list import PackingListHeader  # noqa: F401
from models.purchase_order import POHeader, POLine
from models.shipment import Shipment  # noqa: F401


@pytest_asyncio.fixture
async def engine(tmp_path, request):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'documents.db'}")
    # SQLite has no row locks; serialized_writes tests take the write lock at BEGIN instead
    begin_sql = "BEGIN IMMEDIATE" if request.node.get_closest_marker("serialized_writes") else "BEGIN"

    # pysqlite's implicit transactions break SAVEPOINT; take over BEGIN
    @event.listens_for(eng.sync_engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql(begin_sql)

    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def clean_schema_registry():
    schema_registry.reset()
    yield
    schema_registry.reset()


@pytest.fixture
def make_buyer(db):
    async def _make(name="Northwind Apparel", code="NWA", **fields):
        buyer = Company(company_type="buyer", company_name=name, code=code, **fields)
        db.add(buyer)
        await db.commit()
        return buyer

    return _make


@pytest.fixture
def make_shipper_site(db):
    async def _make(origin_code="VN_BACNINH", company_name="Jade Manufacturing Vietnam", **fields):
        company = Company(company_type="our_company", company_name=company_name, code="JMV")
        db.add(company)
        await db.flush()
        site = CompanySite(company_id=company.id, site_name="Bac Ninh", origin_code=origin_code, **fields)
        db.add(site)
        await db.commit()
        return company, site

    return _make


@pytest.fixture
def make_po(db):
    async def _make(po_no="PO-1001", lines=((1000, "2.50"),), buyer=None, **fields):
        """lines is a sequence of (qty, unit_price)"""
        po = POHeader(
            po_no=po_no,
            buyer_id=buyer.id if buyer else None,
            buyer_name=buyer.company_name if buyer else None,
            currency="USD",
            incoterm="FOB",
            shipping_origin_code=fields.pop("shipping_origin_code", "VN_BACNINH"),
            requested_ship_date=fields.pop("requested_ship_date", date(2026, 3, 15)),
            **fields,
        )
        db.add(po)
        await db.flush()
        po_lines = []
        for idx, (qty, price) in enumerate(lines, start=1):
            line = POLine(
                po_header_id=po.id,
                line_no=idx,
                style_no=f"ST-{idx:03d}",
                description=f"Knit top {idx}",
                color="NAVY",
                size="M",
                qty=qty,
                unit_price=Decimal(price),
                amount=Decimal(price) * qty,
            )
            db.add(line)
            po_lines.append(line)
        await db.commit()
        return po, po_lines

    return _make

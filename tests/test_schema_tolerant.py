import logging
import uuid

import pytest
import pytest_asyncio
from sqlalchemy import Column, MetaData, String, Table, Uuid, select
from sqlalchemy.exc import IntegrityError

from common.exceptions import SchemaDriftWarning, UnknownError
from common.repository import Repository, field_or_none, loaded_fields
from common.schema_registry import SchemaRegistry, schema_registry
from common.schema_tolerant import SchemaTolerantWriter, extract_missing_column
from models.shipment import Shipment

# The code's idea of the table is ahead of the database by two columns
lagging_metadata = MetaData()
lagging_table = Table(
    "lagging_table",
    lagging_metadata,
    Column("id", Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4),
    Column("name", String(50)),
    Column("nickname", String(50)),
    Column("note", String(200)),
)


@pytest.mark.parametrize(
    "message,column",
    [
        ('column "coo_text" of relation "invoice_headers" does not exist', "coo_text"),
        ("Could not find the 'buyer_code' column of 'invoice_headers' in the schema cache", "buyer_code"),
        ('record "new" has no field "final_destination"', "final_destination"),
        ("table lagging_table has no column named nickname", "nickname"),
        ("no such column: lagging_table.note", "note"),
        ('column "memo" does not exist', "memo"),
        ("duplicate key value violates unique constraint", None),
        ("", None),
    ],
)
def test_extract_missing_column(message, column):
    assert extract_missing_column(message) == column


@pytest_asyncio.fixture
async def lagging(db):
    conn = await db.connection()
    await conn.exec_driver_sql("CREATE TABLE lagging_table (id CHAR(32) PRIMARY KEY, name VARCHAR(50))")
    await db.commit()
    return lagging_table


class TestSchemaTolerantWriter:
    """Drop-and-retry writes against a lagging schema"""

    async def test_insert_drops_missing_columns_and_retries(self, db, lagging, caplog):
        registry = SchemaRegistry()
        writer = SchemaTolerantWriter(db, registry=registry)

        with caplog.at_level(logging.WARNING, logger="common.schema_tolerant"):
            result = await writer.insert(lagging, {"name": "alpha", "nickname": "a", "note": "first"})
        await db.commit()

        assert result.ok
        assert set(result.dropped) == {"nickname", "note"}
        assert result.attempts == 3
        assert all(isinstance(w, SchemaDriftWarning) for w in result.warnings)
        assert len(result.warnings) == 2
        assert result.row["name"] == "alpha"
        assert result.final_payload == [{"name": "alpha"}]
        assert registry.missing("lagging_table") == {"nickname", "note"}
        assert sum("Schema drift" in r.getMessage() for r in caplog.records) == 2

        names = (await db.execute(select(lagging.c.name))).scalars().all()
        assert names == ["alpha"]

    async def test_known_missing_columns_are_stripped_before_sending(self, db, lagging):
        registry = SchemaRegistry()
        registry.mark_missing("lagging_table", "nickname")
        registry.mark_missing("lagging_table", "note")

        result = await SchemaTolerantWriter(db, registry=registry).insert(
            lagging,
            [{"name": "beta", "nickname": "b", "note": None}, {"name": "gamma", "nickname": "g", "note": None}],
        )

        assert result.ok
        assert result.attempts == 1
        assert result.warnings == []
        assert [r["name"] for r in result.rows] == ["beta", "gamma"]

    async def test_gives_up_after_max_attempts(self, db, lagging):
        result = await SchemaTolerantWriter(db, registry=SchemaRegistry(), max_attempts=1).insert(
            lagging, {"name": "delta", "nickname": "d", "note": "n"}
        )

        assert not result.ok
        assert isinstance(result.error, UnknownError)
        assert len(result.dropped) == 1
        with pytest.raises(UnknownError):
            result.raise_for_error("Could not write row.")

    async def test_other_errors_are_returned_untouched(self, db, lagging):
        writer = SchemaTolerantWriter(db, registry=SchemaRegistry())
        row_id = uuid.uuid4()
        (await writer.insert(lagging, {"id": row_id, "name": "one"})).raise_for_error("first insert")

        result = await writer.insert(lagging, {"id": row_id, "name": "two"})

        assert result.is_integrity_error
        assert result.dropped == []
        with pytest.raises(IntegrityError):
            result.raise_for_error("second insert")
        # The failed attempt only rolled back its savepoint
        await db.commit()
        assert (await db.execute(select(lagging.c.name))).scalars().all() == ["one"]

    async def test_rows_must_share_columns(self, db, lagging):
        with pytest.raises(ValueError):
            await SchemaTolerantWriter(db, registry=SchemaRegistry()).insert(
                lagging, [{"name": "a"}, {"name": "b", "nickname": "bee"}]
            )

    async def test_update_drops_missing_columns(self, db, lagging):
        registry = SchemaRegistry()
        writer = SchemaTolerantWriter(db, registry=registry)
        row_id = (await writer.insert(lagging, {"name": "before"})).row["id"]

        result = await writer.update(lagging, row_id, {"name": "after", "note": "ignored"})
        await db.commit()

        assert result.ok
        assert result.dropped == ["note"]
        assert result.row["name"] == "after"
        assert "note" in registry.missing("lagging_table")

    async def test_update_with_nothing_left_is_a_no_op(self, db, lagging):
        registry = SchemaRegistry()
        registry.mark_missing("lagging_table", "note")
        row_id = uuid.uuid4()

        result = await SchemaTolerantWriter(db, registry=registry).update(lagging, row_id, {"note": "x"})

        assert result.ok
        assert result.rows == [{"id": row_id}]
        assert result.dropped == ["note"]


class TestSchemaRegistry:
    """Startup inspection of optional columns"""

    async def test_load_reports_missing_optional_columns(self, engine, caplog):
        async with engine.begin() as conn:
            await conn.exec_driver_sql("ALTER TABLE shipments DROP COLUMN memo")

        registry = SchemaRegistry()
        with caplog.at_level(logging.WARNING, logger="common.schema_registry"):
            async with engine.connect() as conn:
                missing = await registry.load(conn, [Shipment])

        assert missing == {"shipments": {"memo"}}
        assert any("shipments.memo" in r.getMessage() for r in caplog.records)

    async def test_missing_optional_column_degrades_reads_and_writes(self, engine, db):
        async with engine.begin() as conn:
            await conn.exec_driver_sql("ALTER TABLE shipments DROP COLUMN memo")
        async with engine.connect() as conn:
            await schema_registry.load(conn, [Shipment])

        result = await SchemaTolerantWriter(db).insert(
            Shipment, {"shipment_no": "SHP-VN-2603-0001", "ship_mode": "SEA", "memo": "fragile"}
        )
        await db.commit()

        assert result.ok
        assert result.attempts == 1
        assert result.dropped == ["memo"]

        shipment = await Repository(db).get(Shipment, result.row["id"])
        assert shipment.shipment_no == "SHP-VN-2603-0001"
        assert field_or_none(shipment, "memo") is None
        assert "memo" not in loaded_fields(shipment)

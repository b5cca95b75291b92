from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from apps.deletions.service import DeletionService
from apps.invoices.schemas import InvoiceFromShipment, InvoiceLineUpdate, InvoiceUpdate
from apps.invoices.service import InvoiceService
from apps.shipments.schemas import ShipmentCreate
from apps.shipments.service import ShipmentService
from common.exceptions import ConflictError, LockedDocumentError, PartialDerivationError, ValidationError
from common.schema_tolerant import SchemaTolerantWriter, WriteResult
from models.invoice import InvoiceHeader, InvoiceLine

INVOICE_DATE = date(2026, 4, 1)


@pytest_asyncio.fixture
async def shipment(db, make_buyer, make_po, make_shipper_site):
    buyer = await make_buyer(buyer_consignee="Northwind Apparel BV", buyer_final_destination="Rotterdam")
    await make_shipper_site(
        address1="Lot 12, Que Vo IP",
        city="Bac Ninh",
        country="Vietnam",
        sea_port_loading="Hai Phong",
        air_port_loading="Noi Bai",
        exporter_of_record=True,
    )
    po, lines = await make_po(lines=[(500, "3.00"), (200, "4.50")], buyer=buyer)
    payload = ShipmentCreate.model_validate(
        {
            "po_ids": [str(po.id)],
            "lines": [
                {"po_line_id": str(lines[0].id), "shipped_qty": 400},
                {"po_line_id": str(lines[1].id), "shipped_qty": 100},
            ],
        }
    )
    (created,) = await ShipmentService.create_from_po(db, payload)
    return created


async def _derive(db, shipment_id):
    return await InvoiceService.create_from_shipment(db, shipment_id, InvoiceFromShipment(invoice_date=INVOICE_DATE))


class TestCreateFromShipment:
    """Invoice derivation is idempotent and fills shipper details from the origin site"""

    async def test_invoice_copies_shipment_and_shipper_details(self, db, shipment):
        invoice, already_exists = await _derive(db, shipment["shipment_id"])

        assert already_exists is False
        assert invoice.invoice_no == "JMI-NWA-26-0001"
        assert invoice.status == "DRAFT"
        assert invoice.is_latest is True
        assert invoice.revision_no == 0
        assert invoice.buyer_code == "NWA"
        assert invoice.coo_text == "MADE IN VIETNAM"
        assert invoice.shipper_name == "Jade Manufacturing Vietnam"
        assert invoice.shipper_address == "Lot 12, Que Vo IP, Bac Ninh, Vietnam"
        assert invoice.port_of_loading == "Hai Phong"
        assert invoice.consignee_text == "Northwind Apparel BV"
        assert invoice.total_amount == Decimal("1650")

        _, lines = await InvoiceService.get_invoice(db, invoice.id)
        assert sorted(line.qty for line in lines) == [100, 400]

    async def test_air_shipments_load_at_the_airport(self, db, shipment):
        invoice, _ = await InvoiceService.create_from_shipment(
            db, shipment["shipment_id"], InvoiceFromShipment(ship_mode="A", invoice_date=INVOICE_DATE)
        )
        assert invoice.ship_mode == "AIR"
        assert invoice.port_of_loading == "Noi Bai"

    async def test_second_call_returns_the_existing_invoice(self, db, shipment):
        first, _ = await _derive(db, shipment["shipment_id"])
        second, already_exists = await _derive(db, shipment["shipment_id"])

        assert already_exists is True
        assert second.id == first.id
        count = await db.scalar(select(func.count()).select_from(InvoiceHeader))
        assert count == 1

    async def test_deleted_shipment_cannot_be_invoiced(self, db, shipment):
        await DeletionService.delete_shipment(db, shipment["shipment_id"])
        with pytest.raises(ConflictError, match="deleted"):
            await _derive(db, shipment["shipment_id"])

    async def test_failed_line_copy_reports_the_created_header(self, db, shipment, monkeypatch):
        original_insert = SchemaTolerantWriter.insert

        async def failing_insert(self, target, rows):
            if target is InvoiceLine:
                return WriteResult(error=RuntimeError("lines table unavailable"))
            return await original_insert(self, target, rows)

        monkeypatch.setattr(SchemaTolerantWriter, "insert", failing_insert)

        with pytest.raises(PartialDerivationError) as exc_info:
            await _derive(db, shipment["shipment_id"])

        header_id = exc_info.value.extra["invoice_id"]
        assert exc_info.value.status_code == 500
        kept = await InvoiceService.get_latest_for_shipment(db, shipment["shipment_id"])
        assert str(kept.id) == header_id


class TestInvoiceLifecycle:
    """Editing, confirmation lock and revisions"""

    async def test_draft_can_be_edited(self, db, shipment):
        invoice, _ = await _derive(db, shipment["shipment_id"])
        _, lines = await InvoiceService.get_invoice(db, invoice.id)
        target = next(line for line in lines if line.qty == 400)

        updated = await InvoiceService.update_invoice(
            db,
            invoice.id,
            InvoiceUpdate(remarks="Handle with care", lines=[InvoiceLineUpdate(id=target.id, unit_price=Decimal("2.50"))]),
        )

        assert updated.remarks == "Handle with care"
        assert updated.total_amount == Decimal("1450")

    async def test_blanked_shipper_is_refilled_from_the_site(self, db, shipment):
        invoice, _ = await _derive(db, shipment["shipment_id"])

        updated = await InvoiceService.update_invoice(db, invoice.id, InvoiceUpdate(shipper_name="", shipper_address=""))

        assert updated.shipper_name == "Jade Manufacturing Vietnam"
        assert updated.shipper_address == "Lot 12, Que Vo IP, Bac Ninh, Vietnam"

    async def test_unknown_line_is_rejected(self, db, shipment):
        invoice, _ = await _derive(db, shipment["shipment_id"])
        with pytest.raises(ValidationError):
            await InvoiceService.update_invoice(
                db, invoice.id, InvoiceUpdate(lines=[InvoiceLineUpdate(id=shipment["shipment_id"], qty=1)])
            )

    async def test_confirmed_invoice_is_locked(self, db, shipment):
        invoice, _ = await _derive(db, shipment["shipment_id"])
        confirmed, already_confirmed = await InvoiceService.confirm(db, invoice.id, confirmed_by="ops@example.com")

        assert already_confirmed is False
        assert confirmed.status == "CONFIRMED"
        assert confirmed.confirmed_at is not None

        with pytest.raises(LockedDocumentError) as exc_info:
            await InvoiceService.update_invoice(db, invoice.id, InvoiceUpdate(remarks="too late"))
        assert exc_info.value.status_code == 409
        assert exc_info.value.extra["meta"] == {"locked": True, "lock_reason": "CONFIRMED"}

    async def test_confirm_is_idempotent(self, db, shipment):
        invoice, _ = await _derive(db, shipment["shipment_id"])
        await InvoiceService.confirm(db, invoice.id)

        _, already_confirmed = await InvoiceService.confirm(db, invoice.id)

        assert already_confirmed is True

    async def test_revision_becomes_the_latest_draft(self, db, shipment):
        original, _ = await _derive(db, shipment["shipment_id"])
        await InvoiceService.confirm(db, original.id)

        revision = await InvoiceService.create_revision(db, original.id)

        assert revision.invoice_no.startswith("JMI-NWA-")
        assert revision.invoice_no != original.invoice_no
        assert revision.status == "DRAFT"
        assert revision.revision_of_invoice_id == original.id
        assert revision.revision_no == 1
        assert revision.is_latest is True
        assert revision.shipper_name == original.shipper_name

        previous, _ = await InvoiceService.get_invoice(db, original.id)
        assert previous.is_latest is False
        latest = await InvoiceService.get_latest_for_shipment(db, shipment["shipment_id"])
        assert latest.id == revision.id

        _, lines = await InvoiceService.get_invoice(db, revision.id)
        assert len(lines) == 2

    async def test_revisions_chain_to_the_root(self, db, shipment):
        original, _ = await _derive(db, shipment["shipment_id"])
        first = await InvoiceService.create_revision(db, original.id)

        second = await InvoiceService.create_revision(db, first.id)

        assert second.revision_of_invoice_id == original.id
        assert second.revision_no == 2
        latest_count = await db.scalar(
            select(func.count()).select_from(InvoiceHeader).where(InvoiceHeader.is_latest.is_(True))
        )
        assert latest_count == 1


class TestListInvoices:
    async def test_only_latest_revisions_are_listed_by_default(self, db, shipment):
        invoice, _ = await _derive(db, shipment["shipment_id"])
        revision = await InvoiceService.create_revision(db, invoice.id)

        items, pagination = await InvoiceService.list_invoices(db, page=1, size=20)
        assert pagination["total"] == 1
        assert items[0].id == revision.id

        items, pagination = await InvoiceService.list_invoices(db, page=1, size=20, latest_only=False)
        assert pagination["total"] == 2

    async def test_keyword_and_status_filters(self, db, shipment):
        invoice, _ = await _derive(db, shipment["shipment_id"])

        items, _ = await InvoiceService.list_invoices(db, page=1, size=20, keyword="nwa-26")
        assert [item.invoice_no for item in items] == [invoice.invoice_no]
        items, _ = await InvoiceService.list_invoices(db, page=1, size=20, keyword="northwind", status="draft")
        assert len(items) == 1
        items, _ = await InvoiceService.list_invoices(db, page=1, size=20, status="CONFIRMED")
        assert items == []

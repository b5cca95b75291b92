import asyncio
from datetime import date
from decimal import Decimal

import pytest

from apps.deletions.service import DeletionService
from apps.invoices.service import InvoiceService
from apps.shipments.quantity import QuantityValidator, shipped_totals
from apps.shipments.schemas import ShipmentCreate
from apps.shipments.service import ShipmentService, normalize_ship_mode
from common.exceptions import LinkedDocumentError, NotFoundError, QuantityExceededError, ValidationError
from common.repository import Repository
from models.shipment import Shipment, ShipmentLine


def _payload(po_ids, *selections, **fields):
    """selections are (po_line_id, qty) or (po_line_id, qty, ship_mode)"""
    lines = []
    for sel in selections:
        line = {"po_line_id": str(sel[0]), "shipped_qty": sel[1]}
        if len(sel) > 2:
            line["ship_mode"] = sel[2]
        lines.append(line)
    return ShipmentCreate.model_validate({"po_ids": [str(p) for p in po_ids], "lines": lines, **fields})


@pytest.mark.parametrize(
    "value,expected",
    [("A", "AIR"), ("air", "AIR"), ("S", "SEA"), ("Ocean", "SEA"), ("C", "COURIER"), ("", None), (None, None)],
)
def test_normalize_ship_mode(value, expected):
    assert normalize_ship_mode(value) == expected


def test_normalize_ship_mode_rejects_unknown_values():
    with pytest.raises(ValidationError):
        normalize_ship_mode("rail")


def test_selection_accepts_camel_case_aliases():
    payload = ShipmentCreate.model_validate(
        {"po_ids": ["8d1b7c1e-3f39-4d38-9d8e-4a3f4c0a5b11"], "lines": [{"po_line_id": "8d1b7c1e-3f39-4d38-9d8e-4a3f4c0a5b12", "shippedQty": 5, "mode": "A"}]}
    )
    assert payload.lines[0].shipped_qty == 5
    assert payload.lines[0].ship_mode == "A"


class TestQuantityValidator:
    """Ordered quantity is never exceeded by shipped plus cancelled"""

    async def test_second_shipment_over_the_remainder_is_rejected(self, db, make_buyer, make_po):
        buyer = await make_buyer()
        po, (line,) = await make_po(lines=[(1000, "2.50")], buyer=buyer)

        await ShipmentService.create_from_po(db, _payload([po.id], (line.id, 600)))
        with pytest.raises(QuantityExceededError) as exc_info:
            await ShipmentService.create_from_po(db, _payload([po.id], (line.id, 500)))

        (violation,) = exc_info.value.violations
        assert violation["po_line_id"] == str(line.id)
        assert violation["ordered_qty"] == 1000
        assert violation["already_shipped"] == 600
        assert violation["requested_now"] == 500
        assert violation["remaining"] == 400
        assert (await shipped_totals(db, [line.id])) == {line.id: 600}

    async def test_exact_remainder_is_allowed(self, db, make_po):
        po, (line,) = await make_po(lines=[(1000, "2.50")])
        await ShipmentService.create_from_po(db, _payload([po.id], (line.id, 600)))

        created = await ShipmentService.create_from_po(db, _payload([po.id], (line.id, 400)))

        assert len(created) == 1
        assert (await shipped_totals(db, [line.id]))[line.id] == 1000

    async def test_duplicate_requests_for_a_line_are_summed(self, db, make_po):
        po, (line,) = await make_po(lines=[(100, "1.00")])

        allowances = await QuantityValidator(db).check([(line.id, 60), (line.id, 50)])

        assert allowances[0].requested_now == 110
        assert allowances[0].exceeded

    async def test_cancelled_quantity_reduces_the_allowance(self, db, make_po):
        po, (line,) = await make_po(lines=[(100, "1.00")])
        line.qty_cancelled = 30
        await db.commit()

        with pytest.raises(QuantityExceededError) as exc_info:
            await QuantityValidator(db).validate([(line.id, 80)])
        assert exc_info.value.violations[0]["remaining"] == 70

    async def test_negative_quantity_is_invalid(self, db, make_po):
        po, (line,) = await make_po()
        with pytest.raises(ValidationError):
            await QuantityValidator(db).check([(line.id, -1)])

    async def test_unknown_line_is_invalid(self, db):
        with pytest.raises(ValidationError) as exc_info:
            await QuantityValidator(db).check([("0d7f4c44-6c51-4d0c-9a55-0b8f3f1a0c01", 1)])
        assert exc_info.value.extra["missing_po_line_ids"] == ["0d7f4c44-6c51-4d0c-9a55-0b8f3f1a0c01"]

    async def test_deleted_shipments_release_their_quantity(self, db, make_po):
        po, (line,) = await make_po(lines=[(100, "1.00")])
        created = await ShipmentService.create_from_po(db, _payload([po.id], (line.id, 100)))

        await DeletionService.delete_shipment(db, created[0]["shipment_id"])

        assert await shipped_totals(db, [line.id]) == {}
        await QuantityValidator(db).validate([(line.id, 100)])


class TestCreateFromPO:
    """One shipment per ship mode, numbered from the origin and ETD"""

    async def test_lines_are_split_by_ship_mode(self, db, make_buyer, make_po):
        buyer = await make_buyer()
        po, (sea_line, air_line) = await make_po(lines=[(500, "3.00"), (200, "4.00")], buyer=buyer)

        created = await ShipmentService.create_from_po(
            db, _payload([po.id], (sea_line.id, 400, "S"), (air_line.id, 100, "A"))
        )

        assert [(c["ship_mode"], c["line_count"]) for c in created] == [("SEA", 1), ("AIR", 1)]
        assert [c["shipment_no"] for c in created] == ["SHP-VN-2603-0001", "SHP-VN-2603-0002"]

        sea, sea_lines, po_nos = await ShipmentService.get_shipment(db, created[0]["shipment_id"])
        assert sea.ship_mode == "SEA"
        assert sea.etd == date(2026, 3, 15)
        assert po_nos == ["PO-1001"]
        assert sea_lines[0].shipped_qty == 400
        assert sea_lines[0].amount == Decimal("1200")
        assert sea_lines[0].style_no == "ST-001"

        _, air_lines, _ = await ShipmentService.get_shipment(db, created[1]["shipment_id"])
        assert air_lines[0].shipped_qty == 100
        assert air_lines[0].ship_mode == "AIR"

    async def test_lines_without_mode_use_the_buyer_default(self, db, make_buyer, make_po):
        buyer = await make_buyer(buyer_default_ship_mode="A")
        po, (line,) = await make_po(buyer=buyer)

        created = await ShipmentService.create_from_po(db, _payload([po.id], (line.id, 10)))

        assert created[0]["ship_mode"] == "AIR"

    async def test_lines_without_any_mode_ship_by_sea(self, db, make_po):
        po, (line,) = await make_po()
        created = await ShipmentService.create_from_po(db, _payload([po.id], (line.id, 10)))
        assert created[0]["ship_mode"] == "SEA"

    async def test_header_falls_back_to_buyer_defaults(self, db, make_buyer, make_po):
        buyer = await make_buyer(
            buyer_consignee="Northwind Apparel\nRotterdam",
            buyer_notify_party="Same as consignee",
            buyer_payment_term="TT 30 days",
        )
        po, (line,) = await make_po(buyer=buyer)

        created = await ShipmentService.create_from_po(
            db, _payload([po.id], (line.id, 10), etd="2026-05-02", memo="first cut")
        )
        shipment, _, _ = await ShipmentService.get_shipment(db, created[0]["shipment_id"])

        assert shipment.consignee_text == "Northwind Apparel\nRotterdam"
        assert shipment.notify_party_text == "Same as consignee"
        assert shipment.payment_term == "TT 30 days"
        assert shipment.currency == "USD"
        assert shipment.memo == "first cut"
        assert shipment.shipment_no == "SHP-VN-2605-0001"

    async def test_multi_po_shipment_links_every_po(self, db, make_buyer, make_po):
        buyer = await make_buyer()
        po_a, (line_a,) = await make_po(po_no="PO-A", buyer=buyer)
        po_b, (line_b,) = await make_po(po_no="PO-B", buyer=buyer)

        created = await ShipmentService.create_from_po(db, _payload([po_a.id, po_b.id], (line_a.id, 5), (line_b.id, 7)))

        assert len(created) == 1
        assert created[0]["po_ids"] == [str(po_a.id), str(po_b.id)]
        shipment, lines, po_nos = await ShipmentService.get_shipment(db, created[0]["shipment_id"])
        assert shipment.po_no == "PO-A"
        assert sorted(po_nos) == ["PO-A", "PO-B"]
        assert sorted(line.po_no for line in lines) == ["PO-A", "PO-B"]

    async def test_pos_of_different_buyers_are_rejected(self, db, make_buyer, make_po):
        po_a, (line_a,) = await make_po(po_no="PO-A", buyer=await make_buyer(name="Buyer A", code="BA"))
        po_b, (line_b,) = await make_po(po_no="PO-B", buyer=await make_buyer(name="Buyer B", code="BB"))

        with pytest.raises(ValidationError):
            await ShipmentService.create_from_po(db, _payload([po_a.id, po_b.id], (line_a.id, 5), (line_b.id, 7)))

    async def test_nothing_to_ship_is_rejected(self, db, make_po):
        po, (line,) = await make_po()
        payload = ShipmentCreate.model_validate(
            {"po_ids": [str(po.id)], "lines": [{"po_line_id": str(line.id), "shipped_qty": 0}, {"po_line_id": str(line.id), "shipped_qty": 5, "use": False}]}
        )
        with pytest.raises(ValidationError, match="No lines"):
            await ShipmentService.create_from_po(db, payload)

    async def test_line_of_another_po_is_rejected(self, db, make_po):
        po_a, _ = await make_po(po_no="PO-A")
        _, (foreign_line,) = await make_po(po_no="PO-B")

        with pytest.raises(ValidationError) as exc_info:
            await ShipmentService.create_from_po(db, _payload([po_a.id], (foreign_line.id, 5)))
        assert exc_info.value.extra["missing_po_line_ids"] == [str(foreign_line.id)]

    async def test_unknown_po_is_not_found(self, db):
        with pytest.raises(NotFoundError):
            await ShipmentService.create_from_po(
                db, _payload(["0d7f4c44-6c51-4d0c-9a55-0b8f3f1a0c01"], ("0d7f4c44-6c51-4d0c-9a55-0b8f3f1a0c02", 5))
            )

    async def test_list_hides_deleted_unless_asked(self, db, make_po):
        po, (line,) = await make_po(lines=[(100, "1.00")])
        first = await ShipmentService.create_from_po(db, _payload([po.id], (line.id, 10)))
        await ShipmentService.create_from_po(db, _payload([po.id], (line.id, 10)))
        await DeletionService.delete_shipment(db, first[0]["shipment_id"])

        items, pagination = await ShipmentService.list_shipments(db, page=1, size=20)
        assert pagination["total"] == 1
        assert items[0].shipment_no == "SHP-VN-2603-0002"

        items, pagination = await ShipmentService.list_shipments(db, page=1, size=20, include_deleted=True)
        assert pagination["total"] == 2

        items, _ = await ShipmentService.list_shipments(db, page=1, size=20, po_no="1001")
        assert len(items) == 1


@pytest.mark.serialized_writes
async def test_concurrent_shipments_cannot_overship_a_line(session_factory, make_po):
    po, (line,) = await make_po(lines=[(1000, "1.00")])

    async def ship(qty):
        async with session_factory() as session:
            return await ShipmentService.create_from_po(session, _payload([po.id], (line.id, qty)))

    results = await asyncio.gather(ship(600), ship(600), return_exceptions=True)

    created = [r for r in results if isinstance(r, list)]
    rejected = [r for r in results if isinstance(r, QuantityExceededError)]
    assert len(created) == 1
    assert len(rejected) == 1
    (violation,) = rejected[0].violations
    assert (violation["already_shipped"], violation["requested_now"]) == (600, 600)
    async with session_factory() as session:
        assert await shipped_totals(session, [line.id]) == {line.id: 600}


class TestCancelShipment:
    """Cancelling keeps the header and releases the shipped quantity"""

    async def test_cancel_releases_quantity(self, db, make_po):
        po, (line,) = await make_po(lines=[(100, "1.00")])
        (created,) = await ShipmentService.create_from_po(db, _payload([po.id], (line.id, 100)))

        result = await DeletionService.cancel_shipment(db, created["shipment_id"])

        assert result == {"shipment_id": str(created["shipment_id"]), "already_cancelled": False, "cancelled_lines": 1}
        shipment = await Repository(db).get(Shipment, created["shipment_id"], include_deleted=True)
        assert shipment.status == "CANCELLED"
        assert shipment.is_deleted is True
        assert await Repository(db).all(Repository(db).select(ShipmentLine)) == []
        await QuantityValidator(db).validate([(line.id, 100)])

    async def test_cancel_twice_is_a_no_op(self, db, make_po):
        po, (line,) = await make_po(lines=[(100, "1.00")])
        (created,) = await ShipmentService.create_from_po(db, _payload([po.id], (line.id, 10)))
        await DeletionService.cancel_shipment(db, created["shipment_id"])

        again = await DeletionService.cancel_shipment(db, created["shipment_id"])

        assert again == {"shipment_id": str(created["shipment_id"]), "already_cancelled": True}

    async def test_invoiced_shipment_cannot_be_cancelled(self, db, make_po):

        po, (line,) = await make_po(lines=[(100, "1.00")])
        (created,) = await ShipmentService.create_from_po(db, _payload([po.id], (line.id, 10)))
        invoice, _ = await InvoiceService.create_from_shipment(db, created["shipment_id"])

        with pytest.raises(LinkedDocumentError) as exc_info:
            await DeletionService.cancel_shipment(db, created["shipment_id"])

        assert exc_info.value.message.startswith("Cannot cancel")
        assert exc_info.value.extra["invoice_no"] == invoice.invoice_no
        shipment = await Repository(db).get(Shipment, created["shipment_id"])
        assert shipment.status == "DRAFT"

    async def test_unknown_shipment_is_not_found(self, db):
        with pytest.raises(NotFoundError):
            await DeletionService.cancel_shipment(db, "0d7f4c44-6c51-4d0c-9a55-0b8f3f1a0c01")

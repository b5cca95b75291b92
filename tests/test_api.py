import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from common.jwt import create_access_token
from constants.permissions import INVOICE_CREATE, PACKING_LIST_EDIT, PO_CREATE, SHIPMENT_CANCEL, SHIPMENT_CREATE
from constants.roles import ADMIN
from main import create_app
from models.base import get_db


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


ADMIN_HEADERS = _auth(create_access_token("admin@example.com", roles=[ADMIN]))
CLERK_HEADERS = _auth(create_access_token("clerk@example.com", permissions=[SHIPMENT_CREATE, INVOICE_CREATE]))

PO_BODY = {
    "po_no": "PO-3001",
    "shipping_origin_code": "VN_BACNINH",
    "requested_ship_date": "2026-03-15",
    "lines": [{"style_no": "ST-001", "qty": 100, "unit_price": "2.00"}],
}


@pytest_asyncio.fixture
async def client(session_factory):
    app = create_app()

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def _create_shipment(client):
    po = (await client.post("/api/orders", json=PO_BODY, headers=ADMIN_HEADERS)).json()
    detail = (await client.get(f"/api/orders/{po['po_id']}")).json()
    body = {
        "po_ids": [po["po_id"]],
        "lines": [{"po_line_id": detail["po"]["lines"][0]["id"], "shipped_qty": 60}],
    }
    res = await client.post("/api/shipments", json=body, headers=CLERK_HEADERS)
    assert res.status_code == 201
    return res.json()["created"][0]["shipment_id"]


class TestPermissions:
    """Mutations need a token carrying the permission or the ADMIN role"""

    async def test_missing_token_is_unauthorized(self, client):
        res = await client.post("/api/orders", json=PO_BODY)

        assert res.status_code == 401
        assert res.json() == {"success": False, "error": "Not authenticated"}
        assert res.headers["WWW-Authenticate"] == "Bearer"

    async def test_invalid_token_is_unauthorized(self, client):
        res = await client.post("/api/orders", json=PO_BODY, headers=_auth("not-a-jwt"))

        assert res.status_code == 401
        assert res.json()["error"] == "Could not validate credentials"

    async def test_missing_permission_is_forbidden(self, client):
        res = await client.post("/api/orders", json=PO_BODY, headers=CLERK_HEADERS)

        assert res.status_code == 403
        assert res.json() == {"success": False, "error": f"Missing permission: {PO_CREATE}", "permission": PO_CREATE}

    async def test_reads_are_open(self, client):
        res = await client.get("/api/shipments")

        assert res.status_code == 200
        assert res.json() == {"success": True, "items": [], "pagination": {"total": 0, "page": 1, "size": 20}}


class TestEnvelopes:
    async def test_created_po_is_returned_with_its_lines(self, client):
        res = await client.post("/api/orders", json=PO_BODY, headers=ADMIN_HEADERS)

        assert res.status_code == 201
        body = res.json()
        assert body["success"] is True
        assert body["po"]["po_no"] == "PO-3001"

        detail = (await client.get(f"/api/orders/{body['po_id']}")).json()
        (line,) = detail["po"]["lines"]
        assert line["shipped_qty"] == 0
        assert line["remaining_qty"] == 100

    async def test_invalid_body_is_a_bad_request(self, client):
        res = await client.post("/api/orders", json={"po_no": "PO-1", "lines": []}, headers=ADMIN_HEADERS)

        assert res.status_code == 400
        body = res.json()
        assert body["success"] is False
        assert body["error"].startswith("Invalid lines")
        assert body["details"]

    async def test_unknown_document_is_not_found(self, client):
        missing = "0d7f4c44-6c51-4d0c-9a55-0b8f3f1a0c01"
        res = await client.get(f"/api/shipments/{missing}")

        assert res.status_code == 404
        assert res.json() == {"success": False, "error": "Shipment not found.", "shipment_id": missing}

    async def test_malformed_id_is_a_bad_request(self, client):
        res = await client.get("/api/invoices/not-a-uuid")

        assert res.status_code == 400
        assert res.json()["error"] == "Invalid invoice_id."

    async def test_duplicate_po_number_conflicts(self, client):
        await client.post("/api/orders", json=PO_BODY, headers=ADMIN_HEADERS)

        res = await client.post("/api/orders", json=PO_BODY, headers=ADMIN_HEADERS)

        assert res.status_code == 409
        assert res.json()["po_no"] == "PO-3001"


class TestDocumentFlow:
    """Shipment, invoice and packing list through the HTTP surface"""

    async def test_invoice_creation_reports_existing_invoice(self, client):
        shipment_id = await _create_shipment(client)

        first = await client.post(f"/api/shipments/{shipment_id}/invoice", headers=CLERK_HEADERS)
        second = await client.post(f"/api/shipments/{shipment_id}/invoice", headers=CLERK_HEADERS)

        assert first.status_code == 201
        assert first.json()["already_exists"] is False
        assert second.status_code == 200
        assert second.json()["already_exists"] is True
        assert second.json()["invoice_id"] == first.json()["invoice_id"]

        linked = (await client.get(f"/api/shipments/{shipment_id}/invoice")).json()
        assert linked["invoice"]["invoice_no"] == first.json()["invoice_no"]

    async def test_confirmed_invoice_refuses_edits(self, client):
        shipment_id = await _create_shipment(client)
        invoice_id = (await client.post(f"/api/shipments/{shipment_id}/invoice", headers=ADMIN_HEADERS)).json()[
            "invoice_id"
        ]
        confirmed = await client.post(f"/api/invoices/{invoice_id}/confirm", headers=ADMIN_HEADERS)
        assert confirmed.json()["invoice"]["status"] == "CONFIRMED"

        res = await client.patch(f"/api/invoices/{invoice_id}", json={"remarks": "late"}, headers=ADMIN_HEADERS)

        assert res.status_code == 409
        assert res.json()["meta"] == {"locked": True, "lock_reason": "CONFIRMED"}

    async def test_invoiced_shipment_cannot_be_deleted(self, client):
        shipment_id = await _create_shipment(client)
        invoice_no = (await client.post(f"/api/shipments/{shipment_id}/invoice", headers=ADMIN_HEADERS)).json()[
            "invoice_no"
        ]

        res = await client.delete(f"/api/shipments/{shipment_id}", headers=ADMIN_HEADERS)

        assert res.status_code == 409
        assert res.json()["success"] is False
        assert res.json()["invoice_no"] == invoice_no
        assert (await client.get(f"/api/shipments/{shipment_id}")).status_code == 200

    async def test_deleted_shipment_is_hidden(self, client):
        shipment_id = await _create_shipment(client)

        res = await client.delete(f"/api/shipments/{shipment_id}", headers=ADMIN_HEADERS)

        assert res.json() == {"success": True, "shipment_id": shipment_id, "already_deleted": False, "deleted_lines": 1}
        assert (await client.get(f"/api/shipments/{shipment_id}")).status_code == 404
        kept = await client.get(f"/api/shipments/{shipment_id}", params={"include_deleted": True})
        assert kept.json()["shipment"]["status"] == "DELETED"

    @pytest.mark.parametrize("via", ["self", "shipment_id", "invoice_no"])
    async def test_packing_list_is_found_by_any_reference(self, client, via):
        shipment_id = await _create_shipment(client)
        created = (await client.post(f"/api/shipments/{shipment_id}/packing-list", headers=ADMIN_HEADERS)).json()
        invoice = (await client.post(f"/api/shipments/{shipment_id}/invoice", headers=ADMIN_HEADERS)).json()
        ref = {"self": created["packing_list_id"], "shipment_id": shipment_id, "invoice_no": invoice["invoice_no"]}[via]

        res = await client.get(f"/api/packing-lists/{ref}")

        assert res.status_code == 200
        body = res.json()
        assert body["matched_via"] == via
        assert body["packing_list"]["id"] == created["packing_list_id"]
        assert body["packing_list"]["invoice_no"] == invoice["invoice_no"]
        assert body["packing_list"]["totals"]["total_qty"] == 60


class TestListEndpoints:
    async def test_invoice_and_packing_list_lists(self, client):
        shipment_id = await _create_shipment(client)
        invoice = (await client.post(f"/api/shipments/{shipment_id}/invoice", headers=ADMIN_HEADERS)).json()
        pl = (await client.post(f"/api/shipments/{shipment_id}/packing-list", headers=ADMIN_HEADERS)).json()

        invoices = (await client.get("/api/invoices", params={"keyword": invoice["invoice_no"]})).json()
        packing_lists = (await client.get("/api/packing-lists", params={"keyword": invoice["invoice_no"]})).json()

        assert invoices["pagination"]["total"] == 1
        assert invoices["items"][0]["id"] == invoice["invoice_id"]
        assert packing_lists["pagination"]["total"] == 1
        assert packing_lists["items"][0]["packing_list_no"] == pl["packing_list_no"]


class TestShipmentCancel:
    async def test_cancel_is_idempotent_and_keeps_the_header(self, client):
        shipment_id = await _create_shipment(client)

        res = await client.post(f"/api/shipments/{shipment_id}/cancel", headers=ADMIN_HEADERS)
        again = await client.post(f"/api/shipments/{shipment_id}/cancel", headers=ADMIN_HEADERS)

        assert res.status_code == 200
        assert res.json() == {"success": True, "shipment_id": shipment_id, "already_cancelled": False, "cancelled_lines": 1}
        assert again.json()["already_cancelled"] is True
        kept = await client.get(f"/api/shipments/{shipment_id}", params={"include_deleted": True})
        assert kept.json()["shipment"]["status"] == "CANCELLED"

    async def test_cancel_needs_its_own_permission(self, client):
        shipment_id = await _create_shipment(client)

        res = await client.post(f"/api/shipments/{shipment_id}/cancel", headers=CLERK_HEADERS)

        assert res.status_code == 403
        assert res.json()["permission"] == SHIPMENT_CANCEL

    async def test_invoiced_shipment_cannot_be_cancelled(self, client):
        shipment_id = await _create_shipment(client)
        await client.post(f"/api/shipments/{shipment_id}/invoice", headers=ADMIN_HEADERS)

        res = await client.post(f"/api/shipments/{shipment_id}/cancel", headers=ADMIN_HEADERS)

        assert res.status_code == 409
        assert res.json()["error"] == "Cannot cancel: invoice already linked to this shipment."


class TestPackingListEditing:
    async def _packing_list_id(self, client):
        shipment_id = await _create_shipment(client)
        created = await client.post(f"/api/shipments/{shipment_id}/packing-list", headers=ADMIN_HEADERS)
        return created.json()["packing_list_id"]

    async def test_put_replaces_lines_and_split_divides_one(self, client):
        pl_id = await self._packing_list_id(client)
        body = {
            "header": {"remarks": "Stack max 4"},
            "lines": [
                {
                    "style_no": "ST-001",
                    "qty": 60,
                    "cartons": 6,
                    "carton_no_from": 1,
                    "carton_no_to": 6,
                    "gw_per_ctn": "5",
                    "nw_per_ctn": "4.5",
                    "cbm_per_ctn": "0.05",
                }
            ],
        }

        res = await client.put(f"/api/packing-lists/{pl_id}", json=body, headers=ADMIN_HEADERS)

        assert res.status_code == 200
        pl = res.json()["packing_list"]
        assert pl["remarks"] == "Stack max 4"
        assert pl["totals"]["total_cartons"] == 6
        assert pl["totals"]["total_gw"] == 30
        assert pl["totals"]["total_cbm"] == pytest.approx(0.3)

        split = await client.post(
            f"/api/packing-lists/{pl_id}/split-line",
            json={"line_id": pl["lines"][0]["id"], "split_cartons": 1, "split_qty": 5},
            headers=ADMIN_HEADERS,
        )

        assert split.status_code == 200
        assert split.json()["original_line"]["qty"] == 55
        assert split.json()["split_line"]["carton_no_from"] == 6

    async def test_put_needs_the_edit_permission(self, client):
        pl_id = await self._packing_list_id(client)

        res = await client.put(f"/api/packing-lists/{pl_id}", json={"lines": []}, headers=CLERK_HEADERS)

        assert res.status_code == 403
        assert res.json()["permission"] == PACKING_LIST_EDIT

    async def test_negative_quantity_is_a_bad_request(self, client):
        pl_id = await self._packing_list_id(client)

        res = await client.put(f"/api/packing-lists/{pl_id}", json={"lines": [{"qty": -1}]}, headers=ADMIN_HEADERS)

        assert res.status_code == 400
        assert res.json()["success"] is False

import logging
from collections import OrderedDict
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from apps.companies.service import CompanyService
from apps.sequences.service import SequenceService, shipment_prefix
from apps.shipments.quantity import QuantityValidator
from apps.shipments.schemas import ShipmentCreate
from common.exceptions import ConflictError, DuplicateNumberError, NotFoundError, ValidationError
from common.pagination import paginate_select
from common.repository import Repository, parse_uuid
from common.schema_tolerant import SchemaTolerantWriter
from constants.ship_modes import SEA, SHIP_MODE_ALIASES
from constants.statuses import DRAFT
from models.invoice import InvoiceHeader
from models.packing_list import PackingListHeader
from models.purchase_order import POHeader, POLine
from models.shipment import Shipment, ShipmentLine, ShipmentPO

logger = logging.getLogger(__name__)


def normalize_ship_mode(value: Optional[str]) -> Optional[str]:
    """
    Map user input ('A', 'ocean', 'Sea'...) to SEA/AIR/COURIER. Blank is None.
    """
    key = (value or "").strip().upper()
    if not key:
        return None
    mode = SHIP_MODE_ALIASES.get(key)
    if mode is None:
        raise ValidationError(f"Unknown ship mode '{value}'.", ship_mode=value)
    return mode


def _first(*values):
    for value in values:
        if value is not None and str(value).strip() != "":
            return value
    return None


class ShipmentService:
    @staticmethod
    async def _load_pos(db: AsyncSession, po_ids: List[Any]) -> List[POHeader]:
        repo = Repository(db)
        pos = await repo.all(repo.select(POHeader).where(POHeader.id.in_(po_ids)))
        by_id = {po.id: po for po in pos}
        missing = [str(i) for i in po_ids if i not in by_id]
        if missing:
            raise NotFoundError("PO not found.", missing_po_ids=missing)
        # Keep the caller's order so the first PO is the representative one
        return [by_id[i] for i in po_ids]

    @staticmethod
    async def create_from_po(
        db: AsyncSession,
        payload: ShipmentCreate,
        created_by: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Create one shipment per ship mode from the selected PO lines.

        Quantity validation, number allocation and every insert share one
        transaction; the validator's row locks on the PO lines are held until
        commit, so concurrent creations against the same lines serialize.
        """
        po_ids = list(OrderedDict.fromkeys(payload.po_ids))
        try:
            pos = await ShipmentService._load_pos(db, po_ids)
            buyer_ids = {po.buyer_id for po in pos if po.buyer_id is not None}
            if len(buyer_ids) > 1:
                raise ValidationError(
                    "All POs in one shipment must belong to the same buyer.",
                    buyer_ids=sorted(str(b) for b in buyer_ids),
                )
            base = pos[0]
            buyer = await CompanyService.get_company(db, base.buyer_id)

            # Last selection wins when the same line is sent twice
            selections: "OrderedDict[Any, Any]" = OrderedDict()
            for sel in payload.lines:
                if sel.use and sel.shipped_qty > 0:
                    selections[sel.po_line_id] = sel
            if not selections:
                raise ValidationError("No lines with shipped_qty > 0.")

            repo = Repository(db)
            po_lines = await repo.all(
                repo.select(POLine)
                .where(POLine.id.in_(list(selections)), POLine.po_header_id.in_(po_ids))
                .order_by(POLine.line_no)
            )
            found = {line.id for line in po_lines}
            missing = [str(i) for i in selections if i not in found]
            if missing:
                raise ValidationError("Selected lines not found in PO lines.", missing_po_line_ids=missing)

            default_mode = normalize_ship_mode(buyer.buyer_default_ship_mode if buyer else None) or SEA
            lines_by_id = {line.id: line for line in po_lines}
            groups: "OrderedDict[str, List[Tuple[POLine, int]]]" = OrderedDict()
            for line_id, sel in selections.items():
                mode = normalize_ship_mode(sel.ship_mode) or default_mode
                groups.setdefault(mode, []).append((lines_by_id[line_id], sel.shipped_qty))

            await QuantityValidator(db).validate((line_id, sel.shipped_qty) for line_id, sel in selections.items())

            header_base = {
                "po_header_id": base.id,
                "po_no": base.po_no,
                "buyer_id": base.buyer_id,
                "buyer_name": _first(base.buyer_name, buyer.company_name if buyer else None),
                "currency": _first(payload.currency, base.currency, buyer.currency if buyer else None),
                "incoterm": _first(payload.incoterm, base.incoterm, buyer.buyer_default_incoterm if buyer else None),
                "payment_term": _first(payload.payment_term, base.payment_term, buyer.buyer_payment_term if buyer else None),
                "shipping_origin_code": _first(payload.shipping_origin_code, base.shipping_origin_code),
                "destination": _first(payload.destination, base.destination, buyer.buyer_final_destination if buyer else None),
                "consignee_text": _first(payload.consignee_text, buyer.buyer_consignee if buyer else None),
                "notify_party_text": _first(payload.notify_party_text, buyer.buyer_notify_party if buyer else None),
                "etd": payload.etd or base.requested_ship_date,
                "eta": payload.eta,
                "memo": payload.memo,
                "created_by": created_by,
                "status": DRAFT,
                "is_deleted": False,
            }
            header_base["origin"] = header_base["shipping_origin_code"]
            po_no_by_id = {po.id: po.po_no for po in pos}

            writer = SchemaTolerantWriter(db)
            sequences = SequenceService(db)
            created: List[Dict[str, Any]] = []
            for mode, group in groups.items():
                shipment_no = await sequences.next(
                    shipment_prefix(header_base["shipping_origin_code"], header_base["etd"]),
                    Shipment.shipment_no,
                )
                header = (
                    await writer.insert(Shipment, {**header_base, "shipment_no": shipment_no, "ship_mode": mode})
                ).raise_for_error("Save failed: could not create shipment.").row
                shipment_id = header["id"]

                group_po_ids = list(OrderedDict.fromkeys(po_line.po_header_id for po_line, _ in group))
                links = [
                    {"shipment_id": shipment_id, "po_header_id": po_id, "po_no": po_no_by_id.get(po_id)}
                    for po_id in group_po_ids
                ]
                (await writer.insert(ShipmentPO, links)).raise_for_error("Save failed: could not link shipment to its POs.")

                line_rows = []
                for po_line, shipped_qty in group:
                    unit_price = Decimal(po_line.unit_price) if po_line.unit_price is not None else Decimal("0")
                    line_rows.append(
                        {
                            "shipment_id": shipment_id,
                            "po_header_id": po_line.po_header_id,
                            "po_line_id": po_line.id,
                            "po_no": po_no_by_id.get(po_line.po_header_id),
                            "line_no": po_line.line_no,
                            "style_no": po_line.style_no,
                            "description": po_line.description,
                            "color": po_line.color,
                            "size": po_line.size,
                            "order_qty": po_line.qty,
                            "shipped_qty": shipped_qty,
                            "unit_price": unit_price,
                            "amount": unit_price * shipped_qty,
                            "ship_mode": mode,
                            "is_deleted": False,
                        }
                    )
                lines = (
                    await writer.insert(ShipmentLine, line_rows)
                ).raise_for_error("Save failed: could not create shipment lines.").rows

                created.append(
                    {
                        "shipment_id": shipment_id,
                        "shipment_no": shipment_no,
                        "ship_mode": mode,
                        "line_count": len(lines),
                        "po_ids": [str(p) for p in group_po_ids],
                    }
                )

            await db.commit()
        except IntegrityError as exc:
            await db.rollback()
            raise DuplicateNumberError("Document number already in use; retry the request.", detail=str(exc.orig))
        except Exception:
            await db.rollback()
            raise

        for item in created:
            logger.info(
                "Created shipment %s (%s) with %d line(s)", item["shipment_no"], item["ship_mode"], item["line_count"]
            )
        return created

    @staticmethod
    async def get_shipment(
        db: AsyncSession, shipment_id: Any, include_deleted: bool = False
    ) -> Tuple[Shipment, List[ShipmentLine], List[str]]:
        shipment_id = parse_uuid(shipment_id, "shipment_id")
        repo = Repository(db)
        shipment = await repo.get(Shipment, shipment_id, include_deleted=include_deleted)
        if not shipment:
            raise NotFoundError("Shipment not found.", shipment_id=str(shipment_id))
        lines = await repo.all(
            repo.select(ShipmentLine, include_deleted=include_deleted)
            .where(ShipmentLine.shipment_id == shipment_id)
            .order_by(ShipmentLine.po_no, ShipmentLine.line_no)
        )
        links = await repo.all(
            repo.select(ShipmentPO).where(ShipmentPO.shipment_id == shipment_id).order_by(ShipmentPO.created_at)
        )
        po_nos = [link.po_no for link in links if link.po_no] or ([shipment.po_no] if shipment.po_no else [])
        return shipment, lines, po_nos

    @staticmethod
    async def get_derivable_shipment(db: AsyncSession, shipment_id: Any) -> Shipment:
        """
        Shipment an invoice or packing list can be derived from: it must exist and be active.
        """
        shipment_id = parse_uuid(shipment_id, "shipment_id")
        shipment = await Repository(db).get(Shipment, shipment_id, include_deleted=True)
        if not shipment:
            raise NotFoundError("Shipment not found.", shipment_id=str(shipment_id))
        if shipment.is_deleted:
            raise ConflictError("Shipment is deleted.", shipment_id=str(shipment_id))
        return shipment

    @staticmethod
    async def active_lines(db: AsyncSession, shipment_id: Any) -> List[ShipmentLine]:
        repo = Repository(db)
        return await repo.all(
            repo.select(ShipmentLine)
            .where(ShipmentLine.shipment_id == shipment_id)
            .order_by(ShipmentLine.po_no, ShipmentLine.line_no)
        )

    @staticmethod
    async def list_shipments(
        db: AsyncSession,
        page: int,
        size: int,
        po_no: Optional[str] = None,
        buyer: Optional[str] = None,
        include_deleted: bool = False,
    ) -> Tuple[List[Shipment], dict]:
        repo = Repository(db)
        stmt = repo.select(Shipment, include_deleted=include_deleted)
        if po_no:
            stmt = stmt.where(Shipment.po_no.ilike(f"%{po_no.strip()}%"))
        if buyer:
            stmt = stmt.where(Shipment.buyer_name.ilike(f"%{buyer.strip()}%"))
        stmt = stmt.order_by(Shipment.created_at.desc(), Shipment.shipment_no.desc())
        return await paginate_select(db, stmt, page, size)

    @staticmethod
    async def get_linked_invoice(db: AsyncSession, shipment_id: Any) -> Optional[InvoiceHeader]:
        shipment_id = parse_uuid(shipment_id, "shipment_id")
        repo = Repository(db)
        if not await repo.get(Shipment, shipment_id, include_deleted=True):
            raise NotFoundError("Shipment not found.", shipment_id=str(shipment_id))
        return await repo.first(
            repo.select(InvoiceHeader)
            .where(InvoiceHeader.shipment_id == shipment_id)
            .order_by(InvoiceHeader.is_latest.desc(), InvoiceHeader.revision_no.desc())
        )

    @staticmethod
    async def get_linked_packing_list(db: AsyncSession, shipment_id: Any) -> Optional[PackingListHeader]:
        shipment_id = parse_uuid(shipment_id, "shipment_id")
        repo = Repository(db)
        if not await repo.get(Shipment, shipment_id, include_deleted=True):
            raise NotFoundError("Shipment not found.", shipment_id=str(shipment_id))
        return await repo.first(
            repo.select(PackingListHeader)
            .where(PackingListHeader.shipment_id == shipment_id)
            .order_by(PackingListHeader.created_at.desc())
        )

"""
Packing list identity resolution.

Packing lists are addressed by whatever identifier the caller happens to hold:
the packing list's own id, the id of its shipment or invoice, or an invoice
number. A reference is parsed into a tagged ``DocumentRef`` and the candidates
are tried from the cheapest lookup to the most expensive one. Invoice
references that are not recorded on the packing list (older revisions, lists
made before their invoice) fall back to the invoice's shipment. When a lookup
by the latest invoice's number succeeds, its id and number are written onto
the packing list together so the next lookup takes the direct path.
"""

import enum
import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from common.exceptions import NotFoundError, ValidationError
from common.repository import Repository, field_or_none
from common.schema_registry import schema_registry
from common.schema_tolerant import SchemaTolerantWriter
from models.invoice import InvoiceHeader
from models.packing_list import PackingListHeader

logger = logging.getLogger(__name__)


class MatchedVia(str, enum.Enum):
    SELF = "self"
    SHIPMENT_ID = "shipment_id"
    INVOICE_ID = "invoice_id"
    INVOICE_NO = "invoice_no"


@dataclass(frozen=True)
class BySelf:
    id: uuid.UUID


@dataclass(frozen=True)
class ByShipmentId:
    id: uuid.UUID


@dataclass(frozen=True)
class ByInvoiceId:
    id: uuid.UUID


@dataclass(frozen=True)
class ByInvoiceNo:
    invoice_no: str


DocumentRef = Union[BySelf, ByShipmentId, ByInvoiceId, ByInvoiceNo]


@dataclass(frozen=True)
class Resolution:
    packing_list_id: uuid.UUID
    matched_via: MatchedVia
    backfilled: bool = False


def candidate_refs(opaque_id: str) -> List[DocumentRef]:
    value = (opaque_id or "").strip()
    if not value:
        raise ValidationError("Packing list reference is required.")
    try:
        parsed = uuid.UUID(value)
    except ValueError:
        return [ByInvoiceNo(value)]
    return [BySelf(parsed), ByShipmentId(parsed), ByInvoiceId(parsed)]


class PackingListResolver:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.repo = Repository(db)

    async def _active_pl(self, *criteria) -> Optional[PackingListHeader]:
        stmt = self.repo.select(PackingListHeader).where(*criteria).order_by(PackingListHeader.created_at.desc())
        return await self.repo.first(stmt)

    async def resolve_ref(self, ref: DocumentRef) -> Optional[Resolution]:
        if isinstance(ref, BySelf):
            pl = await self._active_pl(PackingListHeader.id == ref.id)
            return Resolution(pl.id, MatchedVia.SELF) if pl else None

        if isinstance(ref, ByShipmentId):
            pl = await self._active_pl(PackingListHeader.shipment_id == ref.id)
            return Resolution(pl.id, MatchedVia.SHIPMENT_ID) if pl else None

        if isinstance(ref, ByInvoiceId):
            return await self._resolve_invoice_id(ref.id)

        if isinstance(ref, ByInvoiceNo):
            return await self._resolve_invoice_no(ref.invoice_no)

        raise TypeError(f"Unsupported document reference: {ref!r}")

    def _stores_invoice_no(self) -> bool:
        return "invoice_no" not in schema_registry.missing(PackingListHeader.__table__.name)

    async def _by_shipment_of(self, invoice: InvoiceHeader) -> Optional[PackingListHeader]:
        # Packing lists written before the invoice (or before its revision) only know their shipment
        if invoice.shipment_id is None:
            return None
        return await self._active_pl(PackingListHeader.shipment_id == invoice.shipment_id)

    async def _resolve_invoice_id(self, invoice_id: uuid.UUID) -> Optional[Resolution]:
        pl = await self._active_pl(PackingListHeader.invoice_id == invoice_id)
        if pl is None:
            invoice = await self.repo.get(InvoiceHeader, invoice_id)
            pl = await self._by_shipment_of(invoice) if invoice else None
        return Resolution(pl.id, MatchedVia.INVOICE_ID) if pl else None

    async def _resolve_invoice_no(self, invoice_no: str) -> Optional[Resolution]:
        invoice = await self.repo.first(
            self.repo.select(InvoiceHeader)
            .where(InvoiceHeader.invoice_no == invoice_no)
            .order_by(InvoiceHeader.is_latest.desc(), InvoiceHeader.revision_no.desc())
        )
        if not invoice:
            return None

        pl = None
        if self._stores_invoice_no():
            pl = await self._active_pl(PackingListHeader.invoice_no == invoice.invoice_no)
        if pl is None:
            pl = await self._by_shipment_of(invoice)
        if pl is None:
            return None

        # Only the latest revision is recorded; superseded numbers resolve without writing
        backfilled = False
        stale = pl.invoice_id != invoice.id
        if self._stores_invoice_no():
            stale = stale or field_or_none(pl, "invoice_no") != invoice.invoice_no
        if invoice.is_latest and stale:
            patch = {"invoice_id": invoice.id, "invoice_no": invoice.invoice_no}
            try:
                (await SchemaTolerantWriter(self.db).update(PackingListHeader, pl.id, patch)).raise_for_error(
                    "Failed to record the invoice on the packing list."
                )
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise
            backfilled = True
            logger.info("Backfilled invoice %s onto packing list %s", invoice.invoice_no, pl.id)
        return Resolution(pl.id, MatchedVia.INVOICE_NO, backfilled)

    async def resolve(self, opaque_id: str) -> Resolution:
        for ref in candidate_refs(opaque_id):
            resolution = await self.resolve_ref(ref)
            if resolution:
                return resolution
        raise NotFoundError("Packing list not found.", ref=opaque_id)

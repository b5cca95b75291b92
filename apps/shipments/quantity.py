"""
Quantity conservation for PO lines.

For every PO line, shipped quantity on active shipment lines plus the
cancelled quantity may never exceed the ordered quantity. ``validate`` locks
the PO lines it checks (SELECT ... FOR UPDATE), so the caller's insert of the
new shipment lines must happen in the same transaction: a concurrent shipment
creation for the same lines waits on the lock and then re-reads the total.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from common.exceptions import QuantityExceededError, ValidationError
from common.repository import active, parse_uuid
from models.purchase_order import POLine
from models.shipment import Shipment, ShipmentLine

logger = logging.getLogger(__name__)


@dataclass
class LineAllowance:
    po_line_id: Any
    line_no: Optional[int]
    ordered_qty: int
    qty_cancelled: int
    already_shipped: int
    requested_now: int

    @property
    def remaining(self) -> int:
        return self.ordered_qty - self.qty_cancelled - self.already_shipped

    @property
    def exceeded(self) -> bool:
        return self.already_shipped + self.qty_cancelled + self.requested_now > self.ordered_qty

    def as_violation(self) -> Dict[str, Any]:
        return {
            "po_line_id": str(self.po_line_id),
            "line_no": self.line_no,
            "ordered_qty": self.ordered_qty,
            "qty_cancelled": self.qty_cancelled,
            "already_shipped": self.already_shipped,
            "requested_now": self.requested_now,
            "remaining": max(self.remaining, 0),
        }


async def shipped_totals(db: AsyncSession, po_line_ids: Iterable[Any]) -> Dict[Any, int]:
    """
    Sum of shipped_qty per PO line over active lines of active shipments.
    """
    ids = list(po_line_ids)
    if not ids:
        return {}
    stmt = (
        select(ShipmentLine.po_line_id, func.coalesce(func.sum(ShipmentLine.shipped_qty), 0))
        .join(Shipment, Shipment.id == ShipmentLine.shipment_id)
        .where(ShipmentLine.po_line_id.in_(ids), active(ShipmentLine), active(Shipment))
        .group_by(ShipmentLine.po_line_id)
    )
    res = await db.execute(stmt)
    return {row[0]: int(row[1] or 0) for row in res.all()}


class QuantityValidator:
    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def _aggregate(requests: Iterable[Tuple[Any, int]]) -> "OrderedDict[Any, int]":
        totals: "OrderedDict[Any, int]" = OrderedDict()
        for po_line_id, qty in requests:
            qty = int(qty or 0)
            if qty < 0:
                raise ValidationError("Requested quantity cannot be negative.", po_line_id=str(po_line_id))
            key = parse_uuid(po_line_id, "po_line_id")
            totals[key] = totals.get(key, 0) + qty
        return totals

    async def check(self, requests: Iterable[Tuple[Any, int]]) -> List[LineAllowance]:
        """
        Compute the allowance of every requested line without raising on excess.
        Unknown or deleted PO lines are a validation error.
        """
        totals = self._aggregate(requests)
        if not totals:
            return []

        stmt = select(POLine).where(POLine.id.in_(list(totals)), active(POLine)).order_by(POLine.id).with_for_update()
        res = await self.db.execute(stmt)
        lines = {line.id: line for line in res.scalars().all()}

        missing = [str(i) for i in totals if i not in lines]
        if missing:
            raise ValidationError("Selected lines not found in PO lines.", missing_po_line_ids=missing)

        shipped = await shipped_totals(self.db, totals)
        return [
            LineAllowance(
                po_line_id=line_id,
                line_no=lines[line_id].line_no,
                ordered_qty=int(lines[line_id].qty or 0),
                qty_cancelled=int(lines[line_id].qty_cancelled or 0),
                already_shipped=shipped.get(line_id, 0),
                requested_now=requested,
            )
            for line_id, requested in totals.items()
        ]

    async def validate(self, requests: Iterable[Tuple[Any, int]]) -> List[LineAllowance]:
        """
        Raise QuantityExceededError listing every offending line, else return the allowances.
        """
        allowances = await self.check(requests)
        violations = [a.as_violation() for a in allowances if a.exceeded]
        if violations:
            logger.info("Rejected shipment quantities on %d PO line(s)", len(violations))
            raise QuantityExceededError(violations)
        return allowances

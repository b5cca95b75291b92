import logging
import re
from datetime import date
from typing import Optional

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from common.exceptions import DuplicateNumberError
from models.document_counter import DocumentCounter
from settings.config import get_settings

logger = logging.getLogger(__name__)

# Origin codes look like 'VN_BACNINH'; free-text origins are matched by name
COUNTRY_MATCHERS = (
    ("VN", "VIETNAM", ("VN_",), ("VIET",)),
    ("CN", "CHINA", ("CN_",), ("CHINA",)),
    ("KR", "KOREA", ("KR_",), ("KOREA", "SEOUL")),
)

# Extra allocations tried when a number produced by the counter is already taken
MAX_COLLISION_SKIPS = 5


def origin_to_country_code(origin: Optional[str]) -> str:
    value = (origin or "").strip().upper()
    for code, _name, prefixes, words in COUNTRY_MATCHERS:
        if value.startswith(prefixes) or any(w in value for w in words):
            return code
    return get_settings().DEFAULT_ORIGIN_COUNTRY_CODE


def origin_to_country_name(origin: Optional[str]) -> str:
    code = origin_to_country_code(origin)
    for cc, name, _prefixes, _words in COUNTRY_MATCHERS:
        if cc == code:
            return name
    return code


def coo_text(origin: Optional[str]) -> str:
    return f"MADE IN {origin_to_country_name(origin)}"


def _yymm(on: Optional[date]) -> str:
    on = on or date.today()
    return f"{on.year % 100:02d}{on.month:02d}"


def shipment_prefix(origin: Optional[str], on: Optional[date] = None) -> str:
    settings = get_settings()
    return f"{settings.SHIPMENT_NUMBER_PREFIX}-{origin_to_country_code(origin)}-{_yymm(on)}-"


def packing_list_prefix(origin: Optional[str], on: Optional[date] = None) -> str:
    settings = get_settings()
    return f"{settings.PACKING_LIST_NUMBER_PREFIX}-{origin_to_country_code(origin)}-{_yymm(on)}-"


def invoice_prefix(buyer_code: Optional[str], on: Optional[date] = None) -> str:
    settings = get_settings()
    on = on or date.today()
    code = re.sub(r"\s+", "", (buyer_code or "").upper()) or "BUYER"
    return f"{settings.INVOICE_NUMBER_PREFIX}-{code}-{on.year % 100:02d}-"


class SequenceService:
    """
    Allocates document numbers '<prefix><seq>' from a per-prefix counter row.

    The counter is bumped with UPDATE ... RETURNING, so two transactions
    allocating for the same prefix serialize on the row lock and never see the
    same value. The first allocation for a prefix seeds the counter from the
    highest number already stored, which keeps numbering continuous for data
    written before the counter table existed.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.pad_width = get_settings().SEQUENCE_PAD_WIDTH

    def format(self, prefix: str, seq: int) -> str:
        return f"{prefix}{seq:0{self.pad_width}d}"

    async def highest_existing(self, prefix: str, number_column) -> int:
        """
        Highest numeric suffix among stored numbers starting with prefix (0 if none).
        """
        if number_column is None:
            return 0
        pattern = re.compile(rf"^{re.escape(prefix)}(\d{{{self.pad_width},}})$")
        stmt = select(number_column).where(number_column.startswith(prefix, autoescape=True))
        res = await self.db.execute(stmt)
        highest = 0
        for value in res.scalars():
            match = pattern.match(value or "")
            if match:
                highest = max(highest, int(match.group(1)))
        return highest

    async def _bump(self, prefix: str) -> Optional[int]:
        table = DocumentCounter.__table__
        stmt = (
            update(table)
            .where(table.c.prefix == prefix)
            .values(seq=table.c.seq + 1)
            .returning(table.c.seq)
        )
        res = await self.db.execute(stmt)
        return res.scalar_one_or_none()

    async def _allocate_seq(self, prefix: str, number_column) -> int:
        seq = await self._bump(prefix)
        if seq is not None:
            return seq

        seed = await self.highest_existing(prefix, number_column)
        try:
            async with self.db.begin_nested():
                await self.db.execute(insert(DocumentCounter.__table__).values(prefix=prefix, seq=seed + 1))
            return seed + 1
        except IntegrityError:
            # Another transaction created the counter first
            logger.debug("Counter for %s created concurrently; bumping instead", prefix)
            seq = await self._bump(prefix)
            if seq is None:
                raise
            return seq

    async def _is_taken(self, number: str, number_column) -> bool:
        res = await self.db.execute(select(number_column).where(number_column == number).limit(1))
        return res.first() is not None

    async def next(self, prefix: str, number_column=None) -> str:
        """
        Allocate the next number for prefix. The allocation commits with the
        caller's transaction. number_column (e.g. Shipment.shipment_no) seeds a
        new counter and skips numbers that were inserted by hand.
        """
        for _ in range(MAX_COLLISION_SKIPS + 1):
            number = self.format(prefix, await self._allocate_seq(prefix, number_column))
            if number_column is None or not await self._is_taken(number, number_column):
                logger.debug("Allocated document number %s", number)
                return number
            logger.warning("Document number %s already exists; allocating again", number)
        raise DuplicateNumberError(f"Could not allocate a free document number for prefix {prefix}.", prefix=prefix)

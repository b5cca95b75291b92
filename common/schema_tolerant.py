"""
Writes that survive a database schema lagging behind the code.

When an INSERT or UPDATE fails because a column does not exist, the column
is dropped from every row and the write is retried, up to
SCHEMA_DRIFT_MAX_ATTEMPTS times. Only the "missing column" class of error is
retried; anything else is returned on the result untouched. Each attempt runs
in its own savepoint so a failed attempt never poisons the surrounding
transaction.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy import Table, insert, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from common.exceptions import SchemaDriftWarning, UnknownError
from common.schema_registry import SchemaRegistry, schema_registry
from settings.config import get_settings

logger = logging.getLogger(__name__)

# PostgreSQL, PostgREST-style gateways and SQLite phrase it differently
MISSING_COLUMN_PATTERNS = (
    re.compile(r'column "([^"]+)" of relation "[^"]+" does not exist', re.IGNORECASE),
    re.compile(r"could not find the '([^']+)' column", re.IGNORECASE),
    re.compile(r'has no field "([^"]+)"', re.IGNORECASE),
    re.compile(r"table \S+ has no column named (\w+)", re.IGNORECASE),
    re.compile(r"no such column: (?:\w+\.)?(\w+)", re.IGNORECASE),
    re.compile(r'column "(?:\w+\.)?([^"]+)" does not exist', re.IGNORECASE),
)


def extract_missing_column(message: str) -> Optional[str]:
    for pattern in MISSING_COLUMN_PATTERNS:
        match = pattern.search(message or "")
        if match:
            return match.group(1)
    return None


def _error_message(exc: DBAPIError) -> str:
    return str(exc.orig) if exc.orig is not None else str(exc)


@dataclass
class WriteResult:
    rows: List[Dict[str, Any]] = field(default_factory=list)
    dropped: List[str] = field(default_factory=list)
    warnings: List[SchemaDriftWarning] = field(default_factory=list)
    error: Optional[Exception] = None
    attempts: int = 0
    final_payload: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def row(self) -> Optional[Dict[str, Any]]:
        return self.rows[0] if self.rows else None

    @property
    def ids(self) -> List[Any]:
        return [r["id"] for r in self.rows]

    @property
    def is_integrity_error(self) -> bool:
        return isinstance(self.error, IntegrityError)

    def raise_for_error(self, message: str) -> "WriteResult":
        if self.is_integrity_error:
            raise self.error
        if self.error is not None:
            raise UnknownError(message, detail=str(self.error))
        return self


def _table_of(target) -> Table:
    return target if isinstance(target, Table) else target.__table__


class SchemaTolerantWriter:
    def __init__(
        self,
        db: AsyncSession,
        registry: SchemaRegistry = schema_registry,
        max_attempts: Optional[int] = None,
    ):
        self.db = db
        self.registry = registry
        self.max_attempts = max_attempts or get_settings().SCHEMA_DRIFT_MAX_ATTEMPTS

    def _drop(self, result: WriteResult, table: Table, column: str, attempt: int) -> None:
        message = f"{table.name}.{column} is missing from the live schema; written without it"
        logger.warning("Schema drift (attempt %d): %s", attempt, message)
        result.dropped.append(column)
        result.warnings.append(SchemaDriftWarning(message))
        self.registry.mark_missing(table.name, column)

    def _prepare(self, table: Table, rows: List[Dict[str, Any]], result: WriteResult) -> List[Dict[str, Any]]:
        working = [dict(r) for r in rows]
        for row in working:
            for col in self.registry.strip(table.name, row):
                if col not in result.dropped:
                    logger.debug("Skipping known-missing column %s.%s", table.name, col)
                    result.dropped.append(col)
        return working

    async def insert(self, target, rows: Union[Dict[str, Any], Iterable[Dict[str, Any]]]) -> WriteResult:
        """
        Insert one or many rows. Returned rows hold the generated id plus the
        columns that were actually written.
        """
        table = _table_of(target)
        rows = [rows] if isinstance(rows, dict) else list(rows)
        result = WriteResult()
        if not rows:
            return result

        working = self._prepare(table, rows, result)
        keys = set(working[0])
        if any(set(r) != keys for r in working):
            raise ValueError(f"Rows written to {table.name} must share the same columns")

        for attempt in range(1, self.max_attempts + 1):
            result.attempts = attempt
            columns = [table.c[k] for k in sorted(keys) if k != "id"]
            stmt = insert(table).returning(table.c.id, *columns, sort_by_parameter_order=True)
            try:
                async with self.db.begin_nested():
                    res = await self.db.execute(stmt, working)
                    result.rows = [dict(r._mapping) for r in res]
                result.final_payload = working
                return result
            except DBAPIError as exc:
                column = extract_missing_column(_error_message(exc))
                if column is None or column not in keys:
                    result.error = exc
                    result.final_payload = working
                    return result
                self._drop(result, table, column, attempt)
                keys.discard(column)
                for row in working:
                    row.pop(column, None)

        result.error = UnknownError(f"Write to {table.name} kept failing on missing columns", dropped=result.dropped)
        result.final_payload = working
        return result

    async def update(self, target, row_id: Any, patch: Dict[str, Any]) -> WriteResult:
        """
        Update one row by id. An empty patch (after drops) is a no-op.
        """
        table = _table_of(target)
        result = WriteResult()
        working = self._prepare(table, [patch], result)[0]

        for attempt in range(1, self.max_attempts + 1):
            result.attempts = attempt
            if not working:
                result.rows = [{"id": row_id}]
                result.final_payload = [working]
                return result
            columns = [table.c[k] for k in sorted(working)]
            stmt = update(table).where(table.c.id == row_id).values(**working).returning(table.c.id, *columns)
            try:
                async with self.db.begin_nested():
                    res = await self.db.execute(stmt)
                    result.rows = [dict(r._mapping) for r in res]
                result.final_payload = [working]
                return result
            except DBAPIError as exc:
                column = extract_missing_column(_error_message(exc))
                if column is None or column not in working:
                    result.error = exc
                    result.final_payload = [working]
                    return result
                self._drop(result, table, column, attempt)
                working.pop(column)

        result.error = UnknownError(f"Update of {table.name} kept failing on missing columns", dropped=result.dropped)
        result.final_payload = [working]
        return result

"""
Optional-column registry.

Models list the columns older deployments may not have yet in
``__optional_columns__``. The live schema is inspected once at startup; the
missing ones are stripped from writes before they are sent and deferred from
reads, so a lagging database degrades to "field not stored" instead of
failing every request. Columns the write adapter discovers at runtime are
recorded here too.
"""

import logging
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncConnection
from sqlalchemy.orm import defer

from models.base import Base

logger = logging.getLogger(__name__)


def models_with_optional_columns() -> List[type]:
    return [
        mapper.class_
        for mapper in Base.registry.mappers
        if getattr(mapper.class_, "__optional_columns__", None)
    ]


class SchemaRegistry:
    def __init__(self) -> None:
        self._missing: Dict[str, Set[str]] = {}

    def reset(self) -> None:
        self._missing.clear()

    def missing(self, table_name: str) -> Set[str]:
        return set(self._missing.get(table_name, ()))

    def mark_missing(self, table_name: str, column: str) -> None:
        self._missing.setdefault(table_name, set()).add(column)

    def strip(self, table_name: str, payload: dict) -> List[str]:
        """
        Remove known-missing columns from payload in place. Returns what was removed.
        """
        removed = [col for col in self._missing.get(table_name, ()) if col in payload]
        for col in removed:
            payload.pop(col)
        return removed

    def read_options(self, model) -> list:
        table_name = model.__table__.name
        return [
            defer(getattr(model, col), raiseload=True)
            for col in sorted(self._missing.get(table_name, ()))
            if hasattr(model, col)
        ]

    async def load(self, conn: AsyncConnection, models: Optional[Iterable[type]] = None) -> Dict[str, Set[str]]:
        """
        Inspect the live schema and record which optional columns are absent.
        Required columns that are absent are logged as errors; writes touching
        them fall back to the drop/retry adapter.
        """
        targets = list(models) if models is not None else models_with_optional_columns()

        def _inspect(sync_conn) -> Dict[str, Set[str]]:
            insp = inspect(sync_conn)
            found: Dict[str, Set[str]] = {}
            for model in targets:
                table = model.__table__
                if not insp.has_table(table.name):
                    logger.error("Table %s does not exist in the live schema", table.name)
                    continue
                live = {c["name"] for c in insp.get_columns(table.name)}
                optional = set(getattr(model, "__optional_columns__", ()))
                missing_optional = {c for c in optional if c not in live}
                missing_required = {c.name for c in table.columns if c.name not in live} - optional
                if missing_optional:
                    found[table.name] = missing_optional
                    for col in sorted(missing_optional):
                        logger.warning(
                            "Optional column %s.%s is missing from the live schema; it will not be written",
                            table.name,
                            col,
                        )
                for col in sorted(missing_required):
                    logger.error("Required column %s.%s is missing from the live schema", table.name, col)
            return found

        self._missing = await conn.run_sync(_inspect)
        return {k: set(v) for k, v in self._missing.items()}


schema_registry = SchemaRegistry()

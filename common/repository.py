"""
Soft-delete aware data access.

Every active-row read goes through here so the ``is_deleted = false``
predicate lives in one place; ``include_deleted=True`` is the explicit
escape hatch for lookups that must see deleted rows (e.g. to tell
"deleted" apart from "never existed").
"""

import uuid
from typing import Any, Dict, List

from sqlalchemy import Select, func, select, update
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.ext.asyncio import AsyncSession

from common.exceptions import ValidationError
from common.schema_registry import schema_registry


def active(model):
    return model.is_deleted.is_(False)


def parse_uuid(value: Any, label: str = "id") -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value).strip())
    except (ValueError, AttributeError):
        raise ValidationError(f"Invalid {label}.", **{label: str(value)})


def loaded_fields(obj) -> Dict[str, Any]:
    """
    Column values of an ORM object, skipping attributes that were not loaded
    (deferred because the live schema lacks them).
    """
    state = sa_inspect(obj)
    unloaded = state.unloaded
    return {
        attr.key: getattr(obj, attr.key)
        for attr in state.mapper.column_attrs
        if attr.key not in unloaded
    }


def field_or_none(obj, name: str) -> Any:
    """
    getattr that treats deferred-and-unavailable columns as absent.
    """
    if obj is None or name in sa_inspect(obj).unloaded:
        return None
    return getattr(obj, name, None)


class Repository:
    def __init__(self, db: AsyncSession):
        self.db = db

    def select(self, model, include_deleted: bool = False) -> Select:
        stmt = select(model).options(*schema_registry.read_options(model))
        if not include_deleted and hasattr(model, "is_deleted"):
            stmt = stmt.where(active(model))
        return stmt.execution_options(populate_existing=True)

    async def get(self, model, row_id, include_deleted: bool = False, for_update: bool = False):
        stmt = self.select(model, include_deleted=include_deleted).where(model.id == row_id)
        if for_update:
            stmt = stmt.with_for_update()
        res = await self.db.execute(stmt)
        return res.scalar_one_or_none()

    async def first(self, stmt: Select):
        res = await self.db.execute(stmt.limit(1))
        return res.scalars().first()

    async def all(self, stmt: Select) -> List[Any]:
        res = await self.db.execute(stmt)
        return list(res.scalars().all())

    async def soft_delete_where(self, model, *criteria, **values) -> int:
        """
        Flag matching active rows as deleted. Returns the number of rows flagged.
        """
        stmt = (
            update(model.__table__)
            .where(*criteria, model.__table__.c.is_deleted.is_(False))
            .values(is_deleted=True, deleted_at=func.now(), **values)
        )
        res = await self.db.execute(stmt)
        return res.rowcount or 0

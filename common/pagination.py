from typing import Any, Dict, Optional, Tuple

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession


async def paginate_select(
    db: AsyncSession,
    base_stmt: Select,
    page: int,
    size: int,
    count_stmt: Optional[Select] = None,
) -> Tuple[list[Any], Dict[str, int]]:
    """
    Simple async pagination helper for SQLAlchemy 2.0 style select statements.
    Returns (items, pagination_dict)
    """
    page = max(1, page or 1)
    size = max(1, min(size or 20, 100))
    if count_stmt is None:
        count_stmt = select(func.count()).select_from(base_stmt.order_by(None).subquery())
    total_res = await db.execute(count_stmt)
    total = int(total_res.scalar_one() or 0)
    items_res = await db.execute(base_stmt.limit(size).offset((page - 1) * size))
    items = list(items_res.scalars().all())
    return items, {"page": page, "size": size, "total": total}

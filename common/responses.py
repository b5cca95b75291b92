from typing import Any, Dict, Iterable, List, Optional, Type

from pydantic import BaseModel

from common.repository import loaded_fields


def success_response(**data: Any) -> Dict[str, Any]:
    """
    Standard success response envelope.
    """
    return {"success": True, **data}


def paginated_response(items: Any, total: int, page: int, size: int, **data: Any) -> Dict[str, Any]:
    """
    Standard paginated response envelope.
    """
    return {
        "success": True,
        "items": items,
        "pagination": {"total": total, "page": page, "size": size},
        **data,
    }


def error_response(message: str, **extra: Any) -> Dict[str, Any]:
    """
    Standard error response envelope.
    """
    return {"success": False, "error": message, **extra}


def to_schema(schema: Type[BaseModel], obj: Any, **extra: Any) -> Optional[Dict[str, Any]]:
    """
    Serialize an ORM row through a response schema. Columns deferred because the
    live table lacks them are left to the schema defaults.
    """
    if obj is None:
        return None
    return schema.model_validate({**loaded_fields(obj), **extra}).model_dump()


def to_schema_list(schema: Type[BaseModel], rows: Iterable[Any]) -> List[Dict[str, Any]]:
    return [to_schema(schema, row) for row in rows]

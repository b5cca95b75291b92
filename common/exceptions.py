from typing import Any, Dict, List, Optional

from fastapi import status


class DocumentError(Exception):
    """
    Base class for errors raised by the document services.
    Carries one human-readable message plus machine-readable fields that are
    merged into the error envelope.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra: Dict[str, Any] = extra


class ValidationError(DocumentError):
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(DocumentError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(DocumentError):
    status_code = status.HTTP_409_CONFLICT


class DuplicateNumberError(ConflictError):
    pass


class LockedDocumentError(ConflictError):
    def __init__(self, message: str, lock_reason: str, **extra: Any):
        super().__init__(message, meta={"locked": True, "lock_reason": lock_reason}, **extra)


class LinkedDocumentError(ConflictError):
    pass


class QuantityExceededError(ConflictError):
    def __init__(self, violations: List[Dict[str, Any]]):
        super().__init__("Shipped quantity would exceed ordered quantity.", violations=violations)
        self.violations = violations


class UnknownError(DocumentError):
    pass


class PartialDerivationError(UnknownError):
    """
    A derivation created its header but failed afterwards. The header is kept
    and its id is reported so the document can be repaired.
    """

    def __init__(self, message: str, document: str, header_id: Any, detail: Optional[str] = None):
        extra: Dict[str, Any] = {f"{document}_id": str(header_id)}
        if detail:
            extra["detail"] = detail
        super().__init__(message, **extra)
        self.header_id = header_id


class SchemaDriftWarning(UserWarning):
    """
    The live schema lacks a column the code writes. The write proceeded without it.
    """

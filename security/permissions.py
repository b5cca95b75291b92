import logging
from typing import Awaitable, Callable, Optional

from fastapi import Depends, status
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError

from common.jwt import verify_token
from common.responses import error_response
from constants.roles import ADMIN

logger = logging.getLogger(__name__)

# Tokens are issued by the identity service; tokenUrl only feeds the interactive docs.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)

PermissionChecker = Callable[[str], Awaitable[Optional[JSONResponse]]]


def _deny(status_code: int, message: str, **extra) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(status_code=status_code, content=error_response(message, **extra), headers=headers)


def get_permission_checker(token: Optional[str] = Depends(oauth2_scheme)) -> PermissionChecker:
    """
    Dependency returning check_permission(key): None when the caller holds the
    permission, otherwise a ready deny response for the router to return as is.
    """

    async def check_permission(key: str) -> Optional[JSONResponse]:
        if not token:
            return _deny(status.HTTP_401_UNAUTHORIZED, "Not authenticated")
        try:
            payload = verify_token(token, expected_token_type="access")
        except JWTError:
            return _deny(status.HTTP_401_UNAUTHORIZED, "Could not validate credentials")

        roles = set(payload.get("roles") or [])
        if ADMIN in roles or key in set(payload.get("permissions") or []):
            return None
        logger.info("Denied %s to %s", key, payload.get("sub"))
        return _deny(status.HTTP_403_FORBIDDEN, f"Missing permission: {key}", permission=key)

    return check_permission

import asyncio
import logging

from fastapi import FastAPI, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException

from apps.invoices.router import router as invoices_router
from apps.orders.router import router as orders_router
from apps.packing_lists.router import router as packing_lists_router
from apps.shipments.router import router as shipments_router
from common.exceptions import DocumentError
from common.responses import error_response
from common.schema_registry import schema_registry
from models.base import Base, engine
from settings.config import get_settings
from utils.logging import setup_logging

logger = logging.getLogger(__name__)


def _envelope(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=jsonable_encoder(error_response(message, **extra)))


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(DocumentError)
    async def document_error_handler(request: Request, exc: DocumentError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s %s", request.method, request.url.path, exc.message, exc.extra)
        return _envelope(exc.status_code, exc.message, **exc.extra)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"Invalid {field}: {first.get('msg')}" if field else "Invalid request."
        return _envelope(status.HTTP_400_BAD_REQUEST, message, details=errors)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return _envelope(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _envelope(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error.")


def create_app() -> FastAPI:
    """
    Application factory to build a FastAPI app with all middlewares and routers.
    """
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title=settings.APP_NAME,
        debug=settings.DEBUG,
        version="1.0.0",
    )

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
        allow_headers=["Authorization", "Content-Type"],
        expose_headers=["Authorization"],
    )

    # Security headers middleware (helmet-like)
    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response: Response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Strict-Transport-Security"] = "max-age=63072000; includeSubDomains; preload"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Cache-Control"] = "no-store"
        return response

    # Requests are bounded; an abandoned handler's transaction is rolled back when its session closes
    @app.middleware("http")
    async def enforce_request_timeout(request: Request, call_next):
        try:
            return await asyncio.wait_for(call_next(request), timeout=settings.REQUEST_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("%s %s timed out after %ss", request.method, request.url.path, settings.REQUEST_TIMEOUT_SECONDS)
            return _envelope(status.HTTP_504_GATEWAY_TIMEOUT, "Request timed out.")

    # Optional SlowAPI rate limiter
    if settings.ENABLE_RATE_LIMITER:
        req = settings.RATE_LIMIT_REQUESTS
        win = settings.RATE_LIMIT_WINDOW_SECONDS
        if win == 1:
            default_limit = f"{req}/second"
        elif win == 60:
            default_limit = f"{req}/minute"
        elif win == 3600:
            default_limit = f"{req}/hour"
        elif win == 86400:
            default_limit = f"{req}/day"
        else:
            default_limit = f"{req} per {win} seconds"

        limiter = Limiter(
            key_func=get_remote_address,
            default_limits=[default_limit],
            storage_uri=settings.RATE_LIMIT_STORAGE_URI or None,
        )
        app.state.limiter = limiter
        app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
        app.add_middleware(SlowAPIMiddleware)

    register_exception_handlers(app)

    # Routers
    app.include_router(orders_router)
    app.include_router(shipments_router)
    app.include_router(invoices_router)
    app.include_router(packing_lists_router)

    @app.on_event("startup")
    async def on_startup():
        # Local/dev convenience only. In prod, use Alembic migrations.
        if settings.AUTO_CREATE_TABLES:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

        async with engine.connect() as conn:
            await schema_registry.load(conn)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()

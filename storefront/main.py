"""
Storefront order API.

``create_app`` wires settings, logging, CORS, request correlation, error
handlers, health probes and the order router; ``app`` is the instance served
by uvicorn (``uvicorn storefront.main:app``).
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storefront.api.v1.orders import router as orders_router
from storefront.core.config import Settings, get_settings
from storefront.core.logging import (
    clear_context,
    configure_logging,
    get_logger,
    get_request_id,
    log_performance,
    set_request_id,
)
from storefront.database.connection import check_database_health
from storefront.services.orders.repository import OrderRepositoryError

REQUEST_ID_HEADER = "X-Request-ID"

logger = get_logger(__name__)


def error_body(error: str, message: str, **extra: Any) -> dict[str, Any]:
    return {"error": error, "message": message, **extra, "request_id": get_request_id()}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    logger.info(
        "Storefront API starting",
        environment=settings.environment,
        version=settings.app_version,
        currency=settings.currency,
        track_inventory_levels=settings.track_inventory_levels,
    )
    yield
    logger.info("Storefront API stopped")


async def correlate_request(request: Request, call_next):
    """
    Bind a request id for the duration of the request and time it.

    A client-supplied ``X-Request-ID`` is reused and always echoed back.
    """
    request_id = set_request_id(request.headers.get(REQUEST_ID_HEADER))
    try:
        with log_performance(
            logger, "http_request", method=request.method, path=request.url.path
        ):
            response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        logger.info(
            "Request handled",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
        )
        return response
    finally:
        clear_context()


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]
    logger.warning("Request validation failed", path=request.url.path, details=details)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_body("Validation Error", "Request validation failed", details=details),
    )


async def handle_repository_error(request: Request, exc: OrderRepositoryError) -> JSONResponse:
    logger.error(
        "Order storage unavailable",
        path=request.url.path,
        error=str(exc),
        context=exc.context,
    )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=error_body("Service Unavailable", "Order storage is unavailable"),
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled exception",
        method=request.method,
        path=request.url.path,
        error_type=type(exc).__name__,
        exc_info=True,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("Internal Server Error", "An unexpected error occurred"),
    )


def register_probes(app: FastAPI, settings: Settings) -> None:
    @app.get("/health", tags=["Health"], summary="Liveness probe")
    async def health_check() -> dict[str, str]:
        return {
            "status": "healthy",
            "service": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
        }

    @app.get("/ready", tags=["Health"], summary="Readiness probe")
    def readiness_check():
        """Ready once the order database answers."""
        if check_database_health(max_retries=1):
            return {
                "status": "ready",
                "service": settings.app_name,
                "version": settings.app_version,
                "database": "healthy",
            }

        logger.warning("Readiness check failed", database="unhealthy")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not_ready", "service": settings.app_name, "database": "unhealthy"},
        )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging()

    application = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Order lifecycle, checkout and cart maintenance for the storefront",
        lifespan=lifespan,
        debug=settings.debug,
    )
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )
    application.middleware("http")(correlate_request)

    application.add_exception_handler(RequestValidationError, handle_validation_error)
    application.add_exception_handler(OrderRepositoryError, handle_repository_error)
    application.add_exception_handler(Exception, handle_unexpected_error)

    register_probes(application, settings)
    application.include_router(orders_router, prefix=settings.api_v1_prefix)
    return application


app = create_app()

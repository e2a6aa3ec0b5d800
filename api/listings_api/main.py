from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from starlette.requests import Request

from listings_api.api.router import api_router
from listings_api.core.config import get_settings
from listings_api.core.telemetry import setup_api_telemetry, shutdown_api_telemetry
from listings_api.services.expiry_sweep import get_expiry_sweep
from listings_api.services.feature_flags import get_feature_flags
from listings_api.services.notifications import get_notification_client
from listings_api.services.publication import get_publication_service
from listings_api.services.repository import get_repository
from listings_api.services.subscriptions import get_subscription_service

settings = get_settings()
logger = logging.getLogger(__name__)

# Cached singletons that hold the repository; dropped with the pool on shutdown.
_SERVICE_CACHES = (
    get_expiry_sweep,
    get_publication_service,
    get_subscription_service,
    get_feature_flags,
    get_notification_client,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("starting %s environment=%s", settings.app_name, settings.environment)
    try:
        yield
    finally:
        shutdown_api_telemetry(app.state.telemetry)
        await get_repository().close()
        get_repository.cache_clear()
        for cached in _SERVICE_CACHES:
            cached.cache_clear()


app = FastAPI(title=settings.app_name, lifespan=lifespan)
app.state.telemetry = setup_api_telemetry(app, settings)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    started_at = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "http request method=%s path=%s status=%s duration_ms=%.2f",
        request.method,
        request.url.path,
        response.status_code,
        (time.perf_counter() - started_at) * 1000.0,
    )
    return response


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Details stay in the log; clients only see a generic message.
    logger.error(
        "unhandled error method=%s path=%s",
        request.method,
        request.url.path,
        exc_info=(type(exc), exc, exc.__traceback__),
    )
    return JSONResponse(status_code=500, content={"detail": "internal error"})


app.include_router(api_router)

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import httpx
import structlog
import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from hostpush.api.notifications import ApiError
from hostpush.api.router import api_router
from hostpush.config import Settings, get_settings
from hostpush.notifications.push import (
    PushDispatcher,
    PushNotifier,
)
from hostpush.notifications.store import (
    PushSubscriptionStore,
)
from hostpush.notifications.vapid import VapidSigner

logger = structlog.get_logger()

load_dotenv()


class _QuietHealthAccess(logging.Filter):
    """Drop access log lines for health probes."""

    def filter(self, record: logging.LogRecord) -> bool:
        args = getattr(record, "args", None)
        if isinstance(args, tuple) and len(args) >= 3:
            path = args[2]
            if isinstance(path, str) and path.startswith("/api/v1/health"):
                return False
        return True


def _install_access_log_filter() -> None:
    uv_logger = logging.getLogger("uvicorn.access")
    uv_logger.addFilter(_QuietHealthAccess())


def _build_notifier(
    settings: Settings,
    store: PushSubscriptionStore,
    client: httpx.AsyncClient,
) -> PushNotifier | None:
    """Wire up push delivery, or None if VAPID keys are unusable."""
    try:
        signer = VapidSigner(settings.vapid_public_key, settings.vapid_private_key)
        config = settings.push_config()
    except ValueError as e:
        logger.warning("push_notifications_disabled", reason=str(e))
        return None
    logger.info("push_notifications_enabled", subject=config.subject)
    return PushNotifier(store=store, dispatcher=PushDispatcher(signer, config, client))


@asynccontextmanager
async def lifespan(
    app: FastAPI,
) -> AsyncGenerator[None]:
    settings = get_settings()
    _install_access_log_filter()
    logger.info("starting_up", version=settings.app_version)

    client = httpx.AsyncClient(timeout=settings.push_timeout_s)
    push_store = PushSubscriptionStore(settings.push_subs_path)
    notifier = _build_notifier(settings, push_store, client)

    app.state.push_store = push_store
    app.state.push_notifier = notifier
    app.state.vapid_public_key = notifier.public_key if notifier else ""
    app.state.service_secret = settings.service_secret
    if not settings.service_secret:
        logger.warning("service_secret_unset")

    yield

    await client.aclose()
    logger.info("shutting_down")


async def _api_error(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error", path=request.url.path, error=str(exc))
    return JSONResponse({"error": "Internal server error"}, status_code=500)


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    loc = ".".join(str(p) for p in errors[0]["loc"][1:]) if errors else ""
    message = f"Invalid request: {loc}" if loc else "Invalid request"
    return JSONResponse({"error": message}, status_code=400)


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    settings = get_settings()
    application = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )
    application.add_exception_handler(ApiError, _api_error)  # type: ignore[arg-type]
    application.add_exception_handler(
        RequestValidationError,
        _validation_error,  # type: ignore[arg-type]
    )
    application.add_exception_handler(Exception, _unhandled_error)
    application.include_router(api_router, prefix="/api/v1")
    return application


app = create_app()


def run() -> None:
    """Console entry point."""
    uvicorn.run("hostpush.main:app", host="127.0.0.1", port=8000)

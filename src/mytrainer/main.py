import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

import mytrainer.models  # noqa: F401  (registers all models with Base.metadata)
from mytrainer.api.routes.availability import router as availability_router
from mytrainer.api.routes.notifications import router as notifications_router
from mytrainer.api.routes.packs import router as packs_router
from mytrainer.api.routes.preferences import router as preferences_router
from mytrainer.api.routes.recurring import router as recurring_router
from mytrainer.api.routes.sessions import router as sessions_router
from mytrainer.booking.errors import BookingError
from mytrainer.config import get_settings
from mytrainer.database import engine, init_db
from mytrainer.notifications.dispatcher import NotificationDispatcher
from mytrainer.schemas.system import StatusResponse

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # Create tables on startup (dev convenience)
    await init_db()
    yield
    await app.state.dispatcher.drain()
    await engine.dispose()


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.code)
    else:
        logger.info(
            "%s %s rejected (%s): %s", request.method, request.url.path, exc.code, exc.message
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.message, "error": exc.code},
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Schema rejections use the same envelope as core validation errors."""
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first["loc"] if part not in ("body", "query", "path"))
    message = f"{field}: {first['msg']}" if field else first["msg"]
    logger.info("%s %s rejected (validation_error): %s", request.method, request.url.path, message)
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": message, "error": "validation_error"},
    )


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = FastAPI(
        title="MyTrainer",
        version="0.1.0",
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.state.dispatcher = NotificationDispatcher()
    app.add_exception_handler(BookingError, booking_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.include_router(sessions_router)
    app.include_router(recurring_router)
    app.include_router(availability_router)
    app.include_router(preferences_router)
    app.include_router(packs_router)
    app.include_router(notifications_router)

    @app.get("/api/system/status", response_model=StatusResponse)
    async def system_status() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()

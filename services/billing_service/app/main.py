from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from shared import RequestIDMiddleware, error_response, http_exception_handler, unhandled_exception_handler
from starlette.exceptions import HTTPException

from .alembic_helper import run_alembic_migrations
from .db.session import build_engine, build_session_factory
from .errors import BillingError
from .routes import register_routes
from .settings import billing_settings
from .startup import setup_instrumentation, setup_logging, shutdown_instrumentation


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = billing_settings()
    setup_logging(settings)
    for key, value in settings.safe_dict().items():
        logger.info("    {}: {}", key, value)

    # Run DB migrations on startup (best-effort)
    try:
        await run_alembic_migrations(settings.sync_db_url)
    except Exception as exc:
        # Keep the service up even if migrations fail locally
        logger.warning("Continuing without migrations: {}", exc)

    engine = build_engine(settings.async_db_url)
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    setup_instrumentation(app, settings)
    logger.info("{} started", settings.service_name)
    try:
        yield
    finally:
        shutdown_instrumentation(app)
        await engine.dispose()
        logger.info("{} stopped", settings.service_name)


async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    logger.bind(code=exc.code, path=request.url.path).info("billing.request.rejected: {}", exc.message)
    return error_response(exc.status_code, **exc.to_dict(), request_id=request_id)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = f"{location}: {first.get('msg', 'invalid input')}" if location else "Invalid input"
    return error_response(422, error=message, code="INVALID_INPUT", detail=exc.errors(), request_id=request_id)


def create_app() -> FastAPI:
    app = FastAPI(title="Billing Service", version="0.1.0", lifespan=lifespan)
    app.add_middleware(RequestIDMiddleware)
    app.add_exception_handler(BillingError, billing_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
    register_routes(app)
    return app

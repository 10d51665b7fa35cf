"""Billing webhooks API: reconciles card and crypto processor events."""
from __future__ import annotations

import logging

from src.logging_config import setup_logging
setup_logging()
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi import Request as FastAPIRequest
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException as StarletteHTTPException

from config.settings import settings
from src.api.webhooks import router as webhooks_router
from src.db.engine import engine, get_session
from src.db.tables import Base
from src.middleware.metrics import MetricsMiddleware
from src.middleware.request_id import RequestIDMiddleware
from src.models.billing import HealthStatus
from src.services.scheduler import start_scheduler, stop_scheduler

VERSION = "0.3.0"

logger = logging.getLogger(__name__)

# Never forwarded to Sentry: they authenticate the delivery
_SIGNATURE_HEADERS = ("stripe-signature", "x-signature", "x-coinpay-signature")


def _scrub_signatures(event, hint):
    headers = (event.get("request") or {}).get("headers") or {}
    for name in list(headers):
        if name.lower() in _SIGNATURE_HEADERS:
            headers[name] = "[Filtered]"
    return event


def _init_sentry() -> None:
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.logging import LoggingIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.SENTRY_ENVIRONMENT,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
            # Transition conflicts log at ERROR and should reach an operator
            LoggingIntegration(level=logging.WARNING, event_level=logging.ERROR),
        ],
        send_default_pii=False,
        # Webhook bodies carry customer and payment data
        max_request_body_size="never",
        before_send=_scrub_signatures,
    )
    logger.info("Sentry enabled (%s)", settings.SENTRY_ENVIRONMENT)


if settings.SENTRY_DSN:
    _init_sentry()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Validate config, create tables, start the ledger purge job."""
    from src.startup_checks import validate_settings
    validate_settings()

    import src.db.notification_tables  # noqa: F401
    import src.db.subscription_tables  # noqa: F401
    import src.db.webhook_tables  # noqa: F401
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Billing tables ready")

    start_scheduler(interval_hours=settings.LEDGER_PURGE_INTERVAL_HOURS)
    try:
        yield
    finally:
        stop_scheduler()
        await engine.dispose()
        logger.info("Billing webhooks API stopped")


app = FastAPI(
    title="Billing Webhooks API",
    version=VERSION,
    description="Verifies, de-duplicates and applies payment processor webhooks",
    lifespan=lifespan,
)

app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestIDMiddleware)

app.include_router(webhooks_router)


async def _database_reachable(session: AsyncSession) -> bool:
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Database unreachable")
        return False
    return True


@app.get("/health", response_model=HealthStatus)
async def health(session: AsyncSession = Depends(get_session)):
    """Always 200; the body says whether the database answered."""
    ok = await _database_reachable(session)
    return HealthStatus(
        status="ok" if ok else "degraded",
        db="connected" if ok else "error",
        version=VERSION,
    )


@app.get("/ready")
async def readiness(session: AsyncSession = Depends(get_session)):
    """503 while the database is down; processors queue and retry meanwhile."""
    if not await _database_reachable(session):
        return JSONResponse(status_code=503, content={"ready": False, "reason": "database unavailable"})
    return {"ready": True}


# --- Error envelope ---

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: FastAPIRequest, exc: StarletteHTTPException):
    """Route errors and router-level 404/405 share one body shape."""
    message = exc.detail if isinstance(exc.detail, str) else "error"
    return JSONResponse(
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
        content={"error": message, "message": exc.detail},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: FastAPIRequest, exc: Exception):
    """A 500 makes the processor retry, which the ledger makes safe."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={
        "error": "internal_error",
        "message": "Webhook could not be processed; it will be retried.",
    })


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("src.api.main:app", host=settings.API_HOST, port=settings.API_PORT)

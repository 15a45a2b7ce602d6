"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request

from email_verification.api.router import router as verification_router
from email_verification.config import settings
from email_verification.database.engine import Database
from email_verification.services.email_service import EmailService
from email_verification.services.verification_service import VerificationService
from email_verification.store.sweeper import ExpirySweeper
from email_verification.store.verification_store import VerificationStore

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)

logger = logging.getLogger(__name__)


def build_store() -> VerificationStore:
    """Create a store configured from settings."""
    return VerificationStore(
        code_ttl=settings.code_ttl,
        max_attempts=settings.max_verification_attempts,
        rate_limit_window=settings.rate_limit_window,
        rate_limit_max_requests=settings.rate_limit_max_requests,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle hook."""
    logger.info("Starting %s …", settings.app_name)
    database = Database.from_settings(settings)
    await database.create_tables()
    app.state.database = database

    store = build_store()
    app.state.verification_service = VerificationService(store, EmailService(settings))

    try:
        async with ExpirySweeper(store, timedelta(seconds=settings.sweep_interval_seconds)):
            yield
            logger.info("Shutting down %s …", settings.app_name)
    finally:
        await database.dispose()


app = FastAPI(
    title=settings.app_name,
    description="One-time email verification codes with attempt and rate limits",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(verification_router)


@app.get("/health")
async def health_check(request: Request):
    """Simple liveness probe."""
    service = getattr(request.app.state, "verification_service", None)
    pending = service.store.pending_count if service else 0
    return {"status": "healthy", "app": settings.app_name, "pending_codes": pending}


def run() -> None:
    """Serve the app with uvicorn (console entry point)."""
    import uvicorn

    uvicorn.run(
        "email_verification.main:app",
        host="0.0.0.0",
        port=8000,
        log_level="debug" if settings.debug else "info",
    )


if __name__ == "__main__":
    run()

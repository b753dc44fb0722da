"""FastAPI application wiring for the authentication service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool

from .api.routes import install_error_handlers, router as v1_router
from .config import Settings, get_settings
from .domain.service import AuthEngine
from .notifications.mailer import SmtpVerificationNotifier
from .repository import PostgresStorage
from .security.passwords import BcryptCredentialHasher
from .security.tokens import JwtTokenSigner

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_engine(storage: PostgresStorage, notifier: SmtpVerificationNotifier, config: Settings) -> AuthEngine:
    """Assemble the engine from its storage, crypto, and notification collaborators."""
    return AuthEngine(
        storage,
        BcryptCredentialHasher(rounds=config.bcrypt_rounds),
        JwtTokenSigner(
            secret=config.jwt_secret,
            issuer=config.jwt_issuer,
            ttl_seconds=config.jwt_ttl_seconds,
        ),
        notifier,
        verification_ttl=timedelta(hours=config.verification_ttl_hours),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (Postgres pool, engine) for the app lifecycle."""
    pool = ConnectionPool(settings.database_url, open=False)
    pool.open()
    storage = PostgresStorage(pool)
    storage.ensure_schema()
    notifier = SmtpVerificationNotifier(settings.mail, ttl_hours=settings.verification_ttl_hours)
    app.state.pool = pool
    app.state.notifier = notifier
    app.state.debug_endpoints = settings.debug_endpoints
    app.state.auth_engine = build_engine(storage, notifier, settings)
    logger.info("auth engine ready, mail delivery %s", "enabled" if settings.mail_enabled else "disabled")
    try:
        yield
    finally:
        pool.close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)
install_error_handlers(app)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


@app.get("/metrics")
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(v1_router)

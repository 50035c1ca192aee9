"""FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from .routes import admin, draws, user, wallet
from ..config import Settings
from ..db.engine import get_sessionmaker, make_engine
from ..errors import DrawLedgerError
from ..payments.api import PaymentClient

logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = None
    if app.state.session_factory is None:
        engine = make_engine(app.state.settings.database_url)
        app.state.session_factory = get_sessionmaker(engine)
        logger.info("Database engine started")
    yield
    if engine is not None:
        engine.dispose()
        app.state.session_factory = None


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    payment_client: Optional[PaymentClient] = None,
) -> FastAPI:
    """Build the API.

    ``session_factory`` and ``payment_client`` are normally created lazily
    (the engine at startup, the client on first use); tests inject their own.
    """

    settings = settings or Settings.from_env()
    _configure_logging(settings.log_level)

    app = FastAPI(title="drawledger", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.payment_client = payment_client

    @app.exception_handler(DrawLedgerError)
    async def handle_domain_error(request: Request, exc: DrawLedgerError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "code": "internal_error"},
        )

    app.include_router(wallet.router, prefix="/api/wallet", tags=["Wallet"])
    app.include_router(draws.router, prefix="/api/draws", tags=["Draws"])
    app.include_router(user.router, prefix="/api/user", tags=["User"])
    app.include_router(admin.router, prefix="/api/admin", tags=["Admin"])

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app

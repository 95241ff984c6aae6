"""
ledger_onboarding.api.app

FastAPI app factory for the onboarding service.

Responsibilities:
- Build the FastAPI application and register routers/middleware.
- Create the process-wide collaborators once (DB engine, identity store, authority
  and ledger clients, onboarding service) and dispose them on shutdown.
"""

from __future__ import annotations

import httpx
from fastapi import FastAPI

from ledger_onboarding import __version__
from ledger_onboarding.api.routers.health import router as health_router
from ledger_onboarding.api.routers.participants import router as participants_router
from ledger_onboarding.clients.authority import AuthorityClient
from ledger_onboarding.clients.ledger import LedgerClient, LedgerGateway
from ledger_onboarding.db.init_db import init_db
from ledger_onboarding.db.session import create_engine, create_sessionmaker
from ledger_onboarding.identity.store import IdentityStore
from ledger_onboarding.observability.logging import configure_logging, get_logger
from ledger_onboarding.observability.middleware import RequestContextMiddleware
from ledger_onboarding.services.onboarding_service import OnboardingService
from ledger_onboarding.settings import Settings

log = get_logger(__name__)


def create_app(
    *,
    settings: Settings,
    authority_transport: httpx.AsyncBaseTransport | None = None,
    ledger_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """
    `authority_transport` / `ledger_transport` replace the network layer of the two
    clients (tests pass `httpx.MockTransport`).
    """

    configure_logging(service_name=settings.service_name, level=settings.log_level)

    app = FastAPI(
        title="Ledger Participant Onboarding",
        version=__version__,
        docs_url="/docs",
        openapi_url="/openapi.json",
    )

    app.add_middleware(RequestContextMiddleware)
    app.include_router(health_router, tags=["health"])
    app.include_router(participants_router)

    @app.on_event("startup")
    async def _startup() -> None:
        log.info("startup", env=settings.env)
        engine = create_engine(settings)
        app.state.engine = engine
        app.state.sessionmaker = create_sessionmaker(engine)
        if settings.env in ("dev", "test"):
            await init_db(engine)

        store = IdentityStore(app.state.sessionmaker)
        app.state.identity_store = store
        authority_http = httpx.AsyncClient(
            base_url=settings.authority_base_url,
            transport=authority_transport,
            verify=settings.authority_verify_tls,
            timeout=settings.request_timeout_s,
        )
        app.state.authority_http = authority_http
        app.state.onboarding_service = OnboardingService(
            settings=settings,
            session_factory=app.state.sessionmaker,
            store=store,
            authority=AuthorityClient(settings=settings, http=authority_http),
            ledger=LedgerClient(
                settings=settings,
                store=store,
                gateway=LedgerGateway(settings=settings, transport=ledger_transport),
            ),
        )

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        authority_http = getattr(app.state, "authority_http", None)
        if authority_http is not None:
            await authority_http.aclose()
        engine = getattr(app.state, "engine", None)
        if engine is not None:
            await engine.dispose()
        log.info("shutdown")

    return app


# --- Module Notes -----------------------------------------------------------
# Ledger connections are not pooled here: `LedgerGateway` opens one per onboarding call
# and closes it when the call ends.

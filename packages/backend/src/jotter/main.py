"""FastAPI application factory.

Learn: App factory pattern — create_app() takes the Settings built once at
startup and wires everything that depends on them onto app.state:
database engine + session factory, the optional identity provider client,
and the credential verifier. Request handlers reach them through
dependencies and never read the environment.

Lifespan only handles logging and releasing resources at shutdown.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from jotter import __version__
from jotter.api import api_router
from jotter.auth.identity import IdentityClient
from jotter.auth.verifier import build_verifier
from jotter.config import Settings, get_settings
from jotter.db.engine import create_engine, create_session_factory
from jotter.errors import register_error_handlers
from jotter.middleware.request_id import RequestIdMiddleware
from jotter.middleware.sandbox import SandboxMiddleware

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    settings: Settings = app.state.settings
    logger.info(
        "jotter.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
        auth_mode=app.state.verifier.mode,
        sandbox_available=settings.sandbox_available,
    )
    if settings.is_production and settings.enable_sandbox:
        logger.warning("jotter.sandbox_enabled_in_production")

    yield

    logger.info("jotter.shutdown")
    if app.state.identity is not None:
        await app.state.identity.aclose()
    await app.state.engine.dispose()


def create_app(
    settings: Optional[Settings] = None,
    identity: Optional[IdentityClient] = None,
) -> FastAPI:
    """Build and return the FastAPI application."""
    settings = settings or get_settings()
    if identity is None and settings.identity_configured:
        identity = IdentityClient.from_settings(settings)

    app = FastAPI(
        title="Jotter",
        description="Personal notes backend — sessions, passkeys and sandbox mode",
        version=__version__,
        lifespan=lifespan,
    )

    engine = create_engine(settings)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = create_session_factory(engine)
    app.state.identity = identity
    app.state.verifier = build_verifier(settings, identity)

    register_error_handlers(app)

    # ── Middleware stack ──────────────────────────────────────
    # Starlette middleware executes in reverse order of registration.
    # Request flow: RequestId → Sandbox → CORS → handler
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(SandboxMiddleware, settings=settings)
    app.add_middleware(RequestIdMiddleware)

    app.include_router(api_router)

    return app

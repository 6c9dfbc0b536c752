"""Auth Gate — FastAPI dependencies that admit or reject a request.

Learn: Per request the gate walks a small state machine:

    Start → SandboxCheck → Bypassed ──────────────→ Admitted
                         ↘ Verify → (verifier ok) → Admitted
                                  ↘ (no/bad header, bad token) → Rejected (401)

- An upstream SandboxMiddleware may already have attached the sandbox
  principal; that is honoured without re-verifying.
- Otherwise sandbox intent is checked here too, so the gate works with or
  without the middleware in front of it.
- One verification attempt per request; failure is terminal.

The result is a typed RequestContext stored on request.state.auth.
"""

from typing import Optional

import structlog
from fastapi import Depends, Request

from jotter.auth.principal import SANDBOX_PRINCIPAL, Principal, RequestContext
from jotter.auth.sandbox import sandbox_active
from jotter.auth.verifier import CredentialVerifier, VerifyError
from jotter.config import Settings
from jotter.errors import Unauthorized

logger = structlog.get_logger()

BEARER_PREFIX = "Bearer "


def get_app_settings(request: Request) -> Settings:
    """The Settings instance the app was built with."""
    return request.app.state.settings


def get_verifier(request: Request) -> CredentialVerifier:
    return request.app.state.verifier


def get_attached_context(request: Request) -> Optional[RequestContext]:
    """Context attached by upstream middleware, if any."""
    return getattr(request.state, "auth", None)


def _attach(request: Request, ctx: RequestContext) -> RequestContext:
    request.state.auth = ctx
    if ctx.principal is not None:
        structlog.contextvars.bind_contextvars(user_id=ctx.principal.id)
    return ctx


async def get_request_context(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    verifier: CredentialVerifier = Depends(get_verifier),
) -> RequestContext:
    """Resolve the caller or raise Unauthorized (401)."""
    attached = get_attached_context(request)
    if attached is not None and attached.is_sandbox and attached.principal:
        return attached

    if sandbox_active(request, settings):
        logger.info("sandbox.activated", path=request.url.path, via="auth_gate")
        return _attach(
            request, RequestContext(principal=SANDBOX_PRINCIPAL, is_sandbox=True)
        )

    authorization = request.headers.get("Authorization")
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        logger.info("auth.rejected", reason="missing_header", path=request.url.path)
        raise Unauthorized("Missing authorization header")

    token = authorization[len(BEARER_PREFIX):]
    try:
        verified = await verifier.verify(token)
    except VerifyError:
        logger.info("auth.rejected", reason="invalid_token", path=request.url.path)
        raise Unauthorized("Invalid or expired token")

    return _attach(
        request,
        RequestContext(
            principal=verified.principal,
            delegated_client=verified.delegated_client,
        ),
    )


async def get_current_principal(
    ctx: RequestContext = Depends(get_request_context),
) -> Principal:
    """The admitted principal (hard auth)."""
    return ctx.principal

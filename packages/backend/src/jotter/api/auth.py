"""Auth API — sessions and passkey login.

Learn: Routes that run before the caller has a session (open), plus /me:
- POST /auth/session        → principal-shaped body → session token
- POST /auth/passkey        → login options + challengeId
- POST /auth/passkey/verify → assertion → {verified, principal}
- POST /auth/demo-user      → find-or-create user by email → session
                              (only while sandbox mode is available)
- GET  /auth/me             → the admitted principal (gated)

A passkey login is two calls from the client: /auth/passkey/verify to
prove possession, then /auth/session with the returned principal.
"""

from typing import Any, Optional

import structlog
from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from jotter.api.passkeys import get_passkey_ceremony
from jotter.auth.dependencies import get_app_settings, get_request_context
from jotter.auth.jwt import issue_session_token
from jotter.auth.passkeys import PasskeyCeremony
from jotter.auth.principal import RequestContext
from jotter.config import Settings
from jotter.db.engine import get_db
from jotter.db.store import PasskeyStore
from jotter.errors import BadRequest, NotFound

logger = structlog.get_logger()

router = APIRouter(prefix="/auth")

DEMO_DISPLAY_NAME = "Demo User"


# ─── Schemas ─────────────────────────────────────────────


class SessionResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class DemoUserRequest(BaseModel):
    email: Optional[str] = None


class UserRead(BaseModel):
    id: str
    email: str
    display_name: Optional[str] = None

    model_config = {"from_attributes": True}


class DemoUserResponse(SessionResponse):
    user: UserRead


class PrincipalRead(BaseModel):
    id: str
    email: Optional[str] = None
    phone: Optional[str] = None
    role: str
    aud: str
    app_metadata: dict[str, Any] = Field(default_factory=dict)
    user_metadata: dict[str, Any] = Field(default_factory=dict)


class MeResponse(PrincipalRead):
    is_sandbox: bool = False


# ─── Session ─────────────────────────────────────────────


@router.post("/session", response_model=SessionResponse)
async def create_session(
    user: Any = Body(None),
    settings: Settings = Depends(get_app_settings),
):
    """Mint a session token for a principal (e.g. after passkey login)."""
    # Anything but a JSON object counts as "no user data"
    token = issue_session_token(settings, user if isinstance(user, dict) else {})
    return SessionResponse(access_token=token, expires_in=settings.session_ttl_seconds)


# ─── Passkey login ───────────────────────────────────────


@router.post("/passkey")
async def authentication_challenge(
    ceremony: PasskeyCeremony = Depends(get_passkey_ceremony),
):
    """Start passkey authentication."""
    return await ceremony.start_authentication()


@router.post("/passkey/verify")
async def authentication_verify(
    response: dict[str, Any] = Body(...),
    ceremony: PasskeyCeremony = Depends(get_passkey_ceremony),
):
    """Verify a passkey assertion and return the owning principal."""
    login = await ceremony.finish_authentication(response)
    return {"verified": login.verified, "principal": login.principal.model_dump()}


# ─── Demo user ───────────────────────────────────────────


@router.post("/demo-user", response_model=DemoUserResponse, status_code=201)
async def create_demo_user(
    body: DemoUserRequest,
    settings: Settings = Depends(get_app_settings),
    db: AsyncSession = Depends(get_db),
):
    """Find or create a user by email and sign them in, no credentials asked.

    Development escape hatch: answers 404 whenever sandbox mode is not
    available (production without the override).
    """
    if not settings.sandbox_available:
        raise NotFound("Not found")
    if not body.email:
        raise BadRequest("Email is required")

    store = PasskeyStore(db)
    user = await store.find_user_by_email(body.email)
    if user is None:
        user = await store.insert_user(body.email, DEMO_DISPLAY_NAME)
        logger.info("auth.demo_user_created", user_id=user.id)

    token = issue_session_token(
        settings,
        {
            "id": user.id,
            "email": user.email,
            "user_metadata": {"display_name": user.display_name},
        },
    )
    return DemoUserResponse(
        user=UserRead.model_validate(user),
        access_token=token,
        expires_in=settings.session_ttl_seconds,
    )


# ─── Current user ────────────────────────────────────────


@router.get("/me", response_model=MeResponse)
async def get_me(ctx: RequestContext = Depends(get_request_context)):
    """The authenticated principal for this request."""
    return MeResponse(**ctx.principal.model_dump(), is_sandbox=ctx.is_sandbox)

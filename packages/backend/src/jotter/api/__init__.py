"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Auth is applied at the include_router level using FastAPI's
dependencies parameter. Health, sandbox status and the auth router are
open; /auth/me declares the gate itself. Passkey registration requires a
session (or sandbox mode).
"""

from fastapi import APIRouter, Depends

from jotter.api.auth import router as auth_router
from jotter.api.health import router as health_router
from jotter.api.passkeys import router as passkeys_router
from jotter.api.sandbox import router as sandbox_router
from jotter.auth.dependencies import get_request_context

_auth = [Depends(get_request_context)]

api_router = APIRouter(prefix="/api/v1")

# Open routes — no auth required
api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router, tags=["auth"])
api_router.include_router(sandbox_router, tags=["sandbox"])

# Protected routes — require a valid session token or sandbox mode
api_router.include_router(passkeys_router, tags=["passkeys"], dependencies=_auth)

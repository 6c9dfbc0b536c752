"""Sandbox status endpoint.

Lets the demo frontend ask whether sandbox mode is available on this
deployment and whether the current request is being served in it.
"""

from typing import Optional

from fastapi import APIRouter, Depends

from jotter.auth.dependencies import get_app_settings, get_attached_context
from jotter.auth.principal import RequestContext
from jotter.config import Settings

router = APIRouter(prefix="/sandbox")


@router.get("/status")
async def sandbox_status(
    settings: Settings = Depends(get_app_settings),
    ctx: Optional[RequestContext] = Depends(get_attached_context),
):
    active = bool(ctx and ctx.is_sandbox)
    return {
        "available": settings.sandbox_available,
        "active": active,
        "principal": ctx.principal.model_dump() if active else None,
    }

"""Passkey registration API (authenticated).

Learn: Routes for adding a passkey to the signed-in account:
- POST /passkeys/challenge → registration options (challenge stored per user)
- POST /passkeys/verify    → attestation response → stored credential (201)
- GET  /passkeys           → the caller's passkeys (no public keys)

The login half of the ceremony lives in api/auth.py because it runs
before the caller has a session.
"""

from typing import Any

from fastapi import APIRouter, Body, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from jotter.auth.dependencies import get_app_settings, get_current_principal
from jotter.auth.passkeys import PasskeyCeremony, credential_view, resolve_relying_party
from jotter.auth.principal import Principal
from jotter.config import Settings
from jotter.db.engine import get_db
from jotter.db.store import PasskeyStore

router = APIRouter(prefix="/passkeys")


def get_passkey_ceremony(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    db: AsyncSession = Depends(get_db),
) -> PasskeyCeremony:
    return PasskeyCeremony(PasskeyStore(db), resolve_relying_party(settings, request))


@router.post("/challenge")
async def registration_challenge(
    principal: Principal = Depends(get_current_principal),
    ceremony: PasskeyCeremony = Depends(get_passkey_ceremony),
):
    """Start passkey registration for the current user."""
    return await ceremony.start_registration(principal)


@router.post("/verify", status_code=201)
async def registration_verify(
    response: dict[str, Any] = Body(...),
    principal: Principal = Depends(get_current_principal),
    ceremony: PasskeyCeremony = Depends(get_passkey_ceremony),
):
    """Verify the authenticator's attestation and save the passkey."""
    credential = await ceremony.finish_registration(principal, response)
    return credential_view(credential)


@router.get("")
async def list_passkeys(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """List the current user's passkeys."""
    credentials = await PasskeyStore(db).list_credentials(principal.id)
    return [
        {**credential_view(c), "last_used_at": c.last_used_at} for c in credentials
    ]

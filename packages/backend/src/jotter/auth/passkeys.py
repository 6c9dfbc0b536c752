"""Passkey Ceremony Manager — WebAuthn registration and login.

Learn: Both ceremonies are two-phase (challenge → verify):

Registration (caller already authenticated):
    1. start_registration  → options for navigator.credentials.create();
       the challenge is upserted per user (one live challenge each)
    2. finish_registration → verify the attestation, store the credential

Authentication (no session yet):
    1. start_authentication  → options for navigator.credentials.get()
       plus challengeId; the challenge row has no owner
    2. finish_authentication → verify the assertion against the stored
       public key and counter, bump the counter, return the owner

Challenges are one-time: they are deleted as soon as they are loaded,
before verification runs, so a failed attempt cannot be retried with the
same challenge. A missing challenge is not short-circuited — verification
runs against an empty expected challenge and fails as a bad request.

The cryptography is delegated to py_webauthn; its exceptions stop here
and become BadRequest.
"""

import base64
import json
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional

import structlog
from starlette.requests import Request
from webauthn import (
    base64url_to_bytes,
    generate_authentication_options,
    generate_registration_options,
    options_to_json,
    verify_authentication_response,
    verify_registration_response,
)
from webauthn.helpers import bytes_to_base64url
from webauthn.helpers.structs import (
    AttestationConveyancePreference,
    AuthenticatorAttachment,
    AuthenticatorSelectionCriteria,
    AuthenticatorTransport,
    CredentialDeviceType,
    PublicKeyCredentialDescriptor,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from jotter.auth.principal import Principal
from jotter.config import Settings
from jotter.db.models import Challenge, Credential, User
from jotter.db.store import PasskeyStore
from jotter.errors import BadRequest, NotFound

logger = structlog.get_logger()

_KNOWN_TRANSPORTS = {t.value for t in AuthenticatorTransport}


@dataclass(frozen=True)
class RelyingParty:
    id: str
    name: str
    origin: str


def resolve_relying_party(settings: Settings, request: Request) -> RelyingParty:
    """Relying party for this request.

    Configured id + origin are used as-is. Otherwise whichever is missing
    is derived from the Host and X-Forwarded-Proto headers.
    """
    rp_id, origin = settings.webauthn_rp_id, settings.webauthn_rp_origin
    if rp_id and origin:
        return RelyingParty(id=rp_id, name=settings.webauthn_rp_name, origin=origin)

    host = request.headers.get("host") or "localhost:3000"
    protocol = request.headers.get("x-forwarded-proto") or "http"
    rp_id = rp_id or host.split(":")[0]
    origin = origin or f"{protocol}://{host}"
    logger.warning(
        "passkey.dynamic_relying_party",
        detected_rp_id=rp_id,
        detected_origin=origin,
        hint="set JOTTER_WEBAUTHN_RP_ID and JOTTER_WEBAUTHN_RP_ORIGIN in production",
    )
    return RelyingParty(id=rp_id, name=settings.webauthn_rp_name, origin=origin)


def _transports(values: Optional[Iterable[str]]) -> list[str]:
    """Keep only transport hints defined by WebAuthn Level 3."""
    return [t for t in (values or []) if t in _KNOWN_TRANSPORTS]


def _principal_for_owner(user_id: str, user: Optional[User]) -> Principal:
    if user is None:
        return Principal(id=user_id)
    return Principal(
        id=user.id,
        email=user.email,
        user_metadata={"display_name": user.display_name},
    )


def credential_view(credential: Credential) -> dict[str, Any]:
    """Client-facing view of a credential — never includes the public key."""
    return {
        "credential_id": credential.credential_id,
        "friendly_name": credential.friendly_name,
        "credential_type": credential.credential_type,
        "device_type": credential.device_type,
        "backup_state": credential.backup_state,
        "created_at": credential.created_at,
    }


@dataclass(frozen=True)
class PasskeyLogin:
    verified: bool
    principal: Principal


class PasskeyCeremony:
    """Runs both ceremonies for one relying party."""

    def __init__(self, store: PasskeyStore, rp: RelyingParty):
        self.store = store
        self.rp = rp

    # ─── Registration ────────────────────────────────────

    async def start_registration(self, principal: Principal) -> dict[str, Any]:
        existing = await self.store.list_credentials(principal.id)

        options = generate_registration_options(
            rp_id=self.rp.id,
            rp_name=self.rp.name,
            user_id=principal.id.encode("utf-8"),
            user_name=principal.email or principal.id,
            user_display_name=principal.display_name,
            attestation=AttestationConveyancePreference.NONE,
            authenticator_selection=AuthenticatorSelectionCriteria(
                resident_key=ResidentKeyRequirement.PREFERRED,
                user_verification=UserVerificationRequirement.PREFERRED,
                authenticator_attachment=AuthenticatorAttachment.PLATFORM,
            ),
            exclude_credentials=[
                PublicKeyCredentialDescriptor(
                    id=base64url_to_bytes(cred.credential_id),
                    transports=[
                        AuthenticatorTransport(t) for t in _transports(cred.transports)
                    ],
                )
                for cred in existing
            ],
        )

        await self.store.upsert_registration_challenge(
            principal.id, bytes_to_base64url(options.challenge)
        )
        logger.info(
            "passkey.registration_started",
            user_id=principal.id,
            excluded=len(existing),
        )
        return json.loads(options_to_json(options))

    async def finish_registration(
        self, principal: Principal, response: dict[str, Any]
    ) -> Credential:
        challenge = await self.store.find_challenge_for_user(principal.id)
        expected_challenge = _expected(challenge)
        await self._consume(challenge)

        try:
            verification = verify_registration_response(
                credential=response,
                expected_challenge=expected_challenge,
                expected_origin=self.rp.origin,
                expected_rp_id=self.rp.id,
            )
        except Exception as e:
            logger.warning(
                "passkey.registration_failed",
                user_id=principal.id,
                rp_id=self.rp.id,
                origin=self.rp.origin,
                had_challenge=challenge is not None,
                error=str(e),
            )
            raise BadRequest(f"Verification failed: {e}")

        credential_id = bytes_to_base64url(verification.credential_id)
        if await self.store.find_credential(credential_id):
            raise BadRequest("Credential already registered")

        client_response = response.get("response") or {}
        credential = await self.store.insert_credential(
            user_id=principal.id,
            friendly_name=f"Passkey created {datetime.now():%Y-%m-%d %H:%M}",
            credential_type=verification.credential_type.value,
            credential_id=credential_id,
            public_key=base64.b64encode(verification.credential_public_key).decode("ascii"),
            aaguid=verification.aaguid,
            sign_count=verification.sign_count,
            transports=_transports(client_response.get("transports")),
            user_verification_status=(
                "verified" if verification.user_verified else "unverified"
            ),
            device_type=(
                "single_device"
                if verification.credential_device_type == CredentialDeviceType.SINGLE_DEVICE
                else "multi_device"
            ),
            backup_state=(
                "backed_up" if verification.credential_backed_up else "not_backed_up"
            ),
        )
        logger.info(
            "passkey.registered",
            user_id=principal.id,
            device_type=credential.device_type,
        )
        return credential

    # ─── Authentication ──────────────────────────────────

    async def start_authentication(self) -> dict[str, Any]:
        # Empty allow-list: any registered (discoverable) passkey may answer
        options = generate_authentication_options(
            rp_id=self.rp.id,
            user_verification=UserVerificationRequirement.PREFERRED,
            allow_credentials=[],
        )
        challenge = await self.store.insert_challenge(
            bytes_to_base64url(options.challenge)
        )
        payload = json.loads(options_to_json(options))
        payload["challengeId"] = str(challenge.id)
        return payload

    async def finish_authentication(self, response: dict[str, Any]) -> PasskeyLogin:
        challenge = await self._load_challenge(response.get("challengeId"))
        expected_challenge = _expected(challenge)
        await self._consume(challenge)

        credential = await self.store.find_credential(str(response.get("id") or ""))
        if credential is None:
            logger.info("passkey.unknown_credential")
            raise NotFound("Credential not found")

        assertion = {k: v for k, v in response.items() if k != "challengeId"}
        try:
            verification = verify_authentication_response(
                credential=assertion,
                expected_challenge=expected_challenge,
                expected_origin=self.rp.origin,
                expected_rp_id=self.rp.id,
                credential_public_key=base64.b64decode(credential.public_key),
                credential_current_sign_count=credential.sign_count,
                require_user_verification=False,
            )
        except Exception as e:
            logger.warning(
                "passkey.authentication_failed",
                rp_id=self.rp.id,
                origin=self.rp.origin,
                error=str(e),
            )
            raise BadRequest(f"Authentication failed: {e}")

        owner = await self.store.find_user(credential.user_id)
        await self.store.record_credential_use(
            credential.credential_id, verification.new_sign_count
        )
        logger.info("passkey.authenticated", user_id=credential.user_id)
        return PasskeyLogin(
            verified=True, principal=_principal_for_owner(credential.user_id, owner)
        )

    # ─── Challenge helpers ───────────────────────────────

    async def _load_challenge(self, challenge_id: Any) -> Optional[Challenge]:
        if not challenge_id:
            return None
        try:
            key = uuid.UUID(str(challenge_id))
        except ValueError:
            return None
        return await self.store.find_challenge(key)

    async def _consume(self, challenge: Optional[Challenge]) -> None:
        """Delete a challenge before it is used (one-time use, even on failure)."""
        if challenge is not None:
            await self.store.delete_challenge(challenge.id)


def _expected(challenge: Optional[Challenge]) -> bytes:
    return base64url_to_bytes(challenge.value if challenge else "")

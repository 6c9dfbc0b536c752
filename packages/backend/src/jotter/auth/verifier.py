"""Credential Verifier — turn a bearer token into a Principal.

Learn: Verification is an ordered list of strategies, resolved once from
configuration:

    identity provider configured → [DelegatedStrategy, LocalJwtStrategy]
    otherwise                    → [LocalJwtStrategy]

Each strategy either returns a Verified result or raises VerifyError.
A failing strategy is never fatal; the verifier moves on to the next.
Only when every strategy has failed is the token rejected.
"""

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

import structlog
from pydantic import ValidationError

from jotter.auth.identity import (
    BoundIdentityClient,
    IdentityClient,
    IdentityProviderError,
)
from jotter.auth.jwt import TokenError, decode_session_token
from jotter.auth.principal import Principal
from jotter.config import Settings

logger = structlog.get_logger()


class VerifyError(Exception):
    """A single strategy could not verify the token."""


@dataclass(frozen=True)
class Verified:
    principal: Principal
    delegated_client: Optional[BoundIdentityClient] = None


class VerificationStrategy(Protocol):
    name: str

    async def verify(self, token: str) -> Verified: ...


class DelegatedStrategy:
    """Ask the identity provider who the token belongs to."""

    name = "delegated"

    def __init__(self, client: IdentityClient):
        self.client = client

    async def verify(self, token: str) -> Verified:
        try:
            user = await self.client.get_user(token)
        except IdentityProviderError as e:
            raise VerifyError(str(e))
        try:
            principal = Principal.from_identity_user(user)
        except ValidationError as e:
            raise VerifyError(f"Unusable user record: {e.error_count()} error(s)")
        return Verified(principal=principal, delegated_client=self.client.bind(token))


class LocalJwtStrategy:
    """Check the token's signature and expiry against our own secret."""

    name = "local"

    def __init__(self, settings: Settings):
        self.settings = settings

    async def verify(self, token: str) -> Verified:
        try:
            claims = decode_session_token(self.settings, token)
        except TokenError as e:
            raise VerifyError(str(e))
        try:
            principal = Principal.from_claims(claims)
        except ValidationError as e:
            raise VerifyError(f"Unusable claims: {e.error_count()} error(s)")
        return Verified(principal=principal)


class CredentialVerifier:
    """Try each strategy in order; first success wins."""

    def __init__(self, strategies: Sequence[VerificationStrategy]):
        if not strategies:
            raise ValueError("CredentialVerifier needs at least one strategy")
        self.strategies = tuple(strategies)

    @property
    def mode(self) -> str:
        return "+".join(s.name for s in self.strategies)

    async def verify(self, token: str) -> Verified:
        for strategy in self.strategies:
            try:
                return await strategy.verify(token)
            except VerifyError as e:
                # Reason stays server-side; callers only ever see one message
                logger.debug(
                    "auth.strategy_failed", strategy=strategy.name, reason=str(e)
                )
        raise VerifyError("No strategy accepted the token")


def build_verifier(
    settings: Settings, identity: Optional[IdentityClient] = None
) -> CredentialVerifier:
    """Resolve the verification order from configuration."""
    strategies: list[VerificationStrategy] = []
    if identity is not None:
        strategies.append(DelegatedStrategy(identity))
    strategies.append(LocalJwtStrategy(settings))
    return CredentialVerifier(strategies)

"""The authenticated identity attached to a request.

A Principal is never persisted. It is built per request, either from a
verified session token's claims, from the identity provider's user
record, or as the fixed sandbox principal.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from jotter.auth.identity import BoundIdentityClient

SANDBOX_USER_ID = "sandbox-user-000"
SANDBOX_WORKSPACE_ID = "sandbox-workspace-000"


def _audience(value: Any) -> str:
    # RFC 7519 allows a list; the first entry is the primary audience
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    return str(value) if value else "authenticated"


class Principal(BaseModel):
    """Identity of the acting user for the remainder of a request."""

    id: str
    email: Optional[str] = None
    phone: Optional[str] = None
    role: str = "authenticated"
    aud: str = "authenticated"
    app_metadata: dict[str, Any] = Field(default_factory=dict)
    user_metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "Principal":
        """Build a principal from decoded session-token claims.

        The caller has already checked that ``sub`` is present.
        """
        return cls(
            id=str(claims["sub"]),
            email=claims.get("email"),
            phone=claims.get("phone"),
            role=claims.get("role") or "authenticated",
            aud=_audience(claims.get("aud")),
            app_metadata=claims.get("app_metadata") or {},
            user_metadata=claims.get("user_metadata") or {},
        )

    @classmethod
    def from_identity_user(cls, user: dict[str, Any]) -> "Principal":
        """Build a principal from an identity provider user record."""
        return cls(
            id=str(user["id"]),
            email=user.get("email") or None,
            phone=user.get("phone") or None,
            role=user.get("role") or "authenticated",
            aud=_audience(user.get("aud")),
            app_metadata=user.get("app_metadata") or {},
            user_metadata=user.get("user_metadata") or {},
        )

    @property
    def display_name(self) -> str:
        name = self.user_metadata.get("display_name")
        if isinstance(name, str) and name:
            return name
        return self.email or "User"


SANDBOX_PRINCIPAL = Principal(
    id=SANDBOX_USER_ID,
    email="sandbox@testing.local",
    app_metadata={"workspace_id": SANDBOX_WORKSPACE_ID},
    user_metadata={"name": "Sandbox User"},
)


@dataclass
class RequestContext:
    """Typed per-request auth state, stored on ``request.state.auth``.

    Learn: Replaces "attach arbitrary fields to the request" with named
    slots. Middleware fills it in, the auth gate completes it, and route
    handlers read it through a dependency.
    """

    principal: Optional[Principal] = None
    is_sandbox: bool = False
    delegated_client: Optional["BoundIdentityClient"] = field(default=None, repr=False)

    @property
    def is_authenticated(self) -> bool:
        return self.principal is not None

"""Authentication and session handling.

Two ways a request becomes authenticated:
1. Bearer session token → verified locally (JWT) or by the identity provider
2. Sandbox mode → fixed demo principal, no credentials (non-production only)

Passkeys (WebAuthn) are how a user obtains a session token without a password.
"""

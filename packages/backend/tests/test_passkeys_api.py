"""Passkey ceremony tests — registration and authentication over HTTP.

Learn: py_webauthn's option generation runs for real; its two verify
functions are replaced with fakes (monkeypatched where the ceremony
module imported them) so tests control the verification outcome and can
inspect exactly what was passed in — expected challenge, stored public
key, stored counter.
"""

import base64
import uuid
from types import SimpleNamespace

import pytest
from webauthn import base64url_to_bytes
from webauthn.helpers.structs import CredentialDeviceType, PublicKeyCredentialType

from conftest import (
    fetch_challenge,
    fetch_challenge_for_user,
    fetch_credential,
    seed_credential,
)

ATTESTATION = {
    "id": "AQID",
    "rawId": "AQID",
    "type": "public-key",
    "response": {
        "attestationObject": "o2NmbXRkbm9uZQ",
        "clientDataJSON": "eyJ0eXBlIjoid2ViYXV0aG4uY3JlYXRlIn0",
        "transports": ["internal", "carrier-pigeon"],
    },
}


def registration_result(**overrides):
    fields = dict(
        credential_id=b"\x01\x02\x03",
        credential_public_key=b"public-key-bytes",
        sign_count=0,
        aaguid="adce0002-35bc-c60a-648b-0b25f1f05503",
        credential_type=PublicKeyCredentialType.PUBLIC_KEY,
        user_verified=True,
        credential_device_type=CredentialDeviceType.MULTI_DEVICE,
        credential_backed_up=True,
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


class FakeVerifier:
    """Records calls; fails like the real library when the challenge is empty."""

    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    def __call__(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        if not kwargs["expected_challenge"]:
            raise ValueError("Client data challenge was not expected challenge")
        return self.result


@pytest.fixture()
def fake_registration(monkeypatch):
    fake = FakeVerifier(result=registration_result())
    monkeypatch.setattr("jotter.auth.passkeys.verify_registration_response", fake)
    return fake


@pytest.fixture()
def fake_authentication(monkeypatch):
    fake = FakeVerifier(result=SimpleNamespace(new_sign_count=6))
    monkeypatch.setattr("jotter.auth.passkeys.verify_authentication_response", fake)
    return fake


# ═══════════════════════════════════════════════════════════
# Registration
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_registration_challenge_options(app, client, auth_headers):
    r = await client.post("/api/v1/passkeys/challenge", headers=auth_headers)
    assert r.status_code == 200
    options = r.json()

    assert options["rp"] == {"id": "localhost", "name": "Notes App"}
    assert options["user"]["name"] == "test@example.com"
    assert options["user"]["displayName"] == "Test User"
    assert options["attestation"] == "none"
    assert options["authenticatorSelection"]["authenticatorAttachment"] == "platform"
    assert options["authenticatorSelection"]["residentKey"] == "preferred"

    stored = await fetch_challenge_for_user(app, "user-123")
    assert stored.value == options["challenge"]


@pytest.mark.asyncio
async def test_registration_challenge_excludes_existing(app, client, auth_headers):
    await seed_credential(app)

    r = await client.post("/api/v1/passkeys/challenge", headers=auth_headers)
    excluded = r.json()["excludeCredentials"]
    assert [c["id"] for c in excluded] == ["AQID"]
    assert excluded[0]["transports"] == ["internal"]


@pytest.mark.asyncio
async def test_new_registration_challenge_replaces_old(app, client, auth_headers):
    r1 = await client.post("/api/v1/passkeys/challenge", headers=auth_headers)
    first = await fetch_challenge_for_user(app, "user-123")
    r2 = await client.post("/api/v1/passkeys/challenge", headers=auth_headers)
    second = await fetch_challenge_for_user(app, "user-123")

    assert r1.json()["challenge"] != r2.json()["challenge"]
    assert first.id == second.id
    assert second.value == r2.json()["challenge"]


@pytest.mark.asyncio
async def test_registration_verify_saves_credential(
    app, client, auth_headers, fake_registration
):
    r = await client.post("/api/v1/passkeys/challenge", headers=auth_headers)
    challenge = r.json()["challenge"]

    r = await client.post("/api/v1/passkeys/verify", json=ATTESTATION, headers=auth_headers)
    assert r.status_code == 201
    body = r.json()
    assert body["credential_id"] == "AQID"
    assert body["credential_type"] == "public-key"
    assert body["device_type"] == "multi_device"
    assert body["backup_state"] == "backed_up"
    assert body["friendly_name"].startswith("Passkey created ")
    assert "public_key" not in body

    call = fake_registration.calls[0]
    assert call["expected_challenge"] == base64url_to_bytes(challenge)
    assert call["expected_origin"] == "http://localhost:5173"
    assert call["expected_rp_id"] == "localhost"

    saved = await fetch_credential(app, "AQID")
    assert saved.user_id == "user-123"
    assert base64.b64decode(saved.public_key) == b"public-key-bytes"
    assert saved.transports == ["internal"]
    assert saved.user_verification_status == "verified"
    assert saved.sign_count == 0
    assert await fetch_challenge_for_user(app, "user-123") is None


@pytest.mark.asyncio
async def test_registration_maps_single_device_flags(
    app, client, auth_headers, fake_registration
):
    fake_registration.result = registration_result(
        user_verified=False,
        credential_device_type=CredentialDeviceType.SINGLE_DEVICE,
        credential_backed_up=False,
    )
    await client.post("/api/v1/passkeys/challenge", headers=auth_headers)
    r = await client.post("/api/v1/passkeys/verify", json=ATTESTATION, headers=auth_headers)

    assert r.json()["device_type"] == "single_device"
    assert r.json()["backup_state"] == "not_backed_up"
    saved = await fetch_credential(app, "AQID")
    assert saved.user_verification_status == "unverified"


@pytest.mark.asyncio
async def test_registration_verify_replay_is_bad_request(
    app, client, auth_headers, fake_registration
):
    """Second verify finds no challenge and verifies against an empty one."""
    await client.post("/api/v1/passkeys/challenge", headers=auth_headers)
    r = await client.post("/api/v1/passkeys/verify", json=ATTESTATION, headers=auth_headers)
    assert r.status_code == 201

    r = await client.post("/api/v1/passkeys/verify", json=ATTESTATION, headers=auth_headers)
    assert r.status_code == 400
    assert r.json()["error"].startswith("Verification failed")
    assert fake_registration.calls[1]["expected_challenge"] == b""


@pytest.mark.asyncio
async def test_registration_failure_still_consumes_challenge(
    app, client, auth_headers, fake_registration
):
    fake_registration.error = ValueError("bad attestation")
    await client.post("/api/v1/passkeys/challenge", headers=auth_headers)

    r = await client.post("/api/v1/passkeys/verify", json=ATTESTATION, headers=auth_headers)

    assert r.status_code == 400
    assert r.json() == {"error": "Verification failed: bad attestation"}
    assert await fetch_challenge_for_user(app, "user-123") is None
    assert await fetch_credential(app, "AQID") is None


@pytest.mark.asyncio
async def test_registration_rejects_duplicate_credential(
    app, client, auth_headers, fake_registration
):
    await seed_credential(app)
    await client.post("/api/v1/passkeys/challenge", headers=auth_headers)

    r = await client.post("/api/v1/passkeys/verify", json=ATTESTATION, headers=auth_headers)
    assert r.status_code == 400
    assert r.json() == {"error": "Credential already registered"}


@pytest.mark.asyncio
async def test_list_passkeys_is_redacted(app, client, auth_headers):
    await seed_credential(app)
    await seed_credential(app, credential_id="BAUG", user_id="someone-else")

    r = await client.get("/api/v1/passkeys", headers=auth_headers)
    assert r.status_code == 200
    keys = r.json()
    assert [k["credential_id"] for k in keys] == ["AQID"]
    assert "public_key" not in keys[0]


@pytest.mark.asyncio
async def test_sandbox_can_start_registration(app, client):
    r = await client.post("/api/v1/passkeys/challenge", headers={"X-Sandbox-Mode": "true"})
    assert r.status_code == 200
    assert await fetch_challenge_for_user(app, "sandbox-user-000") is not None


# ═══════════════════════════════════════════════════════════
# Authentication
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_authentication_challenge(app, client):
    r = await client.post("/api/v1/auth/passkey")
    assert r.status_code == 200
    options = r.json()
    assert options["rpId"] == "localhost"

    stored = await fetch_challenge(app, uuid.UUID(options["challengeId"]))
    assert stored.user_id is None
    assert stored.value == options["challenge"]


@pytest.mark.asyncio
async def test_authentication_challenges_coexist(app, client):
    r1 = await client.post("/api/v1/auth/passkey")
    r2 = await client.post("/api/v1/auth/passkey")
    assert r1.json()["challengeId"] != r2.json()["challengeId"]
    assert await fetch_challenge(app, uuid.UUID(r1.json()["challengeId"])) is not None


@pytest.mark.asyncio
async def test_authentication_verify_updates_counter(
    app, client, store, fake_authentication
):
    await store.insert_user("test@example.com", "Test User")
    owner = await store.find_user_by_email("test@example.com")
    await seed_credential(app, user_id=owner.id, sign_count=5)

    r = await client.post("/api/v1/auth/passkey")
    options = r.json()
    assertion = {
        "id": "AQID",
        "rawId": "AQID",
        "type": "public-key",
        "response": {"authenticatorData": "x", "clientDataJSON": "y", "signature": "z"},
        "challengeId": options["challengeId"],
    }

    r = await client.post("/api/v1/auth/passkey/verify", json=assertion)
    assert r.status_code == 200
    body = r.json()
    assert body["verified"] is True
    assert body["principal"]["id"] == owner.id
    assert body["principal"]["email"] == "test@example.com"

    call = fake_authentication.calls[0]
    assert call["expected_challenge"] == base64url_to_bytes(options["challenge"])
    assert call["credential_public_key"] == b"stored-public-key"
    assert call["credential_current_sign_count"] == 5
    assert "challengeId" not in call["credential"]

    saved = await fetch_credential(app, "AQID")
    assert saved.sign_count == 6
    assert saved.last_used_at is not None
    assert await fetch_challenge(app, uuid.UUID(options["challengeId"])) is None


@pytest.mark.asyncio
async def test_authentication_unknown_credential(app, client, fake_authentication):
    r = await client.post("/api/v1/auth/passkey")
    challenge_id = r.json()["challengeId"]

    r = await client.post(
        "/api/v1/auth/passkey/verify",
        json={"id": "nonexistent-cred", "challengeId": challenge_id, "response": {}},
    )

    assert r.status_code == 404
    assert r.json() == {"error": "Credential not found"}
    assert fake_authentication.calls == []
    assert await fetch_challenge(app, uuid.UUID(challenge_id)) is None


@pytest.mark.asyncio
async def test_authentication_failure(app, client, fake_authentication):
    await seed_credential(app)
    fake_authentication.error = ValueError("signature mismatch")
    r = await client.post("/api/v1/auth/passkey")
    challenge_id = r.json()["challengeId"]

    r = await client.post(
        "/api/v1/auth/passkey/verify",
        json={"id": "AQID", "challengeId": challenge_id, "response": {}},
    )

    assert r.status_code == 400
    assert r.json() == {"error": "Authentication failed: signature mismatch"}
    assert (await fetch_credential(app, "AQID")).sign_count == 5
    assert await fetch_challenge(app, uuid.UUID(challenge_id)) is None


@pytest.mark.asyncio
@pytest.mark.parametrize("challenge_id", [None, "not-a-uuid", str(uuid.uuid4())])
async def test_authentication_stale_challenge_is_bad_request(
    app, client, fake_authentication, challenge_id
):
    await seed_credential(app)
    body = {"id": "AQID", "response": {}}
    if challenge_id is not None:
        body["challengeId"] = challenge_id

    r = await client.post("/api/v1/auth/passkey/verify", json=body)

    assert r.status_code == 400
    assert fake_authentication.calls[0]["expected_challenge"] == b""


@pytest.mark.asyncio
async def test_authentication_owner_without_user_row(app, client, fake_authentication):
    await seed_credential(app, user_id="idp-only-user")
    r = await client.post("/api/v1/auth/passkey")

    r = await client.post(
        "/api/v1/auth/passkey/verify",
        json={"id": "AQID", "challengeId": r.json()["challengeId"], "response": {}},
    )
    assert r.status_code == 200
    assert r.json()["principal"]["id"] == "idp-only-user"


# ═══════════════════════════════════════════════════════════
# Malformed ceremony input
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_authentication_verify_without_body(client, fake_authentication):
    r = await client.post("/api/v1/auth/passkey/verify")
    assert r.status_code == 400
    assert r.json() == {"error": "Request body required"}
    assert fake_authentication.calls == []


@pytest.mark.asyncio
async def test_authentication_verify_invalid_json(client, fake_authentication):
    r = await client.post(
        "/api/v1/auth/passkey/verify",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )
    assert r.status_code == 400
    assert r.json() == {"error": "Invalid request body"}


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [[1, 2], "AQID"], ids=["list", "string"])
async def test_registration_verify_non_object_body(
    client, auth_headers, fake_registration, body
):
    r = await client.post("/api/v1/passkeys/verify", json=body, headers=auth_headers)
    assert r.status_code == 400
    assert r.json() == {"error": "Invalid request body"}
    assert fake_registration.calls == []


@pytest.mark.asyncio
async def test_registration_verify_without_body(client, auth_headers):
    r = await client.post("/api/v1/passkeys/verify", headers=auth_headers)
    assert r.status_code == 400
    assert r.json() == {"error": "Request body required"}

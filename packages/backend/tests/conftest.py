"""Test fixtures — one app + throwaway SQLite database per test.

Learn: Each test builds its own Settings and app via create_app(settings).
The database is a SQLite file under tmp_path (aiosqlite driver), with
tables created from the ORM metadata, so tests need no running Postgres.
httpx's ASGITransport drives the app in-process.
"""

import base64
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from jotter.auth.jwt import issue_session_token
from jotter.config import Settings
from jotter.db.models import Base, Credential
from jotter.db.store import PasskeyStore
from jotter.main import create_app

TEST_SECRET = "test-secret-0123456789abcdef0123456789"
TEST_USER = {
    "id": "user-123",
    "email": "test@example.com",
    "user_metadata": {"display_name": "Test User"},
}


def make_settings(tmp_path, **overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "database_url": f"sqlite+aiosqlite:///{tmp_path / 'jotter.db'}",
        "jwt_secret": TEST_SECRET,
        "webauthn_rp_id": "localhost",
        "webauthn_rp_origin": "http://localhost:5173",
        "environment": "development",
        "enable_sandbox": False,
        "identity_url": "",
        "identity_anon_key": "",
    }
    values.update(overrides)
    return Settings(**values)


async def build_app(settings: Settings, **kwargs):
    app = create_app(settings, **kwargs)
    async with app.state.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return app


@pytest.fixture()
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest_asyncio.fixture()
async def app(settings):
    app = await build_app(settings)
    yield app
    await app.state.engine.dispose()


@pytest_asyncio.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture()
async def store(app):
    """PasskeyStore on its own session, for seeding and inspecting rows."""
    async with app.state.session_factory() as session:
        yield PasskeyStore(session)


@pytest.fixture()
def auth_headers(settings):
    token = issue_session_token(settings, TEST_USER)
    return {"Authorization": f"Bearer {token}"}


async def seed_credential(app, **overrides: Any) -> Credential:
    fields: dict[str, Any] = {
        "user_id": TEST_USER["id"],
        "friendly_name": "Laptop",
        "credential_type": "public-key",
        "credential_id": "AQID",
        "public_key": base64.b64encode(b"stored-public-key").decode("ascii"),
        "aaguid": "00000000-0000-0000-0000-000000000000",
        "sign_count": 5,
        "transports": ["internal"],
        "user_verification_status": "verified",
        "device_type": "multi_device",
        "backup_state": "backed_up",
    }
    fields.update(overrides)
    async with app.state.session_factory() as session:
        return await PasskeyStore(session).insert_credential(**fields)


async def fetch_credential(app, credential_id: str):
    async with app.state.session_factory() as session:
        return await PasskeyStore(session).find_credential(credential_id)


async def fetch_challenge_for_user(app, user_id: str):
    async with app.state.session_factory() as session:
        return await PasskeyStore(session).find_challenge_for_user(user_id)


async def fetch_challenge(app, challenge_id):
    async with app.state.session_factory() as session:
        return await PasskeyStore(session).find_challenge(challenge_id)

"""Jotter operator CLI.

Usage:
    jotter serve                      # Run the API with uvicorn
    jotter init-db                    # Create tables in JOTTER_DATABASE_URL
    jotter issue-token USER_ID        # Mint a session token (development)
"""

from __future__ import annotations

import asyncio
import sys
from typing import Optional

import click
import uvicorn
from pydantic import ValidationError

from jotter import __version__
from jotter.auth.jwt import issue_session_token
from jotter.config import Settings, get_settings
from jotter.db.engine import create_engine
from jotter.db.models import Base


def _settings() -> Settings:
    try:
        return get_settings()
    except ValidationError as e:
        click.secho(f"Error: invalid configuration\n{e}", fg="red", err=True)
        sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="jotter")
def main():
    """Jotter — notes backend administration."""


@main.command()
@click.option("--host", default=None, help="Bind address (default: JOTTER_HOST)")
@click.option("--port", type=int, default=None, help="Port (default: JOTTER_PORT)")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the API server."""
    settings = _settings()
    uvicorn.run(
        "jotter.main:create_app",
        factory=True,
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


@main.command("init-db")
def init_db():
    """Create all tables (use Alembic migrations for upgrades)."""
    settings = _settings()

    async def _create():
        engine = create_engine(settings)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await engine.dispose()

    asyncio.run(_create())
    click.secho("Tables created.", fg="green")


@main.command("issue-token")
@click.argument("user_id")
@click.option("--email", "-e", help="Email claim to include")
def issue_token(user_id: str, email: Optional[str]):
    """Mint a session token for USER_ID and print it."""
    settings = _settings()
    if settings.is_production:
        click.secho("Error: refusing to mint tokens in production", fg="red", err=True)
        sys.exit(1)
    token = issue_session_token(settings, {"id": user_id, "email": email})
    click.echo(token)

"""Row-level operations on users, challenges and credentials.

Learn: The passkey ceremonies touch at most one challenge row and one
credential row per step, so every operation here is a single atomic
statement committed on its own. No multi-row transactions.
"""

import uuid
from typing import Any, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from jotter.db.models import Challenge, Credential, User, utcnow


class PasskeyStore:
    """Narrow persistence interface used by the auth core."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ─── Challenges ──────────────────────────────────────

    async def upsert_registration_challenge(self, user_id: str, value: str) -> None:
        """Store a user's registration challenge, replacing any earlier one.

        Concurrent calls for the same user race; the last write wins.
        """
        dialect = self.db.get_bind().dialect.name
        insert = pg_insert if dialect == "postgresql" else sqlite_insert
        stmt = insert(Challenge).values(id=uuid.uuid4(), user_id=user_id, value=value)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Challenge.user_id],
            set_={"value": value, "created_at": utcnow()},
        )
        await self.db.execute(stmt)
        await self.db.commit()

    async def insert_challenge(self, value: str) -> Challenge:
        """Store an ownerless (login) challenge."""
        challenge = Challenge(value=value)
        self.db.add(challenge)
        await self.db.commit()
        await self.db.refresh(challenge)
        return challenge

    async def find_challenge(self, challenge_id: uuid.UUID) -> Optional[Challenge]:
        return await self.db.get(Challenge, challenge_id)

    async def find_challenge_for_user(self, user_id: str) -> Optional[Challenge]:
        q = select(Challenge).where(Challenge.user_id == user_id)
        result = await self.db.execute(q)
        return result.scalars().first()

    async def delete_challenge(self, challenge_id: uuid.UUID) -> None:
        await self.db.execute(delete(Challenge).where(Challenge.id == challenge_id))
        await self.db.commit()

    # ─── Credentials ─────────────────────────────────────

    async def insert_credential(self, **fields: Any) -> Credential:
        credential = Credential(**fields)
        self.db.add(credential)
        await self.db.commit()
        await self.db.refresh(credential)
        return credential

    async def find_credential(self, credential_id: str) -> Optional[Credential]:
        """Look up a credential by its public (authenticator) identifier."""
        q = select(Credential).where(Credential.credential_id == credential_id)
        result = await self.db.execute(q)
        return result.scalars().first()

    async def list_credentials(self, user_id: str) -> list[Credential]:
        q = (
            select(Credential)
            .where(Credential.user_id == user_id)
            .order_by(Credential.created_at.desc())
        )
        result = await self.db.execute(q)
        return list(result.scalars().all())

    async def record_credential_use(self, credential_id: str, sign_count: int) -> None:
        """Store the authenticator's new signature counter and bump last_used_at."""
        await self.db.execute(
            update(Credential)
            .where(Credential.credential_id == credential_id)
            .values(sign_count=sign_count, last_used_at=utcnow())
        )
        await self.db.commit()

    # ─── Users ───────────────────────────────────────────

    async def find_user(self, user_id: str) -> Optional[User]:
        return await self.db.get(User, user_id)

    async def find_user_by_email(self, email: str) -> Optional[User]:
        q = select(User).where(User.email == email)
        result = await self.db.execute(q)
        return result.scalars().first()

    async def insert_user(self, email: str, display_name: Optional[str] = None) -> User:
        user = User(id=str(uuid.uuid4()), email=email, display_name=display_name)
        self.db.add(user)
        await self.db.commit()
        await self.db.refresh(user)
        return user

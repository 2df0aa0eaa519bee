from typing import Optional
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from twigger_auth.models.account import Account
from twigger_auth.models.linked_identity import LinkedIdentity
from twigger_auth.services.exceptions import AccountConflictError
from twigger_auth.utils.sql import insert_or_ignore


class LinkedIdentityService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def link(self, account_id: UUID, provider: str, provider_subject_id: str) -> bool:
        """
        Attach a provider identity to an account.

        Idempotent: repeating the call for the same (provider, subject) pair is
        a no-op. Returns True only when a new link row was created.
        """
        return await insert_or_ignore(
            self.db,
            LinkedIdentity.__table__,
            {
                "account_id": account_id,
                "provider": provider,
                "provider_subject_id": provider_subject_id,
            },
            conflict_columns=["provider", "provider_subject_id"],
        )

    async def create(
        self, account_id: UUID, provider: str, provider_subject_id: str
    ) -> LinkedIdentity:
        identity = LinkedIdentity(
            account_id=account_id,
            provider=provider,
            provider_subject_id=provider_subject_id,
        )
        self.db.add(identity)
        try:
            await self.db.flush()
        except IntegrityError as e:
            raise AccountConflictError() from e
        return identity

    async def get_account_by_identity(
        self, provider: str, provider_subject_id: str
    ) -> Optional[Account]:
        result = await self.db.execute(
            select(Account)
            .join(LinkedIdentity, LinkedIdentity.account_id == Account.id)
            .where(
                LinkedIdentity.provider == provider,
                LinkedIdentity.provider_subject_id == provider_subject_id,
                Account.deleted_at.is_(None),
            )
        )
        return result.scalar_one_or_none()

    async def delete_for_account(self, account_id: UUID) -> int:
        """Release every provider identity of an account so it can register again."""
        result = await self.db.execute(
            delete(LinkedIdentity).where(LinkedIdentity.account_id == account_id)
        )
        return result.rowcount

    async def list_for_account(self, account_id: UUID) -> list[LinkedIdentity]:
        result = await self.db.execute(
            select(LinkedIdentity)
            .where(LinkedIdentity.account_id == account_id)
            .order_by(LinkedIdentity.linked_at.desc())
        )
        return list(result.scalars().all())

import logging
import secrets
import string
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from twigger_auth.config import get_settings
from twigger_auth.models.account import Account
from twigger_auth.schemas.auth import VerifiedIdentity
from twigger_auth.services.exceptions import AccountConflictError, AccountNotFoundError
from twigger_auth.utils.timezone import utc_now

logger = logging.getLogger(__name__)

USERNAME_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def username_base(email: str) -> str:
    local_part = email.split("@", 1)[0]
    for char in ".+-":
        local_part = local_part.replace(char, "_")
    return local_part or "user"


def generate_username_suffix(length: int) -> str:
    return "".join(secrets.choice(USERNAME_SUFFIX_ALPHABET) for _ in range(length))


class AccountService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()

    async def get_by_id(self, account_id: UUID) -> Optional[Account]:
        result = await self.db.execute(
            select(Account).where(Account.id == account_id, Account.deleted_at.is_(None))
        )
        return result.scalar_one_or_none()

    async def get_by_external_subject_id(self, external_subject_id: str) -> Optional[Account]:
        result = await self.db.execute(
            select(Account).where(
                Account.external_subject_id == external_subject_id,
                Account.deleted_at.is_(None),
            )
        )
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> Optional[Account]:
        result = await self.db.execute(
            select(Account).where(Account.email == email, Account.deleted_at.is_(None))
        )
        return result.scalar_one_or_none()

    async def is_username_taken(self, username: str) -> bool:
        result = await self.db.execute(
            select(Account.id)
            .where(Account.username == username, Account.deleted_at.is_(None))
            .limit(1)
        )
        return result.first() is not None

    async def allocate_username(self, email: str) -> str:
        """
        Pick a username derived from the email's local part.

        Runs inside the caller's transaction so it sees uncommitted accounts.
        The check is only an optimisation: the unique index on username still
        decides, and a lost race surfaces as AccountConflictError on insert.
        """
        base = username_base(email)
        if not await self.is_username_taken(base):
            return base

        for _ in range(self.settings.username_retry_attempts):
            candidate = f"{base}_{generate_username_suffix(self.settings.username_suffix_length)}"
            if not await self.is_username_taken(candidate):
                return candidate

        logger.info("Username retries exhausted, using long random suffix")
        return f"{base}_{generate_username_suffix(self.settings.username_fallback_suffix_length)}"

    async def create(self, identity: VerifiedIdentity, username: str) -> Account:
        now = utc_now()
        account = Account(
            external_subject_id=identity.external_subject_id,
            email=identity.email,
            username=username,
            email_verified=identity.email_verified,
            photo_url=identity.photo_url,
            provider=identity.provider,
            created_at=now,
            last_login_at=now,
        )
        self.db.add(account)
        try:
            await self.db.flush()
        except IntegrityError as e:
            raise AccountConflictError() from e
        return account

    async def update_last_login(self, account: Account, provider: str | None = None) -> None:
        account.last_login_at = utc_now()
        if provider:
            account.provider = provider
        await self.db.flush()

    async def record_provider_link(
        self, account: Account, provider: str, photo_url: str | None = None
    ) -> Account:
        """Switch the last-authenticated provider; an existing photo is never replaced."""
        account.provider = provider
        if photo_url and not account.photo_url:
            account.photo_url = photo_url
        account.last_login_at = utc_now()
        await self.db.flush()
        return account

    async def soft_delete(self, account_id: UUID) -> None:
        result = await self.db.execute(
            update(Account)
            .where(Account.id == account_id, Account.deleted_at.is_(None))
            .values(deleted_at=utc_now())
        )
        if result.rowcount == 0:
            raise AccountNotFoundError()

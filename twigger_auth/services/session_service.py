import logging
from datetime import timedelta
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from twigger_auth.config import get_settings
from twigger_auth.models.session import AuthSession
from twigger_auth.services.exceptions import SessionNotFoundError
from twigger_auth.utils.timezone import utc_now

logger = logging.getLogger(__name__)


class SessionService:
    def __init__(self, db: AsyncSession, ttl: timedelta | None = None):
        self.db = db
        self.ttl = ttl or timedelta(days=get_settings().session_ttl_days)

    async def create(
        self,
        account_id: UUID,
        device_id: str | None = None,
        device_info: dict[str, Any] | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthSession:
        now = utc_now()
        session = AuthSession(
            account_id=account_id,
            device_id=device_id,
            device_info=device_info,
            ip_address=ip_address,
            user_agent=user_agent,
            created_at=now,
            expires_at=now + self.ttl,
        )
        self.db.add(session)
        await self.db.flush()
        return session

    async def get_by_id(self, session_id: UUID) -> Optional[AuthSession]:
        result = await self.db.execute(select(AuthSession).where(AuthSession.id == session_id))
        return result.scalar_one_or_none()

    async def get_active(self, session_id: UUID) -> Optional[AuthSession]:
        result = await self.db.execute(
            select(AuthSession).where(
                AuthSession.id == session_id,
                AuthSession.revoked_at.is_(None),
                AuthSession.expires_at > utc_now(),
            )
        )
        return result.scalar_one_or_none()

    async def list_for_account(self, account_id: UUID) -> list[AuthSession]:
        result = await self.db.execute(
            select(AuthSession)
            .where(AuthSession.account_id == account_id)
            .order_by(AuthSession.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_active_for_account(self, account_id: UUID) -> list[AuthSession]:
        result = await self.db.execute(
            select(AuthSession)
            .where(
                AuthSession.account_id == account_id,
                AuthSession.revoked_at.is_(None),
                AuthSession.expires_at > utc_now(),
            )
            .order_by(AuthSession.created_at.desc())
        )
        return list(result.scalars().all())

    async def revoke(self, session_id: UUID, account_id: UUID | None = None) -> None:
        """
        Revoke a single session.

        Raises SessionNotFoundError when the session does not exist, is
        already revoked, or belongs to a different account.
        """
        stmt = update(AuthSession).where(
            AuthSession.id == session_id, AuthSession.revoked_at.is_(None)
        )
        if account_id is not None:
            stmt = stmt.where(AuthSession.account_id == account_id)
        result = await self.db.execute(stmt.values(revoked_at=utc_now()))
        if result.rowcount == 0:
            raise SessionNotFoundError()

    async def revoke_all_for_account(self, account_id: UUID) -> int:
        """Revoke every non-revoked session; already revoked ones are skipped."""
        result = await self.db.execute(
            update(AuthSession)
            .where(AuthSession.account_id == account_id, AuthSession.revoked_at.is_(None))
            .values(revoked_at=utc_now())
        )
        return result.rowcount

    async def revoke_for_device(self, account_id: UUID, device_id: str) -> int:
        result = await self.db.execute(
            update(AuthSession)
            .where(
                AuthSession.account_id == account_id,
                AuthSession.device_id == device_id,
                AuthSession.revoked_at.is_(None),
            )
            .values(revoked_at=utc_now())
        )
        return result.rowcount

    async def delete_expired(self) -> int:
        result = await self.db.execute(
            delete(AuthSession)
            .where(AuthSession.expires_at < utc_now())
            .execution_options(synchronize_session=False)
        )
        logger.info("Deleted %d expired sessions", result.rowcount)
        return result.rowcount

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import JsonValue, TypeAdapter
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from twigger_auth.models.audit import AuditEvent, AuditEventType
from twigger_auth.utils.timezone import utc_now

# Metadata must stay JSON-shaped: nested dicts, lists and scalars only
_metadata_adapter = TypeAdapter(dict[str, JsonValue])


class AuditService:
    """Append-only access to the audit log."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log_event(
        self,
        event_type: AuditEventType,
        success: bool,
        account_id: UUID | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditEvent:
        event = AuditEvent(
            account_id=account_id,
            event_type=AuditEventType(event_type).value,
            success=success,
            ip_address=ip_address,
            user_agent=user_agent,
            event_metadata=_metadata_adapter.validate_python(metadata or {}),
            created_at=utc_now(),
        )
        self.db.add(event)
        await self.db.flush()
        return event

    async def list_for_account(
        self, account_id: UUID, limit: int = 50, offset: int = 0
    ) -> list[AuditEvent]:
        result = await self.db.execute(
            select(AuditEvent)
            .where(AuditEvent.account_id == account_id)
            .order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def list_for_account_by_type(
        self, account_id: UUID, event_type: AuditEventType, limit: int = 50
    ) -> list[AuditEvent]:
        result = await self.db.execute(
            select(AuditEvent)
            .where(
                AuditEvent.account_id == account_id,
                AuditEvent.event_type == AuditEventType(event_type).value,
            )
            .order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_in_range(self, start: datetime, end: datetime) -> list[AuditEvent]:
        result = await self.db.execute(
            select(AuditEvent)
            .where(AuditEvent.created_at >= start, AuditEvent.created_at <= end)
            .order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc())
        )
        return list(result.scalars().all())

    async def count_by_type(
        self, event_type: AuditEventType, start: datetime, end: datetime
    ) -> int:
        result = await self.db.execute(
            select(func.count())
            .select_from(AuditEvent)
            .where(
                AuditEvent.event_type == AuditEventType(event_type).value,
                AuditEvent.created_at >= start,
                AuditEvent.created_at <= end,
            )
        )
        return result.scalar_one()

    async def count_failed_logins(self, account_id: UUID, since: datetime) -> int:
        result = await self.db.execute(
            select(func.count())
            .select_from(AuditEvent)
            .where(
                AuditEvent.account_id == account_id,
                AuditEvent.event_type == AuditEventType.USER_LOGIN.value,
                AuditEvent.success.is_(False),
                AuditEvent.created_at >= since,
            )
        )
        return result.scalar_one()

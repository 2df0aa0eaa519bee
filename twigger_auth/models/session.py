import uuid
from datetime import datetime
from enum import StrEnum
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from twigger_auth.database import Base
from twigger_auth.utils.timezone import as_utc, utc_now


class SessionState(StrEnum):
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


class AuthSession(Base):
    __tablename__ = "auth_sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    device_id: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    device_info: Mapped[Optional[dict]] = mapped_column(
        JSON().with_variant(JSONB, "postgresql")
    )
    ip_address: Mapped[Optional[str]] = mapped_column(String(45))
    user_agent: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    revoked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    def state(self, now: datetime | None = None) -> SessionState:
        """Revocation wins over expiry; both are terminal."""
        if self.revoked_at is not None:
            return SessionState.REVOKED
        now = now or utc_now()
        if as_utc(now) >= as_utc(self.expires_at):
            return SessionState.EXPIRED
        return SessionState.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.state() == SessionState.ACTIVE

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    @property
    def is_expired(self) -> bool:
        return as_utc(utc_now()) >= as_utc(self.expires_at)

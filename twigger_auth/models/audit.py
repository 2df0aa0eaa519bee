import uuid
from datetime import datetime
from enum import StrEnum
from typing import Optional

from sqlalchemy import JSON, BigInteger, Boolean, DateTime, Integer, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from twigger_auth.database import Base
from twigger_auth.utils.timezone import utc_now


class AuditEventType(StrEnum):
    USER_REGISTERED = "user_registered"
    USER_LOGIN = "user_login"
    USER_LOGOUT = "user_logout"
    TOKEN_REFRESH = "token_refresh"
    SESSION_REVOKED = "session_revoked"
    ACCOUNT_DELETED = "account_deleted"
    PASSWORD_RESET = "password_reset"
    ACCOUNT_LINKED = "account_linked"


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    # No foreign key: audit history outlives the account row
    account_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, index=True)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45))
    user_agent: Mapped[Optional[str]] = mapped_column(Text)
    event_metadata: Mapped[dict] = mapped_column(
        "metadata", JSON().with_variant(JSONB, "postgresql"), default=dict
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, index=True
    )

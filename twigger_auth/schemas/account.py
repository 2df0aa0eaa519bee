from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class AccountResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    username: str
    email_verified: bool
    photo_url: str | None = None
    provider: str
    created_at: datetime
    last_login_at: datetime | None = None


class LinkedIdentityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    provider: str
    linked_at: datetime

from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from twigger_auth.schemas.account import AccountResponse
from twigger_auth.schemas.workspace import WorkspaceResponse


class VerifiedIdentity(BaseModel):
    """Identity assertion already verified by the upstream token issuer."""

    external_subject_id: str = Field(..., min_length=1, max_length=128)
    # str rather than EmailStr: the issuer is trusted and may hand out placeholder addresses
    email: str = Field(..., min_length=3, max_length=255)
    provider: str = Field(..., min_length=1, max_length=50, description="e.g. 'google.com'")
    email_verified: bool = False
    photo_url: str | None = Field(None, max_length=1000)
    device_id: str | None = Field(None, max_length=255)
    device_info: dict[str, Any] | None = None


class ClientContext(BaseModel):
    ip_address: str | None = None
    user_agent: str | None = None


class AuthResponse(BaseModel):
    account: AccountResponse
    workspaces: list[WorkspaceResponse]
    session_id: UUID
    is_new_account: bool


class LogoutRequest(BaseModel):
    device_id: str | None = Field(None, max_length=255)
    revoke_all: bool = False


class LogoutResponse(BaseModel):
    revoked: int

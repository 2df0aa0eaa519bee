from dataclasses import dataclass
from typing import Annotated, Optional
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from twigger_auth.database import get_db
from twigger_auth.models.account import Account
from twigger_auth.models.session import AuthSession
from twigger_auth.schemas.auth import ClientContext
from twigger_auth.services.account_service import AccountService
from twigger_auth.services.session_service import SessionService

# The bearer credential is the session id issued by /auth/complete
bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class CurrentSessionContext:
    account: Account
    session: AuthSession


def _unauthorized(detail: str = "Not authenticated") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def parse_session_token(token: str) -> UUID:
    try:
        return UUID(token)
    except ValueError:
        raise _unauthorized("Invalid session token") from None


def get_client_context(request: Request) -> ClientContext:
    """Origin address and client string of the incoming request."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        ip_address = forwarded_for.split(",")[0].strip()
    else:
        ip_address = request.client.host if request.client else None
    return ClientContext(ip_address=ip_address, user_agent=request.headers.get("User-Agent"))


async def get_current_session(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> CurrentSessionContext:
    """
    Resolve the bearer session id to an active session and its account.

    Revoked or expired sessions and soft-deleted accounts are rejected.
    """
    if not credentials:
        raise _unauthorized()

    session_id = parse_session_token(credentials.credentials)
    session = await SessionService(db).get_active(session_id)
    if session is None:
        raise _unauthorized("Session expired or revoked")

    account = await AccountService(db).get_by_id(session.account_id)
    if account is None:
        raise _unauthorized()

    return CurrentSessionContext(account=account, session=session)


# Type aliases for dependency injection
CurrentSession = Annotated[CurrentSessionContext, Depends(get_current_session)]
Client = Annotated[ClientContext, Depends(get_client_context)]

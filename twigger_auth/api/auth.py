import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from twigger_auth.config import get_settings
from twigger_auth.database import get_db
from twigger_auth.schemas.account import AccountResponse, LinkedIdentityResponse
from twigger_auth.schemas.auth import AuthResponse, LogoutRequest, LogoutResponse, VerifiedIdentity
from twigger_auth.schemas.session import MessageResponse, SessionResponse
from twigger_auth.schemas.workspace import WorkspaceResponse
from twigger_auth.services.exceptions import ConflictError, IdentityServiceError
from twigger_auth.services.identity_service import AuthenticationResult, IdentityResolutionService
from twigger_auth.services.session_service import SessionService
from twigger_auth.utils.auth import Client, CurrentSession

router = APIRouter(prefix="/auth", tags=["Authentication"])
settings = get_settings()
logger = logging.getLogger(__name__)


def _to_response(result: AuthenticationResult) -> AuthResponse:
    return AuthResponse(
        account=AccountResponse.model_validate(result.account),
        workspaces=[WorkspaceResponse.model_validate(w) for w in result.workspaces],
        session_id=result.session_id,
        is_new_account=result.is_new_account,
    )


@router.post("/complete", response_model=AuthResponse)
async def complete_authentication(
    identity: VerifiedIdentity,
    client: Client,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> AuthResponse:
    service = IdentityResolutionService(db)
    try:
        result = await service.complete_authentication(
            identity, client, timeout=settings.auth_timeout_seconds
        )
    except ConflictError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Account could not be created, please sign in again",
        ) from None
    except TimeoutError:
        logger.warning("Authentication exceeded %.1fs deadline", settings.auth_timeout_seconds)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication timed out",
        ) from None
    except IdentityServiceError:
        logger.exception("Authentication failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authentication failed",
        ) from None

    return _to_response(result)


@router.post("/logout", response_model=LogoutResponse)
async def logout(
    logout_data: LogoutRequest,
    current: CurrentSession,
    client: Client,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> LogoutResponse:
    service = IdentityResolutionService(db)
    revoked = await service.logout(
        current.account.id,
        device_id=logout_data.device_id,
        revoke_all=logout_data.revoke_all,
        client=client,
    )

    return LogoutResponse(revoked=revoked)


@router.get("/session", response_model=AuthResponse)
async def get_session(
    current: CurrentSession,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> AuthResponse:
    service = IdentityResolutionService(db)
    workspaces = await service.get_account_workspaces(current.account.id)
    return _to_response(
        AuthenticationResult(
            account=current.account,
            workspaces=workspaces,
            session_id=current.session.id,
            is_new_account=False,
        )
    )


@router.get("/sessions", response_model=list[SessionResponse])
async def list_sessions(
    current: CurrentSession,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> list[SessionResponse]:
    sessions = await SessionService(db).list_active_for_account(current.account.id)
    return [SessionResponse.model_validate(s) for s in sessions]


@router.delete("/sessions/{session_id}", response_model=MessageResponse)
async def revoke_session(
    session_id: UUID,
    current: CurrentSession,
    client: Client,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> MessageResponse:
    service = IdentityResolutionService(db)
    await service.revoke_session(current.account.id, session_id, client)
    return MessageResponse(message="Session revoked")


@router.get("/identities", response_model=list[LinkedIdentityResponse])
async def list_linked_identities(
    current: CurrentSession,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> list[LinkedIdentityResponse]:
    service = IdentityResolutionService(db)
    identities = await service.get_linked_identities(current.account.id)
    return [LinkedIdentityResponse.model_validate(i) for i in identities]


@router.delete("/account", response_model=MessageResponse)
async def delete_account(
    current: CurrentSession,
    client: Client,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> MessageResponse:
    service = IdentityResolutionService(db)
    await service.delete_account(current.account.id, client)
    return MessageResponse(message="Account deleted")

"""
Resolution of verified identity assertions into accounts.

The service composes the account, linked-identity, workspace, session and
audit stores. All of them share one request-scoped AsyncSession, so the
new-account bootstrap commits or rolls back as a single unit.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from twigger_auth.config import get_settings
from twigger_auth.models.account import Account
from twigger_auth.models.audit import AuditEventType
from twigger_auth.models.linked_identity import LinkedIdentity
from twigger_auth.models.session import AuthSession
from twigger_auth.models.workspace import Workspace, WorkspaceRole
from twigger_auth.schemas.auth import ClientContext, VerifiedIdentity
from twigger_auth.services.account_service import AccountService
from twigger_auth.services.audit_service import AuditService
from twigger_auth.services.exceptions import (
    AccountBootstrapError,
    AccountConflictError,
    AccountNotFoundError,
    InvalidArgumentError,
    SessionCreationError,
)
from twigger_auth.services.linked_identity_service import LinkedIdentityService
from twigger_auth.services.session_service import SessionService
from twigger_auth.services.workspace_service import WorkspaceService, default_workspace_name

logger = logging.getLogger(__name__)


@dataclass
class AuthenticationResult:
    """Outcome of a completed authentication."""

    account: Account
    workspaces: list[Workspace]
    session_id: UUID
    is_new_account: bool


@dataclass
class _PendingAuditEvent:
    event_type: AuditEventType
    success: bool
    account_id: UUID | None
    metadata: dict[str, Any] = field(default_factory=dict)


class IdentityResolutionService:
    def __init__(
        self,
        db: AsyncSession,
        accounts: AccountService | None = None,
        linked_identities: LinkedIdentityService | None = None,
        workspaces: WorkspaceService | None = None,
        sessions: SessionService | None = None,
        audit: AuditService | None = None,
        audit_timeout: float | None = None,
    ):
        self.db = db
        self.accounts = accounts or AccountService(db)
        self.linked_identities = linked_identities or LinkedIdentityService(db)
        self.workspaces = workspaces or WorkspaceService(db)
        self.sessions = sessions or SessionService(db)
        self.audit = audit or AuditService(db)
        self.audit_timeout = audit_timeout or get_settings().audit_timeout_seconds
        self._pending_audit: list[_PendingAuditEvent] = []

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[None]:
        """Commit on success; roll back on every other exit, cancellation included."""
        committed = False
        try:
            yield
            await self.db.commit()
            committed = True
        finally:
            if not committed:
                await self.db.rollback()

    async def complete_authentication(
        self,
        identity: VerifiedIdentity,
        client: ClientContext | None = None,
        timeout: float | None = None,
    ) -> AuthenticationResult:
        """
        Resolve a verified identity into an account with an open session.

        Existing accounts are found by subject id (directly or through a linked
        identity), then by email, which links the new provider to that account.
        Otherwise a new account is bootstrapped. A registration that loses a
        uniqueness race is resolved again against the winner's account.

        ``timeout`` bounds the resolution itself and raises TimeoutError with
        every uncommitted write rolled back. Audit events are written once it
        has finished, outside that deadline.
        """
        client = client or ClientContext()
        self._pending_audit = []
        try:
            async with asyncio.timeout(timeout):
                return await self._resolve(identity, client)
        finally:
            await self._flush_audit_events(client)

    async def _resolve(
        self, identity: VerifiedIdentity, client: ClientContext
    ) -> AuthenticationResult:
        result = await self._authenticate_known(identity, client)
        if result is not None:
            return result

        try:
            return await self._register(identity, client)
        except AccountConflictError:
            result = await self._authenticate_known(identity, client)
            if result is None:
                raise
            logger.info("Registration conflict resolved against account %s", result.account.id)
            return result

    async def _find_by_subject(self, identity: VerifiedIdentity) -> Account | None:
        account = await self.accounts.get_by_external_subject_id(identity.external_subject_id)
        if account is None:
            account = await self.linked_identities.get_account_by_identity(
                identity.provider, identity.external_subject_id
            )
        return account

    async def _authenticate_known(
        self, identity: VerifiedIdentity, client: ClientContext
    ) -> AuthenticationResult | None:
        account = await self._find_by_subject(identity)
        if account is not None:
            return await self._login(account, identity, client)

        account = await self.accounts.get_by_email(identity.email)
        if account is not None:
            return await self._link(account, identity, client)

        return None

    async def _login(
        self, account: Account, identity: VerifiedIdentity, client: ClientContext
    ) -> AuthenticationResult:
        async with self._transaction():
            await self.accounts.update_last_login(account, identity.provider)
            workspaces = await self.workspaces.list_for_account(account.id)
            session = await self._open_session(account.id, identity, client)

        logger.info("Account %s logged in via %s", account.id, identity.provider)
        self._queue_audit_event(
            AuditEventType.USER_LOGIN, True, account.id, {"provider": identity.provider}
        )
        return AuthenticationResult(
            account=account,
            workspaces=workspaces,
            session_id=session.id,
            is_new_account=False,
        )

    async def _link(
        self, account: Account, identity: VerifiedIdentity, client: ClientContext
    ) -> AuthenticationResult:
        async with self._transaction():
            newly_linked = await self.linked_identities.link(
                account.id, identity.provider, identity.external_subject_id
            )
            account = await self.accounts.record_provider_link(
                account, identity.provider, identity.photo_url
            )
            workspaces = await self.workspaces.list_for_account(account.id)
            session = await self._open_session(account.id, identity, client)

        if newly_linked:
            logger.info("Linked provider %s to account %s", identity.provider, account.id)
            self._queue_audit_event(
                AuditEventType.ACCOUNT_LINKED,
                True,
                account.id,
                {"email": account.email, "new_provider": identity.provider},
            )
        else:
            self._queue_audit_event(
                AuditEventType.USER_LOGIN, True, account.id, {"provider": identity.provider}
            )

        return AuthenticationResult(
            account=account,
            workspaces=workspaces,
            session_id=session.id,
            is_new_account=False,
        )

    async def _register(
        self, identity: VerifiedIdentity, client: ClientContext
    ) -> AuthenticationResult:
        try:
            async with self._transaction():
                account, workspace = await self._bootstrap_account(identity)
        except AccountConflictError as e:
            self._queue_failed_registration(identity, e)
            raise
        except IntegrityError as e:
            self._queue_failed_registration(identity, e)
            raise AccountConflictError() from e
        except Exception as e:
            self._queue_failed_registration(identity, e)
            raise AccountBootstrapError() from e

        async with self._transaction():
            session = await self._open_session(account.id, identity, client)

        logger.info("Registered account %s via %s", account.id, identity.provider)
        self._queue_audit_event(
            AuditEventType.USER_REGISTERED,
            True,
            account.id,
            {"email": identity.email, "provider": identity.provider},
        )
        return AuthenticationResult(
            account=account,
            workspaces=[workspace],
            session_id=session.id,
            is_new_account=True,
        )

    async def _bootstrap_account(self, identity: VerifiedIdentity) -> tuple[Account, Workspace]:
        """Account, default workspace, admin membership and linked identity. Caller commits."""
        username = await self.accounts.allocate_username(identity.email)
        account = await self.accounts.create(identity, username)
        workspace = await self.workspaces.create(account, default_workspace_name(username))
        await self.workspaces.add_member(workspace.id, account.id, WorkspaceRole.ADMIN)
        await self.linked_identities.create(
            account.id, identity.provider, identity.external_subject_id
        )
        return account, workspace

    async def _open_session(
        self, account_id: UUID, identity: VerifiedIdentity, client: ClientContext
    ) -> AuthSession:
        try:
            return await self.sessions.create(
                account_id,
                device_id=identity.device_id,
                device_info=identity.device_info,
                ip_address=client.ip_address,
                user_agent=client.user_agent,
            )
        except SQLAlchemyError as e:
            raise SessionCreationError() from e

    def _queue_failed_registration(
        self, identity: VerifiedIdentity, error: BaseException
    ) -> None:
        logger.warning("Account bootstrap failed: %s", type(error.__cause__ or error).__name__)
        self._queue_audit_event(
            AuditEventType.USER_REGISTERED,
            False,
            None,
            {
                "error": str(error.__cause__ or error),
                "email": identity.email,
                "provider": identity.provider,
            },
        )

    def _queue_audit_event(
        self,
        event_type: AuditEventType,
        success: bool,
        account_id: UUID | None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self._pending_audit.append(
            _PendingAuditEvent(event_type, success, account_id, metadata or {})
        )

    async def _flush_audit_events(self, client: ClientContext) -> None:
        pending, self._pending_audit = self._pending_audit, []
        for event in pending:
            await self._record_audit_event(
                event.event_type, event.success, event.account_id, client, event.metadata
            )

    async def _record_audit_event(
        self,
        event_type: AuditEventType,
        success: bool,
        account_id: UUID | None,
        client: ClientContext | None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Best effort: a failure or a stalled write is logged and never reaches the caller."""
        client = client or ClientContext()
        try:
            async with asyncio.timeout(self.audit_timeout):
                await self.audit.log_event(
                    event_type,
                    success,
                    account_id=account_id,
                    ip_address=client.ip_address,
                    user_agent=client.user_agent,
                    metadata=metadata,
                )
                await self.db.commit()
        except Exception:
            logger.warning("Audit event %s was not recorded", event_type.value, exc_info=True)
            # Committed objects handed back to the caller must stay readable after the rollback
            self.db.expunge_all()
            try:
                await self.db.rollback()
            except SQLAlchemyError:
                logger.warning("Rollback after audit failure failed", exc_info=True)

    async def logout(
        self,
        account_id: UUID,
        device_id: str | None = None,
        revoke_all: bool = False,
        client: ClientContext | None = None,
    ) -> int:
        """
        Revoke sessions for an account.

        Exactly one of ``device_id`` or ``revoke_all=True`` must be given.
        Returns the number of sessions revoked for ``revoke_all`` and 1 for a
        device logout.
        """
        if revoke_all == bool(device_id):
            raise InvalidArgumentError("Exactly one of device_id or revoke_all must be specified")

        async with self._transaction():
            if revoke_all:
                count = await self.sessions.revoke_all_for_account(account_id)
            else:
                count = await self.sessions.revoke_for_device(account_id, device_id)

        if revoke_all:
            metadata = {"revoke_all": True, "count": count}
        else:
            metadata = {"device_id": device_id, "count": count}
        await self._record_audit_event(
            AuditEventType.USER_LOGOUT, True, account_id, client, metadata
        )
        return count if revoke_all else 1

    async def revoke_session(
        self, account_id: UUID, session_id: UUID, client: ClientContext | None = None
    ) -> None:
        async with self._transaction():
            await self.sessions.revoke(session_id, account_id=account_id)

        await self._record_audit_event(
            AuditEventType.SESSION_REVOKED,
            True,
            account_id,
            client,
            {"session_id": str(session_id)},
        )

    async def delete_account(self, account_id: UUID, client: ClientContext | None = None) -> None:
        """
        Soft-delete the account and revoke all of its sessions.

        Linked identities are released so the same provider identity can
        register a fresh account later; audit history is kept.
        """
        async with self._transaction():
            await self.accounts.soft_delete(account_id)
            await self.linked_identities.delete_for_account(account_id)
            revoked = await self.sessions.revoke_all_for_account(account_id)

        logger.info("Account %s deleted", account_id)
        await self._record_audit_event(
            AuditEventType.ACCOUNT_DELETED, True, account_id, client, {"revoked_sessions": revoked}
        )

    async def get_account(self, account_id: UUID) -> Account:
        account = await self.accounts.get_by_id(account_id)
        if account is None:
            raise AccountNotFoundError()
        return account

    async def get_account_workspaces(self, account_id: UUID) -> list[Workspace]:
        return await self.workspaces.list_for_account(account_id)

    async def get_linked_identities(self, account_id: UUID) -> list[LinkedIdentity]:
        return await self.linked_identities.list_for_account(account_id)

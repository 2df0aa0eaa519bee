"""Service layer for business logic."""

from twigger_auth.services.account_service import AccountService
from twigger_auth.services.audit_service import AuditService
from twigger_auth.services.identity_service import (
    AuthenticationResult,
    IdentityResolutionService,
)
from twigger_auth.services.linked_identity_service import LinkedIdentityService
from twigger_auth.services.session_service import SessionService
from twigger_auth.services.workspace_service import WorkspaceService

__all__ = [
    "AccountService",
    "AuditService",
    "AuthenticationResult",
    "IdentityResolutionService",
    "LinkedIdentityService",
    "SessionService",
    "WorkspaceService",
]

"""Database models."""

from twigger_auth.models.account import Account
from twigger_auth.models.audit import AuditEvent, AuditEventType
from twigger_auth.models.linked_identity import LinkedIdentity
from twigger_auth.models.session import AuthSession, SessionState
from twigger_auth.models.workspace import Workspace, WorkspaceMembership, WorkspaceRole

__all__ = [
    "Account",
    "AuditEvent",
    "AuditEventType",
    "AuthSession",
    "LinkedIdentity",
    "SessionState",
    "Workspace",
    "WorkspaceMembership",
    "WorkspaceRole",
]

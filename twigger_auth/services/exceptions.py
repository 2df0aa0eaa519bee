"""Errors raised by the identity services.

Messages are safe to show across the trust boundary: they never include
emails, subject ids or other lookup keys.
"""


class IdentityServiceError(Exception):
    pass


class NotFoundError(IdentityServiceError):
    pass


class AccountNotFoundError(NotFoundError):
    def __init__(self, message: str = "Account not found") -> None:
        super().__init__(message)


class WorkspaceNotFoundError(NotFoundError):
    def __init__(self, message: str = "Workspace not found") -> None:
        super().__init__(message)


class SessionNotFoundError(NotFoundError):
    def __init__(self, message: str = "Session not found or already revoked") -> None:
        super().__init__(message)


class ConflictError(IdentityServiceError):
    pass


class AccountConflictError(ConflictError):
    def __init__(self, message: str = "An account with these details already exists") -> None:
        super().__init__(message)


class WorkspaceMembershipError(ConflictError):
    pass


class AccountBootstrapError(IdentityServiceError):
    def __init__(self, message: str = "Failed to create new account") -> None:
        super().__init__(message)


class SessionCreationError(IdentityServiceError):
    def __init__(self, message: str = "Failed to create session") -> None:
        super().__init__(message)


class InvalidArgumentError(IdentityServiceError):
    pass

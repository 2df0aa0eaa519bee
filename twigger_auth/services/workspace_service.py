from typing import Optional
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from twigger_auth.models.account import Account
from twigger_auth.models.workspace import Workspace, WorkspaceMembership, WorkspaceRole
from twigger_auth.services.exceptions import (
    AccountConflictError,
    WorkspaceMembershipError,
    WorkspaceNotFoundError,
)
from twigger_auth.utils.sql import insert_or_ignore
from twigger_auth.utils.timezone import utc_now


def default_workspace_name(username: str) -> str:
    return f"{username}'s Garden"


class WorkspaceService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, workspace_id: UUID) -> Optional[Workspace]:
        result = await self.db.execute(select(Workspace).where(Workspace.id == workspace_id))
        return result.scalar_one_or_none()

    async def list_owned_by(self, owner_id: UUID) -> list[Workspace]:
        result = await self.db.execute(
            select(Workspace)
            .where(Workspace.owner_id == owner_id)
            .order_by(Workspace.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_for_account(self, account_id: UUID) -> list[Workspace]:
        """Workspaces the account is a member of, newest first."""
        result = await self.db.execute(
            select(Workspace)
            .join(WorkspaceMembership, WorkspaceMembership.workspace_id == Workspace.id)
            .where(WorkspaceMembership.account_id == account_id)
            .order_by(Workspace.created_at.desc())
        )
        return list(result.scalars().all())

    async def create(self, owner: Account, name: str) -> Workspace:
        """Insert a workspace row. The owner's admin membership is added separately."""
        now = utc_now()
        workspace = Workspace(owner_id=owner.id, name=name, created_at=now, updated_at=now)
        self.db.add(workspace)
        try:
            await self.db.flush()
        except IntegrityError as e:
            raise AccountConflictError() from e
        return workspace

    async def add_member(
        self, workspace_id: UUID, account_id: UUID, role: WorkspaceRole = WorkspaceRole.MEMBER
    ) -> bool:
        """Insert-or-ignore on (workspace, account). Returns True if a row was added."""
        return await insert_or_ignore(
            self.db,
            WorkspaceMembership.__table__,
            {
                "workspace_id": workspace_id,
                "account_id": account_id,
                "role": WorkspaceRole(role).value,
            },
            conflict_columns=["workspace_id", "account_id"],
        )

    async def get_membership(
        self, workspace_id: UUID, account_id: UUID
    ) -> Optional[WorkspaceMembership]:
        result = await self.db.execute(
            select(WorkspaceMembership).where(
                WorkspaceMembership.workspace_id == workspace_id,
                WorkspaceMembership.account_id == account_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_members(self, workspace_id: UUID) -> list[WorkspaceMembership]:
        result = await self.db.execute(
            select(WorkspaceMembership)
            .where(WorkspaceMembership.workspace_id == workspace_id)
            .order_by(WorkspaceMembership.joined_at)
        )
        return list(result.scalars().all())

    async def get_member_role(
        self, workspace_id: UUID, account_id: UUID
    ) -> Optional[WorkspaceRole]:
        membership = await self.get_membership(workspace_id, account_id)
        if membership is None:
            return None
        return WorkspaceRole(membership.role)

    async def is_member(self, workspace_id: UUID, account_id: UUID) -> bool:
        return await self.get_membership(workspace_id, account_id) is not None

    async def _admin_count(self, workspace_id: UUID) -> int:
        result = await self.db.execute(
            select(func.count())
            .select_from(WorkspaceMembership)
            .where(
                WorkspaceMembership.workspace_id == workspace_id,
                WorkspaceMembership.role == WorkspaceRole.ADMIN.value,
            )
        )
        return result.scalar_one()

    async def update_member_role(
        self, workspace_id: UUID, account_id: UUID, new_role: WorkspaceRole
    ) -> WorkspaceMembership:
        membership = await self.get_membership(workspace_id, account_id)
        if membership is None:
            raise WorkspaceNotFoundError("Workspace membership not found")

        new_role = WorkspaceRole(new_role)
        if membership.is_admin and new_role != WorkspaceRole.ADMIN:
            if await self._admin_count(workspace_id) <= 1:
                raise WorkspaceMembershipError("A workspace must keep at least one admin")

        membership.role = new_role.value
        await self.db.flush()
        await self.db.refresh(membership)
        return membership

    async def remove_member(self, workspace_id: UUID, account_id: UUID) -> bool:
        """
        Remove a member from a workspace.
        Returns False if the account was not a member.
        """
        membership = await self.get_membership(workspace_id, account_id)
        if membership is None:
            return False

        if membership.is_admin and await self._admin_count(workspace_id) <= 1:
            raise WorkspaceMembershipError("Cannot remove the only admin of a workspace")

        await self.db.execute(
            delete(WorkspaceMembership).where(
                WorkspaceMembership.workspace_id == workspace_id,
                WorkspaceMembership.account_id == account_id,
            )
        )
        await self.db.flush()
        return True

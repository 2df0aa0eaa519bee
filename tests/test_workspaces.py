import pytest

from twigger_auth.models import Account, WorkspaceMembership, WorkspaceRole
from twigger_auth.services.exceptions import WorkspaceMembershipError, WorkspaceNotFoundError
from twigger_auth.services.workspace_service import WorkspaceService, default_workspace_name


@pytest.fixture
def other_account_factory(db_session):
    async def _make(name: str) -> Account:
        account = Account(
            external_subject_id=f"subject-{name}",
            email=f"{name}@example.com",
            username=name,
            provider="google.com",
        )
        db_session.add(account)
        await db_session.commit()
        return account

    return _make


class TestWorkspaceRole:
    def test_roles_are_ordered(self):
        """Test that admin outranks member and member outranks viewer."""

        assert WorkspaceRole.ADMIN.at_least(WorkspaceRole.MEMBER)
        assert WorkspaceRole.MEMBER.at_least(WorkspaceRole.VIEWER)
        assert WorkspaceRole.VIEWER.at_least(WorkspaceRole.VIEWER)
        assert not WorkspaceRole.VIEWER.at_least(WorkspaceRole.MEMBER)
        assert not WorkspaceRole.MEMBER.at_least("admin")

    def test_values(self):
        """Test that roles are stored by their lowercase names."""

        assert [role.value for role in WorkspaceRole] == ["admin", "member", "viewer"]

    def test_default_name(self):
        """Test that the default workspace is named after the username."""

        assert default_workspace_name("rosa") == "rosa's Garden"


class TestWorkspaceService:
    """Tests for workspace and membership storage."""

    @pytest.mark.asyncio
    async def test_create_and_add_owner(self, db_session, test_account):
        """Test that the owner can be added as admin of a new workspace."""

        service = WorkspaceService(db_session)

        workspace = await service.create(test_account, "Greenhouse")
        added = await service.add_member(workspace.id, test_account.id, WorkspaceRole.ADMIN)
        await db_session.commit()

        assert added is True
        assert workspace.owner_id == test_account.id
        assert await service.get_member_role(workspace.id, test_account.id) == WorkspaceRole.ADMIN
        assert await service.is_member(workspace.id, test_account.id)
        assert [w.id for w in await service.list_owned_by(test_account.id)] == [workspace.id]

    @pytest.mark.asyncio
    async def test_add_member_is_idempotent(self, db_session, test_account, count_rows):
        """Test that adding a member twice keeps the first role."""

        service = WorkspaceService(db_session)
        workspace = await service.create(test_account, "Greenhouse")

        assert await service.add_member(workspace.id, test_account.id, WorkspaceRole.ADMIN)
        assert not await service.add_member(workspace.id, test_account.id, WorkspaceRole.VIEWER)
        await db_session.commit()

        assert await count_rows(WorkspaceMembership) == 1
        assert await service.get_member_role(workspace.id, test_account.id) == WorkspaceRole.ADMIN

    @pytest.mark.asyncio
    async def test_list_for_account_newest_first(self, db_session, test_account):
        """Test that an account's workspaces are listed newest first."""

        service = WorkspaceService(db_session)
        names = ["Orchard", "Allotment", "Balcony"]
        for name in names:
            workspace = await service.create(test_account, name)
            await service.add_member(workspace.id, test_account.id, WorkspaceRole.MEMBER)
        await db_session.commit()

        workspaces = await service.list_for_account(test_account.id)

        assert [w.name for w in workspaces] == list(reversed(names))

    @pytest.mark.asyncio
    async def test_list_for_account_only_includes_memberships(
        self, db_session, test_account, other_account_factory
    ):
        """Test that owning nothing and joining nothing lists nothing."""

        other = await other_account_factory("neighbour")
        service = WorkspaceService(db_session)
        workspace = await service.create(other, "Not mine")
        await db_session.commit()

        assert await service.list_for_account(test_account.id) == []
        assert await service.get_member_role(workspace.id, test_account.id) is None

    @pytest.mark.asyncio
    async def test_last_admin_cannot_be_demoted(self, db_session, test_account):
        """Test that the last admin cannot be demoted."""

        service = WorkspaceService(db_session)
        workspace = await service.create(test_account, "Greenhouse")
        await service.add_member(workspace.id, test_account.id, WorkspaceRole.ADMIN)

        with pytest.raises(WorkspaceMembershipError):
            await service.update_member_role(workspace.id, test_account.id, WorkspaceRole.MEMBER)

    @pytest.mark.asyncio
    async def test_last_admin_cannot_be_removed(self, db_session, test_account):
        """Test that the last admin cannot be removed."""

        service = WorkspaceService(db_session)
        workspace = await service.create(test_account, "Greenhouse")
        await service.add_member(workspace.id, test_account.id, WorkspaceRole.ADMIN)

        with pytest.raises(WorkspaceMembershipError):
            await service.remove_member(workspace.id, test_account.id)

    @pytest.mark.asyncio
    async def test_member_role_change_and_removal(
        self, db_session, test_account, other_account_factory
    ):
        """Test that a second admin allows the first to be demoted and removed."""

        other = await other_account_factory("helper")
        service = WorkspaceService(db_session)
        workspace = await service.create(test_account, "Greenhouse")
        await service.add_member(workspace.id, test_account.id, WorkspaceRole.ADMIN)
        await service.add_member(workspace.id, other.id, WorkspaceRole.VIEWER)

        membership = await service.update_member_role(workspace.id, other.id, WorkspaceRole.ADMIN)
        assert membership.is_admin

        # a second admin makes demotion of the first possible
        await service.update_member_role(workspace.id, test_account.id, WorkspaceRole.MEMBER)
        assert await service.remove_member(workspace.id, test_account.id) is True
        assert await service.remove_member(workspace.id, test_account.id) is False
        assert [m.account_id for m in await service.list_members(workspace.id)] == [other.id]

    @pytest.mark.asyncio
    async def test_update_role_of_non_member(self, db_session, test_account):
        """Test that changing the role of a non-member raises WorkspaceNotFoundError."""

        service = WorkspaceService(db_session)
        workspace = await service.create(test_account, "Greenhouse")

        with pytest.raises(WorkspaceNotFoundError):
            await service.update_member_role(workspace.id, test_account.id, WorkspaceRole.ADMIN)

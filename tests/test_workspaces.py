import pytest
from sqlalchemy.exc import OperationalError

from docpilot.core.results import ResultStatus
from docpilot.db.repositories.base import DuplicateRowError
from docpilot.db.repositories.document_repository import FileRepository, FileVersionRepository
from docpilot.db.repositories.invitation_repository import InvitationRepository
from docpilot.db.repositories.workspace_repository import (
    ChatMessageRepository, CollaboratorRepository, WorkspaceRepository
)
from docpilot.domains.access.entities import Role
from docpilot.domains.documents.services import FileService, VersionService
from docpilot.domains.invitations.entities import InvitationStatus
from docpilot.domains.invitations.services import InvitationService
from docpilot.domains.workspaces.entities import ActivityEntry
from docpilot.domains.workspaces.services import ChatService, WorkspaceService


@pytest.fixture
def workspaces(db_session, feed):
    return WorkspaceService(db_session, feed)


@pytest.fixture
def chat(db_session, feed):
    return ChatService(db_session, feed)


class TestWorkspaceLifecycle:
    async def test_create_adds_owner_collaborator(self, db_session, workspace, alice):
        owner_row = await CollaboratorRepository(db_session).get(workspace.uuid, alice.uuid)

        assert workspace.owner_id == alice.uuid
        assert owner_row.role is Role.OWNER

    async def test_empty_name_is_invalid(self, workspaces, alice):
        result = await workspaces.create_workspace(alice.uuid, "  ")
        assert result.status is ResultStatus.INVALID

    async def test_failed_owner_row_removes_workspace(self, workspaces, alice, monkeypatch):
        async def failing_create(collaborator):
            raise DuplicateRowError("Collaborator already exists")

        monkeypatch.setattr(workspaces.collaborator_repository, "create", failing_create)

        result = await workspaces.create_workspace(alice.uuid, "Broken")

        assert result.status is ResultStatus.CONFLICT
        assert await workspaces.list_workspaces(alice.uuid) == []

    async def test_list_shows_owned_and_shared(self, workspaces, workspace, alice, bob):
        own = (await workspaces.create_workspace(bob.uuid, "Bob's space")).value
        await workspaces.add_collaborator(alice.uuid, workspace.uuid, bob.email, Role.VIEWER)

        visible = {ws.uuid for ws in await workspaces.list_workspaces(bob.uuid)}

        assert visible == {own.uuid, workspace.uuid}
        assert [ws.uuid for ws in await workspaces.list_workspaces(alice.uuid)] == [workspace.uuid]

    async def test_load_repairs_owner_row(self, db_session, workspaces, workspace, alice):
        await CollaboratorRepository(db_session).delete(workspace.uuid, alice.uuid)

        result = await workspaces.load_workspace(alice.uuid, workspace.uuid)

        assert result.ok
        assert (await CollaboratorRepository(db_session).get(workspace.uuid, alice.uuid)).role is Role.OWNER

    async def test_load_hidden_from_strangers(self, workspaces, workspace, bob):
        result = await workspaces.load_workspace(bob.uuid, workspace.uuid)
        assert result.status is ResultStatus.NOT_FOUND


class TestCollaborators:
    async def test_add_change_remove(self, workspaces, workspace, alice, bob):
        added = await workspaces.add_collaborator(alice.uuid, workspace.uuid, bob.email, Role.VIEWER)
        assert added.ok and added.value.role is Role.VIEWER

        changed = await workspaces.change_role(alice.uuid, workspace.uuid, bob.uuid, Role.EDITOR)
        assert changed.value.role is Role.EDITOR

        assert (await workspaces.remove_collaborator(alice.uuid, workspace.uuid, bob.uuid)).ok
        collaborators = (await workspaces.list_collaborators(alice.uuid, workspace.uuid)).value
        assert [c.user_id for c in collaborators] == [alice.uuid]

        actions = {entry.action for entry in (await workspaces.list_activity(alice.uuid, workspace.uuid)).value}
        assert {ActivityEntry.JOINED, ActivityEntry.ROLE_CHANGED, ActivityEntry.REMOVED} <= actions

    async def test_add_unknown_user(self, workspaces, workspace, alice):
        result = await workspaces.add_collaborator(alice.uuid, workspace.uuid, "ghost@x.com", Role.EDITOR)
        assert result.status is ResultStatus.NOT_FOUND

    async def test_add_existing_member(self, workspaces, workspace, alice, bob):
        await workspaces.add_collaborator(alice.uuid, workspace.uuid, bob.email, Role.EDITOR)

        again = await workspaces.add_collaborator(alice.uuid, workspace.uuid, bob.email, Role.VIEWER)

        assert again.status is ResultStatus.ALREADY_MEMBER

    async def test_direct_add_retires_pending_invitation(
        self, db_session, feed, email_sender, workspaces, workspace, alice, bob
    ):
        invitations = InvitationService(db_session, feed, email_sender)
        created = (await invitations.create_invitation(alice.uuid, workspace.uuid, bob.email, Role.EDITOR)).value

        await workspaces.add_collaborator(alice.uuid, workspace.uuid, bob.email, Role.EDITOR)

        stored = await InvitationRepository(db_session).get_by_uuid(created.invitation.uuid)
        assert stored.status is InvitationStatus.ACCEPTED

    async def test_only_owner_manages_members(self, workspaces, workspace, alice, bob, carol):
        await workspaces.add_collaborator(alice.uuid, workspace.uuid, bob.email, Role.EDITOR)

        result = await workspaces.add_collaborator(bob.uuid, workspace.uuid, carol.email, Role.VIEWER)

        assert result.status is ResultStatus.PERMISSION_DENIED

    async def test_owner_is_protected(self, workspaces, workspace, alice):
        assert (await workspaces.change_role(alice.uuid, workspace.uuid, alice.uuid, Role.VIEWER)).status \
            is ResultStatus.CONFLICT
        assert (await workspaces.remove_collaborator(alice.uuid, workspace.uuid, alice.uuid)).status \
            is ResultStatus.CONFLICT
        assert (await workspaces.leave_workspace(alice.uuid, workspace.uuid)).status is ResultStatus.CONFLICT

    async def test_member_can_leave(self, workspaces, workspace, alice, bob):
        await workspaces.add_collaborator(alice.uuid, workspace.uuid, bob.email, Role.EDITOR)

        assert (await workspaces.leave_workspace(bob.uuid, workspace.uuid)).ok
        assert (await workspaces.load_workspace(bob.uuid, workspace.uuid)).status is ResultStatus.NOT_FOUND


class TestWorkspaceDeletion:
    async def populate(self, db_session, feed, email_sender, workspace, alice, bob):
        files = FileService(db_session, feed)
        readme = (await files.create_file(alice.uuid, workspace.uuid, "README.md", "hello")).value
        await VersionService(db_session, feed).create_version(alice.uuid, readme.uuid, "hello")
        await ChatService(db_session, feed).send_message(alice.uuid, workspace.uuid, "welcome")
        await InvitationService(db_session, feed, email_sender).create_invitation(
            alice.uuid, workspace.uuid, "dave@x.com", Role.VIEWER
        )
        await WorkspaceService(db_session, feed).add_collaborator(alice.uuid, workspace.uuid, bob.email, Role.EDITOR)
        return readme

    async def test_owner_deletes_everything(self, db_session, feed, email_sender, workspaces, workspace, alice, bob):
        readme = await self.populate(db_session, feed, email_sender, workspace, alice, bob)

        result = await workspaces.delete_workspace(alice.uuid, workspace.uuid)

        assert result.ok
        assert await WorkspaceRepository(db_session).get_by_uuid(workspace.uuid) is None
        assert await FileRepository(db_session).get_by_uuid(readme.uuid) is None
        assert await FileVersionRepository(db_session).count_by_file(readme.uuid) == 0
        assert await CollaboratorRepository(db_session).get_by_workspace(workspace.uuid) == []
        assert await InvitationRepository(db_session).get_by_workspace(workspace.uuid) == []
        assert await ChatMessageRepository(db_session).get_by_workspace(workspace.uuid) == []

    async def test_only_owner_deletes(self, workspaces, workspace, alice, bob, carol):
        await workspaces.add_collaborator(alice.uuid, workspace.uuid, bob.email, Role.OWNER)

        assert (await workspaces.delete_workspace(bob.uuid, workspace.uuid)).status is ResultStatus.PERMISSION_DENIED
        assert (await workspaces.delete_workspace(carol.uuid, workspace.uuid)).status is ResultStatus.NOT_FOUND

    async def test_failed_step_is_reported_and_retry_completes(
        self, db_session, feed, email_sender, workspaces, workspace, alice, bob, monkeypatch
    ):
        readme = await self.populate(db_session, feed, email_sender, workspace, alice, bob)

        async def unavailable(self, workspace_id):
            raise OperationalError("DELETE FROM chat_messages", {}, ConnectionError("connection reset"))

        with monkeypatch.context() as patch:
            patch.setattr(ChatMessageRepository, "delete_by_workspace", unavailable)
            result = await workspaces.delete_workspace(alice.uuid, workspace.uuid)

        assert result.status is ResultStatus.DEPENDENCY_UNAVAILABLE
        assert result.failed_step == "chat_messages"
        # Шаги до сбоя уже выполнены, пространство еще существует
        assert await FileRepository(db_session).get_by_uuid(readme.uuid) is None
        assert await WorkspaceRepository(db_session).get_by_uuid(workspace.uuid) is not None

        retry = await workspaces.delete_workspace(alice.uuid, workspace.uuid)

        assert retry.ok
        assert await WorkspaceRepository(db_session).get_by_uuid(workspace.uuid) is None


class TestChat:
    async def test_members_send_and_read(self, workspaces, chat, workspace, alice, bob):
        await workspaces.add_collaborator(alice.uuid, workspace.uuid, bob.email, Role.EDITOR)

        sent = await chat.send_message(bob.uuid, workspace.uuid, "hi team")

        assert sent.ok
        messages = (await chat.list_messages(alice.uuid, workspace.uuid)).value
        assert [message.content for message in messages] == ["hi team"]

    async def test_viewer_reads_but_cannot_send(self, workspaces, chat, workspace, alice, carol):
        await workspaces.add_collaborator(alice.uuid, workspace.uuid, carol.email, Role.VIEWER)

        assert (await chat.send_message(carol.uuid, workspace.uuid, "hi")).status is ResultStatus.PERMISSION_DENIED
        assert (await chat.list_messages(carol.uuid, workspace.uuid)).ok

    async def test_empty_message_is_invalid(self, chat, workspace, alice):
        assert (await chat.send_message(alice.uuid, workspace.uuid, "  ")).status is ResultStatus.INVALID

    async def test_stranger_cannot_read(self, chat, workspace, bob):
        assert (await chat.list_messages(bob.uuid, workspace.uuid)).status is ResultStatus.NOT_FOUND

    async def test_owner_clears_history(self, workspaces, chat, workspace, alice, bob):
        await workspaces.add_collaborator(alice.uuid, workspace.uuid, bob.email, Role.EDITOR)
        await chat.send_message(alice.uuid, workspace.uuid, "one")
        await chat.send_message(bob.uuid, workspace.uuid, "two")

        assert (await chat.clear_history(bob.uuid, workspace.uuid)).status is ResultStatus.PERMISSION_DENIED
        assert (await chat.clear_history(alice.uuid, workspace.uuid)).value == 2
        assert (await chat.list_messages(alice.uuid, workspace.uuid)).value == []

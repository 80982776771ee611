import asyncio
import uuid

import pytest
import pytest_asyncio

from docpilot.core.results import ResultStatus
from docpilot.domains.access.entities import Role
from docpilot.domains.collaboration.entities import EditSession, ReconcileOutcome, SessionState
from docpilot.domains.collaboration.notifications import (
    ChangeNotificationAdapter, CollaboratorChange, FileChange, InvitationChange
)
from docpilot.domains.collaboration.services import DocumentSessionService
from docpilot.domains.documents.services import FileService, VersionService
from docpilot.domains.workspaces.services import WorkspaceService


@pytest_asyncio.fixture
async def shared_file(db_session, feed, workspace, alice, bob):
    """Файл с содержимым v1, который редактируют alice и bob"""
    await WorkspaceService(db_session, feed).add_collaborator(alice.uuid, workspace.uuid, bob.email, Role.EDITOR)
    result = await FileService(db_session, feed).create_file(alice.uuid, workspace.uuid, "plan.md", "v1")
    return result.value


@pytest_asyncio.fixture
async def sessions(db_session, feed, shared_file, alice, bob):
    first = DocumentSessionService(db_session, alice.uuid, feed)
    second = DocumentSessionService(db_session, bob.uuid, feed)
    assert (await first.open(shared_file.uuid)).ok
    assert (await second.open(shared_file.uuid)).ok
    yield first, second
    first.close()
    second.close()


class TestEditSession:
    def test_edit_marks_dirty_and_back(self):
        session = EditSession(uuid.uuid4(), "text")

        assert session.edit("text!") is SessionState.DIRTY
        assert session.edit("text") is SessionState.CLEAN

    def test_own_content_is_echo(self):
        session = EditSession(uuid.uuid4(), "a")
        session.edit("b")

        assert session.reconcile("b") is ReconcileOutcome.ECHO
        assert session.reconcile("a") is ReconcileOutcome.NO_CHANGE
        assert session.state is SessionState.DIRTY

    def test_revert_to_earlier_own_save_is_external(self):
        session = EditSession(uuid.uuid4(), "v1")
        session.edit("v2")
        session.complete_save(session.begin_save())
        assert session.reconcile("v3") is ReconcileOutcome.EXTERNAL
        session.accept_external()

        # Кто-то вернул файл к нашему прежнему сохранению
        assert session.reconcile("v2") is ReconcileOutcome.EXTERNAL
        assert session.live_content == "v2"
        assert session.state is SessionState.EXTERNALLY_CHANGED

    def test_saved_content_after_save_is_not_echo(self):
        session = EditSession(uuid.uuid4(), "a")
        session.edit("b")
        session.complete_save(session.begin_save())
        session.edit("c")
        session.complete_save(session.begin_save())
        session.edit("d")

        assert session.reconcile("b") is ReconcileOutcome.EXTERNAL
        assert session.live_content == "b"
        assert session.external_change.conflicting

    def test_echo_while_saving(self):
        session = EditSession(uuid.uuid4(), "a")
        session.edit("b")
        saving = session.begin_save()
        session.live_content = "bc"

        assert session.reconcile(saving) is ReconcileOutcome.ECHO
        assert session.state is SessionState.SAVING

    def test_external_change_without_local_edits(self):
        session = EditSession(uuid.uuid4(), "line 1")

        assert session.reconcile("line 1\nline 2") is ReconcileOutcome.EXTERNAL
        assert session.state is SessionState.EXTERNALLY_CHANGED
        assert session.live_content == "line 1\nline 2"
        assert not session.external_change.conflicting

    def test_external_change_replaces_unsaved_edits(self):
        session = EditSession(uuid.uuid4(), "base")
        session.edit("base + mine")

        assert session.reconcile("base + theirs") is ReconcileOutcome.EXTERNAL
        change = session.external_change
        assert change.conflicting
        assert change.previous_content == "base + mine"
        assert session.live_content == "base + theirs"
        assert not session.has_unsaved_changes

    def test_external_change_during_save_survives_completion(self):
        session = EditSession(uuid.uuid4(), "a")
        session.edit("b")
        saving = session.begin_save()

        assert session.reconcile("z") is ReconcileOutcome.EXTERNAL
        session.complete_save(saving)

        assert session.state is SessionState.EXTERNALLY_CHANGED
        assert session.external_change.incoming_content == "z"

    def test_failed_save_restores_state(self):
        session = EditSession(uuid.uuid4(), "a")
        session.edit("b")
        session.begin_save()
        session.fail_save()

        assert session.state is SessionState.DIRTY
        assert session.begin_save() == "b"

    def test_nothing_to_save(self):
        session = EditSession(uuid.uuid4(), "a")
        assert session.begin_save() is None

    def test_deleted_file_is_not_saved(self):
        session = EditSession(uuid.uuid4(), "a")
        session.edit("b")

        assert session.mark_deleted() is ReconcileOutcome.DELETED
        assert session.begin_save() is None


class TestNotifications:
    def file_event(self, file_id, content="x", operation="update"):
        return {
            "operation": operation,
            "table": "files",
            "row": {
                "uuid": str(file_id),
                "workspace_id": str(uuid.uuid4()),
                "filename": "plan.md",
                "content": content,
                "created_by": str(uuid.uuid4()),
                "extra_column": 1,
            },
            "commit_timestamp": "2025-01-01T00:00:00",
        }

    def test_decode_by_table(self):
        file_id = uuid.uuid4()
        notification = ChangeNotificationAdapter.decode(self.file_event(file_id, "hello"))

        assert isinstance(notification, FileChange)
        assert notification.row.uuid == file_id
        assert notification.to_entity().content == "hello"

    def test_decode_collaborator_and_invitation(self):
        collaborator = ChangeNotificationAdapter.decode({
            "operation": "insert",
            "table": "collaborators",
            "row": {"uuid": str(uuid.uuid4()), "workspace_id": str(uuid.uuid4()),
                    "user_id": str(uuid.uuid4()), "role": "viewer"},
        })
        invitation = ChangeNotificationAdapter.decode({
            "operation": "update",
            "table": "workspace_invitations",
            "row": {"uuid": str(uuid.uuid4()), "workspace_id": str(uuid.uuid4()),
                    "inviter_id": str(uuid.uuid4()), "invitee_email": "Bob@X.com",
                    "role": "editor", "status": "declined", "token": "t",
                    "expires_at": "2025-01-08T00:00:00"},
        })

        assert isinstance(collaborator, CollaboratorChange)
        assert collaborator.to_entity().role is Role.VIEWER
        assert isinstance(invitation, InvitationChange)
        assert invitation.to_entity().invitee_email == "bob@x.com"

    @pytest.mark.parametrize("event", [
        {"operation": "update", "table": "unknown", "row": {}},
        {"operation": "truncate", "table": "files", "row": {}},
        {"operation": "update", "table": "files", "row": {"uuid": "not-a-uuid"}},
        {"table": "files"},
    ])
    def test_undecodable_events_are_dropped(self, event):
        assert ChangeNotificationAdapter.decode(event) is None

    async def test_scoped_subscriptions(self, feed):
        adapter = ChangeNotificationAdapter(feed)
        watched, other = uuid.uuid4(), uuid.uuid4()
        subscription = adapter.subscribe_file(watched)

        await feed.publish("update", "files", self.file_event(watched)["row"])
        await feed.publish("update", "files", self.file_event(other)["row"])

        assert [n.row.uuid for n in adapter.drain(subscription)] == [watched]

        adapter.unsubscribe(subscription)
        await feed.publish("update", "files", self.file_event(watched)["row"])
        assert adapter.drain(subscription) == []
        assert feed.active_subscriptions("files") == []

    async def test_stream_ends_on_unsubscribe(self, feed):
        adapter = ChangeNotificationAdapter(feed)
        file_id = uuid.uuid4()
        subscription = adapter.subscribe_file(file_id)
        await feed.publish("insert", "files", self.file_event(file_id, "one")["row"])
        adapter.unsubscribe(subscription)

        received = [notification.row.content async for notification in adapter.stream(subscription)]

        assert received == ["one"]


class TestDocumentSessions:
    async def test_open_requires_visibility(self, db_session, feed, shared_file, carol):
        service = DocumentSessionService(db_session, carol.uuid, feed)

        result = await service.open(shared_file.uuid)

        assert result.status is ResultStatus.NOT_FOUND
        assert service.subscription is None

    async def test_save_creates_version_and_echo_is_suppressed(self, db_session, sessions, shared_file, alice):
        first, _ = sessions
        first.edit("v2")

        saved = await first.save()

        assert saved.ok
        assert saved.value.version_number == 1
        assert first.process_pending() == [ReconcileOutcome.ECHO]
        assert first.edit_session.state is SessionState.CLEAN

    async def test_external_change_reaches_other_session(self, sessions):
        first, second = sessions
        first.edit("v2")
        await first.save()

        assert second.process_pending() == [ReconcileOutcome.EXTERNAL]
        assert second.edit_session.live_content == "v2"
        assert second.edit_session.state is SessionState.EXTERNALLY_CHANGED
        assert not second.edit_session.external_change.conflicting

    async def test_conflicting_change_is_reported(self, sessions):
        first, second = sessions
        second.edit("v1 + bob")
        first.edit("v1 + alice")
        await first.save()

        assert second.process_pending() == [ReconcileOutcome.EXTERNAL]
        change = second.edit_session.external_change
        assert change.conflicting
        assert change.previous_content == "v1 + bob"
        assert second.edit_session.live_content == "v1 + alice"

    async def test_accepting_external_change_cleans_session(self, sessions):
        first, second = sessions
        first.edit("v2")
        await first.save()
        second.process_pending()

        result = await second.accept_external_changes()

        assert result.ok and result.value is None
        assert second.edit_session.state is SessionState.CLEAN
        assert second.edit_session.external_change is None

    async def test_refetch_is_a_synthetic_notification(self, db_session, feed, sessions, shared_file, alice):
        _, second = sessions
        # Подписка потеряна, изменение приходит только через ручное обновление
        second.notifications.unsubscribe(second.subscription)
        second.subscription = None

        await FileService(db_session, feed).update_content(alice.uuid, shared_file.uuid, "pushed while offline")

        assert second.process_pending() == []
        assert await second.refetch() is ReconcileOutcome.EXTERNAL
        assert second.edit_session.live_content == "pushed while offline"
        assert await second.refetch() is ReconcileOutcome.ECHO

    async def test_deleted_file_notification(self, db_session, feed, sessions, shared_file, alice):
        _, second = sessions
        second.edit("unsaved")

        await FileService(db_session, feed).delete_file(alice.uuid, shared_file.workspace_id, shared_file.uuid)

        assert second.process_pending() == [ReconcileOutcome.DELETED]
        assert second.edit_session.file_deleted
        assert second.edit_session.live_content == "unsaved"
        assert await second.refetch() is ReconcileOutcome.DELETED

    async def test_undecodable_event_leaves_session_untouched(self, sessions):
        first, _ = sessions

        outcome = first.handle_event({"operation": "update", "table": "files", "row": {"uuid": "garbage"}})

        assert outcome is ReconcileOutcome.IGNORED
        assert first.edit_session.state is SessionState.CLEAN

    async def test_switch_file_moves_subscription(self, db_session, feed, sessions, workspace, alice):
        first, _ = sessions
        other = (await FileService(db_session, feed).create_file(alice.uuid, workspace.uuid, "other.md", "o")).value
        old_subscription = first.subscription

        assert (await first.switch_file(other.uuid)).ok

        assert not old_subscription.is_active
        assert first.file_id == other.uuid

    async def test_viewer_save_is_rejected(self, db_session, feed, shared_file, alice, carol):
        await WorkspaceService(db_session, feed).add_collaborator(
            alice.uuid, shared_file.workspace_id, carol.email, Role.VIEWER
        )
        service = DocumentSessionService(db_session, carol.uuid, feed)
        await service.open(shared_file.uuid)
        service.edit("sneaky")

        result = await service.save()

        assert result.status is ResultStatus.PERMISSION_DENIED
        assert service.edit_session.state is SessionState.DIRTY
        service.close()

    async def test_save_without_open_file(self, db_session, feed, alice):
        service = DocumentSessionService(db_session, alice.uuid, feed)

        assert (await service.save()).status is ResultStatus.INVALID
        with pytest.raises(RuntimeError):
            service.edit("text")

    async def test_autosave_saves_dirty_buffer(self, db_session, feed, sessions, shared_file, alice):
        first, _ = sessions
        first.autosave_interval = 0.01
        first.edit("autosaved")
        stop = asyncio.Event()
        task = asyncio.create_task(first.run_autosave(stop))

        for _ in range(200):
            if first.edit_session.state is SessionState.CLEAN:
                break
            await asyncio.sleep(0.01)
        stop.set()
        await task

        versions = (await VersionService(db_session, feed).list_versions(alice.uuid, shared_file.uuid)).value
        assert versions[0].content == "autosaved"
        assert versions[0].change_summary == "Autosave"

    async def test_listen_yields_outcomes_until_unsubscribed(self, sessions):
        first, second = sessions
        first.edit("v2")
        await first.save()
        second.notifications.unsubscribe(second.subscription)

        received = [(notification.row.content, outcome) async for notification, outcome in second.listen()]

        assert received == [("v2", ReconcileOutcome.EXTERNAL)]


class TestWorkspaceScopes:
    async def test_workspace_file_scope(self, db_session, feed, workspace, alice):
        adapter = ChangeNotificationAdapter(feed)
        subscription = adapter.subscribe_workspace_files(workspace.uuid)
        files = FileService(db_session, feed)

        created = (await files.create_file(alice.uuid, workspace.uuid, "a.md", "a")).value
        await files.update_content(alice.uuid, created.uuid, "b")

        assert [(n.operation, n.row.content) for n in adapter.drain(subscription)] == [("insert", "a"), ("update", "b")]
        adapter.unsubscribe(subscription)

    async def test_collaborator_scope(self, db_session, feed, workspace, alice, bob):
        adapter = ChangeNotificationAdapter(feed)
        subscription = adapter.subscribe_collaborators(workspace.uuid)
        service = WorkspaceService(db_session, feed)

        await service.add_collaborator(alice.uuid, workspace.uuid, bob.email, Role.VIEWER)
        await service.remove_collaborator(alice.uuid, workspace.uuid, bob.uuid)

        notifications = adapter.drain(subscription)
        assert [n.operation for n in notifications] == ["insert", "delete"]
        assert all(n.to_entity().user_id == bob.uuid for n in notifications)
        adapter.unsubscribe(subscription)

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
import json
import uuid

from sqlalchemy.exc import ProgrammingError

from docpilot import main
from docpilot.api.ws.sync import ConnectionManager, relay_notifications, stop_relay
from docpilot.domains.access.entities import Role
from docpilot.domains.collaboration.notifications import ChangeNotificationAdapter
from docpilot.domains.documents.services import FileService
from docpilot.domains.identity.entities import User
from docpilot.domains.invitations.services import InvitationService
from docpilot.domains.workspaces.services import WorkspaceService


def token_from(link: str) -> str:
    return link.rsplit("/", 1)[-1]


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


async def test_requests_without_valid_token_are_rejected(client):
    assert (await client.get("/workspaces/")).status_code == 401
    response = await client.get("/workspaces/", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


async def test_new_account_with_taken_email_is_rejected(client, auth_headers, alice):
    impostor = User.create_user(alice.email, "Another Alice")

    response = await client.get("/users/me", headers=auth_headers(impostor))

    assert response.status_code == 409
    assert alice.email in response.json()["detail"]

    me = await client.get("/users/me", headers=auth_headers(alice))
    assert me.json()["uuid"] == str(alice.uuid)


async def test_create_and_list_workspaces(client, auth_headers, alice):
    response = await client.post(
        "/workspaces/", json={"name": "  Roadmap  ", "description": "Q3"}, headers=auth_headers(alice)
    )

    assert response.status_code == 201
    assert response.json()["name"] == "Roadmap"
    assert response.json()["owner_id"] == str(alice.uuid)

    listed = (await client.get("/workspaces/", headers=auth_headers(alice))).json()
    assert listed["total"] == 1


async def test_stranger_gets_not_found(client, auth_headers, workspace, bob):
    response = await client.get(f"/workspaces/{workspace.uuid}", headers=auth_headers(bob))

    assert response.status_code == 404
    assert response.json()["detail"]["status"] == "not_found"


async def test_invitation_flow_over_http(client, auth_headers, email_sender, workspace, alice, bob):
    response = await client.post(
        f"/workspaces/{workspace.uuid}/invitations",
        json={"email": bob.email, "role": "editor"},
        headers=auth_headers(alice)
    )
    assert response.status_code == 201
    body = response.json()
    assert body["email_sent"] is True
    assert "token" not in body["invitation"]
    token = token_from(body["link"])

    resolved = await client.get(f"/invite/{token}")
    assert resolved.status_code == 200
    assert resolved.json()["invitee_email"] == bob.email

    accepted = await client.post(f"/invite/{token}/accept", headers=auth_headers(bob))
    assert accepted.status_code == 200
    assert accepted.json()["role"] == "editor"
    assert accepted.json()["workspace_id"] == str(workspace.uuid)

    again = await client.post(f"/invitations/{body['invitation']['uuid']}/accept", headers=auth_headers(bob))
    assert again.status_code == 200
    assert again.json()["message"] == "Invitation already accepted"

    duplicate = await client.post(
        f"/workspaces/{workspace.uuid}/invitations",
        json={"email": bob.email, "role": "viewer"},
        headers=auth_headers(alice)
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["detail"]["status"] == "already_member"


async def test_invitation_error_statuses(client, auth_headers, db_session, feed, email_sender, workspace, alice, bob):
    await WorkspaceService(db_session, feed).add_collaborator(alice.uuid, workspace.uuid, bob.email, Role.EDITOR)

    forbidden = await client.post(
        f"/workspaces/{workspace.uuid}/invitations",
        json={"email": "zed@docpilot.dev"},
        headers=auth_headers(bob)
    )
    assert forbidden.status_code == 403

    past = datetime.utcnow() - timedelta(days=8)
    created = await InvitationService(db_session, feed, email_sender).create_invitation(
        alice.uuid, workspace.uuid, "zed@docpilot.dev", Role.VIEWER, now=past
    )
    expired = await client.get(f"/invite/{created.value.invitation.token}")
    assert expired.status_code == 410
    assert expired.json()["detail"]["status"] == "expired"

    assert (await client.get("/invite/unknown-token")).status_code == 404


async def test_new_user_sees_pending_invitation(client, auth_headers, db_session, feed, email_sender, workspace, alice):
    await InvitationService(db_session, feed, email_sender).create_invitation(
        alice.uuid, workspace.uuid, "dave@docpilot.dev", Role.EDITOR
    )
    dave = User.create_user("Dave@docpilot.dev", "Dave")

    response = await client.get("/invitations/pending", headers=auth_headers(dave))

    assert response.status_code == 200
    [invitation] = response.json()
    assert invitation["invitee_id"] == str(dave.uuid)
    assert invitation["status"] == "pending"

    me = (await client.get("/users/me", headers=auth_headers(dave))).json()
    assert me["email"] == "dave@docpilot.dev"


async def test_decline_over_http(client, auth_headers, db_session, feed, email_sender, workspace, alice, bob):
    created = (await InvitationService(db_session, feed, email_sender).create_invitation(
        alice.uuid, workspace.uuid, bob.email, Role.EDITOR
    )).value

    declined = await client.post(f"/invitations/{created.invitation.uuid}/decline", headers=auth_headers(bob))
    assert declined.status_code == 200
    assert declined.json()["status"] == "declined"

    accept = await client.post(f"/invitations/{created.invitation.uuid}/accept", headers=auth_headers(bob))
    assert accept.status_code == 409


async def test_files_and_versions_over_http(client, auth_headers, db_session, feed, workspace, alice, carol):
    await WorkspaceService(db_session, feed).add_collaborator(alice.uuid, workspace.uuid, carol.email, Role.VIEWER)

    created = await client.post(
        f"/workspaces/{workspace.uuid}/files",
        json={"filename": "notes.md", "content": "one two"},
        headers=auth_headers(alice)
    )
    assert created.status_code == 201
    file_id = created.json()["uuid"]
    assert created.json()["word_count"] == 2

    saved = await client.put(
        f"/files/{file_id}", json={"content": "one\ntwo\nthree", "change_summary": "add three"},
        headers=auth_headers(alice)
    )
    assert saved.status_code == 200

    denied = await client.put(f"/files/{file_id}", json={"content": "nope"}, headers=auth_headers(carol))
    assert denied.status_code == 403

    versions = (await client.get(f"/files/{file_id}/versions", headers=auth_headers(carol))).json()
    assert [version["change_summary"] for version in versions] == ["add three"]

    diff = await client.get(f"/files/{file_id}/versions/{versions[0]['uuid']}/diff", headers=auth_headers(alice))
    assert diff.json()["added"] == 0 and diff.json()["removed"] == 0

    unconfirmed = await client.post(f"/files/{file_id}/versions/clear", json={}, headers=auth_headers(alice))
    assert unconfirmed.status_code == 400

    cleared = await client.post(f"/files/{file_id}/versions/clear", json={"confirm": True}, headers=auth_headers(alice))
    assert cleared.json()["deleted"] == 1


async def test_plain_diff(client, auth_headers, alice):
    response = await client.post(
        "/diff", json={"old_content": "a\nb", "new_content": "a\nc"}, headers=auth_headers(alice)
    )

    assert [line["type"] for line in response.json()["lines"]] == ["unchanged", "removed", "added"]


async def test_delete_workspace_over_http(client, auth_headers, workspace, alice, bob):
    assert (await client.delete(f"/workspaces/{workspace.uuid}", headers=auth_headers(bob))).status_code == 404

    response = await client.delete(f"/workspaces/{workspace.uuid}", headers=auth_headers(alice))

    assert response.status_code == 204
    assert (await client.get(f"/workspaces/{workspace.uuid}", headers=auth_headers(alice))).status_code == 404


class FakeWebSocket:
    def __init__(self, broken=False):
        self.broken = broken
        self.sent = []

    async def send_text(self, text):
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(text))


async def test_connection_manager_drops_broken_sockets():
    manager = ConnectionManager()
    alice_socket, bob_socket = FakeWebSocket(), FakeWebSocket()

    await manager.connect(alice_socket, "file-1", "alice")
    await manager.connect(bob_socket, "file-1", "bob")
    assert bob_socket.sent[0]["data"]["active_users"] == ["alice", "bob"]
    assert alice_socket.sent[-1]["type"] == "user_joined"

    bob_socket.broken = True
    await manager.broadcast_to_file("file-1", {"type": "cursor", "data": {}}, exclude_user="alice")

    assert list(manager.active_connections["file-1"]) == ["alice"]
    manager.disconnect("file-1", "alice")
    assert "file-1" not in manager.active_connections


async def test_invitation_sweeper_survives_unexpected_errors(db_session, monkeypatch):
    calls = []
    second_pass = asyncio.Event()

    class FlakySweep:
        def __init__(self, session, feed):
            pass

        async def expire_sweep(self):
            calls.append(1)
            if len(calls) == 1:
                raise ProgrammingError("UPDATE workspace_invitations", {}, Exception("relation is missing"))
            second_pass.set()
            return await InvitationService(db_session).expire_sweep()

    @asynccontextmanager
    async def session_factory():
        yield db_session

    monkeypatch.setattr(main, "InvitationService", FlakySweep)
    sweeper = asyncio.create_task(main.run_invitation_sweep(0, session_factory=session_factory))

    await asyncio.wait_for(second_pass.wait(), timeout=5)

    assert not sweeper.done()
    assert len(calls) >= 2
    sweeper.cancel()
    await asyncio.gather(sweeper, return_exceptions=True)


async def test_failed_relay_is_collected_and_logged(db_session, feed, workspace, alice, caplog):
    files = FileService(db_session, feed)
    readme = (await files.create_file(alice.uuid, workspace.uuid, "README.md", "hello")).value
    adapter = ChangeNotificationAdapter(feed)
    subscription = adapter.subscribe_file(readme.uuid)
    relay = asyncio.create_task(relay_notifications(FakeWebSocket(broken=True), adapter, subscription))

    await files.update_content(alice.uuid, readme.uuid, "hello again")
    await asyncio.wait_for(asyncio.wait({relay}), timeout=5)

    with caplog.at_level("ERROR", logger="docpilot.api.ws.sync"):
        await stop_relay(relay)

    adapter.unsubscribe(subscription)
    assert "Relay of file notifications failed" in caplog.text
    assert "socket closed" in caplog.text


async def test_stopping_healthy_relay_is_quiet(feed, caplog):
    adapter = ChangeNotificationAdapter(feed)
    subscription = adapter.subscribe_file(uuid.uuid4())
    relay = asyncio.create_task(relay_notifications(FakeWebSocket(), adapter, subscription))
    await asyncio.sleep(0)

    with caplog.at_level("ERROR", logger="docpilot.api.ws.sync"):
        await stop_relay(relay)

    adapter.unsubscribe(subscription)
    assert relay.cancelled()
    assert not [record for record in caplog.records if record.levelname == "ERROR"]

"""
Tests for the Socket.IO relay: handshake authentication, project rooms,
event re-broadcast and presence.
"""
from collections import defaultdict

import pytest
from socketio.exceptions import ConnectionRefusedError

from taskboard_core import models
from taskboard_core.database import SessionLocal
from taskboard_core.relay import (
    RELAY_EVENTS,
    Connection,
    ConnectionRegistry,
    RealtimeRelay,
    _extract_token,
    project_room,
)
from taskboard_core.security import create_token


class FakeSocketServer:
    """In-memory stand-in for socketio.AsyncServer's handler, room and emit API."""

    def __init__(self):
        self.handlers = {}
        self.connected = set()
        self.room_members = defaultdict(set)
        self.sent = []

    def on(self, event, handler=None, namespace=None):
        self.handlers[event] = handler

    async def emit(self, event, data=None, to=None, room=None, skip_sid=None, namespace=None):
        target = to or room
        if target is None:
            recipients = set(self.connected)
        elif target in self.room_members:
            recipients = set(self.room_members[target])
        else:
            recipients = {target}
        for sid in recipients - {skip_sid}:
            self.sent.append((sid, event, data))

    async def enter_room(self, sid, room, namespace=None):
        self.room_members[room].add(sid)

    async def leave_room(self, sid, room, namespace=None):
        self.room_members[room].discard(sid)

    def rooms(self, sid, namespace=None):
        return [sid] + [room for room, members in self.room_members.items() if sid in members]

    # Client-side simulation

    async def connect(self, sid, token=None, environ=None):
        await self.handlers["connect"](sid, environ or {}, {"token": token} if token else None)
        self.connected.add(sid)

    async def disconnect(self, sid):
        self.connected.discard(sid)
        for members in self.room_members.values():
            members.discard(sid)
        await self.handlers["disconnect"](sid, "client disconnect")

    async def trigger(self, event, sid, data=None):
        await self.handlers[event](sid, data)

    def received(self, sid, event=None):
        return [data for to, name, data in self.sent if to == sid and (event is None or name == event)]


@pytest.fixture
def sio():
    return FakeSocketServer()


@pytest.fixture
def relay(sio, db):
    return RealtimeRelay(sio, SessionLocal, registry=ConnectionRegistry(), enforce_room_access=True)


@pytest.fixture
def team(make_user, make_project):
    """Owner and member of one project plus an outsider."""
    owner = make_user(first_name="Ada", last_name="Lovelace")
    member = make_user(first_name="Grace", last_name="Hopper")
    outsider = make_user(first_name="Eve", last_name="Outsider")
    project = make_project(owner, members=[(member, models.ProjectRole.MEMBER)])
    return owner, member, outsider, project


class TestHandshake:
    """Test connection authentication."""

    async def test_connect_with_valid_token(self, sio, relay, team):
        owner, *_ = team
        await sio.connect("s1", create_token(owner.id))

        assert relay.is_user_online(owner.id)
        assert relay.registry.get("s1").actor == {"id": str(owner.id), "name": "Ada Lovelace", "avatar": None}

    async def test_connect_without_token_refused(self, sio, relay):
        with pytest.raises(ConnectionRefusedError):
            await sio.connect("s1")
        assert len(relay.registry) == 0

    async def test_connect_with_bad_token_refused(self, sio, relay):
        with pytest.raises(ConnectionRefusedError):
            await sio.connect("s1", "not-a-token")

    async def test_connect_deactivated_user_refused(self, sio, relay, make_user):
        user = make_user(is_active=False)
        with pytest.raises(ConnectionRefusedError):
            await sio.connect("s1", create_token(user.id))

    async def test_token_from_authorization_header(self, sio, relay, team):
        owner, *_ = team
        environ = {"HTTP_AUTHORIZATION": f"Bearer {create_token(owner.id)}"}
        await sio.connect("s1", environ=environ)
        assert relay.is_user_online(owner.id)


class TestRooms:
    """Test project room joins."""

    async def test_member_joins(self, sio, relay, team):
        owner, member, _, project = team
        await sio.connect("s1", create_token(member.id))

        await sio.trigger("join-project", "s1", str(project.id))

        assert project_room(project.id) in sio.rooms("s1")

    async def test_outsider_gets_join_error(self, sio, relay, team):
        _, _, outsider, project = team
        await sio.connect("s1", create_token(outsider.id))

        await sio.trigger("join-projects", "s1", [str(project.id)])

        assert project_room(project.id) not in sio.rooms("s1")
        assert sio.received("s1", "join-error") == [{"projectId": str(project.id), "message": "Access denied"}]

    async def test_invalid_project_id(self, sio, relay, team):
        owner, *_ = team
        await sio.connect("s1", create_token(owner.id))
        await sio.trigger("join-project", "s1", "not-a-uuid")
        assert sio.received("s1", "join-error")[0]["message"] == "Invalid project id"

    async def test_outsider_allowed_without_enforcement(self, sio, db, team):
        _, _, outsider, project = team
        RealtimeRelay(sio, SessionLocal, enforce_room_access=False)
        await sio.connect("s1", create_token(outsider.id))

        await sio.trigger("join-project", "s1", str(project.id))

        assert project_room(project.id) in sio.rooms("s1")

    async def test_leave(self, sio, relay, team):
        owner, _, _, project = team
        await sio.connect("s1", create_token(owner.id))
        await sio.trigger("join-project", "s1", str(project.id))
        await sio.trigger("leave-project", "s1", str(project.id))
        assert project_room(project.id) not in sio.rooms("s1")


class TestRelay:
    """Test re-broadcast of client events to project peers."""

    async def _joined(self, sio, team):
        owner, member, outsider, project = team
        await sio.connect("owner", create_token(owner.id))
        await sio.connect("member", create_token(member.id))
        await sio.connect("outsider", create_token(outsider.id))
        await sio.trigger("join-project", "owner", str(project.id))
        await sio.trigger("join-project", "member", str(project.id))
        return owner, member, project

    async def test_event_reaches_peers_only(self, sio, relay, team):
        """Test delivery to joined peers, without echo to the sender or outsiders."""
        owner, _, project = await self._joined(sio, team)

        await sio.trigger("task-moved", "owner", {
            "projectId": str(project.id),
            "taskId": "t-1",
            "fromStatus": "todo",
            "toStatus": "review",
            "position": 2,
            "secret": "dropped",
        })

        [payload] = sio.received("member", "task-moved")
        assert payload["taskId"] == "t-1"
        assert payload["toStatus"] == "review"
        assert payload["movedBy"]["id"] == str(owner.id)
        assert "timestamp" in payload
        assert "secret" not in payload
        assert sio.received("owner", "task-moved") == []
        assert sio.received("outsider", "task-moved") == []

    async def test_typing_events_are_renamed(self, sio, relay, team):
        _, _, project = await self._joined(sio, team)

        await sio.trigger("typing-start", "owner", {"projectId": str(project.id), "taskId": "t-1"})
        await sio.trigger("typing-stop", "owner", {"projectId": str(project.id), "taskId": "t-1"})

        typing = sio.received("member", "user-typing")
        assert [p["isTyping"] for p in typing] == [True, False]
        assert typing[0]["user"]["name"] == "Ada Lovelace"

    async def test_sender_must_have_joined_the_room(self, sio, relay, team):
        owner, member, outsider, project = team
        await sio.connect("member", create_token(member.id))
        await sio.trigger("join-project", "member", str(project.id))
        await sio.connect("outsider", create_token(outsider.id))

        await sio.trigger("task-deleted", "outsider", {"projectId": str(project.id), "taskId": "t-1"})

        assert sio.received("member") == []

    async def test_malformed_payload_ignored(self, sio, relay, team):
        _, _, project = await self._joined(sio, team)
        await sio.trigger("task-created", "owner", "not-a-dict")
        await sio.trigger("task-created", "owner", {"task": {}})
        assert sio.received("member", "task-created") == []

    def test_every_event_has_an_actor_key(self):
        assert all(relay_event.actor_key for relay_event in RELAY_EVENTS.values())


class TestPresence:
    """Test online/offline status broadcasts."""

    async def test_user_online_broadcast(self, sio, relay, team):
        owner, member, *_ = team
        await sio.connect("s1", create_token(owner.id))
        await sio.connect("s2", create_token(member.id))

        await sio.trigger("user-online", "s1")

        [status] = sio.received("s2", "user-status")
        assert status["status"] == "online"
        assert status["userId"] == str(owner.id)
        assert sio.received("s1", "user-status") == []

    async def test_offline_only_after_last_connection(self, sio, relay, team):
        owner, member, *_ = team
        await sio.connect("tab-1", create_token(owner.id))
        await sio.connect("tab-2", create_token(owner.id))
        await sio.connect("peer", create_token(member.id))

        await sio.disconnect("tab-1")
        assert sio.received("peer", "user-status") == []
        assert relay.is_user_online(owner.id)

        await sio.disconnect("tab-2")
        [status] = sio.received("peer", "user-status")
        assert status["status"] == "offline"
        assert not relay.is_user_online(owner.id)


class TestServerHelpers:
    """Test server-side emission helpers."""

    async def test_emit_to_project_and_user(self, sio, relay, team):
        owner, member, _, project = team
        await sio.connect("a", create_token(owner.id))
        await sio.connect("b", create_token(owner.id))
        await sio.connect("c", create_token(member.id))
        await sio.trigger("join-project", "c", str(project.id))

        await relay.emit_to_project(project.id, "project-updated", {"action": "renamed"})
        await relay.emit_to_user(owner.id, "notification", {"text": "hi"})

        assert sio.received("c", "project-updated") == [{"action": "renamed"}]
        assert sio.received("a", "notification") == [{"text": "hi"}]
        assert sio.received("b", "notification") == [{"text": "hi"}]
        assert sio.received("c", "notification") == []

    async def test_emit_to_all(self, sio, relay, team):
        owner, member, *_ = team
        await sio.connect("a", create_token(owner.id))
        await sio.connect("b", create_token(member.id))

        await relay.emit_to_all("maintenance", {"in": 5})

        assert sio.received("a", "maintenance") == [{"in": 5}]
        assert sio.received("b", "maintenance") == [{"in": 5}]

    async def test_connected_users_deduplicated(self, sio, relay, team):
        owner, member, *_ = team
        await sio.connect("a", create_token(owner.id))
        await sio.connect("b", create_token(owner.id))
        await sio.connect("c", create_token(member.id))

        users = relay.get_connected_users()

        assert sorted(u["userId"] for u in users) == sorted([str(owner.id), str(member.id)])


class TestRegistryAndToken:
    """Test the connection table and token extraction."""

    def test_registry(self, make_user):
        user = make_user()
        registry = ConnectionRegistry()
        registry.add(Connection(sid="a", user_id=user.id, actor={}))
        registry.add(Connection(sid="b", user_id=user.id, actor={}))

        assert registry.sids_for_user(user.id) == ["a", "b"]
        assert len(registry.users()) == 1
        assert registry.remove("a").sid == "a"
        assert registry.remove("a") is None
        assert registry.is_online(user.id)

    def test_extract_token(self):
        assert _extract_token({}, {"token": "abc"}) == "abc"
        assert _extract_token({"HTTP_AUTHORIZATION": "Bearer xyz"}, None) == "xyz"
        assert _extract_token({"HTTP_AUTHORIZATION": "Basic xyz"}, None) is None
        assert _extract_token({}, None) is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

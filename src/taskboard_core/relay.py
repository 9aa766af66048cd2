"""Real-time relay over Socket.IO.

Clients authenticate with their session token during the handshake, join
one room per project (``project-<id>``) and emit events that are stamped
with the sender's identity and a server timestamp, then re-broadcast to
every other connection in the room. Nothing is persisted: delivery is
best-effort and at-most-once.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional
from uuid import UUID

from socketio.exceptions import ConnectionRefusedError

from . import identity, permissions
from .errors import TaskboardError

logger = logging.getLogger("taskboard-core.relay")

ROOM_PREFIX = "project-"


def project_room(project_id) -> str:
    return f"{ROOM_PREFIX}{project_id}"


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class RelayEvent:
    """How an inbound client event is re-broadcast to its project room."""

    fields: tuple[str, ...]
    actor_key: str
    outbound: Optional[str] = None
    extra: dict = field(default_factory=dict)


RELAY_EVENTS: dict[str, RelayEvent] = {
    "task-created": RelayEvent(("task",), "createdBy"),
    "task-updated": RelayEvent(("task", "action"), "updatedBy"),
    "task-deleted": RelayEvent(("taskId",), "deletedBy"),
    "task-moved": RelayEvent(("taskId", "fromStatus", "toStatus", "position"), "movedBy"),
    "comment-added": RelayEvent(("taskId", "comment"), "addedBy"),
    "file-uploaded": RelayEvent(("taskId", "file"), "uploadedBy"),
    "time-tracking-updated": RelayEvent(("taskId", "action", "duration"), "updatedBy"),
    "project-updated": RelayEvent(("project", "action"), "updatedBy"),
    "team-updated": RelayEvent(("action", "member"), "updatedBy"),
    "typing-start": RelayEvent(("taskId",), "user", outbound="user-typing", extra={"isTyping": True}),
    "typing-stop": RelayEvent(("taskId",), "user", outbound="user-typing", extra={"isTyping": False}),
}


@dataclass
class Connection:
    """One authenticated Socket.IO connection."""

    sid: str
    user_id: UUID
    actor: dict
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ConnectionRegistry:
    """
    In-memory table of live connections, keyed by connection id.

    A user may hold several connections at once (tabs, devices). The table
    is local to one process; it is mutated only from the event loop.
    """

    def __init__(self):
        self._connections: dict[str, Connection] = {}

    def add(self, connection: Connection) -> None:
        self._connections[connection.sid] = connection

    def remove(self, sid: str) -> Optional[Connection]:
        return self._connections.pop(sid, None)

    def get(self, sid: str) -> Optional[Connection]:
        return self._connections.get(sid)

    def sids_for_user(self, user_id: UUID) -> list[str]:
        return [c.sid for c in self._connections.values() if c.user_id == user_id]

    def is_online(self, user_id: UUID) -> bool:
        return any(c.user_id == user_id for c in self._connections.values())

    def users(self) -> list[Connection]:
        """One entry per online user (their earliest live connection)."""
        seen: dict[UUID, Connection] = {}
        for connection in sorted(self._connections.values(), key=lambda c: c.connected_at):
            seen.setdefault(connection.user_id, connection)
        return list(seen.values())

    def __len__(self) -> int:
        return len(self._connections)


def _extract_token(environ: dict, auth: Any) -> Optional[str]:
    """Token from the handshake auth payload, else from a Bearer Authorization header."""
    if isinstance(auth, dict) and auth.get("token"):
        return str(auth["token"])
    header = environ.get("HTTP_AUTHORIZATION", "")
    if header.startswith("Bearer "):
        return header[len("Bearer "):].strip() or None
    return None


class RealtimeRelay:
    """
    Socket.IO event handlers plus helpers for server-side emissions.

    Args:
        sio: A ``socketio.AsyncServer`` (or anything with the same emit/room API)
        session_factory: Callable returning a new SQLAlchemy session
        registry: Connection table; a fresh one is created when omitted
        enforce_room_access: Require project access before joining a room
    """

    def __init__(
        self,
        sio,
        session_factory: Callable,
        registry: Optional[ConnectionRegistry] = None,
        enforce_room_access: bool = True,
    ):
        self.sio = sio
        self.session_factory = session_factory
        self.registry = registry if registry is not None else ConnectionRegistry()
        self.enforce_room_access = enforce_room_access
        self._register_handlers()

    def _register_handlers(self) -> None:
        self.sio.on("connect", handler=self.on_connect)
        self.sio.on("disconnect", handler=self.on_disconnect)
        self.sio.on("join-projects", handler=self.on_join_projects)
        self.sio.on("join-project", handler=self.on_join_project)
        self.sio.on("leave-project", handler=self.on_leave_project)
        self.sio.on("user-online", handler=self.on_user_online)
        for event in RELAY_EVENTS:
            self.sio.on(event, handler=self._relay_handler(event))

    # ------------------------------------------------------------------
    # Database work (runs in a worker thread)
    # ------------------------------------------------------------------

    def _load_actor(self, token: str) -> tuple[UUID, dict]:
        db = self.session_factory()
        try:
            user = identity.get_active_user(db, token)
            return user.id, {"id": str(user.id), "name": user.full_name, "avatar": user.avatar}
        finally:
            db.close()

    def _can_join(self, user_id: UUID, project_id: UUID) -> bool:
        db = self.session_factory()
        try:
            permissions.check_project_access(db, user_id, project_id)
            return True
        except TaskboardError as e:
            logger.warning(f"Room join refused for user {user_id} on project {project_id}: {e.message}")
            return False
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def on_connect(self, sid: str, environ: dict, auth: Any = None):
        token = _extract_token(environ, auth)
        if not token:
            logger.info(f"Connection {sid} refused: no token")
            raise ConnectionRefusedError("Authentication error: No token provided")

        try:
            user_id, actor = await asyncio.to_thread(self._load_actor, token)
        except TaskboardError as e:
            logger.info(f"Connection {sid} refused: {e.message}")
            raise ConnectionRefusedError("Authentication error: Invalid or inactive user")

        self.registry.add(Connection(sid=sid, user_id=user_id, actor=actor))
        logger.info(f"User {user_id} connected ({sid})")

    async def on_disconnect(self, sid: str, reason: Any = None):
        connection = self.registry.remove(sid)
        if connection is None:
            return

        logger.info(f"User {connection.user_id} disconnected ({sid})")
        if not self.registry.is_online(connection.user_id):
            await self._broadcast_status(sid, connection, "offline")

    async def on_user_online(self, sid: str, data: Any = None):
        connection = self.registry.get(sid)
        if connection is None:
            return
        await self._broadcast_status(sid, connection, "online")

    async def _broadcast_status(self, sid: str, connection: Connection, status: str) -> None:
        await self.sio.emit(
            "user-status",
            {
                "userId": str(connection.user_id),
                "status": status,
                "user": connection.actor,
                "timestamp": utc_timestamp(),
            },
            skip_sid=sid,
        )

    # ------------------------------------------------------------------
    # Rooms
    # ------------------------------------------------------------------

    async def _join(self, sid: str, connection: Connection, raw_project_id: Any) -> bool:
        try:
            project_id = UUID(str(raw_project_id))
        except ValueError:
            await self.sio.emit(
                "join-error",
                {"projectId": raw_project_id, "message": "Invalid project id"},
                to=sid,
            )
            return False

        if self.enforce_room_access:
            allowed = await asyncio.to_thread(self._can_join, connection.user_id, project_id)
            if not allowed:
                await self.sio.emit(
                    "join-error",
                    {"projectId": str(project_id), "message": "Access denied"},
                    to=sid,
                )
                return False

        await self.sio.enter_room(sid, project_room(project_id))
        logger.debug(f"{sid} joined {project_room(project_id)}")
        return True

    async def on_join_project(self, sid: str, project_id: Any = None):
        connection = self.registry.get(sid)
        if connection is None:
            return
        await self._join(sid, connection, project_id)

    async def on_join_projects(self, sid: str, project_ids: Any = None):
        connection = self.registry.get(sid)
        if connection is None:
            return
        if not isinstance(project_ids, list):
            logger.warning(f"Ignoring join-projects from {sid}: expected a list")
            return
        for project_id in project_ids:
            await self._join(sid, connection, project_id)

    async def on_leave_project(self, sid: str, project_id: Any = None):
        await self.sio.leave_room(sid, project_room(project_id))

    # ------------------------------------------------------------------
    # Event relay
    # ------------------------------------------------------------------

    def _relay_handler(self, event: str):
        relay_event = RELAY_EVENTS[event]

        async def handler(sid: str, data: Any = None):
            await self.relay(sid, event, relay_event, data)

        handler.__name__ = f"relay_{event.replace('-', '_')}"
        return handler

    async def relay(self, sid: str, event: str, relay_event: RelayEvent, data: Any) -> None:
        """Stamp an inbound event and re-emit it to the sender's peers in the room."""
        connection = self.registry.get(sid)
        if connection is None:
            return
        if not isinstance(data, dict) or not data.get("projectId"):
            logger.warning(f"Ignoring malformed {event} from {sid}")
            return

        room = project_room(data["projectId"])
        if self.enforce_room_access and room not in self.sio.rooms(sid):
            logger.warning(f"Ignoring {event} from {sid}: not joined to {room}")
            return

        payload = {name: data.get(name) for name in relay_event.fields}
        payload.update(relay_event.extra)
        payload[relay_event.actor_key] = connection.actor
        payload["timestamp"] = utc_timestamp()

        await self.sio.emit(relay_event.outbound or event, payload, room=room, skip_sid=sid)

    # ------------------------------------------------------------------
    # Server-side helpers
    # ------------------------------------------------------------------

    async def emit_to_project(self, project_id, event: str, data: Any) -> None:
        await self.sio.emit(event, data, room=project_room(project_id))

    async def emit_to_user(self, user_id: UUID, event: str, data: Any) -> None:
        for sid in self.registry.sids_for_user(user_id):
            await self.sio.emit(event, data, to=sid)

    async def emit_to_all(self, event: str, data: Any) -> None:
        await self.sio.emit(event, data)

    def get_connected_users(self) -> list[dict]:
        return [
            {
                "userId": str(c.user_id),
                "user": c.actor,
                "connectedAt": c.connected_at.isoformat(),
            }
            for c in self.registry.users()
        ]

    def is_user_online(self, user_id: UUID) -> bool:
        return self.registry.is_online(user_id)

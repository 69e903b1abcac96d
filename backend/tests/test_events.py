"""Tests for the event dispatcher and real-time fan-out."""

import asyncio
from types import SimpleNamespace
from uuid import uuid4

import pytest
from fastapi import WebSocketDisconnect

from taskhub.api.v1.auth import create_access_token
from taskhub.api.v1.websocket import ConnectionManager, project_room
from taskhub.services.events import (
    ALL_EVENTS,
    NOTIFICATION_NEW,
    NOTIFICATIONS_ALL_READ,
    TASK_CREATED,
    TASK_UPDATED,
    DomainEvent,
    EventDispatcher,
)


class FakeSocket:
    """Stands in for a WebSocket; records what was sent."""

    def __init__(self, fail: bool = False):
        self.sent: list[dict] = []
        self.fail = fail

    async def accept(self) -> None:
        pass

    async def send_json(self, message: dict) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(message)


# -----------------------------------------------------------------------------
# Dispatcher
# -----------------------------------------------------------------------------
class TestEventDispatcher:

    async def test_sync_handler_receives_matching_events_only(self):
        dispatcher = EventDispatcher()
        received = []
        dispatcher.subscribe(TASK_CREATED, received.append)

        dispatcher.emit(TASK_CREATED, task_id=1)
        dispatcher.emit(TASK_UPDATED, task_id=1)

        assert [e.name for e in received] == [TASK_CREATED]
        assert received[0].payload == {"task_id": 1}

    async def test_wildcard_handler_receives_everything(self):
        dispatcher = EventDispatcher()
        received = []
        dispatcher.subscribe(ALL_EVENTS, received.append)

        dispatcher.emit(TASK_CREATED)
        dispatcher.emit(NOTIFICATION_NEW)

        assert [e.name for e in received] == [TASK_CREATED, NOTIFICATION_NEW]

    async def test_async_handler_runs_detached(self):
        dispatcher = EventDispatcher()
        received = []

        async def handler(event: DomainEvent) -> None:
            await asyncio.sleep(0)
            received.append(event.name)

        dispatcher.subscribe(TASK_CREATED, handler)
        dispatcher.emit(TASK_CREATED)
        await dispatcher.drain()

        assert received == [TASK_CREATED]

    async def test_failing_handlers_do_not_stop_delivery(self):
        dispatcher = EventDispatcher()
        received = []

        def broken(event: DomainEvent) -> None:
            raise ValueError("boom")

        async def broken_async(event: DomainEvent) -> None:
            raise ValueError("async boom")

        dispatcher.subscribe(TASK_CREATED, broken)
        dispatcher.subscribe(TASK_CREATED, broken_async)
        dispatcher.subscribe(TASK_CREATED, received.append)

        event = dispatcher.emit(TASK_CREATED, task_id=7)
        await dispatcher.drain()

        assert received == [event]

    async def test_unsubscribe(self):
        dispatcher = EventDispatcher()
        received = []
        dispatcher.subscribe(TASK_CREATED, received.append)
        dispatcher.unsubscribe(TASK_CREATED, received.append)

        dispatcher.emit(TASK_CREATED)

        assert received == []

    async def test_pending_counts_in_flight_deliveries(self):
        dispatcher = EventDispatcher()
        release = asyncio.Event()

        async def slow(event: DomainEvent) -> None:
            await release.wait()

        dispatcher.subscribe(TASK_CREATED, slow)
        dispatcher.emit(TASK_CREATED)
        assert dispatcher.pending == 1

        release.set()
        await dispatcher.drain()
        assert dispatcher.pending == 0

    def test_coroutine_handler_without_loop_is_skipped(self):
        dispatcher = EventDispatcher()
        received = []

        async def handler(event: DomainEvent) -> None:
            received.append(event)

        dispatcher.subscribe(TASK_CREATED, handler)
        dispatcher.emit(TASK_CREATED)

        assert received == []

    def test_to_message_is_json_friendly(self):
        task_id = uuid4()
        event = DomainEvent(name=TASK_UPDATED, payload={"task_id": task_id, "changes": ["title"]})

        message = event.to_message()

        assert message["type"] == TASK_UPDATED
        assert message["data"] == {"task_id": str(task_id), "changes": ["title"]}
        assert isinstance(message["timestamp"], str)


# -----------------------------------------------------------------------------
# Connection manager routing
# -----------------------------------------------------------------------------
class TestConnectionManager:

    async def test_project_events_reach_the_project_room(self):
        manager = ConnectionManager()
        watcher, elsewhere = FakeSocket(), FakeSocket()
        project_id, other_project = uuid4(), uuid4()
        await manager.connect(watcher, "u1", str(project_id))
        await manager.connect(elsewhere, "u2", str(other_project))

        await manager.handle_event(
            DomainEvent(name=TASK_CREATED, payload={"project_id": project_id, "task_id": uuid4()})
        )

        assert [m["type"] for m in watcher.sent] == [TASK_CREATED]
        assert elsewhere.sent == []

    async def test_notifications_go_to_the_recipient(self):
        manager = ConnectionManager()
        recipient, bystander = FakeSocket(), FakeSocket()
        project_id, user_id = str(uuid4()), uuid4()
        await manager.connect(recipient, str(user_id), project_id)
        await manager.connect(bystander, "someone-else", project_id)

        await manager.handle_event(
            DomainEvent(name=NOTIFICATION_NEW, payload={"user_id": user_id, "title": "Hi"})
        )

        assert len(recipient.sent) == 1
        assert bystander.sent == []

    async def test_closed_socket_does_not_break_broadcast(self):
        manager = ConnectionManager()
        dead, alive = FakeSocket(fail=True), FakeSocket()
        project_id = str(uuid4())
        await manager.connect(dead, "u1", project_id)
        await manager.connect(alive, "u2", project_id)

        await manager.broadcast_to_project(project_id, {"type": "ping"})

        assert alive.sent == [{"type": "ping"}]

    async def test_disconnect_empties_rooms(self):
        manager = ConnectionManager()
        socket = FakeSocket()
        project_id = str(uuid4())
        await manager.connect(socket, "u1", project_id)

        manager.disconnect(socket, "u1", project_id)

        assert manager.room_size(project_id) == 0
        assert manager.user_connections == {}

    async def test_read_receipts_go_to_the_recipient(self):
        manager = ConnectionManager()
        recipient, bystander = FakeSocket(), FakeSocket()
        project_id, user_id = str(uuid4()), uuid4()
        await manager.connect(recipient, str(user_id), project_id)
        await manager.connect(bystander, "someone-else", project_id)

        await manager.handle_event(
            DomainEvent(name=NOTIFICATIONS_ALL_READ, payload={"user_id": user_id, "count": 3})
        )

        assert [m["type"] for m in recipient.sent] == [NOTIFICATIONS_ALL_READ]
        assert bystander.sent == []
        assert manager.connection_count == 2


# -----------------------------------------------------------------------------
# Project room endpoint
# -----------------------------------------------------------------------------
class ScriptedSocket(FakeSocket):
    """FakeSocket that replays incoming frames, then raises ``error``."""

    def __init__(self, app, frames: list[str], error: Exception):
        super().__init__()
        self.app = app
        self.frames = list(frames)
        self.error = error
        self.close_code = None

    async def receive_text(self) -> str:
        if self.frames:
            return self.frames.pop(0)
        raise self.error

    async def close(self, code: int = 1000) -> None:
        self.close_code = code


def _app(manager: ConnectionManager, session_factory) -> SimpleNamespace:
    return SimpleNamespace(
        state=SimpleNamespace(connections=manager, session_factory=session_factory)
    )


class TestProjectRoom:

    async def test_ping_then_disconnect_leaves_no_connection(self, session_factory, org):
        manager = ConnectionManager()
        socket = ScriptedSocket(
            _app(manager, session_factory), ['{"type": "ping"}', "not json"], WebSocketDisconnect()
        )

        await project_room(
            socket, org.project.id, token=create_access_token(org.owner.id, org.tenant.id)
        )

        assert socket.sent == [{"type": "pong"}, {"type": "error", "message": "Invalid JSON"}]
        assert manager.connection_count == 0

    async def test_transport_error_still_unregisters(self, session_factory, org):
        manager = ConnectionManager()
        socket = ScriptedSocket(_app(manager, session_factory), [], RuntimeError("transport lost"))

        with pytest.raises(RuntimeError, match="transport lost"):
            await project_room(
                socket, org.project.id, token=create_access_token(org.owner.id, org.tenant.id)
            )

        assert manager.room_size(str(org.project.id)) == 0
        assert manager.connection_count == 0

    async def test_outsider_is_refused(self, session_factory, org):
        manager = ConnectionManager()
        socket = ScriptedSocket(_app(manager, session_factory), [], WebSocketDisconnect())

        await project_room(
            socket, org.project.id, token=create_access_token(org.outsider.id, org.tenant.id)
        )

        assert socket.close_code == 1008
        assert manager.connection_count == 0

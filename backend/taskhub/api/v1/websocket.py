"""WebSocket endpoints for real-time project updates.

Clients join a project room with ``/ws/projects/{project_id}?token=...``.
The connection manager subscribes to the event dispatcher and forwards each
domain event to the room of the project it concerns; ``notification:*``
events go to the recipient's own connections.
"""

import json
from typing import Dict, Set
from uuid import UUID

import structlog
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from taskhub.api.v1.auth import resolve_token
from taskhub.exceptions import TaskhubError
from taskhub.services.access_control import check_project_access
from taskhub.services.events import USER_EVENTS, DomainEvent

router = APIRouter(prefix="/ws", tags=["WebSocket"])
logger = structlog.get_logger()


class ConnectionManager:
    """Manages WebSocket connections grouped by project and by user."""

    def __init__(self):
        # Map of project_id -> set of websocket connections
        self.project_connections: Dict[str, Set[WebSocket]] = {}
        # Map of user_id -> set of websocket connections
        self.user_connections: Dict[str, Set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, user_id: str, project_id: str) -> None:
        """Accept and register a websocket connection."""
        await websocket.accept()
        self.project_connections.setdefault(project_id, set()).add(websocket)
        self.user_connections.setdefault(user_id, set()).add(websocket)

    def disconnect(self, websocket: WebSocket, user_id: str, project_id: str) -> None:
        """Unregister a websocket connection."""
        for registry, key in ((self.project_connections, project_id), (self.user_connections, user_id)):
            connections = registry.get(key)
            if connections is None:
                continue
            connections.discard(websocket)
            if not connections:
                del registry[key]

    async def _send_all(self, connections: Set[WebSocket], message: dict) -> None:
        for connection in list(connections):
            try:
                await connection.send_json(message)
            except (RuntimeError, WebSocketDisconnect) as e:
                # Closed between the event and the send; the receive loop cleans up
                logger.debug("websocket_send_failed", error=str(e))

    async def broadcast_to_project(self, project_id: str, message: dict) -> None:
        """Send a message to everyone watching a project."""
        await self._send_all(self.project_connections.get(project_id, set()), message)

    async def send_to_user(self, user_id: str, message: dict) -> None:
        await self._send_all(self.user_connections.get(user_id, set()), message)

    async def handle_event(self, event: DomainEvent) -> None:
        """Event dispatcher subscriber: route a domain event to its room."""
        message = event.to_message()
        if event.name in USER_EVENTS:
            await self.send_to_user(message["data"]["user_id"], message)
            return

        project_id = message["data"].get("project_id")
        if project_id:
            await self.broadcast_to_project(project_id, message)

    def room_size(self, project_id: str) -> int:
        return len(self.project_connections.get(project_id, set()))

    @property
    def connection_count(self) -> int:
        return sum(len(connections) for connections in self.user_connections.values())


@router.websocket("/projects/{project_id}")
async def project_room(
    websocket: WebSocket,
    project_id: UUID,
    token: str = Query(...),
):
    """
    Join a project room for real-time updates.

    Query parameters:
    - token: Required. The bearer access token of the connecting user.
    """
    manager: ConnectionManager = websocket.app.state.connections
    session_factory = websocket.app.state.session_factory

    try:
        async with session_factory() as db:
            user = await resolve_token(token, db)
            await check_project_access(db, project_id, user.tenant_id, user.id, "member")
    except TaskhubError as e:
        logger.info("websocket_rejected", project_id=str(project_id), reason=e.code)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    user_id, room = str(user.id), str(project_id)
    await manager.connect(websocket, user_id, room)
    logger.info("websocket_connected", project_id=room, user_id=user_id)

    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "message": "Invalid JSON"})
                continue

            if message.get("type") == "ping":
                await websocket.send_json({"type": "pong"})

    except WebSocketDisconnect:
        logger.info("websocket_disconnected", project_id=room, user_id=user_id)
    finally:
        manager.disconnect(websocket, user_id, room)

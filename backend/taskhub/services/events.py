"""In-process domain event dispatcher.

Services emit events after a mutation has been committed. Delivery is fire
and forget: a failing or slow subscriber never blocks or fails the operation
that emitted the event. Coroutine subscribers run as detached tasks; plain
callables run inline inside a guard.
"""

import asyncio
import inspect
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Union
from uuid import UUID

import structlog

logger = structlog.get_logger()

TASK_CREATED = "task:created"
TASK_UPDATED = "task:updated"
TASK_DELETED = "task:deleted"
TASK_ASSIGNED = "task:assigned"
COMMENT_ADDED = "comment:added"
PROJECT_UPDATED = "project:updated"
PROJECT_MEMBER_ADDED = "project:member:added"
NOTIFICATION_NEW = "notification:new"
NOTIFICATION_READ = "notification:read"
NOTIFICATIONS_ALL_READ = "notifications:all:read"

# Delivered to the recipient user rather than a project room
USER_EVENTS = (NOTIFICATION_NEW, NOTIFICATION_READ, NOTIFICATIONS_ALL_READ)

# Subscribe to this name to receive every event
ALL_EVENTS = "*"


@dataclass
class DomainEvent:
    """An event emitted by the core after a successful mutation."""

    name: str
    payload: dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_message(self) -> dict[str, Any]:
        """JSON-friendly representation for sockets and logs."""
        return {
            "type": self.name,
            "data": {k: _jsonable(v) for k, v in self.payload.items()},
            "timestamp": self.timestamp.isoformat(),
        }


EventHandler = Callable[[DomainEvent], Union[None, Awaitable[None]]]


def _jsonable(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    return value


class EventDispatcher:
    """Publish/subscribe hub for domain events."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        """Register a handler for an event name (or ``ALL_EVENTS``)."""
        self._handlers[event_name].append(handler)

    def unsubscribe(self, event_name: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event_name, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event_name: str, **payload: Any) -> DomainEvent:
        """Deliver an event to its subscribers and return it.

        Never raises: subscriber errors are logged and dropped.
        """
        event = DomainEvent(name=event_name, payload=payload)
        handlers = [*self._handlers.get(event_name, []), *self._handlers.get(ALL_EVENTS, [])]

        logger.debug("event_emitted", event_name=event_name, handlers=len(handlers))

        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    self._schedule(event, result)
            except Exception as e:
                logger.warning(
                    "event_handler_failed",
                    event_name=event_name,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(e),
                )

        return event

    def _schedule(self, event: DomainEvent, awaitable: Awaitable[None]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No running loop: drop the delivery rather than block the caller
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            logger.warning("event_handler_skipped_no_loop", event_name=event.name)
            return

        task = asyncio.ensure_future(awaitable, loop=loop)
        self._pending.add(task)

        def _done(t: asyncio.Task) -> None:
            self._pending.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.warning(
                    "event_handler_failed",
                    event_name=event.name,
                    error=str(exc),
                )

        task.add_done_callback(_done)

    @property
    def pending(self) -> int:
        """Number of async handler deliveries still running."""
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for in-flight async handlers (used at shutdown and in tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

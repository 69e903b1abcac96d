"""Request ID middleware for request tracing.

A plain ASGI middleware: the id is stored in ``scope["state"]`` (read back
as ``request.state.request_id`` by the logging middleware) and added to the
response start message.
"""

import re
import uuid

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 128

_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:-]+$")


def resolve_request_id(incoming: str | None) -> str:
    """Reuse the caller's id when it is short and plain, otherwise mint one."""
    if (
        incoming
        and len(incoming) <= MAX_REQUEST_ID_LENGTH
        and _REQUEST_ID_PATTERN.match(incoming)
    ):
        return incoming
    return uuid.uuid4().hex


class RequestIDMiddleware:
    """Tags each HTTP request with an id and echoes it in ``X-Request-ID``."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            return await self.app(scope, receive, send)

        request_id = resolve_request_id(Headers(scope=scope).get(REQUEST_ID_HEADER))
        scope.setdefault("state", {})["request_id"] = request_id

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message)[REQUEST_ID_HEADER] = request_id
            await send(message)

        return await self.app(scope, receive, send_with_request_id)

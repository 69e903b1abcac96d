"""Shared request dependencies and the response envelope."""

from typing import Annotated, Any

from fastapi import Depends, Query, Request

from taskhub.ai.service import TaskPrioritizer
from taskhub.config import get_settings
from taskhub.services.events import EventDispatcher

settings = get_settings()


def get_events(request: Request) -> EventDispatcher:
    """The application's event dispatcher, created at start-up."""
    return request.app.state.events


def get_prioritizer(request: Request) -> TaskPrioritizer:
    return request.app.state.prioritizer


Events = Annotated[EventDispatcher, Depends(get_events)]
Prioritizer = Annotated[TaskPrioritizer, Depends(get_prioritizer)]


class Pagination:
    """``page``/``page_size`` query parameters, bounded by settings."""

    def __init__(
        self,
        page: int = Query(1, ge=1),
        page_size: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    ):
        self.page = page
        self.page_size = page_size

    def meta(self, total: int) -> dict[str, int]:
        return {
            "page": self.page,
            "page_size": self.page_size,
            "total": total,
            "pages": (total + self.page_size - 1) // self.page_size,
        }


def envelope(data: Any = None, message: str | None = None, **extra: Any) -> dict[str, Any]:
    """Wrap a payload as ``{"success": true, "data": ..., "message": ...}``."""
    body: dict[str, Any] = {"success": True, "data": data}
    if message:
        body["message"] = message
    body.update(extra)
    return body

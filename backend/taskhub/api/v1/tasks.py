"""Tasks API endpoints."""

from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.api.v1.auth import CurrentUser
from taskhub.api.v1.common import Events, Pagination, envelope
from taskhub.db.session import get_db_session
from taskhub.models.activity import TaskActivity
from taskhub.models.project import Task, TaskComment
from taskhub.services.dependency import DependencyService
from taskhub.services.task import TaskService

router = APIRouter()
# Mounted under /projects for the project-scoped collection routes
project_router = APIRouter()
logger = structlog.get_logger()


# Request Models
class TaskCreate(BaseModel):
    """Create a new task."""

    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    priority: str = "medium"
    due_date: datetime | None = None
    start_date: datetime | None = None
    estimated_hours: float | None = None
    assignees: list[UUID] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    parent_task_id: UUID | None = None


class TaskUpdate(BaseModel):
    """Partial task update; only fields present in the body are applied."""

    title: str | None = None
    description: str | None = None
    status: str | None = None
    priority: str | None = None
    due_date: datetime | None = None
    start_date: datetime | None = None
    estimated_hours: float | None = None
    actual_hours: float | None = None
    assignees: list[UUID] | None = None
    tags: list[str] | None = None
    parent_task_id: UUID | None = None


class TaskStatusUpdate(BaseModel):
    status: str | None = None


class DependencyCreate(BaseModel):
    """Add a dependency edge from this task to another."""

    dependency_task_id: UUID
    type: str = "blocks"


class CommentCreate(BaseModel):
    text: str = Field(..., max_length=5000)


# Response helpers
def _task_to_response(task: Task) -> dict[str, Any]:
    """Convert task model to response dict with assignees and edges."""
    return {
        "id": task.id,
        "tenant_id": task.tenant_id,
        "project_id": task.project_id,
        "parent_task_id": task.parent_task_id,
        "created_by_id": task.created_by_id,
        "title": task.title,
        "description": task.description,
        "status": task.status,
        "priority": task.priority,
        "due_date": task.due_date,
        "start_date": task.start_date,
        "completed_at": task.completed_at,
        "estimated_hours": task.estimated_hours,
        "actual_hours": task.actual_hours,
        "tags": task.tags or [],
        "assignees": task.assignee_ids,
        "dependencies": [
            {"task_id": d.depends_on_id, "type": d.dependency_type}
            for d in task.dependencies
        ],
        "ai_metadata": task.ai_metadata or {},
        "created_at": task.created_at,
        "updated_at": task.updated_at,
    }


def _comment_to_response(comment: TaskComment) -> dict[str, Any]:
    return {
        "id": comment.id,
        "task_id": comment.task_id,
        "user_id": comment.user_id,
        "text": comment.text,
        "created_at": comment.created_at,
    }


def _activity_to_response(entry: TaskActivity) -> dict[str, Any]:
    return {
        "id": entry.id,
        "user_id": entry.user_id,
        "action": entry.action,
        "details": entry.details,
        "timestamp": entry.timestamp,
    }


# =========================================================================
# Project-scoped collection
# =========================================================================


@project_router.post("/{project_id}/tasks", status_code=status.HTTP_201_CREATED)
async def create_task(
    project_id: UUID,
    task_data: TaskCreate,
    current_user: CurrentUser,
    events: Events,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Create a task in a project."""
    service = TaskService(db, events)
    task = await service.create_task(
        project_id=project_id,
        user_id=current_user.id,
        tenant_id=current_user.tenant_id,
        **task_data.model_dump(),
    )
    return envelope(_task_to_response(task), "Task created successfully")


@project_router.get("/{project_id}/tasks")
async def list_tasks(
    project_id: UUID,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
    status: str | None = None,
    assignee_id: UUID | None = None,
    parent_task_id: UUID | None = None,
    search: str | None = Query(None, max_length=100),
) -> dict:
    """List tasks in a project with filtering."""
    tasks = await TaskService(db).list_project_tasks(
        project_id,
        current_user.id,
        current_user.tenant_id,
        status=status,
        assignee_id=assignee_id,
        parent_task_id=parent_task_id,
        search=search,
    )
    return envelope([_task_to_response(t) for t in tasks], count=len(tasks))


# =========================================================================
# Single task
# =========================================================================


@router.get("/{task_id}")
async def get_task(
    task_id: UUID,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    task = await TaskService(db).get_task(task_id, current_user.id, current_user.tenant_id)
    return envelope(_task_to_response(task))


@router.put("/{task_id}")
async def update_task(
    task_id: UUID,
    task_data: TaskUpdate,
    current_user: CurrentUser,
    events: Events,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Update a task. Fields absent from the body are left untouched."""
    task = await TaskService(db, events).update_task(
        task_id,
        task_data.model_dump(exclude_unset=True),
        current_user.id,
        current_user.tenant_id,
    )
    return envelope(_task_to_response(task), "Task updated successfully")


@router.patch("/{task_id}/status")
async def update_task_status(
    task_id: UUID,
    status_data: TaskStatusUpdate,
    current_user: CurrentUser,
    events: Events,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    task = await TaskService(db, events).update_status(
        task_id, status_data.status, current_user.id, current_user.tenant_id
    )
    return envelope(_task_to_response(task), "Task status updated successfully")


@router.delete("/{task_id}")
async def delete_task(
    task_id: UUID,
    current_user: CurrentUser,
    events: Events,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Delete a task. Project managers only."""
    await TaskService(db, events).delete_task(task_id, current_user.id, current_user.tenant_id)
    return envelope(None, "Task deleted successfully")


@router.get("/{task_id}/subtasks")
async def list_subtasks(
    task_id: UUID,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    subtasks = await TaskService(db).get_subtasks(task_id, current_user.id, current_user.tenant_id)
    return envelope([_task_to_response(t) for t in subtasks], count=len(subtasks))


@router.get("/{task_id}/can-start")
async def can_start_task(
    task_id: UUID,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Whether every blocked-by dependency of the task is done."""
    task, can_start = await TaskService(db).can_start(
        task_id, current_user.id, current_user.tenant_id
    )
    return envelope({"task_id": task.id, "can_start": can_start})


# =========================================================================
# Dependencies
# =========================================================================


@router.post("/{task_id}/dependencies")
async def add_dependency(
    task_id: UUID,
    dependency: DependencyCreate,
    current_user: CurrentUser,
    events: Events,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    task = await DependencyService(db, events).add_dependency(
        task_id,
        dependency.dependency_task_id,
        dependency.type,
        current_user.id,
        current_user.tenant_id,
    )
    return envelope(_task_to_response(task), "Dependency added successfully")


@router.delete("/{task_id}/dependencies/{dependency_id}")
async def remove_dependency(
    task_id: UUID,
    dependency_id: UUID,
    current_user: CurrentUser,
    events: Events,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    task = await DependencyService(db, events).remove_dependency(
        task_id, dependency_id, current_user.id, current_user.tenant_id
    )
    return envelope(_task_to_response(task), "Dependency removed successfully")


# =========================================================================
# Comments and activity
# =========================================================================


@router.post("/{task_id}/comments", status_code=status.HTTP_201_CREATED)
async def create_comment(
    task_id: UUID,
    comment_data: CommentCreate,
    current_user: CurrentUser,
    events: Events,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    comment = await TaskService(db, events).add_comment(
        task_id, comment_data.text, current_user.id, current_user.tenant_id
    )
    return envelope(_comment_to_response(comment), "Comment added successfully")


@router.get("/{task_id}/comments")
async def list_comments(
    task_id: UUID,
    current_user: CurrentUser,
    pagination: Pagination = Depends(),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    comments, total = await TaskService(db).list_comments(
        task_id,
        current_user.id,
        current_user.tenant_id,
        page=pagination.page,
        page_size=pagination.page_size,
    )
    return envelope(
        [_comment_to_response(c) for c in comments],
        pagination=pagination.meta(total),
    )


@router.get("/{task_id}/activity")
async def list_activity(
    task_id: UUID,
    current_user: CurrentUser,
    pagination: Pagination = Depends(),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Activity log of a task, oldest first."""
    entries, total = await TaskService(db).list_activity(
        task_id,
        current_user.id,
        current_user.tenant_id,
        page=pagination.page,
        page_size=pagination.page_size,
    )
    return envelope(
        [_activity_to_response(e) for e in entries],
        pagination=pagination.meta(total),
    )

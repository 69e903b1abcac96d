"""Projects API endpoints."""

from datetime import date
from typing import Any
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.api.v1.auth import CurrentUser
from taskhub.api.v1.common import Events, envelope
from taskhub.db.session import get_db_session
from taskhub.models.project import Project, ProjectMember
from taskhub.services.project import ProjectService

router = APIRouter()
logger = structlog.get_logger()


# Request Models
class ProjectCreate(BaseModel):
    """Create a new project."""

    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(None, max_length=500)
    priority: str = "medium"
    start_date: date | None = None
    end_date: date | None = None
    settings: dict | None = None


class ProjectUpdate(BaseModel):
    """Update a project."""

    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = Field(None, max_length=500)
    status: str | None = None
    priority: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    settings: dict | None = None


class ProjectMemberAdd(BaseModel):
    """Add a member to a project."""

    user_id: UUID
    role: str = "member"


# Response helpers
def _member_to_response(member: ProjectMember) -> dict[str, Any]:
    return {
        "user_id": member.user_id,
        "name": member.user.name if member.user else None,
        "email": member.user.email if member.user else None,
        "role": member.role,
        "joined_at": member.joined_at,
    }


def _project_to_response(project: Project) -> dict[str, Any]:
    """Convert project model to response dict with members and counters."""
    return {
        "id": project.id,
        "tenant_id": project.tenant_id,
        "name": project.name,
        "description": project.description,
        "status": project.status,
        "priority": project.priority,
        "start_date": project.start_date,
        "end_date": project.end_date,
        "owner_id": project.owner_id,
        "owner_name": project.owner.name if project.owner else None,
        "members": [_member_to_response(m) for m in project.members],
        "settings": project.settings or {},
        "metadata": project.counters,
        "progress": project.progress,
        "created_at": project.created_at,
        "updated_at": project.updated_at,
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_project(
    project_data: ProjectCreate,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Create a project; the caller becomes its owner and first manager."""
    project = await ProjectService(db).create_project(
        user_id=current_user.id,
        tenant_id=current_user.tenant_id,
        **project_data.model_dump(),
    )
    return envelope(_project_to_response(project), "Project created successfully")


@router.get("")
async def list_projects(
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
    status: str | None = None,
    priority: str | None = None,
    search: str | None = Query(None, max_length=100),
) -> dict:
    """List projects the caller owns or belongs to."""
    projects = await ProjectService(db).list_projects(
        current_user.id,
        current_user.tenant_id,
        status=status,
        priority=priority,
        search=search,
    )
    return envelope([_project_to_response(p) for p in projects], count=len(projects))


@router.get("/{project_id}")
async def get_project(
    project_id: UUID,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    project = await ProjectService(db).get_project(
        project_id, current_user.id, current_user.tenant_id
    )
    return envelope(_project_to_response(project))


@router.put("/{project_id}")
async def update_project(
    project_id: UUID,
    project_data: ProjectUpdate,
    current_user: CurrentUser,
    events: Events,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    project = await ProjectService(db, events).update_project(
        project_id,
        project_data.model_dump(exclude_unset=True),
        current_user.id,
        current_user.tenant_id,
    )
    return envelope(_project_to_response(project), "Project updated successfully")


@router.delete("/{project_id}")
async def delete_project(
    project_id: UUID,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Delete a project and its tasks. Owner only."""
    await ProjectService(db).delete_project(project_id, current_user.id, current_user.tenant_id)
    return envelope(None, "Project deleted successfully")


@router.post("/{project_id}/members", status_code=status.HTTP_201_CREATED)
async def add_project_member(
    project_id: UUID,
    member_data: ProjectMemberAdd,
    current_user: CurrentUser,
    events: Events,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    project = await ProjectService(db, events).add_member(
        project_id,
        member_data.user_id,
        current_user.id,
        current_user.tenant_id,
        role=member_data.role,
    )
    return envelope(_project_to_response(project), "Member added successfully")


@router.delete("/{project_id}/members/{user_id}")
async def remove_project_member(
    project_id: UUID,
    user_id: UUID,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    project = await ProjectService(db).remove_member(
        project_id, user_id, current_user.id, current_user.tenant_id
    )
    return envelope(_project_to_response(project), "Member removed successfully")

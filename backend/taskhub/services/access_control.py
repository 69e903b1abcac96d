"""Project access control.

Two project roles exist: ``manager`` and ``member``. The project owner always
resolves to ``manager`` whether or not it appears in the member list. Every
lookup is scoped by tenant, so a project in another tenant is simply not
found.
"""

from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.exceptions import AuthorizationError, NotFoundError
from taskhub.models.project import Project, Task

logger = structlog.get_logger()


# Role hierarchy for permission checking (higher = more permissions)
ROLE_HIERARCHY = {"manager": 2, "member": 1}


def has_sufficient_role(user_role: str | None, required_role: str | None) -> bool:
    """Check if user_role meets or exceeds required_role."""
    if user_role is None:
        return False
    if required_role is None:
        return True
    return ROLE_HIERARCHY.get(user_role, 0) >= ROLE_HIERARCHY.get(required_role, 0)


def get_member_role(project: Project, user_id: UUID) -> str | None:
    """Resolve a user's role on a project, or None when not a member."""
    if project.owner_id == user_id:
        return "manager"
    for member in project.members:
        if member.user_id == user_id:
            return member.role
    return None


def is_member(project: Project, user_id: UUID) -> bool:
    """A project member is anyone in the member list, or the owner."""
    return get_member_role(project, user_id) is not None


def require_role(
    project: Project,
    user_id: UUID,
    required_role: str | None = "member",
    message: str | None = None,
) -> str:
    """Return the user's role, raising AuthorizationError when insufficient."""
    role = get_member_role(project, user_id)
    if role is None:
        logger.info(
            "project_access_denied",
            project_id=str(project.id),
            user_id=str(user_id),
            reason="not_a_member",
        )
        raise AuthorizationError(message or "You are not a member of this project")

    if not has_sufficient_role(role, required_role):
        logger.info(
            "project_access_denied",
            project_id=str(project.id),
            user_id=str(user_id),
            role=role,
            required_role=required_role,
        )
        raise AuthorizationError(message or f"Only project {required_role}s can perform this action")

    return role


async def get_project(db: AsyncSession, project_id: UUID, tenant_id: UUID) -> Project:
    """Load a project within the tenant scope or raise NotFoundError."""
    result = await db.execute(
        select(Project)
        .where(
            Project.id == project_id,
            Project.tenant_id == tenant_id,
        )
        .execution_options(populate_existing=True)
    )
    project = result.scalar_one_or_none()
    if project is None:
        raise NotFoundError("Project not found")
    return project


async def check_project_access(
    db: AsyncSession,
    project_id: UUID,
    tenant_id: UUID,
    user_id: UUID,
    required_role: str | None = "member",
    message: str | None = None,
) -> tuple[Project, str]:
    """
    Load a project and verify the user's role on it.

    Args:
        db: Database session
        project_id: Project to check
        tenant_id: Tenant scope of the caller
        user_id: Acting user
        required_role: Minimum role ("member" or "manager")
        message: Optional error message for a denied check

    Returns:
        Tuple of (Project, effective_role)

    Raises:
        NotFoundError: project does not exist in this tenant
        AuthorizationError: user lacks the required role
    """
    project = await get_project(db, project_id, tenant_id)
    role = require_role(project, user_id, required_role, message)
    return project, role


async def get_task(db: AsyncSession, task_id: UUID, tenant_id: UUID) -> Task:
    """Load a task within the tenant scope or raise NotFoundError."""
    result = await db.execute(
        select(Task)
        .where(
            Task.id == task_id,
            Task.tenant_id == tenant_id,
        )
        .execution_options(populate_existing=True)
    )
    task = result.scalar_one_or_none()
    if task is None:
        raise NotFoundError("Task not found")
    return task


async def check_task_access(
    db: AsyncSession,
    task_id: UUID,
    tenant_id: UUID,
    user_id: UUID,
    required_role: str | None = "member",
    message: str | None = None,
) -> tuple[Task, Project, str]:
    """Load a task and its project, then verify the user's project role."""
    task = await get_task(db, task_id, tenant_id)
    project, role = await check_project_access(
        db, task.project_id, tenant_id, user_id, required_role, message
    )
    return task, project, role

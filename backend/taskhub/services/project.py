"""Project CRUD and membership management."""

from datetime import date
from typing import Any, Sequence
from uuid import UUID

import structlog
from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from taskhub.models.activity import TaskActivity
from taskhub.models.project import (
    PRIORITIES,
    PROJECT_ROLES,
    PROJECT_STATUSES,
    Project,
    ProjectMember,
    Task,
    TaskAssignment,
    TaskComment,
    TaskDependency,
)
from taskhub.models.tenant import User
from taskhub.services.access_control import check_project_access, get_member_role, get_project
from taskhub.services.activity import to_jsonable
from taskhub.services.events import PROJECT_MEMBER_ADDED, PROJECT_UPDATED, EventDispatcher
from taskhub.services.notification import NotificationService

logger = structlog.get_logger()

PROJECT_FIELDS = ("name", "description", "status", "priority", "start_date", "end_date", "settings")


class ProjectService:
    """Service for projects and their member lists."""

    def __init__(self, db: AsyncSession, events: EventDispatcher | None = None):
        self.db = db
        self.events = events
        self.notifications = NotificationService(db, events)

    async def _get_active_user(self, user_id: UUID, tenant_id: UUID) -> User:
        result = await self.db.execute(
            select(User).where(
                User.id == user_id,
                User.tenant_id == tenant_id,
                User.is_active.is_(True),
            )
        )
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFoundError("User not found")
        return user

    @staticmethod
    def _validate_fields(values: dict[str, Any]) -> None:
        if "name" in values:
            name = (values["name"] or "").strip()
            if not name:
                raise ValidationError("Project name is required", field="name")
            values["name"] = name
        if "status" in values and values["status"] not in PROJECT_STATUSES:
            raise ValidationError(f"Invalid status '{values['status']}'", field="status")
        if "priority" in values and values["priority"] not in PRIORITIES:
            raise ValidationError(f"Invalid priority '{values['priority']}'", field="priority")

    @staticmethod
    def _validate_dates(start_date: date | None, end_date: date | None) -> None:
        if start_date and end_date and end_date < start_date:
            raise ValidationError("End date must be after start date", field="end_date")

    async def create_project(
        self,
        user_id: UUID,
        tenant_id: UUID,
        name: str,
        description: str | None = None,
        priority: str = "medium",
        start_date: date | None = None,
        end_date: date | None = None,
        settings: dict | None = None,
    ) -> Project:
        """Create a project owned by the actor, who becomes its first manager."""
        values = {"name": name, "priority": priority}
        self._validate_fields(values)
        self._validate_dates(start_date, end_date)

        await self._get_active_user(user_id, tenant_id)

        project = Project(
            tenant_id=tenant_id,
            name=values["name"],
            description=description,
            status="planning",
            priority=priority,
            start_date=start_date,
            end_date=end_date,
            owner_id=user_id,
            settings={"is_private": False, "allow_member_invite": False, **(settings or {})},
            members=[ProjectMember(user_id=user_id, role="manager")],
        )
        self.db.add(project)
        await self.db.commit()

        logger.info("project_created", project_id=str(project.id), owner_id=str(user_id))

        return await get_project(self.db, project.id, tenant_id)

    async def list_projects(
        self,
        user_id: UUID,
        tenant_id: UUID,
        status: str | None = None,
        priority: str | None = None,
        search: str | None = None,
    ) -> Sequence[Project]:
        """List projects the actor owns or is a member of."""
        member_of = select(ProjectMember.project_id).where(ProjectMember.user_id == user_id)
        query = select(Project).where(
            Project.tenant_id == tenant_id,
            or_(Project.owner_id == user_id, Project.id.in_(member_of)),
        )
        if status:
            query = query.where(Project.status == status)
        if priority:
            query = query.where(Project.priority == priority)
        if search:
            query = query.where(Project.name.ilike(f"%{search}%"))

        result = await self.db.execute(
            query.order_by(Project.created_at.desc()).execution_options(populate_existing=True)
        )
        return result.scalars().all()

    async def get_project(self, project_id: UUID, user_id: UUID, tenant_id: UUID) -> Project:
        project, _ = await check_project_access(
            self.db,
            project_id,
            tenant_id,
            user_id,
            "member",
            message="You do not have access to this project",
        )
        return project

    async def update_project(
        self,
        project_id: UUID,
        updates: dict[str, Any],
        user_id: UUID,
        tenant_id: UUID,
    ) -> Project:
        """Apply a partial update. Managers only."""
        unknown = set(updates) - set(PROJECT_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown project fields: {', '.join(sorted(unknown))}")

        project, _ = await check_project_access(
            self.db, project_id, tenant_id, user_id, "manager"
        )

        values = dict(updates)
        self._validate_fields(values)
        self._validate_dates(
            values.get("start_date", project.start_date),
            values.get("end_date", project.end_date),
        )

        changes: dict[str, dict[str, Any]] = {}
        for field, new_value in values.items():
            if field == "settings":
                new_value = {**(project.settings or {}), **(new_value or {})}
            old_value = getattr(project, field)
            if old_value == new_value:
                continue
            changes[field] = {"from": to_jsonable(old_value), "to": to_jsonable(new_value)}
            setattr(project, field, new_value)

        if not changes:
            return project

        await self.db.commit()

        logger.info("project_updated", project_id=str(project_id), fields=sorted(changes))

        if self.events is not None:
            self.events.emit(
                PROJECT_UPDATED,
                project_id=project_id,
                tenant_id=tenant_id,
                user_id=user_id,
                changes=changes,
            )

        return await get_project(self.db, project_id, tenant_id)

    async def delete_project(self, project_id: UUID, user_id: UUID, tenant_id: UUID) -> None:
        """Delete a project and all of its tasks. Owner only."""
        project = await get_project(self.db, project_id, tenant_id)
        if project.owner_id != user_id:
            raise AuthorizationError("Only the project owner can delete the project")

        scope = (Task.project_id == project_id, Task.tenant_id == tenant_id)
        task_ids = select(Task.id).where(*scope).scalar_subquery()
        no_sync = {"synchronize_session": False}

        for model in (TaskComment, TaskActivity, TaskAssignment):
            await self.db.execute(
                delete(model).where(model.task_id.in_(task_ids)).execution_options(**no_sync)
            )
        await self.db.execute(
            delete(TaskDependency)
            .where(or_(TaskDependency.task_id.in_(task_ids), TaskDependency.depends_on_id.in_(task_ids)))
            .execution_options(**no_sync)
        )
        # Detach subtasks so the self-referencing key never blocks the delete
        await self.db.execute(
            update(Task).where(*scope).values(parent_task_id=None).execution_options(**no_sync)
        )
        result = await self.db.execute(delete(Task).where(*scope).execution_options(**no_sync))
        tasks_deleted = result.rowcount or 0

        await self.db.delete(project)
        await self.db.commit()

        logger.info("project_deleted", project_id=str(project_id), tasks_deleted=tasks_deleted)

    async def add_member(
        self,
        project_id: UUID,
        member_user_id: UUID,
        user_id: UUID,
        tenant_id: UUID,
        role: str = "member",
    ) -> Project:
        """Add a tenant user to the project. Managers only."""
        if role not in PROJECT_ROLES:
            raise ValidationError(f"Invalid role '{role}'", field="role")

        project, _ = await check_project_access(
            self.db, project_id, tenant_id, user_id, "manager"
        )
        await self._get_active_user(member_user_id, tenant_id)

        if get_member_role(project, member_user_id) is not None:
            raise ConflictError("User is already a project member")

        project.members.append(ProjectMember(user_id=member_user_id, role=role))
        await self.db.commit()

        logger.info(
            "project_member_added",
            project_id=str(project_id),
            member_id=str(member_user_id),
            role=role,
        )

        if self.events is not None:
            self.events.emit(
                PROJECT_MEMBER_ADDED,
                project_id=project_id,
                tenant_id=tenant_id,
                member_id=member_user_id,
                role=role,
                user_id=user_id,
            )

        try:
            await self.notifications.notify(
                tenant_id=tenant_id,
                user_id=member_user_id,
                notification_type="project_member_added",
                title="Added to project",
                message=f"You have been added to '{project.name}'",
                sender_id=user_id,
                data={"project_id": str(project_id)},
            )
        except Exception as e:
            await self.db.rollback()
            logger.warning(
                "notification_dispatch_failed",
                notification_type="project_member_added",
                error=str(e),
            )

        return await get_project(self.db, project_id, tenant_id)

    async def remove_member(
        self,
        project_id: UUID,
        member_user_id: UUID,
        user_id: UUID,
        tenant_id: UUID,
    ) -> Project:
        """Remove a member from the project. The owner cannot be removed."""
        project, _ = await check_project_access(
            self.db, project_id, tenant_id, user_id, "manager"
        )

        if project.owner_id == member_user_id:
            raise ValidationError("The project owner cannot be removed")

        membership = next((m for m in project.members if m.user_id == member_user_id), None)
        if membership is None:
            raise NotFoundError("User is not a project member")

        project.members.remove(membership)
        await self.db.commit()

        logger.info(
            "project_member_removed",
            project_id=str(project_id),
            member_id=str(member_user_id),
        )

        return await get_project(self.db, project_id, tenant_id)

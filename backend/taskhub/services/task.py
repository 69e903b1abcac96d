"""Task lifecycle service.

Owns task creation, updates (including status transitions), deletion and
comments. Status transitions are permissive: any status may follow any
other, and blocking dependencies are not consulted (see
``DependencyService.can_start`` for the advisory check). The only side
effect tied to status is ``completed_at``, which is set on entering
``done`` and cleared on leaving it.
"""

from datetime import datetime
from typing import Any, Sequence
from uuid import UUID, uuid4

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.exceptions import NotFoundError, ValidationError
from taskhub.models.activity import TaskActivity
from taskhub.models.project import (
    PRIORITIES,
    TASK_STATUSES,
    Project,
    Task,
    TaskAssignment,
    TaskComment,
)
from taskhub.models.tenant import User
from taskhub.services.access_control import (
    check_project_access,
    check_task_access,
    get_task,
    is_member,
)
from taskhub.services.activity import ActivityLogService, to_jsonable
from taskhub.services.dependency import DependencyService
from taskhub.services.events import (
    COMMENT_ADDED,
    TASK_ASSIGNED,
    TASK_CREATED,
    TASK_DELETED,
    TASK_UPDATED,
    EventDispatcher,
)
from taskhub.services.notification import NotificationService
from taskhub.services.project_metrics import ProjectMetricsService
from taskhub.utils.dates import ensure_utc, utcnow

logger = structlog.get_logger()

# Fields whose changes are diffed into a single "updated" activity entry
TRACKED_FIELDS = (
    "title",
    "description",
    "status",
    "priority",
    "due_date",
    "start_date",
    "estimated_hours",
    "actual_hours",
    "assignees",
    "tags",
    "parent_task_id",
)

# Changes to these fields can move the project counters
COUNTER_FIELDS = ("status", "due_date")

TITLE_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 2000


def normalize_tags(tags: list[str] | None) -> list[str]:
    """Trim and lower-case tags, dropping empties and duplicates."""
    seen: list[str] = []
    for tag in tags or []:
        cleaned = tag.strip().lower()
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return seen


class TaskService:
    """Service for the task lifecycle within a project."""

    def __init__(self, db: AsyncSession, events: EventDispatcher | None = None):
        self.db = db
        self.events = events
        self.activity = ActivityLogService(db)
        self.dependencies = DependencyService(db, events)
        self.metrics = ProjectMetricsService(db)
        self.notifications = NotificationService(db, events)

    # =========================================================================
    # Validation helpers
    # =========================================================================

    @staticmethod
    def _validate_title(title: str | None) -> str:
        cleaned = (title or "").strip()
        if not cleaned:
            raise ValidationError("Title is required", field="title")
        if len(cleaned) > TITLE_MAX_LENGTH:
            raise ValidationError(
                f"Title cannot exceed {TITLE_MAX_LENGTH} characters", field="title"
            )
        return cleaned

    @staticmethod
    def _validate_description(description: str | None) -> str | None:
        if description is None:
            return None
        cleaned = description.strip()
        if len(cleaned) > DESCRIPTION_MAX_LENGTH:
            raise ValidationError(
                f"Description cannot exceed {DESCRIPTION_MAX_LENGTH} characters",
                field="description",
            )
        return cleaned

    @staticmethod
    def _validate_choice(value: str, choices: tuple[str, ...], field: str) -> str:
        if value not in choices:
            raise ValidationError(
                f"Invalid {field} '{value}'. Must be one of: {', '.join(choices)}",
                field=field,
            )
        return value

    @staticmethod
    def _validate_hours(value: float | None, field: str) -> float | None:
        if value is not None and value < 0:
            raise ValidationError(f"{field.replace('_', ' ').capitalize()} cannot be negative", field=field)
        return value

    @staticmethod
    def _validate_date_range(start_date: datetime | None, due_date: datetime | None) -> None:
        if start_date and due_date and due_date < start_date:
            raise ValidationError("Due date must be after start date", field="due_date")

    async def _validate_parent(
        self,
        parent_task_id: UUID,
        project_id: UUID,
        tenant_id: UUID,
        task_id: UUID | None = None,
    ) -> Task:
        if task_id is not None and parent_task_id == task_id:
            raise ValidationError("A task cannot be its own parent", field="parent_task_id")

        result = await self.db.execute(
            select(Task).where(
                Task.id == parent_task_id,
                Task.project_id == project_id,
                Task.tenant_id == tenant_id,
            )
        )
        parent = result.scalar_one_or_none()
        if parent is None:
            raise NotFoundError("Parent task does not exist")
        return parent

    async def _validate_assignees(
        self,
        project: Project,
        assignee_ids: list[UUID],
        tenant_id: UUID,
    ) -> list[UUID]:
        """Every assignee must be an active tenant user and a project member."""
        unique_ids = list(dict.fromkeys(assignee_ids))
        if not unique_ids:
            return []

        result = await self.db.execute(
            select(User.id).where(
                User.id.in_(unique_ids),
                User.tenant_id == tenant_id,
                User.is_active.is_(True),
            )
        )
        valid_ids = set(result.scalars().all())
        if any(user_id not in valid_ids for user_id in unique_ids):
            raise ValidationError("Some assignees are not valid users", field="assignees")

        if not all(is_member(project, user_id) for user_id in unique_ids):
            raise ValidationError("All assignees must be project members", field="assignees")

        return unique_ids

    # =========================================================================
    # Side-effect helpers
    # =========================================================================

    def _emit(self, event_name: str, **payload: Any) -> None:
        if self.events is not None:
            self.events.emit(event_name, **payload)

    async def _notify_safely(
        self,
        tenant_id: UUID,
        user_ids: list[UUID],
        notification_type: str,
        title: str,
        message: str,
        sender_id: UUID,
        data: dict,
    ) -> None:
        """Send notifications; failures are logged and never re-raised."""
        if not user_ids:
            return
        try:
            await self.notifications.notify_many(
                tenant_id=tenant_id,
                user_ids=user_ids,
                notification_type=notification_type,
                title=title,
                message=message,
                sender_id=sender_id,
                data=data,
            )
        except Exception as e:
            await self.db.rollback()
            logger.warning(
                "notification_dispatch_failed",
                notification_type=notification_type,
                user_count=len(user_ids),
                error=str(e),
            )

    async def _announce_assignment(
        self,
        task_id: UUID,
        project_id: UUID,
        tenant_id: UUID,
        task_title: str,
        user_ids: list[UUID],
        actor_id: UUID,
    ) -> None:
        # Takes plain values: a failed notification rolls back and expires the task
        if not user_ids:
            return
        self._emit(
            TASK_ASSIGNED,
            task_id=task_id,
            project_id=project_id,
            tenant_id=tenant_id,
            assignee_ids=user_ids,
            user_id=actor_id,
        )
        await self._notify_safely(
            tenant_id=tenant_id,
            user_ids=user_ids,
            notification_type="task_assigned",
            title="New task assigned",
            message=f"You have been assigned to '{task_title}'",
            sender_id=actor_id,
            data={"task_id": str(task_id), "project_id": str(project_id)},
        )

    # =========================================================================
    # Task CRUD Operations
    # =========================================================================

    async def create_task(
        self,
        project_id: UUID,
        user_id: UUID,
        tenant_id: UUID,
        title: str,
        description: str | None = None,
        priority: str = "medium",
        due_date: datetime | None = None,
        start_date: datetime | None = None,
        estimated_hours: float | None = None,
        assignees: list[UUID] | None = None,
        tags: list[str] | None = None,
        parent_task_id: UUID | None = None,
    ) -> Task:
        """Create a task in a project the user belongs to."""
        title = self._validate_title(title)
        description = self._validate_description(description)
        self._validate_choice(priority, PRIORITIES, "priority")
        self._validate_hours(estimated_hours, "estimated_hours")
        due_date, start_date = ensure_utc(due_date), ensure_utc(start_date)
        self._validate_date_range(start_date, due_date)

        project, _ = await check_project_access(
            self.db, project_id, tenant_id, user_id, "member"
        )

        if parent_task_id is not None:
            await self._validate_parent(parent_task_id, project_id, tenant_id)

        assignee_ids = await self._validate_assignees(project, assignees or [], tenant_id)

        task = Task(
            id=uuid4(),
            tenant_id=tenant_id,
            project_id=project_id,
            parent_task_id=parent_task_id,
            created_by_id=user_id,
            title=title,
            description=description,
            status="todo",
            priority=priority,
            due_date=due_date,
            start_date=start_date,
            estimated_hours=estimated_hours,
            actual_hours=0,
            tags=normalize_tags(tags),
            ai_metadata={},
            assignments=[
                TaskAssignment(user_id=assignee_id, assigned_by_id=user_id)
                for assignee_id in assignee_ids
            ],
        )
        task_id = task.id
        self.db.add(task)
        self.activity.record(tenant_id, task_id, user_id, "created")
        await self.db.flush()
        await self.metrics.record_task_created(project_id, tenant_id)
        await self.db.commit()

        logger.info(
            "task_created",
            task_id=str(task_id),
            project_id=str(project_id),
            assignees=len(assignee_ids),
        )

        self._emit(
            TASK_CREATED,
            task_id=task_id,
            project_id=project_id,
            tenant_id=tenant_id,
            user_id=user_id,
        )
        await self._announce_assignment(
            task_id, project_id, tenant_id, title, assignee_ids, user_id
        )

        return await get_task(self.db, task_id, tenant_id)

    async def get_task(self, task_id: UUID, user_id: UUID, tenant_id: UUID) -> Task:
        """Get a task the user can see."""
        task, _, _ = await check_task_access(self.db, task_id, tenant_id, user_id, "member")
        return task

    async def list_project_tasks(
        self,
        project_id: UUID,
        user_id: UUID,
        tenant_id: UUID,
        status: str | None = None,
        assignee_id: UUID | None = None,
        parent_task_id: UUID | None = None,
        search: str | None = None,
    ) -> Sequence[Task]:
        """List tasks of a project, optionally filtered."""
        await check_project_access(self.db, project_id, tenant_id, user_id, "member")

        query = select(Task).where(
            Task.project_id == project_id,
            Task.tenant_id == tenant_id,
        )
        if status:
            query = query.where(Task.status == status)
        if parent_task_id:
            query = query.where(Task.parent_task_id == parent_task_id)
        if assignee_id:
            query = query.join(TaskAssignment, TaskAssignment.task_id == Task.id).where(
                TaskAssignment.user_id == assignee_id
            )
        if search:
            query = query.where(Task.title.ilike(f"%{search}%"))

        result = await self.db.execute(
            query.order_by(Task.created_at.desc()).execution_options(populate_existing=True)
        )
        return result.scalars().unique().all()

    async def get_subtasks(self, task_id: UUID, user_id: UUID, tenant_id: UUID) -> Sequence[Task]:
        """List direct subtasks of a task."""
        parent = await self.get_task(task_id, user_id, tenant_id)
        return await self.list_project_tasks(
            parent.project_id, user_id, tenant_id, parent_task_id=task_id
        )

    async def count_subtasks(self, task_id: UUID, tenant_id: UUID) -> int:
        result = await self.db.execute(
            select(func.count(Task.id)).where(
                Task.parent_task_id == task_id,
                Task.tenant_id == tenant_id,
            )
        )
        return result.scalar() or 0

    async def update_task(
        self,
        task_id: UUID,
        updates: dict[str, Any],
        user_id: UUID,
        tenant_id: UUID,
    ) -> Task:
        """
        Apply a partial update to a task.

        Every change to a tracked field is diffed against the previous value
        and recorded as one "updated" activity entry. Counters are
        recomputed when the status or due date changed.
        """
        unknown = set(updates) - set(TRACKED_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown task fields: {', '.join(sorted(unknown))}")

        task, project, _ = await check_task_access(
            self.db, task_id, tenant_id, user_id, "member"
        )

        changes: dict[str, Any] = {}
        if "title" in updates:
            changes["title"] = self._validate_title(updates["title"])
        if "description" in updates:
            changes["description"] = self._validate_description(updates["description"])
        if "status" in updates:
            changes["status"] = self._validate_choice(updates["status"], TASK_STATUSES, "status")
        if "priority" in updates:
            changes["priority"] = self._validate_choice(updates["priority"], PRIORITIES, "priority")
        for field in ("estimated_hours", "actual_hours"):
            if field in updates:
                changes[field] = self._validate_hours(updates[field], field)
        if "actual_hours" in changes and changes["actual_hours"] is None:
            changes["actual_hours"] = 0
        for field in ("due_date", "start_date"):
            if field in updates:
                changes[field] = ensure_utc(updates[field])
        if "tags" in updates:
            changes["tags"] = normalize_tags(updates["tags"])

        self._validate_date_range(
            changes.get("start_date", ensure_utc(task.start_date)),
            changes.get("due_date", ensure_utc(task.due_date)),
        )

        if "parent_task_id" in updates:
            parent_id = updates["parent_task_id"]
            if parent_id is not None:
                await self._validate_parent(parent_id, task.project_id, tenant_id, task.id)
            changes["parent_task_id"] = parent_id

        if "assignees" in updates:
            changes["assignees"] = await self._validate_assignees(
                project, updates["assignees"] or [], tenant_id
            )

        # Diff against the current values
        diff: dict[str, dict[str, Any]] = {}
        for field, new_value in changes.items():
            if field == "assignees":
                old_value = task.assignee_ids
                if set(old_value) == set(new_value):
                    continue
            else:
                old_value = getattr(task, field)
                if field in ("due_date", "start_date"):
                    old_value = ensure_utc(old_value)
                if old_value == new_value:
                    continue
            diff[field] = {"from": to_jsonable(old_value), "to": to_jsonable(new_value)}

        old_status = task.status
        old_assignees = set(task.assignee_ids)

        for field, new_value in changes.items():
            if field == "assignees":
                self._sync_assignments(task, new_value, user_id)
            else:
                setattr(task, field, new_value)

        if "status" in changes:
            if changes["status"] == "done":
                if task.completed_at is None:
                    task.completed_at = utcnow()
            else:
                task.completed_at = None

        if diff:
            self.activity.record(tenant_id, task.id, user_id, "updated", diff)

        await self.db.commit()

        # Side effects below may roll back the session; read nothing off ``task`` after this
        project_id = task.project_id
        status = task.status
        title = task.title
        assignee_ids = task.assignee_ids

        if diff:
            logger.info("task_updated", task_id=str(task_id), fields=sorted(diff))
        else:
            logger.debug("task_update_noop", task_id=str(task_id))

        if any(field in diff for field in COUNTER_FIELDS):
            await self.metrics.safe_recompute(project_id, tenant_id)

        if diff:
            self._emit(
                TASK_UPDATED,
                task_id=task_id,
                project_id=project_id,
                tenant_id=tenant_id,
                user_id=user_id,
                changes=sorted(diff),
            )

        new_assignees = [a for a in assignee_ids if a not in old_assignees]
        await self._announce_assignment(
            task_id, project_id, tenant_id, title, new_assignees, user_id
        )

        if status == "done" and old_status != "done":
            await self._notify_safely(
                tenant_id=tenant_id,
                user_ids=assignee_ids,
                notification_type="task_completed",
                title="Task completed",
                message=f"Task '{title}' has been marked as done",
                sender_id=user_id,
                data={"task_id": str(task_id), "project_id": str(project_id)},
            )

        return await get_task(self.db, task_id, tenant_id)

    def _sync_assignments(self, task: Task, user_ids: list[UUID], assigned_by_id: UUID) -> None:
        """Make the task's assignments match ``user_ids``."""
        target = set(user_ids)
        for assignment in [a for a in task.assignments if a.user_id not in target]:
            task.assignments.remove(assignment)

        current = set(task.assignee_ids)
        for user_id in user_ids:
            if user_id not in current:
                task.assignments.append(
                    TaskAssignment(user_id=user_id, assigned_by_id=assigned_by_id)
                )

    async def update_status(
        self,
        task_id: UUID,
        status: str | None,
        user_id: UUID,
        tenant_id: UUID,
    ) -> Task:
        """Change only the status of a task."""
        if not status:
            raise ValidationError("Status is required", field="status")
        return await self.update_task(task_id, {"status": status}, user_id, tenant_id)

    async def delete_task(self, task_id: UUID, user_id: UUID, tenant_id: UUID) -> None:
        """
        Delete a task.

        Only project managers may delete. A task with subtasks cannot be
        deleted. Edges in other tasks that point at this task are removed.
        """
        task, _, _ = await check_task_access(
            self.db,
            task_id,
            tenant_id,
            user_id,
            "manager",
            message="Only project managers can delete tasks",
        )

        if await self.count_subtasks(task_id, tenant_id) > 0:
            raise ValidationError("Cannot delete a task that has subtasks")

        project_id = task.project_id

        pruned = await self.dependencies.prune_references(task_id, tenant_id)
        await self.db.execute(
            delete(TaskComment).where(
                TaskComment.task_id == task_id, TaskComment.tenant_id == tenant_id
            )
        )
        await self.db.execute(
            delete(TaskActivity).where(
                TaskActivity.task_id == task_id, TaskActivity.tenant_id == tenant_id
            )
        )
        await self.db.delete(task)
        await self.db.commit()

        logger.info(
            "task_deleted",
            task_id=str(task_id),
            project_id=str(project_id),
            pruned_dependencies=pruned,
        )

        await self.metrics.safe_recompute(project_id, tenant_id)

        self._emit(
            TASK_DELETED,
            task_id=task_id,
            project_id=project_id,
            tenant_id=tenant_id,
            user_id=user_id,
        )

    # =========================================================================
    # Comments and activity
    # =========================================================================

    async def add_comment(
        self,
        task_id: UUID,
        text: str | None,
        user_id: UUID,
        tenant_id: UUID,
    ) -> TaskComment:
        """Append a comment to a task."""
        cleaned = (text or "").strip()
        if not cleaned:
            raise ValidationError("Comment text is required", field="text")

        task, _, _ = await check_task_access(self.db, task_id, tenant_id, user_id, "member")

        comment = TaskComment(
            tenant_id=tenant_id,
            task_id=task_id,
            user_id=user_id,
            text=cleaned,
            created_at=utcnow(),
        )
        self.db.add(comment)
        await self.db.flush()
        self.activity.record(
            tenant_id, task_id, user_id, "comment_added", {"comment_id": comment.id}
        )
        await self.db.commit()

        logger.info("task_comment_created", task_id=str(task_id), comment_id=comment.id)

        self._emit(
            COMMENT_ADDED,
            task_id=task_id,
            project_id=task.project_id,
            tenant_id=tenant_id,
            comment_id=comment.id,
            user_id=user_id,
        )
        return comment

    async def list_comments(
        self,
        task_id: UUID,
        user_id: UUID,
        tenant_id: UUID,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[Sequence[TaskComment], int]:
        """Return one page of comments in the order they were added."""
        await check_task_access(self.db, task_id, tenant_id, user_id, "member")
        scope = (TaskComment.task_id == task_id, TaskComment.tenant_id == tenant_id)

        total_result = await self.db.execute(select(func.count(TaskComment.id)).where(*scope))
        result = await self.db.execute(
            select(TaskComment)
            .where(*scope)
            .order_by(TaskComment.id.asc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return result.scalars().all(), total_result.scalar() or 0

    async def list_activity(
        self,
        task_id: UUID,
        user_id: UUID,
        tenant_id: UUID,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[Sequence[TaskActivity], int]:
        """Return one page of the task's activity log."""
        await check_task_access(self.db, task_id, tenant_id, user_id, "member")
        return await self.activity.list_for_task(task_id, tenant_id, page, page_size)

    async def can_start(self, task_id: UUID, user_id: UUID, tenant_id: UUID) -> tuple[Task, bool]:
        """Advisory: whether all blocked-by dependencies are done."""
        task = await self.get_task(task_id, user_id, tenant_id)
        return task, await self.dependencies.can_start(task)

"""Task dependency graph validation and edge maintenance.

Edges are stored on the dependent task as ``(depends_on_id, type)`` pairs
where type is ``blocks`` or ``blocked-by``.

Cycle detection only covers two nodes: adding A -> B is refused when B
already lists A. Longer cycles such as A -> B -> C -> A are NOT detected.
"""

from uuid import UUID

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.exceptions import ValidationError
from taskhub.models.project import DEPENDENCY_TYPES, Task, TaskDependency
from taskhub.services.access_control import check_project_access, get_task
from taskhub.services.activity import ActivityLogService
from taskhub.services.events import TASK_UPDATED, EventDispatcher

logger = structlog.get_logger()


class DependencyService:
    """Adds, removes and validates dependency edges between tasks."""

    def __init__(self, db: AsyncSession, events: EventDispatcher | None = None):
        self.db = db
        self.events = events
        self.activity = ActivityLogService(db)

    async def would_create_cycle(
        self,
        task_id: UUID,
        candidate_id: UUID,
        tenant_id: UUID,
    ) -> bool:
        """Return True when the candidate already depends on ``task_id``.

        Only the direct A -> B -> A case is reported.
        """
        result = await self.db.execute(
            select(func.count(TaskDependency.id)).where(
                TaskDependency.task_id == candidate_id,
                TaskDependency.depends_on_id == task_id,
                TaskDependency.tenant_id == tenant_id,
            )
        )
        return (result.scalar() or 0) > 0

    async def add_dependency(
        self,
        task_id: UUID,
        dependency_task_id: UUID,
        dependency_type: str,
        user_id: UUID,
        tenant_id: UUID,
    ) -> Task:
        """Record that ``task_id`` depends on ``dependency_task_id``.

        Adding an edge that already exists with the same type is a no-op.
        """
        if task_id == dependency_task_id:
            raise ValidationError("Task cannot be same as dependency task")

        if dependency_type not in DEPENDENCY_TYPES:
            raise ValidationError(
                f"Invalid dependency type '{dependency_type}'. Must be one of: "
                + ", ".join(DEPENDENCY_TYPES),
                field="type",
            )

        task = await get_task(self.db, task_id, tenant_id)
        dependency = await get_task(self.db, dependency_task_id, tenant_id)

        await check_project_access(self.db, task.project_id, tenant_id, user_id, "member")

        if dependency.project_id != task.project_id:
            raise ValidationError("Dependency task must belong to the same project")

        if await self.would_create_cycle(task_id, dependency_task_id, tenant_id):
            logger.info(
                "dependency_cycle_rejected",
                task_id=str(task_id),
                dependency_task_id=str(dependency_task_id),
            )
            raise ValidationError("Circular dependency detected")

        if task.has_dependency(dependency_task_id, dependency_type):
            logger.debug(
                "dependency_already_exists",
                task_id=str(task_id),
                dependency_task_id=str(dependency_task_id),
                type=dependency_type,
            )
            return task

        task.dependencies.append(
            TaskDependency(
                tenant_id=tenant_id,
                depends_on_id=dependency_task_id,
                dependency_type=dependency_type,
            )
        )
        self.activity.record(
            tenant_id,
            task_id,
            user_id,
            "dependency_added",
            {"dependency_task_id": dependency_task_id, "type": dependency_type},
        )
        await self.db.commit()

        logger.info(
            "dependency_added",
            task_id=str(task_id),
            dependency_task_id=str(dependency_task_id),
            type=dependency_type,
        )
        self._emit_updated(task, user_id, "dependencies")

        return await get_task(self.db, task_id, tenant_id)

    async def remove_dependency(
        self,
        task_id: UUID,
        dependency_task_id: UUID,
        user_id: UUID,
        tenant_id: UUID,
    ) -> Task:
        """Drop every edge from ``task_id`` to ``dependency_task_id``.

        Removing an edge that does not exist succeeds and changes nothing.
        """
        task = await get_task(self.db, task_id, tenant_id)
        await check_project_access(self.db, task.project_id, tenant_id, user_id, "member")

        for edge in [d for d in task.dependencies if d.depends_on_id == dependency_task_id]:
            task.dependencies.remove(edge)

        self.activity.record(
            tenant_id,
            task_id,
            user_id,
            "dependency_removed",
            {"dependency_task_id": dependency_task_id},
        )
        await self.db.commit()

        logger.info(
            "dependency_removed",
            task_id=str(task_id),
            dependency_task_id=str(dependency_task_id),
        )
        self._emit_updated(task, user_id, "dependencies")

        return await get_task(self.db, task_id, tenant_id)

    async def prune_references(self, task_id: UUID, tenant_id: UUID) -> int:
        """Delete every edge pointing at ``task_id`` from other tasks.

        Runs in the caller's transaction. Returns the number of edges removed.
        """
        result = await self.db.execute(
            delete(TaskDependency).where(
                TaskDependency.depends_on_id == task_id,
                TaskDependency.tenant_id == tenant_id,
            )
        )
        return result.rowcount or 0

    async def can_start(self, task: Task) -> bool:
        """Advisory check: True when every ``blocked-by`` target is done.

        Status updates never consult this.
        """
        blocking_ids = [
            d.depends_on_id for d in task.dependencies if d.dependency_type == "blocked-by"
        ]
        if not blocking_ids:
            return True

        result = await self.db.execute(
            select(func.count(Task.id)).where(
                Task.id.in_(blocking_ids),
                Task.tenant_id == task.tenant_id,
                Task.status != "done",
            )
        )
        return (result.scalar() or 0) == 0

    def _emit_updated(self, task: Task, user_id: UUID, field: str) -> None:
        if self.events is None:
            return
        self.events.emit(
            TASK_UPDATED,
            task_id=task.id,
            project_id=task.project_id,
            tenant_id=task.tenant_id,
            user_id=user_id,
            changes=[field],
        )

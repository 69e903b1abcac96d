"""Project aggregate counters.

Counters are recomputed from scratch with three counting queries rather than
adjusted by deltas, trading a few extra queries for counters that cannot
drift. The recompute is committed separately from the mutation that
triggered it, so a failure in between leaves the counters stale until the
next mutation recomputes them.
"""

from datetime import datetime, timezone
from uuid import UUID

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.models.project import Project, Task

logger = structlog.get_logger()


class ProjectMetricsService:
    """Maintains the denormalized task counters on a project."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _count(self, *criteria) -> int:
        result = await self.db.execute(select(func.count(Task.id)).where(*criteria))
        return result.scalar() or 0

    async def recompute_counters(self, project_id: UUID, tenant_id: UUID) -> dict:
        """Recount total, completed and overdue tasks and store them on the project."""
        now = datetime.now(timezone.utc)
        scope = (Task.project_id == project_id, Task.tenant_id == tenant_id)

        total = await self._count(*scope)
        completed = await self._count(*scope, Task.status == "done")
        overdue = await self._count(
            *scope,
            Task.status != "done",
            Task.due_date.is_not(None),
            Task.due_date < now,
        )

        counters = {
            "total_tasks": total,
            "completed_tasks": completed,
            "overdue_tasks": overdue,
            "last_activity_at": now,
        }
        await self.db.execute(
            update(Project)
            .where(Project.id == project_id, Project.tenant_id == tenant_id)
            .values(**counters)
            .execution_options(synchronize_session="fetch")
        )
        await self.db.commit()

        logger.debug(
            "project_counters_recomputed",
            project_id=str(project_id),
            total_tasks=total,
            completed_tasks=completed,
            overdue_tasks=overdue,
        )
        return counters

    async def safe_recompute(self, project_id: UUID, tenant_id: UUID) -> dict | None:
        """Recompute counters, logging and swallowing any failure."""
        try:
            return await self.recompute_counters(project_id, tenant_id)
        except Exception as e:
            await self.db.rollback()
            logger.warning(
                "project_counters_recompute_failed",
                project_id=str(project_id),
                error=str(e),
            )
            return None

    async def record_task_created(self, project_id: UUID, tenant_id: UUID) -> None:
        """Bump total_tasks and last_activity_at for a newly created task.

        Runs inside the caller's transaction; the caller commits.
        """
        await self.db.execute(
            update(Project)
            .where(Project.id == project_id, Project.tenant_id == tenant_id)
            .values(
                total_tasks=Project.total_tasks + 1,
                last_activity_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )

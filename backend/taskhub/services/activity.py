"""Task activity log: append and paginated reads."""

from datetime import date, datetime
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.models.activity import TaskActivity


def to_jsonable(value: Any) -> Any:
    """Coerce a tracked field value into something the JSON column accepts."""
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple, set)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    return value


class ActivityLogService:
    """Append-only per-task audit trail."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def record(
        self,
        tenant_id: UUID,
        task_id: UUID,
        user_id: UUID,
        action: str,
        details: dict | None = None,
    ) -> TaskActivity:
        """Stage an activity entry in the current transaction.

        The caller commits together with the mutation being logged.
        """
        entry = TaskActivity(
            tenant_id=tenant_id,
            task_id=task_id,
            user_id=user_id,
            action=action,
            details=to_jsonable(details) if details is not None else None,
        )
        self.db.add(entry)
        return entry

    async def list_for_task(
        self,
        task_id: UUID,
        tenant_id: UUID,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[Sequence[TaskActivity], int]:
        """Return one page of entries in append order, plus the total count."""
        scope = (TaskActivity.task_id == task_id, TaskActivity.tenant_id == tenant_id)

        total_result = await self.db.execute(select(func.count(TaskActivity.id)).where(*scope))
        total = total_result.scalar() or 0

        result = await self.db.execute(
            select(TaskActivity)
            .where(*scope)
            .order_by(TaskActivity.id.asc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return result.scalars().all(), total

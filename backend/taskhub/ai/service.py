"""AI task prioritization.

``TaskPrioritizer`` is built once at start-up from settings (see
``build_prioritizer``) and handed to request handlers through
``app.state``. Nothing here holds a module-level client.
"""

import json
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.ai.exceptions import AIFeatureDisabledError, AIResponseParseError
from taskhub.ai.providers.anthropic import AnthropicProvider
from taskhub.ai.providers.base import AIMessage, AIProvider
from taskhub.ai.templates import TASK_PRIORITIZATION, render_template
from taskhub.config import Settings
from taskhub.exceptions import NotFoundError, ValidationError
from taskhub.models.project import PRIORITIES, Project, Task
from taskhub.models.tenant import Tenant
from taskhub.services.access_control import check_project_access
from taskhub.services.activity import ActivityLogService
from taskhub.utils.dates import utcnow

logger = structlog.get_logger()

FEATURE_NAME = TASK_PRIORITIZATION["template_key"]


def _task_view(task: Task, subtask_counts: dict[UUID, int]) -> dict[str, Any]:
    """Compact task representation sent to the provider."""
    return {
        "id": str(task.id),
        "title": task.title,
        "description": task.description,
        "currentPriority": task.priority,
        "status": task.status,
        "dueDate": task.due_date.isoformat() if task.due_date else None,
        "dependencies": len(task.dependencies),
        "assignees": len(task.assignments),
        "subtasks": subtask_counts.get(task.id, 0),
        "tags": task.tags or [],
    }


def parse_prioritization(response_text: str) -> list[dict]:
    """Extract the list of suggestions from a provider reply.

    Accepts a bare JSON array or an object with a ``prioritization`` key,
    optionally surrounded by prose or code fences.
    """
    starts = [i for i in (response_text.find("["), response_text.find("{")) if i >= 0]
    if not starts:
        raise AIResponseParseError("AI response did not contain JSON")
    start = min(starts)
    end = max(response_text.rfind("]"), response_text.rfind("}")) + 1

    try:
        data = json.loads(response_text[start:end])
    except json.JSONDecodeError as e:
        raise AIResponseParseError(f"AI response was not valid JSON: {e.msg}")

    if isinstance(data, dict):
        data = data.get("prioritization", data.get("tasks"))
    if not isinstance(data, list):
        raise AIResponseParseError("AI response did not contain a prioritization list")

    return [item for item in data if isinstance(item, dict)]


def _parse_due_date(value: Any) -> Optional[str]:
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).isoformat()
    except ValueError:
        return None


def _clamp(value: Any, low: int, high: int) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(min(max(value, low), high))


class TaskPrioritizer:
    """Asks the AI provider to rank a project's tasks and stores the suggestions."""

    def __init__(
        self,
        provider: Optional[AIProvider],
        model: Optional[str] = None,
        enabled: bool = True,
        temperature: float = 0.7,
        max_tokens: int = 4000,
    ):
        self.provider = provider
        self.model = model
        self.enabled = enabled
        self.temperature = temperature
        self.max_tokens = max_tokens

    @property
    def available(self) -> bool:
        return self.enabled and self.provider is not None

    async def _check_tenant(self, db: AsyncSession, tenant_id: UUID) -> None:
        result = await db.execute(select(Tenant).where(Tenant.id == tenant_id))
        tenant = result.scalar_one_or_none()
        if tenant is None:
            raise NotFoundError("Tenant not found")
        if not tenant.allows_ai_features:
            raise AIFeatureDisabledError(FEATURE_NAME)

    def _build_messages(self, project: Project, tasks: list[Task]) -> list[AIMessage]:
        subtask_counts: dict[UUID, int] = {}
        for task in tasks:
            if task.parent_task_id:
                subtask_counts[task.parent_task_id] = subtask_counts.get(task.parent_task_id, 0) + 1

        variables = {
            "name": project.name,
            "description": project.description,
            "status": project.status,
            "team_size": len(project.members),
            "tasks": json.dumps([_task_view(t, subtask_counts) for t in tasks], indent=2),
        }
        return [
            AIMessage(
                role="system",
                content=render_template(TASK_PRIORITIZATION["system_prompt"], variables),
            ),
            AIMessage(
                role="user",
                content=render_template(TASK_PRIORITIZATION["user_prompt_template"], variables),
            ),
        ]

    async def prioritize(
        self,
        db: AsyncSession,
        project_id: UUID,
        user_id: UUID,
        tenant_id: UUID,
    ) -> dict[str, Any]:
        """
        Prioritize every task in a project.

        Only project managers may run this, and only for tenants whose plan
        allows AI features. Suggestions naming tasks outside the project are
        ignored.

        Returns:
            ``{"prioritizations": [{"task": Task, "reasoning": str}], "summary": {...}}``
        """
        if not self.available:
            raise AIFeatureDisabledError(FEATURE_NAME)

        project, _ = await check_project_access(
            db,
            project_id,
            tenant_id,
            user_id,
            "manager",
            message="Only project managers can use AI prioritization",
        )
        await self._check_tenant(db, tenant_id)

        result = await db.execute(
            select(Task)
            .where(Task.project_id == project_id, Task.tenant_id == tenant_id)
            .order_by(Task.created_at)
        )
        tasks = list(result.scalars().all())
        if not tasks:
            raise ValidationError("No tasks to prioritize")

        response = await self.provider.complete(
            self._build_messages(project, tasks),
            model=self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        suggestions = parse_prioritization(response.content)

        by_id = {str(task.id): task for task in tasks}
        activity = ActivityLogService(db)
        analyzed_at = utcnow()
        prioritizations = []

        for suggestion in suggestions:
            task = by_id.get(str(suggestion.get("taskId") or suggestion.get("task_id")))
            if task is None:
                continue

            suggested_priority = suggestion.get("suggestedPriority") or suggestion.get("suggestPriority")
            if suggested_priority not in PRIORITIES:
                suggested_priority = None
            reasoning = suggestion.get("reasoning")

            task.ai_metadata = {
                **(task.ai_metadata or {}),
                "suggested_priority": suggested_priority,
                "priority_score": _clamp(suggestion.get("priorityScore"), 0, 100),
                "complexity_score": _clamp(suggestion.get("estimatedComplexity"), 1, 10),
                "suggested_due_date": _parse_due_date(suggestion.get("suggestedDueDate")),
                "last_analyzed_at": analyzed_at.isoformat(),
            }
            activity.record(
                tenant_id,
                task.id,
                user_id,
                "ai_prioritization",
                {
                    "old_priority": task.priority,
                    "suggested_priority": suggested_priority,
                    "reasoning": reasoning,
                },
            )
            prioritizations.append({"task": task, "reasoning": reasoning})

        await db.commit()

        if prioritizations:
            # Refresh server-side timestamps touched by the commit
            await db.execute(
                select(Task)
                .where(Task.id.in_([p["task"].id for p in prioritizations]))
                .execution_options(populate_existing=True)
            )

        high_priority = sum(
            1
            for p in prioritizations
            if p["task"].ai_metadata.get("suggested_priority") in ("high", "urgent")
        )
        logger.info(
            "ai_prioritization_completed",
            project_id=str(project_id),
            tasks_analyzed=len(tasks),
            tasks_updated=len(prioritizations),
            high_priority_tasks=high_priority,
            model=response.model,
            total_tokens=response.total_tokens,
        )

        return {
            "prioritizations": prioritizations,
            "summary": {
                "tasks_analyzed": len(tasks),
                "tasks_updated": len(prioritizations),
                "high_priority_tasks": high_priority,
            },
        }


def build_prioritizer(settings: Settings) -> TaskPrioritizer:
    """Construct the prioritizer from settings.

    Without an API key the prioritizer is created disabled rather than
    failing start-up.
    """
    api_key = settings.anthropic_api_key.get_secret_value()
    provider: Optional[AIProvider] = None
    if settings.ai_enabled and api_key:
        provider = AnthropicProvider(api_key=api_key, default_model=settings.anthropic_model)
    elif settings.ai_enabled:
        logger.warning("ai_provider_not_configured", provider="anthropic")

    return TaskPrioritizer(
        provider=provider,
        model=settings.anthropic_model,
        enabled=settings.ai_enabled,
        temperature=settings.ai_temperature,
        max_tokens=settings.ai_max_tokens,
    )

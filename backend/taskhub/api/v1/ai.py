"""AI endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.api.v1.auth import CurrentUser
from taskhub.api.v1.common import Prioritizer, envelope
from taskhub.api.v1.tasks import _task_to_response
from taskhub.db.session import get_db_session

router = APIRouter()


@router.post("/{project_id}/ai/prioritize")
async def prioritize_tasks(
    project_id: UUID,
    current_user: CurrentUser,
    prioritizer: Prioritizer,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Ask the AI provider to prioritize every task in the project. Managers only."""
    result = await prioritizer.prioritize(
        db, project_id, current_user.id, current_user.tenant_id
    )
    return envelope(
        {
            "prioritizations": [
                {"task": _task_to_response(p["task"]), "reasoning": p["reasoning"]}
                for p in result["prioritizations"]
            ],
            "summary": result["summary"],
        },
        "Tasks prioritized successfully with AI",
    )

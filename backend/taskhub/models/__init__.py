"""SQLAlchemy models package."""

from taskhub.models.tenant import Tenant, User
from taskhub.models.project import (
    Project,
    ProjectMember,
    Task,
    TaskAssignment,
    TaskComment,
    TaskDependency,
)
from taskhub.models.activity import Notification, TaskActivity

__all__ = [
    # Tenant
    "Tenant",
    "User",
    # Project
    "Project",
    "ProjectMember",
    "Task",
    "TaskAssignment",
    "TaskComment",
    "TaskDependency",
    # Activity
    "Notification",
    "TaskActivity",
]

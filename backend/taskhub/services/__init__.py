"""Services package."""

from taskhub.services.dependency import DependencyService
from taskhub.services.events import DomainEvent, EventDispatcher
from taskhub.services.notification import NotificationService
from taskhub.services.project import ProjectService
from taskhub.services.project_metrics import ProjectMetricsService
from taskhub.services.task import TaskService
from taskhub.services.tenant import TenantService

__all__ = [
    "DependencyService",
    "DomainEvent",
    "EventDispatcher",
    "NotificationService",
    "ProjectService",
    "ProjectMetricsService",
    "TaskService",
    "TenantService",
]

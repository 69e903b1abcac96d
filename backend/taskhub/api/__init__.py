"""API router package."""

from fastapi import APIRouter

from taskhub.api.v1 import ai, health, notifications, projects, tasks, tenants, websocket

router = APIRouter()

# Include all API routers
router.include_router(health.router, tags=["Health"])
router.include_router(tenants.router, prefix="/tenants", tags=["Tenants"])
router.include_router(projects.router, prefix="/projects", tags=["Projects"])
router.include_router(tasks.project_router, prefix="/projects", tags=["Tasks"])
router.include_router(ai.router, prefix="/projects", tags=["AI"])
router.include_router(tasks.router, prefix="/tasks", tags=["Tasks"])
router.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])
router.include_router(websocket.router)

"""
Pytest configuration for Taskhub tests.

This module provides:
1. Test settings (in-memory SQLite, test JWT secret) applied before import
2. Database fixtures with a fresh schema per test
3. A small tenant/project world most service tests start from
"""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["JWT_SECRET_KEY"] = "test-secret"
os.environ["AI_ENABLED"] = "false"

from types import SimpleNamespace

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from taskhub.db.base import Base
from taskhub.db.session import build_session_factory
from taskhub.models.project import Task
from taskhub.services.events import ALL_EVENTS, EventDispatcher
from taskhub.services.project import ProjectService
from taskhub.services.task import TaskService
from taskhub.services.tenant import TenantService
import taskhub.models  # noqa: F401  registers every mapper on Base.metadata


# -----------------------------------------------------------------------------
# Database Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
async def engine():
    """In-memory SQLite engine shared by every session of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def events():
    """Dispatcher that also records every emitted event in ``.received``."""
    dispatcher = EventDispatcher()
    dispatcher.received = []
    dispatcher.subscribe(ALL_EVENTS, dispatcher.received.append)
    return dispatcher


# -----------------------------------------------------------------------------
# Domain Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
async def org(db):
    """
    A pro tenant with three users and one project.

    - owner: tenant admin, project owner (manager)
    - member: project member
    - outsider: same tenant, not on the project
    """
    tenants = TenantService(db)
    tenant, owner = await tenants.register(
        email="owner@acme.io", name="Olivia Owner", company_name="Acme", plan="pro"
    )
    member = await tenants.add_user(tenant.id, owner, "member@acme.io", "Max Member")
    outsider = await tenants.add_user(tenant.id, owner, "outsider@acme.io", "Oscar Outsider")

    projects = ProjectService(db)
    project = await projects.create_project(owner.id, tenant.id, name="Launch")
    project = await projects.add_member(project.id, member.id, owner.id, tenant.id)

    return SimpleNamespace(
        tenant=tenant,
        owner=owner,
        member=member,
        outsider=outsider,
        project=project,
    )


@pytest.fixture
async def other_org(db):
    """A second, unrelated tenant with its own project."""
    tenant, owner = await TenantService(db).register(
        email="boss@globex.io", name="Gus Globex", company_name="Globex", plan="pro"
    )
    project = await ProjectService(db).create_project(owner.id, tenant.id, name="Globex Plan")
    return SimpleNamespace(tenant=tenant, owner=owner, project=project)


@pytest.fixture
def make_task(db, org):
    """Factory creating a task in the org project as the owner."""
    async def _make(title: str = "Task", **kwargs) -> Task:
        user_id = kwargs.pop("user_id", org.owner.id)
        return await TaskService(db).create_task(
            org.project.id, user_id, org.tenant.id, title=title, **kwargs
        )

    return _make

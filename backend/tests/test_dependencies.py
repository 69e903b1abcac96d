"""Tests for dependency edges, cycle rejection and the advisory start check."""

from uuid import uuid4

import pytest

from taskhub.exceptions import AuthorizationError, NotFoundError, ValidationError
from taskhub.services.dependency import DependencyService
from taskhub.services.task import TaskService


async def _actions(db, task, org):
    entries, _ = await TaskService(db).list_activity(task.id, org.owner.id, org.tenant.id)
    return [e.action for e in entries]


class TestAddDependency:

    async def test_self_dependency_rejected_before_lookup(self, db, org):
        missing = uuid4()
        with pytest.raises(ValidationError, match="Task cannot be same as dependency task"):
            await DependencyService(db).add_dependency(
                missing, missing, "blocks", org.owner.id, org.tenant.id
            )

    async def test_invalid_type_rejected(self, db, org, make_task):
        a, b = await make_task("A"), await make_task("B")
        with pytest.raises(ValidationError, match="Invalid dependency type"):
            await DependencyService(db).add_dependency(
                a.id, b.id, "relates-to", org.owner.id, org.tenant.id
            )

    async def test_adds_edge_and_logs_activity(self, db, org, make_task, events):
        a, b = await make_task("A"), await make_task("B")

        task = await DependencyService(db, events).add_dependency(
            a.id, b.id, "blocked-by", org.member.id, org.tenant.id
        )

        assert [(d.depends_on_id, d.dependency_type) for d in task.dependencies] == [
            (b.id, "blocked-by")
        ]
        assert (await _actions(db, a, org))[-1] == "dependency_added"
        assert events.received[-1].name == "task:updated"

    async def test_adding_same_edge_twice_is_idempotent(self, db, org, make_task):
        a, b = await make_task("A"), await make_task("B")
        service = DependencyService(db)

        await service.add_dependency(a.id, b.id, "blocks", org.owner.id, org.tenant.id)
        task = await service.add_dependency(a.id, b.id, "blocks", org.owner.id, org.tenant.id)

        assert len(task.dependencies) == 1
        assert (await _actions(db, a, org)).count("dependency_added") == 1

    async def test_direct_cycle_rejected(self, db, org, make_task):
        a, b = await make_task("A"), await make_task("B")
        service = DependencyService(db)
        await service.add_dependency(a.id, b.id, "blocked-by", org.owner.id, org.tenant.id)

        with pytest.raises(ValidationError, match="Circular dependency detected"):
            await service.add_dependency(b.id, a.id, "blocked-by", org.owner.id, org.tenant.id)

    async def test_cycle_check_ignores_edge_type(self, db, org, make_task):
        a, b = await make_task("A"), await make_task("B")
        service = DependencyService(db)
        await service.add_dependency(a.id, b.id, "blocks", org.owner.id, org.tenant.id)

        with pytest.raises(ValidationError, match="Circular dependency detected"):
            await service.add_dependency(b.id, a.id, "blocked-by", org.owner.id, org.tenant.id)

    async def test_longer_cycles_are_not_detected(self, db, org, make_task):
        a, b, c = await make_task("A"), await make_task("B"), await make_task("C")
        service = DependencyService(db)
        await service.add_dependency(a.id, b.id, "blocks", org.owner.id, org.tenant.id)
        await service.add_dependency(b.id, c.id, "blocks", org.owner.id, org.tenant.id)

        task = await service.add_dependency(c.id, a.id, "blocks", org.owner.id, org.tenant.id)

        assert task.has_dependency(a.id)

    async def test_cross_project_rejected(self, db, org, make_task):
        from taskhub.services.project import ProjectService

        second = await ProjectService(db).create_project(org.owner.id, org.tenant.id, name="Side")
        a = await make_task("A")
        other = await TaskService(db).create_task(
            second.id, org.owner.id, org.tenant.id, title="Elsewhere"
        )

        with pytest.raises(ValidationError, match="same project"):
            await DependencyService(db).add_dependency(
                a.id, other.id, "blocks", org.owner.id, org.tenant.id
            )

    async def test_outsider_cannot_add(self, db, org, make_task):
        a, b = await make_task("A"), await make_task("B")
        with pytest.raises(AuthorizationError):
            await DependencyService(db).add_dependency(
                a.id, b.id, "blocks", org.outsider.id, org.tenant.id
            )

    async def test_unknown_dependency_not_found(self, db, org, make_task):
        a = await make_task("A")
        with pytest.raises(NotFoundError):
            await DependencyService(db).add_dependency(
                a.id, uuid4(), "blocks", org.owner.id, org.tenant.id
            )

    async def test_task_in_other_tenant_not_found(self, db, org, other_org, make_task):
        a, b = await make_task("A"), await make_task("B")
        with pytest.raises(NotFoundError):
            await DependencyService(db).add_dependency(
                a.id, b.id, "blocks", other_org.owner.id, other_org.tenant.id
            )


class TestRemoveDependency:

    async def test_removes_all_edges_to_target(self, db, org, make_task):
        a, b = await make_task("A"), await make_task("B")
        service = DependencyService(db)
        await service.add_dependency(a.id, b.id, "blocks", org.owner.id, org.tenant.id)
        await service.add_dependency(a.id, b.id, "blocked-by", org.owner.id, org.tenant.id)

        task = await service.remove_dependency(a.id, b.id, org.owner.id, org.tenant.id)

        assert task.dependencies == []

    async def test_missing_edge_succeeds_and_is_logged(self, db, org, make_task):
        a, b = await make_task("A"), await make_task("B")
        service = DependencyService(db)
        await service.add_dependency(a.id, b.id, "blocks", org.owner.id, org.tenant.id)

        task = await service.remove_dependency(a.id, uuid4(), org.member.id, org.tenant.id)

        assert [(d.depends_on_id, d.dependency_type) for d in task.dependencies] == [
            (b.id, "blocks")
        ]
        assert (await _actions(db, a, org))[-1] == "dependency_removed"


class TestCanStart:

    async def test_blocked_until_dependency_done(self, db, org, make_task):
        a, b = await make_task("A"), await make_task("B")
        service = DependencyService(db)
        task = await service.add_dependency(a.id, b.id, "blocked-by", org.owner.id, org.tenant.id)

        assert await service.can_start(task) is False

        await TaskService(db).update_status(b.id, "done", org.owner.id, org.tenant.id)
        assert await service.can_start(task) is True

    async def test_blocks_edges_do_not_gate_start(self, db, org, make_task):
        a, b = await make_task("A"), await make_task("B")
        service = DependencyService(db)
        task = await service.add_dependency(a.id, b.id, "blocks", org.owner.id, org.tenant.id)

        assert await service.can_start(task) is True

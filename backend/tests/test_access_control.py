"""Tests for project role resolution and access checks."""

from uuid import uuid4

import pytest

from taskhub.exceptions import AuthorizationError, NotFoundError
from taskhub.models.project import Project, ProjectMember
from taskhub.services.access_control import (
    check_project_access,
    get_member_role,
    has_sufficient_role,
    is_member,
    require_role,
)


def _project(owner_id, members=()):
    return Project(
        id=uuid4(),
        owner_id=owner_id,
        members=[ProjectMember(user_id=user_id, role=role) for user_id, role in members],
    )


# -----------------------------------------------------------------------------
# Role resolution
# -----------------------------------------------------------------------------
class TestGetMemberRole:

    def test_owner_is_manager_even_when_not_listed(self):
        owner_id = uuid4()
        project = _project(owner_id)
        assert get_member_role(project, owner_id) == "manager"

    def test_owner_listed_as_member_still_resolves_to_manager(self):
        owner_id = uuid4()
        project = _project(owner_id, [(owner_id, "member")])
        assert get_member_role(project, owner_id) == "manager"

    def test_listed_member_gets_stored_role(self):
        user_id = uuid4()
        project = _project(uuid4(), [(user_id, "member")])
        assert get_member_role(project, user_id) == "member"
        assert is_member(project, user_id)

    def test_non_member_has_no_role(self):
        project = _project(uuid4(), [(uuid4(), "manager")])
        stranger = uuid4()
        assert get_member_role(project, stranger) is None
        assert not is_member(project, stranger)


class TestRoleHierarchy:

    @pytest.mark.parametrize(
        "user_role,required,expected",
        [
            ("manager", "member", True),
            ("manager", "manager", True),
            ("member", "member", True),
            ("member", "manager", False),
            (None, "member", False),
            ("member", None, True),
        ],
    )
    def test_has_sufficient_role(self, user_role, required, expected):
        assert has_sufficient_role(user_role, required) is expected


class TestRequireRole:

    def test_non_member_denied_with_default_message(self):
        project = _project(uuid4())
        with pytest.raises(AuthorizationError, match="not a member"):
            require_role(project, uuid4())

    def test_member_denied_manager_action(self):
        user_id = uuid4()
        project = _project(uuid4(), [(user_id, "member")])
        with pytest.raises(AuthorizationError, match="Only project managers"):
            require_role(project, user_id, "manager")

    def test_custom_message_is_used(self):
        user_id = uuid4()
        project = _project(uuid4(), [(user_id, "member")])
        with pytest.raises(AuthorizationError, match="No deleting"):
            require_role(project, user_id, "manager", message="No deleting")

    def test_returns_effective_role(self):
        user_id = uuid4()
        project = _project(uuid4(), [(user_id, "manager")])
        assert require_role(project, user_id, "manager") == "manager"


# -----------------------------------------------------------------------------
# Tenant-scoped loading
# -----------------------------------------------------------------------------
class TestCheckProjectAccess:

    async def test_member_gets_project_and_role(self, db, org):
        project, role = await check_project_access(
            db, org.project.id, org.tenant.id, org.member.id
        )
        assert project.id == org.project.id
        assert role == "member"

    async def test_outsider_is_denied(self, db, org):
        with pytest.raises(AuthorizationError):
            await check_project_access(db, org.project.id, org.tenant.id, org.outsider.id)

    async def test_project_in_other_tenant_is_not_found(self, db, org, other_org):
        with pytest.raises(NotFoundError, match="Project not found"):
            await check_project_access(
                db, other_org.project.id, org.tenant.id, org.owner.id
            )

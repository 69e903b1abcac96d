"""Tests for tenant registration and user quota bookkeeping."""

import pytest
from sqlalchemy import select
from sqlalchemy.exc import InvalidRequestError

from taskhub.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from taskhub.models.tenant import User
from taskhub.services.tenant import TenantService


class TestRegister:

    async def test_register_creates_admin_and_counts_it(self, db):
        tenant, user = await TenantService(db).register(
            email="  Founder@Initech.io ", name="Fran Founder", company_name="Initech"
        )

        assert tenant.name == "Initech"
        assert tenant.plan == "free"
        assert tenant.max_users == 5
        assert tenant.current_users == 1
        assert tenant.allows_ai_features is False
        assert user.email == "founder@initech.io"
        assert user.role == "admin"
        assert user.tenant_id == tenant.id

    async def test_admin_row_is_persisted_with_tenant(self, db):
        tenant, user = await TenantService(db).register(email="ops@initech.io", name="Oli")

        stored = await db.scalar(select(User).where(User.email == "ops@initech.io"))
        assert stored.id == user.id
        assert stored.tenant_id == tenant.id

        # The users collection is never loaded implicitly
        with pytest.raises(InvalidRequestError):
            tenant.users

    async def test_paid_plan_enables_features(self, db):
        tenant, _ = await TenantService(db).register(
            email="cto@initech.io", name="Cam", plan="enterprise"
        )
        assert tenant.max_users == -1
        assert tenant.settings == {"allow_ai_features": True, "allow_realtime_collab": True}

    async def test_duplicate_email_conflicts(self, db, org):
        with pytest.raises(ConflictError, match="Email already registered"):
            await TenantService(db).register(email="OWNER@acme.io", name="Copycat")

    async def test_unknown_plan_rejected(self, db):
        with pytest.raises(ValidationError, match="Invalid plan"):
            await TenantService(db).register(email="x@initech.io", name="X", plan="platinum")


class TestUserQuota:

    async def test_free_plan_caps_at_five_users(self, db):
        service = TenantService(db)
        tenant, admin = await service.register(email="admin@initech.io", name="Ada")
        for i in range(4):
            await service.add_user(tenant.id, admin, f"user{i}@initech.io", f"User {i}")

        with pytest.raises(ValidationError, match="User limit reached"):
            await service.add_user(tenant.id, admin, "extra@initech.io", "Extra")

        assert (await service.get_tenant(tenant.id)).current_users == 5

    async def test_non_admin_cannot_add_users(self, db, org):
        with pytest.raises(AuthorizationError, match="Only tenant admins"):
            await TenantService(db).add_user(org.tenant.id, org.member, "new@acme.io", "New")

    async def test_admin_of_other_tenant_cannot_add_users(self, db, org, other_org):
        with pytest.raises(AuthorizationError):
            await TenantService(db).add_user(org.tenant.id, other_org.owner, "new@acme.io", "New")

    async def test_duplicate_user_email_conflicts(self, db, org):
        with pytest.raises(ConflictError):
            await TenantService(db).add_user(org.tenant.id, org.owner, "member@acme.io", "Dup")


class TestDeactivateUser:

    async def test_deactivation_frees_a_slot(self, db, org):
        service = TenantService(db)
        before = (await service.get_tenant(org.tenant.id)).current_users

        user = await service.deactivate_user(org.tenant.id, org.owner, org.outsider.id)

        assert user.is_active is False
        assert (await service.get_tenant(org.tenant.id)).current_users == before - 1

    async def test_deactivating_twice_is_a_noop(self, db, org):
        service = TenantService(db)
        await service.deactivate_user(org.tenant.id, org.owner, org.outsider.id)
        before = (await service.get_tenant(org.tenant.id)).current_users

        await service.deactivate_user(org.tenant.id, org.owner, org.outsider.id)

        assert (await service.get_tenant(org.tenant.id)).current_users == before

    async def test_cannot_deactivate_self(self, db, org):
        with pytest.raises(ValidationError, match="your own account"):
            await TenantService(db).deactivate_user(org.tenant.id, org.owner, org.owner.id)

    async def test_non_admin_denied(self, db, org):
        with pytest.raises(AuthorizationError):
            await TenantService(db).deactivate_user(org.tenant.id, org.member, org.outsider.id)

    async def test_unknown_user_not_found(self, db, org, other_org):
        with pytest.raises(NotFoundError):
            await TenantService(db).deactivate_user(org.tenant.id, org.owner, other_org.owner.id)

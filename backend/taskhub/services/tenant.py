"""Tenant registration and user quota bookkeeping."""

from uuid import UUID, uuid4

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.config import Settings, get_settings
from taskhub.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from taskhub.models.tenant import Tenant, User

logger = structlog.get_logger()

TENANT_PLANS = ("free", "pro", "enterprise")
USER_ROLES = ("admin", "manager", "member")


class TenantService:
    """Service for tenants and the users they own."""

    def __init__(self, db: AsyncSession, settings: Settings | None = None):
        self.db = db
        self.settings = settings or get_settings()

    async def _email_taken(self, email: str) -> bool:
        result = await self.db.execute(select(User.id).where(User.email == email))
        return result.scalar_one_or_none() is not None

    async def get_tenant(self, tenant_id: UUID) -> Tenant:
        result = await self.db.execute(
            select(Tenant).where(Tenant.id == tenant_id).execution_options(populate_existing=True)
        )
        tenant = result.scalar_one_or_none()
        if tenant is None:
            raise NotFoundError("Tenant not found")
        return tenant

    async def register(
        self,
        email: str,
        name: str,
        company_name: str | None = None,
        plan: str = "free",
    ) -> tuple[Tenant, User]:
        """
        Create a tenant together with its first user.

        The first user is the tenant admin and counts towards the quota.

        Raises:
            ConflictError: email already registered
            ValidationError: unknown plan
        """
        if plan not in TENANT_PLANS:
            raise ValidationError(f"Invalid plan '{plan}'", field="plan")

        email = email.strip().lower()
        if await self._email_taken(email):
            raise ConflictError("Email already registered")

        paid = plan != "free"
        tenant = Tenant(
            id=uuid4(),
            name=(company_name or f"{name}'s Company").strip(),
            plan=plan,
            is_active=True,
            max_users=self.settings.plan_max_users(plan),
            current_users=1,
            settings={"allow_ai_features": paid, "allow_realtime_collab": paid},
        )
        user = User(
            tenant_id=tenant.id,
            email=email,
            name=name.strip(),
            role="admin",
            is_active=True,
        )
        self.db.add_all([tenant, user])
        await self.db.commit()

        logger.info(
            "tenant_registered",
            tenant_id=str(tenant.id),
            user_id=str(user.id),
            plan=plan,
        )
        return tenant, user

    async def add_user(
        self,
        tenant_id: UUID,
        actor: User,
        email: str,
        name: str,
        role: str = "member",
    ) -> User:
        """Add a user to the tenant within the plan's quota. Tenant admins only."""
        if actor.tenant_id != tenant_id or actor.role != "admin":
            raise AuthorizationError("Only tenant admins can manage users")
        if role not in USER_ROLES:
            raise ValidationError(f"Invalid role '{role}'", field="role")

        tenant = await self.get_tenant(tenant_id)
        if not tenant.can_add_users(1):
            logger.info(
                "tenant_user_limit_reached",
                tenant_id=str(tenant_id),
                plan=tenant.plan,
                max_users=tenant.max_users,
            )
            raise ValidationError("User limit reached for this plan")

        email = email.strip().lower()
        if await self._email_taken(email):
            raise ConflictError("Email already registered")

        user = User(
            tenant_id=tenant_id,
            email=email,
            name=name.strip(),
            role=role,
            is_active=True,
        )
        self.db.add(user)
        tenant.current_users += 1
        await self.db.commit()

        logger.info("tenant_user_added", tenant_id=str(tenant_id), user_id=str(user.id), role=role)
        return user

    async def deactivate_user(self, tenant_id: UUID, actor: User, user_id: UUID) -> User:
        """Deactivate a user and release its quota slot."""
        if actor.tenant_id != tenant_id or actor.role != "admin":
            raise AuthorizationError("Only tenant admins can manage users")
        if actor.id == user_id:
            raise ValidationError("You cannot deactivate your own account")

        result = await self.db.execute(
            select(User).where(User.id == user_id, User.tenant_id == tenant_id)
        )
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFoundError("User not found")
        if not user.is_active:
            return user

        tenant = await self.get_tenant(tenant_id)
        user.is_active = False
        tenant.current_users = max(tenant.current_users - 1, 0)
        await self.db.commit()

        logger.info("tenant_user_deactivated", tenant_id=str(tenant_id), user_id=str(user_id))
        return user

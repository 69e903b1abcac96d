"""Tenant registration and user management endpoints."""

from typing import Any
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.api.v1.auth import CurrentUser, create_access_token
from taskhub.api.v1.common import envelope
from taskhub.db.session import get_db_session
from taskhub.models.tenant import Tenant, User
from taskhub.services.tenant import TenantService

router = APIRouter()
logger = structlog.get_logger()


class TenantRegister(BaseModel):
    """Register a tenant together with its first (admin) user."""

    email: EmailStr
    name: str = Field(..., min_length=1, max_length=255)
    company_name: str | None = Field(None, max_length=100)
    plan: str = "free"


class TenantUserCreate(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=255)
    role: str = "member"


def _tenant_to_response(tenant: Tenant) -> dict[str, Any]:
    return {
        "id": tenant.id,
        "name": tenant.name,
        "plan": tenant.plan,
        "is_active": tenant.is_active,
        "max_users": tenant.max_users,
        "current_users": tenant.current_users,
        "settings": tenant.settings or {},
    }


def _user_to_response(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "tenant_id": user.tenant_id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "is_active": user.is_active,
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def register_tenant(
    data: TenantRegister,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Create a tenant and its admin user, returning an access token for the admin."""
    tenant, user = await TenantService(db).register(
        email=data.email,
        name=data.name,
        company_name=data.company_name,
        plan=data.plan,
    )
    return envelope(
        {
            "tenant": _tenant_to_response(tenant),
            "user": _user_to_response(user),
            "access_token": create_access_token(user.id, tenant.id),
            "token_type": "bearer",
        },
        "Tenant registered successfully",
    )


@router.post("/users", status_code=status.HTTP_201_CREATED)
async def add_tenant_user(
    data: TenantUserCreate,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Add a user to the caller's tenant. Tenant admins only."""
    user = await TenantService(db).add_user(
        tenant_id=current_user.tenant_id,
        actor=current_user,
        email=data.email,
        name=data.name,
        role=data.role,
    )
    return envelope(
        {
            "user": _user_to_response(user),
            "access_token": create_access_token(user.id, user.tenant_id),
            "token_type": "bearer",
        },
        "User added successfully",
    )


@router.delete("/users/{user_id}")
async def deactivate_tenant_user(
    user_id: UUID,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    user = await TenantService(db).deactivate_user(current_user.tenant_id, current_user, user_id)
    return envelope(_user_to_response(user), "User deactivated successfully")

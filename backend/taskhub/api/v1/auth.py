"""Bearer token handling and actor resolution."""

from datetime import datetime, timedelta, timezone
from typing import Annotated
from uuid import UUID

import structlog
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.config import get_settings
from taskhub.db.session import get_db_session
from taskhub.exceptions import AuthenticationError
from taskhub.models.tenant import Tenant, User

logger = structlog.get_logger()
settings = get_settings()
security = HTTPBearer(auto_error=False)


def create_access_token(
    user_id: UUID,
    tenant_id: UUID,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT access token."""
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(
            minutes=settings.jwt_access_token_expire_minutes
        )

    to_encode = {
        "sub": str(user_id),
        "tenant": str(tenant_id),
        "exp": expire,
        "type": "access",
    }
    return jwt.encode(
        to_encode,
        settings.jwt_secret_key.get_secret_value(),
        algorithm=settings.jwt_algorithm,
    )


async def resolve_token(token: str, db: AsyncSession) -> User:
    """
    Resolve a bearer token to an active user in an active tenant.

    Shared by the HTTP dependency and the WebSocket handshake.

    Raises:
        AuthenticationError: token invalid, expired, or naming an unknown or
            inactive user or tenant
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key.get_secret_value(),
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        raise AuthenticationError("Invalid token")

    user_id = payload.get("sub")
    tenant_id = payload.get("tenant")
    if user_id is None or tenant_id is None or payload.get("type") != "access":
        raise AuthenticationError("Invalid token")

    try:
        user_uuid, tenant_uuid = UUID(user_id), UUID(tenant_id)
    except ValueError:
        raise AuthenticationError("Invalid token")

    result = await db.execute(
        select(User)
        .join(Tenant, Tenant.id == User.tenant_id)
        .where(
            User.id == user_uuid,
            User.tenant_id == tenant_uuid,
            User.is_active.is_(True),
            Tenant.is_active.is_(True),
        )
    )
    user = result.scalar_one_or_none()
    if user is None:
        logger.info("token_rejected", user_id=user_id, tenant_id=tenant_id)
        raise AuthenticationError("User not found or inactive")

    structlog.contextvars.bind_contextvars(user_id=user_id, tenant_id=tenant_id)
    return user


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: AsyncSession = Depends(get_db_session),
) -> User:
    """Get the current authenticated user from the bearer token."""
    if not credentials:
        raise AuthenticationError("Not authenticated")
    return await resolve_token(credentials.credentials, db)


# Type alias for dependency injection
CurrentUser = Annotated[User, Depends(get_current_user)]

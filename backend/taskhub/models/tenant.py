"""Tenant and user models."""

from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from taskhub.db.base import BaseModel

# Sentinel for tenants without a user quota
UNLIMITED_USERS = -1


class Tenant(BaseModel):
    """Isolation boundary grouping users, projects and tasks."""

    __tablename__ = "tenants"

    name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    plan: Mapped[str] = mapped_column(
        String(20), nullable=False, default="free"
    )  # free, pro, enterprise
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)

    # User quota
    max_users: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    current_users: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # allow_ai_features, allow_realtime_collab
    settings: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    # Relationships
    users: Mapped[list["User"]] = relationship(
        "User", back_populates="tenant", lazy="raise"
    )

    def __repr__(self) -> str:
        try:
            return f"<Tenant {self.name}>"
        except Exception:
            return f"<Tenant id={self.id}>"

    def can_add_users(self, count: int = 1) -> bool:
        """Check whether ``count`` more users fit in the plan quota."""
        if self.max_users == UNLIMITED_USERS:
            return True
        return self.current_users + count <= self.max_users

    @property
    def allows_ai_features(self) -> bool:
        return bool((self.settings or {}).get("allow_ai_features", self.plan != "free"))


class User(BaseModel):
    """User belonging to exactly one tenant."""

    __tablename__ = "users"

    tenant_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default="member"
    )  # admin, manager, member

    # Account status
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Relationships
    tenant: Mapped["Tenant"] = relationship("Tenant", back_populates="users")

    def __repr__(self) -> str:
        try:
            return f"<User {self.email}>"
        except Exception:
            return f"<User id={self.id}>"

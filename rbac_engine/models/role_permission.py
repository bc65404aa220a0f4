"""Role to permission link."""

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint, func,
)
from sqlalchemy.orm import relationship
from rbac_engine.db.base import Base


class RolePermission(Base):
    """Soft-removable link between a role and a permission.

    One row per (role, permission) pair; removal flips ``is_active`` and a
    later grant reactivates the same row.
    """
    __tablename__ = "rbac_role_permissions"
    __table_args__ = (
        UniqueConstraint("role_id", "permission_id", name="uq_role_permission"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    role_id = Column(Integer, ForeignKey("rbac_roles.id"), nullable=False, index=True)
    permission_id = Column(Integer, ForeignKey("rbac_permissions.id"), nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    granted_by = Column(String(64), nullable=True)
    granted_at = Column(DateTime, server_default=func.now(), nullable=False)

    role = relationship("Role", lazy="joined")
    permission = relationship("Permission", lazy="joined")

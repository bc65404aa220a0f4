"""Principal to role assignment."""

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint, func,
)
from sqlalchemy.orm import relationship
from rbac_engine.db.base import Base


class UserRoleAssignment(Base):
    """Additive role assignment for a principal. Revocation keeps the row."""
    __tablename__ = "rbac_user_roles"
    __table_args__ = (
        UniqueConstraint("principal_id", "role_id", name="uq_principal_role"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    principal_id = Column(String(64), nullable=False, index=True)
    role_id = Column(Integer, ForeignKey("rbac_roles.id"), nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    assigned_by = Column(String(64), nullable=True)
    assigned_at = Column(DateTime, server_default=func.now(), nullable=False)
    expires_at = Column(DateTime, nullable=True)
    revoked_at = Column(DateTime, nullable=True)

    role = relationship("Role", lazy="joined")

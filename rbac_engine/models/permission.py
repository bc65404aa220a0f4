"""Permission model."""

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, func
from sqlalchemy.orm import relationship
from rbac_engine.db.base import Base


class Permission(Base):
    """Atomic capability named ``resource:action``."""
    __tablename__ = "rbac_permissions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, index=True)
    display_name = Column(String(150), nullable=False)
    description = Column(Text, nullable=True)
    # Nullable at the column level so legacy rows can still be loaded and repaired
    resource = Column(String(50), nullable=True)
    action = Column(String(50), nullable=True)
    module_id = Column(Integer, ForeignKey("rbac_modules.id"), nullable=True, index=True)
    is_system = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    module = relationship("Module", back_populates="permissions")

"""Permission module model."""

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, func
from sqlalchemy.orm import relationship
from rbac_engine.db.base import Base


class Module(Base):
    """Logical grouping of permissions, ordered for display."""
    __tablename__ = "rbac_modules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # Unique among active rows only, enforced by the mutation service
    name = Column(String(100), nullable=False, index=True)
    display_name = Column(String(150), nullable=False)
    description = Column(Text, nullable=True)
    icon = Column(String(100), nullable=True)
    color = Column(String(50), nullable=True)
    sort_order = Column(Integer, nullable=False, default=0)
    is_system = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    permissions = relationship("Permission", back_populates="module", lazy="selectin")

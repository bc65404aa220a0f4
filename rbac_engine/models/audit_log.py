"""Audit log model: append-only."""

from sqlalchemy import Column, Integer, String, Text, DateTime, func
from rbac_engine.db.base import Base


class AuditLog(Base):
    """Immutable audit trail for rule catalog mutations.

    This table is APPEND-ONLY: no UPDATE or DELETE operations should ever
    be performed on it (enforced at application level).
    """
    __tablename__ = "rbac_audit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    actor_id = Column(String(64), nullable=True, index=True)
    action = Column(String(100), nullable=False, index=True)  # e.g. "role_permissions_updated"
    target_type = Column(String(50), nullable=False, index=True)  # module, permission, role, user_roles
    target_id = Column(String(100), nullable=True, index=True)
    detail_json = Column(Text, nullable=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(500), nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False, index=True)

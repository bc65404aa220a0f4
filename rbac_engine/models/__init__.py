"""Models package: import all models so metadata discovers them."""

from rbac_engine.models.module import Module
from rbac_engine.models.permission import Permission
from rbac_engine.models.role import Role
from rbac_engine.models.role_permission import RolePermission
from rbac_engine.models.user_role import UserRoleAssignment
from rbac_engine.models.audit_log import AuditLog

__all__ = [
    "Module", "Permission", "Role", "RolePermission",
    "UserRoleAssignment", "AuditLog",
]

"""Read-only views over the rule catalog for admin screens."""

import logging
from typing import Any, Dict, List

from rbac_engine.core.exceptions import ResourceNotFoundError
from rbac_engine.db.rule_store import RuleStore
from rbac_engine.models import Module, Permission, Role, UserRoleAssignment
from rbac_engine.services.resolver_service import utcnow

logger = logging.getLogger(__name__)


class CatalogService:
    """Listings of active modules, permissions, roles and assignments."""

    def __init__(self, store: RuleStore):
        self.store = store

    def list_modules(self) -> List[Module]:
        return self.store.list_active(Module)

    def list_roles(self) -> List[Role]:
        return self.store.list_active(Role)

    def list_permissions(self, module_id: int = None) -> List[Permission]:
        return self.store.list_permissions(module_id)

    def permissions_by_module(self) -> List[Dict[str, Any]]:
        """Active permissions grouped under their module, in module sort order.

        Permissions whose module is missing or inactive are collected in a
        trailing group with ``module`` set to None.
        """
        groups: Dict[int, Dict[str, Any]] = {}
        for module in self.store.list_active(Module):
            groups[module.id] = {"module": module, "permissions": []}
        orphans: List[Permission] = []

        for permission in self.store.list_permissions():
            group = groups.get(permission.module_id)
            if group is None:
                orphans.append(permission)
            else:
                group["permissions"].append(permission)

        result = list(groups.values())
        if orphans:
            result.append({"module": None, "permissions": orphans})
        return result

    def get_role(self, role_id: int) -> Dict[str, Any]:
        """Role with its active permissions."""
        role = self.store.get(Role, role_id)
        if role is None:
            raise ResourceNotFoundError(f"Role {role_id} not found")
        return {
            "role": role,
            "permissions": self.store.active_permissions_for_role(role.id),
        }

    def principal_roles(self, principal_id: str) -> List[UserRoleAssignment]:
        """Assignments currently in effect for the principal."""
        return self.store.active_assignments(principal_id, utcnow())

    def principals_with_roles(self, page: int = 1, page_size: int = 50) -> Dict[str, Any]:
        """Page of principals that hold roles, each with its assignments in effect."""
        now = utcnow()
        principal_ids, total = self.store.assigned_principals(now, page, page_size)
        return {
            "principals": [
                {"principal_id": pid, "assignments": self.store.active_assignments(pid, now)}
                for pid in principal_ids
            ],
            "total": total,
            "page": page,
            "page_size": page_size,
        }

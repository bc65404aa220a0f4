"""Seed the system modules, permissions and roles."""

import logging
from typing import Dict, Optional

from sqlalchemy.orm import Session

from rbac_engine.db.rule_store import RuleStore
from rbac_engine.models import Module, Permission, Role, RolePermission, UserRoleAssignment
from rbac_engine.services.mutation_service import derive_resource_action
from rbac_engine.services.resolver_service import utcnow

logger = logging.getLogger(__name__)

SEED_ACTOR = "system"

MODULES = [
    ("admin", "Administration", "settings"),
    ("cases", "Cases", "folder"),
    ("contributions", "Contributions", "heart"),
    ("users", "Users", "users"),
    ("profile", "Profile", "user"),
    ("notifications", "Notifications", "bell"),
    ("rbac", "Access Control", "shield"),
    ("reports", "Reports", "chart"),
]

# name -> (display name, module)
PERMISSIONS = {
    "admin:dashboard": ("Access Admin Dashboard", "admin"),
    "admin:analytics": ("View Analytics", "admin"),
    "admin:settings": ("Manage Settings", "admin"),
    "cases:create": ("Create Cases", "cases"),
    "cases:read": ("View Cases", "cases"),
    "cases:update": ("Edit Cases", "cases"),
    "cases:delete": ("Delete Cases", "cases"),
    "cases:publish": ("Publish Cases", "cases"),
    "cases:approve": ("Approve Cases", "cases"),
    "cases:view_public": ("View Public Cases", "cases"),
    "contributions:create": ("Make Contributions", "contributions"),
    "contributions:read": ("View Contributions", "contributions"),
    "contributions:approve": ("Approve Contributions", "contributions"),
    "contributions:reject": ("Reject Contributions", "contributions"),
    "contributions:refund": ("Process Refunds", "contributions"),
    "users:read": ("View Users", "users"),
    "users:update": ("Edit Users", "users"),
    "users:delete": ("Delete Users", "users"),
    "profile:read": ("View Own Profile", "profile"),
    "profile:update": ("Edit Own Profile", "profile"),
    "notifications:read": ("View Notifications", "notifications"),
    "notifications:manage": ("Manage Notifications", "notifications"),
    "rbac:manage": ("Manage Roles and Permissions", "rbac"),
    "audit:read": ("View Audit Log", "rbac"),
    "reports:read": ("View Reports", "reports"),
    "content:view_public": ("View Public Content", "reports"),
    "stats:view_public": ("View Public Statistics", "reports"),
}

ALL = "*"

# name -> (display name, level, is_system, permissions)
ROLES = {
    "super_admin": ("Super Administrator", 100, True, ALL),
    "admin": ("Administrator", 80, True, ALL),
    "moderator": ("Moderator", 60, True, [
        "admin:dashboard", "admin:analytics",
        "cases:create", "cases:read", "cases:update", "cases:publish", "cases:approve",
        "contributions:read", "contributions:approve",
        "users:read",
        "profile:read", "profile:update",
        "notifications:read",
    ]),
    "donor": ("Donor", 20, True, [
        "cases:read", "cases:view_public",
        "contributions:create", "contributions:read",
        "profile:read", "profile:update",
        "notifications:read",
    ]),
    "beneficiary": ("Beneficiary", 20, False, [
        "cases:create", "cases:read", "cases:update",
        "contributions:read",
        "profile:read", "profile:update",
        "notifications:read",
    ]),
    "visitor": ("Visitor", 0, True, [
        "cases:view_public", "content:view_public", "stats:view_public",
    ]),
}


def _seed_modules(store: RuleStore) -> Dict[str, Module]:
    modules = {}
    for sort_order, (name, display_name, icon) in enumerate(MODULES, start=1):
        module = store.get_by_name(Module, name)
        if module is None:
            module = Module(
                name=name, display_name=display_name, icon=icon,
                sort_order=sort_order, is_system=True, is_active=True,
            )
            store.add(module)
        modules[name] = module
    return modules


def _seed_permissions(store: RuleStore, modules: Dict[str, Module]) -> Dict[str, Permission]:
    permissions = {}
    for name, (display_name, module_name) in PERMISSIONS.items():
        permission = store.get_by_name(Permission, name)
        if permission is None:
            resource, action = derive_resource_action(name)
            permission = Permission(
                name=name, display_name=display_name,
                resource=resource, action=action,
                module_id=modules[module_name].id,
                is_system=True, is_active=True,
            )
            store.add(permission)
        permissions[name] = permission
    return permissions


def _seed_roles(store: RuleStore, permissions: Dict[str, Permission]) -> Dict[str, Role]:
    roles = {}
    for sort_order, (name, (display_name, level, is_system, granted)) in enumerate(ROLES.items(), start=1):
        role = store.get_by_name(Role, name)
        if role is None:
            role = Role(
                name=name, display_name=display_name, level=level,
                sort_order=sort_order, is_system=is_system, is_active=True,
            )
            store.add(role)
        roles[name] = role

        # Only add links that never existed so later edits are not undone
        existing = {link.permission_id for link in store.links_for_role(role.id)}
        names = permissions.keys() if granted == ALL else granted
        for permission_name in names:
            permission = permissions[permission_name]
            if permission.id not in existing:
                store.add(RolePermission(
                    role_id=role.id, permission_id=permission.id,
                    is_active=True, granted_by=SEED_ACTOR, granted_at=utcnow(),
                ))
    return roles


def seed_super_admin(store: RuleStore, principal_id: str, role: Role) -> bool:
    """Give ``principal_id`` the super admin role. Returns False if it already holds it."""
    assignment = store.assignment(principal_id, role.id)
    if assignment is not None and assignment.is_active:
        return False
    if assignment is None:
        assignment = UserRoleAssignment(principal_id=principal_id, role_id=role.id)
        store.add(assignment)
    assignment.is_active = True
    assignment.assigned_by = SEED_ACTOR
    assignment.assigned_at = utcnow()
    assignment.expires_at = None
    assignment.revoked_at = None
    return True


def seed_rbac(db: Session, super_admin_principal: Optional[str] = None) -> Dict[str, int]:
    """Insert the system catalog if missing. Safe to run repeatedly."""
    store = RuleStore(db)
    with store.transaction():
        modules = _seed_modules(store)
        permissions = _seed_permissions(store, modules)
        roles = _seed_roles(store, permissions)
        if super_admin_principal:
            if seed_super_admin(store, super_admin_principal, roles["super_admin"]):
                logger.info("Assigned super_admin to %s", super_admin_principal)

    logger.info(
        "Seeded %d modules, %d permissions, %d roles",
        len(modules), len(permissions), len(roles),
    )
    return {"modules": len(modules), "permissions": len(permissions), "roles": len(roles)}

"""Rule mutation service: the only write path into the rule catalog.

Each public method:
  1. requires the rule-management permission through the Guard,
  2. validates and writes inside one store transaction,
  3. invalidates affected cached permission sets,
  4. records exactly one audit entry.

A rejected call raises before anything is written or audited.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel

from rbac_engine.core.config import settings
from rbac_engine.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ProtectedResourceError,
    ResourceConflictError,
    ResourceNotFoundError,
    ValidationError,
)
from rbac_engine.db.rule_store import RuleStore
from rbac_engine.models import (
    Module, Permission, Role, RolePermission, UserRoleAssignment,
)
from rbac_engine.schemas.schemas import (
    ModuleCreate, ModuleUpdate,
    PermissionCreate, PermissionUpdate,
    RoleCreate, RoleUpdate,
)
from rbac_engine.services.audit_service import AuditRecorder
from rbac_engine.services.guard_service import Denial, Grant, Guard
from rbac_engine.services.resolver_service import PermissionResolver, as_naive_utc, utcnow

logger = logging.getLogger(__name__)

NAME_SEPARATOR = ":"
FALLBACK_RESOURCE = "general"
FALLBACK_ACTION = "access"

# Columns that may be omitted from a patch but never set to blank
_NON_BLANK_FIELDS = {"name", "display_name", "resource", "action"}
_NON_NULL_FIELDS = {"sort_order", "module_id"}


@dataclass(frozen=True)
class MutationContext:
    """Who is making the change and where the request came from."""

    actor_id: Optional[str]
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


def _required(value: Any, field: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required")
    return str(value).strip()


def derive_resource_action(name: str) -> tuple:
    """Split ``resource:action`` names. ``rbac:roles:manage`` -> ("rbac", "roles_manage").

    Both parts are always non-blank: a missing resource becomes ``general``
    and a missing action becomes ``access``.
    """
    name = (name or "").strip()
    resource, sep, action = name.partition(NAME_SEPARATOR)
    resource = resource.strip() or FALLBACK_RESOURCE
    action = action.strip().strip(NAME_SEPARATOR).replace(NAME_SEPARATOR, "_")
    if not sep or not action:
        return resource, FALLBACK_ACTION
    return resource, action


class RuleMutationService:
    """Creates, updates and soft-deletes modules, permissions, roles, links and assignments."""

    def __init__(
        self,
        store: RuleStore,
        guard: Guard,
        resolver: PermissionResolver,
        audit: AuditRecorder,
        manage_permission: str = settings.RULE_MANAGE_PERMISSION,
        super_admin_role: str = settings.SUPER_ADMIN_ROLE,
    ):
        self.store = store
        self.guard = guard
        self.resolver = resolver
        self.audit = audit
        self.manage_permission = manage_permission
        self.super_admin_role = super_admin_role

    # ==================== Modules ====================

    def create_module(self, ctx: MutationContext, body: ModuleCreate) -> Module:
        self._authorize(ctx)
        name = _required(body.name, "name")
        display_name = _required(body.display_name, "display_name")

        with self.store.transaction():
            self._ensure_unique(Module, name)
            module = Module(
                name=name,
                display_name=display_name,
                description=body.description,
                icon=body.icon,
                color=body.color,
                sort_order=self._next_sort_order(Module, body.sort_order),
                is_system=False,
                is_active=True,
            )
            self.store.add(module)

        self._record(ctx, "module_created", "module", module.id, {"name": name})
        return module

    def update_module(self, ctx: MutationContext, module_id: int, patch: ModuleUpdate) -> Module:
        return self._update(ctx, Module, "module", module_id, patch)

    def delete_module(self, ctx: MutationContext, module_id: int) -> Module:
        return self._soft_delete(ctx, Module, "module", module_id)

    # ==================== Permissions ====================

    def create_permission(self, ctx: MutationContext, body: PermissionCreate) -> Permission:
        self._authorize(ctx)
        name = _required(body.name, "name")
        display_name = _required(body.display_name, "display_name")
        resource = _required(body.resource, "resource")
        action = _required(body.action, "action")

        with self.store.transaction():
            self._ensure_unique(Permission, name)
            self._get_active(Module, body.module_id, "module")
            permission = Permission(
                name=name,
                display_name=display_name,
                description=body.description,
                resource=resource,
                action=action,
                module_id=body.module_id,
                is_system=False,
                is_active=True,
            )
            self.store.add(permission)

        self._record(
            ctx, "permission_created", "permission", permission.id,
            {"name": name, "resource": resource, "action": action, "module_id": body.module_id},
        )
        return permission

    def update_permission(
        self, ctx: MutationContext, permission_id: int, patch: PermissionUpdate
    ) -> Permission:
        return self._update(ctx, Permission, "permission", permission_id, patch)

    def delete_permission(self, ctx: MutationContext, permission_id: int) -> Permission:
        return self._soft_delete(ctx, Permission, "permission", permission_id)

    def repair_permission_fields(self, ctx: MutationContext) -> List[Permission]:
        """Fill blank resource/action columns on legacy rows from the permission name.

        Applies to system rows as well: only empty columns are written.
        """
        self._authorize(ctx)
        repaired: List[Dict[str, Any]] = []

        with self.store.transaction():
            rows = self.store.permissions_with_blank_fields()
            for permission in rows:
                resource, action = derive_resource_action(permission.name)
                if not (permission.resource or "").strip():
                    permission.resource = resource[:50]
                if not (permission.action or "").strip():
                    permission.action = action[:50]
                repaired.append({
                    "id": permission.id,
                    "name": permission.name,
                    "resource": permission.resource,
                    "action": permission.action,
                })

        logger.info("Repaired %d permissions with blank fields", len(repaired))
        self._record(
            ctx, "permissions_repaired", "permission", None,
            {"count": len(repaired), "permissions": repaired},
        )
        return rows

    # ==================== Roles ====================

    def create_role(self, ctx: MutationContext, body: RoleCreate) -> Role:
        self._authorize(ctx)
        name = _required(body.name, "name")
        display_name = _required(body.display_name, "display_name")

        with self.store.transaction():
            self._ensure_unique(Role, name)
            role = Role(
                name=name,
                display_name=display_name,
                description=body.description,
                level=body.level,
                sort_order=self._next_sort_order(Role, body.sort_order),
                is_system=False,
                is_active=True,
            )
            self.store.add(role)

        self._record(ctx, "role_created", "role", role.id, {"name": name, "level": body.level})
        return role

    def update_role(self, ctx: MutationContext, role_id: int, patch: RoleUpdate) -> Role:
        return self._update(ctx, Role, "role", role_id, patch)

    def delete_role(self, ctx: MutationContext, role_id: int) -> Role:
        return self._soft_delete(ctx, Role, "role", role_id)

    def set_role_permissions(
        self, ctx: MutationContext, role_id: int, permission_ids: Iterable[int]
    ) -> Role:
        """Replace the role's active permission set with exactly ``permission_ids``.

        The role row stays locked until commit, so concurrent replaces for the
        same role apply one after the other.
        """
        self._authorize(ctx)
        wanted = list(dict.fromkeys(permission_ids))

        with self.store.transaction():
            role = self.store.lock_role(role_id)
            if role is None:
                raise ResourceNotFoundError(f"Role {role_id} not found")

            found = {p.id for p in self.store.get_permissions(wanted)}
            missing = [pid for pid in wanted if pid not in found]
            if missing:
                raise ResourceNotFoundError(
                    f"Permissions not found: {', '.join(str(pid) for pid in missing)}"
                )

            links = {link.permission_id: link for link in self.store.links_for_role(role.id)}
            previous = sorted(pid for pid, link in links.items() if link.is_active)

            for link in links.values():
                link.is_active = False
            now = utcnow()
            for pid in wanted:
                link = links.get(pid)
                if link is None:
                    self.store.add(RolePermission(
                        role_id=role.id,
                        permission_id=pid,
                        is_active=True,
                        granted_by=ctx.actor_id,
                        granted_at=now,
                    ))
                    continue
                if pid not in previous:
                    link.granted_by = ctx.actor_id
                    link.granted_at = now
                link.is_active = True

            role_name = role.name
            affected = self.store.principals_with_role(role.id)

        self._invalidate_role_holders(role_name, affected)
        self._record(
            ctx, "role_permissions_updated", "role", role.id,
            {
                "role_name": role_name,
                "permissions_count": len(wanted),
                "permission_ids": wanted,
                "previous_permission_ids": previous,
            },
        )
        return role

    # ==================== Assignments ====================

    def assign_role(
        self,
        ctx: MutationContext,
        principal_id: str,
        role_id: int,
        expires_at: Optional[datetime] = None,
    ) -> UserRoleAssignment:
        self._authorize(ctx)
        principal_id = self._assignable_principal(principal_id)
        now = utcnow()
        if expires_at is not None:
            expires_at = as_naive_utc(expires_at)
            if expires_at <= now:
                raise ValidationError("expires_at must be in the future")

        with self.store.transaction():
            role = self._get_active(Role, role_id, "role")
            self._check_assignment_authority(ctx, principal_id, [role])

            assignment = self.store.assignment(principal_id, role.id)
            if assignment is not None and assignment.is_active and (
                assignment.expires_at is None or assignment.expires_at > now
            ):
                raise ResourceConflictError(
                    f"Principal {principal_id} already holds role '{role.name}'"
                )
            if assignment is None:
                assignment = UserRoleAssignment(principal_id=principal_id, role_id=role.id)
                try:
                    self.store.add(assignment)
                except ResourceConflictError as exc:
                    # a concurrent assign inserted the same pair first
                    raise ResourceConflictError(
                        f"Principal {principal_id} already holds role '{role.name}'"
                    ) from exc
            assignment.is_active = True
            assignment.assigned_by = ctx.actor_id
            assignment.assigned_at = now
            assignment.expires_at = expires_at
            assignment.revoked_at = None
            role_name = role.name

        self.resolver.invalidate(principal_id)
        self._record(
            ctx, "role_assigned", "user_roles", principal_id,
            {"role_id": role_id, "role_name": role_name, "expires_at": expires_at},
        )
        return assignment

    def revoke_role(self, ctx: MutationContext, principal_id: str, role_id: int) -> UserRoleAssignment:
        """Deactivate a single (principal, role) link."""
        self._authorize(ctx)
        principal_id = self._assignable_principal(principal_id)

        with self.store.transaction():
            assignment = self.store.assignment(principal_id, role_id)
            if assignment is None or not assignment.is_active:
                raise ResourceNotFoundError(
                    f"Principal {principal_id} holds no active role {role_id}"
                )
            self._check_assignment_authority(ctx, principal_id, [assignment.role])
            assignment.is_active = False
            assignment.revoked_at = utcnow()
            role_name = assignment.role.name

        self.resolver.invalidate(principal_id)
        self._record(
            ctx, "role_revoked", "user_roles", principal_id,
            {"role_id": role_id, "role_name": role_name},
        )
        return assignment

    def revoke_all_roles(self, ctx: MutationContext, principal_id: str) -> int:
        """Deactivate every active assignment of the principal. Returns the count."""
        self._authorize(ctx)
        principal_id = self._assignable_principal(principal_id)

        with self.store.transaction():
            assignments = self.store.active_assignment_rows(principal_id)
            self._check_assignment_authority(ctx, principal_id, [a.role for a in assignments])
            now = utcnow()
            for assignment in assignments:
                assignment.is_active = False
                assignment.revoked_at = now
            revoked = [{"role_id": a.role_id, "role_name": a.role.name} for a in assignments]

        self.resolver.invalidate(principal_id)
        self._record(
            ctx, "roles_revoked", "user_roles", principal_id,
            {"count": len(revoked), "roles": revoked},
        )
        return len(revoked)

    # ==================== Internals ====================

    def _authorize(self, ctx: MutationContext) -> Grant:
        if ctx.actor_id and self.resolver.is_visitor(ctx.actor_id):
            raise AuthenticationError("Authentication required")
        result = self.guard.require(ctx.actor_id, self.manage_permission)
        if isinstance(result, Denial):
            result.raise_for_status()
        return result

    def _record(self, ctx: MutationContext, action: str, target_type: str, target_id, detail) -> None:
        logger.info("%s %s:%s by %s", action, target_type, target_id, ctx.actor_id)
        self.audit.record(
            actor_id=ctx.actor_id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            detail=detail,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
        )

    def _get_active(self, model, row_id: Optional[int], label: str):
        row = self.store.get(model, row_id) if row_id is not None else None
        if row is None:
            raise ResourceNotFoundError(f"{label.capitalize()} {row_id} not found")
        return row

    def _get_mutable(self, model, row_id: int, label: str):
        row = self._get_active(model, row_id, label)
        if row.is_system:
            raise ProtectedResourceError(f"Cannot modify system {label} '{row.name}'")
        return row

    def _ensure_unique(self, model, name: str, exclude_id: Optional[int] = None) -> None:
        existing = self.store.get_by_name(model, name)
        if existing is not None and existing.id != exclude_id:
            raise ResourceConflictError(
                f"{model.__name__} with name '{name}' already exists"
            )

    def _next_sort_order(self, model, requested: Optional[int]) -> int:
        if requested is not None:
            return requested
        return self.store.max_sort_order(model) + 1

    def _update(self, ctx: MutationContext, model, label: str, row_id: int, patch: BaseModel):
        self._authorize(ctx)
        changes = patch.model_dump(exclude_unset=True)
        for field in _NON_BLANK_FIELDS & changes.keys():
            changes[field] = _required(changes[field], field)
        for field in _NON_NULL_FIELDS & changes.keys():
            if changes[field] is None:
                raise ValidationError(f"{field} cannot be null")

        with self.store.transaction():
            row = self._get_mutable(model, row_id, label)
            if "name" in changes and changes["name"] != row.name:
                self._ensure_unique(model, changes["name"], exclude_id=row.id)
            if "module_id" in changes:
                self._get_active(Module, changes["module_id"], "module")

            before = {field: getattr(row, field) for field in changes}
            for field, value in changes.items():
                setattr(row, field, value)
            renamed = "name" in changes and before["name"] != changes["name"]

        if model is Permission and renamed:
            self.resolver.invalidate_all()
        self._record(
            ctx, f"{label}_updated", label, row.id,
            {"before": before, "after": changes},
        )
        return row

    def _soft_delete(self, ctx: MutationContext, model, label: str, row_id: int):
        self._authorize(ctx)

        with self.store.transaction():
            row = self._get_mutable(model, row_id, label)
            row.is_active = False
            name = row.name
            affected = self.store.principals_with_role(row.id) if model is Role else []

        if model is Permission:
            self.resolver.invalidate_all()
        elif model is Role:
            self._invalidate_role_holders(name, affected)
        self._record(ctx, f"{label}_deleted", label, row.id, {"name": name})
        return row

    def _invalidate_role_holders(self, role_name: str, principals: List[str]) -> None:
        for principal_id in principals:
            self.resolver.invalidate(principal_id)
        if role_name == self.resolver.visitor_role:
            self.resolver.invalidate(self.resolver.visitor_principal)

    def _assignable_principal(self, principal_id: Optional[str]) -> str:
        principal_id = _required(principal_id, "principal_id")
        if self.resolver.is_visitor(principal_id):
            raise ValidationError("The visitor principal is bound to the visitor role")
        return principal_id

    def _is_super_admin(self, principal_id: Optional[str]) -> bool:
        if not principal_id:
            return False
        return self.resolver.has_role(principal_id, self.super_admin_role)

    def _check_assignment_authority(
        self, ctx: MutationContext, principal_id: str, roles: List[Role]
    ) -> None:
        if self._is_super_admin(ctx.actor_id):
            return
        if principal_id == ctx.actor_id:
            raise AuthorizationError("You cannot modify your own roles")
        if any(role.name == self.super_admin_role for role in roles):
            raise AuthorizationError(
                f"Only {self.super_admin_role} can assign or revoke the {self.super_admin_role} role"
            )

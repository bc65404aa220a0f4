"""Permission resolver: effective permission set of a principal."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import FrozenSet, Iterator, List, Optional

from rbac_engine.core.config import settings
from rbac_engine.core.exceptions import ResolutionError, StoreUnavailableError
from rbac_engine.db.rule_store import RuleStore
from rbac_engine.models import Role

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC. Naive values are taken as UTC already."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class PermissionSet:
    """Immutable snapshot of the permission names a principal holds."""

    principal_id: str
    permissions: FrozenSet[str]

    def __contains__(self, permission: object) -> bool:
        return permission in self.permissions

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self.permissions))

    def __len__(self) -> int:
        return len(self.permissions)


class PermissionResolver:
    """Unions active role links for a principal's active assignments.

    Roles are flat: a permission reaches a principal only through a direct,
    active role link, so resolution is a bounded pair of queries with no
    recursion. Results are cached per principal by ``cache``.
    """

    def __init__(
        self,
        store: RuleStore,
        cache,
        visitor_principal: str = settings.VISITOR_PRINCIPAL,
        visitor_role: str = settings.VISITOR_ROLE,
    ):
        self.store = store
        self.cache = cache
        self.visitor_principal = visitor_principal
        self.visitor_role = visitor_role

    def is_visitor(self, principal_id: str) -> bool:
        return principal_id == self.visitor_principal

    def resolve(self, principal_id: str) -> PermissionSet:
        """Return the principal's effective permissions.

        Raises:
            ResolutionError: If the store could not be read. Callers must not
                treat this as an empty set.
        """
        cached = self.cache.get(principal_id)
        if cached is not None:
            return PermissionSet(principal_id, cached)

        try:
            role_ids = self._role_ids(principal_id)
            names = self.store.permission_names_for_roles(role_ids)
        except StoreUnavailableError as exc:
            logger.error("Permission resolution failed for %s", principal_id)
            raise ResolutionError() from exc

        permissions = frozenset(names)
        self.cache.set(principal_id, permissions)
        logger.debug("Resolved %d permissions for %s", len(permissions), principal_id)
        return PermissionSet(principal_id, permissions)

    def has_permission(self, principal_id: str, permission: str) -> bool:
        return permission in self.resolve(principal_id)

    def roles(self, principal_id: str) -> List[Role]:
        """Active roles the principal currently holds. Not cached.

        Raises:
            ResolutionError: If the store could not be read.
        """
        try:
            if self.is_visitor(principal_id):
                role = self.store.get_by_name(Role, self.visitor_role)
                return [role] if role else []
            return [a.role for a in self.store.active_assignments(principal_id, utcnow())]
        except StoreUnavailableError as exc:
            logger.error("Role lookup failed for %s", principal_id)
            raise ResolutionError() from exc

    def has_role(self, principal_id: str, role_name: str) -> bool:
        return any(role.name == role_name for role in self.roles(principal_id))

    def role_level(self, principal_id: str) -> int:
        """Highest ``level`` among the principal's roles; 0 when none has a level."""
        levels = [role.level for role in self.roles(principal_id) if role.level is not None]
        return max(levels, default=0)

    def role_at_least(self, principal_id: str, level: int) -> bool:
        """Coarse check: does any held role reach ``level``?"""
        return self.role_level(principal_id) >= level

    def invalidate(self, principal_id: str) -> None:
        self.cache.invalidate(principal_id)

    def invalidate_all(self) -> None:
        self.cache.clear()

    def _role_ids(self, principal_id: str) -> List[int]:
        if self.is_visitor(principal_id):
            role = self.store.get_by_name(Role, self.visitor_role)
            return [role.id] if role else []
        assignments = self.store.active_assignments(principal_id, utcnow())
        return [assignment.role_id for assignment in assignments]

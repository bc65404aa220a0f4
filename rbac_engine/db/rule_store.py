"""Rule store: narrow repository over the RBAC tables.

All reads and writes of the rule catalog go through this class. SQLAlchemy
errors are logged with their cause and re-raised as ``StoreUnavailableError``
so driver text never crosses the engine boundary. Unique-key violations
become ``ResourceConflictError``.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from functools import wraps
from typing import Iterable, Iterator, List, Optional, Set

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from rbac_engine.core.exceptions import ResourceConflictError, StoreUnavailableError
from rbac_engine.models import (
    AuditLog, Permission, Role, RolePermission, UserRoleAssignment,
)

logger = logging.getLogger(__name__)


def _store_call(func_):
    """Wrap a store method so driver errors surface as STORE_UNAVAILABLE."""

    @wraps(func_)
    def wrapper(self, *args, **kwargs):
        try:
            return func_(self, *args, **kwargs)
        except SQLAlchemyError as exc:
            logger.error("Rule store call %s failed: %s", func_.__name__, exc)
            raise StoreUnavailableError() from exc

    return wrapper


class RuleStore:
    """CRUD access to modules, permissions, roles, links, assignments and audit rows."""

    def __init__(self, db: Session):
        self.db = db

    # ==================== Transactions ====================

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Run a unit of work that commits as a whole or not at all."""
        try:
            yield self.db
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            logger.warning("Rule store transaction hit a unique constraint: %s", exc.orig)
            raise ResourceConflictError("Row already exists") from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Rule store transaction rolled back: %s", exc)
            raise StoreUnavailableError() from exc
        except Exception:
            self.db.rollback()
            raise

    @_store_call
    def add(self, row) -> None:
        self.db.add(row)
        try:
            self.db.flush()
        except IntegrityError as exc:
            logger.warning("Insert of %s rejected: %s", type(row).__name__, exc.orig)
            raise ResourceConflictError(f"{type(row).__name__} already exists") from exc

    # ==================== Generic catalog reads ====================

    @_store_call
    def get(self, model, row_id: int, active_only: bool = True):
        query = self.db.query(model).filter(model.id == row_id)
        if active_only:
            query = query.filter(model.is_active.is_(True))
        return query.first()

    @_store_call
    def get_by_name(self, model, name: str):
        """Active row of ``model`` with the given unique name."""
        return (
            self.db.query(model)
            .filter(model.name == name, model.is_active.is_(True))
            .first()
        )

    @_store_call
    def list_active(self, model) -> list:
        query = self.db.query(model).filter(model.is_active.is_(True))
        if hasattr(model, "sort_order"):
            query = query.order_by(model.sort_order.asc(), model.id.asc())
        else:
            query = query.order_by(model.name.asc())
        return query.all()

    @_store_call
    def max_sort_order(self, model) -> int:
        value = (
            self.db.query(func.max(model.sort_order))
            .filter(model.is_active.is_(True))
            .scalar()
        )
        return value or 0

    # ==================== Permissions ====================

    @_store_call
    def get_permissions(self, permission_ids: Iterable[int]) -> List[Permission]:
        ids = list(permission_ids)
        if not ids:
            return []
        return (
            self.db.query(Permission)
            .filter(Permission.id.in_(ids), Permission.is_active.is_(True))
            .all()
        )

    @_store_call
    def list_permissions(self, module_id: Optional[int] = None) -> List[Permission]:
        query = self.db.query(Permission).filter(Permission.is_active.is_(True))
        if module_id is not None:
            query = query.filter(Permission.module_id == module_id)
        return query.order_by(Permission.resource.asc(), Permission.action.asc()).all()

    @_store_call
    def permissions_with_blank_fields(self) -> List[Permission]:
        """Rows whose resource or action is NULL or whitespace."""
        return (
            self.db.query(Permission)
            .filter(
                or_(
                    Permission.resource.is_(None),
                    func.trim(Permission.resource) == "",
                    Permission.action.is_(None),
                    func.trim(Permission.action) == "",
                )
            )
            .order_by(Permission.id.asc())
            .all()
        )

    # ==================== Role permission links ====================

    @_store_call
    def lock_role(self, role_id: int) -> Optional[Role]:
        """Load an active role with a row lock held until the transaction ends."""
        return (
            self.db.query(Role)
            .filter(Role.id == role_id, Role.is_active.is_(True))
            .with_for_update()
            .first()
        )

    @_store_call
    def links_for_role(self, role_id: int) -> List[RolePermission]:
        """Every link row for the role, active or not."""
        return self.db.query(RolePermission).filter(RolePermission.role_id == role_id).all()

    @_store_call
    def active_permissions_for_role(self, role_id: int) -> List[Permission]:
        return (
            self.db.query(Permission)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .filter(
                RolePermission.role_id == role_id,
                RolePermission.is_active.is_(True),
                Permission.is_active.is_(True),
            )
            .order_by(Permission.name.asc())
            .all()
        )

    @_store_call
    def permission_names_for_roles(self, role_ids: Iterable[int]) -> Set[str]:
        ids = list(role_ids)
        if not ids:
            return set()
        rows = (
            self.db.query(Permission.name)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .join(Role, Role.id == RolePermission.role_id)
            .filter(
                RolePermission.role_id.in_(ids),
                RolePermission.is_active.is_(True),
                Permission.is_active.is_(True),
                Role.is_active.is_(True),
            )
            .all()
        )
        return {name for (name,) in rows}

    # ==================== Assignments ====================

    @_store_call
    def active_assignments(self, principal_id: str, now: datetime) -> List[UserRoleAssignment]:
        """Active, unexpired assignments of a principal to active roles."""
        return (
            self.db.query(UserRoleAssignment)
            .join(Role, Role.id == UserRoleAssignment.role_id)
            .filter(
                UserRoleAssignment.principal_id == principal_id,
                UserRoleAssignment.is_active.is_(True),
                Role.is_active.is_(True),
                or_(
                    UserRoleAssignment.expires_at.is_(None),
                    UserRoleAssignment.expires_at > now,
                ),
            )
            .order_by(Role.sort_order.asc(), Role.id.asc())
            .all()
        )

    @_store_call
    def assignment(self, principal_id: str, role_id: int) -> Optional[UserRoleAssignment]:
        """The assignment row for a (principal, role) pair, active or not."""
        return (
            self.db.query(UserRoleAssignment)
            .filter(
                UserRoleAssignment.principal_id == principal_id,
                UserRoleAssignment.role_id == role_id,
            )
            .first()
        )

    @_store_call
    def active_assignment_rows(self, principal_id: str) -> List[UserRoleAssignment]:
        """Active assignment rows regardless of expiry, for bulk revocation."""
        return (
            self.db.query(UserRoleAssignment)
            .filter(
                UserRoleAssignment.principal_id == principal_id,
                UserRoleAssignment.is_active.is_(True),
            )
            .all()
        )

    @_store_call
    def principals_with_role(self, role_id: int) -> List[str]:
        rows = (
            self.db.query(UserRoleAssignment.principal_id)
            .filter(
                UserRoleAssignment.role_id == role_id,
                UserRoleAssignment.is_active.is_(True),
            )
            .distinct()
            .all()
        )
        return [principal_id for (principal_id,) in rows]

    @_store_call
    def assigned_principals(self, now: datetime, page: int = 1, page_size: int = 50):
        """Principals holding at least one active, unexpired role. Returns (ids, total)."""
        query = (
            self.db.query(UserRoleAssignment.principal_id)
            .join(Role, Role.id == UserRoleAssignment.role_id)
            .filter(
                UserRoleAssignment.is_active.is_(True),
                Role.is_active.is_(True),
                or_(
                    UserRoleAssignment.expires_at.is_(None),
                    UserRoleAssignment.expires_at > now,
                ),
            )
            .distinct()
        )
        total = query.count()
        rows = (
            query.order_by(UserRoleAssignment.principal_id.asc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return [principal_id for (principal_id,) in rows], total

    # ==================== Audit ====================

    @_store_call
    def query_audit(
        self,
        actor_id: Optional[str] = None,
        action: Optional[str] = None,
        target_type: Optional[str] = None,
        target_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        page: int = 1,
        page_size: int = 50,
    ):
        """Filter audit rows, newest first. Returns (rows, total)."""
        query = self.db.query(AuditLog)

        if actor_id:
            query = query.filter(AuditLog.actor_id == actor_id)
        if action:
            query = query.filter(AuditLog.action == action)
        if target_type:
            query = query.filter(AuditLog.target_type == target_type)
        if target_id:
            query = query.filter(AuditLog.target_id == str(target_id))
        if since:
            query = query.filter(AuditLog.created_at >= since)
        if until:
            query = query.filter(AuditLog.created_at <= until)

        total = query.count()
        rows = (
            query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return rows, total

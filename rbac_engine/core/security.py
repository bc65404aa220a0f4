"""Principal extraction and permission-check dependencies for FastAPI routes."""

from typing import Optional, Sequence

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from rbac_engine.core.config import settings
from rbac_engine.core.exceptions import unauthorized
from rbac_engine.db.rule_store import RuleStore
from rbac_engine.db.session import get_db
from rbac_engine.services.audit_service import AuditRecorder
from rbac_engine.services.cache_service import permission_cache
from rbac_engine.services.catalog_service import CatalogService
from rbac_engine.services.guard_service import Denial, Grant, Guard
from rbac_engine.services.mutation_service import MutationContext, RuleMutationService
from rbac_engine.services.resolver_service import PermissionResolver

# JWT bearer scheme
security_scheme = HTTPBearer(auto_error=False)

USER_AGENT_MAX_LENGTH = 500


def decode_token(token: str) -> dict:
    """Decode and validate a JWT token."""
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        raise unauthorized("Invalid or expired token")


def get_principal_id(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
) -> str:
    """Principal id from the Bearer token's ``sub`` claim.

    Requests without a token act as the visitor principal. The result is also
    kept on ``request.state`` for the access log.
    """
    if credentials is None:
        principal_id = settings.VISITOR_PRINCIPAL
    else:
        payload = decode_token(credentials.credentials)
        principal_id = payload.get("sub")
        if principal_id is None or not str(principal_id).strip():
            raise unauthorized("Invalid token payload")
    request.state.principal_id = str(principal_id)
    return str(principal_id)


def client_ip(request: Request) -> Optional[str]:
    """Originating client address, honoring the usual proxy headers."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    for header in ("X-Real-IP", "CF-Connecting-IP"):
        value = request.headers.get(header)
        if value:
            return value.strip()
    return request.client.host if request.client else None


def extract_request_info(request: Request) -> dict:
    user_agent = request.headers.get("User-Agent")
    return {
        "ip_address": client_ip(request),
        "user_agent": user_agent[:USER_AGENT_MAX_LENGTH] if user_agent else None,
    }


# ---- Service wiring ----

def get_store(db: Session = Depends(get_db)) -> RuleStore:
    return RuleStore(db)


def get_resolver(store: RuleStore = Depends(get_store)) -> PermissionResolver:
    return PermissionResolver(store, permission_cache)


def get_guard(resolver: PermissionResolver = Depends(get_resolver)) -> Guard:
    return Guard(resolver)


def get_audit(store: RuleStore = Depends(get_store)) -> AuditRecorder:
    return AuditRecorder(store)


def get_catalog(store: RuleStore = Depends(get_store)) -> CatalogService:
    return CatalogService(store)


def get_mutations(
    store: RuleStore = Depends(get_store),
    guard: Guard = Depends(get_guard),
    resolver: PermissionResolver = Depends(get_resolver),
    audit: AuditRecorder = Depends(get_audit),
) -> RuleMutationService:
    return RuleMutationService(store, guard, resolver, audit)


def get_mutation_context(
    request: Request,
    principal_id: str = Depends(get_principal_id),
) -> MutationContext:
    info = extract_request_info(request)
    return MutationContext(
        actor_id=principal_id,
        ip_address=info["ip_address"],
        user_agent=info["user_agent"],
    )


class RequirePermission:
    """Dependency that runs the Guard before the route body.

    ``mode="all"`` needs every permission, ``mode="any"`` needs at least one.
    Returns the Grant so handlers can reuse the permission snapshot.
    """

    def __init__(self, *permissions: str, mode: str = "all"):
        if mode not in ("all", "any"):
            raise ValueError(f"Unknown permission mode: {mode}")
        self.permissions: Sequence[str] = permissions
        self.mode = mode

    def __call__(
        self,
        principal_id: str = Depends(get_principal_id),
        guard: Guard = Depends(get_guard),
    ) -> Grant:
        if self.mode == "any":
            result = guard.require_any(principal_id, self.permissions)
        else:
            result = guard.require_all(principal_id, self.permissions)
        if isinstance(result, Denial):
            result.raise_for_status()
        return result


# Convenience dependency factories
require_rule_manager = RequirePermission(settings.RULE_MANAGE_PERMISSION)
require_audit_reader = RequirePermission(settings.AUDIT_READ_PERMISSION)

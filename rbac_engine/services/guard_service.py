"""Guard: the single capability check invoked at every protected boundary."""

import enum
import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Optional, Sequence, Tuple, Union

from fastapi import status

from rbac_engine.core.exceptions import (
    AuthenticationError, AuthorizationError, ResolutionError,
)
from rbac_engine.services.resolver_service import PermissionResolver

logger = logging.getLogger(__name__)


class DenialReason(str, enum.Enum):
    UNAUTHENTICATED = "UNAUTHENTICATED"
    FORBIDDEN = "FORBIDDEN"
    RESOLUTION_FAILED = "RESOLUTION_FAILED"


_DENIAL_STATUS = {
    DenialReason.UNAUTHENTICATED: status.HTTP_401_UNAUTHORIZED,
    DenialReason.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    DenialReason.RESOLUTION_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

_DENIAL_ERRORS = {
    DenialReason.UNAUTHENTICATED: AuthenticationError,
    DenialReason.FORBIDDEN: AuthorizationError,
    DenialReason.RESOLUTION_FAILED: ResolutionError,
}


@dataclass(frozen=True)
class Grant:
    """Successful check. Carries the permission snapshot for downstream audit."""

    principal_id: str
    permissions: FrozenSet[str]
    matched: Tuple[str, ...] = ()

    allowed = True
    http_status = status.HTTP_200_OK


@dataclass(frozen=True)
class Denial:
    """Rejected check with a reason code for error mapping."""

    reason: DenialReason
    principal_id: Optional[str]
    required: Tuple[str, ...] = ()
    missing: Tuple[str, ...] = field(default=())

    allowed = False

    @property
    def http_status(self) -> int:
        return _DENIAL_STATUS[self.reason]

    @property
    def message(self) -> str:
        if self.reason == DenialReason.UNAUTHENTICATED:
            return "Authentication required"
        if self.reason == DenialReason.RESOLUTION_FAILED:
            return "Could not resolve permissions"
        return "Insufficient permissions"

    def raise_for_status(self) -> None:
        raise _DENIAL_ERRORS[self.reason](self.message)


GuardResult = Union[Grant, Denial]


class Guard:
    """Request-shaped permission checks over a ``PermissionResolver``.

    Guards never write. Permission lists are evaluated in the order given so
    short-circuiting is reproducible.
    """

    def __init__(self, resolver: PermissionResolver):
        self.resolver = resolver

    def require(self, principal_id: Optional[str], permission: str) -> GuardResult:
        return self.require_all(principal_id, [permission])

    def require_any(self, principal_id: Optional[str], permissions: Sequence[str]) -> GuardResult:
        required = tuple(permissions)
        snapshot = self._snapshot(principal_id, required)
        if isinstance(snapshot, Denial):
            return snapshot

        for permission in required:
            if permission in snapshot:
                logger.debug("Permission check passed: %s has %s", principal_id, permission)
                return Grant(principal_id, snapshot, (permission,))

        logger.warning(
            "Denied %s: missing any of %s", principal_id, ", ".join(required) or "<none>"
        )
        return Denial(DenialReason.FORBIDDEN, principal_id, required, required)

    def require_all(self, principal_id: Optional[str], permissions: Sequence[str]) -> GuardResult:
        required = tuple(permissions)
        snapshot = self._snapshot(principal_id, required)
        if isinstance(snapshot, Denial):
            return snapshot

        for permission in required:
            if permission not in snapshot:
                logger.warning("Denied %s: missing %s", principal_id, permission)
                return Denial(DenialReason.FORBIDDEN, principal_id, required, (permission,))

        logger.debug("Permission check passed: %s has %s", principal_id, required)
        return Grant(principal_id, snapshot, required)

    def _snapshot(self, principal_id: Optional[str], required: Tuple[str, ...]):
        if not principal_id:
            logger.warning("Unauthenticated check for %s", ", ".join(required))
            return Denial(DenialReason.UNAUTHENTICATED, None, required)
        try:
            return self.resolver.resolve(principal_id).permissions
        except ResolutionError:
            logger.error("Denied %s: permissions could not be resolved", principal_id)
            return Denial(DenialReason.RESOLUTION_FAILED, principal_id, required)

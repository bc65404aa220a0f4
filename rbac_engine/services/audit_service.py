"""Audit service: append-only trail for rule catalog mutations."""

import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from rbac_engine.core.exceptions import StoreUnavailableError
from rbac_engine.db.rule_store import RuleStore
from rbac_engine.models import AuditLog
from rbac_engine.services.resolver_service import as_naive_utc, utcnow

logger = logging.getLogger(__name__)

SENSITIVE_FIELDS = {
    "password", "password_hash", "secret", "token", "access_token",
    "refresh_token", "api_key", "private_key",
}


def redact(data: Any) -> Any:
    """Replace values of sensitive keys before they are persisted."""
    if isinstance(data, dict):
        return {
            k: "[REDACTED]" if str(k).lower() in SENSITIVE_FIELDS else redact(v)
            for k, v in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [redact(item) for item in data]
    return data


class AuditRecorder:
    """Records immutable audit entries.

    ``record`` commits on its own, after the triggering mutation has already
    committed, and never raises: a lost audit row is logged and counted in
    ``failed_writes`` instead of undoing a validated rule change.
    """

    def __init__(self, store: RuleStore):
        self.store = store
        self.failed_writes = 0

    def record(
        self,
        actor_id: Optional[str],
        action: str,
        target_type: str,
        target_id: Optional[Any] = None,
        detail: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[AuditLog]:
        """Write a single audit log record.

        Args:
            action: e.g. "role_created", "role_permissions_updated"
            target_type: module, permission, role, user_roles
        """
        entry = AuditLog(
            actor_id=actor_id,
            action=action,
            target_type=target_type,
            target_id=str(target_id) if target_id is not None else None,
            detail_json=json.dumps(redact(detail), default=str) if detail else None,
            ip_address=ip_address,
            user_agent=user_agent[:500] if user_agent else None,
            created_at=utcnow(),
        )
        try:
            with self.store.transaction():
                self.store.add(entry)
        except Exception as exc:  # audit loss must never abort the caller
            self.failed_writes += 1
            logger.warning(
                "Audit write failed for %s on %s %s by %s: %s",
                action, target_type, target_id, actor_id,
                exc.message if isinstance(exc, StoreUnavailableError) else exc,
            )
            return None
        logger.info("AUDIT %s %s:%s by %s", action, target_type, target_id, actor_id)
        return entry

    def query(
        self,
        actor_id: Optional[str] = None,
        action: Optional[str] = None,
        target_type: Optional[str] = None,
        target_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> Dict[str, Any]:
        """Query audit logs with filters and pagination, newest first.

        Aware ``since``/``until`` values are compared in UTC.
        """
        logs, total = self.store.query_audit(
            actor_id=actor_id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            since=as_naive_utc(since),
            until=as_naive_utc(until),
            page=page,
            page_size=page_size,
        )
        return {
            "logs": logs,
            "total": total,
            "page": page,
            "page_size": page_size,
        }

    @staticmethod
    def detail_of(entry: AuditLog) -> Optional[Dict[str, Any]]:
        return json.loads(entry.detail_json) if entry.detail_json else None

"""Admin / Audit API router."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rbac_engine.core.security import get_audit, require_audit_reader
from rbac_engine.db.session import get_db
from rbac_engine.schemas.schemas import AuditLogOut, AuditLogPage
from rbac_engine.services.audit_service import AuditRecorder
from rbac_engine.services.cache_service import RedisPermissionCache, permission_cache

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/audit", response_model=AuditLogPage)
async def get_audit_logs(
    actor_id: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    target_type: Optional[str] = Query(None),
    target_id: Optional[str] = Query(None),
    since: Optional[datetime] = Query(None),
    until: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    audit: AuditRecorder = Depends(get_audit),
    grant=Depends(require_audit_reader),
):
    """Query audit logs, newest first."""
    result = audit.query(
        actor_id=actor_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        since=since,
        until=until,
        page=page,
        page_size=page_size,
    )
    return AuditLogPage(
        logs=[AuditLogOut.model_validate(log) for log in result["logs"]],
        total=result["total"],
        page=result["page"],
        page_size=result["page_size"],
    )


@router.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """Rule store and permission cache health."""
    db_ok = True
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        db_ok = False

    if isinstance(permission_cache, RedisPermissionCache):
        cache_status = "ok" if permission_cache.health_check() else "error"
    else:
        cache_status = "memory"

    return {
        "database": "ok" if db_ok else "error",
        "cache": cache_status,
        "status": "healthy" if db_ok else "degraded",
    }

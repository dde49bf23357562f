"""
Audit log endpoints.

The log is read-only through the API: entries are written by the actions
they describe.
"""

import csv
import io
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status, Request, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from idara.core.database import get_db
from idara.models.user import User
from idara.models.audit import AuditLog, AuditAction
from idara.auth.dependencies import require_permission
from idara.auth.audit import log_action
from idara.schemas.organization import AuditLogResponse, audit_log_to_response
from idara.schemas.common import PaginatedResponse

router = APIRouter()

EXPORT_LIMIT = 10000
EXPORT_COLUMNS = [
    "timestamp", "user_email", "action", "module", "entity_type", "entity_id",
    "entity_name", "success", "error_message", "ip_address", "request_id", "details",
]


def filtered_queries(
    org_id: str,
    module: Optional[str],
    action: Optional[str],
    entity_type: Optional[str],
    entity_id: Optional[str],
    user_id: Optional[str],
    date_from: Optional[datetime],
    date_to: Optional[datetime],
):
    """Build the list and count queries with the same filters."""
    conditions = [AuditLog.org_id == org_id]
    if module:
        conditions.append(AuditLog.module == module)
    if action:
        try:
            conditions.append(AuditLog.action == AuditAction(action))
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown action: {action}")
    if entity_type:
        conditions.append(AuditLog.entity_type == entity_type)
    if entity_id:
        conditions.append(AuditLog.entity_id == entity_id)
    if user_id:
        conditions.append(AuditLog.user_id == user_id)
    if date_from:
        conditions.append(AuditLog.timestamp >= date_from)
    if date_to:
        conditions.append(AuditLog.timestamp <= date_to)

    query = select(AuditLog).where(*conditions).order_by(AuditLog.timestamp.desc())
    count_query = select(func.count(AuditLog.id)).where(*conditions)
    return query, count_query


@router.get("/logs", response_model=PaginatedResponse[AuditLogResponse])
async def list_audit_logs(
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    module: Optional[str] = None,
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    user_id: Optional[str] = None,
    date_from: Optional[datetime] = Query(None, alias="from"),
    date_to: Optional[datetime] = Query(None, alias="to"),
    current_user: User = Depends(require_permission("settings.auditlog", "view")),
    db: AsyncSession = Depends(get_db),
):
    """List audit entries, newest first."""
    query, count_query = filtered_queries(
        current_user.org_id, module, action, entity_type, entity_id, user_id, date_from, date_to,
    )

    result = await db.execute(count_query)
    total = result.scalar() or 0
    result = await db.execute(query.offset((page - 1) * per_page).limit(per_page))
    logs = result.scalars().all()

    return PaginatedResponse.create(
        items=[audit_log_to_response(a) for a in logs],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/logs/export")
async def export_audit_logs(
    request: Request,
    module: Optional[str] = None,
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    user_id: Optional[str] = None,
    date_from: Optional[datetime] = Query(None, alias="from"),
    date_to: Optional[datetime] = Query(None, alias="to"),
    current_user: User = Depends(require_permission("settings.auditlog", "view")),
    db: AsyncSession = Depends(get_db),
):
    """Download the filtered log as CSV (at most 10,000 rows)."""
    query, _ = filtered_queries(
        current_user.org_id, module, action, entity_type, entity_id, user_id, date_from, date_to,
    )
    result = await db.execute(query.limit(EXPORT_LIMIT))
    logs = result.scalars().all()

    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(EXPORT_COLUMNS)
    for a in logs:
        writer.writerow([
            a.timestamp.isoformat() if a.timestamp else "",
            a.user_email or "",
            a.action.value,
            a.module or "",
            a.entity_type or "",
            a.entity_id or "",
            a.entity_name or "",
            "true" if a.success else "false",
            a.error_message or "",
            a.ip_address or "",
            a.request_id or "",
            a.details or "",
        ])

    await log_action(
        db, request, current_user, AuditAction.EXPORT,
        module="settings.auditlog",
        entity_type="audit_log",
        details={"rows": len(logs)},
    )
    await db.commit()

    filename = f"audit-log-{datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S')}.csv"
    return Response(
        content=buffer.getvalue(),
        media_type="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"'
        }
    )


@router.get("/logs/{log_id}", response_model=AuditLogResponse)
async def get_audit_log(
    log_id: str,
    current_user: User = Depends(require_permission("settings.auditlog", "view")),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(AuditLog).where(AuditLog.id == log_id, AuditLog.org_id == current_user.org_id)
    )
    entry = result.scalar_one_or_none()
    if not entry:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Audit log entry not found")
    return audit_log_to_response(entry)

"""
Audit logging helper functions.

Centralizes audit log creation to reduce code duplication across endpoints.
"""

from typing import Optional, Dict, Any

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from idara.models.user import User
from idara.models.audit import AuditLog, AuditAction
from idara.auth.dependencies import get_client_ip, get_user_agent


def create_audit_log(
    request: Optional[Request],
    user: Optional[User],
    action: AuditAction,
    module: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    entity_name: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    org_id: Optional[str] = None,
    success: bool = True,
    error_message: Optional[str] = None,
) -> AuditLog:
    """
    Create an audit log entry.

    The caller is responsible for adding it to the session and committing.
    ``org_id`` defaults to the acting user's organization; ``request`` may be
    None for work done outside a request (startup bootstrap).
    """
    return AuditLog.create(
        action=action,
        org_id=org_id or (user.org_id if user else None),
        user_id=user.id if user else None,
        user_email=user.email if user else None,
        module=module,
        entity_type=entity_type,
        entity_id=entity_id,
        entity_name=entity_name,
        details=details,
        success=success,
        error_message=error_message,
        ip_address=get_client_ip(request) if request else None,
        user_agent=get_user_agent(request) if request else None,
        request_id=getattr(request.state, "request_id", None) if request else None,
    )


async def log_action(
    db: AsyncSession,
    request: Optional[Request],
    user: Optional[User],
    action: AuditAction,
    module: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    entity_name: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    **kwargs: Any,
) -> AuditLog:
    """
    Create and add an audit log entry to the session.

    The caller should commit the session.

    Example:
        await log_action(
            db, request, current_user, AuditAction.CREATE,
            module="assets.inventory",
            entity_type="asset",
            entity_id=asset.id,
            entity_name=asset.asset_tag,
        )
        await db.commit()
    """
    audit = create_audit_log(
        request=request,
        user=user,
        action=action,
        module=module,
        entity_type=entity_type,
        entity_id=entity_id,
        entity_name=entity_name,
        details=details,
        **kwargs,
    )
    db.add(audit)
    return audit

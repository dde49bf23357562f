"""
Audit logging model for security and compliance.

Every significant action is logged for:
- Security monitoring
- Compliance evidence (who did what, when)
- Forensic investigation
"""

import json
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Optional
from sqlalchemy import String, DateTime, ForeignKey, Enum, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from idara.core.database import Base, generate_uuid


class AuditAction(str, PyEnum):
    """Categories of auditable actions."""
    # Authentication
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILURE = "login_failure"
    LOGOUT = "logout"
    PASSWORD_CHANGE = "password_change"
    SSO_LOGIN = "sso_login"

    # Record changes
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"

    # Domain events
    ASSIGN = "assign"
    RETURN = "return"
    SYNC = "sync"
    ACKNOWLEDGE = "acknowledge"
    PERMISSIONS_CHANGED = "permissions_changed"
    EXPORT = "export"


class AuditLog(Base):
    """
    Immutable audit log entry.

    Security considerations:
    - Records are append-only (no updates/deletes in normal operation)
    - IP address and user agent captured for forensics
    - Timestamps are UTC
    """

    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)

    # When
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        index=True
    )

    org_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )

    # Who (can be null for system actions or failed auth)
    user_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    user_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)  # Preserved even if user deleted

    # What
    action: Mapped[AuditAction] = mapped_column(Enum(AuditAction), nullable=False, index=True)
    module: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)  # assets.inventory

    # Entity affected
    entity_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    entity_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    entity_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Details (JSON for flexibility)
    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Outcome
    success: Mapped[bool] = mapped_column(default=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Context for forensics
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)  # IPv6 max length
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    request_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)  # Correlation ID

    user: Mapped[Optional["User"]] = relationship("User")

    def __repr__(self) -> str:
        return f"<AuditLog {self.action.value} by {self.user_email} at {self.timestamp}>"

    def details_dict(self) -> Optional[dict]:
        return json.loads(self.details) if self.details else None

    @classmethod
    def create(
        cls,
        action: AuditAction,
        org_id: Optional[str] = None,
        user_id: Optional[str] = None,
        user_email: Optional[str] = None,
        module: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        entity_name: Optional[str] = None,
        details: Optional[dict] = None,
        success: bool = True,
        error_message: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> "AuditLog":
        """Factory method to create audit log entries."""
        return cls(
            action=action,
            org_id=org_id,
            user_id=user_id,
            user_email=user_email,
            module=module,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id else None,
            entity_name=entity_name,
            details=json.dumps(details, default=str) if details else None,
            success=success,
            error_message=error_message,
            ip_address=ip_address,
            user_agent=user_agent,
            request_id=request_id,
        )


# Import for type hints
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from idara.models.user import User

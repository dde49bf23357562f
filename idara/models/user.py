"""
User and Role models for RBAC.

Security considerations:
- Passwords are hashed with Argon2id (memory-hard, side-channel resistant)
- SSO-only users have no password hash
- Email is unique per organization
- All timestamps use UTC

Permissions are capability strings ``<module>.<action>`` granted to roles
through ``role_permissions``; users hold roles through ``user_roles``.
"""

from datetime import datetime, timezone, timedelta
from enum import Enum as PyEnum
from typing import Optional, List
from sqlalchemy import (
    String, Boolean, DateTime, ForeignKey, Enum, Text, Table, Column, Integer, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from idara.core.database import Base, generate_uuid
from idara.core.utils import as_utc
from idara.auth.password import hash_password, verify_password

MAX_FAILED_LOGINS = 5
LOCKOUT_MINUTES = 15


class UserStatus(str, PyEnum):
    ACTIVE = "active"
    INVITED = "invited"
    SUSPENDED = "suspended"
    DEACTIVATED = "deactivated"


# Association table for user-role membership (many-to-many)
user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", String(36), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)


class Role(Base):
    """An RBAC role scoped to one organization."""

    __tablename__ = "roles"
    __table_args__ = (UniqueConstraint("org_id", "slug", name="uq_roles_org_slug"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    org_id: Mapped[str] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    slug: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    color: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # System roles are seeded per organization and cannot be edited
    is_system: Mapped[bool] = mapped_column(Boolean, default=False)
    # Assigned to newly created users
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    permissions: Mapped[List["RolePermission"]] = relationship(
        "RolePermission",
        back_populates="role",
        cascade="all, delete-orphan",
    )
    users: Mapped[List["User"]] = relationship(
        "User",
        secondary=user_roles,
        back_populates="roles"
    )

    def __repr__(self) -> str:
        return f"<Role {self.slug}>"

    def permission_set(self) -> set[str]:
        return {f"{p.module}.{p.action}" for p in self.permissions}


class RolePermission(Base):
    """Grants one ``module.action`` capability to a role."""

    __tablename__ = "role_permissions"
    __table_args__ = (UniqueConstraint("role_id", "module", "action", name="uq_role_permission"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    role_id: Mapped[str] = mapped_column(
        ForeignKey("roles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    module: Mapped[str] = mapped_column(String(100), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)

    role: Mapped["Role"] = relationship("Role", back_populates="permissions")


class User(Base):
    """
    Login account.

    Security features:
    - Argon2id password hashing
    - Account lockout after failed attempts
    - Status-based deactivation instead of hard delete
    """

    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("org_id", "email", name="uq_users_org_email"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    org_id: Mapped[str] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    person_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("persons.id", ondelete="SET NULL"), nullable=True, index=True
    )

    # Authentication
    email: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    password_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    entra_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)

    # Profile
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[UserStatus] = mapped_column(Enum(UserStatus), nullable=False, default=UserStatus.ACTIVE)

    # Security: Account lockout
    failed_login_attempts: Mapped[int] = mapped_column(Integer, default=0)
    locked_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    roles: Mapped[List["Role"]] = relationship(
        "Role",
        secondary=user_roles,
        back_populates="users"
    )
    person: Mapped[Optional["Person"]] = relationship("Person", foreign_keys=[person_id])

    def __repr__(self) -> str:
        return f"<User {self.email}>"

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    def set_password(self, password: str) -> None:
        """Hash and set password using Argon2id."""
        self.password_hash = hash_password(password)

    def verify_password(self, password: str) -> bool:
        """
        Verify password against stored hash.
        SSO-only users (no hash) never verify.
        """
        return verify_password(password, self.password_hash)

    def is_locked(self) -> bool:
        """Check if account is locked due to failed login attempts."""
        locked_until = as_utc(self.locked_until)
        if locked_until is None:
            return False
        return datetime.now(timezone.utc) < locked_until

    def record_failed_login(self) -> None:
        """Record a failed login attempt. Lock account after 5 failures."""
        self.failed_login_attempts = (self.failed_login_attempts or 0) + 1
        if self.failed_login_attempts >= MAX_FAILED_LOGINS:
            self.locked_until = datetime.now(timezone.utc) + timedelta(minutes=LOCKOUT_MINUTES)

    def record_successful_login(self) -> None:
        """Reset failed login counter on successful login."""
        self.failed_login_attempts = 0
        self.locked_until = None
        self.last_login_at = datetime.now(timezone.utc)


# =============================================================================
# Permission registry
# =============================================================================

ACTIONS = ["view", "create", "edit", "delete"]

MODULES = {
    "people.directory": "People directory",
    "people.teams": "Teams",
    "people.levels": "Job levels",
    "people.roles": "Job roles",
    "people.settings": "People settings",
    "assets.inventory": "Asset inventory",
    "assets.categories": "Asset categories",
    "assets.assignments": "Asset assignments",
    "assets.maintenance": "Asset maintenance",
    "assets.lifecycle": "Asset lifecycle",
    "assets.settings": "Asset settings",
    "security.frameworks": "Security frameworks",
    "security.controls": "Security controls",
    "security.risks": "Risk register",
    "security.evidence": "Evidence",
    "security.soa": "Statement of Applicability",
    "security.audits": "Security audits",
    "security.objectives": "Security objectives",
    "security.clauses": "ISMS clauses",
    "docs.documents": "Documents",
    "docs.rollouts": "Document rollouts",
    "docs.acknowledgments": "Document acknowledgments",
    "workflows.templates": "Workflow templates",
    "workflows.instances": "Workflow instances",
    "workflows.tasks": "Workflow tasks",
    "settings.organization": "Organization settings",
    "settings.users": "Users",
    "settings.roles": "Roles",
    "settings.integrations": "Integrations",
    "settings.auditlog": "Audit log",
}

VIEW = {"view"}
VIEW_EDIT = {"view", "edit"}
ALL = set(ACTIONS)


def _grants(**by_module: set[str]) -> set[str]:
    return {
        f"{module.replace('__', '.')}.{action}"
        for module, actions in by_module.items()
        for action in actions
    }


# System roles seeded into every organization
SYSTEM_ROLES = {
    "owner": {
        "name": "Owner",
        "description": "Full access to all features and settings. Cannot be modified or deleted.",
        "color": "red",
        "permissions": {f"{m}.{a}" for m in MODULES for a in ACTIONS},
    },
    "admin": {
        "name": "Admin",
        "description": "Full access to most features except some owner-only settings.",
        "color": "orange",
        "permissions": {f"{m}.{a}" for m in MODULES for a in ACTIONS} - {"settings.organization.delete"},
    },
    "manager": {
        "name": "Manager",
        "description": "Can view and edit most records, limited create/delete access.",
        "color": "blue",
        "permissions": _grants(
            people__directory=VIEW_EDIT,
            people__teams=VIEW,
            people__levels=VIEW,
            people__roles=VIEW,
            people__settings=VIEW,
            assets__inventory=VIEW_EDIT,
            assets__categories=VIEW,
            assets__assignments={"view", "create", "edit"},
            assets__maintenance=VIEW,
            assets__lifecycle=VIEW,
            security__frameworks=VIEW,
            security__controls=VIEW,
            security__risks=VIEW,
            security__evidence=VIEW,
            security__soa=VIEW,
            security__audits=VIEW,
            security__objectives=VIEW,
            security__clauses=VIEW,
            docs__documents=VIEW,
            docs__rollouts={"view", "create", "edit"},
            docs__acknowledgments=VIEW,
            workflows__templates={"view", "create", "edit"},
            workflows__instances={"view", "create", "edit"},
            workflows__tasks={"view", "create", "edit"},
            settings__organization=VIEW,
            settings__users=VIEW,
            settings__roles=VIEW,
            settings__auditlog=VIEW,
        ),
    },
    "member": {
        "name": "Member",
        "description": "Standard employee access - view most records, limited editing.",
        "color": "green",
        "permissions": _grants(
            people__directory=VIEW,
            people__teams=VIEW,
            assets__inventory=VIEW,
            assets__categories=VIEW,
            assets__assignments=VIEW,
            docs__documents=VIEW,
            docs__acknowledgments=VIEW,
            workflows__instances=VIEW,
            workflows__tasks=VIEW_EDIT,
            settings__organization=VIEW,
        ),
    },
    "viewer": {
        "name": "Viewer",
        "description": "Read-only access to allowed areas.",
        "color": "gray",
        "permissions": _grants(
            people__directory=VIEW,
            settings__organization=VIEW,
        ),
    },
}

DEFAULT_ROLE_SLUG = "member"
OWNER_ROLE_SLUG = "owner"


# Import for type hints (avoid circular import)
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from idara.models.person import Person

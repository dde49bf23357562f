"""
Idara Database Models

This module exports all SQLAlchemy models for the application.
"""

from idara.models.organization import Organization, Integration, IntegrationProvider, IntegrationStatus
from idara.models.user import User, UserStatus, Role, RolePermission, user_roles
from idara.models.person import (
    Person,
    PersonStatus,
    PersonSource,
    PeopleSyncMode,
    Team,
    JobLevel,
    JobRole,
    PeopleSettings,
)
from idara.models.asset import (
    Asset,
    AssetCategory,
    AssetAssignment,
    AssetMaintenance,
    AssetLifecycleEvent,
    AssetSettings,
    AssetStatus,
    AssetSource,
    LifecycleEventType,
)
from idara.models.security import (
    StandardControl,
    Framework,
    Control,
    ControlMapping,
    SoAItem,
    Risk,
    Evidence,
)
from idara.models.isms import (
    SecurityAudit,
    SecurityObjective,
    StandardClause,
    ClauseCompliance,
)
from idara.models.document import (
    Document,
    DocumentVersion,
    DocumentRollout,
    DocumentAcknowledgment,
)
from idara.models.workflow import (
    WorkflowTemplate,
    WorkflowTemplateStep,
    WorkflowTemplateEdge,
    WorkflowInstance,
    WorkflowInstanceStep,
)
from idara.models.audit import AuditLog, AuditAction

__all__ = [
    # Tenancy
    "Organization",
    "Integration",
    "IntegrationProvider",
    "IntegrationStatus",
    # Users / RBAC
    "User",
    "UserStatus",
    "Role",
    "RolePermission",
    "user_roles",
    # People
    "Person",
    "PersonStatus",
    "PersonSource",
    "Team",
    "JobLevel",
    "JobRole",
    "PeopleSyncMode",
    "PeopleSettings",
    # Assets
    "Asset",
    "AssetCategory",
    "AssetAssignment",
    "AssetMaintenance",
    "AssetLifecycleEvent",
    "AssetSettings",
    "AssetStatus",
    "AssetSource",
    "LifecycleEventType",
    # Security
    "StandardControl",
    "Framework",
    "Control",
    "ControlMapping",
    "SoAItem",
    "Risk",
    "Evidence",
    "SecurityAudit",
    "SecurityObjective",
    "StandardClause",
    "ClauseCompliance",
    # Docs
    "Document",
    "DocumentVersion",
    "DocumentRollout",
    "DocumentAcknowledgment",
    # Workflows
    "WorkflowTemplate",
    "WorkflowTemplateStep",
    "WorkflowTemplateEdge",
    "WorkflowInstance",
    "WorkflowInstanceStep",
    # Audit
    "AuditLog",
    "AuditAction",
]

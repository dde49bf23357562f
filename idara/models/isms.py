"""
ISMS management models: audits, security objectives and clause compliance.

- StandardClause: global catalog of management-system clauses (ISO 27001
  clauses 4-10), keyed by framework code like StandardControl
- ClauseCompliance: an organization's progress on one clause of an adopted
  framework
- SecurityAudit / SecurityObjective: audit programme and objectives register
"""

from datetime import datetime, timezone, date
from enum import Enum as PyEnum
from typing import Optional
from sqlalchemy import String, DateTime, Date, ForeignKey, Enum, Text, Integer, JSON, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from idara.core.database import Base, generate_uuid


class AuditType(str, PyEnum):
    INTERNAL = "internal"
    EXTERNAL = "external"
    SURVEILLANCE = "surveillance"
    CERTIFICATION = "certification"
    RECERTIFICATION = "recertification"


class AuditStatus(str, PyEnum):
    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ObjectiveStatus(str, PyEnum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ON_HOLD = "on_hold"
    CANCELLED = "cancelled"


class ObjectivePriority(str, PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ClauseComplianceStatus(str, PyEnum):
    NOT_ADDRESSED = "not_addressed"
    PARTIALLY_ADDRESSED = "partially_addressed"
    FULLY_ADDRESSED = "fully_addressed"
    VERIFIED = "verified"


# Statuses counted as compliant in clause summaries
ADDRESSED_CLAUSE_STATUSES = (ClauseComplianceStatus.FULLY_ADDRESSED, ClauseComplianceStatus.VERIFIED)


class SecurityAudit(Base):
    """Internal or external audit on the organization's audit programme."""

    __tablename__ = "security_audits"
    __table_args__ = (UniqueConstraint("org_id", "audit_id", name="uq_security_audits_org_audit_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    org_id: Mapped[str] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    framework_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("security_frameworks.id", ondelete="SET NULL"), nullable=True, index=True
    )
    audit_id: Mapped[str] = mapped_column(String(50), nullable=False)  # AUD-001
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[AuditType] = mapped_column(Enum(AuditType), default=AuditType.INTERNAL)
    status: Mapped[AuditStatus] = mapped_column(Enum(AuditStatus), default=AuditStatus.PLANNED)

    start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    scope: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    objectives: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    lead_auditor: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    audit_team: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    audit_body: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)  # external audits

    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    conclusion: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    findings_count: Mapped[int] = mapped_column(Integer, default=0)
    major_findings_count: Mapped[int] = mapped_column(Integer, default=0)
    minor_findings_count: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    framework: Mapped[Optional["Framework"]] = relationship("Framework")

    def __repr__(self) -> str:
        return f"<SecurityAudit {self.audit_id}>"


class SecurityObjective(Base):
    """Measurable security objective (ISO 27001 clause 6.2)."""

    __tablename__ = "security_objectives"
    __table_args__ = (UniqueConstraint("org_id", "objective_id", name="uq_security_objectives_org_objective_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    org_id: Mapped[str] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    objective_id: Mapped[str] = mapped_column(String(50), nullable=False)  # OBJ-001
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    priority: Mapped[ObjectivePriority] = mapped_column(Enum(ObjectivePriority), default=ObjectivePriority.MEDIUM)
    status: Mapped[ObjectiveStatus] = mapped_column(Enum(ObjectiveStatus), default=ObjectiveStatus.NOT_STARTED)

    owner_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("persons.id", ondelete="SET NULL"), nullable=True
    )
    target_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    progress: Mapped[int] = mapped_column(Integer, default=0)

    kpis: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    success_criteria: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    linked_risk_ids: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    linked_control_ids: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    owner: Mapped[Optional["Person"]] = relationship("Person")

    def __repr__(self) -> str:
        return f"<SecurityObjective {self.objective_id}>"


class StandardClause(Base):
    """Catalog clause, shared by all organizations."""

    __tablename__ = "security_standard_clauses"
    __table_args__ = (UniqueConstraint("framework_code", "clause_id", name="uq_standard_clauses_code_clause"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    framework_code: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    clause_id: Mapped[str] = mapped_column(String(20), nullable=False)  # "6.1.2"
    parent_clause_id: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)


class ClauseCompliance(Base):
    """Organization's status for one standard clause of an adopted framework."""

    __tablename__ = "security_clause_compliance"
    __table_args__ = (
        UniqueConstraint("framework_id", "standard_clause_id", name="uq_clause_compliance_framework_clause"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    org_id: Mapped[str] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    framework_id: Mapped[str] = mapped_column(
        ForeignKey("security_frameworks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    standard_clause_id: Mapped[str] = mapped_column(
        ForeignKey("security_standard_clauses.id", ondelete="CASCADE"), nullable=False
    )
    compliance_status: Mapped[ClauseComplianceStatus] = mapped_column(
        Enum(ClauseComplianceStatus), default=ClauseComplianceStatus.NOT_ADDRESSED
    )

    owner_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("persons.id", ondelete="SET NULL"), nullable=True
    )
    target_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    implementation_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    evidence_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    linked_evidence_ids: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    linked_document_ids: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)

    last_reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_reviewed_by_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    standard_clause: Mapped["StandardClause"] = relationship("StandardClause")
    owner: Mapped[Optional["Person"]] = relationship("Person")


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from idara.models.person import Person
    from idara.models.security import Framework

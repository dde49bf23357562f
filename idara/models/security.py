"""
Security & compliance models.

- StandardControl: global catalog of framework requirements (SOC 2 TSC,
  ISO 27001 Annex A), keyed by framework code
- Framework: an organization's adoption of a catalog framework
- SoAItem: Statement of Applicability row (framework x standard control)
- Control: an organization's own implemented control, mapped to standard
  controls
- Risk / Evidence: risk register and evidence locker
"""

from datetime import datetime, timezone, date
from enum import Enum as PyEnum
from typing import Optional, List
from sqlalchemy import (
    String, DateTime, Date, ForeignKey, Enum, Text, Integer, JSON, UniqueConstraint, Table, Column
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from idara.core.database import Base, generate_uuid


class FrameworkStatus(str, PyEnum):
    PLANNED = "planned"
    IMPLEMENTING = "implementing"
    CERTIFIED = "certified"
    EXPIRED = "expired"


class ControlStatus(str, PyEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    UNDER_REVIEW = "under_review"


class ImplementationStatus(str, PyEnum):
    NOT_IMPLEMENTED = "not_implemented"
    PARTIALLY_IMPLEMENTED = "partially_implemented"
    IMPLEMENTED = "implemented"
    EFFECTIVE = "effective"


class Applicability(str, PyEnum):
    APPLICABLE = "applicable"
    NOT_APPLICABLE = "not_applicable"
    PARTIALLY_APPLICABLE = "partially_applicable"


class RiskRating(str, PyEnum):
    """Likelihood / impact scale (1..5)."""
    VERY_LOW = "very_low"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"


RATING_SCORES = {
    RiskRating.VERY_LOW: 1,
    RiskRating.LOW: 2,
    RiskRating.MEDIUM: 3,
    RiskRating.HIGH: 4,
    RiskRating.VERY_HIGH: 5,
}


class RiskLevel(str, PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RiskStatus(str, PyEnum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    MITIGATED = "mitigated"
    ACCEPTED = "accepted"
    CLOSED = "closed"


class RiskTreatment(str, PyEnum):
    MITIGATE = "mitigate"
    ACCEPT = "accept"
    TRANSFER = "transfer"
    AVOID = "avoid"


class RiskCategory(str, PyEnum):
    STRATEGIC = "strategic"
    OPERATIONAL = "operational"
    FINANCIAL = "financial"
    COMPLIANCE = "compliance"
    TECHNOLOGY = "technology"
    SECURITY = "security"
    PRIVACY = "privacy"
    VENDOR = "vendor"


class EvidenceType(str, PyEnum):
    DOCUMENT = "document"
    SCREENSHOT = "screenshot"
    LOG = "log"
    REPORT = "report"
    LINK = "link"
    OTHER = "other"


class EvidenceStatus(str, PyEnum):
    CURRENT = "current"
    EXPIRED = "expired"
    PENDING_REVIEW = "pending_review"


def score_risk(likelihood: RiskRating, impact: RiskRating) -> tuple[int, RiskLevel]:
    """
    Inherent risk score (likelihood x impact, 1..25) and its level.

    >= 20 critical, >= 12 high, >= 6 medium, otherwise low.
    """
    score = RATING_SCORES[RiskRating(likelihood)] * RATING_SCORES[RiskRating(impact)]
    if score >= 20:
        return score, RiskLevel.CRITICAL
    if score >= 12:
        return score, RiskLevel.HIGH
    if score >= 6:
        return score, RiskLevel.MEDIUM
    return score, RiskLevel.LOW


class StandardControl(Base):
    """Catalog requirement, shared by all organizations."""

    __tablename__ = "security_standard_controls"
    __table_args__ = (UniqueConstraint("framework_code", "control_id", name="uq_standard_control"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    framework_code: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    control_id: Mapped[str] = mapped_column(String(50), nullable=False)
    category: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)

    def __repr__(self) -> str:
        return f"<StandardControl {self.framework_code}:{self.control_id}>"


class Framework(Base):
    """A compliance framework adopted by an organization."""

    __tablename__ = "security_frameworks"
    __table_args__ = (UniqueConstraint("org_id", "code", name="uq_frameworks_org_code"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    org_id: Mapped[str] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    code: Mapped[str] = mapped_column(String(50), nullable=False)  # soc-2, iso-27001
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    version: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[FrameworkStatus] = mapped_column(Enum(FrameworkStatus), default=FrameworkStatus.PLANNED)
    scope: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Certification
    certification_body: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    certificate_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    certified_at: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    expires_at: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    soa_items: Mapped[List["SoAItem"]] = relationship(
        "SoAItem", back_populates="framework", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Framework {self.code}>"


class Control(Base):
    """An organization's own control."""

    __tablename__ = "security_controls"
    __table_args__ = (UniqueConstraint("org_id", "control_id", name="uq_controls_org_control_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    org_id: Mapped[str] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    control_id: Mapped[str] = mapped_column(String(50), nullable=False)  # e.g. "AC-01"
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    owner_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("persons.id", ondelete="SET NULL"), nullable=True
    )
    status: Mapped[ControlStatus] = mapped_column(Enum(ControlStatus), default=ControlStatus.ACTIVE)
    implementation_status: Mapped[ImplementationStatus] = mapped_column(
        Enum(ImplementationStatus), default=ImplementationStatus.NOT_IMPLEMENTED
    )
    review_frequency_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    last_reviewed_at: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    next_review_at: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    mappings: Mapped[List["ControlMapping"]] = relationship(
        "ControlMapping", back_populates="control", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Control {self.control_id}>"


class ControlMapping(Base):
    """Links an org control to the standard controls it satisfies."""

    __tablename__ = "security_control_mappings"
    __table_args__ = (UniqueConstraint("control_id", "standard_control_id", name="uq_control_mapping"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    control_id: Mapped[str] = mapped_column(
        ForeignKey("security_controls.id", ondelete="CASCADE"), nullable=False, index=True
    )
    standard_control_id: Mapped[str] = mapped_column(
        ForeignKey("security_standard_controls.id", ondelete="CASCADE"), nullable=False, index=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

    control: Mapped["Control"] = relationship("Control", back_populates="mappings")
    standard_control: Mapped["StandardControl"] = relationship("StandardControl")


class SoAItem(Base):
    """Statement of Applicability row."""

    __tablename__ = "security_soa_items"
    __table_args__ = (UniqueConstraint("framework_id", "standard_control_id", name="uq_soa_item"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    framework_id: Mapped[str] = mapped_column(
        ForeignKey("security_frameworks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    standard_control_id: Mapped[str] = mapped_column(
        ForeignKey("security_standard_controls.id", ondelete="CASCADE"), nullable=False
    )
    control_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("security_controls.id", ondelete="SET NULL"), nullable=True
    )
    applicability: Mapped[Applicability] = mapped_column(Enum(Applicability), default=Applicability.APPLICABLE)
    justification: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    implementation_status: Mapped[ImplementationStatus] = mapped_column(
        Enum(ImplementationStatus), default=ImplementationStatus.NOT_IMPLEMENTED
    )
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

    framework: Mapped["Framework"] = relationship("Framework", back_populates="soa_items")
    standard_control: Mapped["StandardControl"] = relationship("StandardControl")
    control: Mapped[Optional["Control"]] = relationship("Control")

    def effective_implementation_status(self) -> ImplementationStatus:
        """The linked org control's status wins over the row's own value."""
        if self.control is not None:
            return self.control.implementation_status
        return self.implementation_status


class Risk(Base):
    """Risk register entry."""

    __tablename__ = "security_risks"
    __table_args__ = (UniqueConstraint("org_id", "risk_id", name="uq_risks_org_risk_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    org_id: Mapped[str] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    risk_id: Mapped[str] = mapped_column(String(50), nullable=False)  # RSK-001
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[RiskCategory] = mapped_column(Enum(RiskCategory), default=RiskCategory.OPERATIONAL)
    likelihood: Mapped[RiskRating] = mapped_column(Enum(RiskRating), default=RiskRating.MEDIUM)
    impact: Mapped[RiskRating] = mapped_column(Enum(RiskRating), default=RiskRating.MEDIUM)
    score: Mapped[int] = mapped_column(Integer, default=9)
    level: Mapped[RiskLevel] = mapped_column(Enum(RiskLevel), default=RiskLevel.MEDIUM)
    status: Mapped[RiskStatus] = mapped_column(Enum(RiskStatus), default=RiskStatus.OPEN)
    treatment: Mapped[Optional[RiskTreatment]] = mapped_column(Enum(RiskTreatment), nullable=True)
    treatment_plan: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    owner_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("persons.id", ondelete="SET NULL"), nullable=True
    )
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    control_ids: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    def rescore(self) -> None:
        self.score, self.level = score_risk(self.likelihood, self.impact)


# Association table for evidence-control links (many-to-many)
evidence_links = Table(
    "security_evidence_links",
    Base.metadata,
    Column("evidence_id", String(36), ForeignKey("security_evidence.id", ondelete="CASCADE"), primary_key=True),
    Column("control_id", String(36), ForeignKey("security_controls.id", ondelete="CASCADE"), primary_key=True),
)


class Evidence(Base):
    """Evidence artifact supporting one or more controls."""

    __tablename__ = "security_evidence"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    org_id: Mapped[str] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    type: Mapped[EvidenceType] = mapped_column(Enum(EvidenceType), default=EvidenceType.DOCUMENT)
    status: Mapped[EvidenceStatus] = mapped_column(Enum(EvidenceStatus), default=EvidenceStatus.CURRENT)
    url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    collected_at: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    valid_until: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    collected_by_id: Mapped[Optional[str]] = mapped_column(
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

    controls: Mapped[List["Control"]] = relationship("Control", secondary=evidence_links)

    def is_expired(self) -> bool:
        return self.valid_until is not None and self.valid_until < date.today()

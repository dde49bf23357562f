"""
Document management models.

Tracks:
- Policies, procedures and other controlled documents (markdown content)
- Version history with content snapshots
- Rollouts: a document version pushed to an audience
- Acknowledgments: per-user read / acknowledge / sign receipts
"""

from datetime import datetime, timezone, date
from enum import Enum as PyEnum
from typing import Optional, List
from sqlalchemy import (
    String, Boolean, DateTime, Date, ForeignKey, Enum, Text, Integer, JSON, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from idara.core.database import Base, generate_uuid


class DocumentStatus(str, PyEnum):
    DRAFT = "draft"
    IN_REVIEW = "in_review"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class DocumentCategory(str, PyEnum):
    POLICY = "policy"
    PROCEDURE = "procedure"
    GUIDELINE = "guideline"
    MANUAL = "manual"
    TEMPLATE = "template"
    TRAINING = "training"
    GENERAL = "general"


class RolloutTarget(str, PyEnum):
    ORGANIZATION = "organization"
    TEAM = "team"
    ROLE = "role"
    USER = "user"


class RolloutRequirement(str, PyEnum):
    OPTIONAL = "optional"
    REQUIRED = "required"
    REQUIRED_WITH_SIGNATURE = "required_with_signature"


class AcknowledgmentStatus(str, PyEnum):
    PENDING = "pending"
    VIEWED = "viewed"
    ACKNOWLEDGED = "acknowledged"
    SIGNED = "signed"


# Allowed acknowledgment status changes
ACK_TRANSITIONS = {
    AcknowledgmentStatus.PENDING: {
        AcknowledgmentStatus.VIEWED, AcknowledgmentStatus.ACKNOWLEDGED, AcknowledgmentStatus.SIGNED,
    },
    AcknowledgmentStatus.VIEWED: {AcknowledgmentStatus.ACKNOWLEDGED, AcknowledgmentStatus.SIGNED},
    AcknowledgmentStatus.ACKNOWLEDGED: {AcknowledgmentStatus.SIGNED},
    AcknowledgmentStatus.SIGNED: set(),
}

COMPLETED_ACK_STATUSES = (AcknowledgmentStatus.ACKNOWLEDGED, AcknowledgmentStatus.SIGNED)


class Document(Base):
    """Controlled document (policy, procedure, ...)."""

    __tablename__ = "documents"
    __table_args__ = (UniqueConstraint("org_id", "slug", name="uq_documents_org_slug"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    org_id: Mapped[str] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    slug: Mapped[str] = mapped_column(String(200), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # markdown

    category: Mapped[DocumentCategory] = mapped_column(Enum(DocumentCategory), default=DocumentCategory.GENERAL)
    tags: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    status: Mapped[DocumentStatus] = mapped_column(Enum(DocumentStatus), default=DocumentStatus.DRAFT)
    current_version: Mapped[str] = mapped_column(String(20), default="1.0")

    owner_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("persons.id", ondelete="SET NULL"), nullable=True
    )
    last_reviewed_at: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    next_review_at: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    linked_control_ids: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_by_id: Mapped[Optional[str]] = mapped_column(
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

    versions: Mapped[List["DocumentVersion"]] = relationship(
        "DocumentVersion", back_populates="document", cascade="all, delete-orphan",
        order_by="DocumentVersion.created_at",
    )

    def __repr__(self) -> str:
        return f"<Document {self.slug} v{self.current_version}>"


class DocumentVersion(Base):
    """Immutable snapshot of a document version."""

    __tablename__ = "document_versions"
    __table_args__ = (UniqueConstraint("document_id", "version", name="uq_document_version"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    document_id: Mapped[str] = mapped_column(
        ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    version: Mapped[str] = mapped_column(String(20), nullable=False)
    change_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    content_snapshot: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

    document: Mapped["Document"] = relationship("Document", back_populates="versions")


class DocumentRollout(Base):
    """A document version pushed to an audience."""

    __tablename__ = "document_rollouts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    document_id: Mapped[str] = mapped_column(
        ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    version_at_rollout: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    content_snapshot: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    target_type: Mapped[RolloutTarget] = mapped_column(Enum(RolloutTarget), nullable=False)
    target_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    requirement: Mapped[RolloutRequirement] = mapped_column(
        Enum(RolloutRequirement), default=RolloutRequirement.REQUIRED
    )
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    send_notification: Mapped[bool] = mapped_column(Boolean, default=True)
    reminder_frequency_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_by_id: Mapped[Optional[str]] = mapped_column(
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

    document: Mapped["Document"] = relationship("Document")
    acknowledgments: Mapped[List["DocumentAcknowledgment"]] = relationship(
        "DocumentAcknowledgment", back_populates="rollout", cascade="all, delete-orphan"
    )


class DocumentAcknowledgment(Base):
    """One user's receipt for a rollout."""

    __tablename__ = "document_acknowledgments"
    __table_args__ = (UniqueConstraint("rollout_id", "user_id", name="uq_ack_rollout_user"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    document_id: Mapped[str] = mapped_column(
        ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    rollout_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("document_rollouts.id", ondelete="CASCADE"), nullable=True, index=True
    )
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    person_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("persons.id", ondelete="SET NULL"), nullable=True
    )

    status: Mapped[AcknowledgmentStatus] = mapped_column(
        Enum(AcknowledgmentStatus), default=AcknowledgmentStatus.PENDING
    )
    version_acknowledged: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    viewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    signed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    signature_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
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

    document: Mapped["Document"] = relationship("Document")
    rollout: Mapped[Optional["DocumentRollout"]] = relationship("DocumentRollout", back_populates="acknowledgments")

"""
Workflow models.

A template is a graph of steps (nodes) and edges; an instance is a running
copy of a template attached to some entity (usually a person being
onboarded or offboarded). Steps may nest through ``parent_step_id``
(group steps); progress counts root steps only.
"""

from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Optional, List
from sqlalchemy import (
    String, Boolean, DateTime, ForeignKey, Enum, Text, Integer, JSON
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from idara.core.database import Base, generate_uuid


class TemplateStatus(str, PyEnum):
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


class TriggerType(str, PyEnum):
    MANUAL = "manual"
    PERSON_ONBOARDING = "person_onboarding"
    PERSON_OFFBOARDING = "person_offboarding"
    ASSET_ASSIGNED = "asset_assigned"
    ASSET_RETURNED = "asset_returned"


class StepType(str, PyEnum):
    TASK = "task"
    NOTIFICATION = "notification"
    GATEWAY = "gateway"
    GROUP = "group"


class AssigneeType(str, PyEnum):
    SPECIFIC_USER = "specific_user"
    ROLE = "role"
    DYNAMIC_MANAGER = "dynamic_manager"
    DYNAMIC_CREATOR = "dynamic_creator"
    UNASSIGNED = "unassigned"


class EdgeCondition(str, PyEnum):
    ALWAYS = "always"
    IF_APPROVED = "if_approved"
    IF_REJECTED = "if_rejected"
    CONDITIONAL = "conditional"


class InstanceStatus(str, PyEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ON_HOLD = "on_hold"


class StepStatus(str, PyEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    BLOCKED = "blocked"


# Instances in these states accept no further step changes
CLOSED_INSTANCE_STATUSES = (InstanceStatus.COMPLETED, InstanceStatus.CANCELLED)


class WorkflowTemplate(Base):
    """Reusable workflow definition."""

    __tablename__ = "workflow_templates"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    org_id: Mapped[str] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    module_scope: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)  # people, assets, ...
    trigger_type: Mapped[TriggerType] = mapped_column(Enum(TriggerType), default=TriggerType.MANUAL)
    status: Mapped[TemplateStatus] = mapped_column(Enum(TemplateStatus), default=TemplateStatus.DRAFT)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    default_owner_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("persons.id", ondelete="SET NULL"), nullable=True
    )
    default_due_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    settings: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
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

    steps: Mapped[List["WorkflowTemplateStep"]] = relationship(
        "WorkflowTemplateStep",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="WorkflowTemplateStep.order_index",
    )
    edges: Mapped[List["WorkflowTemplateEdge"]] = relationship(
        "WorkflowTemplateEdge", back_populates="template", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<WorkflowTemplate {self.name}>"

    @property
    def is_usable(self) -> bool:
        """Only active templates can start new instances."""
        return self.is_active and self.status == TemplateStatus.ACTIVE


class WorkflowTemplateStep(Base):
    __tablename__ = "workflow_template_steps"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    template_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_templates.id", ondelete="CASCADE"), nullable=False, index=True
    )
    parent_step_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("workflow_template_steps.id", ondelete="CASCADE"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    step_type: Mapped[StepType] = mapped_column(Enum(StepType), default=StepType.TASK)
    order_index: Mapped[int] = mapped_column(Integer, default=0)

    # Designer canvas
    position_x: Mapped[int] = mapped_column(Integer, default=0)
    position_y: Mapped[int] = mapped_column(Integer, default=0)

    assignee_type: Mapped[AssigneeType] = mapped_column(Enum(AssigneeType), default=AssigneeType.UNASSIGNED)
    assignee_config: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    default_assignee_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("persons.id", ondelete="SET NULL"), nullable=True
    )
    due_offset_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    due_offset_from: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)  # workflow_start
    is_required: Mapped[bool] = mapped_column(Boolean, default=True)
    meta: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

    template: Mapped["WorkflowTemplate"] = relationship("WorkflowTemplate", back_populates="steps")


class WorkflowTemplateEdge(Base):
    __tablename__ = "workflow_template_edges"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    template_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_templates.id", ondelete="CASCADE"), nullable=False, index=True
    )
    source_step_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_template_steps.id", ondelete="CASCADE"), nullable=False
    )
    target_step_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_template_steps.id", ondelete="CASCADE"), nullable=False
    )
    condition_type: Mapped[EdgeCondition] = mapped_column(Enum(EdgeCondition), default=EdgeCondition.ALWAYS)
    condition_config: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    label: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    template: Mapped["WorkflowTemplate"] = relationship("WorkflowTemplate", back_populates="edges")


class WorkflowInstance(Base):
    """A running copy of a template."""

    __tablename__ = "workflow_instances"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    org_id: Mapped[str] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    template_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_templates.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)  # person, asset, ...
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[InstanceStatus] = mapped_column(Enum(InstanceStatus), default=InstanceStatus.PENDING)
    owner_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("persons.id", ondelete="SET NULL"), nullable=True
    )

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    due_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    total_steps: Mapped[int] = mapped_column(Integer, default=0)
    completed_steps: Mapped[int] = mapped_column(Integer, default=0)

    started_by_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    meta: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    template: Mapped["WorkflowTemplate"] = relationship("WorkflowTemplate")
    steps: Mapped[List["WorkflowInstanceStep"]] = relationship(
        "WorkflowInstanceStep",
        back_populates="instance",
        cascade="all, delete-orphan",
        order_by="WorkflowInstanceStep.order_index",
    )

    def __repr__(self) -> str:
        return f"<WorkflowInstance {self.name} [{self.status.value}]>"

    @property
    def progress_percent(self) -> int:
        if not self.total_steps:
            return 0
        return round(self.completed_steps * 100 / self.total_steps)


class WorkflowInstanceStep(Base):
    __tablename__ = "workflow_instance_steps"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    instance_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_instances.id", ondelete="CASCADE"), nullable=False, index=True
    )
    template_step_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("workflow_template_steps.id", ondelete="SET NULL"), nullable=True
    )
    parent_step_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("workflow_instance_steps.id", ondelete="CASCADE"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    order_index: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[StepStatus] = mapped_column(Enum(StepStatus), default=StepStatus.PENDING)

    assignee_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    assigned_person_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("persons.id", ondelete="SET NULL"), nullable=True
    )

    due_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_by_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    meta: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    instance: Mapped["WorkflowInstance"] = relationship("WorkflowInstance", back_populates="steps")

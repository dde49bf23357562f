"""
Document, rollout and acknowledgment schemas.
"""

from datetime import datetime, date
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, Field

from idara.models.document import (
    DocumentStatus,
    DocumentCategory,
    RolloutTarget,
    RolloutRequirement,
    AcknowledgmentStatus,
)


class DocumentCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    slug: Optional[str] = Field(None, max_length=200)
    summary: Optional[str] = None
    content: Optional[str] = None
    category: DocumentCategory = DocumentCategory.GENERAL
    tags: Optional[List[str]] = None
    status: DocumentStatus = DocumentStatus.DRAFT
    current_version: str = Field("1.0", max_length=20)
    owner_id: Optional[str] = None
    last_reviewed_at: Optional[date] = None
    next_review_at: Optional[date] = None
    linked_control_ids: Optional[List[str]] = None


class DocumentUpdate(BaseModel):
    """
    Update a document.

    Sending ``content`` together with a new ``version`` records a version
    snapshot (with ``change_description``) and bumps ``current_version``.
    """
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    summary: Optional[str] = None
    content: Optional[str] = None
    category: Optional[DocumentCategory] = None
    tags: Optional[List[str]] = None
    status: Optional[DocumentStatus] = None
    owner_id: Optional[str] = None
    last_reviewed_at: Optional[date] = None
    next_review_at: Optional[date] = None
    linked_control_ids: Optional[List[str]] = None
    version: Optional[str] = Field(None, min_length=1, max_length=20)
    change_description: Optional[str] = None


class DocumentResponse(BaseModel):
    id: str
    slug: str
    title: str
    summary: Optional[str]
    content: Optional[str]
    category: str
    tags: List[str]
    status: str
    current_version: str
    owner_id: Optional[str]
    last_reviewed_at: Optional[date]
    next_review_at: Optional[date]
    linked_control_ids: List[str]
    published_at: Optional[datetime]
    created_by_id: Optional[str]
    created_at: datetime
    updated_at: datetime


def document_to_response(d, include_content: bool = True) -> DocumentResponse:
    return DocumentResponse(
        id=d.id,
        slug=d.slug,
        title=d.title,
        summary=d.summary,
        content=d.content if include_content else None,
        category=d.category.value,
        tags=list(d.tags or []),
        status=d.status.value,
        current_version=d.current_version,
        owner_id=d.owner_id,
        last_reviewed_at=d.last_reviewed_at,
        next_review_at=d.next_review_at,
        linked_control_ids=list(d.linked_control_ids or []),
        published_at=d.published_at,
        created_by_id=d.created_by_id,
        created_at=d.created_at,
        updated_at=d.updated_at,
    )


class DocumentVersionResponse(BaseModel):
    id: str
    version: str
    change_description: Optional[str]
    content_snapshot: Optional[str]
    created_by_id: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


# -----------------------------------------------------------------------------
# Rollouts
# -----------------------------------------------------------------------------

class RolloutCreate(BaseModel):
    document_id: str
    name: Optional[str] = Field(None, max_length=255)
    target_type: RolloutTarget
    target_id: Optional[str] = Field(None, description="Team, role or user id; omitted for organization")
    requirement: RolloutRequirement = RolloutRequirement.REQUIRED
    due_date: Optional[date] = None
    send_notification: bool = True
    reminder_frequency_days: Optional[int] = Field(None, ge=1)


class RolloutUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    requirement: Optional[RolloutRequirement] = None
    due_date: Optional[date] = None
    is_active: Optional[bool] = None
    send_notification: Optional[bool] = None
    reminder_frequency_days: Optional[int] = Field(None, ge=1)


class RolloutResponse(BaseModel):
    id: str
    document_id: str
    document_title: Optional[str]
    name: Optional[str]
    version_at_rollout: Optional[str]
    target_type: str
    target_id: Optional[str]
    target_name: Optional[str]
    requirement: str
    due_date: Optional[date]
    is_active: bool
    send_notification: bool
    reminder_frequency_days: Optional[int]
    acknowledged_count: int = 0
    total_count: int = 0
    created_by_id: Optional[str]
    created_at: datetime


def rollout_to_response(r, document_title=None, target_name=None,
                        acknowledged_count: int = 0, total_count: int = 0) -> RolloutResponse:
    return RolloutResponse(
        id=r.id,
        document_id=r.document_id,
        document_title=document_title,
        name=r.name,
        version_at_rollout=r.version_at_rollout,
        target_type=r.target_type.value,
        target_id=r.target_id,
        target_name=target_name,
        requirement=r.requirement.value,
        due_date=r.due_date,
        is_active=r.is_active,
        send_notification=r.send_notification,
        reminder_frequency_days=r.reminder_frequency_days,
        acknowledged_count=acknowledged_count,
        total_count=total_count,
        created_by_id=r.created_by_id,
        created_at=r.created_at,
    )


class RolloutStats(BaseModel):
    total_rollouts: int
    active_rollouts: int
    total_acknowledgments: int
    by_status: Dict[str, int]
    overdue: int
    completion_percent: int


# -----------------------------------------------------------------------------
# Acknowledgments
# -----------------------------------------------------------------------------

class AcknowledgmentUpdate(BaseModel):
    status: AcknowledgmentStatus
    signature_data: Optional[Dict[str, Any]] = Field(None, description="E.g. {'typed_name': 'Jane Doe'}")
    notes: Optional[str] = None


class AcknowledgmentResponse(BaseModel):
    id: str
    document_id: str
    rollout_id: Optional[str]
    user_id: str
    person_id: Optional[str]
    status: str
    version_acknowledged: Optional[str]
    viewed_at: Optional[datetime]
    acknowledged_at: Optional[datetime]
    signed_at: Optional[datetime]
    signature_data: Optional[Dict[str, Any]]
    notes: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


def acknowledgment_to_response(a) -> AcknowledgmentResponse:
    return AcknowledgmentResponse(
        id=a.id,
        document_id=a.document_id,
        rollout_id=a.rollout_id,
        user_id=a.user_id,
        person_id=a.person_id,
        status=a.status.value,
        version_acknowledged=a.version_acknowledged,
        viewed_at=a.viewed_at,
        acknowledged_at=a.acknowledged_at,
        signed_at=a.signed_at,
        signature_data=a.signature_data,
        notes=a.notes,
        created_at=a.created_at,
        updated_at=a.updated_at,
    )


class MyDocumentResponse(BaseModel):
    acknowledgment: AcknowledgmentResponse
    document: DocumentResponse
    rollout_name: Optional[str]
    requirement: Optional[str]
    due_date: Optional[date]
    is_overdue: bool

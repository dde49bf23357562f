"""
Document management endpoints.

Documents carry markdown content and a version history. A rollout pushes
the current version of a document to an audience (whole organization, a
team, holders of a role, or one user) and creates one pending
acknowledgment per targeted user. Users then view, acknowledge or sign
their own acknowledgments.
"""

import logging
from datetime import date
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, status, Request, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, or_
from sqlalchemy.orm import selectinload

from idara.core.database import get_db
from idara.core.utils import slugify, utcnow, fetch_page, apply_search_filter, split_csv, reject_nulls
from idara.models.document import (
    Document,
    DocumentVersion,
    DocumentRollout,
    DocumentAcknowledgment,
    DocumentStatus,
    DocumentCategory,
    RolloutTarget,
    RolloutRequirement,
    AcknowledgmentStatus,
    ACK_TRANSITIONS,
    COMPLETED_ACK_STATUSES,
)
from idara.models.organization import Organization
from idara.models.person import Person, Team
from idara.models.user import User, Role, UserStatus, user_roles
from idara.models.audit import AuditAction
from idara.auth.dependencies import (
    require_permission,
    get_current_user,
    PermissionChecker,
    get_client_ip,
    get_user_agent,
)
from idara.auth.audit import log_action
from idara.schemas.document import (
    DocumentCreate,
    DocumentUpdate,
    DocumentResponse,
    DocumentVersionResponse,
    RolloutCreate,
    RolloutUpdate,
    RolloutResponse,
    RolloutStats,
    AcknowledgmentUpdate,
    AcknowledgmentResponse,
    MyDocumentResponse,
    document_to_response,
    rollout_to_response,
    acknowledgment_to_response,
)
from idara.schemas.common import PaginatedResponse, SuccessResponse

logger = logging.getLogger(__name__)

router = APIRouter()

can_view_acknowledgments = PermissionChecker(["docs.acknowledgments.view", "docs.rollouts.view"])

OPEN_ACK_STATUSES = (AcknowledgmentStatus.PENDING, AcknowledgmentStatus.VIEWED)


def bump_patch_version(version: str) -> str:
    """
    Next patch version.

    Example:
        bump_patch_version("1.0") -> "1.0.1"
        bump_patch_version("1.0.1") -> "1.0.2"
    """
    parts = version.split(".")
    if len(parts) == 2:
        return f"{parts[0]}.{parts[1]}.1"
    if len(parts) >= 3:
        patch = int(parts[2]) if parts[2].isdigit() else 0
        return f"{parts[0]}.{parts[1]}.{patch + 1}"
    return f"{version}.1"


# =============================================================================
# Documents
# =============================================================================

async def get_document_or_404(db: AsyncSession, document_ref: str, org_id: str) -> Document:
    """Look a document up by id or slug."""
    result = await db.execute(
        select(Document).where(
            Document.org_id == org_id,
            or_(Document.id == document_ref, Document.slug == document_ref),
        )
    )
    document = result.scalars().first()
    if not document:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
    return document


async def version_exists(db: AsyncSession, document: Document, version: str) -> bool:
    if version == document.current_version:
        return True
    result = await db.execute(
        select(DocumentVersion.id).where(
            DocumentVersion.document_id == document.id,
            DocumentVersion.version == version,
        )
    )
    return result.scalar_one_or_none() is not None


@router.get("/documents", response_model=PaginatedResponse[DocumentResponse])
async def list_documents(
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    search: Optional[str] = Query(None, max_length=100),
    status_filter: Optional[str] = Query(None, alias="status", description="Comma separated statuses"),
    category: Optional[DocumentCategory] = None,
    owner_id: Optional[str] = None,
    current_user: User = Depends(require_permission("docs.documents", "view")),
    db: AsyncSession = Depends(get_db),
):
    """List documents without their content."""
    query = select(Document).where(Document.org_id == current_user.org_id)
    count_query = select(func.count(Document.id)).where(Document.org_id == current_user.org_id)

    query, count_query = apply_search_filter(
        query, count_query, search,
        Document.title, Document.summary, Document.slug,
    )

    statuses = split_csv(status_filter)
    if statuses:
        try:
            wanted = [DocumentStatus(s) for s in statuses]
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid status filter")
        query = query.where(Document.status.in_(wanted))
        count_query = count_query.where(Document.status.in_(wanted))

    if category:
        query = query.where(Document.category == category)
        count_query = count_query.where(Document.category == category)

    if owner_id:
        query = query.where(Document.owner_id == owner_id)
        count_query = count_query.where(Document.owner_id == owner_id)

    documents, total = await fetch_page(
        db, query.order_by(Document.updated_at.desc()), count_query, page, per_page,
    )

    return PaginatedResponse.create(
        items=[document_to_response(d, include_content=False) for d in documents],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("/documents", response_model=DocumentResponse, status_code=status.HTTP_201_CREATED)
async def create_document(
    request: Request,
    document_data: DocumentCreate,
    current_user: User = Depends(require_permission("docs.documents", "create")),
    db: AsyncSession = Depends(get_db),
):
    slug = slugify(document_data.slug or document_data.title)
    if not slug:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Document slug is required")

    result = await db.execute(
        select(Document.id).where(Document.org_id == current_user.org_id, Document.slug == slug)
    )
    if result.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Document with slug '{slug}' already exists",
        )

    document = Document(
        org_id=current_user.org_id,
        created_by_id=current_user.id,
        **document_data.model_dump(exclude={"slug"}),
        slug=slug,
    )
    if document.status == DocumentStatus.PUBLISHED:
        document.published_at = utcnow()
    db.add(document)
    await db.flush()

    await log_action(
        db, request, current_user, AuditAction.CREATE,
        module="docs.documents",
        entity_type="document",
        entity_id=document.id,
        entity_name=document.title,
    )
    await db.commit()

    return document_to_response(document)


@router.get("/documents/{document_ref}", response_model=DocumentResponse)
async def get_document(
    document_ref: str,
    include_content: bool = Query(True, alias="content"),
    current_user: User = Depends(require_permission("docs.documents", "view")),
    db: AsyncSession = Depends(get_db),
):
    """Get a document by id or slug."""
    document = await get_document_or_404(db, document_ref, current_user.org_id)
    return document_to_response(document, include_content=include_content)


@router.patch("/documents/{document_ref}", response_model=DocumentResponse)
async def update_document(
    request: Request,
    document_ref: str,
    document_data: DocumentUpdate,
    current_user: User = Depends(require_permission("docs.documents", "edit")),
    db: AsyncSession = Depends(get_db),
):
    """
    Update a document.

    A new ``version`` records a snapshot and becomes ``current_version``.
    Changing the content of a published document without a version bumps
    the patch version automatically.
    """
    document = await get_document_or_404(db, document_ref, current_user.org_id)
    update_data = document_data.model_dump(exclude_unset=True)
    reject_nulls(Document, update_data)
    new_version = update_data.pop("version", None)
    change_description = update_data.pop("change_description", None)

    content_changed = "content" in update_data and update_data["content"] != document.content

    if new_version and await version_exists(db, document, new_version):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Version {new_version} already exists",
        )
    if not new_version and content_changed and document.status == DocumentStatus.PUBLISHED:
        new_version = bump_patch_version(document.current_version)
        change_description = change_description or "Content updated"

    publishing = (
        update_data.get("status") == DocumentStatus.PUBLISHED
        and document.status != DocumentStatus.PUBLISHED
    )

    for field, value in update_data.items():
        setattr(document, field, value)
    if publishing:
        document.published_at = utcnow()

    if new_version:
        db.add(DocumentVersion(
            document_id=document.id,
            version=new_version,
            change_description=change_description or f"Updated to version {new_version}",
            content_snapshot=document.content,
            created_by_id=current_user.id,
        ))
        document.current_version = new_version

    details = {"updated_fields": list(update_data.keys())}
    if new_version:
        details["version"] = new_version
    await log_action(
        db, request, current_user, AuditAction.UPDATE,
        module="docs.documents",
        entity_type="document",
        entity_id=document.id,
        entity_name=document.title,
        details=details,
    )
    await db.commit()

    return document_to_response(document)


@router.delete("/documents/{document_ref}", response_model=SuccessResponse)
async def delete_document(
    request: Request,
    document_ref: str,
    current_user: User = Depends(require_permission("docs.documents", "delete")),
    db: AsyncSession = Depends(get_db),
):
    """Delete a document with its versions, rollouts and acknowledgments."""
    document = await get_document_or_404(db, document_ref, current_user.org_id)
    result = await db.execute(
        select(Document)
        .where(Document.id == document.id)
        .options(selectinload(Document.versions))
    )
    document = result.scalar_one()
    document_id, title = document.id, document.title

    await db.delete(document)
    await log_action(
        db, request, current_user, AuditAction.DELETE,
        module="docs.documents",
        entity_type="document",
        entity_id=document_id,
        entity_name=title,
    )
    await db.commit()

    return SuccessResponse(message=f"Document '{title}' deleted")


@router.get("/documents/{document_ref}/versions", response_model=List[DocumentVersionResponse])
async def list_document_versions(
    document_ref: str,
    current_user: User = Depends(require_permission("docs.documents", "view")),
    db: AsyncSession = Depends(get_db),
):
    """Version history, newest first."""
    document = await get_document_or_404(db, document_ref, current_user.org_id)
    result = await db.execute(
        select(DocumentVersion)
        .where(DocumentVersion.document_id == document.id)
        .order_by(DocumentVersion.created_at.desc())
    )
    return [DocumentVersionResponse.model_validate(v) for v in result.scalars().all()]


# =============================================================================
# Rollouts
# =============================================================================

async def resolve_target(
    db: AsyncSession, org_id: str, target_type: RolloutTarget, target_id: Optional[str]
) -> tuple[Optional[str], list[User]]:
    """
    Name of the rollout target and the users it reaches.

    Deactivated users are never targeted.
    """
    users = select(User).where(User.org_id == org_id, User.status != UserStatus.DEACTIVATED)

    if target_type == RolloutTarget.ORGANIZATION:
        org = await db.get(Organization, org_id)
        result = await db.execute(users)
        return org.name if org else None, list(result.scalars().all())

    if not target_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"target_id is required for {target_type.value} rollouts",
        )

    if target_type == RolloutTarget.TEAM:
        result = await db.execute(select(Team).where(Team.id == target_id, Team.org_id == org_id))
        team = result.scalar_one_or_none()
        if not team:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Team not found")
        result = await db.execute(
            users.join(Person, Person.id == User.person_id).where(Person.team_id == team.id)
        )
        return team.name, list(result.scalars().all())

    if target_type == RolloutTarget.ROLE:
        result = await db.execute(select(Role).where(Role.id == target_id, Role.org_id == org_id))
        role = result.scalar_one_or_none()
        if not role:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Role not found")
        result = await db.execute(
            users.join(user_roles, user_roles.c.user_id == User.id).where(user_roles.c.role_id == role.id)
        )
        return role.name, list(result.scalars().all())

    result = await db.execute(users.where(User.id == target_id))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user.name, [user]


async def target_name(db: AsyncSession, rollout: DocumentRollout, org_id: str) -> Optional[str]:
    if rollout.target_type == RolloutTarget.ORGANIZATION:
        org = await db.get(Organization, org_id)
        return org.name if org else None
    model = {RolloutTarget.TEAM: Team, RolloutTarget.ROLE: Role, RolloutTarget.USER: User}[rollout.target_type]
    target = await db.get(model, rollout.target_id) if rollout.target_id else None
    return target.name if target else None


async def ack_counts(db: AsyncSession, rollout_ids: list[str]) -> dict[str, tuple[int, int]]:
    """(acknowledged, total) per rollout."""
    if not rollout_ids:
        return {}
    result = await db.execute(
        select(DocumentAcknowledgment.rollout_id, DocumentAcknowledgment.status, func.count())
        .where(DocumentAcknowledgment.rollout_id.in_(rollout_ids))
        .group_by(DocumentAcknowledgment.rollout_id, DocumentAcknowledgment.status)
    )
    counts: dict[str, tuple[int, int]] = {}
    for rollout_id, ack_status, n in result.all():
        done, total = counts.get(rollout_id, (0, 0))
        if ack_status in COMPLETED_ACK_STATUSES:
            done += n
        counts[rollout_id] = (done, total + n)
    return counts


async def build_rollout_response(db: AsyncSession, rollout: DocumentRollout, org_id: str) -> RolloutResponse:
    done, total = (await ack_counts(db, [rollout.id])).get(rollout.id, (0, 0))
    return rollout_to_response(
        rollout,
        document_title=rollout.document.title,
        target_name=await target_name(db, rollout, org_id),
        acknowledged_count=done,
        total_count=total,
    )


async def get_rollout_or_404(db: AsyncSession, rollout_id: str, org_id: str) -> DocumentRollout:
    result = await db.execute(
        select(DocumentRollout)
        .join(Document, Document.id == DocumentRollout.document_id)
        .where(DocumentRollout.id == rollout_id, Document.org_id == org_id)
        .options(selectinload(DocumentRollout.document))
    )
    rollout = result.scalar_one_or_none()
    if not rollout:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Rollout not found")
    return rollout


@router.get("/rollouts", response_model=PaginatedResponse[RolloutResponse])
async def list_rollouts(
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    document_id: Optional[str] = None,
    is_active: Optional[bool] = None,
    current_user: User = Depends(require_permission("docs.rollouts", "view")),
    db: AsyncSession = Depends(get_db),
):
    """List rollouts with target names and acknowledgment progress."""
    query = (
        select(DocumentRollout)
        .join(Document, Document.id == DocumentRollout.document_id)
        .where(Document.org_id == current_user.org_id)
        .options(selectinload(DocumentRollout.document))
    )
    count_query = (
        select(func.count(DocumentRollout.id))
        .join(Document, Document.id == DocumentRollout.document_id)
        .where(Document.org_id == current_user.org_id)
    )

    if document_id:
        query = query.where(DocumentRollout.document_id == document_id)
        count_query = count_query.where(DocumentRollout.document_id == document_id)
    if is_active is not None:
        query = query.where(DocumentRollout.is_active == is_active)
        count_query = count_query.where(DocumentRollout.is_active == is_active)

    rollouts, total = await fetch_page(
        db, query.order_by(DocumentRollout.created_at.desc()), count_query, page, per_page,
    )
    counts = await ack_counts(db, [r.id for r in rollouts])

    items = []
    for r in rollouts:
        done, n = counts.get(r.id, (0, 0))
        items.append(rollout_to_response(
            r,
            document_title=r.document.title,
            target_name=await target_name(db, r, current_user.org_id),
            acknowledged_count=done,
            total_count=n,
        ))

    return PaginatedResponse.create(items=items, total=total, page=page, per_page=per_page)


@router.post("/rollouts", response_model=RolloutResponse, status_code=status.HTTP_201_CREATED)
async def create_rollout(
    request: Request,
    rollout_data: RolloutCreate,
    current_user: User = Depends(require_permission("docs.rollouts", "create")),
    db: AsyncSession = Depends(get_db),
):
    """
    Roll the document's current version out to an audience.

    Every targeted user gets a pending acknowledgment.
    """
    result = await db.execute(
        select(Document).where(Document.id == rollout_data.document_id, Document.org_id == current_user.org_id)
    )
    document = result.scalar_one_or_none()
    if not document:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")

    name, targets = await resolve_target(
        db, current_user.org_id, rollout_data.target_type, rollout_data.target_id,
    )

    rollout = DocumentRollout(
        **rollout_data.model_dump(exclude={"name"}),
        name=rollout_data.name or f"{document.title} v{document.current_version}",
        version_at_rollout=document.current_version,
        content_snapshot=document.content,
        created_by_id=current_user.id,
    )
    if rollout.target_type == RolloutTarget.ORGANIZATION:
        rollout.target_id = None
    rollout.document = document
    db.add(rollout)
    await db.flush()

    result = await db.execute(
        select(DocumentAcknowledgment.user_id).where(DocumentAcknowledgment.rollout_id == rollout.id)
    )
    existing = set(result.scalars().all())
    created = 0
    for user in targets:
        if user.id in existing:
            continue
        db.add(DocumentAcknowledgment(
            document_id=document.id,
            rollout_id=rollout.id,
            user_id=user.id,
            person_id=user.person_id,
            status=AcknowledgmentStatus.PENDING,
        ))
        existing.add(user.id)
        created += 1
    await db.flush()

    logger.info("Rollout %s of %s created %d acknowledgments", rollout.id, document.slug, created)

    await log_action(
        db, request, current_user, AuditAction.CREATE,
        module="docs.rollouts",
        entity_type="rollout",
        entity_id=rollout.id,
        entity_name=rollout.name,
        details={"target_type": rollout.target_type.value, "acknowledgments": created},
    )
    await db.commit()

    return rollout_to_response(
        rollout,
        document_title=document.title,
        target_name=name,
        acknowledged_count=0,
        total_count=created,
    )


@router.get("/rollouts/stats", response_model=RolloutStats)
async def rollout_stats(
    current_user: User = Depends(require_permission("docs.rollouts", "view")),
    db: AsyncSession = Depends(get_db),
):
    """Organization-wide rollout and acknowledgment counts."""
    result = await db.execute(
        select(DocumentRollout.is_active, func.count(DocumentRollout.id))
        .join(Document, Document.id == DocumentRollout.document_id)
        .where(Document.org_id == current_user.org_id)
        .group_by(DocumentRollout.is_active)
    )
    by_active = dict(result.all())

    result = await db.execute(
        select(DocumentAcknowledgment.status, func.count(DocumentAcknowledgment.id))
        .join(Document, Document.id == DocumentAcknowledgment.document_id)
        .where(Document.org_id == current_user.org_id)
        .group_by(DocumentAcknowledgment.status)
    )
    by_status = {s.value: 0 for s in AcknowledgmentStatus}
    for ack_status, n in result.all():
        by_status[ack_status.value] = n

    result = await db.execute(
        select(func.count(DocumentAcknowledgment.id))
        .join(DocumentRollout, DocumentRollout.id == DocumentAcknowledgment.rollout_id)
        .join(Document, Document.id == DocumentRollout.document_id)
        .where(
            Document.org_id == current_user.org_id,
            DocumentAcknowledgment.status.in_(OPEN_ACK_STATUSES),
            DocumentRollout.due_date < date.today(),
        )
    )
    overdue = result.scalar() or 0

    total_acks = sum(by_status.values())
    completed = sum(by_status[s.value] for s in COMPLETED_ACK_STATUSES)

    return RolloutStats(
        total_rollouts=sum(by_active.values()),
        active_rollouts=by_active.get(True, 0),
        total_acknowledgments=total_acks,
        by_status=by_status,
        overdue=overdue,
        completion_percent=round(completed * 100 / total_acks) if total_acks else 0,
    )


@router.get("/rollouts/{rollout_id}", response_model=RolloutResponse)
async def get_rollout(
    rollout_id: str,
    current_user: User = Depends(require_permission("docs.rollouts", "view")),
    db: AsyncSession = Depends(get_db),
):
    rollout = await get_rollout_or_404(db, rollout_id, current_user.org_id)
    return await build_rollout_response(db, rollout, current_user.org_id)


@router.patch("/rollouts/{rollout_id}", response_model=RolloutResponse)
async def update_rollout(
    request: Request,
    rollout_id: str,
    rollout_data: RolloutUpdate,
    current_user: User = Depends(require_permission("docs.rollouts", "edit")),
    db: AsyncSession = Depends(get_db),
):
    rollout = await get_rollout_or_404(db, rollout_id, current_user.org_id)
    update_data = rollout_data.model_dump(exclude_unset=True)
    reject_nulls(DocumentRollout, update_data)
    for field, value in update_data.items():
        setattr(rollout, field, value)

    await log_action(
        db, request, current_user, AuditAction.UPDATE,
        module="docs.rollouts",
        entity_type="rollout",
        entity_id=rollout.id,
        entity_name=rollout.name,
        details={"updated_fields": list(update_data.keys())},
    )
    await db.commit()

    return await build_rollout_response(db, rollout, current_user.org_id)


@router.delete("/rollouts/{rollout_id}", response_model=SuccessResponse)
async def delete_rollout(
    request: Request,
    rollout_id: str,
    current_user: User = Depends(require_permission("docs.rollouts", "delete")),
    db: AsyncSession = Depends(get_db),
):
    """Delete a rollout and its acknowledgments."""
    rollout = await get_rollout_or_404(db, rollout_id, current_user.org_id)
    result = await db.execute(
        select(DocumentRollout)
        .where(DocumentRollout.id == rollout.id)
        .options(selectinload(DocumentRollout.acknowledgments))
    )
    rollout = result.scalar_one()
    name = rollout.name

    await db.delete(rollout)
    await log_action(
        db, request, current_user, AuditAction.DELETE,
        module="docs.rollouts",
        entity_type="rollout",
        entity_id=rollout_id,
        entity_name=name,
    )
    await db.commit()

    return SuccessResponse(message=f"Rollout '{name}' deleted")


# =============================================================================
# Acknowledgments
# =============================================================================

async def get_acknowledgment_or_404(db: AsyncSession, ack_id: str, org_id: str) -> DocumentAcknowledgment:
    result = await db.execute(
        select(DocumentAcknowledgment)
        .join(Document, Document.id == DocumentAcknowledgment.document_id)
        .where(DocumentAcknowledgment.id == ack_id, Document.org_id == org_id)
        .options(
            selectinload(DocumentAcknowledgment.document),
            selectinload(DocumentAcknowledgment.rollout),
        )
    )
    ack = result.scalar_one_or_none()
    if not ack:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Acknowledgment not found")
    return ack


@router.get("/acknowledgments", response_model=PaginatedResponse[AcknowledgmentResponse])
async def list_acknowledgments(
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    document_id: Optional[str] = None,
    rollout_id: Optional[str] = None,
    user_id: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status", description="Comma separated statuses"),
    current_user: User = Depends(can_view_acknowledgments),
    db: AsyncSession = Depends(get_db),
):
    query = (
        select(DocumentAcknowledgment)
        .join(Document, Document.id == DocumentAcknowledgment.document_id)
        .where(Document.org_id == current_user.org_id)
    )
    count_query = (
        select(func.count(DocumentAcknowledgment.id))
        .join(Document, Document.id == DocumentAcknowledgment.document_id)
        .where(Document.org_id == current_user.org_id)
    )

    filters = []
    if document_id:
        filters.append(DocumentAcknowledgment.document_id == document_id)
    if rollout_id:
        filters.append(DocumentAcknowledgment.rollout_id == rollout_id)
    if user_id:
        filters.append(DocumentAcknowledgment.user_id == user_id)
    statuses = split_csv(status_filter)
    if statuses:
        try:
            filters.append(DocumentAcknowledgment.status.in_([AcknowledgmentStatus(s) for s in statuses]))
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid status filter")
    if filters:
        query = query.where(*filters)
        count_query = count_query.where(*filters)

    acks, total = await fetch_page(
        db, query.order_by(DocumentAcknowledgment.created_at.desc()), count_query, page, per_page,
    )

    return PaginatedResponse.create(
        items=[acknowledgment_to_response(a) for a in acks],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/acknowledgments/{ack_id}", response_model=AcknowledgmentResponse)
async def get_acknowledgment(
    ack_id: str,
    current_user: User = Depends(can_view_acknowledgments),
    db: AsyncSession = Depends(get_db),
):
    return acknowledgment_to_response(await get_acknowledgment_or_404(db, ack_id, current_user.org_id))


@router.put("/acknowledgments/{ack_id}", response_model=AcknowledgmentResponse)
async def update_acknowledgment(
    request: Request,
    ack_id: str,
    ack_data: AcknowledgmentUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    View, acknowledge or sign one's own acknowledgment.

    Status only moves forward: pending -> viewed -> acknowledged -> signed,
    skipping steps allowed. Earlier timestamps are back-filled and signature
    data is stamped with the client IP and user agent.
    """
    ack = await get_acknowledgment_or_404(db, ack_id, current_user.org_id)
    if ack.user_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cannot update another user's acknowledgment",
        )

    previous = ack.status
    new_status = ack_data.status
    if new_status not in ACK_TRANSITIONS[previous]:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid status transition from {previous.value} to {new_status.value}",
        )
    if (
        new_status == AcknowledgmentStatus.ACKNOWLEDGED
        and ack.rollout is not None
        and ack.rollout.requirement == RolloutRequirement.REQUIRED_WITH_SIGNATURE
    ):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="This document requires a signature",
        )

    now = utcnow()
    ack.status = new_status
    if new_status == AcknowledgmentStatus.VIEWED:
        ack.viewed_at = ack.viewed_at or now
    elif new_status == AcknowledgmentStatus.ACKNOWLEDGED:
        ack.viewed_at = ack.viewed_at or now
        ack.acknowledged_at = now
    else:
        ack.viewed_at = ack.viewed_at or now
        ack.acknowledged_at = ack.acknowledged_at or now
        ack.signed_at = now
        ack.signature_data = {
            **(ack_data.signature_data or {}),
            "ip_address": get_client_ip(request),
            "user_agent": get_user_agent(request),
        }

    if new_status in COMPLETED_ACK_STATUSES:
        ack.version_acknowledged = (
            ack.rollout.version_at_rollout if ack.rollout and ack.rollout.version_at_rollout
            else ack.document.current_version
        )
    if ack_data.notes is not None:
        ack.notes = ack_data.notes

    await log_action(
        db, request, current_user, AuditAction.ACKNOWLEDGE,
        module="docs.acknowledgments",
        entity_type="acknowledgment",
        entity_id=ack.id,
        entity_name=ack.document.title,
        details={"from": previous.value, "to": new_status.value},
    )
    await db.commit()

    return acknowledgment_to_response(ack)


@router.get("/my-documents", response_model=List[MyDocumentResponse])
async def my_documents(
    status_filter: Optional[str] = Query(None, alias="status", description="Comma separated statuses"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The current user's acknowledgments, open ones first."""
    query = (
        select(DocumentAcknowledgment)
        .join(Document, Document.id == DocumentAcknowledgment.document_id)
        .where(DocumentAcknowledgment.user_id == current_user.id, Document.org_id == current_user.org_id)
        .options(
            selectinload(DocumentAcknowledgment.document),
            selectinload(DocumentAcknowledgment.rollout),
        )
        .order_by(DocumentAcknowledgment.created_at.desc())
    )
    statuses = split_csv(status_filter)
    if statuses:
        try:
            query = query.where(DocumentAcknowledgment.status.in_([AcknowledgmentStatus(s) for s in statuses]))
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid status filter")

    result = await db.execute(query)
    today = date.today()

    items = []
    for ack in result.scalars().all():
        rollout = ack.rollout
        if rollout is not None and not rollout.is_active:
            continue
        due = rollout.due_date if rollout else None
        items.append(MyDocumentResponse(
            acknowledgment=acknowledgment_to_response(ack),
            document=document_to_response(ack.document, include_content=False),
            rollout_name=rollout.name if rollout else None,
            requirement=rollout.requirement.value if rollout else None,
            due_date=due,
            is_overdue=bool(due and due < today and ack.status in OPEN_ACK_STATUSES),
        ))

    open_values = {s.value for s in OPEN_ACK_STATUSES}
    items.sort(key=lambda i: i.acknowledgment.status not in open_values)
    return items

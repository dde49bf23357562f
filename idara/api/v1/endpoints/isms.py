"""
ISMS management endpoints, mounted under /security.

Provides:
- Audit programme (internal and external audits)
- Security objectives register
- Management-system clause catalog and per-framework clause compliance
"""

from datetime import datetime, timezone
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, status, Request, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.orm import selectinload

from idara.core.database import get_db
from idara.core.utils import fetch_page, apply_search_filter, reject_nulls
from idara.models.isms import (
    SecurityAudit,
    SecurityObjective,
    StandardClause,
    ClauseCompliance,
    AuditType,
    AuditStatus,
    ObjectiveStatus,
    ObjectivePriority,
    ClauseComplianceStatus,
    ADDRESSED_CLAUSE_STATUSES,
)
from idara.models.user import User
from idara.models.audit import AuditAction
from idara.auth.dependencies import require_permission
from idara.auth.audit import log_action
from idara.api.v1.endpoints.security import check_owner, get_framework_or_404
from idara.schemas.isms import (
    AuditCreate,
    AuditUpdate,
    AuditResponse,
    ObjectiveCreate,
    ObjectiveUpdate,
    ObjectiveResponse,
    StandardClauseResponse,
    StandardClauseNode,
    StandardClauseCatalog,
    ClauseComplianceUpsert,
    ClauseComplianceUpdate,
    ClauseComplianceResponse,
    ClauseStatusRow,
    ClauseSummary,
    FrameworkClausesResponse,
    audit_to_response,
    objective_to_response,
    clause_compliance_to_response,
)
from idara.schemas.common import PaginatedResponse, SuccessResponse, person_ref

router = APIRouter()


# =============================================================================
# Audits
# =============================================================================

async def get_audit_or_404(db: AsyncSession, audit_id: str, org_id: str) -> SecurityAudit:
    result = await db.execute(
        select(SecurityAudit)
        .where(SecurityAudit.id == audit_id, SecurityAudit.org_id == org_id)
        .options(selectinload(SecurityAudit.framework))
        .execution_options(populate_existing=True)
    )
    audit = result.scalar_one_or_none()
    if not audit:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Audit not found")
    return audit


async def audit_code_taken(db: AsyncSession, org_id: str, code: str, exclude_id: Optional[str] = None) -> bool:
    query = select(SecurityAudit.id).where(SecurityAudit.org_id == org_id, SecurityAudit.audit_id == code)
    if exclude_id:
        query = query.where(SecurityAudit.id != exclude_id)
    result = await db.execute(query)
    return result.scalar_one_or_none() is not None


@router.get("/audits", response_model=PaginatedResponse[AuditResponse])
async def list_audits(
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    search: Optional[str] = Query(None, max_length=100),
    type_filter: Optional[AuditType] = Query(None, alias="type"),
    status_filter: Optional[AuditStatus] = Query(None, alias="status"),
    framework_id: Optional[str] = None,
    current_user: User = Depends(require_permission("security.audits", "view")),
    db: AsyncSession = Depends(get_db),
):
    """Audit programme, most recent start date first."""
    query = select(SecurityAudit).where(SecurityAudit.org_id == current_user.org_id)
    count_query = select(func.count(SecurityAudit.id)).where(SecurityAudit.org_id == current_user.org_id)

    query, count_query = apply_search_filter(query, count_query, search, SecurityAudit.title, SecurityAudit.audit_id)

    if type_filter:
        query = query.where(SecurityAudit.type == type_filter)
        count_query = count_query.where(SecurityAudit.type == type_filter)
    if status_filter:
        query = query.where(SecurityAudit.status == status_filter)
        count_query = count_query.where(SecurityAudit.status == status_filter)
    if framework_id:
        query = query.where(SecurityAudit.framework_id == framework_id)
        count_query = count_query.where(SecurityAudit.framework_id == framework_id)

    audits, total = await fetch_page(
        db,
        query.options(selectinload(SecurityAudit.framework))
        .order_by(SecurityAudit.start_date.desc().nulls_last(), SecurityAudit.created_at.desc()),
        count_query, page, per_page,
    )

    return PaginatedResponse.create(
        items=[audit_to_response(a) for a in audits],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("/audits", response_model=AuditResponse, status_code=status.HTTP_201_CREATED)
async def create_audit(
    request: Request,
    audit_data: AuditCreate,
    current_user: User = Depends(require_permission("security.audits", "create")),
    db: AsyncSession = Depends(get_db),
):
    if await audit_code_taken(db, current_user.org_id, audit_data.audit_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Audit '{audit_data.audit_id}' already exists",
        )
    if audit_data.framework_id:
        await get_framework_or_404(db, audit_data.framework_id, current_user.org_id)

    audit = SecurityAudit(org_id=current_user.org_id, **audit_data.model_dump())
    db.add(audit)
    await db.flush()

    await log_action(
        db, request, current_user, AuditAction.CREATE,
        module="security.audits",
        entity_type="audit",
        entity_id=audit.id,
        entity_name=audit.audit_id,
        details={"type": audit.type.value},
    )
    await db.commit()

    return audit_to_response(await get_audit_or_404(db, audit.id, current_user.org_id))


@router.get("/audits/{audit_id}", response_model=AuditResponse)
async def get_audit(
    audit_id: str,
    current_user: User = Depends(require_permission("security.audits", "view")),
    db: AsyncSession = Depends(get_db),
):
    return audit_to_response(await get_audit_or_404(db, audit_id, current_user.org_id))


@router.patch("/audits/{audit_id}", response_model=AuditResponse)
async def update_audit(
    request: Request,
    audit_id: str,
    audit_data: AuditUpdate,
    current_user: User = Depends(require_permission("security.audits", "edit")),
    db: AsyncSession = Depends(get_db),
):
    audit = await get_audit_or_404(db, audit_id, current_user.org_id)
    update_data = audit_data.model_dump(exclude_unset=True)
    reject_nulls(SecurityAudit, update_data)

    if update_data.get("audit_id") and await audit_code_taken(db, current_user.org_id, update_data["audit_id"], audit.id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Audit '{update_data['audit_id']}' already exists",
        )
    if update_data.get("framework_id"):
        await get_framework_or_404(db, update_data["framework_id"], current_user.org_id)

    for field, value in update_data.items():
        setattr(audit, field, value)

    await log_action(
        db, request, current_user, AuditAction.UPDATE,
        module="security.audits",
        entity_type="audit",
        entity_id=audit.id,
        entity_name=audit.audit_id,
        details={"updated_fields": list(update_data.keys())},
    )
    await db.commit()

    return audit_to_response(await get_audit_or_404(db, audit.id, current_user.org_id))


@router.delete("/audits/{audit_id}", response_model=SuccessResponse)
async def delete_audit(
    request: Request,
    audit_id: str,
    current_user: User = Depends(require_permission("security.audits", "delete")),
    db: AsyncSession = Depends(get_db),
):
    audit = await get_audit_or_404(db, audit_id, current_user.org_id)
    code = audit.audit_id
    await db.delete(audit)
    await log_action(
        db, request, current_user, AuditAction.DELETE,
        module="security.audits",
        entity_type="audit",
        entity_id=audit_id,
        entity_name=code,
    )
    await db.commit()

    return SuccessResponse(message=f"Audit '{code}' deleted")


# =============================================================================
# Objectives
# =============================================================================

async def get_objective_or_404(db: AsyncSession, objective_id: str, org_id: str) -> SecurityObjective:
    result = await db.execute(
        select(SecurityObjective)
        .where(SecurityObjective.id == objective_id, SecurityObjective.org_id == org_id)
        .options(selectinload(SecurityObjective.owner))
        .execution_options(populate_existing=True)
    )
    objective = result.scalar_one_or_none()
    if not objective:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Objective not found")
    return objective


async def objective_code_taken(db: AsyncSession, org_id: str, code: str, exclude_id: Optional[str] = None) -> bool:
    query = select(SecurityObjective.id).where(
        SecurityObjective.org_id == org_id, SecurityObjective.objective_id == code
    )
    if exclude_id:
        query = query.where(SecurityObjective.id != exclude_id)
    result = await db.execute(query)
    return result.scalar_one_or_none() is not None


@router.get("/objectives", response_model=PaginatedResponse[ObjectiveResponse])
async def list_objectives(
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    search: Optional[str] = Query(None, max_length=100),
    status_filter: Optional[ObjectiveStatus] = Query(None, alias="status"),
    priority: Optional[ObjectivePriority] = None,
    current_user: User = Depends(require_permission("security.objectives", "view")),
    db: AsyncSession = Depends(get_db),
):
    query = select(SecurityObjective).where(SecurityObjective.org_id == current_user.org_id)
    count_query = select(func.count(SecurityObjective.id)).where(SecurityObjective.org_id == current_user.org_id)

    query, count_query = apply_search_filter(
        query, count_query, search, SecurityObjective.title, SecurityObjective.objective_id
    )

    if status_filter:
        query = query.where(SecurityObjective.status == status_filter)
        count_query = count_query.where(SecurityObjective.status == status_filter)
    if priority:
        query = query.where(SecurityObjective.priority == priority)
        count_query = count_query.where(SecurityObjective.priority == priority)

    objectives, total = await fetch_page(
        db,
        query.options(selectinload(SecurityObjective.owner)).order_by(SecurityObjective.created_at.desc()),
        count_query, page, per_page,
    )

    return PaginatedResponse.create(
        items=[objective_to_response(o) for o in objectives],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("/objectives", response_model=ObjectiveResponse, status_code=status.HTTP_201_CREATED)
async def create_objective(
    request: Request,
    objective_data: ObjectiveCreate,
    current_user: User = Depends(require_permission("security.objectives", "create")),
    db: AsyncSession = Depends(get_db),
):
    if await objective_code_taken(db, current_user.org_id, objective_data.objective_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Objective '{objective_data.objective_id}' already exists",
        )
    await check_owner(db, current_user.org_id, objective_data.owner_id)

    objective = SecurityObjective(org_id=current_user.org_id, **objective_data.model_dump())
    if objective.status == ObjectiveStatus.COMPLETED:
        objective.completed_at = datetime.now(timezone.utc)
    db.add(objective)
    await db.flush()

    await log_action(
        db, request, current_user, AuditAction.CREATE,
        module="security.objectives",
        entity_type="objective",
        entity_id=objective.id,
        entity_name=objective.objective_id,
    )
    await db.commit()

    return objective_to_response(await get_objective_or_404(db, objective.id, current_user.org_id))


@router.get("/objectives/{objective_id}", response_model=ObjectiveResponse)
async def get_objective(
    objective_id: str,
    current_user: User = Depends(require_permission("security.objectives", "view")),
    db: AsyncSession = Depends(get_db),
):
    return objective_to_response(await get_objective_or_404(db, objective_id, current_user.org_id))


@router.patch("/objectives/{objective_id}", response_model=ObjectiveResponse)
async def update_objective(
    request: Request,
    objective_id: str,
    objective_data: ObjectiveUpdate,
    current_user: User = Depends(require_permission("security.objectives", "edit")),
    db: AsyncSession = Depends(get_db),
):
    """Moving to ``completed`` stamps ``completed_at``; leaving it clears the stamp."""
    objective = await get_objective_or_404(db, objective_id, current_user.org_id)
    update_data = objective_data.model_dump(exclude_unset=True)
    reject_nulls(SecurityObjective, update_data)

    code = update_data.get("objective_id")
    if code and await objective_code_taken(db, current_user.org_id, code, objective.id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Objective '{code}' already exists",
        )
    if "owner_id" in update_data:
        await check_owner(db, current_user.org_id, update_data["owner_id"])

    new_status = update_data.get("status")
    if new_status and new_status != objective.status:
        objective.completed_at = (
            datetime.now(timezone.utc) if new_status == ObjectiveStatus.COMPLETED else None
        )

    for field, value in update_data.items():
        setattr(objective, field, value)

    await log_action(
        db, request, current_user, AuditAction.UPDATE,
        module="security.objectives",
        entity_type="objective",
        entity_id=objective.id,
        entity_name=objective.objective_id,
        details={"updated_fields": list(update_data.keys())},
    )
    await db.commit()

    return objective_to_response(await get_objective_or_404(db, objective.id, current_user.org_id))


@router.delete("/objectives/{objective_id}", response_model=SuccessResponse)
async def delete_objective(
    request: Request,
    objective_id: str,
    current_user: User = Depends(require_permission("security.objectives", "delete")),
    db: AsyncSession = Depends(get_db),
):
    objective = await get_objective_or_404(db, objective_id, current_user.org_id)
    code = objective.objective_id
    await db.delete(objective)
    await log_action(
        db, request, current_user, AuditAction.DELETE,
        module="security.objectives",
        entity_type="objective",
        entity_id=objective_id,
        entity_name=code,
    )
    await db.commit()

    return SuccessResponse(message=f"Objective '{code}' deleted")


# =============================================================================
# Clauses
# =============================================================================

def build_hierarchy(clauses: List[StandardClause]) -> List[StandardClauseNode]:
    """Nest clauses under their parent; clauses without a known parent are roots."""
    nodes = {c.clause_id: StandardClauseNode.model_validate(c) for c in clauses}
    roots = []
    for clause in clauses:
        node = nodes[clause.clause_id]
        parent = nodes.get(clause.parent_clause_id) if clause.parent_clause_id else None
        if parent:
            parent.children.append(node)
        else:
            roots.append(node)
    return roots


@router.get("/standard-clauses", response_model=StandardClauseCatalog)
async def list_standard_clauses(
    framework: str = Query("iso-27001", description="Framework code"),
    current_user: User = Depends(require_permission("security.clauses", "view")),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(StandardClause)
        .where(StandardClause.framework_code == framework)
        .order_by(StandardClause.sort_order)
    )
    clauses = list(result.scalars().all())
    return StandardClauseCatalog(
        items=[StandardClauseResponse.model_validate(c) for c in clauses],
        hierarchy=build_hierarchy(clauses),
        total=len(clauses),
    )


def summarize_clauses(statuses: List[ClauseComplianceStatus]) -> ClauseSummary:
    summary = ClauseSummary(total=len(statuses))
    for value in statuses:
        setattr(summary, value.value, getattr(summary, value.value) + 1)
    addressed = sum(1 for value in statuses if value in ADDRESSED_CLAUSE_STATUSES)
    summary.compliance_percent = round(addressed * 100 / summary.total) if summary.total else 0
    return summary


def clause_query():
    return select(ClauseCompliance).options(
        selectinload(ClauseCompliance.standard_clause),
        selectinload(ClauseCompliance.owner),
    )


async def get_clause_compliance_or_404(db: AsyncSession, compliance_id: str, org_id: str) -> ClauseCompliance:
    result = await db.execute(
        clause_query()
        .where(ClauseCompliance.id == compliance_id, ClauseCompliance.org_id == org_id)
        .execution_options(populate_existing=True)
    )
    record = result.scalar_one_or_none()
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Clause compliance record not found")
    return record


@router.get("/clauses", response_model=FrameworkClausesResponse)
async def list_framework_clauses(
    framework_id: str,
    current_user: User = Depends(require_permission("security.clauses", "view")),
    db: AsyncSession = Depends(get_db),
):
    """
    Every catalog clause of the framework merged with the organization's
    compliance record. Clauses without a record count as not addressed.
    """
    framework = await get_framework_or_404(db, framework_id, current_user.org_id)

    result = await db.execute(
        select(StandardClause)
        .where(StandardClause.framework_code == framework.code)
        .order_by(StandardClause.sort_order)
    )
    clauses = list(result.scalars().all())

    result = await db.execute(clause_query().where(ClauseCompliance.framework_id == framework.id))
    records = {r.standard_clause_id: r for r in result.scalars().all()}

    rows = []
    for clause in clauses:
        record = records.get(clause.id)
        rows.append(ClauseStatusRow(
            standard_clause_id=clause.id,
            clause_id=clause.clause_id,
            parent_clause_id=clause.parent_clause_id,
            title=clause.title,
            category=clause.category,
            compliance_id=record.id if record else None,
            compliance_status=(record.compliance_status if record else ClauseComplianceStatus.NOT_ADDRESSED).value,
            owner=person_ref(record.owner) if record else None,
            target_date=record.target_date if record else None,
            implementation_notes=record.implementation_notes if record else None,
            last_reviewed_at=record.last_reviewed_at if record else None,
        ))

    return FrameworkClausesResponse(
        framework_id=framework.id,
        framework_code=framework.code,
        clauses=rows,
        summary=summarize_clauses([ClauseComplianceStatus(r.compliance_status) for r in rows]),
    )


@router.post("/clauses", response_model=ClauseComplianceResponse)
async def upsert_clause_compliance(
    request: Request,
    response: Response,
    clause_data: ClauseComplianceUpsert,
    current_user: User = Depends(require_permission("security.clauses", "edit")),
    db: AsyncSession = Depends(get_db),
):
    """
    Create or update the record for one clause of a framework.

    Returns 201 when the record is new and 200 when it already existed.
    """
    framework = await get_framework_or_404(db, clause_data.framework_id, current_user.org_id)
    clause = await db.get(StandardClause, clause_data.standard_clause_id)
    if not clause or clause.framework_code != framework.code:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Standard clause not found")
    await check_owner(db, current_user.org_id, clause_data.owner_id)

    values = clause_data.model_dump(exclude_unset=True, exclude={"framework_id", "standard_clause_id"})
    reject_nulls(ClauseCompliance, values)

    result = await db.execute(
        select(ClauseCompliance).where(
            ClauseCompliance.framework_id == framework.id,
            ClauseCompliance.standard_clause_id == clause.id,
        )
    )
    record = result.scalar_one_or_none()
    created = record is None
    if created:
        record = ClauseCompliance(org_id=current_user.org_id, framework_id=framework.id, standard_clause_id=clause.id)
        db.add(record)
    for field, value in values.items():
        setattr(record, field, value)
    await db.flush()

    await log_action(
        db, request, current_user, AuditAction.CREATE if created else AuditAction.UPDATE,
        module="security.clauses",
        entity_type="clause_compliance",
        entity_id=record.id,
        entity_name=f"{framework.code}:{clause.clause_id}",
        details={"updated_fields": list(values.keys())},
    )
    await db.commit()

    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return clause_compliance_to_response(await get_clause_compliance_or_404(db, record.id, current_user.org_id))


@router.get("/clauses/{compliance_id}", response_model=ClauseComplianceResponse)
async def get_clause_compliance(
    compliance_id: str,
    current_user: User = Depends(require_permission("security.clauses", "view")),
    db: AsyncSession = Depends(get_db),
):
    return clause_compliance_to_response(await get_clause_compliance_or_404(db, compliance_id, current_user.org_id))


@router.patch("/clauses/{compliance_id}", response_model=ClauseComplianceResponse)
async def update_clause_compliance(
    request: Request,
    compliance_id: str,
    clause_data: ClauseComplianceUpdate,
    current_user: User = Depends(require_permission("security.clauses", "edit")),
    db: AsyncSession = Depends(get_db),
):
    """Setting ``last_reviewed_at`` records the current user as the reviewer."""
    record = await get_clause_compliance_or_404(db, compliance_id, current_user.org_id)
    update_data = clause_data.model_dump(exclude_unset=True)
    reject_nulls(ClauseCompliance, update_data)

    if "owner_id" in update_data:
        await check_owner(db, current_user.org_id, update_data["owner_id"])
    if update_data.get("last_reviewed_at"):
        record.last_reviewed_by_id = current_user.id

    for field, value in update_data.items():
        setattr(record, field, value)

    await log_action(
        db, request, current_user, AuditAction.UPDATE,
        module="security.clauses",
        entity_type="clause_compliance",
        entity_id=record.id,
        entity_name=record.standard_clause.clause_id,
        details={"updated_fields": list(update_data.keys())},
    )
    await db.commit()

    return clause_compliance_to_response(await get_clause_compliance_or_404(db, record.id, current_user.org_id))


@router.delete("/clauses/{compliance_id}", response_model=SuccessResponse)
async def delete_clause_compliance(
    request: Request,
    compliance_id: str,
    current_user: User = Depends(require_permission("security.clauses", "delete")),
    db: AsyncSession = Depends(get_db),
):
    """Drop the record; the clause reads as not addressed again."""
    record = await get_clause_compliance_or_404(db, compliance_id, current_user.org_id)
    clause_code = record.standard_clause.clause_id
    await db.delete(record)
    await log_action(
        db, request, current_user, AuditAction.DELETE,
        module="security.clauses",
        entity_type="clause_compliance",
        entity_id=compliance_id,
        entity_name=clause_code,
    )
    await db.commit()

    return SuccessResponse(message=f"Clause {clause_code} reset")

"""
Security & compliance endpoints.

Provides:
- Standard control catalog (SOC 2, ISO 27001)
- Frameworks with Statement of Applicability stats
- Organization controls and their mappings to standard controls
- Risk register
- Evidence locker with control links
- Statement of Applicability
"""

import re
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, status, Request, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.orm import selectinload

from idara.core.database import get_db
from idara.core.utils import fetch_page, apply_search_filter, reject_nulls
from idara.models.security import (
    StandardControl,
    Framework,
    Control,
    ControlMapping,
    SoAItem,
    Risk,
    Evidence,
    RiskStatus,
    RiskLevel,
    ControlStatus,
    ImplementationStatus,
    Applicability,
)
from idara.models.person import Person
from idara.models.user import User
from idara.models.audit import AuditAction
from idara.auth.dependencies import require_permission
from idara.auth.audit import log_action
from idara.services.soa import summarize, load_items, framework_summary, create_soa_items
from idara.services.standard_controls import FRAMEWORK_CATALOG
from idara.schemas.security import (
    StandardControlResponse,
    FrameworkCreate,
    FrameworkUpdate,
    FrameworkResponse,
    ControlCreate,
    ControlUpdate,
    ControlFromStandard,
    ControlResponse,
    MappingCreate,
    MappingResponse,
    RiskCreate,
    RiskUpdate,
    RiskResponse,
    EvidenceCreate,
    EvidenceUpdate,
    EvidenceLinksUpdate,
    EvidenceResponse,
    ControlRef,
    SoAItemUpdate,
    SoAItemResponse,
    SoACategory,
    SoAResponse,
    framework_to_response,
    control_to_response,
    mapping_to_response,
    risk_to_response,
    evidence_to_response,
    soa_item_to_response,
)
from idara.schemas.common import PaginatedResponse, SuccessResponse

router = APIRouter()

RISK_ID_PATTERN = re.compile(r"^RSK-(\d+)$")


# =============================================================================
# Standard controls
# =============================================================================

@router.get("/standard-controls", response_model=List[StandardControlResponse])
async def list_standard_controls(
    framework: Optional[str] = Query(None, description="Framework code: soc-2, iso-27001"),
    category: Optional[str] = None,
    current_user: User = Depends(require_permission("security.frameworks", "view")),
    db: AsyncSession = Depends(get_db),
):
    query = select(StandardControl)
    if framework:
        query = query.where(StandardControl.framework_code == framework)
    if category:
        query = query.where(StandardControl.category == category)
    result = await db.execute(query.order_by(StandardControl.framework_code, StandardControl.sort_order))
    return [StandardControlResponse.model_validate(sc) for sc in result.scalars().all()]


# =============================================================================
# Frameworks
# =============================================================================

async def get_framework_or_404(db: AsyncSession, framework_id: str, org_id: str) -> Framework:
    result = await db.execute(
        select(Framework).where(Framework.id == framework_id, Framework.org_id == org_id)
    )
    framework = result.scalar_one_or_none()
    if not framework:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Framework not found")
    return framework


@router.get("/frameworks", response_model=List[FrameworkResponse])
async def list_frameworks(
    current_user: User = Depends(require_permission("security.frameworks", "view")),
    db: AsyncSession = Depends(get_db),
):
    """Adopted frameworks with SoA stats and compliance percentage."""
    result = await db.execute(
        select(Framework).where(Framework.org_id == current_user.org_id).order_by(Framework.name)
    )
    return [framework_to_response(f, await framework_summary(db, f)) for f in result.scalars().all()]


@router.post("/frameworks", response_model=FrameworkResponse, status_code=status.HTTP_201_CREATED)
async def create_framework(
    request: Request,
    framework_data: FrameworkCreate,
    current_user: User = Depends(require_permission("security.frameworks", "create")),
    db: AsyncSession = Depends(get_db),
):
    """
    Adopt a catalog framework.

    One SoA item (applicable, not implemented) is created for every standard
    control of the framework.
    """
    code = framework_data.code.strip().lower()
    existing = await db.execute(
        select(Framework.id).where(Framework.org_id == current_user.org_id, Framework.code == code)
    )
    if existing.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Framework '{code}' already exists",
        )

    result = await db.execute(
        select(func.count(StandardControl.id)).where(StandardControl.framework_code == code)
    )
    if not result.scalar():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown framework code '{code}'. Known: {', '.join(sorted(FRAMEWORK_CATALOG))}",
        )

    catalog = FRAMEWORK_CATALOG.get(code, {})
    framework = Framework(
        org_id=current_user.org_id,
        code=code,
        name=framework_data.name or catalog.get("name", code),
        version=framework_data.version or catalog.get("version"),
        description=framework_data.description,
        status=framework_data.status,
        scope=framework_data.scope,
    )
    db.add(framework)
    await db.flush()
    item_count = await create_soa_items(db, framework)
    await db.flush()

    await log_action(
        db, request, current_user, AuditAction.CREATE,
        module="security.frameworks",
        entity_type="framework",
        entity_id=framework.id,
        entity_name=framework.name,
        details={"code": code, "soa_items": item_count},
    )
    await db.commit()

    return framework_to_response(framework, await framework_summary(db, framework))


@router.get("/frameworks/{framework_id}", response_model=FrameworkResponse)
async def get_framework(
    framework_id: str,
    current_user: User = Depends(require_permission("security.frameworks", "view")),
    db: AsyncSession = Depends(get_db),
):
    framework = await get_framework_or_404(db, framework_id, current_user.org_id)
    return framework_to_response(framework, await framework_summary(db, framework))


@router.patch("/frameworks/{framework_id}", response_model=FrameworkResponse)
async def update_framework(
    request: Request,
    framework_id: str,
    framework_data: FrameworkUpdate,
    current_user: User = Depends(require_permission("security.frameworks", "edit")),
    db: AsyncSession = Depends(get_db),
):
    framework = await get_framework_or_404(db, framework_id, current_user.org_id)
    update_data = framework_data.model_dump(exclude_unset=True)
    reject_nulls(Framework, update_data)
    for field, value in update_data.items():
        setattr(framework, field, value)

    await log_action(
        db, request, current_user, AuditAction.UPDATE,
        module="security.frameworks",
        entity_type="framework",
        entity_id=framework.id,
        entity_name=framework.name,
        details={"updated_fields": list(update_data.keys())},
    )
    await db.commit()

    return framework_to_response(framework, await framework_summary(db, framework))


@router.delete("/frameworks/{framework_id}", response_model=SuccessResponse)
async def delete_framework(
    request: Request,
    framework_id: str,
    current_user: User = Depends(require_permission("security.frameworks", "delete")),
    db: AsyncSession = Depends(get_db),
):
    """Delete a framework and its SoA items."""
    result = await db.execute(
        select(Framework)
        .where(Framework.id == framework_id, Framework.org_id == current_user.org_id)
        .options(selectinload(Framework.soa_items))
    )
    framework = result.scalar_one_or_none()
    if not framework:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Framework not found")

    framework_name = framework.name
    await db.delete(framework)
    await log_action(
        db, request, current_user, AuditAction.DELETE,
        module="security.frameworks",
        entity_type="framework",
        entity_id=framework_id,
        entity_name=framework_name,
    )
    await db.commit()

    return SuccessResponse(message=f"Framework '{framework_name}' deleted")


# =============================================================================
# Controls
# =============================================================================

def control_query():
    return select(Control).options(
        selectinload(Control.mappings).selectinload(ControlMapping.standard_control)
    )


async def get_control_or_404(db: AsyncSession, control_id: str, org_id: str) -> Control:
    result = await db.execute(
        control_query()
        .where(Control.id == control_id, Control.org_id == org_id)
        .execution_options(populate_existing=True)
    )
    control = result.scalar_one_or_none()
    if not control:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Control not found")
    return control


async def control_code_taken(db: AsyncSession, org_id: str, code: str, exclude_id: Optional[str] = None) -> bool:
    query = select(Control.id).where(Control.org_id == org_id, Control.control_id == code)
    if exclude_id:
        query = query.where(Control.id != exclude_id)
    result = await db.execute(query)
    return result.scalar_one_or_none() is not None


async def check_owner(db: AsyncSession, org_id: str, owner_id: Optional[str]) -> None:
    if not owner_id:
        return
    result = await db.execute(select(Person.id).where(Person.id == owner_id, Person.org_id == org_id))
    if not result.scalar_one_or_none():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Owner not found")


async def get_standard_control_or_404(db: AsyncSession, standard_control_id: str) -> StandardControl:
    standard_control = await db.get(StandardControl, standard_control_id)
    if not standard_control:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Standard control not found")
    return standard_control


@router.get("/controls", response_model=PaginatedResponse[ControlResponse])
async def list_controls(
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    search: Optional[str] = Query(None, max_length=100),
    status_filter: Optional[ControlStatus] = Query(None, alias="status"),
    implementation_status: Optional[ImplementationStatus] = None,
    owner_id: Optional[str] = None,
    current_user: User = Depends(require_permission("security.controls", "view")),
    db: AsyncSession = Depends(get_db),
):
    query = control_query().where(Control.org_id == current_user.org_id)
    count_query = select(func.count(Control.id)).where(Control.org_id == current_user.org_id)

    query, count_query = apply_search_filter(query, count_query, search, Control.control_id, Control.title)

    if status_filter:
        query = query.where(Control.status == status_filter)
        count_query = count_query.where(Control.status == status_filter)
    if implementation_status:
        query = query.where(Control.implementation_status == implementation_status)
        count_query = count_query.where(Control.implementation_status == implementation_status)
    if owner_id:
        query = query.where(Control.owner_id == owner_id)
        count_query = count_query.where(Control.owner_id == owner_id)

    controls, total = await fetch_page(db, query.order_by(Control.control_id), count_query, page, per_page)

    return PaginatedResponse.create(
        items=[control_to_response(c) for c in controls],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("/controls", response_model=ControlResponse, status_code=status.HTTP_201_CREATED)
async def create_control(
    request: Request,
    control_data: ControlCreate,
    current_user: User = Depends(require_permission("security.controls", "create")),
    db: AsyncSession = Depends(get_db),
):
    if await control_code_taken(db, current_user.org_id, control_data.control_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Control '{control_data.control_id}' already exists",
        )
    await check_owner(db, current_user.org_id, control_data.owner_id)

    control = Control(org_id=current_user.org_id, **control_data.model_dump())
    db.add(control)
    await db.flush()

    await log_action(
        db, request, current_user, AuditAction.CREATE,
        module="security.controls",
        entity_type="control",
        entity_id=control.id,
        entity_name=control.control_id,
    )
    await db.commit()

    return control_to_response(await get_control_or_404(db, control.id, current_user.org_id))


@router.post("/controls/from-standard", response_model=ControlResponse, status_code=status.HTTP_201_CREATED)
async def create_control_from_standard(
    request: Request,
    from_data: ControlFromStandard,
    current_user: User = Depends(require_permission("security.controls", "create")),
    db: AsyncSession = Depends(get_db),
):
    """Create an org control from a catalog control and map it."""
    standard_control = await get_standard_control_or_404(db, from_data.standard_control_id)

    code = from_data.control_id or standard_control.control_id
    if await control_code_taken(db, current_user.org_id, code):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Control '{code}' already exists",
        )
    await check_owner(db, current_user.org_id, from_data.owner_id)

    control = Control(
        org_id=current_user.org_id,
        control_id=code,
        title=standard_control.title,
        description=standard_control.description,
        owner_id=from_data.owner_id,
    )
    control.mappings = [ControlMapping(standard_control_id=standard_control.id)]
    db.add(control)
    await db.flush()

    await log_action(
        db, request, current_user, AuditAction.CREATE,
        module="security.controls",
        entity_type="control",
        entity_id=control.id,
        entity_name=control.control_id,
        details={"from_standard": f"{standard_control.framework_code}:{standard_control.control_id}"},
    )
    await db.commit()

    return control_to_response(await get_control_or_404(db, control.id, current_user.org_id))


@router.get("/controls/{control_id}", response_model=ControlResponse)
async def get_control(
    control_id: str,
    current_user: User = Depends(require_permission("security.controls", "view")),
    db: AsyncSession = Depends(get_db),
):
    return control_to_response(await get_control_or_404(db, control_id, current_user.org_id))


@router.patch("/controls/{control_id}", response_model=ControlResponse)
async def update_control(
    request: Request,
    control_id: str,
    control_data: ControlUpdate,
    current_user: User = Depends(require_permission("security.controls", "edit")),
    db: AsyncSession = Depends(get_db),
):
    control = await get_control_or_404(db, control_id, current_user.org_id)
    update_data = control_data.model_dump(exclude_unset=True)
    reject_nulls(Control, update_data)

    if update_data.get("control_id") and await control_code_taken(
        db, current_user.org_id, update_data["control_id"], control.id
    ):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Control '{update_data['control_id']}' already exists",
        )
    if "owner_id" in update_data:
        await check_owner(db, current_user.org_id, update_data["owner_id"])

    for field, value in update_data.items():
        setattr(control, field, value)

    await log_action(
        db, request, current_user, AuditAction.UPDATE,
        module="security.controls",
        entity_type="control",
        entity_id=control.id,
        entity_name=control.control_id,
        details={"updated_fields": list(update_data.keys())},
    )
    await db.commit()

    return control_to_response(await get_control_or_404(db, control.id, current_user.org_id))


@router.delete("/controls/{control_id}", response_model=SuccessResponse)
async def delete_control(
    request: Request,
    control_id: str,
    current_user: User = Depends(require_permission("security.controls", "delete")),
    db: AsyncSession = Depends(get_db),
):
    control = await get_control_or_404(db, control_id, current_user.org_id)
    code = control.control_id
    await db.delete(control)

    await log_action(
        db, request, current_user, AuditAction.DELETE,
        module="security.controls",
        entity_type="control",
        entity_id=control_id,
        entity_name=code,
    )
    await db.commit()

    return SuccessResponse(message=f"Control '{code}' deleted")


@router.get("/controls/{control_id}/mappings", response_model=List[MappingResponse])
async def list_control_mappings(
    control_id: str,
    current_user: User = Depends(require_permission("security.controls", "view")),
    db: AsyncSession = Depends(get_db),
):
    control = await get_control_or_404(db, control_id, current_user.org_id)
    return [mapping_to_response(m) for m in control.mappings]


@router.post("/controls/{control_id}/mappings", response_model=MappingResponse, status_code=status.HTTP_201_CREATED)
async def add_control_mapping(
    request: Request,
    control_id: str,
    mapping_data: MappingCreate,
    current_user: User = Depends(require_permission("security.controls", "edit")),
    db: AsyncSession = Depends(get_db),
):
    control = await get_control_or_404(db, control_id, current_user.org_id)
    standard_control = await get_standard_control_or_404(db, mapping_data.standard_control_id)

    if any(m.standard_control_id == standard_control.id for m in control.mappings):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Control is already mapped to {standard_control.control_id}",
        )

    mapping = ControlMapping(
        control_id=control.id,
        standard_control_id=standard_control.id,
        notes=mapping_data.notes,
    )
    db.add(mapping)
    await db.flush()
    mapping.standard_control = standard_control

    await log_action(
        db, request, current_user, AuditAction.UPDATE,
        module="security.controls",
        entity_type="control",
        entity_id=control.id,
        entity_name=control.control_id,
        details={"mapped": f"{standard_control.framework_code}:{standard_control.control_id}"},
    )
    await db.commit()

    return mapping_to_response(mapping)


@router.delete("/controls/{control_id}/mappings/{mapping_id}", response_model=SuccessResponse)
async def remove_control_mapping(
    request: Request,
    control_id: str,
    mapping_id: str,
    current_user: User = Depends(require_permission("security.controls", "edit")),
    db: AsyncSession = Depends(get_db),
):
    control = await get_control_or_404(db, control_id, current_user.org_id)
    mapping = next((m for m in control.mappings if m.id == mapping_id), None)
    if not mapping:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Mapping not found")

    code = mapping.standard_control.control_id
    control.mappings.remove(mapping)

    await log_action(
        db, request, current_user, AuditAction.UPDATE,
        module="security.controls",
        entity_type="control",
        entity_id=control.id,
        entity_name=control.control_id,
        details={"unmapped": code},
    )
    await db.commit()

    return SuccessResponse(message=f"Mapping to {code} removed")


# =============================================================================
# Risks
# =============================================================================

async def next_risk_id(db: AsyncSession, org_id: str) -> str:
    """Next ``RSK-NNN`` id for the organization."""
    result = await db.execute(select(Risk.risk_id).where(Risk.org_id == org_id))
    highest = 0
    for risk_id in result.scalars().all():
        match = RISK_ID_PATTERN.match(risk_id or "")
        if match:
            highest = max(highest, int(match.group(1)))
    return f"RSK-{highest + 1:03d}"


async def check_control_ids(db: AsyncSession, org_id: str, control_ids: Optional[List[str]]) -> List[str]:
    control_ids = list(dict.fromkeys(control_ids or []))
    if not control_ids:
        return []
    result = await db.execute(select(Control.id).where(Control.org_id == org_id, Control.id.in_(control_ids)))
    found = set(result.scalars().all())
    missing = [c for c in control_ids if c not in found]
    if missing:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Controls not found: {', '.join(missing)}",
        )
    return control_ids


async def get_risk_or_404(db: AsyncSession, risk_id: str, org_id: str) -> Risk:
    result = await db.execute(select(Risk).where(Risk.id == risk_id, Risk.org_id == org_id))
    risk = result.scalar_one_or_none()
    if not risk:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Risk not found")
    return risk


@router.get("/risks", response_model=PaginatedResponse[RiskResponse])
async def list_risks(
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    search: Optional[str] = Query(None, max_length=100),
    status_filter: Optional[RiskStatus] = Query(None, alias="status"),
    level: Optional[RiskLevel] = None,
    owner_id: Optional[str] = None,
    current_user: User = Depends(require_permission("security.risks", "view")),
    db: AsyncSession = Depends(get_db),
):
    """Risk register, highest score first."""
    query = select(Risk).where(Risk.org_id == current_user.org_id)
    count_query = select(func.count(Risk.id)).where(Risk.org_id == current_user.org_id)

    query, count_query = apply_search_filter(query, count_query, search, Risk.risk_id, Risk.title)

    if status_filter:
        query = query.where(Risk.status == status_filter)
        count_query = count_query.where(Risk.status == status_filter)
    if level:
        query = query.where(Risk.level == level)
        count_query = count_query.where(Risk.level == level)
    if owner_id:
        query = query.where(Risk.owner_id == owner_id)
        count_query = count_query.where(Risk.owner_id == owner_id)

    risks, total = await fetch_page(
        db, query.order_by(Risk.score.desc(), Risk.risk_id), count_query, page, per_page,
    )

    return PaginatedResponse.create(
        items=[risk_to_response(r) for r in risks],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("/risks", response_model=RiskResponse, status_code=status.HTTP_201_CREATED)
async def create_risk(
    request: Request,
    risk_data: RiskCreate,
    current_user: User = Depends(require_permission("security.risks", "create")),
    db: AsyncSession = Depends(get_db),
):
    await check_owner(db, current_user.org_id, risk_data.owner_id)
    control_ids = await check_control_ids(db, current_user.org_id, risk_data.control_ids)

    risk = Risk(
        org_id=current_user.org_id,
        risk_id=await next_risk_id(db, current_user.org_id),
        **risk_data.model_dump(exclude={"control_ids"}),
        control_ids=control_ids,
    )
    risk.rescore()
    db.add(risk)
    await db.flush()

    await log_action(
        db, request, current_user, AuditAction.CREATE,
        module="security.risks",
        entity_type="risk",
        entity_id=risk.id,
        entity_name=risk.risk_id,
        details={"score": risk.score, "level": risk.level.value},
    )
    await db.commit()

    return risk_to_response(risk)


@router.get("/risks/{risk_id}", response_model=RiskResponse)
async def get_risk(
    risk_id: str,
    current_user: User = Depends(require_permission("security.risks", "view")),
    db: AsyncSession = Depends(get_db),
):
    return risk_to_response(await get_risk_or_404(db, risk_id, current_user.org_id))


@router.patch("/risks/{risk_id}", response_model=RiskResponse)
async def update_risk(
    request: Request,
    risk_id: str,
    risk_data: RiskUpdate,
    current_user: User = Depends(require_permission("security.risks", "edit")),
    db: AsyncSession = Depends(get_db),
):
    risk = await get_risk_or_404(db, risk_id, current_user.org_id)
    update_data = risk_data.model_dump(exclude_unset=True)
    reject_nulls(Risk, update_data)

    if "owner_id" in update_data:
        await check_owner(db, current_user.org_id, update_data["owner_id"])
    if "control_ids" in update_data:
        update_data["control_ids"] = await check_control_ids(db, current_user.org_id, update_data["control_ids"])

    for field, value in update_data.items():
        setattr(risk, field, value)
    risk.rescore()

    await log_action(
        db, request, current_user, AuditAction.UPDATE,
        module="security.risks",
        entity_type="risk",
        entity_id=risk.id,
        entity_name=risk.risk_id,
        details={"updated_fields": list(update_data.keys()), "score": risk.score},
    )
    await db.commit()

    return risk_to_response(risk)


@router.delete("/risks/{risk_id}", response_model=SuccessResponse)
async def delete_risk(
    request: Request,
    risk_id: str,
    current_user: User = Depends(require_permission("security.risks", "delete")),
    db: AsyncSession = Depends(get_db),
):
    risk = await get_risk_or_404(db, risk_id, current_user.org_id)
    code = risk.risk_id
    await db.delete(risk)

    await log_action(
        db, request, current_user, AuditAction.DELETE,
        module="security.risks",
        entity_type="risk",
        entity_id=risk_id,
        entity_name=code,
    )
    await db.commit()

    return SuccessResponse(message=f"Risk '{code}' deleted")


# =============================================================================
# Evidence
# =============================================================================

async def get_evidence_or_404(db: AsyncSession, evidence_id: str, org_id: str) -> Evidence:
    result = await db.execute(
        select(Evidence)
        .where(Evidence.id == evidence_id, Evidence.org_id == org_id)
        .options(selectinload(Evidence.controls))
        .execution_options(populate_existing=True)
    )
    evidence = result.scalar_one_or_none()
    if not evidence:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Evidence not found")
    return evidence


async def load_controls(db: AsyncSession, org_id: str, control_ids: List[str]) -> List[Control]:
    control_ids = await check_control_ids(db, org_id, control_ids)
    if not control_ids:
        return []
    result = await db.execute(select(Control).where(Control.id.in_(control_ids)))
    return list(result.scalars().all())


@router.get("/evidence", response_model=PaginatedResponse[EvidenceResponse])
async def list_evidence(
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    search: Optional[str] = Query(None, max_length=100),
    control_id: Optional[str] = None,
    current_user: User = Depends(require_permission("security.evidence", "view")),
    db: AsyncSession = Depends(get_db),
):
    query = (
        select(Evidence)
        .where(Evidence.org_id == current_user.org_id)
        .options(selectinload(Evidence.controls))
    )
    count_query = select(func.count(Evidence.id)).where(Evidence.org_id == current_user.org_id)

    query, count_query = apply_search_filter(query, count_query, search, Evidence.title, Evidence.description)

    if control_id:
        linked = Evidence.controls.any(Control.id == control_id)
        query = query.where(linked)
        count_query = count_query.where(linked)

    evidence, total = await fetch_page(
        db, query.order_by(Evidence.created_at.desc()), count_query, page, per_page,
    )

    return PaginatedResponse.create(
        items=[evidence_to_response(e) for e in evidence],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("/evidence", response_model=EvidenceResponse, status_code=status.HTTP_201_CREATED)
async def create_evidence(
    request: Request,
    evidence_data: EvidenceCreate,
    current_user: User = Depends(require_permission("security.evidence", "create")),
    db: AsyncSession = Depends(get_db),
):
    controls = await load_controls(db, current_user.org_id, evidence_data.control_ids)

    evidence = Evidence(
        org_id=current_user.org_id,
        collected_by_id=current_user.id,
        **evidence_data.model_dump(exclude={"control_ids"}),
    )
    evidence.controls = controls
    db.add(evidence)
    await db.flush()

    await log_action(
        db, request, current_user, AuditAction.CREATE,
        module="security.evidence",
        entity_type="evidence",
        entity_id=evidence.id,
        entity_name=evidence.title,
    )
    await db.commit()

    return evidence_to_response(await get_evidence_or_404(db, evidence.id, current_user.org_id))


@router.get("/evidence/{evidence_id}", response_model=EvidenceResponse)
async def get_evidence(
    evidence_id: str,
    current_user: User = Depends(require_permission("security.evidence", "view")),
    db: AsyncSession = Depends(get_db),
):
    return evidence_to_response(await get_evidence_or_404(db, evidence_id, current_user.org_id))


@router.patch("/evidence/{evidence_id}", response_model=EvidenceResponse)
async def update_evidence(
    request: Request,
    evidence_id: str,
    evidence_data: EvidenceUpdate,
    current_user: User = Depends(require_permission("security.evidence", "edit")),
    db: AsyncSession = Depends(get_db),
):
    evidence = await get_evidence_or_404(db, evidence_id, current_user.org_id)
    update_data = evidence_data.model_dump(exclude_unset=True)
    reject_nulls(Evidence, update_data)
    for field, value in update_data.items():
        setattr(evidence, field, value)

    await log_action(
        db, request, current_user, AuditAction.UPDATE,
        module="security.evidence",
        entity_type="evidence",
        entity_id=evidence.id,
        entity_name=evidence.title,
        details={"updated_fields": list(update_data.keys())},
    )
    await db.commit()

    return evidence_to_response(await get_evidence_or_404(db, evidence.id, current_user.org_id))


@router.delete("/evidence/{evidence_id}", response_model=SuccessResponse)
async def delete_evidence(
    request: Request,
    evidence_id: str,
    current_user: User = Depends(require_permission("security.evidence", "delete")),
    db: AsyncSession = Depends(get_db),
):
    evidence = await get_evidence_or_404(db, evidence_id, current_user.org_id)
    title = evidence.title
    await db.delete(evidence)

    await log_action(
        db, request, current_user, AuditAction.DELETE,
        module="security.evidence",
        entity_type="evidence",
        entity_id=evidence_id,
        entity_name=title,
    )
    await db.commit()

    return SuccessResponse(message=f"Evidence '{title}' deleted")


@router.get("/evidence/{evidence_id}/links", response_model=List[ControlRef])
async def get_evidence_links(
    evidence_id: str,
    current_user: User = Depends(require_permission("security.evidence", "view")),
    db: AsyncSession = Depends(get_db),
):
    evidence = await get_evidence_or_404(db, evidence_id, current_user.org_id)
    return [ControlRef(id=c.id, control_id=c.control_id, title=c.title) for c in evidence.controls]


@router.put("/evidence/{evidence_id}/links", response_model=List[ControlRef])
async def replace_evidence_links(
    request: Request,
    evidence_id: str,
    links_data: EvidenceLinksUpdate,
    current_user: User = Depends(require_permission("security.evidence", "edit")),
    db: AsyncSession = Depends(get_db),
):
    """Replace the set of controls an evidence item supports."""
    evidence = await get_evidence_or_404(db, evidence_id, current_user.org_id)
    evidence.controls = await load_controls(db, current_user.org_id, links_data.control_ids)

    await log_action(
        db, request, current_user, AuditAction.UPDATE,
        module="security.evidence",
        entity_type="evidence",
        entity_id=evidence.id,
        entity_name=evidence.title,
        details={"control_ids": [c.id for c in evidence.controls]},
    )
    await db.commit()

    return [ControlRef(id=c.id, control_id=c.control_id, title=c.title) for c in evidence.controls]


# =============================================================================
# Statement of Applicability
# =============================================================================

@router.get("/soa/{framework_id}", response_model=SoAResponse)
async def get_soa(
    framework_id: str,
    category: Optional[str] = None,
    applicability: Optional[Applicability] = None,
    implementation_status: Optional[ImplementationStatus] = None,
    current_user: User = Depends(require_permission("security.soa", "view")),
    db: AsyncSession = Depends(get_db),
):
    """
    Statement of Applicability for a framework, grouped by category.

    The summary always covers the whole framework; filters only narrow the
    listed items.
    """
    framework = await get_framework_or_404(db, framework_id, current_user.org_id)
    items = await load_items(db, framework.id)
    summary = summarize(items)

    listed = items
    if category:
        listed = [i for i in listed if i.standard_control.category == category]
    if applicability:
        listed = [i for i in listed if i.applicability == applicability]
    if implementation_status:
        listed = [i for i in listed if i.effective_implementation_status() == implementation_status]

    grouped: dict[str, list] = {}
    for item in listed:
        grouped.setdefault(item.standard_control.category, []).append(soa_item_to_response(item))
    categories = [SoACategory(category=name, items=rows) for name, rows in grouped.items()]

    return SoAResponse(
        framework_id=framework.id,
        framework_code=framework.code,
        framework_name=framework.name,
        summary=summary,
        categories=categories,
    )


@router.patch("/soa/{framework_id}/items/{item_id}", response_model=SoAItemResponse)
async def update_soa_item(
    request: Request,
    framework_id: str,
    item_id: str,
    item_data: SoAItemUpdate,
    current_user: User = Depends(require_permission("security.soa", "edit")),
    db: AsyncSession = Depends(get_db),
):
    """
    Update one SoA row.

    ``not_applicable`` needs a justification. ``control_id`` links an org
    control; an empty string unlinks it.
    """
    framework = await get_framework_or_404(db, framework_id, current_user.org_id)
    result = await db.execute(
        select(SoAItem)
        .where(SoAItem.id == item_id, SoAItem.framework_id == framework.id)
        .options(selectinload(SoAItem.standard_control), selectinload(SoAItem.control))
    )
    item = result.scalar_one_or_none()
    if not item:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="SoA item not found")

    update_data = item_data.model_dump(exclude_unset=True)
    reject_nulls(SoAItem, update_data)

    if "control_id" in update_data:
        control_id = update_data.pop("control_id")
        if control_id:
            result = await db.execute(
                select(Control).where(Control.id == control_id, Control.org_id == current_user.org_id)
            )
            control = result.scalar_one_or_none()
            if not control:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Control not found")
            item.control = control
        else:
            item.control = None

    applicability = update_data.get("applicability", item.applicability)
    justification = update_data.get("justification", item.justification)
    if applicability == Applicability.NOT_APPLICABLE and not (justification or "").strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="A justification is required for controls marked not applicable",
        )

    for field, value in update_data.items():
        setattr(item, field, value)

    await log_action(
        db, request, current_user, AuditAction.UPDATE,
        module="security.soa",
        entity_type="soa_item",
        entity_id=item.id,
        entity_name=f"{framework.code}:{item.standard_control.control_id}",
        details={"updated_fields": list(item_data.model_dump(exclude_unset=True).keys())},
    )
    await db.commit()

    return soa_item_to_response(item)

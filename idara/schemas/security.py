"""
Security & compliance schemas: frameworks, controls, risks, evidence, SoA.
"""

from datetime import datetime, date
from typing import Optional, List

from pydantic import BaseModel, Field

from idara.models.security import (
    FrameworkStatus,
    ControlStatus,
    ImplementationStatus,
    Applicability,
    RiskRating,
    RiskStatus,
    RiskTreatment,
    RiskCategory,
    EvidenceType,
    EvidenceStatus,
)


class StandardControlResponse(BaseModel):
    id: str
    framework_code: str
    control_id: str
    category: str
    title: str
    description: Optional[str]
    sort_order: int

    class Config:
        from_attributes = True


# -----------------------------------------------------------------------------
# Frameworks
# -----------------------------------------------------------------------------

class FrameworkCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=50, description="Catalog code: soc-2, iso-27001")
    name: Optional[str] = Field(None, max_length=255)
    version: Optional[str] = Field(None, max_length=50)
    description: Optional[str] = None
    status: FrameworkStatus = FrameworkStatus.PLANNED
    scope: Optional[str] = None


class FrameworkUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    version: Optional[str] = Field(None, max_length=50)
    description: Optional[str] = None
    status: Optional[FrameworkStatus] = None
    scope: Optional[str] = None
    certification_body: Optional[str] = Field(None, max_length=255)
    certificate_number: Optional[str] = Field(None, max_length=100)
    certified_at: Optional[date] = None
    expires_at: Optional[date] = None


class SoASummary(BaseModel):
    total: int = 0
    applicable: int = 0
    not_applicable: int = 0
    implemented: int = 0
    partial: int = 0
    not_implemented: int = 0


class FrameworkResponse(BaseModel):
    id: str
    code: str
    name: str
    version: Optional[str]
    description: Optional[str]
    status: str
    scope: Optional[str]
    certification_body: Optional[str]
    certificate_number: Optional[str]
    certified_at: Optional[date]
    expires_at: Optional[date]
    soa: SoASummary
    compliance_percent: int
    created_at: datetime


def framework_to_response(f, summary: SoASummary) -> FrameworkResponse:
    percent = round(summary.implemented * 100 / summary.applicable) if summary.applicable else 0
    return FrameworkResponse(
        id=f.id,
        code=f.code,
        name=f.name,
        version=f.version,
        description=f.description,
        status=f.status.value,
        scope=f.scope,
        certification_body=f.certification_body,
        certificate_number=f.certificate_number,
        certified_at=f.certified_at,
        expires_at=f.expires_at,
        soa=summary,
        compliance_percent=percent,
        created_at=f.created_at,
    )


# -----------------------------------------------------------------------------
# Controls
# -----------------------------------------------------------------------------

class ControlCreate(BaseModel):
    control_id: str = Field(..., min_length=1, max_length=50)
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    owner_id: Optional[str] = None
    status: ControlStatus = ControlStatus.ACTIVE
    implementation_status: ImplementationStatus = ImplementationStatus.NOT_IMPLEMENTED
    review_frequency_days: Optional[int] = Field(None, ge=1)
    last_reviewed_at: Optional[date] = None
    next_review_at: Optional[date] = None


class ControlUpdate(BaseModel):
    control_id: Optional[str] = Field(None, min_length=1, max_length=50)
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    owner_id: Optional[str] = None
    status: Optional[ControlStatus] = None
    implementation_status: Optional[ImplementationStatus] = None
    review_frequency_days: Optional[int] = Field(None, ge=1)
    last_reviewed_at: Optional[date] = None
    next_review_at: Optional[date] = None


class ControlFromStandard(BaseModel):
    standard_control_id: str
    control_id: Optional[str] = Field(None, max_length=50, description="Defaults to the standard control id")
    owner_id: Optional[str] = None


class MappingCreate(BaseModel):
    standard_control_id: str
    notes: Optional[str] = None


class MappingResponse(BaseModel):
    id: str
    standard_control_id: str
    framework_code: str
    standard_control_code: str
    title: str
    notes: Optional[str]


def mapping_to_response(m) -> MappingResponse:
    """Mapping must be loaded with ``standard_control``."""
    sc = m.standard_control
    return MappingResponse(
        id=m.id,
        standard_control_id=m.standard_control_id,
        framework_code=sc.framework_code,
        standard_control_code=sc.control_id,
        title=sc.title,
        notes=m.notes,
    )


class ControlResponse(BaseModel):
    id: str
    control_id: str
    title: str
    description: Optional[str]
    owner_id: Optional[str]
    status: str
    implementation_status: str
    review_frequency_days: Optional[int]
    last_reviewed_at: Optional[date]
    next_review_at: Optional[date]
    mappings: List[MappingResponse] = []
    created_at: datetime
    updated_at: datetime


def control_to_response(c, include_mappings: bool = True) -> ControlResponse:
    """With ``include_mappings`` the control must be loaded with mappings + standard controls."""
    return ControlResponse(
        id=c.id,
        control_id=c.control_id,
        title=c.title,
        description=c.description,
        owner_id=c.owner_id,
        status=c.status.value,
        implementation_status=c.implementation_status.value,
        review_frequency_days=c.review_frequency_days,
        last_reviewed_at=c.last_reviewed_at,
        next_review_at=c.next_review_at,
        mappings=[mapping_to_response(m) for m in c.mappings] if include_mappings else [],
        created_at=c.created_at,
        updated_at=c.updated_at,
    )


# -----------------------------------------------------------------------------
# Risks
# -----------------------------------------------------------------------------

class RiskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    category: RiskCategory = RiskCategory.OPERATIONAL
    likelihood: RiskRating = RiskRating.MEDIUM
    impact: RiskRating = RiskRating.MEDIUM
    status: RiskStatus = RiskStatus.OPEN
    treatment: Optional[RiskTreatment] = None
    treatment_plan: Optional[str] = None
    owner_id: Optional[str] = None
    due_date: Optional[date] = None
    control_ids: Optional[List[str]] = None


class RiskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    category: Optional[RiskCategory] = None
    likelihood: Optional[RiskRating] = None
    impact: Optional[RiskRating] = None
    status: Optional[RiskStatus] = None
    treatment: Optional[RiskTreatment] = None
    treatment_plan: Optional[str] = None
    owner_id: Optional[str] = None
    due_date: Optional[date] = None
    control_ids: Optional[List[str]] = None


class RiskResponse(BaseModel):
    id: str
    risk_id: str
    title: str
    description: Optional[str]
    category: str
    likelihood: str
    impact: str
    score: int
    level: str
    status: str
    treatment: Optional[str]
    treatment_plan: Optional[str]
    owner_id: Optional[str]
    due_date: Optional[date]
    control_ids: List[str]
    created_at: datetime
    updated_at: datetime


def risk_to_response(r) -> RiskResponse:
    return RiskResponse(
        id=r.id,
        risk_id=r.risk_id,
        title=r.title,
        description=r.description,
        category=r.category.value,
        likelihood=r.likelihood.value,
        impact=r.impact.value,
        score=r.score,
        level=r.level.value,
        status=r.status.value,
        treatment=r.treatment.value if r.treatment else None,
        treatment_plan=r.treatment_plan,
        owner_id=r.owner_id,
        due_date=r.due_date,
        control_ids=list(r.control_ids or []),
        created_at=r.created_at,
        updated_at=r.updated_at,
    )


# -----------------------------------------------------------------------------
# Evidence
# -----------------------------------------------------------------------------

class EvidenceCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    type: EvidenceType = EvidenceType.DOCUMENT
    status: EvidenceStatus = EvidenceStatus.CURRENT
    url: Optional[str] = Field(None, max_length=1000)
    collected_at: Optional[date] = None
    valid_until: Optional[date] = None
    control_ids: List[str] = Field(default_factory=list)


class EvidenceUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    type: Optional[EvidenceType] = None
    status: Optional[EvidenceStatus] = None
    url: Optional[str] = Field(None, max_length=1000)
    collected_at: Optional[date] = None
    valid_until: Optional[date] = None


class EvidenceLinksUpdate(BaseModel):
    control_ids: List[str]


class ControlRef(BaseModel):
    id: str
    control_id: str
    title: str


class EvidenceResponse(BaseModel):
    id: str
    title: str
    description: Optional[str]
    type: str
    status: str
    url: Optional[str]
    collected_at: Optional[date]
    valid_until: Optional[date]
    is_expired: bool
    collected_by_id: Optional[str]
    controls: List[ControlRef]
    created_at: datetime


def evidence_to_response(e) -> EvidenceResponse:
    """Evidence must be loaded with ``controls``."""
    return EvidenceResponse(
        id=e.id,
        title=e.title,
        description=e.description,
        type=e.type.value,
        status=e.status.value,
        url=e.url,
        collected_at=e.collected_at,
        valid_until=e.valid_until,
        is_expired=e.is_expired(),
        collected_by_id=e.collected_by_id,
        controls=[ControlRef(id=c.id, control_id=c.control_id, title=c.title) for c in e.controls],
        created_at=e.created_at,
    )


# -----------------------------------------------------------------------------
# Statement of Applicability
# -----------------------------------------------------------------------------

class SoAItemUpdate(BaseModel):
    applicability: Optional[Applicability] = None
    justification: Optional[str] = None
    implementation_status: Optional[ImplementationStatus] = None
    control_id: Optional[str] = Field(None, description="Org control id (uuid); empty string unlinks")
    notes: Optional[str] = None


class SoAItemResponse(BaseModel):
    id: str
    standard_control_id: str
    control_code: str
    category: str
    title: str
    description: Optional[str]
    applicability: str
    justification: Optional[str]
    implementation_status: str
    control: Optional[ControlRef]
    notes: Optional[str]


def soa_item_to_response(i) -> SoAItemResponse:
    """Item must be loaded with ``standard_control`` and ``control``."""
    sc = i.standard_control
    return SoAItemResponse(
        id=i.id,
        standard_control_id=i.standard_control_id,
        control_code=sc.control_id,
        category=sc.category,
        title=sc.title,
        description=sc.description,
        applicability=i.applicability.value,
        justification=i.justification,
        implementation_status=i.effective_implementation_status().value,
        control=ControlRef(id=i.control.id, control_id=i.control.control_id, title=i.control.title) if i.control else None,
        notes=i.notes,
    )


class SoACategory(BaseModel):
    category: str
    items: List[SoAItemResponse]


class SoAResponse(BaseModel):
    framework_id: str
    framework_code: str
    framework_name: str
    summary: SoASummary
    categories: List[SoACategory]

"""
ISMS schemas: audits, security objectives and clause compliance.
"""

from datetime import datetime, date
from typing import Optional, List

from pydantic import BaseModel, Field

from idara.models.isms import (
    AuditType,
    AuditStatus,
    ObjectiveStatus,
    ObjectivePriority,
    ClauseComplianceStatus,
)
from idara.schemas.common import PersonRef, person_ref


# -----------------------------------------------------------------------------
# Audits
# -----------------------------------------------------------------------------

class AuditCreate(BaseModel):
    audit_id: str = Field(..., min_length=1, max_length=50, description="Human id, e.g. AUD-001")
    title: str = Field(..., min_length=1, max_length=200)
    type: AuditType = AuditType.INTERNAL
    status: AuditStatus = AuditStatus.PLANNED
    framework_id: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    scope: Optional[str] = None
    objectives: Optional[str] = None
    lead_auditor: Optional[str] = Field(None, max_length=255)
    audit_team: Optional[List[str]] = None
    audit_body: Optional[str] = Field(None, max_length=255)


class AuditUpdate(BaseModel):
    audit_id: Optional[str] = Field(None, min_length=1, max_length=50)
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    type: Optional[AuditType] = None
    status: Optional[AuditStatus] = None
    framework_id: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    scope: Optional[str] = None
    objectives: Optional[str] = None
    lead_auditor: Optional[str] = Field(None, max_length=255)
    audit_team: Optional[List[str]] = None
    audit_body: Optional[str] = Field(None, max_length=255)
    summary: Optional[str] = None
    conclusion: Optional[str] = None
    findings_count: Optional[int] = Field(None, ge=0)
    major_findings_count: Optional[int] = Field(None, ge=0)
    minor_findings_count: Optional[int] = Field(None, ge=0)


class FrameworkRef(BaseModel):
    id: str
    code: str
    name: str


class AuditResponse(BaseModel):
    id: str
    audit_id: str
    title: str
    type: str
    status: str
    framework: Optional[FrameworkRef]
    start_date: Optional[date]
    end_date: Optional[date]
    scope: Optional[str]
    objectives: Optional[str]
    lead_auditor: Optional[str]
    audit_team: List[str]
    audit_body: Optional[str]
    summary: Optional[str]
    conclusion: Optional[str]
    findings_count: int
    major_findings_count: int
    minor_findings_count: int
    created_at: datetime
    updated_at: datetime


def audit_to_response(a) -> AuditResponse:
    """Audit must be loaded with ``framework``."""
    f = a.framework
    return AuditResponse(
        id=a.id,
        audit_id=a.audit_id,
        title=a.title,
        type=a.type.value,
        status=a.status.value,
        framework=FrameworkRef(id=f.id, code=f.code, name=f.name) if f else None,
        start_date=a.start_date,
        end_date=a.end_date,
        scope=a.scope,
        objectives=a.objectives,
        lead_auditor=a.lead_auditor,
        audit_team=list(a.audit_team or []),
        audit_body=a.audit_body,
        summary=a.summary,
        conclusion=a.conclusion,
        findings_count=a.findings_count,
        major_findings_count=a.major_findings_count,
        minor_findings_count=a.minor_findings_count,
        created_at=a.created_at,
        updated_at=a.updated_at,
    )


# -----------------------------------------------------------------------------
# Objectives
# -----------------------------------------------------------------------------

class ObjectiveKPI(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    target: Optional[str] = Field(None, max_length=100)
    current: Optional[str] = Field(None, max_length=100)
    unit: Optional[str] = Field(None, max_length=50)


class ObjectiveCreate(BaseModel):
    objective_id: str = Field(..., min_length=1, max_length=50, description="Human id, e.g. OBJ-001")
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[str] = Field(None, max_length=100)
    priority: ObjectivePriority = ObjectivePriority.MEDIUM
    status: ObjectiveStatus = ObjectiveStatus.NOT_STARTED
    owner_id: Optional[str] = None
    target_date: Optional[date] = None
    progress: int = Field(0, ge=0, le=100)
    kpis: Optional[List[ObjectiveKPI]] = None
    success_criteria: Optional[str] = None
    linked_risk_ids: Optional[List[str]] = None
    linked_control_ids: Optional[List[str]] = None
    notes: Optional[str] = None


class ObjectiveUpdate(BaseModel):
    objective_id: Optional[str] = Field(None, min_length=1, max_length=50)
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[str] = Field(None, max_length=100)
    priority: Optional[ObjectivePriority] = None
    status: Optional[ObjectiveStatus] = None
    owner_id: Optional[str] = None
    target_date: Optional[date] = None
    progress: Optional[int] = Field(None, ge=0, le=100)
    kpis: Optional[List[ObjectiveKPI]] = None
    success_criteria: Optional[str] = None
    linked_risk_ids: Optional[List[str]] = None
    linked_control_ids: Optional[List[str]] = None
    notes: Optional[str] = None


class ObjectiveResponse(BaseModel):
    id: str
    objective_id: str
    title: str
    description: Optional[str]
    category: Optional[str]
    priority: str
    status: str
    owner: Optional[PersonRef]
    target_date: Optional[date]
    completed_at: Optional[datetime]
    progress: int
    kpis: List[ObjectiveKPI]
    success_criteria: Optional[str]
    linked_risk_ids: List[str]
    linked_control_ids: List[str]
    notes: Optional[str]
    created_at: datetime
    updated_at: datetime


def objective_to_response(o) -> ObjectiveResponse:
    """Objective must be loaded with ``owner``."""
    return ObjectiveResponse(
        id=o.id,
        objective_id=o.objective_id,
        title=o.title,
        description=o.description,
        category=o.category,
        priority=o.priority.value,
        status=o.status.value,
        owner=person_ref(o.owner),
        target_date=o.target_date,
        completed_at=o.completed_at,
        progress=o.progress,
        kpis=[ObjectiveKPI(**k) for k in (o.kpis or [])],
        success_criteria=o.success_criteria,
        linked_risk_ids=list(o.linked_risk_ids or []),
        linked_control_ids=list(o.linked_control_ids or []),
        notes=o.notes,
        created_at=o.created_at,
        updated_at=o.updated_at,
    )


# -----------------------------------------------------------------------------
# Clauses
# -----------------------------------------------------------------------------

class StandardClauseResponse(BaseModel):
    id: str
    framework_code: str
    clause_id: str
    parent_clause_id: Optional[str]
    title: str
    description: Optional[str]
    category: Optional[str]
    sort_order: int

    class Config:
        from_attributes = True


class StandardClauseNode(StandardClauseResponse):
    children: List["StandardClauseNode"] = []


class StandardClauseCatalog(BaseModel):
    items: List[StandardClauseResponse]
    hierarchy: List[StandardClauseNode]
    total: int


class ClauseComplianceUpsert(BaseModel):
    framework_id: str
    standard_clause_id: str
    compliance_status: Optional[ClauseComplianceStatus] = None
    owner_id: Optional[str] = None
    target_date: Optional[date] = None
    implementation_notes: Optional[str] = None
    evidence_description: Optional[str] = None
    linked_evidence_ids: Optional[List[str]] = None
    linked_document_ids: Optional[List[str]] = None


class ClauseComplianceUpdate(BaseModel):
    compliance_status: Optional[ClauseComplianceStatus] = None
    owner_id: Optional[str] = None
    target_date: Optional[date] = None
    implementation_notes: Optional[str] = None
    evidence_description: Optional[str] = None
    linked_evidence_ids: Optional[List[str]] = None
    linked_document_ids: Optional[List[str]] = None
    last_reviewed_at: Optional[datetime] = None


class ClauseComplianceResponse(BaseModel):
    id: str
    framework_id: str
    standard_clause_id: str
    clause_id: str
    title: str
    compliance_status: str
    owner: Optional[PersonRef]
    target_date: Optional[date]
    implementation_notes: Optional[str]
    evidence_description: Optional[str]
    linked_evidence_ids: List[str]
    linked_document_ids: List[str]
    last_reviewed_at: Optional[datetime]
    last_reviewed_by_id: Optional[str]
    updated_at: datetime


def clause_compliance_to_response(c) -> ClauseComplianceResponse:
    """Record must be loaded with ``standard_clause`` and ``owner``."""
    return ClauseComplianceResponse(
        id=c.id,
        framework_id=c.framework_id,
        standard_clause_id=c.standard_clause_id,
        clause_id=c.standard_clause.clause_id,
        title=c.standard_clause.title,
        compliance_status=c.compliance_status.value,
        owner=person_ref(c.owner),
        target_date=c.target_date,
        implementation_notes=c.implementation_notes,
        evidence_description=c.evidence_description,
        linked_evidence_ids=list(c.linked_evidence_ids or []),
        linked_document_ids=list(c.linked_document_ids or []),
        last_reviewed_at=c.last_reviewed_at,
        last_reviewed_by_id=c.last_reviewed_by_id,
        updated_at=c.updated_at,
    )


class ClauseStatusRow(BaseModel):
    """A catalog clause with the organization's compliance record, if any."""
    standard_clause_id: str
    clause_id: str
    parent_clause_id: Optional[str]
    title: str
    category: Optional[str]
    compliance_id: Optional[str]
    compliance_status: str
    owner: Optional[PersonRef]
    target_date: Optional[date]
    implementation_notes: Optional[str]
    last_reviewed_at: Optional[datetime]


class ClauseSummary(BaseModel):
    total: int = 0
    not_addressed: int = 0
    partially_addressed: int = 0
    fully_addressed: int = 0
    verified: int = 0
    compliance_percent: int = 0


class FrameworkClausesResponse(BaseModel):
    framework_id: str
    framework_code: str
    clauses: List[ClauseStatusRow]
    summary: ClauseSummary

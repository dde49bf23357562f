"""
Workflow template and instance schemas.

Template graphs are sent with client-side step ``key`` values; edges and
``parent_key`` refer to those keys and are mapped to database ids on save.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, Field

from idara.models.workflow import (
    TemplateStatus,
    TriggerType,
    StepType,
    AssigneeType,
    EdgeCondition,
    InstanceStatus,
    StepStatus,
)


# -----------------------------------------------------------------------------
# Templates
# -----------------------------------------------------------------------------

class TemplateStepIn(BaseModel):
    key: str = Field(..., min_length=1, max_length=100, description="Client-side id (or existing step id)")
    parent_key: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    step_type: StepType = StepType.TASK
    order_index: Optional[int] = None
    position_x: int = 0
    position_y: int = 0
    assignee_type: AssigneeType = AssigneeType.UNASSIGNED
    assignee_config: Optional[Dict[str, Any]] = None
    default_assignee_id: Optional[str] = None
    due_offset_days: Optional[int] = None
    due_offset_from: Optional[str] = Field(None, max_length=50)
    is_required: bool = True
    metadata: Optional[Dict[str, Any]] = None


class TemplateEdgeIn(BaseModel):
    source_key: str
    target_key: str
    condition_type: EdgeCondition = EdgeCondition.ALWAYS
    condition_config: Optional[Dict[str, Any]] = None
    label: Optional[str] = Field(None, max_length=100)


class TemplateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    module_scope: Optional[str] = Field(None, max_length=50)
    trigger_type: TriggerType = TriggerType.MANUAL
    status: TemplateStatus = TemplateStatus.DRAFT
    is_active: bool = True
    default_owner_id: Optional[str] = None
    default_due_days: Optional[int] = Field(None, ge=0)
    settings: Optional[Dict[str, Any]] = None
    steps: List[TemplateStepIn] = Field(default_factory=list)
    edges: List[TemplateEdgeIn] = Field(default_factory=list)


class TemplateUpdate(BaseModel):
    """PATCH: template fields only; the step graph is replaced through PUT."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    module_scope: Optional[str] = Field(None, max_length=50)
    trigger_type: Optional[TriggerType] = None
    status: Optional[TemplateStatus] = None
    is_active: Optional[bool] = None
    default_owner_id: Optional[str] = None
    default_due_days: Optional[int] = Field(None, ge=0)
    settings: Optional[Dict[str, Any]] = None


class TemplateReplace(TemplateCreate):
    """PUT: template fields plus the full step/edge graph."""


class TemplateStepResponse(BaseModel):
    id: str
    parent_step_id: Optional[str]
    name: str
    description: Optional[str]
    step_type: str
    order_index: int
    position_x: int
    position_y: int
    assignee_type: str
    assignee_config: Optional[Dict[str, Any]]
    default_assignee_id: Optional[str]
    due_offset_days: Optional[int]
    due_offset_from: Optional[str]
    is_required: bool
    metadata: Optional[Dict[str, Any]]


class TemplateEdgeResponse(BaseModel):
    id: str
    source_step_id: str
    target_step_id: str
    condition_type: str
    condition_config: Optional[Dict[str, Any]]
    label: Optional[str]


class TemplateResponse(BaseModel):
    id: str
    name: str
    description: Optional[str]
    module_scope: Optional[str]
    trigger_type: str
    status: str
    is_active: bool
    default_owner_id: Optional[str]
    default_due_days: Optional[int]
    settings: Optional[Dict[str, Any]]
    step_count: int
    steps: Optional[List[TemplateStepResponse]] = None
    edges: Optional[List[TemplateEdgeResponse]] = None
    created_by_id: Optional[str]
    created_at: datetime
    updated_at: datetime


def template_step_to_response(s) -> TemplateStepResponse:
    return TemplateStepResponse(
        id=s.id,
        parent_step_id=s.parent_step_id,
        name=s.name,
        description=s.description,
        step_type=s.step_type.value,
        order_index=s.order_index,
        position_x=s.position_x,
        position_y=s.position_y,
        assignee_type=s.assignee_type.value,
        assignee_config=s.assignee_config,
        default_assignee_id=s.default_assignee_id,
        due_offset_days=s.due_offset_days,
        due_offset_from=s.due_offset_from,
        is_required=s.is_required,
        metadata=s.meta,
    )


def template_to_response(t, step_count: Optional[int] = None, include_graph: bool = False) -> TemplateResponse:
    """With ``include_graph`` the template must be loaded with steps and edges."""
    steps = edges = None
    if include_graph:
        steps = [template_step_to_response(s) for s in t.steps]
        edges = [
            TemplateEdgeResponse(
                id=e.id,
                source_step_id=e.source_step_id,
                target_step_id=e.target_step_id,
                condition_type=e.condition_type.value,
                condition_config=e.condition_config,
                label=e.label,
            )
            for e in t.edges
        ]
        step_count = len(steps)
    return TemplateResponse(
        id=t.id,
        name=t.name,
        description=t.description,
        module_scope=t.module_scope,
        trigger_type=t.trigger_type.value,
        status=t.status.value,
        is_active=t.is_active,
        default_owner_id=t.default_owner_id,
        default_due_days=t.default_due_days,
        settings=t.settings,
        step_count=step_count or 0,
        steps=steps,
        edges=edges,
        created_by_id=t.created_by_id,
        created_at=t.created_at,
        updated_at=t.updated_at,
    )


# -----------------------------------------------------------------------------
# Instances
# -----------------------------------------------------------------------------

class InstanceCreate(BaseModel):
    template_id: str
    entity_type: str = Field(..., min_length=1, max_length=50)
    entity_id: str = Field(..., min_length=1, max_length=36)
    name: Optional[str] = Field(None, max_length=500)
    owner_id: Optional[str] = None
    due_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = None


class InstanceUpdate(BaseModel):
    status: Optional[InstanceStatus] = None
    due_at: Optional[datetime] = None
    owner_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class StepUpdate(BaseModel):
    status: Optional[StepStatus] = None
    assignee_id: Optional[str] = None
    assigned_person_id: Optional[str] = None
    due_at: Optional[datetime] = None
    notes: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class InstanceStepResponse(BaseModel):
    id: str
    instance_id: str
    template_step_id: Optional[str]
    parent_step_id: Optional[str]
    name: str
    description: Optional[str]
    order_index: int
    status: str
    assignee_id: Optional[str]
    assigned_person_id: Optional[str]
    due_at: Optional[datetime]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    completed_by_id: Optional[str]
    notes: Optional[str]
    metadata: Optional[Dict[str, Any]]


def instance_step_to_response(s) -> InstanceStepResponse:
    return InstanceStepResponse(
        id=s.id,
        instance_id=s.instance_id,
        template_step_id=s.template_step_id,
        parent_step_id=s.parent_step_id,
        name=s.name,
        description=s.description,
        order_index=s.order_index,
        status=s.status.value,
        assignee_id=s.assignee_id,
        assigned_person_id=s.assigned_person_id,
        due_at=s.due_at,
        started_at=s.started_at,
        completed_at=s.completed_at,
        completed_by_id=s.completed_by_id,
        notes=s.notes,
        metadata=s.meta,
    )


class GraphEdge(BaseModel):
    source: str
    target: str
    label: Optional[str] = None
    condition_type: str = EdgeCondition.ALWAYS.value


class InstanceGraph(BaseModel):
    nodes: List[Dict[str, Any]]
    edges: List[GraphEdge]


class InstanceResponse(BaseModel):
    id: str
    template_id: str
    template_name: Optional[str] = None
    entity_type: str
    entity_id: str
    name: str
    status: str
    owner_id: Optional[str]
    started_at: Optional[datetime]
    due_at: Optional[datetime]
    completed_at: Optional[datetime]
    total_steps: int
    completed_steps: int
    progress: int
    started_by_id: Optional[str]
    metadata: Optional[Dict[str, Any]]
    created_at: datetime
    steps: Optional[List[InstanceStepResponse]] = None
    kanban: Optional[Dict[str, List[InstanceStepResponse]]] = None
    graph: Optional[InstanceGraph] = None


def instance_to_response(i, template_name: Optional[str] = None) -> InstanceResponse:
    return InstanceResponse(
        id=i.id,
        template_id=i.template_id,
        template_name=template_name,
        entity_type=i.entity_type,
        entity_id=i.entity_id,
        name=i.name,
        status=i.status.value,
        owner_id=i.owner_id,
        started_at=i.started_at,
        due_at=i.due_at,
        completed_at=i.completed_at,
        total_steps=i.total_steps or 0,
        completed_steps=i.completed_steps or 0,
        progress=i.progress_percent,
        started_by_id=i.started_by_id,
        metadata=i.meta,
        created_at=i.created_at,
    )


class TaskResponse(InstanceStepResponse):
    instance_name: str
    instance_status: str
    entity_type: str
    entity_id: str

"""
Workflow endpoints: templates, instances, steps and the current user's tasks.

Templates hold a step graph (nested steps plus conditional edges). An
instance is a running copy of a template bound to some entity (usually a
person); its progress is the share of completed root steps.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, List, Literal

from fastapi import APIRouter, Depends, HTTPException, status, Request, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, delete
from sqlalchemy.orm import selectinload

from idara.core.database import get_db, generate_uuid
from idara.core.utils import fetch_page, apply_search_filter, split_csv, reject_nulls
from idara.models.workflow import (
    WorkflowTemplate,
    WorkflowTemplateStep,
    WorkflowTemplateEdge,
    WorkflowInstance,
    WorkflowInstanceStep,
    TemplateStatus,
    InstanceStatus,
    StepStatus,
    CLOSED_INSTANCE_STATUSES,
)
from idara.models.person import Person
from idara.models.user import User
from idara.models.audit import AuditAction
from idara.auth.dependencies import require_permission
from idara.auth.audit import log_action
from idara.services.workflow_engine import (
    create_instance,
    apply_step_status,
    recompute_progress,
    load_template_steps,
)
from idara.schemas.workflow import (
    TemplateStepIn,
    TemplateEdgeIn,
    TemplateCreate,
    TemplateUpdate,
    TemplateReplace,
    TemplateResponse,
    InstanceCreate,
    InstanceUpdate,
    InstanceResponse,
    InstanceGraph,
    GraphEdge,
    StepUpdate,
    InstanceStepResponse,
    TaskResponse,
    template_to_response,
    instance_to_response,
    instance_step_to_response,
)
from idara.schemas.common import PaginatedResponse, SuccessResponse

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Templates
# =============================================================================

async def get_template_or_404(
    db: AsyncSession, template_id: str, org_id: str, with_graph: bool = False
) -> WorkflowTemplate:
    query = select(WorkflowTemplate).where(
        WorkflowTemplate.id == template_id,
        WorkflowTemplate.org_id == org_id,
    )
    if with_graph:
        query = query.options(
            selectinload(WorkflowTemplate.steps),
            selectinload(WorkflowTemplate.edges),
        ).execution_options(populate_existing=True)
    result = await db.execute(query)
    template = result.scalar_one_or_none()
    if not template:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workflow template not found")
    return template


async def check_person(db: AsyncSession, org_id: str, person_id: Optional[str], label: str) -> None:
    if not person_id:
        return
    result = await db.execute(select(Person.id).where(Person.id == person_id, Person.org_id == org_id))
    if not result.scalar_one_or_none():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{label} not found")


def validate_graph(steps: List[TemplateStepIn], edges: List[TemplateEdgeIn]) -> None:
    """Keys unique, parents and edge ends known, no parent cycles."""
    keys = [s.key for s in steps]
    if len(keys) != len(set(keys)):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Duplicate step keys")
    known = set(keys)

    parents = {}
    for s in steps:
        if s.parent_key is None:
            continue
        if s.parent_key not in known:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Step '{s.key}' references unknown parent '{s.parent_key}'",
            )
        parents[s.key] = s.parent_key

    for key in parents:
        seen = {key}
        parent = parents.get(key)
        while parent is not None:
            if parent in seen:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Step '{key}' is nested inside itself",
                )
            seen.add(parent)
            parent = parents.get(parent)

    for e in edges:
        if e.source_key not in known or e.target_key not in known:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Edge {e.source_key} -> {e.target_key} references an unknown step",
            )


async def write_graph(
    db: AsyncSession,
    template: WorkflowTemplate,
    steps: List[TemplateStepIn],
    edges: List[TemplateEdgeIn],
) -> None:
    """
    Replace the template's steps and edges.

    A step whose key is the id of an existing step updates that step; other
    keys create new steps. Existing steps missing from ``steps`` are removed.
    """
    validate_graph(steps, edges)

    existing = {s.id: s for s in await load_template_steps(db, template.id)}
    await db.execute(delete(WorkflowTemplateEdge).where(WorkflowTemplateEdge.template_id == template.id))

    # Rows are written without parents first so self references never point
    # at a row that does not exist yet.
    id_map: dict[str, str] = {}
    rows: dict[str, WorkflowTemplateStep] = {}
    for index, s in enumerate(steps):
        values = s.model_dump(exclude={"key", "parent_key", "metadata"})
        if values["order_index"] is None:
            values["order_index"] = index
        row = existing.get(s.key)
        if row is None:
            row = WorkflowTemplateStep(id=generate_uuid(), template_id=template.id)
            db.add(row)
        for field, value in values.items():
            setattr(row, field, value)
        row.meta = s.metadata
        row.parent_step_id = None
        id_map[s.key] = row.id
        rows[s.key] = row
    await db.flush()

    for s in steps:
        if s.parent_key:
            rows[s.key].parent_step_id = id_map[s.parent_key]

    removed = [step_id for step_id in existing if step_id not in id_map.values()]
    if removed:
        await db.flush()
        await db.execute(delete(WorkflowTemplateStep).where(WorkflowTemplateStep.id.in_(removed)))

    for e in edges:
        db.add(WorkflowTemplateEdge(
            template_id=template.id,
            source_step_id=id_map[e.source_key],
            target_step_id=id_map[e.target_key],
            condition_type=e.condition_type,
            condition_config=e.condition_config,
            label=e.label,
        ))
    await db.flush()


@router.get("/templates", response_model=PaginatedResponse[TemplateResponse])
async def list_templates(
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    search: Optional[str] = Query(None, max_length=100),
    status_filter: Optional[TemplateStatus] = Query(None, alias="status"),
    current_user: User = Depends(require_permission("workflows.templates", "view")),
    db: AsyncSession = Depends(get_db),
):
    """List templates with their step counts."""
    query = select(WorkflowTemplate).where(WorkflowTemplate.org_id == current_user.org_id)
    count_query = select(func.count(WorkflowTemplate.id)).where(WorkflowTemplate.org_id == current_user.org_id)
    query, count_query = apply_search_filter(
        query, count_query, search,
        WorkflowTemplate.name, WorkflowTemplate.description,
    )
    if status_filter:
        query = query.where(WorkflowTemplate.status == status_filter)
        count_query = count_query.where(WorkflowTemplate.status == status_filter)

    templates, total = await fetch_page(db, query.order_by(WorkflowTemplate.name), count_query, page, per_page)

    step_counts = {}
    if templates:
        result = await db.execute(
            select(WorkflowTemplateStep.template_id, func.count(WorkflowTemplateStep.id))
            .where(WorkflowTemplateStep.template_id.in_([t.id for t in templates]))
            .group_by(WorkflowTemplateStep.template_id)
        )
        step_counts = dict(result.all())

    return PaginatedResponse.create(
        items=[template_to_response(t, step_count=step_counts.get(t.id, 0)) for t in templates],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("/templates", response_model=TemplateResponse, status_code=status.HTTP_201_CREATED)
async def create_template(
    request: Request,
    template_data: TemplateCreate,
    current_user: User = Depends(require_permission("workflows.templates", "create")),
    db: AsyncSession = Depends(get_db),
):
    """Create a template, optionally with its steps and edges."""
    await check_person(db, current_user.org_id, template_data.default_owner_id, "Default owner")
    validate_graph(template_data.steps, template_data.edges)

    template = WorkflowTemplate(
        org_id=current_user.org_id,
        created_by_id=current_user.id,
        **template_data.model_dump(exclude={"steps", "edges"}),
    )
    db.add(template)
    await db.flush()
    await write_graph(db, template, template_data.steps, template_data.edges)

    await log_action(
        db, request, current_user, AuditAction.CREATE,
        module="workflows.templates",
        entity_type="workflow_template",
        entity_id=template.id,
        entity_name=template.name,
        details={"steps": len(template_data.steps), "edges": len(template_data.edges)},
    )
    await db.commit()

    template = await get_template_or_404(db, template.id, current_user.org_id, with_graph=True)
    return template_to_response(template, include_graph=True)


@router.get("/templates/{template_id}", response_model=TemplateResponse)
async def get_template(
    template_id: str,
    current_user: User = Depends(require_permission("workflows.templates", "view")),
    db: AsyncSession = Depends(get_db),
):
    template = await get_template_or_404(db, template_id, current_user.org_id, with_graph=True)
    return template_to_response(template, include_graph=True)


@router.put("/templates/{template_id}", response_model=TemplateResponse)
async def replace_template(
    request: Request,
    template_id: str,
    template_data: TemplateReplace,
    current_user: User = Depends(require_permission("workflows.templates", "edit")),
    db: AsyncSession = Depends(get_db),
):
    """Save the designer: template fields plus the full step/edge graph."""
    template = await get_template_or_404(db, template_id, current_user.org_id)
    await check_person(db, current_user.org_id, template_data.default_owner_id, "Default owner")

    for field, value in template_data.model_dump(exclude={"steps", "edges"}).items():
        setattr(template, field, value)
    await write_graph(db, template, template_data.steps, template_data.edges)

    await log_action(
        db, request, current_user, AuditAction.UPDATE,
        module="workflows.templates",
        entity_type="workflow_template",
        entity_id=template.id,
        entity_name=template.name,
        details={"steps": len(template_data.steps), "edges": len(template_data.edges)},
    )
    await db.commit()

    template = await get_template_or_404(db, template.id, current_user.org_id, with_graph=True)
    return template_to_response(template, include_graph=True)


@router.patch("/templates/{template_id}", response_model=TemplateResponse)
async def update_template(
    request: Request,
    template_id: str,
    template_data: TemplateUpdate,
    current_user: User = Depends(require_permission("workflows.templates", "edit")),
    db: AsyncSession = Depends(get_db),
):
    template = await get_template_or_404(db, template_id, current_user.org_id)
    update_data = template_data.model_dump(exclude_unset=True)
    reject_nulls(WorkflowTemplate, update_data)
    if "default_owner_id" in update_data:
        await check_person(db, current_user.org_id, update_data["default_owner_id"], "Default owner")

    for field, value in update_data.items():
        setattr(template, field, value)

    await log_action(
        db, request, current_user, AuditAction.UPDATE,
        module="workflows.templates",
        entity_type="workflow_template",
        entity_id=template.id,
        entity_name=template.name,
        details={"updated_fields": list(update_data.keys())},
    )
    await db.commit()

    template = await get_template_or_404(db, template.id, current_user.org_id, with_graph=True)
    return template_to_response(template, include_graph=True)


@router.delete("/templates/{template_id}", response_model=SuccessResponse)
async def delete_template(
    request: Request,
    template_id: str,
    current_user: User = Depends(require_permission("workflows.templates", "delete")),
    db: AsyncSession = Depends(get_db),
):
    """
    Delete a template.

    Refused while any of its instances is still open; finished and cancelled
    instances are deleted with it.
    """
    template = await get_template_or_404(db, template_id, current_user.org_id)

    result = await db.execute(
        select(func.count(WorkflowInstance.id)).where(
            WorkflowInstance.template_id == template.id,
            WorkflowInstance.status.not_in(CLOSED_INSTANCE_STATUSES),
        )
    )
    open_instances = result.scalar() or 0
    if open_instances:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Template has {open_instances} active instances",
        )

    name = template.name
    await db.execute(delete(WorkflowInstance).where(WorkflowInstance.template_id == template.id))
    await db.execute(delete(WorkflowTemplate).where(WorkflowTemplate.id == template.id))

    await log_action(
        db, request, current_user, AuditAction.DELETE,
        module="workflows.templates",
        entity_type="workflow_template",
        entity_id=template_id,
        entity_name=name,
    )
    await db.commit()

    return SuccessResponse(message=f"Template '{name}' deleted")


# =============================================================================
# Instances
# =============================================================================

async def get_instance_or_404(db: AsyncSession, instance_id: str, org_id: str) -> WorkflowInstance:
    result = await db.execute(
        select(WorkflowInstance)
        .where(WorkflowInstance.id == instance_id, WorkflowInstance.org_id == org_id)
        .options(selectinload(WorkflowInstance.steps), selectinload(WorkflowInstance.template))
        .execution_options(populate_existing=True)
    )
    instance = result.scalar_one_or_none()
    if not instance:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workflow instance not found")
    return instance


async def instance_graph(db: AsyncSession, instance: WorkflowInstance) -> InstanceGraph:
    """
    Nodes and edges for the designer-style view.

    Template edges are mapped onto instance steps; without any, root steps
    are chained in order and nested steps hang off their parent.
    """
    template_steps = {s.id: s for s in await load_template_steps(db, instance.template_id)}
    by_template_step = {s.template_step_id: s.id for s in instance.steps if s.template_step_id}

    nodes = []
    for s in instance.steps:
        source = template_steps.get(s.template_step_id)
        nodes.append({
            "id": s.id,
            "name": s.name,
            "status": s.status.value,
            "parent_step_id": s.parent_step_id,
            "order_index": s.order_index,
            "assignee_id": s.assignee_id,
            "due_at": s.due_at.isoformat() if s.due_at else None,
            "step_type": source.step_type.value if source else (s.meta or {}).get("step_type"),
            "position_x": source.position_x if source else 0,
            "position_y": source.position_y if source else 0,
        })

    result = await db.execute(
        select(WorkflowTemplateEdge).where(WorkflowTemplateEdge.template_id == instance.template_id)
    )
    edges = [
        GraphEdge(
            source=by_template_step[e.source_step_id],
            target=by_template_step[e.target_step_id],
            label=e.label,
            condition_type=e.condition_type.value,
        )
        for e in result.scalars().all()
        if e.source_step_id in by_template_step and e.target_step_id in by_template_step
    ]
    if not edges:
        roots = sorted((s for s in instance.steps if not s.parent_step_id), key=lambda s: s.order_index)
        edges = [GraphEdge(source=a.id, target=b.id) for a, b in zip(roots, roots[1:])]
        edges += [GraphEdge(source=s.parent_step_id, target=s.id) for s in instance.steps if s.parent_step_id]

    return InstanceGraph(nodes=nodes, edges=edges)


@router.get("/instances", response_model=PaginatedResponse[InstanceResponse])
async def list_instances(
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    status_filter: Optional[str] = Query(None, alias="status", description="Comma separated statuses"),
    template_id: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    owner_id: Optional[str] = None,
    current_user: User = Depends(require_permission("workflows.instances", "view")),
    db: AsyncSession = Depends(get_db),
):
    query = (
        select(WorkflowInstance)
        .where(WorkflowInstance.org_id == current_user.org_id)
        .options(selectinload(WorkflowInstance.template))
    )
    count_query = select(func.count(WorkflowInstance.id)).where(WorkflowInstance.org_id == current_user.org_id)

    filters = []
    statuses = split_csv(status_filter)
    if statuses:
        try:
            filters.append(WorkflowInstance.status.in_([InstanceStatus(s) for s in statuses]))
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid status filter")
    if template_id:
        filters.append(WorkflowInstance.template_id == template_id)
    if entity_type:
        filters.append(WorkflowInstance.entity_type == entity_type)
    if entity_id:
        filters.append(WorkflowInstance.entity_id == entity_id)
    if owner_id:
        filters.append(WorkflowInstance.owner_id == owner_id)
    if filters:
        query = query.where(*filters)
        count_query = count_query.where(*filters)

    instances, total = await fetch_page(
        db, query.order_by(WorkflowInstance.created_at.desc()), count_query, page, per_page,
    )

    return PaginatedResponse.create(
        items=[instance_to_response(i, i.template.name if i.template else None) for i in instances],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("/instances", response_model=InstanceResponse, status_code=status.HTTP_201_CREATED)
async def start_instance(
    request: Request,
    instance_data: InstanceCreate,
    current_user: User = Depends(require_permission("workflows.instances", "create")),
    db: AsyncSession = Depends(get_db),
):
    """Start a workflow from an active template."""
    result = await db.execute(
        select(WorkflowTemplate).where(
            WorkflowTemplate.id == instance_data.template_id,
            WorkflowTemplate.org_id == current_user.org_id,
        )
    )
    template = result.scalar_one_or_none()
    if template is None or not template.is_usable:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Active workflow template not found")
    await check_person(db, current_user.org_id, instance_data.owner_id, "Owner")

    subject = None
    if instance_data.entity_type == "person":
        result = await db.execute(
            select(Person).where(Person.id == instance_data.entity_id, Person.org_id == current_user.org_id)
        )
        subject = result.scalar_one_or_none()

    instance = await create_instance(
        db,
        template,
        entity_type=instance_data.entity_type,
        entity_id=instance_data.entity_id,
        name=instance_data.name,
        owner_id=instance_data.owner_id,
        due_at=instance_data.due_at,
        metadata=instance_data.metadata,
        started_by=current_user,
        subject=subject,
    )

    await log_action(
        db, request, current_user, AuditAction.CREATE,
        module="workflows.instances",
        entity_type="workflow_instance",
        entity_id=instance.id,
        entity_name=instance.name,
        details={"template_id": template.id, "steps": instance.total_steps},
    )
    await db.commit()

    instance = await get_instance_or_404(db, instance.id, current_user.org_id)
    response = instance_to_response(instance, template.name)
    response.steps = [instance_step_to_response(s) for s in instance.steps]
    return response


@router.get("/instances/{instance_id}", response_model=InstanceResponse)
async def get_instance(
    instance_id: str,
    view: Literal["list", "kanban", "graph"] = "list",
    current_user: User = Depends(require_permission("workflows.instances", "view")),
    db: AsyncSession = Depends(get_db),
):
    """
    Get an instance with its steps.

    ``view=list`` returns the steps in order, ``kanban`` groups them by
    status and ``graph`` returns nodes and edges.
    """
    instance = await get_instance_or_404(db, instance_id, current_user.org_id)
    response = instance_to_response(instance, instance.template.name if instance.template else None)
    steps = sorted(instance.steps, key=lambda s: s.order_index)

    if view == "kanban":
        columns = {s.value: [] for s in StepStatus}
        for s in steps:
            columns[s.status.value].append(instance_step_to_response(s))
        response.kanban = columns
    elif view == "graph":
        response.graph = await instance_graph(db, instance)
    else:
        response.steps = [instance_step_to_response(s) for s in steps]
    return response


@router.patch("/instances/{instance_id}", response_model=InstanceResponse)
async def update_instance(
    request: Request,
    instance_id: str,
    instance_data: InstanceUpdate,
    current_user: User = Depends(require_permission("workflows.instances", "edit")),
    db: AsyncSession = Depends(get_db),
):
    instance = await get_instance_or_404(db, instance_id, current_user.org_id)
    update_data = instance_data.model_dump(exclude_unset=True)
    reject_nulls(WorkflowInstance, update_data)

    if "owner_id" in update_data:
        await check_person(db, current_user.org_id, update_data["owner_id"], "Owner")

    new_status = update_data.pop("status", None)
    if "metadata" in update_data:
        instance.meta = update_data.pop("metadata")
    for field, value in update_data.items():
        setattr(instance, field, value)

    if new_status and new_status != instance.status:
        if new_status == InstanceStatus.COMPLETED:
            instance.completed_at = datetime.now(timezone.utc)
        elif instance.status == InstanceStatus.COMPLETED:
            instance.completed_at = None
        if new_status == InstanceStatus.IN_PROGRESS and instance.started_at is None:
            instance.started_at = datetime.now(timezone.utc)
        instance.status = new_status

    await log_action(
        db, request, current_user, AuditAction.UPDATE,
        module="workflows.instances",
        entity_type="workflow_instance",
        entity_id=instance.id,
        entity_name=instance.name,
        details={"updated_fields": list(instance_data.model_dump(exclude_unset=True).keys())},
    )
    await db.commit()

    return instance_to_response(instance, instance.template.name if instance.template else None)


@router.delete("/instances/{instance_id}", response_model=SuccessResponse)
async def cancel_instance(
    request: Request,
    instance_id: str,
    current_user: User = Depends(require_permission("workflows.instances", "delete")),
    db: AsyncSession = Depends(get_db),
):
    """Cancel an instance. Instances are never hard deleted here."""
    instance = await get_instance_or_404(db, instance_id, current_user.org_id)
    if instance.status in CLOSED_INSTANCE_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Workflow is already {instance.status.value}",
        )
    instance.status = InstanceStatus.CANCELLED

    await log_action(
        db, request, current_user, AuditAction.UPDATE,
        module="workflows.instances",
        entity_type="workflow_instance",
        entity_id=instance.id,
        entity_name=instance.name,
        details={"status": InstanceStatus.CANCELLED.value},
    )
    await db.commit()

    return SuccessResponse(message=f"Workflow '{instance.name}' cancelled")


# =============================================================================
# Steps and tasks
# =============================================================================

@router.patch("/steps/{step_id}", response_model=InstanceStepResponse)
async def update_step(
    request: Request,
    step_id: str,
    step_data: StepUpdate,
    current_user: User = Depends(require_permission("workflows.tasks", "edit")),
    db: AsyncSession = Depends(get_db),
):
    """
    Update a step and recompute its instance's progress.

    The instance completes itself once every root step is completed.
    """
    result = await db.execute(
        select(WorkflowInstanceStep)
        .join(WorkflowInstance, WorkflowInstance.id == WorkflowInstanceStep.instance_id)
        .where(WorkflowInstanceStep.id == step_id, WorkflowInstance.org_id == current_user.org_id)
    )
    step = result.scalar_one_or_none()
    if not step:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workflow step not found")

    instance = await get_instance_or_404(db, step.instance_id, current_user.org_id)
    step = next(s for s in instance.steps if s.id == step_id)
    if instance.status in CLOSED_INSTANCE_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot update steps of a {instance.status.value} workflow",
        )

    update_data = step_data.model_dump(exclude_unset=True)
    reject_nulls(WorkflowInstanceStep, update_data)

    if update_data.get("assignee_id"):
        result = await db.execute(
            select(User.id).where(User.id == update_data["assignee_id"], User.org_id == current_user.org_id)
        )
        if not result.scalar_one_or_none():
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Assignee not found")
    if "assigned_person_id" in update_data:
        await check_person(db, current_user.org_id, update_data["assigned_person_id"], "Person")

    previous = step.status
    new_status = update_data.pop("status", None)
    if "metadata" in update_data:
        step.meta = update_data.pop("metadata")
    for field, value in update_data.items():
        setattr(step, field, value)
    if new_status:
        apply_step_status(step, new_status, current_user)
    recompute_progress(instance, instance.steps)

    await log_action(
        db, request, current_user, AuditAction.UPDATE,
        module="workflows.tasks",
        entity_type="workflow_step",
        entity_id=step.id,
        entity_name=step.name,
        details={
            "instance_id": instance.id,
            "from": previous.value,
            "to": step.status.value,
            "progress": instance.progress_percent,
        },
    )
    await db.commit()

    if instance.status == InstanceStatus.COMPLETED:
        logger.info("Workflow instance %s completed", instance.id)
    return instance_step_to_response(step)


@router.get("/tasks", response_model=List[TaskResponse])
async def my_tasks(
    status_filter: Optional[str] = Query(None, alias="status", description="Comma separated statuses"),
    current_user: User = Depends(require_permission("workflows.tasks", "view")),
    db: AsyncSession = Depends(get_db),
):
    """Steps assigned to the current user, soonest due first."""
    query = (
        select(WorkflowInstanceStep, WorkflowInstance)
        .join(WorkflowInstance, WorkflowInstance.id == WorkflowInstanceStep.instance_id)
        .where(
            WorkflowInstance.org_id == current_user.org_id,
            WorkflowInstanceStep.assignee_id == current_user.id,
        )
    )
    statuses = split_csv(status_filter)
    if statuses:
        try:
            query = query.where(WorkflowInstanceStep.status.in_([StepStatus(s) for s in statuses]))
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid status filter")

    result = await db.execute(
        query.order_by(WorkflowInstanceStep.due_at.is_(None), WorkflowInstanceStep.due_at, WorkflowInstanceStep.order_index)
    )
    return [
        TaskResponse(
            **instance_step_to_response(step).model_dump(),
            instance_name=instance.name,
            instance_status=instance.status.value,
            entity_type=instance.entity_type,
            entity_id=instance.entity_id,
        )
        for step, instance in result.all()
    ]

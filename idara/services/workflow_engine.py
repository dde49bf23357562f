"""
Workflow engine.

Creates instances from templates and keeps their progress in step with the
status of their steps. Also reacts to domain events (a person being created
or changing status) by starting the organization's default onboarding or
offboarding workflow.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone, timedelta
from typing import Optional, Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from idara.core.database import generate_uuid
from idara.models.person import Person, PersonStatus, PeopleSettings
from idara.models.user import User, UserStatus, user_roles
from idara.models.workflow import (
    WorkflowTemplate,
    WorkflowTemplateStep,
    WorkflowInstance,
    WorkflowInstanceStep,
    InstanceStatus,
    StepStatus,
    AssigneeType,
    TriggerType,
)

logger = logging.getLogger(__name__)

ONBOARDING = "onboarding"
OFFBOARDING = "offboarding"


@dataclass
class WorkflowEvent:
    """Something that happened elsewhere in the app and may start a workflow."""

    type: str  # person.created, person.status_changed, asset.assigned, asset.returned
    org_id: str
    entity_id: str
    person: Optional[Person] = None
    previous_status: Optional[str] = None
    actor: Optional[User] = None
    data: dict[str, Any] = field(default_factory=dict)


async def load_template_steps(db: AsyncSession, template_id: str) -> list[WorkflowTemplateStep]:
    result = await db.execute(
        select(WorkflowTemplateStep)
        .where(WorkflowTemplateStep.template_id == template_id)
        .order_by(WorkflowTemplateStep.order_index)
    )
    return list(result.scalars().all())


async def _user_for_person(db: AsyncSession, org_id: str, person_id: Optional[str]) -> Optional[str]:
    if not person_id:
        return None
    result = await db.execute(
        select(User.id).where(User.org_id == org_id, User.person_id == person_id).limit(1)
    )
    return result.scalar_one_or_none()


async def _first_user_with_role(db: AsyncSession, org_id: str, role_id: Optional[str]) -> Optional[str]:
    if not role_id:
        return None
    result = await db.execute(
        select(User.id)
        .join(user_roles, user_roles.c.user_id == User.id)
        .where(
            User.org_id == org_id,
            User.status == UserStatus.ACTIVE,
            user_roles.c.role_id == role_id,
        )
        .order_by(User.name)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _user_in_org(db: AsyncSession, org_id: str, user_id: Optional[str]) -> Optional[str]:
    if not user_id:
        return None
    result = await db.execute(select(User.id).where(User.id == user_id, User.org_id == org_id))
    return result.scalar_one_or_none()


async def resolve_assignee(
    db: AsyncSession,
    org_id: str,
    step: WorkflowTemplateStep,
    subject: Optional[Person],
    started_by: Optional[User],
) -> tuple[Optional[str], Optional[str]]:
    """
    Pick ``(assignee user id, assigned person id)`` for a new instance step.

    - specific_user: ``assignee_config.user_id`` or the step's default person
    - role: first active user holding ``assignee_config.role_id``
    - dynamic_manager: the subject person's manager
    - dynamic_creator: whoever started the instance
    - unassigned: the default person, if any
    """
    config = step.assignee_config or {}
    person_id = step.default_assignee_id
    user_id = None

    if step.assignee_type == AssigneeType.SPECIFIC_USER:
        user_id = await _user_in_org(db, org_id, config.get("user_id"))
    elif step.assignee_type == AssigneeType.ROLE:
        user_id = await _first_user_with_role(db, org_id, config.get("role_id"))
    elif step.assignee_type == AssigneeType.DYNAMIC_MANAGER:
        if subject is not None and subject.manager_id:
            person_id = subject.manager_id
            user_id = None
    elif step.assignee_type == AssigneeType.DYNAMIC_CREATOR:
        if started_by is not None:
            user_id = started_by.id
            person_id = started_by.person_id or person_id

    if user_id is None and person_id:
        user_id = await _user_for_person(db, org_id, person_id)
    return user_id, person_id


async def create_instance(
    db: AsyncSession,
    template: WorkflowTemplate,
    entity_type: str,
    entity_id: str,
    name: Optional[str] = None,
    owner_id: Optional[str] = None,
    due_at: Optional[datetime] = None,
    metadata: Optional[dict] = None,
    started_by: Optional[User] = None,
    subject: Optional[Person] = None,
    start_first_step: bool = False,
) -> WorkflowInstance:
    """
    Create an instance and copy the template's steps into it.

    Steps are copied in two passes so nested steps point at the new parent
    ids. Only root steps count towards ``total_steps``. The caller commits.
    """
    now = datetime.now(timezone.utc)
    if due_at is None and template.default_due_days:
        due_at = now + timedelta(days=template.default_due_days)

    template_steps = await load_template_steps(db, template.id)

    instance = WorkflowInstance(
        id=generate_uuid(),
        org_id=template.org_id,
        template_id=template.id,
        entity_type=entity_type,
        entity_id=entity_id,
        name=name or template.name,
        status=InstanceStatus.IN_PROGRESS,
        owner_id=owner_id or template.default_owner_id,
        started_at=now,
        due_at=due_at,
        total_steps=sum(1 for s in template_steps if not s.parent_step_id),
        completed_steps=0,
        started_by_id=started_by.id if started_by else None,
        meta=metadata,
    )
    db.add(instance)

    # First pass: one instance step per template step
    id_map: dict[str, str] = {}
    created: list[tuple[WorkflowTemplateStep, WorkflowInstanceStep]] = []
    for template_step in template_steps:
        assignee_id, person_id = await resolve_assignee(db, template.org_id, template_step, subject, started_by)
        step_due = None
        if template_step.due_offset_days is not None and template_step.due_offset_from in (None, "workflow_start"):
            step_due = now + timedelta(days=template_step.due_offset_days)

        step = WorkflowInstanceStep(
            id=generate_uuid(),
            instance_id=instance.id,
            template_step_id=template_step.id,
            name=template_step.name,
            description=template_step.description,
            order_index=template_step.order_index,
            status=StepStatus.PENDING,
            assignee_id=assignee_id,
            assigned_person_id=person_id,
            due_at=step_due,
            meta={
                **(template_step.meta or {}),
                "step_type": template_step.step_type.value,
                "assignee_type": template_step.assignee_type.value,
                "is_required": template_step.is_required,
            },
        )
        id_map[template_step.id] = step.id
        created.append((template_step, step))

    # Second pass: remap parents, inserting parents before their children
    parents = {ts.id: ts.parent_step_id for ts, _ in created}

    def depth(template_step_id: str) -> int:
        level, seen = 0, {template_step_id}
        parent = parents.get(template_step_id)
        while parent in parents and parent not in seen:
            seen.add(parent)
            level += 1
            parent = parents.get(parent)
        return level

    for template_step, step in sorted(created, key=lambda pair: depth(pair[0].id)):
        if template_step.parent_step_id:
            step.parent_step_id = id_map.get(template_step.parent_step_id)
        db.add(step)

    if start_first_step:
        roots = [s for _, s in created if not s.parent_step_id]
        if roots:
            first = min(roots, key=lambda s: s.order_index)
            first.status = StepStatus.IN_PROGRESS
            first.started_at = now

    await db.flush()
    logger.info("Created workflow instance %s from template %s (%d steps)",
                instance.id, template.id, len(created))
    return instance


def apply_step_status(step: WorkflowInstanceStep, new_status: StepStatus, user: Optional[User]) -> None:
    """
    Move a step to ``new_status`` and maintain its timestamps.

    Starting sets ``started_at`` once; completing stamps ``completed_at`` and
    ``completed_by_id``; leaving ``completed`` clears both.
    """
    now = datetime.now(timezone.utc)
    previous = step.status
    if new_status == previous:
        return

    if new_status == StepStatus.IN_PROGRESS and step.started_at is None:
        step.started_at = now
    if new_status == StepStatus.COMPLETED:
        step.completed_at = now
        step.completed_by_id = user.id if user else None
        if step.started_at is None:
            step.started_at = now
    elif previous == StepStatus.COMPLETED:
        step.completed_at = None
        step.completed_by_id = None
    step.status = new_status


def recompute_progress(instance: WorkflowInstance, steps: list[WorkflowInstanceStep]) -> None:
    """
    Recount completed root steps and auto-complete the instance.

    A pending instance moves to in_progress once any step has started.
    """
    roots = [s for s in steps if not s.parent_step_id]
    instance.total_steps = len(roots)
    instance.completed_steps = sum(1 for s in roots if s.status == StepStatus.COMPLETED)

    if instance.status == InstanceStatus.PENDING and any(
        s.status != StepStatus.PENDING for s in steps
    ):
        instance.status = InstanceStatus.IN_PROGRESS
        instance.started_at = instance.started_at or datetime.now(timezone.utc)

    if instance.total_steps > 0 and instance.completed_steps >= instance.total_steps:
        if instance.status != InstanceStatus.COMPLETED:
            instance.status = InstanceStatus.COMPLETED
            instance.completed_at = datetime.now(timezone.utc)
    elif instance.status == InstanceStatus.COMPLETED:
        instance.status = InstanceStatus.IN_PROGRESS
        instance.completed_at = None


async def trigger_person_workflow(
    db: AsyncSession,
    org_id: str,
    person: Person,
    kind: str,
    started_by: Optional[User] = None,
) -> Optional[WorkflowInstance]:
    """
    Start the default onboarding/offboarding workflow for a person.

    Returns None when the organization has no active default template for
    ``kind`` or the automatic flag is off.
    """
    result = await db.execute(select(PeopleSettings).where(PeopleSettings.org_id == org_id))
    settings = result.scalar_one_or_none()
    if settings is None:
        logger.debug("No people settings for org %s", org_id)
        return None

    if kind == ONBOARDING:
        enabled = settings.auto_onboarding_workflow
        template_id = settings.default_onboarding_workflow_template_id
        trigger = TriggerType.PERSON_ONBOARDING
    elif kind == OFFBOARDING:
        enabled = settings.auto_offboarding_workflow
        template_id = settings.default_offboarding_workflow_template_id
        trigger = TriggerType.PERSON_OFFBOARDING
    else:
        raise ValueError(f"Unknown person workflow kind: {kind}")

    if not enabled or not template_id:
        logger.debug("Auto %s workflow not configured for org %s", kind, org_id)
        return None

    result = await db.execute(
        select(WorkflowTemplate).where(
            WorkflowTemplate.id == template_id,
            WorkflowTemplate.org_id == org_id,
        )
    )
    template = result.scalar_one_or_none()
    if template is None or not template.is_usable:
        logger.info("Default %s template %s is missing or inactive", kind, template_id)
        return None

    now = datetime.now(timezone.utc)
    return await create_instance(
        db,
        template,
        entity_type="person",
        entity_id=person.id,
        name=f"{template.name} - {person.name}",
        metadata={
            "person_name": person.name,
            "person_email": person.email,
            "trigger_type": trigger.value,
            "triggered_at": now.isoformat(),
        },
        started_by=started_by,
        subject=person,
        start_first_step=True,
    )


async def process_event(db: AsyncSession, event: WorkflowEvent) -> Optional[WorkflowInstance]:
    """Dispatch a domain event. The caller commits."""
    if event.type == "person.created":
        person = event.person
        if person is not None and person.status == PersonStatus.ONBOARDING:
            return await trigger_person_workflow(db, event.org_id, person, ONBOARDING, event.actor)
        return None

    if event.type == "person.status_changed":
        person = event.person
        if person is None or person.status.value == event.previous_status:
            return None
        if person.status == PersonStatus.ONBOARDING:
            return await trigger_person_workflow(db, event.org_id, person, ONBOARDING, event.actor)
        if person.status == PersonStatus.OFFBOARDING:
            return await trigger_person_workflow(db, event.org_id, person, OFFBOARDING, event.actor)
        return None

    if event.type in ("asset.assigned", "asset.returned"):
        logger.info("Workflow event %s for asset %s", event.type, event.entity_id)
        return None

    logger.debug("Ignoring workflow event %s", event.type)
    return None

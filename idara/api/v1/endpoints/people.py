"""
People directory endpoints.

Creating a person and changing a person's status feed the workflow engine,
which may start the organization's onboarding or offboarding workflow.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status, Request, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, or_, update

from idara.core.database import get_db
from idara.core.utils import slugify, unique_slug, fetch_page, apply_search_filter, split_csv, reject_nulls
from idara.models.person import Person, PersonStatus, Team, JobRole, PeopleSettings
from idara.models.asset import Asset, AssetStatus
from idara.models.workflow import WorkflowTemplate
from idara.models.user import User
from idara.models.audit import AuditAction
from idara.auth.dependencies import require_permission
from idara.auth.audit import log_action
from idara.services import graph
from idara.services.directory_sync import get_people_settings, run_people_sync, DirectorySyncError
from idara.services.workflow_engine import WorkflowEvent, process_event
from idara.schemas.person import (
    PersonCreate,
    PersonUpdate,
    PersonResponse,
    PeopleSettingsUpdate,
    PeopleSettingsResponse,
    PeopleSyncResponse,
    person_to_response,
)
from idara.schemas.common import PaginatedResponse, SuccessResponse

logger = logging.getLogger(__name__)

router = APIRouter()


async def load_refs(db: AsyncSession, people: list[Person]) -> tuple[dict, dict]:
    """Teams and managers for a page of people, keyed by id."""
    team_ids = {p.team_id for p in people if p.team_id}
    manager_ids = {p.manager_id for p in people if p.manager_id}

    teams = {}
    if team_ids:
        result = await db.execute(select(Team).where(Team.id.in_(team_ids)))
        teams = {t.id: t for t in result.scalars().all()}
    managers = {}
    if manager_ids:
        result = await db.execute(select(Person).where(Person.id.in_(manager_ids)))
        managers = {m.id: m for m in result.scalars().all()}
    return teams, managers


async def to_response(db: AsyncSession, person: Person) -> PersonResponse:
    teams, managers = await load_refs(db, [person])
    return person_to_response(person, teams.get(person.team_id), managers.get(person.manager_id))


async def get_person_or_404(db: AsyncSession, person_ref: str, org_id: str) -> Person:
    """Look a person up by id or slug."""
    result = await db.execute(
        select(Person).where(
            Person.org_id == org_id,
            or_(Person.id == person_ref, Person.slug == person_ref),
        )
    )
    person = result.scalars().first()
    if not person:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Person not found")
    return person


async def check_links(
    db: AsyncSession,
    org_id: str,
    team_id: Optional[str],
    manager_id: Optional[str],
    job_role_id: Optional[str] = None,
) -> None:
    if team_id:
        result = await db.execute(select(Team.id).where(Team.id == team_id, Team.org_id == org_id))
        if not result.scalar_one_or_none():
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Team not found")
    if manager_id:
        result = await db.execute(select(Person.id).where(Person.id == manager_id, Person.org_id == org_id))
        if not result.scalar_one_or_none():
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Manager not found")
    if job_role_id:
        result = await db.execute(select(JobRole.id).where(JobRole.id == job_role_id, JobRole.org_id == org_id))
        if not result.scalar_one_or_none():
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job role not found")


async def email_taken(db: AsyncSession, org_id: str, email: str, exclude_id: Optional[str] = None) -> bool:
    query = select(Person.id).where(Person.org_id == org_id, Person.email == email)
    if exclude_id:
        query = query.where(Person.id != exclude_id)
    result = await db.execute(query)
    return result.scalar_one_or_none() is not None


@router.get("/person", response_model=PaginatedResponse[PersonResponse])
async def list_people(
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    search: Optional[str] = Query(None, max_length=100),
    status_filter: Optional[str] = Query(None, alias="status", description="Comma separated statuses"),
    team_id: Optional[str] = None,
    manager_id: Optional[str] = None,
    current_user: User = Depends(require_permission("people.directory", "view")),
    db: AsyncSession = Depends(get_db),
):
    """List people with search, status and team filters."""
    query = select(Person).where(Person.org_id == current_user.org_id)
    count_query = select(func.count(Person.id)).where(Person.org_id == current_user.org_id)

    query, count_query = apply_search_filter(
        query, count_query, search,
        Person.name, Person.email, Person.role,
    )

    statuses = split_csv(status_filter)
    if statuses:
        try:
            wanted = [PersonStatus(s) for s in statuses]
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid status filter")
        query = query.where(Person.status.in_(wanted))
        count_query = count_query.where(Person.status.in_(wanted))

    if team_id:
        query = query.where(Person.team_id == team_id)
        count_query = count_query.where(Person.team_id == team_id)

    if manager_id:
        query = query.where(Person.manager_id == manager_id)
        count_query = count_query.where(Person.manager_id == manager_id)

    people, total = await fetch_page(db, query.order_by(Person.name), count_query, page, per_page)
    teams, managers = await load_refs(db, people)

    return PaginatedResponse.create(
        items=[person_to_response(p, teams.get(p.team_id), managers.get(p.manager_id)) for p in people],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("/person", response_model=PersonResponse, status_code=status.HTTP_201_CREATED)
async def create_person(
    request: Request,
    person_data: PersonCreate,
    current_user: User = Depends(require_permission("people.directory", "create")),
    db: AsyncSession = Depends(get_db),
):
    """
    Create a person.

    A person created in ``onboarding`` status starts the default onboarding
    workflow when the organization has one configured.
    """
    if await email_taken(db, current_user.org_id, person_data.email):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Person with email '{person_data.email}' already exists",
        )
    await check_links(
        db, current_user.org_id, person_data.team_id, person_data.manager_id, person_data.job_role_id,
    )

    person = Person(
        org_id=current_user.org_id,
        slug=await unique_slug(db, Person, current_user.org_id, slugify(person_data.name)),
        **person_data.model_dump(),
    )
    db.add(person)
    await db.flush()

    instance = await process_event(db, WorkflowEvent(
        type="person.created",
        org_id=current_user.org_id,
        entity_id=person.id,
        person=person,
        actor=current_user,
    ))

    await log_action(
        db, request, current_user, AuditAction.CREATE,
        module="people.directory",
        entity_type="person",
        entity_id=person.id,
        entity_name=person.name,
        details={"workflow_instance_id": instance.id} if instance else None,
    )
    await db.commit()

    return await to_response(db, person)


@router.get("/person/{person_ref}", response_model=PersonResponse)
async def get_person(
    person_ref: str,
    current_user: User = Depends(require_permission("people.directory", "view")),
    db: AsyncSession = Depends(get_db),
):
    """Get a person by id or slug."""
    person = await get_person_or_404(db, person_ref, current_user.org_id)
    return await to_response(db, person)


@router.patch("/person/{person_ref}", response_model=PersonResponse)
async def update_person(
    request: Request,
    person_ref: str,
    person_data: PersonUpdate,
    current_user: User = Depends(require_permission("people.directory", "edit")),
    db: AsyncSession = Depends(get_db),
):
    person = await get_person_or_404(db, person_ref, current_user.org_id)
    update_data = person_data.model_dump(exclude_unset=True)
    reject_nulls(Person, update_data)

    if update_data.get("email") and await email_taken(db, current_user.org_id, update_data["email"], person.id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Person with email '{update_data['email']}' already exists",
        )
    if update_data.get("manager_id") == person.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="A person cannot manage themselves")
    await check_links(
        db, current_user.org_id,
        update_data.get("team_id"), update_data.get("manager_id"), update_data.get("job_role_id"),
    )

    previous_status = person.status.value
    for field, value in update_data.items():
        setattr(person, field, value)
    if "name" in update_data and update_data["name"]:
        person.slug = await unique_slug(
            db, Person, current_user.org_id, slugify(update_data["name"]), exclude_id=person.id,
        )
    await db.flush()

    instance = None
    if person.status.value != previous_status:
        instance = await process_event(db, WorkflowEvent(
            type="person.status_changed",
            org_id=current_user.org_id,
            entity_id=person.id,
            person=person,
            previous_status=previous_status,
            actor=current_user,
        ))

    details = {"updated_fields": list(update_data.keys())}
    if instance:
        details["workflow_instance_id"] = instance.id
    await log_action(
        db, request, current_user, AuditAction.UPDATE,
        module="people.directory",
        entity_type="person",
        entity_id=person.id,
        entity_name=person.name,
        details=details,
    )
    await db.commit()

    return await to_response(db, person)


@router.delete("/person/{person_ref}", response_model=SuccessResponse)
async def delete_person(
    request: Request,
    person_ref: str,
    current_user: User = Depends(require_permission("people.directory", "delete")),
    db: AsyncSession = Depends(get_db),
):
    """Delete a person. Assets still assigned to them become available."""
    person = await get_person_or_404(db, person_ref, current_user.org_id)
    person_id, person_name = person.id, person.name

    await db.execute(
        update(Asset)
        .where(Asset.org_id == current_user.org_id, Asset.assigned_to_id == person_id)
        .values(assigned_to_id=None, assigned_at=None, status=AssetStatus.AVAILABLE)
    )
    await db.delete(person)

    await log_action(
        db, request, current_user, AuditAction.DELETE,
        module="people.directory",
        entity_type="person",
        entity_id=person_id,
        entity_name=person_name,
    )
    await db.commit()

    return SuccessResponse(message=f"Person '{person_name}' deleted")


# =============================================================================
# Settings
# =============================================================================

@router.get("/settings", response_model=PeopleSettingsResponse)
async def read_people_settings(
    current_user: User = Depends(require_permission("people.settings", "view")),
    db: AsyncSession = Depends(get_db),
):
    settings = await get_people_settings(db, current_user.org_id)
    await db.commit()
    return PeopleSettingsResponse.model_validate(settings)


@router.put("/settings", response_model=PeopleSettingsResponse)
async def update_people_settings(
    request: Request,
    settings_data: PeopleSettingsUpdate,
    current_user: User = Depends(require_permission("people.settings", "edit")),
    db: AsyncSession = Depends(get_db),
):
    settings = await get_people_settings(db, current_user.org_id)
    update_data = settings_data.model_dump(exclude_unset=True)
    reject_nulls(PeopleSettings, update_data)

    for field in ("default_onboarding_workflow_template_id", "default_offboarding_workflow_template_id"):
        template_id = update_data.get(field)
        if template_id:
            result = await db.execute(
                select(WorkflowTemplate.id).where(
                    WorkflowTemplate.id == template_id,
                    WorkflowTemplate.org_id == current_user.org_id,
                )
            )
            if not result.scalar_one_or_none():
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workflow template not found")

    for field, value in update_data.items():
        setattr(settings, field, value)

    await log_action(
        db, request, current_user, AuditAction.UPDATE,
        module="people.settings",
        entity_type="people_settings",
        entity_id=settings.id,
        details={"updated_fields": list(update_data.keys())},
    )
    await db.commit()
    await db.refresh(settings)

    return PeopleSettingsResponse.model_validate(settings)


@router.post("/settings/sync", response_model=PeopleSyncResponse)
async def sync_people(
    request: Request,
    current_user: User = Depends(require_permission("people.settings", "edit")),
    db: AsyncSession = Depends(get_db),
):
    """
    Pull members of the Entra groups matching the people group pattern.

    Only available in ``independent`` sync mode; in ``linked`` mode people
    follow the Entra directory sync under settings.
    """
    try:
        return await run_people_sync(db, current_user.org_id, current_user, request)
    except DirectorySyncError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except graph.GraphAPIError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Microsoft Graph request failed: {e.message}",
        )

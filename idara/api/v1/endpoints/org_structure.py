"""
Job levels and job roles: the role hierarchy behind the org chart.

A role belongs to a team and may report to a parent role. A role's ``level``
is its depth in the chart: it follows the sort order of its job level when one
is set, otherwise it sits one below its parent.
"""

from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, status, Request, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, update
from sqlalchemy.orm import selectinload

from idara.core.database import get_db
from idara.core.utils import reject_nulls
from idara.models.person import JobLevel, JobRole, Team, Person
from idara.models.user import User
from idara.models.audit import AuditAction
from idara.auth.dependencies import require_permission
from idara.auth.audit import log_action
from idara.schemas.person import (
    JobLevelCreate,
    JobLevelUpdate,
    JobLevelBulkUpdate,
    JobLevelResponse,
    JobRoleCreate,
    JobRoleUpdate,
    JobRoleBulkUpdate,
    JobRoleResponse,
    job_level_to_response,
    job_role_to_response,
)
from idara.schemas.common import SuccessResponse

router = APIRouter()


# =============================================================================
# Job levels
# =============================================================================

async def org_levels(db: AsyncSession, org_id: str) -> list[JobLevel]:
    result = await db.execute(
        select(JobLevel).where(JobLevel.org_id == org_id).order_by(JobLevel.sort_order, JobLevel.name)
    )
    return list(result.scalars().all())


async def role_counts_by_level(db: AsyncSession, org_id: str) -> dict[str, int]:
    result = await db.execute(
        select(JobRole.level_id, func.count(JobRole.id))
        .where(JobRole.org_id == org_id, JobRole.level_id.is_not(None))
        .group_by(JobRole.level_id)
    )
    return dict(result.all())


async def get_level_or_404(db: AsyncSession, level_id: str, org_id: str) -> JobLevel:
    result = await db.execute(select(JobLevel).where(JobLevel.id == level_id, JobLevel.org_id == org_id))
    level = result.scalar_one_or_none()
    if not level:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job level not found")
    return level


async def level_code_taken(db: AsyncSession, org_id: str, code: str, exclude_id: Optional[str] = None) -> bool:
    query = select(JobLevel.id).where(JobLevel.org_id == org_id, JobLevel.code == code)
    if exclude_id:
        query = query.where(JobLevel.id != exclude_id)
    result = await db.execute(query)
    return result.scalar_one_or_none() is not None


async def sync_role_depth(db: AsyncSession, level: JobLevel) -> None:
    """Roles on a level sit at that level's sort order."""
    await db.execute(
        update(JobRole)
        .where(JobRole.org_id == level.org_id, JobRole.level_id == level.id)
        .values(level=level.sort_order)
    )


@router.get("/levels", response_model=List[JobLevelResponse])
async def list_levels(
    current_user: User = Depends(require_permission("people.levels", "view")),
    db: AsyncSession = Depends(get_db),
):
    levels = await org_levels(db, current_user.org_id)
    counts = await role_counts_by_level(db, current_user.org_id)
    return [job_level_to_response(level, counts.get(level.id, 0)) for level in levels]


@router.post("/levels", response_model=JobLevelResponse, status_code=status.HTTP_201_CREATED)
async def create_level(
    request: Request,
    level_data: JobLevelCreate,
    current_user: User = Depends(require_permission("people.levels", "create")),
    db: AsyncSession = Depends(get_db),
):
    """Create a level; without ``sort_order`` it goes to the end of the list."""
    code = level_data.code.strip()
    if await level_code_taken(db, current_user.org_id, code):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Job level code '{code}' already exists",
        )

    sort_order = level_data.sort_order
    if sort_order is None:
        result = await db.execute(
            select(func.max(JobLevel.sort_order)).where(JobLevel.org_id == current_user.org_id)
        )
        highest = result.scalar()
        sort_order = 0 if highest is None else highest + 1

    level = JobLevel(
        org_id=current_user.org_id,
        name=level_data.name,
        code=code,
        description=level_data.description,
        sort_order=sort_order,
    )
    db.add(level)
    await db.flush()

    await log_action(
        db, request, current_user, AuditAction.CREATE,
        module="people.levels",
        entity_type="job_level",
        entity_id=level.id,
        entity_name=level.code,
    )
    await db.commit()

    return job_level_to_response(level)


@router.put("/levels", response_model=SuccessResponse)
async def reorder_levels(
    request: Request,
    bulk_data: JobLevelBulkUpdate,
    current_user: User = Depends(require_permission("people.levels", "edit")),
    db: AsyncSession = Depends(get_db),
):
    """Save a new level ordering. Ids outside the organization are ignored."""
    by_id = {level.id: level for level in await org_levels(db, current_user.org_id)}

    changed = 0
    for item in bulk_data.updates:
        level = by_id.get(item.id)
        if level is None:
            continue
        level.sort_order = item.sort_order
        await sync_role_depth(db, level)
        changed += 1

    await log_action(
        db, request, current_user, AuditAction.UPDATE,
        module="people.levels",
        entity_type="job_level",
        details={"bulk": changed},
    )
    await db.commit()

    return SuccessResponse(message=f"Updated {changed} job levels")


@router.get("/levels/{level_id}", response_model=JobLevelResponse)
async def get_level(
    level_id: str,
    current_user: User = Depends(require_permission("people.levels", "view")),
    db: AsyncSession = Depends(get_db),
):
    level = await get_level_or_404(db, level_id, current_user.org_id)
    counts = await role_counts_by_level(db, current_user.org_id)
    return job_level_to_response(level, counts.get(level.id, 0))


@router.patch("/levels/{level_id}", response_model=JobLevelResponse)
async def update_level(
    request: Request,
    level_id: str,
    level_data: JobLevelUpdate,
    current_user: User = Depends(require_permission("people.levels", "edit")),
    db: AsyncSession = Depends(get_db),
):
    level = await get_level_or_404(db, level_id, current_user.org_id)
    update_data = level_data.model_dump(exclude_unset=True)
    reject_nulls(JobLevel, update_data)

    if update_data.get("code"):
        update_data["code"] = update_data["code"].strip()
        if await level_code_taken(db, current_user.org_id, update_data["code"], level.id):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Job level code '{update_data['code']}' already exists",
            )

    for field, value in update_data.items():
        setattr(level, field, value)
    if "sort_order" in update_data:
        await sync_role_depth(db, level)

    await log_action(
        db, request, current_user, AuditAction.UPDATE,
        module="people.levels",
        entity_type="job_level",
        entity_id=level.id,
        entity_name=level.code,
        details={"updated_fields": list(update_data.keys())},
    )
    await db.commit()

    counts = await role_counts_by_level(db, current_user.org_id)
    return job_level_to_response(level, counts.get(level.id, 0))


@router.delete("/levels/{level_id}", response_model=SuccessResponse)
async def delete_level(
    request: Request,
    level_id: str,
    current_user: User = Depends(require_permission("people.levels", "delete")),
    db: AsyncSession = Depends(get_db),
):
    """Delete an unused level. Levels still held by roles are refused."""
    level = await get_level_or_404(db, level_id, current_user.org_id)
    counts = await role_counts_by_level(db, current_user.org_id)
    if counts.get(level.id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Job level is used by {counts[level.id]} roles",
        )

    code = level.code
    await db.delete(level)
    await log_action(
        db, request, current_user, AuditAction.DELETE,
        module="people.levels",
        entity_type="job_level",
        entity_id=level_id,
        entity_name=code,
    )
    await db.commit()

    return SuccessResponse(message=f"Job level '{code}' deleted")


# =============================================================================
# Job roles
# =============================================================================

async def org_roles(db: AsyncSession, org_id: str) -> list[JobRole]:
    result = await db.execute(
        select(JobRole)
        .where(JobRole.org_id == org_id)
        .options(
            selectinload(JobRole.team),
            selectinload(JobRole.parent_role),
            selectinload(JobRole.job_level),
        )
        .order_by(JobRole.level, JobRole.sort_order, JobRole.name)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def holder_counts(db: AsyncSession, org_id: str) -> dict[str, int]:
    result = await db.execute(
        select(Person.job_role_id, func.count(Person.id))
        .where(Person.org_id == org_id, Person.job_role_id.is_not(None))
        .group_by(Person.job_role_id)
    )
    return dict(result.all())


def child_counts(roles: list[JobRole]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for r in roles:
        if r.parent_role_id:
            counts[r.parent_role_id] = counts.get(r.parent_role_id, 0) + 1
    return counts


def descendant_ids(role_id: str, roles: list[JobRole]) -> set[str]:
    children: dict[str, list[str]] = {}
    for r in roles:
        if r.parent_role_id:
            children.setdefault(r.parent_role_id, []).append(r.id)
    found: set[str] = set()
    stack = [role_id]
    while stack:
        for child in children.get(stack.pop(), []):
            if child not in found:
                found.add(child)
                stack.append(child)
    return found


def check_parent_role(role_id: Optional[str], parent_id: Optional[str], roles: list[JobRole]) -> Optional[JobRole]:
    """The parent must exist in the org; a role cannot report to itself or to one of its reports."""
    if not parent_id:
        return None
    parent = next((r for r in roles if r.id == parent_id), None)
    if parent is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Parent role not found")
    if role_id and (parent_id == role_id or parent_id in descendant_ids(role_id, roles)):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="A role cannot be its own parent or report to one of its descendants",
        )
    return parent


async def check_team(db: AsyncSession, org_id: str, team_id: str) -> None:
    result = await db.execute(select(Team.id).where(Team.id == team_id, Team.org_id == org_id))
    if not result.scalar_one_or_none():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Team is required and must exist")


async def role_name_taken(db: AsyncSession, org_id: str, name: str, exclude_id: Optional[str] = None) -> bool:
    query = select(JobRole.id).where(JobRole.org_id == org_id, JobRole.name == name)
    if exclude_id:
        query = query.where(JobRole.id != exclude_id)
    result = await db.execute(query)
    return result.scalar_one_or_none() is not None


async def role_response(db: AsyncSession, role_id: str, org_id: str) -> JobRoleResponse:
    roles = await org_roles(db, org_id)
    role = next(r for r in roles if r.id == role_id)
    holders = await holder_counts(db, org_id)
    return job_role_to_response(role, holders.get(role.id, 0), child_counts(roles).get(role.id, 0))


@router.get("/roles", response_model=List[JobRoleResponse])
async def list_roles(
    search: Optional[str] = Query(None, max_length=100),
    parent_id: Optional[str] = None,
    team_id: Optional[str] = None,
    top_level_only: bool = False,
    current_user: User = Depends(require_permission("people.roles", "view")),
    db: AsyncSession = Depends(get_db),
):
    """Roles by level then sort order, with holder and direct-report counts."""
    roles = await org_roles(db, current_user.org_id)

    selected = roles
    if search:
        needle = search.lower()
        selected = [r for r in selected if needle in r.name.lower() or needle in (r.description or "").lower()]
    if team_id:
        selected = [r for r in selected if r.team_id == team_id]
    if parent_id:
        selected = [r for r in selected if r.parent_role_id == parent_id]
    elif top_level_only:
        selected = [r for r in selected if not r.parent_role_id]

    holders = await holder_counts(db, current_user.org_id)
    children = child_counts(roles)
    return [job_role_to_response(r, holders.get(r.id, 0), children.get(r.id, 0)) for r in selected]


@router.post("/roles", response_model=JobRoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    request: Request,
    role_data: JobRoleCreate,
    current_user: User = Depends(require_permission("people.roles", "create")),
    db: AsyncSession = Depends(get_db),
):
    await check_team(db, current_user.org_id, role_data.team_id)
    if await role_name_taken(db, current_user.org_id, role_data.name):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Job role '{role_data.name}' already exists",
        )
    roles = await org_roles(db, current_user.org_id)
    parent = check_parent_role(None, role_data.parent_role_id, roles)

    depth = role_data.level
    if role_data.level_id:
        depth = (await get_level_or_404(db, role_data.level_id, current_user.org_id)).sort_order
    elif depth is None:
        depth = parent.level + 1 if parent else 0

    role = JobRole(
        org_id=current_user.org_id,
        **role_data.model_dump(exclude={"level"}),
        level=depth,
    )
    db.add(role)
    await db.flush()

    await log_action(
        db, request, current_user, AuditAction.CREATE,
        module="people.roles",
        entity_type="job_role",
        entity_id=role.id,
        entity_name=role.name,
    )
    await db.commit()

    return await role_response(db, role.id, current_user.org_id)


@router.put("/roles", response_model=SuccessResponse)
async def bulk_update_roles(
    request: Request,
    bulk_data: JobRoleBulkUpdate,
    current_user: User = Depends(require_permission("people.roles", "edit")),
    db: AsyncSession = Depends(get_db),
):
    """Save positions, parents and ordering from the role chart designer."""
    roles = await org_roles(db, current_user.org_id)
    by_id = {r.id: r for r in roles}

    missing = [item.id for item in bulk_data.updates if item.id not in by_id]
    if missing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid role ids: {', '.join(missing)}",
        )

    for item in bulk_data.updates:
        role = by_id[item.id]
        changes = item.model_dump(exclude_unset=True, exclude={"id"})
        reject_nulls(JobRole, changes)
        if "parent_role_id" in changes:
            check_parent_role(role.id, changes["parent_role_id"], roles)
        for field, value in changes.items():
            setattr(role, field, value)

    await log_action(
        db, request, current_user, AuditAction.UPDATE,
        module="people.roles",
        entity_type="job_role",
        details={"bulk": len(bulk_data.updates)},
    )
    await db.commit()

    return SuccessResponse(message=f"Updated {len(bulk_data.updates)} job roles")


@router.get("/roles/{role_id}", response_model=JobRoleResponse)
async def get_role(
    role_id: str,
    current_user: User = Depends(require_permission("people.roles", "view")),
    db: AsyncSession = Depends(get_db),
):
    roles = await org_roles(db, current_user.org_id)
    if not any(r.id == role_id for r in roles):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job role not found")
    return await role_response(db, role_id, current_user.org_id)


@router.patch("/roles/{role_id}", response_model=JobRoleResponse)
async def update_role(
    request: Request,
    role_id: str,
    role_data: JobRoleUpdate,
    current_user: User = Depends(require_permission("people.roles", "edit")),
    db: AsyncSession = Depends(get_db),
):
    roles = await org_roles(db, current_user.org_id)
    role = next((r for r in roles if r.id == role_id), None)
    if not role:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job role not found")

    update_data = role_data.model_dump(exclude_unset=True)
    reject_nulls(JobRole, update_data)

    if update_data.get("name") and await role_name_taken(db, current_user.org_id, update_data["name"], role.id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Job role '{update_data['name']}' already exists",
        )
    if "team_id" in update_data:
        await check_team(db, current_user.org_id, update_data["team_id"])
    if "parent_role_id" in update_data:
        check_parent_role(role.id, update_data["parent_role_id"], roles)
    if update_data.get("level_id"):
        level = await get_level_or_404(db, update_data["level_id"], current_user.org_id)
        update_data["level"] = level.sort_order

    for field, value in update_data.items():
        setattr(role, field, value)

    await log_action(
        db, request, current_user, AuditAction.UPDATE,
        module="people.roles",
        entity_type="job_role",
        entity_id=role.id,
        entity_name=role.name,
        details={"updated_fields": list(update_data.keys())},
    )
    await db.commit()

    return await role_response(db, role.id, current_user.org_id)


@router.delete("/roles/{role_id}", response_model=SuccessResponse)
async def delete_role(
    request: Request,
    role_id: str,
    current_user: User = Depends(require_permission("people.roles", "delete")),
    db: AsyncSession = Depends(get_db),
):
    """Delete a role without direct reports. People holding it keep their record without a role."""
    roles = await org_roles(db, current_user.org_id)
    role = next((r for r in roles if r.id == role_id), None)
    if not role:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job role not found")
    if child_counts(roles).get(role.id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Job role has child roles; move or delete them first",
        )

    role_name = role.name
    await db.execute(
        update(Person)
        .where(Person.org_id == current_user.org_id, Person.job_role_id == role.id)
        .values(job_role_id=None)
    )
    await db.delete(role)
    await log_action(
        db, request, current_user, AuditAction.DELETE,
        module="people.roles",
        entity_type="job_role",
        entity_id=role_id,
        entity_name=role_name,
    )
    await db.commit()

    return SuccessResponse(message=f"Job role '{role_name}' deleted")

"""
Team endpoints, including the org chart.
"""

from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, status, Request, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, update

from idara.core.database import get_db
from idara.core.utils import reject_nulls
from idara.models.person import Team, Person, JobRole
from idara.models.user import User
from idara.models.audit import AuditAction
from idara.auth.dependencies import require_permission
from idara.auth.audit import log_action
from idara.services.team_chart import layout_teams, needs_auto_layout
from idara.schemas.person import (
    TeamCreate,
    TeamUpdate,
    TeamBulkUpdate,
    TeamResponse,
    TeamChartResponse,
    ChartNode,
    ChartEdge,
    team_to_response,
)
from idara.schemas.common import SuccessResponse, person_ref

router = APIRouter()


async def org_teams(db: AsyncSession, org_id: str) -> list[Team]:
    result = await db.execute(select(Team).where(Team.org_id == org_id).order_by(Team.sort_order, Team.name))
    return list(result.scalars().all())


async def member_counts(db: AsyncSession, org_id: str) -> dict[str, int]:
    result = await db.execute(
        select(Person.team_id, func.count(Person.id))
        .where(Person.org_id == org_id, Person.team_id.is_not(None))
        .group_by(Person.team_id)
    )
    return dict(result.all())


async def leads_for(db: AsyncSession, teams: list[Team]) -> dict[str, Person]:
    lead_ids = {t.lead_id for t in teams if t.lead_id}
    if not lead_ids:
        return {}
    result = await db.execute(select(Person).where(Person.id.in_(lead_ids)))
    return {p.id: p for p in result.scalars().all()}


def descendant_ids(team_id: str, teams: list[Team]) -> set[str]:
    children: dict[str, list[str]] = {}
    for t in teams:
        if t.parent_team_id:
            children.setdefault(t.parent_team_id, []).append(t.id)
    found: set[str] = set()
    stack = [team_id]
    while stack:
        for child in children.get(stack.pop(), []):
            if child not in found:
                found.add(child)
                stack.append(child)
    return found


def check_parent(team_id: str, parent_id: Optional[str], teams: list[Team]) -> None:
    """A team cannot be its own parent or sit under one of its descendants."""
    if not parent_id:
        return
    if parent_id not in {t.id for t in teams}:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Parent team not found")
    if parent_id == team_id or parent_id in descendant_ids(team_id, teams):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="A team cannot be its own parent or a child of its descendants",
        )


async def check_lead(db: AsyncSession, org_id: str, lead_id: Optional[str]) -> None:
    if not lead_id:
        return
    result = await db.execute(select(Person.id).where(Person.id == lead_id, Person.org_id == org_id))
    if not result.scalar_one_or_none():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Team lead not found")


async def name_taken(db: AsyncSession, org_id: str, name: str, exclude_id: Optional[str] = None) -> bool:
    query = select(Team.id).where(Team.org_id == org_id, Team.name == name)
    if exclude_id:
        query = query.where(Team.id != exclude_id)
    result = await db.execute(query)
    return result.scalar_one_or_none() is not None


async def build_response(db: AsyncSession, team: Team, teams: list[Team]) -> TeamResponse:
    by_id = {t.id: t for t in teams}
    leads = await leads_for(db, [team])
    counts = await member_counts(db, team.org_id)
    return team_to_response(
        team,
        lead=leads.get(team.lead_id),
        parent=by_id.get(team.parent_team_id),
        member_count=counts.get(team.id, 0),
        child_count=sum(1 for t in teams if t.parent_team_id == team.id),
    )


@router.get("", response_model=List[TeamResponse])
async def list_teams(
    search: Optional[str] = Query(None, max_length=100),
    parent_id: Optional[str] = None,
    top_level_only: bool = False,
    current_user: User = Depends(require_permission("people.teams", "view")),
    db: AsyncSession = Depends(get_db),
):
    """List teams with lead, parent and member/child counts."""
    teams = await org_teams(db, current_user.org_id)
    by_id = {t.id: t for t in teams}

    selected = teams
    if search:
        needle = search.lower()
        selected = [t for t in selected if needle in t.name.lower() or needle in (t.description or "").lower()]
    if parent_id:
        selected = [t for t in selected if t.parent_team_id == parent_id]
    elif top_level_only:
        selected = [t for t in selected if not t.parent_team_id]

    leads = await leads_for(db, selected)
    counts = await member_counts(db, current_user.org_id)
    child_counts: dict[str, int] = {}
    for t in teams:
        if t.parent_team_id:
            child_counts[t.parent_team_id] = child_counts.get(t.parent_team_id, 0) + 1

    return [
        team_to_response(
            t,
            lead=leads.get(t.lead_id),
            parent=by_id.get(t.parent_team_id),
            member_count=counts.get(t.id, 0),
            child_count=child_counts.get(t.id, 0),
        )
        for t in selected
    ]


@router.post("", response_model=TeamResponse, status_code=status.HTTP_201_CREATED)
async def create_team(
    request: Request,
    team_data: TeamCreate,
    current_user: User = Depends(require_permission("people.teams", "create")),
    db: AsyncSession = Depends(get_db),
):
    if await name_taken(db, current_user.org_id, team_data.name):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Team '{team_data.name}' already exists",
        )
    teams = await org_teams(db, current_user.org_id)
    if team_data.parent_team_id and team_data.parent_team_id not in {t.id for t in teams}:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Parent team not found")
    await check_lead(db, current_user.org_id, team_data.lead_id)

    team = Team(org_id=current_user.org_id, **team_data.model_dump())
    db.add(team)
    await db.flush()

    await log_action(
        db, request, current_user, AuditAction.CREATE,
        module="people.teams",
        entity_type="team",
        entity_id=team.id,
        entity_name=team.name,
    )
    await db.commit()

    return await build_response(db, team, teams + [team])


@router.put("", response_model=SuccessResponse)
async def bulk_update_teams(
    request: Request,
    bulk_data: TeamBulkUpdate,
    current_user: User = Depends(require_permission("people.teams", "edit")),
    db: AsyncSession = Depends(get_db),
):
    """Save positions, parents and ordering from the chart designer."""
    teams = await org_teams(db, current_user.org_id)
    by_id = {t.id: t for t in teams}

    for item in bulk_data.teams:
        if item.id not in by_id:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Team {item.id} not found")

    for item in bulk_data.teams:
        team = by_id[item.id]
        changes = item.model_dump(exclude_unset=True, exclude={"id"})
        reject_nulls(Team, changes)
        if "parent_team_id" in changes:
            check_parent(team.id, changes["parent_team_id"], teams)
        for field, value in changes.items():
            setattr(team, field, value)

    await log_action(
        db, request, current_user, AuditAction.UPDATE,
        module="people.teams",
        entity_type="team",
        details={"bulk": len(bulk_data.teams)},
    )
    await db.commit()

    return SuccessResponse(message=f"Updated {len(bulk_data.teams)} teams")


@router.get("/chart", response_model=TeamChartResponse)
async def team_chart(
    auto: bool = Query(False, description="Ignore stored positions and compute a tree layout"),
    current_user: User = Depends(require_permission("people.teams", "view")),
    db: AsyncSession = Depends(get_db),
):
    """
    Org chart nodes and parent→child edges.

    Stored positions are returned unless none are set or ``auto`` is given,
    in which case positions come from the tree layout.
    """
    teams = await org_teams(db, current_user.org_id)
    ids = {t.id for t in teams}
    leads = await leads_for(db, teams)
    counts = await member_counts(db, current_user.org_id)

    use_layout = auto or needs_auto_layout(teams)
    positions = layout_teams(teams) if use_layout else {}

    nodes = []
    for t in teams:
        x, y = positions.get(t.id, (t.position_x or 0, t.position_y or 0))
        nodes.append(ChartNode(
            id=t.id,
            name=t.name,
            parent_team_id=t.parent_team_id,
            lead=person_ref(leads.get(t.lead_id)),
            member_count=counts.get(t.id, 0),
            position_x=x,
            position_y=y,
        ))
    edges = [
        ChartEdge(source=t.parent_team_id, target=t.id)
        for t in teams
        if t.parent_team_id in ids
    ]
    return TeamChartResponse(nodes=nodes, edges=edges, auto_layout=use_layout)


@router.get("/{team_id}", response_model=TeamResponse)
async def get_team(
    team_id: str,
    current_user: User = Depends(require_permission("people.teams", "view")),
    db: AsyncSession = Depends(get_db),
):
    teams = await org_teams(db, current_user.org_id)
    team = next((t for t in teams if t.id == team_id), None)
    if not team:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Team not found")
    return await build_response(db, team, teams)


@router.patch("/{team_id}", response_model=TeamResponse)
async def update_team(
    request: Request,
    team_id: str,
    team_data: TeamUpdate,
    current_user: User = Depends(require_permission("people.teams", "edit")),
    db: AsyncSession = Depends(get_db),
):
    teams = await org_teams(db, current_user.org_id)
    team = next((t for t in teams if t.id == team_id), None)
    if not team:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Team not found")

    update_data = team_data.model_dump(exclude_unset=True)
    reject_nulls(Team, update_data)

    if update_data.get("name") and await name_taken(db, current_user.org_id, update_data["name"], team.id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Team '{update_data['name']}' already exists",
        )
    if "parent_team_id" in update_data:
        check_parent(team.id, update_data["parent_team_id"], teams)
    if "lead_id" in update_data:
        await check_lead(db, current_user.org_id, update_data["lead_id"])

    for field, value in update_data.items():
        setattr(team, field, value)

    await log_action(
        db, request, current_user, AuditAction.UPDATE,
        module="people.teams",
        entity_type="team",
        entity_id=team.id,
        entity_name=team.name,
        details={"updated_fields": list(update_data.keys())},
    )
    await db.commit()

    return await build_response(db, team, teams)


@router.delete("/{team_id}", response_model=SuccessResponse)
async def delete_team(
    request: Request,
    team_id: str,
    current_user: User = Depends(require_permission("people.teams", "delete")),
    db: AsyncSession = Depends(get_db),
):
    """Delete a team; its children move up to its parent and its members lose the team.

    Teams that still own job roles are refused.
    """
    result = await db.execute(select(Team).where(Team.id == team_id, Team.org_id == current_user.org_id))
    team = result.scalar_one_or_none()
    if not team:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Team not found")

    result = await db.execute(select(func.count(JobRole.id)).where(JobRole.team_id == team.id))
    if result.scalar():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Team still owns job roles; move or delete them first",
        )

    team_name = team.name
    await db.execute(
        update(Team)
        .where(Team.org_id == current_user.org_id, Team.parent_team_id == team.id)
        .values(parent_team_id=team.parent_team_id)
    )
    await db.execute(
        update(Person)
        .where(Person.org_id == current_user.org_id, Person.team_id == team.id)
        .values(team_id=None)
    )
    await db.delete(team)

    await log_action(
        db, request, current_user, AuditAction.DELETE,
        module="people.teams",
        entity_type="team",
        entity_id=team_id,
        entity_name=team_name,
    )
    await db.commit()

    return SuccessResponse(message=f"Team '{team_name}' deleted")

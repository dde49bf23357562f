"""
People, team and people-settings schemas.
"""

from datetime import date, datetime
from typing import Optional, List

from pydantic import BaseModel, Field, EmailStr, field_validator

from idara.models.person import PersonStatus, PeopleSyncMode
from idara.schemas.common import PersonRef, person_ref


class PersonCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    role: Optional[str] = Field(None, max_length=255, description="Job title")
    job_role_id: Optional[str] = None
    team_id: Optional[str] = None
    manager_id: Optional[str] = None
    status: PersonStatus = PersonStatus.ONBOARDING
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    phone: Optional[str] = Field(None, max_length=50)
    location: Optional[str] = Field(None, max_length=255)
    avatar_url: Optional[str] = Field(None, max_length=500)
    bio: Optional[str] = None

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower().strip()


class PersonUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    role: Optional[str] = Field(None, max_length=255)
    job_role_id: Optional[str] = None
    team_id: Optional[str] = None
    manager_id: Optional[str] = None
    status: Optional[PersonStatus] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    phone: Optional[str] = Field(None, max_length=50)
    location: Optional[str] = Field(None, max_length=255)
    avatar_url: Optional[str] = Field(None, max_length=500)
    bio: Optional[str] = None

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: Optional[str]) -> Optional[str]:
        return v.lower().strip() if v else v


class TeamRef(BaseModel):
    id: str
    name: str


class PersonResponse(BaseModel):
    id: str
    slug: str
    name: str
    email: str
    role: Optional[str]
    job_role_id: Optional[str]
    team_id: Optional[str]
    team: Optional[TeamRef]
    manager_id: Optional[str]
    manager: Optional[PersonRef]
    status: str
    start_date: Optional[date]
    end_date: Optional[date]
    phone: Optional[str]
    location: Optional[str]
    avatar_url: Optional[str]
    bio: Optional[str]
    source: str
    entra_id: Optional[str]
    entra_group_name: Optional[str]
    last_synced_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime


def person_to_response(p, team=None, manager=None) -> PersonResponse:
    """``team`` / ``manager`` are passed in already loaded (or None)."""
    return PersonResponse(
        id=p.id,
        slug=p.slug,
        name=p.name,
        email=p.email,
        role=p.role,
        job_role_id=p.job_role_id,
        team_id=p.team_id,
        team=TeamRef(id=team.id, name=team.name) if team else None,
        manager_id=p.manager_id,
        manager=person_ref(manager),
        status=p.status.value,
        start_date=p.start_date,
        end_date=p.end_date,
        phone=p.phone,
        location=p.location,
        avatar_url=p.avatar_url,
        bio=p.bio,
        source=p.source.value,
        entra_id=p.entra_id,
        entra_group_name=p.entra_group_name,
        last_synced_at=p.last_synced_at,
        created_at=p.created_at,
        updated_at=p.updated_at,
    )


class PeopleSettingsUpdate(BaseModel):
    auto_onboarding_workflow: Optional[bool] = None
    default_onboarding_workflow_template_id: Optional[str] = None
    auto_offboarding_workflow: Optional[bool] = None
    default_offboarding_workflow_template_id: Optional[str] = None
    sync_mode: Optional[PeopleSyncMode] = None
    people_group_pattern: Optional[str] = Field(None, max_length=255, description="Entra group name, * as wildcard")
    auto_delete_on_removal: Optional[bool] = None
    default_status: Optional[PersonStatus] = None


class PeopleSettingsResponse(BaseModel):
    auto_onboarding_workflow: bool
    default_onboarding_workflow_template_id: Optional[str]
    auto_offboarding_workflow: bool
    default_offboarding_workflow_template_id: Optional[str]
    sync_mode: PeopleSyncMode
    people_group_pattern: Optional[str]
    auto_delete_on_removal: bool
    default_status: PersonStatus
    last_sync_at: Optional[datetime]
    synced_people_count: int
    last_sync_error: Optional[str]
    last_sync_error_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class PeopleSyncStats(BaseModel):
    groups: int = 0
    users_found: int = 0
    created: int = 0
    updated: int = 0
    deactivated: int = 0
    managers_linked: int = 0
    skipped: int = 0


class PeopleSyncResponse(BaseModel):
    success: bool
    message: str
    stats: PeopleSyncStats


# -----------------------------------------------------------------------------
# Teams
# -----------------------------------------------------------------------------

class TeamCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    lead_id: Optional[str] = None
    parent_team_id: Optional[str] = None
    sort_order: int = 0


class TeamUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    lead_id: Optional[str] = None
    parent_team_id: Optional[str] = None
    sort_order: Optional[int] = None
    position_x: Optional[int] = None
    position_y: Optional[int] = None


class TeamBulkItem(BaseModel):
    id: str
    parent_team_id: Optional[str] = None
    sort_order: Optional[int] = None
    position_x: Optional[int] = None
    position_y: Optional[int] = None


class TeamBulkUpdate(BaseModel):
    """Positions / parents / ordering from the chart designer."""
    teams: List[TeamBulkItem]


class TeamResponse(BaseModel):
    id: str
    name: str
    description: Optional[str]
    lead_id: Optional[str]
    lead: Optional[PersonRef]
    parent_team_id: Optional[str]
    parent: Optional[TeamRef]
    sort_order: int
    position_x: int
    position_y: int
    member_count: int = 0
    child_count: int = 0
    created_at: datetime
    updated_at: datetime


def team_to_response(t, lead=None, parent=None, member_count: int = 0, child_count: int = 0) -> TeamResponse:
    return TeamResponse(
        id=t.id,
        name=t.name,
        description=t.description,
        lead_id=t.lead_id,
        lead=person_ref(lead),
        parent_team_id=t.parent_team_id,
        parent=TeamRef(id=parent.id, name=parent.name) if parent else None,
        sort_order=t.sort_order or 0,
        position_x=t.position_x or 0,
        position_y=t.position_y or 0,
        member_count=member_count,
        child_count=child_count,
        created_at=t.created_at,
        updated_at=t.updated_at,
    )


class ChartNode(BaseModel):
    id: str
    name: str
    parent_team_id: Optional[str]
    lead: Optional[PersonRef]
    member_count: int
    position_x: int
    position_y: int


class ChartEdge(BaseModel):
    source: str
    target: str


class TeamChartResponse(BaseModel):
    nodes: List[ChartNode]
    edges: List[ChartEdge]
    auto_layout: bool


# -----------------------------------------------------------------------------
# Job levels and roles
# -----------------------------------------------------------------------------

class JobLevelCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    code: str = Field(..., min_length=1, max_length=10, description="Short code, e.g. L2")
    description: Optional[str] = None
    sort_order: Optional[int] = Field(None, ge=0, description="Defaults to the end of the list")


class JobLevelUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    code: Optional[str] = Field(None, min_length=1, max_length=10)
    description: Optional[str] = None
    sort_order: Optional[int] = Field(None, ge=0)


class JobLevelBulkItem(BaseModel):
    id: str
    sort_order: int = Field(..., ge=0)


class JobLevelBulkUpdate(BaseModel):
    updates: List[JobLevelBulkItem]


class JobLevelResponse(BaseModel):
    id: str
    name: str
    code: str
    description: Optional[str]
    sort_order: int
    role_count: int = 0
    created_at: datetime
    updated_at: datetime


def job_level_to_response(level, role_count: int = 0) -> JobLevelResponse:
    return JobLevelResponse(
        id=level.id,
        name=level.name,
        code=level.code,
        description=level.description,
        sort_order=level.sort_order or 0,
        role_count=role_count,
        created_at=level.created_at,
        updated_at=level.updated_at,
    )


class JobRoleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    team_id: str
    parent_role_id: Optional[str] = None
    level_id: Optional[str] = None
    level: Optional[int] = Field(None, ge=0, description="Chart depth; derived from the parent or level when omitted")
    sort_order: int = 0


class JobRoleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    team_id: Optional[str] = None
    parent_role_id: Optional[str] = None
    level_id: Optional[str] = None
    level: Optional[int] = Field(None, ge=0)
    sort_order: Optional[int] = None
    position_x: Optional[int] = None
    position_y: Optional[int] = None


class JobRoleBulkItem(BaseModel):
    id: str
    parent_role_id: Optional[str] = None
    level: Optional[int] = Field(None, ge=0)
    sort_order: Optional[int] = None
    position_x: Optional[int] = None
    position_y: Optional[int] = None


class JobRoleBulkUpdate(BaseModel):
    """Positions / parents / ordering from the role chart designer."""
    updates: List[JobRoleBulkItem]


class JobRoleRef(BaseModel):
    id: str
    name: str


class JobLevelRef(BaseModel):
    id: str
    name: str
    code: str


class JobRoleResponse(BaseModel):
    id: str
    name: str
    description: Optional[str]
    team: TeamRef
    parent_role_id: Optional[str]
    parent: Optional[JobRoleRef]
    level_id: Optional[str]
    job_level: Optional[JobLevelRef]
    level: int
    sort_order: int
    position_x: int
    position_y: int
    holder_count: int = 0
    child_count: int = 0
    created_at: datetime
    updated_at: datetime


def job_role_to_response(r, holder_count: int = 0, child_count: int = 0) -> JobRoleResponse:
    """Role must be loaded with ``team``, ``parent_role`` and ``job_level``."""
    parent = r.parent_role
    job_level = r.job_level
    return JobRoleResponse(
        id=r.id,
        name=r.name,
        description=r.description,
        team=TeamRef(id=r.team.id, name=r.team.name),
        parent_role_id=r.parent_role_id,
        parent=JobRoleRef(id=parent.id, name=parent.name) if parent else None,
        level_id=r.level_id,
        job_level=JobLevelRef(id=job_level.id, name=job_level.name, code=job_level.code) if job_level else None,
        level=r.level or 0,
        sort_order=r.sort_order or 0,
        position_x=r.position_x or 0,
        position_y=r.position_y or 0,
        holder_count=holder_count,
        child_count=child_count,
        created_at=r.created_at,
        updated_at=r.updated_at,
    )

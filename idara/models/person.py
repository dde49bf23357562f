"""
People / HR models: persons, teams, job levels and roles, and per-organization
people settings.

A Person is an HR record; a User is a login. The two are linked through
``users.person_id`` when an employee also has an account.
"""

from datetime import datetime, timezone, date
from enum import Enum as PyEnum
from typing import Optional, List
from sqlalchemy import (
    String, Boolean, DateTime, Date, ForeignKey, Enum, Text, Integer, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from idara.core.database import Base, generate_uuid


class PersonStatus(str, PyEnum):
    ACTIVE = "active"
    ONBOARDING = "onboarding"
    OFFBOARDING = "offboarding"
    INACTIVE = "inactive"


class PersonSource(str, PyEnum):
    MANUAL = "manual"
    SYNC = "sync"


class PeopleSyncMode(str, PyEnum):
    LINKED = "linked"  # people follow the Entra directory sync
    INDEPENDENT = "independent"  # people sync from their own Entra groups


class Team(Base):
    """Team/department, arranged as a tree through ``parent_team_id``."""

    __tablename__ = "teams"
    __table_args__ = (UniqueConstraint("org_id", "name", name="uq_teams_org_name"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    org_id: Mapped[str] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    lead_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("persons.id", ondelete="SET NULL", use_alter=True, name="fk_teams_lead_id"),
        nullable=True,
    )
    parent_team_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("teams.id", ondelete="SET NULL"), nullable=True, index=True
    )

    # Chart designer layout
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    position_x: Mapped[int] = mapped_column(Integer, default=0)
    position_y: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    lead: Mapped[Optional["Person"]] = relationship("Person", foreign_keys=[lead_id])
    parent_team: Mapped[Optional["Team"]] = relationship("Team", remote_side=[id])

    def __repr__(self) -> str:
        return f"<Team {self.name}>"


class JobLevel(Base):
    """Seniority band (L0 Executive, L1 Director...). Lower sort_order sits higher in the chart."""

    __tablename__ = "job_levels"
    __table_args__ = (UniqueConstraint("org_id", "code", name="uq_job_levels_org_code"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    org_id: Mapped[str] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    code: Mapped[str] = mapped_column(String(10), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self) -> str:
        return f"<JobLevel {self.code}>"


class JobRole(Base):
    """Position in the role hierarchy, owned by a team. People hold it through ``persons.job_role_id``."""

    __tablename__ = "job_roles"
    __table_args__ = (UniqueConstraint("org_id", "name", name="uq_job_roles_org_name"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    org_id: Mapped[str] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    team_id: Mapped[str] = mapped_column(
        ForeignKey("teams.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    parent_role_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("job_roles.id", ondelete="SET NULL"), nullable=True, index=True
    )
    level_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("job_levels.id", ondelete="SET NULL"), nullable=True, index=True
    )
    # Depth in the chart; follows the level's sort_order when a level is set
    level: Mapped[int] = mapped_column(Integer, default=0)

    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    position_x: Mapped[int] = mapped_column(Integer, default=0)
    position_y: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    team: Mapped["Team"] = relationship("Team")
    parent_role: Mapped[Optional["JobRole"]] = relationship("JobRole", remote_side=[id])
    job_level: Mapped[Optional["JobLevel"]] = relationship("JobLevel")

    def __repr__(self) -> str:
        return f"<JobRole {self.name}>"


class Person(Base):
    """Employee / contractor record."""

    __tablename__ = "persons"
    __table_args__ = (
        UniqueConstraint("org_id", "slug", name="uq_persons_org_slug"),
        UniqueConstraint("org_id", "email", name="uq_persons_org_email"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    org_id: Mapped[str] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    slug: Mapped[str] = mapped_column(String(150), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    # Job
    role: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)  # job title
    job_role_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("job_roles.id", ondelete="SET NULL"), nullable=True, index=True
    )
    team_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("teams.id", ondelete="SET NULL"), nullable=True, index=True
    )
    manager_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("persons.id", ondelete="SET NULL"), nullable=True
    )
    status: Mapped[PersonStatus] = mapped_column(Enum(PersonStatus), default=PersonStatus.ONBOARDING)
    start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Contact / profile
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    bio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Provenance
    source: Mapped[PersonSource] = mapped_column(Enum(PersonSource), default=PersonSource.MANUAL)
    entra_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    entra_group_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    team: Mapped[Optional["Team"]] = relationship("Team", foreign_keys=[team_id])
    job_role: Mapped[Optional["JobRole"]] = relationship("JobRole", foreign_keys=[job_role_id])
    manager: Mapped[Optional["Person"]] = relationship("Person", remote_side=[id])

    def __repr__(self) -> str:
        return f"<Person {self.email}>"


class PeopleSettings(Base):
    """Per-organization people module settings (one row per org)."""

    __tablename__ = "people_settings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    org_id: Mapped[str] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), unique=True, nullable=False
    )

    auto_onboarding_workflow: Mapped[bool] = mapped_column(Boolean, default=False)
    default_onboarding_workflow_template_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("workflow_templates.id", ondelete="SET NULL"), nullable=True
    )
    auto_offboarding_workflow: Mapped[bool] = mapped_column(Boolean, default=False)
    default_offboarding_workflow_template_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("workflow_templates.id", ondelete="SET NULL"), nullable=True
    )

    # Entra people sync
    sync_mode: Mapped[PeopleSyncMode] = mapped_column(Enum(PeopleSyncMode), default=PeopleSyncMode.LINKED)
    people_group_pattern: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    auto_delete_on_removal: Mapped[bool] = mapped_column(Boolean, default=False)
    default_status: Mapped[PersonStatus] = mapped_column(Enum(PersonStatus), default=PersonStatus.ACTIVE)
    last_sync_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    synced_people_count: Mapped[int] = mapped_column(Integer, default=0)
    last_sync_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_sync_error_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

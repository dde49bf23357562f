"""
Entra ID directory sync into the people directory.

Two runs share one reconciliation pass:

- ``run_directory_sync``: the Entra integration's user sync, covering every
  enabled directory user (people settings in ``linked`` mode follow it)
- ``run_people_sync``: the independent people sync, covering members of the
  Entra groups whose name matches the people group pattern

Graph is read completely (users, then each user's manager) before anything is
written, so a failed Graph call leaves the directory untouched. Each user
with an email becomes a person with source ``sync``; managers are linked in a
second pass once every person exists. With ``auto_delete_on_removal``,
Entra-synced people who are no longer reported are marked inactive.

Only people records are written. Login accounts are never provisioned here.
"""

import logging
import re
from datetime import datetime, timezone, date
from typing import Optional, Any

from fastapi import Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from idara.auth.audit import log_action
from idara.auth.azure_ad import get_entra_integration
from idara.core.security import decrypt_secret
from idara.core.utils import slugify, unique_slug
from idara.models.audit import AuditAction
from idara.models.organization import Integration, IntegrationStatus
from idara.models.person import Person, PersonSource, PersonStatus, Team, PeopleSettings, PeopleSyncMode
from idara.models.user import User
from idara.schemas.organization import DirectoryUser
from idara.schemas.person import PeopleSyncStats, PeopleSyncResponse
from idara.services import graph
from idara.services.graph import GraphAPIError
from idara.services.intune_sync import parse_graph_datetime

logger = logging.getLogger(__name__)

DEFAULT_JOB_TITLE = "Employee"
USER_SEARCH_LIMIT = 50


class DirectorySyncError(Exception):
    """The organization is not set up for this sync."""


async def get_people_settings(db: AsyncSession, org_id: str) -> PeopleSettings:
    """The org's people settings row, created with defaults on first use."""
    result = await db.execute(select(PeopleSettings).where(PeopleSettings.org_id == org_id))
    settings = result.scalar_one_or_none()
    if settings is None:
        settings = PeopleSettings(org_id=org_id)
        db.add(settings)
        await db.flush()
    return settings


def pattern_regex(pattern: str) -> re.Pattern:
    """
    Case-insensitive full match for a group name pattern with ``*`` wildcards.

    Example:
        pattern_regex("Staff-*").match("staff-london") -> match
    """
    parts = (re.escape(part) for part in pattern.split("*"))
    return re.compile("^" + ".*".join(parts) + "$", re.IGNORECASE)


def pattern_prefix(pattern: str) -> Optional[str]:
    """Literal text before the first wildcard, used to narrow the Graph query."""
    prefix = pattern.split("*", 1)[0]
    return prefix or None


def member_email(member: dict[str, Any]) -> str:
    return (member.get("mail") or member.get("userPrincipalName") or "").strip().lower()


def graph_date(value: Optional[str]) -> Optional[date]:
    parsed = parse_graph_datetime(value)
    return parsed.date() if parsed else None


async def entra_token(db: AsyncSession, org_id: str) -> tuple[Integration, str]:
    """
    Connected Entra integration and an application token for it.

    Raises:
        DirectorySyncError: integration missing, disconnected or incomplete
        GraphAPIError: token request failed
    """
    integration = await get_entra_integration(db, org_id)
    if integration is None or integration.status == IntegrationStatus.DISCONNECTED:
        raise DirectorySyncError("Microsoft Entra ID is not connected")
    if not integration.has_credentials:
        raise DirectorySyncError("Entra ID configuration is incomplete")
    try:
        client_secret = decrypt_secret(integration.client_secret_encrypted)
    except ValueError as e:
        raise DirectorySyncError("Entra ID configuration is incomplete") from e

    token = await graph.get_app_token(integration.tenant_id, integration.client_id, client_secret)
    return integration, token


async def fetch_managers(token: str, members: list[dict[str, Any]]) -> dict[str, dict[str, Any]]:
    """Manager of each member keyed by the member's directory id; members without one are left out."""
    managers = {}
    for member in members:
        manager = await graph.get_manager(token, member["id"])
        if manager:
            managers[member["id"]] = manager
    return managers


class PeopleSync:
    """State for one reconciliation pass over an organization's people."""

    def __init__(self, db: AsyncSession, org_id: str, settings: PeopleSettings):
        self.db = db
        self.org_id = org_id
        self.settings = settings
        self.stats = PeopleSyncStats()
        self.now = datetime.now(timezone.utc)
        self.by_email: dict[str, Person] = {}
        self.by_entra_id: dict[str, Person] = {}
        self.team_ids: dict[str, str] = {}
        self.seen: set[str] = set()

    async def load(self) -> None:
        result = await self.db.execute(select(Person).where(Person.org_id == self.org_id))
        for person in result.scalars().all():
            self.by_email[person.email.lower()] = person
            if person.entra_id:
                self.by_entra_id[person.entra_id] = person

        result = await self.db.execute(select(Team.id, Team.name).where(Team.org_id == self.org_id))
        self.team_ids = {name.lower(): team_id for team_id, name in result.all()}

    def person_fields(self, member: dict[str, Any], group_name: Optional[str]) -> dict[str, Any]:
        fields = {
            "name": member.get("displayName") or member_email(member).split("@")[0],
            "role": member.get("jobTitle") or DEFAULT_JOB_TITLE,
            "location": member.get("officeLocation") or None,
            "phone": member.get("mobilePhone") or None,
            "end_date": graph_date(member.get("employeeLeaveDateTime")),
            "source": PersonSource.SYNC,
            "entra_id": member["id"],
            "entra_group_name": group_name,
            "last_synced_at": self.now,
        }
        hired = graph_date(member.get("employeeHireDate"))
        if hired:
            fields["start_date"] = hired
        team_id = self.team_ids.get((member.get("department") or "").strip().lower())
        if team_id:
            fields["team_id"] = team_id
        return fields

    async def upsert(self, member: dict[str, Any], group_name: Optional[str] = None) -> None:
        email = member_email(member)
        if not email:
            self.stats.skipped += 1
            return

        fields = self.person_fields(member, group_name)
        person = self.by_entra_id.get(member["id"]) or self.by_email.get(email)
        if person is None:
            person = Person(
                org_id=self.org_id,
                slug=await unique_slug(self.db, Person, self.org_id, slugify(fields["name"])),
                email=email,
                status=self.settings.default_status or PersonStatus.ACTIVE,
                start_date=fields.pop("start_date", None) or date.today(),
                **fields,
            )
            self.db.add(person)
            await self.db.flush()
            self.stats.created += 1
            logger.info("Created person %s from Entra ID", email)
        else:
            for key, value in fields.items():
                setattr(person, key, value)
            if person.status == PersonStatus.INACTIVE:
                # Back in the directory after an earlier removal
                person.status = self.settings.default_status or PersonStatus.ACTIVE
            self.stats.updated += 1

        self.by_email[email] = person
        self.by_entra_id[member["id"]] = person
        self.seen.add(person.id)

    def link_managers(self, managers: dict[str, dict[str, Any]]) -> None:
        """Second pass: point each synced person at their manager. Nobody manages themselves."""
        for entra_id, manager in managers.items():
            person = self.by_entra_id.get(entra_id)
            if person is None:
                continue
            target = self.by_entra_id.get(manager.get("id")) or self.by_email.get(member_email(manager))
            if target is None or target.id == person.id:
                continue
            if person.manager_id != target.id:
                person.manager_id = target.id
                self.stats.managers_linked += 1

    def deactivate_missing(self) -> None:
        for person in self.by_entra_id.values():
            if person.id in self.seen or person.source != PersonSource.SYNC:
                continue
            if person.status != PersonStatus.INACTIVE:
                person.status = PersonStatus.INACTIVE
                self.stats.deactivated += 1

    async def apply(self, members: list[tuple[dict[str, Any], Optional[str]]], managers: dict) -> None:
        await self.load()
        for member, group_name in members:
            await self.upsert(member, group_name)
        self.link_managers(managers)
        if self.settings.auto_delete_on_removal:
            self.deactivate_missing()


async def _record_failure(
    db: AsyncSession,
    request: Optional[Request],
    user: Optional[User],
    org_id: str,
    module: str,
    entity_name: str,
    message: str,
) -> None:
    await log_action(
        db, request, user, AuditAction.SYNC,
        module=module,
        entity_type="integration",
        entity_name=entity_name,
        org_id=org_id,
        success=False,
        error_message=message,
    )
    await db.commit()
    logger.warning("%s failed for org %s: %s", entity_name, org_id, message)


async def run_directory_sync(
    db: AsyncSession,
    org_id: str,
    user: Optional[User],
    request: Optional[Request] = None,
) -> PeopleSyncResponse:
    """
    Sync every enabled directory user into the people directory and commit.

    Raises:
        DirectorySyncError: integration missing, disconnected, incomplete or user sync disabled
        GraphAPIError: a Graph call failed (error stored on the integration and committed)
    """
    integration = await get_entra_integration(db, org_id)
    if integration is not None and not integration.sync_users_enabled:
        raise DirectorySyncError("User sync is not enabled")
    settings = await get_people_settings(db, org_id)

    try:
        integration, token = await entra_token(db, org_id)
        users = await graph.list_users(token)
        managers = await fetch_managers(token, users)
    except GraphAPIError as e:
        if integration is not None:
            integration.last_error = e.message
            integration.last_error_at = datetime.now(timezone.utc)
        await _record_failure(db, request, user, org_id, "settings.integrations", "Entra directory sync", e.message)
        raise

    run = PeopleSync(db, org_id, settings)
    run.stats.users_found = len(users)
    await run.apply([(u, None) for u in users], managers)

    stats = run.stats
    synced_count = stats.created + stats.updated
    integration.last_user_sync_at = run.now
    integration.synced_user_count = synced_count
    integration.last_error = None
    integration.last_error_at = None
    if settings.sync_mode == PeopleSyncMode.LINKED:
        settings.last_sync_at = run.now
        settings.synced_people_count = synced_count

    await log_action(
        db, request, user, AuditAction.SYNC,
        module="settings.integrations",
        entity_type="integration",
        entity_id=integration.id,
        entity_name="Entra directory sync",
        details=stats.model_dump(),
        org_id=org_id,
    )
    await db.commit()

    message = f"Synced {synced_count} people from Entra ID ({stats.created} created, {stats.updated} updated)"
    logger.info("Entra directory sync for org %s: %s", org_id, message)
    return PeopleSyncResponse(success=True, message=message, stats=stats)


async def run_people_sync(
    db: AsyncSession,
    org_id: str,
    user: Optional[User],
    request: Optional[Request] = None,
) -> PeopleSyncResponse:
    """
    Sync members of the Entra groups matching the people group pattern and commit.

    A member of several matching groups is synced once, under the first group.

    Raises:
        DirectorySyncError: Entra not connected, linked mode, or no group pattern
        GraphAPIError: a Graph call failed (error stored on the people settings and committed)
    """
    settings = await get_people_settings(db, org_id)
    integration = await get_entra_integration(db, org_id)
    if integration is None or integration.status == IntegrationStatus.DISCONNECTED:
        raise DirectorySyncError("Microsoft Entra ID is not connected")
    if settings.sync_mode == PeopleSyncMode.LINKED:
        raise DirectorySyncError("People sync follows the Entra directory sync in linked mode")
    pattern = (settings.people_group_pattern or "").strip()
    if not pattern:
        raise DirectorySyncError("No people group pattern is configured")

    matcher = pattern_regex(pattern)
    try:
        integration, token = await entra_token(db, org_id)
        groups = [
            g for g in await graph.list_groups(token, pattern_prefix(pattern))
            if matcher.match(g.get("displayName") or "")
        ]
        members: dict[str, tuple[dict[str, Any], Optional[str]]] = {}
        for group in groups:
            for member in await graph.list_group_members(token, group["id"]):
                members.setdefault(member["id"], (member, group.get("displayName")))
        managers = await fetch_managers(token, [m for m, _ in members.values()])
    except GraphAPIError as e:
        settings.last_sync_error = e.message
        settings.last_sync_error_at = datetime.now(timezone.utc)
        await _record_failure(db, request, user, org_id, "people.settings", "Entra people sync", e.message)
        raise

    run = PeopleSync(db, org_id, settings)
    run.stats.groups = len(groups)
    run.stats.users_found = len(members)
    await run.apply(list(members.values()), managers)

    stats = run.stats
    settings.last_sync_at = run.now
    settings.synced_people_count = stats.created + stats.updated
    settings.last_sync_error = None
    settings.last_sync_error_at = None

    await log_action(
        db, request, user, AuditAction.SYNC,
        module="people.settings",
        entity_type="people_settings",
        entity_id=settings.id,
        entity_name="Entra people sync",
        details={"pattern": pattern, **stats.model_dump()},
        org_id=org_id,
    )
    await db.commit()

    message = f"Synced {settings.synced_people_count} people from {stats.groups} Entra groups"
    logger.info("Entra people sync for org %s: %s", org_id, message)
    return PeopleSyncResponse(success=True, message=message, stats=stats)


async def search_directory_users(db: AsyncSession, org_id: str, search: Optional[str]) -> list[DirectoryUser]:
    """Directory users matching ``search`` that do not have a login in the organization yet."""
    _, token = await entra_token(db, org_id)
    users = await graph.list_users(token, search=search, top=USER_SEARCH_LIMIT)

    result = await db.execute(select(User.email).where(User.org_id == org_id))
    taken = {email.lower() for email in result.scalars().all()}

    found = []
    for u in users:
        email = member_email(u)
        if not email or email in taken:
            continue
        found.append(DirectoryUser(
            id=u["id"],
            name=u.get("displayName") or email,
            email=email,
            first_name=u.get("givenName"),
            last_name=u.get("surname"),
            job_title=u.get("jobTitle"),
            department=u.get("department"),
        ))
    return found

"""
Intune device sync.

Reconciles the organization's assets against the managed-device list from
Microsoft Graph:

1. Validate the Entra integration and decrypt its client secret
2. Fetch every managed device matching the configured OS/compliance filters
3. Create, update or restore one asset per device and keep its assignment in
   step with the device's primary user
4. Optionally soft-delete intune assets whose device disappeared
5. Record stats on the settings and integration rows and write an audit entry

Running the sync twice against an unchanged device list changes nothing the
second time: fields are compared before they are written and
``intune_last_sync_at`` mirrors the device's own ``lastSyncDateTime``.
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
from idara.models.asset import (
    Asset,
    AssetAssignment,
    AssetCategory,
    AssetLifecycleEvent,
    AssetSettings,
    AssetSource,
    AssetStatus,
    LifecycleEventType,
)
from idara.models.audit import AuditAction
from idara.models.organization import IntegrationStatus
from idara.models.person import Person, PersonSource, PersonStatus
from idara.models.user import User
from idara.schemas.asset import SyncSettings, SyncStats, SyncResponse
from idara.services import graph
from idara.services.graph import GraphAPIError

logger = logging.getLogger(__name__)

SYNC_SOURCE = "intune_sync"
MAX_UNMATCHED_EMAILS = 20
MAX_ERRORS = 10
MAX_STORED_ERRORS = 5

_FRACTION = re.compile(r"\.(\d{6})\d+")


class SyncConfigurationError(Exception):
    """The organization is not set up for device sync."""


async def get_asset_settings(db: AsyncSession, org_id: str) -> AssetSettings:
    """The org's asset settings row, created with defaults on first use."""
    result = await db.execute(select(AssetSettings).where(AssetSettings.org_id == org_id))
    settings = result.scalar_one_or_none()
    if settings is None:
        settings = AssetSettings(org_id=org_id, sync_settings=SyncSettings().model_dump())
        db.add(settings)
        await db.flush()
    return settings


def parse_graph_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a Graph timestamp.

    Graph uses seven fractional digits and reports unknown dates as
    ``0001-01-01T00:00:00Z``; the latter maps to None.
    """
    if not value:
        return None
    value = _FRACTION.sub(r".\1", value.replace("Z", "+00:00"))
    parsed = datetime.fromisoformat(value)
    if parsed.year <= 1:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def device_tag(device_id: str) -> str:
    return f"INT-{device_id[:8].upper()}"


def _same_instant(a: Optional[datetime], b: Optional[datetime]) -> bool:
    if a is None or b is None:
        return a is b
    if a.tzinfo is None:
        a = a.replace(tzinfo=timezone.utc)
    if b.tzinfo is None:
        b = b.replace(tzinfo=timezone.utc)
    return a == b


def device_fields(device: dict[str, Any], category_id: Optional[str]) -> dict[str, Any]:
    """Asset column values derived from one managed device."""
    short_id = device["id"][:8].upper()
    enrolled = parse_graph_datetime(device.get("enrolledDateTime"))
    return {
        "name": device.get("deviceName") or f"Device {short_id}",
        "serial_number": device.get("serialNumber") or None,
        "manufacturer": device.get("manufacturer") or None,
        "model": device.get("model") or None,
        "category_id": category_id,
        "status": AssetStatus.ASSIGNED,
        "purchase_date": enrolled.date() if enrolled else None,
        "source": AssetSource.INTUNE_SYNC,
        "intune_compliance_state": device.get("complianceState") or None,
        "intune_enrollment_type": device.get("deviceEnrollmentType") or None,
        "intune_last_sync_at": parse_graph_datetime(device.get("lastSyncDateTime")),
        "sync_enabled": True,
        "custom_fields": {
            "operating_system": device.get("operatingSystem"),
            "os_version": device.get("osVersion"),
            "owner_type": device.get("managedDeviceOwnerType"),
        },
    }


def apply_changes(asset: Asset, fields: dict[str, Any]) -> bool:
    """Write only the fields that differ. Returns True when anything changed."""
    changed = False
    for key, value in fields.items():
        current = getattr(asset, key)
        if isinstance(value, datetime) or isinstance(current, datetime):
            if _same_instant(current, value):
                continue
        elif current == value:
            continue
        setattr(asset, key, value)
        changed = True
    return changed


class DeviceSync:
    """State for one sync run over an organization."""

    def __init__(self, db: AsyncSession, org_id: str, user: Optional[User], sync_settings: SyncSettings):
        self.db = db
        self.org_id = org_id
        self.user = user
        self.settings = sync_settings
        self.stats = SyncStats()
        self.now = datetime.now(timezone.utc)
        self.people: dict[str, Person] = {}
        self.assets: dict[str, Asset] = {}
        self.open_assignments: dict[str, AssetAssignment] = {}
        self.taken_tags: set[str] = set()
        self.category_by_os: dict[str, str] = {}
        self.default_category_id: Optional[str] = None
        self.unmatched: list[str] = []
        self.errors: list[str] = []

    async def load(self) -> None:
        db, org_id = self.db, self.org_id

        result = await db.execute(select(Person).where(Person.org_id == org_id))
        self.people = {p.email.lower(): p for p in result.scalars().all()}

        result = await db.execute(select(Asset).where(Asset.org_id == org_id))
        for asset in result.scalars().all():
            self.taken_tags.add(asset.asset_tag)
            if asset.intune_device_id:
                self.assets[asset.intune_device_id] = asset

        result = await db.execute(
            select(AssetAssignment).where(
                AssetAssignment.org_id == org_id,
                AssetAssignment.returned_at.is_(None),
            )
        )
        self.open_assignments = {a.asset_id: a for a in result.scalars().all()}

        result = await db.execute(select(AssetCategory.id).where(AssetCategory.org_id == org_id))
        category_ids = set(result.scalars().all())
        mapping = self.settings.category_mapping
        self.category_by_os = {
            rule.device_type.lower(): rule.category_id
            for rule in mapping.mappings
            if rule.category_id in category_ids
        }
        if mapping.default_category_id in category_ids:
            self.default_category_id = mapping.default_category_id

    def _event(self, asset: Asset, event_type: LifecycleEventType, details: dict, event_date=None) -> None:
        self.db.add(AssetLifecycleEvent(
            org_id=self.org_id,
            asset_id=asset.id,
            event_type=event_type,
            event_date=event_date or self.now,
            details=details,
            performed_by_id=self.user.id if self.user else None,
        ))

    def _open_assignment(self, asset: Asset, person: Person, assigned_at: datetime) -> None:
        assignment = AssetAssignment(
            org_id=self.org_id,
            asset_id=asset.id,
            person_id=person.id,
            assigned_at=assigned_at,
            assigned_by_id=self.user.id if self.user else None,
            notes="Assigned via Intune sync",
        )
        self.db.add(assignment)
        self.open_assignments[asset.id] = assignment
        self._event(asset, LifecycleEventType.ASSIGNED, {
            "source": SYNC_SOURCE,
            "personId": person.id,
            "personName": person.name,
            "personEmail": person.email,
        })
        self.stats.assigned += 1

    def _close_assignment(self, asset: Asset) -> None:
        assignment = self.open_assignments.pop(asset.id, None)
        if assignment is None:
            return
        assignment.returned_at = self.now
        self._event(asset, LifecycleEventType.RETURNED, {
            "source": SYNC_SOURCE,
            "personId": assignment.person_id,
        })

    async def _resolve_person(self, device: dict[str, Any]) -> Optional[Person]:
        email = (device.get("userPrincipalName") or "").strip().lower()
        if not email:
            return None
        person = self.people.get(email)
        if person is not None:
            return person

        if not self.settings.sync_behavior.auto_create_people:
            if email not in self.unmatched:
                self.unmatched.append(email)
            return None

        local_part = email.split("@")[0]
        person = Person(
            org_id=self.org_id,
            slug=await unique_slug(self.db, Person, self.org_id, slugify(local_part)),
            name=device.get("userDisplayName") or local_part,
            email=email,
            status=PersonStatus.ACTIVE,
            source=PersonSource.SYNC,
            start_date=date.today(),
        )
        self.db.add(person)
        await self.db.flush()
        self.people[email] = person
        logger.info("Created person %s from Intune device owner", email)
        return person

    async def sync_device(self, device: dict[str, Any]) -> None:
        device_id = device["id"]
        os_name = (device.get("operatingSystem") or "").lower()
        category_id = self.category_by_os.get(os_name, self.default_category_id)
        fields = device_fields(device, category_id)
        assigned_at = parse_graph_datetime(device.get("enrolledDateTime")) or self.now

        existing = self.assets.get(device_id)
        if existing is None and self.settings.sync_behavior.update_existing_only:
            self.stats.skipped += 1
            return

        person = await self._resolve_person(device)
        person_id = person.id if person else None

        if existing is not None:
            changed = apply_changes(existing, fields)
            if existing.deleted_at is not None:
                existing.deleted_at = None
                changed = True

            if existing.assigned_to_id != person_id:
                self._close_assignment(existing)
                existing.assigned_to_id = person_id
                existing.assigned_at = assigned_at if person else None
                if person:
                    self._open_assignment(existing, person, assigned_at)
                changed = True

            if changed:
                self.stats.updated += 1
            else:
                self.stats.unchanged += 1
            return

        tag = device_tag(device_id)
        if tag in self.taken_tags:
            raise ValueError(f"Asset tag {tag} is already in use")

        asset = Asset(
            org_id=self.org_id,
            asset_tag=tag,
            intune_device_id=device_id,
            assigned_to_id=person_id,
            assigned_at=assigned_at if person else None,
            **fields,
        )
        self.db.add(asset)
        await self.db.flush()
        self.assets[device_id] = asset
        self.taken_tags.add(tag)

        event_date = datetime.combine(fields["purchase_date"], datetime.min.time(), timezone.utc) \
            if fields["purchase_date"] else self.now
        self._event(asset, LifecycleEventType.ACQUIRED, {"source": SYNC_SOURCE}, event_date)
        if person:
            self._open_assignment(asset, person, assigned_at)
        self.stats.created += 1

    def remove_orphans(self, seen: set[str]) -> None:
        """Soft-delete intune assets whose device is no longer reported."""
        for device_id, asset in self.assets.items():
            if device_id in seen or asset.deleted_at is not None:
                continue
            if asset.source != AssetSource.INTUNE_SYNC:
                continue
            self._close_assignment(asset)
            asset.assigned_to_id = None
            asset.assigned_at = None
            asset.deleted_at = self.now
            self.stats.deleted += 1


async def run_device_sync(
    db: AsyncSession,
    org_id: str,
    user: Optional[User],
    request: Optional[Request] = None,
) -> SyncResponse:
    """
    Run an Intune sync for one organization and commit the result.

    Raises:
        SyncConfigurationError: integration missing, disabled or incomplete
        GraphAPIError: token or device fetch failed (error stored and committed)
    """
    integration = await get_entra_integration(db, org_id)
    if integration is None or integration.status == IntegrationStatus.DISCONNECTED:
        raise SyncConfigurationError("Microsoft Entra ID is not connected")
    if not integration.sync_devices_enabled:
        raise SyncConfigurationError("Device sync is not enabled")
    if not integration.has_credentials:
        raise SyncConfigurationError("Entra ID configuration is incomplete")
    try:
        client_secret = decrypt_secret(integration.client_secret_encrypted)
    except ValueError as e:
        raise SyncConfigurationError("Entra ID configuration is incomplete") from e

    settings = await get_asset_settings(db, org_id)
    sync_settings = SyncSettings.model_validate(settings.sync_settings or {})
    filters = sync_settings.device_filters

    try:
        token = await graph.get_app_token(integration.tenant_id, integration.client_id, client_secret)
        devices = await graph.list_managed_devices(
            token,
            os_filter=filters.os_filter or None,
            compliance_filter=filters.compliance_filter or None,
        )
    except GraphAPIError as e:
        now = datetime.now(timezone.utc)
        settings.last_sync_error = e.message
        settings.last_sync_error_at = now
        integration.last_error = e.message
        integration.last_error_at = now
        await log_action(
            db, request, user, AuditAction.SYNC,
            module="assets.settings",
            entity_type="integration",
            entity_id=integration.id,
            entity_name="Intune device sync",
            org_id=org_id,
            success=False,
            error_message=e.message,
        )
        await db.commit()
        logger.warning("Intune sync failed for org %s: %s", org_id, e.message)
        raise

    run = DeviceSync(db, org_id, user, sync_settings)
    await run.load()
    run.stats.devices_found = len(devices)

    seen: set[str] = set()
    for device in devices:
        device_id = device.get("id")
        if not device_id:
            run.stats.skipped += 1
            continue
        seen.add(device_id)
        try:
            await run.sync_device(device)
        except (ValueError, KeyError, TypeError) as e:
            name = device.get("deviceName") or device_id
            run.errors.append(f"{name}: {e}")
            logger.warning("Intune sync: device %s failed: %s", device_id, e)

    if sync_settings.sync_behavior.auto_delete_on_removal or integration.delete_assets_on_device_delete:
        run.remove_orphans(seen)

    stats = run.stats
    stats.unmatched_emails = run.unmatched[:MAX_UNMATCHED_EMAILS]
    stats.errors = run.errors[:MAX_ERRORS]
    synced_count = stats.created + stats.updated + stats.unchanged

    now = datetime.now(timezone.utc)
    settings.last_sync_at = now
    settings.synced_asset_count = synced_count
    integration.last_device_sync_at = now
    integration.synced_device_count = synced_count
    if run.errors:
        settings.last_sync_error = "; ".join(run.errors[:MAX_STORED_ERRORS])
        settings.last_sync_error_at = now
    else:
        settings.last_sync_error = None
        settings.last_sync_error_at = None
        integration.last_error = None
        integration.last_error_at = None

    await log_action(
        db, request, user, AuditAction.SYNC,
        module="assets.settings",
        entity_type="integration",
        entity_id=integration.id,
        entity_name="Intune device sync",
        details=stats.model_dump(),
        org_id=org_id,
    )
    await db.commit()

    if run.errors:
        message = f"Sync completed with {len(run.errors)} errors"
    else:
        message = f"Synced {synced_count} devices from Intune ({stats.assigned} assigned to people)"
    logger.info("Intune sync for org %s: %s", org_id, message)

    return SyncResponse(
        success=not run.errors,
        message=message,
        synced_count=synced_count,
        stats=stats,
    )

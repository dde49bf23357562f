"""
Asset management endpoints.

Provides:
- Inventory CRUD (soft delete) with generated asset tags
- Assign / return with assignment history
- Lifecycle event log
- Maintenance records
- Asset settings and Intune device sync
"""

import logging
from datetime import datetime, timezone, time, date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status, Request, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.orm import selectinload

from idara.core.database import get_db
from idara.core.utils import fetch_page, apply_search_filter, split_csv, reject_nulls
from idara.models.asset import (
    Asset,
    AssetCategory,
    AssetAssignment,
    AssetMaintenance,
    AssetSettings,
    AssetLifecycleEvent,
    AssetStatus,
    AssetSource,
    MaintenanceStatus,
    LifecycleEventType,
)
from idara.models.person import Person
from idara.models.user import User
from idara.models.audit import AuditAction
from idara.auth.dependencies import require_permission
from idara.auth.audit import log_action
from idara.services import graph
from idara.services.intune_sync import get_asset_settings, run_device_sync, SyncConfigurationError
from idara.services.workflow_engine import WorkflowEvent, process_event
from idara.schemas.asset import (
    AssetCreate,
    AssetUpdate,
    AssetResponse,
    AssignRequest,
    ReturnRequest,
    AssignmentResponse,
    LifecycleEventResponse,
    MaintenanceCreate,
    MaintenanceUpdate,
    MaintenanceResponse,
    AssetSettingsUpdate,
    AssetSettingsResponse,
    SyncResponse,
    asset_to_response,
    assignment_to_response,
    maintenance_to_response,
    asset_settings_to_response,
)
from idara.schemas.common import PaginatedResponse, SuccessResponse

logger = logging.getLogger(__name__)

router = APIRouter()

TERMINAL_EVENTS = {
    AssetStatus.RETIRED: LifecycleEventType.RETIRED,
    AssetStatus.DISPOSED: LifecycleEventType.DISPOSED,
}


def at_start_of_day(value: Optional[date]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def record_event(
    db: AsyncSession,
    asset: Asset,
    event_type: LifecycleEventType,
    user: Optional[User],
    details: Optional[dict] = None,
    event_date: Optional[datetime] = None,
) -> None:
    db.add(AssetLifecycleEvent(
        org_id=asset.org_id,
        asset_id=asset.id,
        event_type=event_type,
        event_date=event_date or datetime.now(timezone.utc),
        details=details,
        performed_by_id=user.id if user else None,
    ))


async def load_asset(db: AsyncSession, asset_id: str, org_id: str) -> Asset:
    """A live (not soft-deleted) asset with category and assignee loaded."""
    result = await db.execute(
        select(Asset)
        .where(Asset.id == asset_id, Asset.org_id == org_id, Asset.deleted_at.is_(None))
        .options(selectinload(Asset.category), selectinload(Asset.assigned_to))
        .execution_options(populate_existing=True)
    )
    asset = result.scalar_one_or_none()
    if not asset:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Asset not found")
    return asset


async def open_assignment(db: AsyncSession, asset_id: str) -> Optional[AssetAssignment]:
    result = await db.execute(
        select(AssetAssignment)
        .where(AssetAssignment.asset_id == asset_id, AssetAssignment.returned_at.is_(None))
        .order_by(AssetAssignment.assigned_at.desc())
    )
    return result.scalars().first()


async def close_assignment(
    db: AsyncSession,
    asset: Asset,
    user: Optional[User],
    notes: Optional[str] = None,
) -> Optional[AssetAssignment]:
    """Close the open assignment (if any) and clear the asset's assignee."""
    assignment = await open_assignment(db, asset.id)
    previous_person_id = asset.assigned_to_id
    if assignment is not None:
        assignment.returned_at = datetime.now(timezone.utc)
        if notes:
            assignment.notes = f"{assignment.notes}\n{notes}" if assignment.notes else notes
    asset.assigned_to_id = None
    asset.assigned_at = None
    if assignment is not None or previous_person_id:
        record_event(db, asset, LifecycleEventType.RETURNED, user, {
            "personId": assignment.person_id if assignment else previous_person_id,
            "notes": notes,
        })
    return assignment


async def tag_taken(db: AsyncSession, org_id: str, tag: str, exclude_id: Optional[str] = None) -> bool:
    query = select(Asset.id).where(Asset.org_id == org_id, Asset.asset_tag == tag)
    if exclude_id:
        query = query.where(Asset.id != exclude_id)
    result = await db.execute(query)
    return result.scalars().first() is not None


async def check_category(db: AsyncSession, org_id: str, category_id: Optional[str]) -> None:
    if not category_id:
        return
    result = await db.execute(
        select(AssetCategory.id).where(AssetCategory.id == category_id, AssetCategory.org_id == org_id)
    )
    if not result.scalar_one_or_none():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Category not found")


# =============================================================================
# Inventory
# =============================================================================

@router.get("", response_model=PaginatedResponse[AssetResponse])
async def list_assets(
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    search: Optional[str] = Query(None, max_length=100),
    status_filter: Optional[str] = Query(None, alias="status", description="Comma separated statuses"),
    category_id: Optional[str] = None,
    location: Optional[str] = None,
    assigned_to_id: Optional[str] = None,
    source: Optional[AssetSource] = None,
    current_user: User = Depends(require_permission("assets.inventory", "view")),
    db: AsyncSession = Depends(get_db),
):
    """List live assets ordered by tag."""
    conditions = [Asset.org_id == current_user.org_id, Asset.deleted_at.is_(None)]

    statuses = split_csv(status_filter)
    if statuses:
        try:
            conditions.append(Asset.status.in_([AssetStatus(s) for s in statuses]))
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid status filter")
    if category_id:
        conditions.append(Asset.category_id == category_id)
    if location:
        conditions.append(Asset.location.ilike(f"%{location}%"))
    if assigned_to_id:
        conditions.append(Asset.assigned_to_id == assigned_to_id)
    if source:
        conditions.append(Asset.source == source)

    query = (
        select(Asset)
        .where(*conditions)
        .options(selectinload(Asset.category), selectinload(Asset.assigned_to))
        .order_by(Asset.asset_tag)
    )
    count_query = select(func.count(Asset.id)).where(*conditions)
    query, count_query = apply_search_filter(
        query, count_query, search,
        Asset.asset_tag, Asset.name, Asset.serial_number, Asset.model,
    )

    assets, total = await fetch_page(db, query, count_query, page, per_page)

    return PaginatedResponse.create(
        items=[asset_to_response(a) for a in assets],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("", response_model=AssetResponse, status_code=status.HTTP_201_CREATED)
async def create_asset(
    request: Request,
    asset_data: AssetCreate,
    current_user: User = Depends(require_permission("assets.inventory", "create")),
    db: AsyncSession = Depends(get_db),
):
    """
    Create an asset.

    Without ``asset_tag`` the next ``{prefix}-{sequence:05d}`` tag is used
    when auto-tagging is on. An ``acquired`` lifecycle event is recorded.
    """
    settings = await get_asset_settings(db, current_user.org_id)

    if asset_data.asset_tag:
        tag = asset_data.asset_tag.strip()
        if await tag_taken(db, current_user.org_id, tag):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Asset with tag '{tag}' already exists",
            )
    elif settings.auto_generate_tags:
        tag = settings.next_tag()
        while await tag_taken(db, current_user.org_id, tag):
            tag = settings.next_tag()
    else:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="asset_tag is required when tag generation is disabled",
        )

    await check_category(db, current_user.org_id, asset_data.category_id)

    initial_status = asset_data.status or settings.default_status or AssetStatus.AVAILABLE
    if initial_status == AssetStatus.ASSIGNED:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Create the asset first, then assign it",
        )

    asset = Asset(
        org_id=current_user.org_id,
        asset_tag=tag,
        source=AssetSource.MANUAL,
        **asset_data.model_dump(exclude={"asset_tag", "status"}),
        status=initial_status,
    )
    db.add(asset)
    await db.flush()

    record_event(
        db, asset, LifecycleEventType.ACQUIRED, current_user,
        {"purchaseCost": str(asset.purchase_cost) if asset.purchase_cost is not None else None},
        event_date=at_start_of_day(asset.purchase_date),
    )

    await log_action(
        db, request, current_user, AuditAction.CREATE,
        module="assets.inventory",
        entity_type="asset",
        entity_id=asset.id,
        entity_name=asset.asset_tag,
    )
    await db.commit()

    return asset_to_response(await load_asset(db, asset.id, current_user.org_id))


# =============================================================================
# Assignments / lifecycle
# =============================================================================

@router.get("/assignments", response_model=PaginatedResponse[AssignmentResponse])
async def list_assignments(
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    asset_id: Optional[str] = None,
    person_id: Optional[str] = None,
    active_only: bool = False,
    current_user: User = Depends(require_permission("assets.assignments", "view")),
    db: AsyncSession = Depends(get_db),
):
    conditions = [AssetAssignment.org_id == current_user.org_id]
    if asset_id:
        conditions.append(AssetAssignment.asset_id == asset_id)
    if person_id:
        conditions.append(AssetAssignment.person_id == person_id)
    if active_only:
        conditions.append(AssetAssignment.returned_at.is_(None))

    query = (
        select(AssetAssignment)
        .where(*conditions)
        .options(selectinload(AssetAssignment.asset), selectinload(AssetAssignment.person))
        .order_by(AssetAssignment.assigned_at.desc())
    )
    count_query = select(func.count(AssetAssignment.id)).where(*conditions)
    assignments, total = await fetch_page(db, query, count_query, page, per_page)

    return PaginatedResponse.create(
        items=[assignment_to_response(a) for a in assignments],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/lifecycle", response_model=PaginatedResponse[LifecycleEventResponse])
async def list_lifecycle_events(
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    asset_id: Optional[str] = None,
    event_type: Optional[LifecycleEventType] = None,
    current_user: User = Depends(require_permission("assets.lifecycle", "view")),
    db: AsyncSession = Depends(get_db),
):
    conditions = [AssetLifecycleEvent.org_id == current_user.org_id]
    if asset_id:
        conditions.append(AssetLifecycleEvent.asset_id == asset_id)
    if event_type:
        conditions.append(AssetLifecycleEvent.event_type == event_type)

    query = (
        select(AssetLifecycleEvent)
        .where(*conditions)
        .order_by(AssetLifecycleEvent.event_date.desc(), AssetLifecycleEvent.created_at.desc())
    )
    count_query = select(func.count(AssetLifecycleEvent.id)).where(*conditions)
    events, total = await fetch_page(db, query, count_query, page, per_page)

    return PaginatedResponse.create(
        items=[
            LifecycleEventResponse(
                id=e.id,
                asset_id=e.asset_id,
                event_type=e.event_type.value,
                event_date=e.event_date,
                details=e.details,
                performed_by_id=e.performed_by_id,
            )
            for e in events
        ],
        total=total,
        page=page,
        per_page=per_page,
    )


# =============================================================================
# Maintenance
# =============================================================================

async def restore_after_maintenance(db: AsyncSession, asset: Asset) -> None:
    """Leave ``maintenance``: back to assigned when someone still holds the asset."""
    if asset.status != AssetStatus.MAINTENANCE:
        return
    assignment = await open_assignment(db, asset.id)
    asset.status = AssetStatus.ASSIGNED if assignment or asset.assigned_to_id else AssetStatus.AVAILABLE


async def get_maintenance_or_404(db: AsyncSession, record_id: str, org_id: str) -> AssetMaintenance:
    result = await db.execute(
        select(AssetMaintenance).where(AssetMaintenance.id == record_id, AssetMaintenance.org_id == org_id)
    )
    record = result.scalar_one_or_none()
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Maintenance record not found")
    return record


@router.get("/maintenance", response_model=PaginatedResponse[MaintenanceResponse])
async def list_maintenance(
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    asset_id: Optional[str] = None,
    status_filter: Optional[MaintenanceStatus] = Query(None, alias="status"),
    current_user: User = Depends(require_permission("assets.maintenance", "view")),
    db: AsyncSession = Depends(get_db),
):
    conditions = [AssetMaintenance.org_id == current_user.org_id]
    if asset_id:
        conditions.append(AssetMaintenance.asset_id == asset_id)
    if status_filter:
        conditions.append(AssetMaintenance.status == status_filter)

    query = (
        select(AssetMaintenance)
        .where(*conditions)
        .order_by(AssetMaintenance.scheduled_date.desc(), AssetMaintenance.created_at.desc())
    )
    count_query = select(func.count(AssetMaintenance.id)).where(*conditions)
    records, total = await fetch_page(db, query, count_query, page, per_page)

    return PaginatedResponse.create(
        items=[maintenance_to_response(m) for m in records],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("/maintenance", response_model=MaintenanceResponse, status_code=status.HTTP_201_CREATED)
async def create_maintenance(
    request: Request,
    maintenance_data: MaintenanceCreate,
    current_user: User = Depends(require_permission("assets.maintenance", "create")),
    db: AsyncSession = Depends(get_db),
):
    """Create a maintenance record; an in-progress record puts the asset into maintenance."""
    asset = await load_asset(db, maintenance_data.asset_id, current_user.org_id)

    record = AssetMaintenance(
        org_id=current_user.org_id,
        performed_by_id=current_user.id,
        **maintenance_data.model_dump(),
    )
    if record.status == MaintenanceStatus.COMPLETED and record.completed_date is None:
        record.completed_date = date.today()
    db.add(record)
    await db.flush()

    if record.status == MaintenanceStatus.IN_PROGRESS:
        asset.status = AssetStatus.MAINTENANCE
        record_event(db, asset, LifecycleEventType.MAINTENANCE, current_user, {
            "maintenanceId": record.id,
            "type": record.type.value,
            "description": record.description,
        })

    await log_action(
        db, request, current_user, AuditAction.CREATE,
        module="assets.maintenance",
        entity_type="asset_maintenance",
        entity_id=record.id,
        entity_name=asset.asset_tag,
    )
    await db.commit()

    return maintenance_to_response(record)


@router.get("/maintenance/{record_id}", response_model=MaintenanceResponse)
async def get_maintenance(
    record_id: str,
    current_user: User = Depends(require_permission("assets.maintenance", "view")),
    db: AsyncSession = Depends(get_db),
):
    return maintenance_to_response(await get_maintenance_or_404(db, record_id, current_user.org_id))


@router.patch("/maintenance/{record_id}", response_model=MaintenanceResponse)
async def update_maintenance(
    request: Request,
    record_id: str,
    maintenance_data: MaintenanceUpdate,
    current_user: User = Depends(require_permission("assets.maintenance", "edit")),
    db: AsyncSession = Depends(get_db),
):
    """
    Update a maintenance record.

    Moving to ``in_progress`` puts the asset into maintenance; completing or
    cancelling it restores the asset to assigned or available.
    """
    record = await get_maintenance_or_404(db, record_id, current_user.org_id)
    update_data = maintenance_data.model_dump(exclude_unset=True)
    reject_nulls(AssetMaintenance, update_data)
    previous_status = record.status

    for field, value in update_data.items():
        setattr(record, field, value)

    if record.status != previous_status:
        result = await db.execute(select(Asset).where(Asset.id == record.asset_id))
        asset = result.scalar_one()
        if record.status == MaintenanceStatus.IN_PROGRESS:
            asset.status = AssetStatus.MAINTENANCE
            record_event(db, asset, LifecycleEventType.MAINTENANCE, current_user, {
                "maintenanceId": record.id,
                "type": record.type.value,
                "description": record.description,
            })
        elif record.status in (MaintenanceStatus.COMPLETED, MaintenanceStatus.CANCELLED):
            if record.status == MaintenanceStatus.COMPLETED and record.completed_date is None:
                record.completed_date = date.today()
            if previous_status == MaintenanceStatus.IN_PROGRESS:
                await restore_after_maintenance(db, asset)

    await log_action(
        db, request, current_user, AuditAction.UPDATE,
        module="assets.maintenance",
        entity_type="asset_maintenance",
        entity_id=record.id,
        details={"updated_fields": list(update_data.keys())},
    )
    await db.commit()

    return maintenance_to_response(record)


@router.delete("/maintenance/{record_id}", response_model=SuccessResponse)
async def delete_maintenance(
    request: Request,
    record_id: str,
    current_user: User = Depends(require_permission("assets.maintenance", "delete")),
    db: AsyncSession = Depends(get_db),
):
    record = await get_maintenance_or_404(db, record_id, current_user.org_id)
    if record.status == MaintenanceStatus.IN_PROGRESS:
        result = await db.execute(select(Asset).where(Asset.id == record.asset_id))
        await restore_after_maintenance(db, result.scalar_one())

    await db.delete(record)
    await log_action(
        db, request, current_user, AuditAction.DELETE,
        module="assets.maintenance",
        entity_type="asset_maintenance",
        entity_id=record_id,
    )
    await db.commit()

    return SuccessResponse(message="Maintenance record deleted")


# =============================================================================
# Settings / sync
# =============================================================================

@router.get("/settings", response_model=AssetSettingsResponse)
async def get_settings(
    current_user: User = Depends(require_permission("assets.settings", "view")),
    db: AsyncSession = Depends(get_db),
):
    settings = await get_asset_settings(db, current_user.org_id)
    await db.commit()
    return asset_settings_to_response(settings)


@router.put("/settings", response_model=AssetSettingsResponse)
async def update_settings(
    request: Request,
    settings_data: AssetSettingsUpdate,
    current_user: User = Depends(require_permission("assets.settings", "edit")),
    db: AsyncSession = Depends(get_db),
):
    settings = await get_asset_settings(db, current_user.org_id)
    update_data = settings_data.model_dump(exclude_unset=True)
    reject_nulls(AssetSettings, update_data)

    if settings_data.sync_settings is not None:
        mapping = settings_data.sync_settings.category_mapping
        category_ids = {m.category_id for m in mapping.mappings}
        if mapping.default_category_id:
            category_ids.add(mapping.default_category_id)
        if category_ids:
            result = await db.execute(
                select(AssetCategory.id).where(
                    AssetCategory.org_id == current_user.org_id,
                    AssetCategory.id.in_(category_ids),
                )
            )
            unknown = category_ids - set(result.scalars().all())
            if unknown:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Unknown category ids in mapping: {', '.join(sorted(unknown))}",
                )
        # JSON column: reassign the whole value
        update_data["sync_settings"] = settings_data.sync_settings.model_dump()

    for field, value in update_data.items():
        if value is not None:
            setattr(settings, field, value)

    await log_action(
        db, request, current_user, AuditAction.UPDATE,
        module="assets.settings",
        entity_type="asset_settings",
        entity_id=settings.id,
        details={"updated_fields": list(update_data.keys())},
    )
    await db.commit()
    await db.refresh(settings)

    return asset_settings_to_response(settings)


@router.post("/sync", response_model=SyncResponse)
async def sync_devices(
    request: Request,
    current_user: User = Depends(require_permission("assets.settings", "edit")),
    db: AsyncSession = Depends(get_db),
):
    """Reconcile the inventory with Intune managed devices."""
    try:
        return await run_device_sync(db, current_user.org_id, current_user, request)
    except SyncConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except graph.GraphAPIError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Microsoft Graph request failed: {e.message}",
        )


# =============================================================================
# Single asset
# =============================================================================

@router.get("/{asset_id}", response_model=AssetResponse)
async def get_asset(
    asset_id: str,
    current_user: User = Depends(require_permission("assets.inventory", "view")),
    db: AsyncSession = Depends(get_db),
):
    return asset_to_response(await load_asset(db, asset_id, current_user.org_id))


@router.patch("/{asset_id}", response_model=AssetResponse)
async def update_asset(
    request: Request,
    asset_id: str,
    asset_data: AssetUpdate,
    current_user: User = Depends(require_permission("assets.inventory", "edit")),
    db: AsyncSession = Depends(get_db),
):
    """
    Update an asset.

    Retiring or disposing of an asset closes any open assignment, as does
    making an assigned asset available again. Every status change records
    a lifecycle event. Use assign/return for assignment.
    """
    asset = await load_asset(db, asset_id, current_user.org_id)
    update_data = asset_data.model_dump(exclude_unset=True)
    reject_nulls(Asset, update_data)

    if update_data.get("asset_tag"):
        update_data["asset_tag"] = update_data["asset_tag"].strip()
        if await tag_taken(db, current_user.org_id, update_data["asset_tag"], asset.id):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Asset with tag '{update_data['asset_tag']}' already exists",
            )
    if "category_id" in update_data:
        await check_category(db, current_user.org_id, update_data["category_id"])

    new_status = update_data.pop("status", None)
    if new_status == AssetStatus.ASSIGNED and asset.status != AssetStatus.ASSIGNED:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Use the assign endpoint to assign an asset",
        )

    for field, value in update_data.items():
        setattr(asset, field, value)

    if new_status is not None and new_status != asset.status:
        if new_status in TERMINAL_EVENTS:
            if asset.assigned_to_id:
                await close_assignment(db, asset, current_user, notes=f"Asset {new_status.value}")
            record_event(db, asset, TERMINAL_EVENTS[new_status], current_user, {
                "previousStatus": asset.status.value,
            })
        elif new_status == AssetStatus.AVAILABLE and asset.assigned_to_id:
            # Back on the shelf: the holder has returned it
            await close_assignment(db, asset, current_user, notes="Asset made available")
        else:
            event_type = (
                LifecycleEventType.MAINTENANCE if new_status == AssetStatus.MAINTENANCE
                else LifecycleEventType.TRANSFERRED
            )
            record_event(db, asset, event_type, current_user, {
                "previousStatus": asset.status.value,
                "newStatus": new_status.value,
            })
        asset.status = new_status

    await log_action(
        db, request, current_user, AuditAction.UPDATE,
        module="assets.inventory",
        entity_type="asset",
        entity_id=asset.id,
        entity_name=asset.asset_tag,
        details={"updated_fields": list(update_data.keys()) + (["status"] if new_status else [])},
    )
    await db.commit()

    return asset_to_response(await load_asset(db, asset.id, current_user.org_id))


@router.delete("/{asset_id}", response_model=SuccessResponse)
async def delete_asset(
    request: Request,
    asset_id: str,
    current_user: User = Depends(require_permission("assets.inventory", "delete")),
    db: AsyncSession = Depends(get_db),
):
    """Soft-delete an asset (history is kept)."""
    asset = await load_asset(db, asset_id, current_user.org_id)
    if asset.assigned_to_id:
        await close_assignment(db, asset, current_user, notes="Asset deleted")
    asset.deleted_at = datetime.now(timezone.utc)

    await log_action(
        db, request, current_user, AuditAction.DELETE,
        module="assets.inventory",
        entity_type="asset",
        entity_id=asset.id,
        entity_name=asset.asset_tag,
    )
    await db.commit()

    return SuccessResponse(message=f"Asset '{asset.asset_tag}' deleted")


@router.post("/{asset_id}/assign", response_model=AssetResponse)
async def assign_asset(
    request: Request,
    asset_id: str,
    assign_data: AssignRequest,
    current_user: User = Depends(require_permission("assets.assignments", "create")),
    db: AsyncSession = Depends(get_db),
):
    asset = await load_asset(db, asset_id, current_user.org_id)
    if asset.assigned_to_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Asset is already assigned. Return it first.",
        )
    if asset.status in TERMINAL_EVENTS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Asset is {asset.status.value} and cannot be assigned",
        )

    result = await db.execute(
        select(Person).where(Person.id == assign_data.person_id, Person.org_id == current_user.org_id)
    )
    person = result.scalar_one_or_none()
    if not person:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Person not found")

    now = datetime.now(timezone.utc)
    asset.status = AssetStatus.ASSIGNED
    asset.assigned_to_id = person.id
    asset.assigned_at = now
    db.add(AssetAssignment(
        org_id=current_user.org_id,
        asset_id=asset.id,
        person_id=person.id,
        assigned_at=now,
        assigned_by_id=current_user.id,
        notes=assign_data.notes,
    ))
    record_event(db, asset, LifecycleEventType.ASSIGNED, current_user, {
        "personId": person.id,
        "personName": person.name,
        "personEmail": person.email,
        "notes": assign_data.notes,
    })
    await process_event(db, WorkflowEvent(
        type="asset.assigned",
        org_id=current_user.org_id,
        entity_id=asset.id,
        person=person,
        actor=current_user,
    ))

    await log_action(
        db, request, current_user, AuditAction.ASSIGN,
        module="assets.assignments",
        entity_type="asset",
        entity_id=asset.id,
        entity_name=asset.asset_tag,
        details={"person_id": person.id, "person_name": person.name},
    )
    await db.commit()

    return asset_to_response(await load_asset(db, asset.id, current_user.org_id))


@router.post("/{asset_id}/return", response_model=AssetResponse)
async def return_asset(
    request: Request,
    asset_id: str,
    return_data: Optional[ReturnRequest] = None,
    current_user: User = Depends(require_permission("assets.assignments", "edit")),
    db: AsyncSession = Depends(get_db),
):
    asset = await load_asset(db, asset_id, current_user.org_id)
    if not asset.assigned_to_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Asset is not assigned")

    person_id = asset.assigned_to_id
    notes = return_data.notes if return_data else None
    await close_assignment(db, asset, current_user, notes=notes)
    asset.status = AssetStatus.AVAILABLE
    await process_event(db, WorkflowEvent(
        type="asset.returned",
        org_id=current_user.org_id,
        entity_id=asset.id,
        actor=current_user,
        data={"person_id": person_id},
    ))

    await log_action(
        db, request, current_user, AuditAction.RETURN,
        module="assets.assignments",
        entity_type="asset",
        entity_id=asset.id,
        entity_name=asset.asset_tag,
        details={"person_id": person_id},
    )
    await db.commit()

    return asset_to_response(await load_asset(db, asset.id, current_user.org_id))

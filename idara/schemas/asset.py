"""
Asset-related Pydantic schemas.
"""

from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, Field

from idara.models.asset import AssetStatus, MaintenanceType, MaintenanceStatus
from idara.schemas.common import PersonRef, person_ref


# -----------------------------------------------------------------------------
# Categories
# -----------------------------------------------------------------------------

class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    slug: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = None
    parent_id: Optional[str] = None
    icon: Optional[str] = Field(None, max_length=50)
    color: Optional[str] = Field(None, max_length=20)


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    slug: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = None
    parent_id: Optional[str] = None
    icon: Optional[str] = Field(None, max_length=50)
    color: Optional[str] = Field(None, max_length=20)


class CategoryResponse(BaseModel):
    id: str
    name: str
    slug: str
    description: Optional[str]
    parent_id: Optional[str]
    icon: Optional[str]
    color: Optional[str]
    asset_count: int = 0
    created_at: datetime


def category_to_response(c, asset_count: int = 0) -> CategoryResponse:
    return CategoryResponse(
        id=c.id,
        name=c.name,
        slug=c.slug,
        description=c.description,
        parent_id=c.parent_id,
        icon=c.icon,
        color=c.color,
        asset_count=asset_count,
        created_at=c.created_at,
    )


# -----------------------------------------------------------------------------
# Assets
# -----------------------------------------------------------------------------

class AssetCreate(BaseModel):
    """Create an asset. ``asset_tag`` is generated when omitted and auto-tagging is on."""
    asset_tag: Optional[str] = Field(None, min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    category_id: Optional[str] = None
    status: Optional[AssetStatus] = None
    serial_number: Optional[str] = Field(None, max_length=255)
    manufacturer: Optional[str] = Field(None, max_length=255)
    model: Optional[str] = Field(None, max_length=255)
    purchase_date: Optional[date] = None
    purchase_cost: Optional[Decimal] = Field(None, ge=0)
    warranty_end: Optional[date] = None
    location: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None
    custom_fields: Optional[Dict[str, Any]] = None


class AssetUpdate(BaseModel):
    asset_tag: Optional[str] = Field(None, min_length=1, max_length=100)
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    category_id: Optional[str] = None
    status: Optional[AssetStatus] = None
    serial_number: Optional[str] = Field(None, max_length=255)
    manufacturer: Optional[str] = Field(None, max_length=255)
    model: Optional[str] = Field(None, max_length=255)
    purchase_date: Optional[date] = None
    purchase_cost: Optional[Decimal] = Field(None, ge=0)
    warranty_end: Optional[date] = None
    location: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None
    custom_fields: Optional[Dict[str, Any]] = None
    sync_enabled: Optional[bool] = None


class CategoryRef(BaseModel):
    id: str
    name: str
    slug: str


class AssetResponse(BaseModel):
    id: str
    asset_tag: str
    name: str
    description: Optional[str]
    category_id: Optional[str]
    category: Optional[CategoryRef]
    status: str
    serial_number: Optional[str]
    manufacturer: Optional[str]
    model: Optional[str]
    purchase_date: Optional[date]
    purchase_cost: Optional[Decimal]
    warranty_end: Optional[date]
    location: Optional[str]
    assigned_to_id: Optional[str]
    assigned_to: Optional[PersonRef]
    assigned_at: Optional[datetime]
    source: str
    intune_device_id: Optional[str]
    intune_compliance_state: Optional[str]
    intune_enrollment_type: Optional[str]
    intune_last_sync_at: Optional[datetime]
    sync_enabled: bool
    notes: Optional[str]
    custom_fields: Optional[Dict[str, Any]]
    created_at: datetime
    updated_at: datetime


def asset_to_response(a) -> AssetResponse:
    """Asset must be loaded with ``category`` and ``assigned_to``."""
    return AssetResponse(
        id=a.id,
        asset_tag=a.asset_tag,
        name=a.name,
        description=a.description,
        category_id=a.category_id,
        category=CategoryRef(id=a.category.id, name=a.category.name, slug=a.category.slug) if a.category else None,
        status=a.status.value,
        serial_number=a.serial_number,
        manufacturer=a.manufacturer,
        model=a.model,
        purchase_date=a.purchase_date,
        purchase_cost=a.purchase_cost,
        warranty_end=a.warranty_end,
        location=a.location,
        assigned_to_id=a.assigned_to_id,
        assigned_to=person_ref(a.assigned_to),
        assigned_at=a.assigned_at,
        source=a.source.value,
        intune_device_id=a.intune_device_id,
        intune_compliance_state=a.intune_compliance_state,
        intune_enrollment_type=a.intune_enrollment_type,
        intune_last_sync_at=a.intune_last_sync_at,
        sync_enabled=a.sync_enabled,
        notes=a.notes,
        custom_fields=a.custom_fields,
        created_at=a.created_at,
        updated_at=a.updated_at,
    )


class AssignRequest(BaseModel):
    person_id: str
    notes: Optional[str] = None


class ReturnRequest(BaseModel):
    notes: Optional[str] = None


class AssignmentResponse(BaseModel):
    id: str
    asset_id: str
    asset_tag: Optional[str] = None
    asset_name: Optional[str] = None
    person_id: str
    person: Optional[PersonRef]
    assigned_at: datetime
    returned_at: Optional[datetime]
    assigned_by_id: Optional[str]
    notes: Optional[str]


def assignment_to_response(a) -> AssignmentResponse:
    """Assignment must be loaded with ``asset`` and ``person``."""
    return AssignmentResponse(
        id=a.id,
        asset_id=a.asset_id,
        asset_tag=a.asset.asset_tag if a.asset else None,
        asset_name=a.asset.name if a.asset else None,
        person_id=a.person_id,
        person=person_ref(a.person),
        assigned_at=a.assigned_at,
        returned_at=a.returned_at,
        assigned_by_id=a.assigned_by_id,
        notes=a.notes,
    )


class LifecycleEventResponse(BaseModel):
    id: str
    asset_id: str
    event_type: str
    event_date: datetime
    details: Optional[Dict[str, Any]]
    performed_by_id: Optional[str]

    class Config:
        from_attributes = True


# -----------------------------------------------------------------------------
# Maintenance
# -----------------------------------------------------------------------------

class MaintenanceCreate(BaseModel):
    asset_id: str
    type: MaintenanceType = MaintenanceType.SCHEDULED
    status: MaintenanceStatus = MaintenanceStatus.SCHEDULED
    description: Optional[str] = None
    scheduled_date: Optional[date] = None
    completed_date: Optional[date] = None
    cost: Optional[Decimal] = Field(None, ge=0)
    vendor: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None


class MaintenanceUpdate(BaseModel):
    type: Optional[MaintenanceType] = None
    status: Optional[MaintenanceStatus] = None
    description: Optional[str] = None
    scheduled_date: Optional[date] = None
    completed_date: Optional[date] = None
    cost: Optional[Decimal] = Field(None, ge=0)
    vendor: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None


class MaintenanceResponse(BaseModel):
    id: str
    asset_id: str
    type: str
    status: str
    description: Optional[str]
    scheduled_date: Optional[date]
    completed_date: Optional[date]
    cost: Optional[Decimal]
    vendor: Optional[str]
    notes: Optional[str]
    performed_by_id: Optional[str]
    created_at: datetime


def maintenance_to_response(m) -> MaintenanceResponse:
    return MaintenanceResponse(
        id=m.id,
        asset_id=m.asset_id,
        type=m.type.value,
        status=m.status.value,
        description=m.description,
        scheduled_date=m.scheduled_date,
        completed_date=m.completed_date,
        cost=m.cost,
        vendor=m.vendor,
        notes=m.notes,
        performed_by_id=m.performed_by_id,
        created_at=m.created_at,
    )


# -----------------------------------------------------------------------------
# Settings / sync
# -----------------------------------------------------------------------------

class DeviceFilters(BaseModel):
    os_filter: List[str] = Field(default_factory=list)
    compliance_filter: List[str] = Field(default_factory=list)


class CategoryMappingRule(BaseModel):
    device_type: str
    category_id: str


class CategoryMapping(BaseModel):
    mappings: List[CategoryMappingRule] = Field(default_factory=list)
    default_category_id: Optional[str] = None


class SyncBehavior(BaseModel):
    auto_delete_on_removal: bool = False
    auto_create_people: bool = False
    update_existing_only: bool = False


class SyncSettings(BaseModel):
    device_filters: DeviceFilters = Field(default_factory=DeviceFilters)
    category_mapping: CategoryMapping = Field(default_factory=CategoryMapping)
    sync_behavior: SyncBehavior = Field(default_factory=SyncBehavior)


class AssetSettingsUpdate(BaseModel):
    auto_generate_tags: Optional[bool] = None
    tag_prefix: Optional[str] = Field(None, min_length=1, max_length=20)
    default_status: Optional[AssetStatus] = None
    sync_settings: Optional[SyncSettings] = None


class AssetSettingsResponse(BaseModel):
    auto_generate_tags: bool
    tag_prefix: str
    tag_sequence: int
    default_status: str
    sync_settings: SyncSettings
    last_sync_at: Optional[datetime]
    synced_asset_count: int
    last_sync_error: Optional[str]
    last_sync_error_at: Optional[datetime]


def asset_settings_to_response(s) -> AssetSettingsResponse:
    return AssetSettingsResponse(
        auto_generate_tags=s.auto_generate_tags,
        tag_prefix=s.tag_prefix,
        tag_sequence=s.tag_sequence or 0,
        default_status=s.default_status.value,
        sync_settings=SyncSettings.model_validate(s.sync_settings or {}),
        last_sync_at=s.last_sync_at,
        synced_asset_count=s.synced_asset_count or 0,
        last_sync_error=s.last_sync_error,
        last_sync_error_at=s.last_sync_error_at,
    )


class SyncStats(BaseModel):
    devices_found: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    assigned: int = 0
    deleted: int = 0
    unmatched_emails: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class SyncResponse(BaseModel):
    success: bool
    message: str
    synced_count: int
    stats: SyncStats

"""
Hardware asset models.

Tracks:
- Inventory (manual or synced from Microsoft Intune)
- Assignment history (at most one open assignment per asset)
- Maintenance records
- Lifecycle events (acquired, assigned, returned, ...)
"""

from datetime import datetime, timezone, date
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Optional, List
from sqlalchemy import (
    String, Boolean, DateTime, Date, ForeignKey, Enum, Text, Integer, Numeric, JSON, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from idara.core.database import Base, generate_uuid


class AssetStatus(str, PyEnum):
    AVAILABLE = "available"
    ASSIGNED = "assigned"
    MAINTENANCE = "maintenance"
    RETIRED = "retired"
    DISPOSED = "disposed"


class AssetSource(str, PyEnum):
    MANUAL = "manual"
    INTUNE_SYNC = "intune_sync"


class MaintenanceType(str, PyEnum):
    SCHEDULED = "scheduled"
    REPAIR = "repair"
    UPGRADE = "upgrade"


class MaintenanceStatus(str, PyEnum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class LifecycleEventType(str, PyEnum):
    ACQUIRED = "acquired"
    ASSIGNED = "assigned"
    RETURNED = "returned"
    MAINTENANCE = "maintenance"
    TRANSFERRED = "transferred"
    RETIRED = "retired"
    DISPOSED = "disposed"


class AssetCategory(Base):
    """Hierarchical asset category (Laptops > MacBooks)."""

    __tablename__ = "asset_categories"
    __table_args__ = (UniqueConstraint("org_id", "slug", name="uq_asset_categories_org_slug"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    org_id: Mapped[str] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    parent_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("asset_categories.id", ondelete="SET NULL"), nullable=True
    )
    icon: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    color: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

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
        return f"<AssetCategory {self.slug}>"


class Asset(Base):
    """
    A physical or virtual asset.

    Assets coming from Intune carry ``intune_device_id``; the sync matches on
    that column, including soft-deleted rows so a returning device is restored
    rather than duplicated.
    """

    __tablename__ = "assets"
    __table_args__ = (UniqueConstraint("org_id", "asset_tag", name="uq_assets_org_tag"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    org_id: Mapped[str] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Identification
    asset_tag: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("asset_categories.id", ondelete="SET NULL"), nullable=True, index=True
    )
    status: Mapped[AssetStatus] = mapped_column(Enum(AssetStatus), default=AssetStatus.AVAILABLE, index=True)

    # Hardware
    serial_number: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    manufacturer: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    model: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Purchase
    purchase_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    purchase_cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    warranty_end: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Current assignment (denormalized from asset_assignments)
    assigned_to_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("persons.id", ondelete="SET NULL"), nullable=True, index=True
    )
    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Intune
    source: Mapped[AssetSource] = mapped_column(Enum(AssetSource), default=AssetSource.MANUAL)
    intune_device_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    intune_compliance_state: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    intune_enrollment_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    intune_last_sync_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sync_enabled: Mapped[bool] = mapped_column(Boolean, default=False)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    custom_fields: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    # Soft delete
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    category: Mapped[Optional["AssetCategory"]] = relationship("AssetCategory")
    assigned_to: Mapped[Optional["Person"]] = relationship("Person")

    def __repr__(self) -> str:
        return f"<Asset {self.asset_tag}>"


class AssetAssignment(Base):
    """One assignment period of an asset to a person."""

    __tablename__ = "asset_assignments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    org_id: Mapped[str] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    asset_id: Mapped[str] = mapped_column(ForeignKey("assets.id", ondelete="CASCADE"), nullable=False, index=True)
    person_id: Mapped[str] = mapped_column(ForeignKey("persons.id", ondelete="CASCADE"), nullable=False, index=True)
    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    returned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    assigned_by_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

    asset: Mapped["Asset"] = relationship("Asset")
    person: Mapped["Person"] = relationship("Person")


class AssetMaintenance(Base):
    """Maintenance / repair record."""

    __tablename__ = "asset_maintenance"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    org_id: Mapped[str] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    asset_id: Mapped[str] = mapped_column(ForeignKey("assets.id", ondelete="CASCADE"), nullable=False, index=True)
    type: Mapped[MaintenanceType] = mapped_column(Enum(MaintenanceType), default=MaintenanceType.SCHEDULED)
    status: Mapped[MaintenanceStatus] = mapped_column(Enum(MaintenanceStatus), default=MaintenanceStatus.SCHEDULED)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    scheduled_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    completed_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    vendor: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    performed_by_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    asset: Mapped["Asset"] = relationship("Asset")


class AssetLifecycleEvent(Base):
    """Append-only history of what happened to an asset."""

    __tablename__ = "asset_lifecycle_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    org_id: Mapped[str] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    asset_id: Mapped[str] = mapped_column(ForeignKey("assets.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type: Mapped[LifecycleEventType] = mapped_column(Enum(LifecycleEventType), nullable=False)
    event_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    performed_by_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

    asset: Mapped["Asset"] = relationship("Asset")


class AssetSettings(Base):
    """
    Per-organization asset settings (one row per org).

    ``sync_settings`` shape::

        {
          "device_filters": {"os_filter": ["Windows"], "compliance_filter": ["compliant"]},
          "category_mapping": {
            "mappings": [{"device_type": "Windows", "category_id": "..."}],
            "default_category_id": "..."
          },
          "sync_behavior": {
            "auto_delete_on_removal": false,
            "auto_create_people": false,
            "update_existing_only": false
          }
        }
    """

    __tablename__ = "asset_settings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    org_id: Mapped[str] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), unique=True, nullable=False
    )

    auto_generate_tags: Mapped[bool] = mapped_column(Boolean, default=True)
    tag_prefix: Mapped[str] = mapped_column(String(20), default="AST")
    tag_sequence: Mapped[int] = mapped_column(Integer, default=0)
    default_status: Mapped[AssetStatus] = mapped_column(Enum(AssetStatus), default=AssetStatus.AVAILABLE)

    sync_settings: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    last_sync_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    synced_asset_count: Mapped[int] = mapped_column(Integer, default=0)
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

    def next_tag(self) -> str:
        """Advance the sequence and return the next generated tag."""
        self.tag_sequence = (self.tag_sequence or 0) + 1
        return f"{self.tag_prefix}-{self.tag_sequence:05d}"


# Import for type hints
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from idara.models.person import Person

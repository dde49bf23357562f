"""
Organization (tenant) and third-party integration models.

Every other table carries an ``org_id`` pointing here; all API reads and
writes are scoped by the caller's organization.
"""

from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Optional, List

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Enum, Text, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from idara.core.database import Base, generate_uuid


class Organization(Base):
    """A tenant."""

    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, index=True, nullable=False)
    domain: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Branding / locale
    app_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    tagline: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    logo_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC")
    date_format: Mapped[str] = mapped_column(String(32), default="YYYY-MM-DD")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    integrations: Mapped[List["Integration"]] = relationship(
        "Integration", back_populates="organization", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Organization {self.slug}>"


class IntegrationProvider(str, PyEnum):
    ENTRA = "entra"
    GOOGLE = "google"
    OKTA = "okta"
    SLACK = "slack"


class IntegrationStatus(str, PyEnum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"
    PENDING = "pending"


class Integration(Base):
    """
    Identity provider connection for an organization.

    The Entra (Azure AD) integration drives SSO login, the Intune device sync
    and the directory (people) sync. The client secret is stored Fernet-encrypted.
    """

    __tablename__ = "integrations"
    __table_args__ = (UniqueConstraint("org_id", "provider", name="uq_integrations_org_provider"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    org_id: Mapped[str] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    provider: Mapped[IntegrationProvider] = mapped_column(Enum(IntegrationProvider), nullable=False)
    status: Mapped[IntegrationStatus] = mapped_column(
        Enum(IntegrationStatus), default=IntegrationStatus.PENDING
    )

    # OAuth application
    tenant_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    client_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    client_secret_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # SSO
    sso_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    password_auth_disabled: Mapped[bool] = mapped_column(Boolean, default=False)

    # Device sync
    sync_devices_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    delete_assets_on_device_delete: Mapped[bool] = mapped_column(Boolean, default=False)
    last_device_sync_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    synced_device_count: Mapped[int] = mapped_column(Integer, default=0)

    # Directory (user) sync
    sync_users_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    last_user_sync_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    synced_user_count: Mapped[int] = mapped_column(Integer, default=0)

    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_error_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    organization: Mapped["Organization"] = relationship("Organization", back_populates="integrations")

    def __repr__(self) -> str:
        return f"<Integration {self.provider.value} org={self.org_id}>"

    @property
    def has_credentials(self) -> bool:
        return bool(self.tenant_id and self.client_id and self.client_secret_encrypted)

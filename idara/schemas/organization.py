"""
Organization, branding, integration and audit log schemas.
"""

from datetime import datetime
from typing import Optional, Any, List

from pydantic import BaseModel, Field, field_validator


class OrganizationResponse(BaseModel):
    id: str
    name: str
    slug: str
    domain: Optional[str]
    app_name: Optional[str]
    tagline: Optional[str]
    logo_url: Optional[str]
    timezone: str
    date_format: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class OrganizationUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    slug: Optional[str] = Field(None, min_length=2, max_length=100, pattern=r"^[a-z0-9][a-z0-9-]*$")
    domain: Optional[str] = Field(None, max_length=255)
    app_name: Optional[str] = Field(None, max_length=100)
    tagline: Optional[str] = Field(None, max_length=255)
    logo_url: Optional[str] = Field(None, max_length=500)
    timezone: Optional[str] = Field(None, max_length=64)
    date_format: Optional[str] = Field(None, max_length=32)


class IntegrationUpsert(BaseModel):
    """
    Create or update a provider connection.

    ``client_secret`` is write-only: it is encrypted at rest and never
    returned. Omit it to keep the stored secret.
    """
    tenant_id: Optional[str] = Field(None, max_length=100)
    client_id: Optional[str] = Field(None, max_length=100)
    client_secret: Optional[str] = Field(None, max_length=500)
    sso_enabled: Optional[bool] = None
    password_auth_disabled: Optional[bool] = None
    sync_devices_enabled: Optional[bool] = None
    delete_assets_on_device_delete: Optional[bool] = None
    sync_users_enabled: Optional[bool] = None

    @field_validator("tenant_id", "client_id")
    @classmethod
    def strip_ids(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v else v


class IntegrationResponse(BaseModel):
    id: str
    provider: str
    status: str
    tenant_id: Optional[str]
    client_id: Optional[str]
    has_client_secret: bool
    sso_enabled: bool
    password_auth_disabled: bool
    sync_devices_enabled: bool
    delete_assets_on_device_delete: bool
    last_device_sync_at: Optional[datetime]
    synced_device_count: int
    sync_users_enabled: bool
    last_user_sync_at: Optional[datetime]
    synced_user_count: int
    last_error: Optional[str]
    last_error_at: Optional[datetime]
    updated_at: datetime


def integration_to_response(i) -> IntegrationResponse:
    return IntegrationResponse(
        id=i.id,
        provider=i.provider.value,
        status=i.status.value,
        tenant_id=i.tenant_id,
        client_id=i.client_id,
        has_client_secret=bool(i.client_secret_encrypted),
        sso_enabled=i.sso_enabled,
        password_auth_disabled=i.password_auth_disabled,
        sync_devices_enabled=i.sync_devices_enabled,
        delete_assets_on_device_delete=i.delete_assets_on_device_delete,
        last_device_sync_at=i.last_device_sync_at,
        synced_device_count=i.synced_device_count or 0,
        sync_users_enabled=i.sync_users_enabled,
        last_user_sync_at=i.last_user_sync_at,
        synced_user_count=i.synced_user_count or 0,
        last_error=i.last_error,
        last_error_at=i.last_error_at,
        updated_at=i.updated_at,
    )


class EntraSyncStatus(BaseModel):
    synced_user_count: int = 0
    last_sync_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None


class DirectoryUser(BaseModel):
    """Entra directory user offered for account creation."""
    id: str
    name: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    job_title: Optional[str] = None
    department: Optional[str] = None


class DirectoryUsersResponse(BaseModel):
    users: List[DirectoryUser]


class BrandingResponse(BaseModel):
    app_name: str
    tagline: str
    logo: Optional[str]


class AuditLogResponse(BaseModel):
    id: str
    timestamp: datetime
    user_id: Optional[str]
    user_email: Optional[str]
    action: str
    module: Optional[str]
    entity_type: Optional[str]
    entity_id: Optional[str]
    entity_name: Optional[str]
    details: Optional[Any]
    success: bool
    error_message: Optional[str]
    ip_address: Optional[str]
    user_agent: Optional[str]
    request_id: Optional[str]


def audit_log_to_response(a) -> AuditLogResponse:
    return AuditLogResponse(
        id=a.id,
        timestamp=a.timestamp,
        user_id=a.user_id,
        user_email=a.user_email,
        action=a.action.value,
        module=a.module,
        entity_type=a.entity_type,
        entity_id=a.entity_id,
        entity_name=a.entity_name,
        details=a.details_dict(),
        success=a.success,
        error_message=a.error_message,
        ip_address=a.ip_address,
        user_agent=a.user_agent,
        request_id=a.request_id,
    )

"""
Organization settings endpoints: organization profile, users and integrations,
including the Entra ID directory sync.
"""

import logging
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, status, Request, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from idara.core.database import get_db
from idara.core.security import encrypt_secret
from idara.core.utils import fetch_page, apply_search_filter, split_csv, reject_nulls
from idara.models.organization import Organization, Integration, IntegrationProvider, IntegrationStatus
from idara.models.person import Person
from idara.models.user import User, UserStatus, Role, user_roles
from idara.models.audit import AuditAction
from idara.auth.dependencies import require_permission
from idara.auth.audit import log_action
from idara.auth.password import validate_password_strength
from idara.auth.rbac import assign_default_role, set_user_roles
from idara.services import graph
from idara.services.directory_sync import run_directory_sync, search_directory_users, DirectorySyncError
from idara.schemas.organization import (
    OrganizationResponse,
    OrganizationUpdate,
    IntegrationUpsert,
    IntegrationResponse,
    integration_to_response,
    EntraSyncStatus,
    DirectoryUsersResponse,
)
from idara.schemas.user import UserCreate, UserUpdate, UserResponse, user_to_response
from idara.schemas.person import PeopleSyncResponse
from idara.schemas.common import PaginatedResponse, SuccessResponse

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Organization
# =============================================================================

@router.get("/organization", response_model=OrganizationResponse)
async def get_organization(
    current_user: User = Depends(require_permission("settings.organization", "view")),
    db: AsyncSession = Depends(get_db),
):
    org = await db.get(Organization, current_user.org_id)
    return OrganizationResponse.model_validate(org)


@router.patch("/organization", response_model=OrganizationResponse)
async def update_organization(
    request: Request,
    org_data: OrganizationUpdate,
    current_user: User = Depends(require_permission("settings.organization", "edit")),
    db: AsyncSession = Depends(get_db),
):
    org = await db.get(Organization, current_user.org_id)
    update_data = org_data.model_dump(exclude_unset=True)
    reject_nulls(Organization, update_data)

    if "slug" in update_data and update_data["slug"] != org.slug:
        taken = await db.execute(
            select(Organization.id).where(Organization.slug == update_data["slug"])
        )
        if taken.scalar_one_or_none():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Organization slug '{update_data['slug']}' is already in use",
            )

    for field, value in update_data.items():
        setattr(org, field, value)

    await log_action(
        db, request, current_user, AuditAction.UPDATE,
        module="settings.organization",
        entity_type="organization",
        entity_id=org.id,
        entity_name=org.name,
        details={"updated_fields": list(update_data.keys())},
    )
    await db.commit()
    await db.refresh(org)

    return OrganizationResponse.model_validate(org)


# =============================================================================
# Users
# =============================================================================

async def roles_by_user(db: AsyncSession, user_ids: List[str]) -> dict[str, list[Role]]:
    if not user_ids:
        return {}
    result = await db.execute(
        select(user_roles.c.user_id, Role)
        .join(Role, Role.id == user_roles.c.role_id)
        .where(user_roles.c.user_id.in_(user_ids))
        .order_by(Role.name)
    )
    grouped: dict[str, list[Role]] = {}
    for user_id, role in result.all():
        grouped.setdefault(user_id, []).append(role)
    return grouped


async def get_org_user_or_404(db: AsyncSession, user_id: str, org_id: str) -> User:
    result = await db.execute(select(User).where(User.id == user_id, User.org_id == org_id))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


async def check_person_link(db: AsyncSession, person_id: Optional[str], org_id: str) -> None:
    if not person_id:
        return
    result = await db.execute(select(Person.id).where(Person.id == person_id, Person.org_id == org_id))
    if not result.scalar_one_or_none():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Person not found")


@router.get("/users", response_model=PaginatedResponse[UserResponse])
async def list_users(
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    search: Optional[str] = Query(None, max_length=100),
    status_filter: Optional[str] = Query(None, alias="status", description="Comma separated statuses"),
    current_user: User = Depends(require_permission("settings.users", "view")),
    db: AsyncSession = Depends(get_db),
):
    query = select(User).where(User.org_id == current_user.org_id)
    count_query = select(func.count(User.id)).where(User.org_id == current_user.org_id)

    query, count_query = apply_search_filter(query, count_query, search, User.name, User.email)

    statuses = split_csv(status_filter)
    if statuses:
        try:
            wanted = [UserStatus(s) for s in statuses]
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid status filter")
        query = query.where(User.status.in_(wanted))
        count_query = count_query.where(User.status.in_(wanted))

    users, total = await fetch_page(db, query.order_by(User.name), count_query, page, per_page)
    roles = await roles_by_user(db, [u.id for u in users])

    return PaginatedResponse.create(
        items=[user_to_response(u, roles.get(u.id, [])) for u in users],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    request: Request,
    user_data: UserCreate,
    current_user: User = Depends(require_permission("settings.users", "create")),
    db: AsyncSession = Depends(get_db),
):
    """
    Invite a user.

    Users created without a password are ``invited`` and activate on their
    first Microsoft sign-in.
    """
    existing = await db.execute(
        select(User.id).where(User.org_id == current_user.org_id, User.email == user_data.email)
    )
    if existing.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"User with email '{user_data.email}' already exists",
        )

    if user_data.password:
        issues = validate_password_strength(user_data.password)
        if issues:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="; ".join(issues))

    await check_person_link(db, user_data.person_id, current_user.org_id)

    user = User(
        org_id=current_user.org_id,
        email=user_data.email,
        name=user_data.name,
        person_id=user_data.person_id,
        status=UserStatus.ACTIVE if user_data.password else UserStatus.INVITED,
    )
    if user_data.password:
        user.set_password(user_data.password)
    db.add(user)
    await db.flush()

    if user_data.role_ids:
        result = await db.execute(
            select(Role.id).where(Role.org_id == current_user.org_id, Role.id.in_(user_data.role_ids))
        )
        found = set(result.scalars().all())
        if len(found) != len(set(user_data.role_ids)):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown role id")
        await set_user_roles(db, user.id, user_data.role_ids)
    else:
        await assign_default_role(db, user)

    await log_action(
        db, request, current_user, AuditAction.CREATE,
        module="settings.users",
        entity_type="user",
        entity_id=user.id,
        entity_name=user.email,
        details={"status": user.status.value},
    )
    await db.commit()

    roles = await roles_by_user(db, [user.id])
    return user_to_response(user, roles.get(user.id, []))


@router.get("/users/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: str,
    current_user: User = Depends(require_permission("settings.users", "view")),
    db: AsyncSession = Depends(get_db),
):
    user = await get_org_user_or_404(db, user_id, current_user.org_id)
    roles = await roles_by_user(db, [user.id])
    return user_to_response(user, roles.get(user.id, []))


@router.patch("/users/{user_id}", response_model=UserResponse)
async def update_user(
    request: Request,
    user_id: str,
    user_data: UserUpdate,
    current_user: User = Depends(require_permission("settings.users", "edit")),
    db: AsyncSession = Depends(get_db),
):
    user = await get_org_user_or_404(db, user_id, current_user.org_id)
    update_data = user_data.model_dump(exclude_unset=True)
    reject_nulls(User, update_data)

    if "person_id" in update_data:
        await check_person_link(db, update_data["person_id"], current_user.org_id)
    if user.id == current_user.id and update_data.get("status") not in (None, UserStatus.ACTIVE):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You cannot change your own status",
        )

    for field, value in update_data.items():
        setattr(user, field, value)

    await log_action(
        db, request, current_user, AuditAction.UPDATE,
        module="settings.users",
        entity_type="user",
        entity_id=user.id,
        entity_name=user.email,
        details={"updated_fields": list(update_data.keys())},
    )
    await db.commit()

    roles = await roles_by_user(db, [user.id])
    return user_to_response(user, roles.get(user.id, []))


@router.delete("/users/{user_id}", response_model=SuccessResponse)
async def deactivate_user(
    request: Request,
    user_id: str,
    current_user: User = Depends(require_permission("settings.users", "delete")),
    db: AsyncSession = Depends(get_db),
):
    """Deactivate a user. Users are never hard-deleted (audit trail)."""
    if user_id == current_user.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You cannot deactivate your own account",
        )

    user = await get_org_user_or_404(db, user_id, current_user.org_id)
    user.status = UserStatus.DEACTIVATED

    await log_action(
        db, request, current_user, AuditAction.DELETE,
        module="settings.users",
        entity_type="user",
        entity_id=user.id,
        entity_name=user.email,
    )
    await db.commit()

    return SuccessResponse(message=f"User '{user.email}' deactivated")


# =============================================================================
# Integrations
# =============================================================================

def parse_provider(provider: str) -> IntegrationProvider:
    try:
        return IntegrationProvider(provider)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown integration provider: {provider}",
        )


async def get_integration(db: AsyncSession, org_id: str, provider: IntegrationProvider) -> Optional[Integration]:
    result = await db.execute(
        select(Integration).where(Integration.org_id == org_id, Integration.provider == provider)
    )
    return result.scalar_one_or_none()


@router.get("/integrations", response_model=List[IntegrationResponse])
async def list_integrations(
    current_user: User = Depends(require_permission("settings.integrations", "view")),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Integration)
        .where(Integration.org_id == current_user.org_id)
        .order_by(Integration.provider)
    )
    return [integration_to_response(i) for i in result.scalars().all()]


@router.put("/integrations/{provider}", response_model=IntegrationResponse)
async def upsert_integration(
    request: Request,
    provider: str,
    integration_data: IntegrationUpsert,
    current_user: User = Depends(require_permission("settings.integrations", "edit")),
    db: AsyncSession = Depends(get_db),
):
    """
    Create or update a provider connection.

    The client secret is Fernet-encrypted before it is stored and is never
    returned by the API.
    """
    provider_enum = parse_provider(provider)
    integration = await get_integration(db, current_user.org_id, provider_enum)
    created = integration is None
    if created:
        integration = Integration(org_id=current_user.org_id, provider=provider_enum)
        db.add(integration)

    update_data = integration_data.model_dump(exclude_unset=True)
    reject_nulls(Integration, update_data)

    secret = update_data.pop("client_secret", None)
    for field, value in update_data.items():
        if value is not None:
            setattr(integration, field, value)
    if secret:
        integration.client_secret_encrypted = encrypt_secret(secret)

    if integration.has_credentials:
        integration.status = IntegrationStatus.CONNECTED
        integration.last_error = None
        integration.last_error_at = None
    else:
        integration.status = IntegrationStatus.PENDING

    await log_action(
        db, request, current_user, AuditAction.CREATE if created else AuditAction.UPDATE,
        module="settings.integrations",
        entity_type="integration",
        entity_id=provider_enum.value,
        entity_name=provider_enum.value,
        details={
            "updated_fields": sorted(list(update_data.keys()) + (["client_secret"] if secret else [])),
        },
    )
    await db.commit()
    await db.refresh(integration)
    logger.info("Integration %s saved for org %s (status=%s)",
                provider_enum.value, current_user.org_id, integration.status.value)

    return integration_to_response(integration)


@router.delete("/integrations/{provider}", response_model=SuccessResponse)
async def disconnect_integration(
    request: Request,
    provider: str,
    current_user: User = Depends(require_permission("settings.integrations", "delete")),
    db: AsyncSession = Depends(get_db),
):
    """Disconnect a provider: credentials are wiped and features switched off."""
    provider_enum = parse_provider(provider)
    integration = await get_integration(db, current_user.org_id, provider_enum)
    if not integration:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Integration not found")

    integration.client_secret_encrypted = None
    integration.sso_enabled = False
    integration.password_auth_disabled = False
    integration.sync_devices_enabled = False
    integration.sync_users_enabled = False
    integration.status = IntegrationStatus.DISCONNECTED

    await log_action(
        db, request, current_user, AuditAction.DELETE,
        module="settings.integrations",
        entity_type="integration",
        entity_id=provider_enum.value,
        entity_name=provider_enum.value,
    )
    await db.commit()

    return SuccessResponse(message=f"{provider_enum.value} disconnected")


# =============================================================================
# Entra ID directory
# =============================================================================

@router.get("/integrations/entra/sync", response_model=EntraSyncStatus)
async def get_entra_sync_status(
    current_user: User = Depends(require_permission("settings.integrations", "view")),
    db: AsyncSession = Depends(get_db),
):
    integration = await get_integration(db, current_user.org_id, IntegrationProvider.ENTRA)
    if not integration:
        return EntraSyncStatus()
    return EntraSyncStatus(
        synced_user_count=integration.synced_user_count or 0,
        last_sync_at=integration.last_user_sync_at,
        last_error=integration.last_error,
        last_error_at=integration.last_error_at,
    )


@router.post("/integrations/entra/sync", response_model=PeopleSyncResponse)
async def sync_entra_directory(
    request: Request,
    current_user: User = Depends(require_permission("settings.integrations", "edit")),
    db: AsyncSession = Depends(get_db),
):
    """Pull every enabled Entra ID user into the people directory."""
    if not await get_integration(db, current_user.org_id, IntegrationProvider.ENTRA):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Integration not found")
    try:
        return await run_directory_sync(db, current_user.org_id, current_user, request)
    except DirectorySyncError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except graph.GraphAPIError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Microsoft Graph request failed: {e.message}",
        )


@router.get("/integrations/entra/users", response_model=DirectoryUsersResponse)
async def search_entra_users(
    search: Optional[str] = Query(None, max_length=100),
    current_user: User = Depends(require_permission("settings.users", "create")),
    db: AsyncSession = Depends(get_db),
):
    """Directory users that can be given an account: anyone already holding a login is left out."""
    try:
        users = await search_directory_users(db, current_user.org_id, search)
    except DirectorySyncError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except graph.GraphAPIError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Microsoft Graph request failed: {e.message}",
        )
    return DirectoryUsersResponse(users=users)

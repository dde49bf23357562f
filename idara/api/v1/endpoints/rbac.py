"""
Role and permission management endpoints.
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, delete
from sqlalchemy.orm import selectinload

from idara.core.database import get_db
from idara.core.utils import slugify, reject_nulls
from idara.models.user import User, Role, RolePermission, user_roles, MODULES, ACTIONS
from idara.models.audit import AuditAction
from idara.auth.dependencies import get_current_user, require_permission
from idara.auth.audit import log_action
from idara.auth.rbac import (
    split_capability,
    is_known_capability,
    permission_map,
    get_user_capabilities,
    get_user_roles,
    set_user_roles,
)
from idara.schemas.user import (
    RoleCreate,
    RoleUpdate,
    RoleResponse,
    RolePermissionsUpdate,
    UserRolesUpdate,
    RoleSummary,
    ModuleInfo,
    role_to_response,
)
from idara.schemas.common import SuccessResponse

router = APIRouter()


def parse_capabilities(capabilities: List[str]) -> list[tuple[str, str]]:
    parsed = []
    for capability in dict.fromkeys(capabilities):
        module, action = split_capability(capability)
        if not is_known_capability(module, action):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unknown permission: {capability}",
            )
        parsed.append((module, action))
    return parsed


async def get_role_or_404(db: AsyncSession, role_id: str, org_id: str) -> Role:
    result = await db.execute(
        select(Role)
        .where(Role.id == role_id, Role.org_id == org_id)
        .options(selectinload(Role.permissions))
    )
    role = result.scalar_one_or_none()
    if not role:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Role not found")
    return role


async def count_role_users(db: AsyncSession, role_id: str) -> int:
    result = await db.execute(
        select(func.count()).select_from(user_roles).where(user_roles.c.role_id == role_id)
    )
    return result.scalar() or 0


def refuse_system_role(role: Role) -> None:
    if role.is_system:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="System roles cannot be modified",
        )


@router.get("/modules", response_model=List[ModuleInfo])
async def list_modules(current_user: User = Depends(get_current_user)):
    """Permission modules and the actions each supports."""
    return [ModuleInfo(slug=slug, name=name, actions=ACTIONS) for slug, name in MODULES.items()]


@router.get("/actions", response_model=List[str])
async def list_actions(current_user: User = Depends(get_current_user)):
    return ACTIONS


@router.get("/roles", response_model=List[RoleResponse])
async def list_roles(
    current_user: User = Depends(require_permission("settings.roles", "view")),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Role)
        .where(Role.org_id == current_user.org_id)
        .options(selectinload(Role.permissions))
        .order_by(Role.is_system.desc(), Role.name)
    )
    roles = result.scalars().all()

    counts_result = await db.execute(
        select(user_roles.c.role_id, func.count())
        .where(user_roles.c.role_id.in_([r.id for r in roles]))
        .group_by(user_roles.c.role_id)
    )
    counts = dict(counts_result.all())
    return [role_to_response(r, counts.get(r.id, 0)) for r in roles]


@router.post("/roles", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    request: Request,
    role_data: RoleCreate,
    current_user: User = Depends(require_permission("settings.roles", "create")),
    db: AsyncSession = Depends(get_db),
):
    slug = slugify(role_data.slug or role_data.name)
    if not slug:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Role slug is required")

    existing = await db.execute(
        select(Role.id).where(Role.org_id == current_user.org_id, Role.slug == slug)
    )
    if existing.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Role with slug '{slug}' already exists",
        )

    permissions = parse_capabilities(role_data.permissions)
    role = Role(
        org_id=current_user.org_id,
        slug=slug,
        name=role_data.name,
        description=role_data.description,
        color=role_data.color,
        is_system=False,
        is_default=role_data.is_default,
    )
    role.permissions = [RolePermission(module=m, action=a) for m, a in permissions]
    db.add(role)
    await db.flush()

    await log_action(
        db, request, current_user, AuditAction.CREATE,
        module="settings.roles",
        entity_type="role",
        entity_id=role.id,
        entity_name=role.name,
        details={"permissions": sorted(role.permission_set())},
    )
    await db.commit()

    return role_to_response(role)


@router.get("/roles/{role_id}", response_model=RoleResponse)
async def get_role(
    role_id: str,
    current_user: User = Depends(require_permission("settings.roles", "view")),
    db: AsyncSession = Depends(get_db),
):
    role = await get_role_or_404(db, role_id, current_user.org_id)
    return role_to_response(role, await count_role_users(db, role.id))


@router.patch("/roles/{role_id}", response_model=RoleResponse)
async def update_role(
    request: Request,
    role_id: str,
    role_data: RoleUpdate,
    current_user: User = Depends(require_permission("settings.roles", "edit")),
    db: AsyncSession = Depends(get_db),
):
    role = await get_role_or_404(db, role_id, current_user.org_id)
    refuse_system_role(role)

    update_data = role_data.model_dump(exclude_unset=True)
    reject_nulls(Role, update_data)

    for field, value in update_data.items():
        setattr(role, field, value)

    await log_action(
        db, request, current_user, AuditAction.UPDATE,
        module="settings.roles",
        entity_type="role",
        entity_id=role.id,
        entity_name=role.name,
        details={"updated_fields": list(update_data.keys())},
    )
    await db.commit()

    return role_to_response(role, await count_role_users(db, role.id))


@router.delete("/roles/{role_id}", response_model=SuccessResponse)
async def delete_role(
    request: Request,
    role_id: str,
    current_user: User = Depends(require_permission("settings.roles", "delete")),
    db: AsyncSession = Depends(get_db),
):
    role = await get_role_or_404(db, role_id, current_user.org_id)
    refuse_system_role(role)

    role_name = role.name
    await db.execute(user_roles.delete().where(user_roles.c.role_id == role.id))
    await db.delete(role)

    await log_action(
        db, request, current_user, AuditAction.DELETE,
        module="settings.roles",
        entity_type="role",
        entity_id=role_id,
        entity_name=role_name,
    )
    await db.commit()

    return SuccessResponse(message=f"Role '{role_name}' deleted")


@router.put("/roles/{role_id}/permissions", response_model=RoleResponse)
async def replace_role_permissions(
    request: Request,
    role_id: str,
    permission_data: RolePermissionsUpdate,
    current_user: User = Depends(require_permission("settings.roles", "edit")),
    db: AsyncSession = Depends(get_db),
):
    """Replace a custom role's whole permission set."""
    role = await get_role_or_404(db, role_id, current_user.org_id)
    refuse_system_role(role)

    wanted = set(parse_capabilities(permission_data.permissions))
    before = sorted(role.permission_set())

    # Rows are deleted before the new ones are inserted (uq_role_permission)
    await db.execute(delete(RolePermission).where(RolePermission.role_id == role.id))
    for module, action in sorted(wanted):
        db.add(RolePermission(role_id=role.id, module=module, action=action))
    await db.flush()
    await db.refresh(role, attribute_names=["permissions"])

    await log_action(
        db, request, current_user, AuditAction.PERMISSIONS_CHANGED,
        module="settings.roles",
        entity_type="role",
        entity_id=role.id,
        entity_name=role.name,
        details={"before": before, "after": sorted(role.permission_set())},
    )
    await db.commit()

    return role_to_response(role, await count_role_users(db, role.id))


async def get_org_user_or_404(db: AsyncSession, user_id: str, org_id: str) -> User:
    result = await db.execute(select(User).where(User.id == user_id, User.org_id == org_id))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


@router.get("/users/{user_id}/roles", response_model=List[RoleSummary])
async def get_roles_for_user(
    user_id: str,
    current_user: User = Depends(require_permission("settings.users", "view")),
    db: AsyncSession = Depends(get_db),
):
    user = await get_org_user_or_404(db, user_id, current_user.org_id)
    roles = await get_user_roles(db, user.id)
    return [RoleSummary(id=r.id, slug=r.slug, name=r.name, color=r.color) for r in roles]


@router.put("/users/{user_id}/roles", response_model=List[RoleSummary])
async def replace_user_roles(
    request: Request,
    user_id: str,
    roles_data: UserRolesUpdate,
    current_user: User = Depends(require_permission("settings.users", "edit")),
    db: AsyncSession = Depends(get_db),
):
    user = await get_org_user_or_404(db, user_id, current_user.org_id)

    role_ids = list(dict.fromkeys(roles_data.role_ids))
    if role_ids:
        result = await db.execute(
            select(Role.id).where(Role.org_id == current_user.org_id, Role.id.in_(role_ids))
        )
        found = set(result.scalars().all())
        missing = [r for r in role_ids if r not in found]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unknown role ids: {', '.join(missing)}",
            )

    before = [r.slug for r in await get_user_roles(db, user.id)]
    await set_user_roles(db, user.id, role_ids)
    roles = await get_user_roles(db, user.id)

    await log_action(
        db, request, current_user, AuditAction.PERMISSIONS_CHANGED,
        module="settings.users",
        entity_type="user",
        entity_id=user.id,
        entity_name=user.email,
        details={"before": before, "after": [r.slug for r in roles]},
    )
    await db.commit()

    return [RoleSummary(id=r.id, slug=r.slug, name=r.name, color=r.color) for r in roles]


@router.get("/user-permissions")
async def current_user_permissions(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The current user's ``{module: {action: true}}`` map."""
    return permission_map(await get_user_capabilities(db, current_user))

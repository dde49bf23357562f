"""
Role-based access control.

Capabilities are ``<module>.<action>`` strings. A user holds roles
(``user_roles``), a role holds ``role_permissions`` rows (module + action).
System roles are seeded into every organization from ``SYSTEM_ROLES``.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from idara.models.user import (
    User, Role, RolePermission, user_roles,
    SYSTEM_ROLES, MODULES, ACTIONS, DEFAULT_ROLE_SLUG,
)

logger = logging.getLogger(__name__)


def split_capability(capability: str) -> tuple[str, str]:
    """``"assets.inventory.create"`` -> ``("assets.inventory", "create")``."""
    module, _, action = capability.rpartition(".")
    return module, action


def is_known_capability(module: str, action: str) -> bool:
    return module in MODULES and action in ACTIONS


def permission_map(capabilities: set[str]) -> dict[str, dict[str, bool]]:
    """Shape a capability set as ``{module: {action: True}}``."""
    result: dict[str, dict[str, bool]] = {}
    for capability in sorted(capabilities):
        module, action = split_capability(capability)
        result.setdefault(module, {})[action] = True
    return result


async def seed_system_roles(db: AsyncSession, org_id: str) -> dict[str, Role]:
    """
    Create any missing system roles for an organization.

    Existing roles are left untouched. Returns all system roles by slug.
    The caller commits.
    """
    result = await db.execute(
        select(Role).where(Role.org_id == org_id, Role.is_system == True)  # noqa: E712
    )
    roles = {role.slug: role for role in result.scalars().all()}

    for slug, definition in SYSTEM_ROLES.items():
        if slug in roles:
            continue
        role = Role(
            org_id=org_id,
            slug=slug,
            name=definition["name"],
            description=definition["description"],
            color=definition["color"],
            is_system=True,
            is_default=slug == DEFAULT_ROLE_SLUG,
        )
        role.permissions = [
            RolePermission(module=module, action=action)
            for module, action in sorted(split_capability(c) for c in definition["permissions"])
        ]
        db.add(role)
        roles[slug] = role
        logger.info("Seeded system role %s for org %s", slug, org_id)

    await db.flush()
    return roles


async def get_role_by_slug(db: AsyncSession, org_id: str, slug: str) -> Optional[Role]:
    result = await db.execute(select(Role).where(Role.org_id == org_id, Role.slug == slug))
    return result.scalar_one_or_none()


async def assign_default_role(db: AsyncSession, user: User) -> None:
    """Give a new user the organization's default role(s)."""
    result = await db.execute(
        select(Role).where(Role.org_id == user.org_id, Role.is_default == True)  # noqa: E712
    )
    for role in result.scalars().all():
        await db.execute(user_roles.insert().values(user_id=user.id, role_id=role.id))


async def get_user_capabilities(db: AsyncSession, user: User) -> set[str]:
    """All capabilities granted to a user through their roles."""
    result = await db.execute(
        select(RolePermission.module, RolePermission.action)
        .join(Role, Role.id == RolePermission.role_id)
        .join(user_roles, user_roles.c.role_id == Role.id)
        .where(user_roles.c.user_id == user.id, Role.org_id == user.org_id)
    )
    return {f"{module}.{action}" for module, action in result.all()}


async def user_has_permission(db: AsyncSession, user: User, module: str, action: str) -> bool:
    result = await db.execute(
        select(RolePermission.id)
        .join(Role, Role.id == RolePermission.role_id)
        .join(user_roles, user_roles.c.role_id == Role.id)
        .where(
            user_roles.c.user_id == user.id,
            Role.org_id == user.org_id,
            RolePermission.module == module,
            RolePermission.action == action,
        )
        .limit(1)
    )
    return result.first() is not None


async def get_user_roles(db: AsyncSession, user_id: str) -> list[Role]:
    result = await db.execute(
        select(Role)
        .join(user_roles, user_roles.c.role_id == Role.id)
        .where(user_roles.c.user_id == user_id)
        .options(selectinload(Role.permissions))
        .order_by(Role.name)
    )
    return list(result.scalars().all())


async def set_user_roles(db: AsyncSession, user_id: str, role_ids: list[str]) -> None:
    """Replace a user's role memberships."""
    await db.execute(user_roles.delete().where(user_roles.c.user_id == user_id))
    for role_id in dict.fromkeys(role_ids):
        await db.execute(user_roles.insert().values(user_id=user_id, role_id=role_id))

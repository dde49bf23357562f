"""
First-run bootstrap: default organization, system roles and an owner account.
"""

import logging

from sqlalchemy import select, func

from idara.auth.password import generate_temp_password
from idara.auth.rbac import seed_system_roles
from idara.core.config import DEFAULT_ORG_NAME, DEFAULT_ADMIN_EMAIL
from idara.core.database import async_session_maker
from idara.core.utils import slugify
from idara.models.organization import Organization
from idara.models.user import User, UserStatus, user_roles, OWNER_ROLE_SLUG
from idara.services.standard_clauses import seed_standard_clauses
from idara.services.standard_controls import seed_standard_controls

logger = logging.getLogger(__name__)


async def create_default_admin_if_needed() -> None:
    """
    Create the default organization and an owner user when no users exist.

    The generated password is logged once; change it after the first login.
    System roles are topped up for every existing organization.
    """
    async with async_session_maker() as session:
        result = await session.execute(select(Organization))
        organizations = list(result.scalars().all())
        for org in organizations:
            await seed_system_roles(session, org.id)

        result = await session.execute(select(func.count(User.id)))
        if result.scalar():
            await session.commit()
            return

        if organizations:
            org = organizations[0]
        else:
            org = Organization(name=DEFAULT_ORG_NAME, slug=slugify(DEFAULT_ORG_NAME) or "default")
            session.add(org)
            await session.flush()
        roles = await seed_system_roles(session, org.id)

        temp_password = generate_temp_password()
        admin = User(
            org_id=org.id,
            email=DEFAULT_ADMIN_EMAIL.lower(),
            name="Administrator",
            status=UserStatus.ACTIVE,
        )
        admin.set_password(temp_password)
        session.add(admin)
        await session.flush()
        await session.execute(
            user_roles.insert().values(user_id=admin.id, role_id=roles[OWNER_ROLE_SLUG].id)
        )
        await session.commit()

        logger.warning(
            "Default owner account created for %s: email=%s password=%s (change it immediately)",
            org.name, admin.email, temp_password,
        )


async def bootstrap() -> None:
    """Startup seeding: standard control and clause catalogs, then tenant defaults."""
    async with async_session_maker() as session:
        await seed_standard_controls(session)
        await seed_standard_clauses(session)
    await create_default_admin_if_needed()

"""
API Router configuration.

Aggregates all v1 API endpoints with proper tagging and prefixes.
"""

from fastapi import APIRouter

from idara.api.v1.endpoints import (
    public,
    auth,
    rbac,
    settings,
    audit,
    people,
    teams,
    org_structure,
    categories,
    assets,
    security,
    isms,
    docs,
    workflows,
)

api_router = APIRouter()

# Login page branding (no auth)
api_router.include_router(
    public.router,
    prefix="/public",
    tags=["public"]
)

# Authentication (no auth required for login/refresh/SSO)
api_router.include_router(
    auth.router,
    prefix="/auth",
    tags=["authentication"]
)

# Roles and permissions
api_router.include_router(
    rbac.router,
    prefix="/rbac",
    tags=["rbac"]
)

# Organization, users and integrations
api_router.include_router(
    settings.router,
    prefix="/settings",
    tags=["settings"]
)

# Audit log
api_router.include_router(
    audit.router,
    prefix="/audit",
    tags=["audit"]
)

# People: teams, levels and roles first so they are not read as person paths
api_router.include_router(
    teams.router,
    prefix="/people/teams",
    tags=["people"]
)
api_router.include_router(
    org_structure.router,
    prefix="/people",
    tags=["people"]
)
api_router.include_router(
    people.router,
    prefix="/people",
    tags=["people"]
)

# Assets: categories first so /assets/categories is not read as an asset id
api_router.include_router(
    categories.router,
    prefix="/assets/categories",
    tags=["assets"]
)
api_router.include_router(
    assets.router,
    prefix="/assets",
    tags=["assets"]
)

# Security & compliance
api_router.include_router(
    security.router,
    prefix="/security",
    tags=["security"]
)
api_router.include_router(
    isms.router,
    prefix="/security",
    tags=["security"]
)

# Documents, rollouts and acknowledgments
api_router.include_router(
    docs.router,
    prefix="/docs",
    tags=["docs"]
)

# Workflows
api_router.include_router(
    workflows.router,
    prefix="/workflows",
    tags=["workflows"]
)

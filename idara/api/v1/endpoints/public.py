"""
Unauthenticated endpoints used before sign-in.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from idara.core.config import APP_NAME
from idara.core.database import get_db
from idara.models.organization import Organization
from idara.schemas.organization import BrandingResponse

router = APIRouter()

DEFAULT_TAGLINE = "Company OS"


@router.get("/branding", response_model=BrandingResponse)
async def get_branding(db: AsyncSession = Depends(get_db)):
    """Login page branding from the first organization. An empty tagline is kept as set."""
    result = await db.execute(select(Organization).order_by(Organization.created_at).limit(1))
    org = result.scalar_one_or_none()
    if org is None:
        return BrandingResponse(app_name=APP_NAME, tagline=DEFAULT_TAGLINE, logo=None)

    return BrandingResponse(
        app_name=org.app_name or APP_NAME,
        tagline=DEFAULT_TAGLINE if org.tagline is None else org.tagline,
        logo=org.logo_url,
    )

"""
Asset category endpoints.
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, update

from idara.core.database import get_db
from idara.core.utils import slugify, reject_nulls
from idara.models.asset import AssetCategory, Asset
from idara.models.user import User
from idara.models.audit import AuditAction
from idara.auth.dependencies import require_permission
from idara.auth.audit import log_action
from idara.schemas.asset import CategoryCreate, CategoryUpdate, CategoryResponse, category_to_response
from idara.schemas.common import SuccessResponse

router = APIRouter()


async def asset_counts(db: AsyncSession, org_id: str) -> dict[str, int]:
    result = await db.execute(
        select(Asset.category_id, func.count(Asset.id))
        .where(Asset.org_id == org_id, Asset.deleted_at.is_(None), Asset.category_id.is_not(None))
        .group_by(Asset.category_id)
    )
    return dict(result.all())


async def get_category_or_404(db: AsyncSession, category_id: str, org_id: str) -> AssetCategory:
    result = await db.execute(
        select(AssetCategory).where(AssetCategory.id == category_id, AssetCategory.org_id == org_id)
    )
    category = result.scalar_one_or_none()
    if not category:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Category not found")
    return category


async def slug_taken(db: AsyncSession, org_id: str, slug: str, exclude_id: str = None) -> bool:
    query = select(AssetCategory.id).where(AssetCategory.org_id == org_id, AssetCategory.slug == slug)
    if exclude_id:
        query = query.where(AssetCategory.id != exclude_id)
    result = await db.execute(query)
    return result.scalar_one_or_none() is not None


@router.get("", response_model=List[CategoryResponse])
async def list_categories(
    current_user: User = Depends(require_permission("assets.categories", "view")),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(AssetCategory)
        .where(AssetCategory.org_id == current_user.org_id)
        .order_by(AssetCategory.name)
    )
    counts = await asset_counts(db, current_user.org_id)
    return [category_to_response(c, counts.get(c.id, 0)) for c in result.scalars().all()]


@router.post("", response_model=CategoryResponse, status_code=status.HTTP_201_CREATED)
async def create_category(
    request: Request,
    category_data: CategoryCreate,
    current_user: User = Depends(require_permission("assets.categories", "create")),
    db: AsyncSession = Depends(get_db),
):
    slug = slugify(category_data.slug or category_data.name)
    if not slug:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Category slug is required")
    if await slug_taken(db, current_user.org_id, slug):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Category with slug '{slug}' already exists",
        )
    if category_data.parent_id:
        await get_category_or_404(db, category_data.parent_id, current_user.org_id)

    category = AssetCategory(
        org_id=current_user.org_id,
        **category_data.model_dump(exclude={"slug"}),
        slug=slug,
    )
    db.add(category)
    await db.flush()

    await log_action(
        db, request, current_user, AuditAction.CREATE,
        module="assets.categories",
        entity_type="asset_category",
        entity_id=category.id,
        entity_name=category.name,
    )
    await db.commit()

    return category_to_response(category)


@router.get("/{category_id}", response_model=CategoryResponse)
async def get_category(
    category_id: str,
    current_user: User = Depends(require_permission("assets.categories", "view")),
    db: AsyncSession = Depends(get_db),
):
    category = await get_category_or_404(db, category_id, current_user.org_id)
    counts = await asset_counts(db, current_user.org_id)
    return category_to_response(category, counts.get(category.id, 0))


@router.patch("/{category_id}", response_model=CategoryResponse)
async def update_category(
    request: Request,
    category_id: str,
    category_data: CategoryUpdate,
    current_user: User = Depends(require_permission("assets.categories", "edit")),
    db: AsyncSession = Depends(get_db),
):
    category = await get_category_or_404(db, category_id, current_user.org_id)
    update_data = category_data.model_dump(exclude_unset=True)
    reject_nulls(AssetCategory, update_data)

    if "slug" in update_data:
        update_data["slug"] = slugify(update_data["slug"] or category.name)
        if await slug_taken(db, current_user.org_id, update_data["slug"], category.id):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Category with slug '{update_data['slug']}' already exists",
            )
    if update_data.get("parent_id"):
        if update_data["parent_id"] == category.id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="A category cannot be its own parent")
        await get_category_or_404(db, update_data["parent_id"], current_user.org_id)

    for field, value in update_data.items():
        setattr(category, field, value)

    await log_action(
        db, request, current_user, AuditAction.UPDATE,
        module="assets.categories",
        entity_type="asset_category",
        entity_id=category.id,
        entity_name=category.name,
        details={"updated_fields": list(update_data.keys())},
    )
    await db.commit()

    counts = await asset_counts(db, current_user.org_id)
    return category_to_response(category, counts.get(category.id, 0))


@router.delete("/{category_id}", response_model=SuccessResponse)
async def delete_category(
    request: Request,
    category_id: str,
    current_user: User = Depends(require_permission("assets.categories", "delete")),
    db: AsyncSession = Depends(get_db),
):
    category = await get_category_or_404(db, category_id, current_user.org_id)

    result = await db.execute(
        select(func.count(Asset.id)).where(Asset.category_id == category.id, Asset.deleted_at.is_(None))
    )
    in_use = result.scalar() or 0
    if in_use:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Category is used by {in_use} assets",
        )

    category_name = category.name
    await db.execute(
        update(AssetCategory)
        .where(AssetCategory.org_id == current_user.org_id, AssetCategory.parent_id == category.id)
        .values(parent_id=category.parent_id)
    )
    await db.delete(category)

    await log_action(
        db, request, current_user, AuditAction.DELETE,
        module="assets.categories",
        entity_type="asset_category",
        entity_id=category_id,
        entity_name=category_name,
    )
    await db.commit()

    return SuccessResponse(message=f"Category '{category_name}' deleted")

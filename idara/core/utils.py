"""
Shared utility functions for the Idara API.
"""

import re
from datetime import datetime, timezone
from typing import Optional, Type, TypeVar

from fastapi import HTTPException, status
from sqlalchemy import select, inspect
from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def slugify(text: str) -> str:
    """
    Build a URL slug from free text.

    Example:
        slugify("Jane  O'Neil_Smith") -> "jane-oneil-smith"
    """
    slug = text.lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[\s_-]+", "-", slug)
    return slug.strip("-")


async def unique_slug(
    db: AsyncSession,
    model: Type[T],
    org_id: str,
    base: str,
    exclude_id: Optional[str] = None,
) -> str:
    """
    Return ``base`` or ``base-2``, ``base-3``... so the slug is unique in the org.

    Args:
        db: Session used for the lookup
        model: SQLAlchemy model with ``org_id`` and ``slug`` columns
        org_id: Organization scope
        base: Desired slug
        exclude_id: Ignore this row (used on rename)
    """
    base = base or "item"
    query = select(model.slug).where(
        model.org_id == org_id,
        model.slug.like(f"{base}%"),
    )
    if exclude_id:
        query = query.where(model.id != exclude_id)
    result = await db.execute(query)
    taken = set(result.scalars().all())

    if base not in taken:
        return base
    n = 2
    while f"{base}-{n}" in taken:
        n += 1
    return f"{base}-{n}"


async def fetch_page(db: AsyncSession, query, count_query, page: int, per_page: int) -> tuple[list, int]:
    """Run a count query and one page of the main query."""
    result = await db.execute(count_query)
    total = result.scalar() or 0

    result = await db.execute(query.offset((page - 1) * per_page).limit(per_page))
    return list(result.scalars().all()), total


def split_csv(value: Optional[str]) -> list[str]:
    """Split a comma separated query parameter, dropping blanks."""
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def apply_search_filter(query, count_query, search: Optional[str], *fields):
    """
    Apply ilike search filter to multiple fields.

    Args:
        query: The main SQLAlchemy query
        count_query: The count query for pagination
        search: The search term (can be None)
        *fields: SQLAlchemy column objects to search

    Returns:
        Tuple of (filtered_query, filtered_count_query)

    Example:
        query, count_query = apply_search_filter(
            query, count_query, search,
            Person.name, Person.email
        )
    """
    if not search or not fields:
        return query, count_query

    search_filter = f"%{search.lower()}%"

    conditions = [field.ilike(search_filter) for field in fields]
    combined = conditions[0]
    for condition in conditions[1:]:
        combined = combined | condition

    return query.where(combined), count_query.where(combined)


def reject_nulls(model, values: dict) -> None:
    """
    Refuse explicit nulls for NOT NULL columns in a partial update.

    ``values`` is a ``model_dump(exclude_unset=True)`` payload; keys that are
    not mapped columns of ``model`` are ignored.

    Raises:
        HTTPException: 400 naming the offending fields
    """
    columns = inspect(model).columns
    nulls = sorted(
        name for name, value in values.items()
        if value is None and name in columns and not columns[name].nullable
    )
    if nulls:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Fields cannot be null: {', '.join(nulls)}",
        )

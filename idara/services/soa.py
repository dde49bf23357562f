"""
Statement of Applicability helpers.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from idara.models.security import (
    Framework,
    SoAItem,
    StandardControl,
    Applicability,
    ImplementationStatus,
)
from idara.schemas.security import SoASummary

IMPLEMENTED_STATUSES = (ImplementationStatus.IMPLEMENTED, ImplementationStatus.EFFECTIVE)


def summarize(items) -> SoASummary:
    """
    Count SoA items.

    Implementation counts only cover applicable items and use the linked
    control's status when an item has one.
    """
    summary = SoASummary(total=len(items))
    for item in items:
        if item.applicability == Applicability.NOT_APPLICABLE:
            summary.not_applicable += 1
            continue
        summary.applicable += 1
        state = item.effective_implementation_status()
        if state in IMPLEMENTED_STATUSES:
            summary.implemented += 1
        elif state == ImplementationStatus.PARTIALLY_IMPLEMENTED:
            summary.partial += 1
        else:
            summary.not_implemented += 1
    return summary


async def load_items(db: AsyncSession, framework_id: str) -> list[SoAItem]:
    result = await db.execute(
        select(SoAItem)
        .join(StandardControl, StandardControl.id == SoAItem.standard_control_id)
        .where(SoAItem.framework_id == framework_id)
        .options(selectinload(SoAItem.standard_control), selectinload(SoAItem.control))
        .order_by(StandardControl.sort_order)
    )
    return list(result.scalars().all())


async def framework_summary(db: AsyncSession, framework: Framework) -> SoASummary:
    return summarize(await load_items(db, framework.id))


async def create_soa_items(db: AsyncSession, framework: Framework) -> int:
    """One applicable, not-implemented item per catalog control of the framework."""
    result = await db.execute(
        select(StandardControl.id)
        .where(StandardControl.framework_code == framework.code)
        .order_by(StandardControl.sort_order)
    )
    control_ids = list(result.scalars().all())
    for standard_control_id in control_ids:
        db.add(SoAItem(
            framework_id=framework.id,
            standard_control_id=standard_control_id,
            applicability=Applicability.APPLICABLE,
            implementation_status=ImplementationStatus.NOT_IMPLEMENTED,
        ))
    return len(control_ids)

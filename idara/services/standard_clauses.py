"""
Management-system clause catalog (ISO/IEC 27001:2022 clauses 4-10).

Entries are ``(clause_id, title)``. The parent clause and category are
derived from the numbering: "6.1.2" sits under "6.1", which sits under "6",
and its category is the title of clause 6.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from idara.models.isms import StandardClause

logger = logging.getLogger(__name__)

ISO27001_CLAUSES = [
    ("4", "Context of the organization"),
    ("4.1", "Understanding the organization and its context"),
    ("4.2", "Understanding the needs and expectations of interested parties"),
    ("4.3", "Determining the scope of the information security management system"),
    ("4.4", "Information security management system"),
    ("5", "Leadership"),
    ("5.1", "Leadership and commitment"),
    ("5.2", "Policy"),
    ("5.3", "Organizational roles, responsibilities and authorities"),
    ("6", "Planning"),
    ("6.1", "Actions to address risks and opportunities"),
    ("6.1.1", "General"),
    ("6.1.2", "Information security risk assessment"),
    ("6.1.3", "Information security risk treatment"),
    ("6.2", "Information security objectives and planning to achieve them"),
    ("6.3", "Planning of changes"),
    ("7", "Support"),
    ("7.1", "Resources"),
    ("7.2", "Competence"),
    ("7.3", "Awareness"),
    ("7.4", "Communication"),
    ("7.5", "Documented information"),
    ("7.5.1", "General"),
    ("7.5.2", "Creating and updating"),
    ("7.5.3", "Control of documented information"),
    ("8", "Operation"),
    ("8.1", "Operational planning and control"),
    ("8.2", "Information security risk assessment"),
    ("8.3", "Information security risk treatment"),
    ("9", "Performance evaluation"),
    ("9.1", "Monitoring, measurement, analysis and evaluation"),
    ("9.2", "Internal audit"),
    ("9.2.1", "General"),
    ("9.2.2", "Internal audit programme"),
    ("9.3", "Management review"),
    ("9.3.1", "General"),
    ("9.3.2", "Management review inputs"),
    ("9.3.3", "Management review results"),
    ("10", "Improvement"),
    ("10.1", "Continual improvement"),
    ("10.2", "Nonconformity and corrective action"),
]

STANDARD_CLAUSES = {
    "iso-27001": ISO27001_CLAUSES,
}


def parent_of(clause_id: str):
    head, _, _ = clause_id.rpartition(".")
    return head or None


async def seed_standard_clauses(db: AsyncSession) -> int:
    """Insert catalog clauses that are not in the database yet. Returns the number added."""
    result = await db.execute(select(StandardClause.framework_code, StandardClause.clause_id))
    existing = set(result.all())

    added = 0
    for framework_code, clauses in STANDARD_CLAUSES.items():
        titles = dict(clauses)
        for sort_order, (clause_id, title) in enumerate(clauses):
            if (framework_code, clause_id) in existing:
                continue
            db.add(StandardClause(
                framework_code=framework_code,
                clause_id=clause_id,
                parent_clause_id=parent_of(clause_id),
                category=titles[clause_id.split(".")[0]],
                title=title,
                sort_order=sort_order,
            ))
            added += 1

    if added:
        await db.commit()
        logger.info("Seeded %d standard clauses", added)
    return added

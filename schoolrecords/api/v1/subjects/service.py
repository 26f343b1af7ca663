from typing import List, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from schoolrecords.core.models import ClassSection, Subject

from .schemas import SubjectResponse, SubjectTreeNode


async def list_section_subjects(
    db: AsyncSession,
    institution_id: UUID,
    class_section_id: UUID,
) -> List[SubjectResponse]:
    """Subject catalog of one section (parents and children), in display order."""
    stmt = (
        select(Subject)
        .join(ClassSection, ClassSection.id == Subject.class_section_id)
        .where(
            Subject.class_section_id == class_section_id,
            ClassSection.institution_id == institution_id,
            Subject.deleted_at.is_(None),
        )
        .order_by(Subject.display_order.nullslast(), Subject.created_at, Subject.title)
    )
    result = await db.execute(stmt)
    return [SubjectResponse.model_validate(s) for s in result.scalars().all()]


def build_subject_tree(subjects: Sequence[SubjectResponse]) -> List[SubjectTreeNode]:
    """Group a flat catalog into parents with their children, keeping catalog order."""
    nodes = [
        SubjectTreeNode(subject=s)
        for s in subjects
        if s.is_parent
    ]
    by_id = {n.subject.id: n for n in nodes}
    for s in subjects:
        if s.is_child and s.parent_subject_id in by_id:
            by_id[s.parent_subject_id].children.append(s)
    return nodes

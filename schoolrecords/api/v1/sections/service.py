from datetime import datetime
from typing import Dict, List, Optional, Set
from uuid import UUID

from fastapi import status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolrecords.core.enums import GRADE_NOTE_NO_MAPPING, GRADE_NOTE_TRANSFERRED, SectionStatus
from schoolrecords.core.exceptions import ServiceError
from schoolrecords.core.logging import get_logger
from schoolrecords.core.models import ClassSection, Student, StudentRunningGrade, StudentSection, Subject

from .schemas import (
    DissolveSectionData,
    DissolveSectionRequest,
    DissolveSectionResponse,
    SectionResponse,
    StudentResponse,
)

logger = get_logger(__name__)


def _section_to_response(s: ClassSection) -> SectionResponse:
    return SectionResponse(
        id=s.id,
        institution_id=s.institution_id,
        title=s.title,
        grade_level=s.grade_level,
        academic_year=s.academic_year,
        status=s.status,
        deleted_at=s.deleted_at,
    )


async def get_section_by_id_for_institution(
    db: AsyncSession,
    institution_id: UUID,
    section_id: UUID,
    active_only: bool = True,
) -> Optional[ClassSection]:
    stmt = select(ClassSection).where(
        ClassSection.id == section_id,
        ClassSection.institution_id == institution_id,
    )
    if active_only:
        stmt = stmt.where(
            ClassSection.status == SectionStatus.ACTIVE.value,
            ClassSection.deleted_at.is_(None),
        )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def list_sections(
    db: AsyncSession,
    institution_id: UUID,
    active_only: bool = True,
    exclude_section_id: Optional[UUID] = None,
) -> List[SectionResponse]:
    """Sections of the institution. Dissolved sections are hidden unless active_only is False."""
    stmt = select(ClassSection).where(ClassSection.institution_id == institution_id)
    if active_only:
        stmt = stmt.where(
            ClassSection.status == SectionStatus.ACTIVE.value,
            ClassSection.deleted_at.is_(None),
        )
    if exclude_section_id is not None:
        stmt = stmt.where(ClassSection.id != exclude_section_id)
    stmt = stmt.order_by(ClassSection.grade_level, ClassSection.title)
    result = await db.execute(stmt)
    return [_section_to_response(s) for s in result.scalars().all()]


async def get_section(
    db: AsyncSession,
    institution_id: UUID,
    section_id: UUID,
) -> Optional[SectionResponse]:
    obj = await get_section_by_id_for_institution(db, institution_id, section_id, active_only=False)
    return _section_to_response(obj) if obj else None


async def list_section_students(
    db: AsyncSession,
    institution_id: UUID,
    section_id: UUID,
) -> List[StudentResponse]:
    """Students with an active enrollment in the section, ordered by last name."""
    stmt = (
        select(Student)
        .join(StudentSection, StudentSection.student_id == Student.id)
        .where(
            Student.institution_id == institution_id,
            StudentSection.section_id == section_id,
            StudentSection.is_active.is_(True),
        )
        .order_by(Student.last_name, Student.first_name)
    )
    result = await db.execute(stmt)
    return [StudentResponse.model_validate(s) for s in result.scalars().unique().all()]


async def _load_target_sections(
    db: AsyncSession,
    institution_id: UUID,
    section_ids: Set[UUID],
) -> Dict[UUID, ClassSection]:
    if not section_ids:
        return {}
    result = await db.execute(
        select(ClassSection).where(
            ClassSection.id.in_(list(section_ids)),
            ClassSection.institution_id == institution_id,
            ClassSection.status == SectionStatus.ACTIVE.value,
            ClassSection.deleted_at.is_(None),
        )
    )
    return {s.id: s for s in result.scalars().all()}


async def _validate_subject_mappings(
    db: AsyncSession,
    payload: DissolveSectionRequest,
    source_subject_ids: Set[UUID],
) -> None:
    mappings = payload.subject_mappings or []
    if not mappings:
        return
    seen: Set[UUID] = set()
    for m in mappings:
        if m.source_subject_id not in source_subject_ids:
            raise ServiceError(
                f"Subject {m.source_subject_id} does not belong to the section being dissolved",
                status.HTTP_400_BAD_REQUEST,
            )
        if m.source_subject_id in seen:
            raise ServiceError(f"Subject {m.source_subject_id} is mapped more than once", status.HTTP_400_BAD_REQUEST)
        seen.add(m.source_subject_id)
    result = await db.execute(
        select(Subject.id, Subject.class_section_id).where(Subject.id.in_([m.target_subject_id for m in mappings]))
    )
    target_owner = {row.id: row.class_section_id for row in result.all()}
    for m in mappings:
        if target_owner.get(m.target_subject_id) != m.target_section_id:
            raise ServiceError(
                f"Target subject {m.target_subject_id} does not belong to section {m.target_section_id}",
                status.HTTP_400_BAD_REQUEST,
            )


async def dissolve_section(
    db: AsyncSession,
    institution_id: UUID,
    section_id: UUID,
    payload: DissolveSectionRequest,
) -> DissolveSectionResponse:
    """
    Dissolve a section and transfer its students in one transaction.

    - Section status becomes 'dissolve' and deleted_at is set.
    - Each assigned student's active enrollment is deactivated and an enrollment in the
      target section (same academic year) is created or reactivated.
    - Grades on mapped subjects are copied to the target subject; old rows are soft-deleted
      with a note. Grades on unmapped subjects are soft-deleted with 'Dissolved - No Mapping'.
    """
    section = await get_section_by_id_for_institution(db, institution_id, section_id, active_only=False)
    if not section:
        raise ServiceError("Section not found", status.HTTP_404_NOT_FOUND)
    if section.status == SectionStatus.DISSOLVE.value or section.deleted_at is not None:
        raise ServiceError("Section is already dissolved", status.HTTP_409_CONFLICT)

    assignments = payload.student_assignments
    mappings = payload.subject_mappings or []

    student_ids = [a.student_id for a in assignments]
    if len(set(student_ids)) != len(student_ids):
        raise ServiceError("Each student can only be assigned to one section", status.HTTP_400_BAD_REQUEST)

    target_ids = {a.target_section_id for a in assignments} | {m.target_section_id for m in mappings}
    if section_id in target_ids:
        raise ServiceError("Students cannot be transferred into the section being dissolved", status.HTTP_400_BAD_REQUEST)
    targets = await _load_target_sections(db, institution_id, target_ids)
    missing = target_ids - set(targets)
    if missing:
        raise ServiceError(
            f"Invalid or inactive target section(s): {', '.join(sorted(str(m) for m in missing))}",
            status.HTTP_400_BAD_REQUEST,
        )

    r = await db.execute(select(Subject.id).where(Subject.class_section_id == section.id))
    source_subject_ids = set(r.scalars().all())
    await _validate_subject_mappings(db, payload, source_subject_ids)

    # source_subject_id -> target_subject_id
    mapping_by_source = {m.source_subject_id: m.target_subject_id for m in mappings}
    now = datetime.utcnow()
    transferred = skipped = carried = retired = 0

    try:
        section.status = SectionStatus.DISSOLVE.value
        section.deleted_at = now

        for assignment in assignments:
            r = await db.execute(
                select(StudentSection)
                .where(
                    StudentSection.student_id == assignment.student_id,
                    StudentSection.section_id == section.id,
                    StudentSection.is_active.is_(True),
                )
                .limit(1)
            )
            old_record = r.scalar_one_or_none()
            if old_record is None:
                skipped += 1
                continue

            old_record.is_active = False
            r = await db.execute(
                select(StudentSection)
                .where(
                    StudentSection.student_id == assignment.student_id,
                    StudentSection.section_id == assignment.target_section_id,
                    StudentSection.academic_year == old_record.academic_year,
                )
                .limit(1)
            )
            existing = r.scalar_one_or_none()
            if existing is not None:
                existing.is_active = True
            else:
                db.add(
                    StudentSection(
                        student_id=assignment.student_id,
                        section_id=assignment.target_section_id,
                        academic_year=old_record.academic_year,
                        is_active=True,
                        is_promoted=False,
                    )
                )
            transferred += 1

            target_year = targets[assignment.target_section_id].academic_year or old_record.academic_year
            r = await db.execute(
                select(StudentRunningGrade).where(
                    StudentRunningGrade.student_id == assignment.student_id,
                    StudentRunningGrade.subject_id.in_(list(source_subject_ids)),
                    StudentRunningGrade.deleted_at.is_(None),
                )
            )
            for grade in r.scalars().all():
                grade.deleted_at = now
                target_subject_id = mapping_by_source.get(grade.subject_id)
                if target_subject_id is None:
                    grade.note = GRADE_NOTE_NO_MAPPING
                    retired += 1
                    continue
                grade.note = GRADE_NOTE_TRANSFERRED
                db.add(
                    StudentRunningGrade(
                        student_id=assignment.student_id,
                        subject_id=target_subject_id,
                        quarter=grade.quarter,
                        grade=grade.grade,
                        final_grade=grade.final_grade,
                        academic_year=target_year,
                    )
                )
                carried += 1

        await db.commit()
        await db.refresh(section)
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("section_dissolve_failed", section_id=str(section_id), error=str(e))
        raise ServiceError("Failed to dissolve section", status.HTTP_500_INTERNAL_SERVER_ERROR)

    logger.info(
        "section_dissolved",
        section_id=str(section_id),
        students_transferred=transferred,
        students_skipped=skipped,
        grades_transferred=carried,
        grades_retired=retired,
    )
    return DissolveSectionResponse(
        data=DissolveSectionData(section_id=section.id, status=section.status, deleted_at=section.deleted_at),
    )

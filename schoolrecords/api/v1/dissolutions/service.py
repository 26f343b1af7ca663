from typing import List, Optional, Tuple
from uuid import UUID

import httpx
from fastapi import status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from schoolrecords.api.v1.sections import service as section_service
from schoolrecords.api.v1.sections.schemas import StudentAssignmentItem, SubjectMappingItem
from schoolrecords.api.v1.subjects import service as subject_service
from schoolrecords.core.config import Settings
from schoolrecords.core.exceptions import ServiceError
from schoolrecords.dissolution.catalog import DatabaseCatalogSource, SubjectCatalogSource
from schoolrecords.dissolution.executor import DatabaseTransferExecutor, TransferExecutor
from schoolrecords.dissolution.remote import HttpCatalogSource, HttpTransferExecutor, build_records_client
from schoolrecords.dissolution.workflow import DissolutionWorkflow

from .schemas import (
    CatalogView,
    GroupView,
    MappingSummaryView,
    ReviewResponse,
    SectionTransferView,
    WorkflowEventView,
    WorkflowStateResponse,
)


def build_collaborators(
    settings: Settings,
    session_factory: async_sessionmaker,
    institution_id: UUID,
) -> Tuple[SubjectCatalogSource, TransferExecutor, Optional[httpx.AsyncClient]]:
    """Catalog source and executor for the configured backend, plus the http client to close later."""
    if settings.dissolution_backend == "http":
        if not settings.records_api_base_url:
            raise ServiceError("RECORDS_API_BASE_URL is required when DISSOLUTION_BACKEND=http")
        client = build_records_client(
            settings.records_api_base_url,
            institution_id,
            timeout=settings.records_api_timeout_seconds,
        )
        return HttpCatalogSource(client), HttpTransferExecutor(client), client
    if settings.dissolution_backend != "database":
        raise ServiceError(f"Unknown DISSOLUTION_BACKEND '{settings.dissolution_backend}'")
    return (
        DatabaseCatalogSource(session_factory, institution_id),
        DatabaseTransferExecutor(session_factory, institution_id),
        None,
    )


async def open_workflow(
    db: AsyncSession,
    institution_id: UUID,
    section_id: UUID,
    catalog_source: SubjectCatalogSource,
    executor: TransferExecutor,
) -> DissolutionWorkflow:
    """Load the section's roster, subjects and destination candidates into a fresh workflow."""
    section = await section_service.get_section(db, institution_id, section_id)
    if not section:
        raise ServiceError("Section not found", status.HTTP_404_NOT_FOUND)
    if section.status != "active" or section.deleted_at is not None:
        raise ServiceError("Section is already dissolved", status.HTTP_409_CONFLICT)
    students = await section_service.list_section_students(db, institution_id, section_id)
    subjects = await subject_service.list_section_subjects(db, institution_id, section_id)
    candidates = await section_service.list_sections(db, institution_id, exclude_section_id=section_id)
    return DissolutionWorkflow(
        source_section=section,
        students=students,
        source_subjects=subjects,
        candidate_sections=candidates,
        catalog_source=catalog_source,
        executor=executor,
    )


def catalog_views(workflow: DissolutionWorkflow) -> List[CatalogView]:
    return [
        CatalogView(
            section_id=entry.section_id,
            status=entry.status.value,
            error=entry.error,
            subjects=entry.subjects if entry.loaded else [],
        )
        for entry in workflow.catalogs.entries()
    ]


def to_state(workflow: DissolutionWorkflow) -> WorkflowStateResponse:
    groups = []
    for group in workflow.groups():
        group_status = workflow.group_status(group.id)
        groups.append(
            GroupView(
                id=group.id,
                name=group.name,
                student_ids=[s for s in workflow.required_ids if s in group.members],
                status=group_status.state,
                assigned_section_id=group_status.section_id,
                assigned_count=group_status.assigned_count,
                total_count=group_status.total_count,
            )
        )
    table = workflow.assignments.assignments()
    return WorkflowStateResponse(
        source_section=workflow.source_section,
        stage=workflow.stage,
        pending=workflow.pending,
        closed=workflow.closed,
        students=workflow.students,
        candidate_sections=workflow.candidate_sections,
        source_subjects=workflow.mapping.source_tree,
        selected_student_ids=workflow.selected_ids,
        groups=groups,
        student_assignments=[
            StudentAssignmentItem(student_id=s, target_section_id=table[s])
            for s in workflow.required_ids
            if s in table
        ],
        unassigned_student_ids=workflow.unassigned_ids(),
        target_section_ids=workflow.target_section_ids(),
        catalogs=catalog_views(workflow),
        subject_mappings=[
            SubjectMappingItem(
                source_subject_id=source_id,
                target_subject_id=m.target_subject_id,
                target_section_id=m.target_section_id,
            )
            for source_id, m in workflow.mapping.mappings().items()
        ],
        can_advance_from_selection=workflow.can_advance_from_selection,
        can_advance_from_assignment=workflow.can_advance_from_assignment,
        can_confirm=workflow.can_confirm,
        events=[WorkflowEventView.model_validate(e) for e in workflow.events],
    )


def to_review(workflow: DissolutionWorkflow) -> ReviewResponse:
    summary = workflow.review()
    return ReviewResponse(
        source_section=summary.source_section,
        sections=[
            SectionTransferView(
                section=s.section,
                students=s.students,
                subject_mappings=[MappingSummaryView.model_validate(m) for m in s.subject_mappings],
            )
            for s in summary.sections
        ],
        unmapped_subjects=summary.unmapped_subjects,
        total_students=summary.total_students,
        total_mappings=summary.total_mappings,
        can_confirm=workflow.can_confirm,
    )

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from schoolrecords.api.deps import get_institution_id
from schoolrecords.api.v1.sections.schemas import DissolveSectionResponse, StudentResponse
from schoolrecords.api.v1.subjects.schemas import SubjectResponse
from schoolrecords.core.config import settings
from schoolrecords.core.exceptions import ServiceError
from schoolrecords.db.session import get_db, get_session_factory

from .registry import WorkflowHandle, WorkflowRegistry, get_registry
from .schemas import (
    AutoMapRequest,
    AutoMapResponse,
    CatalogView,
    GroupMembersRequest,
    GroupRenameRequest,
    ReviewResponse,
    SectionTargetRequest,
    SelectAllRequest,
    StageRequest,
    StudentSelectionRequest,
    SubjectMapRequest,
    WorkflowStateResponse,
)
from . import service

router = APIRouter(prefix="/api/v1/sections/{section_id}/dissolution", tags=["dissolution"])


# -- session ------------------------------------------------------------------


@router.post("", response_model=WorkflowStateResponse, status_code=status.HTTP_201_CREATED)
async def open_dissolution(
    section_id: UUID,
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    institution_id: UUID = Depends(get_institution_id),
    registry: WorkflowRegistry = Depends(get_registry),
) -> WorkflowStateResponse:
    """Start (or restart from scratch) dissolving a section."""
    try:
        catalog_source, executor, client = service.build_collaborators(settings, session_factory, institution_id)
        try:
            workflow = await service.open_workflow(db, institution_id, section_id, catalog_source, executor)
            await registry.open(institution_id, section_id, WorkflowHandle(workflow=workflow, client=client))
        except ServiceError:
            if client is not None:
                await client.aclose()
            raise
        return service.to_state(workflow)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("", response_model=WorkflowStateResponse)
async def get_dissolution(
    section_id: UUID,
    institution_id: UUID = Depends(get_institution_id),
    registry: WorkflowRegistry = Depends(get_registry),
) -> WorkflowStateResponse:
    try:
        return service.to_state(registry.get(institution_id, section_id))
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_dissolution(
    section_id: UUID,
    institution_id: UUID = Depends(get_institution_id),
    registry: WorkflowRegistry = Depends(get_registry),
) -> None:
    """Cancel: throw the workflow away. Nothing has been written."""
    if not await registry.discard(institution_id, section_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No dissolution in progress for this section")


# -- selection ----------------------------------------------------------------


@router.get("/students", response_model=List[StudentResponse])
async def filter_students(
    section_id: UUID,
    search: Optional[str] = Query(None, description="Name or LRN fragment"),
    institution_id: UUID = Depends(get_institution_id),
    registry: WorkflowRegistry = Depends(get_registry),
) -> List[StudentResponse]:
    """Ungrouped students available for selection."""
    try:
        return registry.get(institution_id, section_id).filter_students(search)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/selection", response_model=WorkflowStateResponse)
async def update_selection(
    section_id: UUID,
    payload: StudentSelectionRequest,
    institution_id: UUID = Depends(get_institution_id),
    registry: WorkflowRegistry = Depends(get_registry),
) -> WorkflowStateResponse:
    try:
        workflow = registry.get(institution_id, section_id)
        if payload.selected:
            workflow.select(payload.student_ids)
        else:
            workflow.deselect(payload.student_ids)
        return service.to_state(workflow)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/selection/toggle/{student_id}", response_model=WorkflowStateResponse)
async def toggle_student(
    section_id: UUID,
    student_id: UUID,
    institution_id: UUID = Depends(get_institution_id),
    registry: WorkflowRegistry = Depends(get_registry),
) -> WorkflowStateResponse:
    try:
        workflow = registry.get(institution_id, section_id)
        workflow.toggle_student(student_id)
        return service.to_state(workflow)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/selection/all", response_model=WorkflowStateResponse)
async def select_all(
    section_id: UUID,
    payload: SelectAllRequest,
    institution_id: UUID = Depends(get_institution_id),
    registry: WorkflowRegistry = Depends(get_registry),
) -> WorkflowStateResponse:
    try:
        workflow = registry.get(institution_id, section_id)
        workflow.select_all(payload.search)
        return service.to_state(workflow)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# -- groups -------------------------------------------------------------------


@router.post("/groups", response_model=WorkflowStateResponse, status_code=status.HTTP_201_CREATED)
async def create_group(
    section_id: UUID,
    institution_id: UUID = Depends(get_institution_id),
    registry: WorkflowRegistry = Depends(get_registry),
) -> WorkflowStateResponse:
    try:
        workflow = registry.get(institution_id, section_id)
        workflow.create_group()
        return service.to_state(workflow)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/groups/{group_id}/members", response_model=WorkflowStateResponse)
async def add_group_members(
    section_id: UUID,
    group_id: str,
    payload: GroupMembersRequest,
    institution_id: UUID = Depends(get_institution_id),
    registry: WorkflowRegistry = Depends(get_registry),
) -> WorkflowStateResponse:
    """Move students (default: the current selection) into a group."""
    try:
        workflow = registry.get(institution_id, section_id)
        workflow.add_selected_to_group(group_id, payload.student_ids)
        return service.to_state(workflow)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete("/groups/{group_id}/members/{student_id}", response_model=WorkflowStateResponse)
async def remove_group_member(
    section_id: UUID,
    group_id: str,
    student_id: UUID,
    institution_id: UUID = Depends(get_institution_id),
    registry: WorkflowRegistry = Depends(get_registry),
) -> WorkflowStateResponse:
    try:
        workflow = registry.get(institution_id, section_id)
        workflow.remove_from_group(group_id, student_id)
        return service.to_state(workflow)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.patch("/groups/{group_id}", response_model=WorkflowStateResponse)
async def rename_group(
    section_id: UUID,
    group_id: str,
    payload: GroupRenameRequest,
    institution_id: UUID = Depends(get_institution_id),
    registry: WorkflowRegistry = Depends(get_registry),
) -> WorkflowStateResponse:
    try:
        workflow = registry.get(institution_id, section_id)
        workflow.rename_group(group_id, payload.name)
        return service.to_state(workflow)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete("/groups/{group_id}", response_model=WorkflowStateResponse)
async def delete_group(
    section_id: UUID,
    group_id: str,
    institution_id: UUID = Depends(get_institution_id),
    registry: WorkflowRegistry = Depends(get_registry),
) -> WorkflowStateResponse:
    try:
        workflow = registry.get(institution_id, section_id)
        workflow.delete_group(group_id)
        return service.to_state(workflow)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# -- assignment ---------------------------------------------------------------


@router.put("/assignments/{student_id}", response_model=WorkflowStateResponse)
async def assign_student(
    section_id: UUID,
    student_id: UUID,
    payload: SectionTargetRequest,
    institution_id: UUID = Depends(get_institution_id),
    registry: WorkflowRegistry = Depends(get_registry),
) -> WorkflowStateResponse:
    try:
        workflow = registry.get(institution_id, section_id)
        workflow.assign(student_id, payload.target_section_id)
        return service.to_state(workflow)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put("/groups/{group_id}/assignment", response_model=WorkflowStateResponse)
async def assign_group(
    section_id: UUID,
    group_id: str,
    payload: SectionTargetRequest,
    institution_id: UUID = Depends(get_institution_id),
    registry: WorkflowRegistry = Depends(get_registry),
) -> WorkflowStateResponse:
    """Assign every member of a group to one section."""
    if payload.target_section_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="target_section_id is required")
    try:
        workflow = registry.get(institution_id, section_id)
        workflow.assign_group(group_id, payload.target_section_id)
        return service.to_state(workflow)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/assignments/all", response_model=WorkflowStateResponse)
async def quick_assign_all(
    section_id: UUID,
    payload: SectionTargetRequest,
    institution_id: UUID = Depends(get_institution_id),
    registry: WorkflowRegistry = Depends(get_registry),
) -> WorkflowStateResponse:
    """Quick-assign: send every student being moved to one section."""
    if payload.target_section_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="target_section_id is required")
    try:
        workflow = registry.get(institution_id, section_id)
        workflow.quick_assign_all(payload.target_section_id)
        return service.to_state(workflow)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# -- catalogs / mapping -------------------------------------------------------


@router.get("/catalogs", response_model=List[CatalogView])
async def list_catalogs(
    section_id: UUID,
    wait: bool = Query(True, description="Wait until every referenced catalog has finished loading"),
    institution_id: UUID = Depends(get_institution_id),
    registry: WorkflowRegistry = Depends(get_registry),
) -> List[CatalogView]:
    try:
        workflow = registry.get(institution_id, section_id)
        if wait:
            await workflow.load_catalogs()
        return service.catalog_views(workflow)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/catalogs/{target_section_id}/refetch", response_model=CatalogView)
async def refetch_catalog(
    section_id: UUID,
    target_section_id: UUID,
    institution_id: UUID = Depends(get_institution_id),
    registry: WorkflowRegistry = Depends(get_registry),
) -> CatalogView:
    """Retry loading one destination section's subjects."""
    try:
        workflow = registry.get(institution_id, section_id)
        entry = await workflow.refetch_catalog(target_section_id)
        return CatalogView(
            section_id=entry.section_id,
            status=entry.status.value,
            error=entry.error,
            subjects=entry.subjects if entry.loaded else [],
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/mappings/candidates", response_model=List[SubjectResponse])
async def list_mapping_candidates(
    section_id: UUID,
    source_subject_id: UUID = Query(...),
    target_section_id: UUID = Query(...),
    institution_id: UUID = Depends(get_institution_id),
    registry: WorkflowRegistry = Depends(get_registry),
) -> List[SubjectResponse]:
    """Destination subjects a source subject may still be mapped to."""
    try:
        workflow = registry.get(institution_id, section_id)
        await workflow.load_catalogs()
        return workflow.available_targets(source_subject_id, target_section_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put("/mappings/{source_subject_id}", response_model=WorkflowStateResponse)
async def map_subject(
    section_id: UUID,
    source_subject_id: UUID,
    payload: SubjectMapRequest,
    institution_id: UUID = Depends(get_institution_id),
    registry: WorkflowRegistry = Depends(get_registry),
) -> WorkflowStateResponse:
    """Map a source subject to a destination subject; an empty target clears the mapping."""
    try:
        workflow = registry.get(institution_id, section_id)
        if payload.target_subject_id:
            await workflow.load_catalogs()
        workflow.map_subject(source_subject_id, payload.target_subject_id, payload.target_section_id)
        return service.to_state(workflow)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/mappings/auto", response_model=AutoMapResponse)
async def auto_map(
    section_id: UUID,
    payload: AutoMapRequest,
    institution_id: UUID = Depends(get_institution_id),
    registry: WorkflowRegistry = Depends(get_registry),
) -> AutoMapResponse:
    """Map unmapped source subjects to same-titled subjects of one destination section."""
    try:
        workflow = registry.get(institution_id, section_id)
        created = await workflow.auto_map(payload.target_section_id)
        return AutoMapResponse(mapped_subject_ids=created, state=service.to_state(workflow))
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# -- navigation / commit ------------------------------------------------------


@router.post("/advance", response_model=WorkflowStateResponse)
async def advance(
    section_id: UUID,
    institution_id: UUID = Depends(get_institution_id),
    registry: WorkflowRegistry = Depends(get_registry),
) -> WorkflowStateResponse:
    try:
        workflow = registry.get(institution_id, section_id)
        workflow.advance()
        return service.to_state(workflow)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/stage", response_model=WorkflowStateResponse)
async def go_to_stage(
    section_id: UUID,
    payload: StageRequest,
    institution_id: UUID = Depends(get_institution_id),
    registry: WorkflowRegistry = Depends(get_registry),
) -> WorkflowStateResponse:
    """Step back to an earlier stage. Entered data is kept."""
    try:
        workflow = registry.get(institution_id, section_id)
        workflow.go_to(payload.stage)
        return service.to_state(workflow)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/review", response_model=ReviewResponse)
async def review(
    section_id: UUID,
    institution_id: UUID = Depends(get_institution_id),
    registry: WorkflowRegistry = Depends(get_registry),
) -> ReviewResponse:
    try:
        workflow = registry.get(institution_id, section_id)
        await workflow.load_catalogs()
        return service.to_review(workflow)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/confirm", response_model=DissolveSectionResponse)
async def confirm(
    section_id: UUID,
    institution_id: UUID = Depends(get_institution_id),
    registry: WorkflowRegistry = Depends(get_registry),
) -> DissolveSectionResponse:
    """Commit the dissolution in a single call. On failure the review state is kept for another try."""
    try:
        workflow = registry.get(institution_id, section_id)
        try:
            result = await workflow.confirm()
        finally:
            await registry.release(workflow)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    # The section may have been cancelled and reopened while the commit was in flight.
    await registry.discard(institution_id, section_id, workflow)
    return result

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolrecords.api.deps import get_institution_id
from schoolrecords.core.exceptions import ServiceError
from schoolrecords.db.session import get_db

from .schemas import DissolveSectionRequest, DissolveSectionResponse, SectionResponse, StudentResponse
from . import service

router = APIRouter(prefix="/api/v1/sections", tags=["sections"])


@router.get("", response_model=List[SectionResponse])
async def list_sections(
    active_only: bool = Query(True, description="Hide dissolved sections by default"),
    db: AsyncSession = Depends(get_db),
    institution_id: UUID = Depends(get_institution_id),
) -> List[SectionResponse]:
    return await service.list_sections(db, institution_id, active_only=active_only)


@router.get("/{section_id}", response_model=SectionResponse)
async def get_section(
    section_id: UUID,
    db: AsyncSession = Depends(get_db),
    institution_id: UUID = Depends(get_institution_id),
) -> SectionResponse:
    obj = await service.get_section(db, institution_id, section_id)
    if not obj:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Section not found")
    return obj


@router.get("/{section_id}/students", response_model=List[StudentResponse])
async def list_section_students(
    section_id: UUID,
    db: AsyncSession = Depends(get_db),
    institution_id: UUID = Depends(get_institution_id),
) -> List[StudentResponse]:
    """Students currently enrolled (active) in the section."""
    obj = await service.get_section(db, institution_id, section_id)
    if not obj:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Section not found")
    return await service.list_section_students(db, institution_id, section_id)


@router.post("/{section_id}/dissolve", response_model=DissolveSectionResponse)
async def dissolve_section(
    section_id: UUID,
    payload: DissolveSectionRequest,
    db: AsyncSession = Depends(get_db),
    institution_id: UUID = Depends(get_institution_id),
) -> DissolveSectionResponse:
    """Dissolve the section: transfer students, carry mapped grades forward, retire the rest. Irreversible."""
    try:
        return await service.dissolve_section(db, institution_id, section_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

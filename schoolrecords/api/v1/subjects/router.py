from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from schoolrecords.api.deps import get_institution_id
from schoolrecords.db.session import get_db

from .schemas import SubjectResponse
from . import service

router = APIRouter(prefix="/api/v1/subjects", tags=["subjects"])


@router.get("", response_model=List[SubjectResponse])
async def list_subjects(
    class_section_id: UUID = Query(..., description="Section whose subject catalog to return"),
    db: AsyncSession = Depends(get_db),
    institution_id: UUID = Depends(get_institution_id),
) -> List[SubjectResponse]:
    """Ordered subject catalog of a section; children carry parent_subject_id."""
    return await service.list_section_subjects(db, institution_id, class_section_id)

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class SectionResponse(BaseModel):
    id: UUID
    institution_id: UUID
    title: str
    grade_level: Optional[str] = None
    academic_year: Optional[str] = None
    status: str = Field("active", description="active | dissolve")
    deleted_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class StudentResponse(BaseModel):
    id: UUID
    first_name: str
    middle_name: Optional[str] = None
    last_name: str
    ext_name: Optional[str] = None
    gender: Optional[str] = None
    lrn: Optional[str] = None

    class Config:
        from_attributes = True

    @property
    def full_name(self) -> str:
        parts = [self.first_name, self.middle_name, self.last_name, self.ext_name]
        return " ".join(p.strip() for p in parts if p and p.strip())


class StudentAssignmentItem(BaseModel):
    student_id: UUID
    target_section_id: UUID


class SubjectMappingItem(BaseModel):
    source_subject_id: UUID
    target_subject_id: UUID
    target_section_id: UUID


class DissolveSectionRequest(BaseModel):
    """Commit payload: where every student goes and which subjects carry their grades forward."""
    student_assignments: List[StudentAssignmentItem] = Field(..., min_length=1)
    subject_mappings: Optional[List[SubjectMappingItem]] = Field(None, description="Optional; unmapped subjects are retired")


class DissolveSectionData(BaseModel):
    section_id: UUID
    status: str
    deleted_at: Optional[datetime] = None


class DissolveSectionResponse(BaseModel):
    success: bool = True
    message: str = "Section dissolved successfully"
    data: DissolveSectionData

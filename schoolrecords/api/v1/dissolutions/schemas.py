from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from schoolrecords.api.v1.sections.schemas import (
    SectionResponse,
    StudentAssignmentItem,
    StudentResponse,
    SubjectMappingItem,
)
from schoolrecords.api.v1.subjects.schemas import SubjectResponse, SubjectTreeNode
from schoolrecords.core.enums import WorkflowStage


class StudentSelectionRequest(BaseModel):
    student_ids: List[UUID] = Field(..., min_length=1)
    selected: bool = Field(True, description="False deselects (and clears their assignments)")


class SelectAllRequest(BaseModel):
    search: Optional[str] = Field(None, description="Only toggle ungrouped students matching name or LRN")


class GroupMembersRequest(BaseModel):
    student_ids: Optional[List[UUID]] = Field(None, description="Defaults to the current selection")


class GroupRenameRequest(BaseModel):
    name: str = Field(..., max_length=100)


class SectionTargetRequest(BaseModel):
    target_section_id: Optional[UUID] = Field(None, description="Empty clears the assignment")

    @field_validator("target_section_id", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class SubjectMapRequest(BaseModel):
    target_subject_id: Optional[UUID] = Field(None, description="Empty clears the mapping")
    target_section_id: Optional[UUID] = None

    @field_validator("target_subject_id", "target_section_id", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class AutoMapRequest(BaseModel):
    target_section_id: UUID


class StageRequest(BaseModel):
    stage: WorkflowStage


class GroupView(BaseModel):
    id: str
    name: str
    student_ids: List[UUID]
    status: str = Field(..., description="assigned | partial | unassigned")
    assigned_section_id: Optional[UUID] = None
    assigned_count: int
    total_count: int


class CatalogView(BaseModel):
    section_id: UUID
    status: str = Field(..., description="pending | loading | loaded | error")
    error: Optional[str] = None
    subjects: List[SubjectResponse] = Field(default_factory=list)


class WorkflowEventView(BaseModel):
    level: str
    message: str
    created_at: datetime

    class Config:
        from_attributes = True


class WorkflowStateResponse(BaseModel):
    source_section: SectionResponse
    stage: WorkflowStage
    pending: bool
    closed: bool
    students: List[StudentResponse]
    candidate_sections: List[SectionResponse]
    source_subjects: List[SubjectTreeNode]
    selected_student_ids: List[UUID]
    groups: List[GroupView]
    student_assignments: List[StudentAssignmentItem]
    unassigned_student_ids: List[UUID]
    target_section_ids: List[UUID]
    catalogs: List[CatalogView]
    subject_mappings: List[SubjectMappingItem]
    can_advance_from_selection: bool
    can_advance_from_assignment: bool
    can_confirm: bool
    events: List[WorkflowEventView]


class AutoMapResponse(BaseModel):
    mapped_subject_ids: List[UUID]
    state: WorkflowStateResponse


class MappingSummaryView(BaseModel):
    source_subject: SubjectResponse
    target_subject: Optional[SubjectResponse] = None

    class Config:
        from_attributes = True


class SectionTransferView(BaseModel):
    section: SectionResponse
    students: List[StudentResponse]
    subject_mappings: List[MappingSummaryView]

    class Config:
        from_attributes = True


class ReviewResponse(BaseModel):
    """Final review: who goes where, which subjects carry grades, which are retired."""
    source_section: SectionResponse
    sections: List[SectionTransferView]
    unmapped_subjects: List[SubjectResponse]
    total_students: int
    total_mappings: int
    can_confirm: bool = False

    class Config:
        from_attributes = True

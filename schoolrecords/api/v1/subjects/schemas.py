from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from schoolrecords.core.enums import SubjectType


class SubjectResponse(BaseModel):
    id: UUID
    class_section_id: UUID
    title: str
    variant: Optional[str] = None
    subject_type: str = Field("parent", description="parent | child")
    parent_subject_id: Optional[UUID] = None
    display_order: Optional[int] = None

    class Config:
        from_attributes = True

    @property
    def is_child(self) -> bool:
        """A child either by tag or by pointing at a parent subject."""
        return self.subject_type == SubjectType.CHILD.value or self.parent_subject_id is not None

    @property
    def is_parent(self) -> bool:
        return not self.is_child


class SubjectTreeNode(BaseModel):
    """A parent subject with its child subjects, in catalog order."""
    subject: SubjectResponse
    children: List[SubjectResponse] = Field(default_factory=list)

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from schoolrecords.db.session import Base


class StudentSection(Base):
    """
    Enrollment of a student in a section for an academic year.
    A transfer deactivates the old row and creates (or reactivates) one for the target section.
    """

    __tablename__ = "student_sections"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(UUID(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    section_id = Column(UUID(as_uuid=True), ForeignKey("class_sections.id"), nullable=False)
    academic_year = Column(String(20), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    is_promoted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    student = relationship("Student", backref="section_records")
    section = relationship("ClassSection", foreign_keys=[section_id])

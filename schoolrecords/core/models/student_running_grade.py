"""Quarterly running grades. Retired rows are soft-deleted with an explanatory note."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, Float, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID

from schoolrecords.db.session import Base


class StudentRunningGrade(Base):
    __tablename__ = "student_running_grades"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(UUID(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    subject_id = Column(UUID(as_uuid=True), ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False)
    quarter = Column(String(10), nullable=False)
    grade = Column(Float, nullable=True)
    final_grade = Column(Float, nullable=True)
    academic_year = Column(String(20), nullable=True)
    note = Column(String(255), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

"""Institution-scoped class sections (e.g. Grade 7 - Section A) for one academic year."""
import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, String
from sqlalchemy.dialects.postgresql import UUID

from schoolrecords.db.session import Base


class ClassSection(Base):
    """A section is retired by dissolution: status becomes 'dissolve' and deleted_at is set."""

    __tablename__ = "class_sections"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    institution_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    grade_level = Column(String(50), nullable=True)
    academic_year = Column(String(20), nullable=True)  # e.g. 2025-2026
    status = Column(String(20), nullable=False, default="active")  # active | dissolve
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

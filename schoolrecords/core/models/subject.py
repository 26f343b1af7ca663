"""Section-scoped subjects. Two levels: parent subjects and their child subjects."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from schoolrecords.db.session import Base


class Subject(Base):
    __tablename__ = "subjects"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    class_section_id = Column(UUID(as_uuid=True), ForeignKey("class_sections.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255), nullable=False)
    variant = Column(String(100), nullable=True)
    subject_type = Column(String(10), nullable=False, default="parent")  # parent | child
    parent_subject_id = Column(UUID(as_uuid=True), ForeignKey("subjects.id", ondelete="CASCADE"), nullable=True)
    display_order = Column(Integer, nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    class_section = relationship("ClassSection", backref="subjects", foreign_keys=[class_section_id])

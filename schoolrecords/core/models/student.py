import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, String
from sqlalchemy.dialects.postgresql import UUID

from schoolrecords.db.session import Base


class Student(Base):
    __tablename__ = "students"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    institution_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    first_name = Column(String(100), nullable=False)
    middle_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=False)
    ext_name = Column(String(20), nullable=True)
    gender = Column(String(10), nullable=True)  # male | female | other
    lrn = Column(String(20), nullable=True)  # learner reference number
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

from schoolrecords.core.models.class_section import ClassSection
from schoolrecords.core.models.student import Student
from schoolrecords.core.models.student_section import StudentSection
from schoolrecords.core.models.subject import Subject
from schoolrecords.core.models.student_running_grade import StudentRunningGrade

__all__ = [
    "ClassSection",
    "Student",
    "StudentSection",
    "Subject",
    "StudentRunningGrade",
]

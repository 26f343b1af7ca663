from enum import Enum


class SectionStatus(str, Enum):
    ACTIVE = "active"
    DISSOLVE = "dissolve"


class SubjectType(str, Enum):
    PARENT = "parent"
    CHILD = "child"


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


class WorkflowStage(str, Enum):
    SELECTION = "selection"
    ASSIGNMENT = "assignment"
    MAPPING = "mapping"
    REVIEW = "review"


class CatalogStatus(str, Enum):
    PENDING = "pending"
    LOADING = "loading"
    LOADED = "loaded"
    ERROR = "error"


# Notes written on retired grade rows by the dissolve procedure.
GRADE_NOTE_TRANSFERRED = "Dissolve - Grade Transferred"
GRADE_NOTE_NO_MAPPING = "Dissolved - No Mapping"

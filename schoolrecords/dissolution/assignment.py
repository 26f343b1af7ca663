from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set
from uuid import UUID

from schoolrecords.core.exceptions import InvalidTargetError


@dataclass(frozen=True)
class GroupAssignmentStatus:
    """How far a group has been assigned: 'assigned', 'partial' or 'unassigned'."""
    state: str
    section_id: Optional[UUID]
    assigned_count: int
    total_count: int


def can_advance_from_selection(selected: Set[UUID], grouped: Set[UUID], group_count: int) -> bool:
    """Every manually selected student must have been put in a group before assignment starts.

    With nothing selected at least one group must exist, and there must be someone to move.
    """
    if not (selected | grouped):
        return False
    if not selected:
        return group_count > 0
    return selected <= grouped


class SectionAssignmentResolver:
    """student_id -> destination section. A missing key means the student is unassigned."""

    def __init__(self, candidate_section_ids: Iterable[UUID], source_section_id: Optional[UUID] = None) -> None:
        self._candidates = list(dict.fromkeys(candidate_section_ids))
        self._source_section_id = source_section_id
        self._assignments: Dict[UUID, UUID] = {}

    @property
    def candidate_section_ids(self) -> List[UUID]:
        return list(self._candidates)

    def assign(self, student_id: UUID, section_id: Optional[UUID]) -> None:
        """Assign one student; an empty section clears the assignment."""
        if not section_id:
            self._assignments.pop(student_id, None)
            return
        self._check_target(section_id)
        self._assignments[student_id] = section_id

    def assign_many(self, student_ids: Iterable[UUID], section_id: UUID) -> None:
        self._check_target(section_id)
        for student_id in student_ids:
            self._assignments[student_id] = section_id

    def assign_group(self, members: Iterable[UUID], section_id: UUID) -> None:
        self.assign_many(members, section_id)

    def quick_assign_all(self, required: Iterable[UUID], section_id: UUID) -> None:
        self.assign_many(required, section_id)

    def unassign(self, student_ids: Iterable[UUID]) -> None:
        for student_id in student_ids:
            self._assignments.pop(student_id, None)

    def get(self, student_id: UUID) -> Optional[UUID]:
        return self._assignments.get(student_id)

    def assignments(self) -> Dict[UUID, UUID]:
        return dict(self._assignments)

    def target_section_ids(self) -> List[UUID]:
        """Distinct destination sections, in the order they were first used."""
        return list(dict.fromkeys(self._assignments.values()))

    def unassigned(self, required: Iterable[UUID]) -> List[UUID]:
        return [s for s in required if s not in self._assignments]

    def can_advance(self, required: Iterable[UUID]) -> bool:
        return not self.unassigned(required)

    def group_status(self, members: Iterable[UUID]) -> GroupAssignmentStatus:
        members = list(members)
        targets = [self._assignments[m] for m in members if m in self._assignments]
        if members and len(targets) == len(members):
            common = targets[0] if len(set(targets)) == 1 else None
            return GroupAssignmentStatus("assigned", common, len(targets), len(members))
        state = "partial" if targets else "unassigned"
        return GroupAssignmentStatus(state, None, len(targets), len(members))

    def clear(self) -> None:
        self._assignments.clear()

    def __len__(self) -> int:
        return len(self._assignments)

    def _check_target(self, section_id: UUID) -> None:
        if section_id == self._source_section_id:
            raise InvalidTargetError("Students cannot be assigned to the section being dissolved")
        if section_id not in self._candidates:
            raise InvalidTargetError(f"Section {section_id} is not an available destination")

"""Operator-defined student groups used as the unit of bulk assignment.

A student belongs to at most one group. Groups are numbered ``group-1``,
``group-2``, ... and numbers are never reused within a session, so a deleted
group's id can not come back to life with different members.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set
from uuid import UUID

from schoolrecords.core.exceptions import GroupNotFoundError


@dataclass
class Group:
    id: str
    name: str
    members: Set[UUID] = field(default_factory=set)


class GroupingEngine:
    def __init__(self) -> None:
        self._groups: Dict[str, Group] = {}
        self._next_number = 1

    def create_group(self) -> str:
        """Allocate an empty group named ``Group N``."""
        number = self._next_number
        self._next_number += 1
        group = Group(id=f"group-{number}", name=f"Group {number}")
        self._groups[group.id] = group
        return group.id

    def add_to_group(self, group_id: str, student_ids: Iterable[UUID]) -> None:
        """Move every student into ``group_id``, taking them out of any other group first."""
        target = self.get(group_id)
        emptied: Set[str] = set()
        for student_id in student_ids:
            for other in self._groups.values():
                if other.id != group_id and student_id in other.members:
                    other.members.discard(student_id)
                    if not other.members:
                        emptied.add(other.id)
            target.members.add(student_id)
        # a group that lost its last member to another group goes away like one emptied by removal
        for other_id in emptied:
            del self._groups[other_id]

    def remove_from_group(self, group_id: str, student_id: UUID) -> None:
        group = self.get(group_id)
        if student_id not in group.members:
            return
        group.members.discard(student_id)
        if not group.members:
            del self._groups[group_id]

    def rename_group(self, group_id: str, name: Optional[str]) -> None:
        group = self.get(group_id)
        if name and name.strip():
            group.name = name.strip()

    def delete_group(self, group_id: str) -> Set[UUID]:
        """Delete the group and return its former members (now ungrouped)."""
        group = self.get(group_id)
        del self._groups[group_id]
        return set(group.members)

    def get(self, group_id: str) -> Group:
        try:
            return self._groups[group_id]
        except KeyError:
            raise GroupNotFoundError(group_id)

    def groups(self) -> List[Group]:
        return list(self._groups.values())

    def members(self, group_id: str) -> Set[UUID]:
        return set(self.get(group_id).members)

    def group_of(self, student_id: UUID) -> Optional[str]:
        for group in self._groups.values():
            if student_id in group.members:
                return group.id
        return None

    def grouped_ids(self) -> Set[UUID]:
        grouped: Set[UUID] = set()
        for group in self._groups.values():
            grouped |= group.members
        return grouped

    def __len__(self) -> int:
        return len(self._groups)


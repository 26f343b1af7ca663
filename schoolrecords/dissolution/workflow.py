"""Section dissolution workflow: selection -> assignment -> mapping -> review -> commit.

One ``DissolutionWorkflow`` drives one source section for one operator. All
table mutations are synchronous; only catalog loading and the final
``confirm()`` are awaited. While ``confirm()`` is in flight the workflow is
``pending`` and refuses every other change.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Set
from uuid import UUID

from schoolrecords.api.v1.sections.schemas import (
    DissolveSectionRequest,
    DissolveSectionResponse,
    SectionResponse,
    StudentAssignmentItem,
    StudentResponse,
    SubjectMappingItem,
)
from schoolrecords.api.v1.subjects.schemas import SubjectResponse
from schoolrecords.core.enums import WorkflowStage
from schoolrecords.core.exceptions import (
    InvalidTargetError,
    StageError,
    TransferError,
    UnknownStudentError,
    WorkflowBusyError,
)
from schoolrecords.core.logging import get_logger

from .assignment import GroupAssignmentStatus, SectionAssignmentResolver, can_advance_from_selection
from .catalog import CatalogEntry, SubjectCatalogCache, SubjectCatalogSource
from .executor import TransferExecutor
from .grouping import Group, GroupingEngine
from .mapping import SubjectMappingResolver

logger = get_logger(__name__)

STAGES = [
    WorkflowStage.SELECTION,
    WorkflowStage.ASSIGNMENT,
    WorkflowStage.MAPPING,
    WorkflowStage.REVIEW,
]


@dataclass
class WorkflowEvent:
    """Operator-facing notice (what a UI would show as a toast)."""
    level: str  # info | success | warning | error
    message: str
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class MappingSummary:
    source_subject: SubjectResponse
    target_subject: Optional[SubjectResponse]


@dataclass
class SectionTransferSummary:
    section: SectionResponse
    students: List[StudentResponse]
    subject_mappings: List[MappingSummary]


@dataclass
class ReviewSummary:
    source_section: SectionResponse
    sections: List[SectionTransferSummary]
    unmapped_subjects: List[SubjectResponse]
    total_students: int
    total_mappings: int


class DissolutionWorkflow:
    def __init__(
        self,
        source_section: SectionResponse,
        students: Sequence[StudentResponse],
        source_subjects: Sequence[SubjectResponse],
        candidate_sections: Sequence[SectionResponse],
        catalog_source: SubjectCatalogSource,
        executor: TransferExecutor,
    ) -> None:
        self.source_section = source_section
        self._students: Dict[UUID, StudentResponse] = {s.id: s for s in students}
        self._source_subjects = list(source_subjects)
        self._sections: Dict[UUID, SectionResponse] = {
            s.id: s for s in candidate_sections if s.id != source_section.id
        }
        self._catalog_source = catalog_source
        self._executor = executor
        self.events: List[WorkflowEvent] = []
        self._reset()
        logger.info(
            "dissolution_opened",
            section_id=str(source_section.id),
            students=len(self._students),
            subjects=len(self._source_subjects),
            candidate_sections=len(self._sections),
        )

    def _reset(self) -> None:
        self.stage = WorkflowStage.SELECTION
        self.pending = False
        self.closed = False
        self.last_result: Optional[DissolveSectionResponse] = None
        self._selected: Set[UUID] = set()
        self.grouping = GroupingEngine()
        self.assignments = SectionAssignmentResolver(self._sections, self.source_section.id)
        self.catalogs = SubjectCatalogCache(self._catalog_source)
        self.mapping = SubjectMappingResolver(self._source_subjects, self.catalogs)

    def reopen(self) -> None:
        """Start over with empty tables."""
        self._ensure_not_pending()
        self.catalogs.close()
        self.events = []
        self._reset()

    def close(self) -> None:
        """Discard every workflow table. A commit already sent stays sent."""
        self.catalogs.close()
        self._selected.clear()
        self.grouping = GroupingEngine()
        self.assignments.clear()
        self.mapping.clear()
        self.stage = WorkflowStage.SELECTION
        self.closed = True

    # -- roster / selection -------------------------------------------------

    @property
    def students(self) -> List[StudentResponse]:
        return list(self._students.values())

    @property
    def candidate_sections(self) -> List[SectionResponse]:
        return list(self._sections.values())

    @property
    def selected_ids(self) -> List[UUID]:
        return [s for s in self._students if s in self._selected]

    @property
    def required_ids(self) -> List[UUID]:
        """Students that must be moved: selected ones plus every grouped one, in roster order."""
        grouped = self.grouping.grouped_ids()
        return [s for s in self._students if s in self._selected or s in grouped]

    def student(self, student_id: UUID) -> StudentResponse:
        try:
            return self._students[student_id]
        except KeyError:
            raise UnknownStudentError(f"Student {student_id} is not enrolled in the section being dissolved")

    def filter_students(self, search: Optional[str] = None) -> List[StudentResponse]:
        """Ungrouped students whose name or LRN contains ``search`` (case-insensitive)."""
        term = (search or "").strip().lower()
        grouped = self.grouping.grouped_ids()
        result = []
        for s in self._students.values():
            if s.id in grouped:
                continue
            if term and term not in s.full_name.lower() and term not in (s.lrn or "").lower():
                continue
            result.append(s)
        return result

    def select(self, student_ids: Iterable[UUID]) -> None:
        self._ensure_mutable()
        ids = [self.student(s).id for s in student_ids]
        self._selected.update(ids)

    def deselect(self, student_ids: Iterable[UUID]) -> None:
        self._ensure_mutable()
        ids = [self.student(s).id for s in student_ids]
        self._selected.difference_update(ids)
        self._drop_leavers(ids)

    def toggle_student(self, student_id: UUID) -> bool:
        """Flip one student's selection; returns whether it is now selected."""
        if student_id in self._selected:
            self.deselect([student_id])
            return False
        self.select([student_id])
        return True

    def select_all(self, search: Optional[str] = None) -> None:
        """Select every ungrouped student matching ``search``, or deselect them if all already are."""
        visible = [s.id for s in self.filter_students(search)]
        if visible and all(s in self._selected for s in visible):
            self.deselect(visible)
        else:
            self.select(visible)

    # -- groups -------------------------------------------------------------

    def groups(self) -> List[Group]:
        return self.grouping.groups()

    def group_status(self, group_id: str) -> GroupAssignmentStatus:
        return self.assignments.group_status(self.grouping.members(group_id))

    def create_group(self) -> str:
        self._ensure_mutable()
        return self.grouping.create_group()

    def add_selected_to_group(self, group_id: str, student_ids: Optional[Iterable[UUID]] = None) -> None:
        """Move the selection (or ``student_ids``) into a group; the selection is consumed."""
        self._ensure_mutable()
        ids = list(self._selected) if student_ids is None else [self.student(s).id for s in student_ids]
        self.grouping.add_to_group(group_id, [s for s in self._students if s in set(ids)])
        self._selected.clear()

    def remove_from_group(self, group_id: str, student_id: UUID) -> None:
        self._ensure_mutable()
        self.grouping.remove_from_group(group_id, student_id)
        self._drop_leavers([student_id])

    def rename_group(self, group_id: str, name: Optional[str]) -> None:
        self._ensure_mutable()
        self.grouping.rename_group(group_id, name)

    def delete_group(self, group_id: str) -> None:
        self._ensure_mutable()
        former = self.grouping.delete_group(group_id)
        self._drop_leavers(former)

    # -- assignment ---------------------------------------------------------

    @property
    def can_advance_from_selection(self) -> bool:
        return can_advance_from_selection(self._selected, self.grouping.grouped_ids(), len(self.grouping))

    @property
    def can_advance_from_assignment(self) -> bool:
        return self.assignments.can_advance(self.required_ids)

    @property
    def can_confirm(self) -> bool:
        return self.can_advance_from_assignment and self.source_section.id is not None

    def unassigned_ids(self) -> List[UUID]:
        return self.assignments.unassigned(self.required_ids)

    def target_section_ids(self) -> List[UUID]:
        return self.assignments.target_section_ids()

    def section(self, section_id: UUID) -> SectionResponse:
        try:
            return self._sections[section_id]
        except KeyError:
            raise InvalidTargetError(f"Section {section_id} is not an available destination")

    def assign(self, student_id: UUID, section_id: Optional[UUID]) -> None:
        """Assign one student to a destination section; an empty section clears the assignment."""
        self._ensure_mutable()
        self._ensure_required([student_id])
        self.assignments.assign(student_id, section_id)
        if section_id:
            self.catalogs.request(section_id)

    def assign_group(self, group_id: str, section_id: UUID) -> None:
        self._ensure_mutable()
        self.assignments.assign_group(self.grouping.members(group_id), section_id)
        self.catalogs.request(section_id)

    def quick_assign_all(self, section_id: UUID) -> None:
        self._ensure_mutable()
        self.assignments.quick_assign_all(self.required_ids, section_id)
        self.catalogs.request(section_id)

    # -- subject mapping ----------------------------------------------------

    async def load_catalogs(self) -> Dict[UUID, CatalogEntry]:
        """Fetch every referenced destination catalog not fetched yet."""
        return await self.catalogs.load(self.target_section_ids())

    async def refetch_catalog(self, section_id: UUID) -> CatalogEntry:
        self._ensure_referenced(section_id)
        return await self.catalogs.refetch(section_id)

    def available_targets(self, source_subject_id: UUID, section_id: UUID) -> List[SubjectResponse]:
        self._ensure_referenced(section_id)
        return self.mapping.available_targets(source_subject_id, section_id)

    def map_subject(
        self,
        source_subject_id: UUID,
        target_subject_id: Optional[UUID],
        section_id: Optional[UUID] = None,
    ) -> None:
        self._ensure_mutable()
        if target_subject_id:
            self._ensure_referenced(section_id)
        self.mapping.map_subject(source_subject_id, target_subject_id, section_id)

    async def auto_map(self, section_id: UUID) -> List[UUID]:
        self._ensure_mutable()
        self._ensure_referenced(section_id)
        await self.catalogs.get(section_id)
        self._ensure_mutable()
        created = self.mapping.auto_map(section_id)
        title = self._sections[section_id].title
        self._event("info", f"Auto-mapped {len(created)} subject(s) to {title}")
        logger.info("subjects_auto_mapped", section_id=str(section_id), mapped=len(created))
        return created

    # -- navigation ---------------------------------------------------------

    def advance(self) -> WorkflowStage:
        self._ensure_mutable()
        if self.stage == WorkflowStage.SELECTION and not self.can_advance_from_selection:
            raise StageError(self._selection_blocker())
        if self.stage == WorkflowStage.ASSIGNMENT and not self.can_advance_from_assignment:
            count = len(self.unassigned_ids())
            raise StageError(f"{count} student(s) still need to be assigned to a section")
        if self.stage == WorkflowStage.REVIEW:
            raise StageError("Review is the last stage; confirm the transfer instead")
        self.stage = STAGES[STAGES.index(self.stage) + 1]
        if self.stage == WorkflowStage.MAPPING:
            for section_id in self.target_section_ids():
                self.catalogs.request(section_id)
        return self.stage

    def go_to(self, stage: WorkflowStage) -> WorkflowStage:
        """Go back to an earlier stage; its data is kept."""
        self._ensure_mutable()
        if STAGES.index(stage) > STAGES.index(self.stage):
            raise StageError(f"Cannot jump ahead to '{stage.value}'; complete the current stage first")
        self.stage = stage
        return self.stage

    # -- review / commit ----------------------------------------------------

    def build_payload(self) -> DissolveSectionRequest:
        table = self.assignments.assignments()
        targets = self.target_section_ids()
        return DissolveSectionRequest(
            student_assignments=[
                StudentAssignmentItem(student_id=s, target_section_id=table[s])
                for s in self.required_ids
                if s in table
            ],
            subject_mappings=[
                SubjectMappingItem(
                    source_subject_id=source_id,
                    target_subject_id=m.target_subject_id,
                    target_section_id=m.target_section_id,
                )
                for source_id, m in self.mapping.entries_for(targets)
            ],
        )

    def review(self) -> ReviewSummary:
        table = self.assignments.assignments()
        source_by_id = {s.id: s for s in self._source_subjects}
        summaries = []
        total_mappings = 0
        for section_id in self.target_section_ids():
            mappings = [
                MappingSummary(
                    source_subject=source_by_id[source_id],
                    target_subject=self.mapping.target_subject(section_id, m.target_subject_id),
                )
                for source_id, m in self.mapping.entries_for([section_id])
            ]
            total_mappings += len(mappings)
            summaries.append(
                SectionTransferSummary(
                    section=self._sections[section_id],
                    students=[self._students[s] for s in self.required_ids if table.get(s) == section_id],
                    subject_mappings=mappings,
                )
            )
        unmapped = self.mapping.unmapped_source_ids(self.target_section_ids())
        return ReviewSummary(
            source_section=self.source_section,
            sections=summaries,
            unmapped_subjects=[source_by_id[s] for s in unmapped],
            total_students=len(self.required_ids),
            total_mappings=total_mappings,
        )

    async def confirm(self) -> DissolveSectionResponse:
        """Send the single commit call. Success closes the workflow; failure keeps review intact."""
        self._ensure_mutable()
        if self.stage != WorkflowStage.REVIEW:
            raise StageError("The transfer can only be confirmed from the review stage")
        if not self.can_confirm:
            raise StageError(f"{len(self.unassigned_ids())} student(s) still need to be assigned to a section")

        payload = self.build_payload()
        self.pending = True
        try:
            result = await self._executor.execute(self.source_section.id, payload)
        except TransferError as e:
            self._event("error", e.message)
            logger.warning("dissolution_commit_failed", section_id=str(self.source_section.id), error=e.message)
            raise
        finally:
            self.pending = False

        self.last_result = result
        self._event("success", "Students transferred successfully!")
        logger.info(
            "dissolution_committed",
            section_id=str(self.source_section.id),
            students=len(payload.student_assignments),
            subject_mappings=len(payload.subject_mappings or []),
        )
        if not self.closed:
            self.close()
        return result

    # -- internals ----------------------------------------------------------

    def _selection_blocker(self) -> str:
        if not self.required_ids:
            return "Select at least one student to transfer"
        if not self._selected:
            return "Create at least one group before assigning sections"
        ungrouped = len(self._selected - self.grouping.grouped_ids())
        return f"{ungrouped} selected student(s) must be added to a group first"

    def _drop_leavers(self, student_ids: Iterable[UUID]) -> None:
        """Students no longer selected nor grouped lose their assignment."""
        grouped = self.grouping.grouped_ids()
        self.assignments.unassign(s for s in student_ids if s not in self._selected and s not in grouped)

    def _ensure_required(self, student_ids: Iterable[UUID]) -> None:
        required = set(self.required_ids)
        for student_id in student_ids:
            self.student(student_id)
            if student_id not in required:
                raise UnknownStudentError(f"Student {student_id} is not selected for transfer")

    def _ensure_referenced(self, section_id: Optional[UUID]) -> None:
        if section_id is None or section_id not in self.target_section_ids():
            raise InvalidTargetError(f"No students are assigned to section {section_id}")

    def _ensure_not_pending(self) -> None:
        if self.pending:
            raise WorkflowBusyError()

    def _ensure_mutable(self) -> None:
        self._ensure_not_pending()
        if self.closed:
            raise StageError("This dissolution workflow is closed; open it again to start over")

    def _event(self, level: str, message: str) -> None:
        self.events.append(WorkflowEvent(level=level, message=message))

"""Carry-forward mapping from the dissolving section's subjects to destination subjects.

Rules kept by every mutation:

* within one destination section a destination subject is the target of at most
  one source subject;
* a source child is mapped for section ``d`` only while its parent is mapped for
  ``d``, and only onto a child of the destination parent its parent points to;
* parents map onto parents.

Callers pick targets from :meth:`SubjectMappingResolver.available_targets`; a
target outside that list is rejected with :class:`MappingError`.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Set, Tuple
from uuid import UUID

from schoolrecords.api.v1.subjects.schemas import SubjectResponse, SubjectTreeNode
from schoolrecords.api.v1.subjects.service import build_subject_tree
from schoolrecords.core.exceptions import MappingError

from .catalog import SubjectCatalogCache


@dataclass(frozen=True)
class MappingTarget:
    target_subject_id: UUID
    target_section_id: UUID


def normalize_title(title: Optional[str]) -> str:
    return (title or "").strip().lower()


class SubjectMappingResolver:
    def __init__(self, source_subjects: Sequence[SubjectResponse], catalogs: SubjectCatalogCache) -> None:
        self._source_by_id = {s.id: s for s in source_subjects}
        self._tree = build_subject_tree(source_subjects)
        self._catalogs = catalogs
        # source_subject_id -> (target_subject_id, target_section_id)
        self._mappings: Dict[UUID, MappingTarget] = {}

    @property
    def source_tree(self) -> List[SubjectTreeNode]:
        return self._tree

    @property
    def source_subjects(self) -> List[SubjectResponse]:
        return list(self._source_by_id.values())

    def get(self, source_id: UUID) -> Optional[MappingTarget]:
        return self._mappings.get(source_id)

    def mappings(self) -> Dict[UUID, MappingTarget]:
        return dict(self._mappings)

    def map_subject(
        self,
        source_id: UUID,
        target_subject_id: Optional[UUID],
        target_section_id: Optional[UUID] = None,
    ) -> None:
        """Record a mapping, or clear it when no target subject is given."""
        source = self._source(source_id)
        if not target_subject_id:
            self._mappings.pop(source_id, None)
            self._prune_children(source)
            return
        if target_section_id is None:
            raise MappingError("A target section is required to map a subject")
        available = {s.id for s in self.available_targets(source_id, target_section_id)}
        if target_subject_id not in available:
            raise MappingError(
                f"Subject {target_subject_id} is not an available target for '{source.title}' "
                f"in section {target_section_id}"
            )
        self._mappings[source_id] = MappingTarget(target_subject_id, target_section_id)
        self._prune_children(source)

    def available_targets(self, source_id: UUID, target_section_id: UUID) -> List[SubjectResponse]:
        """Destination subjects ``source_id`` may map to right now, in catalog order.

        The subject's own current target stays in the list. A child only gets
        children of the destination parent its parent is mapped to, so nothing
        is offered before the parent is mapped for this section.
        """
        source = self._source(source_id)
        catalog = self._catalog(target_section_id)
        used = self._used_targets(target_section_id, exclude_source=source_id)
        if source.is_child:
            parent_target = self._mappings.get(source.parent_subject_id)
            if parent_target is None or parent_target.target_section_id != target_section_id:
                return []
            pool = [s for s in catalog if s.parent_subject_id == parent_target.target_subject_id]
        else:
            pool = [s for s in catalog if not s.is_child]
        return [s for s in pool if s.id not in used]

    def auto_map(self, target_section_id: UUID) -> List[UUID]:
        """Fill gaps for one destination section by exact title match; returns newly mapped source ids.

        Titles are compared trimmed and case-insensitively; the first unused
        match in catalog order wins. Subjects already mapped (to this or another
        section) are never overwritten; children of a parent already mapped to
        this section are still filled in.
        """
        catalog = self._catalog(target_section_id)
        dest_parents = [s for s in catalog if not s.is_child]
        created: List[UUID] = []

        for node in self._tree:
            parent = node.subject
            parent_target = self._mappings.get(parent.id)
            if parent_target is None:
                match = self._first_match(parent.title, dest_parents, target_section_id)
                if match is None:
                    continue
                parent_target = MappingTarget(match.id, target_section_id)
                self._mappings[parent.id] = parent_target
                created.append(parent.id)
            elif parent_target.target_section_id != target_section_id:
                continue

            dest_children = [s for s in catalog if s.parent_subject_id == parent_target.target_subject_id]
            for child in node.children:
                if child.id in self._mappings:
                    continue
                match = self._first_match(child.title, dest_children, target_section_id)
                if match is not None:
                    self._mappings[child.id] = MappingTarget(match.id, target_section_id)
                    created.append(child.id)
        return created

    def entries_for(self, section_ids: Sequence[UUID]) -> List[Tuple[UUID, MappingTarget]]:
        """Mappings whose destination section is still one of ``section_ids``."""
        wanted = set(section_ids)
        return [(source_id, m) for source_id, m in self._mappings.items() if m.target_section_id in wanted]

    def unmapped_source_ids(self, section_ids: Sequence[UUID]) -> List[UUID]:
        """Source subjects that will be retired without carry-forward."""
        mapped = {source_id for source_id, _ in self.entries_for(section_ids)}
        return [s for s in self._source_by_id if s not in mapped]

    def target_subject(self, section_id: UUID, subject_id: UUID) -> Optional[SubjectResponse]:
        for s in self._catalogs.subjects(section_id) or []:
            if s.id == subject_id:
                return s
        return None

    def clear(self) -> None:
        self._mappings.clear()

    def __len__(self) -> int:
        return len(self._mappings)

    def _first_match(
        self,
        title: str,
        candidates: Sequence[SubjectResponse],
        target_section_id: UUID,
    ) -> Optional[SubjectResponse]:
        wanted = normalize_title(title)
        used = self._used_targets(target_section_id)
        for candidate in candidates:
            if candidate.id not in used and normalize_title(candidate.title) == wanted:
                return candidate
        return None

    def _used_targets(self, section_id: UUID, exclude_source: Optional[UUID] = None) -> Set[UUID]:
        return {
            m.target_subject_id
            for source_id, m in self._mappings.items()
            if m.target_section_id == section_id and source_id != exclude_source
        }

    def _prune_children(self, source: SubjectResponse) -> None:
        """Drop child mappings that no longer sit under their parent's current target."""
        if source.is_child:
            return
        parent_target = self._mappings.get(source.id)
        for child_id in [cid for cid, s in self._source_by_id.items() if s.parent_subject_id == source.id]:
            child_target = self._mappings.get(child_id)
            if child_target is None:
                continue
            if parent_target is None or child_target.target_section_id != parent_target.target_section_id:
                del self._mappings[child_id]
                continue
            dest = self.target_subject(child_target.target_section_id, child_target.target_subject_id)
            if dest is not None and dest.parent_subject_id != parent_target.target_subject_id:
                del self._mappings[child_id]

    def _catalog(self, section_id: UUID) -> List[SubjectResponse]:
        catalog = self._catalogs.subjects(section_id)
        if catalog is None:
            raise MappingError(f"Subjects for section {section_id} are not loaded")
        return catalog

    def _source(self, source_id: UUID) -> SubjectResponse:
        try:
            return self._source_by_id[source_id]
        except KeyError:
            raise MappingError(f"Subject {source_id} does not belong to the section being dissolved")

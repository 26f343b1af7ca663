"""Per-session cache of destination subject catalogs.

Each destination section's catalog is fetched at most once per workflow
session. Fetches for different sections run concurrently and complete in any
order; every section carries its own loading/error state so one failing
section never blocks mapping work on the others.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Protocol
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from schoolrecords.api.v1.subjects import service as subject_service
from schoolrecords.api.v1.subjects.schemas import SubjectResponse
from schoolrecords.core.enums import CatalogStatus
from schoolrecords.core.exceptions import CatalogFetchError, ServiceError
from schoolrecords.core.logging import get_logger

logger = get_logger(__name__)


class SubjectCatalogSource(Protocol):
    async def fetch(self, section_id: UUID) -> List[SubjectResponse]:
        """Ordered subjects of a section, parents and children. Raises CatalogFetchError."""
        ...


@dataclass
class CatalogEntry:
    section_id: UUID
    status: CatalogStatus = CatalogStatus.PENDING
    subjects: List[SubjectResponse] = field(default_factory=list)
    error: Optional[str] = None
    task: Optional["asyncio.Task[None]"] = field(default=None, repr=False, compare=False)

    @property
    def loaded(self) -> bool:
        return self.status == CatalogStatus.LOADED


class SubjectCatalogCache:
    def __init__(self, source: SubjectCatalogSource) -> None:
        self._source = source
        self._entries: Dict[UUID, CatalogEntry] = {}

    def request(self, section_id: UUID) -> CatalogEntry:
        """Register a section; the fetch starts right away when an event loop is running."""
        entry = self._entries.get(section_id)
        if entry is None:
            entry = CatalogEntry(section_id=section_id)
            self._entries[section_id] = entry
            self._start(entry)
        return entry

    async def load(self, section_ids: Optional[Iterable[UUID]] = None) -> Dict[UUID, CatalogEntry]:
        """Fetch every requested (or every known) section not fetched yet, concurrently."""
        ids = list(section_ids) if section_ids is not None else list(self._entries)
        waiting = []
        for section_id in ids:
            entry = self.request(section_id)
            if entry.status == CatalogStatus.PENDING:
                self._start(entry)
            if entry.task is not None and not entry.task.done():
                waiting.append(entry.task)
        if waiting:
            await asyncio.gather(*waiting)
        return {section_id: self._entries[section_id] for section_id in ids}

    async def get(self, section_id: UUID) -> List[SubjectResponse]:
        entry = (await self.load([section_id]))[section_id]
        if not entry.loaded:
            raise CatalogFetchError(entry.error or "Failed to load subjects", section_id)
        return entry.subjects

    async def refetch(self, section_id: UUID) -> CatalogEntry:
        """Drop the cached catalog of one section and fetch it again."""
        old = self._entries.pop(section_id, None)
        if old is not None and old.task is not None and not old.task.done():
            old.task.cancel()
        await self.load([section_id])
        return self._entries[section_id]

    def entry(self, section_id: UUID) -> Optional[CatalogEntry]:
        return self._entries.get(section_id)

    def entries(self) -> List[CatalogEntry]:
        return list(self._entries.values())

    def subjects(self, section_id: UUID) -> Optional[List[SubjectResponse]]:
        """Loaded catalog of a section, or None while it is pending, loading or failed."""
        entry = self._entries.get(section_id)
        if entry is None or not entry.loaded:
            return None
        return entry.subjects

    def close(self) -> None:
        for entry in self._entries.values():
            if entry.task is not None and not entry.task.done():
                entry.task.cancel()
        self._entries.clear()

    def _start(self, entry: CatalogEntry) -> None:
        if entry.task is not None and not entry.task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        entry.status = CatalogStatus.LOADING
        entry.task = loop.create_task(self._fetch(entry))

    async def _fetch(self, entry: CatalogEntry) -> None:
        try:
            subjects = await self._source.fetch(entry.section_id)
        except ServiceError as e:
            self._fail(entry, e.message)
            logger.warning("subject_catalog_fetch_failed", section_id=str(entry.section_id), error=e.message)
            return
        except Exception:
            # Any source failure stays scoped to this section; cancellation is not caught.
            self._fail(entry, "Failed to load subjects")
            logger.exception("subject_catalog_fetch_crashed", section_id=str(entry.section_id))
            return
        entry.subjects = list(subjects)
        entry.status = CatalogStatus.LOADED
        entry.error = None
        logger.debug("subject_catalog_loaded", section_id=str(entry.section_id), subjects=len(entry.subjects))

    @staticmethod
    def _fail(entry: CatalogEntry, message: str) -> None:
        entry.subjects = []
        entry.status = CatalogStatus.ERROR
        entry.error = message


class DatabaseCatalogSource:
    """Reads destination catalogs from this service's own database, one session per fetch."""

    def __init__(self, session_factory: async_sessionmaker, institution_id: UUID) -> None:
        self._session_factory = session_factory
        self._institution_id = institution_id

    async def fetch(self, section_id: UUID) -> List[SubjectResponse]:
        async with self._session_factory() as db:
            try:
                return await subject_service.list_section_subjects(db, self._institution_id, section_id)
            except SQLAlchemyError as e:
                raise CatalogFetchError(f"Failed to load subjects: {e}", section_id)

"""Commit side of the workflow: the one call that applies a dissolution."""

from typing import Protocol
from uuid import UUID

from sqlalchemy.ext.asyncio import async_sessionmaker

from schoolrecords.api.v1.sections import service as section_service
from schoolrecords.api.v1.sections.schemas import DissolveSectionRequest, DissolveSectionResponse
from schoolrecords.core.exceptions import ServiceError, TransferError


class TransferExecutor(Protocol):
    async def execute(self, source_section_id: UUID, payload: DissolveSectionRequest) -> DissolveSectionResponse:
        """Apply the transfer atomically. Raises TransferError; never retries."""
        ...


class DatabaseTransferExecutor:
    """Runs the dissolve procedure against this service's own database."""

    def __init__(self, session_factory: async_sessionmaker, institution_id: UUID) -> None:
        self._session_factory = session_factory
        self._institution_id = institution_id

    async def execute(self, source_section_id: UUID, payload: DissolveSectionRequest) -> DissolveSectionResponse:
        async with self._session_factory() as db:
            try:
                return await section_service.dissolve_section(db, self._institution_id, source_section_id, payload)
            except ServiceError as e:
                raise TransferError(e.message, e.status_code)

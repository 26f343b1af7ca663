"""In-memory dissolution workflows, one per (institution, source section).

Opening a workflow for a section that already has one replaces it, which is
how "reopen resets everything" is expressed over HTTP. A workflow cancelled
while its commit is in flight is kept aside until that commit settles, so its
client can be closed without cutting the request short.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
from uuid import UUID

import httpx
from fastapi import status

from schoolrecords.core.exceptions import ServiceError, WorkflowBusyError
from schoolrecords.core.logging import get_logger
from schoolrecords.dissolution.workflow import DissolutionWorkflow

logger = get_logger(__name__)


@dataclass
class WorkflowHandle:
    workflow: DissolutionWorkflow
    client: Optional[httpx.AsyncClient] = None


class WorkflowRegistry:
    def __init__(self) -> None:
        self._handles: Dict[Tuple[UUID, UUID], WorkflowHandle] = {}
        self._orphans: List[WorkflowHandle] = []

    async def open(self, institution_id: UUID, section_id: UUID, handle: WorkflowHandle) -> DissolutionWorkflow:
        current = self._handles.get((institution_id, section_id))
        if current is not None:
            if current.workflow.pending:
                raise WorkflowBusyError()
            await self._dispose(current)
        self._handles[(institution_id, section_id)] = handle
        return handle.workflow

    def get(self, institution_id: UUID, section_id: UUID) -> DissolutionWorkflow:
        handle = self._handles.get((institution_id, section_id))
        if handle is None:
            raise ServiceError("No dissolution in progress for this section", status.HTTP_404_NOT_FOUND)
        return handle.workflow

    async def discard(
        self,
        institution_id: UUID,
        section_id: UUID,
        workflow: Optional[DissolutionWorkflow] = None,
    ) -> bool:
        """Close and forget the section's workflow.

        With ``workflow`` given, nothing happens unless that exact workflow is
        still the registered one. An in-flight commit keeps running; its client
        is closed by ``release`` once the commit settles.
        """
        key = (institution_id, section_id)
        handle = self._handles.get(key)
        if handle is None or (workflow is not None and handle.workflow is not workflow):
            return False
        del self._handles[key]
        if handle.workflow.pending:
            handle.workflow.close()
            self._orphans.append(handle)
            logger.info("dissolution_orphaned", section_id=str(section_id))
        else:
            await self._dispose(handle)
        return True

    async def release(self, workflow: DissolutionWorkflow) -> None:
        """Dispose of ``workflow`` if it was cancelled while its commit was in flight."""
        for handle in [h for h in self._orphans if h.workflow is workflow]:
            self._orphans.remove(handle)
            await self._dispose(handle)

    async def close_all(self) -> None:
        handles = [*self._handles.values(), *self._orphans]
        self._handles.clear()
        self._orphans.clear()
        for handle in handles:
            await self._dispose(handle)

    async def _dispose(self, handle: WorkflowHandle) -> None:
        handle.workflow.close()
        if handle.client is not None:
            await handle.client.aclose()


registry = WorkflowRegistry()


def get_registry() -> WorkflowRegistry:
    return registry

"""httpx collaborators for running the workflow against a remote records API."""

from typing import Any, List, Optional
from uuid import UUID

import httpx

from schoolrecords.api.v1.sections.schemas import DissolveSectionRequest, DissolveSectionResponse
from schoolrecords.api.v1.subjects.schemas import SubjectResponse
from schoolrecords.core.exceptions import CatalogFetchError, TransferError


def build_records_client(
    base_url: str,
    institution_id: UUID,
    timeout: float = 30.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=base_url,
        headers={"X-Institution-Id": str(institution_id)},
        timeout=timeout,
        transport=transport,
    )


def _error_message(response: httpx.Response, default: str) -> str:
    """Pull a human-readable message out of an error response (detail, message or error)."""
    try:
        body = response.json()
    except ValueError:
        return response.text or default
    if isinstance(body, dict):
        for key in ("detail", "message", "error"):
            if isinstance(body.get(key), str) and body[key]:
                return body[key]
    return default


def _unwrap(body: Any) -> List[Any]:
    # Accept both a bare list and the {"data": [...]} envelope.
    if isinstance(body, dict):
        body = body.get("data") or []
    return list(body)


class HttpCatalogSource:
    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def fetch(self, section_id: UUID) -> List[SubjectResponse]:
        try:
            response = await self._client.get("/api/v1/subjects", params={"class_section_id": str(section_id)})
        except httpx.HTTPError as e:
            raise CatalogFetchError(f"Failed to load subjects: {e}", section_id)
        if response.is_error:
            raise CatalogFetchError(_error_message(response, "Failed to load subjects"), section_id)
        try:
            return [SubjectResponse.model_validate(item) for item in _unwrap(response.json())]
        except (ValueError, TypeError):
            # Non-JSON bodies (proxy pages) and malformed subjects; ValidationError is a ValueError.
            raise CatalogFetchError("Unexpected response from the records API while loading subjects", section_id)


class HttpTransferExecutor:
    """POSTs the commit payload once. No retries: a failed call is reported as-is."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def execute(self, source_section_id: UUID, payload: DissolveSectionRequest) -> DissolveSectionResponse:
        try:
            response = await self._client.post(
                f"/api/v1/sections/{source_section_id}/dissolve",
                json=payload.model_dump(mode="json"),
            )
        except httpx.HTTPError as e:
            raise TransferError(f"Failed to transfer students: {e}")
        if response.is_error:
            raise TransferError(
                _error_message(response, "Failed to transfer students. Please try again."),
                response.status_code,
            )
        try:
            return DissolveSectionResponse.model_validate(response.json())
        except ValueError:
            raise TransferError("Unexpected response from the records API; check the section before retrying")

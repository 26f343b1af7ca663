from uuid import UUID

from fastapi import Header


async def get_institution_id(
    x_institution_id: UUID = Header(..., alias="X-Institution-Id", description="Institution the request is scoped to"),
) -> UUID:
    """Every records query is scoped to one institution, passed by the admin UI."""
    return x_institution_id

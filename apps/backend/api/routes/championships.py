"""Championship, edition, placement tier and points schema route handlers."""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.routes import API_PREFIX
from backend.database.db import get_db_session
from backend.services import championship_service
from backend.services.access import OrganizationContext
from backend.api.auth_dependencies import get_organization_context, require_system_admin
from backend.models.schemas import (
    ChampionshipCreate,
    ChampionshipUpdate,
    EditionCreate,
    EditionUpdate,
    PlacementTierCreate,
    PlacementTierUpdate,
    PointsSchemaCreate,
    PointsSchemaEntryCreate,
    PointsSchemaEntryUpdate,
    PointsSchemaUpdate,
)

router = APIRouter()


# ---------------------------------------------------------------------------
# Championships
# ---------------------------------------------------------------------------


@router.get(f"{API_PREFIX}/championships", response_model=List[Dict[str, Any]])
async def list_championships(
    federation_id: Optional[int] = Query(None, alias="federationId"),
    session: AsyncSession = Depends(get_db_session),
):
    return await championship_service.list_championships(session, federation_id)


@router.post(f"{API_PREFIX}/championships", response_model=Dict[str, Any], status_code=201)
async def create_championship(
    payload: ChampionshipCreate,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    return await championship_service.create_championship(session, ctx, payload.model_dump())


@router.get(f"{API_PREFIX}/championships/{{championship_id}}", response_model=Dict[str, Any])
async def get_championship(championship_id: int, session: AsyncSession = Depends(get_db_session)):
    return await championship_service.get_championship(session, championship_id)


@router.patch(f"{API_PREFIX}/championships/{{championship_id}}", response_model=Dict[str, Any])
async def update_championship(
    championship_id: int,
    payload: ChampionshipUpdate,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    return await championship_service.update_championship(
        session, ctx, championship_id, payload.model_dump(exclude_unset=True)
    )


@router.delete(f"{API_PREFIX}/championships/{{championship_id}}", status_code=204)
async def delete_championship(
    championship_id: int,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    await championship_service.delete_championship(session, ctx, championship_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Editions
# ---------------------------------------------------------------------------


@router.post(
    f"{API_PREFIX}/championships/{{championship_id}}/editions",
    response_model=Dict[str, Any],
    status_code=201,
)
async def create_edition(
    championship_id: int,
    payload: EditionCreate,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    return await championship_service.create_edition(
        session, ctx, championship_id, payload.model_dump()
    )


@router.get(f"{API_PREFIX}/editions/{{edition_id}}", response_model=Dict[str, Any])
async def get_edition(edition_id: int, session: AsyncSession = Depends(get_db_session)):
    return await championship_service.get_edition(session, edition_id)


@router.patch(f"{API_PREFIX}/editions/{{edition_id}}", response_model=Dict[str, Any])
async def update_edition(
    edition_id: int,
    payload: EditionUpdate,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    return await championship_service.update_edition(
        session, ctx, edition_id, payload.model_dump(exclude_unset=True)
    )


@router.delete(f"{API_PREFIX}/editions/{{edition_id}}", status_code=204)
async def delete_edition(
    edition_id: int,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    await championship_service.delete_edition(session, ctx, edition_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Placement tiers (system admin)
# ---------------------------------------------------------------------------


@router.get(f"{API_PREFIX}/placement-tiers", response_model=List[Dict[str, Any]])
async def list_placement_tiers(session: AsyncSession = Depends(get_db_session)):
    return await championship_service.list_placement_tiers(session)


@router.post(f"{API_PREFIX}/placement-tiers", response_model=Dict[str, Any], status_code=201)
async def create_placement_tier(
    payload: PlacementTierCreate,
    user: dict = Depends(require_system_admin),
    session: AsyncSession = Depends(get_db_session),
):
    return await championship_service.create_placement_tier(session, payload.model_dump())


@router.patch(f"{API_PREFIX}/placement-tiers/{{tier_id}}", response_model=Dict[str, Any])
async def update_placement_tier(
    tier_id: int,
    payload: PlacementTierUpdate,
    user: dict = Depends(require_system_admin),
    session: AsyncSession = Depends(get_db_session),
):
    return await championship_service.update_placement_tier(
        session, tier_id, payload.model_dump(exclude_unset=True)
    )


@router.delete(f"{API_PREFIX}/placement-tiers/{{tier_id}}", status_code=204)
async def delete_placement_tier(
    tier_id: int,
    user: dict = Depends(require_system_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Fails with 409 while the tier is used by a points schema or an event result."""
    await championship_service.delete_placement_tier(session, tier_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Points schemas (system admin)
# ---------------------------------------------------------------------------


@router.get(f"{API_PREFIX}/points-schemas", response_model=List[Dict[str, Any]])
async def list_points_schemas(session: AsyncSession = Depends(get_db_session)):
    return await championship_service.list_points_schemas(session)


@router.post(f"{API_PREFIX}/points-schemas", response_model=Dict[str, Any], status_code=201)
async def create_points_schema(
    payload: PointsSchemaCreate,
    user: dict = Depends(require_system_admin),
    session: AsyncSession = Depends(get_db_session),
):
    return await championship_service.create_points_schema(session, payload.model_dump())


@router.get(f"{API_PREFIX}/points-schemas/{{schema_id}}", response_model=Dict[str, Any])
async def get_points_schema(schema_id: int, session: AsyncSession = Depends(get_db_session)):
    return await championship_service.get_points_schema(session, schema_id)


@router.patch(f"{API_PREFIX}/points-schemas/{{schema_id}}", response_model=Dict[str, Any])
async def update_points_schema(
    schema_id: int,
    payload: PointsSchemaUpdate,
    user: dict = Depends(require_system_admin),
    session: AsyncSession = Depends(get_db_session),
):
    return await championship_service.update_points_schema(
        session, schema_id, payload.model_dump(exclude_unset=True)
    )


@router.delete(f"{API_PREFIX}/points-schemas/{{schema_id}}", status_code=204)
async def delete_points_schema(
    schema_id: int,
    user: dict = Depends(require_system_admin),
    session: AsyncSession = Depends(get_db_session),
):
    await championship_service.delete_points_schema(session, schema_id)
    return Response(status_code=204)


@router.post(
    f"{API_PREFIX}/points-schemas/{{schema_id}}/entries",
    response_model=Dict[str, Any],
    status_code=201,
)
async def create_points_schema_entry(
    schema_id: int,
    payload: PointsSchemaEntryCreate,
    user: dict = Depends(require_system_admin),
    session: AsyncSession = Depends(get_db_session),
):
    return await championship_service.create_points_schema_entry(
        session, schema_id, payload.placement_tier_id, payload.points
    )


@router.patch(f"{API_PREFIX}/points-schema-entries/{{entry_id}}", response_model=Dict[str, Any])
async def update_points_schema_entry(
    entry_id: int,
    payload: PointsSchemaEntryUpdate,
    user: dict = Depends(require_system_admin),
    session: AsyncSession = Depends(get_db_session),
):
    return await championship_service.update_points_schema_entry(session, entry_id, payload.points)


@router.delete(f"{API_PREFIX}/points-schema-entries/{{entry_id}}", status_code=204)
async def delete_points_schema_entry(
    entry_id: int,
    user: dict = Depends(require_system_admin),
    session: AsyncSession = Depends(get_db_session),
):
    await championship_service.delete_points_schema_entry(session, entry_id)
    return Response(status_code=204)

"""Season, age group, eligibility and season registration route handlers."""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.routes import API_PREFIX
from backend.database.db import get_db_session
from backend.services import season_service
from backend.services.access import OrganizationContext
from backend.api.auth_dependencies import get_organization_context
from backend.models.schemas import (
    AgeGroupCreate,
    AgeGroupUpdate,
    BulkRegistrationRequest,
    PlayersEligibilityRequest,
    RegistrationApproval,
    RegistrationRejection,
    SeasonCreate,
    SeasonRegistrationCreate,
    SeasonUpdate,
)
from backend.utils.pagination import PaginationParams, pagination_params

logger = logging.getLogger(__name__)
router = APIRouter()


# ---------------------------------------------------------------------------
# Seasons
# ---------------------------------------------------------------------------


@router.get(f"{API_PREFIX}/seasons", response_model=Dict[str, Any])
async def list_seasons(
    federation_id: Optional[int] = Query(None, alias="federationId"),
    status: Optional[str] = Query(None),
    params: PaginationParams = Depends(pagination_params),
    session: AsyncSession = Depends(get_db_session),
):
    return await season_service.list_seasons(
        session, params, federation_id=federation_id, status=status
    )


@router.post(
    f"{API_PREFIX}/federations/{{federation_id}}/seasons",
    response_model=Dict[str, Any],
    status_code=201,
)
async def create_season(
    federation_id: int,
    payload: SeasonCreate,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    return await season_service.create_season(session, ctx, federation_id, payload.model_dump())


@router.get(f"{API_PREFIX}/seasons/{{season_id}}", response_model=Dict[str, Any])
async def get_season(season_id: int, session: AsyncSession = Depends(get_db_session)):
    """A season with its age groups and whether registration is open today."""
    return await season_service.get_season(session, season_id)


@router.patch(f"{API_PREFIX}/seasons/{{season_id}}", response_model=Dict[str, Any])
async def update_season(
    season_id: int,
    payload: SeasonUpdate,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    return await season_service.update_season(
        session, ctx, season_id, payload.model_dump(exclude_unset=True)
    )


@router.delete(f"{API_PREFIX}/seasons/{{season_id}}", status_code=204)
async def delete_season(
    season_id: int,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    await season_service.delete_season(session, ctx, season_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Age groups
# ---------------------------------------------------------------------------


@router.get(f"{API_PREFIX}/seasons/{{season_id}}/age-groups", response_model=List[Dict[str, Any]])
async def list_age_groups(season_id: int, session: AsyncSession = Depends(get_db_session)):
    await season_service.get_season_model(session, season_id)
    return await season_service.list_age_groups(session, season_id)


@router.post(
    f"{API_PREFIX}/seasons/{{season_id}}/age-groups",
    response_model=Dict[str, Any],
    status_code=201,
)
async def create_age_group(
    season_id: int,
    payload: AgeGroupCreate,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    return await season_service.create_age_group(session, ctx, season_id, payload.model_dump())


@router.patch(f"{API_PREFIX}/age-groups/{{age_group_id}}", response_model=Dict[str, Any])
async def update_age_group(
    age_group_id: int,
    payload: AgeGroupUpdate,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    return await season_service.update_age_group(
        session, ctx, age_group_id, payload.model_dump(exclude_unset=True)
    )


@router.delete(f"{API_PREFIX}/age-groups/{{age_group_id}}", status_code=204)
async def delete_age_group(
    age_group_id: int,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    await season_service.delete_age_group(session, ctx, age_group_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Eligibility and registrations
# ---------------------------------------------------------------------------


@router.post(
    f"{API_PREFIX}/seasons/{{season_id}}/eligibility", response_model=List[Dict[str, Any]]
)
async def get_players_eligibility(
    season_id: int,
    payload: PlayersEligibilityRequest,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    """Per player: current age and eligibility for every age group of the season."""
    return await season_service.get_players_eligibility(session, season_id, payload.player_ids)


@router.get(f"{API_PREFIX}/season-registrations", response_model=Dict[str, Any])
async def list_registrations(
    season_id: Optional[int] = Query(None, alias="seasonId"),
    status: Optional[str] = Query(None),
    season_age_group_id: Optional[int] = Query(None, alias="ageGroupId"),
    organization_id: Optional[int] = Query(None, alias="organizationId"),
    player_id: Optional[int] = Query(None, alias="playerId"),
    params: PaginationParams = Depends(pagination_params),
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    return await season_service.list_registrations(
        session,
        ctx,
        params,
        season_id=season_id,
        status=status,
        season_age_group_id=season_age_group_id,
        organization_id=organization_id,
        player_id=player_id,
    )


@router.post(
    f"{API_PREFIX}/seasons/{{season_id}}/registrations",
    response_model=Dict[str, Any],
    status_code=201,
)
async def create_registration(
    season_id: int,
    payload: SeasonRegistrationCreate,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    return await season_service.create_registration(
        session, ctx, season_id, payload.player_id, payload.season_age_group_id
    )


@router.post(
    f"{API_PREFIX}/seasons/{{season_id}}/registrations/bulk",
    response_model=Dict[str, Any],
    status_code=201,
)
async def bulk_create_registrations(
    season_id: int,
    payload: BulkRegistrationRequest,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    """Register many club players at once; returns {count, registrations, errors}."""
    return await season_service.bulk_create_registrations(
        session, ctx, season_id, [item.model_dump() for item in payload.registrations]
    )


@router.post(
    f"{API_PREFIX}/season-registrations/{{registration_id}}/approve",
    response_model=Dict[str, Any],
)
async def approve_registration(
    registration_id: int,
    payload: RegistrationApproval,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    return await season_service.approve_registration(
        session, ctx, registration_id, payload.federation_id_number
    )


@router.post(
    f"{API_PREFIX}/season-registrations/{{registration_id}}/reject",
    response_model=Dict[str, Any],
)
async def reject_registration(
    registration_id: int,
    payload: RegistrationRejection,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    return await season_service.reject_registration(session, ctx, registration_id, payload.reason)


@router.post(
    f"{API_PREFIX}/season-registrations/{{registration_id}}/cancel",
    response_model=Dict[str, Any],
)
async def cancel_registration(
    registration_id: int,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    return await season_service.cancel_registration(session, ctx, registration_id)

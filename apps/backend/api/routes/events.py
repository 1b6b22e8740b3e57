"""Event, registration, group, heat, bracket and result route handlers."""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.routes import API_PREFIX
from backend.database.db import get_db_session
from backend.services import bracket_service, championship_service, event_service
from backend.services.access import OrganizationContext
from backend.api.auth_dependencies import (
    get_organization_context,
    get_organization_context_optional,
)
from backend.models.schemas import (
    BracketGenerateRequest,
    EventCreate,
    EventRegistrationCreate,
    EventResultsRequest,
    EventUpdate,
    GroupCreate,
    HeatsGenerateRequest,
    PositionScoresUpdate,
    SeedUpdate,
)
from backend.utils.pagination import PaginationParams, pagination_params

logger = logging.getLogger(__name__)
router = APIRouter()


def _event_data(payload, exclude_unset: bool = False) -> Dict[str, Any]:
    data = payload.model_dump(exclude_unset=exclude_unset)
    # event_dates is a JSON column
    if data.get("event_dates") is not None:
        data["event_dates"] = [d.isoformat() for d in data["event_dates"]]
    return data


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@router.get(f"{API_PREFIX}/events", response_model=Dict[str, Any])
async def list_events(
    championship_edition_id: Optional[int] = Query(None, alias="editionId"),
    event_type: Optional[str] = Query(None, alias="eventType"),
    gender: Optional[str] = Query(None),
    event_format: Optional[str] = Query(None, alias="format"),
    params: PaginationParams = Depends(pagination_params),
    ctx: Optional[OrganizationContext] = Depends(get_organization_context_optional),
    session: AsyncSession = Depends(get_db_session),
):
    """Public events, plus private events of the caller's clubs."""
    return await event_service.list_events(
        session,
        ctx,
        params,
        championship_edition_id=championship_edition_id,
        event_type=event_type,
        gender=gender,
        event_format=event_format,
    )


@router.post(f"{API_PREFIX}/events", response_model=Dict[str, Any], status_code=201)
async def create_event(
    payload: EventCreate,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    """Create a club event, or a championship event when an edition is given."""
    return await event_service.create_event(session, ctx, _event_data(payload))


@router.get(f"{API_PREFIX}/events/{{event_id}}", response_model=Dict[str, Any])
async def get_event(
    event_id: int,
    ctx: Optional[OrganizationContext] = Depends(get_organization_context_optional),
    session: AsyncSession = Depends(get_db_session),
):
    return await event_service.get_event(session, ctx, event_id)


@router.patch(f"{API_PREFIX}/events/{{event_id}}", response_model=Dict[str, Any])
async def update_event(
    event_id: int,
    payload: EventUpdate,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    return await event_service.update_event(
        session, ctx, event_id, _event_data(payload, exclude_unset=True)
    )


@router.delete(f"{API_PREFIX}/events/{{event_id}}", status_code=204)
async def delete_event(
    event_id: int,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    await event_service.delete_event(session, ctx, event_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Registrations
# ---------------------------------------------------------------------------


@router.get(
    f"{API_PREFIX}/events/{{event_id}}/registrations", response_model=List[Dict[str, Any]]
)
async def list_registrations(
    event_id: int,
    group_id: Optional[int] = Query(None, alias="groupId"),
    ctx: Optional[OrganizationContext] = Depends(get_organization_context_optional),
    session: AsyncSession = Depends(get_db_session),
):
    return await event_service.list_registrations(session, ctx, event_id, group_id=group_id)


@router.post(
    f"{API_PREFIX}/events/{{event_id}}/registrations",
    response_model=Dict[str, Any],
    status_code=201,
)
async def create_registration(
    event_id: int,
    payload: EventRegistrationCreate,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    return await event_service.create_registration(
        session, ctx, event_id, [p.model_dump() for p in payload.players]
    )


@router.delete(f"{API_PREFIX}/registrations/{{registration_id}}", status_code=204)
async def delete_registration(
    registration_id: int,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    await event_service.delete_registration(session, ctx, registration_id)
    return Response(status_code=204)


@router.patch(f"{API_PREFIX}/registrations/{{registration_id}}/seed", response_model=Dict[str, Any])
async def update_seed(
    registration_id: int,
    payload: SeedUpdate,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    return await event_service.update_seed(session, ctx, registration_id, payload.seed)


@router.put(
    f"{API_PREFIX}/registrations/{{registration_id}}/position-scores",
    response_model=Dict[str, Any],
)
async def update_position_scores(
    registration_id: int,
    payload: PositionScoresUpdate,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    """Record R/L/F/B scores for the players of a test event registration."""
    return await event_service.update_position_scores(
        session, ctx, registration_id, [p.model_dump() for p in payload.players]
    )


# ---------------------------------------------------------------------------
# Groups and heats
# ---------------------------------------------------------------------------


@router.get(f"{API_PREFIX}/events/{{event_id}}/groups", response_model=List[Dict[str, Any]])
async def list_groups(
    event_id: int,
    ctx: Optional[OrganizationContext] = Depends(get_organization_context_optional),
    session: AsyncSession = Depends(get_db_session),
):
    return await event_service.list_groups(session, ctx, event_id)


@router.post(
    f"{API_PREFIX}/events/{{event_id}}/groups", response_model=Dict[str, Any], status_code=201
)
async def create_group(
    event_id: int,
    payload: GroupCreate,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    """Create a group and its round-robin matches."""
    return await event_service.create_group(session, ctx, event_id, payload.registration_ids)


@router.post(
    f"{API_PREFIX}/events/{{event_id}}/heats", response_model=Dict[str, Any], status_code=201
)
async def generate_heats(
    event_id: int,
    payload: HeatsGenerateRequest,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    return await event_service.generate_heats(
        session, ctx, event_id, players_per_heat=payload.players_per_heat, shuffle=payload.shuffle
    )


@router.delete(f"{API_PREFIX}/events/{{event_id}}/heats", response_model=Dict[str, Any])
async def delete_all_heats(
    event_id: int,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    deleted = await event_service.delete_all_heats(session, ctx, event_id)
    return {"deleted": deleted}


@router.get(f"{API_PREFIX}/events/{{event_id}}/ranking", response_model=List[Dict[str, Any]])
async def get_test_event_ranking(
    event_id: int,
    ctx: Optional[OrganizationContext] = Depends(get_organization_context_optional),
    session: AsyncSession = Depends(get_db_session),
):
    return await event_service.get_test_event_ranking(session, ctx, event_id)


# ---------------------------------------------------------------------------
# Bracket
# ---------------------------------------------------------------------------


@router.post(
    f"{API_PREFIX}/events/{{event_id}}/bracket", response_model=Dict[str, Any], status_code=201
)
async def generate_bracket(
    event_id: int,
    payload: BracketGenerateRequest,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    """Generate the elimination bracket from the event's registrations."""
    seeds = [s.model_dump() for s in payload.seeds] if payload.seeds else None
    return await bracket_service.generate_bracket(
        session,
        ctx,
        event_id,
        seeds=seeds,
        has_third_place_match=payload.has_third_place_match,
    )


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@router.get(f"{API_PREFIX}/events/{{event_id}}/results", response_model=List[Dict[str, Any]])
async def list_event_results(
    event_id: int,
    ctx: Optional[OrganizationContext] = Depends(get_organization_context_optional),
    session: AsyncSession = Depends(get_db_session),
):
    await event_service.get_event_for_read(session, ctx, event_id)
    return await championship_service.list_event_results(session, event_id)


@router.put(f"{API_PREFIX}/events/{{event_id}}/results", response_model=List[Dict[str, Any]])
async def set_event_results(
    event_id: int,
    payload: EventResultsRequest,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    """Replace the event's final standings; points come from its points schema."""
    event = await event_service.get_event_for_write(session, ctx, event_id)
    return await championship_service.set_event_results(
        session, event, [r.model_dump() for r in payload.results]
    )

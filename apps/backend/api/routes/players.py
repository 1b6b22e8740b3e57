"""Player, player match history and player note route handlers."""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.routes import API_PREFIX
from backend.database.db import get_db_session
from backend.services import club_service, federation_service, match_service
from backend.services.access import OrganizationContext
from backend.api.auth_dependencies import (
    get_organization_context,
    require_org_manager,
    require_org_member,
    require_org_staff,
)
from backend.models.schemas import NoteCreate, NoteUpdate, PlayerCreate, PlayerUpdate
from backend.utils.pagination import PaginationParams, pagination_params

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get(f"{API_PREFIX}/players", response_model=Dict[str, Any])
async def list_players(
    q: Optional[str] = Query(None),
    gender: Optional[str] = Query(None),
    age_group: Optional[str] = Query(None, alias="ageGroup"),
    params: PaginationParams = Depends(pagination_params),
    ctx: OrganizationContext = Depends(require_org_member),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Players of the active club.

    Query params: q (name search), gender, ageGroup ("U-13", "Seniors", ...)
    plus the usual page/limit/sortBy/sortOrder.
    """
    return await club_service.list_players(
        session, ctx.organization_id, params, q=q, gender=gender, age_group=age_group
    )


@router.post(f"{API_PREFIX}/players", response_model=Dict[str, Any], status_code=201)
async def create_player(
    payload: PlayerCreate,
    ctx: OrganizationContext = Depends(require_org_staff),
    session: AsyncSession = Depends(get_db_session),
):
    return await club_service.create_player(session, ctx.organization_id, payload.model_dump())


@router.get(f"{API_PREFIX}/players/eligible-for-federation", response_model=List[Dict[str, Any]])
async def list_eligible_players(
    federation_id: int = Query(..., alias="federationId"),
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    """Club players flagged by whether they can still be requested for the federation."""
    return await federation_service.list_eligible_players(session, ctx, federation_id)


@router.get(f"{API_PREFIX}/players/{{player_id}}", response_model=Dict[str, Any])
async def get_player(
    player_id: int,
    ctx: OrganizationContext = Depends(require_org_member),
    session: AsyncSession = Depends(get_db_session),
):
    return await club_service.get_player(session, ctx.organization_id, player_id)


@router.patch(f"{API_PREFIX}/players/{{player_id}}", response_model=Dict[str, Any])
async def update_player(
    player_id: int,
    payload: PlayerUpdate,
    ctx: OrganizationContext = Depends(require_org_staff),
    session: AsyncSession = Depends(get_db_session),
):
    return await club_service.update_player(
        session, ctx.organization_id, player_id, payload.model_dump(exclude_unset=True)
    )


@router.delete(f"{API_PREFIX}/players/{{player_id}}", status_code=204)
async def delete_player(
    player_id: int,
    ctx: OrganizationContext = Depends(require_org_manager),
    session: AsyncSession = Depends(get_db_session),
):
    await club_service.delete_player(session, ctx.organization_id, player_id)
    return Response(status_code=204)


@router.get(f"{API_PREFIX}/players/{{player_id}}/matches", response_model=Dict[str, Any])
async def list_player_matches(
    player_id: int,
    params: PaginationParams = Depends(pagination_params),
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    return await match_service.list_player_matches(session, ctx, player_id, params)


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------


@router.get(f"{API_PREFIX}/players/{{player_id}}/notes", response_model=List[Dict[str, Any]])
async def list_notes(
    player_id: int,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    return await club_service.list_notes(session, ctx, player_id)


@router.post(
    f"{API_PREFIX}/players/{{player_id}}/notes", response_model=Dict[str, Any], status_code=201
)
async def create_note(
    player_id: int,
    payload: NoteCreate,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    return await club_service.create_note(
        session, ctx, player_id, payload.content, payload.note_type.value
    )


@router.patch(f"{API_PREFIX}/notes/{{note_id}}", response_model=Dict[str, Any])
async def update_note(
    note_id: int,
    payload: NoteUpdate,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    return await club_service.update_note(
        session,
        ctx,
        note_id,
        content=payload.content,
        note_type=payload.note_type.value if payload.note_type else None,
    )


@router.delete(f"{API_PREFIX}/notes/{{note_id}}", status_code=204)
async def delete_note(
    note_id: int,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    await club_service.delete_note(session, ctx, note_id)
    return Response(status_code=204)

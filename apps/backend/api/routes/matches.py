"""Match, set and live-scoring WebSocket route handlers."""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Response, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.routes import API_PREFIX
from backend.database import db
from backend.database.db import get_db_session
from backend.database.models import Match
from backend.services import auth_service, event_service, match_service, user_service
from backend.services.access import OrganizationContext
from backend.services.websocket_manager import WEBSOCKET_TIMEOUT_SECONDS, get_websocket_manager
from backend.api.auth_dependencies import (
    build_organization_context,
    get_organization_context,
    get_organization_context_optional,
)
from backend.models.schemas import MatchUpdate, SetScoreUpdate

logger = logging.getLogger(__name__)
router = APIRouter()


# ---------------------------------------------------------------------------
# Matches
# ---------------------------------------------------------------------------


@router.get(f"{API_PREFIX}/events/{{event_id}}/matches", response_model=List[Dict[str, Any]])
async def list_matches(
    event_id: int,
    group_id: Optional[int] = Query(None, alias="groupId"),
    round_number: Optional[int] = Query(None, alias="round"),
    ctx: Optional[OrganizationContext] = Depends(get_organization_context_optional),
    session: AsyncSession = Depends(get_db_session),
):
    return await match_service.list_matches(
        session, ctx, event_id, group_id=group_id, round_number=round_number
    )


@router.get(f"{API_PREFIX}/matches/{{match_id}}", response_model=Dict[str, Any])
async def get_match(
    match_id: int,
    ctx: Optional[OrganizationContext] = Depends(get_organization_context_optional),
    session: AsyncSession = Depends(get_db_session),
):
    return await match_service.get_match(session, ctx, match_id)


@router.patch(f"{API_PREFIX}/matches/{{match_id}}", response_model=Dict[str, Any])
async def update_match(
    match_id: int,
    payload: MatchUpdate,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    return await match_service.update_match(
        session, ctx, match_id, payload.model_dump(exclude_unset=True)
    )


@router.post(f"{API_PREFIX}/matches/{{match_id}}/complete", response_model=Dict[str, Any])
async def complete_match(
    match_id: int,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    """Close a match from its set majority and advance the winner."""
    return await match_service.complete_match(session, ctx, match_id)


@router.post(f"{API_PREFIX}/matches/{{match_id}}/reset", response_model=Dict[str, Any])
async def reset_match(
    match_id: int,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    """Reopen a played match, undoing standings and bracket advancement."""
    return await match_service.reset_match(session, ctx, match_id)


# ---------------------------------------------------------------------------
# Sets
# ---------------------------------------------------------------------------


@router.post(
    f"{API_PREFIX}/matches/{{match_id}}/sets", response_model=Dict[str, Any], status_code=201
)
async def create_set(
    match_id: int,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    return await match_service.create_set(session, ctx, match_id)


@router.patch(f"{API_PREFIX}/sets/{{set_id}}", response_model=Dict[str, Any])
async def update_set_scores(
    set_id: int,
    payload: SetScoreUpdate,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    return await match_service.update_set_scores(
        session, ctx, set_id, payload.registration1_score, payload.registration2_score
    )


@router.post(f"{API_PREFIX}/sets/{{set_id}}/played", response_model=Dict[str, Any])
async def mark_set_played(
    set_id: int,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    """Mark a set played; completes the match once a side holds the majority."""
    return await match_service.mark_set_played(session, ctx, set_id)


@router.delete(f"{API_PREFIX}/sets/{{set_id}}", status_code=204)
async def delete_set(
    set_id: int,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    await match_service.delete_set(session, ctx, set_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Live scoring
# ---------------------------------------------------------------------------


async def can_watch_match(session: AsyncSession, user_id: int, match_id: int) -> bool:
    """Whether the token's user may read the event the match belongs to."""
    match = await session.get(Match, match_id)
    if match is None:
        return False
    user = await user_service.get_user_by_id(session, user_id)
    if user is None:
        return False
    ctx = await build_organization_context(session, user, None)
    event = await event_service.get_event_model(session, match.event_id)
    return event_service.can_read_event(ctx, event)


@router.websocket(f"{API_PREFIX}/ws/matches/{{match_id}}")
async def websocket_match(websocket: WebSocket, match_id: int):
    """
    WebSocket endpoint for live score updates of one match.

    Requires JWT token in query parameter: ?token=<jwt_token>
    """
    await websocket.accept()

    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=1008, reason="Missing authentication token")
        return

    payload = auth_service.verify_token(token)
    if payload is None or payload.get("user_id") is None:
        await websocket.close(code=1008, reason="Invalid authentication token")
        return

    async with db.session_scope() as session:
        allowed = await can_watch_match(session, payload["user_id"], match_id)
    if not allowed:
        # Private events are hidden rather than forbidden
        await websocket.close(code=1008, reason="Match not found")
        return

    manager = get_websocket_manager()
    await manager.connect(match_id, websocket)

    try:
        while True:
            try:
                data = await asyncio.wait_for(
                    websocket.receive_text(), timeout=WEBSOCKET_TIMEOUT_SECONDS
                )
                await manager.update_activity(websocket)

                # Client sends "ping", server responds "pong"
                if data == "ping":
                    await websocket.send_text("pong")
            except asyncio.TimeoutError:
                # Ping the client; a dead socket ends the loop
                try:
                    await websocket.send_text("ping")
                except Exception:
                    break
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected from match {match_id}")
    except Exception as e:
        logger.error(f"WebSocket error for match {match_id}: {e}")
    finally:
        await manager.disconnect(match_id, websocket)

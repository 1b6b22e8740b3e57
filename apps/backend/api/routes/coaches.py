"""Coach route handlers."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.routes import API_PREFIX
from backend.database.db import get_db_session
from backend.services import club_service
from backend.services.access import OrganizationContext
from backend.api.auth_dependencies import require_org_manager, require_org_member
from backend.models.schemas import CoachCreate, CoachUpdate
from backend.utils.pagination import PaginationParams, pagination_params

router = APIRouter()


@router.get(f"{API_PREFIX}/coaches", response_model=Dict[str, Any])
async def list_coaches(
    q: Optional[str] = Query(None),
    params: PaginationParams = Depends(pagination_params),
    ctx: OrganizationContext = Depends(require_org_member),
    session: AsyncSession = Depends(get_db_session),
):
    return await club_service.list_coaches(session, ctx.organization_id, params, q=q)


@router.post(f"{API_PREFIX}/coaches", response_model=Dict[str, Any], status_code=201)
async def create_coach(
    payload: CoachCreate,
    ctx: OrganizationContext = Depends(require_org_manager),
    session: AsyncSession = Depends(get_db_session),
):
    return await club_service.create_coach(session, ctx.organization_id, payload.model_dump())


@router.get(f"{API_PREFIX}/coaches/{{coach_id}}", response_model=Dict[str, Any])
async def get_coach(
    coach_id: int,
    ctx: OrganizationContext = Depends(require_org_member),
    session: AsyncSession = Depends(get_db_session),
):
    return await club_service.get_coach(session, ctx.organization_id, coach_id)


@router.patch(f"{API_PREFIX}/coaches/{{coach_id}}", response_model=Dict[str, Any])
async def update_coach(
    coach_id: int,
    payload: CoachUpdate,
    ctx: OrganizationContext = Depends(require_org_manager),
    session: AsyncSession = Depends(get_db_session),
):
    return await club_service.update_coach(
        session, ctx.organization_id, coach_id, payload.model_dump(exclude_unset=True)
    )


@router.delete(f"{API_PREFIX}/coaches/{{coach_id}}", status_code=204)
async def delete_coach(
    coach_id: int,
    ctx: OrganizationContext = Depends(require_org_manager),
    session: AsyncSession = Depends(get_db_session),
):
    await club_service.delete_coach(session, ctx.organization_id, coach_id)
    return Response(status_code=204)

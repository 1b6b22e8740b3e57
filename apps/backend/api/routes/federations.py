"""Federation, federation club, member, player request and club request route handlers."""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.routes import API_PREFIX
from backend.database.db import get_db_session
from backend.services import federation_service
from backend.services.access import OrganizationContext
from backend.api.auth_dependencies import get_organization_context, require_system_admin
from backend.models.schemas import (
    FederationClubCreate,
    FederationClubRequestCreate,
    FederationClubRequestReview,
    FederationCreate,
    FederationMemberStatusUpdate,
    FederationRequestBulkCreate,
    FederationRequestCreate,
    FederationRequestReview,
    FederationUpdate,
)
from backend.utils.pagination import PaginationParams, pagination_params

logger = logging.getLogger(__name__)
router = APIRouter()


# ---------------------------------------------------------------------------
# Federations
# ---------------------------------------------------------------------------


@router.get(f"{API_PREFIX}/federations", response_model=List[Dict[str, Any]])
async def list_federations(session: AsyncSession = Depends(get_db_session)):
    return await federation_service.list_federations(session)


@router.post(f"{API_PREFIX}/federations", response_model=Dict[str, Any], status_code=201)
async def create_federation(
    payload: FederationCreate,
    user: dict = Depends(require_system_admin),
    session: AsyncSession = Depends(get_db_session),
):
    return await federation_service.create_federation(session, payload.model_dump())


@router.get(f"{API_PREFIX}/federations/{{federation_id}}", response_model=Dict[str, Any])
async def get_federation(federation_id: int, session: AsyncSession = Depends(get_db_session)):
    return await federation_service.get_federation(session, federation_id)


@router.patch(f"{API_PREFIX}/federations/{{federation_id}}", response_model=Dict[str, Any])
async def update_federation(
    federation_id: int,
    payload: FederationUpdate,
    user: dict = Depends(require_system_admin),
    session: AsyncSession = Depends(get_db_session),
):
    return await federation_service.update_federation(
        session, federation_id, payload.model_dump(exclude_unset=True)
    )


@router.delete(f"{API_PREFIX}/federations/{{federation_id}}", status_code=204)
async def delete_federation(
    federation_id: int,
    user: dict = Depends(require_system_admin),
    session: AsyncSession = Depends(get_db_session),
):
    await federation_service.delete_federation(session, federation_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Federation clubs
# ---------------------------------------------------------------------------


@router.get(
    f"{API_PREFIX}/federations/{{federation_id}}/clubs", response_model=List[Dict[str, Any]]
)
async def list_federation_clubs(
    federation_id: int, session: AsyncSession = Depends(get_db_session)
):
    return await federation_service.list_federation_clubs(session, federation_id)


@router.post(
    f"{API_PREFIX}/federations/{{federation_id}}/clubs",
    response_model=Dict[str, Any],
    status_code=201,
)
async def add_federation_club(
    federation_id: int,
    payload: FederationClubCreate,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    return await federation_service.add_federation_club(
        session, ctx, federation_id, payload.organization_id
    )


@router.delete(
    f"{API_PREFIX}/federations/{{federation_id}}/clubs/{{organization_id}}", status_code=204
)
async def remove_federation_club(
    federation_id: int,
    organization_id: int,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    await federation_service.remove_federation_club(session, ctx, federation_id, organization_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Federation members
# ---------------------------------------------------------------------------


@router.get(f"{API_PREFIX}/federations/{{federation_id}}/members", response_model=Dict[str, Any])
async def list_federation_members(
    federation_id: int,
    status: Optional[str] = Query(None),
    params: PaginationParams = Depends(pagination_params),
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    return await federation_service.list_federation_members(
        session, ctx, federation_id, params, status=status
    )


@router.patch(f"{API_PREFIX}/federation-members/{{member_id}}", response_model=Dict[str, Any])
async def update_member_status(
    member_id: int,
    payload: FederationMemberStatusUpdate,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    return await federation_service.update_member_status(
        session, ctx, member_id, payload.status.value
    )


# ---------------------------------------------------------------------------
# Federation player requests
# ---------------------------------------------------------------------------


@router.get(f"{API_PREFIX}/federation-requests", response_model=Dict[str, Any])
async def list_requests(
    status: Optional[str] = Query(None),
    federation_id: Optional[int] = Query(None, alias="federationId"),
    params: PaginationParams = Depends(pagination_params),
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    return await federation_service.list_requests(
        session, ctx, params, status=status, federation_id=federation_id
    )


@router.post(f"{API_PREFIX}/federation-requests", response_model=Dict[str, Any], status_code=201)
async def create_request(
    payload: FederationRequestCreate,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    """Ask a federation to register one of the active club's players."""
    return await federation_service.create_request(
        session, ctx, payload.federation_id, payload.player_id
    )


@router.post(
    f"{API_PREFIX}/federation-requests/{{request_id}}/review", response_model=Dict[str, Any]
)
async def review_request(
    request_id: int,
    payload: FederationRequestReview,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    return await federation_service.review_request(
        session,
        ctx,
        request_id,
        payload.status.value,
        rejection_reason=payload.rejection_reason,
        federation_registration_number=payload.federation_registration_number,
    )


@router.post(
    f"{API_PREFIX}/federation-requests/bulk", response_model=Dict[str, Any], status_code=201
)
async def bulk_create_requests(
    payload: FederationRequestBulkCreate,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    """Request several players at once; any invalid player rejects the whole batch."""
    return await federation_service.bulk_create_requests(
        session, ctx, payload.federation_id, payload.player_ids
    )


# ---------------------------------------------------------------------------
# Federation club requests
# ---------------------------------------------------------------------------


@router.get(f"{API_PREFIX}/federation-club-requests", response_model=Dict[str, Any])
async def list_club_requests(
    status: Optional[str] = Query(None),
    federation_id: Optional[int] = Query(None, alias="federationId"),
    params: PaginationParams = Depends(pagination_params),
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    return await federation_service.list_club_requests(
        session, ctx, params, status=status, federation_id=federation_id
    )


@router.post(
    f"{API_PREFIX}/federation-club-requests", response_model=Dict[str, Any], status_code=201
)
async def create_club_request(
    payload: FederationClubRequestCreate,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    """Ask a federation to accept the active club."""
    return await federation_service.create_club_request(session, ctx, payload.federation_id)


@router.post(
    f"{API_PREFIX}/federation-club-requests/{{request_id}}/review",
    response_model=Dict[str, Any],
)
async def review_club_request(
    request_id: int,
    payload: FederationClubRequestReview,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    return await federation_service.review_club_request(
        session, ctx, request_id, payload.status.value, rejection_reason=payload.rejection_reason
    )


@router.delete(f"{API_PREFIX}/federation-club-requests/{{request_id}}", status_code=204)
async def delete_club_request(
    request_id: int,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    await federation_service.delete_club_request(session, ctx, request_id)
    return Response(status_code=204)

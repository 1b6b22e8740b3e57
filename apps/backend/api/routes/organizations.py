"""Organization (club) and membership route handlers."""

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.routes import API_PREFIX
from backend.database.db import get_db_session
from backend.database.models import MemberRole
from backend.services import club_service
from backend.services.access import MANAGER_ROLES, OrganizationContext
from backend.api.auth_dependencies import get_current_user, get_organization_context
from backend.models.schemas import (
    MemberCreate,
    MemberRoleUpdate,
    OrganizationCreate,
    OrganizationUpdate,
)

logger = logging.getLogger(__name__)
router = APIRouter()


def _require_org_role(ctx: OrganizationContext, organization_id: int, roles=None) -> None:
    """Membership of organization_id (limited to roles when given), or system admin."""
    if ctx.is_system_admin:
        return
    role = ctx.memberships.get(organization_id)
    if role is None or (roles is not None and role not in roles):
        raise HTTPException(status_code=403, detail="Not allowed for this organization")


@router.post(f"{API_PREFIX}/organizations", response_model=Dict[str, Any], status_code=201)
async def create_organization(
    payload: OrganizationCreate,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Create a club; the caller becomes its owner."""
    return await club_service.create_organization(
        session,
        owner_user_id=user["id"],
        name=payload.name,
        slug=payload.slug,
        logo=payload.logo,
        metadata=payload.metadata,
    )


@router.get(f"{API_PREFIX}/organizations", response_model=List[Dict[str, Any]])
async def list_organizations(
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    """The caller's clubs with their role; system admins get every club."""
    if ctx.is_system_admin:
        return await club_service.list_organizations(session)
    return await club_service.list_user_organizations(session, ctx.user_id)


@router.get(f"{API_PREFIX}/organizations/{{organization_id}}", response_model=Dict[str, Any])
async def get_organization(
    organization_id: int,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    _require_org_role(ctx, organization_id)
    return await club_service.get_organization(session, organization_id)


@router.patch(f"{API_PREFIX}/organizations/{{organization_id}}", response_model=Dict[str, Any])
async def update_organization(
    organization_id: int,
    payload: OrganizationUpdate,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    _require_org_role(ctx, organization_id, MANAGER_ROLES)
    return await club_service.update_organization(
        session, organization_id, **payload.model_dump(exclude_unset=True)
    )


@router.delete(f"{API_PREFIX}/organizations/{{organization_id}}", status_code=204)
async def delete_organization(
    organization_id: int,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    _require_org_role(ctx, organization_id, {MemberRole.OWNER.value})
    await club_service.delete_organization(session, organization_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------


@router.get(
    f"{API_PREFIX}/organizations/{{organization_id}}/members",
    response_model=List[Dict[str, Any]],
)
async def list_members(
    organization_id: int,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    _require_org_role(ctx, organization_id)
    return await club_service.list_members(session, organization_id)


@router.post(
    f"{API_PREFIX}/organizations/{{organization_id}}/members",
    response_model=Dict[str, Any],
    status_code=201,
)
async def add_member(
    organization_id: int,
    payload: MemberCreate,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    _require_org_role(ctx, organization_id, MANAGER_ROLES)
    return await club_service.add_member(
        session,
        organization_id,
        role=payload.role.value,
        user_id=payload.user_id,
        email=payload.email,
    )


@router.patch(
    f"{API_PREFIX}/organizations/{{organization_id}}/members/{{member_id}}",
    response_model=Dict[str, Any],
)
async def update_member_role(
    organization_id: int,
    member_id: int,
    payload: MemberRoleUpdate,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    _require_org_role(ctx, organization_id, MANAGER_ROLES)
    return await club_service.update_member_role(
        session, organization_id, member_id, payload.role.value
    )


@router.delete(
    f"{API_PREFIX}/organizations/{{organization_id}}/members/{{member_id}}", status_code=204
)
async def remove_member(
    organization_id: int,
    member_id: int,
    ctx: OrganizationContext = Depends(get_organization_context),
    session: AsyncSession = Depends(get_db_session),
):
    _require_org_role(ctx, organization_id, MANAGER_ROLES)
    await club_service.remove_member(session, organization_id, member_id)
    return Response(status_code=204)

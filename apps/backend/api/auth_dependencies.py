"""
Authentication dependencies for FastAPI routes.
"""

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from backend.services import auth_service, club_service, user_service
from backend.services.access import OrganizationContext
from backend.database.db import get_db_session
from backend.database.models import UserRole

security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    session: AsyncSession = Depends(get_db_session),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> dict:
    """
    Dependency to get the current authenticated user from JWT token.

    Args:
        session: Database session
        credentials: HTTP Bearer token credentials

    Returns:
        User dictionary

    Raises:
        HTTPException: If token is missing or invalid, or the user no longer exists
    """
    if credentials is None:
        raise _unauthorized("Not authenticated")

    payload = auth_service.verify_token(credentials.credentials)
    if payload is None:
        raise _unauthorized("Invalid authentication token")

    user_id = payload.get("user_id")
    if user_id is None:
        raise _unauthorized("Invalid token payload")

    user = await user_service.get_user_by_id(session, user_id)
    if user is None:
        raise _unauthorized("User not found")

    return user


async def get_current_user_optional(
    session: AsyncSession = Depends(get_db_session),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[dict]:
    """
    Optional dependency to get the current authenticated user.
    Returns None if no token is provided or token is invalid.
    """
    if credentials is None:
        return None

    try:
        return await get_current_user(session, credentials)
    except HTTPException:
        return None


async def require_system_admin(user: dict = Depends(get_current_user)) -> dict:
    if user.get("role") != UserRole.ADMIN.value:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="System admin access required")
    return user


async def build_organization_context(
    session: AsyncSession, user: dict, organization_header: Optional[str]
) -> OrganizationContext:
    """
    Resolve the caller's active organization.

    The X-Organization-Id header wins; without it, a user with exactly one
    membership gets that club. System admins may select any club.
    """
    memberships = {
        m["organization_id"]: m["role"]
        for m in await club_service.get_user_memberships(session, user["id"])
    }
    ctx = OrganizationContext(user=user, memberships=memberships)

    if organization_header:
        try:
            organization_id = int(organization_header)
        except ValueError:
            raise HTTPException(status_code=400, detail="X-Organization-Id must be an integer")
        if organization_id in memberships:
            ctx.organization_id = organization_id
            ctx.role = memberships[organization_id]
        elif ctx.is_system_admin:
            ctx.organization_id = organization_id
        else:
            raise HTTPException(status_code=403, detail="Not a member of this organization")
    elif len(memberships) == 1:
        ctx.organization_id, ctx.role = next(iter(memberships.items()))
    return ctx


async def get_organization_context(
    session: AsyncSession = Depends(get_db_session),
    user: dict = Depends(get_current_user),
    x_organization_id: Optional[str] = Header(default=None),
) -> OrganizationContext:
    return await build_organization_context(session, user, x_organization_id)


async def get_organization_context_optional(
    session: AsyncSession = Depends(get_db_session),
    user: Optional[dict] = Depends(get_current_user_optional),
    x_organization_id: Optional[str] = Header(default=None),
) -> Optional[OrganizationContext]:
    """Context for public reads: None for anonymous callers."""
    if user is None:
        return None
    return await build_organization_context(session, user, x_organization_id)


async def require_org_member(
    ctx: OrganizationContext = Depends(get_organization_context),
) -> OrganizationContext:
    if ctx.organization_id is None:
        raise HTTPException(status_code=403, detail="No active organization")
    return ctx


async def require_org_manager(
    ctx: OrganizationContext = Depends(get_organization_context),
) -> OrganizationContext:
    """Owner or admin of the active organization (or a system admin)."""
    if ctx.organization_id is None:
        raise HTTPException(status_code=403, detail="No active organization")
    if not ctx.is_org_manager:
        raise HTTPException(status_code=403, detail="Organization owner or admin access required")
    return ctx


async def require_org_staff(
    ctx: OrganizationContext = Depends(get_organization_context),
) -> OrganizationContext:
    """Owner, admin or coach of the active organization (or a system admin)."""
    if ctx.organization_id is None:
        raise HTTPException(status_code=403, detail="No active organization")
    if not ctx.is_org_staff:
        raise HTTPException(
            status_code=403, detail="Organization owner, admin or coach access required"
        )
    return ctx

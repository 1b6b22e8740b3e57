"""Authentication and user administration route handlers."""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.routes import API_PREFIX, AUTH_RATE_LIMIT, INVALID_CREDENTIALS_RESPONSE, limiter
from backend.database.db import get_db_session
from backend.services import auth_service, club_service, user_service
from backend.api.auth_dependencies import get_current_user, require_system_admin
from backend.models.schemas import AuthResponse, LoginRequest, SignupRequest, UserRolesUpdate

logger = logging.getLogger(__name__)
router = APIRouter()


def _auth_response(user_id: int, email: str) -> AuthResponse:
    token = auth_service.create_access_token(data={"user_id": user_id, "email": email})
    return AuthResponse(access_token=token, token_type="bearer", user_id=user_id, email=email)


@router.post(f"{API_PREFIX}/auth/signup", response_model=AuthResponse, status_code=201)
@limiter.limit(AUTH_RATE_LIMIT)
async def signup(
    request: Request, payload: SignupRequest, session: AsyncSession = Depends(get_db_session)
):
    """Create an account and return an access token for it."""
    user_id = await user_service.create_user(
        session,
        email=payload.email,
        name=payload.name.strip(),
        password_hash=auth_service.hash_password(payload.password),
    )
    return _auth_response(user_id, payload.email.strip().lower())


@router.post(f"{API_PREFIX}/auth/login", response_model=AuthResponse)
@limiter.limit(AUTH_RATE_LIMIT)
async def login(
    request: Request, payload: LoginRequest, session: AsyncSession = Depends(get_db_session)
):
    """Login with email and password."""
    user = await user_service.get_user_by_email(session, payload.email)
    if not user or not auth_service.verify_password(payload.password, user.get("password_hash")):
        raise INVALID_CREDENTIALS_RESPONSE
    return _auth_response(user["id"], user["email"])


@router.get(f"{API_PREFIX}/auth/me", response_model=Dict[str, Any])
async def get_me(
    user: dict = Depends(get_current_user), session: AsyncSession = Depends(get_db_session)
):
    """Current user with their club memberships."""
    return {**user, "memberships": await club_service.get_user_memberships(session, user["id"])}


# ---------------------------------------------------------------------------
# User administration
# ---------------------------------------------------------------------------


@router.get(f"{API_PREFIX}/users", response_model=List[Dict[str, Any]])
async def list_users(
    q: Optional[str] = Query(None),
    user: dict = Depends(require_system_admin),
    session: AsyncSession = Depends(get_db_session),
):
    return await user_service.list_users(session, q)


@router.patch(f"{API_PREFIX}/users/{{user_id}}/roles", response_model=Dict[str, Any])
async def update_user_roles(
    user_id: int,
    payload: UserRolesUpdate,
    user: dict = Depends(require_system_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Set a user's system role or federation assignment (system admin only)."""
    updated = await user_service.update_user_roles(
        session,
        user_id,
        role=payload.role.value if payload.role else None,
        federation_id=payload.federation_id,
        federation_role=payload.federation_role.value if payload.federation_role else None,
        clear_federation=payload.clear_federation,
    )
    logger.info(f"User {user['id']} updated roles of user {user_id}")
    return updated

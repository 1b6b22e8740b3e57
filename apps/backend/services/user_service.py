"""
User service layer for account and role database operations.
"""

from typing import Optional, Dict, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from backend.database.models import User, UserRole, FederationRole
from backend.services.errors import ConflictError, NotFoundError
from backend.utils.serialization import to_json_value
import logging

logger = logging.getLogger(__name__)


async def create_user(
    session: AsyncSession,
    email: str,
    name: str,
    password_hash: str,
    role: str = UserRole.USER.value,
) -> int:
    """
    Create a new user account.

    Args:
        session: Database session
        email: Login email (normalized to lowercase)
        name: Display name
        password_hash: bcrypt hash
        role: "user" or "admin"

    Returns:
        User ID of the created user

    Raises:
        ConflictError: If the email is already registered
    """
    email = email.strip().lower()
    result = await session.execute(select(User.id).where(User.email == email))
    if result.scalar_one_or_none():
        raise ConflictError(f"Email {email} is already registered")

    new_user = User(email=email, name=name, password_hash=password_hash, role=UserRole(role))
    session.add(new_user)
    await session.flush()
    logger.info(f"Created user {new_user.id}")
    return new_user.id


async def get_user_by_email(session: AsyncSession, email: str) -> Optional[Dict]:
    """
    Get user by email address.

    Args:
        session: Database session
        email: Email address (will be normalized to lowercase)

    Returns:
        User dictionary (including password_hash) or None if not found
    """
    email = email.strip().lower() if email else None
    if not email:
        return None

    result = await session.execute(
        select(User).where(func.lower(User.email) == email).limit(1)
    )
    user = result.scalar_one_or_none()
    return _user_to_dict(user, include_hash=True) if user else None


async def get_user_by_id(session: AsyncSession, user_id: int) -> Optional[Dict]:
    """
    Get user by ID.

    Returns:
        User dictionary or None if not found
    """
    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    return _user_to_dict(user) if user else None


async def list_users(session: AsyncSession, q: Optional[str] = None) -> List[Dict]:
    query = select(User).order_by(User.name)
    if q:
        pattern = f"%{q.lower()}%"
        query = query.where(
            func.lower(User.name).like(pattern) | func.lower(User.email).like(pattern)
        )
    result = await session.execute(query)
    return [_user_to_dict(u) for u in result.scalars().all()]


async def update_user_roles(
    session: AsyncSession,
    user_id: int,
    role: Optional[str] = None,
    federation_id: Optional[int] = None,
    federation_role: Optional[str] = None,
    clear_federation: bool = False,
) -> Dict:
    """
    Change a user's system role and/or federation assignment.

    A federation role is only meaningful together with a federation, so
    clear_federation drops both.
    """
    user = await session.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")

    if role is not None:
        user.role = UserRole(role)
    if clear_federation:
        user.federation_id = None
        user.federation_role = None
    else:
        if federation_id is not None:
            user.federation_id = federation_id
        if federation_role is not None:
            user.federation_role = FederationRole(federation_role)

    await session.flush()
    logger.info(
        f"Updated roles for user {user_id}: role={to_json_value(user.role)}, "
        f"federation={user.federation_id}/{user.federation_role}"
    )
    return _user_to_dict(user)


def _user_to_dict(user: User, include_hash: bool = False) -> Dict:
    """
    Convert a User ORM instance to a dictionary.

    Args:
        user: User ORM instance
        include_hash: Include password_hash (only for login checks)
    """
    data = {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": to_json_value(user.role) or UserRole.USER.value,
        "federation_id": user.federation_id,
        "federation_role": to_json_value(user.federation_role),
        "created_at": user.created_at.isoformat() if user.created_at else None,
        "updated_at": user.updated_at.isoformat() if user.updated_at else None,
    }
    if include_hash:
        data["password_hash"] = user.password_hash
    return data

#!/usr/bin/env python3
"""
Initialize default database values.
This script is run on startup to populate the default placement tiers and
promote the configured admin account.
"""

import asyncio
import logging
import os

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.database.db import session_scope
from backend.database.models import PlacementTier, User, UserRole
from backend.utils.constants import DEFAULT_PLACEMENT_TIERS

logger = logging.getLogger(__name__)


async def ensure_placement_tiers(session: AsyncSession) -> int:
    """Insert any default placement tier that is missing. Returns the number added."""
    result = await session.execute(select(PlacementTier.name))
    existing = set(result.scalars().all())
    added = 0
    for name, display_name, rank in DEFAULT_PLACEMENT_TIERS:
        if name not in existing:
            session.add(PlacementTier(name=name, display_name=display_name, rank=rank))
            added += 1
    await session.flush()
    return added


async def promote_admin(session: AsyncSession, email: str) -> bool:
    result = await session.execute(select(User).where(User.email == email.strip().lower()))
    user = result.scalar_one_or_none()
    if user is None or user.role == UserRole.ADMIN:
        return False
    user.role = UserRole.ADMIN
    await session.flush()
    return True


async def init_defaults():
    """Initialize default database values."""
    async with session_scope() as session:
        added = await ensure_placement_tiers(session)
        if added:
            logger.info(f"Added {added} default placement tiers")

        admin_email = os.getenv("ADMIN_EMAIL")
        if admin_email and await promote_admin(session, admin_email):
            logger.info(f"Promoted {admin_email} to system admin")


if __name__ == "__main__":
    asyncio.run(init_defaults())

"""
Club service: organizations, members, players, coaches and player notes.

Every function takes the request's AsyncSession and flushes instead of
committing; get_db_session commits once per request.
"""

import logging
from datetime import date
from typing import Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.database.models import (
    Coach,
    Member,
    MemberRole,
    Organization,
    Player,
    PlayerNote,
    User,
)
from backend.services.access import MANAGER_ROLES, STAFF_ROLES, OrganizationContext
from backend.services.errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
)
from backend.utils.datetime_utils import (
    AGE_GROUP_RANGES,
    birth_date_bounds,
    calculate_age,
    get_age_group,
)
from backend.utils.pagination import PaginationParams, build_page, paginate
from backend.utils.serialization import row_to_dict, to_json_value
from backend.utils.slugify import slugify, with_suffix

logger = logging.getLogger(__name__)

PLAYER_SORT_COLUMNS = {
    "name": Player.name,
    "date_of_birth": Player.date_of_birth,
    "created_at": Player.created_at,
}
COACH_SORT_COLUMNS = {"name": Coach.name, "created_at": Coach.created_at}


# ============================================================================
# Organizations and members
# ============================================================================


async def _unique_slug(session: AsyncSession, name: str, requested: Optional[str] = None) -> str:
    base = slugify(requested or name)
    attempt = 1
    while True:
        candidate = with_suffix(base, attempt)
        result = await session.execute(
            select(Organization.id).where(Organization.slug == candidate)
        )
        if result.scalar_one_or_none() is None:
            return candidate
        attempt += 1


def _organization_to_dict(org: Organization, role: Optional[str] = None) -> Dict:
    data = row_to_dict(org, exclude=("metadata_json",))
    data["metadata"] = org.metadata_json
    if role is not None:
        data["role"] = role
    return data


async def create_organization(
    session: AsyncSession,
    owner_user_id: int,
    name: str,
    slug: Optional[str] = None,
    logo: Optional[str] = None,
    metadata: Optional[Dict] = None,
) -> Dict:
    """
    Create a club and make the creator its owner.

    The slug is derived from the name (or the requested slug) and suffixed
    with -2, -3, ... until it is unused.
    """
    org = Organization(
        name=name,
        slug=await _unique_slug(session, name, slug),
        logo=logo,
        metadata_json=metadata,
    )
    session.add(org)
    await session.flush()

    session.add(Member(organization_id=org.id, user_id=owner_user_id, role=MemberRole.OWNER))
    await session.flush()

    logger.info(f"Created organization {org.id} ({org.slug}) owned by user {owner_user_id}")
    return _organization_to_dict(org, role=MemberRole.OWNER.value)


async def get_user_memberships(session: AsyncSession, user_id: int) -> List[Dict]:
    """Return [{organization_id, role}] for every club the user belongs to."""
    result = await session.execute(
        select(Member.organization_id, Member.role).where(Member.user_id == user_id)
    )
    return [
        {"organization_id": org_id, "role": to_json_value(role)}
        for org_id, role in result.all()
    ]


async def list_user_organizations(session: AsyncSession, user_id: int) -> List[Dict]:
    result = await session.execute(
        select(Organization, Member.role)
        .join(Member, Member.organization_id == Organization.id)
        .where(Member.user_id == user_id)
        .order_by(Organization.name)
    )
    return [_organization_to_dict(org, to_json_value(role)) for org, role in result.all()]


async def list_organizations(session: AsyncSession) -> List[Dict]:
    result = await session.execute(select(Organization).order_by(Organization.name))
    return [_organization_to_dict(org) for org in result.scalars().all()]


async def _get_organization_or_404(session: AsyncSession, organization_id: int) -> Organization:
    org = await session.get(Organization, organization_id)
    if not org:
        raise NotFoundError("Organization not found")
    return org


async def get_organization(session: AsyncSession, organization_id: int) -> Dict:
    return _organization_to_dict(await _get_organization_or_404(session, organization_id))


async def update_organization(session: AsyncSession, organization_id: int, **fields) -> Dict:
    org = await _get_organization_or_404(session, organization_id)
    if fields.get("name") is not None:
        org.name = fields["name"]
    if fields.get("slug") is not None and fields["slug"] != org.slug:
        org.slug = await _unique_slug(session, org.name, fields["slug"])
    if "logo" in fields:
        org.logo = fields["logo"]
    if "metadata" in fields:
        org.metadata_json = fields["metadata"]
    await session.flush()
    return _organization_to_dict(org)


async def delete_organization(session: AsyncSession, organization_id: int) -> None:
    org = await _get_organization_or_404(session, organization_id)
    await session.delete(org)
    await session.flush()
    logger.info(f"Deleted organization {organization_id}")


async def list_members(session: AsyncSession, organization_id: int) -> List[Dict]:
    result = await session.execute(
        select(Member, User.name, User.email)
        .join(User, User.id == Member.user_id)
        .where(Member.organization_id == organization_id)
        .order_by(User.name)
    )
    members = []
    for member, name, email in result.all():
        data = row_to_dict(member)
        data["user_name"] = name
        data["user_email"] = email
        members.append(data)
    return members


async def add_member(
    session: AsyncSession,
    organization_id: int,
    role: str,
    user_id: Optional[int] = None,
    email: Optional[str] = None,
) -> Dict:
    """Add an existing user to a club by id or email."""
    await _get_organization_or_404(session, organization_id)

    if user_id is None and email:
        result = await session.execute(select(User.id).where(User.email == email.strip().lower()))
        user_id = result.scalar_one_or_none()
    if user_id is None or not await session.get(User, user_id):
        raise NotFoundError("User not found")

    existing = await session.execute(
        select(Member.id).where(
            Member.organization_id == organization_id, Member.user_id == user_id
        )
    )
    if existing.scalar_one_or_none():
        raise ConflictError("User is already a member of this organization")

    member = Member(organization_id=organization_id, user_id=user_id, role=MemberRole(role))
    session.add(member)
    await session.flush()
    return row_to_dict(member)


async def _get_member_or_404(session: AsyncSession, organization_id: int, member_id: int) -> Member:
    result = await session.execute(
        select(Member).where(Member.id == member_id, Member.organization_id == organization_id)
    )
    member = result.scalar_one_or_none()
    if not member:
        raise NotFoundError("Member not found")
    return member


async def _owner_count(session: AsyncSession, organization_id: int) -> int:
    result = await session.execute(
        select(func.count(Member.id)).where(
            Member.organization_id == organization_id, Member.role == MemberRole.OWNER
        )
    )
    return result.scalar_one()


async def update_member_role(
    session: AsyncSession, organization_id: int, member_id: int, role: str
) -> Dict:
    member = await _get_member_or_404(session, organization_id, member_id)
    new_role = MemberRole(role)
    if (
        member.role == MemberRole.OWNER
        and new_role != MemberRole.OWNER
        and await _owner_count(session, organization_id) <= 1
    ):
        raise BadRequestError("An organization must keep at least one owner")
    member.role = new_role
    await session.flush()
    return row_to_dict(member)


async def remove_member(session: AsyncSession, organization_id: int, member_id: int) -> None:
    member = await _get_member_or_404(session, organization_id, member_id)
    if member.role == MemberRole.OWNER and await _owner_count(session, organization_id) <= 1:
        raise BadRequestError("An organization must keep at least one owner")
    await session.delete(member)
    await session.flush()


# ============================================================================
# Players
# ============================================================================


def player_to_dict(player: Player, on_date: Optional[date] = None) -> Dict:
    data = row_to_dict(player)
    if player.date_of_birth:
        data["age"] = calculate_age(player.date_of_birth, on_date)
        data["age_group"] = get_age_group(player.date_of_birth, on_date)
    else:
        data["age"] = None
        data["age_group"] = None
    return data


async def _ensure_user_unlinked(
    session: AsyncSession, model, label: str, user_id: Optional[int], own_id=None
):
    if user_id is None:
        return
    if not await session.get(User, user_id):
        raise NotFoundError("User not found")
    query = select(model.id).where(model.user_id == user_id)
    if own_id is not None:
        query = query.where(model.id != own_id)
    if (await session.execute(query)).scalar_one_or_none():
        raise ConflictError(f"User is already linked to another {label}")


async def create_player(session: AsyncSession, organization_id: int, data: Dict) -> Dict:
    await _ensure_user_unlinked(session, Player, "player", data.get("user_id"))
    player = Player(organization_id=organization_id, **data)
    session.add(player)
    await session.flush()
    logger.info(f"Created player {player.id} in organization {organization_id}")
    return player_to_dict(player)


async def get_player_model(
    session: AsyncSession, player_id: int, organization_id: Optional[int] = None
) -> Player:
    """Fetch a player, optionally scoped to one club; 404 otherwise."""
    player = await session.get(Player, player_id)
    if not player or (organization_id is not None and player.organization_id != organization_id):
        raise NotFoundError("Player not found")
    return player


async def get_player(session: AsyncSession, organization_id: int, player_id: int) -> Dict:
    return player_to_dict(await get_player_model(session, player_id, organization_id))


async def list_players(
    session: AsyncSession,
    organization_id: int,
    params: PaginationParams,
    q: Optional[str] = None,
    gender: Optional[str] = None,
    age_group: Optional[str] = None,
) -> Dict:
    """
    Paginated players of one club.

    age_group filters on one of the buckets from get_age_group ("U-13", ...)
    by turning it into a date-of-birth window, so pagination stays in SQL.
    """
    stmt = select(Player).where(Player.organization_id == organization_id)
    if q:
        stmt = stmt.where(func.lower(Player.name).like(f"%{q.lower()}%"))
    if gender:
        stmt = stmt.where(Player.gender == gender)
    if age_group:
        if age_group not in AGE_GROUP_RANGES:
            raise BadRequestError(f"Unknown age group: {age_group}")
        born_after, born_on_or_before = birth_date_bounds(*AGE_GROUP_RANGES[age_group])
        if born_after is not None:
            stmt = stmt.where(Player.date_of_birth > born_after)
        if born_on_or_before is not None:
            stmt = stmt.where(Player.date_of_birth <= born_on_or_before)

    players, total = await paginate(session, stmt, params, PLAYER_SORT_COLUMNS, "created_at")
    return build_page([player_to_dict(p) for p in players], params, total)


async def update_player(
    session: AsyncSession, organization_id: int, player_id: int, data: Dict
) -> Dict:
    player = await get_player_model(session, player_id, organization_id)
    if "user_id" in data:
        await _ensure_user_unlinked(session, Player, "player", data["user_id"], own_id=player.id)
    for key, value in data.items():
        setattr(player, key, value)
    await session.flush()
    return player_to_dict(player)


async def delete_player(session: AsyncSession, organization_id: int, player_id: int) -> None:
    player = await get_player_model(session, player_id, organization_id)
    await session.delete(player)
    await session.flush()
    logger.info(f"Deleted player {player_id}")


# ============================================================================
# Coaches
# ============================================================================


async def _get_coach_or_404(session: AsyncSession, organization_id: int, coach_id: int) -> Coach:
    coach = await session.get(Coach, coach_id)
    if not coach or coach.organization_id != organization_id:
        raise NotFoundError("Coach not found")
    return coach


async def create_coach(session: AsyncSession, organization_id: int, data: Dict) -> Dict:
    await _ensure_user_unlinked(session, Coach, "coach", data.get("user_id"))
    coach = Coach(organization_id=organization_id, **data)
    session.add(coach)
    await session.flush()
    return row_to_dict(coach)


async def list_coaches(
    session: AsyncSession,
    organization_id: int,
    params: PaginationParams,
    q: Optional[str] = None,
) -> Dict:
    stmt = select(Coach).where(Coach.organization_id == organization_id)
    if q:
        stmt = stmt.where(func.lower(Coach.name).like(f"%{q.lower()}%"))
    coaches, total = await paginate(session, stmt, params, COACH_SORT_COLUMNS, "created_at")
    return build_page([row_to_dict(c) for c in coaches], params, total)


async def get_coach(session: AsyncSession, organization_id: int, coach_id: int) -> Dict:
    return row_to_dict(await _get_coach_or_404(session, organization_id, coach_id))


async def update_coach(
    session: AsyncSession, organization_id: int, coach_id: int, data: Dict
) -> Dict:
    coach = await _get_coach_or_404(session, organization_id, coach_id)
    if "user_id" in data:
        await _ensure_user_unlinked(session, Coach, "coach", data["user_id"], own_id=coach.id)
    for key, value in data.items():
        setattr(coach, key, value)
    await session.flush()
    return row_to_dict(coach)


async def delete_coach(session: AsyncSession, organization_id: int, coach_id: int) -> None:
    coach = await _get_coach_or_404(session, organization_id, coach_id)
    await session.delete(coach)
    await session.flush()


# ============================================================================
# Player notes
# ============================================================================


async def _check_note_read_access(
    session: AsyncSession, ctx: OrganizationContext, player: Player
) -> None:
    """Club staff of the player's club, or the player's own account."""
    if ctx.is_system_admin or player.user_id == ctx.user_id:
        return
    if ctx.memberships.get(player.organization_id) in STAFF_ROLES:
        return
    raise ForbiddenError("Not allowed to access notes for this player")


async def list_notes(session: AsyncSession, ctx: OrganizationContext, player_id: int) -> List[Dict]:
    player = await get_player_model(session, player_id)
    await _check_note_read_access(session, ctx, player)
    result = await session.execute(
        select(PlayerNote, User.name)
        .outerjoin(User, User.id == PlayerNote.author_user_id)
        .where(PlayerNote.player_id == player_id)
        .order_by(PlayerNote.created_at.desc(), PlayerNote.id.desc())
    )
    notes = []
    for note, author_name in result.all():
        data = row_to_dict(note)
        data["author_name"] = author_name
        notes.append(data)
    return notes


async def create_note(
    session: AsyncSession,
    ctx: OrganizationContext,
    player_id: int,
    content: str,
    note_type: str = "general",
) -> Dict:
    player = await get_player_model(session, player_id)
    await _check_note_read_access(session, ctx, player)
    note = PlayerNote(
        player_id=player_id,
        author_user_id=ctx.user_id,
        content=content,
        note_type=note_type,
    )
    session.add(note)
    await session.flush()
    return row_to_dict(note)


async def _get_note_for_write(
    session: AsyncSession, ctx: OrganizationContext, note_id: int
) -> PlayerNote:
    """Only the author or an owner/admin of the player's club may change a note."""
    note = await session.get(PlayerNote, note_id)
    if not note:
        raise NotFoundError("Note not found")
    if note.author_user_id == ctx.user_id or ctx.is_system_admin:
        return note
    player = await get_player_model(session, note.player_id)
    if ctx.memberships.get(player.organization_id) in MANAGER_ROLES:
        return note
    raise ForbiddenError("Only the author or a club admin can modify this note")


async def update_note(
    session: AsyncSession,
    ctx: OrganizationContext,
    note_id: int,
    content: Optional[str] = None,
    note_type: Optional[str] = None,
) -> Dict:
    note = await _get_note_for_write(session, ctx, note_id)
    if content is not None:
        note.content = content
    if note_type is not None:
        note.note_type = note_type
    await session.flush()
    return row_to_dict(note)


async def delete_note(session: AsyncSession, ctx: OrganizationContext, note_id: int) -> None:
    note = await _get_note_for_write(session, ctx, note_id)
    await session.delete(note)
    await session.flush()

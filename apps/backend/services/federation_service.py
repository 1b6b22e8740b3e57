"""
Federation service: federations, member clubs, federation members and the
requests clubs file to join a federation or to register their players with it.
"""

import logging
import re
from typing import Dict, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.database.models import (
    Federation,
    FederationClub,
    FederationClubRequest,
    FederationMember,
    FederationMemberStatus,
    FederationPlayerRequest,
    Organization,
    Player,
    RequestStatus,
)
from backend.services.access import OrganizationContext
from backend.services.errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
)
from backend.utils.constants import FEDERATION_ID_NUMBER_PATTERN
from backend.utils.datetime_utils import utcnow
from backend.utils.pagination import PaginationParams, build_page, paginate
from backend.utils.serialization import row_to_dict, to_json_value

logger = logging.getLogger(__name__)

MEMBER_SORT_COLUMNS = {
    "federation_id_number": FederationMember.federation_id_number,
    "created_at": FederationMember.created_at,
}
REQUEST_SORT_COLUMNS = {
    "created_at": FederationPlayerRequest.created_at,
    "status": FederationPlayerRequest.status,
}
CLUB_REQUEST_SORT_COLUMNS = {
    "created_at": FederationClubRequest.created_at,
    "reviewed_at": FederationClubRequest.reviewed_at,
    "status": FederationClubRequest.status,
}


# ============================================================================
# Federations
# ============================================================================


async def _get_federation_or_404(session: AsyncSession, federation_id: int) -> Federation:
    federation = await session.get(Federation, federation_id)
    if not federation:
        raise NotFoundError("Federation not found")
    return federation


async def create_federation(session: AsyncSession, data: Dict) -> Dict:
    existing = await session.execute(select(Federation.id).where(Federation.name == data["name"]))
    if existing.scalar_one_or_none() is not None:
        raise ConflictError("A federation with this name already exists")
    federation = Federation(**data)
    session.add(federation)
    await session.flush()
    logger.info(f"Created federation {federation.id} ({federation.name})")
    return row_to_dict(federation)


async def list_federations(session: AsyncSession) -> List[Dict]:
    result = await session.execute(select(Federation).order_by(Federation.name))
    return [row_to_dict(f) for f in result.scalars().all()]


async def get_federation(session: AsyncSession, federation_id: int) -> Dict:
    return row_to_dict(await _get_federation_or_404(session, federation_id))


async def update_federation(session: AsyncSession, federation_id: int, data: Dict) -> Dict:
    federation = await _get_federation_or_404(session, federation_id)
    for key, value in data.items():
        setattr(federation, key, value)
    await session.flush()
    return row_to_dict(federation)


async def delete_federation(session: AsyncSession, federation_id: int) -> None:
    federation = await _get_federation_or_404(session, federation_id)
    await session.delete(federation)
    await session.flush()


# ============================================================================
# Federation clubs
# ============================================================================


async def list_federation_clubs(session: AsyncSession, federation_id: int) -> List[Dict]:
    await _get_federation_or_404(session, federation_id)
    result = await session.execute(
        select(FederationClub, Organization.name)
        .join(Organization, Organization.id == FederationClub.organization_id)
        .where(FederationClub.federation_id == federation_id)
        .order_by(Organization.name)
    )
    clubs = []
    for club, organization_name in result.all():
        data = row_to_dict(club)
        data["organization_name"] = organization_name
        clubs.append(data)
    return clubs


async def add_federation_club(
    session: AsyncSession, ctx: OrganizationContext, federation_id: int, organization_id: int
) -> Dict:
    await _get_federation_or_404(session, federation_id)
    ctx.require_federation_admin(federation_id)
    if not await session.get(Organization, organization_id):
        raise NotFoundError("Organization not found")

    existing = await session.execute(
        select(FederationClub.id).where(
            FederationClub.federation_id == federation_id,
            FederationClub.organization_id == organization_id,
        )
    )
    if existing.scalar_one_or_none() is not None:
        raise ConflictError("Club is already part of this federation")

    club = FederationClub(federation_id=federation_id, organization_id=organization_id)
    session.add(club)
    await session.flush()
    return row_to_dict(club)


async def remove_federation_club(
    session: AsyncSession, ctx: OrganizationContext, federation_id: int, organization_id: int
) -> None:
    ctx.require_federation_admin(federation_id)
    result = await session.execute(
        select(FederationClub).where(
            FederationClub.federation_id == federation_id,
            FederationClub.organization_id == organization_id,
        )
    )
    club = result.scalar_one_or_none()
    if not club:
        raise NotFoundError("Club is not part of this federation")
    await session.delete(club)
    await session.flush()


# ============================================================================
# Federation members
# ============================================================================


def validate_federation_id_number(number: Optional[str]) -> str:
    if not number or not re.match(FEDERATION_ID_NUMBER_PATTERN, number):
        raise BadRequestError(
            "Federation ID number must contain only uppercase letters, digits and dashes"
        )
    return number


async def create_federation_member(
    session: AsyncSession,
    federation_id: int,
    player_id: int,
    federation_id_number: str,
    first_registration_season_id: Optional[int] = None,
) -> FederationMember:
    """
    Enrol a player in a federation.

    Raises:
        BadRequestError: malformed federation ID number
        ConflictError: the player is already a member, or the number is taken
    """
    validate_federation_id_number(federation_id_number)
    existing = await session.execute(
        select(FederationMember).where(
            FederationMember.federation_id == federation_id,
            (FederationMember.player_id == player_id)
            | (FederationMember.federation_id_number == federation_id_number),
        )
    )
    for member in existing.scalars().all():
        if member.player_id == player_id:
            raise ConflictError("Player is already a member of this federation")
        raise ConflictError(
            f"Federation ID number {federation_id_number} is already in use"
        )

    member = FederationMember(
        federation_id=federation_id,
        player_id=player_id,
        federation_id_number=federation_id_number,
        first_registration_season_id=first_registration_season_id,
    )
    session.add(member)
    await session.flush()
    return member


async def get_membership(
    session: AsyncSession, federation_id: int, player_id: int
) -> Optional[FederationMember]:
    result = await session.execute(
        select(FederationMember).where(
            FederationMember.federation_id == federation_id,
            FederationMember.player_id == player_id,
        )
    )
    return result.scalar_one_or_none()


async def list_federation_members(
    session: AsyncSession,
    ctx: OrganizationContext,
    federation_id: int,
    params: PaginationParams,
    status: Optional[str] = None,
) -> Dict:
    ctx.require_federation_staff(federation_id)
    stmt = select(FederationMember).where(FederationMember.federation_id == federation_id)
    if status:
        stmt = stmt.where(FederationMember.status == FederationMemberStatus(status))
    members, total = await paginate(session, stmt, params, MEMBER_SORT_COLUMNS, "created_at")

    player_ids = [m.player_id for m in members]
    names = {}
    if player_ids:
        rows = await session.execute(
            select(Player.id, Player.name).where(Player.id.in_(player_ids))
        )
        names = dict(rows.all())
    data = []
    for member in members:
        item = row_to_dict(member)
        item["player_name"] = names.get(member.player_id)
        data.append(item)
    return build_page(data, params, total)


async def update_member_status(
    session: AsyncSession, ctx: OrganizationContext, member_id: int, status: str
) -> Dict:
    member = await session.get(FederationMember, member_id)
    if not member:
        raise NotFoundError("Federation member not found")
    ctx.require_federation_admin(member.federation_id)
    member.status = FederationMemberStatus(status)
    await session.flush()
    logger.info(f"Federation member {member_id} status set to {status}")
    return row_to_dict(member)


# ============================================================================
# Federation player requests
# ============================================================================


async def create_request(
    session: AsyncSession, ctx: OrganizationContext, federation_id: int, player_id: int
) -> Dict:
    """
    File a request to register a club player with a federation.

    Raises:
        ForbiddenError: caller is not an owner or admin of the active club
        BadRequestError: player is outside the club or already a member
        ConflictError: a pending request for this player already exists
    """
    organization_id = ctx.require_org_manager()
    await _get_federation_or_404(session, federation_id)

    player = await session.get(Player, player_id)
    if not player:
        raise NotFoundError("Player not found")
    if player.organization_id != organization_id:
        raise BadRequestError("Player does not belong to your organization")

    if await get_membership(session, federation_id, player_id):
        raise BadRequestError("Player is already a member of this federation")

    pending = await session.execute(
        select(FederationPlayerRequest.id).where(
            FederationPlayerRequest.federation_id == federation_id,
            FederationPlayerRequest.player_id == player_id,
            FederationPlayerRequest.status == RequestStatus.PENDING,
        )
    )
    if pending.scalar_one_or_none() is not None:
        raise ConflictError("A pending request already exists for this player")

    request = FederationPlayerRequest(
        federation_id=federation_id,
        player_id=player_id,
        organization_id=organization_id,
        requested_by=ctx.user_id,
        status=RequestStatus.PENDING,
    )
    session.add(request)
    await session.flush()
    logger.info(f"Player {player_id} requested for federation {federation_id}")
    return row_to_dict(request)


async def list_requests(
    session: AsyncSession,
    ctx: OrganizationContext,
    params: PaginationParams,
    status: Optional[str] = None,
    federation_id: Optional[int] = None,
) -> Dict:
    """
    System admins see every request, federation staff their federation's,
    anyone else only their active club's.
    """
    stmt = select(FederationPlayerRequest)
    if ctx.is_system_admin:
        if federation_id is not None:
            stmt = stmt.where(FederationPlayerRequest.federation_id == federation_id)
    elif ctx.federation_id is not None and ctx.is_federation_staff(ctx.federation_id):
        stmt = stmt.where(FederationPlayerRequest.federation_id == ctx.federation_id)
    elif ctx.organization_id is not None:
        stmt = stmt.where(FederationPlayerRequest.organization_id == ctx.organization_id)
        if federation_id is not None:
            stmt = stmt.where(FederationPlayerRequest.federation_id == federation_id)
    else:
        raise ForbiddenError("No active organization")

    if status:
        stmt = stmt.where(FederationPlayerRequest.status == RequestStatus(status))
    requests, total = await paginate(session, stmt, params, REQUEST_SORT_COLUMNS, "created_at")
    return build_page([row_to_dict(r) for r in requests], params, total)


async def review_request(
    session: AsyncSession,
    ctx: OrganizationContext,
    request_id: int,
    status: str,
    rejection_reason: Optional[str] = None,
    federation_registration_number: Optional[str] = None,
) -> Dict:
    """
    Approve or reject a pending request.

    Approval enrols the player as a federation member under the given
    registration number in the same transaction as the status change.
    """
    request = await session.get(FederationPlayerRequest, request_id)
    if not request:
        raise NotFoundError("Request not found")
    ctx.require_federation_staff(request.federation_id)
    if request.status != RequestStatus.PENDING:
        raise BadRequestError("Only pending requests can be reviewed")

    decision = RequestStatus(status)
    if decision == RequestStatus.REJECTED:
        if not rejection_reason:
            raise BadRequestError("Rejection reason is required")
        request.rejection_reason = rejection_reason
    elif decision == RequestStatus.APPROVED:
        if not federation_registration_number:
            raise BadRequestError("Federation registration number is required for approval")
        await create_federation_member(
            session, request.federation_id, request.player_id, federation_registration_number
        )
        request.federation_registration_number = federation_registration_number
    else:
        raise BadRequestError("Status must be approved or rejected")

    request.status = decision
    request.reviewed_by = ctx.user_id
    request.reviewed_at = utcnow()
    await session.flush()
    logger.info(f"Federation request {request_id} {decision.value} by user {ctx.user_id}")
    return row_to_dict(request)


async def _blocked_players(session: AsyncSession, federation_id: int) -> Dict[int, str]:
    """Players that cannot be requested: members first, then pending requests."""
    blocked = {}
    pending = await session.execute(
        select(FederationPlayerRequest.player_id).where(
            FederationPlayerRequest.federation_id == federation_id,
            FederationPlayerRequest.status == RequestStatus.PENDING,
        )
    )
    for player_id in pending.scalars().all():
        blocked[player_id] = "A pending request already exists for this player"
    members = await session.execute(
        select(FederationMember.player_id).where(FederationMember.federation_id == federation_id)
    )
    for player_id in members.scalars().all():
        blocked[player_id] = "Player is already a member of this federation"
    return blocked


async def bulk_create_requests(
    session: AsyncSession, ctx: OrganizationContext, federation_id: int, player_ids: List[int]
) -> Dict:
    """
    File requests for several club players at once.

    Every player is checked before anything is written; a single problem
    rejects the batch and the error details list each failing player.
    """
    organization_id = ctx.require_org_manager()
    await _get_federation_or_404(session, federation_id)

    rows = await session.execute(
        select(Player.id, Player.organization_id).where(Player.id.in_(player_ids))
    )
    owners = dict(rows.all())
    blocked = await _blocked_players(session, federation_id)

    errors = []
    seen = set()
    for player_id in player_ids:
        if player_id in seen:
            errors.append({"player_id": player_id, "error": "Player is listed more than once"})
        elif player_id not in owners:
            errors.append({"player_id": player_id, "error": "Player not found"})
        elif owners[player_id] != organization_id:
            errors.append(
                {"player_id": player_id, "error": "Player does not belong to your organization"}
            )
        elif player_id in blocked:
            errors.append({"player_id": player_id, "error": blocked[player_id]})
        seen.add(player_id)
    if errors:
        raise BadRequestError("Validation failed", details=errors)

    requests = [
        FederationPlayerRequest(
            federation_id=federation_id,
            player_id=player_id,
            organization_id=organization_id,
            requested_by=ctx.user_id,
            status=RequestStatus.PENDING,
        )
        for player_id in player_ids
    ]
    session.add_all(requests)
    await session.flush()
    logger.info(f"{len(requests)} players requested for federation {federation_id}")
    return {"count": len(requests), "requests": [row_to_dict(r) for r in requests]}


async def list_eligible_players(
    session: AsyncSession, ctx: OrganizationContext, federation_id: int
) -> List[Dict]:
    """Every player of the active club, flagged with whether it can be requested."""
    organization_id = ctx.require_org_manager()
    await _get_federation_or_404(session, federation_id)

    players = (
        await session.execute(
            select(Player).where(Player.organization_id == organization_id).order_by(Player.name)
        )
    ).scalars().all()
    blocked = await _blocked_players(session, federation_id)
    return [
        {
            "id": player.id,
            "name": player.name,
            "is_eligible": player.id not in blocked,
            "ineligibility_reason": blocked.get(player.id),
        }
        for player in players
    ]


# ============================================================================
# Federation club requests
# ============================================================================


async def _get_club_request_or_404(session: AsyncSession, request_id: int) -> FederationClubRequest:
    request = await session.get(FederationClubRequest, request_id)
    if not request:
        raise NotFoundError("Federation club request not found")
    return request


async def create_club_request(
    session: AsyncSession, ctx: OrganizationContext, federation_id: int
) -> Dict:
    """
    Ask a federation to accept the active club as a member.

    Raises:
        ForbiddenError: caller is not an owner or admin of the active club
        BadRequestError: the club is already a member
        ConflictError: a pending request already exists
    """
    organization_id = ctx.require_org_manager()
    await _get_federation_or_404(session, federation_id)

    existing = await session.execute(
        select(FederationClub.id).where(
            FederationClub.federation_id == federation_id,
            FederationClub.organization_id == organization_id,
        )
    )
    if existing.scalar_one_or_none() is not None:
        raise BadRequestError("Organization is already a member of this federation")

    pending = await session.execute(
        select(FederationClubRequest.id).where(
            FederationClubRequest.federation_id == federation_id,
            FederationClubRequest.organization_id == organization_id,
            FederationClubRequest.status == RequestStatus.PENDING,
        )
    )
    if pending.scalar_one_or_none() is not None:
        raise ConflictError("A pending request already exists for this federation")

    request = FederationClubRequest(
        federation_id=federation_id,
        organization_id=organization_id,
        requested_by=ctx.user_id,
        status=RequestStatus.PENDING,
    )
    session.add(request)
    await session.flush()
    logger.info(f"Organization {organization_id} requested to join federation {federation_id}")
    return row_to_dict(request)


async def list_club_requests(
    session: AsyncSession,
    ctx: OrganizationContext,
    params: PaginationParams,
    status: Optional[str] = None,
    federation_id: Optional[int] = None,
) -> Dict:
    """
    System admins see every request. Federation staff see their federation's
    requests and club owners/admins their club's; a user who is both sees both.
    """
    stmt = select(FederationClubRequest)
    if not ctx.is_system_admin:
        scopes = []
        if ctx.federation_id is not None and ctx.is_federation_staff(ctx.federation_id):
            scopes.append(FederationClubRequest.federation_id == ctx.federation_id)
        if ctx.organization_id is not None and ctx.is_org_manager:
            scopes.append(FederationClubRequest.organization_id == ctx.organization_id)
        if not scopes:
            raise ForbiddenError("You do not have permission to view federation club requests")
        stmt = stmt.where(or_(*scopes))

    if federation_id is not None:
        stmt = stmt.where(FederationClubRequest.federation_id == federation_id)
    if status:
        stmt = stmt.where(FederationClubRequest.status == RequestStatus(status))
    requests, total = await paginate(
        session, stmt, params, CLUB_REQUEST_SORT_COLUMNS, "created_at"
    )

    names = {}
    organization_ids = {r.organization_id for r in requests}
    if organization_ids:
        rows = await session.execute(
            select(Organization.id, Organization.name).where(Organization.id.in_(organization_ids))
        )
        names = dict(rows.all())
    data = []
    for request in requests:
        item = row_to_dict(request)
        item["organization_name"] = names.get(request.organization_id)
        data.append(item)
    return build_page(data, params, total)


async def review_club_request(
    session: AsyncSession,
    ctx: OrganizationContext,
    request_id: int,
    status: str,
    rejection_reason: Optional[str] = None,
) -> Dict:
    """Approve or reject a pending club request; approval adds the club to the federation."""
    request = await _get_club_request_or_404(session, request_id)
    ctx.require_federation_admin(request.federation_id)
    if request.status != RequestStatus.PENDING:
        raise BadRequestError(f"Request has already been {to_json_value(request.status)}")

    decision = RequestStatus(status)
    if decision == RequestStatus.REJECTED:
        if not rejection_reason:
            raise BadRequestError("Rejection reason is required")
        request.rejection_reason = rejection_reason
    elif decision == RequestStatus.APPROVED:
        existing = await session.execute(
            select(FederationClub.id).where(
                FederationClub.federation_id == request.federation_id,
                FederationClub.organization_id == request.organization_id,
            )
        )
        if existing.scalar_one_or_none() is None:
            session.add(
                FederationClub(
                    federation_id=request.federation_id,
                    organization_id=request.organization_id,
                )
            )
    else:
        raise BadRequestError("Status must be approved or rejected")

    request.status = decision
    request.reviewed_by = ctx.user_id
    request.reviewed_at = utcnow()
    await session.flush()
    logger.info(f"Federation club request {request_id} {decision.value} by user {ctx.user_id}")
    return row_to_dict(request)


async def delete_club_request(
    session: AsyncSession, ctx: OrganizationContext, request_id: int
) -> None:
    """
    Federation admins may delete any request of their federation; club
    owners/admins may withdraw their own club's pending requests.
    """
    request = await _get_club_request_or_404(session, request_id)
    withdrawing = (
        ctx.is_org_manager
        and ctx.organization_id == request.organization_id
        and request.status == RequestStatus.PENDING
    )
    if not (ctx.is_federation_admin(request.federation_id) or withdrawing):
        raise ForbiddenError("You do not have permission to delete this request")
    await session.delete(request)
    await session.flush()

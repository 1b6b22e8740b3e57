"""
Season service: seasons, age groups, eligibility and season player registrations.
"""

import logging
from datetime import date
from typing import Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.database.models import (
    AgeWarningType,
    Player,
    Season,
    SeasonAgeGroup,
    SeasonPlayerRegistration,
    SeasonRegistrationStatus,
    SeasonStatus,
)
from backend.services import federation_service
from backend.services.access import OrganizationContext
from backend.services.errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
)
from backend.utils.datetime_utils import calculate_age, date_in_range, today_utc, utcnow
from backend.utils.pagination import PaginationParams, build_page, paginate
from backend.utils.serialization import row_to_dict, to_json_value

logger = logging.getLogger(__name__)

ACTIVE_REGISTRATION_STATUSES = (
    SeasonRegistrationStatus.PENDING,
    SeasonRegistrationStatus.APPROVED,
)

SEASON_SORT_COLUMNS = {
    "start_year": Season.start_year,
    "name": Season.name,
    "created_at": Season.created_at,
}
REGISTRATION_SORT_COLUMNS = {
    "created_at": SeasonPlayerRegistration.created_at,
    "status": SeasonPlayerRegistration.status,
}


# ============================================================================
# Seasons
# ============================================================================


def validate_season_dates(data: Dict) -> None:
    errors = []
    if data["end_year"] != data["start_year"] + 1:
        errors.append({"field": "end_year", "message": "end_year must be start_year + 1"})
    if data["season_end_date"] <= data["season_start_date"]:
        errors.append(
            {"field": "season_end_date", "message": "season_end_date must be after season_start_date"}
        )
    for window in ("first", "second"):
        start = data.get(f"{window}_registration_start_date")
        end = data.get(f"{window}_registration_end_date")
        if start and end and end < start:
            errors.append(
                {
                    "field": f"{window}_registration_end_date",
                    "message": "registration end date must not be before its start date",
                }
            )
    if data.get("max_age_groups_per_player", 1) < 1:
        errors.append(
            {"field": "max_age_groups_per_player", "message": "must be at least 1"}
        )
    if errors:
        raise BadRequestError("Validation error", details=errors)


async def get_season_model(session: AsyncSession, season_id: int) -> Season:
    season = await session.get(Season, season_id)
    if not season:
        raise NotFoundError("Season not found")
    return season


async def create_season(
    session: AsyncSession, ctx: OrganizationContext, federation_id: int, data: Dict
) -> Dict:
    ctx.require_federation_admin(federation_id)
    validate_season_dates(data)
    duplicate = await session.execute(
        select(Season.id).where(
            Season.federation_id == federation_id,
            Season.start_year == data["start_year"],
            Season.end_year == data["end_year"],
        )
    )
    if duplicate.scalar_one_or_none() is not None:
        raise ConflictError("A season for these years already exists in this federation")

    values = dict(data)
    if values.get("status") is not None:
        values["status"] = SeasonStatus(values["status"])
    season = Season(federation_id=federation_id, **values)
    session.add(season)
    await session.flush()
    logger.info(f"Created season {season.id} ({season.name}) for federation {federation_id}")
    return row_to_dict(season)


async def list_seasons(
    session: AsyncSession,
    params: PaginationParams,
    federation_id: Optional[int] = None,
    status: Optional[str] = None,
) -> Dict:
    stmt = select(Season)
    if federation_id is not None:
        stmt = stmt.where(Season.federation_id == federation_id)
    if status:
        stmt = stmt.where(Season.status == SeasonStatus(status))
    seasons, total = await paginate(session, stmt, params, SEASON_SORT_COLUMNS, "start_year")
    return build_page([row_to_dict(s) for s in seasons], params, total)


async def get_season(session: AsyncSession, season_id: int) -> Dict:
    season = await get_season_model(session, season_id)
    data = row_to_dict(season)
    data["age_groups"] = await list_age_groups(session, season_id)
    data["in_registration_period"] = is_in_registration_period(season)
    return data


async def update_season(
    session: AsyncSession, ctx: OrganizationContext, season_id: int, updates: Dict
) -> Dict:
    season = await get_season_model(session, season_id)
    ctx.require_federation_admin(season.federation_id)
    current = {
        key: getattr(season, key)
        for key in (
            "start_year",
            "end_year",
            "season_start_date",
            "season_end_date",
            "first_registration_start_date",
            "first_registration_end_date",
            "second_registration_start_date",
            "second_registration_end_date",
            "max_age_groups_per_player",
        )
    }
    validate_season_dates({**current, **updates})
    for key, value in updates.items():
        setattr(season, key, SeasonStatus(value) if key == "status" else value)
    await session.flush()
    return row_to_dict(season)


async def delete_season(session: AsyncSession, ctx: OrganizationContext, season_id: int) -> None:
    season = await get_season_model(session, season_id)
    ctx.require_federation_admin(season.federation_id)
    await session.delete(season)
    await session.flush()


# ============================================================================
# Age groups
# ============================================================================


async def _get_age_group_or_404(session: AsyncSession, age_group_id: int) -> SeasonAgeGroup:
    age_group = await session.get(SeasonAgeGroup, age_group_id)
    if not age_group:
        raise NotFoundError("Age group not found")
    return age_group


def _validate_age_range(min_age: Optional[int], max_age: Optional[int]) -> None:
    if min_age is not None and max_age is not None and max_age < min_age:
        raise BadRequestError("max_age must be greater than or equal to min_age")


async def list_age_groups(session: AsyncSession, season_id: int) -> List[Dict]:
    result = await session.execute(
        select(SeasonAgeGroup)
        .where(SeasonAgeGroup.season_id == season_id)
        .order_by(SeasonAgeGroup.display_order, SeasonAgeGroup.id)
    )
    return [row_to_dict(g) for g in result.scalars().all()]


async def create_age_group(
    session: AsyncSession, ctx: OrganizationContext, season_id: int, data: Dict
) -> Dict:
    season = await get_season_model(session, season_id)
    ctx.require_federation_admin(season.federation_id)
    _validate_age_range(data.get("min_age"), data.get("max_age"))
    duplicate = await session.execute(
        select(SeasonAgeGroup.id).where(
            SeasonAgeGroup.season_id == season_id, SeasonAgeGroup.code == data["code"]
        )
    )
    if duplicate.scalar_one_or_none() is not None:
        raise ConflictError(f"Age group {data['code']} already exists in this season")
    age_group = SeasonAgeGroup(season_id=season_id, **data)
    session.add(age_group)
    await session.flush()
    return row_to_dict(age_group)


async def update_age_group(
    session: AsyncSession, ctx: OrganizationContext, age_group_id: int, updates: Dict
) -> Dict:
    age_group = await _get_age_group_or_404(session, age_group_id)
    season = await get_season_model(session, age_group.season_id)
    ctx.require_federation_admin(season.federation_id)
    _validate_age_range(
        updates.get("min_age", age_group.min_age), updates.get("max_age", age_group.max_age)
    )
    for key, value in updates.items():
        setattr(age_group, key, value)
    await session.flush()
    return row_to_dict(age_group)


async def delete_age_group(
    session: AsyncSession, ctx: OrganizationContext, age_group_id: int
) -> None:
    age_group = await _get_age_group_or_404(session, age_group_id)
    season = await get_season_model(session, age_group.season_id)
    ctx.require_federation_admin(season.federation_id)
    await session.delete(age_group)
    await session.flush()


# ============================================================================
# Eligibility
# ============================================================================


def is_in_registration_period(season, today: Optional[date] = None) -> bool:
    today = today or today_utc()
    return date_in_range(
        today, season.first_registration_start_date, season.first_registration_end_date
    ) or date_in_range(
        today, season.second_registration_start_date, season.second_registration_end_date
    )


def get_current_registration_period(season, today: Optional[date] = None) -> Optional[int]:
    today = today or today_utc()
    if date_in_range(
        today, season.first_registration_start_date, season.first_registration_end_date
    ):
        return 1
    if date_in_range(
        today, season.second_registration_start_date, season.second_registration_end_date
    ):
        return 2
    return None


def check_age_eligibility(age: int, age_group) -> Dict:
    """
    Compare a player's age with an age group's limits.

    Too old is a hard block; too young is only a warning.

    Returns:
        {"is_eligible", "is_blocked", "warning_type", "warning_level", "message"}
    """
    result = {
        "is_eligible": True,
        "is_blocked": False,
        "warning_type": None,
        "warning_level": None,
        "message": None,
    }
    if age_group.min_age is None and age_group.max_age is None:
        return result

    if age_group.max_age is not None and age > age_group.max_age:
        result.update(
            is_eligible=False,
            is_blocked=True,
            warning_type=AgeWarningType.TOO_OLD.value,
            warning_level="hard",
            message=(
                f"Player cannot register: age {age} exceeds maximum age of "
                f"{age_group.max_age} for {age_group.name}"
            ),
        )
    elif age_group.min_age is not None and age < age_group.min_age:
        result.update(
            warning_type=AgeWarningType.TOO_YOUNG.value,
            warning_level="soft",
            message=(
                f"Player is {age} years old, which is below the recommended minimum age of "
                f"{age_group.min_age} for {age_group.name}"
            ),
        )
    return result


async def _active_registration_count(session: AsyncSession, season_id: int, player_id: int) -> int:
    result = await session.execute(
        select(func.count(SeasonPlayerRegistration.id)).where(
            SeasonPlayerRegistration.season_id == season_id,
            SeasonPlayerRegistration.player_id == player_id,
            SeasonPlayerRegistration.status.in_(ACTIVE_REGISTRATION_STATUSES),
        )
    )
    return result.scalar_one()


async def check_player_season_eligibility(
    session: AsyncSession, player_id: int, season: Season, today: Optional[date] = None
) -> Dict:
    """Whether a player may take one more age group in a season."""
    if to_json_value(season.status) != SeasonStatus.ACTIVE.value:
        return {"can_register": False, "reason": "Season is not active for registration"}
    if not is_in_registration_period(season, today):
        return {
            "can_register": False,
            "reason": "Season is not currently in a registration period",
        }
    current = await _active_registration_count(session, season.id, player_id)
    maximum = season.max_age_groups_per_player
    if current >= maximum:
        return {
            "can_register": False,
            "reason": (
                f"Player has already registered for the maximum number of age groups ({maximum})"
            ),
            "current_registration_count": current,
            "max_allowed": maximum,
        }
    return {"can_register": True, "current_registration_count": current, "max_allowed": maximum}


async def get_players_eligibility(
    session: AsyncSession, season_id: int, player_ids: List[int]
) -> List[Dict]:
    """Per player: current age and, per age group, eligibility and existing registration."""
    await get_season_model(session, season_id)
    if not player_ids:
        return []
    players = (
        await session.execute(select(Player).where(Player.id.in_(player_ids)).order_by(Player.name))
    ).scalars().all()
    age_groups = (
        await session.execute(
            select(SeasonAgeGroup)
            .where(SeasonAgeGroup.season_id == season_id)
            .order_by(SeasonAgeGroup.display_order, SeasonAgeGroup.id)
        )
    ).scalars().all()
    registered = {
        (player_id, group_id)
        for player_id, group_id in (
            await session.execute(
                select(
                    SeasonPlayerRegistration.player_id,
                    SeasonPlayerRegistration.season_age_group_id,
                ).where(
                    SeasonPlayerRegistration.season_id == season_id,
                    SeasonPlayerRegistration.player_id.in_(player_ids),
                    SeasonPlayerRegistration.status.in_(ACTIVE_REGISTRATION_STATUSES),
                )
            )
        ).all()
    }

    result = []
    for player in players:
        age = calculate_age(player.date_of_birth) if player.date_of_birth else None
        groups = []
        for group in age_groups:
            groups.append(
                {
                    "id": group.id,
                    "code": group.code,
                    "name": group.name,
                    "min_age": group.min_age,
                    "max_age": group.max_age,
                    "eligibility": check_age_eligibility(age, group) if age is not None else None,
                    "already_registered": (player.id, group.id) in registered,
                }
            )
        result.append(
            {
                "id": player.id,
                "name": player.name,
                "date_of_birth": to_json_value(player.date_of_birth),
                "current_age": age,
                "age_groups": groups,
            }
        )
    return result


# ============================================================================
# Registrations
# ============================================================================


def _require_open_season(season: Season, today: Optional[date] = None) -> None:
    if to_json_value(season.status) != SeasonStatus.ACTIVE.value:
        raise BadRequestError("Season is not active for registration")
    if not is_in_registration_period(season, today):
        raise BadRequestError("Season is not currently in a registration period")


async def _age_groups_by_id(session: AsyncSession, season_id: int) -> Dict[int, SeasonAgeGroup]:
    result = await session.execute(
        select(SeasonAgeGroup).where(SeasonAgeGroup.season_id == season_id)
    )
    return {g.id: g for g in result.scalars().all()}


async def create_registration(
    session: AsyncSession,
    ctx: OrganizationContext,
    season_id: int,
    player_id: int,
    season_age_group_id: int,
) -> Dict:
    """
    Register one club player for one age group.

    Raises:
        BadRequestError: season closed, player over the limit or too old
        ConflictError: the player is already registered for the age group
    """
    organization_id = ctx.require_org_manager()
    season = await get_season_model(session, season_id)
    player = await session.get(Player, player_id)
    if not player or player.organization_id != organization_id:
        raise NotFoundError("Player not found")
    age_group = (await _age_groups_by_id(session, season_id)).get(season_age_group_id)
    if age_group is None:
        raise NotFoundError("Age group not found")
    if player.date_of_birth is None:
        raise BadRequestError("Player has no date of birth")

    eligibility = await check_player_season_eligibility(session, player_id, season)
    if not eligibility["can_register"]:
        raise BadRequestError(eligibility["reason"])

    existing = await session.execute(
        select(SeasonPlayerRegistration.id).where(
            SeasonPlayerRegistration.season_id == season_id,
            SeasonPlayerRegistration.player_id == player_id,
            SeasonPlayerRegistration.season_age_group_id == season_age_group_id,
        )
    )
    if existing.scalar_one_or_none() is not None:
        raise ConflictError("Player is already registered for this age group")

    age = calculate_age(player.date_of_birth)
    age_check = check_age_eligibility(age, age_group)
    if age_check["is_blocked"]:
        raise BadRequestError(age_check["message"])

    registration = _new_registration(season_id, player_id, age_group.id, organization_id, age, age_check)
    session.add(registration)
    await session.flush()
    return row_to_dict(registration)


def _new_registration(season_id, player_id, age_group_id, organization_id, age, age_check):
    warning = age_check["warning_type"]
    return SeasonPlayerRegistration(
        season_id=season_id,
        player_id=player_id,
        season_age_group_id=age_group_id,
        organization_id=organization_id,
        player_age_at_registration=age,
        age_warning_shown=warning is not None,
        age_warning_type=AgeWarningType(warning) if warning else None,
        status=SeasonRegistrationStatus.PENDING,
    )


async def bulk_create_registrations(
    session: AsyncSession,
    ctx: OrganizationContext,
    season_id: int,
    items: List[Dict],
    today: Optional[date] = None,
) -> Dict:
    """
    Register many players at once; items are {"player_id", "age_group_ids"}.

    Invalid players are reported in "errors" and skipped, groups a player is
    already in are skipped silently, and every valid row is inserted in the
    request's single transaction.

    Returns:
        {"count", "registrations", "errors"}

    Raises:
        BadRequestError: season closed, a foreign player, or nothing valid to insert
    """
    organization_id = ctx.require_org_manager()
    season = await get_season_model(session, season_id)
    _require_open_season(season, today)
    today = today or today_utc()

    player_ids = [item["player_id"] for item in items]
    players = {
        p.id: p
        for p in (
            await session.execute(select(Player).where(Player.id.in_(player_ids)))
        ).scalars().all()
    }
    foreign = sorted(
        pid for pid in set(player_ids) if pid not in players or players[pid].organization_id != organization_id
    )
    if foreign:
        raise BadRequestError(
            "All players must belong to your organization", details={"player_ids": foreign}
        )

    age_groups = await _age_groups_by_id(session, season_id)
    existing_rows = (
        await session.execute(
            select(
                SeasonPlayerRegistration.player_id,
                SeasonPlayerRegistration.season_age_group_id,
                SeasonPlayerRegistration.status,
            ).where(
                SeasonPlayerRegistration.season_id == season_id,
                SeasonPlayerRegistration.player_id.in_(player_ids),
            )
        )
    ).all()
    registered = {(pid, gid) for pid, gid, _ in existing_rows}
    active_counts: Dict[int, int] = {}
    for pid, _, status in existing_rows:
        if to_json_value(status) in {s.value for s in ACTIVE_REGISTRATION_STATUSES}:
            active_counts[pid] = active_counts.get(pid, 0) + 1

    errors = []
    new_rows = []
    for item in items:
        player = players[item["player_id"]]
        if player.date_of_birth is None:
            errors.append({"player_id": player.id, "error": "Player has no date of birth"})
            continue

        unknown = [gid for gid in item["age_group_ids"] if gid not in age_groups]
        if unknown:
            errors.append(
                {"player_id": player.id, "error": f"Unknown age groups: {unknown}"}
            )
            continue

        requested = [gid for gid in dict.fromkeys(item["age_group_ids"]) if (player.id, gid) not in registered]
        current = active_counts.get(player.id, 0)
        if current + len(requested) > season.max_age_groups_per_player:
            errors.append(
                {
                    "player_id": player.id,
                    "error": (
                        f"Player would exceed the maximum of {season.max_age_groups_per_player} "
                        f"age groups ({current} existing, {len(requested)} requested)"
                    ),
                }
            )
            continue

        age = calculate_age(player.date_of_birth, today)
        checks = [(gid, check_age_eligibility(age, age_groups[gid])) for gid in requested]
        blocked = [check["message"] for _, check in checks if check["is_blocked"]]
        if blocked:
            errors.append({"player_id": player.id, "error": "; ".join(blocked)})
            continue

        for gid, check in checks:
            new_rows.append(_new_registration(season_id, player.id, gid, organization_id, age, check))
            registered.add((player.id, gid))
        active_counts[player.id] = current + len(requested)

    if not new_rows:
        raise BadRequestError("No valid registrations to create", details=errors)

    session.add_all(new_rows)
    await session.flush()
    logger.info(
        f"Created {len(new_rows)} season registrations for season {season_id} "
        f"({len(errors)} players rejected)"
    )
    return {
        "count": len(new_rows),
        "registrations": [row_to_dict(r) for r in new_rows],
        "errors": errors,
    }


async def _get_registration_or_404(
    session: AsyncSession, registration_id: int
) -> SeasonPlayerRegistration:
    registration = await session.get(SeasonPlayerRegistration, registration_id)
    if not registration:
        raise NotFoundError("Registration not found")
    return registration


def _require_pending(registration: SeasonPlayerRegistration) -> None:
    if to_json_value(registration.status) != SeasonRegistrationStatus.PENDING.value:
        raise BadRequestError("Only pending registrations can be changed")


async def approve_registration(
    session: AsyncSession,
    ctx: OrganizationContext,
    registration_id: int,
    federation_id_number: Optional[str] = None,
) -> Dict:
    """
    Approve a pending registration, enrolling the player in the federation
    first when they are not yet a member.
    """
    registration = await _get_registration_or_404(session, registration_id)
    season = await get_season_model(session, registration.season_id)
    ctx.require_federation_admin(season.federation_id)
    _require_pending(registration)

    member = await federation_service.get_membership(
        session, season.federation_id, registration.player_id
    )
    if member is None:
        if not federation_id_number:
            raise BadRequestError(
                "Federation ID number is required for players who are not yet federation members"
            )
        await federation_service.create_federation_member(
            session,
            season.federation_id,
            registration.player_id,
            federation_id_number,
            first_registration_season_id=season.id,
        )

    registration.status = SeasonRegistrationStatus.APPROVED
    registration.approved_at = utcnow()
    registration.approved_by = ctx.user_id
    await session.flush()
    logger.info(f"Season registration {registration_id} approved by user {ctx.user_id}")
    return row_to_dict(registration)


async def reject_registration(
    session: AsyncSession, ctx: OrganizationContext, registration_id: int, reason: str
) -> Dict:
    registration = await _get_registration_or_404(session, registration_id)
    season = await get_season_model(session, registration.season_id)
    ctx.require_federation_admin(season.federation_id)
    _require_pending(registration)
    if not reason:
        raise BadRequestError("Rejection reason is required")
    registration.status = SeasonRegistrationStatus.REJECTED
    registration.rejection_reason = reason
    await session.flush()
    logger.info(f"Season registration {registration_id} rejected by user {ctx.user_id}")
    return row_to_dict(registration)


async def cancel_registration(
    session: AsyncSession, ctx: OrganizationContext, registration_id: int
) -> Dict:
    registration = await _get_registration_or_404(session, registration_id)
    if not ctx.is_system_admin:
        if ctx.organization_id != registration.organization_id:
            raise ForbiddenError("You can only cancel your own organization's registrations")
        ctx.require_org_manager()
    _require_pending(registration)
    registration.status = SeasonRegistrationStatus.CANCELLED
    await session.flush()
    return row_to_dict(registration)


async def list_registrations(
    session: AsyncSession,
    ctx: OrganizationContext,
    params: PaginationParams,
    season_id: Optional[int] = None,
    status: Optional[str] = None,
    season_age_group_id: Optional[int] = None,
    organization_id: Optional[int] = None,
    player_id: Optional[int] = None,
) -> Dict:
    """
    Federation staff and system admins may filter freely; club users are
    limited to their active club's registrations.
    """
    stmt = select(SeasonPlayerRegistration, Player.name).join(
        Player, Player.id == SeasonPlayerRegistration.player_id
    )
    if not ctx.is_system_admin:
        if ctx.federation_id is not None and ctx.is_federation_staff(ctx.federation_id):
            stmt = stmt.join(Season, Season.id == SeasonPlayerRegistration.season_id).where(
                Season.federation_id == ctx.federation_id
            )
        else:
            organization_id = ctx.require_organization()

    if season_id is not None:
        stmt = stmt.where(SeasonPlayerRegistration.season_id == season_id)
    if status:
        stmt = stmt.where(SeasonPlayerRegistration.status == SeasonRegistrationStatus(status))
    if season_age_group_id is not None:
        stmt = stmt.where(SeasonPlayerRegistration.season_age_group_id == season_age_group_id)
    if organization_id is not None:
        stmt = stmt.where(SeasonPlayerRegistration.organization_id == organization_id)
    if player_id is not None:
        stmt = stmt.where(SeasonPlayerRegistration.player_id == player_id)

    total = (
        await session.execute(select(func.count()).select_from(stmt.order_by(None).subquery()))
    ).scalar_one()
    column = REGISTRATION_SORT_COLUMNS.get(params.sort_by or "", SeasonPlayerRegistration.created_at)
    ordering = column.asc() if params.sort_order == "asc" else column.desc()
    rows = (
        await session.execute(stmt.order_by(ordering).offset(params.offset).limit(params.limit))
    ).all()

    data = []
    for registration, player_name in rows:
        item = row_to_dict(registration)
        item["player_name"] = player_name
        data.append(item)
    return build_page(data, params, total)

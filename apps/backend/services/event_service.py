"""
Event service: events, registrations, round-robin groups and heats.
"""

import logging
import math
import random
from typing import Dict, List, Optional, Tuple

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.database.models import (
    Championship,
    ChampionshipEdition,
    Event,
    EventFormat,
    EventGender,
    EventType,
    Group,
    Match,
    Player,
    Registration,
    RegistrationPlayer,
    Visibility,
)
from backend.services.access import OrganizationContext
from backend.services.errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
)
from backend.utils.constants import (
    DEFAULT_PLAYERS_PER_HEAT,
    EVENT_TYPE_PLAYER_LIMITS,
    GROUP_FORMATS,
    POSITION_KEYS,
    TEST_EVENT_TYPES,
)
from backend.utils.pagination import PaginationParams, build_page, paginate
from backend.utils.serialization import row_to_dict, to_json_value

logger = logging.getLogger(__name__)

EVENT_SORT_COLUMNS = {
    "name": Event.name,
    "created_at": Event.created_at,
    "registration_start_date": Event.registration_start_date,
}

_ENUM_FIELDS = {
    "event_type": EventType,
    "gender": EventGender,
    "format": EventFormat,
    "visibility": Visibility,
}


# ============================================================================
# Validation
# ============================================================================


def is_test_event_type(event_type: str) -> bool:
    return event_type in TEST_EVENT_TYPES


def validate_event_data(data: Dict) -> Dict:
    """
    Check an event's fields as a whole and fill type-dependent defaults.

    Takes the merged field set (existing row plus updates) so the same rules
    apply on create and update. Returns the completed dict.
    """
    event_type = to_json_value(data["event_type"])
    event_format = to_json_value(data["format"])
    limits = EVENT_TYPE_PLAYER_LIMITS.get(event_type, (1, 1))
    if data.get("min_players") is None:
        data["min_players"] = limits[0]
    if data.get("max_players") is None:
        data["max_players"] = limits[1]
    if data.get("best_of") is None:
        data["best_of"] = 3

    errors = []
    if data["best_of"] < 1 or data["best_of"] % 2 == 0:
        errors.append({"field": "best_of", "message": "best_of must be an odd number"})
    if data["min_players"] > data["max_players"]:
        errors.append(
            {"field": "max_players", "message": "max_players must be >= min_players"}
        )
    if event_format in GROUP_FORMATS and (
        data.get("points_per_win") is None or data.get("points_per_loss") is None
    ):
        errors.append(
            {
                "field": "points_per_win",
                "message": "points_per_win and points_per_loss are required for groups format",
            }
        )
    if event_format == EventFormat.TESTS.value and not is_test_event_type(event_type):
        errors.append({"field": "format", "message": "tests format requires a test event type"})
    if errors:
        raise BadRequestError("Validation error", details=errors)

    if is_test_event_type(event_type) and data.get("players_per_heat") is None:
        data["players_per_heat"] = DEFAULT_PLAYERS_PER_HEAT
    return data


# ============================================================================
# Authorization helpers
# ============================================================================


async def _edition_federation_id(session: AsyncSession, edition_id: int) -> int:
    result = await session.execute(
        select(Championship.federation_id)
        .join(ChampionshipEdition, ChampionshipEdition.championship_id == Championship.id)
        .where(ChampionshipEdition.id == edition_id)
    )
    federation_id = result.scalar_one_or_none()
    if federation_id is None:
        raise NotFoundError("Championship edition not found")
    return federation_id


async def require_event_write(
    session: AsyncSession, ctx: OrganizationContext, event: Event, manager: bool = False
) -> None:
    """
    Club events are managed by the owning club's staff (managers for deletes);
    championship events by the federation's admins and editors.
    """
    if ctx.is_system_admin:
        return
    if event.organization_id is not None:
        if ctx.organization_id != event.organization_id:
            raise ForbiddenError("You can only modify events from your own organization")
        if manager:
            ctx.require_org_manager()
        else:
            ctx.require_org_staff()
        return
    if event.championship_edition_id is not None:
        federation_id = await _edition_federation_id(session, event.championship_edition_id)
        ctx.require_federation_staff(federation_id)
        return
    raise ForbiddenError("Only system admins can modify this event")


def can_read_event(ctx: Optional[OrganizationContext], event: Event) -> bool:
    if ctx is not None and ctx.is_system_admin:
        return True
    if to_json_value(event.visibility) == Visibility.PUBLIC.value:
        return True
    return ctx is not None and event.organization_id in ctx.memberships


async def get_event_model(session: AsyncSession, event_id: int) -> Event:
    event = await session.get(Event, event_id)
    if not event:
        raise NotFoundError("Event not found")
    return event


async def get_event_for_write(
    session: AsyncSession, ctx: OrganizationContext, event_id: int, manager: bool = False
) -> Event:
    event = await get_event_model(session, event_id)
    await require_event_write(session, ctx, event, manager=manager)
    return event


async def get_event_for_read(
    session: AsyncSession, ctx: Optional[OrganizationContext], event_id: int
) -> Event:
    event = await get_event_model(session, event_id)
    if not can_read_event(ctx, event):
        # Private events are hidden rather than forbidden
        raise NotFoundError("Event not found")
    return event


# ============================================================================
# Events
# ============================================================================


def _apply_enums(data: Dict) -> Dict:
    for key, enum_cls in _ENUM_FIELDS.items():
        if data.get(key) is not None:
            data[key] = enum_cls(data[key])
    return data


def _event_fields(event: Event) -> Dict:
    return row_to_dict(event, exclude=("id", "created_at", "updated_at"))


async def create_event(session: AsyncSession, ctx: OrganizationContext, data: Dict) -> Dict:
    data = dict(data)
    edition_id = data.get("championship_edition_id")
    if edition_id is not None:
        federation_id = await _edition_federation_id(session, edition_id)
        ctx.require_federation_staff(federation_id)
        data["organization_id"] = None
    elif ctx.is_system_admin and ctx.organization_id is None:
        data["organization_id"] = None
    else:
        data["organization_id"] = ctx.require_org_staff()

    data = validate_event_data(data)
    event = Event(**_apply_enums(data))
    session.add(event)
    await session.flush()
    logger.info(
        f"Created event {event.id} "
        f"({to_json_value(event.event_type)}, {to_json_value(event.format)})"
    )
    return row_to_dict(event)


async def list_events(
    session: AsyncSession,
    ctx: Optional[OrganizationContext],
    params: PaginationParams,
    championship_edition_id: Optional[int] = None,
    event_type: Optional[str] = None,
    gender: Optional[str] = None,
    event_format: Optional[str] = None,
) -> Dict:
    stmt = select(Event)
    if ctx is None:
        stmt = stmt.where(Event.visibility == Visibility.PUBLIC)
    elif not ctx.is_system_admin:
        stmt = stmt.where(
            or_(
                Event.visibility == Visibility.PUBLIC,
                Event.organization_id.in_(list(ctx.memberships.keys())),
            )
        )
    if championship_edition_id is not None:
        stmt = stmt.where(Event.championship_edition_id == championship_edition_id)
    if event_type:
        stmt = stmt.where(Event.event_type == EventType(event_type))
    if gender:
        stmt = stmt.where(Event.gender == EventGender(gender))
    if event_format:
        stmt = stmt.where(Event.format == EventFormat(event_format))

    events, total = await paginate(session, stmt, params, EVENT_SORT_COLUMNS, "created_at")
    return build_page([row_to_dict(e) for e in events], params, total)


async def get_event(
    session: AsyncSession, ctx: Optional[OrganizationContext], event_id: int
) -> Dict:
    event = await get_event_for_read(session, ctx, event_id)
    data = row_to_dict(event)
    count = await session.execute(
        select(func.count(Registration.id)).where(Registration.event_id == event_id)
    )
    data["registrations_count"] = count.scalar_one()
    return data


async def update_event(
    session: AsyncSession, ctx: OrganizationContext, event_id: int, updates: Dict
) -> Dict:
    event = await get_event_for_write(session, ctx, event_id)
    merged = validate_event_data({**_event_fields(event), **updates})
    for key in set(updates) | {"min_players", "max_players", "best_of", "players_per_heat"}:
        setattr(event, key, merged[key])
    _apply_enums_to_row(event)
    await session.flush()
    return row_to_dict(event)


def _apply_enums_to_row(event: Event) -> None:
    for key, enum_cls in _ENUM_FIELDS.items():
        value = getattr(event, key)
        if value is not None and not isinstance(value, enum_cls):
            setattr(event, key, enum_cls(value))


async def delete_event(session: AsyncSession, ctx: OrganizationContext, event_id: int) -> None:
    event = await get_event_for_write(session, ctx, event_id, manager=True)
    await session.delete(event)
    await session.flush()
    logger.info(f"Deleted event {event_id}")


# ============================================================================
# Registrations
# ============================================================================


async def _player_names(session: AsyncSession, player_ids) -> Dict[int, str]:
    if not player_ids:
        return {}
    result = await session.execute(select(Player.id, Player.name).where(Player.id.in_(player_ids)))
    return {pid: name for pid, name in result.all()}


def registration_to_dict(registration: Registration, names: Dict[int, str]) -> Dict:
    data = row_to_dict(registration)
    data["players"] = [
        {
            "player_id": rp.player_id,
            "name": names.get(rp.player_id),
            "position": rp.position,
            "order": rp.order,
            "position_scores": rp.position_scores,
        }
        for rp in registration.players
    ]
    return data


async def _serialize_registrations(session: AsyncSession, registrations) -> List[Dict]:
    ids = {rp.player_id for reg in registrations for rp in reg.players}
    names = await _player_names(session, ids)
    return [registration_to_dict(r, names) for r in registrations]


async def _require_registration_access(
    session: AsyncSession, ctx: OrganizationContext, event: Event, players: List[Player]
) -> None:
    """
    Event managers register anyone; for championship events a club's staff
    may also register their own club's players.
    """
    try:
        await require_event_write(session, ctx, event)
        return
    except ForbiddenError:
        if event.championship_edition_id is None or not ctx.is_org_staff:
            raise
    if ctx.organization_id is None or any(
        p.organization_id != ctx.organization_id for p in players
    ):
        raise ForbiddenError("You can only register players from your own organization")


async def create_registration(
    session: AsyncSession, ctx: OrganizationContext, event_id: int, players: List[Dict]
) -> Dict:
    """
    Register one player or a team for an event.

    Raises:
        BadRequestError: wrong number of players, repeated player, bad position
        NotFoundError: event or a player does not exist
        ConflictError: a player is already registered for this event
    """
    event = await get_event_model(session, event_id)

    if not event.min_players <= len(players) <= event.max_players:
        raise BadRequestError(
            f"This event requires between {event.min_players} and {event.max_players} players"
        )
    player_ids = [p["player_id"] for p in players]
    if len(set(player_ids)) != len(player_ids):
        raise BadRequestError("A player can only appear once in a registration")

    result = await session.execute(select(Player).where(Player.id.in_(player_ids)))
    found = list(result.scalars().all())
    if len(found) != len(player_ids):
        raise NotFoundError("Player not found")
    await _require_registration_access(session, ctx, event, found)

    if event.organization_id is not None and any(
        p.organization_id != event.organization_id for p in found
    ):
        raise BadRequestError("Players must belong to the event's organization")

    for item in players:
        position = item.get("position")
        if position is not None and position not in POSITION_KEYS:
            raise BadRequestError(f"Invalid position '{position}'")

    already = await session.execute(
        select(RegistrationPlayer.player_id)
        .join(Registration, Registration.id == RegistrationPlayer.registration_id)
        .where(Registration.event_id == event_id, RegistrationPlayer.player_id.in_(player_ids))
    )
    duplicates = sorted(set(already.scalars().all()))
    if duplicates:
        raise ConflictError(
            "Player is already registered for this event",
            details={"player_ids": duplicates},
        )

    registration = Registration(event_id=event_id)
    for index, item in enumerate(players):
        registration.players.append(
            RegistrationPlayer(
                player_id=item["player_id"],
                position=item.get("position"),
                order=item.get("order") or index + 1,
            )
        )
    session.add(registration)
    await session.flush()
    return (await _serialize_registrations(session, [registration]))[0]


async def list_registrations(
    session: AsyncSession,
    ctx: Optional[OrganizationContext],
    event_id: int,
    group_id: Optional[int] = None,
) -> List[Dict]:
    await get_event_for_read(session, ctx, event_id)
    stmt = select(Registration).where(Registration.event_id == event_id)
    if group_id is not None:
        stmt = stmt.where(Registration.group_id == group_id)
    stmt = stmt.order_by(Registration.seed.is_(None), Registration.seed, Registration.id)
    result = await session.execute(stmt)
    return await _serialize_registrations(session, result.scalars().all())


async def _get_registration_for_write(
    session: AsyncSession, ctx: OrganizationContext, registration_id: int
) -> Tuple[Registration, Event]:
    registration = await session.get(Registration, registration_id)
    if not registration:
        raise NotFoundError("Registration not found")
    event = await get_event_for_write(session, ctx, registration.event_id)
    return registration, event


async def delete_registration(
    session: AsyncSession, ctx: OrganizationContext, registration_id: int
) -> None:
    registration, _ = await _get_registration_for_write(session, ctx, registration_id)
    in_match = await session.execute(
        select(Match.id)
        .where(
            or_(
                Match.registration1_id == registration_id,
                Match.registration2_id == registration_id,
            )
        )
        .limit(1)
    )
    if in_match.scalar_one_or_none() is not None:
        raise ConflictError("Cannot delete a registration that is scheduled in matches")
    await session.delete(registration)
    await session.flush()


async def update_seed(
    session: AsyncSession, ctx: OrganizationContext, registration_id: int, seed: Optional[int]
) -> Dict:
    registration, _ = await _get_registration_for_write(session, ctx, registration_id)
    registration.seed = seed
    await session.flush()
    return (await _serialize_registrations(session, [registration]))[0]


def validate_position_scores(scores: Dict) -> Dict:
    unknown = set(scores) - set(POSITION_KEYS)
    if unknown:
        raise BadRequestError(f"Unknown position keys: {', '.join(sorted(unknown))}")
    for key, value in scores.items():
        if value is not None and value < 0:
            raise BadRequestError(f"Score for {key} must be non-negative")
    return {key: scores.get(key) for key in POSITION_KEYS}


async def update_position_scores(
    session: AsyncSession, ctx: OrganizationContext, registration_id: int, players: List[Dict]
) -> Dict:
    """
    Set R/L/F/B scores for players of a test-event registration.

    players is a list of {"player_id", "position_scores"}.
    """
    registration, event = await _get_registration_for_write(session, ctx, registration_id)
    if not is_test_event_type(to_json_value(event.event_type)):
        raise BadRequestError("Scores can only be updated for test events")

    by_player = {rp.player_id: rp for rp in registration.players}
    for item in players:
        rp = by_player.get(item["player_id"])
        if rp is None:
            raise BadRequestError(
                f"Player {item['player_id']} is not part of this registration"
            )
        rp.position_scores = validate_position_scores(item["position_scores"])
    await session.flush()
    return (await _serialize_registrations(session, [registration]))[0]


# ============================================================================
# Round robin groups
# ============================================================================


def round_robin(ids: List[int]) -> List[List[Tuple[int, int]]]:
    """
    Circle-method schedule: a list of rounds, each a list of pairings.

    An odd field gets a None bye whose pairings are dropped, so every id
    meets every other exactly once and plays at most once per round.
    """
    teams: List[Optional[int]] = list(ids)
    if len(teams) < 2:
        return []
    if len(teams) % 2 == 1:
        teams.append(None)

    n = len(teams)
    rounds = []
    for _ in range(n - 1):
        pairings = []
        for i in range(n // 2):
            home, away = teams[i], teams[n - 1 - i]
            if home is not None and away is not None:
                pairings.append((home, away))
        rounds.append(pairings)
        teams = [teams[0]] + [teams[-1]] + teams[1:-1]
    return rounds


def get_group_name(index: int) -> str:
    return chr(65 + index)


async def create_group(
    session: AsyncSession, ctx: OrganizationContext, event_id: int, registration_ids: List[int]
) -> Dict:
    """
    Create the next lettered group with its round-robin matches.

    Raises:
        BadRequestError: format is not a groups format or a registration is foreign
    """
    event = await get_event_for_write(session, ctx, event_id)
    if to_json_value(event.format) not in GROUP_FORMATS:
        raise BadRequestError(
            "Groups can only be created for events with groups format. "
            "Use generate-bracket for elimination events."
        )
    if len(set(registration_ids)) != len(registration_ids):
        raise BadRequestError("Each registration can appear only once in a group")
    if len(registration_ids) < 2:
        raise BadRequestError("A group needs at least 2 registrations")

    result = await session.execute(
        select(Registration).where(
            Registration.id.in_(registration_ids), Registration.event_id == event_id
        )
    )
    registrations = list(result.scalars().all())
    if len(registrations) != len(set(registration_ids)):
        raise BadRequestError("All registrations must belong to this event")

    existing = await session.execute(select(func.count(Group.id)).where(Group.event_id == event_id))
    group = Group(event_id=event_id, name=get_group_name(existing.scalar_one()))
    session.add(group)
    await session.flush()

    for registration in registrations:
        registration.group_id = group.id

    matches = []
    for round_index, pairings in enumerate(round_robin(registration_ids)):
        for match_index, (home, away) in enumerate(pairings):
            match = Match(
                event_id=event_id,
                group_id=group.id,
                round=round_index + 1,
                match_number=match_index + 1,
                registration1_id=home,
                registration2_id=away,
            )
            session.add(match)
            matches.append(match)
    await session.flush()
    logger.info(f"Created group {group.name} for event {event_id} with {len(matches)} matches")

    data = row_to_dict(group)
    data["registration_ids"] = list(registration_ids)
    data["matches"] = [row_to_dict(m) for m in matches]
    return data


async def list_groups(
    session: AsyncSession, ctx: Optional[OrganizationContext], event_id: int
) -> List[Dict]:
    await get_event_for_read(session, ctx, event_id)
    groups = (
        await session.execute(select(Group).where(Group.event_id == event_id).order_by(Group.id))
    ).scalars().all()
    rows = (
        await session.execute(
            select(Registration.group_id, Registration.id).where(Registration.event_id == event_id)
        )
    ).all()
    members: Dict[int, List[int]] = {}
    for group_id, registration_id in rows:
        members.setdefault(group_id, []).append(registration_id)
    result = []
    for group in groups:
        data = row_to_dict(group)
        data["registration_ids"] = sorted(members.get(group.id, []))
        result.append(data)
    return result


# ============================================================================
# Heats
# ============================================================================


def get_heat_name(index: int) -> str:
    """A..Z, then AA, AB, ..."""
    if index < 26:
        return chr(65 + index)
    return chr(65 + index // 26 - 1) + chr(65 + index % 26)


def validate_event_for_heats(event: Event) -> None:
    if not is_test_event_type(to_json_value(event.event_type)):
        raise BadRequestError("Heats can only be generated for test events")
    if to_json_value(event.format) != EventFormat.TESTS.value:
        raise BadRequestError('Event format must be "tests" to generate heats')


async def generate_heats(
    session: AsyncSession,
    ctx: OrganizationContext,
    event_id: int,
    players_per_heat: Optional[int] = None,
    shuffle: bool = True,
) -> Dict:
    event = await get_event_for_write(session, ctx, event_id)
    validate_event_for_heats(event)

    existing = await session.execute(select(Group.id).where(Group.event_id == event_id).limit(1))
    if existing.scalar_one_or_none() is not None:
        raise ConflictError("Heats already exist for this event. Delete them first.")

    size = players_per_heat or event.players_per_heat or DEFAULT_PLAYERS_PER_HEAT
    if size < 1:
        raise BadRequestError("players_per_heat must be at least 1")

    registrations = list(
        (
            await session.execute(
                select(Registration).where(Registration.event_id == event_id).order_by(Registration.id)
            )
        ).scalars().all()
    )
    if shuffle:
        random.shuffle(registrations)

    heats = []
    total_heats = math.ceil(len(registrations) / size)
    for heat_index in range(total_heats):
        members = registrations[heat_index * size : (heat_index + 1) * size]
        heat = Group(event_id=event_id, name=get_heat_name(heat_index))
        session.add(heat)
        await session.flush()
        for registration in members:
            registration.group_id = heat.id
        heats.append({"id": heat.id, "name": heat.name, "registrationCount": len(members)})
    await session.flush()

    logger.info(f"Generated {total_heats} heats for event {event_id}")
    return {
        "heats": heats,
        "totalHeats": total_heats,
        "totalRegistrations": len(registrations),
    }


async def delete_all_heats(session: AsyncSession, ctx: OrganizationContext, event_id: int) -> int:
    await get_event_for_write(session, ctx, event_id)
    count = await session.execute(select(func.count(Group.id)).where(Group.event_id == event_id))
    deleted = count.scalar_one()
    await session.execute(
        update(Registration)
        .where(Registration.event_id == event_id)
        .values(group_id=None)
        .execution_options(synchronize_session="fetch")
    )
    await session.execute(
        delete(Group).where(Group.event_id == event_id).execution_options(synchronize_session="fetch")
    )
    await session.flush()
    logger.info(f"Deleted {deleted} heats of event {event_id}")
    return deleted


# ============================================================================
# Test event ranking
# ============================================================================


def sum_position_scores(scores: Optional[Dict]) -> int:
    if not scores:
        return 0
    return sum(scores.get(key) or 0 for key in POSITION_KEYS)


def registration_total_score(registration: Dict) -> int:
    return sum(sum_position_scores(p.get("position_scores")) for p in registration["players"])


async def get_test_event_ranking(
    session: AsyncSession, ctx: Optional[OrganizationContext], event_id: int
) -> List[Dict]:
    event = await get_event_for_read(session, ctx, event_id)
    if not is_test_event_type(to_json_value(event.event_type)):
        raise BadRequestError("Ranking is only available for test events")
    registrations = await list_registrations(session, ctx, event_id)
    for registration in registrations:
        registration["total_score"] = registration_total_score(registration)
    ranked = sorted(registrations, key=lambda r: r["total_score"], reverse=True)
    for position, registration in enumerate(ranked, start=1):
        registration["rank"] = position
    return ranked

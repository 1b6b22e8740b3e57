"""
Match service: sets, scoring, match completion and bracket advancement.

Completion and reset are dispatched to a per-format handler (groups update
standings, elimination formats move registrations along winner_to and
loser_to). Every mutation is broadcast to the match's WebSocket room.
"""

import logging
import math
from typing import Dict, List, Optional, Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.database.models import (
    Event,
    Group,
    Match,
    MatchSet,
    Registration,
    RegistrationPlayer,
)
from backend.services import club_service, event_service
from backend.services.access import OrganizationContext
from backend.services.errors import BadRequestError, NotFoundError
from backend.services.websocket_manager import get_websocket_manager
from backend.utils.constants import (
    DOUBLE_ELIMINATION_FORMATS,
    GROUP_FORMATS,
    SINGLE_ELIMINATION_FORMATS,
)
from backend.utils.pagination import PaginationParams, build_page, paginate
from backend.utils.serialization import row_to_dict, to_json_value

logger = logging.getLogger(__name__)

SET_CREATED = "set_created"
SCORE_UPDATED = "score_updated"
SET_PLAYED = "set_played"
MATCH_COMPLETED = "match_completed"
MATCH_UPDATED = "match_updated"


# ============================================================================
# Validation (pure)
# ============================================================================


def majority(best_of: int) -> int:
    return math.ceil(best_of / 2)


def count_set_wins(sets: Sequence) -> Dict[int, int]:
    """Sets won by side 1 and side 2 among played sets; drawn sets count for nobody."""
    wins = {1: 0, 2: 0}
    for s in sets:
        if not s.played:
            continue
        if s.registration1_score > s.registration2_score:
            wins[1] += 1
        elif s.registration2_score > s.registration1_score:
            wins[2] += 1
    return wins


def validate_set_addition(match_played: bool, best_of: int, existing_sets: Sequence) -> None:
    if match_played:
        raise BadRequestError("Cannot add sets to a completed match")
    if len(existing_sets) >= best_of:
        raise BadRequestError("Cannot add more sets: bestOf limit reached")
    if any(not s.played for s in existing_sets):
        raise BadRequestError("Cannot add new set: previous sets must be marked as played first")
    wins = count_set_wins(existing_sets)
    if max(wins.values()) >= majority(best_of):
        raise BadRequestError("Cannot add more sets: a player has already reached majority")


def validate_set_played(
    set_number: int, registration1_score: int, registration2_score: int, existing_sets: Sequence
) -> None:
    if registration1_score == registration2_score:
        raise BadRequestError("Cannot mark set as played: scores are equal (draw not allowed)")
    if registration1_score <= 0 and registration2_score <= 0:
        raise BadRequestError("At least one score must be greater than 0")
    played_numbers = {s.set_number for s in existing_sets if s.played}
    for number in range(1, set_number):
        if number not in played_numbers:
            raise BadRequestError(
                "Cannot mark set as played: previous sets must be marked as played first"
            )


def validate_match_completion(best_of: int, sets: Sequence) -> int:
    """
    Check a match can be completed from its sets.

    Returns:
        1 or 2, the winning side
    """
    if any(not s.played for s in sets):
        raise BadRequestError(
            "Cannot mark match as played: all sets must be marked as played first"
        )
    wins = count_set_wins(sets)
    if wins[1] == wins[2]:
        raise BadRequestError("Cannot determine winner: both players won equal sets")
    needed = majority(best_of)
    if wins[1] < needed and wins[2] < needed:
        raise BadRequestError("No player has reached majority yet")
    return 1 if wins[1] >= needed else 2


def calculate_match_points(
    winner_id: int,
    registration1_id: int,
    registration2_id: int,
    points_per_win: Optional[int],
    points_per_loss: Optional[int],
) -> Dict:
    registration1_won = winner_id == registration1_id
    registration2_won = winner_id == registration2_id
    return {
        "registration1_won": registration1_won,
        "registration2_won": registration2_won,
        "registration1_points": (points_per_win if registration1_won else points_per_loss) or 0,
        "registration2_points": (points_per_win if registration2_won else points_per_loss) or 0,
    }


def calculate_set_points(sets: Sequence) -> Dict:
    result = {
        "registration1_sets_won": 0,
        "registration1_sets_lost": 0,
        "registration2_sets_won": 0,
        "registration2_sets_lost": 0,
    }
    for s in sets:
        if s.registration1_score > s.registration2_score:
            result["registration1_sets_won"] += 1
            result["registration2_sets_lost"] += 1
        elif s.registration2_score > s.registration1_score:
            result["registration2_sets_won"] += 1
            result["registration1_sets_lost"] += 1
    return result


# ============================================================================
# Loading helpers
# ============================================================================


async def _get_sets(session: AsyncSession, match_id: int) -> List[MatchSet]:
    result = await session.execute(
        select(MatchSet).where(MatchSet.match_id == match_id).order_by(MatchSet.set_number)
    )
    return list(result.scalars().all())


async def _get_match_or_404(session: AsyncSession, match_id: int) -> Match:
    match = await session.get(Match, match_id)
    if not match:
        raise NotFoundError("Match not found")
    return match


async def _get_set_or_404(session: AsyncSession, set_id: int) -> MatchSet:
    match_set = await session.get(MatchSet, set_id)
    if not match_set:
        raise NotFoundError("Set not found")
    return match_set


async def _match_for_write(session: AsyncSession, ctx: OrganizationContext, match_id: int):
    match = await _get_match_or_404(session, match_id)
    event = await event_service.get_event_for_write(session, ctx, match.event_id)
    return match, event


def _match_to_dict(match: Match, sets: Optional[List[MatchSet]] = None) -> Dict:
    data = row_to_dict(match)
    if sets is not None:
        data["sets"] = [row_to_dict(s) for s in sets]
    return data


async def _broadcast(match_id: int, event: str, payload: Dict) -> None:
    await get_websocket_manager().broadcast_to_match(match_id, event, payload)


# ============================================================================
# Advancement and format handlers
# ============================================================================


def _set_slot(match: Match, slot: int, registration_id: Optional[int]) -> None:
    if slot == 1:
        match.registration1_id = registration_id
    else:
        match.registration2_id = registration_id


def _slot_value(match: Match, slot: int) -> Optional[int]:
    return match.registration1_id if slot == 1 else match.registration2_id


async def advance_to_match(
    session: AsyncSession, target_id: int, slot: int, registration_id: int
) -> None:
    target = await session.get(Match, target_id)
    if target is not None:
        _set_slot(target, slot, registration_id)


def _loser_of(match: Match) -> Optional[int]:
    if match.winner_id == match.registration1_id:
        return match.registration2_id
    return match.registration1_id


async def check_and_auto_advance_bye(session: AsyncSession, match_id: int) -> None:
    """
    Complete a match that can only ever hold one registration, then cascade.

    A match with exactly one registration and no unplayed feeder (a match
    whose winner_to or loser_to points here) is a bye: the lone registration
    wins and moves on. A match left with no registration once every feeder
    is played is closed without a winner.
    """
    match = await session.get(Match, match_id)
    if match is None or match.played:
        return

    await session.flush()
    feeders = await session.execute(
        select(func.count(Match.id)).where(
            Match.played.is_(False),
            or_(Match.winner_to == match_id, Match.loser_to == match_id),
        )
    )
    if feeders.scalar_one():
        return

    present = [r for r in (match.registration1_id, match.registration2_id) if r is not None]
    if len(present) == 2:
        return
    if not present:
        has_feeders = await session.execute(
            select(func.count(Match.id)).where(
                or_(Match.winner_to == match_id, Match.loser_to == match_id)
            )
        )
        if not has_feeders.scalar_one():
            return
        match.played = True
    else:
        match.winner_id = present[0]
        match.played = True
        if match.winner_to and match.winner_to_slot:
            await advance_to_match(session, match.winner_to, match.winner_to_slot, present[0])
    logger.info(f"Auto-advanced bye match {match_id}")

    if match.winner_to:
        await check_and_auto_advance_bye(session, match.winner_to)
    if match.loser_to:
        await check_and_auto_advance_bye(session, match.loser_to)


async def _update_standings(
    session: AsyncSession, match: Match, event: Event, sets: Sequence, sign: int
) -> None:
    points = calculate_match_points(
        match.winner_id,
        match.registration1_id,
        match.registration2_id,
        event.points_per_win,
        event.points_per_loss,
    )
    set_points = calculate_set_points(sets)
    for side in (1, 2):
        registration = await session.get(Registration, getattr(match, f"registration{side}_id"))
        if registration is None:
            continue
        won = points[f"registration{side}_won"]
        registration.matches_won += sign * (1 if won else 0)
        registration.matches_lost += sign * (0 if won else 1)
        registration.sets_won += sign * set_points[f"registration{side}_sets_won"]
        registration.sets_lost += sign * set_points[f"registration{side}_sets_lost"]
        registration.points += sign * points[f"registration{side}_points"]


class GroupsMatchHandler:
    """Round-robin formats: standings move with each result."""

    async def on_complete(self, session, match, event, sets):
        if match.registration1_id and match.registration2_id:
            await _update_standings(session, match, event, sets, 1)

    async def on_reset(self, session, match, event, sets):
        if match.registration1_id and match.registration2_id and match.winner_id:
            await _update_standings(session, match, event, sets, -1)


class SingleEliminationMatchHandler:
    async def on_complete(self, session, match, event, sets):
        if match.winner_to and match.winner_to_slot and match.winner_id:
            await advance_to_match(session, match.winner_to, match.winner_to_slot, match.winner_id)
        loser_id = _loser_of(match)
        # Semifinal losers feed the third-place match
        if match.loser_to and match.loser_to_slot and loser_id:
            await advance_to_match(session, match.loser_to, match.loser_to_slot, loser_id)

    async def on_reset(self, session, match, event, sets):
        await _clear_slot_if_holds(session, match.winner_to, match.winner_to_slot, match.winner_id)
        await _clear_slot_if_holds(session, match.loser_to, match.loser_to_slot, _loser_of(match))


class DoubleEliminationMatchHandler:
    async def on_complete(self, session, match, event, sets):
        if match.winner_to and match.winner_to_slot and match.winner_id:
            await advance_to_match(session, match.winner_to, match.winner_to_slot, match.winner_id)
        loser_id = _loser_of(match)
        if loser_id and match.loser_to and match.loser_to_slot:
            await advance_to_match(session, match.loser_to, match.loser_to_slot, loser_id)
            await check_and_auto_advance_bye(session, match.loser_to)
        if match.winner_to:
            await check_and_auto_advance_bye(session, match.winner_to)

    async def on_reset(self, session, match, event, sets):
        await _clear_slot_if_holds(session, match.winner_to, match.winner_to_slot, match.winner_id)
        if match.loser_to and match.loser_to_slot:
            target = await session.get(Match, match.loser_to)
            if target is not None:
                _set_slot(target, match.loser_to_slot, None)


async def _clear_slot_if_holds(
    session: AsyncSession, target_id: Optional[int], slot: Optional[int], registration_id
) -> None:
    if not (target_id and slot and registration_id):
        return
    target = await session.get(Match, target_id)
    if target is not None and _slot_value(target, slot) == registration_id:
        _set_slot(target, slot, None)


async def _check_downstream_resettable(session: AsyncSession, match: Match) -> None:
    """
    Refuse a reset once a match fed by this one has really been played.

    Matches closed automatically as byes (played without sets) are walked
    through, since reset_match reopens them.
    """
    for target_id in (match.winner_to, match.loser_to):
        if not target_id:
            continue
        target = await session.get(Match, target_id)
        if target is None or not target.played:
            continue
        if await _get_sets(session, target.id):
            raise BadRequestError(
                "Cannot reset match: a following match has already been played"
            )
        await _check_downstream_resettable(session, target)


async def _reopen_auto_completed(session: AsyncSession, target_id: Optional[int]) -> None:
    """Undo a bye completion on target_id and everything it advanced into."""
    if not target_id:
        return
    target = await session.get(Match, target_id)
    if target is None or not target.played:
        return
    await _clear_slot_if_holds(session, target.winner_to, target.winner_to_slot, target.winner_id)
    await _reopen_auto_completed(session, target.winner_to)
    await _reopen_auto_completed(session, target.loser_to)
    target.winner_id = None
    target.played = False
    logger.info(f"Reopened bye match {target_id}")


def get_match_handler(event_format: str):
    if event_format in GROUP_FORMATS:
        return GroupsMatchHandler()
    if event_format in SINGLE_ELIMINATION_FORMATS:
        return SingleEliminationMatchHandler()
    if event_format in DOUBLE_ELIMINATION_FORMATS:
        return DoubleEliminationMatchHandler()
    return None


async def update_group_completed(session: AsyncSession, group_id: int) -> None:
    group = await session.get(Group, group_id)
    if group is None:
        return
    unplayed = await session.execute(
        select(func.count(Match.id)).where(Match.group_id == group_id, Match.played.is_(False))
    )
    group.completed = unplayed.scalar_one() == 0


async def update_event_completed(session: AsyncSession, event_id: int) -> None:
    event = await session.get(Event, event_id)
    if event is None:
        return
    total, played = (
        await session.execute(
            select(
                func.count(Match.id),
                func.count(Match.id).filter(Match.played.is_(True)),
            ).where(Match.event_id == event_id)
        )
    ).one()
    event.completed = total > 0 and total == played


async def _after_result_change(session: AsyncSession, match: Match) -> None:
    await session.flush()
    if match.group_id:
        await update_group_completed(session, match.group_id)
    await update_event_completed(session, match.event_id)
    await session.flush()


async def handle_match_completion(
    session: AsyncSession, match: Match, event: Event, sets: Sequence
) -> None:
    handler = get_match_handler(to_json_value(event.format))
    if handler is not None:
        await handler.on_complete(session, match, event, sets)
    await _after_result_change(session, match)
    logger.info(f"Match {match.id} completed, winner registration {match.winner_id}")


async def handle_match_reset(
    session: AsyncSession, match: Match, event: Event, sets: Sequence
) -> None:
    await _check_downstream_resettable(session, match)
    handler = get_match_handler(to_json_value(event.format))
    if handler is not None:
        await handler.on_reset(session, match, event, sets)
    await _reopen_auto_completed(session, match.winner_to)
    await _reopen_auto_completed(session, match.loser_to)
    match.winner_id = None
    match.played = False
    for s in sets:
        s.played = False
    await _after_result_change(session, match)
    logger.info(f"Match {match.id} reset")


# ============================================================================
# Matches
# ============================================================================


async def _sets_by_match(session: AsyncSession, match_ids: List[int]) -> Dict[int, List[MatchSet]]:
    sets_by_match: Dict[int, List[MatchSet]] = {i: [] for i in match_ids}
    if match_ids:
        rows = await session.execute(
            select(MatchSet).where(MatchSet.match_id.in_(match_ids)).order_by(MatchSet.set_number)
        )
        for s in rows.scalars().all():
            sets_by_match[s.match_id].append(s)
    return sets_by_match


async def list_matches(
    session: AsyncSession,
    ctx: Optional[OrganizationContext],
    event_id: int,
    group_id: Optional[int] = None,
    round_number: Optional[int] = None,
) -> List[Dict]:
    await event_service.get_event_for_read(session, ctx, event_id)
    stmt = select(Match).where(Match.event_id == event_id)
    if group_id is not None:
        stmt = stmt.where(Match.group_id == group_id)
    if round_number is not None:
        stmt = stmt.where(Match.round == round_number)
    stmt = stmt.order_by(Match.bracket_type, Match.round, Match.match_number, Match.id)
    matches = (await session.execute(stmt)).scalars().all()
    sets_by_match = await _sets_by_match(session, [m.id for m in matches])
    return [_match_to_dict(m, sets_by_match[m.id]) for m in matches]


async def get_match(session: AsyncSession, ctx: Optional[OrganizationContext], match_id: int) -> Dict:
    match = await _get_match_or_404(session, match_id)
    await event_service.get_event_for_read(session, ctx, match.event_id)
    return _match_to_dict(match, await _get_sets(session, match_id))


async def list_player_matches(
    session: AsyncSession, ctx: OrganizationContext, player_id: int, params: PaginationParams
) -> Dict:
    """
    Played matches of one player, newest first. Byes are left out.

    Each item carries the match sets, the event name, which side the player
    was on and whether that side won. Matches without a date sort by their
    creation time.
    """
    organization_id = None if ctx.is_system_admin else ctx.require_organization()
    await club_service.get_player_model(session, player_id, organization_id)

    registration_ids = set(
        (
            await session.execute(
                select(RegistrationPlayer.registration_id).where(
                    RegistrationPlayer.player_id == player_id
                )
            )
        ).scalars().all()
    )
    if not registration_ids:
        return build_page([], params, 0)

    stmt = select(Match).where(
        Match.played.is_(True),
        Match.registration1_id.isnot(None),
        Match.registration2_id.isnot(None),
        or_(
            Match.registration1_id.in_(registration_ids),
            Match.registration2_id.in_(registration_ids),
        ),
    )
    sort_columns = {"date": func.coalesce(Match.match_date, Match.created_at)}
    matches, total = await paginate(session, stmt, params, sort_columns, "date")

    sets_by_match = await _sets_by_match(session, [m.id for m in matches])
    event_names = {}
    event_ids = {m.event_id for m in matches}
    if event_ids:
        rows = await session.execute(select(Event.id, Event.name).where(Event.id.in_(event_ids)))
        event_names = dict(rows.all())

    data = []
    for match in matches:
        item = _match_to_dict(match, sets_by_match[match.id])
        own, opponent = (
            (match.registration1_id, match.registration2_id)
            if match.registration1_id in registration_ids
            else (match.registration2_id, match.registration1_id)
        )
        item["event_name"] = event_names.get(match.event_id)
        item["player_registration_id"] = own
        item["opponent_registration_id"] = opponent
        item["player_won"] = match.winner_id == own
        data.append(item)
    return build_page(data, params, total)


async def update_match(
    session: AsyncSession, ctx: OrganizationContext, match_id: int, data: Dict
) -> Dict:
    """Update match details; the date is locked once sets exist."""
    match, _ = await _match_for_write(session, ctx, match_id)
    sets = await _get_sets(session, match_id)
    if "match_date" in data:
        if sets and data["match_date"] != match.match_date:
            raise BadRequestError("Cannot change match date once sets are entered")
        match.match_date = data["match_date"]
    await session.flush()
    result = _match_to_dict(match, sets)
    await _broadcast(match_id, MATCH_UPDATED, result)
    return result


async def complete_match(session: AsyncSession, ctx: OrganizationContext, match_id: int) -> Dict:
    match, event = await _match_for_write(session, ctx, match_id)
    if match.played:
        raise BadRequestError("Match is already completed")
    sets = await _get_sets(session, match_id)
    side = validate_match_completion(event.best_of, sets)
    match.winner_id = match.registration1_id if side == 1 else match.registration2_id
    match.played = True
    await handle_match_completion(session, match, event, sets)

    result = _match_to_dict(match, sets)
    await _broadcast(match_id, MATCH_COMPLETED, result)
    return result


async def reset_match(session: AsyncSession, ctx: OrganizationContext, match_id: int) -> Dict:
    match, event = await _match_for_write(session, ctx, match_id)
    if not match.played:
        raise BadRequestError("Match has not been played")
    if not (match.registration1_id and match.registration2_id):
        raise BadRequestError("Bye matches cannot be reset")
    sets = await _get_sets(session, match_id)
    await handle_match_reset(session, match, event, sets)

    result = _match_to_dict(match, sets)
    await _broadcast(match_id, MATCH_UPDATED, result)
    return result


# ============================================================================
# Sets
# ============================================================================


async def create_set(session: AsyncSession, ctx: OrganizationContext, match_id: int) -> Dict:
    match, event = await _match_for_write(session, ctx, match_id)
    if not (match.registration1_id and match.registration2_id):
        raise BadRequestError("Both registrations must be set before adding sets")
    sets = await _get_sets(session, match_id)
    validate_set_addition(match.played, event.best_of, sets)

    match_set = MatchSet(
        match_id=match_id,
        set_number=len(sets) + 1,
        registration1_score=0,
        registration2_score=0,
    )
    session.add(match_set)
    await session.flush()

    result = row_to_dict(match_set)
    await _broadcast(match_id, SET_CREATED, result)
    return result


async def _set_for_write(session: AsyncSession, ctx: OrganizationContext, set_id: int):
    match_set = await _get_set_or_404(session, set_id)
    match, event = await _match_for_write(session, ctx, match_set.match_id)
    return match_set, match, event


async def update_set_scores(
    session: AsyncSession,
    ctx: OrganizationContext,
    set_id: int,
    registration1_score: int,
    registration2_score: int,
) -> Dict:
    match_set, match, _ = await _set_for_write(session, ctx, set_id)
    if match_set.played:
        raise BadRequestError("Cannot update scores of a played set")
    if match.played:
        raise BadRequestError("Cannot update sets in a completed match")
    match_set.registration1_score = registration1_score
    match_set.registration2_score = registration2_score
    await session.flush()

    result = row_to_dict(match_set)
    await _broadcast(match.id, SCORE_UPDATED, result)
    return result


async def mark_set_played(session: AsyncSession, ctx: OrganizationContext, set_id: int) -> Dict:
    """
    Mark a set played and complete the match once a side holds the majority.

    Returns {"set", "matchCompleted", "winnerId"}.
    """
    match_set, match, event = await _set_for_write(session, ctx, set_id)
    if match_set.played:
        raise BadRequestError("Set is already marked as played")
    if match.played:
        raise BadRequestError("Cannot mark sets in a completed match")
    if not match.match_date:
        raise BadRequestError("Match date must be set before marking sets as played")

    sets = await _get_sets(session, match.id)
    validate_set_played(
        match_set.set_number,
        match_set.registration1_score,
        match_set.registration2_score,
        sets,
    )
    match_set.played = True

    wins = count_set_wins(sets)
    needed = majority(event.best_of)
    completed = max(wins.values()) >= needed
    if completed:
        match.winner_id = match.registration1_id if wins[1] >= needed else match.registration2_id
        match.played = True
        for s in sets:
            s.played = True
        await handle_match_completion(session, match, event, sets)
    else:
        await session.flush()

    result = {
        "set": row_to_dict(match_set),
        "matchCompleted": completed,
        "winnerId": match.winner_id if completed else None,
    }
    await _broadcast(match.id, SET_PLAYED, result)
    if completed:
        await _broadcast(match.id, MATCH_COMPLETED, _match_to_dict(match, sets))
    return result


async def delete_set(session: AsyncSession, ctx: OrganizationContext, set_id: int) -> None:
    match_set, match, _ = await _set_for_write(session, ctx, set_id)
    if match_set.played:
        raise BadRequestError("Cannot delete a played set")
    sets = await _get_sets(session, match.id)
    if sets and sets[-1].id != match_set.id:
        raise BadRequestError("Only the last set can be deleted")
    await session.delete(match_set)
    await session.flush()
    await _broadcast(match.id, MATCH_UPDATED, _match_to_dict(match, sets[:-1]))

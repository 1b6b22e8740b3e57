"""
Bracket generation for elimination events.

The generate_* functions are pure: they take registration ids and return
match descriptors, so they can be tested without a database. generate_bracket
persists a bracket for an event in two passes (insert, then link by id).
"""

import logging
import math
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.database.models import BracketType, Match, Registration
from backend.services import event_service, match_service
from backend.services.access import OrganizationContext
from backend.services.errors import BadRequestError, ConflictError
from backend.utils.constants import DOUBLE_ELIMINATION_FORMATS, ELIMINATION_FORMATS
from backend.utils.serialization import row_to_dict, to_json_value

logger = logging.getLogger(__name__)

FIRST_PLACE = "first-place"
SECOND_PLACE = "second-place"
THIRD_PLACE = "third-place"
FOURTH_PLACE = "fourth-place"
ELIMINATED = "eliminated"


# ============================================================================
# Seeding helpers
# ============================================================================


def next_power_of_2(n: int) -> int:
    if n <= 1:
        return 1
    return 2 ** math.ceil(math.log2(n))


def generate_seed_positions(bracket_size: int) -> List[int]:
    """
    Return seed_positions where seed_positions[i] is the 1-based slot of seed i+1.

    Slots are built so the top seeds meet as late as possible:
    size 8 yields the slot order [1, 8, 4, 5, 2, 7, 3, 6].
    """
    if bracket_size == 1:
        return [1]
    if bracket_size == 2:
        return [1, 2]

    slot_seeds = [1, 2]
    while len(slot_seeds) < bracket_size:
        total = len(slot_seeds) * 2 + 1
        expanded = []
        for seed in slot_seeds:
            expanded.append(seed)
            expanded.append(total - seed)
        slot_seeds = expanded

    seed_positions = [0] * bracket_size
    for slot_index, seed in enumerate(slot_seeds):
        seed_positions[seed - 1] = slot_index + 1
    return seed_positions


def sort_by_seeds(registration_ids: List[int], seeds: Optional[List[Dict]] = None) -> List[int]:
    """Order ids by seed ascending. Unseeded ids keep their order and go last."""
    if not seeds:
        return list(registration_ids)
    seed_map = {s["registration_id"]: s["seed"] for s in seeds}
    return sorted(registration_ids, key=lambda rid: seed_map.get(rid, math.inf))


def place_to_bracket_slots(sorted_ids: List[int], bracket_size: int) -> List[Optional[int]]:
    seed_positions = generate_seed_positions(bracket_size)
    slots: List[Optional[int]] = [None] * bracket_size
    for i, registration_id in enumerate(sorted_ids):
        slots[seed_positions[i] - 1] = registration_id
    return slots


# ============================================================================
# Single elimination
# ============================================================================


def generate_single_elimination_bracket(
    registration_ids: List[int],
    seeds: Optional[List[Dict]] = None,
    has_third_place_match: bool = False,
) -> Dict:
    """
    Build a single elimination bracket.

    Returns {"matches", "total_rounds", "bracket_size"}. Each match is a dict
    keyed by bracket_position; winner_to and loser_to hold bracket positions.
    """
    if len(registration_ids) < 2:
        raise ValueError("At least 2 participants required for single elimination")

    bracket_size = next_power_of_2(len(registration_ids))
    total_rounds = int(math.log2(bracket_size))
    slots = place_to_bracket_slots(sort_by_seeds(registration_ids, seeds), bracket_size)

    matches: List[Dict] = []
    positions_by_round: Dict[int, List[int]] = {}
    position = 1

    for i in range(bracket_size // 2):
        reg1, reg2 = slots[i * 2], slots[i * 2 + 1]
        matches.append(
            _se_match(1, i + 1, position, reg1, reg2, is_bye=reg1 is None or reg2 is None)
        )
        positions_by_round.setdefault(1, []).append(position)
        position += 1

    for round_number in range(2, total_rounds + 1):
        for i in range(len(positions_by_round[round_number - 1]) // 2):
            matches.append(_se_match(round_number, i + 1, position, None, None))
            positions_by_round.setdefault(round_number, []).append(position)
            position += 1

    by_position = {m["bracket_position"]: m for m in matches}
    for round_number in range(1, total_rounds):
        next_positions = positions_by_round[round_number + 1]
        for i, pos in enumerate(positions_by_round[round_number]):
            by_position[pos]["winner_to"] = next_positions[i // 2]
            by_position[pos]["winner_to_slot"] = 1 if i % 2 == 0 else 2

    # A bye semifinal has no loser, so the third-place match could never be played
    if has_third_place_match and total_rounds >= 2:
        semifinals = positions_by_round[total_rounds - 1]
        if len(semifinals) == 2 and not any(by_position[pos]["is_bye"] for pos in semifinals):
            third_place = _se_match(total_rounds, 2, position, None, None)
            third_place["is_third_place"] = True
            matches.append(third_place)
            for i, pos in enumerate(semifinals):
                by_position[pos]["loser_to"] = position
                by_position[pos]["loser_to_slot"] = i + 1

    return {"matches": matches, "total_rounds": total_rounds, "bracket_size": bracket_size}


def _se_match(round_number, match_number, position, reg1, reg2, is_bye=False) -> Dict:
    return {
        "round": round_number,
        "match_number": match_number,
        "bracket_position": position,
        "registration1_id": reg1,
        "registration2_id": reg2,
        "winner_to": None,
        "winner_to_slot": None,
        "loser_to": None,
        "loser_to_slot": None,
        "is_bye": is_bye,
        "is_third_place": False,
    }


def process_bye_advancements(matches: List[Dict]) -> List[Tuple[int, int, int]]:
    """(target_position, slot, registration_id) for every bye with a next match."""
    advancements = []
    for match in matches:
        if match["is_bye"] and match["winner_to"] and match["winner_to_slot"]:
            winner = match["registration1_id"] or match["registration2_id"]
            if winner:
                advancements.append((match["winner_to"], match["winner_to_slot"], winner))
    return advancements


# ============================================================================
# Modified double elimination
# ============================================================================


def _make_id(prefix: str, round_number: int, match_number: int) -> str:
    return f"{prefix}-{round_number}-{match_number}"


def reorder_entrants(entrants: List[Tuple[str, str]], survivors_count: int) -> List[Tuple[str, str]]:
    """Interleave losers-bracket survivors with the incoming wave of winners-bracket losers."""
    survivors = entrants[:survivors_count]
    wave = entrants[survivors_count:]

    if len(survivors) == 2 and len(wave) == 2:
        return [survivors[0], wave[1], survivors[1], wave[0]]

    interleaved = []
    for i in range(max(len(survivors), len(wave))):
        if i < len(survivors):
            interleaved.append(survivors[i])
        if i < len(wave):
            interleaved.append(wave[i])
    return interleaved


def generate_modified_double_elimination_bracket(registration_ids: List[int]) -> Dict:
    """
    Build a winners bracket plus a losers bracket that decides third and fourth place.

    Matches are dicts with string ids ("WB-1-1", "LB-2-1"). winner_to and
    loser_to hold another match id or a placement label (first-place,
    second-place, third-place, fourth-place, eliminated).

    Returns {"matches", "total_rounds": {"winners", "losers"}}.
    """
    if len(registration_ids) < 2:
        raise ValueError("At least 2 players required")

    bracket_size = next_power_of_2(len(registration_ids))
    slots = place_to_bracket_slots(list(registration_ids), bracket_size)
    match_by_id: Dict[str, Dict] = {}
    winners_rounds: List[List[Dict]] = []
    winners_total_rounds = int(math.log2(bracket_size))

    for round_number in range(1, winners_total_rounds + 1):
        round_matches = []
        for i in range(bracket_size // (2 ** round_number)):
            match_id = _make_id("WB", round_number, i + 1)
            match = _de_match(
                match_id,
                round_number,
                BracketType.WINNERS.value,
                slots[i * 2] if round_number == 1 else None,
                slots[i * 2 + 1] if round_number == 1 else None,
            )
            round_matches.append(match)
            match_by_id[match_id] = match
        winners_rounds.append(round_matches)

    for round_index in range(winners_total_rounds - 1):
        next_round = winners_rounds[round_index + 1]
        for idx, match in enumerate(winners_rounds[round_index]):
            match["winner_to"] = next_round[idx // 2]["id"]
            match["winner_to_slot"] = 1 if idx % 2 == 0 else 2

    winners_final = winners_rounds[-1][0]
    winners_final["winner_to"] = FIRST_PLACE
    winners_final["loser_to"] = SECOND_PLACE

    loser_targets: Dict[str, Tuple[str, int]] = {}
    losers_rounds: List[List[Dict]] = []
    lb_matches: List[Dict] = []

    # Entrants are ("wb-loser", wb_match_id) or ("lb-winner", lb_match_id)
    waves = [
        [("wb-loser", m["id"]) for m in winners_rounds[r]] for r in range(winners_total_rounds - 1)
    ]

    def add_participant(entrant, to_match_id, slot):
        kind, source_id = entrant
        if kind == "wb-loser":
            loser_targets[source_id] = (to_match_id, slot)
        else:
            source = match_by_id[source_id]
            source["winner_to"] = to_match_id
            source["winner_to_slot"] = slot

    def build_round(entrants, round_number):
        next_survivors = []
        round_matches = []
        for i in range(0, len(entrants) - 1, 2):
            match_id = _make_id("LB", round_number, len(round_matches) + 1)
            match = _de_match(match_id, round_number, BracketType.LOSERS.value, None, None)
            match["loser_to"] = ELIMINATED
            add_participant(entrants[i], match_id, 1)
            add_participant(entrants[i + 1], match_id, 2)
            round_matches.append(match)
            match_by_id[match_id] = match
            next_survivors.append(("lb-winner", match_id))
        if len(entrants) % 2 == 1:
            next_survivors.append(entrants[-1])
        losers_rounds.append(round_matches)
        lb_matches.extend(round_matches)
        return next_survivors

    survivors: List[Tuple[str, str]] = []
    lb_round_number = 1
    for wave in waves:
        entrants = reorder_entrants(survivors + wave, len(survivors))
        if len(entrants) > 1:
            survivors = build_round(entrants, lb_round_number)
            lb_round_number += 1
        else:
            survivors = entrants

    while len(survivors) > 1:
        survivors = build_round(survivors, lb_round_number)
        lb_round_number += 1

    if lb_matches:
        lb_matches[-1]["winner_to"] = THIRD_PLACE
        lb_matches[-1]["loser_to"] = FOURTH_PLACE

    for wb_id, (target_id, slot) in loser_targets.items():
        wb_match = match_by_id[wb_id]
        if wb_match["loser_to"] is None:
            wb_match["loser_to"] = target_id
            wb_match["loser_to_slot"] = slot

    return {
        "matches": list(match_by_id.values()),
        "total_rounds": {"winners": winners_total_rounds, "losers": len(losers_rounds)},
    }


def _de_match(match_id, round_number, bracket_type, player1, player2) -> Dict:
    return {
        "id": match_id,
        "round": round_number,
        "bracket_type": bracket_type,
        "player1": player1,
        "player2": player2,
        "winner_to": None,
        "winner_to_slot": None,
        "loser_to": None,
        "loser_to_slot": None,
    }


# ============================================================================
# Persistence
# ============================================================================


def validate_seeds(seeds: Optional[List[Dict]], registration_ids: List[int]) -> None:
    if not seeds:
        return
    known = set(registration_ids)
    for seed in seeds:
        if seed["registration_id"] not in known:
            raise BadRequestError(
                f"Registration {seed['registration_id']} does not belong to this event"
            )


async def _persist_single_elimination(
    session: AsyncSession, event_id: int, bracket: Dict
) -> Dict[int, Match]:
    by_position: Dict[int, Match] = {}
    for item in bracket["matches"]:
        winner = (item["registration1_id"] or item["registration2_id"]) if item["is_bye"] else None
        match = Match(
            event_id=event_id,
            round=item["round"],
            match_number=item["match_number"],
            registration1_id=item["registration1_id"],
            registration2_id=item["registration2_id"],
            bracket_position=item["bracket_position"],
            winner_to_slot=item["winner_to_slot"],
            loser_to_slot=item["loser_to_slot"],
            played=item["is_bye"],
            winner_id=winner,
        )
        session.add(match)
        by_position[item["bracket_position"]] = match
    await session.flush()

    for item in bracket["matches"]:
        match = by_position[item["bracket_position"]]
        if item["winner_to"]:
            match.winner_to = by_position[item["winner_to"]].id
        if item["loser_to"]:
            match.loser_to = by_position[item["loser_to"]].id

    for target_position, slot, registration_id in process_bye_advancements(bracket["matches"]):
        target = by_position[target_position]
        if slot == 1:
            target.registration1_id = registration_id
        else:
            target.registration2_id = registration_id
    await session.flush()
    return by_position


async def _persist_double_elimination(
    session: AsyncSession, event_id: int, bracket: Dict
) -> Dict[str, Match]:
    by_id: Dict[str, Match] = {}
    for position, item in enumerate(bracket["matches"], start=1):
        has_bye = (item["player1"] is None) != (item["player2"] is None)
        match = Match(
            event_id=event_id,
            round=item["round"],
            match_number=int(item["id"].split("-")[2]),
            registration1_id=item["player1"],
            registration2_id=item["player2"],
            bracket_position=position,
            bracket_type=BracketType(item["bracket_type"]),
            winner_to_slot=item["winner_to_slot"],
            loser_to_slot=item["loser_to_slot"],
            played=has_bye,
            winner_id=(item["player1"] or item["player2"]) if has_bye else None,
        )
        session.add(match)
        by_id[item["id"]] = match
    await session.flush()

    for item in bracket["matches"]:
        match = by_id[item["id"]]
        match.winner_to = by_id[item["winner_to"]].id if item["winner_to"] in by_id else None
        match.loser_to = by_id[item["loser_to"]].id if item["loser_to"] in by_id else None
        if match.winner_to is None:
            match.winner_to_slot = None
        if match.loser_to is None:
            match.loser_to_slot = None

    for item in bracket["matches"]:
        match = by_id[item["id"]]
        if match.played and match.winner_id and item["winner_to"] in by_id and match.winner_to_slot:
            target = by_id[item["winner_to"]]
            if match.winner_to_slot == 1:
                target.registration1_id = match.winner_id
            else:
                target.registration2_id = match.winner_id
    await session.flush()

    # Losers-bracket matches fed only by byes never receive a player
    for item in bracket["matches"]:
        if item["bracket_type"] == BracketType.LOSERS.value and item["round"] == 1:
            await match_service.check_and_auto_advance_bye(session, by_id[item["id"]].id)
    return by_id


async def update_registration_seeds(session: AsyncSession, seeds: List[Dict]) -> None:
    for seed in seeds:
        registration = await session.get(Registration, seed["registration_id"])
        if registration:
            registration.seed = seed["seed"]
    await session.flush()


async def generate_bracket(
    session: AsyncSession,
    ctx: OrganizationContext,
    event_id: int,
    seeds: Optional[List[Dict]] = None,
    has_third_place_match: Optional[bool] = None,
) -> Dict:
    """
    Generate and persist the bracket for an elimination event.

    Raises:
        BadRequestError: format is not elimination, too few registrations, bad seeds
        ConflictError: the event already has matches
    """
    event = await event_service.get_event_for_write(session, ctx, event_id)
    event_format = to_json_value(event.format)
    if event_format not in ELIMINATION_FORMATS:
        raise BadRequestError("Bracket generation is only available for elimination events")

    existing = await session.execute(select(Match.id).where(Match.event_id == event_id).limit(1))
    if existing.scalar_one_or_none() is not None:
        raise ConflictError("Bracket already exists for this event")

    result = await session.execute(
        select(Registration.id).where(Registration.event_id == event_id).order_by(Registration.id)
    )
    registration_ids = list(result.scalars().all())
    if len(registration_ids) < 2:
        raise BadRequestError("At least 2 registrations are required to generate a bracket")
    validate_seeds(seeds, registration_ids)

    if has_third_place_match is None:
        has_third_place_match = event.has_third_place_match

    if event_format in DOUBLE_ELIMINATION_FORMATS:
        bracket = generate_modified_double_elimination_bracket(
            sort_by_seeds(registration_ids, seeds)
        )
        await _persist_double_elimination(session, event_id, bracket)
        total_rounds = bracket["total_rounds"]["winners"] + bracket["total_rounds"]["losers"]
        bracket_size = next_power_of_2(len(registration_ids))
    else:
        bracket = generate_single_elimination_bracket(
            registration_ids, seeds, has_third_place_match
        )
        await _persist_single_elimination(session, event_id, bracket)
        total_rounds = bracket["total_rounds"]
        bracket_size = bracket["bracket_size"]

    if seeds:
        await update_registration_seeds(session, seeds)

    matches = (
        await session.execute(
            select(Match).where(Match.event_id == event_id).order_by(Match.bracket_position)
        )
    ).scalars().all()
    logger.info(
        f"Generated {event_format} bracket for event {event_id}: "
        f"{len(matches)} matches, size {bracket_size}"
    )
    return {
        "matches": [row_to_dict(m) for m in matches],
        "totalRounds": total_rounds,
        "bracketSize": bracket_size,
        "matchCount": len(matches),
    }

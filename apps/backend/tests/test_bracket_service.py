"""
Tests for bracket generation.

The generators are pure functions and are tested without a database;
generate_bracket is tested end to end against the test session.
"""

import pytest

from backend.database.models import EventFormat, Match
from backend.services import bracket_service
from backend.services.bracket_service import (
    ELIMINATED,
    FIRST_PLACE,
    FOURTH_PLACE,
    SECOND_PLACE,
    THIRD_PLACE,
    generate_modified_double_elimination_bracket,
    generate_seed_positions,
    generate_single_elimination_bracket,
    next_power_of_2,
    process_bye_advancements,
    sort_by_seeds,
)
from backend.services.errors import BadRequestError, ConflictError
from sqlalchemy import select


# ──────────────────────────────────────────────────────────────
# Seeding
# ──────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "n, expected", [(1, 1), (2, 2), (3, 4), (5, 8), (8, 8), (9, 16)]
)
def test_next_power_of_2(n, expected):
    assert next_power_of_2(n) == expected


def test_seed_positions_keep_top_seeds_apart():
    # Seed 1 in slot 1, seed 2 in slot 5: they can only meet in the final
    assert generate_seed_positions(8) == [1, 5, 7, 3, 4, 8, 6, 2]
    assert generate_seed_positions(4) == [1, 3, 4, 2]
    assert generate_seed_positions(2) == [1, 2]


def test_seed_positions_are_a_permutation():
    positions = generate_seed_positions(16)
    assert sorted(positions) == list(range(1, 17))


def test_sort_by_seeds_puts_unseeded_last():
    seeds = [{"registration_id": 12, "seed": 1}, {"registration_id": 10, "seed": 2}]
    assert sort_by_seeds([10, 11, 12], seeds) == [12, 10, 11]
    assert sort_by_seeds([10, 11, 12], None) == [10, 11, 12]


# ──────────────────────────────────────────────────────────────
# Single elimination
# ──────────────────────────────────────────────────────────────


def test_single_elimination_five_players():
    bracket = generate_single_elimination_bracket([1, 2, 3, 4, 5])

    assert bracket["bracket_size"] == 8
    assert bracket["total_rounds"] == 3
    matches = bracket["matches"]
    assert len(matches) == 7
    assert sum(1 for m in matches if m["is_bye"]) == 3

    by_position = {m["bracket_position"]: m for m in matches}
    assert [(by_position[p]["winner_to"], by_position[p]["winner_to_slot"]) for p in range(1, 7)] == [
        (5, 1),
        (5, 2),
        (6, 1),
        (6, 2),
        (7, 1),
        (7, 2),
    ]
    assert by_position[7]["winner_to"] is None


def test_single_elimination_bye_advancements():
    bracket = generate_single_elimination_bracket([1, 2, 3, 4, 5])
    # Seeds 1, 2 and 3 get byes; 4 and 5 play each other
    assert process_bye_advancements(bracket["matches"]) == [(5, 1, 1), (6, 1, 2), (6, 2, 3)]


def test_single_elimination_third_place_match():
    bracket = generate_single_elimination_bracket([1, 2, 3, 4], has_third_place_match=True)

    matches = bracket["matches"]
    assert len(matches) == 4
    third_place = [m for m in matches if m["is_third_place"]]
    assert len(third_place) == 1
    assert third_place[0]["round"] == 2
    assert third_place[0]["match_number"] == 2

    semifinals = [m for m in matches if m["round"] == 1]
    assert [(m["loser_to"], m["loser_to_slot"]) for m in semifinals] == [
        (third_place[0]["bracket_position"], 1),
        (third_place[0]["bracket_position"], 2),
    ]


def test_single_elimination_two_players_has_no_third_place():
    bracket = generate_single_elimination_bracket([1, 2], has_third_place_match=True)
    assert len(bracket["matches"]) == 1
    assert not any(m["is_third_place"] for m in bracket["matches"])


def test_single_elimination_bye_semifinal_has_no_third_place():
    bracket = generate_single_elimination_bracket([1, 2, 3], has_third_place_match=True)

    assert len(bracket["matches"]) == 3
    assert not any(m["is_third_place"] for m in bracket["matches"])
    assert all(m["loser_to"] is None for m in bracket["matches"])


def test_single_elimination_requires_two_players():
    with pytest.raises(ValueError):
        generate_single_elimination_bracket([1])


# ──────────────────────────────────────────────────────────────
# Modified double elimination
# ──────────────────────────────────────────────────────────────


def test_double_elimination_eight_players():
    bracket = generate_modified_double_elimination_bracket(list(range(1, 9)))
    matches = {m["id"]: m for m in bracket["matches"]}

    winners = [m for m in matches.values() if m["bracket_type"] == "winners"]
    losers = [m for m in matches.values() if m["bracket_type"] == "losers"]
    assert len(winners) == 7
    assert len(losers) == 5
    assert bracket["total_rounds"] == {"winners": 3, "losers": 3}

    final = matches["WB-3-1"]
    assert final["winner_to"] == FIRST_PLACE
    assert final["loser_to"] == SECOND_PLACE

    # First-round losers pair up in the first losers round
    assert (matches["WB-1-1"]["loser_to"], matches["WB-1-1"]["loser_to_slot"]) == ("LB-1-1", 1)
    assert (matches["WB-1-2"]["loser_to"], matches["WB-1-2"]["loser_to_slot"]) == ("LB-1-1", 2)
    assert (matches["WB-1-4"]["loser_to"], matches["WB-1-4"]["loser_to_slot"]) == ("LB-1-2", 2)

    # Second-round losers cross over to meet the other half's survivor
    assert (matches["WB-2-2"]["loser_to"], matches["WB-2-2"]["loser_to_slot"]) == ("LB-2-1", 2)
    assert (matches["WB-2-1"]["loser_to"], matches["WB-2-1"]["loser_to_slot"]) == ("LB-2-2", 2)
    assert matches["LB-1-1"]["winner_to"] == "LB-2-1"

    last = matches["LB-3-1"]
    assert last["winner_to"] == THIRD_PLACE
    assert last["loser_to"] == FOURTH_PLACE
    assert all(m["loser_to"] == ELIMINATED for m in losers if m["id"] != "LB-3-1")


def test_double_elimination_four_players():
    bracket = generate_modified_double_elimination_bracket([1, 2, 3, 4])
    matches = {m["id"]: m for m in bracket["matches"]}

    assert len(matches) == 4
    assert matches["LB-1-1"]["winner_to"] == THIRD_PLACE
    assert matches["LB-1-1"]["loser_to"] == FOURTH_PLACE
    assert matches["WB-1-1"]["loser_to"] == "LB-1-1"


def test_double_elimination_requires_two_players():
    with pytest.raises(ValueError):
        generate_modified_double_elimination_bracket([1])


# ──────────────────────────────────────────────────────────────
# Persistence
# ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_generate_single_elimination_bracket(db_session, club, make_event, make_registrations):
    event = await make_event(organization=club["org"])
    ids = await make_registrations(event, club["org"], 5)

    result = await bracket_service.generate_bracket(db_session, club["ctx"], event.id)

    assert result["matchCount"] == 7
    assert result["bracketSize"] == 8
    assert result["totalRounds"] == 3
    byes = [m for m in result["matches"] if m["played"]]
    assert len(byes) == 3
    assert {m["winner_id"] for m in byes} == {ids[0], ids[1], ids[2]}

    # Bye winners are already placed in round two
    second_round = [m for m in result["matches"] if m["round"] == 2]
    assert second_round[0]["registration1_id"] == ids[0]
    assert {second_round[1]["registration1_id"], second_round[1]["registration2_id"]} == {
        ids[1],
        ids[2],
    }


@pytest.mark.asyncio
async def test_generate_bracket_links_matches_by_id(db_session, club, make_event, make_registrations):
    event = await make_event(organization=club["org"])
    await make_registrations(event, club["org"], 4)

    result = await bracket_service.generate_bracket(
        db_session, club["ctx"], event.id, has_third_place_match=True
    )

    assert result["matchCount"] == 4
    ids = {m["id"] for m in result["matches"]}
    for match in result["matches"]:
        if match["winner_to"] is not None:
            assert match["winner_to"] in ids
    semifinals = [m for m in result["matches"] if m["round"] == 1]
    assert len({m["loser_to"] for m in semifinals}) == 1


@pytest.mark.asyncio
async def test_generate_bracket_applies_seeds(db_session, club, make_event, make_registrations):
    event = await make_event(organization=club["org"])
    ids = await make_registrations(event, club["org"], 4)
    seeds = [{"registration_id": ids[3], "seed": 1}, {"registration_id": ids[0], "seed": 2}]

    result = await bracket_service.generate_bracket(db_session, club["ctx"], event.id, seeds=seeds)

    first = next(m for m in result["matches"] if m["bracket_position"] == 1)
    assert first["registration1_id"] == ids[3]


@pytest.mark.asyncio
async def test_generate_bracket_rejects_foreign_seed(db_session, club, make_event, make_registrations):
    event = await make_event(organization=club["org"])
    await make_registrations(event, club["org"], 3)

    with pytest.raises(BadRequestError):
        await bracket_service.generate_bracket(
            db_session, club["ctx"], event.id, seeds=[{"registration_id": 999, "seed": 1}]
        )


@pytest.mark.asyncio
async def test_generate_bracket_twice_conflicts(db_session, club, make_event, make_registrations):
    event = await make_event(organization=club["org"])
    await make_registrations(event, club["org"], 2)
    await bracket_service.generate_bracket(db_session, club["ctx"], event.id)

    with pytest.raises(ConflictError):
        await bracket_service.generate_bracket(db_session, club["ctx"], event.id)


@pytest.mark.asyncio
async def test_generate_bracket_requires_elimination_format(
    db_session, club, make_event, make_registrations
):
    event = await make_event(
        organization=club["org"],
        event_format=EventFormat.GROUPS,
        points_per_win=3,
        points_per_loss=0,
    )
    await make_registrations(event, club["org"], 4)

    with pytest.raises(BadRequestError):
        await bracket_service.generate_bracket(db_session, club["ctx"], event.id)


@pytest.mark.asyncio
async def test_generate_bracket_requires_two_registrations(
    db_session, club, make_event, make_registrations
):
    event = await make_event(organization=club["org"])
    await make_registrations(event, club["org"], 1)

    with pytest.raises(BadRequestError):
        await bracket_service.generate_bracket(db_session, club["ctx"], event.id)


@pytest.mark.asyncio
async def test_generate_double_elimination_bracket(db_session, club, make_event, make_registrations):
    event = await make_event(
        organization=club["org"], event_format=EventFormat.DOUBLE_ELIMINATION
    )
    await make_registrations(event, club["org"], 8)

    result = await bracket_service.generate_bracket(db_session, club["ctx"], event.id)

    assert result["matchCount"] == 12
    rows = (
        await db_session.execute(select(Match).where(Match.event_id == event.id))
    ).scalars().all()
    assert sum(1 for m in rows if m.bracket_type.value == "losers") == 5
    final = next(m for m in rows if m.bracket_type.value == "winners" and m.round == 3)
    # Placement labels are not stored as links
    assert final.winner_to is None
    assert final.loser_to is None


@pytest.mark.asyncio
async def test_double_elimination_with_bye_fills_winners_round_two(
    db_session, club, make_event, make_registrations
):
    event = await make_event(
        organization=club["org"], event_format=EventFormat.DOUBLE_ELIMINATION
    )
    ids = await make_registrations(event, club["org"], 3)

    result = await bracket_service.generate_bracket(db_session, club["ctx"], event.id)

    bye = next(m for m in result["matches"] if m["played"])
    assert bye["winner_id"] == ids[0]
    final = next(
        m for m in result["matches"] if m["bracket_type"] == "winners" and m["round"] == 2
    )
    assert final["registration1_id"] == ids[0]

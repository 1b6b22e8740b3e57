"""
Tests for match_service: set rules, match completion, standings and advancement.
"""

from types import SimpleNamespace

import pytest

from backend.database.models import (
    Event,
    EventFormat,
    Group,
    Match,
    Registration,
    RegistrationPlayer,
)
from backend.services import bracket_service, event_service, match_service
from backend.services.errors import BadRequestError, NotFoundError
from backend.services.match_service import (
    calculate_match_points,
    calculate_set_points,
    count_set_wins,
    majority,
    validate_match_completion,
    validate_set_addition,
    validate_set_played,
)
from backend.utils.datetime_utils import utcnow
from backend.utils.pagination import PaginationParams
from sqlalchemy import select


def _set(number, score1, score2, played=True):
    return SimpleNamespace(
        set_number=number, registration1_score=score1, registration2_score=score2, played=played
    )


# ============================================================================
# Pure rules
# ============================================================================


@pytest.mark.parametrize("best_of, needed", [(1, 1), (3, 2), (5, 3), (7, 4)])
def test_majority(best_of, needed):
    assert majority(best_of) == needed


def test_count_set_wins_ignores_unplayed_and_draws():
    sets = [_set(1, 21, 10), _set(2, 5, 21), _set(3, 15, 15), _set(4, 21, 0, played=False)]
    assert count_set_wins(sets) == {1: 1, 2: 1}


def test_validate_set_addition():
    validate_set_addition(False, 3, [_set(1, 21, 10)])

    with pytest.raises(BadRequestError):
        validate_set_addition(True, 3, [])
    with pytest.raises(BadRequestError):
        validate_set_addition(False, 1, [_set(1, 21, 10)])
    with pytest.raises(BadRequestError):
        validate_set_addition(False, 3, [_set(1, 0, 0, played=False)])
    with pytest.raises(BadRequestError):
        validate_set_addition(False, 3, [_set(1, 21, 10), _set(2, 21, 12)])


def test_validate_set_played():
    validate_set_played(2, 21, 19, [_set(1, 21, 10)])

    with pytest.raises(BadRequestError):
        validate_set_played(1, 10, 10, [])
    with pytest.raises(BadRequestError):
        validate_set_played(1, 0, 0, [])
    with pytest.raises(BadRequestError):
        validate_set_played(2, 21, 3, [_set(1, 0, 0, played=False)])


def test_validate_match_completion():
    assert validate_match_completion(3, [_set(1, 21, 10), _set(2, 21, 12)]) == 1
    assert validate_match_completion(3, [_set(1, 21, 10), _set(2, 1, 21), _set(3, 2, 21)]) == 2

    with pytest.raises(BadRequestError):
        validate_match_completion(3, [_set(1, 21, 10), _set(2, 0, 0, played=False)])
    with pytest.raises(BadRequestError):
        validate_match_completion(3, [_set(1, 21, 10), _set(2, 10, 21)])
    with pytest.raises(BadRequestError):
        validate_match_completion(5, [_set(1, 21, 10), _set(2, 21, 12)])


def test_calculate_match_points():
    points = calculate_match_points(7, 7, 8, 3, 1)
    assert points == {
        "registration1_won": True,
        "registration2_won": False,
        "registration1_points": 3,
        "registration2_points": 1,
    }
    assert calculate_match_points(8, 7, 8, None, None)["registration2_points"] == 0


def test_calculate_set_points():
    result = calculate_set_points([_set(1, 21, 10), _set(2, 10, 21), _set(3, 21, 19)])
    assert result == {
        "registration1_sets_won": 2,
        "registration1_sets_lost": 1,
        "registration2_sets_won": 1,
        "registration2_sets_lost": 2,
    }


# ============================================================================
# Set flow
# ============================================================================


async def _groups_match(db_session, club, make_event, make_registrations):
    ev = await make_event(
        organization=club["org"], event_format=EventFormat.GROUPS, points_per_win=3, points_per_loss=1
    )
    ids = await make_registrations(ev, club["org"], 2)
    group = await event_service.create_group(db_session, club["ctx"], ev.id, ids)
    return ev, group, group["matches"][0]["id"], ids


async def _play_set(db_session, ctx, match_id, score1, score2):
    created = await match_service.create_set(db_session, ctx, match_id)
    await match_service.update_set_scores(db_session, ctx, created["id"], score1, score2)
    return await match_service.mark_set_played(db_session, ctx, created["id"])


@pytest.mark.asyncio
async def test_set_requires_match_date(db_session, club, make_event, make_registrations):
    _, _, match_id, _ = await _groups_match(db_session, club, make_event, make_registrations)
    created = await match_service.create_set(db_session, club["ctx"], match_id)
    await match_service.update_set_scores(db_session, club["ctx"], created["id"], 21, 10)

    with pytest.raises(BadRequestError):
        await match_service.mark_set_played(db_session, club["ctx"], created["id"])


@pytest.mark.asyncio
async def test_next_set_waits_for_previous(db_session, club, make_event, make_registrations):
    _, _, match_id, _ = await _groups_match(db_session, club, make_event, make_registrations)
    first = await match_service.create_set(db_session, club["ctx"], match_id)
    assert first["set_number"] == 1

    with pytest.raises(BadRequestError):
        await match_service.create_set(db_session, club["ctx"], match_id)


@pytest.mark.asyncio
async def test_groups_match_completes_on_majority(db_session, club, make_event, make_registrations):
    ev, group, match_id, ids = await _groups_match(db_session, club, make_event, make_registrations)
    await match_service.update_match(db_session, club["ctx"], match_id, {"match_date": utcnow()})

    first = await _play_set(db_session, club["ctx"], match_id, 21, 15)
    assert first["matchCompleted"] is False
    assert first["winnerId"] is None

    second = await _play_set(db_session, club["ctx"], match_id, 21, 18)
    assert second["matchCompleted"] is True
    assert second["winnerId"] == ids[0]

    winner = await db_session.get(Registration, ids[0])
    loser = await db_session.get(Registration, ids[1])
    assert (winner.matches_won, winner.sets_won, winner.points) == (1, 2, 3)
    assert (loser.matches_lost, loser.sets_lost, loser.points) == (1, 2, 1)
    assert (await db_session.get(Group, group["id"])).completed is True
    assert (await db_session.get(Event, ev.id)).completed is True

    with pytest.raises(BadRequestError):
        await match_service.create_set(db_session, club["ctx"], match_id)


@pytest.mark.asyncio
async def test_reset_groups_match_reverts_standings(db_session, club, make_event, make_registrations):
    ev, _, match_id, ids = await _groups_match(db_session, club, make_event, make_registrations)
    await match_service.update_match(db_session, club["ctx"], match_id, {"match_date": utcnow()})
    await _play_set(db_session, club["ctx"], match_id, 21, 15)
    await _play_set(db_session, club["ctx"], match_id, 21, 18)

    result = await match_service.reset_match(db_session, club["ctx"], match_id)

    assert result["played"] is False
    assert result["winner_id"] is None
    assert all(not s["played"] for s in result["sets"])
    winner = await db_session.get(Registration, ids[0])
    assert (winner.matches_won, winner.sets_won, winner.points) == (0, 0, 0)
    assert (await db_session.get(Event, ev.id)).completed is False

    with pytest.raises(BadRequestError):
        await match_service.reset_match(db_session, club["ctx"], match_id)


@pytest.mark.asyncio
async def test_match_date_locked_once_sets_exist(db_session, club, make_event, make_registrations):
    _, _, match_id, _ = await _groups_match(db_session, club, make_event, make_registrations)
    await match_service.update_match(db_session, club["ctx"], match_id, {"match_date": utcnow()})
    await match_service.create_set(db_session, club["ctx"], match_id)

    with pytest.raises(BadRequestError):
        await match_service.update_match(db_session, club["ctx"], match_id, {"match_date": None})


@pytest.mark.asyncio
async def test_delete_only_last_set(db_session, club, make_event, make_registrations):
    _, _, match_id, _ = await _groups_match(db_session, club, make_event, make_registrations)
    await match_service.update_match(db_session, club["ctx"], match_id, {"match_date": utcnow()})
    await _play_set(db_session, club["ctx"], match_id, 21, 15)
    second = await match_service.create_set(db_session, club["ctx"], match_id)

    await match_service.delete_set(db_session, club["ctx"], second["id"])

    match = await match_service.get_match(db_session, club["ctx"], match_id)
    assert [s["set_number"] for s in match["sets"]] == [1]
    with pytest.raises(BadRequestError):
        await match_service.delete_set(db_session, club["ctx"], match["sets"][0]["id"])


@pytest.mark.asyncio
async def test_mark_set_played_broadcasts(db_session, club, make_event, make_registrations, monkeypatch):
    _, _, match_id, _ = await _groups_match(db_session, club, make_event, make_registrations)
    await match_service.update_match(db_session, club["ctx"], match_id, {"match_date": utcnow()})
    sent = []

    async def fake_broadcast(mid, event, payload):
        sent.append((mid, event))

    monkeypatch.setattr(match_service, "_broadcast", fake_broadcast)
    await _play_set(db_session, club["ctx"], match_id, 21, 15)
    await _play_set(db_session, club["ctx"], match_id, 21, 15)

    assert [event for _, event in sent] == [
        "set_created",
        "score_updated",
        "set_played",
        "set_created",
        "score_updated",
        "set_played",
        "match_completed",
    ]
    assert {mid for mid, _ in sent} == {match_id}


# ============================================================================
# Elimination advancement
# ============================================================================


async def _bracket(db_session, club, make_event, make_registrations, count, **kwargs):
    ev = await make_event(organization=club["org"], **kwargs)
    ids = await make_registrations(ev, club["org"], count)
    result = await bracket_service.generate_bracket(db_session, club["ctx"], ev.id)
    return ev, ids, result["matches"]


async def _win(db_session, ctx, match_id):
    await match_service.update_match(db_session, ctx, match_id, {"match_date": utcnow()})
    await _play_set(db_session, ctx, match_id, 21, 10)
    return await _play_set(db_session, ctx, match_id, 21, 10)


@pytest.mark.asyncio
async def test_single_elimination_winner_advances(db_session, club, make_event, make_registrations):
    ev, ids, matches = await _bracket(db_session, club, make_event, make_registrations, 4)
    semifinal = next(m for m in matches if m["round"] == 1 and m["bracket_position"] == 1)
    final_id = semifinal["winner_to"]

    result = await _win(db_session, club["ctx"], semifinal["id"])

    assert result["winnerId"] == ids[0]
    final = await db_session.get(Match, final_id)
    assert final.registration1_id == ids[0]
    assert final.registration2_id is None
    assert (await db_session.get(Event, ev.id)).completed is False


@pytest.mark.asyncio
async def test_single_elimination_reset_clears_next_slot(db_session, club, make_event, make_registrations):
    _, _, matches = await _bracket(db_session, club, make_event, make_registrations, 4)
    semifinal = next(m for m in matches if m["round"] == 1 and m["bracket_position"] == 1)
    await _win(db_session, club["ctx"], semifinal["id"])

    await match_service.reset_match(db_session, club["ctx"], semifinal["id"])

    final = await db_session.get(Match, semifinal["winner_to"])
    assert final.registration1_id is None


@pytest.mark.asyncio
async def test_double_elimination_loser_drops_to_losers_bracket(
    db_session, club, make_event, make_registrations
):
    _, ids, matches = await _bracket(
        db_session,
        club,
        make_event,
        make_registrations,
        4,
        event_format=EventFormat.DOUBLE_ELIMINATION,
    )
    first = next(
        m for m in matches if m["bracket_type"] == "winners" and m["round"] == 1 and m["match_number"] == 1
    )

    await _win(db_session, club["ctx"], first["id"])

    losers_match = await db_session.get(Match, first["loser_to"])
    assert losers_match.bracket_type.value == "losers"
    assert ids[3] in (losers_match.registration1_id, losers_match.registration2_id)
    winners_final = await db_session.get(Match, first["winner_to"])
    assert ids[0] in (winners_final.registration1_id, winners_final.registration2_id)


@pytest.mark.asyncio
async def test_complete_match_requires_played_sets(db_session, club, make_event, make_registrations):
    _, _, match_id, _ = await _groups_match(db_session, club, make_event, make_registrations)
    await match_service.create_set(db_session, club["ctx"], match_id)

    with pytest.raises(BadRequestError):
        await match_service.complete_match(db_session, club["ctx"], match_id)


@pytest.mark.asyncio
async def test_bye_match_cannot_be_reset(db_session, club, make_event, make_registrations):
    _, _, matches = await _bracket(db_session, club, make_event, make_registrations, 3)
    bye = next(m for m in matches if m["round"] == 1 and m["registration2_id"] is None)
    assert bye["played"] is True

    with pytest.raises(BadRequestError):
        await match_service.reset_match(db_session, club["ctx"], bye["id"])

    reloaded = await db_session.get(Match, bye["id"])
    assert reloaded.played is True
    assert reloaded.winner_id == bye["registration1_id"]


@pytest.mark.asyncio
async def test_bye_semifinal_event_completes_without_third_place(
    db_session, club, make_event, make_registrations
):
    ev, ids, matches = await _bracket(
        db_session, club, make_event, make_registrations, 3, has_third_place_match=True
    )
    assert len(matches) == 3
    semifinal = next(
        m for m in matches if m["round"] == 1 and m["registration1_id"] and m["registration2_id"]
    )

    await _win(db_session, club["ctx"], semifinal["id"])
    await _win(db_session, club["ctx"], semifinal["winner_to"])

    assert (await db_session.get(Event, ev.id)).completed is True


@pytest.mark.asyncio
async def test_reset_reopens_losers_bracket_bye(db_session, club, make_event, make_registrations):
    _, ids, matches = await _bracket(
        db_session,
        club,
        make_event,
        make_registrations,
        3,
        event_format=EventFormat.DOUBLE_ELIMINATION,
    )
    real = next(
        m
        for m in matches
        if m["bracket_type"] == "winners" and m["round"] == 1 and m["registration1_id"] and m["registration2_id"]
    )
    loser_id = real["registration2_id"]

    await _win(db_session, club["ctx"], real["id"])
    losers_match = await db_session.get(Match, real["loser_to"])
    assert losers_match.played is True
    assert losers_match.winner_id == loser_id

    await match_service.reset_match(db_session, club["ctx"], real["id"])

    losers_match = await db_session.get(Match, real["loser_to"])
    assert losers_match.played is False
    assert losers_match.winner_id is None
    assert loser_id not in (losers_match.registration1_id, losers_match.registration2_id)
    winners_final = await db_session.get(Match, real["winner_to"])
    assert real["registration1_id"] not in (
        winners_final.registration1_id,
        winners_final.registration2_id,
    )

    # Playing it again closes the losers-bracket bye again
    await _win(db_session, club["ctx"], real["id"])
    losers_match = await db_session.get(Match, real["loser_to"])
    assert losers_match.played is True
    assert losers_match.winner_id == loser_id


@pytest.mark.asyncio
async def test_reset_refused_once_next_match_played(db_session, club, make_event, make_registrations):
    _, _, matches = await _bracket(db_session, club, make_event, make_registrations, 4)
    semifinals = [m for m in matches if m["round"] == 1]
    for semifinal in semifinals:
        await _win(db_session, club["ctx"], semifinal["id"])
    await _win(db_session, club["ctx"], semifinals[0]["winner_to"])

    with pytest.raises(BadRequestError):
        await match_service.reset_match(db_session, club["ctx"], semifinals[0]["id"])

    assert (await db_session.get(Match, semifinals[0]["id"])).played is True


# ============================================================================
# Player match history
# ============================================================================


async def _player_of(db_session, registration_id):
    result = await db_session.execute(
        select(RegistrationPlayer.player_id).where(
            RegistrationPlayer.registration_id == registration_id
        )
    )
    return result.scalar_one()


@pytest.mark.asyncio
async def test_player_match_history(db_session, club, make_event, make_registrations):
    ev, ids, matches = await _bracket(db_session, club, make_event, make_registrations, 3)
    played = next(
        m
        for m in matches
        if m["round"] == 1 and m["registration1_id"] and m["registration2_id"]
    )
    result = await _win(db_session, club["ctx"], played["id"])
    loser = (
        played["registration2_id"]
        if result["winnerId"] == played["registration1_id"]
        else played["registration1_id"]
    )

    winner_history = await match_service.list_player_matches(
        db_session, club["ctx"], await _player_of(db_session, result["winnerId"]), PaginationParams()
    )
    assert winner_history["totalItems"] == 1
    item = winner_history["data"][0]
    assert item["id"] == played["id"]
    assert item["player_won"] is True
    assert item["opponent_registration_id"] == loser
    assert item["event_name"] == ev.name
    assert len(item["sets"]) == 2

    loser_history = await match_service.list_player_matches(
        db_session, club["ctx"], await _player_of(db_session, loser), PaginationParams()
    )
    assert loser_history["data"][0]["player_won"] is False

    # The top seed only had a bye so far
    bye_history = await match_service.list_player_matches(
        db_session, club["ctx"], await _player_of(db_session, ids[0]), PaginationParams()
    )
    assert bye_history["totalItems"] == 0


@pytest.mark.asyncio
async def test_player_match_history_scoped_to_club(db_session, club, make_org, make_player):
    other = await make_org()
    stranger = await make_player(other)

    with pytest.raises(NotFoundError):
        await match_service.list_player_matches(db_session, club["ctx"], stranger.id, PaginationParams())

    own = await make_player(club["org"])
    empty = await match_service.list_player_matches(db_session, club["ctx"], own.id, PaginationParams())
    assert empty == {"data": [], "page": 1, "limit": empty["limit"], "totalItems": 0, "totalPages": 0}

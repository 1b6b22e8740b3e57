"""
Tests for club_service: organizations, members, players and player notes.
"""

from datetime import date

import pytest

from backend.database.models import MemberRole
from backend.services import club_service
from backend.services.errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
)
from backend.utils.datetime_utils import today_utc
from backend.utils.pagination import PaginationParams


def _born_aged(age):
    return date(today_utc().year - age, 1, 1)


# ============================================================================
# Organizations and members
# ============================================================================


@pytest.mark.asyncio
async def test_create_organization_slugs(db_session, make_user):
    owner = await make_user()

    first = await club_service.create_organization(db_session, owner.id, "Club Atlético Norte")
    second = await club_service.create_organization(db_session, owner.id, "Club Atletico Norte")
    third = await club_service.create_organization(
        db_session, owner.id, "Another", slug="club atletico norte"
    )

    assert first["slug"] == "club-atletico-norte"
    assert second["slug"] == "club-atletico-norte-2"
    assert third["slug"] == "club-atletico-norte-3"
    assert first["role"] == "owner"

    memberships = await club_service.get_user_memberships(db_session, owner.id)
    assert sorted(m["organization_id"] for m in memberships) == sorted(
        [first["id"], second["id"], third["id"]]
    )
    assert {m["role"] for m in memberships} == {"owner"}


@pytest.mark.asyncio
async def test_organization_metadata(db_session, make_user):
    owner = await make_user()
    org = await club_service.create_organization(
        db_session, owner.id, "Club", metadata={"city": "Lima"}
    )
    assert org["metadata"] == {"city": "Lima"}
    assert "metadata_json" not in org

    updated = await club_service.update_organization(db_session, org["id"], metadata=None)
    assert updated["metadata"] is None


@pytest.mark.asyncio
async def test_add_member(db_session, club, make_user):
    user = await make_user()

    member = await club_service.add_member(
        db_session, club["org"].id, "coach", email=f"  {user.email.upper()} "
    )
    assert member["user_id"] == user.id
    assert member["role"] == "coach"

    with pytest.raises(ConflictError):
        await club_service.add_member(db_session, club["org"].id, "admin", user_id=user.id)
    with pytest.raises(NotFoundError):
        await club_service.add_member(db_session, club["org"].id, "admin", email="nobody@example.com")

    members = await club_service.list_members(db_session, club["org"].id)
    assert {m["user_email"] for m in members} == {club["owner"].email, user.email}


@pytest.mark.asyncio
async def test_last_owner_is_kept(db_session, club, make_user):
    members = await club_service.list_members(db_session, club["org"].id)
    owner_member_id = members[0]["id"]

    with pytest.raises(BadRequestError):
        await club_service.update_member_role(db_session, club["org"].id, owner_member_id, "admin")
    with pytest.raises(BadRequestError):
        await club_service.remove_member(db_session, club["org"].id, owner_member_id)

    second = await make_user()
    await club_service.add_member(db_session, club["org"].id, "owner", user_id=second.id)
    demoted = await club_service.update_member_role(db_session, club["org"].id, owner_member_id, "admin")
    assert demoted["role"] == "admin"


# ============================================================================
# Players
# ============================================================================


@pytest.mark.asyncio
async def test_player_age_fields(db_session, club):
    player = await club_service.create_player(
        db_session,
        club["org"].id,
        {"name": "Ana", "gender": "female", "date_of_birth": _born_aged(12)},
    )
    assert player["age"] == 12
    assert player["age_group"] == "U-13"

    no_birthday = await club_service.create_player(
        db_session, club["org"].id, {"name": "Ben", "gender": "male"}
    )
    assert no_birthday["age"] is None
    assert no_birthday["age_group"] is None


@pytest.mark.asyncio
async def test_list_players_filters(db_session, club, make_player):
    await make_player(club["org"], name="Ana Young", date_of_birth=_born_aged(12))
    await make_player(club["org"], name="Bruno Older", date_of_birth=_born_aged(16))

    by_group = await club_service.list_players(
        db_session, club["org"].id, PaginationParams(), age_group="U-13"
    )
    assert [p["name"] for p in by_group["data"]] == ["Ana Young"]

    by_name = await club_service.list_players(db_session, club["org"].id, PaginationParams(), q="bruno")
    assert [p["name"] for p in by_name["data"]] == ["Bruno Older"]

    with pytest.raises(BadRequestError):
        await club_service.list_players(db_session, club["org"].id, PaginationParams(), age_group="U-99")


@pytest.mark.asyncio
async def test_players_are_scoped_to_club(db_session, club, make_org, make_player):
    other = await make_org()
    stranger = await make_player(other)

    with pytest.raises(NotFoundError):
        await club_service.get_player(db_session, club["org"].id, stranger.id)


@pytest.mark.asyncio
async def test_user_links_to_one_player(db_session, club, make_user):
    user = await make_user()
    await club_service.create_player(
        db_session, club["org"].id, {"name": "Ana", "gender": "female", "user_id": user.id}
    )

    with pytest.raises(ConflictError):
        await club_service.create_player(
            db_session, club["org"].id, {"name": "Ana 2", "gender": "female", "user_id": user.id}
        )


# ============================================================================
# Notes
# ============================================================================


@pytest.mark.asyncio
async def test_note_permissions(db_session, club, make_user, make_ctx, make_player):
    player = await make_player(club["org"])
    coach = await make_user(name="Coach")
    other_coach = await make_user(name="Other Coach")
    outsider = await make_user(name="Outsider")
    coach_ctx = make_ctx(coach, club["org"], MemberRole.COACH.value)
    other_coach_ctx = make_ctx(other_coach, club["org"], MemberRole.COACH.value)

    note = await club_service.create_note(db_session, coach_ctx, player.id, "Good footwork", "training")
    assert note["author_user_id"] == coach.id

    with pytest.raises(ForbiddenError):
        await club_service.list_notes(db_session, make_ctx(outsider), player.id)
    with pytest.raises(ForbiddenError):
        await club_service.update_note(db_session, other_coach_ctx, note["id"], content="Changed")

    updated = await club_service.update_note(db_session, club["ctx"], note["id"], content="Great footwork")
    assert updated["content"] == "Great footwork"

    notes = await club_service.list_notes(db_session, other_coach_ctx, player.id)
    assert [(n["content"], n["author_name"]) for n in notes] == [("Great footwork", "Coach")]

    await club_service.delete_note(db_session, coach_ctx, note["id"])
    assert await club_service.list_notes(db_session, coach_ctx, player.id) == []


@pytest.mark.asyncio
async def test_player_reads_own_notes(db_session, club, make_user, make_ctx, make_player):
    account = await make_user()
    player = await make_player(club["org"])
    player.user_id = account.id
    await db_session.flush()
    await club_service.create_note(db_session, club["ctx"], player.id, "Keep it up")

    notes = await club_service.list_notes(db_session, make_ctx(account), player.id)
    assert len(notes) == 1

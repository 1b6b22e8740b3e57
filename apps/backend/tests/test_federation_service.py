"""
Tests for federation_service: federations, member clubs, members, club
requests and player registration requests.
"""

import pytest
import pytest_asyncio

from backend.database.models import FederationRole, MemberRole
from backend.services import federation_service
from backend.services.errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
)
from backend.services.federation_service import validate_federation_id_number
from backend.utils.pagination import PaginationParams


@pytest.mark.parametrize("number", ["ABC-123", "00042", "X"])
def test_valid_federation_id_numbers(number):
    assert validate_federation_id_number(number) == number


@pytest.mark.parametrize("number", ["", None, "abc-1", "AB 12", "AB_12"])
def test_invalid_federation_id_numbers(number):
    with pytest.raises(BadRequestError):
        validate_federation_id_number(number)


@pytest_asyncio.fixture
async def federation_admin(make_federation, make_user, make_ctx):
    federation = await make_federation()
    admin = await make_user(federation_id=federation.id, federation_role=FederationRole.ADMIN)
    return federation, make_ctx(admin)


@pytest.mark.asyncio
async def test_create_federation_duplicate_name(db_session):
    created = await federation_service.create_federation(db_session, {"name": "National"})
    assert created["name"] == "National"

    with pytest.raises(ConflictError):
        await federation_service.create_federation(db_session, {"name": "National"})


@pytest.mark.asyncio
async def test_add_federation_club(db_session, club, federation_admin):
    federation, admin_ctx = federation_admin

    await federation_service.add_federation_club(db_session, admin_ctx, federation.id, club["org"].id)
    clubs = await federation_service.list_federation_clubs(db_session, federation.id)
    assert [c["organization_name"] for c in clubs] == [club["org"].name]

    with pytest.raises(ConflictError):
        await federation_service.add_federation_club(db_session, admin_ctx, federation.id, club["org"].id)
    with pytest.raises(ForbiddenError):
        await federation_service.add_federation_club(db_session, club["ctx"], federation.id, club["org"].id)


@pytest.mark.asyncio
async def test_federation_member_uniqueness(db_session, club, make_federation, make_player):
    federation = await make_federation()
    a = await make_player(club["org"])
    b = await make_player(club["org"])

    member = await federation_service.create_federation_member(db_session, federation.id, a.id, "N-1")
    assert member.status.value == "active"

    with pytest.raises(ConflictError):
        await federation_service.create_federation_member(db_session, federation.id, a.id, "N-2")
    with pytest.raises(ConflictError):
        await federation_service.create_federation_member(db_session, federation.id, b.id, "N-1")


@pytest.mark.asyncio
async def test_update_member_status(db_session, club, federation_admin, make_player):
    federation, admin_ctx = federation_admin
    player = await make_player(club["org"])
    member = await federation_service.create_federation_member(db_session, federation.id, player.id, "N-9")

    updated = await federation_service.update_member_status(db_session, admin_ctx, member.id, "suspended")
    assert updated["status"] == "suspended"

    members = await federation_service.list_federation_members(
        db_session, admin_ctx, federation.id, PaginationParams(), status="suspended"
    )
    assert members["data"][0]["player_name"] == player.name


# ============================================================================
# Requests
# ============================================================================


@pytest.mark.asyncio
async def test_request_and_approve(db_session, club, federation_admin, make_player):
    federation, admin_ctx = federation_admin
    player = await make_player(club["org"])

    request = await federation_service.create_request(db_session, club["ctx"], federation.id, player.id)
    assert request["status"] == "pending"
    assert request["organization_id"] == club["org"].id

    with pytest.raises(ConflictError):
        await federation_service.create_request(db_session, club["ctx"], federation.id, player.id)

    reviewed = await federation_service.review_request(
        db_session, admin_ctx, request["id"], "approved", federation_registration_number="FED-7"
    )
    assert reviewed["status"] == "approved"
    assert reviewed["reviewed_by"] == admin_ctx.user_id
    member = await federation_service.get_membership(db_session, federation.id, player.id)
    assert member.federation_id_number == "FED-7"

    # Members cannot be requested again
    with pytest.raises(BadRequestError):
        await federation_service.create_request(db_session, club["ctx"], federation.id, player.id)


@pytest.mark.asyncio
async def test_reject_request(db_session, club, federation_admin, make_player):
    federation, admin_ctx = federation_admin
    player = await make_player(club["org"])
    request = await federation_service.create_request(db_session, club["ctx"], federation.id, player.id)

    with pytest.raises(BadRequestError):
        await federation_service.review_request(db_session, admin_ctx, request["id"], "rejected")

    reviewed = await federation_service.review_request(
        db_session, admin_ctx, request["id"], "rejected", rejection_reason="Incomplete"
    )
    assert reviewed["status"] == "rejected"
    assert await federation_service.get_membership(db_session, federation.id, player.id) is None

    with pytest.raises(BadRequestError):
        await federation_service.review_request(
            db_session, admin_ctx, request["id"], "approved", federation_registration_number="FED-8"
        )


@pytest.mark.asyncio
async def test_approve_with_bad_number(db_session, club, federation_admin, make_player):
    federation, admin_ctx = federation_admin
    player = await make_player(club["org"])
    request = await federation_service.create_request(db_session, club["ctx"], federation.id, player.id)

    with pytest.raises(BadRequestError):
        await federation_service.review_request(
            db_session, admin_ctx, request["id"], "approved", federation_registration_number="bad number"
        )


@pytest.mark.asyncio
async def test_request_rules(db_session, club, federation_admin, make_org, make_player, make_user, make_ctx):
    federation, _ = federation_admin
    other = await make_org()
    foreign = await make_player(other)
    own = await make_player(club["org"])

    with pytest.raises(BadRequestError):
        await federation_service.create_request(db_session, club["ctx"], federation.id, foreign.id)

    coach = await make_user()
    with pytest.raises(ForbiddenError):
        await federation_service.create_request(
            db_session, make_ctx(coach, club["org"], MemberRole.COACH.value), federation.id, own.id
        )


@pytest.mark.asyncio
async def test_club_cannot_review(db_session, club, federation_admin, make_player):
    federation, _ = federation_admin
    player = await make_player(club["org"])
    request = await federation_service.create_request(db_session, club["ctx"], federation.id, player.id)

    with pytest.raises(ForbiddenError):
        await federation_service.review_request(
            db_session, club["ctx"], request["id"], "approved", federation_registration_number="FED-1"
        )


@pytest.mark.asyncio
async def test_list_requests_visibility(db_session, club, federation_admin, make_federation, make_player):
    federation, admin_ctx = federation_admin
    other_federation = await make_federation()
    a = await make_player(club["org"])
    b = await make_player(club["org"])
    await federation_service.create_request(db_session, club["ctx"], federation.id, a.id)
    await federation_service.create_request(db_session, club["ctx"], other_federation.id, b.id)

    club_view = await federation_service.list_requests(db_session, club["ctx"], PaginationParams())
    assert club_view["totalItems"] == 2

    federation_view = await federation_service.list_requests(db_session, admin_ctx, PaginationParams())
    assert federation_view["totalItems"] == 1
    assert federation_view["data"][0]["player_id"] == a.id


@pytest.mark.asyncio
async def test_bulk_requests(db_session, club, federation_admin, make_player):
    federation, _ = federation_admin
    players = [await make_player(club["org"], name=f"P{i}") for i in range(3)]

    result = await federation_service.bulk_create_requests(
        db_session, club["ctx"], federation.id, [p.id for p in players]
    )

    assert result["count"] == 3
    assert {r["player_id"] for r in result["requests"]} == {p.id for p in players}
    assert all(r["status"] == "pending" for r in result["requests"])


@pytest.mark.asyncio
async def test_bulk_requests_reject_whole_batch(
    db_session, club, federation_admin, make_org, make_player
):
    federation, _ = federation_admin
    fresh = await make_player(club["org"], name="Fresh")
    pending = await make_player(club["org"], name="Pending")
    member = await make_player(club["org"], name="Member")
    foreign = await make_player(await make_org(), name="Foreign")
    await federation_service.create_request(db_session, club["ctx"], federation.id, pending.id)
    await federation_service.create_federation_member(db_session, federation.id, member.id, "M-1")

    with pytest.raises(BadRequestError) as exc_info:
        await federation_service.bulk_create_requests(
            db_session,
            club["ctx"],
            federation.id,
            [fresh.id, pending.id, member.id, foreign.id, 99999],
        )

    failing = {e["player_id"] for e in exc_info.value.details}
    assert failing == {pending.id, member.id, foreign.id, 99999}
    listed = await federation_service.list_requests(db_session, club["ctx"], PaginationParams())
    assert [r["player_id"] for r in listed["data"]] == [pending.id]


@pytest.mark.asyncio
async def test_eligible_players(db_session, club, federation_admin, make_player):
    federation, _ = federation_admin
    ana = await make_player(club["org"], name="Ana")
    ben = await make_player(club["org"], name="Ben")
    cleo = await make_player(club["org"], name="Cleo")
    await federation_service.create_request(db_session, club["ctx"], federation.id, ben.id)
    await federation_service.create_federation_member(db_session, federation.id, cleo.id, "C-1")

    players = await federation_service.list_eligible_players(db_session, club["ctx"], federation.id)

    assert [(p["id"], p["is_eligible"]) for p in players] == [
        (ana.id, True),
        (ben.id, False),
        (cleo.id, False),
    ]
    assert players[0]["ineligibility_reason"] is None
    assert "pending" in players[1]["ineligibility_reason"]
    assert "member" in players[2]["ineligibility_reason"]


# ============================================================================
# Club requests
# ============================================================================


@pytest.mark.asyncio
async def test_club_request_approval_adds_club(db_session, club, federation_admin):
    federation, admin_ctx = federation_admin

    request = await federation_service.create_club_request(db_session, club["ctx"], federation.id)
    assert request["status"] == "pending"
    assert request["requested_by"] == club["owner"].id

    with pytest.raises(ConflictError):
        await federation_service.create_club_request(db_session, club["ctx"], federation.id)

    reviewed = await federation_service.review_club_request(
        db_session, admin_ctx, request["id"], "approved"
    )
    assert reviewed["status"] == "approved"
    assert reviewed["reviewed_by"] == admin_ctx.user_id
    clubs = await federation_service.list_federation_clubs(db_session, federation.id)
    assert [c["organization_id"] for c in clubs] == [club["org"].id]

    # Already a member now
    with pytest.raises(BadRequestError):
        await federation_service.create_club_request(db_session, club["ctx"], federation.id)
    with pytest.raises(BadRequestError):
        await federation_service.review_club_request(
            db_session, admin_ctx, request["id"], "rejected", rejection_reason="Late"
        )


@pytest.mark.asyncio
async def test_club_request_rejection_needs_reason(db_session, club, federation_admin):
    federation, admin_ctx = federation_admin
    request = await federation_service.create_club_request(db_session, club["ctx"], federation.id)

    with pytest.raises(BadRequestError):
        await federation_service.review_club_request(db_session, admin_ctx, request["id"], "rejected")

    reviewed = await federation_service.review_club_request(
        db_session, admin_ctx, request["id"], "rejected", rejection_reason="No venue"
    )
    assert reviewed["rejection_reason"] == "No venue"
    assert await federation_service.list_federation_clubs(db_session, federation.id) == []


@pytest.mark.asyncio
async def test_club_request_permissions(
    db_session, club, federation_admin, make_federation, make_user, make_ctx
):
    federation, _ = federation_admin
    coach = await make_user()
    with pytest.raises(ForbiddenError):
        await federation_service.create_club_request(
            db_session, make_ctx(coach, club["org"], MemberRole.COACH.value), federation.id
        )

    request = await federation_service.create_club_request(db_session, club["ctx"], federation.id)

    # Neither the club nor another federation's admin may review it
    other_federation = await make_federation()
    other_admin = await make_user(
        federation_id=other_federation.id, federation_role=FederationRole.ADMIN
    )
    with pytest.raises(ForbiddenError):
        await federation_service.review_club_request(db_session, club["ctx"], request["id"], "approved")
    with pytest.raises(ForbiddenError):
        await federation_service.review_club_request(
            db_session, make_ctx(other_admin), request["id"], "approved"
        )


@pytest.mark.asyncio
async def test_club_request_listing_scopes(
    db_session, club, federation_admin, make_federation, make_org, make_user, make_ctx
):
    federation, admin_ctx = federation_admin
    other_federation = await make_federation()
    owner = await make_user()
    other_club = await make_org(owner=owner)
    other_ctx = make_ctx(owner, other_club, MemberRole.OWNER.value)

    await federation_service.create_club_request(db_session, club["ctx"], federation.id)
    await federation_service.create_club_request(db_session, club["ctx"], other_federation.id)
    await federation_service.create_club_request(db_session, other_ctx, federation.id)

    club_view = await federation_service.list_club_requests(db_session, club["ctx"], PaginationParams())
    assert club_view["totalItems"] == 2
    assert {r["organization_name"] for r in club_view["data"]} == {club["org"].name}

    federation_view = await federation_service.list_club_requests(
        db_session, admin_ctx, PaginationParams(), status="pending"
    )
    assert federation_view["totalItems"] == 2
    assert {r["federation_id"] for r in federation_view["data"]} == {federation.id}

    stranger = await make_user()
    with pytest.raises(ForbiddenError):
        await federation_service.list_club_requests(db_session, make_ctx(stranger), PaginationParams())


@pytest.mark.asyncio
async def test_club_withdraws_only_pending_request(db_session, club, federation_admin):
    federation, admin_ctx = federation_admin
    request = await federation_service.create_club_request(db_session, club["ctx"], federation.id)
    await federation_service.delete_club_request(db_session, club["ctx"], request["id"])
    assert (await federation_service.list_club_requests(db_session, admin_ctx, PaginationParams()))[
        "totalItems"
    ] == 0

    request = await federation_service.create_club_request(db_session, club["ctx"], federation.id)
    await federation_service.review_club_request(
        db_session, admin_ctx, request["id"], "rejected", rejection_reason="Full"
    )
    with pytest.raises(ForbiddenError):
        await federation_service.delete_club_request(db_session, club["ctx"], request["id"])
    await federation_service.delete_club_request(db_session, admin_ctx, request["id"])

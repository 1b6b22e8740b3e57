"""
Tests for championship_service: championships, editions, placement tiers,
points schemas and event results.
"""

from datetime import date

import pytest
import pytest_asyncio

from backend.database.models import FederationRole, Season
from backend.services import championship_service
from backend.services.errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
)


@pytest_asyncio.fixture
async def championship(db_session, make_federation, make_user, make_ctx):
    federation = await make_federation()
    admin = await make_user(federation_id=federation.id, federation_role=FederationRole.ADMIN)
    admin_ctx = make_ctx(admin)
    created = await championship_service.create_championship(
        db_session, admin_ctx, {"federation_id": federation.id, "name": "National League"}
    )
    return federation, admin_ctx, created


async def _season(db_session, federation, year=2025):
    season = Season(
        federation_id=federation.id,
        name=f"{year}/{year + 1}",
        start_year=year,
        end_year=year + 1,
        season_start_date=date(year, 9, 1),
        season_end_date=date(year + 1, 6, 30),
    )
    db_session.add(season)
    await db_session.flush()
    return season


@pytest.mark.asyncio
async def test_create_championship_defaults(championship):
    _, _, created = championship
    assert created["competition_scope"] == "clubs"


@pytest.mark.asyncio
async def test_create_championship_requires_federation_admin(db_session, club, make_federation):
    federation = await make_federation()
    with pytest.raises(ForbiddenError):
        await championship_service.create_championship(
            db_session, club["ctx"], {"federation_id": federation.id, "name": "Cup"}
        )


@pytest.mark.asyncio
async def test_editions(db_session, championship, make_federation):
    federation, admin_ctx, created = championship
    season = await _season(db_session, federation)

    edition = await championship_service.create_edition(
        db_session, admin_ctx, created["id"], {"year": 2025, "season_id": season.id}
    )
    assert edition["status"] == "draft"

    with pytest.raises(ConflictError):
        await championship_service.create_edition(db_session, admin_ctx, created["id"], {"year": 2025})

    other_federation = await make_federation()
    foreign_season = await _season(db_session, other_federation, year=2026)
    with pytest.raises(BadRequestError):
        await championship_service.create_edition(
            db_session, admin_ctx, created["id"], {"year": 2026, "season_id": foreign_season.id}
        )

    await championship_service.create_edition(db_session, admin_ctx, created["id"], {"year": 2024})
    loaded = await championship_service.get_championship(db_session, created["id"])
    assert [e["year"] for e in loaded["editions"]] == [2025, 2024]


@pytest.mark.asyncio
async def test_update_edition_year_conflict(db_session, championship):
    _, admin_ctx, created = championship
    await championship_service.create_edition(db_session, admin_ctx, created["id"], {"year": 2024})
    later = await championship_service.create_edition(db_session, admin_ctx, created["id"], {"year": 2025})

    with pytest.raises(ConflictError):
        await championship_service.update_edition(db_session, admin_ctx, later["id"], {"year": 2024})

    updated = await championship_service.update_edition(
        db_session, admin_ctx, later["id"], {"status": "published"}
    )
    assert updated["status"] == "published"


# ============================================================================
# Tiers and points
# ============================================================================


@pytest.mark.asyncio
async def test_placement_tiers(db_session):
    winner = await championship_service.create_placement_tier(
        db_session, {"name": "winner", "display_name": "Winner", "rank": 1}
    )
    await championship_service.create_placement_tier(db_session, {"name": "runner-up", "rank": 2})

    with pytest.raises(ConflictError):
        await championship_service.create_placement_tier(db_session, {"name": "winner", "rank": 9})

    tiers = await championship_service.list_placement_tiers(db_session)
    assert [t["name"] for t in tiers] == ["winner", "runner-up"]

    schema = await championship_service.create_points_schema(db_session, {"name": "Standard"})
    await championship_service.create_points_schema_entry(db_session, schema["id"], winner["id"], 100)
    with pytest.raises(ConflictError):
        await championship_service.create_points_schema_entry(db_session, schema["id"], winner["id"], 50)
    with pytest.raises(ConflictError):
        await championship_service.delete_placement_tier(db_session, winner["id"])


@pytest.mark.asyncio
async def test_points_schema_entries(db_session):
    winner = await championship_service.create_placement_tier(db_session, {"name": "winner", "rank": 1})
    third = await championship_service.create_placement_tier(db_session, {"name": "third", "rank": 3})
    schema = await championship_service.create_points_schema(db_session, {"name": "Standard"})
    await championship_service.create_points_schema_entry(db_session, schema["id"], third["id"], 40)
    entry = await championship_service.create_points_schema_entry(db_session, schema["id"], winner["id"], 100)

    loaded = await championship_service.get_points_schema(db_session, schema["id"])
    assert [(e["placement_tier_name"], e["points"]) for e in loaded["entries"]] == [
        ("winner", 100),
        ("third", 40),
    ]

    await championship_service.update_points_schema_entry(db_session, entry["id"], 120)
    assert await championship_service.get_tier_points(db_session, schema["id"], winner["id"]) == 120
    assert await championship_service.get_tier_points(db_session, schema["id"], None) == 0
    assert await championship_service.get_tier_points(db_session, None, winner["id"]) == 0


@pytest.mark.asyncio
async def test_set_event_results(db_session, club, make_event, make_registrations):
    winner = await championship_service.create_placement_tier(db_session, {"name": "winner", "rank": 1})
    runner_up = await championship_service.create_placement_tier(db_session, {"name": "runner-up", "rank": 2})
    schema = await championship_service.create_points_schema(db_session, {"name": "Standard"})
    await championship_service.create_points_schema_entry(db_session, schema["id"], winner["id"], 100)
    ev = await make_event(organization=club["org"], points_schema_id=schema["id"])
    ids = await make_registrations(ev, club["org"], 2)

    results = await championship_service.set_event_results(
        db_session,
        ev,
        [
            {"registration_id": ids[0], "final_position": 1, "placement_tier_id": winner["id"]},
            {"registration_id": ids[1], "final_position": 2, "placement_tier_id": runner_up["id"]},
        ],
    )
    assert [r["points_awarded"] for r in results] == [100, 0]

    # A second call replaces the previous results
    await championship_service.set_event_results(
        db_session,
        ev,
        [{"registration_id": ids[1], "final_position": 1, "placement_tier_id": winner["id"]}],
    )
    listed = await championship_service.list_event_results(db_session, ev.id)
    assert [(r["registration_id"], r["points_awarded"]) for r in listed] == [(ids[1], 100)]


@pytest.mark.asyncio
async def test_set_event_results_validation(db_session, club, make_event, make_registrations):
    tier = await championship_service.create_placement_tier(db_session, {"name": "winner", "rank": 1})
    ev = await make_event(organization=club["org"])
    other = await make_event(organization=club["org"], name="Other")
    ids = await make_registrations(ev, club["org"], 1)
    other_ids = await make_registrations(other, club["org"], 1)

    with pytest.raises(BadRequestError):
        await championship_service.set_event_results(
            db_session,
            ev,
            [
                {"registration_id": ids[0], "placement_tier_id": tier["id"]},
                {"registration_id": ids[0], "placement_tier_id": tier["id"]},
            ],
        )
    with pytest.raises(BadRequestError) as exc_info:
        await championship_service.set_event_results(
            db_session, ev, [{"registration_id": other_ids[0], "placement_tier_id": tier["id"]}]
        )
    assert exc_info.value.details == {"registration_ids": [other_ids[0]]}
    with pytest.raises(NotFoundError):
        await championship_service.set_event_results(
            db_session, ev, [{"registration_id": ids[0], "placement_tier_id": 999}]
        )

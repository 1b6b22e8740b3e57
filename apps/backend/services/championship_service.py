"""
Championship service: championships, editions, placement tiers, points
schemas and the results recorded for events.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.database.models import (
    Championship,
    ChampionshipEdition,
    CompetitionScope,
    EditionStatus,
    Event,
    EventResult,
    PlacementTier,
    PointsSchema,
    PointsSchemaEntry,
    Registration,
    Season,
)
from backend.services.access import OrganizationContext
from backend.services.errors import BadRequestError, ConflictError, NotFoundError
from backend.utils.serialization import row_to_dict

logger = logging.getLogger(__name__)


# ============================================================================
# Championships
# ============================================================================


async def get_championship_model(session: AsyncSession, championship_id: int) -> Championship:
    championship = await session.get(Championship, championship_id)
    if not championship:
        raise NotFoundError("Championship not found")
    return championship


async def create_championship(session: AsyncSession, ctx: OrganizationContext, data: Dict) -> Dict:
    ctx.require_federation_admin(data["federation_id"])
    values = dict(data)
    if values.get("competition_scope") is not None:
        values["competition_scope"] = CompetitionScope(values["competition_scope"])
    championship = Championship(**values)
    session.add(championship)
    await session.flush()
    logger.info(f"Created championship {championship.id} ({championship.name})")
    return row_to_dict(championship)


async def list_championships(
    session: AsyncSession, federation_id: Optional[int] = None
) -> List[Dict]:
    stmt = select(Championship).order_by(Championship.name)
    if federation_id is not None:
        stmt = stmt.where(Championship.federation_id == federation_id)
    result = await session.execute(stmt)
    return [row_to_dict(c) for c in result.scalars().all()]


async def get_championship(session: AsyncSession, championship_id: int) -> Dict:
    championship = await get_championship_model(session, championship_id)
    data = row_to_dict(championship)
    data["editions"] = await list_editions(session, championship_id)
    return data


async def update_championship(
    session: AsyncSession, ctx: OrganizationContext, championship_id: int, updates: Dict
) -> Dict:
    championship = await get_championship_model(session, championship_id)
    ctx.require_federation_admin(championship.federation_id)
    for key, value in updates.items():
        if key == "competition_scope":
            value = CompetitionScope(value)
        setattr(championship, key, value)
    await session.flush()
    return row_to_dict(championship)


async def delete_championship(
    session: AsyncSession, ctx: OrganizationContext, championship_id: int
) -> None:
    championship = await get_championship_model(session, championship_id)
    ctx.require_federation_admin(championship.federation_id)
    await session.delete(championship)
    await session.flush()


# ============================================================================
# Editions
# ============================================================================


async def _check_edition_fields(
    session: AsyncSession,
    championship: Championship,
    year: int,
    season_id: Optional[int],
    edition_id: Optional[int] = None,
) -> None:
    stmt = select(ChampionshipEdition.id).where(
        ChampionshipEdition.championship_id == championship.id,
        ChampionshipEdition.year == year,
    )
    if edition_id is not None:
        stmt = stmt.where(ChampionshipEdition.id != edition_id)
    if (await session.execute(stmt)).scalar_one_or_none() is not None:
        raise ConflictError(f"An edition for {year} already exists for this championship")

    if season_id is not None:
        season = await session.get(Season, season_id)
        if not season:
            raise NotFoundError("Season not found")
        if season.federation_id != championship.federation_id:
            raise BadRequestError("Season belongs to a different federation")


async def get_edition_model(session: AsyncSession, edition_id: int) -> ChampionshipEdition:
    edition = await session.get(ChampionshipEdition, edition_id)
    if not edition:
        raise NotFoundError("Championship edition not found")
    return edition


async def list_editions(session: AsyncSession, championship_id: int) -> List[Dict]:
    result = await session.execute(
        select(ChampionshipEdition)
        .where(ChampionshipEdition.championship_id == championship_id)
        .order_by(ChampionshipEdition.year.desc())
    )
    return [row_to_dict(e) for e in result.scalars().all()]


async def create_edition(
    session: AsyncSession, ctx: OrganizationContext, championship_id: int, data: Dict
) -> Dict:
    championship = await get_championship_model(session, championship_id)
    ctx.require_federation_admin(championship.federation_id)
    await _check_edition_fields(session, championship, data["year"], data.get("season_id"))

    values = dict(data)
    if values.get("status") is not None:
        values["status"] = EditionStatus(values["status"])
    edition = ChampionshipEdition(championship_id=championship_id, **values)
    session.add(edition)
    await session.flush()
    logger.info(f"Created edition {edition.year} of championship {championship_id}")
    return row_to_dict(edition)


async def get_edition(session: AsyncSession, edition_id: int) -> Dict:
    edition = await get_edition_model(session, edition_id)
    data = row_to_dict(edition)
    events = await session.execute(
        select(Event.id, Event.name).where(Event.championship_edition_id == edition_id).order_by(Event.name)
    )
    data["events"] = [{"id": event_id, "name": name} for event_id, name in events.all()]
    return data


async def update_edition(
    session: AsyncSession, ctx: OrganizationContext, edition_id: int, updates: Dict
) -> Dict:
    edition = await get_edition_model(session, edition_id)
    championship = await get_championship_model(session, edition.championship_id)
    ctx.require_federation_admin(championship.federation_id)
    await _check_edition_fields(
        session,
        championship,
        updates.get("year", edition.year),
        updates.get("season_id", edition.season_id),
        edition_id=edition.id,
    )
    for key, value in updates.items():
        if key == "status":
            value = EditionStatus(value)
        setattr(edition, key, value)
    await session.flush()
    return row_to_dict(edition)


async def delete_edition(session: AsyncSession, ctx: OrganizationContext, edition_id: int) -> None:
    edition = await get_edition_model(session, edition_id)
    championship = await get_championship_model(session, edition.championship_id)
    ctx.require_federation_admin(championship.federation_id)
    await session.delete(edition)
    await session.flush()


# ============================================================================
# Placement tiers
# ============================================================================


async def _get_tier_or_404(session: AsyncSession, tier_id: int) -> PlacementTier:
    tier = await session.get(PlacementTier, tier_id)
    if not tier:
        raise NotFoundError("Placement tier not found")
    return tier


async def list_placement_tiers(session: AsyncSession) -> List[Dict]:
    result = await session.execute(select(PlacementTier).order_by(PlacementTier.rank))
    return [row_to_dict(t) for t in result.scalars().all()]


async def create_placement_tier(session: AsyncSession, data: Dict) -> Dict:
    existing = await session.execute(
        select(PlacementTier.id).where(PlacementTier.name == data["name"])
    )
    if existing.scalar_one_or_none() is not None:
        raise ConflictError(f"Placement tier {data['name']} already exists")
    tier = PlacementTier(**data)
    session.add(tier)
    await session.flush()
    return row_to_dict(tier)


async def update_placement_tier(session: AsyncSession, tier_id: int, updates: Dict) -> Dict:
    tier = await _get_tier_or_404(session, tier_id)
    for key, value in updates.items():
        setattr(tier, key, value)
    await session.flush()
    return row_to_dict(tier)


async def delete_placement_tier(session: AsyncSession, tier_id: int) -> None:
    tier = await _get_tier_or_404(session, tier_id)
    entries = await session.execute(
        select(func.count(PointsSchemaEntry.id)).where(PointsSchemaEntry.placement_tier_id == tier_id)
    )
    results = await session.execute(
        select(func.count(EventResult.id)).where(EventResult.placement_tier_id == tier_id)
    )
    if entries.scalar_one() or results.scalar_one():
        raise ConflictError("Placement tier is used by points schemas or event results")
    await session.delete(tier)
    await session.flush()


# ============================================================================
# Points schemas
# ============================================================================


async def _get_schema_or_404(session: AsyncSession, schema_id: int) -> PointsSchema:
    schema = await session.get(PointsSchema, schema_id)
    if not schema:
        raise NotFoundError("Points schema not found")
    return schema


async def list_points_schemas(session: AsyncSession) -> List[Dict]:
    result = await session.execute(select(PointsSchema).order_by(PointsSchema.name))
    return [row_to_dict(s) for s in result.scalars().all()]


async def create_points_schema(session: AsyncSession, data: Dict) -> Dict:
    schema = PointsSchema(**data)
    session.add(schema)
    await session.flush()
    return row_to_dict(schema)


async def get_points_schema(session: AsyncSession, schema_id: int) -> Dict:
    schema = await _get_schema_or_404(session, schema_id)
    data = row_to_dict(schema)
    result = await session.execute(
        select(PointsSchemaEntry, PlacementTier)
        .join(PlacementTier, PlacementTier.id == PointsSchemaEntry.placement_tier_id)
        .where(PointsSchemaEntry.points_schema_id == schema_id)
        .order_by(PlacementTier.rank)
    )
    entries = []
    for entry, tier in result.all():
        item = row_to_dict(entry)
        item["placement_tier_name"] = tier.name
        item["placement_tier_rank"] = tier.rank
        entries.append(item)
    data["entries"] = entries
    return data


async def update_points_schema(session: AsyncSession, schema_id: int, updates: Dict) -> Dict:
    schema = await _get_schema_or_404(session, schema_id)
    for key, value in updates.items():
        setattr(schema, key, value)
    await session.flush()
    return row_to_dict(schema)


async def delete_points_schema(session: AsyncSession, schema_id: int) -> None:
    schema = await _get_schema_or_404(session, schema_id)
    await session.delete(schema)
    await session.flush()


async def create_points_schema_entry(
    session: AsyncSession, schema_id: int, placement_tier_id: int, points: int
) -> Dict:
    await _get_schema_or_404(session, schema_id)
    await _get_tier_or_404(session, placement_tier_id)
    existing = await session.execute(
        select(PointsSchemaEntry.id).where(
            PointsSchemaEntry.points_schema_id == schema_id,
            PointsSchemaEntry.placement_tier_id == placement_tier_id,
        )
    )
    if existing.scalar_one_or_none() is not None:
        raise ConflictError("This placement tier already has points in the schema")
    entry = PointsSchemaEntry(
        points_schema_id=schema_id, placement_tier_id=placement_tier_id, points=points
    )
    session.add(entry)
    await session.flush()
    return row_to_dict(entry)


async def update_points_schema_entry(session: AsyncSession, entry_id: int, points: int) -> Dict:
    entry = await session.get(PointsSchemaEntry, entry_id)
    if not entry:
        raise NotFoundError("Points schema entry not found")
    entry.points = points
    await session.flush()
    return row_to_dict(entry)


async def delete_points_schema_entry(session: AsyncSession, entry_id: int) -> None:
    entry = await session.get(PointsSchemaEntry, entry_id)
    if not entry:
        raise NotFoundError("Points schema entry not found")
    await session.delete(entry)
    await session.flush()


# ============================================================================
# Event results
# ============================================================================


async def get_tier_points(
    session: AsyncSession, points_schema_id: Optional[int], placement_tier_id: Optional[int]
) -> int:
    """Points a tier earns under a schema; 0 when either is unset or unmapped."""
    if points_schema_id is None or placement_tier_id is None:
        return 0
    result = await session.execute(
        select(PointsSchemaEntry.points).where(
            PointsSchemaEntry.points_schema_id == points_schema_id,
            PointsSchemaEntry.placement_tier_id == placement_tier_id,
        )
    )
    return result.scalar_one_or_none() or 0


async def list_event_results(session: AsyncSession, event_id: int) -> List[Dict]:
    result = await session.execute(
        select(EventResult)
        .where(EventResult.event_id == event_id)
        .order_by(EventResult.final_position.is_(None), EventResult.final_position)
    )
    return [row_to_dict(r) for r in result.scalars().all()]


async def set_event_results(session: AsyncSession, event: Event, items: List[Dict]) -> List[Dict]:
    """
    Replace an event's results.

    Each item is {"registration_id", "final_position"?, "placement_tier_id"};
    points are taken from the event's points schema for the tier.

    Raises:
        BadRequestError: a registration outside the event or listed twice
        NotFoundError: an unknown placement tier
    """
    registration_ids = [item["registration_id"] for item in items]
    if len(set(registration_ids)) != len(registration_ids):
        raise BadRequestError("Each registration may appear only once in the results")
    if registration_ids:
        found = await session.execute(
            select(Registration.id).where(
                Registration.event_id == event.id, Registration.id.in_(registration_ids)
            )
        )
        missing = set(registration_ids) - set(found.scalars().all())
        if missing:
            raise BadRequestError(
                "Registrations do not belong to this event",
                details={"registration_ids": sorted(missing)},
            )

    tier_ids = {item["placement_tier_id"] for item in items}
    if tier_ids:
        known = await session.execute(select(PlacementTier.id).where(PlacementTier.id.in_(tier_ids)))
        if tier_ids - set(known.scalars().all()):
            raise NotFoundError("Placement tier not found")

    await session.execute(delete(EventResult).where(EventResult.event_id == event.id))
    rows = []
    for item in items:
        tier_id = item["placement_tier_id"]
        rows.append(
            EventResult(
                event_id=event.id,
                registration_id=item["registration_id"],
                final_position=item.get("final_position"),
                placement_tier_id=tier_id,
                points_awarded=await get_tier_points(session, event.points_schema_id, tier_id),
            )
        )
    session.add_all(rows)
    await session.flush()
    logger.info(f"Recorded {len(rows)} results for event {event.id}")
    return [row_to_dict(r) for r in rows]

"""
Training service: skill tests, test results, training sessions and attendance.
"""

import logging
from datetime import date
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.database.models import (
    AttendanceStatus,
    Coach,
    Player,
    SkillTest,
    TestResult,
    TrainingSession,
    TrainingSessionAttendance,
)
from backend.services.access import OrganizationContext
from backend.services.errors import BadRequestError, ConflictError, NotFoundError
from backend.utils.constants import LOWEST_PERFORMANCE_CATEGORY, PERFORMANCE_THRESHOLDS
from backend.utils.pagination import PaginationParams, build_page, paginate
from backend.utils.serialization import row_to_dict

logger = logging.getLogger(__name__)

SCORE_FIELDS = ("left_hand_score", "right_hand_score", "forehand_score", "backhand_score")

TEST_SORT_COLUMNS = {
    "name": SkillTest.name,
    "date_conducted": SkillTest.date_conducted,
    "created_at": SkillTest.created_at,
}
SESSION_SORT_COLUMNS = {
    "date": TrainingSession.date,
    "title": TrainingSession.title,
    "created_at": TrainingSession.created_at,
}


# ============================================================================
# Score helpers
# ============================================================================


def calculate_total_score(scores: Dict) -> int:
    return sum(scores[field] for field in SCORE_FIELDS)


def calculate_average_score(scores: Dict) -> float:
    return round(calculate_total_score(scores) / 4, 2)


def get_performance_category(total_score: int) -> str:
    for threshold, label in PERFORMANCE_THRESHOLDS:
        if total_score >= threshold:
            return label
    return LOWEST_PERFORMANCE_CATEGORY


def analyze_performance(scores: Dict) -> Dict:
    """Strongest and weakest of the four drills and the spread between them."""
    ranked = sorted(SCORE_FIELDS, key=lambda f: scores[f], reverse=True)
    strongest, weakest = ranked[0], ranked[-1]
    return {
        "strongest": strongest,
        "strongest_score": scores[strongest],
        "weakest": weakest,
        "weakest_score": scores[weakest],
        "improvement": scores[strongest] - scores[weakest],
    }


def test_result_to_dict(result: TestResult) -> Dict:
    data = row_to_dict(result)
    total = calculate_total_score(data)
    data["total_score"] = total
    data["average_score"] = calculate_average_score(data)
    data["performance_category"] = get_performance_category(total)
    return data


# ============================================================================
# Tests
# ============================================================================


async def _get_test_or_404(session: AsyncSession, organization_id: int, test_id: int) -> SkillTest:
    test = await session.get(SkillTest, test_id)
    if not test or test.organization_id != organization_id:
        raise NotFoundError("Test not found")
    return test


async def create_test(session: AsyncSession, organization_id: int, data: Dict) -> Dict:
    test = SkillTest(organization_id=organization_id, **data)
    session.add(test)
    await session.flush()
    return row_to_dict(test)


async def list_tests(
    session: AsyncSession, organization_id: int, params: PaginationParams
) -> Dict:
    stmt = select(SkillTest).where(SkillTest.organization_id == organization_id)
    tests, total = await paginate(session, stmt, params, TEST_SORT_COLUMNS, "date_conducted")
    return build_page([row_to_dict(t) for t in tests], params, total)


async def get_test(session: AsyncSession, organization_id: int, test_id: int) -> Dict:
    test = await _get_test_or_404(session, organization_id, test_id)
    data = row_to_dict(test)
    result = await session.execute(
        select(TestResult, Player.name)
        .join(Player, Player.id == TestResult.player_id)
        .where(TestResult.test_id == test_id)
    )
    results = []
    for row, player_name in result.all():
        item = test_result_to_dict(row)
        item["player_name"] = player_name
        results.append(item)
    data["results"] = sorted(results, key=lambda r: r["total_score"], reverse=True)
    return data


async def update_test(session: AsyncSession, organization_id: int, test_id: int, data: Dict) -> Dict:
    test = await _get_test_or_404(session, organization_id, test_id)
    for key, value in data.items():
        setattr(test, key, value)
    await session.flush()
    return row_to_dict(test)


async def delete_test(session: AsyncSession, organization_id: int, test_id: int) -> None:
    test = await _get_test_or_404(session, organization_id, test_id)
    await session.delete(test)
    await session.flush()


# ============================================================================
# Test results
# ============================================================================


async def create_test_result(session: AsyncSession, organization_id: int, data: Dict) -> Dict:
    """
    Record a player's scores for a test.

    Raises:
        NotFoundError: test or player is not in this club
        ConflictError: the player already has a result for this test
    """
    await _get_test_or_404(session, organization_id, data["test_id"])
    player = await session.get(Player, data["player_id"])
    if not player or player.organization_id != organization_id:
        raise NotFoundError("Player not found")

    existing = await session.execute(
        select(TestResult.id).where(
            TestResult.player_id == data["player_id"], TestResult.test_id == data["test_id"]
        )
    )
    if existing.scalar_one_or_none():
        raise ConflictError("Player already has a result for this test")

    result = TestResult(**data)
    session.add(result)
    await session.flush()
    return test_result_to_dict(result)


async def _get_result_or_404(
    session: AsyncSession, organization_id: int, result_id: int
) -> TestResult:
    result = await session.execute(
        select(TestResult)
        .join(SkillTest, SkillTest.id == TestResult.test_id)
        .where(TestResult.id == result_id, SkillTest.organization_id == organization_id)
    )
    row = result.scalar_one_or_none()
    if not row:
        raise NotFoundError("Test result not found")
    return row


async def list_test_results(
    session: AsyncSession,
    organization_id: int,
    test_id: Optional[int] = None,
    player_id: Optional[int] = None,
) -> List[Dict]:
    stmt = (
        select(TestResult)
        .join(SkillTest, SkillTest.id == TestResult.test_id)
        .where(SkillTest.organization_id == organization_id)
        .order_by(SkillTest.date_conducted.desc(), TestResult.id)
    )
    if test_id is not None:
        stmt = stmt.where(TestResult.test_id == test_id)
    if player_id is not None:
        stmt = stmt.where(TestResult.player_id == player_id)
    result = await session.execute(stmt)
    return [test_result_to_dict(r) for r in result.scalars().all()]


async def get_test_result(session: AsyncSession, organization_id: int, result_id: int) -> Dict:
    row = await _get_result_or_404(session, organization_id, result_id)
    data = test_result_to_dict(row)
    data["analysis"] = analyze_performance(data)
    return data


async def update_test_result(
    session: AsyncSession, organization_id: int, result_id: int, data: Dict
) -> Dict:
    row = await _get_result_or_404(session, organization_id, result_id)
    for key, value in data.items():
        setattr(row, key, value)
    await session.flush()
    return test_result_to_dict(row)


async def delete_test_result(session: AsyncSession, organization_id: int, result_id: int) -> None:
    row = await _get_result_or_404(session, organization_id, result_id)
    await session.delete(row)
    await session.flush()


# ============================================================================
# Training sessions
# ============================================================================


def _training_session_to_dict(training: TrainingSession) -> Dict:
    data = row_to_dict(training)
    data["coaches"] = [{"id": c.id, "name": c.name} for c in training.coaches]
    return data


async def _load_coaches(session: AsyncSession, organization_id: int, coach_ids: List[int]):
    if not coach_ids:
        return []
    result = await session.execute(
        select(Coach).where(Coach.id.in_(coach_ids), Coach.organization_id == organization_id)
    )
    coaches = list(result.scalars().all())
    if len(coaches) != len(set(coach_ids)):
        raise BadRequestError("All coaches must belong to the organization")
    return coaches


async def _get_training_session_or_404(
    session: AsyncSession, organization_id: int, training_session_id: int
) -> TrainingSession:
    training = await session.get(TrainingSession, training_session_id)
    if not training or training.organization_id != organization_id:
        raise NotFoundError("Training session not found")
    return training


async def create_training_session(
    session: AsyncSession, organization_id: int, data: Dict
) -> Dict:
    coach_ids = data.pop("coach_ids", None) or []
    training = TrainingSession(organization_id=organization_id, **data)
    training.coaches = await _load_coaches(session, organization_id, coach_ids)
    session.add(training)
    await session.flush()
    return _training_session_to_dict(training)


async def list_training_sessions(
    session: AsyncSession, organization_id: int, params: PaginationParams
) -> Dict:
    stmt = select(TrainingSession).where(TrainingSession.organization_id == organization_id)
    rows, total = await paginate(session, stmt, params, SESSION_SORT_COLUMNS, "date")
    return build_page([_training_session_to_dict(t) for t in rows], params, total)


async def get_training_session(
    session: AsyncSession, organization_id: int, training_session_id: int
) -> Dict:
    training = await _get_training_session_or_404(session, organization_id, training_session_id)
    return _training_session_to_dict(training)


async def update_training_session(
    session: AsyncSession, organization_id: int, training_session_id: int, data: Dict
) -> Dict:
    training = await _get_training_session_or_404(session, organization_id, training_session_id)
    coach_ids = data.pop("coach_ids", None)
    for key, value in data.items():
        setattr(training, key, value)
    if coach_ids is not None:
        training.coaches = await _load_coaches(session, organization_id, coach_ids)
    await session.flush()
    return _training_session_to_dict(training)


async def delete_training_session(
    session: AsyncSession, organization_id: int, training_session_id: int
) -> None:
    training = await _get_training_session_or_404(session, organization_id, training_session_id)
    await session.delete(training)
    await session.flush()


# ============================================================================
# Attendance
# ============================================================================


async def get_attendance(
    session: AsyncSession, organization_id: int, training_session_id: int
) -> List[Dict]:
    """
    One row per club player; players without a record show as pending.
    """
    await _get_training_session_or_404(session, organization_id, training_session_id)
    players = (
        await session.execute(
            select(Player).where(Player.organization_id == organization_id).order_by(Player.name)
        )
    ).scalars().all()
    records = (
        await session.execute(
            select(TrainingSessionAttendance).where(
                TrainingSessionAttendance.training_session_id == training_session_id
            )
        )
    ).scalars().all()
    by_player = {r.player_id: r for r in records}

    rows = []
    for player in players:
        record = by_player.get(player.id)
        rows.append(
            {
                "player_id": player.id,
                "player_name": player.name,
                "attendance_id": record.id if record else None,
                "status": row_to_dict(record)["status"] if record else AttendanceStatus.PENDING.value,
                "notes": record.notes if record else None,
            }
        )
    return rows


async def bulk_upsert_attendance(
    session: AsyncSession,
    ctx: OrganizationContext,
    training_session_id: int,
    records: List[Dict],
) -> List[Dict]:
    """
    Insert or update attendance for many players at once.

    Every player is validated against the session's club before anything is
    written, so one foreign player rejects the whole batch.

    Raises:
        ForbiddenError: caller is not club staff
        BadRequestError: a player is not in the session's club
    """
    organization_id = ctx.require_org_staff()
    training = await _get_training_session_or_404(session, organization_id, training_session_id)

    player_ids = {r["player_id"] for r in records}
    if player_ids:
        result = await session.execute(
            select(Player.id).where(
                Player.id.in_(player_ids), Player.organization_id == training.organization_id
            )
        )
        valid_ids = set(result.scalars().all())
        invalid = sorted(player_ids - valid_ids)
        if invalid:
            raise BadRequestError(
                "All players must belong to the training session's organization",
                details={"invalid_player_ids": invalid},
            )

    existing = {
        r.player_id: r
        for r in (
            await session.execute(
                select(TrainingSessionAttendance).where(
                    TrainingSessionAttendance.training_session_id == training_session_id,
                    TrainingSessionAttendance.player_id.in_(player_ids),
                )
            )
        ).scalars().all()
    }

    saved = []
    for record in records:
        row = existing.get(record["player_id"])
        if row is None:
            row = TrainingSessionAttendance(
                training_session_id=training_session_id, player_id=record["player_id"]
            )
            session.add(row)
            existing[record["player_id"]] = row
        row.status = AttendanceStatus(record["status"])
        row.notes = record.get("notes")
        saved.append(row)

    await session.flush()
    logger.info(f"Saved {len(saved)} attendance records for training session {training_session_id}")
    return [row_to_dict(r) for r in saved]


# ============================================================================
# Attendance statistics
# ============================================================================

ATTENDED = (AttendanceStatus.PRESENT, AttendanceStatus.LATE)
ABSENT = (AttendanceStatus.ABSENT_EXCUSED, AttendanceStatus.ABSENT_UNEXCUSED)


def summarize_attendance(statuses: List[AttendanceStatus]) -> Dict:
    """Counts per outcome; late counts as present."""
    return {
        "total": len(statuses),
        "present": sum(1 for s in statuses if s in ATTENDED),
        "absent": sum(1 for s in statuses if s in ABSENT),
        "excused": sum(1 for s in statuses if s == AttendanceStatus.ABSENT_EXCUSED),
        "pending": sum(1 for s in statuses if s == AttendanceStatus.PENDING),
    }


def attendance_rate(statuses: List[AttendanceStatus]) -> int:
    """Percentage of sessions attended or excused, rounded to a whole number."""
    if not statuses:
        return 0
    counted = sum(1 for s in statuses if s in ATTENDED or s == AttendanceStatus.ABSENT_EXCUSED)
    return round(counted * 100 / len(statuses))


def _attendance_query(start_date: Optional[date], end_date: Optional[date], status: Optional[str]):
    stmt = select(TrainingSessionAttendance, TrainingSession).join(
        TrainingSession, TrainingSession.id == TrainingSessionAttendance.training_session_id
    )
    if start_date is not None:
        stmt = stmt.where(TrainingSession.date >= start_date)
    if end_date is not None:
        stmt = stmt.where(TrainingSession.date <= end_date)
    if status:
        stmt = stmt.where(TrainingSessionAttendance.status == AttendanceStatus(status))
    return stmt


async def get_club_attendance_stats(
    session: AsyncSession,
    organization_id: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    status: Optional[str] = None,
) -> Dict:
    """Club-wide attendance counts plus per-player rates, best attendance first."""
    stmt = (
        _attendance_query(start_date, end_date, status)
        .add_columns(Player.name)
        .join(Player, Player.id == TrainingSessionAttendance.player_id)
        .where(Player.organization_id == organization_id)
    )
    rows = (await session.execute(stmt)).all()

    by_player: Dict[int, Dict] = {}
    for record, _, player_name in rows:
        entry = by_player.setdefault(
            record.player_id, {"player_name": player_name, "statuses": []}
        )
        entry["statuses"].append(AttendanceStatus(record.status))

    player_stats = []
    for player_id, entry in by_player.items():
        summary = summarize_attendance(entry["statuses"])
        player_stats.append(
            {
                "player_id": player_id,
                "player_name": entry["player_name"],
                "total": summary["total"],
                "present": summary["present"],
                "absent": summary["absent"],
                "attendance_rate": attendance_rate(entry["statuses"]),
            }
        )
    player_stats.sort(key=lambda p: (-p["attendance_rate"], p["player_name"]))

    return {
        "stats": summarize_attendance([AttendanceStatus(r[0].status) for r in rows]),
        "player_count": len(by_player),
        "player_stats": player_stats,
    }


async def get_my_attendance(
    session: AsyncSession,
    user_id: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    status: Optional[str] = None,
) -> Dict:
    """Attendance records of the player profile linked to a user account."""
    player = (
        await session.execute(select(Player).where(Player.user_id == user_id))
    ).scalar_one_or_none()
    if not player:
        raise NotFoundError("No player profile found for this user")

    stmt = (
        _attendance_query(start_date, end_date, status)
        .where(TrainingSessionAttendance.player_id == player.id)
        .order_by(TrainingSession.date.desc())
    )
    rows = (await session.execute(stmt)).all()
    records = []
    for record, training in rows:
        item = row_to_dict(record)
        item["session"] = {
            "id": training.id,
            "title": training.title,
            "date": training.date.isoformat(),
            "start_time": training.start_time,
            "location": training.location,
        }
        records.append(item)

    return {
        "player": {"id": player.id, "name": player.name},
        "records": records,
        "stats": summarize_attendance([AttendanceStatus(r[0].status) for r in rows]),
    }

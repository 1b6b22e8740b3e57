"""Skill test, test result, training session and attendance route handlers."""

from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.routes import API_PREFIX
from backend.database.db import get_db_session
from backend.services import training_service
from backend.services.access import OrganizationContext
from backend.api.auth_dependencies import get_current_user, require_org_member, require_org_staff
from backend.database.models import AttendanceStatus
from backend.models.schemas import (
    AttendanceBulkRequest,
    SkillTestCreate,
    SkillTestUpdate,
    TestResultCreate,
    TestResultUpdate,
    TrainingSessionCreate,
    TrainingSessionUpdate,
)
from backend.utils.pagination import PaginationParams, pagination_params

router = APIRouter()


# ---------------------------------------------------------------------------
# Skill tests
# ---------------------------------------------------------------------------


@router.get(f"{API_PREFIX}/tests", response_model=Dict[str, Any])
async def list_tests(
    params: PaginationParams = Depends(pagination_params),
    ctx: OrganizationContext = Depends(require_org_member),
    session: AsyncSession = Depends(get_db_session),
):
    return await training_service.list_tests(session, ctx.organization_id, params)


@router.post(f"{API_PREFIX}/tests", response_model=Dict[str, Any], status_code=201)
async def create_test(
    payload: SkillTestCreate,
    ctx: OrganizationContext = Depends(require_org_staff),
    session: AsyncSession = Depends(get_db_session),
):
    return await training_service.create_test(session, ctx.organization_id, payload.model_dump())


@router.get(f"{API_PREFIX}/tests/{{test_id}}", response_model=Dict[str, Any])
async def get_test(
    test_id: int,
    ctx: OrganizationContext = Depends(require_org_member),
    session: AsyncSession = Depends(get_db_session),
):
    """A test with its results, best total first."""
    return await training_service.get_test(session, ctx.organization_id, test_id)


@router.patch(f"{API_PREFIX}/tests/{{test_id}}", response_model=Dict[str, Any])
async def update_test(
    test_id: int,
    payload: SkillTestUpdate,
    ctx: OrganizationContext = Depends(require_org_staff),
    session: AsyncSession = Depends(get_db_session),
):
    return await training_service.update_test(
        session, ctx.organization_id, test_id, payload.model_dump(exclude_unset=True)
    )


@router.delete(f"{API_PREFIX}/tests/{{test_id}}", status_code=204)
async def delete_test(
    test_id: int,
    ctx: OrganizationContext = Depends(require_org_staff),
    session: AsyncSession = Depends(get_db_session),
):
    await training_service.delete_test(session, ctx.organization_id, test_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Test results
# ---------------------------------------------------------------------------


@router.get(f"{API_PREFIX}/test-results", response_model=List[Dict[str, Any]])
async def list_test_results(
    test_id: Optional[int] = Query(None, alias="testId"),
    player_id: Optional[int] = Query(None, alias="playerId"),
    ctx: OrganizationContext = Depends(require_org_member),
    session: AsyncSession = Depends(get_db_session),
):
    return await training_service.list_test_results(
        session, ctx.organization_id, test_id=test_id, player_id=player_id
    )


@router.post(f"{API_PREFIX}/test-results", response_model=Dict[str, Any], status_code=201)
async def create_test_result(
    payload: TestResultCreate,
    ctx: OrganizationContext = Depends(require_org_staff),
    session: AsyncSession = Depends(get_db_session),
):
    return await training_service.create_test_result(
        session, ctx.organization_id, payload.model_dump()
    )


@router.get(f"{API_PREFIX}/test-results/{{result_id}}", response_model=Dict[str, Any])
async def get_test_result(
    result_id: int,
    ctx: OrganizationContext = Depends(require_org_member),
    session: AsyncSession = Depends(get_db_session),
):
    return await training_service.get_test_result(session, ctx.organization_id, result_id)


@router.patch(f"{API_PREFIX}/test-results/{{result_id}}", response_model=Dict[str, Any])
async def update_test_result(
    result_id: int,
    payload: TestResultUpdate,
    ctx: OrganizationContext = Depends(require_org_staff),
    session: AsyncSession = Depends(get_db_session),
):
    return await training_service.update_test_result(
        session, ctx.organization_id, result_id, payload.model_dump(exclude_unset=True)
    )


@router.delete(f"{API_PREFIX}/test-results/{{result_id}}", status_code=204)
async def delete_test_result(
    result_id: int,
    ctx: OrganizationContext = Depends(require_org_staff),
    session: AsyncSession = Depends(get_db_session),
):
    await training_service.delete_test_result(session, ctx.organization_id, result_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Training sessions and attendance
# ---------------------------------------------------------------------------


@router.get(f"{API_PREFIX}/training-sessions", response_model=Dict[str, Any])
async def list_training_sessions(
    params: PaginationParams = Depends(pagination_params),
    ctx: OrganizationContext = Depends(require_org_member),
    session: AsyncSession = Depends(get_db_session),
):
    return await training_service.list_training_sessions(session, ctx.organization_id, params)


@router.post(f"{API_PREFIX}/training-sessions", response_model=Dict[str, Any], status_code=201)
async def create_training_session(
    payload: TrainingSessionCreate,
    ctx: OrganizationContext = Depends(require_org_staff),
    session: AsyncSession = Depends(get_db_session),
):
    return await training_service.create_training_session(
        session, ctx.organization_id, payload.model_dump()
    )


@router.get(
    f"{API_PREFIX}/training-sessions/{{training_session_id}}", response_model=Dict[str, Any]
)
async def get_training_session(
    training_session_id: int,
    ctx: OrganizationContext = Depends(require_org_member),
    session: AsyncSession = Depends(get_db_session),
):
    return await training_service.get_training_session(
        session, ctx.organization_id, training_session_id
    )


@router.patch(
    f"{API_PREFIX}/training-sessions/{{training_session_id}}", response_model=Dict[str, Any]
)
async def update_training_session(
    training_session_id: int,
    payload: TrainingSessionUpdate,
    ctx: OrganizationContext = Depends(require_org_staff),
    session: AsyncSession = Depends(get_db_session),
):
    return await training_service.update_training_session(
        session, ctx.organization_id, training_session_id, payload.model_dump(exclude_unset=True)
    )


@router.delete(f"{API_PREFIX}/training-sessions/{{training_session_id}}", status_code=204)
async def delete_training_session(
    training_session_id: int,
    ctx: OrganizationContext = Depends(require_org_staff),
    session: AsyncSession = Depends(get_db_session),
):
    await training_service.delete_training_session(
        session, ctx.organization_id, training_session_id
    )
    return Response(status_code=204)


@router.get(
    f"{API_PREFIX}/training-sessions/{{training_session_id}}/attendance",
    response_model=List[Dict[str, Any]],
)
async def get_attendance(
    training_session_id: int,
    ctx: OrganizationContext = Depends(require_org_member),
    session: AsyncSession = Depends(get_db_session),
):
    return await training_service.get_attendance(session, ctx.organization_id, training_session_id)


@router.put(
    f"{API_PREFIX}/training-sessions/{{training_session_id}}/attendance",
    response_model=List[Dict[str, Any]],
)
async def bulk_upsert_attendance(
    training_session_id: int,
    payload: AttendanceBulkRequest,
    ctx: OrganizationContext = Depends(require_org_staff),
    session: AsyncSession = Depends(get_db_session),
):
    """Insert or update attendance for many players in one transaction."""
    return await training_service.bulk_upsert_attendance(
        session, ctx, training_session_id, [r.model_dump() for r in payload.records]
    )


# ---------------------------------------------------------------------------
# Attendance statistics
# ---------------------------------------------------------------------------


@router.get(f"{API_PREFIX}/attendance/club", response_model=Dict[str, Any])
async def get_club_attendance_stats(
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    status: Optional[AttendanceStatus] = Query(None),
    ctx: OrganizationContext = Depends(require_org_staff),
    session: AsyncSession = Depends(get_db_session),
):
    return await training_service.get_club_attendance_stats(
        session,
        ctx.organization_id,
        start_date=start_date,
        end_date=end_date,
        status=status.value if status else None,
    )


@router.get(f"{API_PREFIX}/players/me/attendance", response_model=Dict[str, Any])
async def get_my_attendance(
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    status: Optional[AttendanceStatus] = Query(None),
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Attendance of the player profile linked to the signed-in user."""
    return await training_service.get_my_attendance(
        session,
        user["id"],
        start_date=start_date,
        end_date=end_date,
        status=status.value if status else None,
    )

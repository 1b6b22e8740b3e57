"""
Pydantic models for API request validation.
"""

import datetime as dt
import re
from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from backend.database.models import (
    AttendanceStatus,
    CompetitionScope,
    EditionStatus,
    EventFormat,
    EventGender,
    EventType,
    FederationMemberStatus,
    FederationRole,
    Gender,
    MemberRole,
    NoteType,
    PreferredHand,
    RequestStatus,
    SeasonStatus,
    UserRole,
    Visibility,
)
from backend.utils.constants import FEDERATION_ID_NUMBER_PATTERN, POSITION_KEYS


def _check_federation_id_number(value: Optional[str]) -> Optional[str]:
    if value is not None and not re.match(FEDERATION_ID_NUMBER_PATTERN, value):
        raise ValueError("must contain only uppercase letters, digits and dashes")
    return value


# Authentication schemas


class SignupRequest(BaseModel):
    """Request to create a user account."""

    email: str
    password: str = Field(min_length=8)
    name: str = Field(min_length=1, max_length=255)


class LoginRequest(BaseModel):
    email: str
    password: str


class AuthResponse(BaseModel):
    """Authentication response with JWT token."""

    access_token: str
    token_type: str = "bearer"
    user_id: int
    email: str


class UserRolesUpdate(BaseModel):
    """System admin change of a user's role or federation assignment."""

    role: Optional[UserRole] = None
    federation_id: Optional[int] = None
    federation_role: Optional[FederationRole] = None
    clear_federation: bool = False


# Organization schemas


class OrganizationCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    slug: Optional[str] = None
    logo: Optional[str] = None
    metadata: Optional[Dict] = None


class OrganizationUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    slug: Optional[str] = None
    logo: Optional[str] = None
    metadata: Optional[Dict] = None


class MemberCreate(BaseModel):
    """Add a user to a club by id or by email."""

    user_id: Optional[int] = None
    email: Optional[str] = None
    role: MemberRole = MemberRole.MEMBER

    @model_validator(mode="after")
    def validate_user_or_email(self):
        if self.user_id is None and not self.email:
            raise ValueError("Either user_id or email must be provided")
        return self


class MemberRoleUpdate(BaseModel):
    role: MemberRole


# Player, coach and note schemas


class PlayerCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    date_of_birth: Optional[date] = None
    gender: Gender
    preferred_hand: PreferredHand = PreferredHand.RIGHT
    user_id: Optional[int] = None


class PlayerUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None
    preferred_hand: Optional[PreferredHand] = None
    user_id: Optional[int] = None


class CoachCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    user_id: Optional[int] = None


class CoachUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    user_id: Optional[int] = None


class NoteCreate(BaseModel):
    content: str = Field(min_length=1)
    note_type: NoteType = NoteType.GENERAL


class NoteUpdate(BaseModel):
    content: Optional[str] = Field(default=None, min_length=1)
    note_type: Optional[NoteType] = None


# Skill test and training schemas


class SkillTestCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    playing_time: int = Field(gt=0)
    recovery_time: int = Field(ge=0)
    date_conducted: date
    description: Optional[str] = None


class SkillTestUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    playing_time: Optional[int] = Field(default=None, gt=0)
    recovery_time: Optional[int] = Field(default=None, ge=0)
    date_conducted: Optional[date] = None
    description: Optional[str] = None


class TestResultCreate(BaseModel):
    test_id: int
    player_id: int
    left_hand_score: int = Field(ge=0)
    right_hand_score: int = Field(ge=0)
    forehand_score: int = Field(ge=0)
    backhand_score: int = Field(ge=0)


class TestResultUpdate(BaseModel):
    left_hand_score: Optional[int] = Field(default=None, ge=0)
    right_hand_score: Optional[int] = Field(default=None, ge=0)
    forehand_score: Optional[int] = Field(default=None, ge=0)
    backhand_score: Optional[int] = Field(default=None, ge=0)


class TrainingSessionCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    date: dt.date
    start_time: Optional[str] = Field(default=None, pattern=r"^\d{2}:\d{2}$")
    end_time: Optional[str] = Field(default=None, pattern=r"^\d{2}:\d{2}$")
    location: Optional[str] = None
    description: Optional[str] = None
    coach_ids: List[int] = []


class TrainingSessionUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    date: Optional[dt.date] = None
    start_time: Optional[str] = Field(default=None, pattern=r"^\d{2}:\d{2}$")
    end_time: Optional[str] = Field(default=None, pattern=r"^\d{2}:\d{2}$")
    location: Optional[str] = None
    description: Optional[str] = None
    coach_ids: Optional[List[int]] = None


class AttendanceRecord(BaseModel):
    player_id: int
    status: AttendanceStatus
    notes: Optional[str] = None


class AttendanceBulkRequest(BaseModel):
    records: List[AttendanceRecord] = Field(min_length=1)


# Federation schemas


class FederationCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None


class FederationUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None


class FederationClubCreate(BaseModel):
    organization_id: int


class FederationMemberStatusUpdate(BaseModel):
    status: FederationMemberStatus


class FederationRequestCreate(BaseModel):
    federation_id: int
    player_id: int


class FederationRequestReview(BaseModel):
    """Approve or reject a pending federation player request."""

    status: RequestStatus
    rejection_reason: Optional[str] = None
    federation_registration_number: Optional[str] = None

    @field_validator("federation_registration_number")
    @classmethod
    def validate_number(cls, value: Optional[str]) -> Optional[str]:
        return _check_federation_id_number(value)

    @model_validator(mode="after")
    def validate_decision(self):
        if self.status not in (RequestStatus.APPROVED, RequestStatus.REJECTED):
            raise ValueError("status must be approved or rejected")
        if self.status == RequestStatus.REJECTED and not self.rejection_reason:
            raise ValueError("rejection_reason is required when rejecting")
        if self.status == RequestStatus.APPROVED and not self.federation_registration_number:
            raise ValueError("federation_registration_number is required when approving")
        return self


class FederationRequestBulkCreate(BaseModel):
    federation_id: int
    player_ids: List[int] = Field(min_length=1)


class FederationClubRequestCreate(BaseModel):
    federation_id: int


class FederationClubRequestReview(BaseModel):
    """Approve or reject a pending request from a club to join a federation."""

    status: RequestStatus
    rejection_reason: Optional[str] = None

    @model_validator(mode="after")
    def validate_decision(self):
        if self.status not in (RequestStatus.APPROVED, RequestStatus.REJECTED):
            raise ValueError("status must be approved or rejected")
        if self.status == RequestStatus.REJECTED and not self.rejection_reason:
            raise ValueError("rejection_reason is required when rejecting")
        return self


# Season schemas


class SeasonCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    start_year: int = Field(ge=1900, le=2200)
    end_year: int = Field(ge=1900, le=2200)
    season_start_date: date
    season_end_date: date
    first_registration_start_date: Optional[date] = None
    first_registration_end_date: Optional[date] = None
    second_registration_start_date: Optional[date] = None
    second_registration_end_date: Optional[date] = None
    max_age_groups_per_player: int = Field(default=1, ge=1)
    status: SeasonStatus = SeasonStatus.DRAFT

    @model_validator(mode="after")
    def validate_years(self):
        if self.end_year != self.start_year + 1:
            raise ValueError("end_year must be start_year + 1")
        if self.season_end_date <= self.season_start_date:
            raise ValueError("season_end_date must be after season_start_date")
        return self


class SeasonUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    start_year: Optional[int] = Field(default=None, ge=1900, le=2200)
    end_year: Optional[int] = Field(default=None, ge=1900, le=2200)
    season_start_date: Optional[date] = None
    season_end_date: Optional[date] = None
    first_registration_start_date: Optional[date] = None
    first_registration_end_date: Optional[date] = None
    second_registration_start_date: Optional[date] = None
    second_registration_end_date: Optional[date] = None
    max_age_groups_per_player: Optional[int] = Field(default=None, ge=1)
    status: Optional[SeasonStatus] = None


class AgeGroupCreate(BaseModel):
    code: str = Field(min_length=1, max_length=20)
    name: str = Field(min_length=1, max_length=100)
    min_age: Optional[int] = Field(default=None, ge=0)
    max_age: Optional[int] = Field(default=None, ge=0)
    display_order: int = 0

    @model_validator(mode="after")
    def validate_range(self):
        if self.min_age is not None and self.max_age is not None and self.max_age < self.min_age:
            raise ValueError("max_age must be greater than or equal to min_age")
        return self


class AgeGroupUpdate(BaseModel):
    code: Optional[str] = Field(default=None, min_length=1, max_length=20)
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    min_age: Optional[int] = Field(default=None, ge=0)
    max_age: Optional[int] = Field(default=None, ge=0)
    display_order: Optional[int] = None


class SeasonRegistrationCreate(BaseModel):
    player_id: int
    season_age_group_id: int


class BulkRegistrationItem(BaseModel):
    player_id: int
    age_group_ids: List[int] = Field(min_length=1)


class BulkRegistrationRequest(BaseModel):
    registrations: List[BulkRegistrationItem] = Field(min_length=1)


class PlayersEligibilityRequest(BaseModel):
    player_ids: List[int]


class RegistrationApproval(BaseModel):
    federation_id_number: Optional[str] = None

    @field_validator("federation_id_number")
    @classmethod
    def validate_number(cls, value: Optional[str]) -> Optional[str]:
        return _check_federation_id_number(value)


class RegistrationRejection(BaseModel):
    reason: str = Field(min_length=1)


# Championship schemas


class ChampionshipCreate(BaseModel):
    federation_id: int
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    competition_scope: CompetitionScope = CompetitionScope.CLUBS


class ChampionshipUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    competition_scope: Optional[CompetitionScope] = None


class EditionCreate(BaseModel):
    year: int = Field(ge=1900, le=2200)
    season_id: Optional[int] = None
    status: EditionStatus = EditionStatus.DRAFT
    registration_start_date: Optional[date] = None
    registration_end_date: Optional[date] = None


class EditionUpdate(BaseModel):
    year: Optional[int] = Field(default=None, ge=1900, le=2200)
    season_id: Optional[int] = None
    status: Optional[EditionStatus] = None
    registration_start_date: Optional[date] = None
    registration_end_date: Optional[date] = None


class PlacementTierCreate(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    display_name: Optional[str] = None
    description: Optional[str] = None
    rank: int = Field(ge=1)


class PlacementTierUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    display_name: Optional[str] = None
    description: Optional[str] = None
    rank: Optional[int] = Field(default=None, ge=1)


class PointsSchemaCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None


class PointsSchemaUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None


class PointsSchemaEntryCreate(BaseModel):
    placement_tier_id: int
    points: int = Field(ge=0)


class PointsSchemaEntryUpdate(BaseModel):
    points: int = Field(ge=0)


class EventResultItem(BaseModel):
    registration_id: int
    final_position: Optional[int] = Field(default=None, ge=1)
    placement_tier_id: int


class EventResultsRequest(BaseModel):
    results: List[EventResultItem]


# Event schemas


class EventCreate(BaseModel):
    """
    Request to create an event.

    Cross-field rules that also depend on the stored row (player limits,
    points for groups format) are re-checked by the event service.
    """

    name: str = Field(min_length=1, max_length=255)
    championship_edition_id: Optional[int] = None
    points_schema_id: Optional[int] = None
    event_type: EventType
    gender: EventGender
    format: EventFormat
    visibility: Visibility = Visibility.PUBLIC
    registration_start_date: Optional[date] = None
    registration_end_date: Optional[date] = None
    event_dates: Optional[List[date]] = None
    best_of: int = Field(default=3, ge=1)
    points_per_win: Optional[int] = None
    points_per_loss: Optional[int] = None
    min_players: Optional[int] = Field(default=None, ge=1)
    max_players: Optional[int] = Field(default=None, ge=1)
    players_per_heat: Optional[int] = Field(default=None, ge=1)
    has_third_place_match: bool = False

    @field_validator("best_of")
    @classmethod
    def validate_best_of(cls, value: int) -> int:
        if value % 2 == 0:
            raise ValueError("best_of must be an odd number")
        return value

    @model_validator(mode="after")
    def validate_event(self):
        if (
            self.min_players is not None
            and self.max_players is not None
            and self.min_players > self.max_players
        ):
            raise ValueError("max_players must be >= min_players")
        if self.format in (EventFormat.GROUPS, EventFormat.GROUPS_KNOCKOUT) and (
            self.points_per_win is None or self.points_per_loss is None
        ):
            raise ValueError("points_per_win and points_per_loss are required for groups format")
        return self


class EventUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    points_schema_id: Optional[int] = None
    event_type: Optional[EventType] = None
    gender: Optional[EventGender] = None
    format: Optional[EventFormat] = None
    visibility: Optional[Visibility] = None
    registration_start_date: Optional[date] = None
    registration_end_date: Optional[date] = None
    event_dates: Optional[List[date]] = None
    best_of: Optional[int] = Field(default=None, ge=1)
    points_per_win: Optional[int] = None
    points_per_loss: Optional[int] = None
    min_players: Optional[int] = Field(default=None, ge=1)
    max_players: Optional[int] = Field(default=None, ge=1)
    players_per_heat: Optional[int] = Field(default=None, ge=1)
    has_third_place_match: Optional[bool] = None


class RegistrationPlayerInput(BaseModel):
    player_id: int
    position: Optional[str] = None
    order: Optional[int] = Field(default=None, ge=1)

    @field_validator("position")
    @classmethod
    def validate_position(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in POSITION_KEYS:
            raise ValueError(f"position must be one of {', '.join(POSITION_KEYS)}")
        return value


class EventRegistrationCreate(BaseModel):
    players: List[RegistrationPlayerInput] = Field(min_length=1)


class SeedUpdate(BaseModel):
    seed: Optional[int] = Field(default=None, ge=1)


class PositionScoresInput(BaseModel):
    player_id: int
    position_scores: Dict[str, Optional[int]]


class PositionScoresUpdate(BaseModel):
    players: List[PositionScoresInput] = Field(min_length=1)


class GroupCreate(BaseModel):
    registration_ids: List[int] = Field(min_length=2)


class HeatsGenerateRequest(BaseModel):
    players_per_heat: Optional[int] = Field(default=None, ge=1)
    shuffle: bool = True


class SeedInput(BaseModel):
    registration_id: int
    seed: int = Field(ge=1)


class BracketGenerateRequest(BaseModel):
    seeds: Optional[List[SeedInput]] = None
    has_third_place_match: Optional[bool] = None


# Match schemas


class MatchUpdate(BaseModel):
    match_date: Optional[datetime] = None


class SetScoreUpdate(BaseModel):
    registration1_score: int = Field(ge=0)
    registration2_score: int = Field(ge=0)

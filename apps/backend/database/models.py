"""
SQLAlchemy ORM models for the federation management system.
"""

import enum
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    Numeric,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    JSON,
    Table,
    UniqueConstraint,
    CheckConstraint,
    Index,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backend.database.db import Base

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _values_enum(enum_cls):
    """Persist enum values ("pending") rather than member names ("PENDING")."""
    return Enum(enum_cls, values_callable=lambda x: [e.value for e in x])


class UserRole(str, enum.Enum):
    """System-wide user role."""

    USER = "user"
    ADMIN = "admin"


class FederationRole(str, enum.Enum):
    """Role a user holds inside a federation."""

    ADMIN = "federation-admin"
    EDITOR = "federation-editor"


class MemberRole(str, enum.Enum):
    """Organization membership role."""

    OWNER = "owner"
    ADMIN = "admin"
    COACH = "coach"
    PLAYER = "player"
    MEMBER = "member"


class Gender(str, enum.Enum):
    MALE = "male"
    FEMALE = "female"


class EventGender(str, enum.Enum):
    MALE = "male"
    FEMALE = "female"
    MIXED = "mixed"


class PreferredHand(str, enum.Enum):
    LEFT = "left"
    RIGHT = "right"
    BOTH = "both"


class NoteType(str, enum.Enum):
    GENERAL = "general"
    TRAINING = "training"
    MEDICAL = "medical"
    BEHAVIOR = "behavior"


class AttendanceStatus(str, enum.Enum):
    """Training session attendance status."""

    PENDING = "pending"
    PRESENT = "present"
    LATE = "late"
    ABSENT_EXCUSED = "absent_excused"
    ABSENT_UNEXCUSED = "absent_unexcused"
    SUSPENDED = "suspended"


class FederationMemberStatus(str, enum.Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    REVOKED = "revoked"


class RequestStatus(str, enum.Enum):
    """Federation player and club request status."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class SeasonStatus(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    CLOSED = "closed"
    ARCHIVED = "archived"


class SeasonRegistrationStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class AgeWarningType(str, enum.Enum):
    TOO_YOUNG = "too_young"
    TOO_OLD = "too_old"


class PaymentStatus(str, enum.Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    REFUNDED = "refunded"


class CompetitionScope(str, enum.Enum):
    CLUBS = "clubs"
    FEDERATION = "federation"


class EditionStatus(str, enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class EventType(str, enum.Enum):
    SINGLES = "singles"
    DOUBLES = "doubles"
    SINGLES_TEAMS = "singles-teams"
    SUPER_SOLO = "super-solo"
    SPEED_SOLO = "speed-solo"
    JUNIORS_SOLO = "juniors-solo"
    SOLO_TEAMS = "solo-teams"
    SPEED_SOLO_TEAMS = "speed-solo-teams"
    RELAY = "relay"


class EventFormat(str, enum.Enum):
    GROUPS = "groups"
    SINGLE_ELIMINATION = "single-elimination"
    GROUPS_KNOCKOUT = "groups-knockout"
    DOUBLE_ELIMINATION = "double-elimination"
    TESTS = "tests"


class Visibility(str, enum.Enum):
    PUBLIC = "public"
    PRIVATE = "private"


class BracketType(str, enum.Enum):
    WINNERS = "winners"
    LOSERS = "losers"


# ============================================================================
# Identity and clubs
# ============================================================================


class User(Base):
    """Authenticated account. Federation roles are scoped by federation_id."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    password_hash = Column(String, nullable=False)
    role = Column(_values_enum(UserRole), default=UserRole.USER, nullable=False)
    federation_id = Column(
        Integer, ForeignKey("federations.id", ondelete="SET NULL"), nullable=True
    )
    federation_role = Column(_values_enum(FederationRole), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    memberships = relationship(
        "Member", back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (Index("idx_users_email", "email"),)


class Organization(Base):
    """A club (tenant)."""

    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True)
    logo = Column(String, nullable=True)
    metadata_json = Column("metadata", JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    members = relationship(
        "Member", back_populates="organization", cascade="all, delete-orphan", passive_deletes=True
    )


class Member(Base):
    """Organization membership."""

    __tablename__ = "members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role = Column(_values_enum(MemberRole), default=MemberRole.MEMBER, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    organization = relationship("Organization", back_populates="members")
    user = relationship("User", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_members_org_user"),
        Index("idx_members_user_id", "user_id"),
    )


class Player(Base):
    __tablename__ = "players"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    date_of_birth = Column(Date, nullable=True)
    gender = Column(_values_enum(Gender), nullable=False)
    preferred_hand = Column(_values_enum(PreferredHand), default=PreferredHand.RIGHT, nullable=False)
    organization_id = Column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, unique=True
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("idx_players_organization_id", "organization_id"),
        Index("idx_players_name", "name"),
    )


training_session_coaches = Table(
    "training_session_coaches",
    Base.metadata,
    Column(
        "training_session_id",
        Integer,
        ForeignKey("training_sessions.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column("coach_id", Integer, ForeignKey("coaches.id", ondelete="CASCADE"), primary_key=True),
)


class Coach(Base):
    __tablename__ = "coaches"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    organization_id = Column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, unique=True
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (Index("idx_coaches_organization_id", "organization_id"),)


class PlayerNote(Base):
    __tablename__ = "player_notes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    player_id = Column(Integer, ForeignKey("players.id", ondelete="CASCADE"), nullable=False)
    author_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    note_type = Column(_values_enum(NoteType), default=NoteType.GENERAL, nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (Index("idx_player_notes_player_id", "player_id"),)


# ============================================================================
# Tests and training
# ============================================================================


class SkillTest(Base):
    """A skill test session (timed drills scored per hand/side)."""

    __tablename__ = "tests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    playing_time = Column(Integer, nullable=False)
    recovery_time = Column(Integer, nullable=False)
    date_conducted = Column(Date, nullable=False)
    description = Column(Text, nullable=True)
    organization_id = Column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class TestResult(Base):
    __tablename__ = "test_results"
    __test__ = False  # not a pytest class

    id = Column(Integer, primary_key=True, autoincrement=True)
    player_id = Column(Integer, ForeignKey("players.id", ondelete="CASCADE"), nullable=False)
    test_id = Column(Integer, ForeignKey("tests.id", ondelete="CASCADE"), nullable=False)
    left_hand_score = Column(Integer, nullable=False)
    right_hand_score = Column(Integer, nullable=False)
    forehand_score = Column(Integer, nullable=False)
    backhand_score = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("player_id", "test_id", name="unique_player_test"),
        CheckConstraint("left_hand_score >= 0", name="chk_left_hand_score_non_negative"),
        CheckConstraint("right_hand_score >= 0", name="chk_right_hand_score_non_negative"),
        CheckConstraint("forehand_score >= 0", name="chk_forehand_score_non_negative"),
        CheckConstraint("backhand_score >= 0", name="chk_backhand_score_non_negative"),
    )


class TrainingSession(Base):
    __tablename__ = "training_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    date = Column(Date, nullable=False)
    start_time = Column(String(5), nullable=True)  # "HH:MM"
    end_time = Column(String(5), nullable=True)
    location = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    organization_id = Column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    coaches = relationship("Coach", secondary=training_session_coaches, lazy="selectin")

    __table_args__ = (Index("idx_training_sessions_org_date", "organization_id", "date"),)


class TrainingSessionAttendance(Base):
    __tablename__ = "training_session_attendance"

    id = Column(Integer, primary_key=True, autoincrement=True)
    training_session_id = Column(
        Integer, ForeignKey("training_sessions.id", ondelete="CASCADE"), nullable=False
    )
    player_id = Column(Integer, ForeignKey("players.id", ondelete="CASCADE"), nullable=False)
    status = Column(
        _values_enum(AttendanceStatus), default=AttendanceStatus.PENDING, nullable=False
    )
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("training_session_id", "player_id", name="uq_attendance_session_player"),
    )


# ============================================================================
# Federations and seasons
# ============================================================================


class Federation(Base):
    __tablename__ = "federations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class FederationClub(Base):
    __tablename__ = "federation_clubs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    federation_id = Column(
        Integer, ForeignKey("federations.id", ondelete="CASCADE"), nullable=False
    )
    organization_id = Column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("federation_id", "organization_id", name="uq_federation_club"),
    )


class Season(Base):
    __tablename__ = "seasons"

    id = Column(Integer, primary_key=True, autoincrement=True)
    federation_id = Column(
        Integer, ForeignKey("federations.id", ondelete="CASCADE"), nullable=False
    )
    name = Column(String(100), nullable=False)
    start_year = Column(Integer, nullable=False)
    end_year = Column(Integer, nullable=False)
    season_start_date = Column(Date, nullable=False)
    season_end_date = Column(Date, nullable=False)
    first_registration_start_date = Column(Date, nullable=True)
    first_registration_end_date = Column(Date, nullable=True)
    second_registration_start_date = Column(Date, nullable=True)
    second_registration_end_date = Column(Date, nullable=True)
    max_age_groups_per_player = Column(Integer, default=1, nullable=False)
    status = Column(_values_enum(SeasonStatus), default=SeasonStatus.DRAFT, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("federation_id", "start_year", "end_year", name="unique_federation_season"),
        CheckConstraint("end_year = start_year + 1", name="chk_year_range"),
        CheckConstraint("season_end_date > season_start_date", name="chk_season_dates"),
        CheckConstraint("max_age_groups_per_player >= 1", name="chk_max_age_groups"),
        Index("idx_seasons_federation_id", "federation_id"),
        Index("idx_seasons_status", "status"),
    )


class SeasonAgeGroup(Base):
    __tablename__ = "season_age_groups"

    id = Column(Integer, primary_key=True, autoincrement=True)
    season_id = Column(Integer, ForeignKey("seasons.id", ondelete="CASCADE"), nullable=False)
    code = Column(String(20), nullable=False)
    name = Column(String(100), nullable=False)
    min_age = Column(Integer, nullable=True)
    max_age = Column(Integer, nullable=True)
    display_order = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("season_id", "code", name="unique_season_age_group"),
        CheckConstraint(
            "min_age IS NULL OR max_age IS NULL OR max_age >= min_age", name="chk_age_range"
        ),
    )


class FederationMember(Base):
    __tablename__ = "federation_members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    federation_id = Column(
        Integer, ForeignKey("federations.id", ondelete="CASCADE"), nullable=False
    )
    player_id = Column(Integer, ForeignKey("players.id", ondelete="CASCADE"), nullable=False)
    federation_id_number = Column(String(50), nullable=False)
    first_registration_season_id = Column(
        Integer, ForeignKey("seasons.id", ondelete="SET NULL"), nullable=True
    )
    first_registration_date = Column(DateTime(timezone=True), server_default=func.now())
    status = Column(
        _values_enum(FederationMemberStatus),
        default=FederationMemberStatus.ACTIVE,
        nullable=False,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("federation_id", "player_id", name="unique_federation_member"),
        UniqueConstraint(
            "federation_id", "federation_id_number", name="unique_federation_id_number"
        ),
        Index("idx_federation_members_player_id", "player_id"),
    )


class FederationPlayerRequest(Base):
    """A club's request to register one of its players with a federation."""

    __tablename__ = "federation_player_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    federation_id = Column(
        Integer, ForeignKey("federations.id", ondelete="CASCADE"), nullable=False
    )
    player_id = Column(Integer, ForeignKey("players.id", ondelete="CASCADE"), nullable=False)
    organization_id = Column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    requested_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    status = Column(_values_enum(RequestStatus), default=RequestStatus.PENDING, nullable=False)
    rejection_reason = Column(Text, nullable=True)
    federation_registration_number = Column(String(50), nullable=True)
    reviewed_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("idx_federation_player_requests_federation", "federation_id", "status"),
        Index("idx_federation_player_requests_player", "player_id"),
    )


class FederationClubRequest(Base):
    """A club's request to join a federation."""

    __tablename__ = "federation_club_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    federation_id = Column(
        Integer, ForeignKey("federations.id", ondelete="CASCADE"), nullable=False
    )
    organization_id = Column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    requested_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    status = Column(_values_enum(RequestStatus), default=RequestStatus.PENDING, nullable=False)
    rejection_reason = Column(Text, nullable=True)
    reviewed_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("idx_federation_club_requests_federation", "federation_id", "status"),
        Index("idx_federation_club_requests_organization", "organization_id"),
    )


class SeasonPlayerRegistration(Base):
    __tablename__ = "season_player_registrations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    season_id = Column(Integer, ForeignKey("seasons.id", ondelete="CASCADE"), nullable=False)
    player_id = Column(Integer, ForeignKey("players.id", ondelete="CASCADE"), nullable=False)
    season_age_group_id = Column(
        Integer, ForeignKey("season_age_groups.id", ondelete="CASCADE"), nullable=False
    )
    organization_id = Column(
        Integer, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    player_age_at_registration = Column(Integer, nullable=False)
    registration_date = Column(DateTime(timezone=True), server_default=func.now())
    age_warning_shown = Column(Boolean, default=False)
    age_warning_type = Column(_values_enum(AgeWarningType), nullable=True)
    status = Column(
        _values_enum(SeasonRegistrationStatus),
        default=SeasonRegistrationStatus.PENDING,
        nullable=False,
    )
    approved_at = Column(DateTime(timezone=True), nullable=True)
    approved_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    payment_status = Column(_values_enum(PaymentStatus), default=PaymentStatus.UNPAID)
    payment_amount = Column(Numeric(10, 2), nullable=True)
    payment_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint(
            "season_id", "player_id", "season_age_group_id", name="unique_player_season_age_group"
        ),
        Index("idx_season_registrations_season_id", "season_id"),
        Index("idx_season_registrations_player_id", "player_id"),
        Index("idx_season_registrations_status", "status"),
        Index("idx_season_registrations_organization", "organization_id"),
    )


# ============================================================================
# Championships and scoring
# ============================================================================


class Championship(Base):
    __tablename__ = "championships"

    id = Column(Integer, primary_key=True, autoincrement=True)
    federation_id = Column(
        Integer, ForeignKey("federations.id", ondelete="CASCADE"), nullable=False
    )
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    competition_scope = Column(
        _values_enum(CompetitionScope), default=CompetitionScope.CLUBS, nullable=False
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class ChampionshipEdition(Base):
    __tablename__ = "championship_editions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    championship_id = Column(
        Integer, ForeignKey("championships.id", ondelete="CASCADE"), nullable=False
    )
    season_id = Column(Integer, ForeignKey("seasons.id", ondelete="SET NULL"), nullable=True)
    year = Column(Integer, nullable=False)
    status = Column(_values_enum(EditionStatus), default=EditionStatus.DRAFT, nullable=False)
    registration_start_date = Column(Date, nullable=True)
    registration_end_date = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("championship_id", "year", name="uq_championship_edition_year"),
        Index("idx_editions_season_id", "season_id"),
    )


class PlacementTier(Base):
    __tablename__ = "placement_tiers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(50), nullable=False, unique=True)
    display_name = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)
    rank = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class PointsSchema(Base):
    __tablename__ = "points_schemas"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class PointsSchemaEntry(Base):
    __tablename__ = "points_schema_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    points_schema_id = Column(
        Integer, ForeignKey("points_schemas.id", ondelete="CASCADE"), nullable=False
    )
    placement_tier_id = Column(
        Integer, ForeignKey("placement_tiers.id", ondelete="RESTRICT"), nullable=False
    )
    points = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("points_schema_id", "placement_tier_id", name="unique_schema_tier"),
    )


# ============================================================================
# Events and competition
# ============================================================================


class Event(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    organization_id = Column(
        Integer, ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True
    )
    championship_edition_id = Column(
        Integer, ForeignKey("championship_editions.id", ondelete="CASCADE"), nullable=True
    )
    points_schema_id = Column(
        Integer, ForeignKey("points_schemas.id", ondelete="SET NULL"), nullable=True
    )
    event_type = Column(_values_enum(EventType), nullable=False)
    gender = Column(_values_enum(EventGender), nullable=False)
    format = Column(_values_enum(EventFormat), nullable=False)
    visibility = Column(_values_enum(Visibility), default=Visibility.PUBLIC, nullable=False)
    registration_start_date = Column(Date, nullable=True)
    registration_end_date = Column(Date, nullable=True)
    event_dates = Column(JSONType, nullable=True)  # list of ISO dates
    best_of = Column(Integer, nullable=False, default=3)
    points_per_win = Column(Integer, nullable=True)
    points_per_loss = Column(Integer, nullable=True)
    min_players = Column(Integer, nullable=False, default=1)
    max_players = Column(Integer, nullable=False, default=1)
    players_per_heat = Column(Integer, nullable=True)
    has_third_place_match = Column(Boolean, default=False, nullable=False)
    completed = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("max_players >= min_players", name="chk_players_range"),
        CheckConstraint("best_of >= 1 AND best_of % 2 = 1", name="chk_best_of_odd"),
        Index("idx_events_edition_id", "championship_edition_id"),
        Index("idx_events_organization_id", "organization_id"),
    )


class Group(Base):
    """A round-robin pool or, for test events, a heat."""

    __tablename__ = "groups"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(10), nullable=False)
    completed = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (Index("idx_groups_event_id", "event_id"),)


class Registration(Base):
    __tablename__ = "registrations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="SET NULL"), nullable=True)
    matches_won = Column(Integer, default=0, nullable=False)
    matches_lost = Column(Integer, default=0, nullable=False)
    sets_won = Column(Integer, default=0, nullable=False)
    sets_lost = Column(Integer, default=0, nullable=False)
    points = Column(Integer, default=0, nullable=False)
    seed = Column(Integer, nullable=True)
    qualified = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    players = relationship(
        "RegistrationPlayer",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="RegistrationPlayer.order",
        lazy="selectin",
    )

    __table_args__ = (
        Index("idx_registrations_event_id", "event_id"),
        Index("idx_registrations_group_id", "group_id"),
    )


class RegistrationPlayer(Base):
    __tablename__ = "registration_players"

    id = Column(Integer, primary_key=True, autoincrement=True)
    registration_id = Column(
        Integer, ForeignKey("registrations.id", ondelete="CASCADE"), nullable=False
    )
    player_id = Column(Integer, ForeignKey("players.id", ondelete="CASCADE"), nullable=False)
    position = Column(String(1), nullable=True)  # R, L, F, B
    order = Column(Integer, default=1, nullable=False)
    position_scores = Column(JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("registration_id", "player_id", name="uq_registration_player"),
    )


class Match(Base):
    __tablename__ = "matches"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=True)
    round = Column(Integer, nullable=False)
    match_number = Column(Integer, nullable=False)
    registration1_id = Column(
        Integer, ForeignKey("registrations.id", ondelete="CASCADE"), nullable=True
    )
    registration2_id = Column(
        Integer, ForeignKey("registrations.id", ondelete="CASCADE"), nullable=True
    )
    played = Column(Boolean, default=False, nullable=False)
    winner_id = Column(
        Integer, ForeignKey("registrations.id", ondelete="SET NULL"), nullable=True
    )
    bracket_position = Column(Integer, nullable=True)
    winner_to = Column(Integer, ForeignKey("matches.id", ondelete="SET NULL"), nullable=True)
    winner_to_slot = Column(Integer, nullable=True)
    loser_to = Column(Integer, ForeignKey("matches.id", ondelete="SET NULL"), nullable=True)
    loser_to_slot = Column(Integer, nullable=True)
    bracket_type = Column(_values_enum(BracketType), nullable=True)
    match_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("round > 0", name="chk_round_positive"),
        CheckConstraint("match_number > 0", name="chk_match_number_positive"),
        CheckConstraint(
            "registration1_id IS NULL OR registration2_id IS NULL "
            "OR registration1_id != registration2_id",
            name="chk_different_registrations",
        ),
        CheckConstraint(
            "played = false OR winner_id IS NULL "
            "OR winner_id = registration1_id OR winner_id = registration2_id",
            name="chk_winner_valid",
        ),
        Index("idx_matches_event_id", "event_id"),
        Index("idx_matches_group_id", "group_id"),
    )


class MatchSet(Base):
    """A single set within a match."""

    __tablename__ = "sets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id", ondelete="CASCADE"), nullable=False)
    set_number = Column(Integer, nullable=False)
    registration1_score = Column(Integer, default=0, nullable=False)
    registration2_score = Column(Integer, default=0, nullable=False)
    played = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("match_id", "set_number", name="unique_match_set_number"),
        CheckConstraint("set_number > 0", name="chk_set_number_positive"),
        CheckConstraint("registration1_score >= 0", name="chk_reg1_score_non_negative"),
        CheckConstraint("registration2_score >= 0", name="chk_reg2_score_non_negative"),
    )


class EventResult(Base):
    __tablename__ = "event_results"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    registration_id = Column(
        Integer, ForeignKey("registrations.id", ondelete="CASCADE"), nullable=False
    )
    final_position = Column(Integer, nullable=True)
    placement_tier_id = Column(
        Integer, ForeignKey("placement_tiers.id", ondelete="RESTRICT"), nullable=False
    )
    points_awarded = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("event_id", "registration_id", name="unique_event_registration"),
    )

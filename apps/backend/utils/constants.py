"""
Constants used across the competition and registration services.
"""

# Event types scored per player (heats, position scores) rather than head-to-head
SOLO_TEST_EVENT_TYPES = frozenset({"super-solo", "speed-solo", "juniors-solo"})
TEAM_TEST_EVENT_TYPES = frozenset({"solo-teams", "speed-solo-teams", "relay"})
TEST_EVENT_TYPES = SOLO_TEST_EVENT_TYPES | TEAM_TEST_EVENT_TYPES

# (min_players, max_players) per registration, used when an event omits them
EVENT_TYPE_PLAYER_LIMITS = {
    "singles": (1, 1),
    "doubles": (2, 2),
    "singles-teams": (2, 5),
    "super-solo": (1, 1),
    "speed-solo": (1, 1),
    "juniors-solo": (1, 1),
    "solo-teams": (2, 4),
    "speed-solo-teams": (2, 4),
    "relay": (4, 4),
}

GROUP_FORMATS = frozenset({"groups", "groups-knockout"})
SINGLE_ELIMINATION_FORMATS = frozenset({"single-elimination"})
DOUBLE_ELIMINATION_FORMATS = frozenset({"double-elimination"})
ELIMINATION_FORMATS = SINGLE_ELIMINATION_FORMATS | DOUBLE_ELIMINATION_FORMATS

DEFAULT_PLAYERS_PER_HEAT = 8

# Position score keys for test events: right, left, forehand, backhand
POSITION_KEYS = ("R", "L", "F", "B")

# Test result performance bands (total of the four scores), highest first
PERFORMANCE_THRESHOLDS = (
    (3600, "Excellent"),
    (3200, "Very Good"),
    (2800, "Good"),
    (2400, "Average"),
    (2000, "Below Average"),
)
LOWEST_PERFORMANCE_CATEGORY = "Needs Improvement"

# Pagination
DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100

FEDERATION_ID_NUMBER_PATTERN = r"^[A-Z0-9-]+$"

# Placement tiers created on first startup: (name, display_name, rank)
DEFAULT_PLACEMENT_TIERS = (
    ("winner", "Winner", 1),
    ("runner-up", "Runner-up", 2),
    ("third", "Third Place", 3),
    ("fourth", "Fourth Place", 4),
    ("quarterfinalist", "Quarterfinalist", 5),
    ("group-stage", "Group Stage", 6),
    ("participant", "Participant", 7),
)

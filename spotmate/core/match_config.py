# --------------------------------------------------
# GEOHASH / DISTANCE
# --------------------------------------------------

# 6 = ~1.2km x 0.6km cells, wide enough that a 100m radius
# always lands inside the 9-cell neighborhood
GEOHASH_PRECISION = 6

MAX_MATCH_DISTANCE_METERS = 100

EARTH_RADIUS_METERS = 6371000

# --------------------------------------------------
# PRESENCE THROTTLE
# --------------------------------------------------

MIN_DISPLACEMENT_METERS = 25
STATIONARY_SPEED_THRESHOLD = 0.5   # m/s
MIN_INTERVAL_STATIONARY_SECONDS = 180
MIN_INTERVAL_MOVING_SECONDS = 60

DEBOUNCE_SECONDS = 30
PING_BUFFER_SIZE = 10

DEDUP_LOOKBACK = 3
DEDUP_DISTANCE_METERS = 10
DEDUP_WINDOW_SECONDS = 30

FAST_SPEED_THRESHOLD = 5   # m/s, ~18 km/h
FAST_SPEED_PENALTY = 0.8
MIN_CONFIDENCE = 0.1

# (accuracy above, multiplier) checked in order
ACCURACY_CONFIDENCE_TIERS = (
    (100, 0.5),
    (50, 0.7),
    (20, 0.9),
)

# How long presence remains valid
PRESENCE_EXPIRY_MINUTES = 5

# --------------------------------------------------
# ACTIVITY RECORDING
# --------------------------------------------------

RECORD_INTERVAL_SECONDS = 5 * 60
TIMEZONE_REFRESH_DEGREES = 0.5
PLACE_CACHE_RADIUS_DEGREES = 0.0005   # ~50m
DEFAULT_PLACE_TYPE = "general"
PRIORITY_PLACE_TYPES = ("cafe", "restaurant", "gym", "library", "bar", "park", "shopping_mall")

# visits closer together than this at one place form a session
SESSION_GAP_MINUTES = 10
SESSION_LOOKBACK_HOURS = 24

# activity summaries
WEEKLY_PRESENCE_DAYS = 7
TOP_ACTIVITY_COUNT = 3
# pattern visit counts are read as a 30-day window when shown per week
PATTERN_WINDOW_DAYS = 30

# --------------------------------------------------
# NEARBY
# --------------------------------------------------

NEARBY_POLL_SECONDS = 30

# --------------------------------------------------
# INTERESTS
# --------------------------------------------------

REQUIRED_INTEREST_COUNT = 3

INTEREST_OPTIONS = (
    "Coffee",
    "Gym",
    "Books",
    "Running",
    "Science",
    "Social Science",
    "Art",
    "Music",
    "Movies",
    "Outdoors",
)

# --------------------------------------------------
# COMPATIBILITY
# --------------------------------------------------

# (data points below, interest, behavior, feedback); last band is open-ended
WEIGHT_BANDS = (
    (10, 0.80, 0.15, 0.05),
    (50, 0.60, 0.30, 0.10),
    (100, 0.40, 0.40, 0.20),
    (None, 0.30, 0.40, 0.30),
)

NEUTRAL_FEEDBACK_SCORE = 0.5
MIN_RATING = 1
MAX_RATING = 5

# --------------------------------------------------
# MEETING DETAILS
# --------------------------------------------------

DEFAULT_VENUE_NAME = "Current location"
DEFAULT_LANDMARK = "Main entrance"

"""Internal constants shared across the library."""

USER_AGENT = "pyparking"

REST_PREFIX = "/rest/v1"
AUTH_PREFIX = "/auth/v1"
REALTIME_PATH = "/realtime/v1/websocket"

# PostgREST codes for a rejected / expired JWT.
SESSION_EXPIRED_CODES: frozenset[str] = frozenset({"PGRST301", "PGRST302", "PGRST303"})

# ------------------------------------------------------------------
# Slot matching
# ------------------------------------------------------------------

#: Divisor applied to the elevation difference (metres) so that it weighs
#: comparably to latitude/longitude differences expressed in degrees.
#: Empirical; keep as-is for matching compatibility.
ELEVATION_SCALE: float = 100_000.0

# ------------------------------------------------------------------
# Statistics
# ------------------------------------------------------------------

#: Emitted as ``preferred_time_range`` when there is nothing to summarise.
NO_DATA = "No data yet"

TOP_SLOTS = 3

MINUTES_PER_HOUR = 60
MINUTES_PER_DAY = 24 * MINUTES_PER_HOUR

# ------------------------------------------------------------------
# Location watch defaults (geolocation API semantics)
# ------------------------------------------------------------------

WATCH_TIMEOUT_MS = 20_000
WATCH_MAX_CACHE_AGE_MS = 5_000
WATCH_MIN_DISTANCE_M = 1.0

"""
Application Constants

This module contains all engine-wide constants to avoid magic numbers
and improve maintainability. Values mirror config/engine.yml, which remains
the single source of truth at runtime.
"""

# Time conversion constants
SECONDS_PER_MINUTE = 60
MILLISECONDS_PER_SECOND = 1000.0

# Score accumulation
DEFAULT_DECAY = 0.98            # multiplicative, applied once per accepted batch
DEFAULT_STEP_WEIGHT = 3.0       # score per step
DEFAULT_MAX_MAGNITUDE = 50.0    # per-sample magnitude ceiling
DEFAULT_STILLNESS_THRESHOLD = 0.05

# Idle decay on read (disabled by default; decay is update-triggered)
DEFAULT_IDLE_DECAY_ENABLED = False
DEFAULT_IDLE_DECAY_INTERVAL_SECONDS = 10.0

# Bucket resolution clamps (seconds)
MIN_RESOLUTION_SECONDS = 10
MAX_RESOLUTION_SECONDS = 600
DEFAULT_RESOLUTION_SECONDS = 30

# Peak window clamps (minutes)
MIN_WINDOW_MINUTES = 1
MAX_WINDOW_MINUTES = 30
DEFAULT_WINDOW_MINUTES = 3
DEFAULT_MAX_PEAKS = 5

# Leaderboard
DEFAULT_LEADERBOARD_CACHE_SIZE = 100
DEFAULT_TOP_N = 10
MAX_TOP_N = 1000

# Read-path snapshots
DEFAULT_CACHE_TTL_SECONDS = 5.0
DEFAULT_REFRESH_INTERVAL_SECONDS = 3.0
DEFAULT_SNAPSHOT_IDLE_SECONDS = 60.0     # unread snapshots are dropped, not refreshed

# Storage
DEFAULT_STORAGE_TIMEOUT_SECONDS = 2.0
CONFLICT_RETRY_ATTEMPTS = 1

# Display-name fallback (first/last characters of the user id)
DISPLAY_NAME_PREFIX_CHARS = 6
DISPLAY_NAME_SUFFIX_CHARS = 4
DISPLAY_NAME_ELLIPSIS = "…"

# Event status values
EVENT_STATUS_SCHEDULED = "scheduled"
EVENT_STATUS_LIVE = "live"
EVENT_STATUS_ENDED = "ended"

# Timeline response version tag
ENERGY_TIMELINE_VERSION = "energy-v1"

"""
monitor/constants.py

Timing and clinical constants used by the sync core.
All numeric horizons must be referenced from this module.
"""

# ── Time units (milliseconds) ────────────────────────────────
SECOND_MS: int = 1000
MINUTE_MS: int = 60 * SECOND_MS
HOUR_MS: int = 60 * MINUTE_MS

# ── Data retention ───────────────────────────────────────────
RETENTION_HOURS: int = 48
RETENTION_MS: int = RETENTION_HOURS * HOUR_MS

# ── Retro backfill lifecycle ─────────────────────────────────
RETRO_FRESHNESS_MS: int = 5 * MINUTE_MS  # invalidate after this age
RETRO_RELOAD_AGE_MS: int = 3 * MINUTE_MS  # only reload when older than this
RETRO_LOAD_DEBOUNCE_MS: int = 30 * SECOND_MS

# ── Alarms ───────────────────────────────────────────────────
DEFAULT_SILENCE_MS: int = 5 * MINUTE_MS
TIMEAGO_AUTOCLEAR_SILENCE_MS: int = 1 * MINUTE_MS
ANNOUNCEMENT_WINDOW_MS: int = 5 * MINUTE_MS
TIME_AGO_GROUP: str = "Time Ago"

# ── Focus window ─────────────────────────────────────────────
FOCUS_POINT_MAX_AGE_MS: int = 15 * MINUTE_MS

# ── Clock ────────────────────────────────────────────────────
TICK_SKEW_MS: int = 5
STALE_RECHECK_MS: int = 10 * SECOND_MS

# ── Authorization ────────────────────────────────────────────
AUTH_RENEW_BEFORE_MS: int = 15 * MINUTE_MS
AUTH_REFRESH_NOTICE_S: int = 5 * 60

# ── Glucose readings (mg/dL) ─────────────────────────────────
MIN_MEANINGFUL_MGDL: int = 39  # below this values are CGM error codes
LOW_LIMIT_MGDL: int = 40
HIGH_LIMIT_MGDL: int = 400
HOURGLASS_CODE: int = 9
MGDL_PER_MMOL: float = 18.0

# ── Raw BG reconstruction ────────────────────────────────────
RAWBG_OFFSET_MS: int = 2000
RAWBG_NOISE_THRESHOLD: int = 2

# ── Delta computation ────────────────────────────────────────
DELTA_BUCKET_MS: int = 5 * MINUTE_MS
DELTA_BUCKET_OFFSET_MS: int = 2 * MINUTE_MS + 30 * SECOND_MS
DELTA_INTERPOLATE_GAP_MS: int = 9 * MINUTE_MS

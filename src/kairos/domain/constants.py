"""Centralized constants for the Kairos analytics engine.

Request bounds and infrastructure defaults live here so every layer
imports from a single source of truth. Tunable analysis policy lives on
AnalyticsPolicy in kairos.application.config.
"""

# ---------- Repository ----------
DEFAULT_ROW_CAP = 50_000
DEFAULT_QUERY_TIMEOUT = 10.0  # seconds, whole call
DEFAULT_DATABASE_URL = "sqlite:///kairos.db"

# ---------- Request bounds ----------
DEFAULT_VELOCITY_WEEKS = 12
MAX_VELOCITY_WEEKS = 52
DEFAULT_SUMMARY_DAYS = 30
MAX_SUMMARY_DAYS = 365
DEFAULT_STRUGGLE_THRESHOLD = 0.4
DEFAULT_STRUGGLE_LIMIT = 20
MAX_STRUGGLE_LIMIT = 100
DEFAULT_HARDEST_LIMIT = 10
MAX_HARDEST_LIMIT = 50

# ---------- Time ----------
SECONDS_PER_DAY = 86400.0
HOURS_PER_DAY = 24

# ---------- Cache ----------
DEFAULT_CACHE_TTL = 300.0  # seconds

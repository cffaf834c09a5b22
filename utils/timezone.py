# utils/timezone.py
"""
SYSTEM-WIDE TIMEZONE POLICY

RULES:
1. DATABASE WRITES: always UTC (timezone-aware)
2. BUSINESS DATES (invoice numbering, due dates): Europe/Brussels
3. JSON SERIALISATION: ISO 8601 with explicit offset

USAGE:
    from utils.timezone import now_utc, today_local, get_utc_now

    created_at = Column(DateTime(timezone=True), default=get_utc_now)
    issue_date = today_local()

IMPORTANT:
- Never call datetime.utcnow() or datetime.now() directly
"""

from datetime import date, datetime, timezone
from typing import Optional
import pytz

# =============================================================================
# TIMEZONE SETTINGS
# =============================================================================

# Belgian business timezone
TIMEZONE_LOCAL_NAME = "Europe/Brussels"
TIMEZONE_LOCAL = pytz.timezone(TIMEZONE_LOCAL_NAME)

UTC = timezone.utc


# =============================================================================
# MAIN FUNCTIONS
# =============================================================================

def now_utc() -> datetime:
    """Current datetime in UTC (timezone-aware). Use for database timestamps."""
    return datetime.now(UTC)


def now_in(tz_name: Optional[str] = None) -> datetime:
    """
    Current datetime in the given IANA timezone (Brussels by default).

    Unknown timezone names fall back to Brussels.
    """
    try:
        tz = pytz.timezone(tz_name) if tz_name else TIMEZONE_LOCAL
    except pytz.UnknownTimeZoneError:
        tz = TIMEZONE_LOCAL
    return datetime.now(tz)


def today_local(tz_name: Optional[str] = None) -> date:
    """Today's calendar date in the business timezone."""
    return now_in(tz_name).date()


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Normalises a datetime to aware UTC.

    SQLite returns naive datetimes even for DateTime(timezone=True) columns;
    naive values are treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    """Parses a YYYY-MM-DD string, returning None when absent or malformed."""
    if not value:
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except (ValueError, AttributeError):
        return None


def get_utc_now():
    """
    Callable for Column(default=...).

    USE IN MODELS:
        from utils.timezone import get_utc_now
        created_at = Column(DateTime(timezone=True), default=get_utc_now)
    """
    return now_utc()

"""
Timezone Utilities for MeterHub

Readings are stamped in the configured timezone so that the calendar buckets
produced by the aggregation planner line up with the site's local day.
"""

import pytz
from datetime import datetime
import logging

log = logging.getLogger(__name__)

# Global timezone (initialized from config at startup)
CONFIGURED_TZ = None
UTC = pytz.UTC


def initialize_timezones(configured_timezone: str = "UTC"):
    """
    Initialize timezone settings from configuration.
    This should be called once at application startup.

    Args:
        configured_timezone: The timezone string from config (e.g., "Europe/Berlin")
    """
    global CONFIGURED_TZ

    try:
        CONFIGURED_TZ = pytz.timezone(configured_timezone)
        log.info(f"Configured timezone set to: {configured_timezone}")
    except pytz.UnknownTimeZoneError:
        log.error(f"Unknown timezone '{configured_timezone}', falling back to UTC")
        CONFIGURED_TZ = UTC


def get_configured_timezone():
    """Get the configured timezone object (UTC until initialized)."""
    if CONFIGURED_TZ is None:
        return UTC
    return CONFIGURED_TZ


def now_configured() -> datetime:
    """Get current time in configured timezone."""
    return datetime.now(get_configured_timezone())


def now_configured_iso() -> str:
    return now_configured().isoformat()


def to_configured(dt: datetime) -> datetime:
    """
    Convert any datetime to configured timezone.
    Naive datetimes are taken to be UTC.
    """
    if dt.tzinfo is None:
        dt = UTC.localize(dt)
    return dt.astimezone(get_configured_timezone())


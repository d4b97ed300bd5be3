"""
Timezone utility functions for the Prophecy League application
"""

from datetime import datetime, timezone

import pytz
from flask import current_app


def get_app_timezone():
    """Get the application's configured timezone"""
    try:
        timezone_name = current_app.config.get("TIMEZONE", "UTC")
        return pytz.timezone(timezone_name)
    except pytz.UnknownTimeZoneError:
        # Fallback to UTC if timezone is invalid
        return pytz.UTC


def get_utc_time():
    """Get current time in UTC"""
    return datetime.now(timezone.utc)


def ensure_utc(dt):
    """Return an aware UTC datetime; naive values (as SQLite returns them) are UTC"""
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def to_naive_utc(dt):
    """UTC datetime without tzinfo, the form fixture and prediction columns store"""
    if dt is None:
        return None

    return ensure_utc(dt).replace(tzinfo=None)


def convert_to_app_timezone(dt):
    """Convert a datetime to the application's timezone"""
    if dt is None:
        return None

    return ensure_utc(dt).astimezone(get_app_timezone())


def parse_kickoff(value):
    """Parse an ISO 8601 kickoff string into an aware UTC datetime.

    Strings without an offset are read in the application timezone.
    """
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))

    if dt.tzinfo is None:
        dt = get_app_timezone().localize(dt)

    return dt.astimezone(timezone.utc)

"""
Timezone utility functions
"""

from datetime import datetime, timezone

import pytz
from flask import current_app, has_app_context


def get_app_timezone():
    """Get the application's configured timezone"""
    timezone_name = (
        current_app.config.get("TIMEZONE", "UTC") if has_app_context() else "UTC"
    )
    try:
        return pytz.timezone(timezone_name)
    except pytz.UnknownTimeZoneError:
        return pytz.UTC


def get_utc_time():
    """Get current time in UTC"""
    return datetime.now(timezone.utc)


def ensure_utc(dt):
    """Return an aware UTC datetime; naive values are taken to be UTC already"""
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def convert_to_app_timezone(dt):
    """Convert a datetime to the application's timezone"""
    if dt is None:
        return None

    return ensure_utc(dt).astimezone(get_app_timezone())


def parse_iso_datetime(value):
    """Parse an ISO-8601 timestamp (a trailing Z is accepted) into aware UTC"""
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)

    value = value.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(value))


def format_kickoff(dt, format_str="%a %d/%m %H:%M"):
    """Format a kickoff time in the application's timezone"""
    if dt is None:
        return "TBD"

    return convert_to_app_timezone(dt).strftime(format_str)

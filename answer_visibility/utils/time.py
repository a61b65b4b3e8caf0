"""
UTC timestamp utilities for Answer Visibility.

All timestamps MUST be in UTC with explicit timezone markers. Timestamps are
persisted as ISO 8601 strings with a 'Z' suffix and second precision, so
lexicographic order in SQLite equals chronological order.

This module provides:
- utc_now(): Current time as timezone-aware datetime
- utc_timestamp(): ISO 8601 timestamp string with 'Z' suffix
- format_timestamp(): Serialize an aware datetime to the storage format
- parse_timestamp(): Parse the storage format back to datetime
- start_of_month(): First instant of the month containing a datetime

Examples:
    >>> from answer_visibility.utils.time import utc_now, format_timestamp
    >>> format_timestamp(utc_now()).endswith("Z")
    True
"""

from datetime import UTC, datetime

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def utc_now() -> datetime:
    """
    Return current time in UTC with timezone info.

    This is the canonical way to get current time in the codebase. Tests
    freeze it with freezegun.

    Returns:
        datetime: Current UTC time with tzinfo=UTC
    """
    return datetime.now(UTC)


def utc_timestamp() -> str:
    """
    Return the current time as an ISO 8601 string with 'Z' suffix.

    Example: 2025-11-02T08:30:45Z
    """
    return format_timestamp(utc_now())


def format_timestamp(dt: datetime) -> str:
    """
    Serialize a timezone-aware datetime to the storage format.

    Args:
        dt: Timezone-aware datetime (any zone, converted to UTC)

    Returns:
        str: Timestamp formatted as YYYY-MM-DDTHH:MM:SSZ

    Raises:
        ValueError: If dt is naive (missing timezone)

    Examples:
        >>> from datetime import datetime, timezone
        >>> format_timestamp(datetime(2025, 11, 2, 8, 30, 45, tzinfo=timezone.utc))
        '2025-11-02T08:30:45Z'
    """
    if dt.tzinfo is None:
        raise ValueError(
            "Datetime must be timezone-aware (use timezone.utc). "
            "Got naive datetime. Use utc_now() or ensure dt has tzinfo set."
        )
    return dt.astimezone(UTC).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(timestamp_str: str) -> datetime:
    """
    Parse ISO 8601 timestamp string to timezone-aware datetime.

    Args:
        timestamp_str: ISO 8601 timestamp string ending with 'Z'

    Returns:
        datetime: Timezone-aware datetime in UTC

    Raises:
        ValueError: If timestamp doesn't end with 'Z' or has invalid format

    Examples:
        >>> parse_timestamp('2025-11-02T08:30:45Z').year
        2025
        >>> parse_timestamp('2025-11-02T08:30:45')
        Traceback (most recent call last):
        ...
        ValueError: Timestamp must end with 'Z' (UTC): 2025-11-02T08:30:45
    """
    if not timestamp_str.endswith("Z"):
        raise ValueError(f"Timestamp must end with 'Z' (UTC): {timestamp_str}")

    try:
        return datetime.fromisoformat(timestamp_str.replace("Z", "+00:00"))
    except ValueError as e:
        raise ValueError(f"Invalid ISO 8601 timestamp format: {timestamp_str}") from e


def start_of_month(dt: datetime) -> datetime:
    """
    Return midnight UTC on the first day of dt's month.

    Used for the monthly run quota window.

    Examples:
        >>> from datetime import datetime, timezone
        >>> start_of_month(datetime(2025, 11, 17, 14, 5, tzinfo=timezone.utc))
        datetime.datetime(2025, 11, 1, 0, 0, tzinfo=datetime.timezone.utc)
    """
    dt = dt.astimezone(UTC)
    return dt.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

"""
Date normalization for article metadata.

Feeds deliver publish dates in many shapes (RFC 822 strings from RSS, ISO-8601,
epoch milliseconds, natural language such as "2 hours ago"). Everything is
normalized to a timezone-aware UTC ISO-8601 string before it is stored, so the
recency filter can compare dates reliably.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import dateparser

logger = logging.getLogger(__name__)

DATEPARSER_SETTINGS = {
    "RETURN_AS_TIMEZONE_AWARE": True,
    "TO_TIMEZONE": "UTC",
    "PREFER_DATES_FROM": "past",
}

# Epoch values above this are milliseconds (year 5138 in seconds)
EPOCH_MS_THRESHOLD = 100_000_000_000


def to_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value: Any, reference: Optional[datetime] = None) -> Optional[datetime]:
    """
    Parse a date from any supported representation.

    Args:
        value: datetime, epoch seconds/milliseconds, or a date string
        reference: Reference time for relative expressions ("yesterday")

    Returns:
        A UTC datetime, or None if the value cannot be parsed
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        return to_utc(value)

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if value > EPOCH_MS_THRESHOLD else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)

    if not isinstance(value, str):
        return None

    text = value.strip()
    if text.isdigit():
        return parse_datetime(int(text), reference=reference)

    try:
        return to_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        pass

    settings = dict(DATEPARSER_SETTINGS)
    if reference is not None:
        settings["RELATIVE_BASE"] = to_utc(reference).replace(tzinfo=None)

    parsed = dateparser.parse(text, settings=settings)
    if parsed is None:
        logger.debug(f"Unparseable date: {text!r}")
        return None
    return to_utc(parsed)


def normalize_publish_date(value: Any, reference: Optional[datetime] = None) -> str:
    """
    Normalize a publish date to a UTC ISO-8601 string.

    Missing or unparseable values fall back to ``reference`` (default: now).
    """
    parsed = parse_datetime(value, reference=reference)
    if parsed is None:
        if value not in (None, ""):
            logger.warning(f"Could not parse publish date {value!r}, using current time")
        parsed = to_utc(reference) if reference is not None else datetime.now(timezone.utc)
    return parsed.isoformat()


def recent_cutoff(days: int, now: Optional[datetime] = None) -> datetime:
    """The earliest publish date still considered recent."""
    now = to_utc(now) if now is not None else datetime.now(timezone.utc)
    return now - timedelta(days=days)

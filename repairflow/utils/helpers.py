"""Shared parsing helpers for request payloads.

parse_datetime_input:  raises ValueError on bad input (callers turn that into
                       a ValidationError)
isoformat_utc:         renders stored timestamps with their UTC offset
clean_text:            trims free text, returning None for blank values
"""
from datetime import date, datetime, time, timezone


def parse_datetime_input(value):
    """Parse an ISO-8601 datetime (or date) string into an aware UTC datetime.

    Supports:
    - YYYY-MM-DDTHH:MM[:SS][+HH:MM]
    - trailing ``Z`` for UTC
    - YYYY-MM-DD (midnight UTC)

    Naive values are taken as UTC.  Returns None for empty input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValueError(
                "Invalid datetime format. Use ISO-8601, e.g. 2026-03-01T09:30:00Z."
            ) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def clean_text(value):
    """Return ``value`` stripped, or None when it is not a non-blank string."""
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def isoformat_utc(value):
    """ISO-8601 string with an explicit offset, or None.

    SQLite hands ``DateTime(timezone=True)`` values back naive; every stored
    timestamp is UTC, so a missing tzinfo is read as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()

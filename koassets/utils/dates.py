"""Date rendering helpers for the rights request record format."""

from __future__ import annotations

from datetime import date, datetime, timezone

_HTTP_DATE = "%a, %d %b %Y %H:%M:%S"


def http_date(value: datetime | None = None) -> str:
    """Render ``value`` (default: now) as an RFC 1123 date, e.g. ``Mon, 05 Jan 2026 00:00:00 GMT``."""
    value = value or datetime.now(timezone.utc)
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(_HTTP_DATE) + " GMT"


def format_date_to_gmt(value) -> str:
    """Convert a client supplied date to the stored ``GMT+0000`` form.

    Accepts ``datetime``/``date`` objects, ISO-8601 strings and epoch
    milliseconds. Anything else, or an unparseable value, yields ``""``.
    """
    if value is None or value == "" or isinstance(value, bool):
        return ""

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    elif isinstance(value, (int, float)):
        try:
            parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return ""
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return ""
    else:
        return ""

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return http_date(parsed).replace("GMT", "GMT+0000")


def iso(value: datetime | None) -> str:
    """ISO-8601 string or ``""`` for ``None``."""
    return value.isoformat() if value else ""

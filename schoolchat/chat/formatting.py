"""
Date and label helpers for chat previews and the message timeline.
Pure functions; day boundaries are evaluated in the display time zone.
"""

from datetime import UTC, datetime, timedelta, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from schoolchat.config import settings

INVALID_DATE = "Invalid Date"

TimestampLike = datetime | str | int | float | None


def display_timezone(name: str | None = None) -> tzinfo:
    """Resolve the configured display zone, falling back to UTC."""
    try:
        return ZoneInfo(name or settings.DISPLAY_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        return UTC


def parse_timestamp(value: TimestampLike) -> datetime | None:
    """Parse ISO strings (with or without Z), epoch milliseconds or datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, int | float):
        try:
            return datetime.fromtimestamp(value / 1000, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _local(value: TimestampLike, tz: tzinfo | None) -> datetime | None:
    parsed = parse_timestamp(value)
    if parsed is None:
        return None
    return parsed.astimezone(tz or display_timezone())


def format_date(value: TimestampLike, tz: tzinfo | None = None) -> str:
    """Format as "11 Aug' 25"."""
    local = _local(value, tz)
    if local is None:
        return INVALID_DATE
    return f"{local.day} {local.strftime('%b')}' {local.strftime('%y')}"


def format_time(value: TimestampLike, tz: tzinfo | None = None) -> str:
    """Format as "8:00 PM"."""
    local = _local(value, tz)
    if local is None:
        return INVALID_DATE
    hour = local.hour % 12 or 12
    return f"{hour}:{local.minute:02d} {'AM' if local.hour < 12 else 'PM'}"


def format_date_time(value: TimestampLike, tz: tzinfo | None = None) -> str:
    """Format as "21 Aug '25, 14:30"."""
    local = _local(value, tz)
    if local is None:
        return INVALID_DATE
    return f"{local.day} {local.strftime('%b')} '{local.strftime('%y')}, {local:%H:%M}"


def is_same_day(first: TimestampLike, second: TimestampLike, tz: tzinfo | None = None) -> bool:
    a = _local(first, tz)
    b = _local(second, tz)
    if a is None or b is None:
        return False
    return a.date() == b.date()


def day_label(value: TimestampLike, now: datetime | None = None, tz: tzinfo | None = None) -> str:
    """Return "Today", "Yesterday" or the formatted date."""
    zone = tz or display_timezone()
    local = _local(value, zone)
    if local is None:
        return INVALID_DATE

    today = (now or datetime.now(UTC)).astimezone(zone).date()
    if local.date() == today:
        return "Today"
    if local.date() == today - timedelta(days=1):
        return "Yesterday"
    return format_date(local, zone)

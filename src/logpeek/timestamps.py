"""Timestamp parsing for the log formats logpeek understands.

All results are timezone-aware. Timestamps without an offset are taken as UTC.
"""

import re
from datetime import UTC, datetime, timedelta, timezone


MONTHS = {
    'jan': 1,
    'feb': 2,
    'mar': 3,
    'apr': 4,
    'may': 5,
    'jun': 6,
    'jul': 7,
    'aug': 8,
    'sep': 9,
    'oct': 10,
    'nov': 11,
    'dec': 12,
}

# 01/Jan/2024:00:00:00 +0100 (Apache/Nginx access logs)
_CLF_RE = re.compile(r'(\d{1,2})/(\w{3})/(\d{4}):(\d{2}):(\d{2}):(\d{2})(?:\s+([+-]\d{4}))?')
# Fri Jan 02 14:52:58.123456 2026 (Apache error logs)
_CTIME_RE = re.compile(r'\w{3}\s+(\w{3})\s+(\d{1,2})\s+(\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?\s+(\d{4})')
# 2024/01/01 12:00:00 (Nginx error logs)
_SLASH_RE = re.compile(r'^(\d{4})/(\d{2})/(\d{2})\s+(\d{2}):(\d{2}):(\d{2})')
# Jan  1 12:00:00 (classic syslog, no year)
_SYSLOG_RE = re.compile(r'^(\w{3})\s+(\d{1,2})\s+(\d{2}):(\d{2}):(\d{2})$')
# 2024-01-01 12:00:00 / 2024-01-01T12:00:00.123+01:00 / ...Z
_ISO_RE = re.compile(r'^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}(:\d{2}(\.\d+)?)?(Z|[+-]\d{2}:?\d{2})?$')


def _offset(value: str | None) -> timezone:
    if not value:
        return UTC
    sign = 1 if value[0] == '+' else -1
    hours = int(value[1:3])
    minutes = int(value[3:5])
    return timezone(sign * timedelta(hours=hours, minutes=minutes))


def _month(name: str) -> int | None:
    return MONTHS.get(name[:3].lower())


def parse_timestamp(value: str | None, now: datetime | None = None) -> datetime | None:
    """Parse a log timestamp, returning None when no known format matches."""
    if not value:
        return None
    value = value.strip()

    try:
        match = _CLF_RE.search(value)
        if match:
            day, mon, year, hour, minute, second, tz = match.groups()
            month = _month(mon)
            if month is None:
                return None
            return datetime(int(year), month, int(day), int(hour), int(minute), int(second), tzinfo=_offset(tz))

        match = _CTIME_RE.search(value)
        if match:
            mon, day, hour, minute, second, fraction, year = match.groups()
            month = _month(mon)
            if month is None:
                return None
            micro = int((fraction or '0')[:6].ljust(6, '0'))
            return datetime(int(year), month, int(day), int(hour), int(minute), int(second), micro, tzinfo=UTC)

        match = _SLASH_RE.match(value)
        if match:
            year, month, day, hour, minute, second = (int(g) for g in match.groups())
            return datetime(year, month, day, hour, minute, second, tzinfo=UTC)

        if _ISO_RE.match(value):
            parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)

        match = _SYSLOG_RE.match(value)
        if match:
            mon, day, hour, minute, second = match.groups()
            month = _month(mon)
            if month is None:
                return None
            current = now or datetime.now(UTC)
            parsed = datetime(current.year, month, int(day), int(hour), int(minute), int(second), tzinfo=UTC)
            # Syslog omits the year: a date in the future belongs to last year
            if parsed > current + timedelta(days=1):
                parsed = parsed.replace(year=current.year - 1)
            return parsed
    except ValueError:
        # Out-of-range fields such as 32/Jan or 25:00
        return None

    return None


def to_iso(value) -> str | None:
    """Serialize a timestamp for JSON output."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def as_datetime(value) -> datetime | None:
    """Accept datetime or ISO string entries (entries may come from JSON)."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            return parse_timestamp(value)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return None

"""
Timestamp helpers.

All timestamps inside the engine are naive UTC datetimes, which is what
SQLAlchemy's DateTime column round-trips on SQLite.
"""

from datetime import datetime, timezone
from typing import Any, Optional

EPOCH = datetime(1970, 1, 1)


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values are assumed UTC."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an API timestamp into naive UTC.

    Accepts datetimes, ISO-8601 strings (with 'Z' or an offset) and unix
    epoch numbers. Returns None for anything unparseable.
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str):
        return None

    text = value.strip().replace('Z', '+00:00')
    # fromisoformat before 3.11 only accepts 3 or 6 fractional digits
    if '.' in text:
        head, _, tail = text.partition('.')
        digits = ''
        rest = ''
        for i, ch in enumerate(tail):
            if not ch.isdigit():
                rest = tail[i:]
                break
            digits += ch
        digits = (digits + '000000')[:6]
        text = f'{head}.{digits}{rest}'

    try:
        return to_naive_utc(datetime.fromisoformat(text))
    except ValueError:
        return None

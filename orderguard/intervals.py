# postgres-style interval strings ("1 day", "2 weeks", "1 month 3 days")
# parsed once when limit rules are loaded

import re
from datetime import timedelta
from typing import Optional

from orderguard.errors import InvalidLimitRule

# months and years are approximated (no calendar arithmetic)
_UNIT_SECONDS = {
    's': 1,
    'sec': 1,
    'second': 1,
    'm': 60,
    'min': 60,
    'minute': 60,
    'h': 3600,
    'hr': 3600,
    'hour': 3600,
    'd': 86400,
    'day': 86400,
    'w': 7 * 86400,
    'week': 7 * 86400,
    'mon': 30 * 86400,
    'month': 30 * 86400,
    'y': 365 * 86400,
    'yr': 365 * 86400,
    'year': 365 * 86400,
}

_PART = re.compile(r'(\d+(?:\.\d+)?)\s*([a-z]+)')
_INTERVAL = re.compile(r'\s*(?:\d+(?:\.\d+)?\s*[a-z]+\s*)+')


def _unit_seconds(unit: str) -> Optional[int]:
    if unit in _UNIT_SECONDS:
        return _UNIT_SECONDS[unit]
    if len(unit) > 2 and unit.endswith('s') and unit[:-1] in _UNIT_SECONDS:
        return _UNIT_SECONDS[unit[:-1]]
    return None


def parse_interval(value: str) -> timedelta:
    """
    convert an interval string into a timedelta

    args:
        value: e.g. "1 day", "12 hours", "1 month 2 days"

    returns:
        equivalent timedelta

    raises:
        InvalidLimitRule if the string is not a sequence of <amount> <unit> parts
    """
    text = value.lower()
    if not _INTERVAL.fullmatch(text):
        raise InvalidLimitRule(f"invalid interval: {value!r}")

    total = 0.0
    for amount, unit in _PART.findall(text):
        seconds = _unit_seconds(unit)
        if seconds is None:
            raise InvalidLimitRule(f"unknown interval unit {unit!r} in {value!r}")
        total += float(amount) * seconds
    return timedelta(seconds=total)

"""Next trigger computation for recurring export schedules.

All arithmetic happens in UTC. Day and time components are applied with
calendar-overflow semantics: a day-of-month past the end of a month rolls into
the following month, and hours past 23 roll into the following day, instead of
being clamped or rejected.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

from ..models.schedule import FrequencyConfig

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)

# Config keys as stored by older clients (camelCase) and by this service
_KEY_ALIASES = {
    "hour": ("hour",),
    "minute": ("minute",),
    "day_of_week": ("day_of_week", "dayOfWeek"),
    "day_of_month": ("day_of_month", "dayOfMonth"),
}


def _config_value(
    config: FrequencyConfig | Mapping[str, Any] | None, key: str, default: int
) -> int:
    """Read an integer config value; missing, zero or unparseable values yield ``default``."""
    if config is None:
        return default

    raw: Any = None
    if isinstance(config, FrequencyConfig):
        raw = getattr(config, key)
    else:
        for name in _KEY_ALIASES[key]:
            if config.get(name) is not None:
                raw = config.get(name)
                break

    try:
        value = int(raw) if raw is not None else 0
    except (TypeError, ValueError):
        return default
    return value or default


def _at_time_of_day(day: datetime, hour: int, minute: int) -> datetime:
    """Midnight of ``day`` plus hour:minute, overflowing into later days."""
    midnight = day.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight + timedelta(hours=hour, minutes=minute)


def _calendar_date(year: int, month: int, day: int, template: datetime) -> datetime:
    """Build a date from possibly out-of-range month/day, rolling over like a calendar."""
    year += (month - 1) // 12
    month = (month - 1) % 12 + 1
    first = template.replace(year=year, month=month, day=1)
    return first + timedelta(days=day - 1)


def _sunday_based_weekday(moment: datetime) -> int:
    """Weekday with 0=Sunday .. 6=Saturday."""
    return (moment.weekday() + 1) % 7


def _daily(config, now: datetime) -> datetime:
    return _at_time_of_day(
        now + ONE_DAY,
        _config_value(config, "hour", 0),
        _config_value(config, "minute", 0),
    )


def _weekly(config, now: datetime) -> datetime:
    # When today is already the target weekday the run moves a full week ahead,
    # even if hour:minute is still later today.
    days_until = _config_value(config, "day_of_week", 0) - _sunday_based_weekday(now)
    if days_until <= 0:
        days_until += 7
    return _at_time_of_day(
        now + timedelta(days=days_until),
        _config_value(config, "hour", 0),
        _config_value(config, "minute", 0),
    )


def _monthly(config, now: datetime) -> datetime:
    # Advance the month keeping today's day (which may itself overflow), then
    # apply the configured day-of-month inside the resulting month.
    advanced = _calendar_date(now.year, now.month + 1, now.day, now)
    target = _calendar_date(
        advanced.year, advanced.month, _config_value(config, "day_of_month", 1), advanced
    )
    return _at_time_of_day(
        target,
        _config_value(config, "hour", 0),
        _config_value(config, "minute", 0),
    )


def _custom(config, now: datetime) -> datetime:
    # TODO: parse user-defined recurrence expressions once their format is agreed;
    # until then a custom schedule fires one day after the reference instant.
    return now + ONE_DAY


_RULES = {
    "daily": _daily,
    "weekly": _weekly,
    "monthly": _monthly,
    "custom": _custom,
}


def next_run(
    frequency: str,
    config: FrequencyConfig | Mapping[str, Any] | None = None,
    reference_now: datetime | None = None,
) -> datetime:
    """Compute the next trigger instant for a recurring schedule.

    Args:
        frequency: ``daily``, ``weekly``, ``monthly`` or ``custom``. Anything
            else is treated as ``daily``.
        config: Frequency config (hour, minute, day_of_week, day_of_month).
        reference_now: Instant to compute from (defaults to the current time).
            Naive datetimes are taken to be UTC.

    Returns:
        A timezone-aware UTC datetime strictly later than ``reference_now``.
    """
    now = reference_now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    else:
        now = now.astimezone(timezone.utc)

    rule = _RULES.get(frequency)
    if rule is None:
        logger.warning(f"Unknown schedule frequency {frequency!r}, using daily rule")
        rule = _daily

    try:
        result = rule(config, now)
    except (OverflowError, ValueError) as e:
        # Extreme config values can leave the representable datetime range
        logger.warning(f"Could not apply {frequency!r} rule ({e}), falling back to +1 day")
        result = now + ONE_DAY

    # Negative hour/minute values can land before the reference instant
    while result <= now:
        result += ONE_DAY
    return result

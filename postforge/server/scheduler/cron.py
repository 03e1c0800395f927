# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Simplified next-run calculator for five-field cron expressions.

This is deliberately not a cron grammar. Only plain integers or "*" are
understood per field, the month field is ignored, and day-of-week and
day-of-month only come into play when today's slot has already passed:

- minute and hour pin the time of day when they are integers;
- if that time is not after now, advance to the next matching weekday
  (cron 0 or 7 = Sunday) when day-of-week is set, else to the configured
  day-of-month (next month if today is on or after it) when that is set,
  else by one day.

Anything unparseable falls back to now + 24 hours.
"""

import calendar
from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from loguru import logger


FALLBACK_DELAY = timedelta(days=1)


def _resolve_zone(timezone: str) -> ZoneInfo | None:
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def _add_month(value: datetime, day: int) -> datetime:
    """Move to the given day of the following month, clamped to its length."""
    year, month = (value.year + 1, 1) if value.month == 12 else (value.year, value.month + 1)
    day = min(day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def calculate_next_run(
    expression: str,
    timezone: str = "Asia/Seoul",
    now: datetime | None = None,
) -> datetime:
    """Compute the next time a schedule should fire.

    Args:
        expression: Five-field cron expression ("minute hour dom month dow").
        timezone: IANA zone the expression is evaluated in. Unknown zones are
            logged and treated as UTC.
        now: Reference time (defaults to the current time).

    Returns:
        Aware UTC datetime of the next run.
    """
    now = now or datetime.now(UTC)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)

    parts = expression.split()
    if len(parts) != 5:
        logger.warning("Malformed cron expression, retrying in 24h", expression=expression)
        return (now + FALLBACK_DELAY).astimezone(UTC)

    minute, hour, day_of_month, _month, day_of_week = parts

    zone = _resolve_zone(timezone)
    if zone is None:
        logger.warning("Unknown schedule timezone, using UTC", timezone=timezone)
    local_now = now.astimezone(zone or UTC)

    try:
        candidate = local_now.replace(second=0, microsecond=0)
        if minute != "*":
            candidate = candidate.replace(minute=int(minute))
        if hour != "*":
            candidate = candidate.replace(hour=int(hour))

        if candidate <= local_now:
            if day_of_week != "*":
                target = int(day_of_week)
                if not 0 <= target <= 7:
                    raise ValueError(f"day of week out of range: {target}")
                target %= 7
                current = (candidate.weekday() + 1) % 7  # Python Monday=0, cron Sunday=0
                candidate += timedelta(days=(target - current + 7) % 7 or 7)
            elif day_of_month != "*":
                target = int(day_of_month)
                if not 1 <= target <= 31:
                    raise ValueError(f"day of month out of range: {target}")
                if candidate.day >= target:
                    candidate = _add_month(candidate, target)
                else:
                    last_day = calendar.monthrange(candidate.year, candidate.month)[1]
                    candidate = candidate.replace(day=min(target, last_day))
                    if candidate <= local_now:
                        candidate = _add_month(candidate, target)
            else:
                candidate += timedelta(days=1)
    except ValueError as e:
        logger.warning(
            "Unsupported cron expression, retrying in 24h",
            expression=expression,
            error=str(e),
        )
        return (now + FALLBACK_DELAY).astimezone(UTC)

    return candidate.astimezone(UTC)

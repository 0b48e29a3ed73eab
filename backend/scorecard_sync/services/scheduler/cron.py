"""Cron expression evaluation.

Accepts the standard 5-field form (minute hour day month weekday) and the
6-field form with a leading seconds field. All evaluation happens in a single
process-wide time zone; callers pass it in explicitly.
"""

import logging
from datetime import datetime, timezone, tzinfo
from zoneinfo import ZoneInfo

from apscheduler.triggers.base import BaseTrigger
from croniter import croniter

from scorecard_sync.core.config import settings

logger = logging.getLogger(__name__)


def _to_croniter_form(expression: str) -> str | None:
    """Return the expression in croniter's field order, or None if malformed.

    croniter puts the optional seconds field last; we accept it first.
    """
    if not expression or not expression.strip():
        return None
    parts = expression.split()
    if len(parts) == 5:
        return " ".join(parts)
    if len(parts) == 6:
        return " ".join(parts[1:] + parts[:1])
    return None


def _as_tz(tz: tzinfo | str | None) -> tzinfo:
    if tz is None:
        return ZoneInfo(settings.timezone)
    if isinstance(tz, str):
        return ZoneInfo(tz)
    return tz


def validate(expression: str) -> bool:
    """Syntactic validity only; an expression may be valid and never match."""
    converted = _to_croniter_form(expression)
    if converted is None:
        return False
    return croniter.is_valid(converted)


def next_fire_time(
    expression: str,
    from_instant: datetime,
    tz: tzinfo | str | None = None,
) -> datetime | None:
    """Earliest instant strictly after ``from_instant`` matching ``expression``.

    Returns None if the expression cannot be parsed or never matches.
    """
    converted = _to_croniter_form(expression)
    if converted is None:
        return None

    zone = _as_tz(tz)
    if from_instant.tzinfo is None:
        from_instant = from_instant.replace(tzinfo=timezone.utc)
    base = from_instant.astimezone(zone)

    try:
        itr = croniter(converted, base)
        nxt = itr.get_next(datetime)
    except (ValueError, KeyError) as e:
        logger.debug("No next fire time for cron '%s': %s", expression, e)
        return None

    # croniter truncates sub-second precision of the base
    if nxt <= from_instant:
        return None
    return nxt


def next_run(schedule, now: datetime | None = None) -> datetime | None:
    """Derived next fire time of a schedule; None while it is inactive."""
    if not schedule.is_active:
        return None
    return next_fire_time(
        schedule.cron_expression,
        now or datetime.now(timezone.utc),
        settings.timezone,
    )


class CronExpressionTrigger(BaseTrigger):
    """APScheduler trigger driven by :func:`next_fire_time`.

    Keeps the armed timer and the displayed ``next_run`` on one evaluator.
    """

    __slots__ = ("expression", "timezone")

    def __init__(self, expression: str, timezone: tzinfo | str | None = None):
        if not validate(expression):
            raise ValueError(f"Invalid cron expression: '{expression}'")
        self.expression = expression
        self.timezone = _as_tz(timezone)

    def get_next_fire_time(self, previous_fire_time, now):
        return next_fire_time(self.expression, previous_fire_time or now, self.timezone)

    def __str__(self):
        return f"cron[{self.expression}]"

    def __repr__(self):
        return f"<{self.__class__.__name__} (expression='{self.expression}', timezone='{self.timezone}')>"

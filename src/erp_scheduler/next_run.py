"""
Next-run calculation for cron expressions.

The search steps through absolute instants one minute at a time and compares
each candidate, converted into the task's timezone, against all five cron
fields. It gives up after one year of minutes. Whole hours or days that
cannot match are skipped when the UTC offset is unchanged across the skip,
which gives the same answer as checking every minute.
"""

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field

from .config import get_settings
from .cron import ExpandedCron, cron_weekday, parse_cron_expression
from .timeutils import DateLike, to_datetime, utc_now

logger = logging.getLogger(__name__)

ONE_MINUTE = timedelta(minutes=1)


class NextRunReason(str, Enum):
    MALFORMED = "malformed"
    UNSCHEDULABLE = "unschedulable"


class NextRunResult(BaseModel):
    """
    Outcome of a next-run search. ``next_run`` is set on success, otherwise
    ``reason`` says why no run could be scheduled.
    """
    next_run: Optional[datetime] = Field(None, description="Next matching instant, in the task's timezone")
    reason: Optional[NextRunReason] = Field(None, description="Why no next run exists")

    @property
    def found(self) -> bool:
        return self.next_run is not None


def _load_zone(name: str) -> Optional[ZoneInfo]:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return None


def _skip_target(local: datetime, expanded: ExpandedCron) -> Optional[int]:
    """
    Minutes that can be skipped from ``local`` without passing a possible
    match, or None when the current minute has to be checked.
    """
    minutes, hours, days, months, weekdays = expanded
    if local.month not in months or local.day not in days or cron_weekday(local) not in weekdays:
        return (24 - local.hour) * 60 - local.minute
    if local.hour not in hours:
        return 60 - local.minute
    return None


def compute_next_run(
    cron_expression: str,
    timezone_name: Optional[str] = None,
    from_time: Optional[DateLike] = None,
    horizon_minutes: Optional[int] = None,
) -> NextRunResult:
    """
    Find the first instant strictly after ``from_time`` matching ``cron_expression``.

    Args:
        cron_expression (str): Five-field cron expression.
        timezone_name (Optional[str]): IANA zone the fields are evaluated in.
            Defaults to the configured default timezone.
        from_time (Optional[DateLike]): Reference instant, defaults to now.
            Naive values are read as wall-clock time in ``timezone_name``.
        horizon_minutes (Optional[int]): Search bound, defaults to one year.

    Returns:
        NextRunResult: The match, or the reason there is none.
    """
    settings = get_settings()
    zone = _load_zone(timezone_name or settings.default_timezone)
    if zone is None:
        logger.warning("Unknown timezone %r for cron expression %r", timezone_name, cron_expression)
        return NextRunResult(reason=NextRunReason.MALFORMED)

    parts = parse_cron_expression(cron_expression)
    expanded = parts.expand() if parts else None
    if expanded is None:
        return NextRunResult(reason=NextRunReason.MALFORMED)

    horizon = horizon_minutes if horizon_minutes is not None else settings.search_horizon_minutes
    reference = to_datetime(from_time, zone) if from_time is not None else utc_now()

    local_start = reference.astimezone(zone).replace(second=0, microsecond=0)
    candidate = local_start.astimezone(timezone.utc) + ONE_MINUTE
    last_candidate = candidate + (horizon - 1) * ONE_MINUTE

    minutes = expanded[0]
    while candidate <= last_candidate:
        local = candidate.astimezone(zone)
        skip = _skip_target(local, expanded)
        if skip is None:
            if local.minute in minutes:
                return NextRunResult(next_run=local)
            skip = 1
        elif skip > 1 and (candidate + skip * ONE_MINUTE).astimezone(zone).utcoffset() != local.utcoffset():
            skip = 1
        candidate += skip * ONE_MINUTE

    logger.warning("Cron expression %r has no match within %d minutes of %s", cron_expression, horizon, reference)
    return NextRunResult(reason=NextRunReason.UNSCHEDULABLE)


def get_next_run_time(
    cron_expression: str,
    timezone_name: Optional[str] = None,
    from_time: Optional[DateLike] = None,
) -> Optional[datetime]:
    """
    Return the next matching instant, or None when the expression is
    malformed or never matches within the search horizon.
    """
    return compute_next_run(cron_expression, timezone_name, from_time).next_run

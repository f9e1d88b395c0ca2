"""
Cron expression parsing and matching.

Expressions have exactly five whitespace separated fields::

    minute hour day-of-month month day-of-week

Each field accepts ``*``, a number, a range ``a-b``, a step ``*/n`` or
``a-b/n`` and comma separated lists of those. A list matches only the
leading number of each member and ``a/n`` matches ``a`` alone. Day-of-week runs
from 0 (Sunday) to 6 (Saturday). Names and ``@daily`` style shortcuts are
not supported.

All five fields must match for a datetime to match the expression, including
day-of-month and day-of-week when both are restricted. Classic cron ORs
those two fields instead.

Malformed input never raises: parsing returns ``None`` and validation
returns ``False``.
"""

from datetime import datetime
from typing import FrozenSet, Optional, Tuple

from pydantic import BaseModel, ConfigDict

# (name, lower bound, upper bound) in field order
FIELD_BOUNDS: Tuple[Tuple[str, int, int], ...] = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day_of_month", 1, 31),
    ("month", 1, 12),
    ("day_of_week", 0, 6),
)

WEEKDAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")

ExpandedCron = Tuple[FrozenSet[int], FrozenSet[int], FrozenSet[int], FrozenSet[int], FrozenSet[int]]


class CronExpression(BaseModel):
    """
    A cron expression split into its five raw fields.
    """
    model_config = ConfigDict(frozen=True)

    minute: str
    hour: str
    day_of_month: str
    month: str
    day_of_week: str

    @property
    def raw_fields(self) -> Tuple[str, str, str, str, str]:
        return (self.minute, self.hour, self.day_of_month, self.month, self.day_of_week)

    def is_valid(self) -> bool:
        return self.expand() is not None

    def expand(self) -> Optional[ExpandedCron]:
        """
        Expand every field into the set of values it matches.

        Returns None when any field is malformed or out of bounds.
        """
        expanded = []
        for field, (_, low, high) in zip(self.raw_fields, FIELD_BOUNDS):
            values = expand_cron_field(field, low, high)
            if values is None:
                return None
            expanded.append(values)
        return tuple(expanded)

    def matches(self, moment: datetime) -> bool:
        return matches_cron(moment, self)

    def __str__(self) -> str:
        return " ".join(self.raw_fields)


def parse_cron_expression(expression: Optional[str]) -> Optional[CronExpression]:
    """
    Split a cron expression into its fields.

    Only the field count is checked here, use ``is_valid_cron_expression`` for
    full validation.
    """
    if not expression or not isinstance(expression, str):
        return None

    parts = expression.split()
    if len(parts) != 5:
        return None

    return CronExpression(
        minute=parts[0],
        hour=parts[1],
        day_of_month=parts[2],
        month=parts[3],
        day_of_week=parts[4],
    )


def is_valid_cron_expression(expression: Optional[str]) -> bool:
    parts = parse_cron_expression(expression)
    if parts is None:
        return False
    return parts.is_valid()


def _parse_int(token: str) -> Optional[int]:
    token = token.strip()
    if not token or not token.isascii() or not token.isdigit():
        return None
    return int(token)


def _parse_range(token: str, low: int, high: int) -> Optional[Tuple[int, int]]:
    start_token, sep, end_token = token.partition("-")
    if not sep:
        value = _parse_int(token)
        if value is None or not low <= value <= high:
            return None
        return value, value

    start, end = _parse_int(start_token), _parse_int(end_token)
    if start is None or end is None:
        return None
    if start < low or end > high or start > end:
        return None
    return start, end


def _leading_int(token: str) -> Optional[int]:
    digits = ""
    for char in token.strip():
        if not (char.isascii() and char.isdigit()):
            break
        digits += char
    return int(digits) if digits else None


def expand_cron_field(field: str, low: int, high: int) -> Optional[FrozenSet[int]]:
    """
    Return the values within ``[low, high]`` that a single cron field matches,
    or None if the field is invalid.

    Every list member has to be a valid field, but a list only matches the
    leading number of each member: ``1-5,10`` matches 1 and 10. A step over a
    single value (``5/15``) matches that value alone.
    """
    field = field.strip()
    if field == "*":
        return frozenset(range(low, high + 1))

    if "," in field:
        values = set()
        for item in field.split(","):
            if expand_cron_field(item, low, high) is None:
                return None
            value = _leading_int(item)
            if value is not None:
                values.add(value)
        return frozenset(values)

    if "/" in field:
        base, _, step_token = field.partition("/")
        step = _parse_int(step_token)
        if step is None or step < 1:
            return None
        if base == "*":
            return frozenset(range(low, high + 1, step))
        bounds = _parse_range(base, low, high)
        if bounds is None:
            return None
        if "-" not in base:
            return frozenset({bounds[0]})
        return frozenset(range(bounds[0], bounds[1] + 1, step))

    bounds = _parse_range(field, low, high)
    if bounds is None:
        return None
    return frozenset(range(bounds[0], bounds[1] + 1))


def is_valid_cron_field(field: str, low: int, high: int) -> bool:
    return expand_cron_field(field, low, high) is not None


def matches_cron_field(value: int, field: str, low: int, high: int) -> bool:
    values = expand_cron_field(field, low, high)
    return values is not None and value in values


def cron_weekday(moment: datetime) -> int:
    """Day of week with Sunday as 0."""
    return (moment.weekday() + 1) % 7


def matches_cron(moment: datetime, parts: CronExpression) -> bool:
    """
    Check whether the wall-clock fields of ``moment`` satisfy every field of
    ``parts``. The caller converts ``moment`` into the intended zone.
    """
    expanded = parts.expand()
    if expanded is None:
        return False
    return matches_expanded(moment, expanded)


def matches_expanded(moment: datetime, expanded: ExpandedCron) -> bool:
    minutes, hours, days, months, weekdays = expanded
    return (
        moment.minute in minutes
        and moment.hour in hours
        and moment.day in days
        and moment.month in months
        and cron_weekday(moment) in weekdays
    )


def describe_cron_expression(expression: str) -> str:
    parts = parse_cron_expression(expression)
    if parts is None:
        return "Invalid cron expression"

    minute, hour, day_of_month, month, day_of_week = parts.raw_fields
    every_day = day_of_month == "*" and month == "*"

    if minute == "0" and hour != "*" and every_day and day_of_week == "*":
        return f"Daily at {hour}:00"

    if minute == "0" and hour == "0" and every_day and day_of_week != "*":
        weekday = _parse_int(day_of_week)
        if weekday is not None and weekday <= 6:
            return f"Weekly on {WEEKDAY_NAMES[weekday]} at midnight"

    if minute == "0" and hour != "*" and day_of_month == "1" and month == "*" and day_of_week == "*":
        return f"Monthly on the 1st at {hour}:00"

    if minute == "0" and hour == "*" and every_day and day_of_week == "*":
        return "Every hour"

    return expression

from datetime import datetime, timezone, tzinfo
from typing import Optional, Union

DateLike = Union[datetime, str]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_datetime(value: DateLike, assume_tz: Optional[tzinfo] = None) -> datetime:
    """
    Coerce an ISO 8601 string or datetime into an aware datetime.

    Naive values are interpreted in ``assume_tz`` (UTC when omitted).
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=assume_tz or timezone.utc)
    return value

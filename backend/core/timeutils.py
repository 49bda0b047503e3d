"""Time helpers.

Every instant persisted by the service is a naive ``datetime`` in UTC.
Values expressed in another zone are normalized with :func:`to_utc_naive`
before they reach the database.
"""

from datetime import date, datetime, time, timezone, tzinfo
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def resolve_timezone(name: str) -> tzinfo:
    if name.strip().upper() in {"UTC", "Z", "ETC/UTC"}:
        return timezone.utc
    return ZoneInfo(name)


def to_utc_naive(day: date, time_of_day: time, zone: tzinfo) -> datetime:
    local = datetime.combine(day, time_of_day, tzinfo=zone)
    return local.astimezone(timezone.utc).replace(tzinfo=None)

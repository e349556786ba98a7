"""授权时间窗口的纯函数判定。"""

from __future__ import annotations

from datetime import datetime, time, timezone

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def as_utc(value: datetime) -> datetime:
    """无时区的时间视为 UTC。"""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def within_window(start: datetime | None, end: datetime | None, now: datetime) -> bool:
    """判断 now 是否落在 [start, end] 内，两端都包含，缺失的一端视为无界。"""

    current = as_utc(now)
    if start is not None and current < as_utc(start):
        return False
    if end is not None and current > as_utc(end):
        return False
    return True


def parse_hhmm(value: str) -> time:
    hours, _, minutes = value.partition(":")
    return time(hour=int(hours), minute=int(minutes or 0))


def within_hours(start: str | None, end: str | None, now: datetime) -> bool:
    """判断 now 的时分是否在 HH:MM 区间内（包含两端）。"""

    if not start and not end:
        return True
    current = now.time().replace(second=0, microsecond=0)
    if start and current < parse_hhmm(start):
        return False
    if end and current > parse_hhmm(end):
        return False
    return True


def weekday_name(now: datetime) -> str:
    return WEEKDAYS[now.weekday()]

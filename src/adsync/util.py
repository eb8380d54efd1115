from __future__ import annotations

import math
from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterable, TypeVar
from zoneinfo import ZoneInfo

T = TypeVar("T")


def now_utc_iso() -> str:
    return datetime.now(tz=timezone.utc).replace(microsecond=0).isoformat()


def yesterday_str(timezone_name: str) -> str:
    today = datetime.now(tz=ZoneInfo(timezone_name)).date()
    return (today - timedelta(days=1)).isoformat()


def resolve_target_date(target_date: str | None, timezone_name: str) -> str:
    if target_date:
        return date.fromisoformat(target_date).isoformat()
    return yesterday_str(timezone_name)


def to_stat_dt(day_iso: str) -> str:
    return day_iso.replace("-", "")


def to_float(v: Any) -> float:
    try:
        f = float(str(v).replace(",", "")) if v is not None else 0.0
    except ValueError:
        return 0.0
    return f if math.isfinite(f) else 0.0


def to_int(v: Any) -> int:
    return int(to_float(v))


def chunked(items: list[T], size: int) -> Iterable[list[T]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]

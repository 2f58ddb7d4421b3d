from __future__ import annotations

import datetime as dt
from typing import Any

UTC = dt.timezone.utc

DAYS_PER_YEAR = 365.25


def utcnow() -> dt.datetime:
    return dt.datetime.now(UTC)


def utctoday() -> dt.date:
    return utcnow().date()


def parse_date(value: Any) -> dt.date | None:
    if value is None:
        return None
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    t = str(value).strip()
    if not t:
        return None
    try:
        return dt.date.fromisoformat(t[:10])
    except ValueError:
        pass
    for fmt in ("%m/%d/%Y", "%m/%d/%y", "%Y/%m/%d"):
        try:
            return dt.datetime.strptime(t.split()[0], fmt).date()
        except ValueError:
            continue
    return None


def years_between(start: dt.date, end: dt.date) -> float:
    return (end - start).days / DAYS_PER_YEAR

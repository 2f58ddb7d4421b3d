from __future__ import annotations

import datetime as dt

from sqlalchemy.types import DateTime as _DateTime
from sqlalchemy.types import TypeDecorator

from portfolio_ledger.utils.time import UTC


class UTCDateTime(TypeDecorator):
    """
    Datetime column that always round-trips as tz-aware UTC.

    SQLite has no timezone-aware type, so values are written as naive UTC and get tzinfo
    attached again on read. Snapshot ordering compares `created_at` values, which only works
    when they are all aware.
    """

    impl = _DateTime
    cache_ok = True

    def process_bind_param(self, value: dt.datetime | None, dialect):
        if value is None:
            return None
        v = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        return v.astimezone(UTC).replace(tzinfo=None)

    def process_result_value(self, value: dt.datetime | None, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

"""Input validation for pings and unique-count queries."""
from __future__ import annotations

import calendar
import re
from datetime import date, datetime, timezone
from typing import Callable, Optional, Tuple
from uuid import UUID

from .store import CountingStore

DAY_FORMAT = "%Y%m%d"
_DAY_PATTERN = re.compile(r"[0-9]{8}")
_EPOCH_PATTERN = re.compile(r"[+-]?[0-9]+")


class ValidationError(ValueError):
    """Raised when caller supplied input is malformed."""


def parse_client_id(value: Optional[str]) -> UUID:
    if not value:
        raise ValidationError("Missing client ID")
    try:
        return UUID(value)
    except ValueError:
        raise ValidationError(f"Invalid client ID {value!r}") from None


def parse_timestamp(value: Optional[str], now: Callable[[], datetime]) -> datetime:
    """Parse Unix seconds into an aware UTC datetime, defaulting to ``now()``."""

    if value is None or value == "":
        return now()
    if not _EPOCH_PATTERN.fullmatch(value):
        raise ValidationError(f"Invalid timestamp {value!r}")
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        raise ValidationError(f"Timestamp {value!r} is out of range") from None


def utc_day(moment: datetime) -> date:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).date()


def parse_day(value: Optional[str]) -> date:
    if not value or not _DAY_PATTERN.fullmatch(value):
        raise ValidationError(f"Invalid date {value!r}, expected YYYYMMDD")
    try:
        return datetime.strptime(value, DAY_FORMAT).date()
    except ValueError:
        raise ValidationError(f"Invalid date {value!r}, expected YYYYMMDD") from None


def previous_month(day: date) -> date:
    """Step back one calendar month, clamping to the end of a shorter month."""

    year, month = (day.year, day.month - 1) if day.month > 1 else (day.year - 1, 12)
    if year < date.min.year:
        return date.min
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def monthly_window(day: date) -> Tuple[date, date]:
    return previous_month(day), day


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IngestHandler:
    """Validates pings and records them in the counting store."""

    def __init__(
        self,
        store: CountingStore,
        now: Callable[[], datetime] = _utcnow,
        timeout: Optional[float] = None,
    ) -> None:
        self._store = store
        self._now = now
        self._timeout = timeout

    async def record(self, client_id: Optional[str], timestamp: Optional[str] = None) -> date:
        """Record a ping and return the UTC day it was filed under."""

        cid = parse_client_id(client_id)
        day = utc_day(parse_timestamp(timestamp, self._now))
        await self._store.insert(cid, day, timeout=self._timeout)
        return day


class QueryHandler:
    """Answers daily and trailing-month unique client counts."""

    def __init__(self, store: CountingStore, timeout: Optional[float] = None) -> None:
        self._store = store
        self._timeout = timeout

    async def daily_count(self, value: Optional[str]) -> int:
        day = parse_day(value)
        return await self._store.count_distinct_on_day(day, timeout=self._timeout)

    async def monthly_count(self, value: Optional[str]) -> int:
        start, end = monthly_window(parse_day(value))
        return await self._store.count_distinct_in_window(start, end, timeout=self._timeout)


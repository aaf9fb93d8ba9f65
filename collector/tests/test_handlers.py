import asyncio
import sys
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from uuid import UUID

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from collector.app.handlers import (  # noqa: E402
    IngestHandler,
    QueryHandler,
    ValidationError,
    monthly_window,
    parse_client_id,
    parse_day,
    parse_timestamp,
    previous_month,
    utc_day,
)
from collector.app.store import MemoryCountingStore  # noqa: E402

CLIENT_A = "0b6a3a8e-8d5e-4d3f-9a59-6f6e1f1f7b11"
CLIENT_B = "5f1d3c0e-2f0b-4a4e-8e55-0f3a1c2b9d22"
FIXED_NOW = datetime(2021, 5, 2, 23, 59, 59, tzinfo=timezone.utc)
# "1619827200" and "20210501" spelled with full-width digits.
FULL_WIDTH_EPOCH = "\uff11\uff16\uff11\uff19\uff18\uff12\uff17\uff12\uff10\uff10"
FULL_WIDTH_DAY = "\uff12\uff10\uff12\uff11\uff10\uff15\uff10\uff11"


def _fixed_now() -> datetime:
    return FIXED_NOW


def test_parse_client_id_accepts_uuid():
    assert parse_client_id(CLIENT_A.upper()) == UUID(CLIENT_A)


@pytest.mark.parametrize("value", [None, "", "not-a-uuid", "1234"])
def test_parse_client_id_rejects_invalid(value):
    with pytest.raises(ValidationError):
        parse_client_id(value)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("1619827200", date(2021, 5, 1)),
        ("1619913599", date(2021, 5, 1)),
        ("1619913600", date(2021, 5, 2)),
        ("0", date(1970, 1, 1)),
        ("-86400", date(1969, 12, 31)),
    ],
)
def test_parse_timestamp_normalizes_to_utc_day(value, expected):
    assert utc_day(parse_timestamp(value, _fixed_now)) == expected


@pytest.mark.parametrize("value", [None, ""])
def test_missing_timestamp_defaults_to_now(value):
    assert parse_timestamp(value, _fixed_now) == FIXED_NOW


@pytest.mark.parametrize(
    "value",
    ["abc", "1.5", "12e3", " 12", "99999999999999999999", FULL_WIDTH_EPOCH],
)
def test_parse_timestamp_rejects_invalid(value):
    with pytest.raises(ValidationError):
        parse_timestamp(value, _fixed_now)


def test_utc_day_converts_offset_datetimes():
    moment = datetime(2021, 5, 2, 1, 0, tzinfo=timezone(timedelta(hours=3)))
    assert utc_day(moment) == date(2021, 5, 1)


def test_parse_day_accepts_yyyymmdd():
    assert parse_day("20210501") == date(2021, 5, 1)


@pytest.mark.parametrize(
    "value",
    [None, "", "bad", "2021051", "2021-05-01", "20210230", "20211301", FULL_WIDTH_DAY],
)
def test_parse_day_rejects_invalid(value):
    with pytest.raises(ValidationError):
        parse_day(value)


@pytest.mark.parametrize(
    "day, expected",
    [
        (date(2021, 5, 2), date(2021, 4, 2)),
        (date(2021, 1, 15), date(2020, 12, 15)),
        (date(2021, 3, 31), date(2021, 2, 28)),
        (date(2020, 3, 31), date(2020, 2, 29)),
        (date(2021, 5, 31), date(2021, 4, 30)),
        (date(1, 1, 15), date.min),
    ],
)
def test_previous_month_clamps_to_month_end(day, expected):
    assert previous_month(day) == expected


def test_monthly_window_ends_on_the_given_day():
    assert monthly_window(date(2021, 5, 2)) == (date(2021, 4, 2), date(2021, 5, 2))


def test_record_files_ping_under_its_utc_day():
    store = MemoryCountingStore()
    handler = IngestHandler(store, now=_fixed_now)

    async def record():
        first = await handler.record(CLIENT_A, "1619827200")
        second = await handler.record(CLIENT_A)
        return first, second, await store.count_distinct_on_day(date(2021, 5, 1))

    assert asyncio.run(record()) == (date(2021, 5, 1), date(2021, 5, 2), 1)


def test_invalid_ping_has_no_side_effect():
    store = MemoryCountingStore()
    handler = IngestHandler(store, now=_fixed_now)

    async def record():
        with pytest.raises(ValidationError):
            await handler.record("not-a-uuid", "1619827200")
        with pytest.raises(ValidationError):
            await handler.record(CLIENT_A, "yesterday")
        return await store.count_distinct_in_window(date.min, date.max)

    assert asyncio.run(record()) == 0


def test_queries_count_daily_and_trailing_month():
    store = MemoryCountingStore()
    ingest = IngestHandler(store, now=_fixed_now)
    queries = QueryHandler(store)
    april_first = str(int(datetime(2021, 4, 1, 12, tzinfo=timezone.utc).timestamp()))
    april_second = str(int(datetime(2021, 4, 2, 12, tzinfo=timezone.utc).timestamp()))

    async def scenario():
        await ingest.record(CLIENT_A, april_first)
        await ingest.record(CLIENT_B, april_second)
        await ingest.record(CLIENT_A)
        await ingest.record(CLIENT_B)
        return (
            await queries.daily_count("20210502"),
            await queries.monthly_count("20210502"),
            await queries.daily_count("20210401"),
            await queries.monthly_count("20210401"),
        )

    assert asyncio.run(scenario()) == (2, 2, 1, 1)


def test_query_rejects_invalid_day():
    queries = QueryHandler(MemoryCountingStore())
    with pytest.raises(ValidationError):
        asyncio.run(queries.monthly_count("bad"))

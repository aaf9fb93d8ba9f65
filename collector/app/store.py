"""Deduplicating storage of client pings and distinct-count queries."""
from __future__ import annotations

import abc
import asyncio
import logging
import threading
from contextlib import nullcontext
from datetime import date
from typing import Any, Callable, Dict, Optional, Set, TypeVar
from uuid import UUID

from sqlalchemy import bindparam, distinct, func, insert, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from .config import Settings
from .database import build_engine, transaction
from .models import Base, cids_table

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StorageError(RuntimeError):
    """Raised when the backing engine fails, or an operation misses its deadline."""


class CountingStore(abc.ABC):
    """Set of ``(client_id, day)`` pairs with distinct-client counting.

    The public coroutines run the blocking implementation in a worker thread
    and enforce a deadline. Subclasses implement the ``_``-prefixed methods
    and raise :class:`StorageError` for engine failures.
    """

    def __init__(self, default_timeout: Optional[float] = None) -> None:
        self._default_timeout = default_timeout

    async def insert(self, client_id: UUID, day: date, timeout: Optional[float] = None) -> None:
        """Record ``client_id`` as seen on ``day``. Repeating a pair is a no-op."""
        await self._run(self._insert, str(client_id), day, timeout=timeout)

    async def count_distinct_on_day(self, day: date, timeout: Optional[float] = None) -> int:
        return await self._run(self._count_on_day, day, timeout=timeout)

    async def count_distinct_in_window(
        self, start: date, end: date, timeout: Optional[float] = None
    ) -> int:
        """Count clients seen at least once in ``[start, end]``, both inclusive."""
        if start > end:
            return 0
        return await self._run(self._count_in_window, start, end, timeout=timeout)

    def close(self) -> None:
        """Release any resources held by the store."""

    async def _run(self, fn: Callable[..., T], *args: Any, timeout: Optional[float]) -> T:
        if timeout is None:
            timeout = self._default_timeout
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout)
        except asyncio.TimeoutError as exc:
            raise StorageError(
                f"{fn.__name__.lstrip('_')} did not finish within {timeout}s"
            ) from exc

    @abc.abstractmethod
    def _insert(self, cid: str, day: date) -> None:
        ...

    @abc.abstractmethod
    def _count_on_day(self, day: date) -> int:
        ...

    @abc.abstractmethod
    def _count_in_window(self, start: date, end: date) -> int:
        ...


def _insert_ignoring_duplicates(dialect_name: str):
    if dialect_name == "sqlite":
        return sqlite.insert(cids_table).on_conflict_do_nothing()
    if dialect_name == "postgresql":
        return postgresql.insert(cids_table).on_conflict_do_nothing()
    # MySQL gets INSERT IGNORE; other engines fall back to catching IntegrityError.
    return insert(cids_table).prefix_with("IGNORE", dialect="mysql")


class SqlCountingStore(CountingStore):
    """Counting store backed by a relational database through SQLAlchemy."""

    def __init__(self, engine: Engine, default_timeout: Optional[float] = None) -> None:
        super().__init__(default_timeout)
        self._engine = engine
        # A StaticPool hands every thread the same DBAPI connection.
        self._guard = threading.Lock() if isinstance(engine.pool, StaticPool) else nullcontext()

        column = cids_table.c
        self._insert_stmt = _insert_ignoring_duplicates(engine.dialect.name)
        self._daily_stmt = select(func.count(distinct(column.cid))).where(
            column.day == bindparam("day")
        )
        self._window_stmt = select(func.count(distinct(column.cid))).where(
            column.day >= bindparam("start_day"),
            column.day <= bindparam("end_day"),
        )

        try:
            Base.metadata.create_all(bind=engine)
            # Startup check only; SQLAlchemy caches the compiled form on first execute.
            for stmt in (self._insert_stmt, self._daily_stmt, self._window_stmt):
                stmt.compile(dialect=engine.dialect)
        except SQLAlchemyError as exc:
            engine.dispose()
            raise StorageError(f"Failed to prepare counting store on {engine.url!r}") from exc

        logger.info("Counting store ready on %r (%s)", engine.url, engine.dialect.name)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SqlCountingStore":
        return cls(build_engine(settings), default_timeout=settings.query_timeout_seconds)

    def close(self) -> None:
        self._engine.dispose()
        logger.info("Counting store on %r closed", self._engine.url)

    def _insert(self, cid: str, day: date) -> None:
        try:
            with self._guard, transaction(self._engine) as connection:
                connection.execute(self._insert_stmt, {"cid": cid, "day": day})
        except IntegrityError:
            logger.debug("Client ID %s already recorded for %s", cid, day)
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to save client ID {cid} for {day}") from exc

    def _count_on_day(self, day: date) -> int:
        try:
            with self._guard, self._engine.connect() as connection:
                count = connection.execute(self._daily_stmt, {"day": day}).scalar()
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to count client IDs for {day}") from exc
        return count or 0

    def _count_in_window(self, start: date, end: date) -> int:
        try:
            with self._guard, self._engine.connect() as connection:
                count = connection.execute(
                    self._window_stmt, {"start_day": start, "end_day": end}
                ).scalar()
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to count client IDs for {start} - {end}") from exc
        return count or 0


class MemoryCountingStore(CountingStore):
    """In-process counting store keeping client IDs per day behind a lock."""

    def __init__(self, default_timeout: Optional[float] = None) -> None:
        super().__init__(default_timeout)
        self._days: Dict[date, Set[str]] = {}
        self._lock = threading.Lock()

    def _insert(self, cid: str, day: date) -> None:
        with self._lock:
            self._days.setdefault(day, set()).add(cid)

    def _count_on_day(self, day: date) -> int:
        with self._lock:
            return len(self._days.get(day, ()))

    def _count_in_window(self, start: date, end: date) -> int:
        with self._lock:
            seen: Set[str] = set()
            for day, cids in self._days.items():
                if start <= day <= end:
                    seen.update(cids)
            return len(seen)

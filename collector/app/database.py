"""Database engine configuration for the collector service."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.pool import StaticPool

from .config import Settings


def _is_memory_sqlite(url) -> bool:
    return url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:")


def build_engine(settings: Settings) -> Engine:
    """Create an engine with a fixed size connection pool."""

    url = make_url(settings.database_url)
    options: Dict[str, Any] = {"future": True}

    if url.get_backend_name() == "sqlite":
        options["connect_args"] = {
            "check_same_thread": False,
            "timeout": settings.query_timeout_seconds,
        }

    if _is_memory_sqlite(url):
        # A private in-memory database only exists on its one connection.
        options["poolclass"] = StaticPool
    else:
        options.update(
            pool_size=settings.pool_size,
            max_overflow=0,
            pool_timeout=settings.query_timeout_seconds,
            pool_pre_ping=True,
        )

    return create_engine(url, **options)


@contextmanager
def transaction(engine: Engine) -> Iterator[Connection]:
    """Provide a transactional scope for a single unit of work."""
    with engine.connect() as connection:
        with connection.begin():
            yield connection

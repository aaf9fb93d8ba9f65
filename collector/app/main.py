"""FastAPI application exposing the ping collector and unique counters."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request, status
from fastapi.responses import PlainTextResponse, Response

from .config import Settings
from .handlers import IngestHandler, QueryHandler, ValidationError
from .store import CountingStore, SqlCountingStore, StorageError

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[CountingStore] = None,
) -> FastAPI:
    """Build the application around ``store``, creating a SQL store if none is given.

    Failing to reach the database here is fatal: the error propagates to the
    caller starting the process.
    """

    if settings is None:
        settings = Settings.from_env()
    if store is None:
        store = SqlCountingStore.from_settings(settings)

    app = FastAPI(
        title="Unique Client Collector",
        description="Collects client pings and reports daily and monthly unique clients.",
        version="0.1.0",
    )
    app.state.store = store
    app.state.ingest = IngestHandler(store)
    app.state.queries = QueryHandler(store)

    @app.on_event("shutdown")
    def close_store() -> None:
        app.state.store.close()

    app.add_api_route("/collect", collect, methods=["GET"], response_class=Response)
    app.add_api_route(
        "/daily_uniques", daily_uniques, methods=["GET"], response_class=PlainTextResponse
    )
    app.add_api_route(
        "/monthly_uniques", monthly_uniques, methods=["GET"], response_class=PlainTextResponse
    )
    return app


def _bad_request(exc: ValidationError) -> HTTPException:
    logger.debug("Rejected request: %s", exc)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _storage_failure(exc: StorageError) -> HTTPException:
    logger.exception("Storage operation failed: %s", exc)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Storage unavailable"
    )


async def collect(
    request: Request,
    cid: Optional[str] = Query(None),
    d: Optional[str] = Query(None),
) -> Response:
    handler: IngestHandler = request.app.state.ingest
    try:
        await handler.record(cid, d)
    except ValidationError as exc:
        raise _bad_request(exc)
    except StorageError as exc:
        raise _storage_failure(exc)
    return Response(status_code=status.HTTP_200_OK)


async def daily_uniques(
    request: Request,
    d: Optional[str] = Query(None),
) -> PlainTextResponse:
    handler: QueryHandler = request.app.state.queries
    try:
        count = await handler.daily_count(d)
    except ValidationError as exc:
        raise _bad_request(exc)
    except StorageError as exc:
        raise _storage_failure(exc)
    return PlainTextResponse(str(count))


async def monthly_uniques(
    request: Request,
    d: Optional[str] = Query(None),
) -> PlainTextResponse:
    handler: QueryHandler = request.app.state.queries
    try:
        count = await handler.monthly_count(d)
    except ValidationError as exc:
        raise _bad_request(exc)
    except StorageError as exc:
        raise _storage_failure(exc)
    return PlainTextResponse(str(count))

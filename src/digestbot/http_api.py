"""Read-only HTTP API over stored summaries and daily digests."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

import uvicorn
from fastapi import Depends, FastAPI, Query, Request
from pydantic import BaseModel

from .db import SummaryStore

_LOG = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 200


class SummaryOut(BaseModel):
    id: int
    daily_digest_id: int | None
    text: str
    timestamp: datetime


class DailyDigestOut(BaseModel):
    id: int
    text: str
    timestamp: datetime
    summaries: list[SummaryOut]


class HealthResponse(BaseModel):
    status: str


def get_store(request: Request) -> SummaryStore:
    return request.app.state.store


# ==================== Endpoints ====================
# Plain ``def`` handlers run in FastAPI's threadpool, off the event loop that
# drives the bot and the pipeline.


def list_summaries(store: SummaryStore = Depends(get_store)) -> list[dict]:
    """Every stored summary, oldest first."""
    return [s.to_dict() for s in store.list_all_summaries()]


def latest_summaries(
    count: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    page: int = Query(1, ge=1),
    store: SummaryStore = Depends(get_store),
) -> list[dict]:
    """One page of summaries, newest first."""
    return [s.to_dict() for s in store.fetch_latest_summaries(count, page)]


def list_daily_digests(store: SummaryStore = Depends(get_store)) -> list[dict]:
    """Every stored digest with the summaries it covers."""
    return [d.to_dict() for d in store.list_all_digests()]


async def health() -> HealthResponse:
    return HealthResponse(status="ok")


def create_app(store: SummaryStore) -> FastAPI:
    app = FastAPI(title="digestbot API")
    app.state.store = store
    app.add_api_route("/summaries", list_summaries, methods=["GET"], response_model=list[SummaryOut])
    app.add_api_route("/summaries/latest", latest_summaries, methods=["GET"], response_model=list[SummaryOut])
    app.add_api_route("/daily_digests", list_daily_digests, methods=["GET"], response_model=list[DailyDigestOut])
    app.add_api_route("/health", health, methods=["GET"], response_model=HealthResponse)
    return app


# ==================== Server ====================


class ApiServer:
    """Runs the API with uvicorn inside the caller's event loop."""

    def __init__(self, store: SummaryStore, host: str, port: int) -> None:
        self.host = host
        self.port = port
        config = uvicorn.Config(create_app(store), host=host, port=port, log_config=None, lifespan="off")
        self._server = uvicorn.Server(config)
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        self._task = asyncio.create_task(self._server.serve(), name="digestbot-http-api")
        _LOG.info("Serving http API on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._server.should_exit = True
        await self._task
        self._task = None
        _LOG.info("HTTP API stopped")

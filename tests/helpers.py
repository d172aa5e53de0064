"""Shared stubs and a local HTTP server for the downloader tests."""

from __future__ import annotations

import asyncio
import contextlib
from typing import Optional

from aiohttp import web
from aiohttp.test_utils import TestServer

from download_errors import PermanentlyMissingUpstream, SinkError, TransientFetchError
from gallery_client import ItemDescriptor
from run_config import RunConfig
from run_protocol import CancelToken, Event
from single_download import FetchDiagnostic, FetchOutcome


@contextlib.asynccontextmanager
async def serve(app: web.Application):
    """Run `app` on a local port for the duration of the block."""
    server = TestServer(app)
    await server.start_server()
    try:
        yield server
    finally:
        await server.close()


def make_items(*ids: str, host: str = "https://img.example") -> list[ItemDescriptor]:
    return [ItemDescriptor(item_id=i, source_url=f"{host}/{i}.png") for i in ids]


def kinds(events: list[Event]) -> list[str]:
    return [e.kind for e in events]


class StubFetcher:
    """
    Stands in for RetryingFetcher.

    `results` maps item id -> "ok" | "missing" | "fail" (default "ok"). When
    `gate` is given, every fetch blocks on it (abortable by the run token).
    """

    def __init__(self, results: Optional[dict[str, str]] = None, gate: Optional[asyncio.Event] = None):
        self.results = results or {}
        self.gate = gate
        self.calls: list[str] = []
        self.configs: list[RunConfig] = []
        self.inflight = 0
        self.max_inflight = 0
        self.started = asyncio.Event()

    async def fetch(self, item, config, cancel_token: CancelToken, on_diagnostic=None) -> FetchOutcome:
        self.calls.append(item.item_id)
        self.configs.append(config)
        self.inflight += 1
        self.max_inflight = max(self.max_inflight, self.inflight)
        self.started.set()
        try:
            if self.gate is not None:
                await cancel_token.guard(self.gate.wait())
            else:
                await asyncio.sleep(0)
        finally:
            self.inflight -= 1

        mode = self.results.get(item.item_id, "ok")
        if mode == "ok":
            return FetchOutcome(item=item, content=f"bytes-{item.item_id}".encode(), attempts=1)
        if mode == "missing":
            error = PermanentlyMissingUpstream(f"{item.item_id} missing on server")
            attempts = 1
        else:
            error = TransientFetchError(f"Failed to fetch {item.item_id} (503)", status_code=503)
            attempts = config.retry_attempts
        if on_diagnostic is not None:
            on_diagnostic(FetchDiagnostic("final_failure", item.item_id, attempts, config.retry_attempts, error))
        return FetchOutcome(item=item, content=None, attempts=attempts, error=error)


class StubClient:
    """Stands in for GalleryClient.collect_all()."""

    def __init__(self, items: Optional[list[ItemDescriptor]] = None, error: Optional[Exception] = None):
        self.items = items or []
        self.error = error
        self.calls = 0

    async def collect_all(self, batch_size=20, cancel_token=None, start_cursor="0"):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.items)


class MemorySink:
    def __init__(self, handle: str = "mem://archive"):
        self.handle = handle
        self.delivered: list[tuple[bytes, str]] = []

    async def deliver(self, blob: bytes, filename: str) -> Optional[str]:
        self.delivered.append((blob, filename))
        return self.handle


class DecliningSink:
    async def deliver(self, blob: bytes, filename: str) -> Optional[str]:
        raise SinkError("Save declined by user")

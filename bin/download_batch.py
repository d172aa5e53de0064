#!/usr/bin/env python3
"""
Gallery Batch Downloader

Downloads every image in a paginated gallery and packages them into one ZIP.

Pipeline:
    listing (GalleryClient) -> ConcurrencyLimiter -> RetryingFetcher
        -> ArchiveBuilder -> DownloadSink

Run lifecycle:
    IDLE → COLLECTING_METADATA → DOWNLOADING → FINALIZING → COMPLETED
                 ↓                    ↓             ↓
              CANCELLED / FAILED (from any active phase)

One orchestrator runs at most one download at a time. Every run emits exactly
one `start` before any `progress` and ends with exactly one terminal event.

Large galleries (>= 800 items) are downgraded to a single slot with a minimum
throttle, since the image host starts refusing bursts at that size.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import functools
import json
import logging
import os
import signal
import sys
import time
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Protocol, Sequence, Union

import aiohttp
from tqdm import tqdm

from download_errors import (
    DownloadError,
    RunAlreadyActiveError,
    RunCancelledError,
    SinkError,
    ValidationError,
)
from gallery_client import (
    DEFAULT_BATCH_SIZE,
    RPC_ENDPOINT,
    GalleryClient,
    ItemDescriptor,
    item_from_record,
    load_listing_file,
    save_listing_file,
)
from run_config import (
    DEFAULT_CONCURRENCY,
    DEFAULT_RETRY_ATTEMPTS,
    DEFAULT_RETRY_BASE_DELAY_MS,
    DEFAULT_TIMEOUT_SEC,
    RunConfig,
    derive_for_item_count,
    load_config_file,
)
from run_protocol import (
    CancelledEvent,
    CancelRun,
    CancelToken,
    DoneEvent,
    ErrorEvent,
    Event,
    EventChannel,
    LogEvent,
    ProgressEvent,
    Request,
    StartEvent,
    StartRun,
    StatusEvent,
    event_to_dict,
    request_from_dict,
)
from single_download import FetchDiagnostic, FetchOutcome, RetryingFetcher, entry_name_for
from throttler import ConcurrencyLimiter
from zip_archive import ArchiveBuilder

log = logging.getLogger(__name__)

DEFAULT_FILENAME = "gallery.zip"
USER_AGENT = "gallery-download/1.0"


# =============================================================================
# RUN STATE
# =============================================================================

class RunPhase(Enum):
    """Orchestrator lifecycle phases."""
    IDLE = auto()
    COLLECTING_METADATA = auto()
    DOWNLOADING = auto()
    FINALIZING = auto()
    COMPLETED = auto()
    CANCELLED = auto()
    FAILED = auto()


@dataclass(frozen=True)
class FailureRecord:
    """One item that ended in failure."""
    item_id: str
    reason: str
    permanently_missing: bool
    attempts: int


@dataclass
class RunSummary:
    """What a finished run reports back to its caller."""
    phase: RunPhase
    total: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    concurrency: int = 0
    throttle_delay_ms: int = 0
    archive_bytes: int = 0
    sink_handle: Optional[str] = None
    error: Optional[str] = None
    failures: list[FailureRecord] = field(default_factory=list)
    elapsed_sec: float = 0.0


@dataclass
class _RunState:
    """Mutable per-run bookkeeping. Only the orchestrator touches it."""
    cancel_token: CancelToken
    archive: ArchiveBuilder = field(default_factory=ArchiveBuilder)
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    failures: list[FailureRecord] = field(default_factory=list)


# =============================================================================
# DOWNLOAD SINK
# =============================================================================

class DownloadSink(Protocol):
    async def deliver(self, blob: bytes, filename: str) -> Optional[str]:
        ...


class DirectorySink:
    """Persists finished archives into a folder; the handle is the file path."""

    def __init__(self, output_folder: str, overwrite: bool = False):
        self.output_folder = Path(output_folder)
        self.overwrite = overwrite

    def target_path(self, filename: str) -> Path:
        return self.output_folder / filename

    async def deliver(self, blob: bytes, filename: str) -> Optional[str]:
        path = self.target_path(filename)
        if path.exists() and not self.overwrite:
            raise SinkError(f"Save declined: {path} already exists (use --overwrite to replace it)")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(path.write_bytes, blob)
        except OSError as e:
            raise SinkError(f"Could not save archive to {path}: {e}") from e
        return str(path.resolve())


# =============================================================================
# ORCHESTRATOR
# =============================================================================

class GalleryDownloader:
    """
    Drives one gallery download at a time.

    start_run() rejects a second concurrent run with RunAlreadyActiveError and
    leaves the active run untouched. cancel() is idempotent and safe to call
    when nothing is running.
    """

    def __init__(
        self,
        client: GalleryClient,
        fetcher: RetryingFetcher,
        sink: DownloadSink,
        *,
        defaults: Optional[RunConfig] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        archive_filename: str = DEFAULT_FILENAME,
        on_listing: Optional[Callable[[list[ItemDescriptor]], None]] = None,
    ):
        self.client = client
        self.fetcher = fetcher
        self.sink = sink
        self.defaults = defaults or RunConfig()
        self.batch_size = batch_size
        self.archive_filename = archive_filename
        self.on_listing = on_listing
        self._phase = RunPhase.IDLE
        self._active_token: Optional[CancelToken] = None

    @property
    def phase(self) -> RunPhase:
        return self._phase

    @property
    def active(self) -> bool:
        return self._active_token is not None

    def config_from_preferences(self, request: StartRun) -> RunConfig:
        return RunConfig.from_preferences(
            request.concurrency,
            request.sequential,
            request.throttle_ms,
            retry_attempts=self.defaults.retry_attempts,
            retry_base_delay_ms=self.defaults.retry_base_delay_ms,
            timeout_sec=self.defaults.timeout_sec,
        )

    def handle(
        self,
        request: Union[Request, Mapping[str, Any]],
        channel: EventChannel,
    ) -> Optional[asyncio.Task]:
        """Dispatch a UI request. Returns the run task for startRun."""
        if isinstance(request, Mapping):
            request = request_from_dict(request)
        if isinstance(request, CancelRun):
            self.cancel()
            return None
        return self.start_run(self.config_from_preferences(request), channel, request.items)

    def start_run(
        self,
        config: RunConfig,
        channel: EventChannel,
        items: Optional[Sequence[Union[ItemDescriptor, Mapping[str, Any]]]] = None,
    ) -> asyncio.Task:
        """
        Begin a run in the background and return its task.

        Pre-fetched items may be descriptors or raw listing records; invalid
        ones end the run with an error event rather than raising here.
        """
        if self.active:
            raise RunAlreadyActiveError()
        token = CancelToken()
        self._active_token = token
        return asyncio.ensure_future(self._execute(config, channel, items, token))

    async def run(
        self,
        config: RunConfig,
        channel: EventChannel,
        items: Optional[Sequence[ItemDescriptor]] = None,
    ) -> RunSummary:
        return await self.start_run(config, channel, items)

    def cancel(self) -> bool:
        """Signal the active run to stop. Returns False if nothing was running."""
        if self._active_token is None:
            return False
        self._active_token.cancel()
        return True

    async def _execute(
        self,
        config: RunConfig,
        channel: EventChannel,
        items: Optional[Sequence[ItemDescriptor]],
        token: CancelToken,
    ) -> RunSummary:
        state = _RunState(cancel_token=token)
        summary = RunSummary(phase=RunPhase.IDLE, concurrency=config.concurrency,
                             throttle_delay_ms=config.throttle_delay_ms)
        start = time.monotonic()

        try:
            if items is None:
                self._phase = RunPhase.COLLECTING_METADATA
                channel.send(StatusEvent("Collecting gallery metadata..."))
                items = await self.client.collect_all(self.batch_size, token)
                token.raise_if_cancelled()
                if self.on_listing is not None:
                    self.on_listing(list(items))
            else:
                items = _coerce_items(items)
                _check_unique_ids(items)

            summary.total = len(items)

            if not items:
                channel.send(StatusEvent("No screenshots found in your gallery."))
                self._phase = RunPhase.COMPLETED
                channel.send(DoneEvent(total=0, succeeded=0, failed=0, processed=0))
                summary.phase = RunPhase.COMPLETED
                return summary

            effective, notice = derive_for_item_count(config, len(items))
            if notice is not None:
                log.info(notice)
                channel.send(StatusEvent(notice))
            summary.concurrency = effective.concurrency
            summary.throttle_delay_ms = effective.throttle_delay_ms

            if effective.throttle_delay_ms > 0:
                channel.send(LogEvent("info", f"Throttle delay set to {effective.throttle_delay_ms} ms between downloads."))

            self._phase = RunPhase.DOWNLOADING
            channel.send(StartEvent(total=len(items), concurrency=effective.concurrency))
            await self._download_all(items, effective, channel, state)
            token.raise_if_cancelled()

            self._phase = RunPhase.FINALIZING
            channel.send(StatusEvent("Packaging ZIP archive..."))
            blob = state.archive.finalize()
            summary.archive_bytes = len(blob)
            handle = await token.guard(self.sink.deliver(blob, self.archive_filename))

            self._phase = RunPhase.COMPLETED
            summary.sink_handle = handle
            channel.send(DoneEvent(
                total=len(items),
                succeeded=state.succeeded,
                failed=state.failed,
                processed=state.processed,
                sink_handle=handle,
            ))
            summary.phase = RunPhase.COMPLETED

        except RunCancelledError:
            self._finish_cancelled(channel, summary)
        except DownloadError as e:
            if token.cancelled:
                self._finish_cancelled(channel, summary)
            else:
                self._finish_failed(channel, summary, str(e))
        except Exception as e:
            if token.cancelled:
                self._finish_cancelled(channel, summary)
            else:
                log.exception("Unexpected failure during gallery download")
                self._finish_failed(channel, summary, str(e) or type(e).__name__)
        finally:
            summary.processed = state.processed
            summary.succeeded = state.succeeded
            summary.failed = state.failed
            summary.failures = list(state.failures)
            summary.elapsed_sec = time.monotonic() - start
            if not state.archive.finalized:
                state.archive.discard()
            self._active_token = None
            self._phase = RunPhase.IDLE

        return summary

    def _finish_cancelled(self, channel: EventChannel, summary: RunSummary) -> None:
        self._phase = RunPhase.CANCELLED
        summary.phase = RunPhase.CANCELLED
        channel.send(StatusEvent("Download cancelled."))
        channel.send(CancelledEvent())

    def _finish_failed(self, channel: EventChannel, summary: RunSummary, message: str) -> None:
        self._phase = RunPhase.FAILED
        summary.phase = RunPhase.FAILED
        summary.error = message
        channel.send(ErrorEvent(message))

    async def _download_all(
        self,
        items: list[ItemDescriptor],
        config: RunConfig,
        channel: EventChannel,
        state: _RunState,
    ) -> None:
        """Fan items out through the limiter and wait for every unit to settle."""
        token = state.cancel_token
        limiter = ConcurrencyLimiter(config.concurrency, token)
        total = len(items)

        channel.send(StatusEvent(f"Downloading {total} screenshot(s)..."))

        def on_diagnostic(diagnostic: FetchDiagnostic) -> None:
            channel.send(LogEvent("warn", diagnostic.message))

        async def unit(item: ItemDescriptor) -> FetchOutcome:
            token.raise_if_cancelled()
            outcome = await self.fetcher.fetch(item, config, token, on_diagnostic)
            self._record(outcome, total, channel, state)
            return outcome

        handles = [limiter.submit(functools.partial(unit, item)) for item in items]
        results = await asyncio.gather(*handles, return_exceptions=True)

        token.raise_if_cancelled()
        for result in results:
            if isinstance(result, BaseException):
                raise result

    def _record(self, outcome: FetchOutcome, total: int, channel: EventChannel, state: _RunState) -> None:
        item = outcome.item
        if outcome.success:
            state.archive.add_entry(entry_name_for(item), outcome.content, item.timestamp)
            state.succeeded += 1
        else:
            state.failed += 1
            state.failures.append(FailureRecord(
                item_id=item.item_id,
                reason=str(outcome.error),
                permanently_missing=outcome.permanently_missing,
                attempts=outcome.attempts,
            ))
            if outcome.permanently_missing:
                channel.send(LogEvent("warn", f"Skipping {item.item_id}: file unavailable on server."))
            else:
                channel.send(LogEvent("warn", f"Giving up on {item.item_id} after {outcome.attempts} attempts."))
        state.processed += 1
        channel.send(ProgressEvent(
            completed=state.processed,
            total=total,
            current_id=item.item_id,
            succeeded=state.succeeded,
            failed=state.failed,
        ))


def _coerce_items(raw: Sequence[Any]) -> list[ItemDescriptor]:
    items = []
    for entry in raw:
        if isinstance(entry, ItemDescriptor):
            items.append(entry)
            continue
        item = item_from_record(entry)
        if item is None:
            raise ValidationError(f"Pre-fetched item lacks an id or URL: {entry!r}")
        items.append(item)
    return items


def _check_unique_ids(items: Sequence[ItemDescriptor]) -> None:
    counts = Counter(it.item_id for it in items)
    dupes = sorted(k for k, c in counts.items() if c > 1)
    if dupes:
        raise ValidationError(f"Duplicate item ids in pre-fetched list: {', '.join(dupes[:5])}")


# =============================================================================
# CLI CONFIGURATION
# =============================================================================

@dataclass(frozen=True)
class CliOptions:
    """Command-line settings."""
    output_folder: str
    filename: str = DEFAULT_FILENAME
    overwrite: bool = False

    concurrency: Any = DEFAULT_CONCURRENCY
    sequential: bool = False
    throttle_ms: Any = 0

    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    retry_base_delay_ms: int = DEFAULT_RETRY_BASE_DELAY_MS
    timeout_sec: int = DEFAULT_TIMEOUT_SEC

    endpoint: str = RPC_ENDPOINT
    batch_size: int = DEFAULT_BATCH_SIZE
    cookie: Optional[str] = None

    listing_path: Optional[str] = None
    save_listing_path: Optional[str] = None

    create_overview: bool = True
    json_events: bool = False


def parse_args(argv: Optional[Sequence[str]] = None) -> CliOptions:
    """Parse command line arguments, layered over an optional JSON config file."""
    p = argparse.ArgumentParser(
        description="Download a whole screenshot gallery into one ZIP archive",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  gallery-download --output downloads/ --cookie "$GALLERY_COOKIE"
  gallery-download --output downloads/ --listing screens.parquet --sequential
  gallery-download --config gallery.json
"""
    )

    p.add_argument("--config", type=str, help="Path to JSON config file (keys match the long options)")

    # Output
    p.add_argument("--output", dest="output_folder", type=str, help="Folder to save the archive in")
    p.add_argument("--filename", type=str, default=DEFAULT_FILENAME)
    p.add_argument("--overwrite", action="store_true")

    # Panel preferences
    p.add_argument("--concurrency", type=int, default=DEFAULT_CONCURRENCY)
    p.add_argument("--sequential", action="store_true")
    p.add_argument("--throttle_ms", type=int, default=0)

    # Retry
    p.add_argument("--retry_attempts", type=int, default=DEFAULT_RETRY_ATTEMPTS)
    p.add_argument("--retry_base_delay_ms", type=int, default=DEFAULT_RETRY_BASE_DELAY_MS)
    p.add_argument("--timeout", dest="timeout_sec", type=int, default=DEFAULT_TIMEOUT_SEC)

    # Listing
    p.add_argument("--endpoint", type=str, default=RPC_ENDPOINT)
    p.add_argument("--batch_size", type=int, default=DEFAULT_BATCH_SIZE)
    p.add_argument("--cookie", type=str, default=None, help="Cookie header from an existing browser session")
    p.add_argument("--listing", dest="listing_path", type=str, default=None,
                   help="Pre-fetched listing (parquet/csv/json/ndjson with id,url[,date])")
    p.add_argument("--save_listing", dest="save_listing_path", type=str, default=None)

    # Reporting
    p.add_argument("--no_overview", action="store_true")
    p.add_argument("--json_events", action="store_true", help="Print events as JSON lines")

    pre, _ = p.parse_known_args(argv)
    if pre.config:
        data = load_config_file(pre.config)
        known = {a.dest for a in p._actions}
        aliases = {"output": "output_folder", "listing": "listing_path",
                   "save_listing": "save_listing_path", "timeout": "timeout_sec"}
        p.set_defaults(**{aliases.get(k, k): v for k, v in data.items() if aliases.get(k, k) in known})

    args = p.parse_args(argv)

    if not args.output_folder:
        p.error("--output is required unless --config provides it")

    return CliOptions(
        output_folder=args.output_folder,
        filename=args.filename,
        overwrite=bool(args.overwrite),
        concurrency=args.concurrency,
        sequential=bool(args.sequential),
        throttle_ms=args.throttle_ms,
        retry_attempts=args.retry_attempts,
        retry_base_delay_ms=args.retry_base_delay_ms,
        timeout_sec=args.timeout_sec,
        endpoint=args.endpoint,
        batch_size=args.batch_size,
        cookie=args.cookie,
        listing_path=args.listing_path,
        save_listing_path=args.save_listing_path,
        create_overview=not args.no_overview,
        json_events=bool(args.json_events),
    )


def configure_logging() -> None:
    log_level_name = os.getenv("LOG_LEVEL", "WARNING").upper()
    log_level = getattr(logging, log_level_name, logging.WARNING)
    logging.basicConfig(
        level=log_level,
        format="[%(asctime)s] %(levelname)s [%(module)s-%(funcName)s()::%(lineno)d] %(message)s",
        datefmt="%d/%b/%Y %H:%M:%S",
    )
    if log_level <= logging.INFO:
        for noisy in ("aiohttp.access", "aiohttp.client", "aiohttp.internal"):
            logging.getLogger(noisy).setLevel(logging.WARNING)


# =============================================================================
# CONSOLE RENDERING
# =============================================================================

class ConsoleRenderer:
    """Shows run events as a tqdm progress bar plus tagged log lines."""

    def __init__(self, json_events: bool = False):
        self.json_events = json_events
        self.pbar: Optional[tqdm] = None

    def __call__(self, event: Event) -> None:
        if self.json_events:
            print(json.dumps(event_to_dict(event), default=str), flush=True)
            return

        if isinstance(event, StartEvent):
            self.pbar = tqdm(total=event.total, desc="Downloading", unit="img")
            self._write(f"[Start] {event.total} screenshot(s) | concurrency={event.concurrency}")
        elif isinstance(event, ProgressEvent):
            if self.pbar is not None:
                self.pbar.update(event.completed - self.pbar.n)
                self.pbar.set_postfix(ok=event.succeeded, failed=event.failed)
        elif isinstance(event, StatusEvent):
            self._write(f"[Status] {event.message}")
        elif isinstance(event, LogEvent):
            tag = "[Warn]" if event.level == "warn" else "[Info]"
            self._write(f"{tag} {event.message}")
        else:
            self._close()
            if isinstance(event, ErrorEvent):
                print(f"[Error] {event.message}", file=sys.stderr)
            elif isinstance(event, CancelledEvent):
                print("[Cancelled] Download stopped before completion.")

    def _write(self, message: str) -> None:
        if self.pbar is not None:
            tqdm.write(message)
        else:
            print(message)

    def _close(self) -> None:
        if self.pbar is not None:
            self.pbar.close()
            self.pbar = None


# =============================================================================
# OVERVIEW
# =============================================================================

def write_overview(*, opts: CliOptions, summary: RunSummary) -> str:
    """Write JSON overview report next to the archive."""
    reasons = Counter(
        ("missing_upstream" if f.permanently_missing else "unreachable", f.reason)
        for f in summary.failures
    )
    report = {
        "script_inputs": {
            "output_folder": opts.output_folder,
            "filename": opts.filename,
            "endpoint": opts.endpoint,
            "listing": opts.listing_path,
            "concurrency_requested": opts.concurrency,
            "sequential": opts.sequential,
            "throttle_ms_requested": opts.throttle_ms,
            "retry_attempts": opts.retry_attempts,
            "retry_base_delay_ms": opts.retry_base_delay_ms,
            "timeout_sec": opts.timeout_sec,
        },
        "summary": {
            "outcome": summary.phase.name.lower(),
            "total_items": summary.total,
            "processed": summary.processed,
            "successful_downloads": summary.succeeded,
            "failed_downloads": summary.failed,
            "success_rate_percent": round((summary.succeeded / summary.total) * 100.0, 2) if summary.total else 0.0,
            "effective_concurrency": summary.concurrency,
            "effective_throttle_ms": summary.throttle_delay_ms,
            "archive_mb": round(summary.archive_bytes / 1e6, 3),
            "elapsed_sec": round(summary.elapsed_sec, 3),
            "archive_path": summary.sink_handle,
            "error": summary.error,
        },
        "error_breakdown": [
            {"kind": kind, "error": reason, "count": cnt}
            for (kind, reason), cnt in reasons.most_common()
        ],
        "failed_ids": [f.item_id for f in summary.failures],
        "timestamp_local": time.strftime("%Y-%m-%d %H:%M:%S", time.localtime()),
    }

    out = Path(opts.output_folder)
    out.mkdir(parents=True, exist_ok=True)
    overview_path = out / f"{Path(opts.filename).stem}_overview.json"

    with overview_path.open("w") as f:
        json.dump(report, f, indent=2)

    return str(overview_path.resolve())


# =============================================================================
# MAIN
# =============================================================================

EXIT_CODES = {
    RunPhase.COMPLETED: 0,
    RunPhase.FAILED: 1,
    RunPhase.CANCELLED: 130,
}


async def run_cli(opts: CliOptions) -> int:
    """Run one download from CLI options; returns the process exit code."""
    try:
        config = RunConfig.from_preferences(
            opts.concurrency,
            opts.sequential,
            opts.throttle_ms,
            retry_attempts=opts.retry_attempts,
            retry_base_delay_ms=opts.retry_base_delay_ms,
            timeout_sec=opts.timeout_sec,
        )
        items = load_listing_file(opts.listing_path) if opts.listing_path else None
    except ValidationError as e:
        print(f"[Config] {e}", file=sys.stderr)
        return 2

    if not opts.json_events:
        print("=" * 72)
        print("Gallery Batch Downloader")
        print("=" * 72)
        if items is not None:
            print(f"[Load] Pre-fetched items: {len(items)}")

    on_listing = None
    if opts.save_listing_path:
        def on_listing(collected: list[ItemDescriptor]) -> None:
            path = save_listing_file(collected, opts.save_listing_path)
            log.info(f"listing saved to {path}")

    headers = {"User-Agent": USER_AGENT}
    if opts.cookie:
        headers["Cookie"] = opts.cookie

    connector = aiohttp.TCPConnector(limit=max(10, config.concurrency * 2), ttl_dns_cache=300)
    renderer = ConsoleRenderer(json_events=opts.json_events)
    channel = EventChannel(listener=renderer)

    async with aiohttp.ClientSession(
        connector=connector,
        timeout=aiohttp.ClientTimeout(total=max(1, opts.timeout_sec * 2)),
        headers=headers,
    ) as session:
        downloader = GalleryDownloader(
            GalleryClient(session, endpoint=opts.endpoint, timeout_sec=opts.timeout_sec),
            RetryingFetcher(session),
            DirectorySink(opts.output_folder, overwrite=opts.overwrite),
            defaults=config,
            batch_size=opts.batch_size,
            archive_filename=opts.filename,
            on_listing=on_listing,
        )

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, downloader.cancel)

        try:
            summary = await downloader.run(config, channel, items)
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                with contextlib.suppress(NotImplementedError):
                    loop.remove_signal_handler(sig)

    if not opts.json_events:
        print("\n" + "=" * 72)
        print("FINAL SUMMARY")
        print("=" * 72)
        print(f"Outcome:               {summary.phase.name.lower()}")
        print(f"Total screenshots:     {summary.total}")
        print(f"Successful downloads:  {summary.succeeded}")
        print(f"Failed downloads:      {summary.failed}")
        print(f"Elapsed time:          {summary.elapsed_sec:.2f}s")
        if summary.sink_handle:
            print(f"Archive:               {summary.sink_handle}")

    if opts.create_overview:
        try:
            overview = write_overview(opts=opts, summary=summary)
            if not opts.json_events:
                print(f"[Report] Overview: {overview}")
        except OSError as e:
            print(f"[Report] Failed: {e}", file=sys.stderr)

    return EXIT_CODES.get(summary.phase, 1)


def main() -> None:
    """Console entry point."""
    configure_logging()
    opts = parse_args()
    sys.exit(asyncio.run(run_cli(opts)))


if __name__ == "__main__":
    main()

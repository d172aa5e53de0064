"""
Gallery Metadata Client

Walks the paginated gallery listing into one ordered list of item descriptors.

The listing is a JSON-RPC endpoint whose response shape has drifted over the
years. normalize_page() is the only place that knows about that; everything
else sees a GalleryPage.

Probe order (first present, non-null value wins):
    items:        result.screens, result.items, result.data.screens,
                  result.data.items, screens, items
    continuation: result.{next_id36, next_cursor, next_token, next},
                  result.data.{...same...}, top-level {...same...}
    success:      result.success, success
    message:      result.message, error.message

Also provides load_listing_file()/save_listing_file() so a collected listing
can be stored and handed to a later run as a pre-fetched item list.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional

import aiohttp
import polars as pl

from download_errors import MetadataProtocolError, RunCancelledError, ValidationError
from run_protocol import CancelToken

log = logging.getLogger(__name__)

RPC_ENDPOINT = "https://api.prntscr.com/v1/"
RPC_METHOD = "get_user_screens"
DEFAULT_BATCH_SIZE = 20
START_CURSOR = "0"

ITEM_KEYS = ("screens", "items")
CURSOR_KEYS = ("next_id36", "next_cursor", "next_token", "next")
DATE_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d")


# =============================================================================
# DATA MODEL
# =============================================================================

@dataclass(frozen=True)
class ItemDescriptor:
    """One remote image to fetch."""
    item_id: str
    source_url: str
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class GalleryPage:
    """One normalized page of the listing."""
    items: tuple[ItemDescriptor, ...]
    next_cursor: Optional[str] = None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Best-effort date parsing; returns None when nothing fits."""
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def item_from_record(record: Any) -> Optional[ItemDescriptor]:
    """Convert one raw listing record; None if it lacks an id or URL."""
    if not isinstance(record, Mapping):
        return None
    raw_id = record.get("id36")
    if raw_id is None:
        raw_id = record.get("id")
    raw_url = record.get("url")
    if raw_id is None or raw_url is None:
        return None
    item_id = str(raw_id).strip()
    url = str(raw_url).strip()
    if not item_id or not url:
        return None
    raw_date = record.get("date")
    if raw_date is None:
        raw_date = record.get("created_at")
    return ItemDescriptor(item_id=item_id, source_url=url, timestamp=parse_timestamp(raw_date))


# =============================================================================
# RESPONSE NORMALIZATION
# =============================================================================

def _first_present(*candidates: Any) -> Any:
    for value in candidates:
        if value is not None:
            return value
    return None


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def normalize_page(payload: Any, *, strict_success: bool = False) -> GalleryPage:
    """
    Reduce a raw listing response to a GalleryPage.

    success=false with no items means "end of listing" and yields an empty
    page. success=false alongside items is an upstream quirk: by default the
    items win; with strict_success=True it raises MetadataProtocolError.
    """
    if not isinstance(payload, Mapping):
        raise MetadataProtocolError(f"Listing response is not a JSON object: {type(payload).__name__}")

    result = _mapping(payload.get("result"))
    data = _mapping(result.get("data"))

    raw_items = _first_present(
        *(result.get(k) for k in ITEM_KEYS),
        *(data.get(k) for k in ITEM_KEYS),
        *(payload.get(k) for k in ITEM_KEYS),
    )
    if raw_items is None:
        raw_items = []
    if not isinstance(raw_items, list):
        raise MetadataProtocolError(f"Listing items field is not a list: {type(raw_items).__name__}")

    success = _first_present(result.get("success"), payload.get("success"))

    if success is False and not raw_items:
        return GalleryPage(items=(), next_cursor=None)

    if success is False and strict_success:
        message = _first_present(
            result.get("message"),
            _mapping(payload.get("error")).get("message"),
            "Unexpected gallery response",
        )
        raise MetadataProtocolError(str(message))

    items = []
    for record in raw_items:
        item = item_from_record(record)
        if item is None:
            log.warning(f"Skipping listing record without id/url: {record!r}")
            continue
        items.append(item)

    next_cursor = _first_present(
        *(result.get(k) for k in CURSOR_KEYS),
        *(data.get(k) for k in CURSOR_KEYS),
        *(payload.get(k) for k in CURSOR_KEYS),
    )
    if next_cursor is not None:
        next_cursor = str(next_cursor)
        if not next_cursor:
            next_cursor = None

    return GalleryPage(items=tuple(items), next_cursor=next_cursor)


# =============================================================================
# CLIENT
# =============================================================================

class GalleryClient:
    """JSON-RPC listing client bound to an aiohttp session."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        endpoint: str = RPC_ENDPOINT,
        timeout_sec: int = 30,
        strict_success: bool = False,
    ):
        self.session = session
        self.endpoint = endpoint
        self.timeout_sec = timeout_sec
        self.strict_success = strict_success

    def _payload(self, cursor: str, batch_size: int) -> dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "method": RPC_METHOD,
            "params": {
                "count": batch_size,
                "start_id36": 0 if cursor == START_CURSOR else cursor,
            },
            "id": int(time.time() * 1000),
        }

    async def _post(self, cursor: str, batch_size: int) -> Any:
        headers = {
            "content-type": "application/json",
            "x-requested-with": "XMLHttpRequest",
            "accept": "application/json, text/javascript, */*; q=0.01",
        }
        try:
            async with self.session.post(
                self.endpoint,
                data=json.dumps(self._payload(cursor, batch_size)),
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout_sec),
            ) as response:
                if not 200 <= response.status < 300:
                    raise MetadataProtocolError(f"Gallery API returned {response.status}")
                body = await response.read()
        except asyncio.TimeoutError as e:
            raise MetadataProtocolError(f"Gallery API timed out after {self.timeout_sec}s") from e
        except aiohttp.ClientError as e:
            raise MetadataProtocolError(f"Gallery API connection error: {e}") from e

        try:
            return json.loads(body)
        except ValueError as e:
            raise MetadataProtocolError(f"Gallery API returned invalid JSON: {e}") from e

    async def fetch_page(
        self,
        cursor: str = START_CURSOR,
        batch_size: int = DEFAULT_BATCH_SIZE,
        cancel_token: Optional[CancelToken] = None,
    ) -> GalleryPage:
        """Request and normalize one page starting at `cursor`."""
        log.debug(f"fetching listing page cursor={cursor} count={batch_size}")
        if cancel_token is not None:
            payload = await cancel_token.guard(self._post(cursor, batch_size))
        else:
            payload = await self._post(cursor, batch_size)
        return normalize_page(payload, strict_success=self.strict_success)

    async def collect_all(
        self,
        batch_size: int = DEFAULT_BATCH_SIZE,
        cancel_token: Optional[CancelToken] = None,
        start_cursor: str = START_CURSOR,
    ) -> list[ItemDescriptor]:
        """
        Follow continuation cursors until the listing is exhausted.

        Stops, in order of precedence, when cancellation is requested (the
        items collected so far are returned), when a page is empty, when the
        fallback cursor (last item id) would not advance, or when the returned
        cursor equals the current one. Ids already collected are skipped.
        """
        collected: list[ItemDescriptor] = []
        seen: set[str] = set()
        cursor = start_cursor

        while True:
            if cancel_token is not None and cancel_token.cancelled:
                break
            try:
                page = await self.fetch_page(cursor, batch_size, cancel_token)
            except RunCancelledError:
                break

            if not page.items:
                break

            for item in page.items:
                if item.item_id not in seen:
                    seen.add(item.item_id)
                    collected.append(item)

            if page.next_cursor is None:
                last_id = page.items[-1].item_id
                if last_id == cursor:
                    break
                cursor = last_id
                continue

            if page.next_cursor == cursor:
                break

            cursor = page.next_cursor

        log.debug(f"listing collected {len(collected)} item(s)")
        return collected


# =============================================================================
# LISTING FILES (PRE-FETCHED ITEMS)
# =============================================================================

def _infer_format(file_path: str, file_format: Optional[str]) -> str:
    if file_format is not None:
        return file_format
    if file_path.endswith(".parquet"):
        return "parquet"
    if file_path.endswith(".csv") or file_path.endswith(".txt"):
        return "csv"
    if file_path.endswith(".ndjson") or file_path.endswith(".jsonl"):
        return "ndjson"
    if file_path.endswith(".json"):
        return "json"
    raise ValidationError(f"Could not determine listing format from extension: {file_path}")


def load_listing_file(file_path: str, file_format: Optional[str] = None) -> list[ItemDescriptor]:
    """
    Load a pre-fetched listing with columns `id`, `url` and optional `date`.

    Rows with an empty id or URL are dropped and duplicate ids keep their
    first occurrence.
    """
    if not os.path.exists(file_path):
        raise ValidationError(f"Listing file {file_path} not found")

    file_format = _infer_format(file_path, file_format)
    if file_format == "parquet":
        df = pl.read_parquet(file_path)
    elif file_format == "csv":
        df = pl.read_csv(file_path, infer_schema_length=0)
    elif file_format == "json":
        df = pl.read_json(file_path)
    elif file_format == "ndjson":
        df = pl.read_ndjson(file_path)
    else:
        raise ValidationError(f"Unsupported listing format: {file_format}")

    for col in ("id", "url"):
        if col not in df.columns:
            raise ValidationError(f"Listing column '{col}' not found. Available: {df.columns[:10]}")

    df = df.filter(pl.col("id").is_not_null() & pl.col("url").is_not_null())
    df = df.with_columns(
        pl.col("id").cast(pl.Utf8).str.strip_chars().alias("id"),
        pl.col("url").cast(pl.Utf8).str.strip_chars().alias("url"),
    )
    df = df.filter((pl.col("id").str.len_chars() > 0) & (pl.col("url").str.len_chars() > 0))
    df = df.unique(subset=["id"], keep="first", maintain_order=True)

    has_date = "date" in df.columns
    items = []
    for row in df.iter_rows(named=True):
        items.append(
            ItemDescriptor(
                item_id=row["id"],
                source_url=row["url"],
                timestamp=parse_timestamp(row["date"]) if has_date else None,
            )
        )
    return items


def save_listing_file(items: Iterable[ItemDescriptor], file_path: str, file_format: Optional[str] = None) -> str:
    """Write a listing that load_listing_file() can read back."""
    items = list(items)
    df = pl.DataFrame(
        {
            "id": [it.item_id for it in items],
            "url": [it.source_url for it in items],
            "date": [it.timestamp.isoformat() if it.timestamp else None for it in items],
        },
        schema={"id": pl.Utf8, "url": pl.Utf8, "date": pl.Utf8},
    )
    file_format = _infer_format(file_path, file_format)
    if file_format == "parquet":
        df.write_parquet(file_path)
    elif file_format == "csv":
        df.write_csv(file_path)
    elif file_format == "json":
        df.write_json(file_path)
    elif file_format == "ndjson":
        df.write_ndjson(file_path)
    else:
        raise ValidationError(f"Unsupported listing format: {file_format}")
    return os.path.abspath(file_path)

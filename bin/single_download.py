"""
Gallery Single Download Module

Fetches the bytes of one gallery item with bounded retries.

This module is used by download_batch.py and provides:
- download_via_http_get(): one HTTP GET, failures returned as values
- classify_response(): maps an HTTP result to success / retryable / permanent
- RetryingFetcher: the per-item retry loop with exponential backoff
- entry_name_for(): archive entry naming derived from the item id
"""

import os
import re
import json
import hashlib
import asyncio
import logging
import aiohttp
from dataclasses import dataclass
from http import HTTPStatus
from urllib.parse import urlparse
from typing import Callable, Optional, Tuple

from download_errors import DownloadError, PermanentlyMissingUpstream, TransientFetchError
from gallery_client import ItemDescriptor
from run_config import RunConfig
from run_protocol import CancelToken

log = logging.getLogger(__name__)

MISSING_UPSTREAM_CODE = "account_trouble"
DEFAULT_EXTENSION = ".png"
ENTRY_PREFIX = "screenshot_"


def _sanitize_filename(name: str, max_len: int = 180) -> str:
    """Sanitize a string for use as an archive entry name."""
    name = name.strip().replace(os.sep, "_")
    name = re.sub(r"[^A-Za-z0-9._-]+", "_", name)
    name = re.sub(r"_+", "_", name).strip("._")
    if not name:
        name = "file"
    return name[:max_len]


def extract_extension(url: str) -> Tuple[str, str]:
    """
    Extract file extension from URL, handling query parameters.

    Args:
        url: Image URL

    Returns:
        Tuple of (base_path, extension) where extension includes the dot
    """
    parsed = urlparse(str(url))
    base_path, ext = os.path.splitext(parsed.path)
    return base_path, ext


def entry_name_for(item: ItemDescriptor) -> str:
    """
    Archive entry name for an item: screenshot_<id><ext>.

    Ids that need sanitizing get "__" plus a short hash of the raw id appended.
    Sanitized names never contain "__", so hashed names cannot shadow a safe id.
    """
    _, ext = extract_extension(item.source_url)
    ext = ext.lower()
    if not re.fullmatch(r"\.[a-z0-9]{1,5}", ext):
        ext = DEFAULT_EXTENSION
    stem = _sanitize_filename(item.item_id)
    if stem != item.item_id:
        digest = hashlib.sha1(item.item_id.encode("utf-8")).hexdigest()[:8]
        stem = f"{stem}__{digest}"
    return f"{ENTRY_PREFIX}{stem}{ext}"


async def download_via_http_get(
    session: aiohttp.ClientSession,
    url: str,
    timeout: int
) -> Tuple[Optional[bytes], Optional[int], Optional[str], Optional[bytes]]:
    """
    Download content via standard HTTP GET request.

    Args:
        session: aiohttp ClientSession
        url: URL to download
        timeout: Request timeout in seconds

    Returns:
        Tuple of (content, status_code, error, error_body). On a non-2xx status
        content is None and error_body holds the response payload so callers
        can inspect structured error codes.
    """
    try:
        async with session.get(url, timeout=aiohttp.ClientTimeout(total=timeout)) as response:
            if 200 <= response.status < 300:
                content = await response.read()
                return content, response.status, None, None

            try:
                status_name = HTTPStatus(response.status).phrase
            except ValueError:
                status_name = "Unknown"
            error_body = await response.read()
            return None, response.status, f"HTTP {response.status}: {status_name}", error_body

    except asyncio.TimeoutError:
        return None, 408, "Request Timeout", None
    except aiohttp.ClientError as e:
        return None, None, f"Connection Error: {str(e)}", None
    except ValueError as e:
        return None, None, f"Error: {str(e)}", None


def _error_code(body: Optional[bytes]) -> Optional[str]:
    if not body:
        return None
    try:
        details = json.loads(body)
    except ValueError:
        return None
    if isinstance(details, dict):
        code = details.get("code")
        return code if isinstance(code, str) else None
    return None


def classify_response(
    item: ItemDescriptor,
    content: Optional[bytes],
    status_code: Optional[int],
    error: Optional[str],
    error_body: Optional[bytes] = None,
) -> Optional[DownloadError]:
    """Return None on success, otherwise the error to record for this attempt."""
    if content is not None:
        return None
    if status_code == 403 and _error_code(error_body) == MISSING_UPSTREAM_CODE:
        return PermanentlyMissingUpstream(
            f"Server cannot serve {item.item_id}: upstream returned account trouble (image missing on server).",
            status_code=status_code,
        )
    reason = status_code if status_code is not None else error
    return TransientFetchError(f"Failed to fetch {item.item_id} ({reason})", status_code=status_code)


# =============================================================================
# RETRY LOOP
# =============================================================================

@dataclass(frozen=True)
class FetchDiagnostic:
    """Reported on every retry and on final failure."""
    kind: str  # "retry" | "final_failure"
    item_id: str
    attempt: int
    max_attempts: int
    error: DownloadError

    @property
    def message(self) -> str:
        if self.kind == "retry":
            return f"Retry {self.attempt}/{self.max_attempts} for {self.item_id}: {self.error}"
        return f"Final failure for {self.item_id}: {self.error}"


@dataclass(frozen=True)
class FetchOutcome:
    """Result of downloading one item, after retries."""
    item: ItemDescriptor
    content: Optional[bytes]
    attempts: int
    error: Optional[DownloadError] = None

    @property
    def success(self) -> bool:
        return self.content is not None

    @property
    def permanently_missing(self) -> bool:
        return isinstance(self.error, PermanentlyMissingUpstream)


DiagnosticSink = Callable[[FetchDiagnostic], None]


class RetryingFetcher:
    """
    Downloads one item's bytes, retrying transient failures.

    Attempt n that fails with a retryable error waits
    retry_base_delay_ms * 2**(n-1) before attempt n+1. A permanently-missing
    classification ends the loop at once. Cancellation is checked before each
    attempt and aborts the request, the backoff and the throttle delay.
    """

    def __init__(self, session: aiohttp.ClientSession):
        self.session = session

    async def fetch(
        self,
        item: ItemDescriptor,
        config: RunConfig,
        cancel_token: CancelToken,
        on_diagnostic: Optional[DiagnosticSink] = None,
    ) -> FetchOutcome:
        max_attempts = config.retry_attempts
        attempt = 1
        while True:
            cancel_token.raise_if_cancelled()

            content, status, err, body = await cancel_token.guard(
                download_via_http_get(self.session, item.source_url, config.timeout_sec)
            )
            error = classify_response(item, content, status, err, body)

            if error is None:
                log.debug(f"fetched {item.item_id} ({len(content)} bytes, attempt {attempt})")
                if config.throttle_delay_ms > 0:
                    await cancel_token.sleep(config.throttle_delay_sec)
                return FetchOutcome(item=item, content=content, attempts=attempt)

            retryable = not isinstance(error, PermanentlyMissingUpstream)
            if retryable and attempt < max_attempts:
                self._report(on_diagnostic, FetchDiagnostic("retry", item.item_id, attempt, max_attempts, error))
                await cancel_token.sleep(config.backoff_sec(attempt))
                attempt += 1
                continue

            self._report(on_diagnostic, FetchDiagnostic("final_failure", item.item_id, attempt, max_attempts, error))
            return FetchOutcome(item=item, content=None, attempts=attempt, error=error)

    @staticmethod
    def _report(sink: Optional[DiagnosticSink], diagnostic: FetchDiagnostic) -> None:
        log.debug(diagnostic.message)
        if sink is not None:
            sink(diagnostic)

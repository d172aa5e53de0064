"""
Gallery Downloader Error Types

Every exception raised by the download pipeline derives from DownloadError so
callers can separate pipeline failures from programming errors.

Per-item failures (TransientFetchError, PermanentlyMissingUpstream) are carried
as values inside a FetchOutcome and never abort a run. RunCancelledError ends a
run in the cancelled state. MetadataProtocolError and SinkError are fatal.
"""

from __future__ import annotations

from typing import Optional


class DownloadError(Exception):
    """Base class for all gallery downloader errors."""


class ValidationError(DownloadError, ValueError):
    """Run configuration is invalid; raised before any network activity."""


class TransientFetchError(DownloadError):
    """Network or HTTP failure that is eligible for another attempt."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PermanentlyMissingUpstream(DownloadError):
    """The server reported the resource is gone for good; never retried."""

    def __init__(self, message: str, status_code: Optional[int] = 403):
        super().__init__(message)
        self.status_code = status_code


class RunCancelledError(DownloadError):
    """An operation observed the run's cancellation signal."""

    def __init__(self, message: str = "Run cancelled"):
        super().__init__(message)


class MetadataProtocolError(DownloadError):
    """The gallery listing returned a malformed or failing response."""


class SinkError(DownloadError):
    """The finished archive could not be handed to the download sink."""


class RunAlreadyActiveError(DownloadError):
    """A second run was requested while one is still active."""

    def __init__(self, message: str = "A download is already running."):
        super().__init__(message)


class ArchiveStateError(DownloadError):
    """The archive was used after finalization or finalized twice."""

"""
In-memory ZIP archive builder.

Entries are written in insertion order. An entry's modification time comes
from the item's timestamp when one is known; otherwise the time the entry was
added is used. finalize() may be called exactly once.
"""

from __future__ import annotations

import io
import time
import zipfile
from datetime import datetime
from typing import Optional

from download_errors import ArchiveStateError

# ZIP cannot represent dates before 1980.
MIN_ZIP_DATE = (1980, 1, 1, 0, 0, 0)


def _zip_date_time(timestamp: Optional[datetime]) -> tuple[int, int, int, int, int, int]:
    if timestamp is None:
        return time.localtime(time.time())[:6]
    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone()
    value = (timestamp.year, timestamp.month, timestamp.day, timestamp.hour, timestamp.minute, timestamp.second)
    if value < MIN_ZIP_DATE:
        return MIN_ZIP_DATE
    if timestamp.year > 2107:
        return (2107, 12, 31, 23, 59, 58)
    return value


class ArchiveBuilder:
    """Accumulates downloaded images into one flat ZIP blob."""

    def __init__(self, compression: int = zipfile.ZIP_STORED):
        self._buffer = io.BytesIO()
        self._zip: Optional[zipfile.ZipFile] = zipfile.ZipFile(self._buffer, mode="w", compression=compression)
        self._names: list[str] = []
        self._name_set: set[str] = set()
        self._total_bytes = 0
        self._blob: Optional[bytes] = None
        self._discarded = False

    @property
    def names(self) -> list[str]:
        return list(self._names)

    @property
    def total_bytes(self) -> int:
        """Uncompressed size of all entries."""
        return self._total_bytes

    @property
    def finalized(self) -> bool:
        return self._blob is not None

    @property
    def discarded(self) -> bool:
        return self._discarded

    def __len__(self) -> int:
        return len(self._names)

    def add_entry(self, name: str, content: bytes, timestamp: Optional[datetime] = None) -> None:
        if self._zip is None:
            state = "discarded" if self._discarded else "finalized"
            raise ArchiveStateError(f"cannot add {name!r}: archive already {state}")
        if name in self._name_set:
            raise ValueError(f"duplicate archive entry name: {name!r}")
        info = zipfile.ZipInfo(filename=name, date_time=_zip_date_time(timestamp))
        info.compress_type = self._zip.compression
        info.external_attr = 0o644 << 16
        self._zip.writestr(info, content)
        self._names.append(name)
        self._name_set.add(name)
        self._total_bytes += len(content)

    def finalize(self) -> bytes:
        """Close the archive and return its bytes."""
        if self._zip is None:
            raise ArchiveStateError("archive already discarded" if self._discarded else "archive already finalized")
        self._zip.close()
        self._zip = None
        self._blob = self._buffer.getvalue()
        self._buffer.close()
        return self._blob

    def discard(self) -> None:
        """Release the archive without producing a blob. No-op once closed."""
        if self._zip is None:
            return
        self._zip.close()
        self._zip = None
        self._buffer.close()
        self._discarded = True

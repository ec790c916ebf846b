# rsizevideo/delivery.py
"""Helpers for serving encoded files: byte ranges and download headers."""
from __future__ import annotations

import re
from pathlib import Path
from typing import Iterator, Optional, Tuple
from urllib.parse import quote

CHUNK = 1024 * 1024

_RANGE_RE = re.compile(r"^\s*bytes\s*=\s*(\d*)\s*-\s*(\d*)\s*$", re.IGNORECASE)


class RangeNotSatisfiable(Exception):
    def __init__(self, size: int):
        super().__init__(f"bytes */{size}")
        self.size = size


def parse_range(header: Optional[str], size: int) -> Optional[Tuple[int, int]]:
    """Parse a single ``Range: bytes=...`` header into inclusive (start, end).

    Returns None when the header is absent or not something we serve as a
    range (malformed, multiple ranges), in which case the whole file is sent.
    Raises RangeNotSatisfiable when the range lies outside the file.
    """
    if not header:
        return None
    m = _RANGE_RE.match(header)
    if not m:
        return None
    start_s, end_s = m.groups()
    if not start_s and not end_s:
        return None

    if not start_s:
        # suffix range: last N bytes
        suffix = int(end_s)
        if suffix == 0 or size == 0:
            raise RangeNotSatisfiable(size)
        return max(0, size - suffix), size - 1

    start = int(start_s)
    end = int(end_s) if end_s else size - 1
    if end_s and end < start:
        return None
    if start >= size:
        raise RangeNotSatisfiable(size)
    return start, min(end, size - 1)


def content_disposition(filename: str) -> str:
    ascii_name = filename.encode("ascii", "ignore").decode("ascii").replace('"', "").replace("\\", "")
    ascii_name = ascii_name or "video.mp4"
    header = f'attachment; filename="{ascii_name}"'
    if ascii_name != filename:
        header += f"; filename*=UTF-8''{quote(filename)}"
    return header


def expires_in(seconds: float) -> str:
    seconds = max(0, int(seconds))
    return f"{seconds // 3600}h {(seconds % 3600) // 60}m"


def iter_file(path: Path, start: int, length: int) -> Iterator[bytes]:
    with open(path, "rb") as f:
        f.seek(start)
        remaining = length
        while remaining > 0:
            data = f.read(min(CHUNK, remaining))
            if not data:
                break
            remaining -= len(data)
            yield data

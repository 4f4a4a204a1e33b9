"""Byte-range delivery of stored audio files.

A track row points at a file under ``media_root``. This module resolves that
file, interprets an optional ``Range`` request header against the file's size
on disk, and builds the streaming response (200 for the whole file, 206 for a
single contiguous slice).

Only single ``bytes=`` ranges are honoured. Headers that cannot be parsed,
use another unit, or ask for several ranges are ignored and the whole file is
served, which is what HTTP allows a server to do with a Range it does not
support.
"""

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, BinaryIO, Callable, Optional

from fastapi.responses import StreamingResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from app.models.track import Track

logger = logging.getLogger(__name__)

DEFAULT_MEDIA_TYPE = "audio/mpeg"
DEFAULT_CHUNK_SIZE = 64 * 1024

MEDIA_TYPES = {
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "ogg": "audio/ogg",
    "flac": "audio/flac",
    "m4a": "audio/mp4",
    "aac": "audio/mp4",
}

_RANGE_PATTERN = re.compile(r"^bytes=(\d*)-(\d*)$")


class MediaNotFoundError(Exception):
    """The track row or its stored file does not exist.

    ``kind`` is ``"track"`` when the metadata is missing and ``"file"`` when
    the row exists but storage has nothing at its path.
    """

    def __init__(self, kind: str, track_id: int, detail: str):
        super().__init__(detail)
        self.kind = kind
        self.track_id = track_id
        self.detail = detail


class RangeNotSatisfiableError(Exception):
    """The requested byte range lies outside the file."""

    def __init__(self, range_header: str, file_size: int):
        super().__init__(f"Range {range_header!r} not satisfiable for {file_size} bytes")
        self.range_header = range_header
        self.file_size = file_size


class StorageIOError(Exception):
    """The stored file could not be inspected or read."""


@dataclass(frozen=True)
class ByteRange:
    """Inclusive byte offsets ``start..end`` within a file."""

    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def content_range(self, file_size: int) -> str:
        return f"bytes {self.start}-{self.end}/{file_size}"


@dataclass(frozen=True)
class MediaFile:
    """A stored audio file located on disk."""

    track_id: int
    path: Path
    size: int
    media_type: str


def media_type_for(audio_format: Optional[str]) -> str:
    """Return the MIME type for a stored format such as ``mp3``."""
    if not audio_format:
        return DEFAULT_MEDIA_TYPE
    return MEDIA_TYPES.get(audio_format.lower().lstrip("."), DEFAULT_MEDIA_TYPE)


def parse_range_header(range_header: Optional[str], file_size: int) -> Optional[ByteRange]:
    """Interpret a ``Range`` header against a file of ``file_size`` bytes.

    Returns ``None`` when the whole file should be served. Raises
    ``RangeNotSatisfiableError`` when the header is well formed but the range
    falls outside ``0 <= start <= end < file_size``.
    """
    if not range_header:
        return None

    value = range_header.replace(" ", "").lower()
    if "," in value:
        return None

    match = _RANGE_PATTERN.match(value)
    if not match:
        return None

    start_text, end_text = match.groups()
    if not start_text and not end_text:
        return None

    if not start_text:
        # Suffix form: the last N bytes
        suffix_length = int(end_text)
        if suffix_length == 0 or file_size == 0:
            raise RangeNotSatisfiableError(range_header, file_size)
        return ByteRange(max(file_size - suffix_length, 0), file_size - 1)

    start = int(start_text)
    end = int(end_text) if end_text else file_size - 1

    if start >= file_size or end < start or end >= file_size:
        raise RangeNotSatisfiableError(range_header, file_size)

    return ByteRange(start, end)


def resolve_media_path(media_root: str, file_url: str) -> Optional[Path]:
    """Map a stored file URL onto a path under ``media_root``.

    Returns ``None`` when the URL would escape ``media_root``.
    """
    root = Path(media_root).resolve()
    candidate = (root / file_url.lstrip("/\\")).resolve()
    if candidate != root and root not in candidate.parents:
        return None
    return candidate


async def locate_track_media(db: AsyncSession, track_id: int, media_root: str) -> tuple[Track, MediaFile]:
    """Load a track and the file that backs it.

    Raises ``MediaNotFoundError`` for a missing row or missing file and
    ``StorageIOError`` when the file exists but cannot be inspected.
    """
    result = await db.execute(select(Track).where(Track.id == track_id))
    track = result.scalar_one_or_none()
    if not track:
        raise MediaNotFoundError("track", track_id, "Song not found")

    path = resolve_media_path(media_root, track.file_url or "")
    if path is None or not path.is_file():
        raise MediaNotFoundError("file", track_id, "Song file not found")

    try:
        size = path.stat().st_size
    except FileNotFoundError as exc:
        raise MediaNotFoundError("file", track_id, "Song file not found") from exc
    except OSError as exc:
        raise StorageIOError(f"Cannot stat {path}: {exc}") from exc

    if not os.access(path, os.R_OK):
        raise StorageIOError(f"Cannot read {path}")

    return track, MediaFile(track_id=track.id, path=path, size=size, media_type=media_type_for(track.format))


async def open_media(media: MediaFile) -> BinaryIO:
    """Open ``media`` for reading before any response is started.

    Raises ``MediaNotFoundError`` if the file vanished since it was located
    and ``StorageIOError`` for any other failure to open it.
    """
    try:
        return await run_in_threadpool(open, media.path, "rb")
    except FileNotFoundError as exc:
        raise MediaNotFoundError("file", media.track_id, "Song file not found") from exc
    except OSError as exc:
        raise StorageIOError(f"Cannot open {media.path}: {exc}") from exc


async def iter_file_range(
    handle: BinaryIO,
    start: int,
    end: int,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    on_start: Optional[Callable[[], None]] = None,
) -> AsyncIterator[bytes]:
    """Yield bytes ``start..end`` of an open file in offset order.

    ``on_start`` runs once the response headers have gone out, before the
    first read. The handle is closed when the generator finishes, fails, or
    is cancelled because the client went away.
    """
    path = getattr(handle, "name", "<stream>")
    remaining = end - start + 1
    try:
        if on_start is not None:
            on_start()
        await run_in_threadpool(handle.seek, start)
        while remaining > 0:
            try:
                chunk = await run_in_threadpool(handle.read, min(chunk_size, remaining))
            except OSError as exc:
                logger.error("Read failed for %s at offset %d: %s", path, end - remaining + 1, exc)
                raise StorageIOError(f"Cannot read {path}: {exc}") from exc
            if not chunk:
                # File shrank underneath us; stop rather than pad
                logger.warning("Unexpected end of file %s with %d bytes outstanding", path, remaining)
                break
            remaining -= len(chunk)
            yield chunk
    finally:
        handle.close()


def build_stream_response(
    media: MediaFile,
    handle: BinaryIO,
    byte_range: Optional[ByteRange],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    on_start: Optional[Callable[[], None]] = None,
) -> StreamingResponse:
    """Build the 200 or 206 response for ``media`` read from ``handle``."""
    if byte_range is None:
        start, end = 0, media.size - 1
        status_code = 200
        headers = {
            "Content-Length": str(media.size),
            "Accept-Ranges": "bytes",
        }
    else:
        start, end = byte_range.start, byte_range.end
        status_code = 206
        headers = {
            "Content-Range": byte_range.content_range(media.size),
            "Accept-Ranges": "bytes",
            "Content-Length": str(byte_range.length),
        }

    return StreamingResponse(
        iter_file_range(handle, start, end, chunk_size, on_start),
        status_code=status_code,
        media_type=media.media_type,
        headers=headers,
    )

"""
Streaming file writer with drain-based backpressure.

The response body is pulled one chunk at a time. Each chunk is handed to a
``FileSink``, which buffers in memory and reports ``False`` from ``write()``
once its buffer reaches the high-water mark. The write loop then awaits
``drain()`` before pulling the next chunk, so a fast network can never pile
up more than one buffer's worth of data ahead of the disk.
"""

import os
import re
import uuid
import logging
import mimetypes
from pathlib import Path
from typing import AsyncIterator, Callable, Optional, Tuple, Union
from urllib.parse import parse_qs, urlsplit

import aiofiles
import httpx

from .models import DownloadTarget

logger = logging.getLogger(__name__)

WRITE_HIGH_WATER_MARK = int(os.getenv("PAHEDL_WRITE_HIGH_WATER_MARK", "16384"))

CONTENT_DISPOSITION_FILENAME_RE = re.compile(r'filename="(.+?)"')
GENERATED_NAME_PREFIX = "AnimePaheDownloader"
GENERATED_NAME_RE = re.compile(rf"^{GENERATED_NAME_PREFIX}-[0-9a-f]{{12}}$")
DEFAULT_MIME_TYPE = "application/octet-stream"

ProgressCallback = Callable[[int, Optional[int]], None]


# =========================================================================
# TARGET DERIVATION
# =========================================================================

def generate_filename() -> str:
    """Fallback name: product tag plus a short random id, no extension."""
    return f"{GENERATED_NAME_PREFIX}-{uuid.uuid4().hex[:12]}"


def filename_from_headers(response: httpx.Response) -> Optional[str]:
    disposition = response.headers.get("content-disposition", "")
    match = CONTENT_DISPOSITION_FILENAME_RE.search(disposition)
    return match.group(1) if match else None


def filename_from_url(url: str) -> Optional[str]:
    values = parse_qs(urlsplit(url).query).get("file")
    return values[0] if values and values[0] else None


def derive_target(response: httpx.Response) -> DownloadTarget:
    """Work out filename, MIME type and expected size of the final response."""
    filename = (
        filename_from_headers(response)
        or filename_from_url(str(response.url))
        or generate_filename()
    )
    mime_type, _ = mimetypes.guess_type(filename)

    size_bytes: Optional[int] = None
    content_length = response.headers.get("content-length")
    if content_length:
        try:
            size_bytes = int(content_length)
        except ValueError:
            logger.warning(f"⚠️ Ignoring malformed Content-Length: {content_length!r}")

    return DownloadTarget(
        filename=filename,
        mime_type=mime_type or DEFAULT_MIME_TYPE,
        size_bytes=size_bytes,
    )


# =========================================================================
# DESTINATION
# =========================================================================

class FileSink:
    """Buffered async file destination with a drain signal."""

    def __init__(self, path: Union[str, Path], high_water_mark: int = WRITE_HIGH_WATER_MARK):
        self.path = Path(path)
        self.high_water_mark = high_water_mark
        self._buffer = bytearray()
        self._file = None
        self.closed = False

    async def open(self) -> None:
        """Create or truncate the destination file."""
        self._file = await aiofiles.open(self.path, "wb")

    def write(self, chunk: bytes) -> bool:
        """Buffer a chunk. False means: wait for drain() before writing more."""
        if self.closed or self._file is None:
            raise OSError(f"write to closed sink {self.path}")
        self._buffer.extend(chunk)
        return len(self._buffer) < self.high_water_mark

    async def drain(self) -> None:
        """Flush the buffer to disk."""
        if self._buffer:
            data = bytes(self._buffer)
            self._buffer.clear()
            await self._file.write(data)

    async def end(self) -> None:
        """Flush what is left and close."""
        await self.drain()
        await self._file.close()
        self.closed = True

    async def abort(self) -> None:
        """Close without flushing. Safe to call more than once."""
        if self.closed:
            return
        self.closed = True
        self._buffer.clear()
        if self._file is not None:
            try:
                await self._file.close()
            except OSError as e:
                logger.warning(f"⚠️ Error while closing {self.path}: {e}")


# =========================================================================
# WRITE LOOP
# =========================================================================

async def write_stream(
    chunks: AsyncIterator[bytes],
    sink: FileSink,
    expected_size: Optional[int] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> Tuple[Optional[int], Optional[str]]:
    """
    Copy ``chunks`` into ``sink``.

    Returns (bytes_written, None) on success and (None, error_message) when
    the destination fails. Producer errors abort the sink and propagate.
    """
    bytes_written = 0
    try:
        async for chunk in chunks:
            if not chunk:
                continue
            backed_up = not sink.write(chunk)
            bytes_written += len(chunk)
            logger.debug(f"Written {bytes_written} bytes so far...")
            if on_progress:
                on_progress(bytes_written, expected_size)
            if backed_up:
                await sink.drain()
        await sink.end()
    except OSError as e:
        logger.error(f"❌ Error writing to {sink.path}: {e}")
        await sink.abort()
        return None, str(e)
    except BaseException:
        await sink.abort()
        raise

    return bytes_written, None

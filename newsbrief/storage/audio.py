import asyncio
import os
import re

from newsbrief.observability.logger import get_logger

log = get_logger("audio")

AUDIO_URL_PREFIX = "/api/audio/"
READ_CHUNK_SIZE = 64 * 1024

_RANGE_RE = re.compile(r"^bytes=(\d*)-(\d*)$")


class RangeNotSatisfiable(Exception):
    def __init__(self, size: int):
        super().__init__(f"bytes */{size}")
        self.size = size


def parse_range(header: str | None, size: int) -> tuple[int, int] | None:
    """Parse a single ``bytes=start-end`` range. None means the whole file."""
    if not header:
        return None
    match = _RANGE_RE.match(header.strip())
    if not match:
        raise RangeNotSatisfiable(size)
    start = int(match.group(1)) if match.group(1) else 0
    end = int(match.group(2)) if match.group(2) else size - 1
    if start > end or end >= size:
        raise RangeNotSatisfiable(size)
    return start, end


def filename_from_url(audio_url: str | None) -> str | None:
    if not audio_url:
        return None
    clean = str(audio_url).split("?")[0]
    if not clean.startswith(AUDIO_URL_PREFIX):
        return None
    return clean[len(AUDIO_URL_PREFIX):] or None


class AudioStorage:
    """MP3 files for generated briefings under <data_dir>/audio/"""

    def __init__(self, data_dir: str):
        self.audio_dir = os.path.join(data_dir, "audio")
        os.makedirs(self.audio_dir, exist_ok=True)

    def path_for(self, filename: str) -> str | None:
        if not filename or filename != os.path.basename(filename) or filename.startswith("."):
            return None
        return os.path.join(self.audio_dir, filename)

    async def save(self, filename: str, data: bytes) -> str:
        path = self.path_for(filename)
        if path is None:
            raise ValueError(f"Invalid audio filename: {filename!r}")
        await asyncio.to_thread(self._write, path, data)
        log.info("audio_saved", filename=filename, size=len(data))
        return f"{AUDIO_URL_PREFIX}{filename}"

    async def delete(self, audio_url: str | None):
        path = self.path_for(filename_from_url(audio_url) or "")
        if path is None:
            return
        try:
            await asyncio.to_thread(os.remove, path)
        except FileNotFoundError:
            pass

    async def exists(self, audio_url: str | None) -> bool:
        path = self.path_for(filename_from_url(audio_url) or "")
        return path is not None and os.path.isfile(path)

    def size(self, filename: str) -> int | None:
        path = self.path_for(filename)
        if path is None or not os.path.isfile(path):
            return None
        return os.path.getsize(path)

    def stream_range(self, filename: str, start: int, end: int):
        """Yield the bytes of ``filename`` from ``start`` to ``end`` inclusive."""
        path = self.path_for(filename)
        remaining = end - start + 1
        with open(path, "rb") as f:
            f.seek(start)
            while remaining > 0:
                chunk = f.read(min(READ_CHUNK_SIZE, remaining))
                if not chunk:
                    break
                remaining -= len(chunk)
                yield chunk

    @staticmethod
    def _write(path: str, data: bytes):
        with open(path, "wb") as f:
            f.write(data)

"""On-disk cache of synthesized audio.

Files are named by the SHA-256 of the provider voice id and the text, so identical requests
reuse the same WAV file without a network round trip.
Expired files are removed on startup, then the oldest files until the cache fits its size budget.
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

from core.speech.errors import ResourceAccessError
from utils.file_utils import FileUtils, FileUtilsError
from utils.logger_utils import LoggerUtils

if TYPE_CHECKING:
    import logging
    from pathlib import Path

__all__: list[str] = ["CacheEntry", "SpeechCacheManager"]

logger: logging.Logger = LoggerUtils.get_logger(__name__)

CACHE_SUFFIX: Final[str] = ".wav"
SECONDS_PER_DAY: Final[float] = 86400.0
BYTES_PER_MB: Final[int] = 1024 * 1024


@dataclass(frozen=True)
class CacheEntry:
    path: Path
    size: int
    mtime: float


class SpeechCacheManager:
    """Stores synthesized audio under a cache directory.

    Attributes:
        cache_dir (Path): Directory holding the cached WAV files.
        max_age_days (float): Files older than this are removed by cleanup().
        max_size_mb (float): Size budget enforced by cleanup(), oldest files first.
    """

    def __init__(self, cache_dir: Path, *, max_age_days: float = 7.0, max_size_mb: float = 100.0) -> None:
        self.cache_dir: Path = cache_dir
        self.max_age_days: float = max_age_days
        self.max_size_mb: float = max_size_mb
        self._cleanup_task: asyncio.Task[None] | None = None
        logger.debug("SpeechCacheManager instance created: '%s'", cache_dir)

    @staticmethod
    def cache_key(voice_id: str, text: str) -> str:
        """Return the hex digest identifying a (voice, text) pair."""
        return hashlib.sha256(f"{voice_id}\0{text}".encode()).hexdigest()

    def path_for(self, voice_id: str, text: str) -> Path:
        return self.cache_dir / f"{self.cache_key(voice_id, text)}{CACHE_SUFFIX}"

    def prepare(self) -> None:
        """Create the cache directory.

        Raises:
            ResourceAccessError: If the directory cannot be created.
        """
        try:
            FileUtils.ensure_directory(self.cache_dir)
        except (FileUtilsError, OSError) as err:
            msg: str = f"Cache directory unavailable: '{self.cache_dir}'"
            raise ResourceAccessError(msg) from err

    def lookup(self, voice_id: str, text: str) -> Path | None:
        """Return the cached file for the pair, or None on a miss."""
        path: Path = self.path_for(voice_id, text)
        try:
            if path.is_file() and path.stat().st_size > 0:
                logger.debug("Cache hit: '%s'", path.name)
                return path
        except OSError as err:
            logger.debug("Cache lookup failed for '%s': %s", path.name, err)
        return None

    def store(self, voice_id: str, text: str, data: bytes) -> Path:
        """Write audio data for the pair atomically and return its path.

        Raises:
            ResourceAccessError: If the file cannot be written.
        """
        self.prepare()
        path: Path = self.path_for(voice_id, text)
        try:
            FileUtils.atomic_write_bytes(path, data)
        except OSError as err:
            msg: str = f"Could not write '{path}': {err}"
            raise ResourceAccessError(msg) from err
        logger.debug("Cached %d bytes as '%s'", len(data), path.name)
        return path

    def start_cleanup(self) -> asyncio.Task[None]:
        """Run cleanup() in the background. Only one cleanup task runs at a time."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self.cleanup(), name="speech_cache_cleanup")
        return self._cleanup_task

    async def cleanup(self) -> None:
        """Delete expired files, then the oldest files until the cache is within its size budget."""
        entries: list[CacheEntry] = await asyncio.to_thread(self._collect_entries)
        if not entries:
            return

        cutoff: float = time.time() - self.max_age_days * SECONDS_PER_DAY
        expired: list[CacheEntry] = [entry for entry in entries if entry.mtime < cutoff]
        for entry in expired:
            await self._delete_file_with_retry(entry.path)

        remaining: list[CacheEntry] = sorted((entry for entry in entries if entry.mtime >= cutoff), key=lambda e: e.mtime)
        total: int = sum(entry.size for entry in remaining)
        budget: int = int(self.max_size_mb * BYTES_PER_MB)
        evicted: int = 0
        for entry in remaining:
            if total <= budget:
                break
            await self._delete_file_with_retry(entry.path)
            total -= entry.size
            evicted += 1

        logger.info("Cache cleanup finished: %d expired, %d evicted", len(expired), evicted)

    def _collect_entries(self) -> list[CacheEntry]:
        if not self.cache_dir.is_dir():
            return []
        entries: list[CacheEntry] = []
        for path in self.cache_dir.glob(f"*{CACHE_SUFFIX}"):
            try:
                stat = path.stat()
            except OSError:
                continue
            if path.is_file():
                entries.append(CacheEntry(path=path, size=stat.st_size, mtime=stat.st_mtime))
        return entries

    async def _delete_file_with_retry(
        self,
        file_path: Path,
        max_retries: int = 3,
        delay: float = 0.5,
    ) -> None:
        """Delete a file with retry logic for handling PermissionError.

        Args:
            file_path (Path): Path to the file to delete.
            max_retries (int): Maximum number of retry attempts.
            delay (float): Delay in seconds between retries.
        """
        for attempt in range(max_retries):
            try:
                file_path.unlink(missing_ok=True)  # noqa: ASYNC240
            except PermissionError as err:
                if attempt < max_retries - 1:
                    logger.debug(
                        "PermissionError deleting '%s', retrying... (%d/%d)",
                        file_path,
                        attempt + 1,
                        max_retries,
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.warning("Failed to delete '%s' after %d attempts: %s", file_path, max_retries, err)
            except OSError as err:
                logger.error("Unexpected error deleting '%s': %s", file_path, err)
                return
            else:
                logger.debug("Deleted cached audio file: '%s'", file_path.name)
                return

    async def close(self) -> None:
        """Cancel a running cleanup task."""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            self._cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._cleanup_task
        self._cleanup_task = None

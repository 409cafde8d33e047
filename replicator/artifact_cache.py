"""Staging-directory cache of exported policy files with age-based eviction."""

import asyncio
import os
import re
import time
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from common.constants import STAGED_FILE_PREFIX, STAGED_FILE_SUFFIX
from common.logging_config import get_logger
from common.types import CachedArtifact
from replicator.exceptions import CacheCorruptionError

logger = get_logger(__name__)

_UNSAFE_VERSION_CHARS = re.compile(r'[^A-Za-z0-9.\-]')
_UNSAFE_ID_CHARS = re.compile(r'[\\/\s]')


def sanitize_version(version_timestamp: Optional[str]) -> str:
    """
    Turn a version timestamp into a file-name-safe token.

    The result never contains '_', which separates id and version in
    staged file names.
    """
    if not version_timestamp:
        return "unversioned"
    return _UNSAFE_VERSION_CHARS.sub("-", str(version_timestamp))


class ArtifactCache:
    """
    Tracks staged policy files keyed by (artifact_id, version_timestamp).
    """

    def __init__(
        self,
        staging_dir: Union[str, Path],
        prefix: str = STAGED_FILE_PREFIX,
        suffix: str = STAGED_FILE_SUFFIX
    ):
        self.staging_dir = Path(staging_dir)
        self.prefix = prefix
        self.suffix = suffix

    def ensure_directory(self) -> None:
        """Ensure the staging directory exists."""
        self.staging_dir.mkdir(parents=True, exist_ok=True)

    def file_name(self, artifact_id: str, version_timestamp: Optional[str]) -> str:
        """
        Deterministic staged file name for one artifact version.

        The same name is used for the export file on the source node and
        the upload file on the target node.
        """
        safe_id = _UNSAFE_ID_CHARS.sub("-", artifact_id)
        return f"{self.prefix}{safe_id}_{sanitize_version(version_timestamp)}{self.suffix}"

    def resolve_path(self, artifact_id: str, version_timestamp: Optional[str]) -> Path:
        return self.staging_dir / self.file_name(artifact_id, version_timestamp)

    def exists(self, artifact_id: str, version_timestamp: Optional[str]) -> bool:
        return self.resolve_path(artifact_id, version_timestamp).is_file()

    def validate(self, artifact_id: str, version_timestamp: Optional[str]) -> Path:
        """
        Check that a staged file looks like a complete policy export.

        Returns:
            Path of the valid staged file

        Raises:
            CacheCorruptionError: If the file is missing, empty or not XML.
                A corrupt file is deleted before raising.
        """
        path = self.resolve_path(artifact_id, version_timestamp)
        try:
            with open(path, 'rb') as f:
                head = f.read(256)
        except OSError as e:
            raise CacheCorruptionError(f"staged file {path.name} is unreadable: {e}") from e

        if not head.lstrip(b'\xef\xbb\xbf \t\r\n').startswith(b'<'):
            logger.warning(f"Staged file {path.name} failed validation, deleting it")
            self._unlink(path)
            raise CacheCorruptionError(f"staged file {path.name} is empty or not a policy export")

        return path

    def refresh(self, artifact_id: str, version_timestamp: Optional[str]) -> None:
        """Restart the eviction clock of a staged file that is being reused."""
        try:
            os.utime(self.resolve_path(artifact_id, version_timestamp))
        except OSError as e:
            logger.warning(f"Could not refresh staged file for {artifact_id}: {e}")

    def discard(self, artifact_id: str, version_timestamp: Optional[str]) -> bool:
        """
        Delete one staged file.

        Returns:
            True if a file was deleted, False if none existed
        """
        return self._unlink(self.resolve_path(artifact_id, version_timestamp))

    def entries(self) -> List[CachedArtifact]:
        """
        List staged files that follow the naming convention.

        The version of an entry is the sanitized token from its file name.
        """
        if not self.staging_dir.exists():
            return []

        cached = []
        for path in self.staging_dir.glob(f"{self.prefix}*{self.suffix}"):
            stem = path.name[len(self.prefix):len(path.name) - len(self.suffix)]
            if '_' not in stem:
                continue
            artifact_id, version = stem.rsplit('_', 1)
            try:
                created_at = datetime.fromtimestamp(path.stat().st_mtime)
            except OSError:
                continue
            cached.append(CachedArtifact(
                path=path,
                artifact_id=artifact_id,
                version_timestamp=version,
                created_at=created_at
            ))
        return cached

    def evict_expired(self, now: Optional[float] = None, ttl: float = 3600) -> List[Path]:
        """
        Delete staged files whose creation time plus ttl is before now.

        Errors deleting individual files are logged and the sweep continues.

        Args:
            now: Epoch seconds to compare against (defaults to current time)
            ttl: Maximum age in seconds

        Returns:
            Paths that were deleted
        """
        if now is None:
            now = time.time()

        removed = []
        for entry in self.entries():
            if entry.created_at.timestamp() + ttl >= now:
                continue
            try:
                entry.path.unlink()
                removed.append(entry.path)
                logger.info(f"Evicted staged file {entry.path.name}")
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.error(f"Failed to evict staged file {entry.path.name}: {e}")

        if removed:
            logger.info(f"Cache sweep removed {len(removed)} staged files")
        return removed

    def _unlink(self, path: Path) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error(f"Failed to delete staged file {path.name}: {e}")
            return False


class CacheSweeper:
    """
    Background task that periodically evicts expired staged files.
    """

    def __init__(self, cache: ArtifactCache, ttl_seconds: float, interval_seconds: float):
        """
        Args:
            cache: Cache to sweep
            ttl_seconds: Maximum age of a staged file
            interval_seconds: Time between sweeps
        """
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.interval_seconds = interval_seconds
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start the background sweep task."""
        if self._running:
            logger.warning("Cache sweeper already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(
            f"Started cache sweeper (interval: {self.interval_seconds}s, ttl: {self.ttl_seconds}s)"
        )

    async def stop(self) -> None:
        """Stop the background sweep task."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Stopped cache sweeper")

    async def _run(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval_seconds)

                if not self._running:
                    break

                self.cache.evict_expired(ttl=self.ttl_seconds)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in cache sweeper: {e}", exc_info=True)

"""A simple file-based cache with expiration."""

from __future__ import annotations

import json
import os
import tempfile
import time
from pathlib import Path
from typing import Any, Callable, TypeVar

from boxy.core.config import DEFAULT_CACHE_TTL
from boxy.core.errors import CacheError, DeserializationError, SerializationError
from boxy.core.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")


class Cache:
    """A file-per-key JSON cache with a TTL applied at read time.

    Each entry is stored as ``<key>.json`` holding
    ``{"data": ..., "cached_at": <unix seconds>}``. Stale entries are left on
    disk until ``invalidate`` or ``clean`` removes them.
    """

    def __init__(
        self,
        cache_dir: Path,
        ttl: int = DEFAULT_CACHE_TTL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cache_dir = Path(cache_dir)
        self.ttl = ttl
        self._clock = clock

    def _file(self, key: str) -> Path:
        """Get the file path for a given cache key.

        Args:
            key: The cache key.

        Returns:
            The Path to the cache file.
        """
        return self.cache_dir / f"{key}.json"

    def get(self, key: str, decode: Callable[[Any], T] | None = None) -> T | Any | None:
        """Return the cached value for ``key`` if present and fresh.

        Args:
            key: The cache key.
            decode: Optional converter applied to the stored ``data``.

        Returns:
            The (decoded) value, or None on a miss or an expired entry.

        Raises:
            DeserializationError: If the stored payload cannot be decoded.
            CacheError: If the entry exists but cannot be read.
        """
        f = self._file(key)
        start = time.perf_counter()

        try:
            text = f.read_text(encoding="utf-8")
        except FileNotFoundError:
            log.debug("cache_miss", key=key, reason="missing")
            return None
        except OSError as e:
            log.error("cache_read_error", key=key, error=str(e), exc_info=True)
            raise CacheError(
                "Failed to read cache entry", key=key, path=str(f), operation="read"
            ) from e

        try:
            entry = json.loads(text)
            cached_at = int(entry["cached_at"])
            data = entry["data"]
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            log.warning("cache_corrupted", key=key, path=str(f), error=str(e))
            raise DeserializationError(
                "Failed to decode cache entry", context={"key": key, "error": str(e)}
            ) from e

        age_seconds = int(self._clock()) - cached_at
        if age_seconds > self.ttl:
            log.debug("cache_miss", key=key, reason="expired", age_seconds=age_seconds)
            return None

        value = decode(data) if decode is not None else data
        log.debug(
            "cache_hit",
            key=key,
            age_seconds=age_seconds,
            duration_ms=int((time.perf_counter() - start) * 1000),
        )

        return value

    def set(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key``, replacing any previous entry.

        The entry is written to a temporary sibling file and moved into
        place, so readers see either the old or the new entry.

        Args:
            key: The cache key.
            value: A JSON-serialisable value.

        Raises:
            SerializationError: If the value cannot be encoded as JSON.
            CacheError: If the entry cannot be written.
        """
        try:
            payload = json.dumps(
                {"data": value, "cached_at": int(self._clock())}, indent=2
            )
        except (TypeError, ValueError) as e:
            raise SerializationError(
                "Failed to encode cache entry", context={"key": key, "error": str(e)}
            ) from e

        f = self._file(key)
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.cache_dir, prefix=f".{key}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(payload)
                os.replace(tmp_name, f)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            log.error("cache_write_error", key=key, error=str(e), exc_info=True)
            raise CacheError(
                "Failed to write cache entry", key=key, path=str(f), operation="write"
            ) from e

        log.debug("cache_set", key=key)

    def invalidate(self, key: str) -> None:
        """Remove the entry for ``key``; a missing entry is not an error.

        Raises:
            CacheError: If the entry exists but cannot be removed.
        """
        f = self._file(key)
        try:
            f.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            log.error("cache_invalidate_error", key=key, error=str(e))
            raise CacheError(
                "Failed to remove cache entry", key=key, path=str(f), operation="invalidate"
            ) from e

        log.info("cache_invalidated", key=key)

    def clean(self, older_than: float) -> int:
        """Remove entries whose modification time is older than ``older_than``.

        Args:
            older_than: Age threshold in seconds.

        Returns:
            The number of entries removed.

        Raises:
            CacheError: If the directory cannot be scanned or an entry
                cannot be removed.
        """
        if not self.cache_dir.exists():
            return 0

        now = self._clock()
        cleaned = 0

        try:
            for path in self.cache_dir.glob("*.json"):
                try:
                    modified = path.stat().st_mtime
                except FileNotFoundError:
                    continue
                if now - modified > older_than:
                    path.unlink(missing_ok=True)
                    cleaned += 1
        except OSError as e:
            raise CacheError(
                "Failed to clean cache", path=str(self.cache_dir), operation="clean"
            ) from e

        if cleaned:
            log.info("cache_cleaned", count=cleaned, older_than=older_than)

        return cleaned

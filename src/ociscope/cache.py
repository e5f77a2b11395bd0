"""
Two-tier cache for registry responses.

L1 is a bounded in-memory LRU of serialized envelopes; L2 is a directory
tree where each key maps to the file ``<disk_path>/<key>``. Both tiers hold
the same bytes for a key: a JSON envelope
``{"data": <base64>, "cached_at": <epoch seconds>, "ttl": <seconds>}``.

An entry is valid while ``now - cached_at <= ttl``. Expired entries are
treated as absent and their files are deleted as soon as they are seen.
L2 is the source of truth; L1 is refilled from it on an L2 hit.

Keys are paths, so one key can shadow another: the file for ``catalog``
sits where a repository named ``catalog`` needs a directory for
``catalog/_tags``. Whichever key reaches the disk first wins; the other
lives in L1 only and reads from disk as a miss.

Several Cache instances (one per worker thread or process) may share one
disk directory. Files are replaced atomically, so a reader sees either the
previous or the new envelope, never a partial write.
"""
from __future__ import annotations

import base64
import binascii
import json
import logging
import os
import shutil
import tempfile
import time
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Tuple

from .errors import OciConfigError, OciValidationError
from .path_safety import key_to_path, safe_cache_key
from .settings import CacheTtl

logger = logging.getLogger(__name__)

TEMP_PREFIX = ".ociscope.tmp."

# Raised when a key's path collides with another key's file or directory
_SHADOWED = (NotADirectoryError, IsADirectoryError, FileExistsError)


class CacheType(str, Enum):
    """Kind of cached payload; each kind has its own TTL."""
    CATALOG = "catalog"
    TAGS = "tags"
    MANIFEST = "manifest"
    CONFIG = "config"

    def ttl(self, ttl: CacheTtl) -> int:
        return getattr(ttl, self.value)


@dataclass(frozen=True)
class PruneStats:
    removed_files: int = 0
    reclaimed_space: int = 0


@dataclass(frozen=True)
class ClearStats:
    removed_files: int = 0
    reclaimed_space: int = 0


@dataclass(frozen=True)
class CacheStats:
    disk_entries: int = 0
    disk_size: int = 0
    memory_entries: int = 0


@dataclass(frozen=True)
class _Envelope:
    data: bytes
    cached_at: float
    ttl: int

    def is_valid(self, now: float) -> bool:
        return now - self.cached_at <= self.ttl


def _encode(data: bytes, cached_at: float, ttl: int) -> bytes:
    return json.dumps({
        "data": base64.b64encode(data).decode("ascii"),
        "cached_at": cached_at,
        "ttl": ttl,
    }).encode("utf-8")


def _decode(raw: bytes, key: str) -> _Envelope:
    """
    Raises:
        OciValidationError: If ``raw`` is not a well-formed envelope
    """
    try:
        doc = json.loads(raw)
        return _Envelope(
            data=base64.b64decode(doc["data"], validate=True),
            cached_at=float(doc["cached_at"]),
            ttl=int(doc["ttl"]),
        )
    except (ValueError, TypeError, KeyError, binascii.Error) as e:
        raise OciValidationError(f"Failed to decode cache entry {key!r}: {e}") from e


class Cache:
    """
    In-memory LRU over an on-disk key/value store with per-entry TTL.

    Args:
        disk_path: Root directory of the L2 tier (created on first write)
        ttl: TTL per cache type
        memory_capacity: Maximum number of L1 entries
        max_disk_entries: When set, ``prune`` also evicts the oldest entries
                          beyond this count
        clock: Source of "now" in epoch seconds
    """

    def __init__(
        self,
        disk_path: Path,
        ttl: Optional[CacheTtl] = None,
        memory_capacity: int = 1000,
        *,
        max_disk_entries: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        if memory_capacity <= 0:
            raise ValueError(f"memory_capacity must be positive, got {memory_capacity}")
        self.disk_path = Path(disk_path)
        self.ttl = ttl or CacheTtl()
        self.memory_capacity = memory_capacity
        self.max_disk_entries = max_disk_entries
        self._clock = clock
        self._memory: OrderedDict[str, bytes] = OrderedDict()

    def get(self, key: str) -> Optional[bytes]:
        """
        Return the cached payload for ``key``, or None on a miss.

        Raises:
            OciValidationError: If the key is unsafe or the stored envelope is corrupt
            OciConfigError: If the cache file cannot be read
        """
        safe_cache_key(key)
        now = self._clock()

        raw = self._memory.get(key)
        if raw is not None:
            entry = _decode(raw, key)
            if entry.is_valid(now):
                self._memory.move_to_end(key)
                logger.debug(f"Cache hit (memory): {key}")
                return entry.data
            del self._memory[key]

        path = key_to_path(self.disk_path, key)
        try:
            raw = path.read_bytes()
        except (FileNotFoundError, NotADirectoryError, IsADirectoryError):
            logger.debug(f"Cache miss: {key}")
            return None
        except OSError as e:
            raise OciConfigError(f"Failed to read cache file: {e}", path=str(path)) from e

        entry = _decode(raw, key)
        if not entry.is_valid(now):
            logger.debug(f"Cache entry expired: {key}")
            self._unlink(path)
            return None

        self._remember(key, raw)
        logger.debug(f"Cache hit (disk): {key}")
        return entry.data

    def set(self, key: str, data: bytes, cache_type: CacheType) -> None:
        """
        Store ``data`` under ``key`` with the TTL of ``cache_type``.

        Raises:
            OciValidationError: If the key is unsafe
            OciConfigError: If the cache file cannot be written
        """
        safe_cache_key(key)
        raw = _encode(data, self._clock(), cache_type.ttl(self.ttl))
        path = key_to_path(self.disk_path, key)
        if not self._write_atomically(path, raw):
            logger.warning(f"Cache key {key!r} collides with another entry on disk; keeping it in memory only")
        self._remember(key, raw)
        logger.debug(f"Cache write: {key} ({len(data)} bytes, {cache_type.value})")

    def delete(self, key: str) -> None:
        """Remove ``key`` from both tiers; missing keys are not an error."""
        safe_cache_key(key)
        self._memory.pop(key, None)
        self._unlink(key_to_path(self.disk_path, key))

    def clear_memory(self) -> None:
        """Drop every L1 entry, leaving the disk tier untouched."""
        self._memory.clear()

    def prune(self) -> PruneStats:
        """
        Delete expired entries from disk.

        Malformed or unreadable files are skipped. When ``max_disk_entries``
        is set, the oldest surviving entries beyond it are removed as well.
        """
        now = self._clock()
        removed = 0
        reclaimed = 0
        survivors: List[Tuple[float, Path, int]] = []

        for path in self._walk():
            try:
                raw = path.read_bytes()
                entry = _decode(raw, str(path))
            except (OSError, OciValidationError) as e:
                logger.debug(f"Skipping unreadable cache file {path}: {e}")
                continue
            if entry.is_valid(now):
                survivors.append((entry.cached_at, path, len(raw)))
                continue
            if self._unlink(path):
                removed += 1
                reclaimed += len(raw)

        if self.max_disk_entries is not None and len(survivors) > self.max_disk_entries:
            survivors.sort(key=lambda item: item[0])
            for _, path, size in survivors[:len(survivors) - self.max_disk_entries]:
                if self._unlink(path):
                    removed += 1
                    reclaimed += size

        for key in [k for k, raw in self._memory.items() if not _decode(raw, k).is_valid(now)]:
            del self._memory[key]

        logger.info(f"Pruned {removed} cache files ({reclaimed} bytes)")
        return PruneStats(removed_files=removed, reclaimed_space=reclaimed)

    def clear(self) -> ClearStats:
        """Empty L1 and remove every file under the disk root."""
        self._memory.clear()
        removed = 0
        reclaimed = 0
        for path in self._walk(include_temp=True):
            try:
                size = path.stat().st_size
            except OSError:
                continue
            if self._unlink(path):
                removed += 1
                reclaimed += size

        if self.disk_path.is_dir():
            for child in self.disk_path.iterdir():
                if child.is_dir():
                    shutil.rmtree(child, ignore_errors=True)

        logger.info(f"Cleared {removed} cache files ({reclaimed} bytes)")
        return ClearStats(removed_files=removed, reclaimed_space=reclaimed)

    def stats(self) -> CacheStats:
        """Entry counts and disk usage (full directory walk)."""
        entries = 0
        size = 0
        for path in self._walk():
            try:
                size += path.stat().st_size
            except OSError:
                continue
            entries += 1
        return CacheStats(disk_entries=entries, disk_size=size, memory_entries=len(self._memory))

    def _remember(self, key: str, raw: bytes) -> None:
        self._memory[key] = raw
        self._memory.move_to_end(key)
        while len(self._memory) > self.memory_capacity:
            self._memory.popitem(last=False)

    def _walk(self, include_temp: bool = False) -> Iterator[Path]:
        if not self.disk_path.is_dir():
            return
        for root, _dirs, files in os.walk(self.disk_path):
            for name in files:
                if not include_temp and name.startswith(TEMP_PREFIX):
                    continue
                yield Path(root) / name

    def _write_atomically(self, path: Path, raw: bytes) -> bool:
        """Write ``raw`` to ``path``; False when the path is shadowed by another key."""
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(prefix=TEMP_PREFIX, dir=path.parent)
        except _SHADOWED:
            return False
        except OSError as e:
            raise OciConfigError(f"Failed to write cache file: {e}", path=str(path)) from e

        try:
            with os.fdopen(fd, "wb") as out:
                out.write(raw)
            os.replace(temp_path, path)
        except IsADirectoryError:
            Path(temp_path).unlink(missing_ok=True)
            return False
        except OSError as e:
            Path(temp_path).unlink(missing_ok=True)
            raise OciConfigError(f"Failed to write cache file: {e}", path=str(path)) from e
        return True

    @staticmethod
    def _unlink(path: Path) -> bool:
        """Delete ``path``; False when it was already gone."""
        try:
            path.unlink()
            return True
        except (FileNotFoundError, NotADirectoryError, IsADirectoryError):
            return False
        except OSError as e:
            raise OciConfigError(f"Failed to delete cache file: {e}", path=str(path)) from e


__all__ = ["Cache", "CacheType", "PruneStats", "ClearStats", "CacheStats"]

"""Download cache lifecycle and relocation.

Only one :class:`DownloadCache` is live per session. Each cache holds an
exclusive advisory lock on ``.kspctl-cache.lock`` inside its directory so two
processes never manage the same cache at once. The lock file keeps JSON
metadata about the holder for diagnostics.
"""
from __future__ import annotations

import fcntl
import json
import logging
import os
import shutil
import weakref
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Protocol

from .errors import CacheDirectoryNotFoundError, CachePathError

LOGGER = logging.getLogger(__name__)

LOCK_FILE_NAME = ".kspctl-cache.lock"


def _release_lock(fd: int) -> None:
    try:
        fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


class DownloadCache:
    """A download cache bound to one directory."""

    def __init__(self, path: Path | str, *, move_from: Path | None = None) -> None:
        """Validate and lock *path*, then pull in entries from *move_from*.

        Raises :class:`CacheDirectoryNotFoundError` if *path* is missing,
        :class:`CachePathError` if it cannot be used, and :class:`OSError` if
        moving existing entries fails part way. The lock is released before
        any of these propagate.
        """
        self.path = Path(path).expanduser()
        if not self.path.exists():
            raise CacheDirectoryNotFoundError(self.path)
        if not self.path.is_dir():
            raise CachePathError(f"{self.path} is not a directory")
        if not os.access(self.path, os.W_OK | os.X_OK):
            raise CachePathError(f"{self.path} is not writable")

        self._fd = self._acquire_lock()
        self._finalizer = weakref.finalize(self, _release_lock, self._fd)
        if move_from is not None:
            try:
                self.move_from(move_from)
            except OSError:
                self.dispose()
                raise

    # ------------------------------------------------------------------
    @property
    def lock_path(self) -> Path:
        """Return the lock file guarding this cache."""
        return self.path / LOCK_FILE_NAME

    @property
    def disposed(self) -> bool:
        """Return ``True`` once the lock has been released."""
        return not self._finalizer.alive

    def entries(self) -> list[Path]:
        """Return cached entries (excluding the lock file) sorted by name."""
        return sorted(child for child in self.path.iterdir() if child.name != LOCK_FILE_NAME)

    def size_bytes(self) -> int:
        """Return the total size of cached files."""
        total = 0
        for entry in self.entries():
            if entry.is_file():
                total += entry.stat().st_size
            elif entry.is_dir():
                total += sum(item.stat().st_size for item in entry.rglob("*") if item.is_file())
        return total

    def move_from(self, source: Path) -> int:
        """Move every entry of *source* into this cache, returning the count.

        Entries already present here are left in *source*. A failure part way
        leaves the entries moved so far in their new location.
        """
        source = Path(source).expanduser()
        if not source.is_dir() or _same_dir(source, self.path):
            return 0
        moved = 0
        own_root = self.path.resolve()
        for entry in sorted(source.iterdir()):
            if entry.name == LOCK_FILE_NAME:
                continue
            if own_root.is_relative_to(entry.resolve()):
                continue
            destination = self.path / entry.name
            if destination.exists():
                LOGGER.debug("Skipping %s, already cached", entry.name)
                continue
            shutil.move(str(entry), str(destination))
            moved += 1
        LOGGER.info("Moved %d cached entries from %s to %s", moved, source, self.path)
        return moved

    def dispose(self) -> None:
        """Release the cache lock. Safe to call more than once."""
        if self._finalizer.alive:
            self._finalizer()
            LOGGER.debug("Released download cache at %s", self.path)

    def __enter__(self) -> DownloadCache:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.dispose()

    # ------------------------------------------------------------------
    def _acquire_lock(self) -> int:
        try:
            fd = os.open(self.lock_path, os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as exc:
            raise CachePathError(f"Cannot create lock file in {self.path}: {exc}") from exc
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as exc:
            os.close(fd)
            raise CachePathError(f"{self.path} is in use by another process") from exc
        metadata = {
            "pid": os.getpid(),
            "path": str(self.lock_path),
            "acquired_at": datetime.now(UTC).isoformat(),
        }
        os.ftruncate(fd, 0)
        os.write(fd, json.dumps(metadata).encode("utf-8"))
        return fd


class CacheFailure(str, Enum):
    """Reason a cache relocation was refused."""

    PATH_MISSING = "path-missing"
    PATH_INVALID = "path-invalid"
    IO_ERROR = "io-error"


@dataclass(frozen=True, slots=True)
class CacheSetupResult:
    """Outcome of :meth:`CacheRelocator.set_cache_directory`."""

    ok: bool
    path: Path | None = None
    failure: CacheFailure | None = None
    reason: str | None = None


class CacheSettingStore(Protocol):
    """Store holding the download cache location."""

    download_cache_dir: Path

    @property
    def download_cache_setting(self) -> str:
        """Return the raw stored cache location."""


class CacheRelocator:
    """Own the live download cache and move it between directories."""

    def __init__(self, store: CacheSettingStore) -> None:
        """Bind the relocator to the store that records the cache location."""
        self.store = store
        self.cache: DownloadCache | None = None

    def setup_initial_cache(self) -> CacheSetupResult:
        """Create the stored cache directory if needed and open a cache there."""
        path = self.store.download_cache_dir
        path.mkdir(parents=True, exist_ok=True)
        return self.set_cache_directory(self.store.download_cache_setting)

    def set_cache_directory(self, path: Path | str | None) -> CacheSetupResult:
        """Switch to a download cache at *path* (empty means the default).

        Existing cached entries move into the new location. The stored path is
        only changed on success; an I/O failure during the move restores the
        original value, though entries moved before the failure stay moved.
        """
        original = self.store.download_cache_setting
        requested = str(path).strip() if path is not None else ""
        if requested:
            requested = str(Path(requested).expanduser().resolve())
        previous = self.cache
        try:
            if not requested:
                self.store.download_cache_dir = ""
                target = self.store.download_cache_dir
            else:
                target = Path(requested)

            if previous is not None and not previous.disposed and _same_dir(previous.path, target):
                if requested:
                    self.store.download_cache_dir = requested
                return CacheSetupResult(ok=True, path=previous.path)

            new_cache = DownloadCache(
                target,
                move_from=previous.path if previous is not None else None,
            )
            if requested:
                self.store.download_cache_dir = requested
        except CacheDirectoryNotFoundError as exc:
            self.store.download_cache_dir = original
            return CacheSetupResult(
                ok=False,
                failure=CacheFailure.PATH_MISSING,
                reason=f"{requested or exc.path} does not exist",
            )
        except CachePathError as exc:
            self.store.download_cache_dir = original
            return CacheSetupResult(ok=False, failure=CacheFailure.PATH_INVALID, reason=str(exc))
        except OSError as exc:
            LOGGER.warning("Moving the download cache failed, keeping %r: %s", original, exc)
            self.store.download_cache_dir = original
            return CacheSetupResult(ok=False, failure=CacheFailure.IO_ERROR, reason=str(exc))

        self.cache = new_cache
        if previous is not None:
            previous.dispose()
        LOGGER.info("Download cache set to %s", new_cache.path)
        return CacheSetupResult(ok=True, path=new_cache.path)

    def dispose(self) -> None:
        """Release the live cache."""
        if self.cache is not None:
            self.cache.dispose()
            self.cache = None


def _same_dir(left: Path, right: Path) -> bool:
    try:
        return left.resolve() == right.resolve()
    except OSError:
        return left == right


__all__ = [
    "CacheFailure",
    "CacheRelocator",
    "CacheSetupResult",
    "DownloadCache",
    "LOCK_FILE_NAME",
]

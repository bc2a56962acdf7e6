"""Error taxonomy shared by the instance registry, resolver and cache.

Every error carries an :class:`ErrorKind` so callers (notably the CLI) can
branch on the category without an ``isinstance`` ladder.
"""
from __future__ import annotations

from enum import Enum
from pathlib import Path

from .exit_codes import ExitCode


class ErrorKind(str, Enum):
    """Category of a :class:`KspctlError`."""

    UNKNOWN_INSTANCE = "unknown-instance"
    INVALID_INSTALLATION = "invalid-installation"
    BAD_INSTALL_LOCATION = "bad-install-location"
    STATE_CONFLICT = "state-conflict"
    ALLOCATION_EXHAUSTED = "allocation-exhausted"
    DUPLICATE_INSTANCE = "duplicate-instance"
    GAME_DIR_NOT_FOUND = "game-dir-not-found"
    NOT_GAME_DIR = "not-game-dir"
    CACHE_PATH_MISSING = "cache-path-missing"
    CACHE_PATH_INVALID = "cache-path-invalid"

    @property
    def exit_code(self) -> ExitCode:
        """Return the CLI exit code associated with this kind."""
        if self in _ENVIRONMENT_KINDS:
            return ExitCode.ENVIRONMENT
        if self in _STATE_KINDS:
            return ExitCode.STATE
        return ExitCode.VALIDATION


_ENVIRONMENT_KINDS = frozenset(
    {
        ErrorKind.GAME_DIR_NOT_FOUND,
        ErrorKind.NOT_GAME_DIR,
        ErrorKind.CACHE_PATH_MISSING,
        ErrorKind.CACHE_PATH_INVALID,
    }
)
_STATE_KINDS = frozenset({ErrorKind.STATE_CONFLICT, ErrorKind.ALLOCATION_EXHAUSTED})


class KspctlError(RuntimeError):
    """Base class for kspctl failures."""

    kind: ErrorKind = ErrorKind.STATE_CONFLICT


class UnknownInstanceError(KspctlError):
    """Raised when an instance name is not present in the registry."""

    kind = ErrorKind.UNKNOWN_INSTANCE

    def __init__(self, name: str, reason: str | None = None) -> None:
        self.name = name
        super().__init__(reason or f"Instance '{name}' not found in registry.")


class InvalidInstallationError(KspctlError):
    """Raised when a path fails the live game directory check."""

    kind = ErrorKind.INVALID_INSTALLATION

    def __init__(self, path: Path | str, reason: str | None = None) -> None:
        self.path = Path(path)
        super().__init__(reason or f"{self.path} is not a valid game directory.")


class BadInstallLocationError(KspctlError):
    """Raised when a new installation would overwrite an existing one."""

    kind = ErrorKind.BAD_INSTALL_LOCATION


class StateConflictError(KspctlError):
    """Raised when an operation is invalid for the current registry state."""

    kind = ErrorKind.STATE_CONFLICT


class AllocationExhaustedError(KspctlError):
    """Raised when no unique instance name could be allocated."""

    kind = ErrorKind.ALLOCATION_EXHAUSTED


class DuplicateInstanceError(KspctlError):
    """Raised when an instance name is already registered."""

    kind = ErrorKind.DUPLICATE_INSTANCE

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Instance '{name}' already exists in registry.")


class GameDirNotFoundError(KspctlError):
    """Raised when discovery cannot locate a game directory."""

    kind = ErrorKind.GAME_DIR_NOT_FOUND


class NotGameDirError(InvalidInstallationError):
    """Raised when discovery finds a directory that is not a game install."""

    kind = ErrorKind.NOT_GAME_DIR


class CacheDirectoryNotFoundError(KspctlError):
    """Raised when a download cache directory does not exist."""

    kind = ErrorKind.CACHE_PATH_MISSING

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        super().__init__(f"{self.path} does not exist")


class CachePathError(KspctlError):
    """Raised when a download cache path exists but cannot be used."""

    kind = ErrorKind.CACHE_PATH_INVALID


__all__ = [
    "AllocationExhaustedError",
    "BadInstallLocationError",
    "CacheDirectoryNotFoundError",
    "CachePathError",
    "DuplicateInstanceError",
    "ErrorKind",
    "GameDirNotFoundError",
    "InvalidInstallationError",
    "KspctlError",
    "NotGameDirError",
    "StateConflictError",
    "UnknownInstanceError",
]

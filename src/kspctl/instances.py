"""Registry of named game installations.

The in-memory collection is the source of truth while the process runs; every
mutation is written straight back to the persistent store so nothing is lost
if the process dies between commands.
"""
from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import Protocol

from .errors import (
    DuplicateInstanceError,
    InvalidInstallationError,
    UnknownInstanceError,
)
from .game import GameDirInspector, GameInstallation
from .naming import next_valid_name

LOGGER = logging.getLogger(__name__)


class RegistryStore(Protocol):
    """Persistent key-value store backing the instance registry."""

    auto_start_instance: str | None

    def get_instances(self) -> list[tuple[str, Path]]:
        """Return persisted ``(name, path)`` pairs."""

    def set_instances(self, instances: Mapping[str, object], auto_start: str | None) -> None:
        """Persist the full instance collection and auto-start name."""


class InstanceRegistry:
    """Ordered mapping of instance name to :class:`GameInstallation`."""

    def __init__(
        self,
        store: RegistryStore,
        *,
        inspector: GameDirInspector | None = None,
    ) -> None:
        """Bind the registry to *store*; call :meth:`load` to populate it."""
        self._store = store
        self._inspector = inspector or GameDirInspector()
        self._instances: dict[str, GameInstallation] = {}
        self._auto_start: str = ""

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------
    @property
    def inspector(self) -> GameDirInspector:
        """Return the validity checker handed to loaded instances."""
        return self._inspector

    @property
    def instances(self) -> dict[str, GameInstallation]:
        """Return a name-sorted copy of the registered instances."""
        return dict(sorted(self._instances.items()))

    def has(self, name: str) -> bool:
        """Return ``True`` if *name* is registered."""
        return name in self._instances

    def get(self, name: str) -> GameInstallation:
        """Return the instance registered as *name*."""
        try:
            return self._instances[name]
        except KeyError:
            raise UnknownInstanceError(name) from None

    def __contains__(self, name: object) -> bool:
        return name in self._instances

    def __len__(self) -> int:
        return len(self._instances)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._instances))

    @property
    def auto_start_name(self) -> str | None:
        """Return the auto-start instance name, or ``None`` when unset.

        A stored name that no longer matches a registered instance raises
        :class:`UnknownInstanceError`; one whose directory stopped being a game
        install raises :class:`InvalidInstallationError`.
        """
        if not self._auto_start:
            return None
        if self._auto_start not in self._instances:
            raise UnknownInstanceError(
                self._auto_start,
                f"Auto-start instance '{self._auto_start}' is not registered.",
            )
        installation = self._instances[self._auto_start]
        if not installation.valid:
            raise InvalidInstallationError(
                installation.root,
                f"Auto-start instance '{self._auto_start}' is no longer a valid game directory.",
            )
        return self._auto_start

    def next_valid_name(self, base: str) -> str:
        """Return an unused instance name derived from *base*."""
        return next_valid_name(base, self.has)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def add(self, installation: GameInstallation) -> GameInstallation:
        """Register *installation* and persist the registry."""
        if not installation.valid:
            raise InvalidInstallationError(installation.root)
        if installation.name in self._instances:
            raise DuplicateInstanceError(installation.name)
        self._instances[installation.name] = installation
        LOGGER.info("Added instance %s at %s", installation.name, installation.root)
        self._save()
        return installation

    def remove(self, name: str) -> None:
        """Remove *name* if present and persist; absent names are ignored."""
        if self._instances.pop(name, None) is not None:
            LOGGER.info("Removed instance %s", name)
        if self._auto_start == name:
            self._auto_start = ""
        self._save()

    def rename(self, old: str, new: str) -> None:
        """Move the instance registered as *old* to the key *new*."""
        installation = self.get(old)
        if new != old and new in self._instances:
            raise DuplicateInstanceError(new)
        del self._instances[old]
        installation.name = new
        self._instances[new] = installation
        if self._auto_start == old:
            self._auto_start = new
        LOGGER.info("Renamed instance %s to %s", old, new)
        self._save()

    def set_auto_start(self, name: str) -> None:
        """Mark *name* as the instance to select when nothing else decides."""
        installation = self.get(name)
        if not installation.valid:
            raise InvalidInstallationError(installation.root)
        self._auto_start = name
        self._store.auto_start_instance = name

    def clear_auto_start(self) -> None:
        """Forget the auto-start instance."""
        self._auto_start = ""
        self._store.auto_start_instance = ""

    def load(self) -> None:
        """Replace in-memory state with the contents of the store.

        Every stored entry is loaded, valid or not, so tooling can still report
        on broken installations. A stored auto-start name that does not resolve
        to a valid entry is cleared with a warning.
        """
        LOGGER.info("Loading instances from registry")
        self._instances.clear()
        self._auto_start = ""

        for name, path in self._store.get_instances():
            LOGGER.debug("Loading %s from %s", name, path)
            self._instances[name] = GameInstallation(name, path, self._inspector)

        stored = self._store.auto_start_instance or ""
        if not stored:
            return
        installation = self._instances.get(stored)
        if installation is None or not installation.valid:
            LOGGER.warning("Auto-start instance was invalid: %s", stored)
            self._store.auto_start_instance = ""
            return
        self._auto_start = stored

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _save(self) -> None:
        self._store.set_instances(self.instances, self._auto_start)


__all__ = ["InstanceRegistry", "RegistryStore"]

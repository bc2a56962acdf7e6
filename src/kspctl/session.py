"""Session object tying the registry, resolver and cache together.

A :class:`Session` replaces process-wide "current instance" state: whoever
creates the session owns it, and closing it releases the live download cache.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from .cache import CacheRelocator, CacheSetupResult
from .config import AppConfig
from .discovery import GameDiscovery
from .errors import InvalidInstallationError
from .factory import InstanceFactory
from .game import GameDirInspector, GameInstallation
from .instances import InstanceRegistry
from .resolver import PreferredInstanceResolver
from .state import StateRegistry
from .user import ConsoleUser, UserInterface

LOGGER = logging.getLogger(__name__)

CUSTOM_INSTANCE_NAME = "custom"


@dataclass
class Session:
    """Aggregated runtime objects and the current instance selection."""

    store: StateRegistry
    registry: InstanceRegistry
    factory: InstanceFactory
    resolver: PreferredInstanceResolver
    cache: CacheRelocator
    user: UserInterface
    current_instance: GameInstallation | None = field(default=None)

    @classmethod
    def open(
        cls,
        config: AppConfig,
        *,
        user: UserInterface | None = None,
        inspector: GameDirInspector | None = None,
        discovery: GameDiscovery | None = None,
    ) -> Session:
        """Build a session from *config*, load the registry and open the cache."""
        inspector = inspector or GameDirInspector()
        user = user or ConsoleUser()
        store = StateRegistry(config.registry_dir, default_cache_dir=config.cache_dir)
        store.ensure_root()
        discovery = discovery or GameDiscovery(
            inspector=inspector,
            steam_roots=config.discovery.steam_roots,
            game_dirs=config.discovery.game_dirs,
            game_folder=config.discovery.game_folder,
        )
        registry = InstanceRegistry(store, inspector=inspector)
        factory = InstanceFactory(registry, discovery, user)
        resolver = PreferredInstanceResolver(registry, factory, discovery)
        session = cls(
            store=store,
            registry=registry,
            factory=factory,
            resolver=resolver,
            cache=CacheRelocator(store),
            user=user,
        )
        session.load()
        return session

    def load(self) -> None:
        """Reload instances from the store and (re)open the download cache."""
        self.registry.load()
        result = self.cache.setup_initial_cache()
        if not result.ok:
            LOGGER.warning("Download cache unavailable: %s", result.reason)

    # ------------------------------------------------------------------
    # Current instance
    # ------------------------------------------------------------------
    def get_preferred_instance(self) -> GameInstallation | None:
        """Resolve the preferred instance and make it current.

        Overwrites any existing selection, including with ``None``.
        """
        self.current_instance = self.resolver.resolve()
        return self.current_instance

    def set_current_instance(self, name: str) -> GameInstallation:
        """Select the registered instance *name*."""
        installation = self.registry.get(name)
        if not installation.valid:
            raise InvalidInstallationError(installation.root)
        self.current_instance = installation
        return installation

    def set_current_instance_by_path(self, path: Path | str) -> GameInstallation:
        """Select an unregistered installation located at *path*."""
        installation = self.factory.construct(path, CUSTOM_INSTANCE_NAME)
        if not installation.valid:
            raise InvalidInstallationError(installation.root)
        self.current_instance = installation
        return installation

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------
    def set_cache_directory(self, path: Path | str | None) -> CacheSetupResult:
        """Relocate the download cache (see :class:`CacheRelocator`)."""
        return self.cache.set_cache_directory(path)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def close(self) -> None:
        """Release the download cache and drop the current selection."""
        self.cache.dispose()
        self.current_instance = None

    def __enter__(self) -> Session:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


__all__ = ["CUSTOM_INSTANCE_NAME", "Session"]

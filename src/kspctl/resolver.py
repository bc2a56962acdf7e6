"""Selection of the preferred game installation."""
from __future__ import annotations

import logging

from .discovery import GameDiscovery
from .errors import KspctlError
from .factory import InstanceFactory
from .game import GameInstallation
from .instances import InstanceRegistry

LOGGER = logging.getLogger(__name__)

PORTABLE_NAME = "portable"


class PreferredInstanceResolver:
    """Pick the installation to use when none was chosen explicitly.

    Checks, in order: a portable install in the working directory (never
    registered), a lone valid registry entry, the auto-start instance, and
    finally autodetection when the registry is empty. Returns ``None`` when
    several instances exist and none is preferred.
    """

    def __init__(
        self,
        registry: InstanceRegistry,
        factory: InstanceFactory,
        discovery: GameDiscovery,
    ) -> None:
        """Wire the resolver to its collaborators."""
        self.registry = registry
        self.factory = factory
        self.discovery = discovery

    def resolve(self) -> GameInstallation | None:
        """Return the preferred installation, or ``None`` if ambiguous."""
        portable_path = self.discovery.portable_dir()
        if portable_path is not None:
            portable = self.factory.construct(portable_path, PORTABLE_NAME)
            if portable.valid:
                LOGGER.debug("Using portable installation at %s", portable_path)
                return portable

        instances = self.registry.instances
        if len(instances) == 1:
            only = next(iter(instances.values()))
            if only.valid:
                return only

        try:
            auto_start = self.registry.auto_start_name
        except KspctlError as exc:
            LOGGER.debug("Skipping auto-start instance: %s", exc)
            auto_start = None
        if auto_start:
            return instances[auto_start]

        if not instances:
            return self.factory.find_and_register_default()

        LOGGER.debug("Multiple instances registered and none preferred")
        return None


__all__ = ["PORTABLE_NAME", "PreferredInstanceResolver"]

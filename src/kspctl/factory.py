"""Construction of installation handles, autodetection and fake installs."""
from __future__ import annotations

import logging
from pathlib import Path

from packaging.version import Version

from .discovery import GameDiscovery
from .errors import (
    BadInstallLocationError,
    GameDirNotFoundError,
    InvalidInstallationError,
    NotGameDirError,
    StateConflictError,
)
from .game import (
    BUILD_ID_FILE,
    DLC_RELATIVE_PATH,
    GAME_DATA_DIR,
    README_FILE,
    GameInstallation,
    build_number,
    parse_version,
    supports_dlc,
)
from .instances import InstanceRegistry
from .user import UserInterface

LOGGER = logging.getLogger(__name__)

AUTODETECTED_NAME = "auto"


class InstanceFactory:
    """Create installation handles and feed them into the registry."""

    def __init__(
        self,
        registry: InstanceRegistry,
        discovery: GameDiscovery,
        user: UserInterface,
    ) -> None:
        """Wire the factory to its collaborators."""
        self.registry = registry
        self.discovery = discovery
        self.user = user

    def construct(self, path: Path | str, name: str) -> GameInstallation:
        """Return a handle for *path*; validity is checked lazily."""
        root = Path(path).expanduser().resolve()
        return GameInstallation(name, root, self.registry.inspector)

    def find_and_register_default(self) -> GameInstallation | None:
        """Autodetect a game directory and register it as ``auto``.

        Only valid while the registry is empty. Returns ``None`` when nothing
        usable was found.
        """
        if len(self.registry):
            raise StateConflictError("Attempted to scan for defaults with instances in registry")

        try:
            game_dir = self.discovery.find_game_dir()
        except (GameDirNotFoundError, NotGameDirError) as exc:
            LOGGER.debug("No default game directory: %s", exc)
            return None

        found = self.construct(game_dir, AUTODETECTED_NAME)
        if not found.valid:
            return None
        return self.registry.add(found)

    def create_fake(
        self,
        name: str,
        path: Path | str,
        version: Version | str,
        simulate_dlc: bool = False,
        dlc_version: str | None = None,
    ) -> bool:
        """Create and register a minimal fake installation at *path*.

        This is a best-effort operation: failures are logged and reported to
        the user, and ``False`` is returned instead of raising.
        """
        target = Path(path).expanduser().resolve()
        try:
            game_version = parse_version(version)
            if self.registry.inspector.is_game_dir(target):
                raise BadInstallLocationError(
                    "There is already a game instance at this path. Delete the old one first."
                )

            LOGGER.debug(
                "Creating folder structure and text files at %s for game version %s",
                target,
                game_version,
            )
            (target / GAME_DATA_DIR).mkdir(parents=True, exist_ok=True)
            (target / BUILD_ID_FILE).write_text(
                f"build id = {build_number(game_version)}", encoding="utf-8"
            )
            (target / README_FILE).write_text(f"Version {game_version}", encoding="utf-8")

            if simulate_dlc and supports_dlc(game_version):
                dlc_dir = target / DLC_RELATIVE_PATH
                dlc_dir.mkdir(parents=True, exist_ok=True)
                if dlc_version is not None:
                    (dlc_dir / README_FILE).write_text(f"Version {dlc_version}", encoding="utf-8")

            self.registry.add(self.construct(target, name))
        except Exception as exc:
            LOGGER.exception("Failed to create fake instance %s at %s", name, target)
            self.user.raise_error(f"{type(exc).__name__}: {exc}")
            return False
        return True

    def clone(
        self,
        existing: GameInstallation,
        new_name: str,
        new_path: Path | str,
    ) -> bool:
        """Create a fake installation matching *existing*'s version and DLC."""
        if not existing.valid:
            error = InvalidInstallationError(existing.root)
            LOGGER.error("%s", error)
            raise error

        version = existing.version()
        if version is None:
            error = InvalidInstallationError(
                existing.root, f"Could not detect the game version at {existing.root}."
            )
            LOGGER.error("%s", error)
            raise error

        dlc = existing.dlc()
        return self.create_fake(
            new_name,
            new_path,
            version,
            simulate_dlc=dlc is not None,
            dlc_version=dlc.version if dlc is not None else None,
        )


__all__ = ["AUTODETECTED_NAME", "InstanceFactory"]

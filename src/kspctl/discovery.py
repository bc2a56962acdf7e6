"""Platform-specific discovery of game installations."""
from __future__ import annotations

import logging
import re
import sys
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .errors import GameDirNotFoundError, NotGameDirError
from .game import GameDirInspector

LOGGER = logging.getLogger(__name__)

DEFAULT_GAME_FOLDER = "Kerbal Space Program"
LIBRARY_FOLDERS_FILE = Path("steamapps", "libraryfolders.vdf")

_VDF_PATH = re.compile(r'^\s*"(?:path|\d+)"\s+"(?P<path>[^"]+)"', re.MULTILINE)


def default_steam_roots(platform: str | None = None, home: Path | None = None) -> list[Path]:
    """Return the usual Steam installation roots for *platform*."""
    platform = platform or sys.platform
    home = home or Path.home()
    if platform.startswith("win"):
        return [
            Path("C:/Program Files (x86)/Steam"),
            Path("C:/Program Files/Steam"),
        ]
    if platform == "darwin":
        return [home / "Library" / "Application Support" / "Steam"]
    return [
        home / ".local" / "share" / "Steam",
        home / ".steam" / "steam",
        home / ".var" / "app" / "com.valvesoftware.Steam" / ".local" / "share" / "Steam",
    ]


def parse_library_folders(text: str) -> list[Path]:
    """Return the library paths listed in a Steam ``libraryfolders.vdf``."""
    paths: list[Path] = []
    for match in _VDF_PATH.finditer(text):
        raw = match.group("path").replace("\\\\", "\\")
        # App manifests also use numeric keys; keep only values shaped like paths.
        if "/" not in raw and "\\" not in raw:
            continue
        paths.append(Path(raw))
    return paths


@dataclass(slots=True)
class GameDiscovery:
    """Locate game directories on the local machine."""

    inspector: GameDirInspector = field(default_factory=GameDirInspector)
    steam_roots: Sequence[Path] = field(default_factory=default_steam_roots)
    game_dirs: Sequence[Path] = ()
    game_folder: str = DEFAULT_GAME_FOLDER
    cwd: Callable[[], Path] = Path.cwd

    def portable_dir(self) -> Path | None:
        """Return the working directory when it is itself a game directory."""
        current = self.cwd()
        if self.inspector.is_game_dir(current):
            return current
        return None

    def candidates(self) -> list[Path]:
        """Return candidate game directories in search order."""
        seen: set[Path] = set()
        ordered: list[Path] = []
        for candidate in [*self.game_dirs, *self._steam_candidates()]:
            candidate = Path(candidate).expanduser()
            if candidate in seen:
                continue
            seen.add(candidate)
            ordered.append(candidate)
        return ordered

    def find_game_dir(self) -> Path:
        """Return the first existing candidate directory.

        Raises :class:`GameDirNotFoundError` when no candidate exists and
        :class:`NotGameDirError` when the first existing candidate is not a
        game directory.
        """
        for candidate in self.candidates():
            if not candidate.is_dir():
                continue
            LOGGER.debug("Found game directory candidate %s", candidate)
            if not self.inspector.is_game_dir(candidate):
                raise NotGameDirError(candidate)
            return candidate
        raise GameDirNotFoundError("Could not find a game directory.")

    def _steam_candidates(self) -> Iterable[Path]:
        for root in self.steam_roots:
            root = Path(root).expanduser()
            for library in [root, *self._library_folders(root)]:
                yield library / "steamapps" / "common" / self.game_folder

    def _library_folders(self, root: Path) -> list[Path]:
        vdf = root / LIBRARY_FOLDERS_FILE
        try:
            text = vdf.read_text(encoding="utf-8", errors="replace")
        except OSError:
            return []
        return parse_library_folders(text)


__all__ = [
    "DEFAULT_GAME_FOLDER",
    "GameDiscovery",
    "default_steam_roots",
    "parse_library_folders",
]

"""Game installation handles and on-disk layout inspection.

A game root is recognised by its ``GameData`` directory. Version information
comes from ``readme.txt`` (``Version 1.12.5``) and the Making History
expansion is detected under ``GameData/SquadExpansion/MakingHistory``.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

from packaging.version import InvalidVersion, Version

GAME_DATA_DIR = "GameData"
BUILD_ID_FILE = "buildID.txt"
README_FILE = "readme.txt"
DLC_IDENTIFIER = "MakingHistory-DLC"
DLC_RELATIVE_PATH = Path(GAME_DATA_DIR, "SquadExpansion", "MakingHistory")
DLC_MIN_GAME_VERSION = Version("1.4.0")

_VERSION_LINE = re.compile(r"^\s*Version\s+(?P<version>\S+)", re.IGNORECASE | re.MULTILINE)


def parse_version(value: str | Version) -> Version:
    """Return *value* as a :class:`~packaging.version.Version`."""
    if isinstance(value, Version):
        return value
    text = str(value).strip().lstrip("vV")
    try:
        return Version(text)
    except InvalidVersion as exc:
        raise ValueError(f"Invalid game version '{value}'.") from exc


def build_number(version: Version) -> int:
    """Return the build component (fourth release segment, ``0`` if absent)."""
    release = version.release
    return release[3] if len(release) > 3 else 0


def supports_dlc(version: Version) -> bool:
    """Return ``True`` when *version* can host the expansion."""
    return version >= DLC_MIN_GAME_VERSION


@dataclass(frozen=True, slots=True)
class DlcInfo:
    """Installed expansion details."""

    identifier: str
    path: Path
    version: str | None = None


class GameDirInspector:
    """Answer live questions about a directory on disk."""

    def is_game_dir(self, path: Path) -> bool:
        """Return ``True`` when *path* looks like a game root."""
        return path.is_dir() and (path / GAME_DATA_DIR).is_dir()

    def detect_version(self, path: Path) -> Version | None:
        """Return the version recorded in the root ``readme.txt``."""
        return _read_readme_version(path / README_FILE)

    def detect_dlc(self, path: Path) -> DlcInfo | None:
        """Return expansion details when the expansion directory exists."""
        dlc_dir = path / DLC_RELATIVE_PATH
        if not dlc_dir.is_dir():
            return None
        version = _read_readme_version(dlc_dir / README_FILE)
        return DlcInfo(
            identifier=DLC_IDENTIFIER,
            path=dlc_dir,
            version=str(version) if version is not None else None,
        )


@dataclass(slots=True)
class GameInstallation:
    """Handle for one installation: a name bound to a root directory.

    ``valid`` is evaluated against the filesystem on every access because the
    directory can disappear or change underfoot.
    """

    name: str
    root: Path
    inspector: GameDirInspector = field(default_factory=GameDirInspector, repr=False)

    def __post_init__(self) -> None:
        """Normalise the root path after initialisation."""
        self.root = Path(self.root).expanduser()

    @property
    def valid(self) -> bool:
        """Return ``True`` if the root currently holds a game installation."""
        return self.inspector.is_game_dir(self.root)

    def version(self) -> Version | None:
        """Return the detected game version."""
        return self.inspector.detect_version(self.root)

    def dlc(self) -> DlcInfo | None:
        """Return the detected expansion, if installed."""
        return self.inspector.detect_dlc(self.root)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable summary including live checks."""
        valid = self.valid
        version = self.version() if valid else None
        dlc = self.dlc() if valid else None
        return {
            "name": self.name,
            "path": str(self.root),
            "valid": valid,
            "version": str(version) if version is not None else None,
            "dlc": dlc.version if dlc is not None else None,
        }


def _read_readme_version(path: Path) -> Version | None:
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None
    match = _VERSION_LINE.search(text)
    if match is None:
        return None
    try:
        return parse_version(match.group("version"))
    except ValueError:
        return None


__all__ = [
    "BUILD_ID_FILE",
    "DLC_IDENTIFIER",
    "DLC_MIN_GAME_VERSION",
    "DLC_RELATIVE_PATH",
    "DlcInfo",
    "GAME_DATA_DIR",
    "GameDirInspector",
    "GameInstallation",
    "README_FILE",
    "build_number",
    "parse_version",
    "supports_dlc",
]

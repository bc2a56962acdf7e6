"""Helpers for interacting with the kspctl state registry.

The registry directory (``~/.local/share/kspctl/registry`` by default) stores
YAML artifacts: ``instances.yml`` holds the known installations and the
auto-start name, ``settings.yml`` holds scalar settings such as the download
cache location. Writes are atomic so an interrupted run never leaves a
half-written file behind.
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path

try:  # PyYAML is a runtime dependency declared in pyproject.toml
    import yaml
except Exception as exc:  # pragma: no cover - import failure handled in tests
    raise RuntimeError(
        "PyYAML is required to manage kspctl state. Install with `pip install kspctl`."
    ) from exc

INSTANCES_FILE = "instances.yml"
SETTINGS_FILE = "settings.yml"


class StateRegistryError(RuntimeError):
    """Raised when state registry operations fail."""


@dataclass
class StateRegistry:
    """High-level interface to the YAML registry."""

    root: Path
    default_cache_dir: Path | None = None

    def __post_init__(self) -> None:
        """Normalise paths after initialisation."""
        self.root = Path(self.root).expanduser()
        if self.default_cache_dir is not None:
            self.default_cache_dir = Path(self.default_cache_dir).expanduser()

    def ensure_root(self) -> None:
        """Create the registry directory if it does not yet exist."""
        self.root.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Public helpers
    # ------------------------------------------------------------------
    def path_for(self, name: str) -> Path:
        """Return the filesystem path for a named registry file."""
        return self.root / name

    def read(self, name: str, *, default: object | None = None) -> object | None:
        """Read a registry file, returning *default* when missing."""
        path = self.path_for(name)
        if not path.exists():
            return deepcopy(default)
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
            raise StateRegistryError(f"Failed to parse registry file {path}: {exc}") from exc
        return data if data is not None else deepcopy(default)

    def write(self, name: str, payload: Mapping[str, object]) -> None:
        """Atomically write *payload* to the given registry file."""
        self.ensure_root()
        path = self.path_for(name)

        tmp_fd, tmp_name = tempfile.mkstemp(dir=str(self.root), prefix=f".{path.name}.")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                yaml.safe_dump(dict(payload), handle, sort_keys=False)
            os.replace(tmp_path, path)
            os.chmod(path, 0o640)
        finally:
            tmp_path.unlink(missing_ok=True)

    # Instance helpers -------------------------------------------------
    def read_instances(self) -> Mapping[str, object]:
        """Return the contents of ``instances.yml`` (empty mapping if missing)."""
        value = self.read(INSTANCES_FILE, default={"instances": []})
        return value if isinstance(value, Mapping) else {"instances": []}

    def get_instances(self) -> list[tuple[str, Path]]:
        """Return the persisted ``(name, path)`` pairs in file order."""
        raw_instances = self.read_instances().get("instances", [])
        pairs: list[tuple[str, Path]] = []
        if not isinstance(raw_instances, list):
            return pairs
        for entry in raw_instances:
            if not isinstance(entry, Mapping):
                continue
            name = entry.get("name")
            path = entry.get("path")
            if not isinstance(name, str) or not name.strip():
                continue
            if path is None or not str(path).strip():
                continue
            pairs.append((name, Path(str(path)).expanduser()))
        return pairs

    def set_instances(
        self,
        instances: Mapping[str, object],
        auto_start: str | None,
    ) -> None:
        """Persist *instances* (name -> handle or path) with the auto-start name."""
        entries: list[dict[str, str]] = []
        for name, value in instances.items():
            root = getattr(value, "root", value)
            entries.append({"name": str(name), "path": str(root)})
        self.write(
            INSTANCES_FILE,
            {"auto_start": auto_start or "", "instances": entries},
        )

    @property
    def auto_start_instance(self) -> str | None:
        """Return the stored auto-start name.

        ``None`` means the value was never written; ``""`` means it was cleared.
        """
        value = self.read_instances().get("auto_start")
        if value is None:
            return None
        return str(value)

    @auto_start_instance.setter
    def auto_start_instance(self, name: str | None) -> None:
        data = dict(self.read_instances())
        data.setdefault("instances", [])
        data["auto_start"] = name or ""
        self.write(INSTANCES_FILE, data)

    # Settings helpers -------------------------------------------------
    def read_settings(self) -> Mapping[str, object]:
        """Return the contents of ``settings.yml`` (empty mapping if missing)."""
        value = self.read(SETTINGS_FILE, default={})
        return value if isinstance(value, Mapping) else {}

    @property
    def download_cache_dir(self) -> Path:
        """Return the configured download cache, falling back to the default."""
        value = self.read_settings().get("download_cache_dir")
        if isinstance(value, str) and value.strip():
            return Path(value).expanduser()
        if self.default_cache_dir is None:
            raise StateRegistryError("No download cache directory configured.")
        return self.default_cache_dir

    @property
    def download_cache_setting(self) -> str:
        """Return the raw stored cache location (``""`` when using the default)."""
        value = self.read_settings().get("download_cache_dir")
        return str(value) if value is not None else ""

    @download_cache_dir.setter
    def download_cache_dir(self, path: Path | str | None) -> None:
        data = dict(self.read_settings())
        data["download_cache_dir"] = str(path) if path else ""
        self.write(SETTINGS_FILE, data)


__all__ = ["INSTANCES_FILE", "SETTINGS_FILE", "StateRegistry", "StateRegistryError"]

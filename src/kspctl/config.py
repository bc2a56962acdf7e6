"""Configuration loader for kspctl.

Configuration values are merged from several sources, later ones winning:

1. Built-in defaults.
2. ``~/.config/kspctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``KSPCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export KSPCTL_STATE_DIR=/tmp/kspctl
    export KSPCTL_DISCOVERY__GAME_FOLDER="Kerbal Space Program"

Values are coerced via PyYAML's ``safe_load`` so that booleans, numbers and
lists are parsed naturally. The resulting configuration is exposed as
immutable ``dataclasses``.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load kspctl configuration. Install with "
        "`pip install kspctl` or ensure PyYAML>=6.0 is available."
    ) from exc

from .discovery import DEFAULT_GAME_FOLDER, default_steam_roots

ENV_PREFIX = "KSPCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class DiscoveryConfig:
    """Where to look for game installations."""

    steam_roots: tuple[Path, ...]
    game_dirs: tuple[Path, ...] = ()
    game_folder: str = DEFAULT_GAME_FOLDER

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "steam_roots": [str(path) for path in self.steam_roots],
            "game_dirs": [str(path) for path in self.game_dirs],
            "game_folder": self.game_folder,
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for kspctl."""

    config_file: Path
    state_dir: Path
    registry_dir: Path
    logs_dir: Path
    cache_dir: Path
    discovery: DiscoveryConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "state_dir": str(self.state_dir),
            "registry_dir": str(self.registry_dir),
            "logs_dir": str(self.logs_dir),
            "cache_dir": str(self.cache_dir),
            "discovery": self.discovery.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "~/.config/kspctl/config.yml",
    "state_dir": "~/.local/share/kspctl",
    "registry_dir": None,  # derived from state_dir when absent
    "logs_dir": None,  # derived from state_dir when absent
    "cache_dir": None,  # derived from state_dir when absent
    "discovery": {
        "steam_roots": None,  # platform defaults when absent
        "game_dirs": [],
        "game_folder": DEFAULT_GAME_FOLDER,
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_DISCOVERY_KEYS = {"steam_roots", "game_dirs", "game_folder"}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override).expanduser()
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR]).expanduser()
    return Path(default_path).expanduser()


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    discovery = raw.get("discovery")
    if discovery is not None:
        discovery_map = _as_dict(discovery, "discovery")
        unknown = set(discovery_map.keys()) - ALLOWED_DISCOVERY_KEYS
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown discovery configuration keys: {joined}.")
        folder = discovery_map.get("game_folder")
        if folder is not None and (not isinstance(folder, str) or not folder.strip()):
            raise ConfigError("discovery.game_folder must be a non-empty string.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    state_dir = _to_path(raw.get("state_dir"))

    registry_dir = _optional_path(raw.get("registry_dir")) or state_dir / "registry"
    logs_dir = _optional_path(raw.get("logs_dir")) or state_dir / "logs"
    cache_dir = _optional_path(raw.get("cache_dir")) or state_dir / "downloads"

    discovery_mapping = _as_dict(raw.get("discovery"), "discovery")
    steam_raw = discovery_mapping.get("steam_roots")
    if steam_raw is None:
        steam_roots = tuple(default_steam_roots())
    else:
        steam_roots = _path_tuple(steam_raw, "discovery.steam_roots")
    game_dirs_raw = discovery_mapping.get("game_dirs")
    game_dirs = () if game_dirs_raw is None else _path_tuple(game_dirs_raw, "discovery.game_dirs")

    discovery = DiscoveryConfig(
        steam_roots=steam_roots,
        game_dirs=game_dirs,
        game_folder=str(discovery_mapping.get("game_folder") or DEFAULT_GAME_FOLDER),
    )

    return AppConfig(
        config_file=config_file,
        state_dir=state_dir,
        registry_dir=registry_dir,
        logs_dir=logs_dir,
        cache_dir=cache_dir,
        discovery=discovery,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _path_tuple(value: object, label: str) -> tuple[Path, ...]:
    # A single path from the environment arrives as a plain string.
    if isinstance(value, (str, Path)):
        return (_to_path(value),)
    if not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return tuple(_to_path(item) for item in value)


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _optional_path(value: object) -> Path | None:
    if value in (None, ""):
        return None
    return _to_path(value)


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ConfigError",
    "DiscoveryConfig",
    "load_config",
]

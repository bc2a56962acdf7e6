"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path

import pytest

from kspctl.game import GameInstallation
from kspctl.instances import InstanceRegistry
from kspctl.state import StateRegistry

GameDirFactory = Callable[..., Path]


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


class RecordingUser:
    """User interaction stub that keeps reported errors."""

    def __init__(self) -> None:
        self.errors: list[str] = []

    def raise_error(self, message: str) -> None:
        self.errors.append(message)


@pytest.fixture
def make_game_dir(tmp_path: Path) -> GameDirFactory:
    """Return a helper that lays out a minimal game directory."""

    def _make(
        name: str,
        *,
        version: str | None = "1.12.5",
        dlc_version: str | None = None,
    ) -> Path:
        root = tmp_path / "games" / name
        (root / "GameData").mkdir(parents=True)
        if version is not None:
            (root / "readme.txt").write_text(f"Version {version}\n", encoding="utf-8")
        if dlc_version is not None:
            dlc_dir = root / "GameData" / "SquadExpansion" / "MakingHistory"
            dlc_dir.mkdir(parents=True)
            (dlc_dir / "readme.txt").write_text(f"Version {dlc_version}", encoding="utf-8")
        return root

    return _make


@pytest.fixture
def store(tmp_path: Path) -> StateRegistry:
    """Return a YAML store rooted at a temporary path."""
    return StateRegistry(tmp_path / "registry", default_cache_dir=tmp_path / "downloads")


@pytest.fixture
def registry(store: StateRegistry) -> InstanceRegistry:
    """Return an empty, loaded instance registry."""
    instances = InstanceRegistry(store)
    instances.load()
    return instances


@pytest.fixture
def user() -> RecordingUser:
    """Return a user stub recording reported errors."""
    return RecordingUser()


def installation(name: str, root: Path) -> GameInstallation:
    """Return a handle for *root* named *name*."""
    return GameInstallation(name, root)

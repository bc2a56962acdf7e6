"""Tests for preferred instance resolution."""
from __future__ import annotations

import shutil
from pathlib import Path

from conftest import GameDirFactory, RecordingUser, installation

from kspctl.discovery import GameDiscovery
from kspctl.factory import AUTODETECTED_NAME, InstanceFactory
from kspctl.instances import InstanceRegistry
from kspctl.resolver import PORTABLE_NAME, PreferredInstanceResolver


def _resolver(
    registry: InstanceRegistry,
    cwd: Path,
    *,
    game_dirs: tuple[Path, ...] = (),
) -> PreferredInstanceResolver:
    discovery = GameDiscovery(steam_roots=(), game_dirs=game_dirs, cwd=lambda: cwd)
    factory = InstanceFactory(registry, discovery, RecordingUser())
    return PreferredInstanceResolver(registry, factory, discovery)


def test_portable_install_wins(
    registry: InstanceRegistry,
    make_game_dir: GameDirFactory,
) -> None:
    """A game in the working directory is used and never registered."""
    registry.add(installation("alpha", make_game_dir("alpha")))
    registry.set_auto_start("alpha")
    portable_root = make_game_dir("portable")

    resolved = _resolver(registry, portable_root).resolve()

    assert resolved is not None
    assert resolved.name == PORTABLE_NAME
    assert resolved.root == portable_root
    assert not registry.has(PORTABLE_NAME)


def test_single_valid_instance(
    registry: InstanceRegistry,
    make_game_dir: GameDirFactory,
    tmp_path: Path,
) -> None:
    """A lone valid entry is preferred without an auto-start name."""
    alpha = registry.add(installation("alpha", make_game_dir("alpha")))

    assert _resolver(registry, tmp_path).resolve() is alpha


def test_single_invalid_instance_returns_none(
    registry: InstanceRegistry,
    make_game_dir: GameDirFactory,
    tmp_path: Path,
) -> None:
    """A lone entry whose directory vanished is not returned."""
    root = make_game_dir("alpha")
    registry.add(installation("alpha", root))
    shutil.rmtree(root)

    assert _resolver(registry, tmp_path).resolve() is None


def test_auto_start_instance(
    registry: InstanceRegistry,
    make_game_dir: GameDirFactory,
    tmp_path: Path,
) -> None:
    """With several entries the auto-start instance decides."""
    registry.add(installation("alpha", make_game_dir("alpha")))
    beta = registry.add(installation("beta", make_game_dir("beta")))
    registry.set_auto_start("beta")

    assert _resolver(registry, tmp_path).resolve() is beta


def test_auto_start_instance_gone_invalid(
    registry: InstanceRegistry,
    make_game_dir: GameDirFactory,
    tmp_path: Path,
) -> None:
    """An auto-start entry that became invalid is skipped."""
    registry.add(installation("alpha", make_game_dir("alpha")))
    beta_root = make_game_dir("beta")
    registry.add(installation("beta", beta_root))
    registry.set_auto_start("beta")
    shutil.rmtree(beta_root)

    assert _resolver(registry, tmp_path).resolve() is None


def test_several_instances_without_preference(
    registry: InstanceRegistry,
    make_game_dir: GameDirFactory,
    tmp_path: Path,
) -> None:
    """Ambiguity yields ``None`` and leaves the registry untouched."""
    registry.add(installation("alpha", make_game_dir("alpha")))
    registry.add(installation("beta", make_game_dir("beta")))

    assert _resolver(registry, tmp_path).resolve() is None
    assert list(registry) == ["alpha", "beta"]


def test_empty_registry_autodetects(
    registry: InstanceRegistry,
    make_game_dir: GameDirFactory,
    tmp_path: Path,
) -> None:
    """An empty registry falls through to autodetection."""
    steam_root = make_game_dir("steam")

    resolved = _resolver(registry, tmp_path, game_dirs=(steam_root,)).resolve()

    assert resolved is not None
    assert resolved.name == AUTODETECTED_NAME
    assert registry.has(AUTODETECTED_NAME)


def test_empty_registry_nothing_detected(registry: InstanceRegistry, tmp_path: Path) -> None:
    """Without any candidate there is no preferred instance."""
    assert _resolver(registry, tmp_path).resolve() is None
    assert len(registry) == 0

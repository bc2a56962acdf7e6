"""Tests for the kspctl command line interface."""
from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from pathlib import Path

import pytest
import yaml
from conftest import GameDirFactory
from typer.testing import CliRunner

from kspctl import __version__
from kspctl.cli import app
from kspctl.state import StateRegistry

runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolate(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    """Keep the working directory neutral and drop console handlers afterwards."""
    workdir = tmp_path / "workdir"
    workdir.mkdir()
    monkeypatch.chdir(workdir)
    yield
    logging.getLogger("kspctl").handlers.clear()


def _prepare_environment(
    tmp_path: Path,
    *,
    game_dirs: list[Path] | None = None,
) -> dict[str, str]:
    """Write a config file pointing all state into *tmp_path*."""
    config_file = tmp_path / "config.yml"
    config_file.write_text(
        yaml.safe_dump(
            {
                "state_dir": str(tmp_path / "state"),
                "discovery": {
                    "steam_roots": [],
                    "game_dirs": [str(path) for path in game_dirs or []],
                },
            }
        ),
        encoding="utf-8",
    )
    return {"KSPCTL_CONFIG_FILE": str(config_file)}


def _store(tmp_path: Path) -> StateRegistry:
    return StateRegistry(tmp_path / "state" / "registry")


def _extract_json(output: str) -> dict[str, object]:
    """Extract the first JSON object embedded in *output*."""
    start = output.find("{")
    end = output.rfind("}")
    assert start != -1 and end != -1, f"No JSON payload found in output: {output}"
    return json.loads(output[start : end + 1])


def _text(output: str) -> str:
    """Collapse rich line wrapping so messages can be matched."""
    return " ".join(output.split())


def _operations(tmp_path: Path) -> list[dict[str, object]]:
    path = tmp_path / "state" / "logs" / "operations.jsonl"
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def test_version_flag() -> None:
    """``--version`` prints the package version."""
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_config_show_json(tmp_path: Path) -> None:
    """The effective configuration is rendered as JSON."""
    env = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["config", "show", "--json"], env=env)

    assert result.exit_code == 0, result.stdout
    payload = _extract_json(result.stdout)
    assert payload["state_dir"] == str(tmp_path / "state")
    assert payload["registry_dir"] == str(tmp_path / "state" / "registry")


def test_invalid_config_exits_with_environment_error(tmp_path: Path) -> None:
    """Broken configuration is an environment failure."""
    config_file = tmp_path / "config.yml"
    config_file.write_text("bogus: true\n", encoding="utf-8")

    result = runner.invoke(
        app, ["instance", "list"], env={"KSPCTL_CONFIG_FILE": str(config_file)}
    )

    assert result.exit_code == 3
    assert "Unknown configuration keys" in _text(result.stdout)


def test_instance_add_and_list(tmp_path: Path, make_game_dir: GameDirFactory) -> None:
    """Added instances are persisted and listed with live details."""
    env = _prepare_environment(tmp_path)
    root = make_game_dir("alpha", version="1.12.5", dlc_version="1.10.0")

    added = runner.invoke(app, ["instance", "add", "alpha", str(root)], env=env)
    listed = runner.invoke(app, ["instance", "list", "--json"], env=env)

    assert added.exit_code == 0, added.stdout
    assert _store(tmp_path).get_instances() == [("alpha", root)]
    assert listed.exit_code == 0, listed.stdout
    (entry,) = _extract_json(listed.stdout)["instances"]
    assert entry["name"] == "alpha"
    assert entry["valid"] is True
    assert entry["version"] == "1.12.5"
    assert entry["dlc"] == "1.10.0"
    assert entry["default"] is False


def test_instance_list_table(tmp_path: Path, make_game_dir: GameDirFactory) -> None:
    """The table view flags invalid entries."""
    env = _prepare_environment(tmp_path)
    _store(tmp_path).set_instances(
        {"alpha": make_game_dir("alpha"), "gone": tmp_path / "gone"}, ""
    )

    result = runner.invoke(app, ["instance", "list"], env=env)

    assert result.exit_code == 0, result.stdout
    assert "alpha" in result.stdout
    assert "invalid" in result.stdout


def test_instance_add_invalid_path(tmp_path: Path) -> None:
    """Registering a non-game directory fails with a validation error."""
    env = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["instance", "add", "alpha", str(tmp_path)], env=env)

    assert result.exit_code == 2
    assert _store(tmp_path).get_instances() == []
    record = _operations(tmp_path)[-1]
    assert record["command"] == "instance add"
    assert record["result"]["status"] == "error"
    assert record["result"]["rc"] == 2


def test_instance_add_duplicate(tmp_path: Path, make_game_dir: GameDirFactory) -> None:
    """Duplicate names are refused."""
    env = _prepare_environment(tmp_path)
    runner.invoke(app, ["instance", "add", "alpha", str(make_game_dir("alpha"))], env=env)

    result = runner.invoke(
        app, ["instance", "add", "alpha", str(make_game_dir("beta"))], env=env
    )

    assert result.exit_code == 2
    assert "already exists" in _text(result.stdout)


def test_instance_remove_is_idempotent(tmp_path: Path, make_game_dir: GameDirFactory) -> None:
    """Removing an absent instance still succeeds."""
    env = _prepare_environment(tmp_path)
    _store(tmp_path).set_instances({"alpha": make_game_dir("alpha")}, "alpha")

    first = runner.invoke(app, ["instance", "remove", "alpha"], env=env)
    second = runner.invoke(app, ["instance", "remove", "alpha"], env=env)

    assert first.exit_code == 0
    assert second.exit_code == 0
    assert "nothing to do" in _text(second.stdout)
    assert _store(tmp_path).get_instances() == []
    assert _store(tmp_path).auto_start_instance == ""


def test_instance_rename(tmp_path: Path, make_game_dir: GameDirFactory) -> None:
    """Renaming rewrites the registry and follows the default."""
    env = _prepare_environment(tmp_path)
    root = make_game_dir("alpha")
    _store(tmp_path).set_instances({"alpha": root}, "alpha")

    result = runner.invoke(app, ["instance", "rename", "alpha", "omega"], env=env)

    assert result.exit_code == 0, result.stdout
    store = _store(tmp_path)
    assert store.get_instances() == [("omega", root)]
    assert store.auto_start_instance == "omega"


def test_instance_rename_unknown(tmp_path: Path) -> None:
    """Renaming an unknown instance is a validation error."""
    env = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["instance", "rename", "ghost", "spirit"], env=env)

    assert result.exit_code == 2


def test_instance_default_and_clear(tmp_path: Path, make_game_dir: GameDirFactory) -> None:
    """The default instance can be set and cleared."""
    env = _prepare_environment(tmp_path)
    _store(tmp_path).set_instances(
        {"alpha": make_game_dir("alpha"), "beta": make_game_dir("beta")}, ""
    )

    set_result = runner.invoke(app, ["instance", "default", "beta"], env=env)
    assert set_result.exit_code == 0, set_result.stdout
    assert _store(tmp_path).auto_start_instance == "beta"

    current = runner.invoke(app, ["instance", "current", "--json"], env=env)
    assert current.exit_code == 0, current.stdout
    assert _extract_json(current.stdout)["name"] == "beta"

    cleared = runner.invoke(app, ["instance", "clear-default"], env=env)
    assert cleared.exit_code == 0
    assert _store(tmp_path).auto_start_instance == ""

    ambiguous = runner.invoke(app, ["instance", "current"], env=env)
    assert ambiguous.exit_code == 4


def test_instance_default_unknown(tmp_path: Path) -> None:
    """Choosing an unregistered default fails."""
    env = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["instance", "default", "ghost"], env=env)

    assert result.exit_code == 2
    assert _store(tmp_path).auto_start_instance is None


def test_instance_current_autodetects(tmp_path: Path, make_game_dir: GameDirFactory) -> None:
    """First run registers the autodetected installation."""
    steam = make_game_dir("steam")
    env = _prepare_environment(tmp_path, game_dirs=[steam])

    result = runner.invoke(app, ["instance", "current", "--json"], env=env)

    assert result.exit_code == 0, result.stdout
    assert _extract_json(result.stdout)["name"] == "auto"
    assert _store(tmp_path).get_instances() == [("auto", steam)]
    record = _operations(tmp_path)[-1]
    assert record["result"]["changed"] == 1


def test_instance_current_portable(
    tmp_path: Path,
    make_game_dir: GameDirFactory,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A game in the working directory is used without registering it."""
    env = _prepare_environment(tmp_path)
    monkeypatch.chdir(make_game_dir("portable"))

    result = runner.invoke(app, ["instance", "current", "--json"], env=env)

    assert result.exit_code == 0, result.stdout
    assert _extract_json(result.stdout)["name"] == "portable"
    assert _store(tmp_path).get_instances() == []


def test_instance_fake_creates_and_registers(tmp_path: Path) -> None:
    """Fake instances are laid out on disk and registered."""
    env = _prepare_environment(tmp_path)
    target = tmp_path / "fake"

    result = runner.invoke(
        app,
        [
            "instance",
            "fake",
            "test",
            str(target),
            "--game-version",
            "1.12.5.3190",
            "--dlc",
            "--dlc-version",
            "1.9.0",
        ],
        env=env,
    )

    assert result.exit_code == 0, result.stdout
    assert (target / "buildID.txt").read_text(encoding="utf-8") == "build id = 3190"
    dlc_readme = target / "GameData" / "SquadExpansion" / "MakingHistory" / "readme.txt"
    assert dlc_readme.read_text(encoding="utf-8") == "Version 1.9.0"
    assert _store(tmp_path).get_instances() == [("test", target)]


def test_instance_fake_over_existing_game(
    tmp_path: Path,
    make_game_dir: GameDirFactory,
) -> None:
    """Creating a fake on top of a game directory is reported."""
    env = _prepare_environment(tmp_path)
    root = make_game_dir("existing")

    result = runner.invoke(
        app,
        ["instance", "fake", "test", str(root), "--game-version", "1.12.5"],
        env=env,
    )

    assert result.exit_code == 2
    assert "BadInstallLocationError" in _text(result.stdout)
    assert _store(tmp_path).get_instances() == []


def test_instance_clone(tmp_path: Path, make_game_dir: GameDirFactory) -> None:
    """Cloning copies the version and expansion of a registered instance."""
    env = _prepare_environment(tmp_path)
    _store(tmp_path).set_instances(
        {"alpha": make_game_dir("alpha", version="1.11.2", dlc_version="1.7.0")}, ""
    )
    target = tmp_path / "clone"

    result = runner.invoke(app, ["instance", "clone", "alpha", "copy", str(target)], env=env)

    assert result.exit_code == 0, result.stdout
    assert (target / "readme.txt").read_text(encoding="utf-8") == "Version 1.11.2"
    assert (target / "GameData" / "SquadExpansion" / "MakingHistory").is_dir()
    assert [name for name, _ in _store(tmp_path).get_instances()] == ["alpha", "copy"]


def test_instance_clone_unknown_source(tmp_path: Path) -> None:
    """Cloning an unknown instance fails."""
    env = _prepare_environment(tmp_path)

    result = runner.invoke(
        app, ["instance", "clone", "ghost", "copy", str(tmp_path / "clone")], env=env
    )

    assert result.exit_code == 2
    assert not (tmp_path / "clone").exists()


def test_cache_show_set_and_clear(tmp_path: Path) -> None:
    """The download cache can be inspected, moved and reset."""
    env = _prepare_environment(tmp_path)
    default_dir = tmp_path / "state" / "downloads"
    new_dir = tmp_path / "cache"
    new_dir.mkdir()

    shown = runner.invoke(app, ["cache", "show", "--json"], env=env)
    assert shown.exit_code == 0, shown.stdout
    assert _extract_json(shown.stdout)["path"] == str(default_dir)

    (default_dir / "mod.zip").write_bytes(b"zip")
    moved = runner.invoke(app, ["cache", "set", str(new_dir)], env=env)
    assert moved.exit_code == 0, moved.stdout
    assert (new_dir / "mod.zip").exists()
    assert _store(tmp_path).download_cache_setting == str(new_dir)

    shown = runner.invoke(app, ["cache", "show", "--json"], env=env)
    payload = _extract_json(shown.stdout)
    assert payload["path"] == str(new_dir)
    assert payload["entries"] == 1
    assert payload["size_bytes"] == 3

    cleared = runner.invoke(app, ["cache", "clear"], env=env)
    assert cleared.exit_code == 0, cleared.stdout
    assert (default_dir / "mod.zip").exists()
    assert _store(tmp_path).download_cache_setting == ""


def test_cache_set_missing_directory(tmp_path: Path) -> None:
    """Relocating to a missing directory exits with an environment error."""
    env = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["cache", "set", str(tmp_path / "nope")], env=env)

    assert result.exit_code == 3
    assert "does not exist" in _text(result.stdout)
    assert _store(tmp_path).download_cache_setting == ""


def test_operations_are_logged(tmp_path: Path, make_game_dir: GameDirFactory) -> None:
    """Every command appends a structured operation record."""
    env = _prepare_environment(tmp_path)

    runner.invoke(app, ["instance", "add", "alpha", str(make_game_dir("alpha"))], env=env)
    runner.invoke(app, ["instance", "list"], env=env)

    commands = [record["command"] for record in _operations(tmp_path)]
    assert commands == ["instance add", "instance list"]


def test_relative_instance_path_survives_directory_change(
    tmp_path: Path,
    make_game_dir: GameDirFactory,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Relative paths are stored absolute so other working directories still resolve them."""
    env = _prepare_environment(tmp_path)
    root = make_game_dir("main")

    added = runner.invoke(app, ["instance", "add", "main", "../games/main"], env=env)
    assert added.exit_code == 0, added.stdout

    monkeypatch.chdir(tmp_path)
    listed = runner.invoke(app, ["instance", "list", "--json"], env=env)

    (entry,) = _extract_json(listed.stdout)["instances"]
    assert entry["path"] == str(root)
    assert entry["valid"] is True


def test_relative_cache_path_is_stored_absolute(tmp_path: Path) -> None:
    """The cache location is stored as an absolute path."""
    env = _prepare_environment(tmp_path)
    (tmp_path / "workdir" / "dl").mkdir()

    result = runner.invoke(app, ["cache", "set", "dl"], env=env)

    assert result.exit_code == 0, result.stdout
    assert _store(tmp_path).download_cache_setting == str(tmp_path / "workdir" / "dl")


def test_instance_fake_taken_name_suggests_free_one(
    tmp_path: Path,
    make_game_dir: GameDirFactory,
) -> None:
    """A taken name is refused with the next free name as a suggestion."""
    env = _prepare_environment(tmp_path)
    _store(tmp_path).set_instances({"alpha": make_game_dir("alpha")}, "")
    target = tmp_path / "fake"

    result = runner.invoke(
        app,
        ["instance", "fake", "alpha", str(target), "--game-version", "1.12.5"],
        env=env,
    )

    assert result.exit_code == 2
    assert "try 'alpha (0)'" in _text(result.stdout)
    assert not target.exists()

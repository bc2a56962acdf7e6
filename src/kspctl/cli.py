"""Typer-powered command line interface for ``kspctl``.

Commands share a lazily built :class:`RuntimeContext` holding the loaded
configuration, the open :class:`~kspctl.session.Session` and the structured
operation logger. Every command runs inside ``logger.operation`` so its outcome
lands in ``operations.jsonl``.
"""
from __future__ import annotations

import json
import textwrap
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .errors import KspctlError
from .exit_codes import ExitCode
from .game import GameInstallation
from .logging import OperationScope, StructuredLogger, configure_console_logging
from .session import Session
from .state import StateRegistryError
from .user import ConsoleUser

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to kspctl's YAML config file.",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit output as JSON instead of a table.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Manage local game installations and the shared download cache.

        Instances are stored in a YAML registry; one of them can be marked as
        the default (auto-start) instance used when no other choice is made.
        """
    ).strip(),
)
instances_app = typer.Typer(help="Register, inspect and select game instances.")
cache_app = typer.Typer(help="Inspect and relocate the download cache.")
config_app = typer.Typer(help="Inspect global configuration.")
app.add_typer(instances_app, name="instance")
app.add_typer(cache_app, name="cache")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    session: Session
    logger: StructuredLogger


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
        logger = StructuredLogger(config.logs_dir)
        session = Session.open(config, user=ConsoleUser(console))
    except (ConfigError, StateRegistryError, OSError) as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=ExitCode.ENVIRONMENT) from exc

    ctx.call_on_close(session.close)
    runtime = RuntimeContext(config=config, session=session, logger=logger)
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    root = ctx.find_root()
    runtime = root.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(root, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the kspctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Print debug log records on stderr.",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    configure_console_logging(debug)
    if version:
        console.print(f"kspctl {__version__}")
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=int(rc))
    raise typer.Exit(code=int(rc))


def _kspctl_error(op: OperationScope, exc: KspctlError) -> NoReturn:
    _command_error(op, str(exc), rc=exc.kind.exit_code)


def _instance_row(runtime: RuntimeContext, installation: GameInstallation) -> dict[str, object]:
    entry = installation.to_dict()
    entry["default"] = installation.name == _auto_start_name(runtime)
    return entry


def _auto_start_name(runtime: RuntimeContext) -> str | None:
    try:
        return runtime.session.registry.auto_start_name
    except KspctlError:
        return None


def _require_free_name(op: OperationScope, runtime: RuntimeContext, name: str) -> None:
    registry = runtime.session.registry
    if registry.has(name):
        suggestion = registry.next_valid_name(name)
        _command_error(
            op,
            f"Instance '{name}' already exists; try '{suggestion}'.",
        )


# ----------------------------------------------------------------------
# config
# ----------------------------------------------------------------------
@config_app.command("show")
def config_show(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.")
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")
        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)
        console.print(table)
        op.success("Rendered configuration table.")


# ----------------------------------------------------------------------
# instance
# ----------------------------------------------------------------------
@instances_app.command("list")
def instance_list(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """List registered instances with live validity checks."""
    runtime = _get_runtime(ctx)
    entries = [
        _instance_row(runtime, installation)
        for installation in runtime.session.registry.instances.values()
    ]

    with runtime.logger.operation(
        "instance list",
        args={"json": json_output},
        target={"kind": "instance", "scope": "registry"},
    ) as op:
        if json_output:
            console.print_json(data={"instances": entries})
            op.success("Reported instance list as JSON.")
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Name", style="bold")
        table.add_column("Version")
        table.add_column("DLC")
        table.add_column("Default")
        table.add_column("Path")
        table.add_column("Status")

        if not entries:
            table.add_row("(none)", "", "", "", "", "")
        for entry in entries:
            table.add_row(
                str(entry["name"]),
                str(entry["version"] or ""),
                str(entry["dlc"] or ""),
                "yes" if entry["default"] else "",
                str(entry["path"]),
                "valid" if entry["valid"] else "[red]invalid[/red]",
            )
        console.print(table)
        op.success("Reported instance list.")


@instances_app.command("add")
def instance_add(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name for the new instance."),
    path: Path = typer.Argument(..., help="Game directory to register."),
) -> None:
    """Register an existing game directory."""
    runtime = _get_runtime(ctx)
    session = runtime.session

    with runtime.logger.operation(
        "instance add",
        args={"name": name, "path": path},
        target={"kind": "instance", "name": name},
    ) as op:
        try:
            installation = session.registry.add(session.factory.construct(path, name))
        except KspctlError as exc:
            _kspctl_error(op, exc)
        console.print(f"Added instance [bold]{installation.name}[/bold] at {installation.root}")
        op.success("Registered instance.", changed=1)


@instances_app.command("remove")
def instance_remove(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Instance to forget (files are kept)."),
) -> None:
    """Remove an instance from the registry."""
    runtime = _get_runtime(ctx)
    registry = runtime.session.registry

    with runtime.logger.operation(
        "instance remove",
        args={"name": name},
        target={"kind": "instance", "name": name},
    ) as op:
        existed = registry.has(name)
        registry.remove(name)
        if existed:
            console.print(f"Removed instance [bold]{name}[/bold]")
            op.success("Removed instance.", changed=1)
        else:
            console.print(f"Instance '{name}' was not registered; nothing to do.")
            op.success("Instance already absent.")


@instances_app.command("rename")
def instance_rename(
    ctx: typer.Context,
    old: str = typer.Argument(..., help="Current instance name."),
    new: str = typer.Argument(..., help="New instance name."),
) -> None:
    """Rename a registered instance."""
    runtime = _get_runtime(ctx)

    with runtime.logger.operation(
        "instance rename",
        args={"old": old, "new": new},
        target={"kind": "instance", "name": old},
    ) as op:
        try:
            runtime.session.registry.rename(old, new)
        except KspctlError as exc:
            _kspctl_error(op, exc)
        console.print(f"Renamed instance [bold]{old}[/bold] to [bold]{new}[/bold]")
        op.success("Renamed instance.", changed=1)


@instances_app.command("default")
def instance_default(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Instance to start by default."),
) -> None:
    """Mark an instance as the default (auto-start) instance."""
    runtime = _get_runtime(ctx)

    with runtime.logger.operation(
        "instance default",
        args={"name": name},
        target={"kind": "instance", "name": name},
    ) as op:
        try:
            runtime.session.registry.set_auto_start(name)
        except KspctlError as exc:
            _kspctl_error(op, exc)
        console.print(f"Default instance set to [bold]{name}[/bold]")
        op.success("Set auto-start instance.", changed=1)


@instances_app.command("clear-default")
def instance_clear_default(ctx: typer.Context) -> None:
    """Forget the default (auto-start) instance."""
    runtime = _get_runtime(ctx)

    with runtime.logger.operation(
        "instance clear-default",
        target={"kind": "instance", "scope": "auto-start"},
    ) as op:
        runtime.session.registry.clear_auto_start()
        console.print("Default instance cleared.")
        op.success("Cleared auto-start instance.", changed=1)


@instances_app.command("current")
def instance_current(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Show the instance kspctl would use, autodetecting on first run."""
    runtime = _get_runtime(ctx)
    session = runtime.session

    with runtime.logger.operation(
        "instance current",
        args={"json": json_output},
        target={"kind": "instance", "scope": "preferred"},
    ) as op:
        count_before = len(session.registry)
        try:
            installation = session.get_preferred_instance()
        except KspctlError as exc:
            _kspctl_error(op, exc)
        if installation is None:
            _command_error(
                op,
                "No preferred instance. Register one with `kspctl instance add` "
                "or choose a default with `kspctl instance default`.",
                rc=ExitCode.STATE,
            )

        changed = len(session.registry) - count_before
        entry = _instance_row(runtime, installation)
        if json_output:
            console.print_json(data=entry)
        else:
            console.print(
                f"Current instance: [bold]{installation.name}[/bold] ({installation.root})"
            )
        op.success("Resolved preferred instance.", changed=changed, context=entry)


@instances_app.command("fake")
def instance_fake(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name for the fake instance."),
    path: Path = typer.Argument(..., help="Directory to create."),
    game_version: str = typer.Option(
        ...,
        "--game-version",
        help="Game version to simulate, e.g. 1.12.5.",
    ),
    dlc: bool = typer.Option(
        False,
        "--dlc",
        help="Also simulate the Making History expansion (game 1.4.0+).",
    ),
    dlc_version: str = typer.Option(
        "1.0.0",
        "--dlc-version",
        help="Expansion version written with --dlc.",
    ),
) -> None:
    """Create and register a minimal fake game directory."""
    runtime = _get_runtime(ctx)

    with runtime.logger.operation(
        "instance fake",
        args={"name": name, "path": path, "version": game_version, "dlc": dlc},
        target={"kind": "instance", "name": name},
    ) as op:
        _require_free_name(op, runtime, name)
        created = runtime.session.factory.create_fake(
            name,
            path,
            game_version,
            simulate_dlc=dlc,
            dlc_version=dlc_version if dlc else None,
        )
        if not created:
            _command_error(op, f"Could not create fake instance '{name}'.")
        console.print(f"Created fake instance [bold]{name}[/bold] at {path}")
        op.success("Created fake instance.", changed=1)


@instances_app.command("clone")
def instance_clone(
    ctx: typer.Context,
    source: str = typer.Argument(..., help="Registered instance to copy."),
    name: str = typer.Argument(..., help="Name for the clone."),
    path: Path = typer.Argument(..., help="Directory to create."),
) -> None:
    """Create a fake instance with the same version and expansion as another."""
    runtime = _get_runtime(ctx)
    session = runtime.session

    with runtime.logger.operation(
        "instance clone",
        args={"source": source, "name": name, "path": path},
        target={"kind": "instance", "name": name},
    ) as op:
        _require_free_name(op, runtime, name)
        try:
            existing = session.registry.get(source)
            created = session.factory.clone(existing, name, path)
        except KspctlError as exc:
            _kspctl_error(op, exc)
        if not created:
            _command_error(op, f"Could not clone '{source}' to '{name}'.")
        console.print(f"Cloned [bold]{source}[/bold] to [bold]{name}[/bold] at {path}")
        op.success("Cloned instance.", changed=1)


# ----------------------------------------------------------------------
# cache
# ----------------------------------------------------------------------
@cache_app.command("show")
def cache_show(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Show the active download cache."""
    runtime = _get_runtime(ctx)
    cache = runtime.session.cache.cache

    with runtime.logger.operation(
        "cache show",
        args={"json": json_output},
        target={"kind": "cache"},
    ) as op:
        if cache is None:
            _command_error(op, "No download cache is active.", rc=ExitCode.ENVIRONMENT)
        data = {
            "path": str(cache.path),
            "entries": len(cache.entries()),
            "size_bytes": cache.size_bytes(),
        }
        if json_output:
            console.print_json(data=data)
        else:
            table = Table(show_header=False)
            for key, value in data.items():
                table.add_row(key.replace("_", " ").title(), str(value))
            console.print(table)
        op.success("Reported download cache.", context=data)


def _relocate_cache(ctx: typer.Context, path: str, command: str) -> None:
    runtime = _get_runtime(ctx)

    with runtime.logger.operation(
        command,
        args={"path": path},
        target={"kind": "cache"},
    ) as op:
        result = runtime.session.set_cache_directory(path)
        if not result.ok:
            failure = result.failure.value if result.failure else "unknown"
            _command_error(
                op,
                f"Download cache unchanged ({failure}): {result.reason}",
                rc=ExitCode.ENVIRONMENT,
            )
        console.print(f"Download cache set to {result.path}")
        op.success("Relocated download cache.", changed=1, context={"path": result.path})


@cache_app.command("set")
def cache_set(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="Existing directory for the download cache."),
) -> None:
    """Move the download cache to another directory."""
    _relocate_cache(ctx, str(path), "cache set")


@cache_app.command("clear")
def cache_clear(ctx: typer.Context) -> None:
    """Move the download cache back to the configured default directory."""
    _relocate_cache(ctx, "", "cache clear")


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]

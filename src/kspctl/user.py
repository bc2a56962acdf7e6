"""User interaction sinks."""
from __future__ import annotations

from typing import Protocol

from rich.console import Console
from rich.markup import escape


class UserInterface(Protocol):
    """Fire-and-forget reporting channel towards the person running kspctl."""

    def raise_error(self, message: str) -> None:
        """Report *message* as an error."""


class ConsoleUser:
    """Report messages on a rich console."""

    def __init__(self, console: Console | None = None) -> None:
        """Use *console* or a fresh stderr console."""
        self.console = console or Console(stderr=True)

    def raise_error(self, message: str) -> None:
        """Print *message* in red."""
        self.console.print(f"[red]{escape(message)}[/red]")


__all__ = ["ConsoleUser", "UserInterface"]

"""Instance name allocation."""
from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from .errors import AllocationExhaustedError

MAX_SUFFIX_ATTEMPTS = 1000


def is_name_valid(name: str | None, is_taken: Callable[[str], bool]) -> bool:
    """Return ``True`` when *name* is non-blank and not already registered."""
    return bool(name and name.strip()) and not is_taken(name)  # type: ignore[arg-type]


def next_valid_name(
    base: str,
    is_taken: Callable[[str], bool],
    *,
    clock: Callable[[], datetime] = datetime.now,
) -> str:
    """Return an unused instance name derived from *base*.

    Tries *base* itself, then ``"<base> (0)"`` through ``"<base> (999)"``, then
    a timestamp suffix. Raises :class:`AllocationExhaustedError` when even the
    timestamped name is taken.
    """
    if is_name_valid(base, is_taken):
        return base

    for index in range(MAX_SUFFIX_ATTEMPTS):
        candidate = f"{base} ({index})"
        if is_name_valid(candidate, is_taken):
            return candidate

    candidate = f"{base} ({clock().strftime('%Y-%m-%d %H:%M:%S')})"
    if is_name_valid(candidate, is_taken):
        return candidate

    raise AllocationExhaustedError("Could not return a valid name for the new instance.")


__all__ = ["MAX_SUFFIX_ATTEMPTS", "is_name_valid", "next_valid_name"]

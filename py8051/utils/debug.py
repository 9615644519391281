"""Category-filtered debug output for the 8051 emulator.

``PY8051_DEBUG`` selects what is printed, e.g. ``PY8051_DEBUG=cpu,loader``.
The categories used by the package are listed in :data:`CATEGORIES`;
``all`` turns every one of them on. The variable is read once and cached;
call :func:`reload_categories` after changing it at runtime.
"""

from __future__ import annotations

import os
from typing import FrozenSet, Optional

ENV_VAR = "PY8051_DEBUG"
ALL = "all"
PREFIX = "[8051]"

# cpu: one line per executed instruction; bus: memory map traffic;
# loader: Intel HEX parsing; trace: TraceRecorder.dump output.
CATEGORIES: FrozenSet[str] = frozenset({"cpu", "bus", "loader", "trace"})

_enabled: Optional[FrozenSet[str]] = None


def parse_categories(value: str) -> FrozenSet[str]:
    """Split a ``PY8051_DEBUG`` value into lower-case category names."""

    return frozenset(part.strip().lower() for part in value.split(",") if part.strip())


def _categories() -> FrozenSet[str]:
    global _enabled
    if _enabled is None:
        _enabled = parse_categories(os.environ.get(ENV_VAR, ""))
    return _enabled


def reload_categories() -> None:
    """Forget the cached category set so the environment is read again."""

    global _enabled
    _enabled = None


def debug_enabled(category: str | None = None) -> bool:
    enabled = _categories()
    if not enabled:
        return False
    if category is None or ALL in enabled:
        return True
    return category.lower() in enabled


def debug_log(category: str, message: str, *args) -> None:
    """Print ``message % args`` under ``category`` when it is enabled."""

    if not debug_enabled(category):
        return
    if args:
        try:
            message = message % args
        except (TypeError, ValueError):
            message = f"{message} {args!r}"
    print(f"{PREFIX}[{category}] {message}")

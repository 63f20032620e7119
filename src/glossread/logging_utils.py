from __future__ import annotations

from rich.console import Console
from rich.markup import escape

_DEBUG_LOG = False
_STDERR: Console | None = None


def set_debug_logging(enabled: bool) -> None:
    global _DEBUG_LOG
    _DEBUG_LOG = enabled


def debug_enabled() -> bool:
    return _DEBUG_LOG


def debug_log(message: str) -> None:
    if _DEBUG_LOG:
        print(f"[glossread debug] {message}")


def _stderr_console() -> Console:
    global _STDERR
    if _STDERR is None:
        _STDERR = Console(stderr=True, highlight=False)
    return _STDERR


def warn(message: str) -> None:
    """Print a non-fatal warning to stderr."""
    _stderr_console().print(f"[yellow]warning:[/yellow] {escape(message)}", markup=True)

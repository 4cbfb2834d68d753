"""Console output for gantry runs.

One timestamped line per event, optionally tagged with the pipeline name
so interleaved CI logs stay readable. Colors are dropped when NO_COLOR is
set (https://no-color.org).
"""

import os
from datetime import datetime

# Toggled by `gantry run --verbose`
_verbose_enabled: bool = False


def set_verbose(enabled: bool) -> None:
    global _verbose_enabled
    _verbose_enabled = enabled


def truncate_text(text: str, max_length: int) -> str:
    """Shorten text to max_length characters plus "..." unless verbose."""
    if _verbose_enabled or len(text) <= max_length:
        return text
    return text[:max_length] + "..."


class Colors:
    """ANSI escapes used by the console event sink."""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    CYAN = "\033[96m"
    GRAY = "\033[90m"
    MUTED = GRAY


def _paint(text: str, *codes: str) -> str:
    if os.environ.get("NO_COLOR") or not any(codes):
        return text
    return "".join(codes) + text + Colors.RESET


def log(
    icon: str,
    message: str,
    color: str = "",
    dim: bool = False,
    scope: str | None = None,
) -> None:
    """Print "HH:MM:SS [scope] icon message" to stdout."""
    timestamp = _paint(datetime.now().strftime("%H:%M:%S"), Colors.GRAY)
    tag = _paint(f"[{scope}]", Colors.CYAN) + " " if scope else ""
    body = _paint(f"{icon} {message}", Colors.MUTED if dim else "", color)
    print(f"{timestamp} {tag}{body}", flush=True)


def log_verbose(
    icon: str, message: str, color: str = Colors.MUTED, scope: str | None = None
) -> None:
    if _verbose_enabled:
        log(icon, message, color, dim=True, scope=scope)

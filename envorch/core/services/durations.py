"""
Duration parsing (pure).

Accepts ``90s``, ``30m``, ``12h``, ``1d``, ``2w``, combinations such as
``1d12h``, or a bare number of seconds.
"""

from __future__ import annotations

import re

_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400, "w": 604800}
_PART_RE = re.compile(r"(\d+)\s*([smhdw])")
_FULL_RE = re.compile(r"^(\s*\d+\s*[smhdw])+\s*$")


def parse_duration(text: str | int | float) -> int:
    """Convert a duration into whole seconds.

    Raises:
        ValueError: If the text is not a positive duration.
    """
    if isinstance(text, bool):
        raise ValueError(f"invalid duration: {text!r}")
    if isinstance(text, (int, float)):
        seconds = int(text)
    else:
        raw = text.strip().lower()
        if raw.isdigit():
            seconds = int(raw)
        elif _FULL_RE.match(raw):
            seconds = sum(int(n) * _UNITS[u] for n, u in _PART_RE.findall(raw))
        else:
            raise ValueError(f"invalid duration: {text!r} (expected e.g. 90s, 30m, 12h, 1d)")
    if seconds <= 0:
        raise ValueError(f"duration must be positive: {text!r}")
    return seconds


def format_duration(seconds: int | float) -> str:
    """Render seconds compactly: 93784 → ``1d2h3m4s``."""
    remaining = int(seconds)
    if remaining <= 0:
        return "0s"
    parts = []
    for unit in ("d", "h", "m", "s"):
        size = _UNITS[unit]
        count, remaining = divmod(remaining, size)
        if count:
            parts.append(f"{count}{unit}")
    return "".join(parts)

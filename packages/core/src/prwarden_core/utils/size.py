"""Human-readable byte sizes for config values ("200KB", "1.5MB", "4096")."""

from __future__ import annotations

import re

_UNITS = {"": 1, "B": 1, "KB": 1024, "MB": 1024**2, "GB": 1024**3}
_SIZE_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*([A-Z]*)$")


def parse_size(value: int | float | str) -> int:
    """Return a size in bytes. Plain numbers are taken as bytes."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid size: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    text = str(value).strip().upper()
    if not text:
        raise ValueError("Size string cannot be empty")
    match = _SIZE_RE.match(text)
    if not match:
        raise ValueError(f"Invalid size format: {value!r}. Expected e.g. '200KB', '1.5MB' or a plain number.")
    number, unit = match.groups()
    if unit not in _UNITS:
        raise ValueError(f"Unknown size unit {unit!r} in {value!r}. Valid units: B, KB, MB, GB")
    return int(float(number) * _UNITS[unit])


def format_size(num_bytes: int) -> str:
    for unit, factor in (("GB", 1024**3), ("MB", 1024**2), ("KB", 1024)):
        if num_bytes >= factor:
            return f"{num_bytes / factor:.2f}".rstrip("0").rstrip(".") + unit
    return f"{num_bytes}B"

"""Human-readable storage quota parsing and formatting (powers of 1024)."""

import re

_UNITS = ["B", "KB", "MB", "GB", "TB"]
_QUOTA_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*(KB|MB|GB|TB)$", re.IGNORECASE)
_NUMERIC_RE = re.compile(r"^\d+(?:\.\d+)?$")


def parse_quota_to_bytes(quota: str | int | float | None) -> int:
    """Convert ``"5GB"``, ``"512 mb"``, ``"500"`` or ``500`` to bytes.

    Anything unparseable (including negative numbers) yields ``0``.
    """
    if quota is None or isinstance(quota, bool):
        return 0
    if isinstance(quota, (int, float)):
        return int(quota) if quota >= 0 else 0

    value = str(quota).strip()
    if _NUMERIC_RE.match(value):
        return int(float(value))

    match = _QUOTA_RE.match(value)
    if not match:
        return 0
    number = float(match.group(1))
    power = _UNITS.index(match.group(2).upper())
    return int(number * 1024**power)


def format_bytes(size: int) -> str:
    """Render a byte count as e.g. ``"1.5 KB"`` or ``"2 GB"``."""
    size = max(int(size), 0)
    power = 0
    while power < len(_UNITS) - 1 and size >= 1024 ** (power + 1):
        power += 1
    value = round(size / 1024**power, 2)
    if value == int(value):
        value = int(value)
    return f"{value} {_UNITS[power]}"

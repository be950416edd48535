"""Human-readable formatting helpers."""

from __future__ import annotations

_UNITS = ('B', 'KB', 'MB', 'GB', 'TB')


def format_bytes(size: int | float) -> str:
    """Format a byte count with binary units, e.g. ``1.50 MB``."""
    value = float(max(0, size))
    for unit in _UNITS:
        if value < 1024 or unit == _UNITS[-1]:
            if unit == 'B':
                return f'{int(value)} B'
            return f'{value:.2f} {unit}'
        value /= 1024
    return f'{value:.2f} {_UNITS[-1]}'


def slugify(name: str) -> str:
    """Lower-case a region name and replace everything but [a-z0-9] with '_'."""
    return ''.join(ch if ('a' <= ch <= 'z' or '0' <= ch <= '9') else '_' for ch in name.lower())

"""Environment variable parsing utilities."""

from __future__ import annotations


def parse_bool_env(value: str | None) -> bool | None:
    """Parse a boolean from an environment variable string.

    Returns True for "1", "true", "yes", "on" (case-insensitive).
    Returns None if value is None.
    """
    if value is None:
        return None
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_int_env(value: str | None) -> int | None:
    """Parse an integer, returning None when missing or malformed."""
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_float_env(value: str | None) -> float | None:
    """Parse a float, returning None when missing or malformed."""
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_int_list_env(value: str | None) -> list[int] | None:
    """Parse a comma-separated list of integers.

    Example: "10,100,1024" -> [10, 100, 1024]
    Blank tokens are skipped. Returns None if value is None, empty, or any
    token is not an integer.
    """
    if not value:
        return None
    items: list[int] = []
    for token in value.split(","):
        token = token.strip()
        if not token:
            continue
        try:
            items.append(int(token))
        except ValueError:
            return None
    return items or None

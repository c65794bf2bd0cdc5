"""Helpers for reading typed configuration from environment variables."""

from __future__ import annotations

import os


def parse_positive_int(env_var: str, default: int) -> int:
    """Read a positive integer env var, falling back to a default.

    Raises
    ------
    ValueError
        If the variable is set but is not an integer, or is less than one.

    """
    raw = os.environ.get(env_var, "")
    if not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        msg = f"{env_var} must be an integer, got: {raw!r}"
        raise ValueError(msg) from exc
    if value < 1:
        msg = f"{env_var} must be positive, got: {value}"
        raise ValueError(msg)
    return value


def parse_positive_float(env_var: str, default: float) -> float:
    """Read a positive float env var, falling back to a default."""
    raw = os.environ.get(env_var, "")
    if not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        msg = f"{env_var} must be a number, got: {raw!r}"
        raise ValueError(msg) from exc
    if value <= 0:
        msg = f"{env_var} must be positive, got: {value}"
        raise ValueError(msg)
    return value


def read_str(env_var: str, default: str | None = None) -> str | None:
    """Return a stripped string env var, or *default* when unset or blank."""
    raw = os.environ.get(env_var, "")
    return raw.strip() or default

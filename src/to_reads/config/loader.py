from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Callable, Dict, TypeVar

T = TypeVar("T", int, float)


DEFAULT_CONFIG_PATH = Path("config.toml")


def load_raw_config(path: str | Path | None = None) -> Dict[str, Any]:
    """
    Load the reader config (config.toml by default, or ``TO_READS_CONFIG``).

    Returns an empty dict when the file is missing so callers can fall back to
    environment variables.
    """
    if path is None:
        path = os.getenv("TO_READS_CONFIG") or DEFAULT_CONFIG_PATH
    target = Path(path)
    if not target.is_file():
        return {}

    with target.open("rb") as handle:
        return tomllib.load(handle)


def numeric(name: str, raw: Any, cast: Callable[[Any], T]) -> T:
    """Convert a setting with ``cast``, naming the setting when the value is bad."""
    try:
        return cast(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


__all__ = ["load_raw_config", "numeric", "DEFAULT_CONFIG_PATH"]

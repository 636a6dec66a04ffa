"""Finding the configuration file when none is named explicitly."""

from __future__ import annotations

import os
from collections.abc import Iterable

from supercache.config import DEFAULT_CONFIG_PATH, DEFAULT_CONFIG_PATH_ALT

DEFAULT_CONFIG_PATH_CANDIDATES: tuple[str, ...] = (DEFAULT_CONFIG_PATH, DEFAULT_CONFIG_PATH_ALT)


def first_existing_default_config_path(candidates: Iterable[str] | None = None) -> str:
    """Return the first candidate that is an existing non-directory, or "" if none is."""
    if candidates is None:
        candidates = DEFAULT_CONFIG_PATH_CANDIDATES
    for path in candidates:
        try:
            os.stat(path)
        except OSError:
            continue
        if not os.path.isdir(path):
            return path
    return ""


def resolve_config_path_for_load(explicit: str = "", candidates: Iterable[str] | None = None) -> str:
    """Pick the config path: explicit if given, else the first existing default, else the primary default."""
    if explicit.strip():
        return explicit
    return first_existing_default_config_path(candidates) or DEFAULT_CONFIG_PATH
"""Typed readers for environment settings plus the optional central env file."""
from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Iterable, List, Optional

logger = logging.getLogger("pediahelp.env")

ENV_FILE_CANDIDATES = (
    "/etc/pediahelp/pediahelp.env",
    os.path.join("ops", "secrets", "pediahelp.env"),
)

_BOOLS = {
    "1": True, "true": True, "yes": True, "on": True,
    "0": False, "false": False, "no": False, "off": False,
}


def _raw(name: str) -> Optional[str]:
    # blank counts as unset so `FOO=` in an env file falls back to the default
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def env_bool(name: str, *, default: bool = False) -> bool:
    value = _raw(name)
    if value is None:
        return default
    try:
        return _BOOLS[value.lower()]
    except KeyError:
        raise ValueError(f"{name} must be a boolean, got {value!r}") from None


def env_int(name: str, *, default: int) -> int:
    value = _raw(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None


def env_float(name: str, *, default: float) -> float:
    value = _raw(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}") from None


def env_list(name: str, *, default: Iterable[str] = (), separator: str = ",") -> List[str]:
    """Comma separated values with blanks dropped; unset gives ``default``."""
    value = os.getenv(name)
    if value is None:
        return list(default)
    return [part.strip() for part in value.split(separator) if part.strip()]


def load_env_file(path: str) -> int:
    """Export ``KEY=value`` lines from ``path`` without touching variables
    that are already set. Returns how many were applied."""
    applied = 0
    with open(path, "r", encoding="utf-8") as fh:
        for line in fh:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = (part.strip() for part in line.split("=", 1))
            if key and key not in os.environ:
                os.environ[key] = value.strip("'\"")
                applied += 1
    return applied


@lru_cache(maxsize=1)
def ensure_loaded() -> Optional[str]:
    """Load the first env file found (``PEDIAHELP_ENV_FILE`` wins) once per process."""
    for path in (os.getenv("PEDIAHELP_ENV_FILE", ""), *ENV_FILE_CANDIDATES):
        if not path or not os.path.isfile(path):
            continue
        try:
            count = load_env_file(path)
        except OSError as exc:
            logger.warning("Could not read env file %s: %s", path, exc)
            return None
        logger.info("Loaded %d settings from %s", count, path)
        return path
    return None


__all__ = ["env_bool", "env_int", "env_float", "env_list", "load_env_file", "ensure_loaded"]

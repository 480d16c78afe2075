"""Dotenv layering for WatcherConfig: a .env file only fills in variables the process leaves unset."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence

from dotenv import dotenv_values
from loguru import logger as log

from hlwatch.core.errors import ConfigError


def default_env_files() -> Sequence[Path]:
    return (Path.cwd() / ".env", Path.home() / ".hlwatch" / ".env")


def find_env_file(explicit: str | Path | None = None) -> Optional[Path]:
    """Return the .env file to read: ``explicit`` if given (it must exist), else the first default that exists."""
    if explicit is not None:
        path = Path(explicit).expanduser()
        if not path.is_file():
            raise ConfigError(f"env file not found: {path}")
        return path
    for candidate in default_env_files():
        if candidate.is_file():
            return candidate
    return None


def layered_environ(environ: Mapping[str, str], env_file: Optional[Path]) -> Dict[str, str]:
    merged: Dict[str, str] = {}
    if env_file is not None:
        values = dotenv_values(env_file)
        merged.update({k: v for k, v in values.items() if v is not None})
        log.debug(f"Read {len(merged)} variables from {env_file}")
    merged.update(environ)
    return merged

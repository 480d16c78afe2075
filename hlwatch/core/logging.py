from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Dict, List

from loguru import logger

from hlwatch.core.config import LoggingConfig

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[address]}</cyan> | <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level} | {extra[address]} | {name}:{line} | {message}"


def short_address(address: str) -> str:
    if len(address) <= 12:
        return address or "-"
    return f"{address[:6]}..{address[-4:]}"


def setup_logging(cfg: LoggingConfig, *, address: str = "") -> None:
    """Replace loguru's handlers with the watcher's console and file sinks.

    Every record carries the watched address (shortened) so logs from several
    watcher processes can share one file or terminal.
    """
    handlers: List[Dict[str, Any]] = []
    if cfg.console:
        handlers.append(
            {"sink": sys.stderr, "level": cfg.level, "format": CONSOLE_FORMAT, "backtrace": False, "diagnose": False}
        )
    if cfg.dir:
        log_dir = Path(cfg.dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(
            {
                "sink": log_dir / cfg.file_name,
                "level": cfg.level,
                "format": FILE_FORMAT,
                "rotation": cfg.rotation,
                "retention": cfg.retention,
                "enqueue": True,
                "encoding": "utf-8",
                "backtrace": False,
                "diagnose": False,
            }
        )
    logger.configure(handlers=handlers, extra={"address": short_address(address)})

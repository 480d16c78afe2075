from __future__ import annotations

import argparse
import asyncio
import sys
from typing import List, Optional

from loguru import logger as log

from hlwatch.core.config import LoggingConfig, WatcherConfig
from hlwatch.core.errors import ConfigError
from hlwatch.core.logging import setup_logging
from hlwatch.watcher.runtime import Watcher


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Hyperliquid address watcher with Telegram notifications")
    parser.add_argument("--config", type=str, default=None, help="Optional YAML config; env vars override it")
    parser.add_argument("--env-file", type=str, default=None, help="Read this .env instead of ./.env or ~/.hlwatch/.env")
    parser.add_argument("--dry-run", action="store_true", help="Log notifications instead of sending to Telegram")
    parser.add_argument("--self-test", action="store_true", help="Send a test notification, check the API, then exit")
    parser.add_argument("--log-level", type=str, default=None, help="Overrides logging.level / HLWATCH_LOG_LEVEL")
    parser.add_argument("--log-dir", type=str, default=None, help="Overrides logging.dir / HLWATCH_LOG_DIR")
    return parser


def load_config(
    config_path: Optional[str] = None,
    *,
    env_file: Optional[str] = None,
    log_level: Optional[str] = None,
    log_dir: Optional[str] = None,
) -> WatcherConfig:
    """Load the config and apply command-line overrides on top of file and env values."""
    cfg = WatcherConfig.load(config_path, env_file=env_file)
    overrides = {}
    if log_level:
        overrides["level"] = log_level
    if log_dir:
        overrides["dir"] = log_dir
    if overrides:
        try:
            cfg.logging = LoggingConfig.model_validate({**cfg.logging.model_dump(), **overrides})
        except ValueError as e:
            raise ConfigError(f"invalid logging option: {e}") from e
    return cfg


def run_watch(
    config_path: Optional[str] = None,
    *,
    env_file: Optional[str] = None,
    dry_run: bool = False,
    self_test: bool = False,
    log_level: Optional[str] = None,
    log_dir: Optional[str] = None,
) -> int:
    """Entry point wrapper. Returns the process exit code."""
    try:
        cfg = load_config(config_path, env_file=env_file, log_level=log_level, log_dir=log_dir)
        setup_logging(cfg.logging, address=cfg.watch.address)
        cfg.validate_runtime(dry_run=dry_run)
        watcher = Watcher(cfg, dry_run=dry_run)
    except ConfigError as e:
        log.error(f"Configuration error: {e}")
        return 1

    try:
        if self_test:
            return 0 if asyncio.run(watcher.self_test()) else 1
        return asyncio.run(watcher.run())
    except KeyboardInterrupt:
        return 0


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    sys.exit(
        run_watch(
            args.config,
            env_file=args.env_file,
            dry_run=args.dry_run,
            self_test=args.self_test,
            log_level=args.log_level,
            log_dir=args.log_dir,
        )
    )


if __name__ == "__main__":
    main()

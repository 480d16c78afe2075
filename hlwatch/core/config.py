from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, PositiveFloat, PositiveInt, ValidationError, field_validator

from hlwatch.core.env import find_env_file, layered_environ
from hlwatch.core.errors import ConfigError

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


class HyperliquidConfig(BaseModel):
    api_url: str = "https://api.hyperliquid.xyz"
    ws_url: str = "wss://api.hyperliquid.xyz/ws"
    explorer_url: str = "https://hypurrscan.io"
    request_timeout_sec: PositiveFloat = 10.0


class TelegramConfig(BaseModel):
    bot_token: str = ""
    chat_id: str = ""
    api_base: str = "https://api.telegram.org"
    timeout_sec: PositiveFloat = 10.0

    @property
    def is_configured(self) -> bool:
        return bool(self.bot_token and self.chat_id)


class WatchConfig(BaseModel):
    address: str = ""
    poll_interval_sec: PositiveFloat = 60.0
    position_interval_sec: PositiveFloat = 300.0
    poll_limit: PositiveInt = 10  # newest fills examined per poll cycle

    @field_validator("address")
    @classmethod
    def _check_address(cls, v: str) -> str:
        v = v.strip()
        if v and not _ADDRESS_RE.match(v):
            raise ValueError(f"not a 0x-prefixed 20-byte hex address: {v!r}")
        return v


class StreamConfig(BaseModel):
    enabled: bool = True
    reconnect_delay_sec: PositiveFloat = 5.0
    backoff: float = Field(default=1.0, ge=1.0)
    max_delay_sec: Optional[PositiveFloat] = None
    max_retries: Optional[PositiveInt] = None  # None = retry forever


class MirrorConfig(BaseModel):
    enabled: bool = False
    # Private Key must be loaded from env, never default.
    private_key: str = Field(default="", repr=False)

    @property
    def active(self) -> bool:
        return self.enabled and bool(self.private_key)


_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}


class LoggingConfig(BaseModel):
    level: str = "INFO"
    dir: Optional[str] = "logs"  # empty disables the file sink
    file_name: str = "hlwatch.log"
    console: bool = True
    rotation: str = "10 MB"
    retention: PositiveInt = 10

    @field_validator("level")
    @classmethod
    def _check_level(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in _LOG_LEVELS:
            raise ValueError(f"unknown log level {v!r}")
        return v


class WatcherConfig(BaseModel):
    hyperliquid: HyperliquidConfig = Field(default_factory=HyperliquidConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    watch: WatchConfig = Field(default_factory=WatchConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    mirror: MirrorConfig = Field(default_factory=MirrorConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @staticmethod
    def load(
        path: str | Path | None = None,
        environ: Optional[Mapping[str, str]] = None,
        env_file: str | Path | None = None,
    ) -> "WatcherConfig":
        """Build the config from an optional YAML file, then apply environment overrides.

        The environment is the process environment layered over a .env file
        (``env_file``, or ./.env then ~/.hlwatch/.env). When ``environ`` is
        passed explicitly, only an explicit ``env_file`` is read.
        """
        data: Dict[str, Any] = {}
        if path is not None:
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = yaml.safe_load(f) or {}
            except OSError as e:
                raise ConfigError(f"cannot read config file {path}: {e}") from e
            except yaml.YAMLError as e:
                raise ConfigError(f"invalid YAML in {path}: {e}") from e
            if not isinstance(data, dict):
                raise ConfigError(f"config file {path} must contain a mapping")

        if environ is None or env_file is not None:
            dotenv_path = find_env_file(env_file)
        else:
            dotenv_path = None
        env = layered_environ(os.environ if environ is None else environ, dotenv_path)
        _apply_env(data, env)
        try:
            return WatcherConfig(**data)
        except ValidationError as e:
            raise ConfigError(str(e)) from e

    def validate_runtime(self, *, dry_run: bool = False) -> None:
        if not self.watch.address:
            raise ConfigError("TARGET_ADDRESS is required")
        if not dry_run and not self.telegram.is_configured:
            raise ConfigError("TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID are required (or use --dry-run)")


# env var -> (section, key)
_ENV_MAP = {
    "TARGET_ADDRESS": ("watch", "address"),
    "TELEGRAM_BOT_TOKEN": ("telegram", "bot_token"),
    "TELEGRAM_CHAT_ID": ("telegram", "chat_id"),
    "HYPERLIQUID_PRIVATE_KEY": ("mirror", "private_key"),
    "HYPERLIQUID_API_URL": ("hyperliquid", "api_url"),
    "HYPERLIQUID_WS_URL": ("hyperliquid", "ws_url"),
    "HLWATCH_LOG_LEVEL": ("logging", "level"),
    "HLWATCH_LOG_DIR": ("logging", "dir"),
}


def _apply_env(data: Dict[str, Any], environ: Any) -> None:
    for var, (section, key) in _ENV_MAP.items():
        value = environ.get(var)
        if value:
            _section(data, section)[key] = value.strip().strip('"').strip("'")
    if environ.get("TRADING_ENABLED") is not None:
        _section(data, "mirror")["enabled"] = _truthy(environ.get("TRADING_ENABLED"))
    if environ.get("HLWATCH_DISABLE_CONSOLE_LOG") is not None:
        _section(data, "logging")["console"] = not _truthy(environ.get("HLWATCH_DISABLE_CONSOLE_LOG"))


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    # An empty YAML section ("watch:") loads as None
    if not isinstance(data.get(name), dict):
        data[name] = {}
    return data[name]


def _truthy(raw: Optional[str]) -> bool:
    return str(raw or "").strip().lower() in {"1", "true", "yes", "on"}


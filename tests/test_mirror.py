from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from hlwatch.core.errors import ConfigError
from hlwatch.core.types import Side, TradeEvent
from hlwatch.watcher.mirror import TradeMirror

# Well-known throwaway key from the web3 documentation
TEST_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"


def test_enabled_mirror_derives_signer() -> None:
    mirror = TradeMirror(f'"{TEST_KEY}"')
    assert mirror.enabled
    assert mirror.signer_address.startswith("0x") and len(mirror.signer_address) == 42
    asyncio.run(mirror.mirror(TradeEvent("BTC", Side.BUY, Decimal("1"), Decimal("1"), 1)))
    assert mirror.mirrored == 1


def test_disabled_without_key_or_flag() -> None:
    assert not TradeMirror("").enabled
    mirror = TradeMirror(TEST_KEY, enabled=False)
    assert not mirror.enabled
    asyncio.run(mirror.mirror(TradeEvent("BTC", Side.SELL, Decimal("1"), Decimal("1"), 1)))
    assert mirror.mirrored == 0


def test_invalid_key_is_a_config_error() -> None:
    with pytest.raises(ConfigError):
        TradeMirror("0xnot-a-key")

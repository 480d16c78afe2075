from __future__ import annotations

from typing import Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount
from loguru import logger as log

from hlwatch.core.errors import ConfigError
from hlwatch.core.types import Side, TradeEvent


class TradeMirror:
    """
    Hook invoked once per newly notified fill when mirroring is enabled.

    Order placement is not implemented; the hook only derives the signing
    account (so a bad key fails at startup) and logs what it would do.
    """

    def __init__(self, private_key: str, *, enabled: bool = True) -> None:
        self.enabled = bool(enabled and private_key)
        self.wallet: Optional[LocalAccount] = None
        self.mirrored = 0
        if not self.enabled:
            return
        try:
            clean_pk = str(private_key).strip().strip('"').strip("'")
            self.wallet = Account.from_key(clean_pk)
        except Exception as e:
            raise ConfigError(f"Invalid Hyperliquid private key: {e}") from e
        log.info(f"Trade mirroring enabled, signer {self.wallet.address}")

    @property
    def signer_address(self) -> Optional[str]:
        return self.wallet.address if self.wallet else None

    async def mirror(self, event: TradeEvent) -> None:
        if not self.enabled:
            return
        action = "buy" if event.side is Side.BUY else "sell"
        log.info(f"Simulating trade mirroring: {action} {event.size} {event.asset} (signer {self.signer_address})")
        self.mirrored += 1

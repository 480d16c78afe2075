from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import List, NamedTuple, Optional


class Side(str, Enum):
    BUY = "buy"
    SELL = "sell"


class SourceKind(str, Enum):
    POLL = "poll"
    PUSH = "push"


class EventIdentity(NamedTuple):
    """Heuristic identity of a fill.

    Two distinct fills with the same asset, side, size and millisecond
    timestamp collide; this is a known limitation.
    """

    asset: str
    timestamp: int  # epoch ms
    side: Side
    size: Decimal


@dataclass(frozen=True)
class TradeEvent:
    asset: str
    side: Side
    size: Decimal
    price: Decimal
    timestamp: int  # epoch ms
    source: SourceKind = SourceKind.POLL
    direction: Optional[str] = None  # e.g. "Open Long", as reported by the exchange
    tx_hash: Optional[str] = None

    @property
    def usd_value(self) -> Decimal:
        return self.price * self.size

    @property
    def identity(self) -> EventIdentity:
        return EventIdentity(self.asset, self.timestamp, self.side, self.size)


@dataclass(frozen=True)
class Position:
    asset: str
    signed_size: Decimal
    entry_price: Decimal
    unrealized_pnl: Decimal

    @property
    def is_long(self) -> bool:
        return self.signed_size > 0


@dataclass(frozen=True)
class PositionSnapshot:
    positions: List[Position]
    fetched_at: int  # epoch ms

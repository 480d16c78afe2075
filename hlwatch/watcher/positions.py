from __future__ import annotations

import asyncio
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from loguru import logger as log

from hlwatch.core.errors import MalformedRecordError, TransientFetchError
from hlwatch.core.types import Position, PositionSnapshot
from hlwatch.notify.formatting import format_positions
from hlwatch.notify.telegram import NotificationSink


class PositionSource(Protocol):
    async def fetch_clearinghouse_state(self, address: str) -> Dict[str, Any]: ...


def _num(value: Any, default: str = "0") -> Decimal:
    try:
        d = Decimal(str(value if value not in (None, "") else default))
    except (InvalidOperation, ValueError):
        return Decimal(default)
    return d if d.is_finite() else Decimal(default)


def parse_position(entry: Any) -> Position:
    """Parse one ``assetPositions`` entry.

    Accepts the live nested shape ``{"type": "oneWay", "position": {"coin", "szi", ...}}``
    as well as a flat ``{"coin", "position", "entryPx", "unrealizedPnl"}`` record.
    """
    if not isinstance(entry, dict):
        raise MalformedRecordError("position entry is not an object", entry)
    inner = entry.get("position")
    if isinstance(inner, dict):
        coin, size = inner.get("coin"), inner.get("szi")
        source = inner
    else:
        coin, size = entry.get("coin"), inner
        source = entry
    if not coin or size in (None, ""):
        raise MalformedRecordError("position entry missing coin or size", entry)
    try:
        signed_size = Decimal(str(size))
    except (InvalidOperation, ValueError):
        raise MalformedRecordError(f"position size is not a number: {size!r}", entry)
    return Position(
        asset=str(coin),
        signed_size=signed_size,
        entry_price=_num(source.get("entryPx")),
        unrealized_pnl=_num(source.get("unrealizedPnl")),
    )


def parse_positions(state: Dict[str, Any]) -> PositionSnapshot:
    positions: List[Position] = []
    for entry in state.get("assetPositions") or []:
        try:
            positions.append(parse_position(entry))
        except MalformedRecordError as e:
            log.warning(f"Dropping malformed position: {e} | record={e.record!r}")
    return PositionSnapshot(positions=positions, fetched_at=int(time.time() * 1000))


class PositionReporter:
    """Periodically sends the watched address's open positions. Snapshots are never deduplicated."""

    def __init__(
        self,
        info: PositionSource,
        sink: NotificationSink,
        *,
        address: str,
        explorer_url: str = "https://hypurrscan.io",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.info = info
        self.sink = sink
        self.address = address
        self.explorer_url = explorer_url
        self._sleep = sleep
        self.reports_sent = 0
        self.last_snapshot: Optional[PositionSnapshot] = None

    async def report_once(self) -> bool:
        try:
            state = await self.info.fetch_clearinghouse_state(self.address)
        except TransientFetchError as e:
            log.error(f"Error while checking positions: {e}")
            return False
        snapshot = parse_positions(state)
        self.last_snapshot = snapshot
        text = format_positions(snapshot.positions, address=self.address, explorer_url=self.explorer_url)
        sent = await self.sink.send(text)
        if sent:
            self.reports_sent += 1
        return sent

    async def run(self, interval_sec: float) -> None:
        while True:
            await self.report_once()
            await self._sleep(interval_sec)

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

from loguru import logger as log

from hlwatch.core.errors import TransientFetchError
from hlwatch.core.types import SourceKind, TradeEvent
from hlwatch.notify.formatting import format_trade
from hlwatch.notify.telegram import NotificationSink
from hlwatch.watcher.ledger import DedupLedger
from hlwatch.watcher.mirror import TradeMirror
from hlwatch.watcher.normalize import normalize_fills

FILLS_CHANNEL = "userFills"


class FillSource(Protocol):
    async def fetch_markets(self) -> Dict[str, Dict[str, Any]]: ...

    async def fetch_user_fills(self, address: str) -> list: ...


@dataclass
class CoordinatorStats:
    polls: int = 0
    poll_failures: int = 0
    stream_messages: int = 0
    events_queued: int = 0
    duplicates: int = 0
    notified: int = 0
    notify_failures: int = 0
    mirrored: int = 0
    mirror_failures: int = 0


class IngestionCoordinator:
    """
    Merges polled and pushed fills and notifies once per unique fill.

    Both producers (poll_once and on_stream_message) only normalize and
    enqueue. A single consumer (consume or drain) owns the dedup ledger, so the
    membership check and insert can never interleave with another check.
    """

    def __init__(
        self,
        info: FillSource,
        sink: NotificationSink,
        *,
        address: str,
        explorer_url: str = "https://hypurrscan.io",
        poll_limit: int = 10,
        mirror: Optional[TradeMirror] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.info = info
        self.sink = sink
        self.address = address
        self.explorer_url = explorer_url
        self.poll_limit = poll_limit
        self.mirror = mirror
        self._sleep = sleep
        self._ledger = DedupLedger()
        self._markets: Optional[Dict[str, Dict[str, Any]]] = None
        self._queue: asyncio.Queue[TradeEvent] = asyncio.Queue()
        self.stats = CoordinatorStats()

    @property
    def markets(self) -> Optional[Dict[str, Dict[str, Any]]]:
        return self._markets

    @property
    def seen_count(self) -> int:
        return len(self._ledger)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    # Producers

    def _enqueue(self, payload: Any, source: SourceKind) -> int:
        events = normalize_fills(payload, source)
        for event in events:
            self._queue.put_nowait(event)
        self.stats.events_queued += len(events)
        return len(events)

    async def poll_once(self) -> int:
        """Fetch the newest fills and queue them. Returns the number of events queued."""
        self.stats.polls += 1
        try:
            # Cached for the process lifetime once fetched; never refreshed
            if self._markets is None:
                self._markets = await self.info.fetch_markets()
                log.info(f"Cached metadata for {len(self._markets)} markets")
            fills = await self.info.fetch_user_fills(self.address)
        except TransientFetchError as e:
            self.stats.poll_failures += 1
            log.error(f"Error while polling for trades: {e}")
            return 0
        return self._enqueue(fills[: self.poll_limit], SourceKind.POLL)

    def on_stream_message(self, message: Dict[str, Any]) -> int:
        """FillStream callback. Queues fills from ``userFills`` messages, ignores other channels."""
        if message.get("channel") != FILLS_CHANNEL:
            log.debug(f"Ignoring stream message on channel {message.get('channel')!r}")
            return 0
        self.stats.stream_messages += 1
        data = message.get("data")
        if not data:
            log.info(f"Received data is not in expected format: {data!r}")
            return 0
        return self._enqueue(data, SourceKind.PUSH)

    # Consumer

    async def handle_event(self, event: TradeEvent) -> bool:
        """Notify (and mirror) if the fill is new. Returns False for duplicates."""
        if not self._ledger.claim(event.identity):
            self.stats.duplicates += 1
            log.debug(f"Skipping known fill {event.identity}")
            return False

        log.info(f"New {event.side.value} fill {event.size} {event.asset} @ {event.price} via {event.source.value}")
        try:
            text = format_trade(event, address=self.address, explorer_url=self.explorer_url)
            sent = await self.sink.send(text)
        except Exception as e:
            log.error(f"Could not notify fill {event.identity}: {e!r}")
            sent = False
        if sent:
            self.stats.notified += 1
        else:
            # At-most-once: the ledger entry stays, the notification is not retried
            self.stats.notify_failures += 1

        if self.mirror is not None and self.mirror.enabled:
            try:
                await self.mirror.mirror(event)
                self.stats.mirrored += 1
            except Exception as e:
                self.stats.mirror_failures += 1
                log.error(f"Trade mirroring failed for {event.identity}: {e!r}")
        return True

    async def _handle_safely(self, event: TradeEvent) -> None:
        try:
            await self.handle_event(event)
        except Exception as e:
            log.exception(f"Unexpected error while processing fill {event.identity}: {e!r}")

    async def drain(self) -> int:
        """Process everything queued right now. Must not run alongside consume()."""
        handled = 0
        while not self._queue.empty():
            event = self._queue.get_nowait()
            try:
                await self._handle_safely(event)
            finally:
                self._queue.task_done()
            handled += 1
        return handled

    async def consume(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._handle_safely(event)
            finally:
                self._queue.task_done()

    async def run_polling(self, interval_sec: float) -> None:
        while True:
            await self.poll_once()
            await self._sleep(interval_sec)

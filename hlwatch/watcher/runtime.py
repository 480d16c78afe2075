from __future__ import annotations

import asyncio
import signal
from typing import Any, Callable, List, Optional

import websockets
from loguru import logger as log

from hlwatch.core.config import WatcherConfig
from hlwatch.core.errors import TransientFetchError
from hlwatch.data.hyperliquid_info import HyperliquidInfoClient
from hlwatch.data.hyperliquid_stream import FillStream, RetryPolicy
from hlwatch.notify.formatting import crash_message, self_test_message, shutdown_message, startup_message
from hlwatch.notify.telegram import LogSink, NotificationSink, TelegramSink
from hlwatch.watcher.coordinator import IngestionCoordinator
from hlwatch.watcher.mirror import TradeMirror
from hlwatch.watcher.positions import PositionReporter


class Watcher:
    """
    Owns the watcher's tasks: fill polling, the fill queue consumer, the
    position reporter and the WebSocket stream.

    run() returns 0 after a clean shutdown and 1 after a crash; both paths send
    a final notification with a bounded wait before tearing everything down.
    """

    def __init__(
        self,
        config: WatcherConfig,
        *,
        dry_run: bool = False,
        info: Optional[Any] = None,
        sink: Optional[NotificationSink] = None,
        connect: Callable[..., Any] = websockets.connect,
        final_send_timeout_sec: float = 5.0,
    ) -> None:
        self.config = config
        self.address = config.watch.address
        self.final_send_timeout_sec = final_send_timeout_sec
        self.info = info or HyperliquidInfoClient(
            base_url=config.hyperliquid.api_url,
            timeout_sec=config.hyperliquid.request_timeout_sec,
        )
        if sink is not None:
            self.sink = sink
        elif dry_run:
            self.sink = LogSink()
        else:
            self.sink = TelegramSink(
                config.telegram.bot_token,
                config.telegram.chat_id,
                api_base=config.telegram.api_base,
                timeout_sec=config.telegram.timeout_sec,
            )

        self.mirror: Optional[TradeMirror] = None
        if config.mirror.active:
            self.mirror = TradeMirror(config.mirror.private_key)
        elif config.mirror.enabled:
            log.warning("TRADING_ENABLED is set but HYPERLIQUID_PRIVATE_KEY is missing; mirroring disabled")

        explorer = config.hyperliquid.explorer_url
        self.coordinator = IngestionCoordinator(
            self.info,
            self.sink,
            address=self.address,
            explorer_url=explorer,
            poll_limit=config.watch.poll_limit,
            mirror=self.mirror,
        )
        self.reporter = PositionReporter(self.info, self.sink, address=self.address, explorer_url=explorer)

        self.stream: Optional[FillStream] = None
        if config.stream.enabled:
            self.stream = FillStream(
                config.hyperliquid.ws_url,
                self.address,
                self.coordinator.on_stream_message,
                policy=RetryPolicy(
                    delay_sec=config.stream.reconnect_delay_sec,
                    backoff=config.stream.backoff,
                    max_delay_sec=config.stream.max_delay_sec,
                    max_retries=config.stream.max_retries,
                ),
                connect=connect,
            )
        self._tasks: List[asyncio.Task] = []

    async def _send_bounded(self, text: str) -> bool:
        try:
            return await asyncio.wait_for(self.sink.send(text), timeout=self.final_send_timeout_sec)
        except asyncio.TimeoutError:
            log.warning("Timed out sending final notification")
            return False

    async def start(self) -> None:
        """Announce startup, then run one poll cycle and one position report inline."""
        log.info(f"Starting to watch address {self.address}")
        await self.sink.send(startup_message(self.address))
        await self.coordinator.poll_once()
        await self.coordinator.drain()
        await self.reporter.report_once()

    def _spawn_tasks(self) -> None:
        watch = self.config.watch
        # The initial cycle already ran in start(); the loops begin after one interval
        self._tasks = [
            asyncio.create_task(self.coordinator.consume(), name="fill-consumer"),
            asyncio.create_task(self._after(watch.poll_interval_sec, self.coordinator.run_polling(watch.poll_interval_sec)), name="fill-poller"),
            asyncio.create_task(self._after(watch.position_interval_sec, self.reporter.run(watch.position_interval_sec)), name="position-reporter"),
        ]
        if self.stream is not None:
            self._tasks.append(asyncio.create_task(self.stream.run(), name="fill-stream"))

    @staticmethod
    async def _after(delay_sec: float, coro: Any) -> None:
        try:
            await asyncio.sleep(delay_sec)
        except asyncio.CancelledError:
            coro.close()
            raise
        await coro

    async def _wait_for_stop(self, stop: asyncio.Event) -> None:
        """Block until stop is set. A crashed task re-raises; a task that returns is dropped."""
        stop_task = asyncio.create_task(stop.wait(), name="stop-wait")
        pending = {stop_task, *self._tasks}
        try:
            while not stop_task.done():
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    if task is stop_task:
                        continue
                    exc = task.exception()
                    if exc is not None:
                        raise exc
                    log.warning(f"Task {task.get_name()} finished, the watcher keeps running")
        finally:
            stop_task.cancel()

    def _install_signal_handlers(self, stop: asyncio.Event) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except (NotImplementedError, RuntimeError):
                # Windows / non-main thread
                pass

    async def run(self, stop: Optional[asyncio.Event] = None, *, install_signals: bool = True) -> int:
        stop = stop or asyncio.Event()
        if install_signals:
            self._install_signal_handlers(stop)
        exit_code = 0
        try:
            await self.start()
            self._spawn_tasks()
            await self._wait_for_stop(stop)
            log.info("Shutting down...")
            await self._send_bounded(shutdown_message())
        except Exception as e:
            exit_code = 1
            log.exception(f"Error in main process: {e!r}")
            await self._send_bounded(crash_message(e))
        finally:
            await self._teardown()
        return exit_code

    async def _teardown(self) -> None:
        if self.stream is not None:
            await self.stream.close()
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        await self._close_clients()

    async def _close_clients(self) -> None:
        stop = getattr(self.info, "stop", None)
        if stop is not None:
            await stop()
        await self.sink.close()

    async def self_test(self) -> bool:
        """Check notification delivery and API reachability, then exit."""
        ok = True
        try:
            if await self.sink.send(self_test_message()):
                log.info("[TEST] Notification test completed")
            else:
                log.error("[TEST] Notification test failed")
                ok = False
            try:
                markets = await self.info.fetch_markets()
            except TransientFetchError as e:
                log.error(f"[TEST] API connection test failed: {e}")
                ok = False
            else:
                if markets:
                    log.info(f"[TEST] API connection successful - received metadata for {len(markets)} markets")
                else:
                    log.warning("[TEST] API connection test inconclusive - no market data")
        finally:
            await self._close_clients()
        return ok

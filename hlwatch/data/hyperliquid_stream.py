"""Hyperliquid WebSocket fill stream with a fixed-delay reconnect supervisor."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Optional

import websockets
from loguru import logger as log

from hlwatch.core.errors import IllegalTransition, StreamError


class StreamState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    CLOSED = "closed"


_TRANSITIONS: Dict[StreamState, FrozenSet[StreamState]] = {
    StreamState.DISCONNECTED: frozenset({StreamState.CONNECTING, StreamState.CLOSED}),
    StreamState.CONNECTING: frozenset({StreamState.SUBSCRIBED, StreamState.DISCONNECTED, StreamState.CLOSED}),
    StreamState.SUBSCRIBED: frozenset({StreamState.DISCONNECTED, StreamState.CLOSED}),
    StreamState.CLOSED: frozenset(),
}


@dataclass(frozen=True)
class RetryPolicy:
    """Reconnect timing. Defaults: fixed 5s delay, no growth, retry forever."""

    delay_sec: float = 5.0
    backoff: float = 1.0
    max_delay_sec: Optional[float] = None
    max_retries: Optional[int] = None

    def delay_for(self, attempt: int) -> float:
        delay = self.delay_sec * (self.backoff ** max(0, attempt - 1))
        if self.max_delay_sec is not None:
            delay = min(delay, self.max_delay_sec)
        return delay

    def exhausted(self, attempt: int) -> bool:
        return self.max_retries is not None and attempt > self.max_retries


def subscription_message(address: str) -> Dict[str, Any]:
    return {"method": "subscribe", "subscription": {"type": "userFills", "user": address}}


class FillStream:
    """
    Keeps one ``userFills`` subscription alive for the watched address.

    Only one socket is open at a time: the previous connection is fully closed
    (its ``async with`` block has exited) before the retry delay starts.
    """

    def __init__(
        self,
        url: str,
        address: str,
        on_message: Callable[[Dict[str, Any]], Any],
        *,
        policy: Optional[RetryPolicy] = None,
        connect: Callable[..., Any] = websockets.connect,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.url = url
        self.address = address
        self.on_message = on_message
        self.policy = policy or RetryPolicy()
        self._connect = connect
        self._sleep = sleep
        self._state = StreamState.DISCONNECTED
        self._ws: Any = None
        self._closing = False
        self.connect_count = 0

    @property
    def state(self) -> StreamState:
        return self._state

    def _transition(self, new: StreamState) -> None:
        if new not in _TRANSITIONS[self._state]:
            raise IllegalTransition(f"illegal stream transition {self._state.value} -> {new.value}")
        log.debug(f"Stream {self._state.value} -> {new.value}")
        self._state = new

    async def run(self) -> None:
        """Connect, subscribe and dispatch messages until close() is called.

        StreamError (socket failure, server-side close) schedules a reconnect.
        Any other exception is a bug and propagates to the caller.
        """
        attempt = 0
        while not self._closing:
            self._transition(StreamState.CONNECTING)
            try:
                await self._session()
            except asyncio.CancelledError:
                self._state = StreamState.CLOSED
                raise
            except StreamError as e:
                log.error(f"WebSocket error: {e}")
                if self._state is StreamState.SUBSCRIBED:
                    # the connection had come up, so the retry count starts over
                    attempt = 0

            if self._closing:
                break
            self._transition(StreamState.DISCONNECTED)
            attempt += 1
            if self.policy.exhausted(attempt):
                log.error(f"Giving up on WebSocket after {attempt - 1} retries")
                break
            delay = self.policy.delay_for(attempt)
            log.info(f"Reconnecting in {delay:.1f}s")
            await self._sleep(delay)

        if self._state is not StreamState.CLOSED:
            self._transition(StreamState.CLOSED)

    async def _session(self) -> None:
        """One connection: open, subscribe, dispatch until the socket ends."""
        try:
            async with self._connect(self.url, ping_interval=20, ping_timeout=20, close_timeout=5) as ws:
                if self._closing:
                    # close() arrived while the handshake was in flight
                    return
                self._ws = ws
                self.connect_count += 1
                self._transition(StreamState.SUBSCRIBED)
                await ws.send(json.dumps(subscription_message(self.address)))
                log.info(f"WebSocket connected, subscribed to userFills for {self.address}")
                async for raw in ws:
                    self._dispatch(raw)
        except (websockets.exceptions.WebSocketException, OSError, asyncio.TimeoutError) as e:
            raise StreamError(repr(e)) from e
        finally:
            self._ws = None
        if not self._closing:
            raise StreamError("connection closed by server")
        log.info("WebSocket connection closed")

    def _dispatch(self, raw: Any) -> None:
        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            log.warning(f"Dropping undecodable WebSocket frame: {str(raw)[:200]}")
            return
        if not isinstance(message, dict):
            log.warning(f"Dropping non-object WebSocket frame: {str(raw)[:200]}")
            return
        try:
            self.on_message(message)
        except Exception as e:
            log.exception(f"Error processing WebSocket message: {e!r}")

    async def close(self) -> None:
        """Stop reconnecting and close the current socket, if any."""
        self._closing = True
        ws = self._ws
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                log.warning(f"Error while closing WebSocket: {e!r}")

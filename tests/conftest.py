from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable, Dict, List, Optional

import pytest

from hlwatch.core.errors import TransientFetchError

ADDRESS = "0xf3F496C9486BE5924a93D67e98298733Bb47057c"


class FakeInfo:
    """Scripted stand-in for HyperliquidInfoClient. Each poll consumes the next fills batch."""

    def __init__(
        self,
        fills_batches: Optional[List[Any]] = None,
        markets: Optional[Dict[str, Any]] = None,
        states: Optional[List[Any]] = None,
    ) -> None:
        self.fills_batches = list(fills_batches or [])
        self.markets = markets if markets is not None else {"BTC": {"name": "BTC"}, "ETH": {"name": "ETH"}}
        self.states = list(states or [])
        self.market_calls = 0
        self.fill_calls = 0
        self.state_calls = 0
        self.stopped = False

    async def fetch_markets(self) -> Dict[str, Any]:
        self.market_calls += 1
        if isinstance(self.markets, Exception):
            raise self.markets
        return self.markets

    async def fetch_user_fills(self, address: str) -> List[Any]:
        self.fill_calls += 1
        batch = self.fills_batches.pop(0) if self.fills_batches else []
        if isinstance(batch, Exception):
            raise batch
        return batch

    async def fetch_clearinghouse_state(self, address: str) -> Dict[str, Any]:
        self.state_calls += 1
        state = self.states.pop(0) if self.states else {"assetPositions": []}
        if isinstance(state, Exception):
            raise state
        return state

    async def stop(self) -> None:
        self.stopped = True


class FakeSink:
    def __init__(self, fail: bool = False) -> None:
        self.sent: List[str] = []
        self.fail = fail
        self.closed = False

    async def send(self, text: str) -> bool:
        self.sent.append(text)
        return not self.fail

    async def close(self) -> None:
        self.closed = True


class FakeConnection:
    """Async-iterable socket: yields frames, then ends (close) or raises (error).

    With block=True it stays open until close() is called. on_open runs inside
    __aenter__, i.e. while the handshake is still in flight.
    """

    def __init__(
        self,
        frames: Optional[List[Any]] = None,
        error: Optional[Exception] = None,
        block: bool = False,
        on_open: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.frames = [f if isinstance(f, str) else json.dumps(f) for f in (frames or [])]
        self.error = error
        self.block = block
        self.on_open = on_open
        self.sent: List[Dict[str, Any]] = []
        self.closed = asyncio.Event()

    async def send(self, text: str) -> None:
        self.sent.append(json.loads(text))

    async def close(self) -> None:
        self.closed.set()

    def __aiter__(self) -> "FakeConnection":
        return self

    async def __anext__(self) -> str:
        if self.frames:
            return self.frames.pop(0)
        if self.error is not None:
            raise self.error
        if self.block:
            await self.closed.wait()
        raise StopAsyncIteration

    async def __aenter__(self) -> "FakeConnection":
        if self.on_open is not None:
            await self.on_open()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.closed.set()


class FakeConnector:
    """Replacement for websockets.connect; hands out scripted connections in order."""

    def __init__(self, connections: List[Any]) -> None:
        self.connections = list(connections)
        self.calls: List[str] = []
        self.opened: List[FakeConnection] = []

    def __call__(self, url: str, **kwargs: Any) -> Any:
        self.calls.append(url)
        item = self.connections.pop(0) if self.connections else FakeConnection(block=True)
        if isinstance(item, Exception):
            raise item
        self.opened.append(item)
        return item


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


def fill(coin: str, time: int, side: str, sz: str, px: str = "100", **extra: Any) -> Dict[str, Any]:
    record = {"coin": coin, "time": time, "side": side, "sz": sz, "px": px}
    record.update(extra)
    return record


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


@pytest.fixture
def address() -> str:
    return ADDRESS


@pytest.fixture
def make_fill() -> Callable[..., Dict[str, Any]]:
    return fill


@pytest.fixture
def fake_sink() -> FakeSink:
    return FakeSink()


@pytest.fixture
def fake_info_factory() -> Callable[..., FakeInfo]:
    return FakeInfo


@pytest.fixture
def connector_factory() -> Callable[[List[Any]], FakeConnector]:
    return FakeConnector


@pytest.fixture
def connection_factory() -> Callable[..., FakeConnection]:
    return FakeConnection


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def until() -> Callable[..., Any]:
    return wait_until


@pytest.fixture
def fetch_error() -> TransientFetchError:
    return TransientFetchError("userFills", "HTTP 502: bad gateway")


@pytest.fixture
def sink_factory() -> Callable[..., FakeSink]:
    return FakeSink

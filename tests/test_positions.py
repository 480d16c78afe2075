from __future__ import annotations

import asyncio
from decimal import Decimal

from hlwatch.core.errors import TransientFetchError
from hlwatch.watcher.positions import PositionReporter, parse_position, parse_positions


def test_parse_nested_live_shape() -> None:
    p = parse_position(
        {"type": "oneWay", "position": {"coin": "ETH", "szi": "-1.5", "entryPx": "3000.5", "unrealizedPnl": "-12.3"}}
    )
    assert p.asset == "ETH"
    assert p.signed_size == Decimal("-1.5")
    assert not p.is_long
    assert p.entry_price == Decimal("3000.5")
    assert p.unrealized_pnl == Decimal("-12.3")


def test_parse_flat_shape_and_skip_malformed() -> None:
    snapshot = parse_positions(
        {
            "assetPositions": [
                {"coin": "BTC", "position": "0.25", "entryPx": "60000", "unrealizedPnl": "150"},
                {"position": {"szi": "1"}},
                "junk",
            ]
        }
    )
    assert [p.asset for p in snapshot.positions] == ["BTC"]
    assert snapshot.positions[0].is_long


def test_empty_snapshot_reports_no_open_positions(fake_info_factory, fake_sink, address) -> None:
    info = fake_info_factory(states=[{"assetPositions": []}])
    reporter = PositionReporter(info, fake_sink, address=address)
    assert asyncio.run(reporter.report_once()) is True
    assert len(fake_sink.sent) == 1
    assert "No open positions" in fake_sink.sent[0]


def test_one_block_per_position_with_side(fake_info_factory, fake_sink, address) -> None:
    state = {
        "assetPositions": [
            {"type": "oneWay", "position": {"coin": "BTC", "szi": "0.5", "entryPx": "60000", "unrealizedPnl": "250"}},
            {"type": "oneWay", "position": {"coin": "ETH", "szi": "-2", "entryPx": "3000", "unrealizedPnl": "-40"}},
        ]
    }
    reporter = PositionReporter(fake_info_factory(states=[state]), fake_sink, address=address)
    asyncio.run(reporter.report_once())
    text = fake_sink.sent[0]
    assert "<b>BTC:</b> 🟢 LONG" in text
    assert "<b>ETH:</b> 🔴 SHORT" in text
    assert "<b>Size:</b> 2.00" in text
    assert "✅ $250.00" in text
    assert "❌ $40.00" in text
    assert "No open positions" not in text


def test_identical_snapshots_are_resent(fake_info_factory, fake_sink, address) -> None:
    state = {"assetPositions": [{"coin": "BTC", "position": "1", "entryPx": "1", "unrealizedPnl": "0"}]}
    reporter = PositionReporter(fake_info_factory(states=[state, dict(state)]), fake_sink, address=address)

    async def scenario() -> None:
        await reporter.report_once()
        await reporter.report_once()

    asyncio.run(scenario())
    assert len(fake_sink.sent) == 2
    assert fake_sink.sent[0] == fake_sink.sent[1]
    assert reporter.reports_sent == 2


def test_fetch_failure_sends_nothing(fake_info_factory, fake_sink, address) -> None:
    info = fake_info_factory(states=[TransientFetchError("clearinghouseState", "HTTP 500")])
    reporter = PositionReporter(info, fake_sink, address=address)
    assert asyncio.run(reporter.report_once()) is False
    assert fake_sink.sent == []


def test_run_reports_every_tick(fake_info_factory, fake_sink, address, recording_sleep) -> None:
    class Stop(Exception):
        pass

    async def sleep(delay: float) -> None:
        await recording_sleep(delay)
        if len(recording_sleep.delays) == 3:
            raise Stop()

    reporter = PositionReporter(fake_info_factory(), fake_sink, address=address, sleep=sleep)
    try:
        asyncio.run(reporter.run(300.0))
    except Stop:
        pass
    assert len(fake_sink.sent) == 3
    assert recording_sleep.delays == [300.0, 300.0, 300.0]

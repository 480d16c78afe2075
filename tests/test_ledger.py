from __future__ import annotations

from decimal import Decimal

from hlwatch.core.types import EventIdentity, Side
from hlwatch.watcher.ledger import DedupLedger


def test_has_and_add() -> None:
    ledger = DedupLedger()
    ident = EventIdentity("BTC", 1000, Side.BUY, Decimal("0.5"))
    assert not ledger.has(ident)
    ledger.add(ident)
    assert ledger.has(ident)
    assert ident in ledger
    assert len(ledger) == 1


def test_claim_is_true_only_once() -> None:
    ledger = DedupLedger()
    ident = EventIdentity("ETH", 2000, Side.SELL, Decimal("2"))
    assert ledger.claim(ident) is True
    assert ledger.claim(ident) is False
    assert len(ledger) == 1


def test_size_compares_as_decimal() -> None:
    ledger = DedupLedger()
    assert ledger.claim(EventIdentity("BTC", 1000, Side.BUY, Decimal("0.5")))
    assert not ledger.claim(EventIdentity("BTC", 1000, Side.BUY, Decimal("0.50")))


def test_any_field_difference_is_a_new_identity() -> None:
    ledger = DedupLedger()
    base = EventIdentity("BTC", 1000, Side.BUY, Decimal("1"))
    ledger.add(base)
    for other in (
        base._replace(asset="ETH"),
        base._replace(timestamp=1001),
        base._replace(side=Side.SELL),
        base._replace(size=Decimal("1.1")),
    ):
        assert ledger.claim(other)
    assert len(ledger) == 5

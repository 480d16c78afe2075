from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, List, Optional

from loguru import logger as log

from hlwatch.core.errors import MalformedRecordError
from hlwatch.core.types import Side, SourceKind, TradeEvent

REQUIRED_FILL_FIELDS = ("coin", "time", "side", "sz")

# Epoch milliseconds up to 9999-12-31, the last instant datetime can render
MAX_TIMESTAMP_MS = 253_402_300_799_999

# Hyperliquid reports "B" (bid) and "A" (ask)
_SIDES = {
    "b": Side.BUY,
    "buy": Side.BUY,
    "a": Side.SELL,
    "s": Side.SELL,
    "sell": Side.SELL,
}


def _decimal(value: Any, field: str, record: Any) -> Decimal:
    try:
        d = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise MalformedRecordError(f"field {field!r} is not a number: {value!r}", record)
    if not d.is_finite():
        raise MalformedRecordError(f"field {field!r} is not finite: {value!r}", record)
    return d


def normalize_fill(raw: Any, source: SourceKind) -> TradeEvent:
    """Convert a polled or pushed fill record to a TradeEvent."""
    if not isinstance(raw, dict):
        raise MalformedRecordError(f"fill record is a {type(raw).__name__}, not an object", raw)
    missing = [f for f in REQUIRED_FILL_FIELDS if raw.get(f) in (None, "")]
    if missing:
        raise MalformedRecordError(f"fill record missing {', '.join(missing)}", raw)

    side = _SIDES.get(str(raw["side"]).strip().lower())
    if side is None:
        raise MalformedRecordError(f"unknown side {raw['side']!r}", raw)

    size = _decimal(raw["sz"], "sz", raw)
    if size < 0:
        raise MalformedRecordError(f"negative size {raw['sz']!r}", raw)

    try:
        timestamp = int(raw["time"])
    except (TypeError, ValueError, OverflowError):
        raise MalformedRecordError(f"field 'time' is not an integer: {raw['time']!r}", raw)
    if not 0 <= timestamp <= MAX_TIMESTAMP_MS:
        raise MalformedRecordError(f"field 'time' is out of range: {timestamp}", raw)

    # Price is informational only; a missing or broken px is reported as 0
    try:
        price = _decimal(raw.get("px", "0"), "px", raw)
    except MalformedRecordError:
        log.debug(f"Fill without usable px, using 0: {raw!r}")
        price = Decimal("0")

    return TradeEvent(
        asset=str(raw["coin"]),
        side=side,
        size=size,
        price=price,
        timestamp=timestamp,
        source=source,
        direction=raw.get("dir"),
        tx_hash=raw.get("hash"),
    )


def _records(payload: Any) -> Optional[Iterable[Any]]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        # Pushed envelope: {"user": ..., "isSnapshot": ..., "fills": [...]}
        fills = payload.get("fills")
        if isinstance(fills, list):
            return fills
        return [payload]
    return None


def normalize_fills(payload: Any, source: SourceKind) -> List[TradeEvent]:
    """Normalize a record, a list of records or a pushed envelope, dropping malformed ones."""
    records = _records(payload)
    if records is None:
        log.info(f"Received {source.value} data is not in expected format: {payload!r}")
        return []

    events: List[TradeEvent] = []
    for raw in records:
        try:
            events.append(normalize_fill(raw, source))
        except MalformedRecordError as e:
            log.warning(f"Dropping malformed {source.value} fill: {e} | record={e.record!r}")
    return events


"""HTML message bodies for Telegram (parse_mode=HTML)."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from html import escape
from typing import Sequence

from hlwatch.core.types import Position, Side, TradeEvent


def format_number(value: Decimal | float, decimals: int = 2) -> str:
    return f"{value:,.{decimals}f}"


def format_time(epoch_ms: int) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def explorer_link(explorer_url: str, address: str) -> str:
    return f'<a href="{escape(explorer_url.rstrip("/"))}/address/{escape(address)}">View on Hypurrscan</a>'


def format_trade(event: TradeEvent, *, address: str, explorer_url: str) -> str:
    action = "🟢 BUY" if event.side is Side.BUY else "🔴 SELL"
    lines = [
        f"{action} trade detected!",
        "",
        f"<b>Asset:</b> {escape(event.asset)}",
        f"<b>Size:</b> {format_number(event.size)} (≈${format_number(event.usd_value)})",
        f"<b>Price:</b> ${format_number(event.price)}",
    ]
    if event.direction:
        lines.append(f"<b>Direction:</b> {escape(event.direction)}")
    lines.append(f"<b>Time:</b> {format_time(event.timestamp)}")
    lines.append("")
    lines.append(explorer_link(explorer_url, address))
    return "\n".join(lines)


def format_positions(positions: Sequence[Position], *, address: str, explorer_url: str) -> str:
    message = "📊 <b>Current Positions:</b>\n\n"
    if not positions:
        message += "No open positions\n\n"
    for p in positions:
        side = "🟢 LONG" if p.is_long else "🔴 SHORT"
        pnl_symbol = "✅" if p.unrealized_pnl >= 0 else "❌"
        message += f"<b>{escape(p.asset)}:</b> {side}\n"
        message += f"<b>Size:</b> {format_number(abs(p.signed_size))}\n"
        message += f"<b>Entry Price:</b> ${format_number(p.entry_price)}\n"
        message += f"<b>PnL:</b> {pnl_symbol} ${format_number(abs(p.unrealized_pnl))}\n\n"
    message += explorer_link(explorer_url, address)
    return message


def startup_message(address: str) -> str:
    return f"🔍 Started monitoring address {escape(address)}"


def shutdown_message() -> str:
    return "🛑 Bot is shutting down"


def crash_message(error: BaseException) -> str:
    return f"❌ Bot crashed: {escape(str(error) or type(error).__name__)}"


def self_test_message() -> str:
    return "🧪 Bot test: Notification system is working"

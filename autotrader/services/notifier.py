from typing import Optional, Protocol

from autotrader.broker.protocol import PositionEvent
from autotrader.constants import Direction, TradeState, currency_symbol
from autotrader.trading.performance import UserStats
from autotrader.trading.trade import TradeRecord
from autotrader.utils.logger import log

def _money(amount: float, currency: Optional[str]) -> str:
    return f"{currency_symbol(currency)}{amount:,.2f}"

def format_trade_opened(event: PositionEvent, currency: Optional[str]) -> str:
    direction = event.direction.label if event.direction else "?"
    return (
        "🟢 TRADE OPENED\n"
        f"Asset: {event.asset}\n"
        f"Direction: {direction}\n"
        f"Amount: {_money(event.investment, event.currency or currency)}\n"
        f"Duration: {event.duration or '?'} min"
    )

def format_trade_result(trade: TradeRecord, stats: UserStats, ladder: Optional[dict] = None) -> str:
    won = trade.state is TradeState.CLOSED_WIN
    profit = trade.profit or 0.0
    lines = [
        "✅ WIN" if won else "❌ LOSS",
        f"Asset: {trade.asset} {trade.direction.label}",
        f"Stake: {_money(trade.amount, trade.currency)}",
        f"Result: {'+' if profit >= 0 else '-'}{_money(abs(profit), trade.currency)}",
    ]
    if ladder and ladder.get("active"):
        lines.append(
            f"Martingale: step {ladder['step'] + 1}/{ladder['max_steps']}, "
            f"next {_money(ladder['current_amount'], trade.currency)}"
        )
    lines.append(f"Stats: {stats.summary()}")
    return "\n".join(lines)

def format_signal(signal) -> str:
    arrow = "🟢" if signal.direction is Direction.CALL else "🔴"
    price = f" @ {signal.price}" if signal.price is not None else ""
    return f"{arrow} SIGNAL {signal.asset} {signal.direction.label}{price} for {signal.duration} min [{signal.signal_id}]"

class Notifier(Protocol):
    async def trade_opened(self, user_id: str, event: PositionEvent, currency: Optional[str]) -> None: ...

    async def trade_closed(self, user_id: str, trade: TradeRecord, stats: UserStats,
                           ladder: Optional[dict] = None, chart_path: Optional[str] = None) -> None: ...

    async def broadcast(self, channels: list[dict], text: str, chart_path: Optional[str] = None) -> None: ...

    async def signal_received(self, signal) -> None: ...

class LogNotifier:
    """Writes every notification to the log. Default frontend for headless runs."""

    async def trade_opened(self, user_id, event, currency):
        log.info("[%s] %s", user_id, format_trade_opened(event, currency).replace("\n", " | "))

    async def trade_closed(self, user_id, trade, stats, ladder=None, chart_path=None):
        text = format_trade_result(trade, stats, ladder).replace("\n", " | ")
        log.info("[%s] %s%s", user_id, text, f" | chart {chart_path}" if chart_path else "")

    async def broadcast(self, channels, text, chart_path=None):
        for channel in channels:
            log.info("📣 [%s] %s", channel.get("title") or channel.get("chat_id"), text.replace("\n", " | "))

    async def signal_received(self, signal):
        log.info(format_signal(signal))

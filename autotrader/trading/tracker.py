"""Trade lifecycle: size, place, watch, settle.

SIZING → PLACING → (PLACED | REJECTED) → OPEN → (CLOSED_WIN | CLOSED_LOSS | TIMED_OUT)

A failed placement never touches the ladder. A settlement that does not
arrive within ``duration + settlement_grace`` is dropped: the trade is
journaled as TIMED_OUT and neither the ladder nor the stats change, even if
the broker reports the close later.
"""
import asyncio
import sqlite3
import time
from typing import Awaitable, Optional

from autotrader.broker.client import BrokerClient
from autotrader.broker.protocol import PositionEvent
from autotrader.config import BotConfig
from autotrader.constants import Outcome, TradeState
from autotrader.errors import InsufficientBalance, NotConnected, RequestTimeout, TradingError
from autotrader.services.charts import ChartRenderer
from autotrader.services.notifier import Notifier, format_trade_result
from autotrader.services.store import UserStore
from autotrader.signals import Signal
from autotrader.trading.journal import TradeJournal
from autotrader.trading.money_manager import MoneyManager
from autotrader.trading.performance import UserStats
from autotrader.trading.trade import TradeRecord, TradeResult
from autotrader.utils.logger import log

class TradeTracker:
    def __init__(self, cfg: BotConfig, money: MoneyManager, store: UserStore, notifier: Notifier,
                 journal: Optional[TradeJournal] = None, charts: Optional[ChartRenderer] = None):
        self.cfg = cfg
        self.money = money
        self.store = store
        self.notifier = notifier
        self.journal = journal
        self.charts = charts
        self.trades: dict[tuple[str, str], TradeRecord] = {}
        self._tasks: set[asyncio.Task] = set()

    @property
    def open_trades(self) -> list[TradeRecord]:
        return [t for t in self.trades.values() if not t.state.terminal]

    def settlement_timeout(self, duration: int) -> float:
        return duration * 60 + self.cfg.settlement_grace

    # ------------------------------------------------------------------
    # placement
    # ------------------------------------------------------------------
    async def execute_trade(self, user_id: str, client: BrokerClient, signal: Signal) -> TradeResult:
        try:
            return await self._execute(user_id, client, signal)
        except TradingError as e:
            log.warning("❌ Trade failed for %s: %s", user_id, e)
            return TradeResult(success=False, error=str(e))

    async def _execute(self, user_id: str, client: BrokerClient, signal: Signal) -> TradeResult:
        if not client.connected:
            raise NotConnected("Not connected to broker")

        # SIZING
        user = await self.store.get_user(user_id) or {}
        currency = client.currency if client.balance_id is not None else (user.get("currency") or client.currency)
        martingale = bool(user.get("martingale_enabled", True))
        amount = self.money.size(user_id, user, currency, client.balance)
        if client.balance < amount:
            raise InsufficientBalance(amount, client.balance, currency)

        # PLACING; errors here leave the ladder untouched
        placement = await client.place_trade(signal.asset, signal.direction, amount, signal.duration)

        trade = TradeRecord(
            user_id=user_id,
            trade_id=placement.trade_id,
            asset=placement.asset,
            direction=placement.direction,
            amount=amount,
            duration=signal.duration,
            currency=currency,
            martingale_enabled=martingale,
            signal_id=signal.signal_id,
        )
        self.trades[(user_id, trade.trade_id)] = trade
        self._save(trade)

        watch = client.watch_settlement(trade.trade_id, self.settlement_timeout(signal.duration))
        trade.state = TradeState.OPEN
        task = asyncio.create_task(self._track(client, trade, watch))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        log.info("🎯 %s %s %s %s%.2f placed for %s (id %s)",
                 trade.asset, trade.direction.label, f"{trade.duration}m", currency, amount, user_id, trade.trade_id)
        return TradeResult(success=True, trade_id=trade.trade_id, amount=amount)

    # ------------------------------------------------------------------
    # settlement
    # ------------------------------------------------------------------
    async def _track(self, client: BrokerClient, trade: TradeRecord, watch: Awaitable[PositionEvent]):
        try:
            event = await watch
        except RequestTimeout:
            trade.close(TradeState.TIMED_OUT)
            self._save(trade)
            log.warning("⏰ No settlement for trade %s (%s) in time, left unresolved", trade.trade_id, trade.user_id)
            return
        try:
            await self._settle(client, trade, event)
        except Exception as e:
            log.error("Settlement handling failed for trade %s: %s", trade.trade_id, e, exc_info=True)

    async def _settle(self, client: BrokerClient, trade: TradeRecord, event: PositionEvent):
        outcome = Outcome.WIN if event.is_win else Outcome.LOSS
        # some close pushes omit the invested amount; fall back to our own stake
        profit = event.profit if event.investment else event.profit_on(trade.amount)
        trade.close(TradeState.CLOSED_WIN if event.is_win else TradeState.CLOSED_LOSS, profit)
        log.info("%s Trade %s for %s settled: %s%.2f",
                 "✅ WIN" if event.is_win else "❌ LOSS", trade.trade_id, trade.user_id, trade.currency, profit)

        user = await self.store.get_user(trade.user_id) or {}
        fields = {}
        ladder = None
        if trade.martingale_enabled:
            self.money.record_outcome(trade.user_id, user, trade.currency, outcome)
            fields["martingale"] = self.money.record(trade.user_id)
            ladder = self.money.status(trade.user_id)

        stats = UserStats.from_record(user.get("stats"))
        stats.record(event.is_win, profit)
        fields["stats"] = stats.to_record()
        await self.store.update_user(trade.user_id, fields)
        self._save(trade)

        chart = await self._chart(client, trade, event)
        try:
            await self.notifier.trade_closed(trade.user_id, trade, stats, ladder, chart)
            if self.cfg.lead_user_id and trade.user_id == self.cfg.lead_user_id:
                channels = await self.store.get_active_channels()
                if channels:
                    await self.notifier.broadcast(channels, format_trade_result(trade, stats, ladder), chart)
        finally:
            if chart and self.charts is not None:
                self.charts.cleanup(chart)

    async def _chart(self, client: BrokerClient, trade: TradeRecord, event: PositionEvent) -> Optional[str]:
        if self.charts is None or not self.cfg.charts_enabled:
            return None
        interval = self.cfg.chart_interval
        end = int((event.close_time or time.time() * 1000) / 1000) + interval * 2
        start = int(trade.opened_at) - interval * 2
        count = max(10, (end - start) // interval + 1)
        asset_id = event.asset_id if event.asset_id is not None else client.assets.id_for(trade.asset)
        try:
            candles = await client.get_candles(asset_id, interval, count, end)
            return self.charts.render(
                trade.trade_id, candles, event.entry_price, event.exit_price,
                event.open_time, event.close_time, trade.direction, event.is_win,
            )
        except Exception as e:
            log.warning("📉 Chart for trade %s skipped: %s", trade.trade_id, e)
            return None

    # ------------------------------------------------------------------
    def _save(self, trade: TradeRecord):
        if self.journal is None:
            return
        try:
            self.journal.save_trade(trade)
        except sqlite3.Error as e:
            log.error("Journal write failed for trade %s: %s", trade.trade_id, e)

    async def wait_idle(self):
        """Wait for every watched trade to settle or time out."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self):
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

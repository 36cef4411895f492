import asyncio
from dataclasses import dataclass
from typing import Optional

from autotrader.broker.client import BrokerClient
from autotrader.broker.protocol import PositionEvent
from autotrader.config import BotConfig
from autotrader.services.notifier import Notifier
from autotrader.services.store import UserStore
from autotrader.signals import Signal
from autotrader.trading.sessions import SessionRegistry
from autotrader.trading.tracker import TradeTracker
from autotrader.trading.trade import TradeResult
from autotrader.utils.logger import log

@dataclass
class DispatchOutcome:
    user_id: str
    result: Optional[TradeResult] = None
    skipped: bool = False

class SignalDispatcher:
    """Applies one signal to every connected user, one user at a time.

    Users are served serially with `user_delay` between placements to stay
    under the broker's rate limits. Trades opened by the lead account are
    mirrored to users with `copy_lead_enabled`, each sized by their own ladder.
    """

    def __init__(self, cfg: BotConfig, registry: SessionRegistry, tracker: TradeTracker,
                 store: UserStore, notifier: Optional[Notifier] = None):
        self.cfg = cfg
        self.registry = registry
        self.tracker = tracker
        self.store = store
        self.notifier = notifier
        self.lead_user_id = cfg.lead_user_id

    async def execute_signal(self, signal: Signal) -> list[DispatchOutcome]:
        users = self.registry.connected()
        log.info("📡 Signal %s: %s %s %dm → %d connected user(s)",
                 signal.signal_id, signal.asset, signal.direction.label, signal.duration, len(users))
        if self.notifier is not None:
            try:
                await self.notifier.signal_received(signal)
            except Exception as e:
                log.error("Signal notification failed: %s", e)
        return await self._fan_out(users, signal, self.cfg.user_delay, self._auto_trading)

    @staticmethod
    def _auto_trading(user: dict) -> bool:
        # only an explicit False opts out
        return user.get("auto_trader_enabled") is not False

    @staticmethod
    def _copying(user: dict) -> bool:
        return bool(user.get("copy_lead_enabled"))

    async def _fan_out(self, users, signal: Signal, delay: float, wants) -> list[DispatchOutcome]:
        outcomes: list[DispatchOutcome] = []
        placed = 0
        for user_id, client in users:
            try:
                user = await self.store.get_user(user_id) or {}
                if not wants(user):
                    log.info("⏭️  %s skipped for signal %s", user_id, signal.signal_id)
                    outcomes.append(DispatchOutcome(user_id, skipped=True))
                    continue
                if placed:
                    await asyncio.sleep(delay)
                placed += 1
                result = await self.tracker.execute_trade(user_id, client, signal)
            except Exception as e:
                log.error("Signal %s failed for %s: %s", signal.signal_id, user_id, e, exc_info=True)
                result = TradeResult(success=False, error=str(e))
            outcomes.append(DispatchOutcome(user_id, result))

        ok = sum(1 for o in outcomes if o.result is not None and o.result.success)
        log.info("📊 Signal %s done: %d placed, %d failed, %d skipped", signal.signal_id, ok,
                 sum(1 for o in outcomes if o.result is not None and not o.result.success),
                 sum(1 for o in outcomes if o.skipped))
        return outcomes

    # ------------------------------------------------------------------
    # copy trading
    # ------------------------------------------------------------------
    def attach_lead(self, client: BrokerClient, lead_user_id: Optional[str] = None) -> None:
        if lead_user_id:
            self.lead_user_id = lead_user_id
        client.on("trade_opened", self.copy_lead_trade)
        log.info("👑 Copy trading attached to lead %s", self.lead_user_id)

    async def copy_lead_trade(self, event: PositionEvent) -> list[DispatchOutcome]:
        if event.direction is None:
            log.warning("Lead trade %s has no direction, not copied", event.trade_id)
            return []
        signal = Signal(
            asset=event.asset,
            direction=event.direction,
            duration=event.duration or self.cfg.default_duration,
            signal_id=f"COPY_{event.trade_id}",
        )
        users = [(uid, c) for uid, c in self.registry.connected() if uid != self.lead_user_id]
        log.info("👥 Copying lead trade %s (%s %s) to up to %d user(s)",
                 event.trade_id, signal.asset, signal.direction.label, len(users))
        return await self._fan_out(users, signal, self.cfg.copy_delay, self._copying)

import asyncio
from dataclasses import replace
from typing import Optional

import uvicorn

from autotrader.broker.client import BrokerClient
from autotrader.config import BotConfig
from autotrader.constants import AccountMode
from autotrader.services.api import create_app
from autotrader.services.charts import ChartRenderer
from autotrader.services.notifier import LogNotifier, Notifier
from autotrader.services.store import SqliteUserStore, UserStore
from autotrader.trading.dispatcher import SignalDispatcher
from autotrader.trading.journal import TradeJournal
from autotrader.trading.money_manager import Ladder, MoneyManager
from autotrader.trading.sessions import SessionRegistry
from autotrader.trading.tracker import TradeTracker
from autotrader.utils.logger import log

class TradingBot:
    def __init__(self, cfg: BotConfig, *, store: Optional[UserStore] = None,
                 notifier: Optional[Notifier] = None, registry: Optional[SessionRegistry] = None,
                 ladder: Optional[Ladder] = None):
        if cfg.lead_email and not cfg.lead_user_id:
            cfg = replace(cfg, lead_user_id="lead")
        self.cfg = cfg
        self.store = store if store is not None else SqliteUserStore(cfg.users_db_path)
        self.notifier = notifier if notifier is not None else LogNotifier()
        self.money_mgr = MoneyManager(cfg, ladder)
        self.journal = TradeJournal(cfg.db_path)
        self.charts = ChartRenderer(cfg.chart_dir) if cfg.charts_enabled else None
        self.registry = registry if registry is not None else SessionRegistry(cfg, self.notifier)
        self.tracker = TradeTracker(cfg, self.money_mgr, self.store, self.notifier,
                                    journal=self.journal, charts=self.charts)
        self.dispatcher = SignalDispatcher(cfg, self.registry, self.tracker, self.store, self.notifier)
        self._server: Optional[uvicorn.Server] = None
        self._api_task: Optional[asyncio.Task] = None
        self._stopped: Optional[asyncio.Event] = None
        self._running = False
        self._closed = False

    # ------------------------------------------------------------------
    async def start(self):
        """Main entry point. Returns after stop() or when the API server exits."""
        ladder = self.money_mgr.ladder
        log.info("═" * 60)
        log.info("  📡 SIGNAL AUTO-TRADER")
        log.info("  Ladder: %s (reset after %d losses)", "×".join(str(m) for m in ladder.multipliers), ladder.max_steps)
        log.info("  Signal API: %s", f"{self.cfg.api_host}:{self.cfg.api_port}" if self.cfg.signal_secret else "disabled")
        log.info("  Lead account: %s", self.cfg.lead_user_id or "none")
        log.info("═" * 60)

        self._stopped = asyncio.Event()
        self._running = True

        if self.cfg.lead_email and self.cfg.lead_password:
            client = await self.login_user(self.cfg.lead_user_id, self.cfg.lead_email, self.cfg.lead_password)
            if client is None:
                log.error("❌ Lead account login failed, copy trading disabled")

        waiters = [asyncio.create_task(self._stopped.wait())]
        if self.cfg.signal_secret:
            config = uvicorn.Config(create_app(self.cfg, self.dispatcher), host=self.cfg.api_host,
                                    port=self.cfg.api_port, log_level="warning")
            self._server = uvicorn.Server(config)
            self._api_task = asyncio.create_task(self._server.serve())
            waiters.append(self._api_task)
            log.info("🌐 Signal API listening on %s:%d", self.cfg.api_host, self.cfg.api_port)
        else:
            log.warning("No signal secret configured, signal API not started")

        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        waiters[0].cancel()

    async def stop(self):
        if self._closed:
            return
        self._closed = True
        self._running = False
        if self._stopped is not None:
            self._stopped.set()
        if self._server is not None:
            self._server.should_exit = True
        if self._api_task is not None:
            await asyncio.gather(self._api_task, return_exceptions=True)
        await self.tracker.cancel_all()
        await self.registry.close_all()
        self.journal.close()
        close = getattr(self.store, "close", None)
        if close is not None:
            close()
        log.info("Bot stopped.  %d trades journaled.", len(self.tracker.trades))

    # ------------------------------------------------------------------
    # user operations
    # ------------------------------------------------------------------
    async def login_user(self, user_id: str, email: str, password: str) -> Optional[BrokerClient]:
        user = await self.store.get_user(user_id) or {}
        try:
            mode = AccountMode(user.get("account_type") or AccountMode.REAL.value)
        except ValueError:
            mode = AccountMode.REAL
        client = await self.registry.login(user_id, email, password, mode)
        if client is None:
            return None
        await self.store.update_user(user_id, {"email": email, "account_type": mode.value})
        if user_id == self.cfg.lead_user_id:
            self.dispatcher.attach_lead(client, user_id)
        return client

    async def logout_user(self, user_id: str) -> bool:
        self.money_mgr.clear(user_id)
        return await self.registry.logout(user_id)

    async def switch_account(self, user_id: str, mode: AccountMode) -> bool:
        if not self.registry.switch_account(user_id, mode):
            return False
        await self.store.update_user(user_id, {"account_type": AccountMode(mode).value})
        return True

    async def set_trade_amount(self, user_id: str, amount: float):
        await self.store.update_user(user_id, {"trade_amount": amount})
        self.money_mgr.clear(user_id)

    async def set_martingale(self, user_id: str, enabled: bool):
        await self.store.update_user(user_id, {"martingale_enabled": enabled, "martingale": None})
        self.money_mgr.clear(user_id)

    async def reset_user(self, user_id: str):
        """Drop the ladder both in memory and in the stored record."""
        self.money_mgr.clear(user_id)
        await self.store.update_user(user_id, {"martingale": None})

    def martingale_status(self, user_id: str) -> dict:
        return self.money_mgr.status(user_id)

"""Persistent per-user connection to the brokerage.

One ``BrokerClient`` owns one socket. It logs in against the identity
endpoint, keeps the socket alive with heartbeats, reconnects forever with a
fixed delay until ``disconnect()`` is called, and turns the broker's single
push channel into awaitable request/reply exchanges via ``PendingRequests``.

Push frames are routed through a dispatch table keyed by message name;
observers registered with ``on()`` receive ``trade_opened``,
``trade_closed`` and ``balance_changed`` events.
"""
from __future__ import annotations

import asyncio
import inspect
import itertools
import time
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import aiohttp

from autotrader.broker import protocol as proto
from autotrader.broker.assets import AssetDirectory
from autotrader.broker.backoff import BackoffPolicy, FixedBackoff
from autotrader.broker.pending import PendingRequests
from autotrader.broker.protocol import Frame, PositionEvent
from autotrader.config import BotConfig
from autotrader.constants import AccountMode, ConnectionState, Direction
from autotrader.errors import AuthError, BalanceNotReady, PlacementRejected
from autotrader.utils.candle import Candle, parse_candles
from autotrader.utils.logger import log

EVENTS = ("trade_opened", "trade_closed", "balance_changed")

@dataclass
class BalanceSnapshot:
    amount: float = 0.0
    currency: str = "USD"
    balance_id: Any = None

@dataclass
class Placement:
    trade_id: str
    asset: str
    asset_id: int
    direction: Direction
    amount: float
    duration: int
    expiration: int
    data: dict = field(default_factory=dict, repr=False)

def _placement_reply(frame: Frame) -> bool:
    if frame.name == proto.OPTION_OPENED:
        return bool(frame.body.get("option_id"))
    return bool(frame.body.get("message"))

class BrokerClient:
    def __init__(
        self,
        email: str,
        password: str,
        cfg: Optional[BotConfig] = None,
        *,
        user_id: Optional[str] = None,
        assets: Optional[AssetDirectory] = None,
        backoff: Optional[BackoffPolicy] = None,
        session: Optional[aiohttp.ClientSession] = None,
        account_mode: AccountMode = AccountMode.REAL,
    ):
        self.email = email
        self.password = password
        self.user_id = user_id
        self.cfg = cfg or BotConfig()
        self.assets = assets if assets is not None else AssetDirectory(fallback_id=self.cfg.fallback_asset_id)
        self.backoff = backoff or FixedBackoff(self.cfg.reconnect_delay)
        self.ssid: Optional[str] = None
        self.state = ConnectionState.DISCONNECTED
        self.account_mode = account_mode
        self.balances: dict[AccountMode, BalanceSnapshot] = {m: BalanceSnapshot() for m in AccountMode}

        self._session = session
        self._owns_session = session is None
        self._ws = None
        self._pending = PendingRequests()
        self._request_ids = itertools.count(int(time.time() * 1000))
        self._placement_lock = asyncio.Lock()
        self._observers: dict[str, list[Callable]] = {name: [] for name in EVENTS}
        self._handlers: dict[str, Callable[[Frame], None]] = {
            proto.PROFILE: self._on_profile,
            proto.BALANCES: self._on_balances,
            proto.POSITION: self._on_position,
            proto.POSITION_CHANGED: self._on_position,
            proto.BALANCE_CHANGED: self._on_balance_changed,
            proto.HEARTBEAT: lambda frame: None,
        }
        self._supervisor: Optional[asyncio.Task] = None
        self._session_tasks: list[asyncio.Task] = []
        self._background: set[asyncio.Task] = set()
        self._state_event = asyncio.Event()
        self._closing = False

    # ------------------------------------------------------------------
    # state & balances
    # ------------------------------------------------------------------
    @property
    def connected(self) -> bool:
        return self.state in (ConnectionState.AUTHENTICATED, ConnectionState.SUBSCRIBED)

    @property
    def active_balance(self) -> BalanceSnapshot:
        return self.balances[self.account_mode]

    @property
    def balance(self) -> float:
        return self.active_balance.amount

    @property
    def currency(self) -> str:
        return self.active_balance.currency

    @property
    def balance_id(self):
        return self.active_balance.balance_id

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def switch_account(self, mode: AccountMode) -> BalanceSnapshot:
        self.account_mode = AccountMode(mode)
        snap = self.active_balance
        log.info("💳 %s switched to %s (%s %.2f, id %s)",
                 self.email, self.account_mode.value, snap.currency, snap.amount, snap.balance_id)
        return snap

    def _set_state(self, state: ConnectionState) -> None:
        if state is self.state:
            return
        log.debug("%s: %s → %s", self.email, self.state.value, state.value)
        self.state = state
        event, self._state_event = self._state_event, asyncio.Event()
        event.set()

    async def wait_until(self, *states: ConnectionState, timeout: Optional[float] = None) -> bool:
        async def _wait():
            while self.state not in states:
                await self._state_event.wait()
        try:
            await asyncio.wait_for(_wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    # ------------------------------------------------------------------
    # observers
    # ------------------------------------------------------------------
    def on(self, event: str, callback: Callable) -> None:
        if event not in self._observers:
            raise ValueError(f"unknown event {event!r}")
        self._observers[event].append(callback)

    def _emit(self, event: str, payload) -> None:
        for callback in list(self._observers[event]):
            try:
                result = callback(payload)
            except Exception as e:
                log.error("%s observer failed for %s: %s", event, self.email, e, exc_info=True)
                continue
            if inspect.isawaitable(result):
                self._spawn(result)

    def _spawn(self, aw: Awaitable) -> asyncio.Task:
        task = asyncio.ensure_future(aw)
        self._background.add(task)
        task.add_done_callback(self._background_done)
        return task

    def _background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.error("Background task failed for %s: %s", self.email, task.exception())

    # ------------------------------------------------------------------
    # authentication
    # ------------------------------------------------------------------
    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def authenticate(self) -> str:
        log.info("🔐 Logging in %s …", self.user_id or self.email)
        try:
            async with self._get_session().post(
                self.cfg.auth_url,
                json={"email": self.email, "password": self.password},
                timeout=aiohttp.ClientTimeout(total=self.cfg.auth_timeout),
            ) as resp:
                data = await resp.json(content_type=None)
                status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise AuthError(f"identity endpoint unreachable: {e}") from e

        data = data if isinstance(data, dict) else {}
        ssid = (data.get("data") or {}).get("ssid") if isinstance(data.get("data"), dict) else None
        if status != 200 or not ssid:
            reason = data.get("message") or data.get("errors") or f"HTTP {status}"
            raise AuthError(f"login rejected: {reason}")

        self.ssid = ssid
        log.info("✅ Login successful for %s", self.email)
        return ssid

    async def login(self) -> bool:
        try:
            await self.authenticate()
            return True
        except AuthError as e:
            log.error("❌ Login failed for %s: %s", self.email, e)
            return False

    # ------------------------------------------------------------------
    # connection supervision
    # ------------------------------------------------------------------
    async def connect(self) -> None:
        if not self.ssid:
            raise AuthError("no session token, authenticate() first")
        if self._supervisor is not None and not self._supervisor.done():
            return
        self._closing = False
        self._supervisor = asyncio.create_task(self._supervise(), name=f"broker:{self.email}")

    async def _supervise(self) -> None:
        attempt = 0
        try:
            while not self._closing:
                self._set_state(ConnectionState.CONNECTING)
                log.info("🔄 Connecting WebSocket for %s …", self.email)
                try:
                    ws = await self._get_session().ws_connect(f"{self.cfg.ws_url}?ssid={self.ssid}")
                except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
                    log.error("❌ WebSocket error for %s: %s", self.email, e)
                else:
                    attempt = 0
                    try:
                        await self._run_session(ws)
                    except (aiohttp.ClientError, OSError) as e:
                        log.error("❌ WebSocket error for %s: %s", self.email, e)
                    finally:
                        await self._teardown_session(ws)
                    log.info("🔌 WebSocket closed for %s", self.email)

                if self._closing:
                    break
                self._set_state(ConnectionState.RECONNECTING)
                delay = self.backoff.next_delay(attempt)
                attempt += 1
                log.info("🔄 Reconnecting %s in %.1fs …", self.email, delay)
                await asyncio.sleep(delay)
        finally:
            self._set_state(ConnectionState.DISCONNECTED)

    async def _run_session(self, ws) -> None:
        self._ws = ws
        await self._send(proto.identity_frame(self.ssid))
        self._set_state(ConnectionState.AUTHENTICATED)
        log.info("✅ WebSocket connected for %s", self.email)
        self._session_tasks = [
            asyncio.create_task(self._heartbeat_loop()),
            asyncio.create_task(self._bootstrap()),
        ]
        async for message in ws:
            if message.type == aiohttp.WSMsgType.TEXT:
                self._on_frame(message.data)
            elif message.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING,
                                  aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                break

    async def _teardown_session(self, ws) -> None:
        tasks, self._session_tasks = self._session_tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._ws = None
        dropped = self._pending.invalidate()
        if dropped:
            log.warning("⚠️ %d pending request(s) for %s dropped with the socket", dropped, self.email)
        if not ws.closed:
            with suppress(aiohttp.ClientError, OSError):
                await ws.close()

    async def _bootstrap(self) -> None:
        await self.refresh_profile()
        await asyncio.sleep(self.cfg.balances_delay)
        await self.send_request(proto.balances_request())
        await asyncio.sleep(max(0.0, self.cfg.subscribe_delay - self.cfg.balances_delay))
        await self._send(proto.subscribe_message(proto.POSITION_CHANGED))
        self._set_state(ConnectionState.SUBSCRIBED)
        log.info("👂 Listening for trades for %s", self.email)

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cfg.heartbeat_interval)
            await self._send(proto.heartbeat_frame(int(time.time() * 1000)))

    async def disconnect(self) -> None:
        self._closing = True
        ws = self._ws
        if ws is not None and not ws.closed:
            with suppress(aiohttp.ClientError, OSError):
                await ws.close()
        if self._supervisor is not None:
            self._supervisor.cancel()
            with suppress(asyncio.CancelledError):
                await self._supervisor
            self._supervisor = None
        self._pending.invalidate()
        self._set_state(ConnectionState.DISCONNECTED)
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        log.info("🔌 %s disconnected", self.email)

    # ------------------------------------------------------------------
    # outbound
    # ------------------------------------------------------------------
    def next_request_id(self) -> str:
        return str(next(self._request_ids))

    async def _send(self, data: dict) -> bool:
        ws = self._ws
        if ws is None or ws.closed:
            log.debug("Socket for %s not open, dropped %s", self.email, data.get("name"))
            return False
        try:
            await ws.send_str(proto.encode_frame(data))
            return True
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
            log.debug("Send failed for %s: %s", self.email, e)
            return False

    async def send_request(self, msg: dict) -> str:
        """Fire-and-forget `sendMessage`; the reply is consumed by the push handlers."""
        request_id = self.next_request_id()
        await self._send(proto.send_message(request_id, msg))
        return request_id

    async def request(self, msg: dict, *, expect, timeout: float,
                      predicate: Optional[Callable[[Frame], bool]] = None, what: str = "") -> Frame:
        request_id = self.next_request_id()
        future = self._pending.register(request_id, expect, predicate)
        if not await self._send(proto.send_message(request_id, msg)):
            log.warning("⚠️ %s not sent for %s (socket down), waiting out the deadline",
                        what or msg.get("name"), self.email)
        return await self._pending.wait(request_id, future, timeout, what or msg.get("name", ""))

    async def refresh_profile(self) -> str:
        return await self.send_request(proto.profile_request())

    async def place_trade(self, asset: Optional[str], direction, amount: float, duration: int) -> Placement:
        direction = Direction.parse(direction)
        asset = asset or self.cfg.default_asset
        asset_id = self.assets.id_for(asset)

        if self.balance_id is None:
            log.warning("❌ No balance id yet for %s, refreshing profile …", self.email)
            await self.refresh_profile()
            await asyncio.sleep(self.cfg.balance_retry_delay)
            if self.balance_id is None:
                raise BalanceNotReady()

        async with self._placement_lock:
            expiration = int(time.time()) + duration * 60
            msg = proto.open_option_request(
                asset_id, direction, amount, expiration, duration, self.balance_id,
                option_type=self.cfg.option_type, option_type_id=self.cfg.option_type_id,
            )
            log.info("📤 Placing %s %s %s %s for %d min (asset id %s, %s)",
                     direction.value.upper(), asset, self.currency, amount, duration,
                     asset_id, self.account_mode.value)
            frame = await self.request(
                msg,
                expect=(proto.OPTION_OPENED, proto.OPTION),
                timeout=self.cfg.placement_timeout,
                predicate=_placement_reply,
                what="option-opened",
            )

        if frame.name != proto.OPTION_OPENED:
            reason = str(frame.body.get("message"))
            log.warning("❌ Trade rejected for %s: %s", self.email, reason)
            raise PlacementRejected(reason)

        trade_id = str(frame.body["option_id"])
        log.info("✅ Trade opened for %s: id %s", self.email, trade_id)
        return Placement(
            trade_id=trade_id,
            asset=asset,
            asset_id=asset_id,
            direction=direction,
            amount=amount,
            duration=duration,
            expiration=expiration,
            data=frame.body,
        )

    async def get_candles(self, instrument_id: int, interval: int, count: int, end_time: int) -> list[Candle]:
        frame = await self.request(
            proto.candles_request(instrument_id, interval, count, end_time),
            expect=(proto.CANDLES,),
            timeout=self.cfg.candles_timeout,
            what="candles",
        )
        return parse_candles(frame.msg)

    def watch_settlement(self, trade_id, timeout: float) -> Awaitable[PositionEvent]:
        """Register a close listener for `trade_id` now; await the result to get the event.

        The listener lives on the current socket: a reconnect drops it and the
        awaitable then runs into its deadline.
        """
        key = f"trade:{trade_id}"

        def _closed(frame: Frame) -> bool:
            event = proto.parse_position(frame.body, self.assets)
            return event.is_closed and event.matches(trade_id)

        future = self._pending.register(key, (proto.POSITION_CHANGED, proto.POSITION), _closed, correlated=False)

        async def _wait() -> PositionEvent:
            frame = await self._pending.wait(key, future, timeout, f"settlement of {trade_id}")
            return proto.parse_position(frame.body, self.assets)

        return _wait()

    # ------------------------------------------------------------------
    # inbound
    # ------------------------------------------------------------------
    def _on_frame(self, raw) -> None:
        frame = proto.decode_frame(raw)
        if frame is None:
            log.debug("Dropped malformed frame for %s", self.email)
            return
        self._pending.resolve(frame)
        handler = self._handlers.get(frame.name)
        if handler is None:
            return
        try:
            handler(frame)
        except Exception as e:
            log.debug("Error handling %s frame for %s: %s", frame.name, self.email, e)

    def _apply_balances(self, entries) -> None:
        for entry in entries or []:
            if not isinstance(entry, dict):
                continue
            for mode in AccountMode:
                if entry.get("type") == mode.balance_type:
                    prev = self.balances[mode]
                    self.balances[mode] = BalanceSnapshot(
                        amount=float(entry.get("amount") or 0),
                        currency=entry.get("currency") or prev.currency,
                        balance_id=entry.get("id", prev.balance_id),
                    )

    def _on_profile(self, frame: Frame) -> None:
        self._apply_balances(frame.body.get("balances"))
        real, practice = self.balances[AccountMode.REAL], self.balances[AccountMode.PRACTICE]
        log.info("💰 %s REAL %s %.2f | PRACTICE %s %.2f | active %s (id %s)",
                 self.email, real.currency, real.amount, practice.currency, practice.amount,
                 self.account_mode.value, self.balance_id)
        self._emit("balance_changed", {
            "amount": self.balance,
            "currency": self.currency,
            "type": self.account_mode.value,
        })

    def _on_balances(self, frame: Frame) -> None:
        self._apply_balances(frame.msg if isinstance(frame.msg, list) else [])

    def _on_balance_changed(self, frame: Frame) -> None:
        self._spawn(self.refresh_profile())

    def _on_position(self, frame: Frame) -> None:
        event = proto.parse_position(frame.body, self.assets)
        if event.is_open:
            log.info("🟢 TRADE OPENED for %s: %s %s %s%.2f",
                     self.email, event.asset, event.direction.value if event.direction else "?",
                     self.currency, event.investment)
            self._emit("trade_opened", event)
        elif event.is_closed:
            log.info("%s TRADE CLOSED for %s: %s profit %s%.2f",
                     "✅" if event.is_win else "❌", self.email, event.asset, self.currency, event.profit)
            self._emit("trade_closed", event)
            self._spawn(self.refresh_profile())

import asyncio
import json
import socket
import sys
from collections import defaultdict, namedtuple
from pathlib import Path
from typing import Generator

import aiohttp
import pytest

# Ensure the project root is on sys.path so `import autotrader` works in tests.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from autotrader.broker.assets import AssetDirectory
from autotrader.broker.client import BrokerClient, Placement
from autotrader.broker.protocol import PositionEvent
from autotrader.config import BotConfig
from autotrader.constants import ConnectionState, Direction
from autotrader.errors import RequestTimeout


class NetworkAccessError(RuntimeError):
    """Raised when a test attempts to open an outbound socket."""


@pytest.fixture(scope="session", autouse=True)
def _block_outbound_sockets() -> Generator[None, None, None]:
    """Broker traffic in tests goes through fakes only."""
    original_create_connection = socket.create_connection
    original_connect = socket.socket.connect

    def guarded_create_connection(*args, **kwargs):
        raise NetworkAccessError(
            f"Outbound network disabled during tests: attempted create_connection to {args[0]}"
        )

    # asyncio transports (aiohttp included) open sockets without create_connection
    def guarded_connect(sock, address):
        if sock.family in (socket.AF_INET, socket.AF_INET6):
            raise NetworkAccessError(f"Outbound network disabled during tests: attempted connect to {address}")
        return original_connect(sock, address)

    setattr(socket, "create_connection", guarded_create_connection)
    setattr(socket.socket, "connect", guarded_connect)
    try:
        yield
    finally:
        setattr(socket, "create_connection", original_create_connection)
        setattr(socket.socket, "connect", original_connect)


def fast_config(**overrides) -> BotConfig:
    """Protocol timings shrunk to milliseconds."""
    values = dict(
        heartbeat_interval=5.0,
        reconnect_delay=0.01,
        balances_delay=0.01,
        subscribe_delay=0.02,
        balance_retry_delay=0.01,
        placement_timeout=0.2,
        candles_timeout=0.2,
        settlement_grace=0.0,
        user_delay=0.01,
        copy_delay=0.01,
        charts_enabled=False,
    )
    values.update(overrides)
    return BotConfig(**values)


@pytest.fixture
def cfg() -> BotConfig:
    return fast_config()


# ---------------------------------------------------------------------------
# fake aiohttp session / websocket
# ---------------------------------------------------------------------------

WSMsg = namedtuple("WSMsg", "type data")


class FakeWS:
    def __init__(self):
        self.sent: list[dict] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send_str(self, data: str):
        if self.closed:
            raise ConnectionResetError("socket closed")
        self.sent.append(json.loads(data))

    def push(self, frame: dict):
        self._inbox.put_nowait(WSMsg(aiohttp.WSMsgType.TEXT, json.dumps(frame)))

    def push_raw(self, data: str):
        self._inbox.put_nowait(WSMsg(aiohttp.WSMsgType.TEXT, data))

    def drop(self):
        """Server side hang-up."""
        self._inbox.put_nowait(WSMsg(aiohttp.WSMsgType.CLOSED, None))

    async def close(self):
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(WSMsg(aiohttp.WSMsgType.CLOSED, None))

    def __aiter__(self):
        return self

    async def __anext__(self):
        return await self._inbox.get()

    # helpers for assertions
    def requests(self, name: str | None = None) -> list[dict]:
        out = [f for f in self.sent if f.get("name") == "sendMessage"]
        if name is not None:
            out = [f for f in out if f["msg"].get("name") == name]
        return out


class FakeResponse:
    def __init__(self, status: int, payload):
        self.status = status
        self._payload = payload

    async def json(self, content_type=None):
        return self._payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    def __init__(self, ssid: str = "abc", status: int = 200, payload=None, post_error=None):
        self.status = status
        self.payload = payload if payload is not None else {"data": {"ssid": ssid}}
        self.post_error = post_error
        self.posts: list[tuple] = []
        self.ws_urls: list[str] = []
        self.sockets: list[FakeWS] = []
        self.fail_connects = 0
        self.closed = False

    def post(self, url, json=None, **kwargs):
        self.posts.append((url, json))
        if self.post_error is not None:
            raise self.post_error
        return FakeResponse(self.status, self.payload)

    async def ws_connect(self, url, **kwargs):
        self.ws_urls.append(url)
        if self.fail_connects:
            self.fail_connects -= 1
            raise aiohttp.ClientConnectionError("connection refused")
        ws = FakeWS()
        self.sockets.append(ws)
        return ws

    async def close(self):
        self.closed = True


PROFILE = {
    "name": "profile",
    "msg": {
        "balances": [
            {"id": 111, "type": 1, "amount": 50000, "currency": "NGN"},
            {"id": 444, "type": 4, "amount": 10000, "currency": "USD"},
        ]
    },
}


async def connected_client(cfg: BotConfig, session: FakeSession, *, profile: bool = True, **kwargs):
    client = BrokerClient("trader@example.com", "secret", cfg, session=session, user_id="u1", **kwargs)
    assert await client.login()
    await client.connect()
    assert await client.wait_until(ConnectionState.SUBSCRIBED, timeout=1.0)
    ws = session.sockets[-1]
    if profile:
        ws.push(PROFILE)
        await asyncio.sleep(0.01)
    return client, ws


async def wait_for_request(ws: FakeWS, name: str, count: int = 1, timeout: float = 1.0) -> dict:
    """The `count`-th sendMessage frame with inner name `name`."""
    async def _poll():
        while len(ws.requests(name)) < count:
            await asyncio.sleep(0.002)
        return ws.requests(name)[count - 1]
    return await asyncio.wait_for(_poll(), timeout)


# ---------------------------------------------------------------------------
# fake broker client for engine tests
# ---------------------------------------------------------------------------

class FakeBroker:
    def __init__(self, balance: float = 50000.0, currency: str = "NGN", connected: bool = True,
                 balance_id=111):
        self.balance = balance
        self.currency = currency
        self.balance_id = balance_id
        self.connected = connected
        self.assets = AssetDirectory()
        self.placed: list[dict] = []
        self.fail_with: Exception | None = None
        self.watches: dict[str, asyncio.Future] = {}
        self.watch_timeouts: dict[str, float] = {}
        self.candles = []
        self.candle_requests: list[tuple] = []
        self.observers = defaultdict(list)
        self._next_id = 1000

    def on(self, event, callback):
        self.observers[event].append(callback)

    async def place_trade(self, asset, direction, amount, duration):
        if self.fail_with is not None:
            raise self.fail_with
        self._next_id += 1
        self.placed.append({"asset": asset, "direction": direction, "amount": amount, "duration": duration})
        return Placement(
            trade_id=str(self._next_id),
            asset=asset,
            asset_id=self.assets.id_for(asset),
            direction=Direction.parse(direction),
            amount=amount,
            duration=duration,
            expiration=0,
        )

    def watch_settlement(self, trade_id, timeout):
        future = asyncio.get_running_loop().create_future()
        self.watches[trade_id] = future
        self.watch_timeouts[trade_id] = timeout

        async def _wait():
            try:
                return await asyncio.wait_for(asyncio.shield(future), timeout)
            except asyncio.TimeoutError:
                raise RequestTimeout(f"settlement of {trade_id}", timeout) from None
        return _wait()

    def settle(self, trade_id: str, win: bool, investment: float, payout: float = 0.0):
        profit = (payout - investment if payout > investment else payout) if win else -investment
        event = PositionEvent(
            trade_id=trade_id, status="closed", asset="EURUSD", asset_id=1861,
            direction=Direction.CALL, investment=investment, is_win=win, profit=profit, payout=payout,
            entry_price=1.1, exit_price=1.2, open_time=1_700_000_000_000, close_time=1_700_000_060_000,
            raw={"id": trade_id},
        )
        self.watches[trade_id].set_result(event)
        return event

    @property
    def last_trade_id(self) -> str:
        return str(self._next_id)

    async def get_candles(self, instrument_id, interval, count, end_time):
        self.candle_requests.append((instrument_id, interval, count, end_time))
        return self.candles


class RecordingNotifier:
    def __init__(self):
        self.opened = []
        self.closed = []
        self.broadcasts = []
        self.signals = []

    async def trade_opened(self, user_id, event, currency):
        self.opened.append((user_id, event, currency))

    async def trade_closed(self, user_id, trade, stats, ladder=None, chart_path=None):
        self.closed.append({"user_id": user_id, "trade": trade, "stats": stats, "ladder": ladder,
                            "chart": chart_path})

    async def broadcast(self, channels, text, chart_path=None):
        self.broadcasts.append((channels, text, chart_path))

    async def signal_received(self, signal):
        self.signals.append(signal)

"""Wire format of the brokerage socket.

Every frame is a JSON object ``{"name": ..., "request_id": ..., "msg": ...}``.
Outbound requests are wrapped in ``sendMessage`` / ``subscribeMessage``
envelopes; replies and pushes share the ``name`` discriminant, so one
inbound type covers both and the client dispatches on ``name``.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Optional

from autotrader.broker.assets import AssetDirectory
from autotrader.constants import Direction

# inbound names
PROFILE = "profile"
BALANCES = "balances"
POSITION = "position"
POSITION_CHANGED = "position-changed"
BALANCE_CHANGED = "balance-changed"
OPTION_OPENED = "option-opened"
OPTION = "option"                      # rejection reply
CANDLES = "candles"
HEARTBEAT = "heartbeat"

@dataclass(frozen=True)
class Frame:
    name: str
    msg: Any = None
    request_id: Optional[str] = None

    @property
    def body(self) -> dict:
        return self.msg if isinstance(self.msg, dict) else {}

def decode_frame(raw) -> Optional[Frame]:
    """Parse one text frame; malformed input yields None instead of raising."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict) or not isinstance(data.get("name"), str):
        return None
    rid = data.get("request_id")
    return Frame(
        name=data["name"],
        msg=data.get("msg"),
        request_id=None if rid in (None, "") else str(rid),
    )

def encode_frame(data: dict) -> str:
    return json.dumps(data, separators=(",", ":"))

def send_message(request_id: str, msg: dict) -> dict:
    return {"name": "sendMessage", "request_id": request_id, "msg": msg}

def subscribe_message(name: str, version: str = "2.0", params: dict | None = None) -> dict:
    return {"name": "subscribeMessage", "msg": {"name": name, "version": version, "params": params or {}}}

def identity_frame(ssid: str) -> dict:
    return {"name": "ssid", "msg": ssid}

def heartbeat_frame(now_ms: int) -> dict:
    return {"name": HEARTBEAT, "msg": now_ms}

def profile_request() -> dict:
    return {"name": "get-profile", "version": "1.0"}

def balances_request() -> dict:
    return {"name": "get-balances", "version": "1.0"}

def candles_request(asset_id: int, interval: int, count: int, end_time: int) -> dict:
    return {
        "name": "get-candles",
        "version": "2.0",
        "body": {
            "active_id": asset_id,
            "size": interval,
            "from": end_time - count * interval,
            "to": end_time,
            "count": count,
        },
    }

def open_option_request(asset_id: int, direction: Direction, amount: float, expiration: int,
                        duration_minutes: int, balance_id, option_type: str = "blitz",
                        option_type_id: int = 12) -> dict:
    return {
        "name": "binary-options.open-option",
        "version": "1.0",
        "body": {
            "active_id": asset_id,
            "option_type_id": option_type_id,
            "option_type": option_type,
            "direction": direction.value,
            "expired": expiration,
            "price": amount,
            "user_balance_id": balance_id,
            "expiration_size": duration_minutes * 60,
        },
    }

# ---------------------------------------------------------------------------
# position pushes
# ---------------------------------------------------------------------------

@dataclass
class PositionEvent:
    """One `position` / `position-changed` push, normalised."""

    trade_id: Optional[str]
    status: str
    asset: str
    asset_id: Any
    direction: Optional[Direction]
    investment: float
    duration: Optional[int] = None          # minutes, when derivable
    open_time: Optional[float] = None       # ms
    close_time: Optional[float] = None      # ms
    is_win: bool = False
    profit: float = 0.0
    payout: float = 0.0                     # gross or net figure as reported on a win
    entry_price: float = 0.0
    exit_price: float = 0.0
    currency: Optional[str] = None
    raw: dict = field(default_factory=dict, repr=False)

    @property
    def is_open(self) -> bool:
        return self.status == "open"

    @property
    def is_closed(self) -> bool:
        return self.status == "closed"

    def profit_on(self, stake: float) -> float:
        """Net result against `stake`, for pushes that omit the invested amount."""
        return net_profit(self.is_win, self.payout, stake)

    def matches(self, trade_id) -> bool:
        ids = {str(v) for v in (self.raw.get("id"), self.raw.get("external_id")) if v is not None}
        return str(trade_id) in ids

def _num(value, default: float = 0.0) -> float:
    try:
        return float(value) if value not in (None, "") else default
    except (TypeError, ValueError):
        return default

def net_profit(is_win: bool, payout: float, investment: float) -> float:
    # winners report the gross payout; subtract the stake when it is included
    if is_win:
        return payout - investment if payout > investment else payout
    return -investment

def parse_position(msg: dict, assets: AssetDirectory) -> PositionEvent:
    raw_event = msg.get("raw_event") or {}
    asset_id = msg.get("active_id", msg.get("instrument_id"))

    direction_raw = raw_event.get("direction") or msg.get("direction")
    direction = Direction.parse(direction_raw) if direction_raw in ("call", "buy", "put", "sell") else None

    duration = None
    if raw_event.get("expiration_time") and raw_event.get("open_time"):
        duration = round((_num(raw_event["expiration_time"]) - _num(raw_event["open_time"])) / 60)

    investment = _num(msg.get("invest") or raw_event.get("amount"))
    is_win = raw_event.get("result") == "win" or msg.get("close_reason") == "win"

    payout = _num(msg.get("close_profit") or raw_event.get("profit_amount")) if is_win else 0.0

    trade_id = msg.get("id") or msg.get("external_id")
    return PositionEvent(
        trade_id=None if trade_id is None else str(trade_id),
        status=str(msg.get("status") or ""),
        asset=assets.resolve(asset_id),
        asset_id=asset_id,
        direction=direction,
        investment=investment,
        duration=duration,
        open_time=msg.get("open_time") or raw_event.get("open_time_millisecond"),
        close_time=msg.get("close_time"),
        is_win=is_win,
        profit=net_profit(is_win, payout, investment),
        payout=payout,
        entry_price=_num(msg.get("open_quote") or raw_event.get("value")),
        exit_price=_num(msg.get("close_quote") or raw_event.get("expiration_value")),
        currency=msg.get("currency"),
        raw=msg,
    )

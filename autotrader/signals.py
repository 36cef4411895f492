import random
import string
import time
from dataclasses import dataclass, field
from typing import Optional

from autotrader.constants import Direction
from autotrader.errors import InvalidSignal

def new_signal_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"SIG_{int(time.time() * 1000)}_{suffix}"

@dataclass(frozen=True)
class Signal:
    asset: str
    direction: Direction
    duration: int = 5                    # minutes
    signal_id: str = field(default_factory=new_signal_id)
    price: Optional[float] = None

    @classmethod
    def from_payload(cls, payload: dict, default_duration: int = 5) -> "Signal":
        """Accepts `{ticker, signal, price?, time}` or `{asset, direction, price?, durationSeconds}`."""
        if not isinstance(payload, dict):
            raise InvalidSignal("signal payload must be an object")
        asset = payload.get("ticker") or payload.get("asset")
        raw_direction = payload.get("signal") or payload.get("direction")
        if not asset or not raw_direction:
            raise InvalidSignal("Missing required fields: ticker, signal")

        seconds = payload.get("time", payload.get("durationSeconds"))
        try:
            minutes = int(float(seconds) // 60) if seconds not in (None, "") else 0
        except (TypeError, ValueError):
            raise InvalidSignal(f"invalid duration {seconds!r}") from None

        price = payload.get("price")
        try:
            price = float(price) if price not in (None, "") else None
        except (TypeError, ValueError):
            raise InvalidSignal(f"invalid price {price!r}") from None

        return cls(
            asset=str(asset).upper(),
            direction=Direction.parse(raw_direction),
            duration=minutes if minutes > 0 else default_duration,
            signal_id=payload.get("signal_id") or new_signal_id(),
            price=price,
        )

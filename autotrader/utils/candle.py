from dataclasses import dataclass

import numpy as np

@dataclass
class Candle:
    timestamp: float
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

def parse_candle(raw) -> Candle:
    """Flexible candle parser: handles broker dicts (from/min/max), plain dicts or lists."""
    if isinstance(raw, dict):
        return Candle(
            timestamp=float(raw.get("from", raw.get("time", raw.get("timestamp", 0))) or 0),
            open=float(raw.get("open", 0) or 0),
            high=float(raw.get("max", raw.get("high", 0)) or 0),
            low=float(raw.get("min", raw.get("low", 0)) or 0),
            close=float(raw.get("close", 0) or 0),
            volume=float(raw.get("volume", 0) or 0),
        )
    elif isinstance(raw, (list, tuple)):
        return Candle(
            timestamp=float(raw[0]),
            open=float(raw[1]),
            high=float(raw[2]),
            low=float(raw[3]),
            close=float(raw[4]),
            volume=float(raw[5]) if len(raw) > 5 else 0,
        )
    raise TypeError(f"unsupported candle payload: {type(raw).__name__}")

def parse_candles(payload) -> list[Candle]:
    """`candles` replies carry either a bare list or `{"candles": [...]}`."""
    if isinstance(payload, dict):
        payload = payload.get("candles") or []
    if not isinstance(payload, (list, tuple)):
        return []
    out = []
    for raw in payload:
        try:
            out.append(parse_candle(raw))
        except (TypeError, ValueError, IndexError):
            continue
    return out

def to_arrays(candles: list[Candle]) -> dict[str, np.ndarray]:
    """Column arrays (t, o, h, l, c) for plotting."""
    if not candles:
        empty = np.array([], dtype=np.float64)
        return {"t": empty, "o": empty, "h": empty, "l": empty, "c": empty}
    data = np.array(
        [[c.timestamp, c.open, c.high, c.low, c.close] for c in candles],
        dtype=np.float64,
    )
    return {"t": data[:, 0], "o": data[:, 1], "h": data[:, 2], "l": data[:, 3], "c": data[:, 4]}

import numpy as np
import pytest

from autotrader.utils.candle import parse_candle, parse_candles, to_arrays


def test_parse_broker_candle():
    c = parse_candle({"from": 100, "open": 1.0, "max": 1.3, "min": 0.9, "close": 1.2, "volume": 7})
    assert (c.timestamp, c.high, c.low, c.volume) == (100, 1.3, 0.9, 7)


def test_parse_list_candle_and_bad_rows():
    candles = parse_candles([[1, 1.0, 2.0, 0.5, 1.5], "junk", [2]])
    assert len(candles) == 1
    assert candles[0].high == 2.0
    assert parse_candles({"candles": None}) == []
    assert parse_candles(None) == []
    with pytest.raises(TypeError):
        parse_candle("junk")


def test_to_arrays():
    arrays = to_arrays(parse_candles([[1, 1.0, 2.0, 0.5, 1.5], [2, 1.5, 2.5, 1.0, 2.0]]))
    np.testing.assert_array_equal(arrays["c"], np.array([1.5, 2.0]))
    assert to_arrays([])["t"].size == 0

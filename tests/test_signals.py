import pytest

from autotrader.constants import Direction
from autotrader.errors import InvalidSignal
from autotrader.signals import Signal, new_signal_id


def test_ticker_payload_normalisation():
    signal = Signal.from_payload({"ticker": "EURUSD", "signal": "buy", "time": 300})
    assert signal.direction is Direction.CALL
    assert signal.duration == 5
    assert signal.asset == "EURUSD"
    assert signal.signal_id.startswith("SIG_")


def test_asset_direction_payload():
    signal = Signal.from_payload({"asset": "gbpusd", "direction": "SELL", "durationSeconds": 120, "price": "1.2"})
    assert signal.asset == "GBPUSD"
    assert signal.direction is Direction.PUT
    assert signal.duration == 2
    assert signal.price == 1.2


@pytest.mark.parametrize("seconds", [None, 0, -60, 30])
def test_non_positive_duration_defaults_to_five(seconds):
    payload = {"ticker": "EURUSD", "signal": "call"}
    if seconds is not None:
        payload["time"] = seconds
    assert Signal.from_payload(payload).duration == 5


def test_partial_minutes_are_floored():
    assert Signal.from_payload({"ticker": "EURUSD", "signal": "put", "time": 179}).duration == 2


@pytest.mark.parametrize("payload", [{}, {"ticker": "EURUSD"}, {"signal": "buy"}, "nope"])
def test_missing_fields_are_rejected(payload):
    with pytest.raises(InvalidSignal):
        Signal.from_payload(payload)


def test_invalid_duration_is_rejected():
    with pytest.raises(ValueError):
        Signal.from_payload({"ticker": "EURUSD", "signal": "buy", "time": "soon"})


def test_signal_ids_are_unique():
    assert len({new_signal_id() for _ in range(50)}) == 50

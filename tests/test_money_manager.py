import itertools

import pytest

from autotrader.config import BotConfig
from autotrader.constants import Outcome
from autotrader.trading.money_manager import (
    FRONT_LOADED_LADDER,
    STANDARD_LADDER,
    Ladder,
    MoneyManager,
    MoneyState,
    apply_outcome,
    rebase_on_config,
    rebase_on_growth,
)

LADDERS = [STANDARD_LADDER, FRONT_LOADED_LADDER]


@pytest.mark.parametrize("ladder", LADDERS)
def test_max_steps_losses_equal_a_win_reset(ladder):
    state = MoneyState.fresh(1500, ladder, baseline=50000)
    for _ in range(ladder.max_steps):
        state = apply_outcome(state, Outcome.LOSS, ladder)
    after_win = apply_outcome(MoneyState.fresh(1500, ladder, baseline=50000), Outcome.WIN, ladder)
    assert state == after_win
    assert (state.step, state.losses, state.current_amount) == (0, 0, 1500)


@pytest.mark.parametrize("ladder", LADDERS)
def test_amount_always_matches_ladder_rung(ladder):
    for seq in itertools.product([Outcome.WIN, Outcome.LOSS], repeat=9):
        state = MoneyState.fresh(100, ladder)
        for outcome in seq:
            state = apply_outcome(state, outcome, ladder)
            assert 0 <= state.step < len(ladder.multipliers)
            assert state.current_amount == 100 * ladder.multipliers[state.step]


@pytest.mark.parametrize("losses", range(0, 6))
def test_win_restores_base_after_any_loss_run(losses):
    state = MoneyState.fresh(1500, STANDARD_LADDER)
    for _ in range(losses):
        state = apply_outcome(state, Outcome.LOSS, STANDARD_LADDER)
    state = apply_outcome(state, Outcome.WIN, STANDARD_LADDER)
    assert (state.step, state.losses, state.current_amount) == (0, 0, 1500)


def test_front_loaded_ladder_holds_base_before_escalating():
    ladder = FRONT_LOADED_LADDER
    state = MoneyState.fresh(10, ladder)
    amounts = []
    for _ in range(5):
        state = apply_outcome(state, Outcome.LOSS, ladder)
        amounts.append(state.current_amount)
    assert amounts == [10, 10, 20, 40, 80]


def test_step_is_capped_at_last_rung():
    ladder = Ladder((1, 2, 4), max_steps=6)
    state = MoneyState.fresh(10, ladder)
    for _ in range(5):
        state = apply_outcome(state, Outcome.LOSS, ladder)
    assert state.step == 2
    assert state.losses == 5
    assert state.current_amount == 40


def test_growth_rebase_raises_base_by_ten_percent():
    state = MoneyState.fresh(1500, STANDARD_LADDER, baseline=10000)
    state = apply_outcome(state, Outcome.LOSS, STANDARD_LADDER)
    new, grown = rebase_on_growth(state, 11000, STANDARD_LADDER)
    assert grown
    assert new.base_amount == 1650
    assert new.baseline == 11000
    assert (new.step, new.losses, new.current_amount) == (0, 0, 1650)


def test_growth_below_threshold_is_ignored():
    state = MoneyState.fresh(1500, STANDARD_LADDER, baseline=10000)
    new, grown = rebase_on_growth(state, 10999, STANDARD_LADDER)
    assert not grown
    assert new is state


def test_growth_rebase_rounds_half_up():
    state = MoneyState.fresh(15, STANDARD_LADDER, baseline=100)
    new, _ = rebase_on_growth(state, 200, STANDARD_LADDER)
    assert new.base_amount == 17


def test_config_change_resets_ladder():
    state = MoneyState.fresh(1500, STANDARD_LADDER)
    state = apply_outcome(state, Outcome.LOSS, STANDARD_LADDER)
    same, changed = rebase_on_config(state, 1500, STANDARD_LADDER)
    assert not changed and same is state
    new, changed = rebase_on_config(state, 2000, STANDARD_LADDER)
    assert changed
    assert (new.base_amount, new.step, new.losses, new.current_amount) == (2000, 0, 0, 2000)


def test_state_record_round_trip():
    state = MoneyState(1500, step=2, losses=2, current_amount=6000, baseline=50000, configured_amount=1500)
    assert MoneyState.from_record(state.to_record(), STANDARD_LADDER) == state


# ---------------------------------------------------------------------------
# MoneyManager
# ---------------------------------------------------------------------------

def _mm():
    return MoneyManager(BotConfig())


def test_three_losses_double_the_stake():
    mm = _mm()
    user = {"trade_amount": 1500}
    amounts = [mm.size("u1", user, "NGN", 50000)]
    for _ in range(3):
        mm.record_outcome("u1", user, "NGN", Outcome.LOSS)
        amounts.append(mm.size("u1", user, "NGN", 50000))
    assert amounts == [1500, 3000, 6000, 12000]


def test_currency_floor_is_applied():
    mm = _mm()
    assert mm.size("u1", {"trade_amount": 500}, "NGN", 50000) == 1500
    assert mm.size("u2", {}, "USD", 100) == 1
    assert mm.size("u3", {"trade_amount": 25}, "usd", 100) == 25
    assert mm.currency_minimum("XYZ") == 1


def test_sized_amount_is_never_below_floor():
    cfg = BotConfig(currency_minimums={"USD": 5})
    mm = MoneyManager(cfg, Ladder((0.5, 1, 2), 3))
    mm._states["u1"] = MoneyState(10, current_amount=5, configured_amount=10, baseline=100)
    assert mm.size("u1", {"trade_amount": 10}, "USD", 100) == 5
    mm._states["u1"] = MoneyState(6, current_amount=3, configured_amount=6, baseline=100)
    assert mm.size("u1", {"trade_amount": 6}, "USD", 100) == 5


def test_martingale_disabled_uses_flat_amount():
    mm = _mm()
    user = {"trade_amount": 2000, "martingale_enabled": False}
    assert mm.size("u1", user, "NGN", 50000) == 2000
    assert "u1" not in mm
    assert mm.status("u1")["active"] is False


def test_first_sizing_sets_baseline_and_growth_rebases():
    mm = _mm()
    user = {"trade_amount": 1500}
    mm.size("u1", user, "NGN", 10000)
    assert mm.status("u1")["baseline"] == 10000
    mm.record_outcome("u1", user, "NGN", Outcome.LOSS)
    assert mm.size("u1", user, "NGN", 11000) == 1650
    status = mm.status("u1")
    assert (status["step"], status["losses"], status["baseline"]) == (0, 0, 11000)


def test_sizing_twice_with_unchanged_balance_is_idempotent():
    mm = _mm()
    user = {"trade_amount": 1500}
    mm.size("u1", user, "NGN", 10000)
    mm.record_outcome("u1", user, "NGN", Outcome.LOSS)
    first = mm.size("u1", user, "NGN", 12000)
    snapshot = mm.record("u1")
    second = mm.size("u1", user, "NGN", 12000)
    assert first == second
    assert mm.record("u1") == snapshot


def test_changed_trade_amount_resets_rehydrated_ladder():
    mm = _mm()
    user = {
        "trade_amount": 3000,
        "martingale": {"base_amount": 1500, "current_step": 3, "current_amount": 12000,
                       "loss_streak": 3, "initial_balance": 50000, "configured_amount": 1500},
    }
    assert mm.size("u1", user, "NGN", 50000) == 3000
    assert mm.status("u1")["step"] == 0


def test_rehydrates_ladder_from_user_record():
    mm = _mm()
    user = {
        "trade_amount": 1500,
        "martingale": {"base_amount": 1500, "current_step": 2, "current_amount": 6000,
                       "loss_streak": 2, "initial_balance": 50000},
    }
    assert mm.size("u1", user, "NGN", 50000) == 6000
    mm.record_outcome("u1", user, "NGN", Outcome.LOSS)
    assert mm.record("u1")["current_amount"] == 12000


def test_sixth_loss_resets_through_manager():
    mm = _mm()
    user = {"trade_amount": 1500}
    mm.size("u1", user, "NGN", 50000)
    for _ in range(6):
        state = mm.record_outcome("u1", user, "NGN", Outcome.LOSS)
    assert (state.step, state.losses, state.current_amount) == (0, 0, 1500)


def test_clear_drops_state():
    mm = _mm()
    mm.size("u1", {"trade_amount": 1500}, "NGN", 50000)
    assert "u1" in mm
    mm.clear("u1")
    assert "u1" not in mm
    assert mm.record("u1") is None


def test_ladder_validation():
    with pytest.raises(ValueError):
        Ladder((), 3)
    with pytest.raises(ValueError):
        Ladder((1, 2), 0)

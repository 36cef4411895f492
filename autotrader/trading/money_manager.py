import math
from dataclasses import dataclass, replace
from typing import Optional

from autotrader.config import BotConfig
from autotrader.constants import Outcome
from autotrader.utils.logger import log

@dataclass(frozen=True)
class Ladder:
    multipliers: tuple
    max_steps: int          # consecutive losses that force a reset

    def __post_init__(self):
        if not self.multipliers:
            raise ValueError("ladder needs at least one multiplier")
        if self.max_steps < 1:
            raise ValueError("max_steps must be >= 1")

    @property
    def last(self) -> int:
        return len(self.multipliers) - 1

    def amount(self, base: float, step: int) -> float:
        return base * self.multipliers[step]

STANDARD_LADDER = Ladder((1, 2, 4, 8, 16, 32), 6)
# holds 1x for three losses before escalating
FRONT_LOADED_LADDER = Ladder((1, 1, 1, 2, 4, 8, 16, 32), 8)

LADDERS = {
    "standard": STANDARD_LADDER,
    "front_loaded": FRONT_LOADED_LADDER,
}

def ladder_from_config(cfg: BotConfig) -> Ladder:
    return Ladder(tuple(cfg.martingale_multipliers), cfg.martingale_max_steps)

@dataclass(frozen=True)
class MoneyState:
    base_amount: float
    step: int = 0
    losses: int = 0
    current_amount: float = 0.0
    baseline: float = 0.0                    # balance used for growth detection
    configured_amount: Optional[float] = None  # user's base when this ladder was built

    def to_record(self) -> dict:
        return {
            "base_amount": self.base_amount,
            "current_step": self.step,
            "current_amount": self.current_amount,
            "loss_streak": self.losses,
            "initial_balance": self.baseline,
            "configured_amount": self.configured_amount,
        }

    @classmethod
    def from_record(cls, rec: dict, ladder: Ladder) -> "MoneyState":
        base = float(rec["base_amount"])
        step = min(max(int(rec.get("current_step") or 0), 0), ladder.last)
        return cls(
            base_amount=base,
            step=step,
            losses=int(rec.get("loss_streak") or 0),
            current_amount=ladder.amount(base, step),
            baseline=float(rec.get("initial_balance") or 0),
            configured_amount=float(rec.get("configured_amount") or base),
        )

    @classmethod
    def fresh(cls, base: float, ladder: Ladder, baseline: float = 0.0) -> "MoneyState":
        return cls(base, 0, 0, ladder.amount(base, 0), baseline, base)

# ---------------------------------------------------------------------------
# transitions (pure)
# ---------------------------------------------------------------------------

def _reset(state: MoneyState, ladder: Ladder) -> MoneyState:
    return replace(state, step=0, losses=0, current_amount=ladder.amount(state.base_amount, 0))

def apply_outcome(state: MoneyState, outcome: Outcome, ladder: Ladder) -> MoneyState:
    if outcome is Outcome.WIN:
        return _reset(state, ladder)

    losses = state.losses + 1
    if losses >= ladder.max_steps:
        # circuit breaker: a full losing ladder starts over from base
        return _reset(state, ladder)
    step = min(state.step + 1, ladder.last)
    return replace(state, step=step, losses=losses,
                   current_amount=ladder.amount(state.base_amount, step))

def rebase_on_growth(state: MoneyState, balance: float, ladder: Ladder,
                     threshold: float = 0.10, bump: float = 0.10) -> tuple[MoneyState, bool]:
    if state.baseline <= 0:
        return state, False
    growth = (balance - state.baseline) / state.baseline
    if growth < threshold:
        return state, False
    base = math.floor(state.base_amount * (1 + bump) + 0.5)
    return replace(state, base_amount=base, step=0, losses=0,
                   current_amount=ladder.amount(base, 0), baseline=balance), True

def rebase_on_config(state: MoneyState, configured: float, ladder: Ladder) -> tuple[MoneyState, bool]:
    if state.configured_amount == configured:
        return state, False
    return replace(state, base_amount=configured, step=0, losses=0,
                   current_amount=ladder.amount(configured, 0), configured_amount=configured), True

# ---------------------------------------------------------------------------
# keyed store
# ---------------------------------------------------------------------------

class MoneyManager:
    """Per-user martingale ladders, keyed by user id.

    Mutated only from the event loop, so there is no locking. States are
    rehydrated from the user record on first use and handed back through
    `record()` for persistence after every settlement.
    """

    def __init__(self, cfg: BotConfig, ladder: Optional[Ladder] = None):
        self.cfg = cfg
        self.ladder = ladder or ladder_from_config(cfg)
        self._states: dict[str, MoneyState] = {}

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._states

    def currency_minimum(self, currency: Optional[str]) -> float:
        return float(self.cfg.currency_minimums.get((currency or "USD").upper(), 1))

    def base_amount(self, user: dict, currency: Optional[str]) -> float:
        floor = self.currency_minimum(currency)
        configured = float(user.get("trade_amount") or 0)
        return configured if configured >= floor else floor

    def state_for(self, user_id: str, user: dict, currency: Optional[str]) -> MoneyState:
        state = self._states.get(user_id)
        if state is not None:
            return state
        rec = user.get("martingale") or {}
        if rec.get("base_amount"):
            state = MoneyState.from_record(rec, self.ladder)
            log.info("📊 Restored ladder for %s: step %d, amount %.2f", user_id, state.step + 1, state.current_amount)
        else:
            state = MoneyState.fresh(self.base_amount(user, currency), self.ladder)
        self._states[user_id] = state
        return state

    def size(self, user_id: str, user: dict, currency: Optional[str], balance: float) -> float:
        """Amount for the next trade. Runs the config and growth rebases first."""
        floor = self.currency_minimum(currency)
        if not user.get("martingale_enabled", True):
            return max(self.base_amount(user, currency), floor)

        state = self.state_for(user_id, user, currency)

        state, changed = rebase_on_config(state, self.base_amount(user, currency), self.ladder)
        if changed:
            log.info("🔁 %s changed trade amount, ladder reset to base %.2f", user_id, state.base_amount)

        if state.baseline <= 0 and balance > 0:
            state = replace(state, baseline=balance)

        state, grown = rebase_on_growth(state, balance, self.ladder,
                                        self.cfg.growth_threshold, self.cfg.growth_step)
        if grown:
            log.info("📈 Balance growth for %s, base raised to %.2f", user_id, state.base_amount)

        self._states[user_id] = state
        return max(state.current_amount, floor)

    def record_outcome(self, user_id: str, user: dict, currency: Optional[str], outcome: Outcome) -> MoneyState:
        before = self.state_for(user_id, user, currency)
        after = apply_outcome(before, outcome, self.ladder)
        self._states[user_id] = after
        if outcome is Outcome.LOSS and after.losses == 0:
            log.warning("⚠️ %s hit %d consecutive losses, ladder reset", user_id, self.ladder.max_steps)
        else:
            log.info("📊 %s %s → step %d/%d, next %.2f",
                     user_id, outcome.value.upper(), after.step + 1, len(self.ladder.multipliers),
                     after.current_amount)
        return after

    def record(self, user_id: str) -> Optional[dict]:
        state = self._states.get(user_id)
        return state.to_record() if state is not None else None

    def status(self, user_id: str) -> dict:
        state = self._states.get(user_id)
        if state is None:
            return {"active": False, "step": 0, "losses": 0, "base_amount": 0, "current_amount": 0,
                    "max_steps": self.ladder.max_steps}
        return {
            "active": True,
            "step": state.step,
            "losses": state.losses,
            "base_amount": state.base_amount,
            "current_amount": state.current_amount,
            "baseline": state.baseline,
            "max_steps": self.ladder.max_steps,
        }

    def clear(self, user_id: str) -> None:
        if self._states.pop(user_id, None) is not None:
            log.info("🔄 Cleared ladder for %s", user_id)

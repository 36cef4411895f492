import time
from dataclasses import dataclass, field
from typing import Optional

from autotrader.constants import Direction, TradeState

@dataclass
class TradeRecord:
    user_id: str
    trade_id: str
    asset: str
    direction: Direction
    amount: float
    duration: int                          # minutes
    currency: str
    opened_at: float = field(default_factory=time.time)
    state: TradeState = TradeState.PLACED
    profit: Optional[float] = None
    closed_at: Optional[float] = None
    martingale_enabled: bool = True
    signal_id: Optional[str] = None

    def close(self, state: TradeState, profit: Optional[float] = None) -> None:
        """Single terminal transition; later calls are ignored."""
        if self.state.terminal:
            return
        self.state = state
        self.profit = profit
        self.closed_at = time.time()

@dataclass
class TradeResult:
    success: bool
    trade_id: Optional[str] = None
    amount: Optional[float] = None
    error: Optional[str] = None

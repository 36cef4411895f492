from dataclasses import dataclass

@dataclass
class UserStats:
    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    total_profit: float = 0.0

    @property
    def win_rate(self):
        return self.wins / self.total_trades if self.total_trades > 0 else 0.0

    def record(self, is_win: bool, profit: float):
        self.total_trades += 1
        self.total_profit += profit
        if is_win:
            self.wins += 1
        else:
            self.losses += 1

    @classmethod
    def from_record(cls, rec: dict | None) -> "UserStats":
        rec = rec or {}
        return cls(
            total_trades=int(rec.get("total_trades") or 0),
            wins=int(rec.get("wins") or 0),
            losses=int(rec.get("losses") or 0),
            total_profit=float(rec.get("total_profit") or 0),
        )

    def to_record(self) -> dict:
        return {
            "total_trades": self.total_trades,
            "wins": self.wins,
            "losses": self.losses,
            "total_profit": self.total_profit,
        }

    def summary(self) -> str:
        return (
            f"T:{self.total_trades} W:{self.wins} L:{self.losses} "
            f"WR:{self.win_rate:.1%} "
            f"P&L:{self.total_profit:+.2f}"
        )

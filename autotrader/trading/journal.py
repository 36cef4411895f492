import sqlite3

from autotrader.constants import Direction, TradeState
from autotrader.trading.trade import TradeRecord

class TradeJournal:
    def __init__(self, db_path: str):
        self.conn = sqlite3.connect(db_path)
        self._init_db()

    def _init_db(self):
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS trades (
                trade_id    TEXT,
                user_id     TEXT,
                asset       TEXT,
                direction   TEXT,
                amount      REAL,
                duration    INTEGER,
                currency    TEXT,
                opened_at   REAL,
                state       TEXT,
                profit      REAL,
                closed_at   REAL,
                martingale  INTEGER,
                signal_id   TEXT,
                PRIMARY KEY (user_id, trade_id)
            )
        """)
        self.conn.commit()

    def save_trade(self, t: TradeRecord):
        self.conn.execute(
            "INSERT OR REPLACE INTO trades VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?)",
            (t.trade_id, t.user_id, t.asset, t.direction.value, t.amount, t.duration,
             t.currency, t.opened_at, t.state.value, t.profit, t.closed_at,
             int(t.martingale_enabled), t.signal_id),
        )
        self.conn.commit()

    def _query(self, where: str, params: tuple) -> list[TradeRecord]:
        cur = self.conn.execute(
            "SELECT trade_id, user_id, asset, direction, amount, duration, currency, "
            "opened_at, state, profit, closed_at, martingale, signal_id "
            f"FROM trades WHERE {where} ORDER BY opened_at ASC",
            params,
        )
        trades = []
        for (trade_id, user_id, asset, direction, amount, duration, currency,
             opened_at, state, profit, closed_at, martingale, signal_id) in cur.fetchall():
            trades.append(TradeRecord(
                user_id=user_id,
                trade_id=trade_id,
                asset=asset,
                direction=Direction(direction),
                amount=amount,
                duration=duration,
                currency=currency,
                opened_at=opened_at,
                state=TradeState(state),
                profit=profit,
                closed_at=closed_at,
                martingale_enabled=bool(martingale),
                signal_id=signal_id,
            ))
        return trades

    def load_trades(self, user_id: str) -> list[TradeRecord]:
        return self._query("user_id = ?", (user_id,))

    def timed_out_trades(self) -> list[TradeRecord]:
        """Trades whose settlement never arrived in time; reconcile these by hand."""
        return self._query("state = ?", (TradeState.TIMED_OUT.value,))

    def total_trades(self) -> int:
        cur = self.conn.execute("SELECT COUNT(*) FROM trades")
        return cur.fetchone()[0]

    def close(self):
        self.conn.close()

import os
import time
from typing import Optional

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np

from autotrader.constants import Direction
from autotrader.utils.candle import Candle, to_arrays
from autotrader.utils.logger import log

FIGSIZE = (10.0, 5.0)
DPI = 100

class ChartRenderer:
    """Result chart: OHLC candles of the trade window with entry and exit marked."""

    def __init__(self, out_dir: str = "temp_charts"):
        self.out_dir = out_dir

    def render(self, trade_id: str, candles: list[Candle], entry_price: float, exit_price: float,
               open_time: Optional[float], close_time: Optional[float],
               direction: Optional[Direction] = None, is_win: bool = False) -> Optional[str]:
        a = to_arrays(candles)
        if a["t"].size == 0:
            return None
        os.makedirs(self.out_dir, exist_ok=True)

        fig = plt.figure(figsize=FIGSIZE)
        ax = fig.add_subplot(1, 1, 1)
        up = a["c"] >= a["o"]
        width = (np.median(np.diff(a["t"])) if a["t"].size > 1 else 30.0) * 0.6
        colors = ["#26a69a" if u else "#ef5350" for u in up]
        ax.vlines(a["t"], a["l"], a["h"], colors=colors, linewidth=1)
        ax.bar(a["t"], np.abs(a["c"] - a["o"]), bottom=np.minimum(a["o"], a["c"]),
               width=width, color=colors)

        if entry_price:
            ax.axhline(entry_price, color="#1e88e5", linestyle="--", linewidth=1, label=f"Entry {entry_price}")
        if exit_price:
            ax.axhline(exit_price, color="#fb8c00", linestyle="--", linewidth=1, label=f"Exit {exit_price}")
        # broker times are in ms
        if open_time:
            ax.axvline(open_time / 1000, color="#1e88e5", linewidth=0.8)
        if close_time:
            ax.axvline(close_time / 1000, color="#fb8c00", linewidth=0.8)

        arrow = "▲" if direction is Direction.CALL else "▼" if direction is Direction.PUT else ""
        ax.set_title(f"Trade {trade_id} {arrow} {'WIN' if is_win else 'LOSS'}")
        ax.grid(True, alpha=0.3)
        if entry_price or exit_price:
            ax.legend(loc="upper left")
        fig.tight_layout()

        path = os.path.join(self.out_dir, f"trade_{trade_id}_{int(time.time())}.png")
        fig.savefig(path, dpi=DPI)
        plt.close(fig)
        return path

    def cleanup(self, path: Optional[str]) -> None:
        if not path:
            return
        try:
            os.remove(path)
        except OSError as e:
            log.debug("Could not remove chart %s: %s", path, e)

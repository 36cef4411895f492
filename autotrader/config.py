from dataclasses import dataclass, field

from autotrader.constants import CURRENCY_MINIMUMS

@dataclass
class BotConfig:
    """All tuneable knobs in one place."""

    # --- brokerage endpoints ---
    auth_url: str = "https://auth.iqoption.com/api/v1.0/login"
    ws_url: str = "wss://ws.iqoption.com/echo/websocket"

    # --- protocol timings (seconds) ---
    heartbeat_interval: float = 30.0
    reconnect_delay: float = 5.0            # fixed, no growth, retried forever
    balances_delay: float = 1.0             # after profile request
    subscribe_delay: float = 2.0            # position-changed subscription
    balance_retry_delay: float = 2.0        # one retry when selector id missing
    placement_timeout: float = 10.0
    candles_timeout: float = 5.0
    settlement_grace: float = 30.0          # added to the trade duration
    auth_timeout: float = 15.0

    # --- instruments ---
    fallback_asset_id: int = 1861           # EURUSD
    default_asset: str = "EURUSD-OTC"
    option_type: str = "blitz"
    option_type_id: int = 12

    # --- money management ---
    martingale_multipliers: tuple = (1, 2, 4, 8, 16, 32)
    martingale_max_steps: int = 6           # consecutive losses before forced reset
    growth_threshold: float = 0.10          # balance growth that triggers a rebase
    growth_step: float = 0.10               # base amount bump on rebase
    currency_minimums: dict = field(default_factory=lambda: dict(CURRENCY_MINIMUMS))

    # --- dispatch ---
    user_delay: float = 0.8                 # between users for one signal
    copy_delay: float = 0.5                 # between copy-trade users
    default_duration: int = 5               # minutes
    lead_user_id: str = ""                  # trades of this user are mirrored
    lead_email: str = ""
    lead_password: str = ""

    # --- charts ---
    chart_interval: int = 30                # candle size for result charts
    chart_dir: str = "temp_charts"
    charts_enabled: bool = True

    # --- persistence ---
    db_path: str = "trade_journal.db"
    users_db_path: str = "users.db"

    # --- signal api ---
    api_host: str = "0.0.0.0"
    api_port: int = 3000
    signal_secret: str = ""

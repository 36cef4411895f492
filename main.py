import asyncio
import os
import sys
from autotrader.bot import TradingBot
from autotrader.config import BotConfig
from autotrader.trading.money_manager import LADDERS

def main():
    # --- Load config from env or defaults ---
    # Ladder preset: "standard" (1,2,4,8,16,32) or "front_loaded" (1,1,1,2,4,8,16,32)
    ladder_name = os.environ.get("AT_LADDER", "standard").strip().lower()
    if ladder_name not in LADDERS:
        print(f"Warning: Invalid AT_LADDER '{ladder_name}', defaulting to standard")
        ladder_name = "standard"
    ladder = LADDERS[ladder_name]

    cfg = BotConfig(
        lead_user_id=os.environ.get("AT_LEAD_USER_ID", ""),
        lead_email=os.environ.get("AT_LEAD_EMAIL", ""),
        lead_password=os.environ.get("AT_LEAD_PASSWORD", ""),
        signal_secret=os.environ.get("AT_SIGNAL_SECRET", ""),
        api_host=os.environ.get("AT_API_HOST", "0.0.0.0"),
        api_port=int(os.environ.get("AT_API_PORT", "3000")),
        default_asset=os.environ.get("AT_DEFAULT_ASSET", "EURUSD-OTC"),
        default_duration=int(os.environ.get("AT_DEFAULT_DURATION", "5")),
        martingale_multipliers=ladder.multipliers,
        martingale_max_steps=ladder.max_steps,
        charts_enabled=os.environ.get("AT_CHARTS", "1").strip() != "0",
        db_path=os.environ.get("AT_JOURNAL_DB", "trade_journal.db"),
        users_db_path=os.environ.get("AT_USERS_DB", "users.db"),
    )

    if not cfg.signal_secret and not cfg.lead_email:
        print("=" * 60)
        print("  ERROR: Nothing to do!")
        print()
        print("  Set a signal API secret and/or a lead account:")
        print("    export AT_SIGNAL_SECRET='shared-secret'     # Linux/Mac")
        print("    export AT_LEAD_EMAIL='lead@example.com'")
        print("    export AT_LEAD_PASSWORD='...'")
        print("    set AT_SIGNAL_SECRET=shared-secret          # Windows")
        print("=" * 60)
        sys.exit(1)

    bot = TradingBot(cfg)

    async def run():
        try:
            await bot.start()
        except Exception as e:
            print(f"Critical error: {e}")
        finally:
            await bot.stop()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass

if __name__ == "__main__":
    main()

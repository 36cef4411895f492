from typing import Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException

from autotrader.config import BotConfig
from autotrader.errors import InvalidSignal
from autotrader.signals import Signal
from autotrader.trading.dispatcher import SignalDispatcher
from autotrader.utils.logger import log

def create_app(cfg: BotConfig, dispatcher: SignalDispatcher) -> FastAPI:
    app = FastAPI(title="Signal API", docs_url=None, redoc_url=None)

    def require_secret(x_admin_secret: Optional[str] = Header(None)):
        if not cfg.signal_secret or x_admin_secret != cfg.signal_secret:
            raise HTTPException(status_code=401, detail="Unauthorized")

    async def run_signal(signal: Signal):
        try:
            await dispatcher.execute_signal(signal)
        except Exception as e:
            log.error("Signal %s processing failed: %s", signal.signal_id, e, exc_info=True)

    @app.post("/api/signals/create", dependencies=[Depends(require_secret)])
    async def create_signal(payload: dict, background: BackgroundTasks):
        try:
            signal = Signal.from_payload(payload, cfg.default_duration)
        except InvalidSignal as e:
            raise HTTPException(status_code=400, detail=str(e))
        log.info("📥 Signal %s received: %s %s %dm", signal.signal_id, signal.asset,
                 signal.direction.label, signal.duration)
        # answer now, fan out after the response
        background.add_task(run_signal, signal)
        return {"status": "Signal received, processing", "signalId": signal.signal_id}

    @app.post("/api/signals/result", dependencies=[Depends(require_secret)])
    async def signal_result(payload: dict):
        signal_id = payload.get("signalId") or payload.get("signal_id")
        if not signal_id:
            raise HTTPException(status_code=400, detail="Missing signalId")
        log.info("📬 Result for signal %s: %s", signal_id, payload.get("result"))
        return {"status": "ok", "signalId": signal_id}

    @app.get("/status")
    async def status():
        return {
            "sessions": len(dispatcher.registry),
            "connected_users": len(dispatcher.registry.connected()),
            "open_trades": len(dispatcher.tracker.open_trades),
            "lead_user_id": dispatcher.lead_user_id or None,
        }

    return app

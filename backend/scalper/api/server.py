# scalper/api/server.py
from __future__ import annotations

from typing import Any, Dict, List

from fastapi import Body, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from scalper.api.state import get_state
from scalper.infrastructure.logging.logging import get_logger
from scalper.infrastructure.utils.config import APIConfig

log = get_logger("api")


class PausePayload(BaseModel):
    reason: str = ""


def build_app(cors_origins: List[str]) -> FastAPI:
    app = FastAPI(title="Scalper Trading Bot API", version="0.1.0")

    # CORS (frontend)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.get("/status")
    def status():
        return get_state().bot.status()

    @app.get("/metrics")
    def metrics():
        return get_state().bot.metrics.to_dict()

    @app.get("/positions")
    def positions():
        return [p.to_dict() for p in get_state().bot.ledger.open_positions()]

    @app.get("/trades")
    def trades(limit: int = 200):
        closed = get_state().bot.ledger.closed_positions()
        return [p.to_dict() for p in closed[-limit:]] if limit > 0 else []

    @app.post("/pause")
    def pause(payload: PausePayload):
        bot = get_state().bot
        reason = payload.reason or "manual"
        bot.pause(reason)
        return {"paused": True, "reason": reason}

    @app.post("/resume")
    def resume():
        get_state().bot.resume()
        return {"paused": False}

    @app.post("/emergency-stop")
    async def emergency_stop():
        bot = get_state().bot
        closed = await bot.emergency_stop("api_emergency_stop")
        return {
            "stopped": True,
            "closed": [p.to_dict() for p in closed],
            "still_open": [p.to_dict() for p in bot.ledger.open_positions()],
        }

    @app.put("/risk/limits")
    def update_risk_limits(changes: Dict[str, Any] = Body(...)):
        bot = get_state().bot
        try:
            limits = bot.risk.update_limits(changes)
        except ValueError as e:
            log.warning("risk_limits_rejected", error=str(e))
            raise HTTPException(status_code=422, detail=str(e)) from e
        return limits.model_dump(mode="json")

    @app.put("/strategy/parameters")
    def update_strategy_parameters(changes: Dict[str, Any] = Body(...)):
        bot = get_state().bot
        try:
            params = bot.ledger.update_parameters(changes)
        except ValueError as e:
            log.warning("strategy_parameters_rejected", error=str(e))
            raise HTTPException(status_code=422, detail=str(e)) from e
        return params.model_dump(mode="json")

    return app


app = build_app(APIConfig().cors_origins)

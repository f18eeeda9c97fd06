# scalper/api/state.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from scalper.app.bot import TradingBot


@dataclass
class AppState:
    bot: TradingBot


_state: Optional[AppState] = None


def set_state(state: Optional[AppState]) -> None:
    global _state
    _state = state


def get_state() -> AppState:
    if _state is None:
        raise RuntimeError("API state not initialized. Start engine first (or init state).")
    return _state

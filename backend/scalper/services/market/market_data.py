"""Price ingestion: pulls batches from the price feed and feeds the indicator engine."""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from scalper.infrastructure.errors import PriceFeedError
from scalper.infrastructure.logging.logging import get_logger
from scalper.models.market_models import Instrument, PriceObservation
from scalper.services.execution.venue import PriceFeed
from scalper.services.market.indicators import IndicatorEngine


class MarketDataService:
    def __init__(self, feed: PriceFeed, instruments: Sequence[Instrument], indicators: IndicatorEngine) -> None:
        self.feed = feed
        self.instruments = list(instruments)
        self.indicators = indicators
        self._last: Dict[str, PriceObservation] = {}
        self.log = get_logger("market_data")
        self.log.info(
            "market_data_initialized",
            tracked=[i.symbol for i in self.instruments],
            history_length=indicators.window_size,
        )

    async def fetch_prices(self) -> Dict[str, PriceObservation]:
        """Fetch one batch. A feed failure is logged and changes nothing."""
        try:
            batch = await self.feed.fetch_prices(self.instruments)
        except PriceFeedError as e:
            self.log.error("fetch_prices_error", error=str(e))
            return {}

        tracked = {i.id for i in self.instruments}
        out: Dict[str, PriceObservation] = {}
        for obs in batch:
            if obs.instrument.id not in tracked or obs.price <= 0:
                self.log.warning("price_ignored", instrument=obs.instrument.symbol, price=obs.price)
                continue
            self.record(obs)
            out[obs.instrument.id] = obs
        return out

    def record(self, obs: PriceObservation) -> None:
        self._last[obs.instrument.id] = obs
        self.indicators.observe(obs.instrument, obs.price, obs.timestamp)

    def last_price(self, instrument: Instrument) -> Optional[PriceObservation]:
        return self._last.get(instrument.id)

    def price_history(self, instrument: Instrument) -> List[PriceObservation]:
        window = self.indicators.window(instrument)
        if window is None:
            return []
        return [
            PriceObservation(instrument=instrument, price=p, timestamp=t)
            for p, t in zip(window.prices(), window.timestamps())
        ]

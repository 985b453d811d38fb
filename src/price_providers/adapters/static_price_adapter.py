"""
Static Price Adapter

In-memory provider serving fixed prices. Used for offline simulation,
replaying recorded price days and as a deterministic feed in tests.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from battery_models import PriceInterval
from ..ports.price_provider_port import PriceProvider, ProviderError


class StaticPriceAdapter(PriceProvider):
    """Provider backed by a fixed current price and price curve"""

    def __init__(self, name: str, current_price: Optional[float] = None,
                 prices: Optional[Sequence[float]] = None,
                 available: bool = True, reliability: int = 100,
                 interval_minutes: int = 60, description: str = ''):
        self.logger = logging.getLogger(self.__class__.__name__)
        self._name = name
        self._current_price = current_price
        self._prices = list(prices or [])
        self._available = available
        self._reliability = max(0, min(100, int(reliability)))
        self._interval_minutes = interval_minutes
        self._description = description or f"Static price feed '{name}'"
        self._loaded_at = datetime.now()

    def get_provider_name(self) -> str:
        return self._name

    def get_provider_description(self) -> str:
        return self._description

    def get_current_price(self) -> float:
        if self._current_price is not None:
            return self._current_price
        if self._prices:
            self.logger.debug(f"{self._name}: no current price set, using first curve value")
            return self._prices[0]
        raise ProviderError(f"{self._name}: no price loaded")

    def get_next_24_hour_prices(self) -> List[float]:
        per_day = (24 * 60) // self._interval_minutes
        return self._prices[:per_day]

    def get_day_ahead_prices(self, day: Optional[date] = None) -> List[PriceInterval]:
        day = day or date.today()
        midnight = datetime.combine(day, datetime.min.time())
        return [
            PriceInterval(
                index=i,
                price=price,
                start_time=midnight + timedelta(minutes=i * self._interval_minutes),
                duration_minutes=self._interval_minutes,
            )
            for i, price in enumerate(self._prices)
        ]

    def is_available(self) -> bool:
        return self._available

    def get_reliability_score(self) -> int:
        return self._reliability

    def get_data_freshness(self) -> Optional[datetime]:
        return self._loaded_at

    def get_provider_info(self) -> Dict[str, Any]:
        info = super().get_provider_info()
        info.update({
            'type': 'static',
            'intervals': len(self._prices),
            'interval_minutes': self._interval_minutes,
        })
        return info

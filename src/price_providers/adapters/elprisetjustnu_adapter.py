"""
elprisetjustnu.se Price Adapter

Adapter for the public Swedish spot price feed at elprisetjustnu.se.
Day files carry 15-minute intervals in SEK/kWh, for example:
https://www.elprisetjustnu.se/api/v1/prices/2025/12-03_SE3.json
"""

import logging
from collections import deque
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import requests

from battery_models import PriceInterval
from ..ports.price_provider_port import PriceProvider, ProviderError

DEFAULT_BASE_URL = 'https://www.elprisetjustnu.se/api/v1/prices'

PRICE_AREAS = {
    'SE1': 'Luleå / Norra Sverige',
    'SE2': 'Sundsvall / Norra Mellansverige',
    'SE3': 'Stockholm / Södra Mellansverige',
    'SE4': 'Malmö / Södra Sverige',
}


class ElprisetjustNuPriceAdapter(PriceProvider):
    """
    Price provider for elprisetjustnu.se day-ahead prices.

    Day files are cached per delivery day. Every fetch outcome is recorded
    so the reliability score reflects the recent success rate, and the
    provider reports itself unavailable after repeated consecutive failures.
    """

    def __init__(self, price_area: str = 'SE3', base_url: str = DEFAULT_BASE_URL,
                 timeout: float = 15.0, cache_ttl_seconds: int = 3600,
                 max_consecutive_failures: int = 3,
                 clock: Optional[Callable[[], datetime]] = None):
        self.logger = logging.getLogger(self.__class__.__name__)
        if price_area not in PRICE_AREAS:
            raise ValueError(
                f"Unsupported price area: {price_area}. Supported areas: {', '.join(PRICE_AREAS)}"
            )
        self.price_area = price_area
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.cache_ttl = timedelta(seconds=cache_ttl_seconds)
        self.max_consecutive_failures = max_consecutive_failures
        self._clock = clock or datetime.now

        self._cache: Dict[date, List[PriceInterval]] = {}
        self._cache_times: Dict[date, datetime] = {}
        self._outcomes = deque(maxlen=20)
        self._consecutive_failures = 0
        self._last_success: Optional[datetime] = None

    def get_provider_name(self) -> str:
        return 'elprisetjustnu.se'

    def get_provider_description(self) -> str:
        area_name = PRICE_AREAS.get(self.price_area, self.price_area)
        return f"Swedish Electricity Spot Prices ({area_name}) with 15-minute granularity via elprisetjustnu.se"

    def _endpoint(self, day: date) -> str:
        return f"{self.base_url}/{day.strftime('%Y')}/{day.strftime('%m-%d')}_{self.price_area}.json"

    def _record(self, success: bool):
        self._outcomes.append(success)
        if success:
            self._consecutive_failures = 0
            self._last_success = self._clock()
        else:
            self._consecutive_failures += 1

    def _fetch_day(self, day: date) -> List[PriceInterval]:
        url = self._endpoint(day)
        try:
            response = requests.get(url, timeout=self.timeout)
            if response.status_code == 404:
                # Tomorrow's file is published around 13:00 CET
                self.logger.info(f"No prices published yet for {day.isoformat()} ({self.price_area})")
                self._record(True)
                return []
            response.raise_for_status()
            raw_data = response.json()
        except (requests.RequestException, ValueError) as e:
            self._record(False)
            self.logger.warning(f"Failed to get prices from elprisetjustnu.se for {day.isoformat()}: {e}")
            raise ProviderError(f"elprisetjustnu.se request failed: {e}") from e

        if not isinstance(raw_data, list):
            self._record(False)
            raise ProviderError(f"elprisetjustnu.se returned {type(raw_data).__name__} instead of a list")

        intervals = []
        for item in raw_data:
            if not isinstance(item, dict) or not {'SEK_per_kWh', 'time_start', 'time_end'} <= item.keys():
                continue
            try:
                start = datetime.fromisoformat(item['time_start'])
                end = datetime.fromisoformat(item['time_end'])
                price = float(item['SEK_per_kWh'])
            except (TypeError, ValueError):
                self.logger.debug(f"Skipping malformed interval: {item}")
                continue
            duration = int((end - start).total_seconds() // 60) or 15
            intervals.append(PriceInterval(index=len(intervals), price=price,
                                           start_time=start, duration_minutes=duration))

        self._record(True)
        self.logger.info(f"Fetched {len(intervals)} elprisetjustnu.se intervals for {day.isoformat()}")
        return intervals

    def get_day_ahead_prices(self, day: Optional[date] = None) -> List[PriceInterval]:
        day = day or self._clock().date()
        cached_at = self._cache_times.get(day)
        if cached_at is not None and self._clock() - cached_at < self.cache_ttl:
            return self._cache[day]

        intervals = self._fetch_day(day)
        if intervals:
            self._cache[day] = intervals
            self._cache_times[day] = self._clock()
        return intervals

    def _upcoming_intervals(self) -> List[PriceInterval]:
        now = self._clock()
        today = self.get_day_ahead_prices(now.date())
        try:
            tomorrow = self.get_day_ahead_prices(now.date() + timedelta(days=1))
        except ProviderError:
            tomorrow = []
        return today + tomorrow

    @staticmethod
    def _contains(interval: PriceInterval, moment: datetime) -> bool:
        start = interval.start_time
        if start.tzinfo is not None and moment.tzinfo is None:
            moment = moment.astimezone(start.tzinfo)
        return start <= moment < interval.end_time

    def get_current_price(self) -> float:
        now = self._clock()
        todays = self.get_day_ahead_prices(now.date())
        if not todays:
            raise ProviderError("No current price data available from elprisetjustnu.se")

        for interval in todays:
            if self._contains(interval, now):
                return interval.price
        return todays[-1].price

    def get_next_24_hour_prices(self) -> List[float]:
        now = self._clock()
        upcoming = [i for i in self._upcoming_intervals()
                    if i.end_time is not None and not self._before(i.end_time, now)]
        cutoff = now + timedelta(hours=24)
        return [i.price for i in upcoming if self._before(i.start_time, cutoff)][:96]

    @staticmethod
    def _before(moment: datetime, reference: datetime) -> bool:
        if moment.tzinfo is not None and reference.tzinfo is None:
            reference = reference.astimezone(moment.tzinfo)
        return moment <= reference

    def is_available(self) -> bool:
        return self._consecutive_failures < self.max_consecutive_failures

    def get_reliability_score(self) -> int:
        if not self._outcomes:
            return 100
        return int(round(100 * sum(self._outcomes) / len(self._outcomes)))

    def get_data_freshness(self) -> Optional[datetime]:
        return self._last_success

    def get_provider_info(self) -> Dict[str, Any]:
        info = super().get_provider_info()
        info.update({
            'type': 'elprisetjustnu',
            'price_area': self.price_area,
            'base_url': self.base_url,
            'currency': 'SEK',
            'granularity': '15min',
            'cached_days': sorted(d.isoformat() for d in self._cache),
        })
        return info

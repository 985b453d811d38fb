#!/usr/bin/env python3
"""
Input validation for price horizons and battery state.

Everything entering the planner or the decision maker passes through here.
Invalid input raises PriceValidationError instead of being coerced.
"""

import logging
import math
from datetime import datetime
from numbers import Real
from typing import Any, List, Optional, Sequence

from battery_models import PriceInterval

logger = logging.getLogger(__name__)

MIN_VALID_PRICE = -1000.0
MAX_VALID_PRICE = 5000.0
MAX_HOURLY_HORIZON = 48


class PriceValidationError(ValueError):
    """Raised when a price horizon, price or SOC value is unusable"""


def is_number(value: Any) -> bool:
    """True for finite real numbers (bools excluded)"""
    if isinstance(value, bool) or not isinstance(value, Real):
        return False
    return math.isfinite(value)


def validate_soc(soc: Any) -> float:
    """Return SOC as float or raise if it is not a percentage"""
    if not is_number(soc):
        raise PriceValidationError(f"SOC must be numeric, got {soc!r}")
    if soc < 0 or soc > 100:
        raise PriceValidationError(f"Current SOC must be between 0 and 100, got {soc}")
    return float(soc)


def validate_price(price: Any, index: Optional[int] = None,
                   min_price: float = MIN_VALID_PRICE,
                   max_price: float = MAX_VALID_PRICE) -> float:
    """Return price as float or raise if it is non-numeric or out of range"""
    where = f" at interval {index}" if index is not None else ""
    if not is_number(price):
        raise PriceValidationError(f"Non-numeric price detected{where}: {price!r}")
    if price < min_price or price > max_price:
        raise PriceValidationError(
            f"Price out of reasonable range{where}: {price} (expected {min_price} to {max_price})"
        )
    return float(price)


def _parse_start_time(raw: Any, index: int) -> Optional[datetime]:
    if raw is None or isinstance(raw, datetime):
        return raw
    if isinstance(raw, str):
        try:
            return datetime.fromisoformat(raw)
        except ValueError as e:
            raise PriceValidationError(f"Invalid start time at interval {index}: {raw!r}") from e
    raise PriceValidationError(f"Invalid start time at interval {index}: {raw!r}")


def normalize_intervals(intervals: Sequence[Any],
                        interval_minutes: int = 15,
                        min_price: float = MIN_VALID_PRICE,
                        max_price: float = MAX_VALID_PRICE) -> List[PriceInterval]:
    """
    Convert a horizon into validated PriceInterval objects.

    Accepts PriceInterval instances, plain numbers, or dicts carrying the
    price under 'value' or 'price' and an optional 'time_start'/'start_time'.
    Order is preserved and indices are reassigned to horizon positions.

    Raises:
        PriceValidationError: on an empty horizon or any invalid entry
    """
    if intervals is None or len(intervals) == 0:
        raise PriceValidationError("Interval prices array cannot be empty")

    normalized = []
    for index, item in enumerate(intervals):
        if isinstance(item, PriceInterval):
            price = validate_price(item.price, index, min_price, max_price)
            start_time = item.start_time
            duration = item.duration_minutes
        elif isinstance(item, dict):
            if 'value' in item:
                raw_price = item['value']
            elif 'price' in item:
                raw_price = item['price']
            else:
                raise PriceValidationError(f"Missing price value at interval {index}")
            price = validate_price(raw_price, index, min_price, max_price)
            start_time = _parse_start_time(item.get('time_start', item.get('start_time')), index)
            duration = interval_minutes
        else:
            price = validate_price(item, index, min_price, max_price)
            start_time = None
            duration = interval_minutes

        normalized.append(PriceInterval(index=index, price=price,
                                        start_time=start_time, duration_minutes=duration))
    return normalized


def horizon_interval_minutes(horizon_length: int) -> int:
    """Up to 48 entries are read as hourly prices, longer horizons as quarter hours"""
    return 60 if horizon_length <= MAX_HOURLY_HORIZON else 15


def validate_price_series(prices: Sequence[Any],
                          min_price: float = MIN_VALID_PRICE,
                          max_price: float = MAX_VALID_PRICE) -> List[float]:
    """Validate a horizon and return its bare price values"""
    return [i.price for i in normalize_intervals(prices, min_price=min_price, max_price=max_price)]


def validate_forecast(values: Optional[Sequence[Any]], name: str) -> List[float]:
    """Validate an optional solar/load forecast (kW per step)"""
    if values is None:
        return []
    result = []
    for index, value in enumerate(values):
        if not is_number(value):
            raise PriceValidationError(f"Non-numeric {name} value at step {index}: {value!r}")
        result.append(float(value))
    return result

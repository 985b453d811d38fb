"""
Price Provider Port Interface

Defines the contract every electricity price feed must fulfil.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from battery_models import PriceInterval


class ProviderError(Exception):
    """Raised by adapters when a feed cannot deliver usable data"""


class PriceProvider(ABC):
    """
    Abstract interface for electricity price feeds.

    Implementations may perform slow or failing I/O. Callers that need a
    bounded wait must enforce it themselves; the aggregator treats any
    exception as a missing vote.
    """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Unique provider identifier."""
        pass

    def get_provider_description(self) -> str:
        """Human-readable description of the feed."""
        return self.get_provider_name()

    @abstractmethod
    def get_current_price(self) -> float:
        """
        Get the price for the interval containing now.

        Returns:
            Price per kWh

        Raises:
            ProviderError: If no price can be determined
        """
        pass

    @abstractmethod
    def get_next_24_hour_prices(self) -> List[float]:
        """Prices for the next 24 hours starting at the current interval."""
        pass

    @abstractmethod
    def get_day_ahead_prices(self, day: Optional[date] = None) -> List[PriceInterval]:
        """
        Get the published prices for one delivery day.

        Args:
            day: Delivery day, defaults to today

        Returns:
            Chronologically ordered intervals, empty if not yet published
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the provider is currently considered working."""
        pass

    @abstractmethod
    def get_reliability_score(self) -> int:
        """Reliability in the range 0-100 based on recent success rate."""
        pass

    @abstractmethod
    def get_data_freshness(self) -> Optional[datetime]:
        """When the provider last obtained data."""
        pass

    def get_provider_info(self) -> Dict[str, Any]:
        """Provider configuration and metadata."""
        return {
            'name': self.get_provider_name(),
            'description': self.get_provider_description(),
            'is_available': self.is_available(),
            'reliability_score': self.get_reliability_score(),
        }

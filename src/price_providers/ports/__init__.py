"""
Port Interfaces for Price Providers.

Adapters implement these contracts; the consensus aggregator only ever
talks to a provider through them.
"""

from .price_provider_port import PriceProvider, ProviderError

__all__ = [
    'PriceProvider',
    'ProviderError',
]

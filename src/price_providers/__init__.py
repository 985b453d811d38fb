"""
Price Provider Abstraction Layer

Ports describe what the optimiser needs from an electricity price feed,
adapters implement them for concrete feeds, and the factory builds
providers (and a weighted aggregator) from configuration.
"""

from .ports.price_provider_port import PriceProvider, ProviderError
from .adapters.static_price_adapter import StaticPriceAdapter
from .adapters.elprisetjustnu_adapter import ElprisetjustNuPriceAdapter
from .factory.price_provider_factory import PriceProviderFactory

__all__ = [
    'PriceProvider',
    'ProviderError',
    'StaticPriceAdapter',
    'ElprisetjustNuPriceAdapter',
    'PriceProviderFactory',
]

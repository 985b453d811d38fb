"""
Price Provider Adapters

Feed-specific implementations of the price provider port.
"""

from .static_price_adapter import StaticPriceAdapter
from .elprisetjustnu_adapter import ElprisetjustNuPriceAdapter

__all__ = [
    'StaticPriceAdapter',
    'ElprisetjustNuPriceAdapter',
]

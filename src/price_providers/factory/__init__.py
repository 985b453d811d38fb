"""
Price Provider Factory

Factory for creating price provider adapters based on configuration.
"""

from .price_provider_factory import PriceProviderFactory

__all__ = ['PriceProviderFactory']

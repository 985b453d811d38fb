"""
Price Provider Factory

Creates price provider adapters and a weighted consensus aggregator
from the `price_providers` section of the YAML configuration.
"""

import logging
from typing import Any, Dict, List, Optional

from ..ports.price_provider_port import PriceProvider
from ..adapters.static_price_adapter import StaticPriceAdapter
from ..adapters.elprisetjustnu_adapter import ElprisetjustNuPriceAdapter


class PriceProviderFactory:
    """
    Factory for creating price provider adapters.

    Each entry of the `price_providers` list names an adapter `type`, an
    optional `weight` and adapter-specific settings.
    """

    _ADAPTERS = {
        'elprisetjustnu': ElprisetjustNuPriceAdapter,
        'static': StaticPriceAdapter,
    }

    @classmethod
    def create_provider(cls, provider_config: Dict[str, Any]) -> PriceProvider:
        """
        Create a provider adapter from one configuration entry.

        Args:
            provider_config: Mapping with `type` plus adapter keyword arguments

        Returns:
            PriceProvider implementation

        Raises:
            ValueError: If the type is missing or not supported
        """
        logger = logging.getLogger(cls.__name__)

        provider_type = str(provider_config.get('type', '')).lower().strip()
        if not provider_type:
            raise ValueError("Price provider entry is missing 'type'")
        if provider_type not in cls._ADAPTERS:
            supported = ', '.join(cls._ADAPTERS.keys())
            raise ValueError(
                f"Unsupported price provider type: {provider_type}. Supported types: {supported}"
            )

        kwargs = {k: v for k, v in provider_config.items() if k not in ('type', 'weight')}
        provider = cls._ADAPTERS[provider_type](**kwargs)
        logger.info(f"Created {provider_type} price provider: {provider.get_provider_name()}")
        return provider

    @classmethod
    def create_aggregator(cls, config: Optional[Dict[str, Any]] = None, optimizer_config=None):
        """
        Build a PriceConsensusAggregator with every configured provider registered.

        Args:
            config: Full YAML configuration dict
            optimizer_config: Optional OptimizerConfig, derived from `config` when omitted
        """
        from price_consensus_aggregator import PriceConsensusAggregator

        config = config or {}
        aggregator = PriceConsensusAggregator(optimizer_config if optimizer_config is not None else config)
        entries: List[Dict[str, Any]] = config.get('price_providers') or []
        for entry in entries:
            provider = cls.create_provider(entry)
            aggregator.register_provider(provider, entry.get('weight'))
        return aggregator

    @classmethod
    def supported_types(cls) -> List[str]:
        return list(cls._ADAPTERS.keys())

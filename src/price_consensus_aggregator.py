#!/usr/bin/env python3
"""
Price Consensus Aggregator
Combines several weighted price feeds into one trusted price

This module implements the voting mechanism between price providers:
- Providers that are unavailable, fail, or report implausible prices get no vote
- Agreeing providers are combined by weighted average
- Disagreeing providers are filtered for outliers and combined by median
- With no votes at all a fixed fallback price is returned with low confidence
"""

import logging
import math
import statistics
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from battery_models import (
    ConfidenceLevel,
    ConsensusMethod,
    ConsensusResult,
    PriceInterval,
    ProviderVote,
)
from optimizer_config import resolve_config
from price_providers.ports.price_provider_port import PriceProvider

logger = logging.getLogger(__name__)


class PriceConsensusAggregator:
    """Polls registered price providers and computes a consensus price"""

    def __init__(self, config=None):
        """
        Initialize the aggregator

        Args:
            config: OptimizerConfig, configuration dict, YAML path or None for defaults
        """
        self.config = resolve_config(config)
        settings = self.config.consensus
        prices = self.config.prices

        self.consensus_threshold = settings.consensus_threshold
        self.min_providers_for_consensus = settings.min_providers_for_consensus
        self.outlier_std_devs = settings.outlier_std_devs
        self.default_weight = settings.default_weight
        self.min_array_intervals = settings.min_array_intervals
        self.fallback_price = prices.fallback_price
        self.min_plausible_price = prices.min_plausible_price
        self.max_plausible_price = prices.max_plausible_price

        self.providers: Dict[str, PriceProvider] = {}
        self.provider_weights: Dict[str, float] = {}

    def register_provider(self, provider: PriceProvider, weight: Optional[float] = None) -> None:
        """Register a price provider; higher weight means more trusted"""
        if weight is None:
            weight = self.default_weight
        if weight < 0:
            raise ValueError(f"Provider weight must not be negative, got {weight}")

        name = provider.get_provider_name()
        if name in self.providers:
            logger.warning(f"Replacing already registered price provider '{name}'")
        self.providers[name] = provider
        self.provider_weights[name] = float(weight)
        logger.info(f"Price provider registered: {name} (weight {weight})")

    def is_plausible(self, price: Any) -> bool:
        """Basic sanity check applied to every provider price"""
        if isinstance(price, bool) or not isinstance(price, (int, float)) or not math.isfinite(price):
            return False
        return self.min_plausible_price < price < self.max_plausible_price

    def _provider_available(self, name: str, provider: PriceProvider) -> bool:
        try:
            return bool(provider.is_available())
        except Exception as e:
            logger.warning(f"Provider {name} availability check failed: {e}")
            return False

    def _reliability(self, name: str, provider: PriceProvider) -> int:
        try:
            return int(provider.get_reliability_score())
        except Exception as e:
            logger.warning(f"Provider {name} reliability check failed: {e}")
            return 0

    def collect_votes(self) -> Dict[str, ProviderVote]:
        """Poll each available provider once; failures and implausible prices yield no vote"""
        votes: Dict[str, ProviderVote] = {}
        for name, provider in self.providers.items():
            if not self._provider_available(name, provider):
                logger.debug(f"Skipping unavailable provider {name}")
                continue
            try:
                price = provider.get_current_price()
            except Exception as e:
                logger.warning(f"Provider {name} failed to provide price: {e}")
                continue

            if not self.is_plausible(price):
                logger.warning(f"Provider {name} returned implausible price {price!r}, ignoring")
                continue

            votes[name] = ProviderVote(
                price=float(price),
                weight=self.provider_weights[name],
                reliability=self._reliability(name, provider),
            )
        return votes

    def get_price_consensus(self) -> ConsensusResult:
        """Poll providers and return the consensus verdict"""
        votes = self.collect_votes()
        if not votes:
            logger.warning("No providers available for price consensus, using fallback price")
            return self._fallback_result()

        result = self.calculate_price_consensus(
            {name: v.price for name, v in votes.items()},
            {name: v.weight for name, v in votes.items()},
        )
        result.providers = votes
        logger.info(
            f"Price consensus calculated: {result.price:.4f} via {result.method.value} "
            f"({result.confidence.value} confidence, providers: {', '.join(votes)})"
        )
        if result.outliers:
            logger.warning(f"Outlier providers excluded from consensus: {', '.join(result.outliers)}")
        return result

    def get_current_price(self) -> float:
        """Current consensus price"""
        return self.get_price_consensus().price

    def _fallback_result(self) -> ConsensusResult:
        return ConsensusResult(
            price=self.fallback_price,
            method=ConsensusMethod.FALLBACK,
            confidence=ConfidenceLevel.LOW,
            variance=None,
            has_consensus=False,
        )

    def calculate_price_consensus(self, prices: Dict[str, float],
                                  weights: Optional[Dict[str, float]] = None) -> ConsensusResult:
        """
        Calculate the consensus over provider prices

        Args:
            prices: Provider name -> plausible price
            weights: Provider name -> weight, registered weights are used for missing names

        Returns:
            ConsensusResult describing price, method, confidence, variance and outliers
        """
        if not prices:
            return self._fallback_result()

        if len(prices) == 1:
            price = next(iter(prices.values()))
            return ConsensusResult(
                price=price,
                method=ConsensusMethod.SINGLE_PROVIDER,
                confidence=ConfidenceLevel.MEDIUM,
                variance=0.0,
                has_consensus=True,
            )

        weights = weights or {}
        values = list(prices.values())
        mean = statistics.fmean(values)
        variance = statistics.pvariance(values, mu=mean)
        spread = max(values) - min(values)

        if spread <= mean * self.consensus_threshold and len(prices) >= self.min_providers_for_consensus:
            weighted_sum = 0.0
            total_weight = 0.0
            for name, price in prices.items():
                weight = weights.get(name, self.provider_weights.get(name, self.default_weight))
                weighted_sum += price * weight
                total_weight += weight
            consensus_price = weighted_sum / total_weight if total_weight > 0 else mean
            return ConsensusResult(
                price=consensus_price,
                method=ConsensusMethod.WEIGHTED_CONSENSUS,
                confidence=ConfidenceLevel.HIGH,
                variance=variance,
                has_consensus=True,
            )

        outliers = self._identify_outliers(prices, mean, variance)
        remaining = [price for name, price in prices.items() if name not in outliers]
        if remaining:
            return ConsensusResult(
                price=self._median(remaining),
                method=ConsensusMethod.OUTLIER_FILTERED_MEDIAN,
                confidence=ConfidenceLevel.MEDIUM,
                variance=variance,
                outliers=outliers,
                has_consensus=False,
            )

        return ConsensusResult(
            price=self._median(values),
            method=ConsensusMethod.SIMPLE_MEDIAN,
            confidence=ConfidenceLevel.LOW,
            variance=variance,
            outliers=outliers,
            has_consensus=False,
        )

    def _identify_outliers(self, prices: Dict[str, float], mean: float, variance: float) -> List[str]:
        threshold = self.outlier_std_devs * math.sqrt(variance)
        return [name for name, price in prices.items() if abs(price - mean) > threshold]

    @staticmethod
    def _median(values: Sequence[float]) -> float:
        """Median, averaging the two middle values for even counts"""
        ordered = sorted(values)
        middle = len(ordered) // 2
        if len(ordered) % 2 == 0:
            return (ordered[middle - 1] + ordered[middle]) / 2
        return ordered[middle]

    def get_next_24_hour_prices(self) -> List[float]:
        """Slot-by-slot consensus over each provider's next-24h prices"""
        return self._consensus_price_array('next24h')

    def get_day_ahead_prices(self, day: Optional[date] = None) -> List[float]:
        """Slot-by-slot consensus over each provider's day-ahead prices"""
        return self._consensus_price_array('dayahead', day)

    def _consensus_price_array(self, kind: str, day: Optional[date] = None) -> List[float]:
        datasets: Dict[str, List[float]] = {}
        for name, provider in self.providers.items():
            if not self._provider_available(name, provider):
                continue
            try:
                if kind == 'next24h':
                    data = list(provider.get_next_24_hour_prices())
                else:
                    data = [i.price if isinstance(i, PriceInterval) else i
                            for i in provider.get_day_ahead_prices(day)]
            except Exception as e:
                logger.warning(f"Provider {name} failed during array consensus calculation ({kind}): {e}")
                continue

            if len(data) >= self.min_array_intervals:
                datasets[name] = data
            else:
                logger.debug(f"Provider {name} returned only {len(data)} {kind} prices, ignoring")

        if not datasets:
            logger.warning(f"No providers available for array consensus ({kind}), using fallback prices")
            return [self.fallback_price] * 24

        slots = max(len(data) for data in datasets.values())
        consensus_prices = []
        for slot in range(slots):
            slot_prices = {
                name: data[slot]
                for name, data in datasets.items()
                if slot < len(data) and self.is_plausible(data[slot])
            }
            consensus_prices.append(self.calculate_price_consensus(slot_prices).price)
        return consensus_prices

    def get_provider_status(self) -> Dict[str, Dict[str, Any]]:
        """Availability, reliability and a price test for every registered provider"""
        status = {}
        for name, provider in self.providers.items():
            info = {
                'name': name,
                'description': provider.get_provider_description(),
                'weight': self.provider_weights[name],
                'is_available': self._provider_available(name, provider),
                'reliability_score': self._reliability(name, provider),
            }
            try:
                info['data_freshness'] = provider.get_data_freshness()
            except Exception as e:
                info['data_freshness'] = None
                logger.debug(f"Provider {name} freshness unavailable: {e}")

            try:
                price = provider.get_current_price()
                info['current_price'] = price
                info['price_test'] = 'pass' if self.is_plausible(price) else 'suspicious'
            except Exception as e:
                info['current_price'] = None
                info['price_test'] = 'failed'
                info['error'] = str(e)
            status[name] = info
        return status

    def get_best_provider(self) -> Optional[PriceProvider]:
        """Available provider with the highest reliability x weight score"""
        best_provider = None
        best_score = 0.0
        for name, provider in self.providers.items():
            if not self._provider_available(name, provider):
                continue
            score = self._reliability(name, provider) * self.provider_weights[name]
            if score > best_score:
                best_score = score
                best_provider = provider
        return best_provider

#!/usr/bin/env python3
"""
Price Window Planning Module
Classifies a price horizon into tiers and derives charge/discharge windows

This module implements price-only opportunity analysis:
- Horizon statistics (min, max, mean, median, standard deviation)
- Three-tier percentile thresholds (cheapest / middle / expensive)
- Charge windows ranked by savings, discharge windows ranked by earnings
- A price-only schedule that never looks at battery SOC

Operational dispatch with SOC constraints lives in realtime_decision_maker.
"""

import logging
import statistics
from datetime import datetime, timedelta
from typing import Any, List, Optional, Sequence

from battery_models import (
    BatteryAction,
    ChargeWindow,
    DischargeWindow,
    PriceAnalysis,
    PriceInterval,
    PriceSchedule,
    PriceStatistics,
    PriceTier,
    ScheduleEntry,
    TierThresholds,
)
from optimizer_config import resolve_config
from price_validation import horizon_interval_minutes, normalize_intervals, validate_soc

logger = logging.getLogger(__name__)


class PriceWindowPlanner:
    """Analyzes a price horizon for advisory charge/discharge opportunities"""

    def __init__(self, config=None):
        """
        Initialize the planner

        Args:
            config: OptimizerConfig, configuration dict, YAML path or None for defaults
        """
        self.config = resolve_config(config)
        planner = self.config.planner

        self.horizon_cap = planner.horizon_cap_intervals
        self.interval_minutes = planner.interval_minutes
        self.cheapest_percentile = planner.cheapest_percentile
        self.middle_percentile = planner.middle_percentile
        self.evening_cutoff_hour = planner.evening_cutoff_hour
        self.currency = self.config.prices.currency

    def _prepare(self, intervals: Sequence[Any], interval_minutes: Optional[int]) -> List[PriceInterval]:
        if interval_minutes is None and intervals:
            interval_minutes = horizon_interval_minutes(len(intervals))
        normalized = normalize_intervals(
            intervals,
            interval_minutes=interval_minutes or self.interval_minutes,
            min_price=self.config.prices.min_valid_price,
            max_price=self.config.prices.max_valid_price,
        )
        return normalized[:self.horizon_cap]

    def _hour_of(self, interval: PriceInterval) -> int:
        """Local hour of the interval; horizons without timestamps start at midnight"""
        if interval.hour is not None:
            return interval.hour
        return (interval.index * interval.duration_minutes // 60) % 24

    @staticmethod
    def calculate_statistics(prices: Sequence[float]) -> PriceStatistics:
        return PriceStatistics(
            min=min(prices),
            max=max(prices),
            avg=statistics.fmean(prices),
            median=statistics.median(prices),
            std_dev=statistics.pstdev(prices),
        )

    def compute_tier_thresholds(self, prices: Sequence[float]) -> TierThresholds:
        """
        Percentile thresholds over a re-sorted copy of the prices.

        The thresholds are the values at floor(p * N) of the sorted copy,
        so duplicate prices around a cut point all fall on the same side.
        """
        sorted_prices = sorted(prices)
        total = len(sorted_prices)
        cheapest = sorted_prices[int(total * self.cheapest_percentile)]
        middle = sorted_prices[int(total * self.middle_percentile)]
        return TierThresholds(cheapest_threshold=cheapest, middle_threshold=middle,
                              max_price=sorted_prices[-1])

    @staticmethod
    def _calculate_priority(price: float, stats: PriceStatistics, action: BatteryAction) -> float:
        """0-100 score: how far the price sits from the average towards the extreme"""
        if action == BatteryAction.CHARGE:
            max_gain = stats.avg - stats.min
            gain = stats.avg - price
        else:
            max_gain = stats.max - stats.avg
            gain = price - stats.avg
        if max_gain <= 0:
            return 0.0
        return max(0.0, min(1.0, gain / max_gain)) * 100

    def is_charge_eligible(self, tier: PriceTier, hour: int) -> bool:
        """Cheapest tier charges any time; middle tier only before the evening cutoff"""
        if tier == PriceTier.CHEAPEST:
            return True
        return tier == PriceTier.MIDDLE and hour < self.evening_cutoff_hour

    def analyze(self, intervals: Sequence[Any], interval_minutes: Optional[int] = None) -> PriceAnalysis:
        """
        Analyze a price horizon

        Args:
            intervals: Ordered horizon (PriceInterval, dicts with 'value', or numbers)
            interval_minutes: Slot length of untimed entries; inferred from the horizon
                length when omitted (up to 48 entries hourly, otherwise 15 minutes)

        Returns:
            PriceAnalysis with statistics, tier thresholds and sorted windows

        Raises:
            PriceValidationError: On an empty horizon or invalid prices
        """
        horizon = self._prepare(intervals, interval_minutes)
        return self._analyze_horizon(horizon)

    def _analyze_horizon(self, horizon: List[PriceInterval]) -> PriceAnalysis:
        prices = [i.price for i in horizon]
        stats = self.calculate_statistics(prices)
        thresholds = self.compute_tier_thresholds(prices)

        charge_windows = []
        discharge_windows = []
        for interval in horizon:
            tier = thresholds.classify(interval.price)
            hour = self._hour_of(interval)

            if tier == PriceTier.EXPENSIVE:
                discharge_windows.append(DischargeWindow(
                    interval=interval.index,
                    price=interval.price,
                    earnings=interval.price - thresholds.middle_threshold,
                    priority=self._calculate_priority(interval.price, stats, BatteryAction.DISCHARGE),
                    start_time=interval.start_time,
                    end_time=interval.end_time,
                ))
                continue

            if not self.is_charge_eligible(tier, hour):
                logger.debug(f"Interval {interval.index}: {tier.value} tier after {self.evening_cutoff_hour}:00, not charging")
                continue

            savings = thresholds.middle_threshold - interval.price
            if savings <= 0:
                # Priced exactly at the middle threshold: nothing to gain
                continue
            charge_windows.append(ChargeWindow(
                interval=interval.index,
                price=interval.price,
                tier=tier,
                savings=savings,
                priority=self._calculate_priority(interval.price, stats, BatteryAction.CHARGE),
                start_time=interval.start_time,
                end_time=interval.end_time,
            ))

        # Stable sorts keep chronological order among equal savings/earnings
        charge_windows.sort(key=lambda w: w.savings, reverse=True)
        discharge_windows.sort(key=lambda w: w.earnings, reverse=True)

        analysis = PriceAnalysis(
            stats=stats,
            tier_thresholds=thresholds,
            charge_windows=charge_windows,
            discharge_windows=discharge_windows,
            total_intervals=len(horizon),
            price_volatility=stats.std_dev,
        )
        logger.info(
            f"Analyzed {len(horizon)} price intervals: {analysis.charge_opportunities} charge and "
            f"{analysis.discharge_opportunities} discharge opportunities "
            f"(thresholds {thresholds.cheapest_threshold:.3f}/{thresholds.middle_threshold:.3f})"
        )
        return analysis

    def _action_for(self, analysis: PriceAnalysis, index: int) -> BatteryAction:
        if analysis.charge_window_for(index) is not None:
            return BatteryAction.CHARGE
        if analysis.discharge_window_for(index) is not None:
            return BatteryAction.DISCHARGE
        return BatteryAction.IDLE

    def _reason_for(self, interval: PriceInterval, action: BatteryAction, analysis: PriceAnalysis) -> str:
        price = interval.price
        unit = f"{self.currency}/kWh"
        if action == BatteryAction.CHARGE:
            window = analysis.charge_window_for(interval.index)
            tier_desc = 'cheapest third' if window.tier == PriceTier.CHEAPEST else 'middle third'
            return f"Charging: {price:.3f} {unit} ({tier_desc} tier, {window.savings:.3f} {self.currency} savings)"
        if action == BatteryAction.DISCHARGE:
            window = analysis.discharge_window_for(interval.index)
            return f"Discharging: {price:.3f} {unit} (expensive tier, {window.earnings:.3f} {self.currency} premium)"

        tier = analysis.tier_thresholds.classify(price)
        if tier == PriceTier.MIDDLE and self._hour_of(interval) >= self.evening_cutoff_hour:
            return f"Idle: {price:.3f} {unit} (middle tier but evening - only cheapest tier charges)"
        return f"Idle: {price:.3f} {unit} (neutral tier)"

    def build_schedule(self, intervals: Sequence[Any], interval_minutes: Optional[int] = None) -> List[ScheduleEntry]:
        """
        Price-only schedule: one entry per interval, action from window membership.

        SOC is not consulted here; see realtime_decision_maker for dispatch.
        """
        horizon = self._prepare(intervals, interval_minutes)
        analysis = self._analyze_horizon(horizon)
        return self._entries_for(horizon, analysis)

    def _entries_for(self, horizon: List[PriceInterval], analysis: PriceAnalysis) -> List[ScheduleEntry]:
        schedule = []
        for interval in horizon:
            action = self._action_for(analysis, interval.index)
            schedule.append(ScheduleEntry(
                interval=interval.index,
                action=action,
                price=interval.price,
                reason=self._reason_for(interval, action, analysis),
                start_time=interval.start_time,
                end_time=interval.end_time,
            ))
        return schedule

    def generate_schedule(self, intervals: Sequence[Any], current_soc: float,
                          start_time: Optional[datetime] = None,
                          interval_minutes: Optional[int] = None) -> PriceSchedule:
        """
        Price-only schedule with its analysis and validity period.

        The SOC is validated but does not influence any action.
        """
        validate_soc(current_soc)
        start_time = start_time or datetime.now()
        horizon = self._prepare(intervals, interval_minutes)
        analysis = self._analyze_horizon(horizon)
        return PriceSchedule(
            entries=self._entries_for(horizon, analysis),
            analysis=analysis,
            generated_at=datetime.now(),
            valid_until=start_time + timedelta(minutes=self.horizon_cap * self.interval_minutes),
        )

    def time_to_interval(self, moment: datetime, interval_minutes: Optional[int] = None) -> int:
        """Slot index of a moment counted from its local midnight"""
        midnight = moment.replace(hour=0, minute=0, second=0, microsecond=0)
        minutes = (moment - midnight).total_seconds() / 60
        return int(minutes // (interval_minutes or self.interval_minutes))

    def make_immediate_decision(self, intervals: Sequence[Any], current_interval: Optional[int] = None,
                                current_time: Optional[datetime] = None,
                                interval_minutes: Optional[int] = None) -> ScheduleEntry:
        """
        Price-only action for the current interval.

        Args:
            intervals: Horizon starting at local midnight
            current_interval: Slot index, derived from current_time when omitted
            current_time: Defaults to now
            interval_minutes: Slot length of untimed entries, inferred when omitted

        Returns:
            ScheduleEntry for the current interval (index 0 if out of range)
        """
        horizon = self._prepare(intervals, interval_minutes)
        if current_interval is None:
            current_interval = self.time_to_interval(current_time or datetime.now(),
                                                     horizon[0].duration_minutes)
        if current_interval < 0 or current_interval >= len(horizon):
            logger.warning(f"Interval {current_interval} outside horizon of {len(horizon)}, using interval 0")
            current_interval = 0

        analysis = self._analyze_horizon(horizon)
        interval = horizon[current_interval]
        action = self._action_for(analysis, current_interval)
        return ScheduleEntry(
            interval=current_interval,
            action=action,
            price=interval.price,
            reason=self._reason_for(interval, action, analysis),
            start_time=interval.start_time,
            end_time=interval.end_time,
        )

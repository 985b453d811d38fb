#!/usr/bin/env python3
"""
Realtime Decision Maker Module
Decides every quarter hour whether the battery charges, discharges or idles

The decision runs as an ordered cascade; the first matching rule wins:
- Safety rules (critical SOC, full battery, empty battery)
- Forced price thresholds
- Price + SOC rules
- Opportunistic quartile rules
- Solar surplus / load deficit overrides applied to the pending decision

The module also simulates a full day of decisions, threading a running SOC
estimate through 96 quarter-hour steps.
"""

import logging
import statistics
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

from battery_models import (
    BatteryAction,
    ConfidenceLevel,
    DaySchedule,
    Decision,
    DecisionPriority,
    ScheduleEntry,
    ScheduleSummary,
    SystemState,
)
from optimizer_config import BatteryLimits, resolve_config
from price_validation import (
    horizon_interval_minutes,
    validate_forecast,
    validate_price,
    validate_price_series,
    validate_soc,
)

logger = logging.getLogger(__name__)

DURATION_BY_CONFIDENCE = {
    ConfidenceLevel.CRITICAL: 60,
    ConfidenceLevel.VERY_HIGH: 60,
    ConfidenceLevel.HIGH: 30,
}
DEFAULT_DURATION_MINUTES = 15


@dataclass
class PriceContext:
    """Where the current price sits within the horizon"""
    current_price: float
    avg_24h: float
    min_24h: float
    max_24h: float
    price_percentile: float
    is_cheap: bool
    is_expensive: bool
    is_bottom_quartile: bool
    is_top_quartile: bool
    next_hours_avg: float
    trend: str  # 'increasing' or 'decreasing'


@dataclass
class RuleInput:
    """Everything a cascade rule may look at"""
    price: float
    soc: float
    solar_kw: float
    load_kw: float
    limits: BatteryLimits
    context: Optional[PriceContext] = None

    @property
    def net_load_kw(self) -> float:
        return self.load_kw - self.solar_kw


@dataclass
class PendingDecision:
    """Decision before power, duration and SOC effect are finalized"""
    action: BatteryAction
    reason: str
    confidence: ConfidenceLevel
    priority: DecisionPriority


@dataclass
class DecisionRule:
    """One (predicate, decision-builder) pair of the cascade"""
    name: str
    applies: Callable[[RuleInput], bool]
    build: Callable[[RuleInput], PendingDecision]


class RealtimeDecisionMaker:
    """Applies the priority cascade to produce one dispatch decision"""

    def __init__(self, config=None):
        """
        Initialize the decision maker

        Args:
            config: OptimizerConfig, configuration dict, YAML path or None for defaults
        """
        self.config = resolve_config(config)
        self.limits = self.config.battery
        self.prices = self.config.prices
        self.soc_bands = self.config.soc_bands
        self.solar_load = self.config.solar_load
        self.simulation = self.config.simulation
        self.power_factors = self.config.priority_power_factors

        self.safety_rules = self._build_safety_rules()
        self.primary_rules = self._build_primary_rules()

    # ------------------------------------------------------------------
    # Rule tables
    # ------------------------------------------------------------------

    def _build_safety_rules(self) -> List[DecisionRule]:
        return [
            DecisionRule(
                name='critical_soc',
                applies=lambda r: r.soc <= r.limits.critical_soc,
                build=lambda r: PendingDecision(
                    BatteryAction.CHARGE,
                    f"SAFETY: Critical SOC ({r.soc:g}%) - emergency charging",
                    ConfidenceLevel.CRITICAL, DecisionPriority.SAFETY),
            ),
            DecisionRule(
                name='max_soc',
                applies=lambda r: r.soc >= r.limits.max_soc,
                build=lambda r: PendingDecision(
                    BatteryAction.IDLE,
                    f"SAFETY: SOC at maximum ({r.soc:g}%) - no charging allowed",
                    ConfidenceLevel.HIGH, DecisionPriority.SAFETY),
            ),
            DecisionRule(
                name='min_soc',
                applies=lambda r: r.soc <= r.limits.min_soc,
                build=lambda r: PendingDecision(
                    BatteryAction.IDLE,
                    f"SAFETY: SOC at minimum ({r.soc:g}%) - no discharging allowed",
                    ConfidenceLevel.HIGH, DecisionPriority.SAFETY),
            ),
        ]

    def _build_primary_rules(self) -> List[DecisionRule]:
        prices = self.prices
        bands = self.soc_bands
        unit = f"{prices.currency}/kWh"
        return [
            DecisionRule(
                name='force_charge',
                applies=lambda r: r.price <= prices.force_charge_price and r.soc < r.limits.max_soc,
                build=lambda r: PendingDecision(
                    BatteryAction.CHARGE,
                    f"FORCE CHARGE: Very cheap price {r.price:.3f} {unit}",
                    ConfidenceLevel.VERY_HIGH, DecisionPriority.PRICE),
            ),
            DecisionRule(
                name='force_discharge',
                applies=lambda r: r.price >= prices.force_discharge_price and r.soc > r.limits.min_soc,
                build=lambda r: PendingDecision(
                    BatteryAction.DISCHARGE,
                    f"FORCE DISCHARGE: Very expensive price {r.price:.3f} {unit}",
                    ConfidenceLevel.VERY_HIGH, DecisionPriority.PRICE),
            ),
            DecisionRule(
                name='smart_charge',
                applies=lambda r: r.price <= prices.cheap_price and r.soc < bands.high_soc_threshold,
                build=lambda r: PendingDecision(
                    BatteryAction.CHARGE,
                    f"SMART CHARGE: Cheap price {r.price:.3f} {unit} + SOC {r.soc:g}%",
                    ConfidenceLevel.HIGH if r.context.is_bottom_quartile else ConfidenceLevel.MEDIUM,
                    DecisionPriority.PRICE_SOC),
            ),
            DecisionRule(
                name='smart_discharge',
                applies=lambda r: r.price >= prices.expensive_price and r.soc > bands.low_soc_threshold,
                build=lambda r: PendingDecision(
                    BatteryAction.DISCHARGE,
                    f"SMART DISCHARGE: Expensive price {r.price:.3f} {unit} + SOC {r.soc:g}%",
                    ConfidenceLevel.HIGH if r.context.is_top_quartile else ConfidenceLevel.MEDIUM,
                    DecisionPriority.PRICE_SOC),
            ),
            DecisionRule(
                name='opportunistic_charge',
                applies=lambda r: r.context.is_bottom_quartile and r.soc < bands.opportunistic_charge_below,
                build=lambda r: PendingDecision(
                    BatteryAction.CHARGE,
                    "OPPORTUNISTIC CHARGE: Bottom quartile price + room for charging",
                    ConfidenceLevel.MEDIUM, DecisionPriority.OPPORTUNISTIC),
            ),
            DecisionRule(
                name='opportunistic_discharge',
                applies=lambda r: r.context.is_top_quartile and r.soc > bands.opportunistic_discharge_above,
                build=lambda r: PendingDecision(
                    BatteryAction.DISCHARGE,
                    "OPPORTUNISTIC DISCHARGE: Top quartile price + energy available",
                    ConfidenceLevel.MEDIUM, DecisionPriority.OPPORTUNISTIC),
            ),
            DecisionRule(
                name='idle',
                applies=lambda r: True,
                build=lambda r: PendingDecision(
                    BatteryAction.IDLE,
                    f"IDLE: No strong price signal (price: {r.price:.3f}, SOC: {r.soc:g}%)",
                    ConfidenceLevel.MEDIUM, DecisionPriority.DEFAULT),
            ),
        ]

    @staticmethod
    def evaluate_rules(rules: Sequence[DecisionRule], rule_input: RuleInput) -> Optional[PendingDecision]:
        """First matching rule wins; None if nothing matches"""
        for rule in rules:
            if rule.applies(rule_input):
                logger.debug(f"Rule '{rule.name}' matched")
                return rule.build(rule_input)
        return None

    # ------------------------------------------------------------------
    # Price context
    # ------------------------------------------------------------------

    def analyze_price_context(self, current_price: float, horizon: Sequence[float],
                              timestamp: datetime) -> PriceContext:
        """
        Price statistics around the current price.

        The horizon is assumed to start at local midnight of `timestamp`, so
        the look-ahead begins at the slot containing the current time.
        """
        avg_price = statistics.fmean(horizon)
        min_price = min(horizon)
        max_price = max(horizon)

        if max_price > min_price:
            percentile = (current_price - min_price) / (max_price - min_price) * 100
        else:
            percentile = 50.0

        interval_minutes = horizon_interval_minutes(len(horizon))
        start = (timestamp.hour * 60 + timestamp.minute) // interval_minutes
        span = self.simulation.lookahead_hours * 60 // interval_minutes
        next_prices = list(horizon[start:start + span]) or [current_price]
        next_avg = statistics.fmean(next_prices)

        return PriceContext(
            current_price=current_price,
            avg_24h=avg_price,
            min_24h=min_price,
            max_24h=max_price,
            price_percentile=percentile,
            is_cheap=current_price < avg_price * 0.8,
            is_expensive=current_price > avg_price * 1.2,
            is_bottom_quartile=percentile < 25,
            is_top_quartile=percentile > 75,
            next_hours_avg=next_avg,
            trend='increasing' if next_avg > current_price else 'decreasing',
        )

    # ------------------------------------------------------------------
    # Solar / load overrides
    # ------------------------------------------------------------------

    def adjust_for_solar_and_load(self, pending: PendingDecision, rule_input: RuleInput) -> PendingDecision:
        """Excess solar pulls towards charging, a sustained load deficit towards discharging"""
        net_load = rule_input.net_load_kw
        soc = rule_input.soc

        excess_solar = -net_load
        if excess_solar > self.solar_load.excess_solar_kw and soc < self.soc_bands.solar_charge_below:
            if pending.action == BatteryAction.IDLE:
                return PendingDecision(
                    BatteryAction.CHARGE,
                    f"{pending.reason} + SOLAR: Excess solar power available ({excess_solar:.2f} kW)",
                    pending.confidence, DecisionPriority.SOLAR)
            if pending.action == BatteryAction.DISCHARGE:
                return PendingDecision(
                    BatteryAction.CHARGE,
                    f"SOLAR OVERRIDE: Excess solar power ({excess_solar:.2f} kW) overrides discharge decision",
                    pending.confidence, DecisionPriority.SOLAR)

        if net_load > self.solar_load.load_deficit_kw and soc > self.soc_bands.load_discharge_above:
            forced_cheap_charge = (pending.action == BatteryAction.CHARGE
                                   and pending.priority == DecisionPriority.PRICE)
            if pending.action != BatteryAction.DISCHARGE and not forced_cheap_charge:
                return PendingDecision(
                    BatteryAction.DISCHARGE,
                    f"LOAD BALANCING: High home load ({rule_input.load_kw:.2f} kW, "
                    f"net {net_load:.2f} kW) requires battery support",
                    pending.confidence, DecisionPriority.LOAD_BALANCING)

        return pending

    # ------------------------------------------------------------------
    # Power, duration and SOC effect
    # ------------------------------------------------------------------

    @staticmethod
    def calculate_max_charge_power(soc: float, limits: BatteryLimits) -> float:
        """Rated charge power, tapered linearly within the band below max SOC"""
        if soc >= limits.max_soc:
            return 0.0
        taper_start = limits.max_soc - limits.taper_band_percent
        if soc > taper_start:
            reduction = (limits.max_soc - soc) / limits.taper_band_percent
            return limits.max_charge_power_kw * max(limits.taper_floor_ratio, reduction)
        return limits.max_charge_power_kw

    @staticmethod
    def calculate_max_discharge_power(soc: float, limits: BatteryLimits) -> float:
        """Rated discharge power, tapered linearly within the band above min SOC"""
        if soc <= limits.min_soc:
            return 0.0
        taper_end = limits.min_soc + limits.taper_band_percent
        if soc < taper_end:
            reduction = (soc - limits.min_soc) / limits.taper_band_percent
            return limits.max_discharge_power_kw * max(limits.taper_floor_ratio, reduction)
        return limits.max_discharge_power_kw

    def _power_for(self, pending: PendingDecision, soc: float, net_load_kw: float,
                   limits: BatteryLimits) -> float:
        if pending.action == BatteryAction.CHARGE:
            max_power = self.calculate_max_charge_power(soc, limits)
            if pending.priority == DecisionPriority.SOLAR:
                return min(max_power, max(0.0, -net_load_kw))
        elif pending.action == BatteryAction.DISCHARGE:
            max_power = self.calculate_max_discharge_power(soc, limits)
            if pending.priority == DecisionPriority.LOAD_BALANCING:
                return min(max_power, max(0.0, net_load_kw))
        else:
            return 0.0

        if pending.priority in (DecisionPriority.SAFETY, DecisionPriority.PRICE):
            return max_power
        return max_power * self.power_factors.get(pending.priority.value, self.power_factors['default'])

    @staticmethod
    def estimate_soc_change(action: BatteryAction, power_kw: float, duration_minutes: int,
                            limits: BatteryLimits) -> float:
        """SOC percentage points gained (charge, after losses) or lost (discharge)"""
        if action == BatteryAction.IDLE or power_kw == 0:
            return 0.0
        energy_kwh = power_kw * (duration_minutes / 60)
        soc_change = energy_kwh / limits.capacity_kwh * 100
        if action == BatteryAction.CHARGE:
            return soc_change * limits.efficiency
        return -soc_change

    def finalize(self, pending: PendingDecision, soc: float, net_load_kw: float,
                 timestamp: datetime, limits: Optional[BatteryLimits] = None) -> Decision:
        """Size power and duration for a pending decision"""
        limits = limits or self.limits
        power_kw = round(self._power_for(pending, soc, net_load_kw, limits), 2)
        if pending.action == BatteryAction.IDLE:
            duration = DEFAULT_DURATION_MINUTES
        else:
            duration = DURATION_BY_CONFIDENCE.get(pending.confidence, DEFAULT_DURATION_MINUTES)

        return Decision(
            action=pending.action,
            power_kw=power_kw,
            duration_minutes=duration,
            reason=pending.reason,
            confidence=pending.confidence,
            priority=pending.priority,
            estimated_soc_change=self.estimate_soc_change(pending.action, power_kw, duration, limits),
            timestamp=timestamp,
            valid_until=timestamp + timedelta(minutes=duration),
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def make_decision(self, current_price: float, horizon_prices: Sequence[float], current_soc: float,
                      solar_power_kw: float = 0.0, load_power_kw: float = 0.0,
                      timestamp: Optional[datetime] = None,
                      limits: Optional[BatteryLimits] = None) -> Decision:
        """
        Make the dispatch decision for the current quarter hour

        Args:
            current_price: Price of the current interval
            horizon_prices: Prices of the day, starting at local midnight
            current_soc: Battery SOC in percent
            solar_power_kw: Current PV production
            load_power_kw: Current house consumption
            timestamp: Decision time, defaults to now
            limits: Battery limits overriding the configured ones

        Returns:
            Decision with action, power, duration and validity window

        Raises:
            PriceValidationError: On invalid price, horizon, SOC or power readings
        """
        timestamp = timestamp or datetime.now()
        limits = limits or self.limits
        price = validate_price(current_price, min_price=self.prices.min_valid_price,
                               max_price=self.prices.max_valid_price)
        horizon = validate_price_series(horizon_prices, self.prices.min_valid_price,
                                        self.prices.max_valid_price)
        soc = validate_soc(current_soc)
        solar_kw, load_kw = validate_forecast([solar_power_kw, load_power_kw], 'power')

        rule_input = RuleInput(price=price, soc=soc, solar_kw=solar_kw, load_kw=load_kw, limits=limits)
        logger.debug(
            f"Making decision at {timestamp:%Y-%m-%d %H:%M}: price {price:.3f}, SOC {soc:g}%, "
            f"solar {solar_kw:.2f} kW, load {load_kw:.2f} kW"
        )

        pending = self.evaluate_rules(self.safety_rules, rule_input)
        if pending is None:
            rule_input.context = self.analyze_price_context(price, horizon, timestamp)
            pending = self.evaluate_rules(self.primary_rules, rule_input)
            pending = self.adjust_for_solar_and_load(pending, rule_input)

        decision = self.finalize(pending, soc, rule_input.net_load_kw, timestamp, limits)
        logger.info(
            f"Decision: {decision.action.value} {decision.power_kw:.2f} kW for "
            f"{decision.duration_minutes} min ({decision.confidence.value}) - {decision.reason}"
        )
        return decision

    def make_decision_for_state(self, current_price: float, horizon_prices: Sequence[float],
                                state: SystemState, timestamp: Optional[datetime] = None) -> Decision:
        """Decision from a telemetry snapshot, honouring its rated capacity and power"""
        overrides = {}
        if state.capacity_kwh is not None:
            overrides['capacity_kwh'] = state.capacity_kwh
        if state.max_charge_power_kw is not None:
            overrides['max_charge_power_kw'] = state.max_charge_power_kw
        if state.max_discharge_power_kw is not None:
            overrides['max_discharge_power_kw'] = state.max_discharge_power_kw
        limits = replace(self.limits, **overrides) if overrides else self.limits

        return self.make_decision(current_price, horizon_prices, state.soc_percent,
                                  state.solar_power_kw, state.load_power_kw, timestamp, limits)

    def _clamp_soc(self, soc: float) -> float:
        return max(self.limits.min_soc, min(self.limits.max_soc, soc))

    def generate_day_schedule(self, prices: Sequence[float], starting_soc: float,
                              solar_forecast: Optional[Sequence[float]] = None,
                              load_forecast: Optional[Sequence[float]] = None,
                              start_time: Optional[datetime] = None) -> DaySchedule:
        """
        Simulate a full day of quarter-hour decisions

        The running SOC is an explicit accumulator: each step's estimated SOC
        change feeds the next step, clamped to the configured SOC band.

        Args:
            prices: Hourly (24) or quarter-hour (96) prices starting at midnight
            starting_soc: SOC at the start of the day
            solar_forecast: PV kW per step, 0 where missing
            load_forecast: House load kW per step, default load where missing
            start_time: Start of the simulated day, defaults to today's midnight

        Returns:
            DaySchedule with every step and aggregate totals
        """
        horizon = validate_price_series(prices, self.prices.min_valid_price, self.prices.max_valid_price)
        starting_soc = validate_soc(starting_soc)
        solar = validate_forecast(solar_forecast, 'solar')
        load = validate_forecast(load_forecast, 'load')
        start_time = start_time or datetime.now().replace(hour=0, minute=0, second=0, microsecond=0)

        steps = self.simulation.steps_per_day
        step_minutes = self.simulation.step_minutes
        interval_minutes = horizon_interval_minutes(len(horizon))

        entries = []
        soc = self._clamp_soc(starting_soc)
        for step in range(steps):
            moment = start_time + timedelta(minutes=step * step_minutes)
            price_index = step * step_minutes // interval_minutes
            price = horizon[price_index] if price_index < len(horizon) else self.prices.fallback_price
            solar_kw = solar[step] if step < len(solar) else 0.0
            load_kw = load[step] if step < len(load) else self.simulation.default_load_kw

            decision = self.make_decision(price, horizon, soc, solar_kw, load_kw, moment)
            entries.append(ScheduleEntry(
                interval=step,
                action=decision.action,
                price=price,
                reason=decision.reason,
                start_time=moment,
                end_time=moment + timedelta(minutes=step_minutes),
                decision=decision,
                solar_kw=solar_kw,
                load_kw=load_kw,
                soc_before=round(soc, 1),
            ))
            soc = self._clamp_soc(soc + decision.estimated_soc_change)

        summary = self.summarize_schedule(entries)
        logger.info(
            f"Simulated {summary.total_intervals} intervals: {summary.charge_intervals} charge, "
            f"{summary.discharge_intervals} discharge, SOC {starting_soc:g}% -> {soc:.1f}%"
        )
        return DaySchedule(entries=entries, summary=summary, starting_soc=starting_soc, ending_soc=soc)

    def summarize_schedule(self, entries: Sequence[ScheduleEntry]) -> ScheduleSummary:
        """Counts and energy totals of a simulated schedule"""
        def energy(entry: ScheduleEntry) -> float:
            return entry.decision.power_kw * (entry.decision.duration_minutes / 60)

        charging = [e for e in entries if e.action == BatteryAction.CHARGE]
        discharging = [e for e in entries if e.action == BatteryAction.DISCHARGE]
        charge_energy = sum(energy(e) for e in charging)
        discharge_energy = sum(energy(e) for e in discharging)

        return ScheduleSummary(
            total_intervals=len(entries),
            charge_intervals=len(charging),
            discharge_intervals=len(discharging),
            idle_intervals=len(entries) - len(charging) - len(discharging),
            total_charge_energy_kwh=round(charge_energy, 2),
            total_discharge_energy_kwh=round(discharge_energy, 2),
            efficiency_loss_kwh=round(charge_energy * (1 - self.limits.efficiency), 2),
            net_energy_kwh=round(discharge_energy - charge_energy, 2),
        )

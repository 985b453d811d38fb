#!/usr/bin/env python3
"""
Battery Optimisation Data Model
Shared enums and dataclasses for price consensus, window planning and dispatch

This module defines:
- Closed enums for actions, price tiers, confidence levels and decision priorities
- Price intervals, statistics and tier thresholds for a planning horizon
- Charge/discharge opportunity windows
- Telemetry snapshots, dispatch decisions and schedule entries
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional, Any


class BatteryAction(Enum):
    """Dispatch action for one interval"""
    CHARGE = "charge"
    DISCHARGE = "discharge"
    IDLE = "idle"


class PriceTier(Enum):
    """Percentile price bucket within a horizon"""
    CHEAPEST = "cheapest"
    MIDDLE = "middle"
    EXPENSIVE = "expensive"


class ConfidenceLevel(Enum):
    """Confidence attached to consensus results and dispatch decisions"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"
    CRITICAL = "critical"


class DecisionPriority(Enum):
    """Category of the rule that produced a decision"""
    SAFETY = "safety"
    PRICE = "price"
    PRICE_SOC = "price_soc"
    OPPORTUNISTIC = "opportunistic"
    SOLAR = "solar"
    LOAD_BALANCING = "load_balancing"
    DEFAULT = "default"


class ConsensusMethod(Enum):
    """How the aggregator arrived at its price"""
    FALLBACK = "fallback"
    SINGLE_PROVIDER = "single_provider"
    WEIGHTED_CONSENSUS = "weighted_consensus"
    OUTLIER_FILTERED_MEDIAN = "outlier_filtered_median"
    SIMPLE_MEDIAN = "simple_median"


@dataclass(frozen=True)
class PriceInterval:
    """One priced slot of a horizon"""
    index: int
    price: float
    start_time: Optional[datetime] = None
    duration_minutes: int = 15

    @property
    def end_time(self) -> Optional[datetime]:
        if self.start_time is None:
            return None
        return self.start_time + timedelta(minutes=self.duration_minutes)

    @property
    def hour(self) -> Optional[int]:
        """Local hour-of-day of the interval start, if known"""
        return self.start_time.hour if self.start_time is not None else None


@dataclass
class PriceStatistics:
    """Descriptive statistics over the active horizon"""
    min: float
    max: float
    avg: float
    median: float
    std_dev: float


@dataclass(frozen=True)
class TierThresholds:
    """Percentile thresholds computed once per horizon"""
    cheapest_threshold: float
    middle_threshold: float
    max_price: float

    def classify(self, price: float) -> PriceTier:
        if price <= self.cheapest_threshold:
            return PriceTier.CHEAPEST
        if price <= self.middle_threshold:
            return PriceTier.MIDDLE
        return PriceTier.EXPENSIVE

    def as_ranges(self) -> Dict[str, List[float]]:
        return {
            'cheapest_tier': [0.0, self.cheapest_threshold],
            'middle_tier': [self.cheapest_threshold, self.middle_threshold],
            'expensive_tier': [self.middle_threshold, self.max_price],
        }


@dataclass
class ChargeWindow:
    """Interval flagged as an advisory charging opportunity"""
    interval: int
    price: float
    tier: PriceTier
    savings: float
    priority: float
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


@dataclass
class DischargeWindow:
    """Interval flagged as an advisory discharging opportunity"""
    interval: int
    price: float
    earnings: float
    priority: float
    tier: PriceTier = PriceTier.EXPENSIVE
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


@dataclass
class PriceAnalysis:
    """Result of analysing one price horizon"""
    stats: PriceStatistics
    tier_thresholds: TierThresholds
    charge_windows: List[ChargeWindow]
    discharge_windows: List[DischargeWindow]
    total_intervals: int
    price_volatility: float

    @property
    def charge_opportunities(self) -> int:
        return len(self.charge_windows)

    @property
    def discharge_opportunities(self) -> int:
        return len(self.discharge_windows)

    def charge_window_for(self, interval: int) -> Optional[ChargeWindow]:
        return next((w for w in self.charge_windows if w.interval == interval), None)

    def discharge_window_for(self, interval: int) -> Optional[DischargeWindow]:
        return next((w for w in self.discharge_windows if w.interval == interval), None)


@dataclass
class SystemState:
    """Read-only telemetry snapshot supplied per call"""
    soc_percent: float
    solar_power_kw: float = 0.0
    load_power_kw: float = 0.0
    grid_power_kw: float = 0.0
    battery_power_kw: float = 0.0
    capacity_kwh: Optional[float] = None
    max_charge_power_kw: Optional[float] = None
    max_discharge_power_kw: Optional[float] = None


@dataclass
class Decision:
    """Dispatch decision handed to the executor"""
    action: BatteryAction
    power_kw: float
    duration_minutes: int
    reason: str
    confidence: ConfidenceLevel
    priority: DecisionPriority
    estimated_soc_change: float
    timestamp: datetime
    valid_until: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            'action': self.action.value,
            'power_kw': self.power_kw,
            'duration_minutes': self.duration_minutes,
            'reason': self.reason,
            'confidence': self.confidence.value,
            'priority': self.priority.value,
            'estimated_soc_change': self.estimated_soc_change,
            'timestamp': self.timestamp.isoformat(),
            'valid_until': self.valid_until.isoformat(),
        }


@dataclass
class ScheduleEntry:
    """One interval of a price-only plan or a SOC-simulated plan"""
    interval: int
    action: BatteryAction
    price: float
    reason: str
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    decision: Optional[Decision] = None
    solar_kw: float = 0.0
    load_kw: float = 0.0
    soc_before: Optional[float] = None


@dataclass
class ScheduleSummary:
    """Aggregate totals of a simulated day"""
    total_intervals: int
    charge_intervals: int
    discharge_intervals: int
    idle_intervals: int
    total_charge_energy_kwh: float
    total_discharge_energy_kwh: float
    efficiency_loss_kwh: float
    net_energy_kwh: float


@dataclass
class DaySchedule:
    """SOC-threaded simulation of a full day"""
    entries: List[ScheduleEntry]
    summary: ScheduleSummary
    starting_soc: float
    ending_soc: float
    generated_at: datetime = field(default_factory=datetime.now)


@dataclass
class PriceSchedule:
    """Price-only plan over a horizon"""
    entries: List[ScheduleEntry]
    analysis: PriceAnalysis
    generated_at: datetime
    valid_until: datetime


@dataclass
class ProviderVote:
    """Price contributed by one provider to a consensus round"""
    price: float
    weight: float
    reliability: int = 0


@dataclass
class ConsensusResult:
    """Single trusted price plus the verdict behind it"""
    price: float
    method: ConsensusMethod
    confidence: ConfidenceLevel
    variance: Optional[float]
    outliers: List[str] = field(default_factory=list)
    has_consensus: bool = False
    providers: Dict[str, ProviderVote] = field(default_factory=dict)

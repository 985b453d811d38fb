"""
Optimizer Configuration Models

Threshold constants for price bands, SOC bands, battery limits, planning
and consensus, grouped in one structure passed into each component.
"""

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "optimizer_config.yaml"


class ConfigurationError(ValueError):
    """Raised when configuration values are inconsistent"""


@dataclass
class BatteryLimits:
    min_soc: float = 20.0
    max_soc: float = 95.0
    critical_soc: float = 25.0
    capacity_kwh: float = 8.0
    max_charge_power_kw: float = 3.0
    max_discharge_power_kw: float = 3.0
    efficiency: float = 0.93  # round-trip
    taper_band_percent: float = 10.0
    taper_floor_ratio: float = 0.3


@dataclass
class PriceThresholds:
    currency: str = 'SEK'
    force_charge_price: float = 0.08
    cheap_price: float = 0.25
    expensive_price: float = 0.65
    force_discharge_price: float = 1.20
    fallback_price: float = 0.50
    # Provider sanity range, both bounds exclusive
    min_plausible_price: float = 0.0
    max_plausible_price: float = 10.0
    # Horizon validation range, both bounds inclusive
    min_valid_price: float = -1000.0
    max_valid_price: float = 5000.0


@dataclass
class SocBands:
    low_soc_threshold: float = 30.0
    high_soc_threshold: float = 70.0
    opportunistic_charge_below: float = 60.0
    opportunistic_discharge_above: float = 40.0
    solar_charge_below: float = 85.0
    load_discharge_above: float = 30.0


@dataclass
class SolarLoadThresholds:
    excess_solar_kw: float = 2.0
    load_deficit_kw: float = 2.0


@dataclass
class PlannerSettings:
    horizon_cap_intervals: int = 192  # 48h of 15-minute slots
    interval_minutes: int = 15
    cheapest_percentile: float = 0.33
    middle_percentile: float = 0.67
    evening_cutoff_hour: int = 18


@dataclass
class ConsensusSettings:
    consensus_threshold: float = 0.15
    min_providers_for_consensus: int = 2
    outlier_std_devs: float = 2.0
    default_weight: float = 5.0
    min_array_intervals: int = 20


@dataclass
class SimulationSettings:
    steps_per_day: int = 96
    step_minutes: int = 15
    default_load_kw: float = 1.5
    lookahead_hours: int = 6


def _default_power_factors() -> Dict[str, float]:
    return {'price_soc': 0.8, 'opportunistic': 0.6, 'default': 0.5}


# YAML section name -> (attribute, dataclass)
_SECTIONS = {
    'battery': ('battery', BatteryLimits),
    'prices': ('prices', PriceThresholds),
    'soc_bands': ('soc_bands', SocBands),
    'solar_load': ('solar_load', SolarLoadThresholds),
    'planner': ('planner', PlannerSettings),
    'consensus': ('consensus', ConsensusSettings),
    'simulation': ('simulation', SimulationSettings),
}


def _section_from_dict(cls, values: Dict[str, Any]):
    known = {f.name for f in fields(cls)}
    unknown = set(values) - known
    if unknown:
        logger.warning(f"Ignoring unknown {cls.__name__} keys: {', '.join(sorted(unknown))}")
    return cls(**{k: v for k, v in values.items() if k in known})


@dataclass
class OptimizerConfig:
    """Complete tuning surface for aggregator, planner and decision maker"""

    battery: BatteryLimits = field(default_factory=BatteryLimits)
    prices: PriceThresholds = field(default_factory=PriceThresholds)
    soc_bands: SocBands = field(default_factory=SocBands)
    solar_load: SolarLoadThresholds = field(default_factory=SolarLoadThresholds)
    planner: PlannerSettings = field(default_factory=PlannerSettings)
    consensus: ConsensusSettings = field(default_factory=ConsensusSettings)
    simulation: SimulationSettings = field(default_factory=SimulationSettings)
    priority_power_factors: Dict[str, float] = field(default_factory=_default_power_factors)

    @classmethod
    def from_dict(cls, config_dict: Optional[Dict[str, Any]]) -> 'OptimizerConfig':
        """
        Create OptimizerConfig from a YAML configuration dict.

        Args:
            config_dict: Parsed YAML with optional sections battery, prices,
                soc_bands, solar_load, planner, consensus, simulation and
                priority_power_factors

        Returns:
            OptimizerConfig instance

        Raises:
            ConfigurationError: If the resulting values are inconsistent
        """
        config_dict = config_dict or {}
        kwargs = {}
        for section, (attr, section_cls) in _SECTIONS.items():
            section_values = config_dict.get(section) or {}
            if not isinstance(section_values, dict):
                raise ConfigurationError(f"Section '{section}' must be a mapping")
            kwargs[attr] = _section_from_dict(section_cls, section_values)

        factors = _default_power_factors()
        factors.update(config_dict.get('priority_power_factors') or {})
        kwargs['priority_power_factors'] = factors

        config = cls(**kwargs)
        is_valid, error_msg = config.validate()
        if not is_valid:
            raise ConfigurationError(f"Invalid optimizer configuration: {error_msg}")
        return config

    @classmethod
    def from_yaml_file(cls, config_path: Union[str, Path, None] = None) -> 'OptimizerConfig':
        """Load configuration from YAML, falling back to defaults if the file is unusable"""
        path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
        try:
            with open(path, 'r') as f:
                raw = yaml.safe_load(f) or {}
        except (FileNotFoundError, yaml.YAMLError) as e:
            logger.warning(f"Could not load optimizer config from {path}: {e}, using defaults")
            return cls()
        return cls.from_dict(raw)

    def validate(self) -> Tuple[bool, Optional[str]]:
        """
        Validate configuration.

        Returns:
            Tuple of (is_valid, error_message)
        """
        b = self.battery
        if not 0 <= b.min_soc < b.max_soc <= 100:
            return False, f"SOC limits must satisfy 0 <= min_soc < max_soc <= 100 (got {b.min_soc}/{b.max_soc})"
        if b.critical_soc >= b.max_soc:
            return False, f"Critical SOC must be below max_soc (got {b.critical_soc}/{b.max_soc})"
        if b.capacity_kwh <= 0:
            return False, "Battery capacity must be positive"
        if b.max_charge_power_kw <= 0 or b.max_discharge_power_kw <= 0:
            return False, "Maximum charge/discharge power must be positive"
        if not 0 < b.efficiency <= 1:
            return False, "Efficiency must be in (0, 1]"
        if b.taper_band_percent <= 0:
            return False, "Taper band must be positive"
        if not 0 <= b.taper_floor_ratio <= 1:
            return False, "Taper floor ratio must be within [0, 1]"

        p = self.planner
        if not 0 <= p.cheapest_percentile <= p.middle_percentile < 1:
            return False, "Percentiles must satisfy 0 <= cheapest <= middle < 1"
        if p.horizon_cap_intervals <= 0 or p.interval_minutes <= 0:
            return False, "Planner horizon cap and interval length must be positive"

        pr = self.prices
        if pr.min_plausible_price >= pr.max_plausible_price:
            return False, "Plausible price range is empty"
        if pr.min_valid_price >= pr.max_valid_price:
            return False, "Valid price range is empty"

        if self.consensus.consensus_threshold < 0:
            return False, "Consensus threshold must not be negative"
        if self.simulation.steps_per_day <= 0 or self.simulation.step_minutes <= 0:
            return False, "Simulation steps must be positive"
        return True, None


def resolve_config(config: Union['OptimizerConfig', Dict[str, Any], str, Path, None]) -> OptimizerConfig:
    """Accept a config object, dict, YAML path or None and return an OptimizerConfig"""
    if isinstance(config, OptimizerConfig):
        return config
    if isinstance(config, (str, Path)):
        return OptimizerConfig.from_yaml_file(config)
    if config is None:
        return OptimizerConfig()
    return OptimizerConfig.from_dict(config)

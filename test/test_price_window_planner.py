#!/usr/bin/env python3
"""
Price Window Planner Tests
Tests the price-only opportunity analysis

This test suite verifies:
- Horizon statistics and percentile tier thresholds
- Charge/discharge window derivation, ranking and priorities
- Evening restriction for middle-tier charging
- Price-only schedule, immediate decision and validation errors
"""

import unittest
from datetime import datetime, timedelta
import sys
import os

# Add src directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import pytest

from battery_models import BatteryAction, PriceInterval, PriceTier
from price_validation import PriceValidationError
from price_window_planner import PriceWindowPlanner


TEN_STEP_PRICES = [0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0]


class TestTierThresholds(unittest.TestCase):
    """Test percentile threshold computation"""

    def setUp(self):
        """Set up test environment"""
        self.planner = PriceWindowPlanner()

    def test_thresholds_use_floor_index_into_sorted_copy(self):
        """Test thresholds are sorted[floor(0.33N)] and sorted[floor(0.67N)]"""
        shuffled = [0.9, 0.1, 0.5, 1.0, 0.3, 0.7, 0.2, 0.8, 0.4, 0.6]

        thresholds = self.planner.compute_tier_thresholds(shuffled)

        self.assertEqual(thresholds.cheapest_threshold, 0.4)
        self.assertEqual(thresholds.middle_threshold, 0.7)
        self.assertEqual(thresholds.max_price, 1.0)

    def test_classification(self):
        """Test tier boundaries are inclusive"""
        thresholds = self.planner.compute_tier_thresholds(TEN_STEP_PRICES)

        self.assertEqual(thresholds.classify(0.4), PriceTier.CHEAPEST)
        self.assertEqual(thresholds.classify(0.41), PriceTier.MIDDLE)
        self.assertEqual(thresholds.classify(0.7), PriceTier.MIDDLE)
        self.assertEqual(thresholds.classify(0.71), PriceTier.EXPENSIVE)

    def test_duplicate_prices_share_a_tier(self):
        """Test clustered duplicates around a cut point land in the same tier"""
        prices = [0.2, 0.2, 0.2, 0.2, 0.2, 0.2, 0.9, 0.9, 0.9]

        thresholds = self.planner.compute_tier_thresholds(prices)

        # floor(0.33*9)=2 and floor(0.67*9)=6
        self.assertEqual(thresholds.cheapest_threshold, 0.2)
        self.assertEqual(thresholds.middle_threshold, 0.9)
        self.assertEqual(thresholds.classify(0.9), PriceTier.MIDDLE)

    def test_statistics(self):
        """Test horizon statistics"""
        stats = self.planner.calculate_statistics([1.0, 2.0, 3.0, 4.0])

        self.assertEqual(stats.min, 1.0)
        self.assertEqual(stats.max, 4.0)
        self.assertAlmostEqual(stats.avg, 2.5)
        self.assertAlmostEqual(stats.median, 2.5)
        self.assertAlmostEqual(stats.std_dev, 1.118033988749895)


class TestWindowAnalysis(unittest.TestCase):
    """Test charge/discharge window derivation"""

    def setUp(self):
        """Set up test environment"""
        self.planner = PriceWindowPlanner()

    def test_windows_from_plain_prices(self):
        """Test windows for a rising price ladder"""
        analysis = self.planner.analyze(TEN_STEP_PRICES, interval_minutes=60)

        self.assertEqual([w.price for w in analysis.charge_windows], [0.1, 0.2, 0.3, 0.4, 0.5, 0.6])
        self.assertEqual([w.price for w in analysis.discharge_windows], [1.0, 0.9, 0.8])
        self.assertEqual(analysis.total_intervals, 10)
        self.assertEqual(analysis.charge_opportunities, 6)
        self.assertEqual(analysis.discharge_opportunities, 3)

    def test_interval_at_middle_threshold_is_not_a_window(self):
        """Test zero-savings intervals are excluded"""
        analysis = self.planner.analyze(TEN_STEP_PRICES, interval_minutes=60)

        self.assertIsNone(analysis.charge_window_for(6))
        self.assertIsNone(analysis.discharge_window_for(6))

    def test_savings_and_earnings_strictly_positive(self):
        """Test every window carries a positive benefit"""
        analysis = self.planner.analyze([0.5, 0.5, 0.3, 0.3, 0.8, 0.8, 0.5, 0.2, 1.1, 0.5], interval_minutes=60)

        self.assertTrue(all(w.savings > 0 for w in analysis.charge_windows))
        self.assertTrue(all(w.earnings > 0 for w in analysis.discharge_windows))

    def test_windows_sorted_by_benefit(self):
        """Test descending savings/earnings order"""
        analysis = self.planner.analyze([0.9, 0.1, 0.5, 1.0, 0.3, 0.7, 0.2, 0.8, 0.4, 0.6], interval_minutes=60)

        savings = [w.savings for w in analysis.charge_windows]
        earnings = [w.earnings for w in analysis.discharge_windows]
        self.assertEqual(savings, sorted(savings, reverse=True))
        self.assertEqual(earnings, sorted(earnings, reverse=True))

    def test_priorities(self):
        """Test priority scores relative to average and extremes"""
        analysis = self.planner.analyze(TEN_STEP_PRICES, interval_minutes=60)

        cheapest = analysis.charge_window_for(0)
        dearest = analysis.discharge_window_for(9)
        self.assertAlmostEqual(cheapest.priority, 100.0)
        self.assertAlmostEqual(dearest.priority, 100.0)
        # 0.6 is above the 0.55 average, so it earns no charge priority
        self.assertEqual(analysis.charge_window_for(5).priority, 0.0)
        for window in analysis.charge_windows + analysis.discharge_windows:
            self.assertGreaterEqual(window.priority, 0.0)
            self.assertLessEqual(window.priority, 100.0)

    def test_flat_horizon_has_no_windows(self):
        """Test equal prices produce neither savings nor earnings"""
        analysis = self.planner.analyze([0.5] * 24)

        self.assertEqual(analysis.charge_windows, [])
        self.assertEqual(analysis.discharge_windows, [])
        self.assertEqual(analysis.price_volatility, 0.0)

    def test_middle_tier_not_charged_in_evening(self):
        """Test middle tier only charges before 18:00"""
        midnight = datetime(2025, 12, 3)
        # Middle tier (0.3) at 08-09 and again at 19-20
        prices = [0.1] * 8 + [0.3] * 2 + [0.5] * 6 + [0.9] * 3 + [0.3] * 2 + [0.9] * 3
        intervals = [
            {'time_start': (midnight + timedelta(hours=h)).isoformat(), 'value': p}
            for h, p in enumerate(prices)
        ]

        analysis = self.planner.analyze(intervals)

        self.assertEqual(analysis.tier_thresholds.classify(0.3), PriceTier.MIDDLE)
        self.assertIsNotNone(analysis.charge_window_for(8))
        self.assertIsNone(analysis.charge_window_for(19))
        self.assertIsNone(analysis.charge_window_for(20))

        schedule = self.planner.build_schedule(intervals)
        self.assertEqual(schedule[19].action, BatteryAction.IDLE)
        self.assertIn('evening', schedule[19].reason)

    def test_plain_hourly_prices_keep_evening_restriction(self):
        """Test a 24-entry horizon of bare prices is read as hourly slots"""
        prices = [0.1] * 8 + [0.3] * 2 + [0.5] * 6 + [0.9] * 3 + [0.3] * 2 + [0.9] * 3

        analysis = self.planner.analyze(prices)

        self.assertIsNotNone(analysis.charge_window_for(8))
        self.assertIsNone(analysis.charge_window_for(19))
        self.assertIsNone(analysis.charge_window_for(20))

        entry = self.planner.make_immediate_decision(prices, current_time=datetime(2025, 12, 3, 20, 0))
        self.assertEqual(entry.interval, 20)
        self.assertEqual(entry.action, BatteryAction.IDLE)
        self.assertIn('evening', entry.reason)

    def test_horizon_is_capped(self):
        """Test horizon truncation at the configured cap"""
        analysis = self.planner.analyze([0.1 * (i % 10 + 1) for i in range(250)])

        self.assertEqual(analysis.total_intervals, 192)

    def test_tier_ranges(self):
        """Test tier ranges derived from thresholds"""
        analysis = self.planner.analyze(TEN_STEP_PRICES)

        ranges = analysis.tier_thresholds.as_ranges()
        self.assertEqual(ranges['middle_tier'], [0.4, 0.7])
        self.assertEqual(ranges['expensive_tier'], [0.7, 1.0])


class TestPriceOnlySchedule(unittest.TestCase):
    """Test schedules built purely from window membership"""

    def setUp(self):
        """Set up test environment"""
        self.planner = PriceWindowPlanner()
        self.midnight = datetime(2025, 12, 3)
        self.intervals = [
            PriceInterval(index=i, price=p, start_time=self.midnight + timedelta(minutes=15 * i))
            for i, p in enumerate([0.20] * 32 + [0.50] * 40 + [1.10] * 24)
        ]

    def test_schedule_actions_follow_windows(self):
        """Test charge/discharge/idle assignment"""
        schedule = self.planner.build_schedule(self.intervals)

        self.assertEqual(len(schedule), 96)
        self.assertEqual(schedule[0].action, BatteryAction.CHARGE)
        self.assertEqual(schedule[40].action, BatteryAction.IDLE)  # at middle threshold
        self.assertEqual(schedule[80].action, BatteryAction.DISCHARGE)
        self.assertIn('cheapest third', schedule[0].reason)
        self.assertIn('expensive tier', schedule[80].reason)
        self.assertEqual(schedule[1].end_time, self.midnight + timedelta(minutes=30))

    def test_schedule_entries_have_no_soc(self):
        """Test price-only entries carry no SOC or decision"""
        schedule = self.planner.build_schedule(self.intervals)

        self.assertTrue(all(e.soc_before is None and e.decision is None for e in schedule))

    def test_generate_schedule_validity(self):
        """Test generate_schedule wraps schedule with validity period"""
        start = datetime(2025, 12, 3, 0, 0)
        result = self.planner.generate_schedule(self.intervals, current_soc=10, start_time=start)

        self.assertEqual(len(result.entries), 96)
        self.assertEqual(result.valid_until, start + timedelta(hours=48))
        self.assertEqual(result.analysis.total_intervals, 96)

    def test_generate_schedule_rejects_invalid_soc(self):
        """Test SOC validation"""
        with self.assertRaises(PriceValidationError):
            self.planner.generate_schedule(self.intervals, current_soc=120)

    def test_immediate_decision_from_time(self):
        """Test immediate decision resolves the current slot from the clock"""
        entry = self.planner.make_immediate_decision(self.intervals, current_time=datetime(2025, 12, 3, 22, 5))

        self.assertEqual(entry.interval, 88)
        self.assertEqual(entry.action, BatteryAction.DISCHARGE)

    def test_immediate_decision_out_of_range(self):
        """Test out-of-range slot falls back to the first interval"""
        entry = self.planner.make_immediate_decision(self.intervals, current_interval=500)

        self.assertEqual(entry.interval, 0)
        self.assertEqual(entry.action, BatteryAction.CHARGE)

    def test_time_to_interval(self):
        """Test slot index computation"""
        self.assertEqual(self.planner.time_to_interval(datetime(2025, 12, 3, 0, 0)), 0)
        self.assertEqual(self.planner.time_to_interval(datetime(2025, 12, 3, 2, 14)), 8)
        self.assertEqual(self.planner.time_to_interval(datetime(2025, 12, 3, 23, 59)), 95)
        self.assertEqual(self.planner.time_to_interval(datetime(2025, 12, 3, 20, 0), interval_minutes=60), 20)


@pytest.mark.parametrize("bad_horizon", [
    [],
    [0.1, 'cheap', 0.3],
    [0.1, None],
    [0.1, float('nan')],
    [0.1, True],
    [0.1, 6000.0],
    [{'time_start': '2025-12-03T00:00:00'}],
    [{'value': 0.1, 'time_start': 'yesterday'}],
])
def test_invalid_horizons_fail_fast(bad_horizon):
    """Test invalid horizons raise PriceValidationError"""
    planner = PriceWindowPlanner()

    with pytest.raises(PriceValidationError):
        planner.analyze(bad_horizon)


def test_negative_prices_allowed(daily_price_curve):
    """Test negative prices are valid horizon entries"""
    planner = PriceWindowPlanner()
    prices = list(daily_price_curve)
    prices[3] = -0.25

    analysis = planner.analyze(prices, interval_minutes=60)

    assert analysis.stats.min == -0.25
    assert analysis.charge_windows[0].interval == 3


def test_configured_evening_cutoff(isolated_config_file):
    """Test evening cutoff is read from YAML configuration"""
    planner = PriceWindowPlanner(isolated_config_file)

    assert planner.evening_cutoff_hour == 17
    assert not planner.is_charge_eligible(PriceTier.MIDDLE, 17)
    assert planner.is_charge_eligible(PriceTier.CHEAPEST, 23)

"""
conftest.py

Shared fixtures for the optimiser test suite. The project keeps its modules
flat under `src/`, so that directory is put on sys.path for all tests.
"""

from pathlib import Path
import sys

# Ensure project `src/` is on sys.path for all tests
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import os
import tempfile
from datetime import datetime

import pytest
import yaml

from optimizer_config import OptimizerConfig


@pytest.fixture
def default_config():
	"""Default optimizer configuration."""
	return OptimizerConfig()


@pytest.fixture
def flat_horizon():
	"""24 hourly prices at 0.50."""
	return [0.50] * 24


@pytest.fixture
def daily_price_curve():
	"""
	24 hourly prices with a cheap night, a morning bump and an evening peak.

	Indices are hours starting at local midnight.
	"""
	return [
		0.10, 0.08, 0.06, 0.05, 0.07, 0.12,  # 00-05 night
		0.30, 0.55, 0.70, 0.45, 0.35, 0.30,  # 06-11 morning
		0.25, 0.22, 0.28, 0.40, 0.60, 0.95,  # 12-17 afternoon
		1.40, 1.30, 0.90, 0.60, 0.35, 0.20,  # 18-23 evening peak
	]


@pytest.fixture
def midnight():
	"""Fixed local midnight used as horizon start."""
	return datetime(2025, 12, 3, 0, 0)


@pytest.fixture
def isolated_config_file():
	"""
	Create an isolated YAML configuration file with non-default settings.

	Yields:
		str: Path to temporary config file

	Cleanup:
		Automatically removes the config file after test completion
	"""
	test_config = {
		'battery': {
			'min_soc': 15,
			'max_soc': 90,
			'capacity_kwh': 10.0,
			'max_charge_power_kw': 5.0,
		},
		'prices': {
			'force_charge_price': 0.02,
			'currency': 'EUR',
		},
		'planner': {
			'evening_cutoff_hour': 17,
		},
		'price_providers': [
			{'type': 'static', 'name': 'fixture', 'current_price': 0.42, 'weight': 7},
		],
	}

	config_file = tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False)
	yaml.dump(test_config, config_file)
	config_file.close()

	try:
		yield config_file.name
	finally:
		try:
			os.unlink(config_file.name)
		except OSError:
			pass

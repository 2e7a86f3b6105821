"""Shared fixtures: raw asset records in the percent units the market-data layer delivers."""

import pytest

from allocation_engine.asset_stats import normalize_assets
from allocation_engine.data_objects import EngineConfig


@pytest.fixture
def two_asset_records():
    """Growth stock A and utility B."""
    return [
        {"symbol": "A", "sector": "Technology", "expected_return": 10.0, "volatility": 20.0, "beta": 1.2},
        {"symbol": "B", "sector": "Utilities", "expected_return": 4.0, "volatility": 8.0, "beta": 0.3},
    ]


@pytest.fixture
def multi_asset_records():
    return [
        {"symbol": "AAPL", "sector": "Technology", "expected_return": 12.0, "volatility": 28.0, "beta": 1.2},
        {"symbol": "MSFT", "sector": "Technology", "expected_return": 11.0, "volatility": 24.0, "beta": 1.1},
        {"symbol": "JNJ", "sector": "Healthcare", "expected_return": 7.0, "volatility": 16.0, "beta": 0.7},
        {"symbol": "DUK", "sector": "Utilities", "expected_return": 5.0, "volatility": 14.0, "beta": 0.4},
        {"symbol": "XOM", "sector": "Energy", "expected_return": 8.0, "volatility": 30.0, "beta": 1.0},
        {"symbol": "JPM", "sector": "Financials", "expected_return": 9.0, "volatility": 22.0, "beta": 1.3},
    ]


@pytest.fixture
def engine_config():
    """Default config with fewer Monte Carlo paths to keep tests fast."""
    return EngineConfig(monte_carlo_paths=2000)


@pytest.fixture
def two_assets(two_asset_records, engine_config):
    return normalize_assets(two_asset_records, engine_config)


@pytest.fixture
def multi_assets(multi_asset_records, engine_config):
    return normalize_assets(multi_asset_records, engine_config)

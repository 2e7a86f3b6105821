"""
Tests for Monte Carlo terminal-value simulation and goal probability.
Randomness is pinned with seeds or an injected deterministic source.
"""

import math

import numpy as np
import pytest

from allocation_engine.asset_stats import normalize_assets
from allocation_engine.errors import InvalidInputError
from allocation_engine.monte_carlo import goal_probability, run_monte_carlo
from allocation_engine.portfolio_risk import compute_portfolio_metrics
from allocation_engine.providers import NumpyRandomSource, RandomSource, resolve_random_source


class ZeroShockSource:
    """Deterministic source: every draw is 0."""

    def standard_normal(self, size):
        return np.zeros(size)

    def standard_t(self, df, size):
        return np.zeros(size)

    def spawn(self, n):
        return [ZeroShockSource() for _ in range(n)]


@pytest.fixture
def cash_only():
    return normalize_assets([{"symbol": "CASH", "sector": "Cash", "expected_return": 3, "volatility": 0, "beta": 0}])


class TestRunMonteCarlo:
    WEIGHTS = [0.5, 0.5]

    def test_mean_close_to_analytic_expectation(self, two_assets):
        metrics = compute_portfolio_metrics(self.WEIGHTS, two_assets)
        result = run_monte_carlo(self.WEIGHTS, two_assets, None, 100000, 10, 20000, seed=42)

        expected = 100000 * math.exp(metrics.expected_return * 10)
        assert result.expected_value == pytest.approx(expected)
        assert result.mean == pytest.approx(expected, rel=0.02)
        assert result.num_paths == 20000
        assert result.percentile5 < result.median < result.percentile95
        assert 0.0 <= result.probability_of_loss <= 1.0

    def test_same_seed_is_reproducible(self, two_assets):
        first = run_monte_carlo(self.WEIGHTS, two_assets, None, 100000, 5, 5000, seed=7)
        second = run_monte_carlo(self.WEIGHTS, two_assets, None, 100000, 5, 5000, seed=7)
        np.testing.assert_array_equal(first.paths, second.paths)
        assert first.to_dict() == second.to_dict()

    def test_different_seeds_differ(self, two_assets):
        first = run_monte_carlo(self.WEIGHTS, two_assets, None, 100000, 5, 5000, seed=1)
        second = run_monte_carlo(self.WEIGHTS, two_assets, None, 100000, 5, 5000, seed=2)
        assert first.mean != second.mean

    def test_parallel_workers_reproducible(self, two_assets):
        """Chunks draw from spawned streams, so a fixed seed and worker count repeat exactly."""
        first = run_monte_carlo(self.WEIGHTS, two_assets, None, 100000, 10, 20000, seed=11, workers=4)
        second = run_monte_carlo(self.WEIGHTS, two_assets, None, 100000, 10, 20000, seed=11, workers=4)

        np.testing.assert_array_equal(first.paths, second.paths)
        assert first.num_paths == 20000
        assert first.mean == pytest.approx(first.expected_value, rel=0.02)

    def test_zero_volatility_is_deterministic(self, cash_only):
        result = run_monte_carlo([1.0], cash_only, None, 1000, 10, 500)
        expected = 1000 * math.exp(0.03 * 10)

        np.testing.assert_allclose(result.paths, np.full(500, expected))
        assert result.std == 0.0
        assert result.probability_of_loss == 0.0

    def test_zero_horizon(self, two_assets):
        result = run_monte_carlo(self.WEIGHTS, two_assets, None, 1000, 0, 100, seed=3)
        assert result.mean == pytest.approx(1000)
        assert result.min == result.max

    def test_injected_random_source(self, two_assets):
        metrics = compute_portfolio_metrics(self.WEIGHTS, two_assets)
        result = run_monte_carlo(
            self.WEIGHTS, two_assets, None, 1000, 4, 10, random_source=ZeroShockSource()
        )
        median_path = 1000 * math.exp((metrics.expected_return - 0.5 * metrics.volatility ** 2) * 4)
        np.testing.assert_allclose(result.paths, np.full(10, median_path))

    def test_default_path_count_from_config(self, two_assets, engine_config):
        result = run_monte_carlo(self.WEIGHTS, two_assets, None, 1000, 1, config=engine_config, seed=5)
        assert result.num_paths == engine_config.monte_carlo_paths

    def test_paths_optional(self, two_assets):
        result = run_monte_carlo(self.WEIGHTS, two_assets, None, 1000, 1, 100, seed=5, keep_paths=False)
        assert result.paths is None
        assert "paths" not in result.to_dict()
        assert len(run_monte_carlo(self.WEIGHTS, two_assets, None, 1000, 1, 100, seed=5).to_dict(include_paths=True)["paths"]) == 100

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"initial_value": 0},
            {"initial_value": float("nan")},
            {"horizon_years": -1},
            {"num_paths": 0},
            {"num_paths": 10.5},
            {"workers": 0},
        ],
    )
    def test_invalid_arguments(self, two_assets, kwargs):
        params = {"initial_value": 1000, "horizon_years": 1, "num_paths": 100, "workers": 1}
        params.update(kwargs)
        with pytest.raises(InvalidInputError):
            run_monte_carlo(self.WEIGHTS, two_assets, None, seed=1, **params)


class TestGoalProbability:
    def test_deterministic_without_volatility(self):
        reached = goal_probability(1000, 100, 0.0, 0.0, 2000, 12, num_paths=50, seed=1)
        missed = goal_probability(1000, 100, 0.0, 0.0, 3000, 12, num_paths=50, seed=1)

        assert reached["probability"] == 1.0
        assert reached["median_final_value"] == pytest.approx(2200)
        assert reached["total_contributed"] == pytest.approx(2200)
        assert missed["probability"] == 0.0

    def test_seeded_runs_repeat(self):
        first = goal_probability(10000, 500, 0.07, 0.15, 60000, 60, num_paths=2000, seed=9)
        second = goal_probability(10000, 500, 0.07, 0.15, 60000, 60, num_paths=2000, seed=9)

        assert first == second
        assert 0.0 < first["probability"] < 1.0
        assert first["percentile10"] <= first["median_final_value"] <= first["percentile90"]

    def test_normal_shocks(self):
        result = goal_probability(10000, 0, 0.07, 0.15, 10000, 24, num_paths=2000, fat_tails=False, seed=4)
        assert result["fat_tails"] is False
        assert result["probability"] > 0.5

    @pytest.mark.parametrize(
        "args",
        [
            (1000, 100, 0.05, 0.1, 0, 12),
            (1000, -1, 0.05, 0.1, 5000, 12),
            (1000, 100, 0.05, -0.1, 5000, 12),
            (1000, 100, 0.05, 0.1, 5000, 0),
        ],
    )
    def test_invalid_arguments(self, args):
        with pytest.raises(InvalidInputError):
            goal_probability(*args, num_paths=10, seed=1)

    def test_fat_tail_degrees_of_freedom(self):
        with pytest.raises(InvalidInputError):
            goal_probability(1000, 100, 0.05, 0.1, 5000, 12, df=2.0, seed=1)


class TestRandomSource:
    def test_numpy_source_satisfies_protocol(self):
        assert isinstance(NumpyRandomSource(1), RandomSource)
        assert isinstance(ZeroShockSource(), RandomSource)

    def test_spawned_streams_are_reproducible(self):
        first = [s.standard_normal(3) for s in NumpyRandomSource(5).spawn(2)]
        second = [s.standard_normal(3) for s in NumpyRandomSource(5).spawn(2)]
        np.testing.assert_array_equal(first[0], second[0])
        assert not np.array_equal(first[0], first[1])

    def test_resolve_prefers_injected_source(self):
        source = ZeroShockSource()
        assert resolve_random_source(source, seed=3) is source
        assert isinstance(resolve_random_source(None, seed=3), NumpyRandomSource)

    def test_resolve_rejects_non_source(self):
        with pytest.raises(TypeError):
            resolve_random_source(object())

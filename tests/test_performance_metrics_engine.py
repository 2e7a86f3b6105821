"""
Tests for the return-series performance metrics engine.
"""

import numpy as np
import pandas as pd
import pytest

from allocation_engine.errors import InvalidInputError
from allocation_engine.performance_metrics_engine import compute_performance_metrics


def _series(values, start="2020-01-31"):
    index = pd.date_range(start=start, periods=len(values), freq="ME")
    return pd.Series(values, index=index, dtype=float)


@pytest.fixture
def market_returns():
    rng = np.random.default_rng(12)
    return _series(0.008 + 0.05 * rng.standard_normal(36))


class TestComputePerformanceMetrics:
    def test_leveraged_market_exposure(self, market_returns):
        """A portfolio that is exactly 1.5x market excess returns has beta 1.5 and zero alpha."""
        rf_period = 0.02 / 12
        portfolio = rf_period + 1.5 * (market_returns - rf_period)
        metrics = compute_performance_metrics(portfolio, market_returns, 0.02)
        benchmark = metrics["benchmark_analysis"]

        assert benchmark["beta"] == pytest.approx(1.5, abs=1e-3)
        assert benchmark["alpha_annual"] == pytest.approx(0.0, abs=1e-4)
        assert benchmark["r_squared"] == pytest.approx(1.0, abs=1e-3)
        assert metrics["analysis_period"]["total_periods"] == 36
        assert metrics["analysis_period"]["years"] == 3.0
        assert "warnings" not in metrics

    def test_returns_and_drawdown(self):
        portfolio = _series([0.10, -0.20, 0.05, 0.0])
        benchmark = _series([0.01, 0.01, 0.01, 0.01])
        metrics = compute_performance_metrics(portfolio, benchmark, 0.0)

        assert metrics["returns"]["total_return"] == pytest.approx(1.1 * 0.8 * 1.05 - 1, abs=1e-4)
        assert metrics["risk_metrics"]["maximum_drawdown"] == pytest.approx(-0.2, abs=1e-4)
        assert metrics["returns"]["worst_period"] == pytest.approx(-0.2)
        assert metrics["risk_adjusted_returns"]["calmar_ratio"] > 0

    def test_first_period_loss_is_a_drawdown(self):
        metrics = compute_performance_metrics(_series([-0.10, 0.02, 0.02]), _series([0.0, 0.0, 0.0]), 0.0)
        assert metrics["risk_metrics"]["maximum_drawdown"] == pytest.approx(-0.10)

    def test_short_window_skips_capm(self):
        metrics = compute_performance_metrics(_series([0.01, 0.02, -0.01]), _series([0.0, 0.01, 0.0]), 0.02)
        assert metrics["benchmark_analysis"]["beta"] is None
        assert "Insufficient data" in metrics["warnings"][0]

    def test_flat_benchmark_uses_closed_form(self):
        portfolio = _series([0.01] * 12)
        benchmark = _series([0.0] * 12)
        metrics = compute_performance_metrics(portfolio, benchmark, 0.0)

        assert metrics["benchmark_analysis"]["beta"] == 0.0
        assert metrics["benchmark_analysis"]["alpha_annual"] == pytest.approx(0.12)

    def test_misaligned_inputs(self):
        with pytest.raises(InvalidInputError):
            compute_performance_metrics(_series([0.01, 0.02]), _series([0.01, 0.02, 0.03]), 0.02)
        with pytest.raises(InvalidInputError):
            compute_performance_metrics(_series([0.01, 0.02]), _series([0.01, 0.02], start="2021-01-31"), 0.02)
        with pytest.raises(InvalidInputError):
            compute_performance_metrics(pd.Series([0.01, 0.02]), pd.Series([0.01, 0.02]), 0.02)
        with pytest.raises(InvalidInputError):
            compute_performance_metrics(_series([0.01, np.nan]), _series([0.01, 0.02]), 0.02)

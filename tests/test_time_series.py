"""
Tests for projection bands, drawdown series, the model-based backtest and
macro scenario projections.
"""

import numpy as np
import pandas as pd
import pytest
from scipy.stats import t as student_t

from allocation_engine.errors import InvalidInputError
from allocation_engine.portfolio_risk import compute_portfolio_metrics
from allocation_engine.results import PortfolioMetrics
from allocation_engine.time_series import (
    confidence_bands,
    decompose_drawdowns,
    drawdown_from_values,
    drawdown_series,
    extended_scenario_analysis,
    historical_backtest,
    historical_drawdown,
    max_drawdown,
    statistical_drawdown,
    theoretical_extreme_drawdown,
)


METRICS = {"expected_return": 0.08, "volatility": 0.15}


class FirstMonthShockSource:
    """Draws -4 for the first period and 0 afterwards; child streams are flat."""

    def __init__(self, shock=-4.0):
        self.shock = shock

    def standard_normal(self, size):
        draws = np.zeros(size)
        draws[0] = self.shock
        return draws

    def standard_t(self, df, size):
        return self.standard_normal(size)

    def spawn(self, n):
        return [FirstMonthShockSource(self.shock)] + [FirstMonthShockSource(0.0) for _ in range(n - 1)]


class TestConfidenceBands:
    def test_shape_and_start(self):
        bands = confidence_bands(METRICS, months=60, initial_value=100000)

        assert list(bands.columns) == ["expected", "lower_1sd", "upper_1sd", "lower_2sd", "upper_2sd"]
        assert bands.index.name == "month"
        assert len(bands) == 61
        assert (bands.loc[0] == 100000).all()

    def test_expected_path_compounds_monthly(self):
        bands = confidence_bands(METRICS, months=12, initial_value=1000)
        assert bands.loc[12, "expected"] == pytest.approx(1000 * (1 + 0.08 / 12) ** 12)

    def test_bands_widen_and_nest(self):
        bands = confidence_bands(METRICS, months=120, initial_value=100000)
        width = bands["upper_2sd"] - bands["lower_2sd"]

        assert (width.diff().dropna() >= 0).all()
        assert (bands["lower_2sd"] <= bands["lower_1sd"]).all()
        assert (bands["lower_1sd"] <= bands["expected"]).all()
        assert (bands["upper_1sd"] <= bands["upper_2sd"]).all()
        assert (bands["lower_2sd"] >= 0).all()

    def test_accepts_metrics_object(self):
        metrics = PortfolioMetrics(expected_return=0.08, volatility=0.15, sharpe_ratio=0.4)
        pd.testing.assert_frame_equal(confidence_bands(metrics, 24), confidence_bands(METRICS, 24))

    @pytest.mark.parametrize("months", [0, -3, 1.5, "12"])
    def test_invalid_months(self, months):
        with pytest.raises(InvalidInputError):
            confidence_bands(METRICS, months)

    def test_integral_float_months(self):
        assert len(confidence_bands(METRICS, 12.0)) == 13

    def test_invalid_initial_value(self):
        with pytest.raises(InvalidInputError):
            confidence_bands(METRICS, 12, initial_value=0)


class TestDrawdowns:
    def test_simulated_series_invariants(self):
        frame = drawdown_series(METRICS, months=120, seed=17)

        assert len(frame) == 121
        assert (frame["peak"].diff().dropna() >= 0).all()
        assert (frame["peak"] >= frame["value"]).all()
        assert frame["drawdown"].between(0, 1).all()
        np.testing.assert_allclose(frame["drawdown"], (frame["peak"] - frame["value"]) / frame["peak"])

    def test_seeded_series_repeat(self):
        pd.testing.assert_frame_equal(
            drawdown_series(METRICS, months=36, seed=5),
            drawdown_series(METRICS, months=36, seed=5),
        )

    def test_expected_path_has_no_drawdown(self):
        frame = drawdown_series(METRICS, months=24, method="expected")
        assert max_drawdown(frame) == 0.0

    def test_negative_drift_draws_down(self):
        frame = drawdown_series({"expected_return": -0.12, "volatility": 0.2}, months=12, method="expected")
        assert max_drawdown(frame) == pytest.approx(1 - (1 - 0.01) ** 12)
        assert frame["drawdown"].is_monotonic_increasing

    def test_unknown_method(self):
        with pytest.raises(InvalidInputError):
            drawdown_series(METRICS, months=12, method="historical")

    def test_drawdown_from_values(self):
        frame = drawdown_from_values(pd.Series([100.0, 120.0, 90.0, 130.0]))
        assert frame["peak"].tolist() == [100.0, 120.0, 120.0, 130.0]
        assert frame["drawdown"].tolist() == pytest.approx([0.0, 0.0, 0.25, 0.0])
        assert max_drawdown(frame.iloc[0:0]) == 0.0

    def test_peak_seeded_at_initial_value(self):
        frame = drawdown_from_values(pd.Series([80.0, 0.0, 0.0]), initial_value=100.0)
        assert frame["peak"].tolist() == [100.0, 100.0, 100.0]
        assert frame["drawdown"].tolist() == pytest.approx([0.2, 1.0, 1.0])

    def test_zero_peak_is_not_nan(self):
        frame = drawdown_from_values(pd.Series([0.0, 0.0]))
        assert frame["drawdown"].tolist() == [0.0, 0.0]


class TestHistoricalBacktest:
    def test_window_is_capped(self, two_assets):
        result = historical_backtest([0.5, 0.5], two_assets, lookback_years=15, seed=1, end_date="2024-06-15")

        assert result.lookback_years == 10
        assert len(result.values) == 120
        assert result.values.index[-1] == pd.Timestamp("2024-06-30")
        assert list(result.values.columns) == ["portfolio_return", "market_return", "value", "peak", "drawdown"]

    def test_market_model_preserves_beta(self, two_assets):
        """Without idiosyncratic variance the regression recovers the portfolio beta exactly."""
        metrics = compute_portfolio_metrics([0.5, 0.5], two_assets)
        assert metrics.volatility < 0.75 * 0.18

        result = historical_backtest([0.5, 0.5], two_assets, lookback_years=5, seed=2, end_date="2023-12-31")
        benchmark = result.performance["benchmark_analysis"]
        assert benchmark["beta"] == pytest.approx(0.75, abs=1e-3)
        assert benchmark["r_squared"] == pytest.approx(1.0, abs=1e-3)

    def test_seeded_backtest_repeats(self, two_assets):
        first = historical_backtest([0.5, 0.5], two_assets, lookback_years=3, seed=8, end_date="2024-01-31")
        second = historical_backtest([0.5, 0.5], two_assets, lookback_years=3, seed=8, end_date="2024-01-31")
        pd.testing.assert_frame_equal(first.values, second.values)
        assert first.performance == second.performance

    def test_summary_matches_series(self, multi_assets):
        result = historical_backtest(
            {s: 1 / 6 for s in multi_assets.symbols}, multi_assets, lookback_years=4, seed=3, end_date="2022-12-31"
        )
        returns = result.values["portfolio_return"]

        assert result.annualized_return == pytest.approx((1 + returns).prod() ** (1 / 4) - 1)
        assert result.annualized_volatility == pytest.approx(returns.std() * np.sqrt(12))
        assert result.performance["analysis_period"]["total_periods"] == 48

    def test_to_dict_includes_dates(self, two_assets):
        result = historical_backtest([0.5, 0.5], two_assets, lookback_years=1, seed=4, end_date="2024-12-31")
        payload = result.to_dict()

        assert len(payload["values"]) == 12
        assert payload["values"][-1]["date"].startswith("2024-12-31")
        assert payload["performance"]["benchmark_analysis"]["beta"] is not None

    def test_first_month_loss_counts_as_drawdown(self, two_assets):
        result = historical_backtest(
            [0.5, 0.5],
            two_assets,
            lookback_years=2,
            random_source=FirstMonthShockSource(),
            end_date="2024-12-31",
        )
        first = result.values.iloc[0]
        loss = -first["portfolio_return"]

        assert loss > 0.1
        assert first["peak"] == pytest.approx(100000.0)
        assert first["value"] == pytest.approx(100000.0 * (1 - loss))
        assert first["drawdown"] == pytest.approx(loss)
        assert max_drawdown(result.values) == pytest.approx(loss)
        assert result.performance["risk_metrics"]["maximum_drawdown"] == pytest.approx(-loss, abs=1e-4)

    def test_invalid_lookback(self, two_assets):
        with pytest.raises(InvalidInputError):
            historical_backtest([0.5, 0.5], two_assets, lookback_years=0, seed=1)


class TestExtendedScenarioAnalysis:
    def test_default_regimes(self):
        analysis = extended_scenario_analysis(METRICS, 100000, 5)
        bull = analysis.scenarios[0]

        assert [s.name for s in analysis.scenarios] == ["Bull Market", "Base Case", "Bear Market", "Stagflation"]
        assert bull.annual_return == pytest.approx(0.5 * 0.08 + 0.5 * 0.18)
        assert bull.volatility == pytest.approx(0.15 * 0.7)
        assert len(bull.trajectory) == 6
        assert bull.final_value == pytest.approx(100000 * 1.13 ** 5)
        assert bull.total_gain == pytest.approx(bull.final_value - 100000)

        expected = sum(s.probability * s.final_value for s in analysis.scenarios)
        assert analysis.probability_weighted_value == pytest.approx(expected)

    def test_to_frame(self):
        frame = extended_scenario_analysis(METRICS, 1000, 3).to_frame()
        assert frame.index.name == "year"
        assert list(frame.index) == [0, 1, 2, 3]
        assert (frame.loc[0] == 1000).all()

    def test_zero_probabilities_use_equal_weighting(self):
        scenarios = [
            {"name": "Up", "equity_return_percent": 10},
            {"name": "Down", "equity_return_percent": -10},
        ]
        analysis = extended_scenario_analysis(METRICS, 1000, 1, scenarios=scenarios)
        finals = [s.final_value for s in analysis.scenarios]
        assert analysis.probability_weighted_value == pytest.approx(np.mean(finals))

    def test_requires_scenarios(self):
        with pytest.raises(InvalidInputError):
            extended_scenario_analysis(METRICS, 1000, 1, scenarios=[])

    def test_invalid_probability(self):
        with pytest.raises(InvalidInputError):
            extended_scenario_analysis(METRICS, 1000, 1, scenarios=[{"name": "X", "probability": 1.5}])


class TestDrawdownDecomposition:
    """Historical, Student's t and illustrative crisis drawdowns."""

    def test_historical_requires_a_year_of_history(self):
        assert historical_drawdown([0.01] * 11) is None
        assert historical_drawdown(None) is None

    def test_historical_peak_to_trough(self):
        returns = [0.10, -0.20, 0.05] + [0.0] * 9
        assert historical_drawdown(returns) == pytest.approx(-0.2)

    def test_historical_is_floored(self):
        assert historical_drawdown([-0.90] + [0.0] * 11) == pytest.approx(-0.85)

    def test_statistical_uses_student_t(self):
        result = statistical_drawdown(METRICS, 1)
        assert result["percentile95"] == pytest.approx(-student_t.ppf(0.95, 5) * 0.15 + 0.08)
        assert result["percentile99"] == pytest.approx(-student_t.ppf(0.99, 5) * 0.15 + 0.08)
        assert result["percentile99"] < result["percentile95"]
        assert "df=5" in result["methodology"]

    def test_statistical_horizon_scaling(self):
        result = statistical_drawdown(METRICS, 4)
        assert result["percentile95"] == pytest.approx(-student_t.ppf(0.95, 5) * 0.15 * 2.0 + 0.32)

    def test_strong_drift_never_reports_a_gain(self):
        result = statistical_drawdown({"expected_return": 0.5, "volatility": 0.05}, 1)
        assert result["percentile95"] == pytest.approx(-0.08)
        assert result["percentile99"] == pytest.approx(-0.10)

    def test_theoretical_components(self):
        result = theoretical_extreme_drawdown(0.15, 1.2, 0.7)
        assert result["value"] == pytest.approx(-0.45 - 0.03 - 0.10 - 0.10)
        assert sum(result["components"].values()) == pytest.approx(result["value"])

    @pytest.mark.parametrize(
        "vol, beta, corr, expected",
        [(0.0, 1.0, 0.3, -0.15), (0.40, 2.0, 0.8, -0.85)],
    )
    def test_theoretical_is_clamped(self, vol, beta, corr, expected):
        assert theoretical_extreme_drawdown(vol, beta, corr)["value"] == pytest.approx(expected)

    def test_decompose_keeps_methods_apart(self):
        result = decompose_drawdowns(METRICS, 1, 1.0, 0.3, historical_returns=[0.01] * 5)
        assert set(result) == {"historical", "statistical", "theoretical"}
        assert result["historical"] == {"value": None, "label": "Historical Worst-Case", "available": False}
        assert result["statistical"]["percentile95"]["value"] == pytest.approx(statistical_drawdown(METRICS, 1)["percentile95"])
        assert result["theoretical"]["value"] == pytest.approx(theoretical_extreme_drawdown(0.15, 1.0, 0.3)["value"])

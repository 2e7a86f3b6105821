"""
Tests for market-shock stress scenarios, crash probabilities, recovery time
estimates and sector exposure.
"""

import pytest
from scipy.stats import norm

from allocation_engine.asset_stats import normalize_assets
from allocation_engine.data_objects import EngineConfig, StressScenario
from allocation_engine.errors import InvalidInputError
from allocation_engine.stress_testing import (
    crash_probability,
    estimate_recovery_time,
    run_stress_test,
    run_stress_tests,
    sector_exposure,
)


def _universe(*betas):
    return normalize_assets(
        [
            {"symbol": f"S{i}", "sector": "Industrials", "expected_return": 8, "volatility": 20, "beta": beta}
            for i, beta in enumerate(betas)
        ]
    )


class TestStressScenarios:
    def test_market_crash_with_unit_beta(self):
        """Average beta 1.0 passes a -40% decline straight through."""
        universe = _universe(0.8, 1.2)
        result = run_stress_test([0.5, 0.5], universe, {"name": "Market Crash", "market_decline_percent": -40})

        assert result.portfolio_return == pytest.approx(-0.40)
        assert result.asset_impacts == {"S0": pytest.approx(-0.32), "S1": pytest.approx(-0.48)}
        assert sum(result.contributions.values()) == pytest.approx(result.portfolio_return)
        assert result.dollar_impact(100000) == pytest.approx(-40000)

    @pytest.mark.parametrize("decline", [-10.0, -40.0, -95.0])
    def test_zero_beta_portfolio_is_unaffected(self, decline):
        universe = _universe(0.0, 0.0)
        result = run_stress_test([0.3, 0.7], universe, StressScenario("Shock", decline))
        assert result.portfolio_return == 0.0

    def test_asset_loss_is_floored(self):
        """A leveraged beta cannot lose more than the position."""
        universe = _universe(2.0)
        result = run_stress_test([1.0], universe, StressScenario("Black Swan", -70.0))
        assert result.portfolio_return == pytest.approx(-1.0)

    def test_default_scenarios(self, two_assets):
        results = run_stress_tests([0.5, 0.5], two_assets)

        assert [r.name for r in results] == ["Market Crash", "Sector Collapse", "Black Swan"]
        assert results[0].portfolio_return == pytest.approx(-0.40 * 0.75)
        assert results[0].recovery_months == 36
        assert results[0].portfolio_return > results[1].portfolio_return > results[2].portfolio_return

    def test_configured_scenarios(self, two_assets):
        config = EngineConfig(stress_scenarios=({"name": "Mild", "market_decline_percent": -10},))
        results = run_stress_tests([1.0, 0.0], two_assets, config=config)
        assert len(results) == 1
        assert results[0].portfolio_return == pytest.approx(-0.12)

    def test_scenario_without_decline_raises(self, two_assets):
        with pytest.raises(InvalidInputError):
            run_stress_test([0.5, 0.5], two_assets, {"name": "Broken"})

    def test_unsupported_scenario_type_raises(self, two_assets):
        with pytest.raises(InvalidInputError):
            run_stress_test([0.5, 0.5], two_assets, -40)


class TestCrashProbability:
    def test_probabilities_are_bounded_and_ordered(self):
        result = crash_probability(0.18, 0.08)
        annual = result["annual"]

        assert set(result) == {"annual", "10_year"}
        assert all(0.001 <= p <= 0.5 for p in annual.values())
        assert annual["mild"] >= annual["moderate"] >= annual["severe"]
        for label, p in annual.items():
            assert result["10_year"][label] == pytest.approx(1 - (1 - p) ** 10)

    def test_fat_tail_inflates_normal_probability(self):
        result = crash_probability(0.18, 0.08, tail_adjustment=0.15)
        z = (-0.20 - 0.08) / 0.18
        assert result["annual"]["mild"] == pytest.approx(norm.cdf(z) * (1 + abs(z) * 0.15))

        plain = crash_probability(0.18, 0.08, tail_adjustment=0.0)
        assert plain["annual"]["mild"] == pytest.approx(norm.cdf(z))

    def test_custom_thresholds(self):
        result = crash_probability(0.2, 0.05, thresholds={"-25%": -0.25}, years=5)
        assert set(result["5_year"]) == {"-25%"}

    def test_zero_volatility(self):
        result = crash_probability(0.0, 0.05, thresholds={"-10%": -0.10})
        assert result["annual"]["-10%"] == 0.0


class TestRecoveryTime:
    def test_no_drawdown(self):
        assert estimate_recovery_time(0.0, 0.08, 0.15) == {
            "median": 0.0,
            "p75": 0.0,
            "p90": 0.0,
            "recovered_share": 1.0,
        }

    def test_seeded_estimate(self):
        first = estimate_recovery_time(-0.3, 0.08, 0.15, seed=21)
        second = estimate_recovery_time(-0.3, 0.08, 0.15, seed=21)

        assert first == second
        assert 0 < first["median"] <= first["p75"] <= first["p90"] <= 10
        assert 0 < first["recovered_share"] <= 1

    def test_deeper_drawdowns_take_longer(self):
        shallow = estimate_recovery_time(-0.1, 0.08, 0.15, seed=3)
        deep = estimate_recovery_time(-0.4, 0.08, 0.15, seed=3)
        assert deep["median"] > shallow["median"]

    def test_no_recovery(self):
        assert estimate_recovery_time(-0.5, -0.05, 0.0, max_months=24, seed=1) is None


class TestSectorExposure:
    def test_buckets_and_sectors(self, multi_assets):
        weights = {s: 1 / 6 for s in multi_assets.symbols}
        exposure = sector_exposure(weights, multi_assets)

        assert exposure["sectors"]["Technology"]["allocation"] == pytest.approx(2 / 6)
        assert exposure["sectors"]["Technology"]["count"] == 2
        assert exposure["sectors"]["Technology"]["average_beta"] == pytest.approx(1.15)
        assert exposure["dominant_sector"] == "Technology"
        # DUK and JNJ are defensive; JPM is aggressive; AAPL sits on the 1.2 boundary.
        assert exposure["beta_exposure"]["defensive"] == pytest.approx(2 / 6)
        assert exposure["beta_exposure"]["aggressive"] == pytest.approx(1 / 6)
        assert sum(exposure["beta_exposure"].values()) == pytest.approx(1.0)

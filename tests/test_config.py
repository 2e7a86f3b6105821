"""
Tests for engine configuration: validation, dict/YAML loading and the
package-level defaults.
"""

from pathlib import Path

import pytest
import yaml

from allocation_engine import config as package_config
from allocation_engine.config_adapters import load_engine_config, normalize_engine_config, resolve_engine_config
from allocation_engine.data_objects import EngineConfig, MacroScenario, StressScenario
from allocation_engine.errors import InvalidInputError


class TestEngineConfigDefaults:
    def test_defaults(self):
        config = EngineConfig()

        assert config.risk_free_rate == 0.02
        assert config.correlation_same_sector == 0.75
        assert config.correlation_cross_sector == 0.35
        assert config.monte_carlo_paths == 10000
        assert config.max_return_weight_cap is None
        assert [s.name for s in config.stress_scenarios] == ["Market Crash", "Sector Collapse", "Black Swan"]
        assert all(isinstance(s, StressScenario) for s in config.stress_scenarios)
        assert all(isinstance(s, MacroScenario) for s in config.macro_scenarios)

    def test_configure_changes_baseline(self, monkeypatch):
        monkeypatch.setattr(package_config, "MONTE_CARLO_SETTINGS", package_config.MONTE_CARLO_SETTINGS)
        package_config.configure(MONTE_CARLO_SETTINGS={"num_paths": 123, "workers": 2})

        config = EngineConfig()
        assert config.monte_carlo_paths == 123
        assert config.monte_carlo_workers == 2

    @pytest.mark.parametrize("key", ["NOT_A_SECTION", "_DEFAULTS", "os"])
    def test_configure_rejects_unknown_keys(self, key):
        with pytest.raises(KeyError):
            package_config.configure(**{key: {}})

    def test_with_overrides_revalidates(self):
        config = EngineConfig().with_overrides(risk_free_rate=0.03)
        assert config.risk_free_rate == 0.03
        with pytest.raises(InvalidInputError):
            config.with_overrides(monte_carlo_paths=0)


class TestEngineConfigValidation:
    @pytest.mark.parametrize(
        "overrides",
        [
            {"risk_free_rate": float("nan")},
            {"market_return": "ten"},
            {"monte_carlo_paths": 0},
            {"risk_parity_max_iterations": 2.5},
            {"correlation_floor": 0.5, "correlation_ceiling": 0.4},
            {"risk_parity_tolerance": 0.0},
            {"max_return_weight_cap": 0.0},
            {"max_return_weight_cap": 1.5},
            {"default_volatility": -0.1},
            {"sector_pair_correlations": {("Energy", "Utilities"): 1.2}},
            {"sector_volatility_fallbacks": {"Energy": -0.3}},
        ],
    )
    def test_invalid_values(self, overrides):
        with pytest.raises(InvalidInputError):
            EngineConfig(**overrides)

    def test_integral_floats_are_accepted(self):
        assert EngineConfig(monte_carlo_paths=500.0).monte_carlo_paths == 500

    def test_mapping_fields_are_read_only(self):
        source = {"Energy": 0.3}
        config = EngineConfig(sector_volatility_fallbacks=source)
        source["Energy"] = 0.9

        assert config.sector_volatility_fallbacks["Energy"] == 0.3
        with pytest.raises(TypeError):
            config.sector_volatility_fallbacks["Energy"] = 0.5
        with pytest.raises(TypeError):
            config.concentration_thresholds["hhi_high"] = 0.9
        with pytest.raises(TypeError):
            config.sector_pair_correlations[("Energy", "Utilities")] = 0.1

    def test_read_only_config_still_compares_and_overrides(self):
        config = EngineConfig(concentration_thresholds={"hhi_high": 0.3})
        assert config == EngineConfig(concentration_thresholds={"hhi_high": 0.3})
        assert config.with_overrides(risk_free_rate=0.01).concentration_thresholds == {"hhi_high": 0.3}

    def test_partial_limit_overrides_keep_defaults(self):
        config = EngineConfig(position_limits={"max_position": 0.25}, drawdown_settings={"floor": -0.5})
        assert config.position_limits["max_position"] == 0.25
        assert config.position_limits["hhi_limit"] == package_config.POSITION_LIMITS["hhi_limit"]
        assert config.drawdown_settings["floor"] == -0.5
        assert config.drawdown_settings["t_degrees_of_freedom"] == 5

    @pytest.mark.parametrize(
        "overrides",
        [
            {"implied_volatility_weight": 1.5},
            {"regime_correlation_floor": 0.5, "regime_correlation_ceiling": 0.2},
            {"position_limits": {"max_position": 0.0}},
            {"drawdown_settings": {"floor": float("nan")}},
        ],
    )
    def test_regime_and_limit_validation(self, overrides):
        with pytest.raises(InvalidInputError):
            EngineConfig(**overrides)


class TestConfigLoading:
    def test_from_dict_rejects_unknown_keys(self):
        with pytest.raises(InvalidInputError):
            EngineConfig.from_dict({"risk_free": 0.03})

    @pytest.mark.parametrize(
        "pairs",
        [
            {"Technology|Utilities": 0.1},
            {("Technology", "Utilities"): 0.1},
            [{"sectors": ["Technology", "Utilities"], "correlation": 0.1}],
        ],
    )
    def test_sector_pair_formats(self, pairs):
        config = EngineConfig.from_dict({"sector_pair_correlations": pairs})
        assert config.pair_correlation("Utilities", "Technology") == 0.1
        assert config.pair_correlation("Energy", "Utilities") is None

    def test_bad_sector_pair_key(self):
        with pytest.raises(InvalidInputError):
            EngineConfig.from_dict({"sector_pair_correlations": {"Technology": 0.1}})

    def test_normalize_unwraps_engine_section(self):
        assert normalize_engine_config({"engine": {"risk_free_rate": 0.03, "market_return": None}}) == {
            "risk_free_rate": 0.03
        }
        assert normalize_engine_config(None) == {}

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "engine": {
                        "risk_free_rate": 0.035,
                        "monte_carlo_paths": 2500,
                        "max_return_weight_cap": 0.4,
                        "sector_pair_correlations": {"Energy|Materials": 0.6},
                        "stress_scenarios": [{"name": "Dip", "market_decline_percent": -15}],
                    }
                }
            ),
            encoding="utf-8",
        )
        config = load_engine_config(path)

        assert config.risk_free_rate == 0.035
        assert config.monte_carlo_paths == 2500
        assert config.max_return_weight_cap == 0.4
        assert config.pair_correlation("Materials", "Energy") == 0.6
        assert config.stress_scenarios[0].market_decline_percent == -15.0

    def test_load_empty_yaml(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert load_engine_config(path) == EngineConfig()

    def test_load_non_mapping_yaml(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n", encoding="utf-8")
        with pytest.raises(InvalidInputError):
            load_engine_config(path)

    def test_resolve_variants(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text("risk_free_rate: 0.01\n", encoding="utf-8")
        config = EngineConfig(risk_free_rate=0.04)

        assert resolve_engine_config(None) == EngineConfig()
        assert resolve_engine_config(config) is config
        assert resolve_engine_config({"risk_free_rate": 0.05}).risk_free_rate == 0.05
        assert resolve_engine_config(path).risk_free_rate == 0.01
        assert resolve_engine_config(str(path)).risk_free_rate == 0.01
        with pytest.raises(TypeError):
            resolve_engine_config(42)

    def test_missing_file(self):
        with pytest.raises(FileNotFoundError):
            load_engine_config(Path("does-not-exist.yaml"))

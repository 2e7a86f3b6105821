"""Public API for allocation_engine."""

from allocation_engine.allocation_validator import (
    enforce_constraints,
    validate_allocation,
    validate_position_sizing,
)
from allocation_engine.asset_stats import normalize_assets
from allocation_engine.config_adapters import resolve_engine_config
from allocation_engine.correlation import (
    blend_volatility,
    build_correlation_matrix,
    build_covariance_matrix,
    classify_vix_regime,
    regime_correlation_matrix,
    stress_correlation_matrix,
)
from allocation_engine.data_objects import (
    AssetRecord,
    EngineConfig,
    MacroScenario,
    NormalizedAssets,
    StressScenario,
)
from allocation_engine.errors import InvalidInputError
from allocation_engine.monte_carlo import goal_probability, run_monte_carlo
from allocation_engine.portfolio_optimizer import (
    optimize_all_portfolios,
    optimize_max_return,
    optimize_min_variance,
    optimize_optimal,
    optimize_risk_parity,
)
from allocation_engine.portfolio_risk import (
    compute_advanced_metrics,
    compute_portfolio_metrics,
    forward_looking_risk,
)
from allocation_engine.providers import NumpyRandomSource, RandomSource
from allocation_engine.risk_decomposition import (
    alpha_decomposition,
    beta_decomposition,
    concentration_risk,
    correlation_stress,
    risk_contribution_decomposition,
)
from allocation_engine.stress_testing import run_stress_test, run_stress_tests
from allocation_engine.time_series import (
    confidence_bands,
    decompose_drawdowns,
    drawdown_series,
    extended_scenario_analysis,
    historical_backtest,
)

__all__ = [
    "enforce_constraints",
    "validate_allocation",
    "validate_position_sizing",
    "normalize_assets",
    "resolve_engine_config",
    "blend_volatility",
    "build_correlation_matrix",
    "build_covariance_matrix",
    "classify_vix_regime",
    "regime_correlation_matrix",
    "stress_correlation_matrix",
    "AssetRecord",
    "EngineConfig",
    "MacroScenario",
    "NormalizedAssets",
    "StressScenario",
    "InvalidInputError",
    "goal_probability",
    "run_monte_carlo",
    "optimize_all_portfolios",
    "optimize_max_return",
    "optimize_min_variance",
    "optimize_optimal",
    "optimize_risk_parity",
    "compute_advanced_metrics",
    "compute_portfolio_metrics",
    "forward_looking_risk",
    "NumpyRandomSource",
    "RandomSource",
    "alpha_decomposition",
    "beta_decomposition",
    "concentration_risk",
    "correlation_stress",
    "risk_contribution_decomposition",
    "run_stress_test",
    "run_stress_tests",
    "confidence_bands",
    "decompose_drawdowns",
    "drawdown_series",
    "extended_scenario_analysis",
    "historical_backtest",
]

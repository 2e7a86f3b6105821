#!/usr/bin/env python3
# coding: utf-8

"""
Core portfolio allocation and risk analysis business logic.

Agent orientation:
    This is the canonical end-to-end entrypoint. Start here when debugging
    differences between strategy metrics, simulation and stress outputs.

Called by:
    - API/CLI layers that need one ``PortfolioAnalysisResult`` per request.

Primary flow:
    1) Resolve engine config.
    2) Normalize asset statistics (defaults reported, never raised).
    3) Build the correlation matrix once.
    4) Fan out the four optimizers and score each allocation.
    5) Run simulation, stress, decomposition and projections on the
       selected strategy.
    6) Return ``PortfolioAnalysisResult``.
"""

from datetime import datetime, UTC
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from allocation_engine._logging import (
    log_errors,
    log_operation,
    log_portfolio_operation,
    log_timing,
)
from allocation_engine.allocation_validator import validate_allocation
from allocation_engine.asset_stats import AssetInput, normalize_assets
from allocation_engine.config_adapters import resolve_engine_config
from allocation_engine.constants import STRATEGY_OPTIMAL
from allocation_engine.correlation import average_correlation, build_correlation_matrix
from allocation_engine.data_objects import EngineConfig
from allocation_engine.monte_carlo import run_monte_carlo
from allocation_engine.portfolio_optimizer import get_optimizer, optimize_all_portfolios
from allocation_engine.portfolio_risk import (
    compute_advanced_metrics,
    compute_portfolio_metrics,
    forward_looking_risk,
)
from allocation_engine.providers import NumpyRandomSource
from allocation_engine.risk_decomposition import (
    alpha_decomposition,
    beta_decomposition,
    concentration_risk,
    correlation_stress,
    risk_contribution_decomposition,
)
from allocation_engine.stress_testing import (
    crash_probability,
    estimate_recovery_time,
    run_stress_tests,
    sector_exposure,
)
from allocation_engine.time_series import (
    confidence_bands,
    decompose_drawdowns,
    drawdown_series,
    extended_scenario_analysis,
    historical_backtest,
)
from core.analysis_flags import generate_analysis_flags
from core.result_objects import PortfolioAnalysisResult, config_snapshot


@log_errors("high")
@log_operation("portfolio_analysis")
@log_timing(10.0)
def analyze_portfolio(
    assets: AssetInput,
    config: Union[str, Path, EngineConfig, Mapping[str, Any], None] = None,
    *,
    initial_value: float = 100000.0,
    horizon_years: int = 10,
    strategy: str = STRATEGY_OPTIMAL,
    seed: Optional[int] = None,
    num_paths: Optional[int] = None,
    projection_months: int = 60,
    market_implied_volatility: Optional[float] = None,
    market_regime: Optional[str] = None,
) -> PortfolioAnalysisResult:
    """
    Run the full allocation and risk analysis and return ``PortfolioAnalysisResult``.

    Contract notes:
    - ``assets`` accepts raw records (dicts/``AssetRecord``), a DataFrame, or
      ``NormalizedAssets``; an empty universe raises ``InvalidInputError``.
    - ``config`` accepts an ``EngineConfig``, a dict, a YAML path, or ``None``.
    - ``seed`` makes every stochastic section reproducible; each section
      draws from its own spawned stream so they do not interfere.
    - ``market_implied_volatility`` (decimal, e.g. VIX 18 -> 0.18) adds a
      ``forward_looking_risk`` supplement; ``market_regime`` overrides the
      regime classified from it.
    """
    # ─── 1. Resolve Inputs ───────────────────────────────────────────────
    cfg = resolve_engine_config(config)
    get_optimizer(strategy)
    universe = normalize_assets(assets, cfg)
    corr = build_correlation_matrix(universe, cfg)

    # ─── 2. Allocations ──────────────────────────────────────────────────
    allocations = optimize_all_portfolios(universe, corr, cfg)
    strategy_metrics = {
        name: compute_portfolio_metrics(allocation.weights, universe, corr, cfg)
        for name, allocation in allocations.items()
    }
    weights = allocations[strategy].weights
    metrics = strategy_metrics[strategy]

    # ─── 3. Simulation & Stress ──────────────────────────────────────────
    mc_stream, drawdown_stream, backtest_stream, recovery_stream = NumpyRandomSource(seed).spawn(4)
    simulation = run_monte_carlo(
        weights,
        universe,
        corr,
        initial_value,
        horizon_years,
        num_paths,
        config=cfg,
        random_source=mc_stream,
    )
    stress_results = run_stress_tests(weights, universe, config=cfg)
    worst_decline = min((s.portfolio_return for s in stress_results), default=0.0)

    # ─── 4. Decomposition ────────────────────────────────────────────────
    decomposition = {
        "concentration": concentration_risk(weights, universe, cfg),
        "beta": beta_decomposition(weights, universe, cfg),
        "alpha": alpha_decomposition(weights, universe, cfg),
        "correlation_stress": correlation_stress(weights, universe, corr, config=cfg),
        "risk_contribution": risk_contribution_decomposition(weights, universe, corr, cfg),
    }

    # ─── 5. Projections ──────────────────────────────────────────────────
    bands = confidence_bands(metrics, projection_months, initial_value)
    drawdowns = drawdown_series(metrics, projection_months, initial_value, random_source=drawdown_stream)
    backtest = historical_backtest(
        weights,
        universe,
        corr,
        min(int(horizon_years), cfg.backtest_max_years) or 1,
        initial_value=initial_value,
        config=cfg,
        random_source=backtest_stream,
    )
    scenarios = extended_scenario_analysis(metrics, initial_value, max(int(horizon_years), 1), config=cfg)
    advanced = compute_advanced_metrics(weights, universe, corr, cfg)

    supplementary = {
        "crash_probability": crash_probability(metrics.volatility, metrics.expected_return),
        "recovery_time": estimate_recovery_time(
            worst_decline,
            metrics.expected_return,
            metrics.volatility,
            random_source=recovery_stream,
        ),
        "sector_exposure": sector_exposure(weights, universe, cfg),
        "drawdown_decomposition": decompose_drawdowns(
            metrics,
            max(int(horizon_years), 1),
            advanced.portfolio_beta,
            average_correlation(corr),
            historical_returns=backtest.values["portfolio_return"],
            config=cfg,
        ),
        "allocation_validation": validate_allocation(allocations[strategy].as_dict(), cfg),
    }
    if market_implied_volatility is not None:
        supplementary["forward_looking_risk"] = forward_looking_risk(
            weights,
            universe,
            market_implied_volatility,
            regime=market_regime,
            corr=corr,
            config=cfg,
        )

    result = PortfolioAnalysisResult.from_core_analysis(
        strategy=strategy,
        symbols=universe.symbols,
        allocations=allocations,
        strategy_metrics=strategy_metrics,
        advanced_metrics=advanced,
        simulation=simulation,
        stress_results=stress_results,
        decomposition=decomposition,
        confidence_bands=bands,
        drawdowns=drawdowns,
        backtest=backtest,
        scenario_analysis=scenarios,
        data_quality=universe.quality,
        analysis_metadata={
            "analysis_date": datetime.now(UTC).isoformat(),
            "initial_value": initial_value,
            "horizon_years": horizon_years,
            "seed": seed,
            "asset_count": len(universe),
            "config": config_snapshot(cfg),
        },
        supplementary=supplementary,
    )
    result.supplementary["flags"] = generate_analysis_flags(result.get_agent_snapshot())

    log_portfolio_operation(
        "portfolio_analysis_completed",
        {
            "assets": len(universe),
            "strategy": strategy,
            "sharpe_ratio": round(metrics.sharpe_ratio, 4),
            "data_quality_issues": universe.quality.has_issues,
        },
    )
    return result


def get_analysis_flags(result: PortfolioAnalysisResult) -> list[Dict[str, Any]]:
    """Flags for an existing result (recomputed from its snapshot)."""
    return generate_analysis_flags(result.get_agent_snapshot())

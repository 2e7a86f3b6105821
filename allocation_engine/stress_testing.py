#!/usr/bin/env python3
# coding: utf-8

"""
Beta-scaled market stress scenarios and crash/recovery estimates.

Called by:
- ``core.portfolio_analysis.analyze_portfolio``.

Contract notes:
- Asset impact = ``market_decline * beta`` (decimals), floored at
  ``config.asset_loss_floor`` so no asset loses more than 100%.
- Portfolio impact = ``sum(w_i * impact_i)``; ``contributions`` holds the
  individual terms and sums to it.
- Scenario tables come from ``EngineConfig.stress_scenarios``; custom
  scenarios may be passed as ``StressScenario`` objects or mappings of the
  same shape.
"""

from __future__ import annotations

import math
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

import numpy as np
from scipy.stats import norm

from allocation_engine._logging import log_errors, log_operation
from allocation_engine.asset_stats import AssetInput, ensure_assets
from allocation_engine.constants import AGGRESSIVE_BETA_MIN, DEFENSIVE_BETA_MAX
from allocation_engine.data_objects import EngineConfig, StressScenario
from allocation_engine.errors import InvalidInputError
from allocation_engine.portfolio_risk import WeightInput, compute_herfindahl, sanitize_weights
from allocation_engine.providers import RandomSource, resolve_random_source
from allocation_engine.results import ScenarioResult


ScenarioInput = Union[StressScenario, Mapping[str, Any]]

CRASH_THRESHOLDS = {"mild": -0.20, "moderate": -0.35, "severe": -0.50}


def _as_scenario(scenario: ScenarioInput) -> StressScenario:
    if isinstance(scenario, StressScenario):
        return scenario
    if isinstance(scenario, Mapping):
        return StressScenario.from_mapping(scenario)
    raise InvalidInputError(f"Unsupported scenario type: {type(scenario).__name__}")


@log_errors("high")
def run_stress_test(
    weights: WeightInput,
    assets: AssetInput,
    scenario: ScenarioInput,
    config: Optional[EngineConfig] = None,
) -> ScenarioResult:
    """Apply one market decline to the portfolio through each asset's beta."""
    cfg = config or EngineConfig()
    universe = ensure_assets(assets, cfg)
    w = sanitize_weights(weights, universe)
    scenario = _as_scenario(scenario)

    decline = scenario.market_decline_percent / 100.0
    impacts = np.maximum(decline * universe.betas, cfg.asset_loss_floor)
    contributions = w * impacts
    return ScenarioResult(
        name=scenario.name,
        market_decline_percent=scenario.market_decline_percent,
        portfolio_return=float(contributions.sum()),
        asset_impacts=dict(zip(universe.symbols, impacts.tolist())),
        contributions=dict(zip(universe.symbols, contributions.tolist())),
        description=scenario.description,
        recovery_months=scenario.recovery_months,
    )


@log_errors("high")
@log_operation("stress_tests")
def run_stress_tests(
    weights: WeightInput,
    assets: AssetInput,
    scenarios: Optional[Iterable[ScenarioInput]] = None,
    config: Optional[EngineConfig] = None,
) -> List[ScenarioResult]:
    """Run ``scenarios`` (default: the configured built-ins) in order."""
    cfg = config or EngineConfig()
    universe = ensure_assets(assets, cfg)
    table = list(cfg.stress_scenarios if scenarios is None else scenarios)
    return [run_stress_test(weights, universe, s, cfg) for s in table]


def _tail_probability(z: float, tail_adjustment: float) -> float:
    # Inflate the normal tail for fat tails, bounded to [0.1%, 50%].
    adjusted = min(0.5, float(norm.cdf(z)) * (1.0 + abs(z) * tail_adjustment))
    return max(0.001, adjusted)


def crash_probability(
    volatility: float,
    expected_return: float,
    *,
    thresholds: Optional[Mapping[str, float]] = None,
    tail_adjustment: float = 0.15,
    years: int = 10,
) -> Dict[str, Dict[str, float]]:
    """
    Probability of a one-year loss beyond each threshold, and of at least one
    such year over ``years``. Inputs and thresholds are decimals.

    Zero volatility yields 0 for thresholds below the expected return.
    """
    levels = dict(thresholds or CRASH_THRESHOLDS)
    annual: Dict[str, float] = {}
    for label, threshold in levels.items():
        if volatility <= 0 or not math.isfinite(volatility):
            annual[label] = 1.0 if expected_return <= threshold else 0.0
            continue
        z = (threshold - expected_return) / volatility
        annual[label] = _tail_probability(z, tail_adjustment)
    horizon = {label: 1.0 - (1.0 - p) ** years for label, p in annual.items()}
    return {"annual": annual, f"{years}_year": horizon}


@log_errors("medium")
def estimate_recovery_time(
    drawdown: float,
    expected_return: float,
    volatility: float,
    *,
    num_paths: int = 1000,
    max_months: int = 120,
    random_source: Optional[RandomSource] = None,
    seed: Optional[int] = None,
) -> Optional[Dict[str, float]]:
    """
    Simulated years to climb back to the prior peak after ``drawdown``.

    ``drawdown`` is a decimal loss (sign ignored). Deep drawdowns get a mild
    mean-reversion boost to the monthly drift. Returns median/p75/p90 in years
    over the recovering paths, or ``None`` if none recover within
    ``max_months``.
    """
    depth = min(abs(float(drawdown)), 0.999)
    if depth == 0:
        return {"median": 0.0, "p75": 0.0, "p90": 0.0, "recovered_share": 1.0}

    source = resolve_random_source(random_source, seed)
    monthly_mean = expected_return / 12.0
    monthly_vol = volatility / math.sqrt(12.0)

    values = np.full(num_paths, 1.0 - depth)
    months_taken = np.full(num_paths, -1, dtype=int)
    for month in range(1, max_months + 1):
        active = months_taken < 0
        if not active.any():
            break
        reversion = np.where(values < 0.8, 1.2, np.where(values < 0.9, 1.1, 1.0))
        shocks = np.asarray(source.standard_normal(num_paths), dtype=float)
        step = monthly_mean * reversion + monthly_vol * shocks
        values = np.where(active, values * (1.0 + step), values)
        months_taken[active & (values >= 1.0)] = month

    recovered = months_taken[months_taken > 0]
    if recovered.size == 0:
        return None
    median, p75, p90 = np.percentile(recovered, [50, 75, 90], method="lower")
    return {
        "median": round(float(median) / 12.0, 1),
        "p75": round(float(p75) / 12.0, 1),
        "p90": round(float(p90) / 12.0, 1),
        "recovered_share": float(recovered.size / num_paths),
    }


def sector_exposure(
    weights: WeightInput,
    assets: AssetInput,
    config: Optional[EngineConfig] = None,
) -> Dict[str, Any]:
    """Sector allocations with weighted betas, beta buckets and sector HHI."""
    universe = ensure_assets(assets, config)
    w = sanitize_weights(weights, universe)

    sectors: Dict[str, Dict[str, float]] = {}
    buckets = {"defensive": 0.0, "neutral": 0.0, "aggressive": 0.0}
    for weight, asset in zip(w, universe):
        entry = sectors.setdefault(asset.sector, {"allocation": 0.0, "average_beta": 0.0, "count": 0})
        entry["allocation"] += float(weight)
        entry["average_beta"] += float(weight) * asset.beta
        entry["count"] += 1
        if abs(asset.beta) < DEFENSIVE_BETA_MAX:
            buckets["defensive"] += float(weight)
        elif abs(asset.beta) > AGGRESSIVE_BETA_MIN:
            buckets["aggressive"] += float(weight)
        else:
            buckets["neutral"] += float(weight)

    for entry in sectors.values():
        if entry["allocation"] > 0:
            entry["average_beta"] /= entry["allocation"]

    dominant = max(sectors, key=lambda s: sectors[s]["allocation"])
    return {
        "sectors": sectors,
        "beta_exposure": buckets,
        "sector_herfindahl": compute_herfindahl([e["allocation"] for e in sectors.values()]),
        "dominant_sector": dominant,
    }

#!/usr/bin/env python3
# coding: utf-8

"""
Per-holding risk decomposition.

Called by:
- ``core.portfolio_analysis.analyze_portfolio``.

Contract notes:
- Every function returns a ``DecompositionResult`` whose ``contributions``
  sum to ``portfolio_value`` (HHI, beta, alpha, stressed volatility, or
  volatility).
- Thresholds come from ``EngineConfig.concentration_thresholds``.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import numpy as np

from allocation_engine._logging import log_errors
from allocation_engine.asset_stats import AssetInput, ensure_assets
from allocation_engine.correlation import (
    average_correlation,
    coerce_correlation,
    correlation_extremes,
    covariance_from_assets,
    stress_correlation_matrix,
)
from allocation_engine.data_objects import EngineConfig
from allocation_engine.portfolio_risk import (
    WeightInput,
    compute_euler_variance_percent,
    compute_herfindahl,
    compute_portfolio_volatility,
    compute_risk_contributions,
    sanitize_weights,
)
from allocation_engine.results import DecompositionResult


def _concentration_category(hhi: float, thresholds: Dict[str, float]) -> str:
    if hhi > thresholds.get("hhi_high", 0.25):
        return "high"
    if hhi > thresholds.get("hhi_moderate", 0.15):
        return "moderate"
    return "low"


@log_errors("medium")
def concentration_risk(
    weights: WeightInput,
    assets: AssetInput,
    config: Optional[EngineConfig] = None,
) -> DecompositionResult:
    """Herfindahl index with single-position and sector concentration flags."""
    cfg = config or EngineConfig()
    universe = ensure_assets(assets, cfg)
    w = sanitize_weights(weights, universe)
    thresholds = cfg.concentration_thresholds

    hhi = compute_herfindahl(w)
    order = np.argsort(-w, kind="stable")
    largest_idx = int(order[0])
    top3 = float(w[order[:3]].sum())

    sector_weights: Dict[str, float] = {}
    for weight, sector in zip(w, universe.sectors):
        sector_weights[sector] = sector_weights.get(sector, 0.0) + float(weight)
    largest_sector = max(sector_weights, key=sector_weights.get)

    category = _concentration_category(hhi, thresholds)
    flags: List[Dict[str, Any]] = []
    if category == "high":
        flags.append(
            {
                "type": "high_concentration",
                "severity": "warning",
                "message": f"Herfindahl index {hhi:.3f} indicates a highly concentrated portfolio",
                "herfindahl": hhi,
            }
        )
    elif category == "moderate":
        flags.append(
            {
                "type": "moderate_concentration",
                "severity": "info",
                "message": f"Herfindahl index {hhi:.3f} indicates moderate concentration",
                "herfindahl": hhi,
            }
        )
    single_limit = thresholds.get("single_position", 0.40)
    if w[largest_idx] > single_limit:
        flags.append(
            {
                "type": "single_position_concentration",
                "severity": "warning",
                "message": (
                    f"{universe.symbols[largest_idx]} is {w[largest_idx]:.1%} of the portfolio "
                    f"(limit {single_limit:.0%})"
                ),
                "symbol": universe.symbols[largest_idx],
                "weight": float(w[largest_idx]),
            }
        )
    sector_limit = thresholds.get("sector", 0.50)
    if sector_weights[largest_sector] > sector_limit and len(universe) > 1:
        flags.append(
            {
                "type": "sector_concentration",
                "severity": "warning",
                "message": (
                    f"{largest_sector} sector is {sector_weights[largest_sector]:.1%} of the portfolio "
                    f"(limit {sector_limit:.0%})"
                ),
                "sector": largest_sector,
                "weight": sector_weights[largest_sector],
            }
        )

    return DecompositionResult(
        kind="concentration",
        portfolio_value=hhi,
        contributions=dict(zip(universe.symbols, (w ** 2).tolist())),
        details={
            "category": category,
            "effective_number_of_assets": 1.0 / hhi if hhi > 0 else float(len(universe)),
            "largest_position": universe.symbols[largest_idx],
            "largest_weight": float(w[largest_idx]),
            "top3_weight": top3,
            "sector_weights": sector_weights,
            "largest_sector": largest_sector,
            "largest_sector_weight": sector_weights[largest_sector],
            "flags": flags,
        },
    )


@log_errors("medium")
def beta_decomposition(
    weights: WeightInput,
    assets: AssetInput,
    config: Optional[EngineConfig] = None,
) -> DecompositionResult:
    """Portfolio beta ``w . beta`` and per-asset contributions ``w_i * beta_i``."""
    universe = ensure_assets(assets, config)
    w = sanitize_weights(weights, universe)
    betas = universe.betas

    portfolio_beta = float(np.dot(w, betas))
    contributions = w * betas
    share = {
        s: (float(c) / portfolio_beta if abs(portfolio_beta) > 1e-12 else 0.0)
        for s, c in zip(universe.symbols, contributions)
    }
    return DecompositionResult(
        kind="beta",
        portfolio_value=portfolio_beta,
        contributions=dict(zip(universe.symbols, contributions.tolist())),
        details={
            "asset_betas": dict(zip(universe.symbols, betas.tolist())),
            "contribution_share": share,
        },
    )


@log_errors("medium")
def alpha_decomposition(
    weights: WeightInput,
    assets: AssetInput,
    config: Optional[EngineConfig] = None,
) -> DecompositionResult:
    """CAPM residual per asset ``r_i - (r_f + beta_i (r_m - r_f))``; portfolio alpha is the weighted sum."""
    cfg = config or EngineConfig()
    universe = ensure_assets(assets, cfg)
    w = sanitize_weights(weights, universe)

    required = cfg.risk_free_rate + universe.betas * (cfg.market_return - cfg.risk_free_rate)
    alphas = universe.returns - required
    contributions = w * alphas
    return DecompositionResult(
        kind="alpha",
        portfolio_value=float(contributions.sum()),
        contributions=dict(zip(universe.symbols, contributions.tolist())),
        details={
            "asset_alphas": dict(zip(universe.symbols, alphas.tolist())),
            "required_returns": dict(zip(universe.symbols, required.tolist())),
            "risk_free_rate": cfg.risk_free_rate,
            "market_return": cfg.market_return,
        },
    )


@log_errors("medium")
def correlation_stress(
    weights: WeightInput,
    assets: AssetInput,
    corr: Optional[np.ndarray] = None,
    stress_factor: Optional[float] = None,
    config: Optional[EngineConfig] = None,
) -> DecompositionResult:
    """
    Portfolio volatility when correlations converge toward 1.

    ``stress_factor`` defaults to ``config.correlation_stress_factor`` and is
    clamped to [0, 1]. Contributions are Euler risk contributions under the
    stressed matrix.
    """
    cfg = config or EngineConfig()
    universe = ensure_assets(assets, cfg)
    corr = coerce_correlation(corr, universe, cfg)
    w = sanitize_weights(weights, universe)
    factor = cfg.correlation_stress_factor if stress_factor is None else stress_factor

    stressed = stress_correlation_matrix(corr, factor)
    base_vol = compute_portfolio_volatility(w, covariance_from_assets(universe, corr))
    stressed_cov = covariance_from_assets(universe, stressed)
    stressed_vol = compute_portfolio_volatility(w, stressed_cov)
    weighted_vol = float(w @ universe.volatilities)
    base_min, base_max = correlation_extremes(corr)

    contributions = compute_risk_contributions(w, stressed_cov, universe.symbols)
    return DecompositionResult(
        kind="correlation_stress",
        portfolio_value=stressed_vol,
        contributions=contributions.to_dict(),
        details={
            "stress_factor": float(min(max(factor, 0.0), 1.0)) if np.isfinite(factor) else 0.0,
            "base_volatility": base_vol,
            "stressed_volatility": stressed_vol,
            "volatility_increase": stressed_vol - base_vol,
            "average_correlation": average_correlation(corr),
            "stressed_average_correlation": average_correlation(stressed),
            "min_correlation": base_min,
            "max_correlation": base_max,
            "diversification_benefit": 1.0 - base_vol / weighted_vol if weighted_vol > 0 else 0.0,
            "stressed_matrix": stressed,
        },
    )


@log_errors("medium")
def risk_contribution_decomposition(
    weights: WeightInput,
    assets: AssetInput,
    corr: Optional[np.ndarray] = None,
    config: Optional[EngineConfig] = None,
) -> DecompositionResult:
    """Euler volatility contributions (sum to portfolio volatility) and variance shares."""
    cfg = config or EngineConfig()
    universe = ensure_assets(assets, cfg)
    corr = coerce_correlation(corr, universe, cfg)
    w = sanitize_weights(weights, universe)
    cov = covariance_from_assets(universe, corr)

    contributions = compute_risk_contributions(w, cov, universe.symbols)
    variance_share = compute_euler_variance_percent(w=w, cov=cov, symbols=universe.symbols)
    return DecompositionResult(
        kind="risk_contribution",
        portfolio_value=compute_portfolio_volatility(w, cov),
        contributions=contributions.to_dict(),
        details={"variance_share": variance_share.to_dict()},
    )

#!/usr/bin/env python3
# coding: utf-8

"""
Portfolio risk/return metrics for a weight vector.

Called by:
- ``portfolio_optimizer`` (risk-parity contributions).
- ``monte_carlo`` / ``time_series`` (portfolio mean and volatility inputs).
- ``core.portfolio_analysis.analyze_portfolio``.

Contract notes:
- Weights are sanitized before use: non-finite or negative entries become 0,
  the vector is renormalized, and an all-zero vector becomes equal weight. A
  length mismatch with the asset universe is the only error.
- ``sharpe_ratio`` is 0.0 whenever volatility is 0.
"""

from __future__ import annotations

from typing import Dict, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd
from scipy.stats import norm

from allocation_engine._logging import log_errors, log_timing, portfolio_logger
from allocation_engine.asset_stats import AssetInput, ensure_assets
from allocation_engine.constants import VAR_CONFIDENCE, VARIANCE_EPSILON
from allocation_engine.correlation import (
    blend_volatility,
    build_covariance_matrix,
    classify_vix_regime,
    coerce_correlation,
    covariance_from_assets,
    regime_correlation_matrix,
)
from allocation_engine.data_objects import EngineConfig, NormalizedAssets
from allocation_engine.errors import InvalidInputError
from allocation_engine.results import AdvancedMetrics, AllocationResult, PortfolioMetrics


WeightInput = Union[np.ndarray, Sequence[float], Mapping[str, float], AllocationResult]


def normalize_weights(weights: Dict[str, float]) -> Dict[str, float]:
    """
    Normalize a ``{symbol: weight}`` dict to sum to 1.

    Raises:
        InvalidInputError: if the weights sum to zero.
    """
    total = sum(weights.values())
    if total == 0:
        raise InvalidInputError("Sum of weights is zero, cannot normalize.")
    return {t: w / total for t, w in weights.items()}


def sanitize_weights(weights: WeightInput, universe: NormalizedAssets) -> np.ndarray:
    """
    Coerce ``weights`` into a long-only vector aligned with ``universe``.

    Mappings are aligned by symbol (missing symbols get 0). Non-finite and
    negative entries are zeroed; an all-zero result becomes equal weight.
    """
    n = len(universe)
    if isinstance(weights, AllocationResult):
        weights = weights.weights
    if isinstance(weights, Mapping):
        unknown = set(weights) - set(universe.symbols)
        if unknown:
            raise InvalidInputError(f"weights reference unknown symbol(s): {sorted(unknown)}")
        raw = np.array([weights.get(s, 0.0) for s in universe.symbols], dtype=float)
    else:
        raw = np.asarray(weights, dtype=float).reshape(-1)
    if raw.shape[0] != n:
        raise InvalidInputError(f"weight vector length {raw.shape[0]} does not match {n} assets")

    clean = np.where(np.isfinite(raw) & (raw > 0), raw, 0.0)
    total = clean.sum()
    if total <= 0:
        portfolio_logger.warning("weights sum to zero after sanitizing; using equal weights")
        return np.full(n, 1.0 / n)
    return clean / total


def portfolio_variance(w: np.ndarray, cov: np.ndarray) -> float:
    """``w' Sigma w`` floored at 0 (rounding can push it slightly negative)."""
    return max(float(w @ cov @ w), 0.0)


@log_errors("high")
@log_timing(1.0)
def compute_portfolio_volatility(w: np.ndarray, cov: np.ndarray) -> float:
    """
    Compute portfolio volatility = sqrt(w^T Σ w).
    """
    return float(np.sqrt(portfolio_variance(np.asarray(w, dtype=float), np.asarray(cov, dtype=float))))


@log_errors("high")
@log_timing(1.0)
def compute_risk_contributions(w: np.ndarray, cov: np.ndarray, symbols: Sequence[str]) -> pd.Series:
    """
    Compute each asset's risk contribution to total portfolio volatility.
    RC_i = w_i * (Σ w)_i / σ_p
    Returns a Series indexed by symbol (all zero when σ_p is 0).
    """
    w = np.asarray(w, dtype=float)
    sigma_p = compute_portfolio_volatility(w, cov)
    if sigma_p <= 0:
        return pd.Series(np.zeros(len(w)), index=list(symbols), name="risk_contrib")
    marg = np.asarray(cov, dtype=float) @ w
    return pd.Series(w * marg / sigma_p, index=list(symbols), name="risk_contrib")


def compute_herfindahl(weights) -> float:
    """
    Compute the Herfindahl index = sum(w_i^2).
    Indicates portfolio concentration (1/N = fully diversified, 1 = single asset).
    """
    if isinstance(weights, Mapping):
        weights = list(weights.values())
    w = np.asarray(weights, dtype=float)
    return float(np.sum(w ** 2))


def compute_euler_variance_percent(*, w: np.ndarray, cov: np.ndarray, symbols: Sequence[str]) -> pd.Series:
    """
    Euler (marginal) variance decomposition.

    Returns each asset's share of total portfolio variance (sums to 1.0;
    all zero when variance is 0).
    """
    w = np.asarray(w, dtype=float)
    contrib = pd.Series(w * (np.asarray(cov, dtype=float) @ w), index=list(symbols))
    total = contrib.sum()
    if total <= VARIANCE_EPSILON:
        return contrib * 0.0
    return contrib / total


@log_errors("high")
def compute_portfolio_metrics(
    weights: WeightInput,
    assets: AssetInput,
    corr: Optional[np.ndarray] = None,
    config: Optional[EngineConfig] = None,
) -> PortfolioMetrics:
    """
    ``{expected_return, volatility, sharpe_ratio}`` in decimals.

    Sharpe uses ``config.risk_free_rate`` and is 0.0 when volatility is 0.
    """
    cfg = config or EngineConfig()
    universe = ensure_assets(assets, cfg)
    corr = coerce_correlation(corr, universe, cfg)
    w = sanitize_weights(weights, universe)

    expected_return = float(w @ universe.returns)
    volatility = compute_portfolio_volatility(w, covariance_from_assets(universe, corr))
    sharpe = (expected_return - cfg.risk_free_rate) / volatility if volatility > 0 else 0.0
    return PortfolioMetrics(
        expected_return=expected_return,
        volatility=volatility,
        sharpe_ratio=float(sharpe),
    )


@log_errors("medium")
def compute_advanced_metrics(
    weights: WeightInput,
    assets: AssetInput,
    corr: Optional[np.ndarray] = None,
    config: Optional[EngineConfig] = None,
) -> AdvancedMetrics:
    """Beta/alpha, Treynor, parametric 95% VaR and CVaR, diversification ratio and effective N."""
    cfg = config or EngineConfig()
    universe = ensure_assets(assets, cfg)
    corr = coerce_correlation(corr, universe, cfg)
    w = sanitize_weights(weights, universe)
    base = compute_portfolio_metrics(w, universe, corr, cfg)

    beta = float(w @ universe.betas)
    alpha = base.expected_return - (cfg.risk_free_rate + beta * (cfg.market_return - cfg.risk_free_rate))
    treynor = (base.expected_return - cfg.risk_free_rate) / beta if abs(beta) > 1e-12 else None

    weighted_vol = float(w @ universe.volatilities)
    diversification_ratio = weighted_vol / base.volatility if base.volatility > 0 else 1.0
    hhi = compute_herfindahl(w)

    # Parametric normal tail: VaR at the one-sided quantile, CVaR as the
    # expected shortfall beyond it.
    tail = 1.0 - VAR_CONFIDENCE
    z = float(norm.ppf(VAR_CONFIDENCE))
    shortfall_z = float(norm.pdf(z)) / tail

    return AdvancedMetrics(
        portfolio_beta=beta,
        portfolio_alpha=float(alpha),
        treynor_ratio=float(treynor) if treynor is not None else None,
        var_95=base.expected_return - z * base.volatility,
        cvar_95=base.expected_return - shortfall_z * base.volatility,
        diversification_ratio=float(diversification_ratio),
        effective_number_of_assets=1.0 / hhi if hhi > 0 else float(len(universe)),
    )


@log_errors("medium")
def forward_looking_risk(
    weights: WeightInput,
    assets: AssetInput,
    market_implied_volatility: float,
    *,
    regime: Optional[str] = None,
    vix_level: Optional[float] = None,
    corr: Optional[np.ndarray] = None,
    config: Optional[EngineConfig] = None,
) -> Dict[str, object]:
    """
    Portfolio volatility under current market conditions vs the model baseline.

    Each asset's volatility is blended with ``market_implied_volatility``
    (decimal, e.g. 0.18) scaled by its beta, and correlations are adjusted for
    ``regime``. When ``regime`` is omitted it is classified from ``vix_level``
    (default: ``market_implied_volatility * 100``).

    Returns forward/historical volatility, their difference, the regime and a
    per-asset adjustment table.
    """
    cfg = config or EngineConfig()
    universe = ensure_assets(assets, cfg)
    corr = coerce_correlation(corr, universe, cfg)
    w = sanitize_weights(weights, universe)

    implied = float(market_implied_volatility)
    if not np.isfinite(implied) or implied < 0:
        raise InvalidInputError(
            f"market_implied_volatility must be a non-negative decimal, got {market_implied_volatility!r}"
        )
    level = implied * 100.0 if vix_level is None else float(vix_level)
    label = (regime or classify_vix_regime(level, cfg)).lower()

    blends = [blend_volatility(vol, implied, beta, cfg) for vol, beta in zip(universe.volatilities, universe.betas)]
    forward_vols = np.array([b["blended"] for b in blends])
    forward_corr = regime_correlation_matrix(corr, label, cfg)

    forward_vol = compute_portfolio_volatility(w, build_covariance_matrix(forward_vols, forward_corr))
    historical_vol = compute_portfolio_volatility(w, covariance_from_assets(universe, corr))

    adjustments = pd.DataFrame(
        {
            "sector": universe.sectors,
            "beta": universe.betas,
            "weight": w,
            "historical_volatility": universe.volatilities,
            "forward_volatility": forward_vols,
        },
        index=pd.Index(universe.symbols, name="symbol"),
    )
    adjustments["delta"] = adjustments["forward_volatility"] - adjustments["historical_volatility"]

    return {
        "forward_volatility": forward_vol,
        "historical_volatility": historical_vol,
        "regime_impact": forward_vol - historical_vol,
        "regime": label,
        "vix_level": level,
        "market_implied_volatility": implied,
        "asset_adjustments": adjustments,
    }

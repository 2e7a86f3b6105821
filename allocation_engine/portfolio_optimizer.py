#!/usr/bin/env python3
# coding: utf-8

"""
Long-only allocation optimizers.

Called by:
- ``core.portfolio_analysis.analyze_portfolio`` via ``optimize_all_portfolios``.

Contract notes:
- Every optimizer returns an ``AllocationResult`` whose weights are finite,
  non-negative and sum to 1 (within 1e-6). Degenerate inputs fall back to
  equal weight with ``fallback_used=True``; nothing here raises for numeric
  trouble.
- No randomness: identical inputs yield identical weights.
- A single-asset universe always yields ``[1.0]``.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, Optional

import numpy as np

from allocation_engine._logging import log_errors, log_operation, log_timing, portfolio_logger
from allocation_engine.asset_stats import AssetInput, ensure_assets
from allocation_engine.constants import (
    STRATEGIES,
    STRATEGY_MAX_RETURN,
    STRATEGY_MIN_VARIANCE,
    STRATEGY_OPTIMAL,
    STRATEGY_RISK_PARITY,
    WEIGHT_SUM_TOLERANCE,
)
from allocation_engine.correlation import coerce_correlation, covariance_from_assets
from allocation_engine.data_objects import EngineConfig, NormalizedAssets
from allocation_engine.errors import InvalidInputError
from allocation_engine.results import AllocationResult


def _equal_weight(universe: NormalizedAssets, strategy: str, **flags) -> AllocationResult:
    n = len(universe)
    return AllocationResult(
        strategy=strategy,
        weights=np.full(n, 1.0 / n),
        symbols=universe.symbols,
        **flags,
    )


def _single_asset(universe: NormalizedAssets, strategy: str) -> AllocationResult:
    return AllocationResult(strategy=strategy, weights=np.array([1.0]), symbols=universe.symbols)


def _finalize(w: np.ndarray) -> Optional[np.ndarray]:
    """Clip, renormalize and sanity-check; ``None`` means the caller should fall back."""
    if not np.all(np.isfinite(w)):
        return None
    w = np.where(w > 0, w, 0.0)
    total = w.sum()
    if total <= 0:
        return None
    w = w / total
    if abs(w.sum() - 1.0) > WEIGHT_SUM_TOLERANCE:
        return None
    return w


def _solve(cov: np.ndarray, rhs: np.ndarray, ridge: float) -> np.ndarray:
    """Solve ``(Sigma + ridge*I) x = rhs``; pseudo-inverse when singular."""
    system = cov + ridge * np.eye(cov.shape[0])
    try:
        return np.linalg.solve(system, rhs)
    except np.linalg.LinAlgError:
        portfolio_logger.warning("singular covariance block; using pseudo-inverse")
        return np.linalg.pinv(system) @ rhs


def _active_set_weights(
    cov: np.ndarray,
    rhs: np.ndarray,
    active: np.ndarray,
    ridge: float,
) -> tuple[Optional[np.ndarray], int]:
    """
    Analytic ``w ∝ Sigma_A^-1 rhs_A`` restricted to a shrinking active set.

    Assets with negative weight are dropped and the block re-solved, at most
    once per asset. Returns ``(weights or None, iterations)``.
    """
    n = cov.shape[0]
    active = active.copy()
    for iteration in range(1, n + 1):
        idx = np.flatnonzero(active)
        if idx.size == 0:
            return None, iteration
        x = _solve(cov[np.ix_(idx, idx)], rhs[idx], ridge)
        total = x.sum()
        if not np.isfinite(total) or total <= 0:
            return None, iteration
        w_active = x / total
        negative = w_active < 0
        if not negative.any():
            w = np.zeros(n)
            w[idx] = w_active
            return _finalize(w), iteration
        active[idx[negative]] = False
    return None, n


@log_errors("high")
@log_operation("max_sharpe_optimization")
@log_timing(5.0)
def optimize_optimal(
    assets: AssetInput,
    corr: Optional[np.ndarray] = None,
    config: Optional[EngineConfig] = None,
) -> AllocationResult:
    """
    Maximum-Sharpe (tangency) portfolio, long-only.

    Solves ``w ∝ Sigma^-1 (mu - r_f)`` over assets with positive excess
    return, dropping any asset that comes out negative and re-solving.
    Falls back to equal weight when no asset earns more than ``r_f``.
    """
    cfg = config or EngineConfig()
    universe = ensure_assets(assets, cfg)
    if len(universe) == 1:
        return _single_asset(universe, STRATEGY_OPTIMAL)
    corr = coerce_correlation(corr, universe, cfg)
    cov = covariance_from_assets(universe, corr)

    excess = universe.returns - cfg.risk_free_rate
    active = excess > 0
    if not active.any():
        portfolio_logger.warning("max-Sharpe: no asset beats the risk-free rate; using equal weights")
        return _equal_weight(universe, STRATEGY_OPTIMAL, fallback_used=True)

    w, iterations = _active_set_weights(cov, excess, active, cfg.covariance_ridge)
    if w is None:
        portfolio_logger.warning("max-Sharpe: tangency solve degenerate; using equal weights")
        return _equal_weight(universe, STRATEGY_OPTIMAL, fallback_used=True, iterations=iterations)
    return AllocationResult(
        strategy=STRATEGY_OPTIMAL,
        weights=w,
        symbols=universe.symbols,
        iterations=iterations,
    )


@log_errors("high")
@log_operation("min_variance_optimization")
@log_timing(5.0)
def optimize_min_variance(
    assets: AssetInput,
    corr: Optional[np.ndarray] = None,
    config: Optional[EngineConfig] = None,
) -> AllocationResult:
    """Global minimum-variance portfolio ``w ∝ Sigma^-1 1``, long-only by active set."""
    cfg = config or EngineConfig()
    universe = ensure_assets(assets, cfg)
    if len(universe) == 1:
        return _single_asset(universe, STRATEGY_MIN_VARIANCE)
    corr = coerce_correlation(corr, universe, cfg)
    cov = covariance_from_assets(universe, corr)

    n = len(universe)
    w, iterations = _active_set_weights(cov, np.ones(n), np.ones(n, dtype=bool), cfg.covariance_ridge)
    if w is None:
        portfolio_logger.warning("min-variance: solve degenerate; using equal weights")
        return _equal_weight(universe, STRATEGY_MIN_VARIANCE, fallback_used=True, iterations=iterations)
    return AllocationResult(
        strategy=STRATEGY_MIN_VARIANCE,
        weights=w,
        symbols=universe.symbols,
        iterations=iterations,
    )


def risk_contribution_spread(w: np.ndarray, cov: np.ndarray) -> float:
    """Relative spread ``(max - min) / mean`` of ``w_i (Sigma w)_i``."""
    rc = w * (cov @ w)
    mean = rc.mean()
    if mean <= 0:
        return float("inf")
    return float((rc.max() - rc.min()) / mean)


@log_errors("high")
@log_operation("risk_parity_optimization")
@log_timing(5.0)
def optimize_risk_parity(
    assets: AssetInput,
    corr: Optional[np.ndarray] = None,
    config: Optional[EngineConfig] = None,
) -> AllocationResult:
    """
    Equal-risk-contribution portfolio.

    Cyclical coordinate updates
    ``x_i = (-c_i + sqrt(c_i^2 + 4 Sigma_ii / n)) / (2 Sigma_ii)`` with
    ``c_i = sum_{j != i} Sigma_ij x_j``, seeded at inverse volatility. Converged when the relative spread of risk
    contributions is within ``config.risk_parity_tolerance``, after which the
    iterate is normalized to sum to 1. On non-convergence, or when any asset
    has zero volatility, equal weight is returned.
    """
    cfg = config or EngineConfig()
    universe = ensure_assets(assets, cfg)
    if len(universe) == 1:
        return _single_asset(universe, STRATEGY_RISK_PARITY)
    corr = coerce_correlation(corr, universe, cfg)
    cov = covariance_from_assets(universe, corr)

    n = len(universe)
    vols = universe.volatilities
    if np.any(vols <= 0):
        portfolio_logger.warning("risk parity: zero-volatility asset present; using equal weights")
        return _equal_weight(universe, STRATEGY_RISK_PARITY, converged=False, fallback_used=True)

    budget = 1.0 / n
    diag = np.diag(cov).copy()
    x = (1.0 / vols) / np.sum(1.0 / vols)
    for iteration in range(1, cfg.risk_parity_max_iterations + 1):
        for i in range(n):
            c = float(cov[i] @ x - diag[i] * x[i])
            x[i] = (-c + np.sqrt(c * c + 4.0 * diag[i] * budget)) / (2.0 * diag[i])
        # Spread is scale-free, so the unnormalized iterate can be tested directly.
        if risk_contribution_spread(x, cov) <= cfg.risk_parity_tolerance:
            w = _finalize(x)
            if w is None:
                break
            return AllocationResult(
                strategy=STRATEGY_RISK_PARITY,
                weights=w,
                symbols=universe.symbols,
                iterations=iteration,
            )

    portfolio_logger.warning(
        "risk parity did not converge within %d iterations; using equal weights",
        cfg.risk_parity_max_iterations,
    )
    return _equal_weight(
        universe,
        STRATEGY_RISK_PARITY,
        converged=False,
        fallback_used=True,
        iterations=cfg.risk_parity_max_iterations,
    )


def _top_return_index(universe: NormalizedAssets) -> int:
    """Highest expected return; ties go to the riskier asset, then input order."""
    returns = universe.returns
    vols = universe.volatilities
    best = 0
    for i in range(1, len(universe)):
        if returns[i] > returns[best] or (returns[i] == returns[best] and vols[i] > vols[best]):
            best = i
    return best


def _capped_allocation(returns: np.ndarray, top: int, cap: float) -> np.ndarray:
    """
    Top asset at ``cap``; the remainder spread over the others in proportion to
    positive return (equally if none is positive), re-capping any overflow.
    """
    n = len(returns)
    w = np.zeros(n)
    w[top] = cap
    fixed = np.zeros(n, dtype=bool)
    fixed[top] = True
    remaining = 1.0 - cap
    for _ in range(n):
        free = np.flatnonzero(~fixed)
        if free.size == 0 or remaining <= 0:
            break
        scores = np.clip(returns[free], 0.0, None)
        if scores.sum() <= 0:
            scores = np.ones(free.size)
        alloc = remaining * scores / scores.sum()
        over = alloc > cap
        if not over.any():
            w[free] = alloc
            break
        capped = free[over]
        w[capped] = cap
        fixed[capped] = True
        remaining -= cap * capped.size
    return w


@log_errors("high")
@log_operation("max_return_optimization")
@log_timing(5.0)
def optimize_max_return(
    assets: AssetInput,
    corr: Optional[np.ndarray] = None,
    config: Optional[EngineConfig] = None,
) -> AllocationResult:
    """
    Maximum-return allocation.

    Without ``config.max_return_weight_cap`` everything goes to the
    highest-return asset. With a cap, the top asset gets the cap and the rest
    is spread proportionally to return. A cap below ``1/N`` cannot be honoured
    and is raised to ``1/N``.
    """
    cfg = config or EngineConfig()
    universe = ensure_assets(assets, cfg)
    n = len(universe)
    if n == 1:
        return _single_asset(universe, STRATEGY_MAX_RETURN)

    top = _top_return_index(universe)
    cap = cfg.max_return_weight_cap
    if cap is None or cap >= 1.0:
        w = np.zeros(n)
        w[top] = 1.0
    else:
        if cap < 1.0 / n:
            portfolio_logger.warning("max-return cap %.4f is below 1/N; using %.4f", cap, 1.0 / n)
            cap = 1.0 / n
        w = _capped_allocation(universe.returns, top, cap)

    w = _finalize(w)
    if w is None:
        return _equal_weight(universe, STRATEGY_MAX_RETURN, fallback_used=True)
    return AllocationResult(strategy=STRATEGY_MAX_RETURN, weights=w, symbols=universe.symbols)


OPTIMIZERS: Dict[str, Callable[..., AllocationResult]] = {
    STRATEGY_OPTIMAL: optimize_optimal,
    STRATEGY_MIN_VARIANCE: optimize_min_variance,
    STRATEGY_RISK_PARITY: optimize_risk_parity,
    STRATEGY_MAX_RETURN: optimize_max_return,
}


def get_optimizer(strategy: str) -> Callable[..., AllocationResult]:
    try:
        return OPTIMIZERS[strategy]
    except KeyError:
        raise InvalidInputError(
            f"Unknown strategy {strategy!r}; expected one of {', '.join(STRATEGIES)}"
        ) from None


@log_errors("high")
@log_operation("optimize_all_portfolios")
@log_timing(10.0)
def optimize_all_portfolios(
    assets: AssetInput,
    corr: Optional[np.ndarray] = None,
    config: Optional[EngineConfig] = None,
    max_workers: Optional[int] = None,
) -> Dict[str, AllocationResult]:
    """
    Run all four optimizers concurrently and return them keyed by strategy.

    The universe and correlation matrix are resolved once and shared
    read-only across workers. Result order follows ``constants.STRATEGIES``.
    """
    cfg = config or EngineConfig()
    universe = ensure_assets(assets, cfg)
    corr = coerce_correlation(corr, universe, cfg)
    workers = max_workers or cfg.optimizer_workers

    results: Dict[str, AllocationResult] = {}
    with ThreadPoolExecutor(max_workers=workers) as ex:
        futures = {ex.submit(fn, universe, corr, cfg): name for name, fn in OPTIMIZERS.items()}
        for fut in as_completed(futures):
            results[futures[fut]] = fut.result()
    return {name: results[name] for name in STRATEGIES}

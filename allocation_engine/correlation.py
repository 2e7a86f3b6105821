#!/usr/bin/env python3
# coding: utf-8

"""
Sector/beta correlation model and covariance helpers.

Called by:
- ``core.portfolio_analysis.analyze_portfolio``.
- Optimizers, metrics, Monte Carlo and decomposition (via ``coerce_correlation``).

Contract notes:
- Pure function of sectors and betas; no randomness.
- Output is symmetric, unit-diagonal, bounded by the configured floor/ceiling
  and returned read-only so one matrix can be shared across the fan-out.
- Market-regime helpers (``classify_vix_regime``, ``regime_correlation_matrix``)
  derive new read-only matrices; the base model is never modified.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from allocation_engine._logging import log_errors, log_operation, portfolio_logger
from allocation_engine.asset_stats import AssetInput, ensure_assets
from allocation_engine.constants import UNKNOWN_SECTOR
from allocation_engine.data_objects import EngineConfig, NormalizedAssets
from allocation_engine.errors import InvalidInputError


def _freeze(matrix: np.ndarray) -> np.ndarray:
    matrix.setflags(write=False)
    return matrix


def pair_base_correlation(sector_a: str, sector_b: str, cfg: EngineConfig) -> float:
    """Base correlation for a sector pair before the beta adjustment."""
    if UNKNOWN_SECTOR in (sector_a, sector_b):
        return cfg.correlation_cross_sector
    override = cfg.pair_correlation(sector_a, sector_b)
    if override is not None:
        return float(override)
    if sector_a == sector_b:
        return cfg.correlation_same_sector
    return cfg.correlation_cross_sector


@log_errors("high")
@log_operation("build_correlation_matrix")
def build_correlation_matrix(assets: AssetInput, config: Optional[EngineConfig] = None) -> np.ndarray:
    """
    Build the N×N correlation matrix.

    ``rho_ij = clamp(base(sector_i, sector_j)
    - penalty * |beta_i - beta_j| / max(beta_i, beta_j, 1), floor, ceiling)``
    with the diagonal fixed at 1.0.
    """
    cfg = config or EngineConfig()
    universe = ensure_assets(assets, cfg)
    n = len(universe)
    sectors = universe.sectors
    betas = universe.betas

    corr = np.eye(n, dtype=float)
    lower = max(cfg.correlation_floor, -1.0)
    upper = min(cfg.correlation_ceiling, 1.0)
    for i in range(n):
        for j in range(i + 1, n):
            base = pair_base_correlation(sectors[i], sectors[j], cfg)
            b_i, b_j = float(betas[i]), float(betas[j])
            adjustment = -cfg.correlation_beta_penalty * abs(b_i - b_j) / max(b_i, b_j, 1.0)
            rho = float(np.clip(base + adjustment, lower, upper))
            corr[i, j] = rho
            corr[j, i] = rho
    return _freeze(corr)


def build_covariance_matrix(volatilities, corr: np.ndarray) -> np.ndarray:
    """``Sigma_ij = rho_ij * sigma_i * sigma_j``."""
    vols = np.asarray(volatilities, dtype=float)
    cov = np.outer(vols, vols) * np.asarray(corr, dtype=float)
    return 0.5 * (cov + cov.T)


def covariance_from_assets(universe: NormalizedAssets, corr: np.ndarray) -> np.ndarray:
    return build_covariance_matrix(universe.volatilities, corr)


def coerce_correlation(
    corr: Optional[np.ndarray],
    universe: NormalizedAssets,
    config: Optional[EngineConfig] = None,
) -> np.ndarray:
    """
    Return a usable correlation matrix for ``universe``.

    ``None`` builds one from the sector/beta model. A caller-supplied matrix
    must be N×N (otherwise ``InvalidInputError``); non-finite entries are
    zeroed, values clipped to [-1, 1], symmetrized, and the diagonal reset.
    """
    if corr is None:
        return build_correlation_matrix(universe, config)
    matrix = np.array(corr, dtype=float)
    n = len(universe)
    if matrix.shape != (n, n):
        raise InvalidInputError(f"correlation matrix shape {matrix.shape} does not match {n} assets")
    if not np.all(np.isfinite(matrix)):
        portfolio_logger.warning("correlation matrix contains non-finite entries; treating them as 0")
        matrix = np.nan_to_num(matrix, nan=0.0, posinf=0.0, neginf=0.0)
    matrix = np.clip(0.5 * (matrix + matrix.T), -1.0, 1.0)
    np.fill_diagonal(matrix, 1.0)
    return _freeze(matrix)


def stress_correlation_matrix(corr: np.ndarray, stress_factor: float) -> np.ndarray:
    """
    Push off-diagonal correlations toward 1: ``rho' = rho + s * (1 - rho)``.

    ``s`` is clamped to [0, 1] (non-finite is treated as 0). Symmetry and the
    unit diagonal are preserved.
    """
    s = float(stress_factor) if np.isfinite(stress_factor) else 0.0
    s = min(max(s, 0.0), 1.0)
    base = np.asarray(corr, dtype=float)
    stressed = base + s * (1.0 - base)
    stressed = np.clip(0.5 * (stressed + stressed.T), -1.0, 1.0)
    np.fill_diagonal(stressed, 1.0)
    return _freeze(stressed)


def average_correlation(corr: np.ndarray) -> float:
    """Mean of the off-diagonal entries (0.0 for a single asset)."""
    matrix = np.asarray(corr, dtype=float)
    n = matrix.shape[0]
    if n < 2:
        return 0.0
    mask = ~np.eye(n, dtype=bool)
    return float(matrix[mask].mean())


def correlation_extremes(corr: np.ndarray) -> tuple[float, float]:
    """(min, max) off-diagonal correlation; ``(0.0, 0.0)`` for a single asset."""
    matrix = np.asarray(corr, dtype=float)
    n = matrix.shape[0]
    if n < 2:
        return 0.0, 0.0
    upper = matrix[np.triu_indices(n, k=1)]
    return float(upper.min()), float(upper.max())


def validate_correlation_matrix(corr: np.ndarray, atol: float = 1e-12) -> list[str]:
    """Return a list of invariant violations (empty when the matrix is valid)."""
    matrix = np.asarray(corr, dtype=float)
    problems: list[str] = []
    if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
        return [f"matrix is not square: shape {matrix.shape}"]
    if not np.all(np.isfinite(matrix)):
        problems.append("matrix contains non-finite entries")
    if not np.allclose(matrix, matrix.T, atol=atol):
        problems.append("matrix is not symmetric")
    if not np.allclose(np.diag(matrix), 1.0, atol=atol):
        problems.append("diagonal is not 1.0")
    if np.any(matrix < -1.0 - atol) or np.any(matrix > 1.0 + atol):
        problems.append("entries outside [-1, 1]")
    return problems


# ─── Market regime layer ─────────────────────────────────────────────────────

REGIMES = ("low", "normal", "elevated", "high", "extreme")


def classify_vix_regime(vix_level: float, config: Optional[EngineConfig] = None) -> str:
    """Map an implied-volatility index level (e.g. VIX 22.5) to a regime label."""
    cfg = config or EngineConfig()
    level = float(vix_level)
    if not np.isfinite(level) or level < 0:
        raise InvalidInputError(f"vix_level must be a non-negative finite number, got {vix_level!r}")
    bounds = cfg.regime_vix_bounds
    for regime in REGIMES[:-1]:
        if level < bounds.get(regime, np.inf):
            return regime
    return "extreme"


def blend_volatility(
    historical_volatility: float,
    market_implied_volatility: float,
    beta: float = 1.0,
    config: Optional[EngineConfig] = None,
) -> dict:
    """
    Blend an asset's historical volatility with the market-implied level.

    ``implied = market_implied * |beta|`` and
    ``blended = (1 - w) * historical + w * implied`` with
    ``w = config.implied_volatility_weight``. All values are decimals.
    """
    cfg = config or EngineConfig()
    weight = cfg.implied_volatility_weight
    implied = float(market_implied_volatility) * abs(float(beta))
    blended = (1.0 - weight) * float(historical_volatility) + weight * implied
    return {
        "historical": float(historical_volatility),
        "implied": implied,
        "blended": blended,
        "adjustment": blended - float(historical_volatility),
    }


def regime_correlation_matrix(
    corr: np.ndarray,
    regime: str,
    config: Optional[EngineConfig] = None,
) -> np.ndarray:
    """
    Scale off-diagonal correlations by the regime factor and clamp them to
    ``[regime_correlation_floor, regime_correlation_ceiling]``.

    Calm regimes pull correlations down, stressed regimes push them up. The
    unit diagonal is kept. Unknown regimes are treated as ``"normal"``.
    """
    cfg = config or EngineConfig()
    label = (regime or "normal").lower()
    factors = cfg.regime_correlation_factors
    if label not in factors:
        portfolio_logger.warning("unknown market regime %r; using the normal correlation factor", regime)
        label = "normal"
    factor = float(factors.get(label, 1.0))

    adjusted = np.clip(
        np.asarray(corr, dtype=float) * factor,
        cfg.regime_correlation_floor,
        cfg.regime_correlation_ceiling,
    )
    adjusted = 0.5 * (adjusted + adjusted.T)
    np.fill_diagonal(adjusted, 1.0)
    return _freeze(adjusted)

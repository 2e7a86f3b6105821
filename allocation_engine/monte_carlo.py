#!/usr/bin/env python3
# coding: utf-8

"""
Monte Carlo simulation of terminal portfolio value.

Called by:
- ``core.portfolio_analysis.analyze_portfolio``.

Contract notes:
- Terminal value per path is
  ``initial * exp((mu - sigma^2 / 2) * T + sigma * sqrt(T) * Z)`` with
  ``mu``/``sigma`` the portfolio expected return and volatility.
- Reproducible for a given seed (or injected ``RandomSource``) and worker
  count. With ``workers > 1`` each chunk draws from its own spawned stream.
- Zero volatility (or a zero horizon) short-circuits to the deterministic
  value ``initial * exp(mu * T)`` without consuming draws.
"""

from __future__ import annotations

import math
import numbers
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional

import numpy as np

from allocation_engine._logging import log_errors, log_operation, log_timing, portfolio_logger
from allocation_engine.asset_stats import AssetInput, ensure_assets
from allocation_engine.correlation import coerce_correlation
from allocation_engine.data_objects import EngineConfig
from allocation_engine.errors import InvalidInputError
from allocation_engine.portfolio_risk import WeightInput, compute_portfolio_metrics
from allocation_engine.providers import RandomSource, resolve_random_source
from allocation_engine.results import SimulationResult


def _require_positive_int(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, numbers.Integral) or value < 1:
        raise InvalidInputError(f"{name} must be a positive integer, got {value!r}")
    return int(value)


def _require_finite(name: str, value: Any, *, minimum: float, inclusive: bool) -> float:
    if isinstance(value, bool) or not isinstance(value, numbers.Real) or not math.isfinite(value):
        raise InvalidInputError(f"{name} must be a finite number, got {value!r}")
    value = float(value)
    if value < minimum or (not inclusive and value == minimum):
        bound = ">=" if inclusive else ">"
        raise InvalidInputError(f"{name} must be {bound} {minimum}, got {value!r}")
    return value


def _draw_normals(source: RandomSource, num_paths: int, workers: int) -> np.ndarray:
    if workers <= 1 or num_paths < workers:
        return np.asarray(source.standard_normal(num_paths), dtype=float)

    sizes = [len(chunk) for chunk in np.array_split(np.arange(num_paths), workers)]
    children = source.spawn(workers)
    with ThreadPoolExecutor(max_workers=workers) as ex:
        chunks = list(ex.map(lambda pair: pair[0].standard_normal(pair[1]), zip(children, sizes)))
    return np.concatenate([np.asarray(c, dtype=float) for c in chunks])


def summarize_terminal_values(
    terminal: np.ndarray,
    initial_value: float,
    expected_value: float,
    horizon_years: float,
    keep_paths: bool = True,
) -> SimulationResult:
    p5, p25, p50, p75, p95 = np.percentile(terminal, [5, 25, 50, 75, 95])
    if keep_paths:
        terminal.setflags(write=False)
    return SimulationResult(
        mean=float(terminal.mean()),
        median=float(p50),
        percentile5=float(p5),
        percentile25=float(p25),
        percentile75=float(p75),
        percentile95=float(p95),
        min=float(terminal.min()),
        max=float(terminal.max()),
        std=float(terminal.std()),
        probability_of_loss=float(np.mean(terminal < initial_value)),
        expected_value=float(expected_value),
        initial_value=float(initial_value),
        horizon_years=float(horizon_years),
        num_paths=int(terminal.size),
        paths=terminal if keep_paths else None,
    )


@log_errors("high")
@log_operation("monte_carlo_simulation")
@log_timing(10.0)
def run_monte_carlo(
    weights: WeightInput,
    assets: AssetInput,
    corr: Optional[np.ndarray],
    initial_value: float,
    horizon_years: float,
    num_paths: Optional[int] = None,
    *,
    config: Optional[EngineConfig] = None,
    random_source: Optional[RandomSource] = None,
    seed: Optional[int] = None,
    workers: Optional[int] = None,
    keep_paths: bool = True,
) -> SimulationResult:
    """
    Simulate ``num_paths`` terminal values (default ``config.monte_carlo_paths``).

    Raises:
        InvalidInputError: non-positive ``initial_value``, negative or non-finite
            ``horizon_years``, or ``num_paths``/``workers`` below 1.
    """
    cfg = config or EngineConfig()
    initial_value = _require_finite("initial_value", initial_value, minimum=0.0, inclusive=False)
    horizon_years = _require_finite("horizon_years", horizon_years, minimum=0.0, inclusive=True)
    num_paths = _require_positive_int("num_paths", cfg.monte_carlo_paths if num_paths is None else num_paths)
    workers = _require_positive_int("workers", cfg.monte_carlo_workers if workers is None else workers)

    universe = ensure_assets(assets, cfg)
    corr = coerce_correlation(corr, universe, cfg)
    metrics = compute_portfolio_metrics(weights, universe, corr, cfg)
    mu, sigma = metrics.expected_return, metrics.volatility
    expected_value = initial_value * math.exp(mu * horizon_years)

    if sigma <= 0 or horizon_years == 0:
        portfolio_logger.debug("monte carlo: deterministic path (sigma=%s, T=%s)", sigma, horizon_years)
        terminal = np.full(num_paths, expected_value)
        return summarize_terminal_values(terminal, initial_value, expected_value, horizon_years, keep_paths)

    source = resolve_random_source(random_source, seed)
    z = _draw_normals(source, num_paths, workers)
    drift = (mu - 0.5 * sigma ** 2) * horizon_years
    diffusion = sigma * math.sqrt(horizon_years)
    terminal = initial_value * np.exp(drift + diffusion * z)
    return summarize_terminal_values(terminal, initial_value, expected_value, horizon_years, keep_paths)


@log_errors("medium")
@log_operation("goal_probability")
def goal_probability(
    initial_value: float,
    monthly_contribution: float,
    annual_return: float,
    volatility: float,
    goal_amount: float,
    months: int,
    *,
    num_paths: int = 15000,
    fat_tails: bool = True,
    df: float = 6.0,
    random_source: Optional[RandomSource] = None,
    seed: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Probability of reaching ``goal_amount`` after ``months`` of monthly steps.

    ``annual_return``/``volatility`` are decimals. Each month applies
    ``r = mu/12 + sigma/sqrt(12) * e`` then adds the contribution; ``e`` is
    standard normal, or Student-t scaled to unit variance when ``fat_tails``.
    Portfolio value is floored at zero.
    """
    initial_value = _require_finite("initial_value", initial_value, minimum=0.0, inclusive=True)
    monthly_contribution = _require_finite("monthly_contribution", monthly_contribution, minimum=0.0, inclusive=True)
    annual_return = _require_finite("annual_return", annual_return, minimum=-math.inf, inclusive=True)
    volatility = _require_finite("volatility", volatility, minimum=0.0, inclusive=True)
    goal_amount = _require_finite("goal_amount", goal_amount, minimum=0.0, inclusive=False)
    months = _require_positive_int("months", months)
    num_paths = _require_positive_int("num_paths", num_paths)
    if fat_tails and not (math.isfinite(df) and df > 2):
        raise InvalidInputError(f"df must be > 2 for unit-variance scaling, got {df!r}")

    source = resolve_random_source(random_source, seed)
    monthly_mean = annual_return / 12.0
    monthly_vol = volatility / math.sqrt(12.0)
    t_scale = math.sqrt((df - 2.0) / df) if fat_tails else 1.0

    values = np.full(num_paths, initial_value, dtype=float)
    for _ in range(months):
        if monthly_vol > 0:
            if fat_tails:
                shocks = np.asarray(source.standard_t(df, num_paths), dtype=float) * t_scale
            else:
                shocks = np.asarray(source.standard_normal(num_paths), dtype=float)
            step = monthly_mean + monthly_vol * shocks
        else:
            step = np.full(num_paths, monthly_mean)
        values = np.maximum(values * (1.0 + step) + monthly_contribution, 0.0)

    p10, p50, p90 = np.percentile(values, [10, 50, 90])
    return {
        "probability": float(np.mean(values >= goal_amount)),
        "median_final_value": float(p50),
        "percentile10": float(p10),
        "percentile90": float(p90),
        "total_contributed": float(initial_value + monthly_contribution * months),
        "num_paths": num_paths,
        "months": months,
        "fat_tails": fat_tails,
    }

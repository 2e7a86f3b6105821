#!/usr/bin/env python3
# coding: utf-8

"""
Monthly projections built on the portfolio mean/volatility model.

Called by:
- ``core.portfolio_analysis.analyze_portfolio``.

Contract notes:
- Annual inputs convert to monthly as ``mu / 12`` and ``sigma / sqrt(12)``.
- Frames are indexed by integer ``month`` (or a month-end DatetimeIndex for
  the backtest) and carry values in currency units, rates in decimals.
- Drawdown is ``(peak - value) / peak`` with the peak seeded at the initial
  value and non-decreasing thereafter.
- Drawdown decomposition values are negative decimals (losses).
"""

from __future__ import annotations

import math
import numbers
from typing import Any, Iterable, Mapping, Optional, Union

import numpy as np
import pandas as pd
from scipy.stats import t as student_t

from allocation_engine._logging import log_errors, log_operation, log_timing
from allocation_engine.asset_stats import AssetInput, ensure_assets
from allocation_engine.correlation import coerce_correlation
from allocation_engine.data_objects import EngineConfig, MacroScenario
from allocation_engine.errors import InvalidInputError
from allocation_engine.performance_metrics_engine import compute_performance_metrics
from allocation_engine.portfolio_risk import WeightInput, compute_portfolio_metrics, sanitize_weights
from allocation_engine.providers import RandomSource, resolve_random_source
from allocation_engine.results import (
    BacktestResult,
    ExtendedScenarioAnalysis,
    PortfolioMetrics,
    ScenarioProjection,
)


MetricsInput = Union[PortfolioMetrics, Mapping[str, float]]


def _mean_vol(metrics: MetricsInput) -> tuple[float, float]:
    if isinstance(metrics, PortfolioMetrics):
        mu, sigma = metrics.expected_return, metrics.volatility
    else:
        mu, sigma = metrics.get("expected_return", 0.0), metrics.get("volatility", 0.0)
    mu = float(mu) if mu is not None and math.isfinite(mu) else 0.0
    sigma = float(sigma) if sigma is not None and math.isfinite(sigma) and sigma > 0 else 0.0
    return mu, sigma


def _require_periods(name: str, value: Any) -> int:
    if (
        isinstance(value, bool)
        or not isinstance(value, numbers.Real)
        or not math.isfinite(value)
        or value < 1
        or value != int(value)
    ):
        raise InvalidInputError(f"{name} must be a positive integer, got {value!r}")
    return int(value)


def _require_capital(value: Any) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise InvalidInputError(f"initial_value must be numeric, got {value!r}") from None
    if not math.isfinite(value) or value <= 0:
        raise InvalidInputError(f"initial_value must be a positive finite number, got {value!r}")
    return value


def confidence_bands(
    metrics: MetricsInput,
    months: int = 60,
    initial_value: float = 100000.0,
) -> pd.DataFrame:
    """
    Expected compounding path with ±1 and ±2 standard-deviation bands.

    ``expected_t = initial * (1 + mu/12)^t`` and
    ``sd_t = expected_t * sigma_monthly * sqrt(t)``; lower bands are floored
    at zero. Row 0 is the starting point (zero width).
    """
    months = _require_periods("months", months)
    initial_value = _require_capital(initial_value)
    mu, sigma = _mean_vol(metrics)

    t = np.arange(months + 1)
    expected = initial_value * (1.0 + mu / 12.0) ** t
    sd = expected * (sigma / math.sqrt(12.0)) * np.sqrt(t)
    frame = pd.DataFrame(
        {
            "expected": expected,
            "lower_1sd": np.maximum(expected - sd, 0.0),
            "upper_1sd": expected + sd,
            "lower_2sd": np.maximum(expected - 2.0 * sd, 0.0),
            "upper_2sd": expected + 2.0 * sd,
        },
        index=pd.Index(t, name="month"),
    )
    return frame


def drawdown_from_values(values: pd.Series, initial_value: Optional[float] = None) -> pd.DataFrame:
    """
    ``value``/``peak``/``drawdown`` frame for an equity path.

    The peak is seeded at ``initial_value`` when given (so a loss in the first
    period shows up), otherwise at the first value. A zero peak yields zero
    drawdown.
    """
    values = values.astype(float)
    peak = values.cummax()
    if initial_value is not None:
        peak = peak.clip(lower=float(initial_value))
    drawdown = ((peak - values) / peak.where(peak > 0)).fillna(0.0).clip(lower=0.0)
    return pd.DataFrame({"value": values, "peak": peak, "drawdown": drawdown})


def max_drawdown(series: pd.DataFrame) -> float:
    """Largest drawdown in a frame from ``drawdown_series`` (0.0 when empty)."""
    if series.empty:
        return 0.0
    return float(series["drawdown"].max())


@log_errors("medium")
def drawdown_series(
    metrics: MetricsInput,
    months: int = 60,
    initial_value: float = 100000.0,
    *,
    method: str = "simulated",
    random_source: Optional[RandomSource] = None,
    seed: Optional[int] = None,
) -> pd.DataFrame:
    """
    Running drawdown of one representative monthly path.

    ``method="simulated"`` draws one GBM-style path (normal monthly returns);
    ``method="expected"`` uses the deterministic compounding path, whose
    drawdown is zero unless the expected return is negative.
    """
    months = _require_periods("months", months)
    initial_value = _require_capital(initial_value)
    mu, sigma = _mean_vol(metrics)
    monthly_mean = mu / 12.0
    monthly_vol = sigma / math.sqrt(12.0)

    if method == "expected" or monthly_vol == 0:
        returns = np.full(months, monthly_mean)
    elif method == "simulated":
        source = resolve_random_source(random_source, seed)
        returns = monthly_mean + monthly_vol * np.asarray(source.standard_normal(months), dtype=float)
    else:
        raise InvalidInputError(f"Unknown drawdown method {method!r}; expected 'simulated' or 'expected'")

    growth = np.clip(1.0 + returns, 0.0, None)
    values = initial_value * np.concatenate([[1.0], np.cumprod(growth)])
    frame = drawdown_from_values(pd.Series(values))
    frame.index = pd.Index(np.arange(months + 1), name="month")
    return frame


@log_errors("high")
@log_operation("historical_backtest")
@log_timing(5.0)
def historical_backtest(
    weights: WeightInput,
    assets: AssetInput,
    corr: Optional[np.ndarray] = None,
    lookback_years: int = 5,
    *,
    initial_value: float = 100000.0,
    config: Optional[EngineConfig] = None,
    random_source: Optional[RandomSource] = None,
    seed: Optional[int] = None,
    end_date: Optional[Union[str, pd.Timestamp]] = None,
) -> BacktestResult:
    """
    Replay a monthly return window from a one-factor market model.

    True price histories are not assumed, so the market path is drawn from
    ``config.market_return``/``market_volatility`` and the portfolio path as
    ``rf + beta_p * (r_m - rf) + alpha_p + e`` with idiosyncratic variance
    ``max(sigma_p^2 - beta_p^2 * sigma_m^2, 0)``. This keeps the portfolio's
    expected return, volatility and beta. The window is capped at
    ``config.backtest_max_years``.
    """
    cfg = config or EngineConfig()
    lookback = _require_periods("lookback_years", lookback_years)
    lookback = min(lookback, cfg.backtest_max_years)
    initial_value = _require_capital(initial_value)

    universe = ensure_assets(assets, cfg)
    corr = coerce_correlation(corr, universe, cfg)
    w = sanitize_weights(weights, universe)
    metrics = compute_portfolio_metrics(w, universe, corr, cfg)
    beta_p = float(w @ universe.betas)

    periods = lookback * 12
    rf_m = cfg.risk_free_rate / 12.0
    mkt_mean = cfg.market_return / 12.0
    mkt_vol = cfg.market_volatility / math.sqrt(12.0)
    alpha_m = (metrics.expected_return - (cfg.risk_free_rate + beta_p * (cfg.market_return - cfg.risk_free_rate))) / 12.0
    idio_var = max(metrics.volatility ** 2 - (beta_p * cfg.market_volatility) ** 2, 0.0)
    idio_vol = math.sqrt(idio_var / 12.0)

    source = resolve_random_source(random_source, seed)
    market_shock, idio_shock = source.spawn(2)
    r_m = mkt_mean + mkt_vol * np.asarray(market_shock.standard_normal(periods), dtype=float)
    r_p = rf_m + beta_p * (r_m - rf_m) + alpha_m + idio_vol * np.asarray(idio_shock.standard_normal(periods), dtype=float)
    r_p = np.clip(r_p, -1.0, None)
    r_m = np.clip(r_m, -1.0, None)

    end = pd.Timestamp(end_date) if end_date is not None else pd.Timestamp.today().normalize()
    index = pd.date_range(end=end + pd.offsets.MonthEnd(0), periods=periods, freq="ME")
    portfolio_returns = pd.Series(r_p, index=index, name="portfolio_return")
    market_returns = pd.Series(r_m, index=index, name="market_return")

    values = drawdown_from_values(initial_value * (1.0 + portfolio_returns).cumprod(), initial_value)
    values.insert(0, "portfolio_return", portfolio_returns)
    values.insert(1, "market_return", market_returns)

    performance = compute_performance_metrics(
        portfolio_returns,
        market_returns,
        cfg.risk_free_rate,
        benchmark_name="Market",
    )
    annualized_return = float(max((1.0 + portfolio_returns).prod(), 0.0) ** (1.0 / lookback) - 1.0)
    annualized_volatility = float(portfolio_returns.std() * math.sqrt(12.0))
    return BacktestResult(
        lookback_years=lookback,
        annualized_return=annualized_return,
        annualized_volatility=annualized_volatility,
        values=values,
        performance=performance,
    )


@log_errors("medium")
@log_operation("extended_scenario_analysis")
def extended_scenario_analysis(
    metrics: MetricsInput,
    initial_value: float,
    horizon_years: int,
    scenarios: Optional[Iterable[Union[MacroScenario, Mapping[str, Any]]]] = None,
    config: Optional[EngineConfig] = None,
) -> ExtendedScenarioAnalysis:
    """
    Year-by-year projections under named macro regimes.

    Scenario return = ``blend * portfolio_return + (1 - blend) * scenario_return``
    with ``blend = config.scenario_blend``; scenario volatility scales the
    portfolio volatility by the regime multiplier. The probability-weighted
    terminal value normalizes probabilities that do not sum to 1 (equal
    weighting when they are all zero).
    """
    cfg = config or EngineConfig()
    horizon = _require_periods("horizon_years", horizon_years)
    initial_value = _require_capital(initial_value)
    mu, sigma = _mean_vol(metrics)
    table = [
        s if isinstance(s, MacroScenario) else MacroScenario.from_mapping(s)
        for s in (cfg.macro_scenarios if scenarios is None else scenarios)
    ]
    if not table:
        raise InvalidInputError("at least one macro scenario is required")

    blend = cfg.scenario_blend
    projections = []
    for scenario in table:
        annual_return = blend * mu + (1.0 - blend) * scenario.equity_return_percent / 100.0
        growth = max(1.0 + annual_return, 0.0)
        trajectory = [
            {"year": year, "value": initial_value * growth ** year}
            for year in range(horizon + 1)
        ]
        final_value = trajectory[-1]["value"]
        projections.append(
            ScenarioProjection(
                name=scenario.name,
                description=scenario.description,
                probability=scenario.probability,
                annual_return=annual_return,
                volatility=sigma * scenario.volatility_multiplier,
                trajectory=trajectory,
                final_value=final_value,
                total_gain=final_value - initial_value,
            )
        )

    probabilities = np.array([p.probability for p in projections])
    finals = np.array([p.final_value for p in projections])
    if probabilities.sum() > 0:
        weighted = float(probabilities @ finals / probabilities.sum())
    else:
        weighted = float(finals.mean())

    return ExtendedScenarioAnalysis(
        scenarios=projections,
        probability_weighted_value=weighted,
        horizon_years=horizon,
        initial_value=initial_value,
    )


# ─── Drawdown decomposition ──────────────────────────────────────────────────
# Three separately labelled measures that are never merged into one number:
# observed history, a fat-tailed statistical tail and an illustrative extreme.


def historical_drawdown(
    returns: Union[pd.Series, Iterable[float], None],
    config: Optional[EngineConfig] = None,
) -> Optional[float]:
    """
    Worst peak-to-trough loss of a periodic return series (negative decimal).

    Returns ``None`` when fewer than ``drawdown_settings["min_history_periods"]``
    returns are available. The result is floored at ``drawdown_settings["floor"]``.
    """
    cfg = config or EngineConfig()
    settings = cfg.drawdown_settings
    if returns is None:
        return None
    series = returns if isinstance(returns, pd.Series) else pd.Series(list(returns))
    series = series.astype(float).dropna()
    if len(series) < int(settings["min_history_periods"]):
        return None
    wealth = (1.0 + series.clip(lower=-1.0)).cumprod()
    worst = -float(drawdown_from_values(wealth, initial_value=1.0)["drawdown"].max())
    return max(worst, settings["floor"])


def statistical_drawdown(
    metrics: MetricsInput,
    horizon_years: int,
    config: Optional[EngineConfig] = None,
) -> dict:
    """
    95th/99th percentile tail loss over ``horizon_years`` using Student's t.

    ``loss_q = -t_q(df) * sigma * sqrt(T) + mu * T`` with ``df`` from
    ``drawdown_settings``; each is clamped between the floor and its cap so a
    strong drift never reports a tail "gain".
    """
    cfg = config or EngineConfig()
    settings = cfg.drawdown_settings
    horizon = _require_periods("horizon_years", horizon_years)
    mu, sigma = _mean_vol(metrics)
    dof = settings["t_degrees_of_freedom"]

    def _tail(q: float, cap: float) -> float:
        raw = -float(student_t.ppf(q, dof)) * sigma * math.sqrt(horizon) + mu * horizon
        return float(np.clip(raw, settings["floor"], cap))

    return {
        "percentile95": _tail(0.95, settings["p95_cap"]),
        "percentile99": _tail(0.99, settings["p99_cap"]),
        "methodology": f"Student's t-distribution (df={dof:g}) with drift adjustment",
    }


def theoretical_extreme_drawdown(
    volatility: float,
    portfolio_beta: float,
    avg_correlation: float,
    config: Optional[EngineConfig] = None,
) -> dict:
    """
    Illustrative crisis loss: a 3-sigma move, beta amplification, a correlation
    spike and a liquidity premium. This is a scenario, not a forecast.
    """
    cfg = config or EngineConfig()
    settings = cfg.drawdown_settings
    sigma = float(volatility) if math.isfinite(volatility) else 0.0
    beta = float(portfolio_beta) if math.isfinite(portfolio_beta) else 1.0
    corr = float(avg_correlation) if math.isfinite(avg_correlation) else 0.5

    correlation_breakdown = 0.10 if corr > 0.6 else 0.05
    raw = -3.0 * sigma - abs(beta - 1.0) * 0.15 - correlation_breakdown - settings["liquidity_premium"]
    return {
        "value": float(np.clip(raw, settings["floor"], settings["extreme_cap"])),
        "label": "Theoretical Extreme (Illustrative)",
        "components": {
            "three_sigma": -3.0 * sigma,
            "beta_amplification": -abs(beta - 1.0) * 0.15,
            "correlation_breakdown": -correlation_breakdown,
            "liquidity_premium": -settings["liquidity_premium"],
        },
    }


@log_errors("medium")
def decompose_drawdowns(
    metrics: MetricsInput,
    horizon_years: int,
    portfolio_beta: float,
    avg_correlation: float,
    historical_returns: Union[pd.Series, Iterable[float], None] = None,
    config: Optional[EngineConfig] = None,
) -> dict:
    """Historical, statistical (95/99) and theoretical drawdowns, kept apart."""
    cfg = config or EngineConfig()
    _, sigma = _mean_vol(metrics)
    historical = historical_drawdown(historical_returns, cfg)
    statistical = statistical_drawdown(metrics, horizon_years, cfg)
    return {
        "historical": {
            "value": historical,
            "label": "Historical Worst-Case",
            "available": historical is not None,
        },
        "statistical": {
            "percentile95": {"value": statistical["percentile95"], "label": "Statistical Tail (95th %ile)"},
            "percentile99": {"value": statistical["percentile99"], "label": "Statistical Tail (99th %ile)"},
            "methodology": statistical["methodology"],
        },
        "theoretical": theoretical_extreme_drawdown(sigma, portfolio_beta, avg_correlation, cfg),
    }

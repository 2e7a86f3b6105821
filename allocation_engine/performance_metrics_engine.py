"""Return-series metrics for the model-based backtest.

Called by:
- ``time_series.historical_backtest``.

Contract notes:
- Inputs must be aligned monthly return series with identical DatetimeIndex.
- All returned rates are decimals rounded to 4 places (ratios to 3).
- Drawdown is measured from a peak seeded at the starting value of 1.0.
- CAPM regression returns ``None`` fields with warning metadata when the
  window is shorter than ``min_capm_observations``.
"""

import numpy as np
import pandas as pd
import statsmodels.api as sm

from allocation_engine.errors import InvalidInputError


_EPS = 1e-12


def _round(value, places=4):
    return round(float(value), places) if value is not None else None


def _validate_series(portfolio_returns, benchmark_returns):
    if len(portfolio_returns) != len(benchmark_returns):
        raise InvalidInputError("portfolio_returns and benchmark_returns must have the same length")
    if len(portfolio_returns) < 2:
        raise InvalidInputError("at least two periods are required")
    if not isinstance(portfolio_returns.index, pd.DatetimeIndex) or not isinstance(
        benchmark_returns.index, pd.DatetimeIndex
    ):
        raise InvalidInputError("portfolio_returns and benchmark_returns must use DatetimeIndex")
    if not portfolio_returns.index.equals(benchmark_returns.index):
        raise InvalidInputError("portfolio_returns and benchmark_returns must have the same index")
    if portfolio_returns.isna().any() or benchmark_returns.isna().any():
        raise InvalidInputError("portfolio_returns and benchmark_returns must not contain NaN values")


def _cagr(returns, years):
    growth = float((1 + returns).prod())
    # A wipe-out compounds to -100%.
    return growth - 1, max(growth, 0.0) ** (1 / years) - 1


def _max_drawdown(returns):
    wealth = (1 + returns).cumprod()
    peak = wealth.cummax().clip(lower=1.0)
    return float(((wealth - peak) / peak).min())


def _capm(portfolio_excess, benchmark_excess, periods_per_year):
    """OLS of portfolio on benchmark excess returns -> (alpha_annual, beta, r_squared)."""
    if benchmark_excess.std(ddof=0) <= _EPS or portfolio_excess.std(ddof=0) <= _EPS:
        # Flat series make OLS singular.
        return float(portfolio_excess.mean() * periods_per_year), 0.0, 0.0
    X = sm.add_constant(benchmark_excess.to_numpy(dtype=float), has_constant="add")
    model = sm.OLS(portfolio_excess.to_numpy(dtype=float), X).fit()
    return float(model.params[0]) * periods_per_year, float(model.params[1]), float(model.rsquared)


def compute_performance_metrics(
    portfolio_returns,
    benchmark_returns,
    risk_free_rate,
    benchmark_name="Market",
    min_capm_observations=12,
    periods_per_year=12,
):
    """Return, risk, risk-adjusted and CAPM summary for a portfolio vs a benchmark.

    Debug pointer:
    - If alpha/beta fields are ``None``, inspect the ``warnings`` list.
    """
    _validate_series(portfolio_returns, benchmark_returns)

    total_periods = len(portfolio_returns)
    years = total_periods / periods_per_year
    rf_period = risk_free_rate / periods_per_year
    annualizer = np.sqrt(periods_per_year)

    total_return, annual_return = _cagr(portfolio_returns, years)
    _, benchmark_annual = _cagr(benchmark_returns, years)
    volatility = portfolio_returns.std() * annualizer

    shortfall = portfolio_returns[portfolio_returns < rf_period] - rf_period
    downside_deviation = float(np.sqrt((shortfall ** 2).mean()) * annualizer) if len(shortfall) else 0.0
    maximum_drawdown = _max_drawdown(portfolio_returns)

    excess_annual = annual_return - risk_free_rate
    sharpe_ratio = excess_annual / volatility if volatility > 0 else 0.0
    sortino_ratio = excess_annual / downside_deviation if downside_deviation > 0 else 0.0
    calmar_ratio = abs(annual_return / maximum_drawdown) if maximum_drawdown < -0.001 else 0.0

    warnings = []
    if total_periods >= min_capm_observations:
        alpha_annual, beta, r_squared = _capm(
            portfolio_returns - rf_period,
            benchmark_returns - rf_period,
            periods_per_year,
        )
    else:
        alpha_annual = beta = r_squared = None
        warnings.append(
            "Insufficient data for CAPM regression "
            f"({total_periods} periods < {min_capm_observations} required); "
            "alpha/beta/r_squared not computed"
        )

    metrics = {
        "analysis_period": {
            "start_date": portfolio_returns.index[0].date().isoformat(),
            "end_date": portfolio_returns.index[-1].date().isoformat(),
            "total_periods": total_periods,
            "years": round(years, 2),
        },
        "returns": {
            "total_return": _round(total_return),
            "annualized_return": _round(annual_return),
            "best_period": _round(portfolio_returns.max()),
            "worst_period": _round(portfolio_returns.min()),
        },
        "risk_metrics": {
            "volatility": _round(volatility),
            "maximum_drawdown": _round(maximum_drawdown),
            "downside_deviation": _round(downside_deviation),
        },
        "risk_adjusted_returns": {
            "sharpe_ratio": _round(sharpe_ratio, 3),
            "sortino_ratio": _round(sortino_ratio, 3),
            "calmar_ratio": _round(calmar_ratio, 3),
        },
        "benchmark_analysis": {
            "benchmark": benchmark_name,
            "benchmark_return": _round(benchmark_annual),
            "excess_return": _round(annual_return - benchmark_annual),
            "alpha_annual": _round(alpha_annual),
            "beta": _round(beta, 3),
            "r_squared": _round(r_squared, 3),
        },
        "risk_free_rate": _round(risk_free_rate),
    }
    if warnings:
        metrics["warnings"] = warnings
    return metrics

"""Package configuration surface for allocation_engine.

Defaults are read from the process environment (a local ``.env`` is loaded
first, without overriding variables that are already set). ``EngineConfig``
takes its field defaults from the sections below, so ``configure(...)`` before
building a config changes the baseline for every subsequent run.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv


load_dotenv(Path(__file__).resolve().parent.parent / ".env", override=False)


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


_DEFAULTS: dict[str, Any] = {
    "MARKET_ASSUMPTIONS": {
        "risk_free_rate": _env_float("ALLOCATION_ENGINE_RISK_FREE_RATE", 0.02),
        "market_return": _env_float("ALLOCATION_ENGINE_MARKET_RETURN", 0.10),
        "market_volatility": _env_float("ALLOCATION_ENGINE_MARKET_VOLATILITY", 0.18),
    },
    "ASSET_DEFAULTS": {
        "default_return": 0.0,
        "default_volatility": _env_float("ALLOCATION_ENGINE_DEFAULT_VOLATILITY", 0.15),
        "default_beta": 1.0,
        "min_price_observations": 3,
        "periods_per_year": 12,
    },
    # Typical annual volatility by sector, used when a record carries none.
    "SECTOR_VOLATILITY_FALLBACKS": {
        "Technology": 0.28,
        "Communication Services": 0.24,
        "Consumer Discretionary": 0.24,
        "Energy": 0.30,
        "Financials": 0.22,
        "Healthcare": 0.20,
        "Industrials": 0.20,
        "Materials": 0.22,
        "Real Estate": 0.21,
        "Consumer Staples": 0.15,
        "Utilities": 0.15,
    },
    "CORRELATION_MODEL": {
        "same_sector": 0.75,
        "cross_sector": 0.35,
        "beta_penalty": 0.15,
        "floor": -0.9,
        "ceiling": 0.95,
        "stress_factor": 0.5,
    },
    "OPTIMIZER_SETTINGS": {
        "risk_parity_tolerance": 0.01,
        "risk_parity_max_iterations": _env_int("ALLOCATION_ENGINE_RISK_PARITY_MAX_ITER", 500),
        "covariance_ridge": 1e-10,
        "max_return_weight_cap": None,
        "max_workers": _env_int("ALLOCATION_ENGINE_OPTIMIZER_WORKERS", 4),
    },
    "MONTE_CARLO_SETTINGS": {
        "num_paths": _env_int("ALLOCATION_ENGINE_MC_PATHS", 10000),
        "workers": _env_int("ALLOCATION_ENGINE_MC_WORKERS", 1),
    },
    "CONCENTRATION_THRESHOLDS": {
        "hhi_high": 0.25,
        "hhi_moderate": 0.15,
        "single_position": 0.40,
        "sector": 0.50,
    },
    "STRESS_SCENARIOS": [
        {
            "name": "Market Crash",
            "market_decline_percent": -40.0,
            "description": "Broad market decline similar to 2008 financial crisis",
            "duration_months": 18,
            "recovery_months": 36,
        },
        {
            "name": "Sector Collapse",
            "market_decline_percent": -60.0,
            "description": "Severe drawdown concentrated in a single sector, like the 2000 tech bust",
            "duration_months": 30,
            "recovery_months": 84,
        },
        {
            "name": "Black Swan",
            "market_decline_percent": -70.0,
            "description": "Extreme tail event with near-total loss of risk appetite",
            "duration_months": 6,
            "recovery_months": 60,
        },
    ],
    "MACRO_SCENARIOS": [
        {
            "name": "Bull Market",
            "description": "Strong economic growth with low volatility",
            "equity_return_percent": 18.0,
            "volatility_multiplier": 0.7,
            "probability": 0.20,
        },
        {
            "name": "Base Case",
            "description": "Normal market conditions",
            "equity_return_percent": 8.0,
            "volatility_multiplier": 1.0,
            "probability": 0.50,
        },
        {
            "name": "Bear Market",
            "description": "Recession with elevated volatility",
            "equity_return_percent": -8.0,
            "volatility_multiplier": 1.6,
            "probability": 0.18,
        },
        {
            "name": "Stagflation",
            "description": "High inflation with stagnant growth",
            "equity_return_percent": 0.0,
            "volatility_multiplier": 2.2,
            "probability": 0.12,
        },
    ],
    "TIME_SERIES_SETTINGS": {
        "backtest_max_years": 10,
        "scenario_blend": 0.5,
        "asset_loss_floor": -1.0,
    },
    # VIX-style regimes: upper bound of each band (above "high" is "extreme")
    # and the factor applied to off-diagonal correlations in that regime.
    "MARKET_REGIME_SETTINGS": {
        "vix_bounds": {"low": 15.0, "normal": 25.0, "elevated": 35.0, "high": 40.0},
        "correlation_factors": {"low": 0.7, "normal": 1.0, "elevated": 1.2, "high": 1.5, "extreme": 2.0},
        "correlation_floor": -0.3,
        "correlation_ceiling": 0.95,
        "implied_volatility_weight": 0.4,
    },
    "DRAWDOWN_SETTINGS": {
        "t_degrees_of_freedom": 5,
        "min_history_periods": 12,
        "floor": -0.85,
        "p95_cap": -0.08,
        "p99_cap": -0.10,
        "extreme_cap": -0.15,
        "liquidity_premium": 0.10,
    },
    "POSITION_LIMITS": {
        "max_position": 0.40,
        "min_position": 0.01,
        "max_positions": 50,
        "hhi_limit": 0.25,
        "rounding_drift": 0.01,
    },
}


MARKET_ASSUMPTIONS = _DEFAULTS["MARKET_ASSUMPTIONS"]
ASSET_DEFAULTS = _DEFAULTS["ASSET_DEFAULTS"]
SECTOR_VOLATILITY_FALLBACKS = _DEFAULTS["SECTOR_VOLATILITY_FALLBACKS"]
CORRELATION_MODEL = _DEFAULTS["CORRELATION_MODEL"]
OPTIMIZER_SETTINGS = _DEFAULTS["OPTIMIZER_SETTINGS"]
MONTE_CARLO_SETTINGS = _DEFAULTS["MONTE_CARLO_SETTINGS"]
CONCENTRATION_THRESHOLDS = _DEFAULTS["CONCENTRATION_THRESHOLDS"]
STRESS_SCENARIOS = _DEFAULTS["STRESS_SCENARIOS"]
MACRO_SCENARIOS = _DEFAULTS["MACRO_SCENARIOS"]
TIME_SERIES_SETTINGS = _DEFAULTS["TIME_SERIES_SETTINGS"]
MARKET_REGIME_SETTINGS = _DEFAULTS["MARKET_REGIME_SETTINGS"]
DRAWDOWN_SETTINGS = _DEFAULTS["DRAWDOWN_SETTINGS"]
POSITION_LIMITS = _DEFAULTS["POSITION_LIMITS"]


def configure(**overrides: Any) -> None:
    """Programmatically override package configuration values."""
    globals_dict = globals()
    for key, value in overrides.items():
        if key not in globals_dict or key.startswith("_") or key.islower():
            raise KeyError(f"Unknown config key: {key}")
        globals_dict[key] = value

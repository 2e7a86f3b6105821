"""
Core Constants Module

Centralized names and fixed mathematical constants. Tunable business values
(correlation base rates, thresholds, scenario tables) live in ``config`` and
``EngineConfig`` instead.
"""

# Allocation Strategies
# =====================
# Canonical strategy keys, in the order results are reported.

STRATEGY_OPTIMAL = "optimal"
STRATEGY_MIN_VARIANCE = "min_variance"
STRATEGY_RISK_PARITY = "risk_parity"
STRATEGY_MAX_RETURN = "max_return"

STRATEGIES = (
    STRATEGY_OPTIMAL,
    STRATEGY_MIN_VARIANCE,
    STRATEGY_RISK_PARITY,
    STRATEGY_MAX_RETURN,
)

STRATEGY_DISPLAY_NAMES = {
    STRATEGY_OPTIMAL: "Maximum Sharpe",
    STRATEGY_MIN_VARIANCE: "Minimum Variance",
    STRATEGY_RISK_PARITY: "Risk Parity",
    STRATEGY_MAX_RETURN: "Maximum Return",
}

# Sector Labels
# =============

UNKNOWN_SECTOR = "Unknown"

# Parametric Tail Risk
# ====================
# Confidence level for the reported one-sided VaR and CVaR.

VAR_CONFIDENCE = 0.95

# Beta Buckets
# ============

DEFENSIVE_BETA_MAX = 0.8
AGGRESSIVE_BETA_MIN = 1.2

# Numerical Tolerances
# ====================

WEIGHT_SUM_TOLERANCE = 1e-6
VARIANCE_EPSILON = 1e-14

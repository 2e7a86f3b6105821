"""Lightweight result objects returned by the computation modules."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from allocation_engine._vendor import make_json_safe


@dataclass
class _BaseResult:
    def to_dict(self) -> Dict[str, Any]:
        return make_json_safe(asdict(self))


@dataclass
class AllocationResult(_BaseResult):
    """Weight vector for one strategy, aligned with ``symbols``."""

    strategy: str
    weights: np.ndarray
    symbols: List[str]
    converged: bool = True
    fallback_used: bool = False
    iterations: int = 0

    def __post_init__(self):
        arr = np.asarray(self.weights, dtype=float)
        arr.setflags(write=False)
        self.weights = arr

    def as_dict(self) -> Dict[str, float]:
        """``{symbol: weight}`` in input order."""
        return {s: float(w) for s, w in zip(self.symbols, self.weights)}


@dataclass
class PortfolioMetrics(_BaseResult):
    expected_return: float
    volatility: float
    sharpe_ratio: float


@dataclass
class AdvancedMetrics(_BaseResult):
    portfolio_beta: float
    portfolio_alpha: float
    treynor_ratio: Optional[float]
    var_95: float
    cvar_95: float
    diversification_ratio: float
    effective_number_of_assets: float


@dataclass
class SimulationResult(_BaseResult):
    """Terminal-value distribution of a Monte Carlo run (currency units)."""

    mean: float
    median: float
    percentile5: float
    percentile25: float
    percentile75: float
    percentile95: float
    min: float
    max: float
    std: float
    probability_of_loss: float
    expected_value: float
    initial_value: float
    horizon_years: float
    num_paths: int
    paths: Optional[np.ndarray] = field(default=None, repr=False)

    def to_dict(self, include_paths: bool = False) -> Dict[str, Any]:
        payload = asdict(self)
        if not include_paths:
            payload.pop("paths", None)
        return make_json_safe(payload)


@dataclass
class ScenarioResult(_BaseResult):
    """Stress impact. ``portfolio_return`` and impacts are decimal returns (``-0.4`` = -40%)."""

    name: str
    market_decline_percent: float
    portfolio_return: float
    asset_impacts: Dict[str, float]
    contributions: Dict[str, float]
    description: str = ""
    recovery_months: Optional[int] = None

    def dollar_impact(self, portfolio_value: float) -> float:
        return float(portfolio_value) * self.portfolio_return


@dataclass
class DecompositionResult(_BaseResult):
    """Per-symbol contributions that reconcile to ``portfolio_value``."""

    kind: str
    portfolio_value: float
    contributions: Dict[str, float]
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BacktestResult(_BaseResult):
    lookback_years: int
    annualized_return: float
    annualized_volatility: float
    values: pd.DataFrame = field(repr=False)
    performance: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return make_json_safe(
            {
                "lookback_years": self.lookback_years,
                "annualized_return": self.annualized_return,
                "annualized_volatility": self.annualized_volatility,
                "values": self.values.rename_axis("date").reset_index(),
                "performance": self.performance,
            }
        )


@dataclass
class ScenarioProjection(_BaseResult):
    name: str
    description: str
    probability: float
    annual_return: float
    volatility: float
    trajectory: List[Dict[str, float]]
    final_value: float
    total_gain: float


@dataclass
class ExtendedScenarioAnalysis(_BaseResult):
    scenarios: List[ScenarioProjection]
    probability_weighted_value: float
    horizon_years: int
    initial_value: float

    def to_frame(self) -> pd.DataFrame:
        """Year-by-year values, one column per scenario."""
        columns = {
            s.name: pd.Series({row["year"]: row["value"] for row in s.trajectory})
            for s in self.scenarios
        }
        frame = pd.DataFrame(columns)
        frame.index.name = "year"
        return frame

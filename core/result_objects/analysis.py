"""Portfolio analysis result objects."""

from typing import Any, Dict, List, Optional
from datetime import datetime, UTC

import pandas as pd

from allocation_engine.constants import STRATEGY_DISPLAY_NAMES
from allocation_engine.data_objects import DataQualityReport, EngineConfig
from allocation_engine.rebalancing import transaction_costs
from allocation_engine.results import (
    AdvancedMetrics,
    AllocationResult,
    BacktestResult,
    DecompositionResult,
    ExtendedScenarioAnalysis,
    PortfolioMetrics,
    ScenarioResult,
    SimulationResult,
)
from ._helpers import _convert_to_json_serializable, _money, _pct


class PortfolioAnalysisResult:
    """
    Complete allocation and risk analysis for one asset universe.

    Holds all four strategy allocations with their metrics, plus the deep
    analysis (simulation, stress, decomposition, projections) for the
    selected strategy.

    Architecture Role:
        allocation_engine modules -> analyze_portfolio() -> PortfolioAnalysisResult -> API/CLI

    Example:
        ```python
        result = analyze_portfolio(assets, seed=7)
        result.selected_weights          # {"AAPL": 0.42, "DUK": 0.58}
        result.get_summary()["sharpe_ratio"]
        result.get_weight_changes({"AAPL": 0.5, "DUK": 0.5})
        api_data = result.to_api_response()
        print(result.to_cli_report())
        ```
    """

    def __init__(
        self,
        strategy: str,
        symbols: List[str],
        allocations: Dict[str, AllocationResult],
        strategy_metrics: Dict[str, PortfolioMetrics],
        advanced_metrics: AdvancedMetrics,
        simulation: SimulationResult,
        stress_results: List[ScenarioResult],
        decomposition: Dict[str, DecompositionResult],
        confidence_bands: pd.DataFrame,
        drawdowns: pd.DataFrame,
        backtest: BacktestResult,
        scenario_analysis: ExtendedScenarioAnalysis,
        data_quality: DataQualityReport,
        supplementary: Optional[Dict[str, Any]] = None,
    ):
        self.strategy = strategy
        self.symbols = symbols
        self.allocations = allocations
        self.strategy_metrics = strategy_metrics
        self.advanced_metrics = advanced_metrics
        self.simulation = simulation
        self.stress_results = stress_results
        self.decomposition = decomposition
        self.confidence_bands = confidence_bands
        self.drawdowns = drawdowns
        self.backtest = backtest
        self.scenario_analysis = scenario_analysis
        self.data_quality = data_quality
        self.supplementary = supplementary or {}

        # Set by builder methods
        self.analysis_date: Optional[str] = None
        self.analysis_metadata: Dict[str, Any] = {}

    @classmethod
    def from_core_analysis(
        cls,
        *,
        strategy: str,
        symbols: List[str],
        allocations: Dict[str, AllocationResult],
        strategy_metrics: Dict[str, PortfolioMetrics],
        advanced_metrics: AdvancedMetrics,
        simulation: SimulationResult,
        stress_results: List[ScenarioResult],
        decomposition: Dict[str, DecompositionResult],
        confidence_bands: pd.DataFrame,
        drawdowns: pd.DataFrame,
        backtest: BacktestResult,
        scenario_analysis: ExtendedScenarioAnalysis,
        data_quality: DataQualityReport,
        analysis_metadata: Dict[str, Any],
        supplementary: Optional[Dict[str, Any]] = None,
    ) -> "PortfolioAnalysisResult":
        """
        Create PortfolioAnalysisResult from ``analyze_portfolio`` outputs.

        ``analysis_metadata`` carries run context (analysis_date, initial_value,
        horizon_years, seed, config snapshot).
        """
        result = cls(
            strategy=strategy,
            symbols=symbols,
            allocations=allocations,
            strategy_metrics=strategy_metrics,
            advanced_metrics=advanced_metrics,
            simulation=simulation,
            stress_results=stress_results,
            decomposition=decomposition,
            confidence_bands=confidence_bands,
            drawdowns=drawdowns,
            backtest=backtest,
            scenario_analysis=scenario_analysis,
            data_quality=data_quality,
            supplementary=supplementary,
        )
        result.analysis_metadata = dict(analysis_metadata)
        result.analysis_date = analysis_metadata.get("analysis_date") or datetime.now(UTC).isoformat()
        return result

    @property
    def selected_allocation(self) -> AllocationResult:
        return self.allocations[self.strategy]

    @property
    def selected_weights(self) -> Dict[str, float]:
        return self.selected_allocation.as_dict()

    @property
    def selected_metrics(self) -> PortfolioMetrics:
        return self.strategy_metrics[self.strategy]

    def get_strategy_table(self) -> pd.DataFrame:
        """One row per strategy with return, volatility, Sharpe and convergence."""
        rows = []
        for name, allocation in self.allocations.items():
            metrics = self.strategy_metrics[name]
            rows.append(
                {
                    "strategy": name,
                    "expected_return": metrics.expected_return,
                    "volatility": metrics.volatility,
                    "sharpe_ratio": metrics.sharpe_ratio,
                    "converged": allocation.converged,
                    "fallback_used": allocation.fallback_used,
                }
            )
        return pd.DataFrame(rows).set_index("strategy")

    def get_weight_changes(self, original_weights: Dict[str, float], limit: int = 5) -> List[Dict[str, Any]]:
        """Largest moves from ``original_weights`` to the selected allocation."""
        trades = transaction_costs(self.selected_weights, original_weights)["trades"]
        if trades.empty:
            return []
        trades = trades.reindex(trades["change"].abs().sort_values(ascending=False).index)
        return [
            {
                "symbol": row.symbol,
                "original_weight": round(row.current_weight, 4),
                "new_weight": round(row.target_weight, 4),
                "change": round(row.change, 4),
                "change_bps": round(row.change * 10000),
            }
            for row in trades.head(limit).itertuples(index=False)
        ]

    def get_summary(self) -> Dict[str, Any]:
        metrics = self.selected_metrics
        worst = min(self.stress_results, key=lambda s: s.portfolio_return) if self.stress_results else None
        return {
            "strategy": self.strategy,
            "expected_return": metrics.expected_return,
            "volatility": metrics.volatility,
            "sharpe_ratio": metrics.sharpe_ratio,
            "portfolio_beta": self.advanced_metrics.portfolio_beta,
            "portfolio_alpha": self.advanced_metrics.portfolio_alpha,
            "monte_carlo_mean": self.simulation.mean,
            "monte_carlo_p5": self.simulation.percentile5,
            "monte_carlo_p95": self.simulation.percentile95,
            "worst_stress_scenario": worst.name if worst else None,
            "worst_stress_return": worst.portfolio_return if worst else None,
            "herfindahl": self.decomposition["concentration"].portfolio_value,
            "data_quality_issues": self.data_quality.has_issues,
        }

    def get_agent_snapshot(self) -> Dict[str, Any]:
        """Compact analysis metrics for flag generation and agent consumption."""
        concentration = self.decomposition["concentration"]
        corr_stress = self.decomposition["correlation_stress"]
        allocation = self.selected_allocation
        return {
            "strategy": self.strategy,
            "metrics": self.selected_metrics.to_dict(),
            "advanced_metrics": self.advanced_metrics.to_dict(),
            "allocation": {
                "converged": allocation.converged,
                "fallback_used": allocation.fallback_used,
                "positions": int((allocation.weights > 1e-4).sum()),
                "total": len(self.symbols),
            },
            "concentration": {
                "hhi": concentration.portfolio_value,
                "category": concentration.details["category"],
                "largest_position": concentration.details["largest_position"],
                "largest_weight": concentration.details["largest_weight"],
                "largest_sector": concentration.details["largest_sector"],
                "largest_sector_weight": concentration.details["largest_sector_weight"],
                "flags": concentration.details["flags"],
            },
            "stress": {s.name: s.portfolio_return for s in self.stress_results},
            "correlation_stress": {
                "base_volatility": corr_stress.details["base_volatility"],
                "stressed_volatility": corr_stress.details["stressed_volatility"],
            },
            "simulation": {
                "initial_value": self.simulation.initial_value,
                "probability_of_loss": self.simulation.probability_of_loss,
                "percentile5": self.simulation.percentile5,
            },
            "data_quality": self.data_quality.to_dict(),
        }

    def to_api_response(self) -> Dict[str, Any]:
        """Schema-stable JSON payload for API consumers."""
        return _convert_to_json_serializable(
            {
                "analysis_date": self.analysis_date,
                "strategy": self.strategy,
                "symbols": self.symbols,
                "allocations": {k: v.to_dict() for k, v in self.allocations.items()},
                "strategy_metrics": {k: v.to_dict() for k, v in self.strategy_metrics.items()},
                "advanced_metrics": self.advanced_metrics.to_dict(),
                "monte_carlo": self.simulation.to_dict(),
                "stress_tests": [s.to_dict() for s in self.stress_results],
                "decomposition": {k: v.to_dict() for k, v in self.decomposition.items()},
                "confidence_bands": self.confidence_bands,
                "drawdown_series": self.drawdowns,
                "backtest": self.backtest.to_dict(),
                "scenario_analysis": self.scenario_analysis.to_dict(),
                "data_quality": self.data_quality.to_dict(),
                "supplementary": self.supplementary,
                "analysis_metadata": self.analysis_metadata,
            }
        )

    def to_cli_report(self) -> str:
        sections = [
            self._format_strategy_table(),
            self._format_weights(),
            self._format_simulation(),
            self._format_stress(),
            self._format_decomposition(),
        ]
        if self.data_quality.has_issues:
            sections.append(self._format_data_quality())
        return "\n".join(sections)

    def _format_strategy_table(self) -> str:
        lines = ["\n=== Allocation Strategies ===\n"]
        table = self.get_strategy_table()
        lines.append(
            table.to_string(
                formatters={
                    "expected_return": _pct,
                    "volatility": _pct,
                    "sharpe_ratio": "{:.2f}".format,
                }
            )
        )
        return "\n".join(lines)

    def _format_weights(self) -> str:
        name = STRATEGY_DISPLAY_NAMES.get(self.strategy, self.strategy)
        lines = [f"\n=== {name} Weights ===\n"]
        for symbol, weight in sorted(self.selected_weights.items(), key=lambda kv: -kv[1]):
            if weight > 1e-4:
                lines.append(f"{symbol:<10} : {weight:.2%}")
        return "\n".join(lines)

    def _format_simulation(self) -> str:
        sim = self.simulation
        return "\n".join(
            [
                f"\n=== Monte Carlo ({sim.num_paths:,} paths, {sim.horizon_years:g}y) ===\n",
                f"Initial value      : {_money(sim.initial_value)}",
                f"Mean terminal      : {_money(sim.mean)}",
                f"5th / 95th pct     : {_money(sim.percentile5)} / {_money(sim.percentile95)}",
                f"Probability of loss: {_pct(sim.probability_of_loss, 1)}",
            ]
        )

    def _format_stress(self) -> str:
        lines = ["\n=== Stress Tests ===\n"]
        for result in self.stress_results:
            lines.append(
                f"{result.name:<16} market {result.market_decline_percent:+.0f}% -> portfolio {_pct(result.portfolio_return, 1)}"
            )
        return "\n".join(lines)

    def _format_decomposition(self) -> str:
        concentration = self.decomposition["concentration"]
        beta = self.decomposition["beta"]
        alpha = self.decomposition["alpha"]
        corr_stress = self.decomposition["correlation_stress"]
        return "\n".join(
            [
                "\n=== Risk Decomposition ===\n",
                f"HHI                : {concentration.portfolio_value:.3f} ({concentration.details['category']})",
                f"Portfolio beta     : {beta.portfolio_value:.2f}",
                f"Portfolio alpha    : {_pct(alpha.portfolio_value)}",
                f"Stressed volatility: {_pct(corr_stress.details['base_volatility'])} -> {_pct(corr_stress.portfolio_value)}",
            ]
        )

    def _format_data_quality(self) -> str:
        lines = ["\n=== Data Quality ===\n"]
        for flag in self.data_quality.flags():
            lines.append(f"[{flag['severity']}] {flag['message']}")
        return "\n".join(lines)


def config_snapshot(config: EngineConfig) -> Dict[str, Any]:
    """Subset of the run configuration recorded in ``analysis_metadata``."""
    return {
        "risk_free_rate": config.risk_free_rate,
        "market_return": config.market_return,
        "monte_carlo_paths": config.monte_carlo_paths,
        "correlation_same_sector": config.correlation_same_sector,
        "correlation_cross_sector": config.correlation_cross_sector,
        "concentration_thresholds": dict(config.concentration_thresholds),
        "max_return_weight_cap": config.max_return_weight_cap,
    }

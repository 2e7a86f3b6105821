"""Portfolio analysis interpretive flags for agent-oriented responses."""

from __future__ import annotations


def generate_analysis_flags(snapshot: dict) -> list[dict]:
    """
    Generate actionable flags from an analysis snapshot.

    Input: dict from PortfolioAnalysisResult.get_agent_snapshot()
    """
    if not snapshot:
        return []

    flags: list[dict] = []
    metrics = snapshot.get("metrics", {})
    advanced = snapshot.get("advanced_metrics", {})
    allocation = snapshot.get("allocation", {})
    concentration = snapshot.get("concentration", {})
    stress = snapshot.get("stress", {})
    corr_stress = snapshot.get("correlation_stress", {})
    simulation = snapshot.get("simulation", {})
    data_quality = snapshot.get("data_quality", {})

    # --- Optimizer fallback flags ---
    if allocation.get("fallback_used"):
        flags.append(
            {
                "type": "optimizer_fallback",
                "severity": "warning",
                "message": f"{snapshot.get('strategy')} optimizer fell back to equal weighting",
                "converged": allocation.get("converged"),
            }
        )

    # --- Concentration flags (thresholds already applied upstream) ---
    flags.extend(concentration.get("flags", []))

    # --- Risk/return flags ---
    sharpe = metrics.get("sharpe_ratio", 0) or 0
    if sharpe < 0:
        flags.append(
            {
                "type": "negative_sharpe",
                "severity": "warning",
                "message": f"Expected return is below the risk-free rate (Sharpe {sharpe:.2f})",
                "sharpe_ratio": sharpe,
            }
        )
    elif sharpe >= 1.0:
        flags.append(
            {
                "type": "strong_risk_adjusted_return",
                "severity": "success",
                "message": f"Sharpe ratio of {sharpe:.2f} indicates strong risk-adjusted return",
                "sharpe_ratio": sharpe,
            }
        )

    beta = advanced.get("portfolio_beta")
    if beta is not None and beta > 1.3:
        flags.append(
            {
                "type": "high_beta",
                "severity": "warning",
                "message": f"Portfolio beta of {beta:.2f} amplifies market moves",
                "portfolio_beta": beta,
            }
        )
    elif beta is not None and beta < 0.7:
        flags.append(
            {
                "type": "defensive_beta",
                "severity": "info",
                "message": f"Portfolio beta of {beta:.2f} is defensive relative to the market",
                "portfolio_beta": beta,
            }
        )

    # --- Stress flags ---
    if stress:
        worst_name = min(stress, key=stress.get)
        worst = stress[worst_name]
        if worst <= -0.5:
            flags.append(
                {
                    "type": "severe_stress_loss",
                    "severity": "warning",
                    "message": f"{worst_name} scenario implies a {abs(worst):.0%} portfolio loss",
                    "scenario": worst_name,
                    "portfolio_return": worst,
                }
            )

    base_vol = corr_stress.get("base_volatility") or 0
    stressed_vol = corr_stress.get("stressed_volatility") or 0
    if base_vol > 0 and stressed_vol / base_vol > 1.25:
        flags.append(
            {
                "type": "correlation_sensitivity",
                "severity": "info",
                "message": (
                    f"Volatility rises from {base_vol:.1%} to {stressed_vol:.1%} when correlations converge"
                ),
                "base_volatility": base_vol,
                "stressed_volatility": stressed_vol,
            }
        )

    loss_probability = simulation.get("probability_of_loss")
    if loss_probability is not None and loss_probability > 0.25:
        flags.append(
            {
                "type": "loss_probability",
                "severity": "info",
                "message": f"{loss_probability:.0%} of simulated paths end below the initial value",
                "probability_of_loss": loss_probability,
            }
        )

    # --- Data quality flags ---
    flags.extend(data_quality.get("flags", []))

    severity_order = {"error": 0, "warning": 1, "info": 2, "success": 3}
    flags.sort(key=lambda flag: severity_order.get(flag.get("severity"), 9))
    return flags

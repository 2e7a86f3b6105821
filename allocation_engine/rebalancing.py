"""Trade list and proportional transaction cost for moving between allocations."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

import pandas as pd

from allocation_engine.errors import InvalidInputError
from allocation_engine.portfolio_risk import normalize_weights


MIN_TRADE_WEIGHT = 0.0001


def _as_weight_map(weights: Optional[Mapping[str, float]], name: str) -> Dict[str, float]:
    if not weights:
        return {}
    clean = {}
    for symbol, value in weights.items():
        try:
            value = float(value)
        except (TypeError, ValueError):
            raise InvalidInputError(f"{name}[{symbol!r}] is not numeric: {value!r}") from None
        clean[symbol] = value if value == value and value > 0 else 0.0
    if sum(clean.values()) == 0:
        return {}
    return normalize_weights(clean)


def transaction_costs(
    target: Mapping[str, float],
    current: Optional[Mapping[str, float]] = None,
    cost_bps: float = 10.0,
) -> Dict[str, Any]:
    """
    Trades needed to move ``current`` to ``target`` and their cost.

    Both allocations are ``{symbol: weight}`` and are normalized first, so
    raw dollar holdings work too. ``current=None`` means starting from cash.
    Changes below 0.01% are ignored. Costs are fractions of portfolio value.
    """
    if cost_bps < 0:
        raise InvalidInputError("cost_bps must be >= 0")
    new = _as_weight_map(target, "target")
    old = _as_weight_map(current, "current")

    rows = []
    for symbol in list(dict.fromkeys([*new, *old])):
        before, after = old.get(symbol, 0.0), new.get(symbol, 0.0)
        change = after - before
        if abs(change) <= MIN_TRADE_WEIGHT:
            continue
        rows.append(
            {
                "symbol": symbol,
                "current_weight": before,
                "target_weight": after,
                "change": change,
                "change_bps": round(change * 10000, 1),
                "direction": "buy" if change > 0 else "sell",
                "cost": abs(change) * cost_bps / 10000.0,
            }
        )

    trades = pd.DataFrame(
        rows,
        columns=["symbol", "current_weight", "target_weight", "change", "change_bps", "direction", "cost"],
    )
    return {
        "trades": trades,
        "trade_count": len(trades),
        # One-sided turnover: the larger of total buys and total sells.
        "turnover": float(
            max(trades["change"].clip(lower=0).sum(), -trades["change"].clip(upper=0).sum())
        ) if len(trades) else 0.0,
        "total_cost": float(trades["cost"].sum()) if len(trades) else 0.0,
        "cost_bps": float(cost_bps),
    }

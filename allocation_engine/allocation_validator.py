"""
Allocation feasibility checks: weight constraints, position limits and
whole-share sizing.

Called by:
- ``core.portfolio_analysis.analyze_portfolio`` (validation of the selected
  allocation).
- Callers preparing an allocation for execution (``enforce_constraints``,
  ``validate_position_sizing``).

Contract notes:
- Weights may be a ``{symbol: weight}`` mapping, an ``AllocationResult`` or a
  plain sequence (labelled ``"0"``, ``"1"``, ...). They are checked as given;
  ``validate_allocation`` never renormalizes.
- Limits default to ``EngineConfig.position_limits``; keyword arguments
  override them per call.
- Issues use the flag shape of ``core.analysis_flags``: ``type``,
  ``severity`` and ``message`` plus context fields.
"""

from __future__ import annotations

import math
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from allocation_engine._logging import log_errors, portfolio_logger
from allocation_engine.data_objects import EngineConfig
from allocation_engine.errors import InvalidInputError
from allocation_engine.results import AllocationResult


WeightsLike = Union[Mapping[str, float], Sequence[float], np.ndarray, AllocationResult]


def _labelled(weights: WeightsLike) -> Tuple[List[str], np.ndarray]:
    if isinstance(weights, AllocationResult):
        return list(weights.symbols), np.asarray(weights.weights, dtype=float)
    if isinstance(weights, Mapping):
        labels = [str(k) for k in weights]
        values = list(weights.values())
    else:
        values = list(np.asarray(weights, dtype=object).reshape(-1))
        labels = [str(i) for i in range(len(values))]
    if not values:
        raise InvalidInputError("no weights supplied")
    try:
        array = np.array([float(v) for v in values], dtype=float)
    except (TypeError, ValueError):
        raise InvalidInputError(f"weights must be numeric, got {values!r}") from None
    return labels, array


def _limits(config: Optional[EngineConfig], **overrides: Optional[float]) -> Dict[str, float]:
    limits = dict((config or EngineConfig()).position_limits)
    limits.update({k: v for k, v in overrides.items() if v is not None})
    return limits


@log_errors("medium")
def validate_allocation(
    weights: WeightsLike,
    config: Optional[EngineConfig] = None,
    *,
    max_position: Optional[float] = None,
    min_position: Optional[float] = None,
    max_positions: Optional[int] = None,
    hhi_limit: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Check an allocation against the position limits.

    Errors (allocation is invalid): weights not summing to 1 within 0.1%,
    negative or non-finite weights. Warnings: positions above
    ``max_position``, dust positions below ``min_position``, more than
    ``max_positions`` holdings, and HHI above ``hhi_limit``.
    """
    labels, w = _labelled(weights)
    limits = _limits(
        config,
        max_position=max_position,
        min_position=min_position,
        max_positions=max_positions,
        hhi_limit=hhi_limit,
    )
    errors: List[Dict[str, Any]] = []
    warnings: List[Dict[str, Any]] = []

    finite = np.isfinite(w)
    for label in [name for name, ok in zip(labels, finite) if not ok]:
        errors.append({"type": "non_finite_weight", "severity": "error", "symbol": label,
                       "message": f"{label} has a non-finite weight"})
    clean = np.where(finite, w, 0.0)

    total = float(clean.sum())
    if abs(total - 1.0) > 0.001:
        errors.append({"type": "sum_constraint", "severity": "error", "sum": total,
                       "message": f"Weights sum to {total:.2%} instead of 100%"})

    for label, weight in zip(labels, clean):
        if weight < 0:
            errors.append({"type": "negative_weight", "severity": "error", "symbol": label, "weight": float(weight),
                           "message": f"{label} has negative weight {weight:.2%}"})
        if weight > limits["max_position"]:
            warnings.append({"type": "max_position", "severity": "warning", "symbol": label, "weight": float(weight),
                             "limit": limits["max_position"],
                             "message": f"{label} exceeds max position size ({weight:.1%} > {limits['max_position']:.1%})"})
        if 0 < weight < limits["min_position"]:
            warnings.append({"type": "dust_position", "severity": "info", "symbol": label, "weight": float(weight),
                             "message": f"{label} has a very small position ({weight:.2%})"})

    positions = int(np.sum(clean >= limits["min_position"]))
    if positions > limits["max_positions"]:
        warnings.append({"type": "too_many_positions", "severity": "warning", "count": positions,
                         "limit": int(limits["max_positions"]),
                         "message": f"{positions} positions exceeds recommended maximum of {int(limits['max_positions'])}"})

    hhi = float(np.sum(clean ** 2))
    if hhi > limits["hhi_limit"]:
        warnings.append({"type": "high_concentration", "severity": "warning", "hhi": hhi,
                         "message": f"Portfolio is highly concentrated (HHI: {hhi:.3f})"})

    valid = not errors
    return {
        "valid": valid,
        "errors": errors,
        "warnings": warnings,
        "summary": (
            f"Valid allocation with {len(warnings)} warnings"
            if valid
            else f"Invalid allocation with {len(errors)} errors"
        ),
        "metrics": {
            "sum": total,
            "positions": positions,
            "max_weight": float(clean.max()),
            "herfindahl": hhi,
        },
    }


def _cap_weights(w: np.ndarray, cap: float) -> np.ndarray:
    """Cap entries at ``cap`` and spread the excess over uncapped holdings pro rata."""
    w = w.copy()
    fixed = np.zeros(len(w), dtype=bool)
    for _ in range(len(w)):
        over = (w > cap + 1e-12) & ~fixed
        if not over.any():
            break
        excess = float((w[over] - cap).sum())
        w[over] = cap
        fixed |= over
        free = ~fixed & (w > 0)
        if not free.any():
            break
        w[free] += excess * w[free] / w[free].sum()
    return w


@log_errors("medium")
def enforce_constraints(
    weights: WeightsLike,
    config: Optional[EngineConfig] = None,
    *,
    max_position: Optional[float] = None,
    min_position: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Adjust an allocation so it satisfies the position limits.

    Negative and non-finite weights are removed, the vector is normalized,
    dust below ``min_position`` is dropped, and positions above
    ``max_position`` are capped with the excess spread pro rata over the
    remaining holdings. When fewer than ``1 / max_position`` holdings remain
    the cap is raised to ``1 / holdings``.
    """
    labels, w = _labelled(weights)
    limits = _limits(config, max_position=max_position, min_position=min_position)
    original_sum = float(np.nansum(w))
    changes: List[Dict[str, Any]] = []

    clean = np.where(np.isfinite(w) & (w > 0), w, 0.0)
    for label, before, after in zip(labels, w, clean):
        if before != after:
            changes.append({"symbol": label, "original": float(before), "adjusted": 0.0, "reason": "invalid_removed"})
    if clean.sum() <= 0:
        raise InvalidInputError("allocation has no positive weights to enforce constraints on")
    clean = clean / clean.sum()

    dust = (clean > 0) & (clean < limits["min_position"])
    if dust.all():
        portfolio_logger.warning("every position is below min_position; keeping the allocation unchanged")
        dust[:] = False
    for idx in np.flatnonzero(dust):
        changes.append({"symbol": labels[idx], "original": float(clean[idx]), "adjusted": 0.0, "reason": "dust_removed"})
    clean = np.where(dust, 0.0, clean)
    clean = clean / clean.sum()

    holdings = int(np.count_nonzero(clean))
    cap = max(float(limits["max_position"]), 1.0 / holdings)
    capped = _cap_weights(clean, cap)
    for idx in np.flatnonzero(clean > cap + 1e-12):
        changes.append({"symbol": labels[idx], "original": float(clean[idx]), "adjusted": float(capped[idx]),
                        "reason": "max_position_exceeded"})
    capped = capped / capped.sum()

    return {
        "weights": dict(zip(labels, capped.tolist())),
        "changes": changes,
        "effective_max_position": cap,
        "original_sum": original_sum,
        "adjusted_sum": float(capped.sum()),
    }


@log_errors("medium")
def validate_position_sizing(
    weights: WeightsLike,
    prices: Union[Mapping[str, float], Sequence[float]],
    account_value: float,
    config: Optional[EngineConfig] = None,
) -> Dict[str, Any]:
    """
    Translate target weights into whole-share positions for ``account_value``.

    Flags holdings whose share rounding drifts more than
    ``position_limits["rounding_drift"]`` from target, and holdings too small
    to buy a single share.
    """
    labels, w = _labelled(weights)
    if isinstance(prices, Mapping):
        missing = [label for label in labels if label not in prices]
        if missing:
            raise InvalidInputError(f"missing prices for: {missing}")
        price_array = np.array([float(prices[label]) for label in labels])
    else:
        price_array = np.asarray(prices, dtype=float).reshape(-1)
    if price_array.shape != w.shape:
        raise InvalidInputError(f"{price_array.size} prices for {w.size} weights")
    if not np.all(np.isfinite(price_array)) or np.any(price_array <= 0):
        raise InvalidInputError("prices must be positive finite numbers")
    account_value = float(account_value)
    if not math.isfinite(account_value) or account_value <= 0:
        raise InvalidInputError(f"account_value must be positive, got {account_value!r}")

    max_drift = _limits(config)["rounding_drift"]
    target_dollars = account_value * w
    shares = np.floor(target_dollars / price_array).astype(int)
    actual_dollars = shares * price_array
    actual_weight = actual_dollars / account_value
    drift = np.abs(actual_weight - w)

    positions = pd.DataFrame(
        {
            "target_weight": w,
            "target_dollars": target_dollars,
            "price": price_array,
            "shares": shares,
            "actual_dollars": actual_dollars,
            "actual_weight": actual_weight,
            "drift": drift,
        },
        index=pd.Index(labels, name="symbol"),
    )

    issues: List[Dict[str, Any]] = []
    for label, row in positions.iterrows():
        if row["target_weight"] > 0 and row["shares"] == 0:
            issues.append({"type": "below_one_share", "severity": "warning", "symbol": label,
                           "message": f"{label} position too small to buy one share (${row['price']:,.2f})"})
        elif row["drift"] > max_drift:
            issues.append({"type": "rounding_drift", "severity": "info", "symbol": label, "drift": float(row["drift"]),
                           "message": f"Share rounding moves {label} {row['drift']:.2%} from target"})

    invested = float(actual_dollars.sum())
    return {
        "positions": positions,
        "issues": issues,
        "total_invested": invested,
        "cash_remaining": account_value - invested,
        "utilization_rate": invested / account_value,
    }

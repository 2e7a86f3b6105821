"""Shared helpers for result object serialization and formatting."""

from typing import Any

import numpy as np
import pandas as pd

from allocation_engine._vendor import make_json_safe


def _convert_to_json_serializable(obj: Any) -> Any:
    """Convert pandas objects to JSON-serializable format, keeping the index as a column."""
    if isinstance(obj, pd.DataFrame):
        frame = obj.reset_index() if obj.index.name is not None else obj
        return _clean_nan_values(make_json_safe(frame))

    if isinstance(obj, pd.Series):
        return _clean_nan_values(make_json_safe(obj))

    if isinstance(obj, dict):
        return {k: _convert_to_json_serializable(v) for k, v in obj.items()}

    if isinstance(obj, (list, tuple)):
        return [_convert_to_json_serializable(item) for item in obj]

    if isinstance(obj, (np.floating, float)):
        value = float(obj)
        if value != value or value in (float("inf"), float("-inf")):
            return None
        # Fixed precision avoids scientific-notation noise in payloads
        return round(value, 8)

    return make_json_safe(obj)


def _clean_nan_values(obj: Any) -> Any:
    """Recursively convert NaN values to None."""
    if isinstance(obj, dict):
        return {k: _clean_nan_values(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_clean_nan_values(item) for item in obj]
    if isinstance(obj, float) and obj != obj:
        return None
    return obj


def _pct(value: Any, places: int = 2) -> str:
    if value is None:
        return "n/a"
    return f"{value:.{places}%}"


def _money(value: Any) -> str:
    if value is None:
        return "n/a"
    return f"${value:,.0f}"

"""Small helpers for serialization/coercion of engine outputs."""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Mapping

import numpy as np
import pandas as pd


def make_json_safe(obj: Any) -> Any:
    """Recursively convert values into JSON-serializable forms.

    numpy arrays become lists, DataFrames become record lists, objects with a
    ``to_dict`` method are expanded, and NaN/inf become ``None``.
    """
    if isinstance(obj, Mapping):
        out = {}
        for key, value in obj.items():
            if isinstance(key, (pd.Timestamp, datetime)):
                safe_key = key.strftime("%Y-%m-%d %H:%M:%S")
            elif isinstance(key, (int, float, str, bool, type(None))):
                safe_key = key
            elif isinstance(key, tuple):
                safe_key = "|".join(str(k) for k in key)
            else:
                safe_key = str(key)
            out[safe_key] = make_json_safe(value)
        return out

    if isinstance(obj, (list, tuple)):
        return [make_json_safe(item) for item in obj]

    if isinstance(obj, pd.DataFrame):
        return [make_json_safe(row) for row in obj.to_dict("records")]

    if isinstance(obj, pd.Series):
        return {str(k): make_json_safe(v) for k, v in obj.to_dict().items()}

    if isinstance(obj, np.ndarray):
        return make_json_safe(obj.tolist())

    if isinstance(obj, np.bool_):
        return bool(obj)

    if isinstance(obj, np.integer):
        return int(obj)

    if isinstance(obj, np.floating):
        obj = float(obj)

    if isinstance(obj, float):
        return obj if math.isfinite(obj) else None

    if isinstance(obj, (pd.Timestamp, datetime)):
        return obj.strftime("%Y-%m-%d %H:%M:%S")

    if isinstance(obj, (int, str, bool, type(None))):
        return obj

    if hasattr(obj, "to_dict"):
        return make_json_safe(obj.to_dict())

    return str(obj)


def _to_float(value: Any) -> float | None:
    """Coerce to a finite float, else ``None``."""
    try:
        if value is None or isinstance(value, bool):
            return None
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if math.isfinite(result) else None

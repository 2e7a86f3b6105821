"""Result objects for structured service layer responses.

    from core.result_objects import PortfolioAnalysisResult
"""

from ._helpers import (
    _convert_to_json_serializable,
    _clean_nan_values,
)
from .analysis import PortfolioAnalysisResult, config_snapshot

__all__ = [
    "_convert_to_json_serializable",
    "_clean_nan_values",
    "PortfolioAnalysisResult",
    "config_snapshot",
]

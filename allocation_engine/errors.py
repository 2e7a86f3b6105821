"""Exceptions raised by allocation_engine.

Only structural input problems raise. Missing or odd asset statistics are
defaulted and reported through ``DataQualityReport``; numerical edge cases
fall back to documented behaviour and are logged.
"""


class InvalidInputError(ValueError):
    """Input the engine cannot recover from (empty universe, non-finite config, shape mismatch)."""

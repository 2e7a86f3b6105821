#!/usr/bin/env python3
# coding: utf-8

"""
Adapters for resolving engine configuration inputs.

Called by:
- ``core.portfolio_analysis.analyze_portfolio`` and any caller that accepts
  a file path, a plain dict, or a typed ``EngineConfig``.

Contract notes:
- YAML files may hold the keys at top level or under an ``engine:`` section.
- Unknown keys raise ``InvalidInputError`` instead of being silently ignored.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml

from allocation_engine.data_objects import EngineConfig
from allocation_engine.errors import InvalidInputError


def normalize_engine_config(raw: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Unwrap an optional ``engine`` section and drop ``None`` values."""
    raw_config = dict(raw or {})
    if "engine" in raw_config and isinstance(raw_config["engine"], Mapping):
        raw_config = dict(raw_config["engine"])
    return {k: v for k, v in raw_config.items() if v is not None or k == "max_return_weight_cap"}


def load_engine_config(path: Union[str, Path]) -> EngineConfig:
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)
    if raw is not None and not isinstance(raw, Mapping):
        raise InvalidInputError(f"engine config file {path} must contain a mapping")
    return EngineConfig.from_dict(normalize_engine_config(raw))


def resolve_engine_config(
    config: Union[str, Path, EngineConfig, Mapping[str, Any], None],
) -> EngineConfig:
    """
    Resolve engine-config input variants to an ``EngineConfig``.
    """
    if config is None:
        return EngineConfig()
    if isinstance(config, EngineConfig):
        return config
    if isinstance(config, Mapping):
        return EngineConfig.from_dict(normalize_engine_config(config))
    if isinstance(config, (str, Path)):
        return load_engine_config(config)
    raise TypeError(f"Unsupported engine config type: {type(config)!r}")

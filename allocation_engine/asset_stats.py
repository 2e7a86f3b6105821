#!/usr/bin/env python3
# coding: utf-8

"""
Asset statistics normalization.

Called by:
- Every computation module, through ``ensure_assets`` on entry.
- ``core.portfolio_analysis.analyze_portfolio`` (once per run).

Contract notes:
- Raw records carry annual return/volatility in percent; output is decimal.
- Output order equals input order.
- Missing, non-numeric or non-finite fields are never an error. They are
  replaced by configured defaults and tagged on the asset and in the
  ``DataQualityReport``. The only failure is an empty universe.
"""

from __future__ import annotations

import math
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from allocation_engine._logging import log_errors, log_operation, portfolio_logger
from allocation_engine._vendor import _to_float
from allocation_engine.constants import UNKNOWN_SECTOR
from allocation_engine.data_objects import (
    AssetRecord,
    DataQualityReport,
    EngineConfig,
    NormalizedAsset,
    NormalizedAssets,
)
from allocation_engine.errors import InvalidInputError


AssetInput = Union[NormalizedAssets, pd.DataFrame, Sequence[Union[AssetRecord, Mapping[str, Any], NormalizedAsset]]]


def _as_record(raw: Any) -> AssetRecord:
    if isinstance(raw, AssetRecord):
        return raw
    if isinstance(raw, Mapping):
        return AssetRecord.from_mapping(raw)
    raise InvalidInputError(f"Unsupported asset record type: {type(raw).__name__}")


def _clean_label(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    text = str(value).strip()
    return text or None


def derive_stats_from_prices(
    price_history: Optional[Iterable[Any]],
    periods_per_year: int = 12,
    min_observations: int = 3,
) -> Tuple[Optional[float], Optional[float]]:
    """
    Estimate annualized (mean return, volatility) in decimals from periodic prices.

    Non-numeric and non-positive prices are dropped first. Returns ``(None, None)``
    when fewer than ``min_observations`` usable prices remain; volatility is
    ``None`` when only one periodic return is available.
    """
    if price_history is None:
        return None, None
    prices = pd.to_numeric(pd.Series(list(price_history), dtype=object), errors="coerce")
    prices = prices[np.isfinite(prices.astype(float)) & (prices > 0)].astype(float)
    if len(prices) < max(min_observations, 2):
        return None, None

    returns = prices.pct_change().dropna()
    mean_return = float(returns.mean() * periods_per_year)
    volatility = None
    if len(returns) >= 2:
        volatility = float(returns.std(ddof=1) * np.sqrt(periods_per_year))
    return mean_return, volatility


def _fallback_volatility(sector: str, cfg: EngineConfig) -> float:
    return float(cfg.sector_volatility_fallbacks.get(sector, cfg.default_volatility))


@log_errors("medium")
@log_operation("normalize_assets")
def normalize_assets(records: AssetInput, config: Optional[EngineConfig] = None) -> NormalizedAssets:
    """
    Normalize raw asset records into decimal-unit statistics.

    Accepts ``AssetRecord`` objects, plain dicts (snake_case or camelCase
    keys), a DataFrame of records, or an existing ``NormalizedAssets``
    (returned unchanged).

    Raises:
        InvalidInputError: when no records are supplied.
    """
    if isinstance(records, NormalizedAssets):
        return records
    if isinstance(records, pd.DataFrame):
        records = records.to_dict("records")
    records = list(records) if records is not None else []
    if not records:
        raise InvalidInputError("no assets supplied")

    cfg = config or EngineConfig()
    quality = DataQualityReport()
    seen: dict[str, int] = {}
    normalized: List[NormalizedAsset] = []

    for idx, raw in enumerate(records):
        if isinstance(raw, NormalizedAsset):
            normalized.append(raw)
            seen[raw.symbol] = seen.get(raw.symbol, 0) + 1
            continue

        record = _as_record(raw)
        defaulted: List[str] = []
        derived: List[str] = []

        symbol = _clean_label(record.symbol)
        if symbol is None:
            symbol = f"ASSET_{idx + 1}"
            defaulted.append("symbol")
        original_symbol = symbol
        seen[symbol] = seen.get(symbol, 0) + 1
        if seen[symbol] > 1:
            symbol = f"{original_symbol}#{seen[original_symbol]}"
            quality.renamed[symbol] = original_symbol

        sector = _clean_label(record.sector) or UNKNOWN_SECTOR

        # Percent in, decimal out.
        expected_return = _to_float(record.expected_return)
        expected_return = expected_return / 100.0 if expected_return is not None else None
        volatility = _to_float(record.volatility)
        if volatility is not None and volatility < 0:
            volatility = None
        volatility = volatility / 100.0 if volatility is not None else None
        beta = _to_float(record.beta)

        if expected_return is None or volatility is None:
            hist_return, hist_vol = derive_stats_from_prices(
                record.price_history,
                periods_per_year=cfg.periods_per_year,
                min_observations=cfg.min_price_observations,
            )
            if expected_return is None and hist_return is not None:
                expected_return = hist_return
                derived.append("expected_return")
            if volatility is None and hist_vol is not None:
                volatility = hist_vol
                derived.append("volatility")

        if expected_return is None:
            expected_return = cfg.default_return
            defaulted.append("expected_return")
        if volatility is None:
            volatility = _fallback_volatility(sector, cfg)
            defaulted.append("volatility")
        if beta is None:
            beta = cfg.default_beta
            defaulted.append("beta")

        if defaulted:
            quality.defaulted[symbol] = list(defaulted)
            portfolio_logger.debug("defaults applied for %s: %s", symbol, defaulted)
        if derived:
            quality.derived[symbol] = list(derived)

        normalized.append(
            NormalizedAsset(
                symbol=symbol,
                sector=sector,
                expected_return=float(expected_return),
                volatility=float(volatility),
                beta=float(beta),
                market_cap_bucket=_clean_label(record.market_cap_bucket),
                defaulted_fields=tuple(defaulted),
                derived_fields=tuple(derived),
            )
        )

    if quality.has_issues:
        portfolio_logger.warning(
            "asset normalization: %d defaulted field(s) across %d asset(s), %d renamed symbol(s)",
            quality.defaulted_count,
            len(quality.defaulted),
            len(quality.renamed),
        )

    return NormalizedAssets(assets=tuple(normalized), quality=quality)


def ensure_assets(assets: AssetInput, config: Optional[EngineConfig] = None) -> NormalizedAssets:
    """Return ``assets`` as ``NormalizedAssets``, normalizing raw input if needed."""
    if isinstance(assets, NormalizedAssets):
        return assets
    return normalize_assets(assets, config)

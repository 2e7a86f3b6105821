"""
Core Data Objects Module

Data structures for asset inputs, normalized statistics and engine configuration.

Classes:
- AssetRecord: Raw per-asset record as delivered by the market-data layer (percent units)
- NormalizedAsset: Decimal-unit statistics tagged with which fields were defaulted
- NormalizedAssets: Ordered, non-empty universe plus its data-quality report
- DataQualityReport: Per-symbol record of defaulted/derived fields and renames
- StressScenario / MacroScenario: Scenario table rows
- EngineConfig: Frozen per-call configuration with validated constants

Usage: Every computation module accepts ``NormalizedAssets`` (or raw records,
which are normalized on entry) and an optional ``EngineConfig``.
"""

from dataclasses import dataclass, field, fields, replace
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
import math
import numbers

import numpy as np

from allocation_engine import config as _cfg
from allocation_engine.errors import InvalidInputError


_RECORD_ALIASES = {
    "ticker": "symbol",
    "name": "symbol",
    "return": "expected_return",
    "expectedReturn": "expected_return",
    "vol": "volatility",
    "marketCap": "market_cap",
    "marketCapBucket": "market_cap_bucket",
    "marketCapCategory": "market_cap_bucket",
    "peRatio": "pe_ratio",
    "priceHistory": "price_history",
    "prices": "price_history",
}


@dataclass
class AssetRecord:
    """Raw asset record. Return and volatility are annual percentages (``10.0`` = 10%)."""

    symbol: Optional[str] = None
    sector: Optional[str] = None
    expected_return: Any = None
    volatility: Any = None
    beta: Any = None
    market_cap_bucket: Optional[str] = None
    market_cap: Any = None
    pe_ratio: Any = None
    price_history: Optional[Sequence[float]] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "AssetRecord":
        """Build from a dict, accepting the camelCase keys used by dashboard payloads."""
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            target = _RECORD_ALIASES.get(key, key)
            if target in known and target not in kwargs:
                kwargs[target] = value
        return cls(**kwargs)


@dataclass(frozen=True)
class NormalizedAsset:
    symbol: str
    sector: str
    expected_return: float
    volatility: float
    beta: float
    market_cap_bucket: Optional[str] = None
    defaulted_fields: Tuple[str, ...] = ()
    derived_fields: Tuple[str, ...] = ()

    @property
    def is_defaulted(self) -> bool:
        return bool(self.defaulted_fields)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "sector": self.sector,
            "expected_return": self.expected_return,
            "volatility": self.volatility,
            "beta": self.beta,
            "market_cap_bucket": self.market_cap_bucket,
            "defaulted_fields": list(self.defaulted_fields),
            "derived_fields": list(self.derived_fields),
        }


@dataclass
class DataQualityReport:
    """Observability record for normalization. Never raised, always returned."""

    defaulted: Dict[str, List[str]] = field(default_factory=dict)
    derived: Dict[str, List[str]] = field(default_factory=dict)
    renamed: Dict[str, str] = field(default_factory=dict)

    @property
    def has_issues(self) -> bool:
        return bool(self.defaulted or self.renamed)

    @property
    def defaulted_count(self) -> int:
        return sum(len(v) for v in self.defaulted.values())

    def flags(self) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        for symbol, names in self.defaulted.items():
            out.append(
                {
                    "type": "defaulted_fields",
                    "severity": "warning",
                    "message": f"{symbol}: missing or invalid {', '.join(names)}; defaults applied",
                    "symbol": symbol,
                    "fields": list(names),
                }
            )
        for symbol, names in self.derived.items():
            out.append(
                {
                    "type": "derived_fields",
                    "severity": "info",
                    "message": f"{symbol}: {', '.join(names)} estimated from price history",
                    "symbol": symbol,
                    "fields": list(names),
                }
            )
        for new_symbol, original in self.renamed.items():
            out.append(
                {
                    "type": "duplicate_symbol",
                    "severity": "warning",
                    "message": f"Duplicate symbol {original} renamed to {new_symbol}",
                    "symbol": new_symbol,
                }
            )
        return out

    def to_dict(self) -> Dict[str, Any]:
        return {
            "has_issues": self.has_issues,
            "defaulted": {k: list(v) for k, v in self.defaulted.items()},
            "derived": {k: list(v) for k, v in self.derived.items()},
            "renamed": dict(self.renamed),
            "flags": self.flags(),
        }


def _readonly(values: Sequence[float]) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True)
class NormalizedAssets:
    """Ordered, non-empty asset universe in decimal units."""

    assets: Tuple[NormalizedAsset, ...]
    quality: DataQualityReport = field(default_factory=DataQualityReport)

    def __post_init__(self):
        if not self.assets:
            raise InvalidInputError("no assets supplied")

    def __len__(self) -> int:
        return len(self.assets)

    def __iter__(self):
        return iter(self.assets)

    def __getitem__(self, idx: int) -> NormalizedAsset:
        return self.assets[idx]

    @property
    def symbols(self) -> List[str]:
        return [a.symbol for a in self.assets]

    @property
    def sectors(self) -> List[str]:
        return [a.sector for a in self.assets]

    @property
    def returns(self) -> np.ndarray:
        return _readonly([a.expected_return for a in self.assets])

    @property
    def volatilities(self) -> np.ndarray:
        return _readonly([a.volatility for a in self.assets])

    @property
    def betas(self) -> np.ndarray:
        return _readonly([a.beta for a in self.assets])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assets": [a.to_dict() for a in self.assets],
            "data_quality": self.quality.to_dict(),
        }


def _require_finite(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise InvalidInputError(f"{name} must be numeric, got {value!r}")
    value = float(value)
    if not math.isfinite(value):
        raise InvalidInputError(f"{name} must be finite, got {value!r}")
    return value


@dataclass(frozen=True)
class StressScenario:
    """Named market shock. ``market_decline_percent`` is signed (``-40.0`` = 40% decline)."""

    name: str
    market_decline_percent: float
    description: str = ""
    duration_months: Optional[int] = None
    recovery_months: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(
            self,
            "market_decline_percent",
            _require_finite(f"{self.name}.market_decline_percent", self.market_decline_percent),
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "StressScenario":
        decline = data.get("market_decline_percent", data.get("marketDecline", data.get("market_decline")))
        if decline is None:
            raise InvalidInputError(f"scenario {data.get('name')!r} has no market decline")
        return cls(
            name=str(data.get("name") or "Custom Scenario"),
            market_decline_percent=decline,
            description=str(data.get("description") or ""),
            duration_months=data.get("duration_months"),
            recovery_months=data.get("recovery_months"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "market_decline_percent": self.market_decline_percent,
            "description": self.description,
            "duration_months": self.duration_months,
            "recovery_months": self.recovery_months,
        }


@dataclass(frozen=True)
class MacroScenario:
    name: str
    equity_return_percent: float
    volatility_multiplier: float = 1.0
    probability: float = 0.0
    description: str = ""

    def __post_init__(self):
        for attr in ("equity_return_percent", "volatility_multiplier", "probability"):
            object.__setattr__(self, attr, _require_finite(f"{self.name}.{attr}", getattr(self, attr)))
        if self.volatility_multiplier < 0:
            raise InvalidInputError(f"{self.name}.volatility_multiplier must be >= 0")
        if not 0.0 <= self.probability <= 1.0:
            raise InvalidInputError(f"{self.name}.probability must be within [0, 1]")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "MacroScenario":
        return cls(
            name=str(data.get("name") or "Custom Scenario"),
            equity_return_percent=data.get("equity_return_percent", data.get("equityReturn", 0.0)),
            volatility_multiplier=data.get("volatility_multiplier", data.get("volatilityMultiplier", 1.0)),
            probability=data.get("probability", 0.0),
            description=str(data.get("description") or ""),
        )


def _default_stress_scenarios() -> Tuple[StressScenario, ...]:
    return tuple(StressScenario.from_mapping(s) for s in _cfg.STRESS_SCENARIOS)


def _default_macro_scenarios() -> Tuple[MacroScenario, ...]:
    return tuple(MacroScenario.from_mapping(s) for s in _cfg.MACRO_SCENARIOS)


_FLOAT_FIELDS = (
    "risk_free_rate",
    "market_return",
    "market_volatility",
    "default_return",
    "default_volatility",
    "default_beta",
    "correlation_same_sector",
    "correlation_cross_sector",
    "correlation_beta_penalty",
    "correlation_floor",
    "correlation_ceiling",
    "correlation_stress_factor",
    "risk_parity_tolerance",
    "covariance_ridge",
    "scenario_blend",
    "asset_loss_floor",
    "regime_correlation_floor",
    "regime_correlation_ceiling",
    "implied_volatility_weight",
)

_INT_FIELDS = (
    "min_price_observations",
    "periods_per_year",
    "risk_parity_max_iterations",
    "optimizer_workers",
    "monte_carlo_paths",
    "monte_carlo_workers",
    "backtest_max_years",
)

# Shared read-only across optimizer threads.
_MAPPING_FIELDS = (
    "sector_volatility_fallbacks",
    "sector_pair_correlations",
    "concentration_thresholds",
    "regime_vix_bounds",
    "regime_correlation_factors",
    "drawdown_settings",
    "position_limits",
)


@dataclass(frozen=True)
class EngineConfig:
    """
    Explicit per-call engine configuration.

    Field defaults are taken from ``allocation_engine.config`` at construction
    time. All numeric values are validated finite; anything else raises
    ``InvalidInputError`` so a bad constant never reaches the linear algebra.
    """

    risk_free_rate: float = field(default_factory=lambda: _cfg.MARKET_ASSUMPTIONS["risk_free_rate"])
    market_return: float = field(default_factory=lambda: _cfg.MARKET_ASSUMPTIONS["market_return"])
    market_volatility: float = field(default_factory=lambda: _cfg.MARKET_ASSUMPTIONS["market_volatility"])

    default_return: float = field(default_factory=lambda: _cfg.ASSET_DEFAULTS["default_return"])
    default_volatility: float = field(default_factory=lambda: _cfg.ASSET_DEFAULTS["default_volatility"])
    default_beta: float = field(default_factory=lambda: _cfg.ASSET_DEFAULTS["default_beta"])
    min_price_observations: int = field(default_factory=lambda: _cfg.ASSET_DEFAULTS["min_price_observations"])
    periods_per_year: int = field(default_factory=lambda: _cfg.ASSET_DEFAULTS["periods_per_year"])
    sector_volatility_fallbacks: Mapping[str, float] = field(
        default_factory=lambda: dict(_cfg.SECTOR_VOLATILITY_FALLBACKS)
    )

    correlation_same_sector: float = field(default_factory=lambda: _cfg.CORRELATION_MODEL["same_sector"])
    correlation_cross_sector: float = field(default_factory=lambda: _cfg.CORRELATION_MODEL["cross_sector"])
    correlation_beta_penalty: float = field(default_factory=lambda: _cfg.CORRELATION_MODEL["beta_penalty"])
    correlation_floor: float = field(default_factory=lambda: _cfg.CORRELATION_MODEL["floor"])
    correlation_ceiling: float = field(default_factory=lambda: _cfg.CORRELATION_MODEL["ceiling"])
    correlation_stress_factor: float = field(default_factory=lambda: _cfg.CORRELATION_MODEL["stress_factor"])
    sector_pair_correlations: Mapping[Tuple[str, str], float] = field(default_factory=dict)

    risk_parity_tolerance: float = field(default_factory=lambda: _cfg.OPTIMIZER_SETTINGS["risk_parity_tolerance"])
    risk_parity_max_iterations: int = field(
        default_factory=lambda: _cfg.OPTIMIZER_SETTINGS["risk_parity_max_iterations"]
    )
    covariance_ridge: float = field(default_factory=lambda: _cfg.OPTIMIZER_SETTINGS["covariance_ridge"])
    max_return_weight_cap: Optional[float] = field(
        default_factory=lambda: _cfg.OPTIMIZER_SETTINGS["max_return_weight_cap"]
    )
    optimizer_workers: int = field(default_factory=lambda: _cfg.OPTIMIZER_SETTINGS["max_workers"])

    monte_carlo_paths: int = field(default_factory=lambda: _cfg.MONTE_CARLO_SETTINGS["num_paths"])
    monte_carlo_workers: int = field(default_factory=lambda: _cfg.MONTE_CARLO_SETTINGS["workers"])

    concentration_thresholds: Mapping[str, float] = field(
        default_factory=lambda: dict(_cfg.CONCENTRATION_THRESHOLDS)
    )
    stress_scenarios: Tuple[StressScenario, ...] = field(default_factory=_default_stress_scenarios)
    macro_scenarios: Tuple[MacroScenario, ...] = field(default_factory=_default_macro_scenarios)

    backtest_max_years: int = field(default_factory=lambda: _cfg.TIME_SERIES_SETTINGS["backtest_max_years"])
    scenario_blend: float = field(default_factory=lambda: _cfg.TIME_SERIES_SETTINGS["scenario_blend"])
    asset_loss_floor: float = field(default_factory=lambda: _cfg.TIME_SERIES_SETTINGS["asset_loss_floor"])

    regime_vix_bounds: Mapping[str, float] = field(
        default_factory=lambda: dict(_cfg.MARKET_REGIME_SETTINGS["vix_bounds"])
    )
    regime_correlation_factors: Mapping[str, float] = field(
        default_factory=lambda: dict(_cfg.MARKET_REGIME_SETTINGS["correlation_factors"])
    )
    regime_correlation_floor: float = field(
        default_factory=lambda: _cfg.MARKET_REGIME_SETTINGS["correlation_floor"]
    )
    regime_correlation_ceiling: float = field(
        default_factory=lambda: _cfg.MARKET_REGIME_SETTINGS["correlation_ceiling"]
    )
    implied_volatility_weight: float = field(
        default_factory=lambda: _cfg.MARKET_REGIME_SETTINGS["implied_volatility_weight"]
    )
    drawdown_settings: Mapping[str, float] = field(default_factory=lambda: dict(_cfg.DRAWDOWN_SETTINGS))
    position_limits: Mapping[str, float] = field(default_factory=lambda: dict(_cfg.POSITION_LIMITS))

    def __post_init__(self):
        for name in _FLOAT_FIELDS:
            object.__setattr__(self, name, _require_finite(name, getattr(self, name)))
        for name in _INT_FIELDS:
            value = _require_finite(name, getattr(self, name))
            if value != int(value) or value < 1:
                raise InvalidInputError(f"{name} must be a positive integer, got {getattr(self, name)!r}")
            object.__setattr__(self, name, int(value))

        if self.default_volatility < 0:
            raise InvalidInputError("default_volatility must be >= 0")
        if self.correlation_floor > self.correlation_ceiling:
            raise InvalidInputError("correlation_floor must not exceed correlation_ceiling")
        if self.risk_parity_tolerance <= 0:
            raise InvalidInputError("risk_parity_tolerance must be > 0")
        if self.covariance_ridge < 0:
            raise InvalidInputError("covariance_ridge must be >= 0")
        if self.max_return_weight_cap is not None:
            cap = _require_finite("max_return_weight_cap", self.max_return_weight_cap)
            if not 0.0 < cap <= 1.0:
                raise InvalidInputError("max_return_weight_cap must be within (0, 1]")
            object.__setattr__(self, "max_return_weight_cap", cap)

        for sector, vol in self.sector_volatility_fallbacks.items():
            if _require_finite(f"sector_volatility_fallbacks[{sector}]", vol) < 0:
                raise InvalidInputError(f"sector_volatility_fallbacks[{sector}] must be >= 0")
        for pair, rho in self.sector_pair_correlations.items():
            if not -1.0 <= _require_finite(f"sector_pair_correlations[{pair}]", rho) <= 1.0:
                raise InvalidInputError(f"sector_pair_correlations[{pair}] must be within [-1, 1]")
        for key, threshold in self.concentration_thresholds.items():
            _require_finite(f"concentration_thresholds[{key}]", threshold)
        # Partial overrides keep the remaining default keys.
        object.__setattr__(self, "drawdown_settings", {**_cfg.DRAWDOWN_SETTINGS, **self.drawdown_settings})
        object.__setattr__(self, "position_limits", {**_cfg.POSITION_LIMITS, **self.position_limits})
        for name in ("regime_vix_bounds", "regime_correlation_factors", "drawdown_settings", "position_limits"):
            for key, value in getattr(self, name).items():
                _require_finite(f"{name}[{key}]", value)
        if not 0.0 <= self.implied_volatility_weight <= 1.0:
            raise InvalidInputError("implied_volatility_weight must be within [0, 1]")
        if self.regime_correlation_floor > self.regime_correlation_ceiling:
            raise InvalidInputError("regime_correlation_floor must not exceed regime_correlation_ceiling")
        if not 0.0 < self.position_limits.get("max_position", 1.0) <= 1.0:
            raise InvalidInputError("position_limits[max_position] must be within (0, 1]")
        for name in _MAPPING_FIELDS:
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name))))

        object.__setattr__(
            self,
            "stress_scenarios",
            tuple(s if isinstance(s, StressScenario) else StressScenario.from_mapping(s) for s in self.stress_scenarios),
        )
        object.__setattr__(
            self,
            "macro_scenarios",
            tuple(s if isinstance(s, MacroScenario) else MacroScenario.from_mapping(s) for s in self.macro_scenarios),
        )

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "EngineConfig":
        """Build from a plain mapping; unknown keys are rejected."""
        data = dict(data or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise InvalidInputError(f"Unknown engine config key(s): {', '.join(unknown)}")
        pairs = data.get("sector_pair_correlations")
        if pairs:
            data["sector_pair_correlations"] = _parse_sector_pairs(pairs)
        return cls(**data)

    def with_overrides(self, **overrides: Any) -> "EngineConfig":
        return replace(self, **overrides)

    def pair_correlation(self, sector_a: str, sector_b: str) -> Optional[float]:
        pairs = self.sector_pair_correlations
        if (sector_a, sector_b) in pairs:
            return pairs[(sector_a, sector_b)]
        return pairs.get((sector_b, sector_a))


def _parse_sector_pairs(pairs: Any) -> Dict[Tuple[str, str], float]:
    """Accept ``{(a, b): rho}``, ``{"a|b": rho}`` or ``[{"sectors": [a, b], "correlation": rho}]``."""
    parsed: Dict[Tuple[str, str], float] = {}
    if isinstance(pairs, Mapping):
        for key, rho in pairs.items():
            if isinstance(key, str):
                parts = [p.strip() for p in key.split("|")]
            else:
                parts = list(key)
            if len(parts) != 2:
                raise InvalidInputError(f"sector pair key must name two sectors: {key!r}")
            parsed[(parts[0], parts[1])] = rho
        return parsed
    for item in pairs:
        sectors = list(item.get("sectors") or [])
        if len(sectors) != 2:
            raise InvalidInputError(f"sector pair entry must name two sectors: {item!r}")
        parsed[(sectors[0], sectors[1])] = item.get("correlation")
    return parsed

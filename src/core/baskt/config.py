"""Protocol configuration: YAML defaults and validated setters.

Defaults live in ``defaults.yaml`` next to this module. Every runtime change
goes through ``set_config_value()``, which validates the new value against the
fixed bounds in ``math.py`` and stamps ``last_updated`` / ``last_updated_by``.
Setting a field to its current value is a no-op (no stamp).
"""

from __future__ import annotations

from dataclasses import fields, replace
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Mapping

import yaml

from .errors import BasktError, ErrorCode
from .math import (
    BPS_DIVISOR,
    MAX_COLLATERAL_RATIO_BPS,
    MAX_FEE_BPS,
    MAX_FUNDING_RATE_CAP_BPS,
    MAX_GRACE_PERIOD,
    MAX_PRICE_DEVIATION_BPS,
    MAX_TREASURY_CUT_BPS,
    MIN_COLLATERAL_RATIO_BPS,
    MIN_GRACE_PERIOD,
)
from .types import BasketRiskOverrides, FeatureFlags, PoolParams, ProtocolConfig


def _default_path() -> Path:
    return Path(__file__).resolve().parent / "defaults.yaml"


# -- Field validators ----------------------------------------------------------

def _require(ok: bool, code: ErrorCode, detail: str) -> None:
    if not ok:
        raise BasktError(code, detail)


def _fee(name: str, value: int, config: ProtocolConfig) -> None:
    _require(0 <= value <= MAX_FEE_BPS, ErrorCode.INVALID_FEE_BPS, f"{name}={value}")


def _treasury_cut(name: str, value: int, config: ProtocolConfig) -> None:
    _require(0 <= value <= MAX_TREASURY_CUT_BPS, ErrorCode.INVALID_FEE_BPS, f"{name}={value}")


def _min_collateral_ratio(name: str, value: int, config: ProtocolConfig) -> None:
    _require(
        MIN_COLLATERAL_RATIO_BPS <= value <= MAX_COLLATERAL_RATIO_BPS
        and value > config.liquidation_threshold_bps,
        ErrorCode.INVALID_COLLATERAL_RATIO,
        f"{name}={value}",
    )


def _liquidation_threshold(name: str, value: int, config: ProtocolConfig) -> None:
    _require(
        0 < value <= BPS_DIVISOR and value < config.min_collateral_ratio_bps,
        ErrorCode.INVALID_COLLATERAL_RATIO,
        f"{name}={value}",
    )


def _price_age(name: str, value: int, config: ProtocolConfig) -> None:
    _require(value > 0, ErrorCode.INVALID_ORACLE_PARAMETER, f"{name}={value}")


def _price_deviation(name: str, value: int, config: ProtocolConfig) -> None:
    _require(
        0 < value <= MAX_PRICE_DEVIATION_BPS, ErrorCode.INVALID_ORACLE_PARAMETER, f"{name}={value}"
    )


def _liquidation_deviation(name: str, value: int, config: ProtocolConfig) -> None:
    _require(0 < value <= BPS_DIVISOR, ErrorCode.INVALID_ORACLE_PARAMETER, f"{name}={value}")


def _grace_period(name: str, value: int, config: ProtocolConfig) -> None:
    _require(
        MIN_GRACE_PERIOD <= value <= MAX_GRACE_PERIOD, ErrorCode.INVALID_GRACE_PERIOD, f"{name}={value}"
    )


def _funding_cap(name: str, value: int, config: ProtocolConfig) -> None:
    _require(
        0 <= value <= MAX_FUNDING_RATE_CAP_BPS,
        ErrorCode.FUNDING_RATE_EXCEEDS_MAXIMUM,
        f"{name}={value}",
    )


def _non_negative(name: str, value: int, config: ProtocolConfig) -> None:
    _require(value >= 0, ErrorCode.INVALID_AMOUNT, f"{name}={value}")


Validator = Callable[[str, int, ProtocolConfig], None]

_VALIDATORS: dict[str, Validator] = {
    "opening_fee_bps": _fee,
    "closing_fee_bps": _fee,
    "liquidation_fee_bps": _fee,
    "treasury_cut_bps": _treasury_cut,
    "min_collateral_ratio_bps": _min_collateral_ratio,
    "liquidation_threshold_bps": _liquidation_threshold,
    "max_price_age_sec": _price_age,
    "max_price_deviation_bps": _price_deviation,
    "liquidation_price_deviation_bps": _liquidation_deviation,
    "decommission_grace_period": _grace_period,
    "max_funding_rate_bps": _funding_cap,
    "min_liquidity": _non_negative,
}

CONFIG_FIELDS: tuple[str, ...] = tuple(_VALIDATORS)


def validate_config_value(config: ProtocolConfig, name: str, value: int) -> None:
    """Raise ``BasktError`` if *value* is not acceptable for field *name*."""
    validator = _VALIDATORS.get(name)
    if validator is None:
        raise BasktError(ErrorCode.INVALID_BASKT_CONFIG, f"unknown config field {name!r}")
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"{name} must be an int")
    validator(name, value, config)


def set_config_value(
    config: ProtocolConfig, name: str, value: int, actor: str, now: int
) -> ProtocolConfig:
    """Return *config* with field *name* set to *value* (validated, stamped)."""
    validate_config_value(config, name, value)
    if getattr(config, name) == value:
        return config
    return replace(config, **{name: value, "last_updated": now, "last_updated_by": actor})


def update_feature_flags(
    config: ProtocolConfig, flags: FeatureFlags, actor: str, now: int
) -> ProtocolConfig:
    if config.flags == flags:
        return config
    return replace(config, flags=flags, last_updated=now, last_updated_by=actor)


def update_treasury(config: ProtocolConfig, treasury: str, actor: str, now: int) -> ProtocolConfig:
    if not treasury:
        raise BasktError(ErrorCode.INVALID_BASKT_CONFIG, "treasury must be non-empty")
    if config.treasury == treasury:
        return config
    return replace(config, treasury=treasury, last_updated=now, last_updated_by=actor)


# -- Per-basket overrides --------------------------------------------------------

def effective_value(override: int | None, protocol_value: int) -> int:
    return protocol_value if override is None else override


def effective_config(config: ProtocolConfig, overrides: BasketRiskOverrides) -> ProtocolConfig:
    """Protocol config with a basket's risk overrides applied."""
    return replace(
        config,
        opening_fee_bps=effective_value(overrides.opening_fee_bps, config.opening_fee_bps),
        closing_fee_bps=effective_value(overrides.closing_fee_bps, config.closing_fee_bps),
        liquidation_fee_bps=effective_value(
            overrides.liquidation_fee_bps, config.liquidation_fee_bps
        ),
        min_collateral_ratio_bps=effective_value(
            overrides.min_collateral_ratio_bps, config.min_collateral_ratio_bps
        ),
        liquidation_threshold_bps=effective_value(
            overrides.liquidation_threshold_bps, config.liquidation_threshold_bps
        ),
    )


def validate_overrides(config: ProtocolConfig, overrides: BasketRiskOverrides) -> None:
    """Each set override obeys the protocol bound for its field; ratios stay ordered."""
    for f in fields(BasketRiskOverrides):
        value = getattr(overrides, f.name)
        if value is None:
            continue
        if not isinstance(value, int) or isinstance(value, bool):
            raise TypeError(f"{f.name} must be an int or None")
        if f.name.endswith("fee_bps"):
            _fee(f.name, value, config)
    eff = effective_config(config, overrides)
    # Ratio checks run against the merged values so the pair stays ordered.
    _min_collateral_ratio("min_collateral_ratio_bps", eff.min_collateral_ratio_bps, eff)
    _liquidation_threshold("liquidation_threshold_bps", eff.liquidation_threshold_bps, eff)


# -- YAML defaults -----------------------------------------------------------------

def _section(obj: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    section = obj.get(key, {})
    if not isinstance(section, Mapping):
        raise TypeError(f"defaults section {key!r} must be a mapping")
    return section


def parse_protocol_defaults(obj: Mapping[str, Any]) -> tuple[ProtocolConfig, PoolParams]:
    """Build a validated ``(ProtocolConfig, PoolParams)`` from a defaults mapping."""
    protocol = dict(_section(obj, "protocol"))
    unknown = sorted(set(protocol) - set(CONFIG_FIELDS))
    if unknown:
        raise ValueError(f"unknown protocol fields: {', '.join(unknown)}")

    flags_raw = dict(_section(obj, "feature_flags"))
    flag_names = {f.name for f in fields(FeatureFlags)}
    unknown = sorted(set(flags_raw) - flag_names)
    if unknown:
        raise ValueError(f"unknown feature flags: {', '.join(unknown)}")
    for name, v in flags_raw.items():
        if not isinstance(v, bool):
            raise TypeError(f"feature flag {name} must be a bool")

    config = ProtocolConfig(flags=FeatureFlags(**flags_raw))
    # Ratios are validated against each other; seed them before field checks.
    config = replace(
        config,
        min_collateral_ratio_bps=protocol.get(
            "min_collateral_ratio_bps", config.min_collateral_ratio_bps
        ),
        liquidation_threshold_bps=protocol.get(
            "liquidation_threshold_bps", config.liquidation_threshold_bps
        ),
    )
    for name in CONFIG_FIELDS:
        validate_config_value(config, name, protocol.get(name, getattr(config, name)))
    config = replace(config, **protocol)

    pool_raw = dict(_section(obj, "pool"))
    for name in ("deposit_fee_bps", "withdrawal_fee_bps"):
        _fee(name, pool_raw.get(name, 0), config)
    pool = PoolParams(**pool_raw)
    _non_negative("min_deposit", pool.min_deposit, config)
    return config, pool


@lru_cache(maxsize=None)
def _load_default_file() -> tuple[ProtocolConfig, PoolParams]:
    return load_protocol_defaults(_default_path())


def load_protocol_defaults(path: Path | None = None) -> tuple[ProtocolConfig, PoolParams]:
    """Load protocol defaults from YAML (the packaged ``defaults.yaml`` when *path* is None)."""
    if path is None:
        return _load_default_file()
    obj = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    if not isinstance(obj, Mapping):
        raise TypeError("defaults YAML must be a mapping")
    return parse_protocol_defaults(obj)

"""Asset registry and basket lifecycle state machine.

    Pending -> Active -> Decommissioning -> Settled -> Closed

Every transition not in that chain fails with ``InvalidBasktState``. Rebalance is
a side transition valid only while Active.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Mapping, Sequence

from .config import validate_overrides
from .errors import BasktError, ErrorCode
from .indices import bump_rebalance_fee_index
from .math import BASE_NAV, BPS_DIVISOR, PRICE_PRECISION
from .oracle import publish_price
from .types import (
    Active,
    AssetConfig,
    AssetParams,
    Basket,
    BasketAsset,
    BasketRiskOverrides,
    BasketStatus,
    Closed,
    Decommissioning,
    Direction,
    FeatureFlags,
    OraclePrice,
    Pending,
    ProtocolConfig,
    Settled,
)


def status_name(status: BasketStatus) -> str:
    return type(status).__name__


def _invalid_state(basket: Basket, wanted: str) -> BasktError:
    return BasktError(
        ErrorCode.INVALID_BASKT_STATE,
        f"basket {basket.basket_id} is {status_name(basket.status)}, expected {wanted}",
    )


# -- Asset registry ----------------------------------------------------------------

def register_asset(
    registry: Mapping[str, AssetConfig], params: AssetParams
) -> dict[str, AssetConfig]:
    if not params.asset_id:
        raise BasktError(ErrorCode.INVALID_BASKT_CONFIG, "asset id must be non-empty")
    if params.asset_id in registry:
        raise BasktError(ErrorCode.RECORD_ALREADY_EXISTS, f"asset {params.asset_id}")
    out = dict(registry)
    out[params.asset_id] = AssetConfig(
        asset_id=params.asset_id,
        allow_longs=params.allow_longs,
        allow_shorts=params.allow_shorts,
        is_active=params.is_active,
    )
    return out


def update_asset(
    registry: Mapping[str, AssetConfig], params: AssetParams
) -> dict[str, AssetConfig]:
    if params.asset_id not in registry:
        raise BasktError(ErrorCode.RECORD_NOT_FOUND, f"asset {params.asset_id}")
    out = dict(registry)
    out[params.asset_id] = replace(
        registry[params.asset_id],
        allow_longs=params.allow_longs,
        allow_shorts=params.allow_shorts,
        is_active=params.is_active,
    )
    return out


def validate_basket_assets(
    registry: Mapping[str, AssetConfig], assets: Sequence[BasketAsset]
) -> None:
    """Weights positive and summing to 10000; every direction permitted by its asset."""
    if not assets:
        raise BasktError(ErrorCode.INVALID_BASKT_CONFIG, "basket needs at least one asset")
    ids = [a.asset_id for a in assets]
    if len(set(ids)) != len(ids):
        raise BasktError(ErrorCode.INVALID_BASKT_CONFIG, "duplicate asset ids")
    for a in assets:
        cfg = registry.get(a.asset_id)
        if cfg is None:
            raise BasktError(ErrorCode.INVALID_BASKT_CONFIG, f"unknown asset {a.asset_id}")
        if not cfg.is_active:
            raise BasktError(ErrorCode.INACTIVE_ASSET, a.asset_id)
        if a.weight_bps <= 0:
            raise BasktError(ErrorCode.INVALID_ASSET_WEIGHTS, f"{a.asset_id} weight={a.weight_bps}")
    total = sum(a.weight_bps for a in assets)
    if total != BPS_DIVISOR:
        raise BasktError(ErrorCode.INVALID_ASSET_WEIGHTS, f"weights sum to {total}")
    for a in assets:
        cfg = registry[a.asset_id]
        if a.direction is Direction.LONG and not cfg.allow_longs:
            raise BasktError(ErrorCode.LONG_POSITIONS_DISABLED, a.asset_id)
        if a.direction is Direction.SHORT and not cfg.allow_shorts:
            raise BasktError(ErrorCode.SHORT_POSITIONS_DISABLED, a.asset_id)


# -- Transitions -------------------------------------------------------------------

def create_basket(
    registry: Mapping[str, AssetConfig],
    basket_id: str,
    creator: str,
    assets: Sequence[BasketAsset],
    is_public: bool,
    now: int,
) -> Basket:
    if not basket_id:
        raise BasktError(ErrorCode.INVALID_BASKT_CONFIG, "basket id must be non-empty")
    validate_basket_assets(registry, assets)
    return Basket(
        basket_id=basket_id,
        creator=creator,
        assets=tuple(assets),
        is_public=is_public,
        created_at=now,
    )


def activate_basket(
    basket: Basket,
    prices: Sequence[int],
    max_price_age: int,
    flags: FeatureFlags,
    now: int,
) -> Basket:
    """Pending -> Active: stamp baseline prices and the baseline NAV."""
    if not isinstance(basket.status, Pending):
        raise _invalid_state(basket, "Pending")
    if not flags.allow_basket_creation:
        raise BasktError(ErrorCode.FEATURE_DISABLED, "allow_basket_creation")
    if len(prices) != len(basket.assets):
        raise BasktError(
            ErrorCode.INVALID_BASKT_CONFIG,
            f"{len(prices)} prices for {len(basket.assets)} assets",
        )
    if any(p <= 0 for p in prices):
        raise BasktError(ErrorCode.INVALID_BASKT_CONFIG, "baseline prices must be positive")
    if max_price_age <= 0:
        raise BasktError(ErrorCode.INVALID_ORACLE_PARAMETER, f"max_price_age={max_price_age}")

    nav = BASE_NAV * PRICE_PRECISION
    return replace(
        basket,
        assets=tuple(replace(a, baseline_price=p) for a, p in zip(basket.assets, prices)),
        baseline_nav=nav,
        oracle=OraclePrice(price=nav, published_at=now, max_price_age=max_price_age),
        status=Active(activated_at=now),
    )


def update_oracle_price(basket: Basket, price: int, now: int) -> Basket:
    if not (basket.is_trading or basket.is_unwinding):
        raise _invalid_state(basket, "Active or Decommissioning")
    return replace(basket, oracle=publish_price(basket.oracle, price, now))


def decommission_basket(basket: Basket, grace_period: int, now: int) -> Basket:
    if not basket.is_trading:
        raise _invalid_state(basket, "Active")
    return replace(
        basket,
        status=Decommissioning(initiated_at=now, grace_period_end=now + grace_period),
    )


def settle_basket(basket: Basket, now: int) -> Basket:
    """Decommissioning -> Settled: freeze the NAV and funding index."""
    status = basket.status
    if not isinstance(status, Decommissioning):
        raise _invalid_state(basket, "Decommissioning")
    if now < status.grace_period_end:
        raise BasktError(
            ErrorCode.GRACE_PERIOD_NOT_OVER,
            f"now={now} grace_period_end={status.grace_period_end}",
        )
    if basket.indices.last_update_timestamp <= 0:
        raise BasktError(ErrorCode.FUNDING_NOT_UP_TO_DATE, basket.basket_id)
    return replace(
        basket,
        status=Settled(
            settlement_price=basket.oracle.price,
            settlement_funding_index=basket.indices.cumulative_funding_index,
            settled_at=now,
        ),
    )


def close_basket(basket: Basket, now: int) -> Basket:
    status = basket.status
    if not isinstance(status, Settled):
        raise _invalid_state(basket, "Settled")
    if basket.open_positions != 0:
        raise BasktError(
            ErrorCode.POSITIONS_STILL_OPEN, f"{basket.open_positions} positions open"
        )
    return replace(basket, status=Closed(final_nav=status.settlement_price, closed_at=now))


def rebalance_basket(
    basket: Basket,
    registry: Mapping[str, AssetConfig],
    assets: Sequence[BasketAsset],
    new_nav: int,
    fee_per_unit: int,
    flags: FeatureFlags,
    now: int,
) -> Basket:
    """Replace weights, directions and baseline prices; optionally bump the fee index."""
    if not basket.is_trading:
        raise _invalid_state(basket, "Active")
    if not flags.allow_basket_update:
        raise BasktError(ErrorCode.FEATURE_DISABLED, "allow_basket_update")
    if [a.asset_id for a in assets] != [a.asset_id for a in basket.assets]:
        raise BasktError(ErrorCode.INVALID_BASKT_CONFIG, "rebalance must keep the asset list")
    validate_basket_assets(registry, assets)
    if any(a.baseline_price <= 0 for a in assets):
        raise BasktError(ErrorCode.INVALID_BASKT_CONFIG, "baseline prices must be positive")
    if new_nav <= 0:
        raise BasktError(ErrorCode.INVALID_ORACLE_PRICE, f"new_nav={new_nav}")

    return replace(
        basket,
        assets=tuple(assets),
        baseline_nav=new_nav,
        rebalance_index=bump_rebalance_fee_index(basket.rebalance_index, fee_per_unit, now),
    )


def set_basket_overrides(
    basket: Basket, config: ProtocolConfig, overrides: BasketRiskOverrides
) -> Basket:
    if isinstance(basket.status, Closed):
        raise _invalid_state(basket, "not Closed")
    validate_overrides(config, overrides)
    return replace(basket, overrides=overrides)

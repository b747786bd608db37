"""Order creation and cancellation.

An order is consumed exactly once by ``open_position`` / ``close_position`` and
then deleted; cancellation deletes it without side effects.
"""

from __future__ import annotations

from typing import Mapping

from .config import effective_config
from .errors import BasktError, ErrorCode
from .math import bps_of, required_collateral
from .types import (
    Basket,
    CreateOrderParams,
    Order,
    OrderAction,
    OrderType,
    Position,
    ProtocolConfig,
)


def _validate_open(params: CreateOrderParams, owner: str, basket: Basket, config: ProtocolConfig) -> None:
    if not config.flags.allow_trading:
        raise BasktError(ErrorCode.FEATURE_DISABLED, "allow_trading")
    if not basket.is_trading:
        raise BasktError(ErrorCode.INVALID_BASKT_STATE, f"basket {basket.basket_id} not Active")
    if not basket.is_public and owner != basket.creator:
        raise BasktError(ErrorCode.UNAUTHORIZED, "private basket")
    if params.notional <= 0 or params.collateral <= 0:
        raise BasktError(
            ErrorCode.INVALID_AMOUNT,
            f"notional={params.notional} collateral={params.collateral}",
        )
    if params.order_type is OrderType.LIMIT and params.limit_price <= 0:
        raise BasktError(ErrorCode.INVALID_ORACLE_PRICE, "limit orders need a limit price")
    eff = effective_config(config, basket.overrides)
    needed = required_collateral(params.notional, eff.min_collateral_ratio_bps) + bps_of(
        params.notional, eff.opening_fee_bps
    )
    if params.collateral < needed:
        raise BasktError(
            ErrorCode.INSUFFICIENT_COLLATERAL,
            f"collateral={params.collateral} required={needed}",
        )


def _validate_close(
    params: CreateOrderParams,
    owner: str,
    basket: Basket,
    positions: Mapping[str, Position],
) -> None:
    if not (basket.is_trading or basket.is_unwinding):
        raise BasktError(
            ErrorCode.INVALID_BASKT_STATE, f"basket {basket.basket_id} not trading or unwinding"
        )
    target = positions.get(params.target_position or "")
    if target is None or target.owner != owner or target.basket_id != basket.basket_id:
        raise BasktError(ErrorCode.INVALID_TARGET_POSITION, str(params.target_position))
    if not 0 < params.size <= target.size:
        raise BasktError(
            ErrorCode.INVALID_POSITION_SIZE, f"size={params.size} position={target.size}"
        )


def create_order(
    params: CreateOrderParams,
    owner: str,
    basket: Basket,
    config: ProtocolConfig,
    positions: Mapping[str, Position],
    orders: Mapping[str, Order],
    now: int,
) -> Order:
    if not params.order_id or params.order_id in orders:
        raise BasktError(ErrorCode.RECORD_ALREADY_EXISTS, f"order {params.order_id!r}")
    if params.action is OrderAction.OPEN:
        _validate_open(params, owner, basket, config)
    else:
        _validate_close(params, owner, basket, positions)
    return Order(
        order_id=params.order_id,
        owner=owner,
        basket_id=basket.basket_id,
        action=params.action,
        direction=params.direction,
        notional=params.notional,
        collateral=params.collateral,
        order_type=params.order_type,
        limit_price=params.limit_price,
        max_slippage_bps=params.max_slippage_bps,
        target_position=params.target_position,
        size=params.size,
        created_at=now,
    )


def cancel_order(order: Order, actor: str) -> None:
    if order.owner != actor:
        raise BasktError(ErrorCode.UNAUTHORIZED, f"{actor} does not own order {order.order_id}")
